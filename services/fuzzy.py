"""Fuzzy text comparison used to size the change between two fetches.

The magnitude of a change is the number of characters that fall inside
inserted or deleted spans when one text is turned into the other.
Common subsequences do not count. Small inputs are compared character by
character. Large inputs are first cut into content-defined chunks, the
chunk sequences are matched, and only the differing chunks are examined
(at character level when the differing region is small).

Chunk boundaries come from tag ends, line breaks and a rolling hash over
the preceding characters, so they depend on nearby content only. An edit
shifts the boundaries around it and both texts fall back into step
shortly after, even in long documents without any line breaks.
"""
from __future__ import annotations

import random
import re
from difflib import SequenceMatcher

# Combined length below which a plain character diff is used.
CHAR_DIFF_LIMIT = 6_000
# Differing regions up to this combined length are refined per character.
BLOCK_REFINE_LIMIT = 2_000
MIN_CHUNK_LENGTH = 16
MAX_CHUNK_LENGTH = 256
# A hash cut happens on average once per 64 characters.
_CUT_MASK = 0x3F
_HASH_MASK = 0xFFFFFFFF
_SEPARATORS = frozenset(">\n")
# Fixed seed: chunking must not change between runs.
_GEAR = tuple(random.Random(0x6D6F6E).getrandbits(32) for _ in range(256))

NUMBER_PLACEHOLDER = "#"
_DIGIT_RUN = re.compile(r"\d+")


def normalize_numbers(text: str) -> str:
    """Collapse every run of digits into a single placeholder."""
    return _DIGIT_RUN.sub(NUMBER_PLACEHOLDER, text)


def _char_magnitude(first: str, second: str) -> int:
    matcher = SequenceMatcher(None, first, second, autojunk=False)
    matched = sum(block.size for block in matcher.get_matching_blocks())
    return len(first) + len(second) - 2 * matched


def _chunks(text: str) -> list[str]:
    chunks = []
    start = 0
    rolling = 0
    for index, char in enumerate(text):
        # Gear hash: each step shifts older characters out after 32 positions.
        rolling = ((rolling << 1) + _GEAR[ord(char) & 0xFF]) & _HASH_MASK
        length = index + 1 - start
        if (
            char in _SEPARATORS
            or length >= MAX_CHUNK_LENGTH
            or (length >= MIN_CHUNK_LENGTH and (rolling & _CUT_MASK) == 0)
        ):
            chunks.append(text[start:index + 1])
            start = index + 1
    if start < len(text):
        chunks.append(text[start:])
    return chunks


def _chunked_magnitude(first: str, second: str) -> int:
    first_chunks = _chunks(first)
    second_chunks = _chunks(second)
    matcher = SequenceMatcher(None, first_chunks, second_chunks)

    total = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        deleted = "".join(first_chunks[i1:i2])
        inserted = "".join(second_chunks[j1:j2])
        if tag == "replace" and len(deleted) + len(inserted) <= BLOCK_REFINE_LIMIT:
            total += _char_magnitude(deleted, inserted)
        else:
            total += len(deleted) + len(inserted)
    return total


def change_magnitude(old_text: str, new_text: str) -> int:
    """Return the number of characters inserted or deleted between two texts."""
    if old_text == new_text:
        return 0

    # Diff in a fixed order so that swapping the arguments gives the same result.
    first, second = sorted((old_text, new_text))
    if len(first) + len(second) <= CHAR_DIFF_LIMIT:
        return _char_magnitude(first, second)
    return _chunked_magnitude(first, second)


def is_major_change(old_text: str, new_text: str, threshold: int) -> bool:
    """Check whether the change between two texts reaches ``threshold`` characters."""
    if threshold < 0:
        raise ValueError("threshold cannot be negative")
    if old_text == new_text:
        return False
    return change_magnitude(old_text, new_text) >= threshold


__all__ = [
    "CHAR_DIFF_LIMIT",
    "NUMBER_PLACEHOLDER",
    "change_magnitude",
    "is_major_change",
    "normalize_numbers",
]
