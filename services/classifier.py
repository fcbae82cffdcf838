"""Classification of a fetched document against the previous fetch."""
from __future__ import annotations

from models import ChangeCategory
from services.fuzzy import is_major_change, normalize_numbers


def classify(
    old_text: str | None,
    new_text: str,
    threshold: int,
    ignore_numbers: bool = False,
) -> ChangeCategory:
    """Return the change category for ``new_text`` compared with ``old_text``.

    The checks run in a fixed order: a missing baseline always means a first
    scan (even when both texts are empty), identical texts skip the diff, and
    only then is the comparator consulted.
    """
    if threshold < 0:
        raise ValueError("threshold cannot be negative")

    if not old_text:
        return ChangeCategory.NEW_CONTENT
    if old_text == new_text:
        return ChangeCategory.NO_CHANGE

    if ignore_numbers:
        old_text = normalize_numbers(old_text)
        new_text = normalize_numbers(new_text)

    if is_major_change(old_text, new_text, threshold):
        return ChangeCategory.MAJOR_CHANGE
    return ChangeCategory.MINOR_CHANGE


__all__ = ["classify"]
