"""Change categories produced by the classifier."""
from __future__ import annotations

from enum import Enum


class ChangeCategory(str, Enum):
    """How a freshly fetched document differs from the previous fetch.

    Computed on every scan and never persisted.
    """

    NEW_CONTENT = "new_content"
    NO_CHANGE = "no_change"
    MINOR_CHANGE = "minor_change"
    MAJOR_CHANGE = "major_change"
