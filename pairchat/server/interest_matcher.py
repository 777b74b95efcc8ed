"""Interest similarity used to decide whether two waiting clients fit together.

similar() is the default fuzzy heuristic. The Matchmaker never calls it
directly: it goes through an InterestMatcher so the heuristic can be swapped
(e.g. for an embedding-based matcher) without touching pairing code.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pairchat.configurations.configuration_constants import NO_INTEREST, Defaults

logger = logging.getLogger(__name__)


def similar(a: str, b: str, min_prefix_length: int = Defaults.MinPrefixLength) -> bool:
    """Case-insensitive fuzzy comparison of two interest tags.

    True if either (trimmed, lowercased) tag contains the other, or if both
    start with the same min_prefix_length characters. Empty tags never match.
    Tags shorter than min_prefix_length can still match through containment.

        >>> similar("dogs", "dog sitting")
        True
        >>> similar("cats", "birds")
        False
    """
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    if len(a) < min_prefix_length or len(b) < min_prefix_length:
        return False
    return a[:min_prefix_length] == b[:min_prefix_length]


def is_no_interest(interests: list[str]) -> bool:
    return not interests or list(interests) == [NO_INTEREST]


def normalize_interests(
    raw,
    max_interests: int = Defaults.MaxInterests,
    max_length: int = Defaults.MaxInterestLength,
) -> list[str]:
    """Turn client input into an ordered, deduplicated tag list.

    Accepts a list of strings or a single comma-separated string. Returns
    [NO_INTEREST] when nothing usable was supplied.

    Raises:
        TypeError: raw is neither None, a string, nor a list/tuple of strings.
    """
    if raw is None:
        items = []
    elif isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        if not all(isinstance(item, str) for item in raw):
            raise TypeError("interests must be strings")
        items = list(raw)
    else:
        raise TypeError(f"interests must be a list or a string, got {type(raw).__name__}")

    seen = set()
    tags = []
    for item in items:
        tag = " ".join(item.split())[:max_length]
        if not tag or tag == NO_INTEREST:
            continue
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        tags.append(tag)
        if len(tags) >= max_interests:
            break

    return tags or [NO_INTEREST]


class InterestMatcher(ABC):
    """Strategy deciding whether two interest sets overlap."""

    @abstractmethod
    def tags_match(self, a: str, b: str) -> bool:
        ...

    def overlaps(self, a_tags: list[str], b_tags: list[str]) -> bool:
        """True if any tag in a_tags matches any tag in b_tags.

        The NO_INTEREST sentinel never overlaps with anything, itself included.
        """
        if is_no_interest(a_tags) or is_no_interest(b_tags):
            return False
        return any(self.tags_match(a, b) for a in a_tags for b in b_tags)

    def shared_interests(self, a_tags: list[str], b_tags: list[str]) -> str | None:
        """Human-readable summary of what two clients have in common.

        Uses the arriving side's wording. None when either side gave no
        interests or nothing overlaps.
        """
        if is_no_interest(a_tags) or is_no_interest(b_tags):
            return None
        shared = [a for a in a_tags if any(self.tags_match(a, b) for b in b_tags)]
        if not shared:
            return None
        return ", ".join(shared)


class FuzzyInterestMatcher(InterestMatcher):
    """Default matcher: substring or shared-prefix comparison via similar()."""

    def __init__(self, min_prefix_length: int = Defaults.MinPrefixLength):
        self.min_prefix_length = min_prefix_length

    def tags_match(self, a: str, b: str) -> bool:
        return similar(a, b, self.min_prefix_length)


class ExactInterestMatcher(InterestMatcher):
    """Case-insensitive exact tag equality. Useful for curated tag lists."""

    def tags_match(self, a: str, b: str) -> bool:
        return a.strip().lower() == b.strip().lower() and bool(a.strip())
