"""Matchmaking strategies: who, out of the waiting pool, gets paired with whom.

A Matchmaker only decides. It receives the arriving entry plus the eligible
waiting entries (oldest first) and proposes a partner. MatchCoordinator owns
the pool, the locking, room creation and notifications.

The default InterestMatchmaker pairs on overlapping interests first and falls
back to the oldest eligible entry ("random" match) when nobody shares one.
"""

from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod

from pairchat.configurations.configuration_constants import MatchTypes
from pairchat.server.interest_matcher import FuzzyInterestMatcher, InterestMatcher
from pairchat.server.waiting_pool import WaitingEntry

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class MatchResult:
    """A proposed pairing.

    Attributes:
        partner: The waiting entry chosen for the arriving client
        match_type: MatchTypes.Interest or MatchTypes.Random
    """

    partner: WaitingEntry
    match_type: str


class Matchmaker(ABC):
    """Abstract base class for pairing strategies.

    find_partner() is called under the coordinator's match lock. It must not
    block, spawn work, or mutate the waiting list.
    """

    def __init__(self, interest_matcher: InterestMatcher | None = None):
        self.interest_matcher = interest_matcher or FuzzyInterestMatcher()

    def eligible(self, arriving: WaitingEntry, candidate: WaitingEntry) -> bool:
        """Never pair a client with itself, or with another tab of itself."""
        return (
            candidate.handle != arriving.handle
            and candidate.fingerprint != arriving.fingerprint
        )

    @abstractmethod
    def find_partner(
        self,
        arriving: WaitingEntry,
        waiting: list[WaitingEntry],
    ) -> MatchResult | None:
        """Pick a partner for the arriving entry.

        Args:
            arriving: The entry whose deferred match attempt is firing.
            waiting: Snapshot of the pool in arrival order. May include the
                arriving entry itself; implementations skip it.

        Returns:
            MatchResult naming the partner, or None to keep waiting.
        """
        ...


class InterestMatchmaker(Matchmaker):
    """Interest overlap first, oldest-first random fallback second.

    Example:
        - A ["cats", "dogs"] waiting, B ["dog sitting"] arrives -> interest match (A)
        - A ["chess"] waiting, B ["surfing"] arrives -> random match (A)

    Args:
        interest_matcher: Strategy comparing interest tags.
        fallback_to_random: If False, clients only pair on shared interests.
    """

    def __init__(
        self,
        interest_matcher: InterestMatcher | None = None,
        fallback_to_random: bool = True,
    ):
        super().__init__(interest_matcher=interest_matcher)
        self.fallback_to_random = fallback_to_random

    def find_partner(
        self,
        arriving: WaitingEntry,
        waiting: list[WaitingEntry],
    ) -> MatchResult | None:
        candidates = [w for w in waiting if self.eligible(arriving, w)]
        logger.debug(
            f"[InterestMatchmaker] find_partner called: "
            f"arriving={arriving.handle} interests={arriving.interests}, "
            f"candidates={[c.handle for c in candidates]}"
        )

        for candidate in candidates:
            if self.interest_matcher.overlaps(arriving.interests, candidate.interests):
                logger.info(
                    f"[InterestMatchmaker] Interest match: {arriving.handle} <-> "
                    f"{candidate.handle} ({arriving.interests} ~ {candidate.interests})"
                )
                return MatchResult(partner=candidate, match_type=MatchTypes.Interest)

        if self.fallback_to_random and candidates:
            partner = candidates[0]
            logger.info(
                f"[InterestMatchmaker] No shared interests for {arriving.handle}. "
                f"Random fallback to oldest waiting entry {partner.handle}."
            )
            return MatchResult(partner=partner, match_type=MatchTypes.Random)

        logger.debug(f"[InterestMatchmaker] No partner for {arriving.handle}. Waiting.")
        return None


class FIFOMatchmaker(Matchmaker):
    """Ignores interests entirely and pairs with the oldest eligible entry."""

    def find_partner(
        self,
        arriving: WaitingEntry,
        waiting: list[WaitingEntry],
    ) -> MatchResult | None:
        for candidate in waiting:
            if self.eligible(arriving, candidate):
                return MatchResult(partner=candidate, match_type=MatchTypes.Random)
        return None
