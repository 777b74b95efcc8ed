"""Match assignment logging.

Records who was paired with whom, how, and when, for moderation review and
for tuning the matchmaker.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pairchat.server.admin.aggregator import AdminEventAggregator
    from pairchat.server.waiting_pool import WaitingEntry

logger = logging.getLogger(__name__)


@dataclass
class MatchAssignment:
    """Immutable record of a match decision.

    Attributes:
        timestamp: Unix timestamp when the room formed
        room_id: Opaque room identifier
        alias: Human-readable room alias
        participants: fingerprint, display_name, interests and wait time per member
        match_type: "interest" or "random"
        shared_interest: Display string of shared interests, if any
        matchmaker_class: Name of the matchmaker that formed the match
    """

    timestamp: float
    room_id: str
    alias: str
    participants: list[dict] = field(default_factory=list)
    match_type: str | None = None
    shared_interest: str | None = None
    matchmaker_class: str = "Unknown"


class MatchAssignmentLogger:
    """Logger for match assignment events.

    Writes match events to:
    1. A JSONL file, data/match_logs/matches.jsonl by default
    2. The admin dashboard activity timeline (via AdminEventAggregator)
    """

    MATCH_LOGS_DIR = "data/match_logs"
    MATCH_LOG_FILE = "matches.jsonl"

    def __init__(
        self,
        admin_aggregator: AdminEventAggregator | None = None,
        logs_dir: str | None = None,
    ):
        self.admin_aggregator = admin_aggregator
        self.logs_dir = logs_dir or self.MATCH_LOGS_DIR

        os.makedirs(self.logs_dir, exist_ok=True)
        logger.info(f"Match logs will be saved to {self.logs_dir}/")

    def log_match(
        self,
        room_id: str,
        alias: str,
        matched_entries: list[WaitingEntry],
        match_type: str | None,
        shared_interest: str | None,
        matchmaker_class: str,
    ) -> MatchAssignment:
        now = time.time()
        participants = [
            {
                "fingerprint": entry.fingerprint,
                "display_name": entry.display_name,
                "interests": list(entry.interests),
                "wait_s": round(now - entry.joined_at, 3),
            }
            for entry in matched_entries
        ]

        assignment = MatchAssignment(
            timestamp=now,
            room_id=room_id,
            alias=alias,
            participants=participants,
            match_type=match_type,
            shared_interest=shared_interest,
            matchmaker_class=matchmaker_class,
        )

        if self.admin_aggregator:
            fingerprints = [p["fingerprint"] for p in participants]
            self.admin_aggregator.log_activity(
                event_type="match_formed",
                fingerprint=fingerprints[0] if fingerprints else "unknown",
                details={
                    "room_id": room_id,
                    "alias": alias,
                    "participants": fingerprints,
                    "match_type": match_type,
                    "matchmaker": matchmaker_class,
                },
            )

        self._write_to_file(assignment)

        logger.info(
            f"Match logged: room={room_id} ({alias}), "
            f"participants={[p['fingerprint'] for p in participants]}, "
            f"match_type={match_type}, matchmaker={matchmaker_class}"
        )
        return assignment

    def _write_to_file(self, assignment: MatchAssignment) -> None:
        filepath = os.path.join(self.logs_dir, self.MATCH_LOG_FILE)

        try:
            with open(filepath, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(assignment)) + "\n")
        except Exception as e:
            logger.error(f"Failed to write match log to {filepath}: {e}")
