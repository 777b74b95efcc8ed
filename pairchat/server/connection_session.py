"""Per-connection state and fingerprint -> connection resolution.

A socket handle lives only as long as one socket. A fingerprint outlives
reconnects. Every "is this the same user" question after the initial
connect is answered by fingerprint; the registry maps it to whichever
handle is currently live.
"""

from __future__ import annotations

import dataclasses
import logging
import time

from pairchat.configurations.configuration_constants import (
    DEFAULT_DISPLAY_NAME, NO_INTEREST)
from pairchat.server import thread_safe_collections
from pairchat.utils.typing import ConnectionHandle, Fingerprint

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ConnectionSession:
    """
    Stores state for one socket connection.

    fingerprint is None until the client identifies itself with its first
    request_match or reconnect_room event.
    """

    handle: ConnectionHandle
    fingerprint: Fingerprint | None = None
    display_name: str = DEFAULT_DISPLAY_NAME
    interests: list[str] = dataclasses.field(default_factory=lambda: [NO_INTEREST])
    connected_at: float = dataclasses.field(default_factory=time.time)
    last_seen: float = dataclasses.field(default_factory=time.time)

    def touch(self) -> None:
        self.last_seen = time.time()


class SessionRegistry:
    """Owns every ConnectionSession and the fingerprint -> live handle map."""

    def __init__(self):
        self.sessions: dict[ConnectionHandle, ConnectionSession] = (
            thread_safe_collections.ThreadSafeDict()
        )
        self.handle_by_fingerprint: dict[Fingerprint, ConnectionHandle] = (
            thread_safe_collections.ThreadSafeDict()
        )

    def __len__(self) -> int:
        return len(self.sessions)

    def open(self, handle: ConnectionHandle) -> ConnectionSession:
        session = self.sessions.get(handle)
        if session is None:
            session = ConnectionSession(handle=handle)
            self.sessions[handle] = session
        return session

    def get(self, handle: ConnectionHandle) -> ConnectionSession | None:
        return self.sessions.get(handle)

    def bind(
        self,
        handle: ConnectionHandle,
        fingerprint: Fingerprint,
        display_name: str | None = None,
        interests: list[str] | None = None,
    ) -> tuple[ConnectionSession, ConnectionHandle | None]:
        """Attach an identity to a connection.

        The fingerprint now resolves to this handle (last writer wins).

        Returns:
            (session, previous_handle): previous_handle is the other live
            handle this fingerprint resolved to before, if any.
        """
        session = self.open(handle)
        if session.fingerprint and session.fingerprint != fingerprint:
            # Same socket now claims a different identity; drop the old mapping.
            self.handle_by_fingerprint.pop_if(session.fingerprint, handle)
        session.fingerprint = fingerprint
        if display_name is not None:
            session.display_name = display_name
        if interests is not None:
            session.interests = interests
        session.touch()

        previous = self.handle_by_fingerprint.get(fingerprint)
        self.handle_by_fingerprint[fingerprint] = handle
        if previous == handle or previous not in self.sessions:
            previous = None
        if previous is not None:
            logger.info(
                f"[Sessions] Fingerprint {fingerprint} moved from handle {previous} to {handle}"
            )
        return session, previous

    def resolve(self, fingerprint: Fingerprint) -> ConnectionHandle | None:
        """Live handle for a fingerprint, or None if it has no connected socket."""
        return self.handle_by_fingerprint.get(fingerprint)

    def close(self, handle: ConnectionHandle) -> ConnectionSession | None:
        session = self.sessions.pop(handle, None)
        if session is not None and session.fingerprint:
            # Only unmap if a newer socket has not taken the fingerprint over.
            self.handle_by_fingerprint.pop_if(session.fingerprint, handle)
        return session
