"""The waiting pool: clients who asked for a partner and have not got one yet.

Entries are keyed by connection handle and kept in arrival order, which is
the tie-break for pairing (oldest first). At most one entry exists per
fingerprint; a newer request from the same fingerprint evicts the older one.

All mutations happen under one lock. snapshot() copies under that lock, so
scanning never observes a half-applied mutation.
"""

from __future__ import annotations

import collections
import dataclasses
import logging
import threading
import time

from pairchat.utils.typing import ConnectionHandle, Fingerprint

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class WaitingEntry:
    """A pending match request.

    Attributes:
        handle: Socket id of the requesting connection
        fingerprint: Stable client identifier
        display_name: Name shown to the partner
        interests: Ordered interest tags, at least one (NO_INTEREST if none given)
        joined_at: Unix timestamp of the request
    """

    handle: ConnectionHandle
    fingerprint: Fingerprint
    display_name: str
    interests: list[str]
    joined_at: float = dataclasses.field(default_factory=time.time)


class WaitingPool:
    """Ordered handle -> WaitingEntry map with fingerprint deduplication."""

    def __init__(self):
        self._entries: collections.OrderedDict[ConnectionHandle, WaitingEntry] = (
            collections.OrderedDict()
        )
        self._handle_by_fingerprint: dict[Fingerprint, ConnectionHandle] = {}
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, handle: ConnectionHandle) -> bool:
        return self.contains_handle(handle)

    def contains_handle(self, handle: ConnectionHandle) -> bool:
        with self.lock:
            return handle in self._entries

    def get(self, handle: ConnectionHandle) -> WaitingEntry | None:
        with self.lock:
            return self._entries.get(handle)

    def get_by_fingerprint(self, fingerprint: Fingerprint) -> WaitingEntry | None:
        with self.lock:
            handle = self._handle_by_fingerprint.get(fingerprint)
            return self._entries.get(handle) if handle is not None else None

    def enqueue(self, entry: WaitingEntry) -> tuple[bool, list[WaitingEntry]]:
        """Insert an entry at the back of the pool.

        Returns:
            (inserted, evicted): inserted is False if this handle was already
            queued (the call is then a no-op). evicted lists stale entries
            for the same fingerprint that were removed to make room.
        """
        with self.lock:
            if entry.handle in self._entries:
                logger.info(
                    f"[Pool:Enqueue] Handle {entry.handle} already queued "
                    f"(fingerprint={entry.fingerprint}). Ignoring."
                )
                return False, []

            evicted = self._remove_fingerprint_locked(entry.fingerprint)
            for stale in evicted:
                logger.info(
                    f"[Pool:Evict] Fingerprint {entry.fingerprint} re-queued from "
                    f"{entry.handle}. Evicted stale entry for handle {stale.handle}."
                )

            self._entries[entry.handle] = entry
            self._handle_by_fingerprint[entry.fingerprint] = entry.handle
            logger.info(
                f"[Pool:Enqueue] {entry.display_name} ({entry.handle}) joined the pool "
                f"with interests={entry.interests}. Pool size: {len(self._entries)}"
            )
            return True, evicted

    def dequeue_by_handle(self, handle: ConnectionHandle) -> WaitingEntry | None:
        with self.lock:
            entry = self._entries.pop(handle, None)
            if entry is None:
                return None
            if self._handle_by_fingerprint.get(entry.fingerprint) == handle:
                del self._handle_by_fingerprint[entry.fingerprint]
            logger.info(
                f"[Pool:Dequeue] Removed {entry.display_name} ({handle}). "
                f"Pool size: {len(self._entries)}"
            )
            return entry

    def dequeue_by_fingerprint(self, fingerprint: Fingerprint) -> list[WaitingEntry]:
        """Remove every entry with this fingerprint (duplicate tabs included)."""
        with self.lock:
            return self._remove_fingerprint_locked(fingerprint)

    def remove_pair(
        self, handle_a: ConnectionHandle, handle_b: ConnectionHandle
    ) -> tuple[WaitingEntry, WaitingEntry] | None:
        """Remove two entries as one step.

        Either both entries are removed and returned, or neither is touched
        (one was already gone) and None is returned.
        """
        with self.lock:
            if handle_a == handle_b:
                return None
            if handle_a not in self._entries or handle_b not in self._entries:
                return None
            return self.dequeue_by_handle(handle_a), self.dequeue_by_handle(handle_b)

    def snapshot(self) -> list[WaitingEntry]:
        """Copy of current entries, oldest first. Safe to iterate while others mutate."""
        with self.lock:
            return list(self._entries.values())

    def handles(self) -> list[ConnectionHandle]:
        with self.lock:
            return list(self._entries.keys())

    def _remove_fingerprint_locked(self, fingerprint: Fingerprint) -> list[WaitingEntry]:
        removed = [e for e in self._entries.values() if e.fingerprint == fingerprint]
        for entry in removed:
            del self._entries[entry.handle]
        self._handle_by_fingerprint.pop(fingerprint, None)
        return removed
