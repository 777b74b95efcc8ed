"""Narrow interfaces to the services the relay depends on but does not own.

- ModerationStore: ban list lookups and updates
- MessagePersister: optional audit log of room messages
- MediaForwarder: best-effort relay of image/audio to an external channel

None of these may stall pairing or broadcast. Blocking lookups go through
call_with_timeout(); side effects go through fire_and_forget().
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

import eventlet

from pairchat.server.errors import CollaboratorError
from pairchat.utils.typing import Fingerprint, RoomID

logger = logging.getLogger(__name__)


class ModerationStore(ABC):
    @abstractmethod
    def is_banned(self, fingerprint: Fingerprint) -> bool:
        ...

    @abstractmethod
    def ban_user(self, fingerprint: Fingerprint, reason: str | None = None) -> None:
        ...

    @abstractmethod
    def unban_user(self, fingerprint: Fingerprint, reason: str | None = None) -> None:
        ...


class InMemoryModerationStore(ModerationStore):
    """Process-local ban list. Stands in until a real store is configured."""

    def __init__(self):
        self._bans: dict[Fingerprint, dict] = {}
        self._lock = threading.Lock()

    def is_banned(self, fingerprint: Fingerprint) -> bool:
        with self._lock:
            return fingerprint in self._bans

    def ban_user(self, fingerprint: Fingerprint, reason: str | None = None) -> None:
        with self._lock:
            self._bans[fingerprint] = {"reason": reason, "banned_at": time.time()}
        logger.info(f"[Moderation] Banned {fingerprint}: {reason}")

    def unban_user(self, fingerprint: Fingerprint, reason: str | None = None) -> None:
        with self._lock:
            self._bans.pop(fingerprint, None)
        logger.info(f"[Moderation] Unbanned {fingerprint}: {reason}")

    def banned(self) -> dict[Fingerprint, dict]:
        with self._lock:
            return dict(self._bans)


class MessagePersister(ABC):
    @abstractmethod
    def persist_message(self, room_id: RoomID, message: dict) -> None:
        ...


class NullMessagePersister(MessagePersister):
    def persist_message(self, room_id: RoomID, message: dict) -> None:
        return None


class JsonlMessageLog(MessagePersister):
    """Appends each message to data/message_logs/{room_id}.jsonl."""

    MESSAGE_LOGS_DIR = "data/message_logs"

    def __init__(self, logs_dir: str | None = None):
        self.logs_dir = logs_dir or self.MESSAGE_LOGS_DIR
        os.makedirs(self.logs_dir, exist_ok=True)
        logger.info(f"Message logs will be saved to {self.logs_dir}/")

    def persist_message(self, room_id: RoomID, message: dict) -> None:
        filepath = os.path.join(self.logs_dir, f"{room_id}.jsonl")
        with open(filepath, "a", encoding="utf-8") as f:
            f.write(json.dumps(message) + "\n")


class MediaForwarder(ABC):
    @abstractmethod
    def forward_media(self, kind: str, payload: Any, fingerprint: Fingerprint) -> None:
        ...


class NullMediaForwarder(MediaForwarder):
    def forward_media(self, kind: str, payload: Any, fingerprint: Fingerprint) -> None:
        return None


def call_with_timeout(fn: Callable, *args, timeout: float, description: str = ""):
    """Run a blocking collaborator call with an upper bound on its duration.

    Raises:
        CollaboratorError: The call raised, or did not finish within timeout.
    """
    try:
        with eventlet.Timeout(timeout):
            return fn(*args)
    except eventlet.Timeout:
        logger.warning(f"[Collaborator] {description or fn} timed out after {timeout}s")
        raise CollaboratorError(f"{description or 'collaborator call'} timed out")
    except CollaboratorError:
        raise
    except Exception as e:
        logger.warning(f"[Collaborator] {description or fn} failed: {e}")
        raise CollaboratorError(f"{description or 'collaborator call'} failed: {e}") from e


def _guarded(fn: Callable, args: tuple, description: str) -> None:
    try:
        fn(*args)
    except Exception as e:
        logger.error(f"[Collaborator] {description} failed: {e}")


def fire_and_forget(fn: Callable, *args, description: str = "") -> None:
    """Run a side-effecting collaborator call on its own green thread.

    Failures are logged and never reach the caller.
    """
    eventlet.spawn_n(_guarded, fn, args, description or getattr(fn, "__name__", "call"))
