"""
Shared pytest fixtures for pairchat tests.

Provides:
- fake_eventlet: Replaces eventlet in the relay modules with a deterministic
  scheduler. spawn_after() records the call; run_pending() fires everything
  scheduled so far that was not cancelled. spawn_n() runs inline.
- socketio: MagicMock standing in for flask_socketio.SocketIO
- emits: Helper returning the payloads emitted for an event (optionally to one sid)
- relay: A ChatRelay wired to the mock socketio and fake scheduler
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pairchat.configurations.relay_config import RelayConfig
from pairchat.server import collaborators, match_coordinator, room_manager
from pairchat.server.relay import ChatRelay

_ANY = object()


class FakeGreenThread:
    def __init__(self, delay, fn, args):
        self.delay = delay
        self.fn = fn
        self.args = args
        self.cancelled = False
        self.ran = False

    def cancel(self):
        self.cancelled = True


class FakeTimeout(Exception):
    def __init__(self, seconds=None, *args):
        super().__init__(seconds)
        self.seconds = seconds

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class FakeEventlet:
    Timeout = FakeTimeout

    def __init__(self):
        self.scheduled: list[FakeGreenThread] = []

    def spawn_after(self, delay, fn, *args):
        thread = FakeGreenThread(delay, fn, args)
        self.scheduled.append(thread)
        return thread

    def spawn_n(self, fn, *args):
        fn(*args)

    def sleep(self, seconds=0):
        return None

    def pending(self, fn_name: str | None = None) -> list[FakeGreenThread]:
        return [
            t for t in self.scheduled
            if not t.cancelled and not t.ran
            and (fn_name is None or t.fn.__name__ == fn_name)
        ]

    def run_pending(self, fn_name: str | None = None) -> int:
        """Fire every live scheduled call (optionally only those of one function).

        Calls scheduled while firing are left for the next run_pending().
        """
        batch = self.pending(fn_name)
        for thread in batch:
            if thread.cancelled:
                continue
            thread.ran = True
            thread.fn(*thread.args)
        return len(batch)


@pytest.fixture
def fake_eventlet(monkeypatch):
    fake = FakeEventlet()
    for module in (collaborators, match_coordinator, room_manager):
        monkeypatch.setattr(module, "eventlet", fake)
    return fake


@pytest.fixture
def socketio():
    return MagicMock(name="socketio")


@pytest.fixture
def emits(socketio):
    def _emits(event, room=_ANY):
        payloads = []
        for call in socketio.emit.call_args_list:
            args, kwargs = call
            if not args or args[0] != event:
                continue
            if room is not _ANY and kwargs.get("room") != room:
                continue
            payloads.append(args[1] if len(args) > 1 else None)
        return payloads

    return _emits


@pytest.fixture
def relay_config(tmp_path):
    return (
        RelayConfig()
        .matchmaking(match_delay_s=3.0)
        .rooms(reconnect_grace_s=30, drain_grace_s=30)
        .logging(log_file=None, match_logs_dir=str(tmp_path / "match_logs"))
    )


@pytest.fixture
def relay(socketio, fake_eventlet, relay_config):
    return ChatRelay(socketio, relay_config)
