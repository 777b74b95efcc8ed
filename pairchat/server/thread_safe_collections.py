"""Lock-guarded dict used for the relay's shared indexes.

Originally adapted from: https://github.com/HumanCompatibleAI/overcooked-demo/blob/master/server/utils.py

Mutators take the lock. Readers that need a stable view while other
handlers mutate (sweeps, admin snapshots) call snapshot(), which copies
under the lock.
"""

from __future__ import annotations

from threading import RLock


class ThreadSafeDict(dict):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lock = RLock()

    def pop(self, *args, **kwargs):
        with self.lock:
            retval = super().pop(*args, **kwargs)
        return retval

    def setdefault(self, *args, **kwargs):
        with self.lock:
            retval = super().setdefault(*args, **kwargs)
        return retval

    def __setitem__(self, *args, **kwargs):
        with self.lock:
            retval = super().__setitem__(*args, **kwargs)
        return retval

    def __delitem__(self, item):
        with self.lock:
            if item in self:
                retval = super().__delitem__(item)
            else:
                retval = None
        return retval

    def pop_if(self, key, expected):
        """Remove key only while it still maps to expected. Returns True if removed."""
        with self.lock:
            if key in self and super().__getitem__(key) == expected:
                super().__delitem__(key)
                return True
            return False

    def snapshot(self) -> dict:
        with self.lock:
            return dict(self)
