from __future__ import annotations

from collections import deque
from threading import Condition, Lock, Timer

Key = tuple[str, str]  # (namespace, name)


class WorkQueue:
    """In-memory queue of FreshRSS identities waiting for reconciliation.

    - a key already waiting is not queued twice (rapid triggers coalesce)
    - a key being processed is never handed out again until ``done()``;
      triggers that arrive meanwhile re-queue it once it is released
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._cond = Condition(self.lock)
        self._queue: deque[Key] = deque()
        self._dirty: set[Key] = set()  # waiting to be processed
        self._processing: set[Key] = set()
        self._timers: list[Timer] = []
        self._shutdown = False

    def __len__(self) -> int:
        with self.lock:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self.lock:
            return self._shutdown

    def add(self, key: Key) -> None:
        with self._cond:
            if self._shutdown or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: Key, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        timer = Timer(delay_s, self.add, args=(key,))
        timer.daemon = True
        with self.lock:
            if self._shutdown:
                return
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def get(self, timeout: float | None = None) -> Key | None:
        """Block until a key is available. Returns None on shutdown or timeout."""
        with self._cond:
            while not self._queue and not self._shutdown:
                if not self._cond.wait(timeout):
                    return None
            if self._shutdown:
                return None
            key = self._queue.popleft()
            self._dirty.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: Key) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutdown:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            timers, self._timers = self._timers, []
            self._cond.notify_all()
        for t in timers:
            t.cancel()
