"""
Per-process throttling for the credential endpoints.

Keys are ``login:<identifier>`` for `/auth/login` (username or e-mail,
lower-cased) and ``reset:<email>`` for `/auth/reset-password`; both share
one ten-minute window and the ``LOGIN_RATE_LIMIT`` budget. State lives in
memory, so each worker process counts on its own.
"""

from __future__ import annotations

import time
from collections import deque
from threading import Lock

from classifieds.errors import RateLimitedError


WINDOW_SECONDS = 10 * 60


def login_key(login: str) -> str:
    return f"login:{(login or '').strip().lower()}"


def reset_key(email: str) -> str:
    return f"reset:{(email or '').strip().lower()}"


class RateLimiter:
    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = Lock()
        self._events: dict[str, deque[float]] = {}

    def hit(self, *, key: str, limit: int, window_seconds: int = WINDOW_SECONDS, detail: str = "Too many requests") -> None:
        """
        Record one attempt for `key`, or raise `RateLimitedError` when `limit`
        attempts already fall inside the window.
        """
        now = self._clock()
        win_start = now - float(window_seconds)
        with self._lock:
            q = self._events.setdefault(key, deque())
            while q and q[0] <= win_start:
                q.popleft()
            if len(q) >= int(limit):
                raise RateLimitedError(detail)
            q.append(now)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


limiter = RateLimiter()
