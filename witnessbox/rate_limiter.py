"""
Login throttling for WitnessBox.

Limits repeated admin login attempts per client. State lives in an
injected throttle instance rather than a module global, and entries
expire after the lockout window so memory stays bounded.
"""

import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional


@dataclass
class ThrottleConfig:
    """Login throttle configuration."""
    max_attempts: int = 5
    lockout_seconds: float = 15 * 60


class LoginThrottle:
    """
    Sliding-window attempt counter keyed by client identifier.

    A client that has used ``max_attempts`` within ``lockout_seconds`` is
    refused until its oldest attempt falls out of the window.
    """

    def __init__(
        self,
        config: Optional[ThrottleConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize throttle.

        Args:
            config: Throttle configuration. Uses defaults if not provided.
            clock: Monotonic time source in seconds.
        """
        self.config = config or ThrottleConfig()
        self._clock = clock
        self._lock = Lock()
        self._attempts: dict[str, deque] = {}

    def allow(self, client_id: str) -> bool:
        """
        Record an attempt if the client is under the limit.

        Returns:
            False if the client is locked out (the attempt is not recorded).
        """
        with self._lock:
            now = self._clock()
            self._prune(now)

            attempts = self._attempts.setdefault(client_id, deque())
            if len(attempts) >= self.config.max_attempts:
                return False

            attempts.append(now)
            return True

    def retry_after(self, client_id: str) -> float:
        """Seconds until the client may try again (0 if not locked out)."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            attempts = self._attempts.get(client_id)
            if not attempts or len(attempts) < self.config.max_attempts:
                return 0.0
            return max(0.0, attempts[0] + self.config.lockout_seconds - now)

    def reset(self, client_id: Optional[str] = None) -> None:
        """
        Clear attempts for a client or all clients.

        Args:
            client_id: Client to reset, or None for all clients
        """
        with self._lock:
            if client_id:
                self._attempts.pop(client_id, None)
            else:
                self._attempts.clear()

    def tracked_clients(self) -> int:
        """Number of clients currently holding attempt state."""
        with self._lock:
            self._prune(self._clock())
            return len(self._attempts)

    def _prune(self, now: float) -> None:
        """Drop attempts older than the window and forget idle clients."""
        window = self.config.lockout_seconds
        for client_id in list(self._attempts):
            attempts = self._attempts[client_id]
            while attempts and now - attempts[0] > window:
                attempts.popleft()
            if not attempts:
                del self._attempts[client_id]
