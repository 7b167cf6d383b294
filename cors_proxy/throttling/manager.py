"""
RateLimiter: Per-client fixed-window request throttling.
"""

import math
import threading
import time
from typing import Any, Dict, Optional


class RateWindow:
    """Tracks the request count of one client in its current window."""

    def __init__(self, count=0, reset_at=0.0):
        self.count = count
        self.reset_at = reset_at


class RateLimiter:
    """Fixed-window rate limiter keyed by client identifier."""

    def __init__(self, throttling_config: Optional[dict] = None):
        """
        throttling_config example:
        {
            "window_seconds": 10,
            "max_requests": 10,
            "max_tracked_clients": 10000
        }
        """
        self.config = throttling_config or {}
        self.window_seconds = self.config.get("window_seconds", 10)
        self.max_requests = self.config.get("max_requests", 10)
        self.max_tracked_clients = self.config.get("max_tracked_clients", 10000)
        self.lock = threading.Lock()
        self.windows: Dict[str, RateWindow] = {}
        self._stats = {"checks": 0, "rejected": 0, "swept": 0}

    def is_over_limit(self, client_id: str) -> bool:
        """Count a request from ``client_id`` and report whether it exceeds the limit.

        The first request after a window expires starts a fresh window with a
        count of 1. Exactly ``max_requests`` requests per window are allowed.
        """
        with self.lock:
            now = time.time()
            window = self.windows.get(client_id)
            if window is None:
                if len(self.windows) >= self.max_tracked_clients:
                    self._sweep_expired(now)
                window = RateWindow(count=0, reset_at=now + self.window_seconds)
                self.windows[client_id] = window

            if now > window.reset_at:
                window.count = 1
                window.reset_at = now + self.window_seconds
            else:
                window.count += 1

            self._stats["checks"] += 1
            over = window.count > self.max_requests
            if over:
                self._stats["rejected"] += 1
            return over

    def get_retry_after(self, client_id: str) -> int:
        """Seconds until the client's current window resets (at least 1)."""
        with self.lock:
            window = self.windows.get(client_id)
            if window is None:
                return 1
            return max(1, int(math.ceil(window.reset_at - time.time())))

    def sweep_expired(self) -> int:
        """Drop windows that have already expired. Returns the number removed."""
        with self.lock:
            return self._sweep_expired(time.time())

    def _sweep_expired(self, now: float) -> int:
        # Active windows stay even when the table is over its bound
        expired = [client_id for client_id, window in self.windows.items() if now > window.reset_at]
        for client_id in expired:
            del self.windows[client_id]
        self._stats["swept"] += len(expired)
        return len(expired)

    def reset_client(self, client_id: str):
        """Forget the window for a client (for testing/admin)."""
        with self.lock:
            self.windows.pop(client_id, None)

    def get_state(self, client_id: str) -> Optional[RateWindow]:
        """Get a copy of the current window for a client, if one exists."""
        with self.lock:
            window = self.windows.get(client_id)
            if window is None:
                return None
            return RateWindow(count=window.count, reset_at=window.reset_at)

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            stats: Dict[str, Any] = dict(self._stats)
            stats["tracked_clients"] = len(self.windows)
            stats["window_seconds"] = self.window_seconds
            stats["max_requests"] = self.max_requests
            return stats
