from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from offmark.services.remote import RemoteClient


class ReachabilityProbe:
    def __init__(self, remote: RemoteClient, logger: logging.Logger | None = None):
        self.remote = remote
        self.logger = logger or logging.getLogger(__name__)

    def __call__(self) -> bool:
        try:
            return bool(self.remote.health_check())
        except Exception as exc:
            self.logger.warning("Server reachability probe failed: %s", exc)
            return False


class ReachabilityCache:
    def __init__(
        self,
        probe: Callable[[], bool],
        cache_ttl: float = 30.0,
        rate_limit_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self._probe = probe
        self.cache_ttl = cache_ttl
        self.rate_limit_interval = rate_limit_interval
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._listeners_lock = threading.Lock()
        self._listeners: list[Callable[[], None]] = []
        self.last_result: bool | None = None
        self.last_checked_at: float | None = None

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when the server becomes reachable."""
        with self._listeners_lock:
            self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def check_reachable(self) -> bool:
        became_reachable = False
        with self._lock:
            now = self._clock()
            if self.last_checked_at is not None and self.last_result is not None:
                age = now - self.last_checked_at
                if age < self.cache_ttl:
                    self.logger.debug(
                        "Server reachability from cache: %s", self.last_result
                    )
                    return self.last_result
                if age < self.rate_limit_interval:
                    self.logger.debug(
                        "Server reachability check rate limited, using %s",
                        self.last_result,
                    )
                    return self.last_result

            result = bool(self._probe())
            became_reachable = result and self.last_result is not True
            self.last_result = result
            self.last_checked_at = self._clock()
            self.logger.info("Server reachability checked: %s", result)

        if became_reachable:
            self._notify_reachable()
        return result

    def invalidate(self) -> None:
        with self._lock:
            self.last_result = None
            self.last_checked_at = None

    def snapshot(self) -> dict:
        with self._lock:
            age = None
            if self.last_checked_at is not None:
                age = round(max(0.0, self._clock() - self.last_checked_at), 3)
            return {
                "reachable": self.last_result,
                "last_checked_at": self.last_checked_at,
                "age_seconds": age,
            }

    def _notify_reachable(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback()
            except Exception:
                self.logger.exception("Reachability listener failed")
