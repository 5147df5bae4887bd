from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Iterable


DELETE_ACTIVE = "active"
DELETE_CANCELLED = "cancelled"
DELETE_COMMITTING = "committing"
DELETE_COMMITTED = "committed"
DELETE_FAILED = "failed"

FINISHED_STATES = {DELETE_CANCELLED, DELETE_COMMITTED, DELETE_FAILED}
HIDDEN_STATES = {DELETE_ACTIVE, DELETE_COMMITTING, DELETE_COMMITTED}


class UnknownTrackingIdError(KeyError):
    pass


@dataclass
class PendingDelete:
    tracking_id: str
    target_id: str
    started_at: float
    window_seconds: float
    state: str = DELETE_ACTIVE
    error: str | None = None
    finished_at: float | None = None

    @property
    def cancelled(self) -> bool:
        return self.state == DELETE_CANCELLED

    def progress(self, now: float) -> float:
        if self.window_seconds <= 0:
            return 1.0
        end = self.finished_at if self.finished_at is not None else now
        elapsed = max(0.0, end - self.started_at)
        return min(1.0, elapsed / self.window_seconds)

    def as_dict(self, now: float):
        return {
            "tracking_id": self.tracking_id,
            "target_id": self.target_id,
            "state": self.state,
            "progress": round(self.progress(now), 3),
            "cancelled": self.cancelled,
            "error": self.error,
        }


class PendingMutationTracker:
    def __init__(
        self,
        tasks,
        window_seconds: float = 3.0,
        retention_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self.tasks = tasks
        self.window_seconds = window_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._items: dict[str, PendingDelete] = {}
        self._callbacks: dict[str, tuple[Callable[[], object], Callable | None]] = {}
        self._jobs: dict[str, str] = {}

    def begin_delete(
        self,
        target_id: str,
        commit: Callable[[], object],
        on_restore: Callable[[str, Exception], None] | None = None,
    ) -> str:
        with self._lock:
            for item in self._items.values():
                if item.target_id == target_id and item.state == DELETE_ACTIVE:
                    return item.tracking_id

            tracking_id = uuid.uuid4().hex
            self._items[tracking_id] = PendingDelete(
                tracking_id=tracking_id,
                target_id=target_id,
                started_at=self._clock(),
                window_seconds=self.window_seconds,
            )
            self._callbacks[tracking_id] = (commit, on_restore)
            self._jobs[tracking_id] = self.tasks.schedule(
                self.window_seconds, self._commit, tracking_id
            )

        self.logger.info("Delete of %s pending for %ss", target_id, self.window_seconds)
        return tracking_id

    def cancel(self, tracking_id: str) -> bool:
        with self._lock:
            item = self._items.get(tracking_id)
            if not item or item.state != DELETE_ACTIVE:
                return False
            item.state = DELETE_CANCELLED
            item.finished_at = self._clock()
            self._callbacks.pop(tracking_id, None)
            job_id = self._jobs.pop(tracking_id, None)

        if job_id:
            self.tasks.cancel(job_id)
        self.logger.info("Delete of %s cancelled", item.target_id)
        self._schedule_forget(tracking_id)
        return True

    def get(self, tracking_id: str) -> PendingDelete:
        with self._lock:
            item = self._items.get(tracking_id)
            if not item:
                raise UnknownTrackingIdError(tracking_id)
            return replace(item)

    def snapshot(self, tracking_id: str) -> dict:
        return self.get(tracking_id).as_dict(self._clock())

    def hidden_ids(self) -> set[str]:
        with self._lock:
            return {
                item.target_id
                for item in self._items.values()
                if item.state in HIDDEN_STATES
            }

    def visible(self, items: Iterable, key: Callable = lambda item: item.id) -> list:
        hidden = self.hidden_ids()
        return [item for item in items if key(item) not in hidden]

    def _commit(self, tracking_id: str) -> None:
        with self._lock:
            item = self._items.get(tracking_id)
            if not item or item.state != DELETE_ACTIVE:
                return
            item.state = DELETE_COMMITTING
            self._jobs.pop(tracking_id, None)
            commit, on_restore = self._callbacks.pop(tracking_id)

        try:
            commit()
        except Exception as exc:
            with self._lock:
                item.state = DELETE_FAILED
                item.error = str(exc) or exc.__class__.__name__
                item.finished_at = self._clock()
            self.logger.warning(
                "Delete of %s failed, restoring: %s", item.target_id, exc
            )
            if on_restore:
                try:
                    on_restore(item.target_id, exc)
                except Exception:
                    self.logger.exception("Restore callback failed")
            self._schedule_forget(tracking_id)
            return

        with self._lock:
            item.state = DELETE_COMMITTED
            item.finished_at = self._clock()
        self.logger.info("Delete of %s committed", item.target_id)
        self._schedule_forget(tracking_id)

    def _schedule_forget(self, tracking_id: str) -> None:
        self.tasks.schedule(self.retention_seconds, self._forget, tracking_id)

    def _forget(self, tracking_id: str) -> None:
        with self._lock:
            item = self._items.get(tracking_id)
            if item and item.state in FINISHED_STATES:
                del self._items[tracking_id]
