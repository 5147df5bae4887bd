from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable

from offmark.services.local_store import BookmarkRecord, LocalRecordStore, StorageError
from offmark.services.reachability import ReachabilityCache
from offmark.services.remote import RemoteClient, RemoteError


SYNC_IDLE = "idle"
SYNC_PENDING = "pending"
SYNC_SYNCING = "syncing"
SYNC_SUCCESS = "success"
SYNC_ERROR = "error"

UNREACHABLE_MESSAGE = "Server not reachable. Cannot sync."


@dataclass(frozen=True)
class SyncState:
    kind: str = SYNC_IDLE
    count: int = 0
    status: str | None = None
    synced_count: int = 0
    failed_count: int = 0
    message: str | None = None

    @classmethod
    def idle(cls) -> SyncState:
        return cls()

    @classmethod
    def pending(cls, count: int) -> SyncState:
        return cls(kind=SYNC_PENDING, count=count)

    @classmethod
    def syncing(cls, count: int, status: str | None = None) -> SyncState:
        return cls(kind=SYNC_SYNCING, count=count, status=status)

    @classmethod
    def success(cls, synced_count: int) -> SyncState:
        return cls(kind=SYNC_SUCCESS, synced_count=synced_count)

    @classmethod
    def error(
        cls, message: str, synced_count: int = 0, failed_count: int = 0
    ) -> SyncState:
        return cls(
            kind=SYNC_ERROR,
            message=message,
            synced_count=synced_count,
            failed_count=failed_count,
        )

    @property
    def is_syncing(self) -> bool:
        return self.kind == SYNC_SYNCING

    @property
    def is_terminal(self) -> bool:
        return self.kind in {SYNC_SUCCESS, SYNC_ERROR}

    def as_dict(self):
        payload = asdict(self)
        payload["is_syncing"] = self.is_syncing
        return payload


@dataclass(frozen=True)
class SyncResult:
    synced_count: int
    failed_count: int
    skipped_count: int = 0
    held_count: int = 0


class SyncOrchestrator:
    def __init__(
        self,
        store: LocalRecordStore,
        reachability: ReachabilityCache,
        remote: RemoteClient,
        tasks,
        display_seconds: float = 3.0,
        max_attempts: int = 0,
        held_ids: Callable[[], set[str]] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.reachability = reachability
        self.remote = remote
        self.tasks = tasks
        self.display_seconds = display_seconds
        self.max_attempts = max_attempts
        self.held_ids = held_ids
        self.logger = logger or logging.getLogger(__name__)

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState()
        self._generation = 0
        self._revert_job: str | None = None
        self._listeners: list[Callable[[SyncState], None]] = []

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def subscribe(self, callback: Callable[[SyncState], None]) -> None:
        with self._state_lock:
            self._listeners.append(callback)

    def refresh(self) -> SyncState:
        """Recompute idle/pending from the store unless a run owns the state."""
        current = self.state
        if self.is_running or current.is_terminal:
            return current
        self._transition(self._resting_state())
        return self.state

    def trigger_sync(self) -> bool:
        if self.is_running:
            self.logger.debug("Sync already in progress, ignoring trigger")
            return False
        worker = threading.Thread(
            target=self.run_sync,
            daemon=True,
            name="offline-sync",
        )
        worker.start()
        return True

    def run_sync(self) -> SyncResult | None:
        if not self._run_lock.acquire(blocking=False):
            self.logger.info("Sync already in progress, skipping second pass")
            return None
        try:
            return self._run()
        except Exception as exc:
            self.logger.exception("Offline sync failed")
            self._finish(SyncState.error(f"Sync failed: {exc}"))
            return None
        finally:
            self._run_lock.release()

    def _run(self) -> SyncResult | None:
        if not self.reachability.check_reachable():
            self.logger.info("Skipping sync, server not reachable")
            self._finish(SyncState.error(UNREACHABLE_MESSAGE))
            return None

        queued = self.store.list_pending_bookmarks(max_attempts=self.max_attempts)
        skipped = len(self.store.list_dead_letters(self.max_attempts))
        held = self._held()
        pending = [record for record in queued if record.identity not in held]
        held_count = len(queued) - len(pending)
        if held_count:
            self.logger.info(
                "Holding back %s bookmarks with a pending delete", held_count
            )
        if not pending:
            self._finish(SyncState.success(0))
            return SyncResult(
                synced_count=0,
                failed_count=0,
                skipped_count=skipped,
                held_count=held_count,
            )

        total = len(pending)
        self._transition(SyncState.pending(total))
        self._transition(SyncState.syncing(total))
        self.logger.info("Syncing %s offline bookmarks", total)

        synced = 0
        failed = 0
        for record in pending:
            # A delete may have started after the queue was read.
            if record.identity in self._held():
                held_count += 1
                continue
            if self._sync_record(record):
                synced += 1
                self._transition(
                    SyncState.syncing(total, f"Synced {synced} bookmarks...")
                )
            else:
                failed += 1

        if failed == 0:
            final = SyncState.success(synced)
        else:
            final = SyncState.error(
                f"Synced {synced}, failed {failed} bookmarks",
                synced_count=synced,
                failed_count=failed,
            )
        self.logger.info("Offline sync finished: %s synced, %s failed", synced, failed)
        self._finish(final)
        return SyncResult(
            synced_count=synced,
            failed_count=failed,
            skipped_count=skipped,
            held_count=held_count,
        )

    def _sync_record(self, record: BookmarkRecord) -> bool:
        try:
            remote_id = self.remote.create_record(
                record.url, record.title, list(record.tags)
            )
        except RemoteError as exc:
            self.logger.warning("Failed to sync bookmark %s: %s", record.url, exc)
            self._record_failure(record, str(exc))
            return False

        try:
            self.store.delete_bookmark(record.identity)
        except StorageError as exc:
            self.logger.warning(
                "Bookmark %s synced as %s but stays queued locally: %s",
                record.url,
                remote_id,
                exc,
            )
            return False
        return True

    def _held(self) -> set[str]:
        if self.held_ids is None:
            return set()
        return set(self.held_ids())

    def _record_failure(self, record: BookmarkRecord, error: str) -> None:
        try:
            attempts = self.store.mark_sync_failed(record.identity, error)
        except StorageError as exc:
            self.logger.warning(
                "Could not record sync failure for %s: %s", record.url, exc
            )
            return
        if self.max_attempts > 0 and attempts and attempts >= self.max_attempts:
            self.logger.warning(
                "Bookmark %s reached %s failed attempts, moving to dead letters",
                record.url,
                attempts,
            )

    def _resting_state(self) -> SyncState:
        remaining = self.store.count_pending(max_attempts=self.max_attempts)
        if remaining:
            return SyncState.pending(remaining)
        return SyncState.idle()

    def _finish(self, state: SyncState) -> None:
        generation = self._transition(state)
        job_id = self.tasks.schedule(self.display_seconds, self._revert, generation)
        with self._state_lock:
            if self._generation == generation:
                self._revert_job = job_id
                return
        # Superseded while scheduling.
        self.tasks.cancel(job_id)

    def _revert(self, generation: int) -> None:
        try:
            resting = self._resting_state()
        except StorageError as exc:
            self.logger.warning("Could not count offline bookmarks: %s", exc)
            resting = SyncState.idle()
        self._transition(resting, expected_generation=generation)

    def _transition(
        self, state: SyncState, expected_generation: int | None = None
    ) -> int:
        with self._state_lock:
            if (
                expected_generation is not None
                and expected_generation != self._generation
            ):
                return self._generation
            self._state = state
            self._generation += 1
            generation = self._generation
            stale_job, self._revert_job = self._revert_job, None
            listeners = list(self._listeners)

        if stale_job:
            self.tasks.cancel(stale_job)
        for callback in listeners:
            try:
                callback(state)
            except Exception:
                self.logger.exception("Sync state listener failed")
        return generation
