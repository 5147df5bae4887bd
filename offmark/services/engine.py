from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import partial

from flask import Flask

from offmark.jobs.scheduler import SchedulerTaskRunner
from offmark.services.common import parse_tags, validate_url
from offmark.services.labels import LabelsRepository
from offmark.services.local_store import BookmarkRecord, LocalRecordStore, StorageError
from offmark.services.orchestrator import SyncOrchestrator, SyncState
from offmark.services.pending_deletes import PendingMutationTracker
from offmark.services.reachability import ReachabilityCache, ReachabilityProbe
from offmark.services.remote import (
    Label,
    RemoteClient,
    RemoteUnavailableError,
)


SAVE_CREATED = "created"
SAVE_QUEUED = "queued"


@dataclass
class SaveOutcome:
    status: str
    remote_id: str | None = None
    record: BookmarkRecord | None = None

    def as_dict(self):
        return {
            "status": self.status,
            "remote_id": self.remote_id,
            "bookmark": self.record.as_dict() if self.record else None,
        }


@dataclass
class BookmarkListing:
    items: list[dict] = field(default_factory=list)
    offline: bool = False

    def as_dict(self):
        return {"items": self.items, "offline": self.offline}


class OfflineEngine:
    """Operations the UI and CLI layers call into."""

    def __init__(
        self,
        store: LocalRecordStore,
        remote: RemoteClient,
        reachability: ReachabilityCache,
        orchestrator: SyncOrchestrator,
        tracker: PendingMutationTracker,
        labels: LabelsRepository,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.remote = remote
        self.reachability = reachability
        self.orchestrator = orchestrator
        self.tracker = tracker
        self.labels = labels
        self.logger = logger or logging.getLogger(__name__)

    def is_server_reachable(self) -> bool:
        return self.reachability.check_reachable()

    def get_offline_pending_count(self) -> int:
        return self.store.count_pending(max_attempts=self.orchestrator.max_attempts)

    def sync_state(self) -> SyncState:
        return self.orchestrator.state

    def trigger_sync(self) -> bool:
        return self.orchestrator.trigger_sync()

    def on_server_reachable(self) -> None:
        self.logger.info("Server became reachable, starting offline sync")
        self.trigger_sync()

    def save_bookmark_offline(self, url: str, title: str = "", tags=None):
        url = validate_url(url)
        record = self.store.upsert_bookmark(url, title or "", parse_tags(tags))
        self._refresh_sync_state()
        return record

    def save_bookmark(self, url: str, title: str = "", tags=None) -> SaveOutcome:
        url = validate_url(url)
        tags = parse_tags(tags)
        self._remember_tags(tags)

        if self.is_server_reachable():
            try:
                remote_id = self.remote.create_record(url, title or "", tags)
                return SaveOutcome(status=SAVE_CREATED, remote_id=remote_id)
            except RemoteUnavailableError as exc:
                self.logger.warning(
                    "Server dropped while saving %s, queueing offline: %s", url, exc
                )
                self.reachability.invalidate()

        record = self.save_bookmark_offline(url, title, tags)
        return SaveOutcome(status=SAVE_QUEUED, record=record)

    def list_bookmarks(self) -> BookmarkListing:
        listing = BookmarkListing(offline=not self.is_server_reachable())
        if not listing.offline:
            try:
                remote_items = self.remote.list_bookmarks()
            except RemoteUnavailableError as exc:
                self.logger.warning("Could not list remote bookmarks: %s", exc)
                self.reachability.invalidate()
                listing.offline = True
                remote_items = []

            for item in remote_items:
                listing.items.append(
                    {
                        "id": item.id,
                        "url": item.url,
                        "title": item.title,
                        "tags": item.labels,
                        "created_at": (
                            item.created.isoformat() if item.created else None
                        ),
                        "read_progress": self._merge_progress(
                            item.id, item.read_progress
                        ),
                        "pending_sync": False,
                    }
                )

        for record in self.store.list_pending_bookmarks():
            payload = record.as_dict()
            payload["read_progress"] = 0
            payload["pending_sync"] = True
            listing.items.append(payload)

        listing.items = self.tracker.visible(listing.items, key=lambda row: row["id"])
        return listing

    def begin_delete_with_undo(self, item_id: str) -> str:
        if self.store.get_bookmark(item_id):
            commit = partial(self._delete_local, item_id)
        else:
            commit = partial(self.remote.delete_record, item_id)
        return self.tracker.begin_delete(item_id, commit)

    def cancel_delete(self, tracking_id: str) -> bool:
        return self.tracker.cancel(tracking_id)

    def pending_delete(self, tracking_id: str) -> dict:
        return self.tracker.snapshot(tracking_id)

    def refresh_labels(self) -> list[Label]:
        return self.labels.refresh_labels()

    def create_label(self, name: str) -> bool:
        return self.labels.create_label(name)

    def list_labels(self):
        return self.labels.list_local_labels()

    def record_read_progress(self, bookmark_id: str, value: int) -> int:
        return self.store.merge_read_progress(bookmark_id, value)

    def _delete_local(self, identity: str) -> None:
        self.store.delete_bookmark(identity)
        self._refresh_sync_state()

    def _refresh_sync_state(self) -> None:
        try:
            self.orchestrator.refresh()
        except StorageError as exc:
            self.logger.warning("Could not refresh sync state: %s", exc)

    def _remember_tags(self, tags: list[str]) -> None:
        if not tags:
            return
        try:
            self.store.upsert_tags(tags, usage_counts={name: 1 for name in tags})
        except StorageError as exc:
            self.logger.warning("Could not cache labels locally: %s", exc)

    def _merge_progress(self, bookmark_id: str, remote_value: int) -> int:
        try:
            return self.store.merge_read_progress(bookmark_id, remote_value)
        except StorageError as exc:
            self.logger.warning(
                "Could not merge read progress for %s: %s", bookmark_id, exc
            )
            return remote_value


def build_engine(
    app: Flask,
    remote: RemoteClient | None = None,
    tasks=None,
    clock=time.monotonic,
) -> OfflineEngine:
    config = app.config
    logger = app.logger
    remote = remote or RemoteClient(
        config["REMOTE_BASE_URL"],
        token=config.get("REMOTE_API_TOKEN"),
        timeout=config["REMOTE_TIMEOUT"],
        probe_timeout=config["PROBE_TIMEOUT"],
    )
    tasks = tasks or SchedulerTaskRunner()

    store = LocalRecordStore(app, logger=logger)
    reachability = ReachabilityCache(
        ReachabilityProbe(remote, logger=logger),
        cache_ttl=config["REACHABILITY_CACHE_TTL_SECONDS"],
        rate_limit_interval=config["REACHABILITY_RATE_LIMIT_SECONDS"],
        clock=clock,
        logger=logger,
    )
    tracker = PendingMutationTracker(
        tasks,
        window_seconds=config["UNDO_WINDOW_SECONDS"],
        retention_seconds=config["UNDO_RESULT_RETENTION_SECONDS"],
        clock=clock,
        logger=logger,
    )
    orchestrator = SyncOrchestrator(
        store,
        reachability,
        remote,
        tasks,
        display_seconds=config["SYNC_STATUS_DISPLAY_SECONDS"],
        max_attempts=config["SYNC_MAX_ATTEMPTS"],
        held_ids=tracker.hidden_ids,
        logger=logger,
    )
    engine = OfflineEngine(
        store=store,
        remote=remote,
        reachability=reachability,
        orchestrator=orchestrator,
        tracker=tracker,
        labels=LabelsRepository(remote, store, logger=logger),
        logger=logger,
    )
    if config.get("AUTO_SYNC_ON_RECONNECT"):
        reachability.subscribe(engine.on_server_reachable)

    app.extensions["offmark"] = engine
    return engine
