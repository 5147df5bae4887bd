from __future__ import annotations

import logging

from offmark.services.local_store import LocalRecordStore, StorageError, TagRecord
from offmark.services.remote import Label, RemoteClient


class LabelsRepository:
    def __init__(
        self,
        remote: RemoteClient,
        store: LocalRecordStore,
        logger: logging.Logger | None = None,
    ):
        self.remote = remote
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def refresh_labels(self) -> list[Label]:
        """Remote failures propagate; the local cache merge is best effort."""
        labels = self.remote.list_labels()
        try:
            inserted = self.store.upsert_tags(
                [label.name for label in labels],
                usage_counts={label.name: label.count for label in labels},
            )
            self.logger.debug("Merged %s new labels into the local cache", inserted)
        except StorageError as exc:
            self.logger.warning("Could not cache remote labels: %s", exc)
        return labels

    def create_label(self, name: str) -> bool:
        return self.store.add_tag(name)

    def list_local_labels(self) -> list[TagRecord]:
        return self.store.list_tags()
