"""Applying fetched data and local changes to the record cache.

All writes go through :meth:`DiffApplier.batch`: the cache transaction makes a
batch atomic, and dependent views are only told about touched records once the
batch has committed.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from mail_sync.cache.store import CacheEntry, RecordCache
from mail_sync.exceptions import UnexpectedResponseError, UnknownRecordError
from mail_sync.jmap.parsing import MessagesSet
from mail_sync.models.message import MESSAGE_TYPE, PropertyTier
from mail_sync.models.results import CommitResult
from mail_sync.models.status import RecordStatus, StatusEvent, transition
from mail_sync.sync.mutations import PendingChanges
from mail_sync.sync.views import ViewRegistry

logger = structlog.get_logger()


class DiffApplier:
    """Mutates the cache for one entity type and pushes view invalidation."""

    def __init__(
        self,
        cache: RecordCache,
        views: ViewRegistry,
        type_name: str = MESSAGE_TYPE,
    ) -> None:
        self._cache = cache
        self._views = views
        self._type_name = type_name
        self._touched: set[str] | None = None
        self._invalidate_views = False

    @contextmanager
    def batch(self) -> Iterator[DiffApplier]:
        """Apply everything inside the block atomically.

        Nested batches join the outermost one.
        """
        if self._touched is not None:
            yield self
            return

        self._touched = set()
        self._invalidate_views = False
        try:
            with self._cache.transaction():
                yield self
            touched, invalidate_views = self._touched, self._invalidate_views
        finally:
            self._touched = None
            self._invalidate_views = False

        if invalidate_views:
            self._views.invalidate_all()
        for record_id in touched:
            self._views.track(record_id)

    def apply_records(self, records: Iterable[dict[str, Any]], tier: PropertyTier) -> list[str]:
        """Upsert full records of one property tier.

        Header records make the record READY. Detail records only mark the
        details tier READY; the header status is left as it is.

        Returns:
            Ids of the stored records.
        """
        stored: list[str] = []
        with self.batch():
            for record in records:
                record_id = record.get("id")
                if not isinstance(record_id, str):
                    raise UnexpectedResponseError(f"Record without id: {record!r}")
                properties = {k: v for k, v in record.items() if k != "id"}
                status = self._status(record_id)

                if tier is PropertyTier.HEADERS:
                    self._cache.put(
                        self._type_name,
                        record_id,
                        properties,
                        transition(status, StatusEvent.RECORDS_FETCHED),
                    )
                else:
                    self._cache.put(
                        self._type_name,
                        record_id,
                        properties,
                        status,
                        details_status=RecordStatus.READY,
                    )
                self._touch(record_id)
                stored.append(record_id)
        return stored

    def apply_partial(self, updates: dict[str, dict[str, Any]]) -> list[str]:
        """Overlay partial properties onto existing entries.

        Properties missing from an update keep their cached value; a property
        present with a null value is set to null.

        Returns:
            Ids that were merged.
        """
        merged: list[str] = []
        with self.batch():
            for record_id, properties in updates.items():
                properties = {k: v for k, v in properties.items() if k != "id"}
                status = transition(self._status(record_id), StatusEvent.PROPERTIES_MERGED)
                self._cache.put(self._type_name, record_id, properties, status)
                self._touch(record_id)
                merged.append(record_id)
        return merged

    def apply_changes(
        self,
        changed: Iterable[str],
        removed: Iterable[str],
        fetched: Iterable[str] = (),
        partial: dict[str, dict[str, Any]] | None = None,
    ) -> tuple[list[str], list[str]]:
        """Apply a change triple reported by the server.

        Changed ids with partial properties are merged; changed ids without a
        body (and not among ``fetched``) only become obsolete. Records that are
        not cached are ignored; they load on first access.

        Returns:
            The ids made obsolete and the ids removed.
        """
        partial = partial or {}
        skip = set(fetched) | set(partial)
        obsoleted: list[str] = []
        with self.batch():
            if partial:
                self.apply_partial(partial)
            for record_id in changed:
                if record_id in skip:
                    continue
                entry = self._cache.get(self._type_name, record_id)
                if entry is None:
                    continue
                status = transition(entry.status, StatusEvent.CHANGED_ON_SERVER)
                if status is not entry.status:
                    self._cache.put(self._type_name, record_id, {}, status)
                    self._touch(record_id)
                    obsoleted.append(record_id)
            removed_ids = self.remove(removed)
        return obsoleted, removed_ids

    def remove(self, ids: Iterable[str]) -> list[str]:
        removed: list[str] = []
        with self.batch():
            for record_id in ids:
                if self._cache.remove(self._type_name, record_id) is not None:
                    self._touch(record_id)
                    removed.append(record_id)
        return removed

    def mark_loading(self, ids: Iterable[str]) -> None:
        """Mark records without data as loading.

        PARTIAL records keep their status and merged properties while their
        headers load.
        """
        with self.batch():
            for record_id in ids:
                status = self._status(record_id)
                if status is RecordStatus.EMPTY:
                    self._cache.put(
                        self._type_name,
                        record_id,
                        {},
                        transition(status, StatusEvent.FETCH_STARTED),
                    )

    def mark_details_loading(self, ids: Iterable[str]) -> None:
        with self.batch():
            for record_id in ids:
                self._cache.put(
                    self._type_name,
                    record_id,
                    {},
                    self._status(record_id),
                    details_status=RecordStatus.LOADING,
                )

    def details_failed(self, ids: Iterable[str]) -> None:
        """Return detail tiers still loading to EMPTY so they can be fetched again."""
        with self.batch():
            for record_id in ids:
                entry = self._cache.get(self._type_name, record_id)
                if entry is not None and entry.details_status is RecordStatus.LOADING:
                    self._cache.put(
                        self._type_name,
                        record_id,
                        {},
                        entry.status,
                        details_status=RecordStatus.EMPTY,
                    )

    def fetch_failed(self, ids: Iterable[str]) -> None:
        """Return records still loading to EMPTY so they can be fetched again."""
        with self.batch():
            for record_id in ids:
                if self._status(record_id) is RecordStatus.LOADING:
                    self._cache.put(
                        self._type_name,
                        record_id,
                        {},
                        transition(RecordStatus.LOADING, StatusEvent.FETCH_FAILED),
                    )

    def invalidate_all(self) -> list[str]:
        """Mark every cached record obsolete and schedule every view for rebuild."""
        with self.batch():
            obsoleted = self._cache.mark_obsolete(
                self._type_name, self._cache.get_all(self._type_name)
            )
            self.invalidate_views()
        return obsoleted

    def invalidate_views(self) -> None:
        """Schedule every view for rebuild once the current batch commits."""
        if self._touched is None:
            self._views.invalidate_all()
        else:
            self._invalidate_views = True

    # Local changes

    def create_local(self, local_id: str, properties: dict[str, Any]) -> None:
        with self.batch():
            self._cache.put(
                self._type_name,
                local_id,
                properties,
                transition(RecordStatus.EMPTY, StatusEvent.CREATED_LOCALLY),
                details_status=RecordStatus.READY,
            )
            self._touch(local_id)

    def update_local(self, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply a local update and return the values it replaced."""
        entry = self._require(record_id)
        previous = {k: entry.properties.get(k) for k in changes}
        with self.batch():
            self._cache.put(self._type_name, record_id, changes, entry.status)
            self._touch(record_id)
        return previous

    def destroy_local(self, record_id: str) -> CacheEntry:
        entry = self._require(record_id)
        with self.batch():
            self._cache.remove(self._type_name, record_id)
            self._touch(record_id)
        return entry

    def apply_commit(self, result: MessagesSet, changes: PendingChanges) -> CommitResult:
        """Reconcile optimistically applied changes with the server's answer."""
        outcome = CommitResult(updated=list(result.updated), destroyed=list(result.destroyed))
        with self.batch():
            for local_id, server_properties in result.created.items():
                server_id = server_properties.get("id")
                if not isinstance(server_id, str):
                    raise UnexpectedResponseError(f"Created record {local_id} has no id")
                outcome.created[local_id] = server_id
                entry = self._cache.remove(self._type_name, local_id)
                if entry is None:
                    # Destroyed locally while the create was in flight; the
                    # destroy is sent for the server id on the next commit.
                    continue
                properties = {
                    **entry.properties,
                    **{k: v for k, v in server_properties.items() if k != "id"},
                }
                self._cache.put(
                    self._type_name,
                    server_id,
                    properties,
                    transition(entry.status, StatusEvent.COMMIT_CONFIRMED),
                    details_status=RecordStatus.READY,
                )
                self._touch(local_id)
                self._touch(server_id)

            for local_id in result.not_created:
                if self._cache.remove(self._type_name, local_id) is not None:
                    self._touch(local_id)
                outcome.rejected.append(local_id)

            for record_id in result.not_updated:
                entry = self._cache.get(self._type_name, record_id)
                originals = changes.originals.get(record_id)
                if entry is not None and originals:
                    self._cache.put(self._type_name, record_id, originals, entry.status)
                    self._touch(record_id)
                outcome.rejected.append(record_id)

            for record_id in result.not_destroyed:
                snapshot = changes.destroyed.get(record_id)
                if snapshot is not None:
                    self._cache.put(
                        self._type_name,
                        record_id,
                        snapshot.properties,
                        snapshot.status,
                        details_status=snapshot.details_status,
                    )
                    self._touch(record_id)
                outcome.rejected.append(record_id)

        if outcome.rejected:
            logger.warning("commit_partially_rejected", rejected=outcome.rejected)
        return outcome

    def _status(self, record_id: str) -> RecordStatus:
        return self._cache.get_status(self._type_name, record_id)

    def _require(self, record_id: str) -> CacheEntry:
        entry = self._cache.get(self._type_name, record_id)
        if entry is None:
            raise UnknownRecordError(f"No cached {self._type_name} with id {record_id}")
        return entry

    def _touch(self, record_id: str) -> None:
        if self._touched is not None:
            self._touched.add(record_id)
