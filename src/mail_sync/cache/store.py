"""In-memory record cache.

The cache holds one entry per record id and entity type, each tagged with a
status, plus one change cursor per type. Writes made inside
:meth:`RecordCache.transaction` are applied fully or not at all.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from mail_sync.models.status import RecordStatus, StatusEvent, transition

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    """A cached record: its raw properties and the status of each tier."""

    id: str
    properties: dict[str, Any] = field(default_factory=dict)
    status: RecordStatus = RecordStatus.EMPTY
    details_status: RecordStatus = RecordStatus.EMPTY


@dataclass(frozen=True)
class _Snapshot:
    records: dict[str, dict[str, CacheEntry]]
    cursors: dict[str, str | None]


class RecordCache:
    """Holds records and change cursors for any number of entity types."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, CacheEntry]] = {}
        self._cursors: dict[str, str | None] = {}
        self._depth = 0

    def get(self, type_name: str, record_id: str) -> CacheEntry | None:
        return self._records.get(type_name, {}).get(record_id)

    def get_status(self, type_name: str, record_id: str) -> RecordStatus:
        entry = self.get(type_name, record_id)
        return entry.status if entry is not None else RecordStatus.EMPTY

    def get_all(self, type_name: str) -> list[str]:
        return list(self._records.get(type_name, {}))

    def entries(self, type_name: str) -> list[CacheEntry]:
        return list(self._records.get(type_name, {}).values())

    def put(
        self,
        type_name: str,
        record_id: str,
        properties: dict[str, Any],
        status: RecordStatus,
        details_status: RecordStatus | None = None,
    ) -> CacheEntry:
        """Upsert a record.

        Properties are overlaid on whatever the entry already holds; keys that
        are not in ``properties`` keep their current value.

        Args:
            type_name: Entity type.
            record_id: Record id.
            properties: Properties to overlay.
            status: New status of the record.
            details_status: New status of the details tier, if it changes.

        Returns:
            The stored entry.
        """
        records = self._records.setdefault(type_name, {})
        entry = records.get(record_id)
        if entry is None:
            entry = CacheEntry(id=record_id)
            records[record_id] = entry

        entry.properties = {**entry.properties, **properties}
        entry.status = status
        if details_status is not None:
            entry.details_status = details_status
        return entry

    def remove(self, type_name: str, record_id: str) -> CacheEntry | None:
        return self._records.get(type_name, {}).pop(record_id, None)

    def mark_obsolete(self, type_name: str, ids: Iterable[str]) -> list[str]:
        """Mark records as obsolete; records without data are left alone.

        Returns:
            Ids whose status actually changed.
        """
        changed: list[str] = []
        for record_id in ids:
            entry = self.get(type_name, record_id)
            if entry is None:
                continue
            new_status = transition(entry.status, StatusEvent.INVALIDATED)
            if new_status is not entry.status:
                entry.status = new_status
                changed.append(record_id)
        return changed

    def get_cursor(self, type_name: str) -> str | None:
        return self._cursors.get(type_name)

    def set_cursor(self, type_name: str, cursor: str | None) -> None:
        previous = self._cursors.get(type_name)
        self._cursors[type_name] = cursor
        if previous != cursor:
            logger.debug("cursor_updated", type=type_name, old=previous, new=cursor)

    @contextmanager
    def transaction(self) -> Iterator[RecordCache]:
        """Group writes so they are applied fully or not at all.

        Transactions nest; only the outermost one snapshots and restores.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = self._snapshot()
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._records = snapshot.records
            self._cursors = snapshot.cursors
            logger.warning("record_cache_rolled_back")
            raise
        finally:
            self._depth = 0

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(
            records={
                type_name: {
                    record_id: replace(entry, properties=dict(entry.properties))
                    for record_id, entry in records.items()
                }
                for type_name, records in self._records.items()
            },
            cursors=dict(self._cursors),
        )
