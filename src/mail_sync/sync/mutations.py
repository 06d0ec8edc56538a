"""Bookkeeping for local changes that have not been committed yet."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from mail_sync.cache.store import CacheEntry
from mail_sync.models.status import RecordStatus, StatusEvent, transition


@dataclass
class PendingChanges:
    """Optimistically applied local changes, grouped as a ``setMessages`` call.

    ``originals`` holds, per updated id, the values the changed properties had
    before the first local update so a rejected update can be rolled back.
    ``destroyed`` holds the removed entries so a rejected destroy can be undone.
    """

    created: dict[str, dict[str, Any]] = field(default_factory=dict)
    updated: dict[str, dict[str, Any]] = field(default_factory=dict)
    destroyed: dict[str, CacheEntry] = field(default_factory=dict)
    originals: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.destroyed)

    def to_arguments(self) -> dict[str, Any]:
        arguments: dict[str, Any] = {}
        if self.created:
            arguments["create"] = {k: dict(v) for k, v in self.created.items()}
        if self.updated:
            arguments["update"] = {k: dict(v) for k, v in self.updated.items()}
        if self.destroyed:
            arguments["destroy"] = list(self.destroyed)
        return arguments

    def rekey(self, local_id: str, server_id: str, server_properties: dict[str, Any]) -> None:
        """Point changes made to a local id at the id the server assigned it.

        Used for changes made while the commit creating the record was in
        flight.
        """
        if local_id in self.updated:
            self.updated[server_id] = self.updated.pop(local_id)
        if local_id in self.originals:
            self.originals[server_id] = self.originals.pop(local_id)

        snapshot = self.destroyed.pop(local_id, None)
        if snapshot is not None:
            self.destroyed[server_id] = replace(
                snapshot,
                id=server_id,
                properties={
                    **snapshot.properties,
                    **{k: v for k, v in server_properties.items() if k != "id"},
                },
                status=transition(snapshot.status, StatusEvent.COMMIT_CONFIRMED),
                details_status=RecordStatus.READY,
            )

    def merged_after(self, older: PendingChanges) -> PendingChanges:
        """Combine with an older set of changes; this set's changes win.

        A record created in ``older`` and destroyed in this set never reached
        the server, so both changes are dropped.
        """
        updated = {k: dict(v) for k, v in older.updated.items()}
        for record_id, changes in self.updated.items():
            updated.setdefault(record_id, {}).update(changes)

        created = {k: dict(v) for k, v in {**older.created, **self.created}.items()}
        destroyed = {**older.destroyed, **self.destroyed}
        for record_id in [r for r in destroyed if r in created]:
            del created[record_id]
            del destroyed[record_id]
            updated.pop(record_id, None)
        for record_id in list(updated):
            if record_id in destroyed:
                del updated[record_id]
            elif record_id in created:
                created[record_id].update(updated.pop(record_id))

        return PendingChanges(
            created=created,
            updated=updated,
            destroyed=destroyed,
            originals={**self.originals, **older.originals},
        )
