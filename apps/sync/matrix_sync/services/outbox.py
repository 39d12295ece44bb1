"""In-memory outbox of local changes awaiting a flush."""

from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Any, Iterator

from matrix_sync.enums import ChangeAction, EntityType
from matrix_sync.schemas.matrix import ChangeLogEntry


class Outbox:
    """
    Append-only change log.

    Entries get monotonically increasing ids and are never deleted; a flush
    only flips `synced`. Lives in process memory only.
    """

    def __init__(self) -> None:
        self._entries: list[ChangeLogEntry] = []
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ChangeLogEntry]:
        return iter(list(self._entries))

    def append(self, type: EntityType, action: ChangeAction, data: dict[str, Any]) -> ChangeLogEntry:
        entry = ChangeLogEntry(id=next(self._sequence), type=type, action=action, data=data)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> list[ChangeLogEntry]:
        return list(self._entries)

    def pending(self) -> list[ChangeLogEntry]:
        """Unsynced entries in call order."""
        return [entry for entry in self._entries if not entry.synced]

    def has_pending(self) -> bool:
        return any(not entry.synced for entry in self._entries)

    def pending_by_type(self) -> dict[EntityType, list[ChangeLogEntry]]:
        """Unsynced entries grouped by entity type, order preserved within each group."""
        groups: dict[EntityType, list[ChangeLogEntry]] = defaultdict(list)
        for entry in self.pending():
            groups[entry.type].append(entry)
        return dict(groups)

    def mark_synced(self, entries: list[ChangeLogEntry]) -> None:
        ids = {entry.id for entry in entries}
        for entry in self._entries:
            if entry.id in ids:
                entry.synced = True
