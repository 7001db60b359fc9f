"""Dict-backed entity store with the same uniqueness rules as the database."""
from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any, Mapping

from uuid_utils import uuid7

from catalog_core.errors import DuplicateKeyError, NotFound
from catalog_core.models import EntityKind, EntityStatus

from .base import EntityStore

_UNIQUE_STATUSES = (EntityStatus.PUBLISHED.value, EntityStatus.DRAFT.value)


class InMemoryEntityStore(EntityStore):
    """In-process store used by tests, examples and dry runs.

    ``inject_failure`` queues an exception for the next call(s) of one
    operation so callers can exercise retry and best-effort paths.
    """

    def __init__(self) -> None:
        self._tables: dict[EntityKind, dict[str, dict[str, Any]]] = {k: {} for k in EntityKind}
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self.calls: dict[str, int] = defaultdict(int)

    def inject_failure(self, operation: str, exc: BaseException, times: int = 1) -> None:
        self._failures[operation].extend([exc] * times)

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        queue = self._failures.get(operation)
        if queue:
            raise queue.pop(0)

    def _check_unique(self, kind: EntityKind, row: Mapping[str, Any], self_id: str | None) -> None:
        status = row.get("status")
        if status not in _UNIQUE_STATUSES:
            return
        for other in self._tables[kind].values():
            if other["id"] == self_id:
                continue
            if other.get("slug") == row.get("slug") and other.get("status") == status:
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint "
                    f"\"{kind.spec.table}_{status}_slug_key\""
                )

    async def select(
        self,
        kind: EntityKind,
        filters: Mapping[str, Any] | None = None,
        *,
        exclude_id: str | None = None,
    ) -> list[dict[str, Any]]:
        self._maybe_fail("select")
        filters = dict(filters or {})
        rows = []
        for row in self._tables[kind].values():
            if exclude_id is not None and row["id"] == exclude_id:
                continue
            if all(row.get(k) == v for k, v in filters.items()):
                rows.append(copy.deepcopy(row))
        return rows

    async def insert(self, kind: EntityKind, fields: Mapping[str, Any]) -> dict[str, Any]:
        self._maybe_fail("insert")
        row = copy.deepcopy(dict(fields))
        row.setdefault("id", str(uuid7()))
        if row["id"] in self._tables[kind]:
            raise DuplicateKeyError(f"duplicate key value violates unique constraint \"{kind.spec.table}_pkey\"")
        self._check_unique(kind, row, None)
        self._tables[kind][row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, kind: EntityKind, item_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        self._maybe_fail("update")
        current = self._tables[kind].get(item_id)
        if current is None:
            raise NotFound(f"{kind.spec.label} not found")
        merged = {**current, **copy.deepcopy(dict(fields)), "id": item_id}
        self._check_unique(kind, merged, item_id)
        self._tables[kind][item_id] = merged
        return copy.deepcopy(merged)

    async def delete(self, kind: EntityKind, item_id: str) -> None:
        self._maybe_fail("delete")
        if self._tables[kind].pop(item_id, None) is None:
            raise NotFound(f"{kind.spec.label} not found")
