"""Entity store contract consumed by the lifecycle core."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping

from catalog_core.errors import NotFound
from catalog_core.models import EntityKind


class EntityStore(ABC):
    """Abstract CRUD + query over typed catalog rows.

    Rows are flat dicts carrying the governance envelope and kind fields.
    Implementations must:
    - raise ``NotFound`` for a missing id (distinct from ``StoreError``)
    - raise ``DuplicateKeyError`` when a second ``published`` or a second
      ``draft`` row would exist for one (kind, slug)
    """

    @abstractmethod
    async def select(
        self,
        kind: EntityKind,
        filters: Mapping[str, Any] | None = None,
        *,
        exclude_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows whose fields equal every filter value."""

    @abstractmethod
    async def insert(self, kind: EntityKind, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a row, assigning an id when absent, and return it."""

    @abstractmethod
    async def update(self, kind: EntityKind, item_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Merge ``fields`` into an existing row and return the result."""

    @abstractmethod
    async def delete(self, kind: EntityKind, item_id: str) -> None:
        """Remove a row."""

    async def get(self, kind: EntityKind, item_id: str) -> dict[str, Any]:
        rows = await self.select(kind, {"id": item_id})
        if not rows:
            raise NotFound(f"{kind.spec.label} not found")
        return rows[0]

    async def close(self) -> None:  # pragma: no cover - nothing to release by default
        return None
