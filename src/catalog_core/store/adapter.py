"""Typed CRUD over the five entity kinds, with retry on transient failures."""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import structlog

from catalog_core.models import VCS_FIELDS, Entity, EntityKind, EntityStatus
from catalog_core.retry import RetryPolicy, retry

from .base import EntityStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _plain(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}


class EntityStoreAdapter:
    """Entity-level access to an ``EntityStore``.

    Linkage fields are stripped from every caller-supplied write; only
    ``store_linkage`` may set them.
    """

    def __init__(
        self,
        store: EntityStore,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.policy = policy or RetryPolicy.from_config()
        self._sleep = sleep

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await retry(operation, self.policy, sleep=self._sleep)

    @staticmethod
    def _without_linkage(fields: Mapping[str, Any]) -> dict[str, Any]:
        dropped = [k for k in fields if k in VCS_FIELDS]
        if dropped:
            logger.debug("store.linkage_fields_dropped", fields=dropped)
        return _plain({k: v for k, v in fields.items() if k not in VCS_FIELDS})

    async def get(self, kind: EntityKind, item_id: str) -> Entity:
        row = await self._call(lambda: self.store.get(kind, item_id))
        return Entity.from_record(kind, row)

    async def find_by_slug(
        self,
        kind: EntityKind,
        slug: str,
        status: EntityStatus,
        *,
        exclude_id: str | None = None,
    ) -> Entity | None:
        rows = await self._call(
            lambda: self.store.select(kind, {"slug": slug, "status": status.value}, exclude_id=exclude_id)
        )
        if len(rows) > 1:
            logger.warning("store.multiple_rows_for_slug", kind=kind.value, slug=slug, status=status.value, count=len(rows))
        return Entity.from_record(kind, rows[0]) if rows else None

    async def list_by_status(self, kind: EntityKind, status: EntityStatus) -> list[Entity]:
        rows = await self._call(lambda: self.store.select(kind, {"status": status.value}))
        return [Entity.from_record(kind, r) for r in rows]

    async def create(self, kind: EntityKind, fields: Mapping[str, Any]) -> Entity:
        payload = self._without_linkage(fields)
        # New rows start unsynced
        payload.update({f: None for f in VCS_FIELDS})
        row = await self._call(lambda: self.store.insert(kind, payload))
        return Entity.from_record(kind, row)

    async def update(self, kind: EntityKind, item_id: str, fields: Mapping[str, Any]) -> Entity:
        payload = self._without_linkage(fields)
        row = await self._call(lambda: self.store.update(kind, item_id, payload))
        return Entity.from_record(kind, row)

    async def delete(self, kind: EntityKind, item_id: str) -> None:
        await self._call(lambda: self.store.delete(kind, item_id))

    async def store_linkage(self, kind: EntityKind, item_id: str, linkage: Mapping[str, Any]) -> Entity:
        """Persist version-control linkage returned by the synchronizer."""
        payload = {k: linkage.get(k) for k in VCS_FIELDS}
        row = await self._call(lambda: self.store.update(kind, item_id, payload))
        logger.info("store.linkage_saved", kind=kind.value, id=item_id, pr_number=payload["vcs_pr_number"])
        return Entity.from_record(kind, row)
