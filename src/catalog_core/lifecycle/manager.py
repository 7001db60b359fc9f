"""Draft lifecycle: create, edit, reconcile and reject catalog items.

State machine::

    (new item) ──create_item──▶ draft ──reconcile_publish──▶ published
                                  │                             │
                                  └──reject──▶ rejected         └─create_draft─▶ draft (shadow)

A shadow draft shares its slug with a published item and represents a
pending edit of it. Publishing a shadow draft merges its fields into the
published row and retires the draft; the published row stays visible
until then.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

import structlog

from catalog_core.errors import DuplicateKeyError, NotDraft, NotPublished, ValidationError
from catalog_core.models import (
    AUDIT_FIELDS,
    VCS_FIELDS,
    Actor,
    Entity,
    EntityKind,
    EntityStatus,
    slugify,
    utc_now_iso,
    validate_required,
)
from catalog_core.store import EntityStoreAdapter

from .payloads import build_update_payload

logger = structlog.get_logger(__name__)

# Fields a new shadow draft does not inherit from its published source
_DRAFT_RESET_FIELDS = frozenset({"id", "status", *AUDIT_FIELDS, *VCS_FIELDS})
# Fields a merge never copies from the draft onto the published record
_MERGE_EXCLUDED_FIELDS = frozenset({"id", "status", "created_by", "created_at", *VCS_FIELDS})


@dataclass(frozen=True)
class DraftHandle:
    id: str
    slug: str
    is_new: bool


@dataclass(frozen=True)
class PublishResult:
    entity: Entity
    # True when a shadow draft was folded into an existing published record
    merged: bool = False
    superseded_draft_id: str | None = None
    cleanup_failed: bool = False
    # A concurrent reconcile already produced this published record
    already_handled: bool = False


class DraftLifecycleManager:
    """Owns status transitions and shadow-draft reconciliation."""

    def __init__(self, adapter: EntityStoreAdapter, *, clock: Callable[[], str] = utc_now_iso) -> None:
        self.adapter = adapter
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_item(self, kind: EntityKind, fields: Mapping[str, Any], actor: Actor) -> Entity:
        """Create a brand-new item in ``draft`` for a contributor."""
        name = fields.get("name")
        slug = fields.get("slug") or (slugify(name) if isinstance(name, str) else None)
        validate_required({"name": name, "slug": slug})

        for status in (EntityStatus.PUBLISHED, EntityStatus.DRAFT):
            if await self.adapter.find_by_slug(kind, slug, status):
                raise ValidationError(f"A {kind.spec.label} with slug '{slug}' already exists", field="slug")

        now = self._clock()
        payload = build_update_payload(kind, fields, actor.handle, now)
        payload.update(slug=slug, created_by=actor.handle, created_at=now)
        try:
            entity = await self.adapter.create(kind, payload)
        except DuplicateKeyError as e:
            raise ValidationError(f"A {kind.spec.label} with slug '{slug}' already exists", field="slug") from e
        logger.info("lifecycle.item_created", kind=kind.value, id=entity.id, slug=slug, actor=actor.handle)
        return entity

    async def create_draft(self, kind: EntityKind, source_id: str, actor: Actor) -> DraftHandle:
        """Open a shadow draft of a published item (idempotent per slug)."""
        source = await self.adapter.get(kind, source_id)
        if source.status is not EntityStatus.PUBLISHED:
            raise NotPublished(source_id, source.status.value)

        existing = await self.adapter.find_by_slug(kind, source.slug, EntityStatus.DRAFT)
        if existing:
            logger.info("lifecycle.draft_exists", kind=kind.value, draft_id=existing.id, slug=existing.slug)
            return DraftHandle(id=existing.id, slug=existing.slug, is_new=False)

        now = self._clock()
        payload = {k: v for k, v in source.to_record().items() if k not in _DRAFT_RESET_FIELDS}
        payload.update(
            status=EntityStatus.DRAFT.value,
            created_by=actor.handle,
            created_at=now,
            last_modified_by=actor.handle,
            last_modified_at=now,
        )
        try:
            draft = await self.adapter.create(kind, payload)
        except DuplicateKeyError:
            # Lost a check-then-insert race; the winner's draft is the answer
            winner = await self.adapter.find_by_slug(kind, source.slug, EntityStatus.DRAFT)
            if winner is None:
                raise
            logger.info("lifecycle.draft_race_reused", kind=kind.value, draft_id=winner.id, slug=winner.slug)
            return DraftHandle(id=winner.id, slug=winner.slug, is_new=False)

        logger.info("lifecycle.draft_created", kind=kind.value, draft_id=draft.id, source_id=source_id, actor=actor.handle)
        return DraftHandle(id=draft.id, slug=draft.slug, is_new=True)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    async def update_draft(self, kind: EntityKind, item_id: str, data: Mapping[str, Any], actor: Actor) -> Entity:
        """Apply an edit form to a draft."""
        current = await self.adapter.get(kind, item_id)
        if current.status is not EntityStatus.DRAFT:
            raise NotDraft(item_id, current.status.value)

        payload = build_update_payload(kind, data, actor.handle, self._clock())
        if "name" in payload and not (payload["name"] or "").strip():
            raise ValidationError("name is required", field="name")
        entity = await self.adapter.update(kind, item_id, payload)
        logger.info("lifecycle.draft_updated", kind=kind.value, id=item_id, actor=actor.handle, fields=sorted(payload))
        return entity

    async def list_drafts(self, kind: EntityKind) -> list[Entity]:
        return await self.adapter.list_by_status(kind, EntityStatus.DRAFT)

    # ------------------------------------------------------------------
    # Editorial transitions
    # ------------------------------------------------------------------

    async def reconcile_publish(self, kind: EntityKind, draft_id: str, actor: Actor) -> PublishResult:
        """Publish a draft, merging it into its published counterpart if one exists.

        Steps:
        1. The item must be a draft
        2. Required fields and slug format are validated before any write
        3. Shadow draft: copy its fields onto the published record, then
           delete the draft (best effort; a failed delete is logged only)
        4. New item: flip the draft's own status to ``published``
        """
        draft = await self.adapter.get(kind, draft_id)
        if draft.status is not EntityStatus.DRAFT:
            raise NotDraft(draft_id, draft.status.value)

        validate_required(draft.to_record())

        now = self._clock()
        audit = {"last_modified_by": actor.handle, "last_modified_at": now}
        published = await self.adapter.find_by_slug(kind, draft.slug, EntityStatus.PUBLISHED, exclude_id=draft.id)

        if published is None:
            try:
                entity = await self.adapter.update(kind, draft.id, {"status": EntityStatus.PUBLISHED.value, **audit})
            except DuplicateKeyError:
                return await self._already_handled(kind, draft)
            logger.info("lifecycle.publish.in_place", kind=kind.value, id=entity.id, slug=entity.slug, actor=actor.handle)
            return PublishResult(entity=entity)

        merged_fields = {k: v for k, v in draft.to_record().items() if k not in _MERGE_EXCLUDED_FIELDS}
        try:
            entity = await self.adapter.update(
                kind, published.id, {**merged_fields, "status": EntityStatus.PUBLISHED.value, **audit}
            )
        except DuplicateKeyError:
            return await self._already_handled(kind, draft)

        cleanup_failed = False
        try:
            await self.adapter.delete(kind, draft.id)
        except Exception as e:
            # The merged published record is the operation of record
            cleanup_failed = True
            logger.warning("lifecycle.publish.cleanup_failed", kind=kind.value, draft_id=draft.id, error=str(e))

        logger.info(
            "lifecycle.publish.merged",
            kind=kind.value,
            id=entity.id,
            draft_id=draft.id,
            slug=entity.slug,
            actor=actor.handle,
        )
        return PublishResult(
            entity=entity,
            merged=True,
            superseded_draft_id=draft.id,
            cleanup_failed=cleanup_failed,
        )

    async def _already_handled(self, kind: EntityKind, draft: Entity) -> PublishResult:
        current = await self.adapter.find_by_slug(kind, draft.slug, EntityStatus.PUBLISHED)
        if current is None:
            raise DuplicateKeyError(f"Could not publish {kind.spec.label} '{draft.slug}'")
        logger.info("lifecycle.publish.already_handled", kind=kind.value, id=current.id, draft_id=draft.id)
        return PublishResult(entity=current, merged=current.id != draft.id, already_handled=True)

    async def reject(self, kind: EntityKind, item_id: str, actor: Actor) -> Entity:
        """Terminal rejection of a draft; linkage fields are left as they are."""
        current = await self.adapter.get(kind, item_id)
        if current.status is not EntityStatus.DRAFT:
            raise NotDraft(item_id, current.status.value)
        entity = await self.adapter.update(
            kind,
            item_id,
            {
                "status": EntityStatus.REJECTED.value,
                "last_modified_by": actor.handle,
                "last_modified_at": self._clock(),
            },
        )
        logger.info("lifecycle.rejected", kind=kind.value, id=item_id, actor=actor.handle)
        return entity
