"""Publication orchestrator: the editorial workflows exposed to the API layer.

Each public method returns an ``Outcome`` envelope instead of raising, so
the route layer only has to translate ``http_status`` and the body. Store
mutations are authoritative: a mirror failure after a successful write is
reported as ``multi_status`` (207) and never rolled back.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import structlog
from pydantic import BaseModel, Field

from catalog_core.attribution import VerifiedEmailResolver, resolve_committer
from catalog_core.config import CONFIG, CatalogConfig
from catalog_core.errors import CatalogError, Forbidden, Unauthorized, ValidationError
from catalog_core.lifecycle import DraftLifecycleManager
from catalog_core.models import (
    Actor,
    Entity,
    EntityKind,
    Role,
    SyncAction,
    SyncFailureResult,
    SyncResult,
    SyncSuccess,
)
from catalog_core.store import EntityStore, EntityStoreAdapter
from catalog_core.tasks import BackgroundTask
from catalog_core.vcs import VersionControlService, build_sync_request

logger = structlog.get_logger(__name__)

AuditSink = Callable[[str, Mapping[str, Any]], Awaitable[None]]

PUBLISHED_NOT_MIRRORED = "Item published but GitHub sync failed"
SAVED_NOT_MIRRORED = "Changes saved but GitHub sync failed"


class OutcomeStatus(str, Enum):
    OK = "ok"
    MULTI_STATUS = "multi_status"
    ERROR = "error"


class Outcome(BaseModel):
    """Response envelope for one orchestrated operation."""

    status: OutcomeStatus
    http_status: int
    item: dict[str, Any] | None = None
    sync: dict[str, Any] | None = None
    error: str | None = None
    requires_reauth: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK

    @classmethod
    def success(cls, item: Entity | None = None, *, sync: SyncSuccess | None = None, **data: Any) -> Outcome:
        return cls(
            status=OutcomeStatus.OK,
            http_status=200,
            item=item.to_record() if item else None,
            sync=sync.model_dump(mode="json") if sync else None,
            data=data,
        )

    @classmethod
    def partial(cls, item: Entity, failure: SyncFailureResult, message: str, **data: Any) -> Outcome:
        return cls(
            status=OutcomeStatus.MULTI_STATUS,
            http_status=207,
            item=item.to_record(),
            error=f"{message}: {failure.error}",
            requires_reauth=failure.requires_reauth,
            data=data,
        )

    @classmethod
    def from_error(cls, exc: CatalogError) -> Outcome:
        return cls(
            status=OutcomeStatus.ERROR,
            http_status=exc.status_code,
            error=exc.message,
            requires_reauth=bool(getattr(exc, "requires_reauth", False)),
        )


class PublicationOrchestrator:
    """Ties the lifecycle manager, the store and the mirror together."""

    def __init__(
        self,
        store: EntityStore | EntityStoreAdapter,
        synchronizer: VersionControlService,
        email_resolver: VerifiedEmailResolver | None = None,
        config: CatalogConfig | None = None,
        *,
        lifecycle: DraftLifecycleManager | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.config = config or CONFIG
        self.adapter = store if isinstance(store, EntityStoreAdapter) else EntityStoreAdapter(store)
        self.lifecycle = lifecycle or DraftLifecycleManager(self.adapter)
        self.synchronizer = synchronizer
        self.email_resolver = email_resolver or VerifiedEmailResolver(self.config.email, self.config.github)
        self._audit_sink = audit_sink
        # Only unfinished tasks; each removes itself on completion
        self._pending: set[BackgroundTask[Any]] = set()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def role_of(self, actor: Actor) -> Role:
        """Role from the identity provider, widened by the configured id lists."""
        if actor.role is Role.ADMIN or actor.id in self.config.roles.admin_ids:
            return Role.ADMIN
        if actor.role is Role.EDITOR or actor.id in self.config.roles.editor_ids:
            return Role.EDITOR
        return Role.CONTRIBUTOR

    @staticmethod
    def _require_actor(actor: Actor | None) -> Actor:
        if actor is None or not actor.id:
            raise Unauthorized()
        return actor

    def _require_editor(self, actor: Actor | None) -> Actor:
        actor = self._require_actor(actor)
        if self.role_of(actor) not in (Role.EDITOR, Role.ADMIN):
            raise Forbidden()
        return actor

    @staticmethod
    def _target(kind: EntityKind | str, item_id: str | None) -> tuple[EntityKind, str]:
        if not kind or not item_id:
            raise ValidationError("itemType and itemId are required")
        return EntityKind.parse(kind), item_id

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def create_item(self, actor: Actor | None, kind: EntityKind | str, fields: Mapping[str, Any]) -> Outcome:
        async def run() -> Outcome:
            who = self._require_actor(actor)
            entity = await self.lifecycle.create_item(EntityKind.parse(kind), fields, who)
            self._audit("item.created", who, entity)
            return Outcome.success(entity)

        return await self._guard("create_item", run)

    async def create_draft(self, actor: Actor | None, kind: EntityKind | str, item_id: str | None) -> Outcome:
        """Open (or return the existing) shadow draft of a published item."""

        async def run() -> Outcome:
            who = self._require_actor(actor)
            entity_kind, source_id = self._target(kind, item_id)
            handle = await self.lifecycle.create_draft(entity_kind, source_id, who)
            if handle.is_new:
                self._audit("draft.created", who, None, kind=entity_kind.value, id=handle.id)
            return Outcome.success(draft_id=handle.id, slug=handle.slug, is_new=handle.is_new)

        return await self._guard("create_draft", run)

    async def update_item(
        self, actor: Actor | None, kind: EntityKind | str, item_id: str | None, data: Mapping[str, Any]
    ) -> Outcome:
        """Save an edit to a draft, then mirror it as an edit."""

        async def run() -> Outcome:
            who = self._require_actor(actor)
            entity_kind, target_id = self._target(kind, item_id)
            entity = await self.lifecycle.update_draft(entity_kind, target_id, data, who)
            return await self._mirror(entity_kind, entity, SyncAction.EDITED, who, SAVED_NOT_MIRRORED)

        return await self._guard("update_item", run)

    async def publish(self, actor: Actor | None, kind: EntityKind | str, item_id: str | None) -> Outcome:
        """Editorial approval: reconcile the draft, then mirror the published record."""

        async def run() -> Outcome:
            who = self._require_editor(actor)
            entity_kind, draft_id = self._target(kind, item_id)
            result = await self.lifecycle.reconcile_publish(entity_kind, draft_id, who)
            self._audit("item.published", who, result.entity, merged=result.merged)
            extra = {"merged": result.merged, "already_handled": result.already_handled}
            if result.cleanup_failed:
                extra["cleanup_failed"] = True
            return await self._mirror(
                entity_kind, result.entity, SyncAction.PUBLISHED, who, PUBLISHED_NOT_MIRRORED, **extra
            )

        return await self._guard("publish", run)

    async def reject(self, actor: Actor | None, kind: EntityKind | str, item_id: str | None) -> Outcome:
        async def run() -> Outcome:
            who = self._require_editor(actor)
            entity_kind, target_id = self._target(kind, item_id)
            entity = await self.lifecycle.reject(entity_kind, target_id, who)
            self._audit("item.rejected", who, entity)
            return Outcome.success(entity)

        return await self._guard("reject", run)

    async def resync(
        self,
        actor: Actor | None,
        kind: EntityKind | str,
        item_id: str | None,
        action: SyncAction | str = SyncAction.EDITED,
    ) -> Outcome:
        """Re-run the mirror for a record whose earlier sync lagged."""

        async def run() -> Outcome:
            who = self._require_actor(actor)
            entity_kind, target_id = self._target(kind, item_id)
            try:
                sync_action = SyncAction(action)
            except ValueError as e:
                raise ValidationError(f"Invalid action: {action}", field="action") from e
            entity = await self.adapter.get(entity_kind, target_id)
            return await self._mirror(entity_kind, entity, sync_action, who, "GitHub sync failed")

        return await self._guard("resync", run)

    def publish_in_background(
        self, actor: Actor | None, kind: EntityKind | str, item_id: str | None
    ) -> BackgroundTask[Outcome]:
        """Start ``publish`` without awaiting it; the task is tracked until it finishes."""
        return self._track(BackgroundTask(self.publish(actor, kind, item_id), label=f"publish:{kind}:{item_id}"))

    def _track(self, task: BackgroundTask[Any]) -> BackgroundTask[Any]:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> list[BaseException]:
        """Wait for the background tasks still running; returns their failures.

        Tasks that already finished are no longer tracked; their failures
        were logged when they completed.
        """
        errors = []
        for task in list(self._pending):
            err = await task.settle()
            if err is not None:
                errors.append(err)
        return errors

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _mirror(
        self,
        kind: EntityKind,
        entity: Entity,
        action: SyncAction,
        actor: Actor,
        partial_message: str,
        **data: Any,
    ) -> Outcome:
        # A verified email is only attached when the actor is the credited committer
        email = await self._email_for(actor) if resolve_committer(action, entity) == actor.handle else None
        request = build_sync_request(kind, entity, action, actor, user_email=email)
        result: SyncResult = await self.synchronizer.sync(request)

        if isinstance(result, SyncFailureResult):
            logger.warning(
                "orchestrator.sync_failed",
                kind=kind.value,
                id=entity.id,
                action=action.value,
                error=result.error,
                requires_reauth=result.requires_reauth,
            )
            return Outcome.partial(entity, result, partial_message, **data)

        try:
            entity = await self.adapter.store_linkage(kind, entity.id, result.linkage)
        except CatalogError as e:
            # The pull request exists; only the back-reference is missing
            logger.warning("orchestrator.linkage_failed", kind=kind.value, id=entity.id, error=e.message)
            return Outcome.partial(
                entity, SyncFailureResult(error=e.message), "Synced but linkage was not stored", **data
            )
        return Outcome.success(entity, sync=result, **data)

    async def _email_for(self, actor: Actor) -> str | None:
        if actor.oauth_token:
            return await self.email_resolver.resolve_email(actor) or actor.email
        return actor.email

    async def _guard(self, operation: str, run: Callable[[], Awaitable[Outcome]]) -> Outcome:
        log = logger.bind(operation=operation)
        try:
            outcome = await run()
        except CatalogError as e:
            log.info("orchestrator.rejected", error=e.message, http_status=e.status_code)
            return Outcome.from_error(e)
        except Exception:
            log.exception("orchestrator.unexpected_error")
            return Outcome(status=OutcomeStatus.ERROR, http_status=500, error="Internal server error")
        log.info("orchestrator.completed", status=outcome.status.value, http_status=outcome.http_status)
        return outcome

    def _audit(self, event: str, actor: Actor, entity: Entity | None, **context: Any) -> None:
        if self._audit_sink is None:
            return
        payload = {"actor": actor.handle, **context}
        if entity is not None:
            payload.update(kind=entity.kind.value, id=entity.id, slug=entity.slug)
        self._track(BackgroundTask(self._audit_sink(event, payload), label=f"audit:{event}"))
