"""Tests for the draft lifecycle and shadow-draft reconciliation."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from catalog_core.errors import DuplicateKeyError, NotDraft, NotFound, NotPublished, StoreError, ValidationError
from catalog_core.lifecycle import build_update_payload
from catalog_core.models import EntityKind, EntityStatus

KPI = EntityKind.KPI


async def published_kpi(adapter, slug="checkout-rate", **fields):
    """Seed a published, already mirrored KPI."""
    entity = await adapter.create(
        KPI,
        {
            "slug": slug,
            "name": "Checkout Rate",
            "description": "Orders / sessions",
            "formula": "orders / sessions",
            "status": "published",
            "created_by": "alice",
            "created_at": "2024-06-01T00:00:00+00:00",
            "last_modified_by": "alice",
            "last_modified_at": "2024-06-01T00:00:00+00:00",
            **fields,
        },
    )
    return await adapter.store_linkage(
        KPI,
        entity.id,
        {
            "vcs_commit_sha": "c0ffee",
            "vcs_pr_number": 3,
            "vcs_pr_url": "https://github.com/openkpis/catalog-content/pull/3",
            "vcs_file_path": f"data-layer/kpis/{slug}.yml",
        },
    )


async def drafts_at(adapter, slug):
    return [e for e in await adapter.list_by_status(KPI, EntityStatus.DRAFT) if e.slug == slug]


async def published_at(adapter, slug):
    return [e for e in await adapter.list_by_status(KPI, EntityStatus.PUBLISHED) if e.slug == slug]


class TestCreateItem:
    @pytest.mark.asyncio
    async def test_new_item_starts_as_draft(self, manager, contributor):
        entity = await manager.create_item(EntityKind.METRIC, {"name": "Active Users"}, contributor)
        assert entity.status is EntityStatus.DRAFT
        assert entity.slug == "active-users"
        assert entity.created_by == "alice"
        assert entity.created_at == entity.last_modified_at == "2025-01-01T00:00:00+00:00"
        assert entity.linkage == {
            "vcs_commit_sha": None,
            "vcs_pr_number": None,
            "vcs_pr_url": None,
            "vcs_file_path": None,
        }

    @pytest.mark.asyncio
    async def test_slug_taken(self, manager, adapter, contributor):
        await published_kpi(adapter)
        with pytest.raises(ValidationError, match="already exists"):
            await manager.create_item(KPI, {"name": "Checkout Rate"}, contributor)

    @pytest.mark.asyncio
    async def test_invalid_slug(self, manager, contributor):
        with pytest.raises(ValidationError, match="lowercase"):
            await manager.create_item(KPI, {"name": "X", "slug": "Bad Slug"}, contributor)


class TestCreateDraft:
    @pytest.mark.asyncio
    async def test_copies_fields_and_resets_governance(self, manager, adapter, contributor):
        source = await published_kpi(adapter)

        handle = await manager.create_draft(KPI, source.id, contributor)
        draft = await adapter.get(KPI, handle.id)

        assert handle.is_new
        assert handle.slug == "checkout-rate"
        assert draft.status is EntityStatus.DRAFT
        assert draft.field("formula") == "orders / sessions"
        assert draft.created_by == "alice"
        assert draft.created_at == "2025-01-01T00:00:00+00:00"
        assert not draft.is_synced
        assert draft.vcs_file_path is None

    @pytest.mark.asyncio
    async def test_idempotent(self, manager, adapter, contributor, editor):
        """Two calls for one published source return the same draft."""
        source = await published_kpi(adapter)

        first = await manager.create_draft(KPI, source.id, contributor)
        second = await manager.create_draft(KPI, source.id, editor)

        assert first.id == second.id
        assert not second.is_new
        assert [d.id for d in await manager.list_drafts(KPI)] == [first.id]

    @pytest.mark.asyncio
    async def test_source_must_be_published(self, manager, adapter, contributor):
        draft = await manager.create_item(KPI, {"name": "Bounce Rate"}, contributor)
        with pytest.raises(NotPublished):
            await manager.create_draft(KPI, draft.id, contributor)

    @pytest.mark.asyncio
    async def test_missing_source(self, manager, contributor):
        with pytest.raises(NotFound):
            await manager.create_draft(KPI, "no-such-id", contributor)

    @pytest.mark.asyncio
    async def test_lost_race_reuses_winner(self, manager, adapter, store, contributor, monkeypatch):
        source = await published_kpi(adapter)
        real_insert = store.insert

        async def racing_insert(kind, fields):
            # A concurrent request inserts its draft first
            await real_insert(kind, {**fields, "created_by": "bob"})
            return await real_insert(kind, fields)

        monkeypatch.setattr(store, "insert", racing_insert)

        handle = await manager.create_draft(KPI, source.id, contributor)

        drafts = await drafts_at(adapter, "checkout-rate")
        assert len(drafts) == 1
        assert handle.id == drafts[0].id
        assert drafts[0].created_by == "bob"
        assert not handle.is_new


class TestUpdateDraft:
    @pytest.mark.asyncio
    async def test_kpi_form_coercions(self, manager, contributor, editor):
        draft = await manager.create_item(KPI, {"name": "Checkout Rate"}, contributor)

        updated = await manager.update_draft(
            KPI,
            draft.id,
            {"name": "Checkout Rate", "related_kpis": "aov; ; cart-rate", "pii_flag": "true", "industry": "Retail"},
            editor,
        )

        assert updated.field("related_kpis") == ["aov", "cart-rate"]
        assert updated.field("pii_flag") is True
        assert updated.field("industry") == ["Retail"]
        assert updated.last_modified_by == "erin"
        assert updated.created_by == "alice"
        assert updated.last_modified_at == "2025-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_published_item_not_editable(self, manager, adapter, editor):
        source = await published_kpi(adapter)
        with pytest.raises(NotDraft):
            await manager.update_draft(KPI, source.id, {"name": "New"}, editor)

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, manager, contributor):
        draft = await manager.create_item(EntityKind.METRIC, {"name": "Sessions"}, contributor)
        with pytest.raises(ValidationError, match="name is required"):
            await manager.update_draft(EntityKind.METRIC, draft.id, {"name": "   "}, contributor)

    def test_simple_builder_writes_only_given_fields(self):
        payload = build_update_payload(
            EntityKind.DIMENSION, {"data_type": "string", "unknown": "x"}, "bob", "2024-03-04T05:06:07+00:00"
        )
        assert payload["data_type"] == "string"
        assert "unknown" not in payload
        assert "name" not in payload
        assert payload["status"] == "draft"
        assert payload["last_modified_by"] == "bob"
        assert payload["last_modified_at"] == "2024-03-04T05:06:07+00:00"


class TestReconcilePublish:
    @pytest.mark.asyncio
    async def test_new_item_published_in_place(self, manager, adapter, store, contributor, editor):
        """Draft with no published counterpart: same row, no second row."""
        draft = await manager.create_item(KPI, {"name": "Checkout Rate", "slug": "checkout-rate"}, contributor)

        result = await manager.reconcile_publish(KPI, draft.id, editor)

        assert result.entity.id == draft.id
        assert result.entity.status is EntityStatus.PUBLISHED
        assert not result.merged
        assert [e.id for e in await published_at(adapter, "checkout-rate")] == [draft.id]
        assert await drafts_at(adapter, "checkout-rate") == []
        assert len(await store.select(KPI)) == 1

    @pytest.mark.asyncio
    async def test_shadow_draft_merged(self, manager, adapter, contributor, editor):
        """Edited shadow draft folds into the published record and disappears."""
        published = await published_kpi(adapter)
        handle = await manager.create_draft(KPI, published.id, editor)
        await manager.update_draft(
            KPI,
            handle.id,
            {"name": "Checkout Conversion Rate", "description": "Orders per session", "formula": "o / s"},
            contributor,
        )

        result = await manager.reconcile_publish(KPI, handle.id, editor)

        rows = await published_at(adapter, "checkout-rate")
        assert len(rows) == 1
        merged = rows[0]
        assert merged.id == published.id
        assert merged.name == "Checkout Conversion Rate"
        assert merged.description == "Orders per session"
        assert merged.field("formula") == "o / s"
        assert merged.created_by == "alice"
        assert merged.created_at == "2024-06-01T00:00:00+00:00"
        assert merged.last_modified_by == "erin"
        assert result.merged
        assert result.superseded_draft_id == handle.id
        assert await drafts_at(adapter, "checkout-rate") == []
        with pytest.raises(NotFound):
            await adapter.get(KPI, handle.id)

    @pytest.mark.asyncio
    async def test_merge_keeps_published_linkage(self, manager, adapter, contributor, editor):
        published = await published_kpi(adapter)
        handle = await manager.create_draft(KPI, published.id, contributor)

        result = await manager.reconcile_publish(KPI, handle.id, editor)

        assert result.entity.vcs_pr_number == 3
        assert result.entity.vcs_file_path == "data-layer/kpis/checkout-rate.yml"

    @pytest.mark.asyncio
    async def test_cleanup_failure_tolerated(self, manager, adapter, store, contributor, editor):
        published = await published_kpi(adapter)
        handle = await manager.create_draft(KPI, published.id, contributor)
        await manager.update_draft(KPI, handle.id, {"name": "Renamed"}, contributor)
        store.inject_failure("delete", StoreError("permission denied for table kpis"))

        result = await manager.reconcile_publish(KPI, handle.id, editor)

        assert result.cleanup_failed
        assert (await adapter.get(KPI, published.id)).name == "Renamed"
        assert store.calls["delete"] == 1

    @pytest.mark.asyncio
    async def test_validation_precedes_writes(self, manager, adapter, store, contributor, editor):
        draft = await adapter.create(KPI, {"slug": "bad slug", "name": "X", "status": "draft"})
        updates_before = store.calls["update"]

        with pytest.raises(ValidationError):
            await manager.reconcile_publish(KPI, draft.id, editor)

        assert store.calls["update"] == updates_before
        assert (await adapter.get(KPI, draft.id)).status is EntityStatus.DRAFT

    @pytest.mark.asyncio
    async def test_requires_draft(self, manager, adapter, editor):
        published = await published_kpi(adapter)
        with pytest.raises(NotDraft, match="Item is not a draft"):
            await manager.reconcile_publish(KPI, published.id, editor)

    @pytest.mark.asyncio
    async def test_duplicate_key_is_already_handled(self, manager, adapter, contributor, editor):
        """A concurrent publish that won the slug is reported, not raised."""
        published = await published_kpi(adapter)
        handle = await manager.create_draft(KPI, published.id, contributor)
        real_find = adapter.find_by_slug
        # First lookup misses the published row, as a racing request would
        adapter.find_by_slug = AsyncMock(side_effect=[None, await real_find(KPI, "checkout-rate", EntityStatus.PUBLISHED)])

        result = await manager.reconcile_publish(KPI, handle.id, editor)

        assert result.already_handled
        assert result.entity.id == published.id
        assert len(await published_at(adapter, "checkout-rate")) == 1

    @pytest.mark.asyncio
    async def test_duplicate_key_without_winner_raises(self, manager, adapter, store, contributor, editor):
        draft = await manager.create_item(KPI, {"name": "Cart Rate"}, contributor)
        store.inject_failure("update", DuplicateKeyError())

        with pytest.raises(DuplicateKeyError):
            await manager.reconcile_publish(KPI, draft.id, editor)


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_draft(self, manager, contributor, editor):
        draft = await manager.create_item(KPI, {"name": "Cart Rate"}, contributor)
        rejected = await manager.reject(KPI, draft.id, editor)
        assert rejected.status is EntityStatus.REJECTED
        assert rejected.last_modified_by == "erin"

    @pytest.mark.asyncio
    async def test_reject_leaves_linkage(self, manager, adapter, store, contributor, editor):
        published = await published_kpi(adapter)
        handle = await manager.create_draft(KPI, published.id, contributor)
        await store.update(KPI, handle.id, {"vcs_pr_number": 11, "vcs_commit_sha": "d1"})

        rejected = await manager.reject(KPI, handle.id, editor)

        assert rejected.vcs_pr_number == 11
        assert rejected.vcs_commit_sha == "d1"

    @pytest.mark.asyncio
    async def test_rejected_is_terminal(self, manager, contributor, editor):
        draft = await manager.create_item(KPI, {"name": "Cart Rate"}, contributor)
        await manager.reject(KPI, draft.id, editor)
        with pytest.raises(NotDraft):
            await manager.reject(KPI, draft.id, editor)
        with pytest.raises(NotDraft):
            await manager.reconcile_publish(KPI, draft.id, editor)
