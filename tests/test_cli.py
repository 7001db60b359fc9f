"""Smoke tests for the catalog-core CLI."""
from __future__ import annotations

import asyncio

import pytest
from typer.testing import CliRunner

from catalog_core.cli import app
from catalog_core.models import EntityKind
from catalog_core.store import SQLiteEntityStore

runner = CliRunner()


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.delenv("GITHUB_APP_TOKEN", raising=False)
    monkeypatch.setenv("GITHUB_CONTRIBUTION_MODE", "internal_app")
    return str(tmp_path / "catalog.db")


def seed_draft(db: str, item_id: str = "kpi-1") -> None:
    store = SQLiteEntityStore(db)
    asyncio.run(
        store.insert(
            EntityKind.KPI,
            {"id": item_id, "slug": "checkout-rate", "name": "Checkout Rate", "status": "draft", "created_by": "alice"},
        )
    )


def test_create_and_list(db):
    created = runner.invoke(app, ["--db", db, "--actor", "alice", "create", "metric", "Active Users", "-t", "growth"])
    assert created.exit_code == 0, created.output
    assert "active-users" in created.output

    listed = runner.invoke(app, ["--db", db, "list", "metric"])
    assert listed.exit_code == 0
    assert "active-users" in listed.output
    assert "Showing 1 items" in listed.output


def test_publish_requires_editor(db):
    seed_draft(db)
    result = runner.invoke(app, ["--db", db, "--actor", "alice", "publish", "kpi", "kpi-1"])
    assert result.exit_code == 1
    assert "403" in result.output


def test_publish_without_token_is_partial(db):
    seed_draft(db)
    result = runner.invoke(app, ["--db", db, "--actor", "erin", "--role", "editor", "publish", "kpi", "kpi-1"])
    assert result.exit_code == 0, result.output
    assert "Partial success (207)" in result.output

    shown = runner.invoke(app, ["--db", db, "show", "kpi", "kpi-1"])
    assert "published" in shown.output


def test_reject(db):
    seed_draft(db)
    result = runner.invoke(app, ["--db", db, "--actor", "erin", "--role", "admin", "reject", "kpi", "kpi-1"])
    assert result.exit_code == 0, result.output
    assert "rejected" in result.output


def test_invalid_kind(db):
    result = runner.invoke(app, ["--db", db, "show", "widget", "x"])
    assert result.exit_code == 1
    assert "Invalid entity kind: widget" in result.output


def test_show_missing(db):
    result = runner.invoke(app, ["--db", db, "show", "kpi", "nope"])
    assert result.exit_code == 1
    assert "KPI not found" in result.output
