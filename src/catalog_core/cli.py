"""CLI interface for the catalog core."""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from catalog_core.errors import NotFound, ValidationError
from catalog_core.logging import bind_request, configure_logging
from catalog_core.models import Actor, EntityKind, EntityStatus, Role, SyncAction

app = typer.Typer(
    name="catalog-core",
    help="Community catalog drafts, editorial review and GitHub mirroring",
    add_completion=False,
)
console = Console()


def get_config():
    """Load configuration from environment (.env honoured)."""
    from dotenv import load_dotenv

    load_dotenv()

    from catalog_core.config import load_config

    return load_config()


def build_orchestrator(db: Optional[Path]):
    from catalog_core.orchestrator import PublicationOrchestrator
    from catalog_core.store import SQLiteEntityStore
    from catalog_core.vcs import VersionControlSynchronizer

    config = get_config()
    store = SQLiteEntityStore(db or config.store.db_path, table_prefix=config.store.table_prefix)
    return PublicationOrchestrator(store, VersionControlSynchronizer(config.github), config=config)


def _parse_kind(kind: str) -> EntityKind:
    try:
        return EntityKind.parse(kind)
    except ValidationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _actor(ctx: typer.Context) -> Actor:
    return ctx.obj["actor"]


def _run(ctx: typer.Context, call):
    """Run one orchestrator call and render its outcome."""

    async def run():
        orchestrator = build_orchestrator(ctx.obj["db"])
        try:
            return await call(orchestrator)
        finally:
            await orchestrator.drain()

    outcome = asyncio.run(run())
    if outcome.status.value == "error":
        console.print(f"[red]Error ({outcome.http_status}): {outcome.error}[/red]")
        if outcome.requires_reauth:
            console.print("[yellow]Re-authorize GitHub and retry.[/yellow]")
        raise typer.Exit(1)

    if outcome.item:
        _print_item(outcome.item)
    if outcome.data:
        console.print_json(json.dumps(outcome.data))
    if outcome.sync:
        console.print(f"[green]Pull request #{outcome.sync['pr_number']}: {outcome.sync['pr_url']}[/green]")
    if outcome.status.value == "multi_status":
        console.print(f"[yellow]Partial success (207): {outcome.error}[/yellow]")
    return outcome


def _print_item(item: dict):
    table = Table(title=item.get("name") or item.get("slug"))
    table.add_column("Field", style="dim")
    table.add_column("Value")
    for key, value in item.items():
        if value in (None, "", []):
            continue
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    actor: str = typer.Option("cli", "--actor", "-a", envvar="CATALOG_ACTOR", help="Acting user id/login"),
    role: Role = typer.Option(Role.CONTRIBUTOR, "--role", "-r", help="Acting user's role"),
    email: Optional[str] = typer.Option(None, "--email", help="Acting user's email"),
    token: Optional[str] = typer.Option(None, "--token", envvar="GITHUB_USER_TOKEN", help="User GitHub OAuth token"),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
):
    """Catalog core commands; the acting identity comes from the options."""
    configure_logging(log_level.upper(), json=False)
    bind_request(actor=actor, role=role.value)
    ctx.obj = {
        "actor": Actor(id=actor, login=actor, email=email, role=role, oauth_token=token),
        "db": db,
    }


@app.command()
def create(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind (kpi, metric, dimension, event, dashboard)"),
    name: str = typer.Argument(..., help="Item name"),
    slug: Optional[str] = typer.Option(None, "--slug", help="Slug (derived from name when omitted)"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    tag: List[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
):
    """Create a new item in draft."""
    entity_kind = _parse_kind(kind)
    fields = {"name": name, "slug": slug, "description": description, "category": category, "tags": tag}
    _run(ctx, lambda o: o.create_item(_actor(ctx), entity_kind, fields))


@app.command("create-draft")
def create_draft(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    item_id: str = typer.Argument(..., help="Id of the published item to edit"),
):
    """Open a shadow draft of a published item (returns the existing one if open)."""
    entity_kind = _parse_kind(kind)
    _run(ctx, lambda o: o.create_draft(_actor(ctx), entity_kind, item_id))


@app.command()
def edit(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    item_id: str = typer.Argument(..., help="Draft id"),
    assignments: List[str] = typer.Option([], "--set", "-s", help="field=value (repeatable)"),
):
    """Edit a draft and mirror the change."""
    entity_kind = _parse_kind(kind)
    data = {}
    for pair in assignments:
        key, sep, value = pair.partition("=")
        if not sep:
            console.print(f"[red]Expected field=value, got: {pair}[/red]")
            raise typer.Exit(1)
        data[key.strip()] = value
    _run(ctx, lambda o: o.update_item(_actor(ctx), entity_kind, item_id, data))


@app.command()
def publish(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    item_id: str = typer.Argument(..., help="Draft id"),
):
    """Publish a draft (editor/admin) and open the mirror pull request."""
    entity_kind = _parse_kind(kind)
    _run(ctx, lambda o: o.publish(_actor(ctx), entity_kind, item_id))


@app.command()
def reject(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    item_id: str = typer.Argument(..., help="Draft id"),
):
    """Reject a draft (editor/admin)."""
    entity_kind = _parse_kind(kind)
    _run(ctx, lambda o: o.reject(_actor(ctx), entity_kind, item_id))


@app.command()
def sync(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    item_id: str = typer.Argument(..., help="Item id"),
    action: SyncAction = typer.Option(SyncAction.EDITED, "--action", help="Sync action"),
):
    """Re-run the GitHub mirror for an existing item."""
    entity_kind = _parse_kind(kind)
    _run(ctx, lambda o: o.resync(_actor(ctx), entity_kind, item_id, action))


@app.command()
def show(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    item_id: str = typer.Argument(..., help="Item id"),
):
    """Show one item."""
    entity_kind = _parse_kind(kind)

    async def run():
        orchestrator = build_orchestrator(ctx.obj["db"])
        return await orchestrator.adapter.get(entity_kind, item_id)

    try:
        entity = asyncio.run(run())
    except NotFound as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    _print_item(entity.to_record())


@app.command("list")
def list_items(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Item kind"),
    status: str = typer.Option("draft", "--status", help="Status to list"),
):
    """List items of a kind by status."""
    entity_kind = _parse_kind(kind)
    try:
        entity_status = EntityStatus(status)
    except ValueError:
        console.print(f"[red]Invalid status. Choose from: {[s.value for s in EntityStatus]}[/red]")
        raise typer.Exit(1)

    async def run():
        orchestrator = build_orchestrator(ctx.obj["db"])
        return await orchestrator.adapter.list_by_status(entity_kind, entity_status)

    entities = asyncio.run(run())
    if not entities:
        console.print(f"[yellow]No {status} {entity_kind.spec.label} items[/yellow]")
        return

    table = Table(title=f"{entity_kind.spec.label} ({status})")
    table.add_column("ID", style="dim")
    table.add_column("Slug")
    table.add_column("Name")
    table.add_column("Modified by")
    table.add_column("PR")
    for entity in entities:
        table.add_row(
            entity.id,
            entity.slug,
            entity.name,
            entity.last_modified_by or "",
            str(entity.vcs_pr_number or ""),
        )
    console.print(table)
    console.print(f"[dim]Showing {len(entities)} items[/dim]")


@app.command()
def config():
    """Show the effective configuration (tokens masked)."""
    cfg = get_config()
    github = cfg.github
    console.print(
        Panel(
            f"Repository: {github.content_repo_full} ({github.base_branch})\n"
            f"Mode: {github.contribution_mode}\n"
            f"App token: {'set' if github.app_token else 'not set'}\n"
            f"Database: {cfg.store.db_path}",
            title="Catalog Core",
        )
    )


if __name__ == "__main__":
    app()
