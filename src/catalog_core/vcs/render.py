"""Render catalog entities into repository files and pull request text."""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import yaml

from catalog_core.attribution import Attribution
from catalog_core.config import GitHubConfig
from catalog_core.models import Entity, EntityKind, SyncAction


def _label(field: str) -> str:
    return " ".join(part.upper() if part in ("sql", "ga4", "w3", "xdm", "pii") else part.capitalize()
                    for part in field.split("_"))


def _present(value: Any) -> bool:
    return value not in (None, "", [], {})


def entity_document(kind: EntityKind, entity: Entity) -> dict[str, Any]:
    """Ordered mapping written to the YAML file."""
    spec = kind.spec
    doc: dict[str, Any] = {spec.title_key: entity.name, "Slug": entity.slug}
    if _present(entity.description):
        doc["Description"] = entity.description
    if _present(entity.category):
        doc["Category"] = entity.category
    if entity.tags:
        doc["Tags"] = list(entity.tags)
    for field in spec.kind_fields:
        value = entity.extra.get(field)
        if _present(value):
            doc[_label(field)] = value
    doc["Status"] = entity.status.value
    doc["Contributed By"] = entity.created_by
    doc["Created At"] = entity.created_at
    if entity.last_modified_by and entity.last_modified_by != entity.created_by:
        doc["Last Modified By"] = entity.last_modified_by
    if entity.last_modified_at:
        doc["Last Modified At"] = entity.last_modified_at
    return doc


def render_entity_yaml(kind: EntityKind, entity: Entity, *, generated_at: datetime | None = None) -> str:
    generated_at = generated_at or datetime.now(UTC)
    header = (
        f"# {kind.spec.label}: {entity.name}\n"
        f"# Generated: {generated_at.isoformat()}\n"
        f"# Contributed by: {entity.created_by or 'unknown'}\n\n"
    )
    body = yaml.safe_dump(
        entity_document(kind, entity),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return header + body


def file_path(config: GitHubConfig, kind: EntityKind, slug: str) -> str:
    return f"{config.content_root.strip('/')}/{kind.spec.table}/{slug}.yml"


def branch_name(action: SyncAction, kind: EntityKind, slug: str, epoch_ms: int) -> str:
    return f"{action.value}-{kind.spec.table}-{slug}-{epoch_ms}"


def is_update(action: SyncAction, entity: Entity) -> bool:
    """An edit, or a publish of something already mirrored once."""
    return action is SyncAction.EDITED or entity.vcs_file_path is not None


def change_title(kind: EntityKind, entity: Entity, action: SyncAction) -> str:
    verb = "Update" if is_update(action, entity) else "Add"
    return f"{verb} {kind.spec.label}: {entity.name}"


def pr_body(kind: EntityKind, entity: Entity, action: SyncAction, attribution: Attribution) -> str:
    lines = [f"**Contributed by**: @{attribution.contributor}"]
    if attribution.editor and attribution.editor != attribution.contributor:
        lines.append(f"**Edited by**: @{attribution.editor}")
    lines += [
        "",
        f"**Action**: {action.value}",
        f"**Type**: {kind.spec.table}",
        "",
        "---",
        "",
        entity.description or "No description provided.",
    ]
    return "\n".join(lines)


def noreply_email(login: str) -> str:
    return f"{login}@users.noreply.github.com"
