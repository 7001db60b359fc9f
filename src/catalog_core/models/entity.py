"""Catalog entity model: five kinds sharing one governance envelope."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field

from catalog_core.errors import ValidationError


def utc_now_iso() -> str:
    """Return current UTC time as an ISO-8601 string (store timestamp format)."""
    return datetime.now(UTC).isoformat()


class EntityKind(str, Enum):
    """Closed set of catalog item kinds."""

    KPI = "kpi"
    METRIC = "metric"
    DIMENSION = "dimension"
    EVENT = "event"
    DASHBOARD = "dashboard"

    @classmethod
    def parse(cls, value: str | EntityKind) -> EntityKind:
        if isinstance(value, EntityKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(k.value for k in cls)
            raise ValidationError(
                f"Invalid entity kind: {value}. Must be one of: {allowed}", field="kind"
            ) from None

    @property
    def spec(self) -> KindSpec:
        return KIND_SPECS[self]


class EntityStatus(str, Enum):
    """Governance status of a catalog item."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    REJECTED = "rejected"


AUDIT_FIELDS: tuple[str, ...] = ("created_by", "created_at", "last_modified_by", "last_modified_at")
VCS_FIELDS: tuple[str, ...] = ("vcs_commit_sha", "vcs_pr_number", "vcs_pr_url", "vcs_file_path")
GOVERNANCE_FIELDS: tuple[str, ...] = ("id", "status", *AUDIT_FIELDS, *VCS_FIELDS)

_COMMON_FIELDS: tuple[str, ...] = ("name", "slug", "description", "category", "tags")

SLUG_RE = re.compile(r"^[a-z0-9-]+$")


@dataclass(frozen=True)
class KindSpec:
    """Per-kind storage and rendering table, resolved once at import."""

    kind: EntityKind
    table: str
    label: str
    title_key: str
    editable_fields: tuple[str, ...]
    list_fields: tuple[str, ...] = ("tags",)
    semicolon_list_fields: tuple[str, ...] = ()
    bool_fields: tuple[str, ...] = ()

    @property
    def kind_fields(self) -> tuple[str, ...]:
        return tuple(f for f in self.editable_fields if f not in _COMMON_FIELDS)


_KPI_FIELDS = (
    "name",
    "description",
    "formula",
    "category",
    "tags",
    "industry",
    "priority",
    "core_area",
    "scope",
    "measure_type",
    "aggregation_window",
    "ga4_event",
    "adobe_event",
    "w3_data_layer",
    "ga4_data_layer",
    "adobe_client_data_layer",
    "xdm_mapping",
    "sql_query",
    "calculation_notes",
    "business_use_case",
    "dependencies",
    "source_data",
    "report_attributes",
    "dashboard_usage",
    "segment_eligibility",
    "related_kpis",
    "data_sensitivity",
    "pii_flag",
)

KIND_SPECS: dict[EntityKind, KindSpec] = {
    EntityKind.KPI: KindSpec(
        kind=EntityKind.KPI,
        table="kpis",
        label="KPI",
        title_key="KPI Name",
        editable_fields=_KPI_FIELDS,
        list_fields=("tags", "industry"),
        semicolon_list_fields=("related_kpis",),
        bool_fields=("pii_flag",),
    ),
    EntityKind.METRIC: KindSpec(
        kind=EntityKind.METRIC,
        table="metrics",
        label="Metric",
        title_key="Metric Name",
        editable_fields=("name", "description", "formula", "category", "tags"),
    ),
    EntityKind.DIMENSION: KindSpec(
        kind=EntityKind.DIMENSION,
        table="dimensions",
        label="Dimension",
        title_key="Dimension Name",
        editable_fields=("name", "description", "category", "tags", "data_type"),
    ),
    EntityKind.EVENT: KindSpec(
        kind=EntityKind.EVENT,
        table="events",
        label="Event",
        title_key="Event Name",
        editable_fields=("name", "description", "category", "tags", "event_type", "event_serialization"),
    ),
    EntityKind.DASHBOARD: KindSpec(
        kind=EntityKind.DASHBOARD,
        table="dashboards",
        label="Dashboard",
        title_key="Dashboard Name",
        editable_fields=("name", "description", "category", "tags"),
    ),
}


def slugify(name: str) -> str:
    """Derive a slug from a display name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower())
    return slug.strip("-")


def validate_slug(slug: Any) -> str:
    if not isinstance(slug, str) or not slug:
        raise ValidationError("slug is required", field="slug")
    if not SLUG_RE.match(slug):
        raise ValidationError(
            "slug must contain only lowercase letters, digits and hyphens", field="slug"
        )
    return slug


def validate_required(record: Mapping[str, Any]) -> None:
    """Check the fields every publishable item needs."""
    name = record.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", field="name")
    validate_slug(record.get("slug"))


class Entity(BaseModel):
    """One catalog item with its governance envelope.

    Kind-specific fields (formula, event_serialization, ...) live in
    ``extra`` so the lifecycle algorithms stay generic over kinds.
    """

    id: str
    kind: EntityKind
    slug: str
    name: str = ""
    description: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: EntityStatus = EntityStatus.DRAFT

    created_by: str | None = None
    created_at: str | None = None
    last_modified_by: str | None = None
    last_modified_at: str | None = None

    # Written only by the synchronizer
    vcs_commit_sha: str | None = None
    vcs_pr_number: int | None = None
    vcs_pr_url: str | None = None
    vcs_file_path: str | None = None

    extra: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_synced(self) -> bool:
        return self.vcs_commit_sha is not None

    @property
    def linkage(self) -> dict[str, Any]:
        return {f: getattr(self, f) for f in VCS_FIELDS}

    def field(self, name: str, default: Any = None) -> Any:
        if name in type(self).model_fields and name not in ("kind", "extra"):
            return getattr(self, name)
        return self.extra.get(name, default)

    def to_record(self) -> dict[str, Any]:
        """Flatten into a store row (kind is implied by the table)."""
        data = self.model_dump(mode="json", exclude={"kind", "extra"})
        data.update(self.extra)
        return data

    @classmethod
    def from_record(cls, kind: EntityKind | str, record: Mapping[str, Any]) -> Entity:
        kind = EntityKind.parse(kind)
        known = set(cls.model_fields) - {"kind", "extra"}
        base = {k: v for k, v in record.items() if k in known}
        extra = {k: v for k, v in record.items() if k not in known and k != "kind"}
        if base.get("tags") is None:
            base["tags"] = []
        return cls(kind=kind, extra=extra, **base)
