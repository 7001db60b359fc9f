"""Per-kind update payload builders for draft edits.

Form input arrives loosely typed; each builder coerces it into the
stored shape and stamps the draft governance fields.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping

from catalog_core.models import EntityKind, EntityStatus, KindSpec, utc_now_iso

# (form data, user handle, modification timestamp) -> stored fields
PayloadBuilder = Callable[[Mapping[str, Any], str, str], dict[str, Any]]


def to_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def to_str_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def semicolon_list(value: Any) -> list[str]:
    """``"a; b;;c"`` -> ``["a", "b", "c"]``; lists pass through filtered."""
    if isinstance(value, str) and value.strip():
        return [item.strip() for item in value.split(";") if item.strip()]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _stamp(payload: dict[str, Any], user_handle: str, modified_at: str) -> dict[str, Any]:
    payload["status"] = EntityStatus.DRAFT.value
    payload["last_modified_by"] = user_handle
    payload["last_modified_at"] = modified_at
    return payload


def full_form_builder(spec: KindSpec) -> PayloadBuilder:
    """Every editable field is written; missing input clears the field."""

    def build(data: Mapping[str, Any], user_handle: str, modified_at: str) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name in spec.editable_fields:
            value = data.get(name)
            if name in spec.bool_fields:
                payload[name] = to_bool(value)
            elif name in spec.semicolon_list_fields:
                payload[name] = semicolon_list(value)
            elif name in spec.list_fields:
                payload[name] = to_str_list(value)
            else:
                payload[name] = to_str(value)
        return _stamp(payload, user_handle, modified_at)

    return build


def simple_fields_builder(spec: KindSpec) -> PayloadBuilder:
    """Only fields present in the input are written; ``None`` clears."""

    def build(data: Mapping[str, Any], user_handle: str, modified_at: str) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name in spec.editable_fields:
            if name not in data:
                continue
            value = data[name]
            if isinstance(value, list):
                payload[name] = [item for item in value if isinstance(item, str)]
            elif isinstance(value, str) or value is None:
                payload[name] = value
        return _stamp(payload, user_handle, modified_at)

    return build


PAYLOAD_BUILDERS: dict[EntityKind, PayloadBuilder] = {
    EntityKind.KPI: full_form_builder(EntityKind.KPI.spec),
    EntityKind.METRIC: simple_fields_builder(EntityKind.METRIC.spec),
    EntityKind.DIMENSION: simple_fields_builder(EntityKind.DIMENSION.spec),
    EntityKind.EVENT: simple_fields_builder(EntityKind.EVENT.spec),
    EntityKind.DASHBOARD: simple_fields_builder(EntityKind.DASHBOARD.spec),
}


def build_update_payload(
    kind: EntityKind, data: Mapping[str, Any], user_handle: str, modified_at: str | None = None
) -> dict[str, Any]:
    return PAYLOAD_BUILDERS[kind](data, user_handle, modified_at or utc_now_iso())
