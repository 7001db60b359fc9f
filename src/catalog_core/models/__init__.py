"""Catalog data models."""
from .actor import Actor, Role
from .entity import (
    AUDIT_FIELDS,
    GOVERNANCE_FIELDS,
    KIND_SPECS,
    VCS_FIELDS,
    Entity,
    EntityKind,
    EntityStatus,
    KindSpec,
    slugify,
    utc_now_iso,
    validate_required,
    validate_slug,
)
from .sync import SyncAction, SyncFailureResult, SyncMode, SyncResult, SyncSuccess

__all__ = [
    "AUDIT_FIELDS",
    "Actor",
    "Entity",
    "EntityKind",
    "EntityStatus",
    "GOVERNANCE_FIELDS",
    "KIND_SPECS",
    "KindSpec",
    "Role",
    "SyncAction",
    "SyncFailureResult",
    "SyncMode",
    "SyncResult",
    "SyncSuccess",
    "VCS_FIELDS",
    "slugify",
    "utc_now_iso",
    "validate_required",
    "validate_slug",
]
