"""Exception taxonomy for the catalog core.

Every error carries the HTTP-equivalent ``status_code`` the orchestrator
reports to the API layer.
"""
from __future__ import annotations


class CatalogError(Exception):
    """Base exception for catalog core errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(CatalogError):
    """Bad input shape or format. Never retried."""

    status_code = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StateError(CatalogError):
    """Wrong lifecycle state for the requested transition."""

    status_code = 400


class NotDraft(StateError):
    def __init__(self, item_id: str, status: str | None = None) -> None:
        super().__init__("Item is not a draft")
        self.item_id = item_id
        self.status = status


class NotPublished(StateError):
    def __init__(self, item_id: str, status: str | None = None) -> None:
        super().__init__(
            "Item is not published. Only published items can be edited via a draft."
        )
        self.item_id = item_id
        self.status = status


class NotFound(CatalogError):
    status_code = 404


class AuthError(CatalogError):
    """Authentication or authorization failure. Never retried."""

    status_code = 401


class Unauthorized(AuthError):
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class Forbidden(AuthError):
    status_code = 403

    def __init__(self, message: str = "Editor or admin role required") -> None:
        super().__init__(message)


class TransientInfraError(CatalogError):
    """Network, connection or rate-limit failure that is worth retrying."""

    status_code = 503


class StoreError(CatalogError):
    """Entity store failure.

    ``code`` carries the backing database's error code when one is known
    (Postgres SQLSTATE style), so the retry classifier can inspect it.
    """

    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class DuplicateKeyError(StoreError):
    """A unique constraint rejected the write (another request got there first)."""

    def __init__(self, message: str = "duplicate key value violates unique constraint") -> None:
        super().__init__(message, code="23505")
        self.status_code = 409


class SyncFailure(CatalogError):
    """The version control service rejected or errored after retries."""

    status_code = 502
    requires_reauth: bool = False


class ReauthRequired(SyncFailure):
    """Missing, expired or invalid external token."""

    status_code = 401
    requires_reauth = True

    def __init__(self, message: str = "GitHub authorization required") -> None:
        super().__init__(message)
