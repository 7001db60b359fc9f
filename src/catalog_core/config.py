"""Unified configuration for the catalog lifecycle and sync core.

All tunables are centralized here for environment-based override support.

Environment Variables:
    CATALOG_RETRY_MAX_ATTEMPTS: Attempts for store operations (default 3)
    CATALOG_RETRY_INITIAL_DELAY: First backoff delay in seconds (default 0.1)
    CATALOG_RETRY_MAX_DELAY: Backoff ceiling in seconds (default 2.0)
    CATALOG_RETRY_BACKOFF: Backoff multiplier (default 2.0)
    CATALOG_SYNC_MAX_ATTEMPTS: Attempts per remote VCS step (default 2)

    GITHUB_API_URL: REST API base (default https://api.github.com)
    GITHUB_REPO_OWNER: Owner of the canonical content repository
    GITHUB_CONTENT_REPO_NAME: Name of the canonical content repository
    GITHUB_BASE_BRANCH: Branch pull requests target (default main)
    GITHUB_CONTRIBUTION_MODE: internal_app or fork_pr (default internal_app)
    GITHUB_APP_TOKEN: Service identity token used in internal_app mode
    GITHUB_BOT_NAME / GITHUB_BOT_EMAIL: Committer identity in internal_app mode
    GITHUB_CONTENT_ROOT: Directory holding entity files (default data-layer)

    GITHUB_EMAIL_MAX_RETRIES: Retries for the verified email lookup (default 2)
    GITHUB_EMAIL_MAX_DELAY: Ceiling for any email lookup sleep (default 2.0)

    CATALOG_DB_PATH: SQLite file used by the CLI (default data/catalog.db)
    CATALOG_TABLE_PREFIX: Prefix applied to every entity table (default "")

    ADMIN_USER_IDS / EDITOR_USER_IDS: Comma separated identities granted roles

Example:
    >>> from catalog_core.config import CONFIG
    >>> CONFIG.retry.max_attempts
    3
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple


def _f(name: str, default: float) -> float:
    """Parse float from environment variable with fallback."""
    try:
        return float(os.getenv(name, default))
    except Exception:
        return default


def _i(name: str, default: int) -> int:
    """Parse int from environment variable with fallback."""
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _s(name: str, default: str) -> str:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else default


def _ids(name: str, default: str = "") -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class RetryConfig:
    """Bounded exponential backoff defaults."""

    max_attempts: int = field(default_factory=lambda: _i("CATALOG_RETRY_MAX_ATTEMPTS", 3))
    initial_delay: float = field(default_factory=lambda: _f("CATALOG_RETRY_INITIAL_DELAY", 0.1))
    max_delay: float = field(default_factory=lambda: _f("CATALOG_RETRY_MAX_DELAY", 2.0))
    backoff_multiplier: float = field(default_factory=lambda: _f("CATALOG_RETRY_BACKOFF", 2.0))

    # Remote VCS calls are not idempotent; keep this small (2-3)
    sync_max_attempts: int = field(default_factory=lambda: _i("CATALOG_SYNC_MAX_ATTEMPTS", 2))


@dataclass(frozen=True)
class GitHubConfig:
    """Content repository coordinates and contribution mode."""

    api_url: str = field(default_factory=lambda: _s("GITHUB_API_URL", "https://api.github.com"))
    repo_owner: str = field(default_factory=lambda: _s("GITHUB_REPO_OWNER", "openkpis"))
    content_repo: str = field(default_factory=lambda: _s("GITHUB_CONTENT_REPO_NAME", "catalog-content"))
    base_branch: str = field(default_factory=lambda: _s("GITHUB_BASE_BRANCH", "main"))
    contribution_mode: str = field(default_factory=lambda: _s("GITHUB_CONTRIBUTION_MODE", "internal_app"))
    app_token: str | None = field(default_factory=lambda: os.getenv("GITHUB_APP_TOKEN") or None)
    bot_name: str = field(default_factory=lambda: _s("GITHUB_BOT_NAME", "Catalog Bot"))
    bot_email: str = field(default_factory=lambda: _s("GITHUB_BOT_EMAIL", "bot@catalog.invalid"))
    content_root: str = field(default_factory=lambda: _s("GITHUB_CONTENT_ROOT", "data-layer"))
    timeout: float = field(default_factory=lambda: _f("GITHUB_TIMEOUT", 30.0))
    user_agent: str = "CatalogCore/1.0"

    @property
    def content_repo_full(self) -> str:
        return f"{self.repo_owner}/{self.content_repo}"


@dataclass(frozen=True)
class EmailLookupConfig:
    """Verified email lookup limits."""

    max_retries: int = field(default_factory=lambda: _i("GITHUB_EMAIL_MAX_RETRIES", 2))
    # Rate-limit and backoff sleeps never exceed this ceiling
    max_delay: float = field(default_factory=lambda: _f("GITHUB_EMAIL_MAX_DELAY", 2.0))
    base_delay: float = 1.0


@dataclass(frozen=True)
class StoreConfig:
    db_path: str = field(default_factory=lambda: _s("CATALOG_DB_PATH", "data/catalog.db"))
    table_prefix: str = field(default_factory=lambda: os.getenv("CATALOG_TABLE_PREFIX", ""))


@dataclass(frozen=True)
class RoleConfig:
    """Identities granted elevated roles when the identity provider does not say."""

    admin_ids: Tuple[str, ...] = field(default_factory=lambda: _ids("ADMIN_USER_IDS"))
    editor_ids: Tuple[str, ...] = field(default_factory=lambda: _ids("EDITOR_USER_IDS"))


@dataclass(frozen=True)
class CatalogConfig:
    """Unified configuration combining all sub-configs."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    email: EmailLookupConfig = field(default_factory=EmailLookupConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    roles: RoleConfig = field(default_factory=RoleConfig)

    @property
    def contribution_mode(self) -> str:
        return self.github.contribution_mode


def load_config() -> CatalogConfig:
    """Build a fresh config from the current environment."""
    return CatalogConfig()


# Global singleton for easy access
CONFIG = load_config()
