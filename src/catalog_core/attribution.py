"""Attribution: who is credited for a change, and their verified email.

Committer rule:
- ``edited``: the editor (``last_modified_by``), falling back to the
  contributor (``created_by``)
- ``created`` / ``published``: always the contributor

The contributor is always carried separately so the pull request body
keeps provenance even when an editor's change triggers the sync.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import httpx
import structlog

from catalog_core.config import CONFIG, EmailLookupConfig, GitHubConfig
from catalog_core.models import Actor, Entity, SyncAction

logger = structlog.get_logger(__name__)

UNKNOWN = "unknown"


@dataclass(frozen=True)
class Attribution:
    committer: str
    contributor: str
    editor: str | None


def _field(record: Entity | Mapping[str, Any], name: str) -> str | None:
    value = getattr(record, name, None) if isinstance(record, Entity) else record.get(name)
    return value if isinstance(value, str) and value else None


def resolve_contributor(record: Entity | Mapping[str, Any]) -> str:
    return _field(record, "created_by") or UNKNOWN


def resolve_committer(action: SyncAction | str, record: Entity | Mapping[str, Any]) -> str:
    action = SyncAction(action)
    editor = _field(record, "last_modified_by")
    if action is SyncAction.EDITED and editor:
        return editor
    return resolve_contributor(record)


def resolve_attribution(action: SyncAction | str, record: Entity | Mapping[str, Any]) -> Attribution:
    return Attribution(
        committer=resolve_committer(action, record),
        contributor=resolve_contributor(record),
        editor=_field(record, "last_modified_by"),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Verified email lookup
# ─────────────────────────────────────────────────────────────────────────────


class EmailLookupError(str, Enum):
    NO_TOKEN = "no_token"
    TOKEN_INVALID = "token_invalid"
    RATE_LIMITED = "rate_limited"
    SCOPE_MISSING = "scope_missing"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"


@dataclass(frozen=True)
class EmailLookupResult:
    email: str | None
    error: EmailLookupError | None = None
    rate_limit_reset: float | None = None

    @property
    def requires_reauth(self) -> bool:
        return self.error is EmailLookupError.TOKEN_INVALID


def pick_verified_email(emails: Any) -> str | None:
    """Primary+verified first, then any verified address."""
    if not isinstance(emails, list):
        return None
    entries = [e for e in emails if isinstance(e, dict) and e.get("email")]
    for entry in entries:
        if entry.get("primary") and entry.get("verified"):
            return entry["email"]
    for entry in entries:
        if entry.get("verified"):
            return entry["email"]
    return None


class VerifiedEmailResolver:
    """Exchange a provider OAuth token for the account's verified email.

    Example:
        resolver = VerifiedEmailResolver()
        email = await resolver.resolve_email(actor)
    """

    def __init__(
        self,
        config: EmailLookupConfig | None = None,
        github: GitHubConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CONFIG.email
        self.github = github or CONFIG.github
        self._client = client
        self._sleep = sleep
        self._clock = clock

    def _backoff(self, attempt: int) -> float:
        return min(self.config.base_delay * (2**attempt), self.config.max_delay)

    async def lookup(self, token: str | None) -> EmailLookupResult:
        if not token:
            logger.warning("email.no_token")
            return EmailLookupResult(email=None, error=EmailLookupError.NO_TOKEN)
        if self._client is not None:
            return await self._lookup(self._client, token)
        async with httpx.AsyncClient(timeout=self.github.timeout) as client:
            return await self._lookup(client, token)

    async def _lookup(self, client: httpx.AsyncClient, token: str) -> EmailLookupResult:
        url = f"{self.github.api_url.rstrip('/')}/user/emails"
        headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self.github.user_agent,
        }
        max_retries = max(0, self.config.max_retries)

        for attempt in range(max_retries + 1):
            can_retry = attempt < max_retries
            try:
                resp = await client.get(url, headers=headers)
            except httpx.HTTPError as e:
                if can_retry:
                    delay = self._backoff(attempt)
                    logger.warning("email.network_retry", attempt=attempt + 1, delay=delay, error=str(e))
                    await self._sleep(delay)
                    continue
                logger.error("email.network_error", error=str(e))
                return EmailLookupResult(email=None, error=EmailLookupError.NETWORK_ERROR)

            rate_exhausted = resp.status_code == 403 and resp.headers.get("X-RateLimit-Remaining") == "0"
            if resp.status_code == 429 or rate_exhausted:
                reset_header = resp.headers.get("X-RateLimit-Reset")
                reset = float(reset_header) if reset_header and reset_header.isdigit() else None
                logger.warning("email.rate_limited", reset=reset)
                if can_retry and reset is not None:
                    delay = min(reset - self._clock(), self.config.max_delay)
                    if delay > 0:
                        await self._sleep(delay)
                        continue
                return EmailLookupResult(email=None, error=EmailLookupError.RATE_LIMITED, rate_limit_reset=reset)

            if resp.status_code == 401:
                logger.warning("email.token_invalid")
                return EmailLookupResult(email=None, error=EmailLookupError.TOKEN_INVALID)

            if resp.status_code == 403:
                logger.warning("email.scope_missing")
                return EmailLookupResult(email=None, error=EmailLookupError.SCOPE_MISSING)

            if resp.status_code >= 400:
                logger.error("email.api_error", status=resp.status_code)
                if resp.status_code >= 500 and can_retry:
                    await self._sleep(self._backoff(attempt))
                    continue
                return EmailLookupResult(email=None, error=EmailLookupError.API_ERROR)

            try:
                emails = resp.json()
            except ValueError:
                return EmailLookupResult(email=None, error=EmailLookupError.API_ERROR)
            if not isinstance(emails, list) or not emails:
                logger.warning("email.empty_response")
                return EmailLookupResult(email=None, error=EmailLookupError.API_ERROR)

            email = pick_verified_email(emails)
            if email is None:
                logger.warning("email.none_verified")
                return EmailLookupResult(email=None, error=EmailLookupError.API_ERROR)
            return EmailLookupResult(email=email)

        return EmailLookupResult(email=None, error=EmailLookupError.API_ERROR)

    async def resolve_email(self, actor_or_token: Actor | str | None) -> str | None:
        """Best verified email for the actor; never raises."""
        token = actor_or_token.oauth_token if isinstance(actor_or_token, Actor) else actor_or_token
        try:
            result = await self.lookup(token)
        except Exception as e:
            logger.error("email.unexpected_error", error=str(e))
            return None
        if result.error:
            logger.warning("email.lookup_failed", error=result.error.value, rate_limit_reset=result.rate_limit_reset)
        return result.email
