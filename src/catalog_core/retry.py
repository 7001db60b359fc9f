"""Bounded exponential-backoff retry for transient failures.

Wraps tenacity so every call site shares one classification of what is
worth retrying (connection resets, timeouts, DNS failures, Postgres
connection-exception codes, rate limits and 5xx responses) and what must
surface immediately (validation, lifecycle state, auth).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from catalog_core.config import CONFIG, RetryConfig
from catalog_core.errors import (
    AuthError,
    CatalogError,
    NotFound,
    StateError,
    SyncFailure,
    TransientInfraError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_PATTERNS: tuple[str, ...] = (
    "network",
    "timeout",
    "econnreset",
    "etimedout",
    "enotfound",
    "eai_again",
    "connection",
    "temporary",
    "transient",
    "socket",
    "econnrefused",
    "econnaborted",
)

RETRYABLE_PG_CODES: frozenset[str] = frozenset(
    {
        "08000",  # connection_exception
        "08003",  # connection_does_not_exist
        "08006",  # connection_failure
        "08001",  # sqlclient_unable_to_establish_sqlconnection
        "08004",  # sqlserver_rejected_establishment_of_sqlconnection
        "57p01",  # admin_shutdown
        "57p02",  # crash_shutdown
        "57p03",  # cannot_connect_now
        "53300",  # too_many_connections
    }
)

_PERMANENT = (ValidationError, StateError, AuthError, NotFound, SyncFailure)


def is_retryable_error(exc: BaseException) -> bool:
    """Classify an error as transient (retry) or permanent (surface now)."""
    if isinstance(exc, TransientInfraError):
        return True
    if isinstance(exc, _PERMANENT):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True

    # Catalog errors carry a response code for callers, not an HTTP origin
    status = None if isinstance(exc, CatalogError) else getattr(exc, "status_code", None)
    if isinstance(status, int) and (status == 429 or status >= 500):
        return True

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.lower() in RETRYABLE_PG_CODES:
        return True

    message = str(exc).lower()
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


@dataclass
class RetryPolicy:
    """How many times, how long between, and which errors to retry."""

    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 2.0
    backoff_multiplier: float = 2.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)
    on_retry: Callable[[int, BaseException], None] | None = None

    @classmethod
    def from_config(cls, cfg: RetryConfig | None = None, *, max_attempts: int | None = None) -> RetryPolicy:
        cfg = cfg or CONFIG.retry
        return cls(
            max_attempts=max_attempts if max_attempts is not None else cfg.max_attempts,
            initial_delay=cfg.initial_delay,
            max_delay=cfg.max_delay,
            backoff_multiplier=cfg.backoff_multiplier,
        )

    @classmethod
    def for_sync(cls, cfg: RetryConfig | None = None) -> RetryPolicy:
        """Small attempt budget for non-idempotent remote calls."""
        cfg = cfg or CONFIG.retry
        return cls.from_config(cfg, max_attempts=max(1, min(cfg.sync_max_attempts, 3)))


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Invoke ``operation`` with bounded exponential backoff.

    Retryable failures wait ``min(delay, max_delay)`` before the next
    attempt and the delay grows by ``backoff_multiplier``. A permanent
    error, or the last error once attempts are exhausted, is re-raised
    unchanged.
    """
    policy = policy or RetryPolicy.from_config()

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retry.attempt_failed",
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            delay=state.next_action.sleep if state.next_action else None,
            error=str(exc),
        )
        if policy.on_retry and exc is not None:
            policy.on_retry(state.attempt_number, exc)

    retrying = AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.backoff_multiplier,
            min=0,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_before_sleep,
        reraise=True,
    )

    async def _attempt() -> T:
        return await operation()

    return await retrying(_attempt)


async def with_default(
    operation: Callable[[], Awaitable[T]],
    default: T,
    policy: RetryPolicy | None = None,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Retry a non-critical operation; log and return ``default`` on failure."""
    try:
        return await retry(operation, policy, sleep=sleep)
    except Exception as exc:
        logger.warning("retry.fallback_default", label=label, error=str(exc))
        return default
