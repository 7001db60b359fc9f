"""Minimal async GitHub REST client for mirroring catalog files.

Covers only what synchronization needs: refs, contents, forks and pull
requests. Status handling:
- 401 -> ``ReauthRequired`` (caller prompts re-authentication)
- 429 / 5xx / transport errors -> ``TransientInfraError`` (retried)
- other 4xx -> ``GitHubAPIError`` (permanent)
"""
from __future__ import annotations

import asyncio
import base64
from typing import Any, Awaitable, Callable

import httpx
import structlog

from catalog_core.config import CONFIG, GitHubConfig
from catalog_core.errors import ReauthRequired, SyncFailure, TransientInfraError
from catalog_core.retry import RetryPolicy, retry

logger = structlog.get_logger(__name__)


class GitHubAPIError(SyncFailure):
    """Permanent GitHub API failure."""

    def __init__(self, message: str, http_status: int | None = None, response: Any = None) -> None:
        super().__init__(message)
        self.http_status = http_status
        self.response = response


def _json_or_none(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def _error_message(resp: httpx.Response) -> str:
    data = _json_or_none(resp)
    if data is None:
        return resp.text[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data)
    return str(data)


class GitHubClient:
    """GitHub API client bound to one token.

    Example:
        async with GitHubClient(token) as gh:
            sha = await gh.get_branch_sha("owner", "repo", "main")
    """

    def __init__(
        self,
        token: str | None,
        config: GitHubConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.token = token
        self.config = config or CONFIG.github
        self.policy = policy or RetryPolicy.for_sync()
        self._sleep = sleep
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.config.api_url,
                timeout=self.config.timeout,
                headers={"User-Agent": self.config.user_agent},
                transport=self._transport,
            )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        allow_404: bool = False,
    ) -> Any:
        """Make an authenticated API request with bounded retry."""
        if not self._http:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        if not self.token:
            raise ReauthRequired("GitHub token missing")

        url = f"{self.config.api_url.rstrip('/')}{path}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        async def _do() -> Any:
            try:
                resp = await self._http.request(method, url, json=json, params=params, headers=headers)
            except httpx.HTTPError as e:
                raise TransientInfraError(f"network error calling GitHub {method} {path}: {e}") from e

            if resp.status_code == 401:
                raise ReauthRequired("GitHub token invalid or expired")
            if allow_404 and resp.status_code == 404:
                return None
            if resp.status_code == 429 or resp.status_code >= 500:
                raise TransientInfraError(
                    f"GitHub {method} {path} failed ({resp.status_code}): {_error_message(resp)}",
                    status_code=resp.status_code,
                )
            if resp.status_code >= 400:
                raise GitHubAPIError(
                    f"GitHub {method} {path} failed ({resp.status_code}): {_error_message(resp)}",
                    resp.status_code,
                    _json_or_none(resp),
                )
            return resp.json() if resp.content else {}

        return await retry(_do, self.policy, sleep=self._sleep)

    # =========================================================================
    # Users and repositories
    # =========================================================================

    async def get_authenticated_user(self) -> dict[str, Any]:
        return await self._request("GET", "/user")

    async def ensure_fork(self, owner: str, repo: str) -> dict[str, Any]:
        """Create (or return the existing) fork for the token's user."""
        data = await self._request("POST", f"/repos/{owner}/{repo}/forks", json={"default_branch_only": True})
        logger.info("github.fork_ready", upstream=f"{owner}/{repo}", fork=data.get("full_name"))
        return data

    async def wait_for_ref(self, owner: str, repo: str, branch: str, *, attempts: int = 5, delay: float = 1.0) -> str:
        """Poll until a (freshly forked) repository exposes ``branch``."""
        for attempt in range(attempts):
            data = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}", allow_404=True)
            if data:
                return data["object"]["sha"]
            if attempt < attempts - 1:
                await self._sleep(delay)
        raise GitHubAPIError(f"Branch {branch} not available on {owner}/{repo}", 404)

    # =========================================================================
    # Git refs and contents
    # =========================================================================

    async def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        data = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        return data["object"]["sha"]

    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        try:
            await self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/refs",
                json={"ref": f"refs/heads/{branch}", "sha": sha},
            )
        except GitHubAPIError as e:
            # A retried create may find its own earlier attempt
            if e.http_status == 422 and "already exists" in str(e).lower():
                logger.info("github.branch_exists", repo=f"{owner}/{repo}", branch=branch)
                return
            raise

    async def get_file_sha(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        data = await self._request("GET", f"/repos/{owner}/{repo}/contents/{path}", params={"ref": ref}, allow_404=True)
        if isinstance(data, dict):
            return data.get("sha")
        return None

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        *,
        message: str,
        content: str,
        branch: str,
        sha: str | None,
        author: dict[str, str],
        committer: dict[str, str],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
            "author": author,
            "committer": committer,
        }
        if sha:
            payload["sha"] = sha
        return await self._request("PUT", f"/repos/{owner}/{repo}/contents/{path}", json=payload)

    async def create_pull(self, owner: str, repo: str, *, title: str, head: str, base: str, body: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={
                "title": title,
                "head": head,
                "base": base,
                "body": body,
                "maintainer_can_modify": True,
            },
        )
