"""Shared fixtures: in-memory store, actors and a fake GitHub API."""
from __future__ import annotations

import json
import re
from typing import Any

import httpx
import pytest

from catalog_core.config import GitHubConfig, RetryConfig
from catalog_core.lifecycle import DraftLifecycleManager
from catalog_core.models import Actor, Role
from catalog_core.retry import RetryPolicy
from catalog_core.store import EntityStoreAdapter, InMemoryEntityStore
from catalog_core.vcs import GitHubClient, VersionControlSynchronizer


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeGitHub:
    """Routes GitHub REST calls to canned responses and records them.

    ``fail`` maps ``(METHOD, path regex)`` to a list of status codes that
    are returned, one per matching call, before normal routing resumes.
    """

    def __init__(self, *, user_login: str = "alice") -> None:
        self.user_login = user_login
        self.requests: list[httpx.Request] = []
        self.existing_files: dict[str, str] = {}
        self.fail: dict[tuple[str, str], list[int]] = {}
        self.emails: list[dict[str, Any]] = [
            {"email": "alice@example.com", "primary": True, "verified": True},
        ]
        self.pr_number = 42

    def body(self, request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content) if request.content else {}

    def calls(self, method: str, pattern: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and re.search(pattern, r.url.path)]

    def _injected(self, request: httpx.Request) -> int | None:
        for (method, pattern), statuses in self.fail.items():
            if method == request.method and re.search(pattern, request.url.path) and statuses:
                return statuses.pop(0)
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        status = self._injected(request)
        if status is not None:
            return httpx.Response(status, json={"message": f"injected {status}"})

        if request.method == "GET" and path == "/user":
            return httpx.Response(200, json={"login": self.user_login})
        if request.method == "GET" and path == "/user/emails":
            return httpx.Response(200, json=self.emails)
        if request.method == "POST" and path.endswith("/forks"):
            repo = path.split("/")[3]
            return httpx.Response(202, json={"name": repo, "full_name": f"{self.user_login}/{repo}"})
        if request.method == "GET" and "/git/ref/heads/" in path:
            return httpx.Response(200, json={"object": {"sha": "base-sha"}})
        if request.method == "POST" and path.endswith("/git/refs"):
            return httpx.Response(201, json={"ref": self.body(request)["ref"]})
        if "/contents/" in path:
            file_path = path.split("/contents/", 1)[1]
            if request.method == "GET":
                sha = self.existing_files.get(file_path)
                if sha is None:
                    return httpx.Response(404, json={"message": "Not Found"})
                return httpx.Response(200, json={"sha": sha, "path": file_path})
            if request.method == "PUT":
                return httpx.Response(201, json={"commit": {"sha": "commit-sha"}, "content": {"path": file_path}})
        if request.method == "POST" and path.endswith("/pulls"):
            owner, repo = path.split("/")[2:4]
            return httpx.Response(
                201,
                json={"number": self.pr_number, "html_url": f"https://github.com/{owner}/{repo}/pull/{self.pr_number}"},
            )
        return httpx.Response(404, json={"message": f"unrouted {request.method} {path}"})


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=0.1, max_delay=2.0, backoff_multiplier=2.0)


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def adapter(store: InMemoryEntityStore, fast_policy: RetryPolicy, sleep: SleepRecorder) -> EntityStoreAdapter:
    return EntityStoreAdapter(store, fast_policy, sleep=sleep)


@pytest.fixture
def manager(adapter: EntityStoreAdapter) -> DraftLifecycleManager:
    return DraftLifecycleManager(adapter, clock=lambda: "2025-01-01T00:00:00+00:00")


@pytest.fixture
def contributor() -> Actor:
    return Actor(id="u-alice", login="alice", email="alice@example.com", role=Role.CONTRIBUTOR)


@pytest.fixture
def editor() -> Actor:
    return Actor(id="u-erin", login="erin", role=Role.EDITOR)


@pytest.fixture
def github_config() -> GitHubConfig:
    return GitHubConfig(
        api_url="https://api.github.test",
        repo_owner="openkpis",
        content_repo="catalog-content",
        base_branch="main",
        contribution_mode="internal_app",
        app_token="app-token",
        bot_name="Catalog Bot",
        bot_email="bot@catalog.invalid",
        content_root="data-layer",
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def synchronizer(github_config: GitHubConfig, fake_github: FakeGitHub, sleep: SleepRecorder) -> VersionControlSynchronizer:
    policy = RetryPolicy.for_sync(RetryConfig(sync_max_attempts=2))

    def factory(token: str | None) -> GitHubClient:
        transport = httpx.MockTransport(fake_github.handler)
        return GitHubClient(token, github_config, transport=transport, policy=policy, sleep=sleep)

    return VersionControlSynchronizer(github_config, client_factory=factory, clock=lambda: 1700000000.0, sleep=sleep)
