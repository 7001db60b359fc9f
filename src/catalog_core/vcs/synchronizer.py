"""Mirror persisted catalog records into the content repository.

Two operating modes:
- ``internal_app``: branch on the canonical repository, service identity
  as committer, the credited human as author
- ``fork_pr``: branch and commit on the acting user's fork, then a
  cross-repository pull request back to the canonical repository

``sync`` never raises for remote failures; it returns ``SyncSuccess`` or a
tagged ``SyncFailureResult`` (``requires_reauth`` set when the token is
missing or rejected).
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import structlog

from catalog_core.attribution import Attribution, resolve_attribution
from catalog_core.config import CONFIG, GitHubConfig
from catalog_core.errors import CatalogError, ReauthRequired
from catalog_core.models import (
    Actor,
    Entity,
    EntityKind,
    SyncAction,
    SyncFailureResult,
    SyncMode,
    SyncResult,
    SyncSuccess,
)

from .github import GitHubClient
from .render import branch_name, change_title, file_path, noreply_email, pr_body, render_entity_yaml

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SyncRequest:
    """Everything needed to mirror one record."""

    kind: EntityKind
    record: Entity
    action: SyncAction
    user_login: str
    user_email: str | None
    contributor_name: str
    editor_name: str | None
    acting_user_id: str
    user_token: str | None = None
    mode: SyncMode | None = None

    @property
    def attribution(self) -> Attribution:
        return Attribution(committer=self.user_login, contributor=self.contributor_name, editor=self.editor_name)


class VersionControlService(Protocol):
    async def sync(self, request: SyncRequest) -> SyncResult: ...


def build_sync_request(
    kind: EntityKind,
    record: Entity,
    action: SyncAction,
    actor: Actor,
    *,
    user_email: str | None = None,
    mode: SyncMode | None = None,
) -> SyncRequest:
    """Apply the attribution rule to a record about to be mirrored."""
    attribution = resolve_attribution(action, record)
    return SyncRequest(
        kind=kind,
        record=record,
        action=action,
        user_login=attribution.committer,
        user_email=user_email,
        contributor_name=attribution.contributor,
        editor_name=attribution.editor,
        acting_user_id=actor.id,
        user_token=actor.oauth_token,
        mode=mode,
    )


ClientFactory = Callable[[str | None], GitHubClient]


class VersionControlSynchronizer:
    """GitHub-backed ``VersionControlService``."""

    def __init__(
        self,
        config: GitHubConfig | None = None,
        *,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or CONFIG.github
        self._client_factory = client_factory or (lambda token: GitHubClient(token, self.config, sleep=sleep))
        self._clock = clock

    def resolve_mode(self, request: SyncRequest) -> SyncMode:
        return request.mode or SyncMode.parse(self.config.contribution_mode)

    async def sync(self, request: SyncRequest) -> SyncResult:
        mode = self.resolve_mode(request)
        token = request.user_token if mode is SyncMode.FORK_PR else self.config.app_token
        log = logger.bind(kind=request.kind.value, id=request.record.id, action=request.action.value, mode=mode.value)

        if not token:
            log.warning("sync.no_token")
            return SyncFailureResult(error="GitHub authorization required", requires_reauth=True)

        try:
            async with self._client_factory(token) as gh:
                if mode is SyncMode.FORK_PR:
                    result = await self._sync_fork(gh, request)
                else:
                    result = await self._sync_internal(gh, request)
        except ReauthRequired as e:
            log.warning("sync.reauth_required", error=str(e))
            return SyncFailureResult(error=str(e), requires_reauth=True)
        except CatalogError as e:
            log.error("sync.failed", error=str(e))
            return SyncFailureResult(error=str(e))
        except (KeyError, TypeError) as e:
            log.error("sync.unexpected_response", error=repr(e))
            return SyncFailureResult(error=f"Unexpected GitHub response: missing {e}")

        log.info("sync.completed", pr_number=result.pr_number, commit_sha=result.commit_sha, branch=result.branch)
        return result

    # ------------------------------------------------------------------

    def _change(self, request: SyncRequest) -> tuple[str, str, str, str, str]:
        record = request.record
        path = file_path(self.config, request.kind, record.slug)
        branch = branch_name(request.action, request.kind, record.slug, int(self._clock() * 1000))
        title = change_title(request.kind, record, request.action)
        body = pr_body(request.kind, record, request.action, request.attribution)
        content = render_entity_yaml(request.kind, record)
        return path, branch, title, body, content

    @staticmethod
    def _author(request: SyncRequest) -> dict[str, str]:
        # Name and fallback address both come from the credited login
        name = request.user_login
        return {"name": name, "email": request.user_email or noreply_email(name)}

    async def _sync_internal(self, gh: GitHubClient, request: SyncRequest) -> SyncSuccess:
        owner, repo, base = self.config.repo_owner, self.config.content_repo, self.config.base_branch
        path, branch, title, body, content = self._change(request)

        base_sha = await gh.get_branch_sha(owner, repo, base)
        await gh.create_branch(owner, repo, branch, base_sha)
        existing_sha = await gh.get_file_sha(owner, repo, path, ref=branch)
        commit = await gh.put_file(
            owner,
            repo,
            path,
            message=title,
            content=content,
            branch=branch,
            sha=existing_sha,
            author=self._author(request),
            committer={"name": self.config.bot_name, "email": self.config.bot_email},
        )
        pr = await gh.create_pull(owner, repo, title=title, head=branch, base=base, body=body)
        return SyncSuccess(
            commit_sha=commit["commit"]["sha"],
            pr_number=pr["number"],
            pr_url=pr["html_url"],
            branch=branch,
            file_path=path,
            mode=SyncMode.INTERNAL_APP,
        )

    async def _sync_fork(self, gh: GitHubClient, request: SyncRequest) -> SyncSuccess:
        owner, repo, base = self.config.repo_owner, self.config.content_repo, self.config.base_branch
        path, branch, title, body, content = self._change(request)

        user = await gh.get_authenticated_user()
        fork_owner = user["login"]
        fork = await gh.ensure_fork(owner, repo)
        fork_repo = fork.get("name") or repo

        upstream_sha = await gh.get_branch_sha(owner, repo, base)
        await gh.wait_for_ref(fork_owner, fork_repo, base)
        await gh.create_branch(fork_owner, fork_repo, branch, upstream_sha)
        existing_sha = await gh.get_file_sha(fork_owner, fork_repo, path, ref=branch)

        # The fork only hosts the branch; credit stays with the attributed committer
        identity = self._author(request)
        commit = await gh.put_file(
            fork_owner,
            fork_repo,
            path,
            message=title,
            content=content,
            branch=branch,
            sha=existing_sha,
            author=identity,
            committer=identity,
        )
        pr = await gh.create_pull(owner, repo, title=title, head=f"{fork_owner}:{branch}", base=base, body=body)
        return SyncSuccess(
            commit_sha=commit["commit"]["sha"],
            pr_number=pr["number"],
            pr_url=pr["html_url"],
            branch=branch,
            file_path=path,
            mode=SyncMode.FORK_PR,
        )
