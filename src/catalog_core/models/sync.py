"""Version-control synchronization request/result types."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class SyncAction(str, Enum):
    """Why an entity is being mirrored."""

    CREATED = "created"
    EDITED = "edited"
    PUBLISHED = "published"


class SyncMode(str, Enum):
    """Where commits land."""

    # Commit on a fork owned by the contributor, cross-repository PR
    FORK_PR = "fork_pr"
    # Commit on a branch of the canonical repository with the service identity
    INTERNAL_APP = "internal_app"

    @classmethod
    def parse(cls, value: str | SyncMode | None) -> SyncMode:
        if isinstance(value, SyncMode):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.INTERNAL_APP


class SyncSuccess(BaseModel):
    commit_sha: str
    pr_number: int
    pr_url: str
    branch: str
    file_path: str
    mode: SyncMode = SyncMode.INTERNAL_APP

    @property
    def linkage(self) -> dict[str, object]:
        return {
            "vcs_commit_sha": self.commit_sha,
            "vcs_pr_number": self.pr_number,
            "vcs_pr_url": self.pr_url,
            "vcs_file_path": self.file_path,
        }


class SyncFailureResult(BaseModel):
    error: str
    requires_reauth: bool = False


SyncResult = SyncSuccess | SyncFailureResult
