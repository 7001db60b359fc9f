"""Version control synchronization (GitHub content repository)."""
from .github import GitHubAPIError, GitHubClient
from .render import render_entity_yaml
from .synchronizer import SyncRequest, VersionControlService, VersionControlSynchronizer, build_sync_request

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "SyncRequest",
    "VersionControlService",
    "VersionControlSynchronizer",
    "build_sync_request",
    "render_entity_yaml",
]
