"""Catalog Core - entity lifecycle and version-control synchronization.

Drafts, editorial publish/reject, shadow-draft reconciliation and the
GitHub mirror that turns every approved change into a pull request.
"""

__version__ = "0.1.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "PublicationOrchestrator":
        from catalog_core.orchestrator import PublicationOrchestrator
        return PublicationOrchestrator
    if name == "DraftLifecycleManager":
        from catalog_core.lifecycle import DraftLifecycleManager
        return DraftLifecycleManager
    if name == "VersionControlSynchronizer":
        from catalog_core.vcs import VersionControlSynchronizer
        return VersionControlSynchronizer
    if name == "models":
        from catalog_core import models
        return models
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
