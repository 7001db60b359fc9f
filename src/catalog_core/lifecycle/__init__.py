"""Draft lifecycle state machine and reconciliation."""
from .manager import DraftHandle, DraftLifecycleManager, PublishResult
from .payloads import PAYLOAD_BUILDERS, build_update_payload

__all__ = [
    "DraftHandle",
    "DraftLifecycleManager",
    "PAYLOAD_BUILDERS",
    "PublishResult",
    "build_update_payload",
]
