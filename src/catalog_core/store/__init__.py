"""Entity store contract, implementations and typed adapter."""
from .adapter import EntityStoreAdapter
from .base import EntityStore
from .memory import InMemoryEntityStore
from .sqlite import SQLiteEntityStore

__all__ = ["EntityStore", "EntityStoreAdapter", "InMemoryEntityStore", "SQLiteEntityStore"]
