"""Document store backends."""

from __future__ import annotations

from todo_sync.config import LakebaseSettings, StoreSettings
from todo_sync.db.memory import MemoryDocumentStore
from todo_sync.db.store import DocumentStore


def create_store(
    settings: StoreSettings, lakebase: LakebaseSettings | None = None
) -> DocumentStore:
    """Build the configured backend: ``memory`` (default) or ``lakebase``."""
    if settings.backend == "lakebase":
        from todo_sync.db.postgres import LakebaseConnectionFactory, PostgresDocumentStore

        return PostgresDocumentStore(LakebaseConnectionFactory(lakebase))
    return MemoryDocumentStore()
