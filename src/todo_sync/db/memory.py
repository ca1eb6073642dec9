"""In-memory document store."""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from threading import RLock
from typing import Any
from uuid import uuid4

import structlog

from todo_sync.core.models import Document
from todo_sync.db.store import (
    DocumentNotFoundError,
    DocumentStore,
    ListenerRegistration,
    Query,
    Snapshot,
    SnapshotCallback,
)

logger = structlog.get_logger()


def _auto_id() -> str:
    return uuid4().hex[:20]


class _MemoryRegistration(ListenerRegistration):
    def __init__(self, store: MemoryDocumentStore, query: Query, callback: SnapshotCallback):
        self._store = store
        self.query = query
        self.callback = callback
        self.last: Snapshot | None = None
        self.active = True

    def remove(self) -> None:
        self._store._remove_listener(self)


class MemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-memory document store suitable for testing and the default runtime.

    Listeners are called synchronously from the writing call, and only when
    their query result actually changed.
    """

    def __init__(self, id_factory: Callable[[], str] = _auto_id) -> None:
        self._lock = RLock()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: list[_MemoryRegistration] = []
        self._id_factory = id_factory

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections.get(collection, {}))

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            document_id = self._id_factory()
            while document_id in docs:
                document_id = self._id_factory()
            docs[document_id] = copy.deepcopy(dict(data))
        self._publish(collection)
        return document_id

    async def get(self, collection: str, document_id: str) -> Document | None:
        with self._lock:
            data = self._collections.get(collection, {}).get(document_id)
            if data is None:
                return None
            return Document(id=document_id, data=copy.deepcopy(data))

    async def update(
        self, collection: str, document_id: str, data: Mapping[str, Any]
    ) -> None:
        with self._lock:
            existing = self._collections.get(collection, {}).get(document_id)
            if existing is None:
                raise DocumentNotFoundError(collection, document_id)
            existing.update(copy.deepcopy(dict(data)))
        self._publish(collection)

    async def delete(self, collection: str, document_id: str) -> bool:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(document_id, None)
        if removed is None:
            return False
        self._publish(collection)
        return True

    async def fetch(self, query: Query) -> Snapshot:
        return self._snapshot(query)

    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        registration = _MemoryRegistration(self, query, callback)
        with self._lock:
            self._listeners.append(registration)
        logger.debug("memory_listener_added", collection=query.collection)
        self._deliver(registration)
        return registration

    def _remove_listener(self, registration: _MemoryRegistration) -> None:
        with self._lock:
            registration.active = False
            if registration in self._listeners:
                self._listeners.remove(registration)
                logger.debug("memory_listener_removed", collection=registration.query.collection)

    def _snapshot(self, query: Query) -> Snapshot:
        with self._lock:
            docs = [
                Document(id=doc_id, data=copy.deepcopy(data))
                for doc_id, data in self._collections.get(query.collection, {}).items()
            ]
        return Snapshot(query=query, documents=tuple(query.apply(docs)))

    def _publish(self, collection: str) -> None:
        with self._lock:
            targets = [r for r in self._listeners if r.query.collection == collection]
        for registration in targets:
            self._deliver(registration)

    def _deliver(self, registration: _MemoryRegistration) -> None:
        snapshot = self._snapshot(registration.query)
        if not registration.active or snapshot == registration.last:
            return
        registration.last = snapshot
        registration.callback(snapshot, None)
