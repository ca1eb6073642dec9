"""Todo repository over a document store collection."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import structlog

from todo_sync.core import codec
from todo_sync.core.models import Todo
from todo_sync.db.store import (
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    Query,
    Snapshot,
)

logger = structlog.get_logger()

TASKS_COLLECTION = "tasks"


class RoundTripError(DocumentStoreError):
    """A stage of the connectivity round trip read back an unexpected value."""

    def __init__(self, stage: str, expected: Any, actual: Any) -> None:
        super().__init__(f"Round trip failed at {stage}: expected {expected!r}, got {actual!r}")
        self.stage = stage
        self.expected = expected
        self.actual = actual


class TodoRepository:
    """Live queries and writes for todos stored in one collection.

    ``strict_delete`` decides what deleting a missing todo does: by default it
    is a logged no-op, when set it raises DocumentNotFoundError.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = TASKS_COLLECTION,
        strict_delete: bool = False,
    ) -> None:
        self._store = store
        self._collection = collection
        self._strict_delete = strict_delete

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def all_query(self) -> Query:
        return Query(self._collection).ordered_by(codec.PRIORITY, descending=True)

    @property
    def pending_query(self) -> Query:
        return self.all_query.where_equal(codec.IS_COMPLETED, False)

    # --- Live queries ---

    def observe_all(self) -> AsyncIterator[list[Todo]]:
        """All todos, highest priority first, re-emitted on every change."""
        return self._observe(self.all_query, "all")

    def observe_pending(self) -> AsyncIterator[list[Todo]]:
        """Todos not yet completed, highest priority first."""
        return self._observe(self.pending_query, "pending")

    async def _observe(self, query: Query, name: str) -> AsyncIterator[list[Todo]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[Snapshot | None, Exception | None]] = asyncio.Queue()

        def on_snapshot(snapshot: Snapshot | None, error: Exception | None) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, (snapshot, error))

        logger.debug("todo_listener_opening", query=name, collection=self._collection)
        registration = self._store.listen(query, on_snapshot)
        try:
            while True:
                snapshot, error = await queue.get()
                if error is not None:
                    logger.error("todo_listener_failed", query=name, error=str(error))
                    raise error
                todos = self._decode_all(snapshot)
                logger.debug("todo_snapshot_received", query=name, count=len(todos))
                yield todos
        finally:
            logger.debug("todo_listener_closing", query=name)
            registration.remove()

    @staticmethod
    def _decode_all(snapshot: Snapshot | None) -> list[Todo]:
        if snapshot is None:
            return []
        todos = []
        for document in snapshot.documents:
            todo = codec.decode(document)
            if todo is None:
                logger.warning("todo_decode_failed", document_id=document.id)
                continue
            todos.append(todo)
        return todos

    # --- Writes ---

    async def get(self, todo_id: str) -> Todo | None:
        document = await self._store.get(self._collection, todo_id)
        if document is None:
            return None
        return codec.decode(document)

    async def create(self, todo: Todo) -> str:
        logger.info("todo_creating", title=todo.title)
        try:
            todo_id = await self._store.add(self._collection, codec.encode(todo))
        except Exception as e:
            logger.error("todo_create_failed", title=todo.title, error=str(e))
            raise
        logger.info("todo_created", todo_id=todo_id)
        return todo_id

    async def update(self, todo: Todo) -> None:
        _require_id(todo, "update")
        logger.info("todo_updating", todo_id=todo.id, is_completed=todo.is_completed)
        fields = codec.encode(todo)
        fields[codec.IS_COMPLETED] = todo.is_completed
        try:
            await self._store.update(self._collection, todo.id, fields)
        except Exception as e:
            logger.error("todo_update_failed", todo_id=todo.id, error=str(e))
            raise
        logger.info("todo_updated", todo_id=todo.id)

    async def delete(self, todo: Todo) -> None:
        _require_id(todo, "delete")
        logger.info("todo_deleting", todo_id=todo.id)
        try:
            existed = await self._store.delete(self._collection, todo.id)
        except Exception as e:
            logger.error("todo_delete_failed", todo_id=todo.id, error=str(e))
            raise

        if existed:
            logger.info("todo_deleted", todo_id=todo.id)
        elif self._strict_delete:
            logger.warning("todo_delete_missing", todo_id=todo.id)
            raise DocumentNotFoundError(self._collection, todo.id)
        else:
            logger.info("todo_delete_missing", todo_id=todo.id)

    # --- Diagnostics ---

    async def verify_round_trip(self) -> str:
        """Create, read back, complete, read back and delete a probe todo.

        Returns the probe id. The probe is removed even if a check fails.
        """
        logger.info("round_trip_started", collection=self._collection)
        probe = Todo(
            title="Connection probe",
            description="Temporary task written by the connectivity check",
        )
        probe_id = await self.create(probe)
        try:
            created = await self.get(probe_id)
            _expect("read_created", probe.title, created.title if created else None)

            await self.update(probe.model_copy(update={"id": probe_id, "is_completed": True}))
            updated = await self.get(probe_id)
            _expect("read_updated", True, updated.is_completed if updated else None)
        finally:
            await self._store.delete(self._collection, probe_id)

        remaining = await self._store.get(self._collection, probe_id)
        _expect("read_deleted", None, remaining)
        logger.info("round_trip_succeeded", probe_id=probe_id)
        return probe_id


def _require_id(todo: Todo, operation: str) -> None:
    if not todo.id:
        raise ValueError(f"Cannot {operation} a todo without an id")


def _expect(stage: str, expected: Any, actual: Any) -> None:
    if actual != expected:
        logger.error("round_trip_mismatch", stage=stage, expected=expected, actual=actual)
        raise RoundTripError(stage, expected, actual)
