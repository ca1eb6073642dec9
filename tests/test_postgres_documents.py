# tests/test_postgres_documents.py

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from todo_sync.core import codec
from todo_sync.core.models import Document, Todo
from todo_sync.db.postgres import (
    TIMESTAMP_KEY,
    PostgresDocumentStore,
    _PostgresRegistration,
    build_select,
    from_json,
    to_json,
)
from todo_sync.db.store import Query, Snapshot

WHEN = datetime(2025, 5, 4, 12, 30, 15, tzinfo=timezone.utc)


def test_timestamps_are_tagged_in_json():
    data = to_json({"createdAt": WHEN, "nested": {"at": WHEN}, "items": [WHEN]})

    assert data == {
        "createdAt": {TIMESTAMP_KEY: "2025-05-04T12:30:15+00:00"},
        "nested": {"at": {TIMESTAMP_KEY: "2025-05-04T12:30:15+00:00"}},
        "items": [{TIMESTAMP_KEY: "2025-05-04T12:30:15+00:00"}],
    }
    assert from_json(data) == {"createdAt": WHEN, "nested": {"at": WHEN}, "items": [WHEN]}


def test_malformed_timestamp_is_left_as_is():
    raw = {"dueDate": {TIMESTAMP_KEY: "not a date"}}

    assert from_json(raw) == raw


def test_todo_survives_a_jsonb_round_trip():
    todo = Todo(
        id="doc-1",
        title="Buy milk",
        description="",
        is_completed=True,
        priority=3,
        created_at=WHEN,
        due_date=WHEN,
    )

    stored = from_json(to_json(codec.encode(todo)))

    assert codec.decode(Document(id="doc-1", data=stored)) == todo


def test_pending_query_filters_with_containment():
    query = Query("tasks").ordered_by("priority", descending=True).where_equal("isCompleted", False)

    _, params = build_select(query)

    assert params[0] == "tasks"
    assert params[1].obj == {"isCompleted": False}


def test_unfiltered_query_only_binds_the_collection():
    _, params = build_select(Query("tasks").ordered_by("priority", descending=True))

    assert params == ["tasks"]


def test_documents_table_metadata():
    from todo_sync.db.schemas import Base

    table = Base.metadata.tables["documents"]

    assert {c.name for c in table.columns} == {"id", "collection", "data", "created_at", "updated_at"}
    assert {i.name for i in table.indexes} == {"idx_documents_collection", "idx_documents_data"}


class _NoConnections:
    async def connect(self, *, autocommit: bool = False):
        raise AssertionError("no database in unit tests")


@pytest.mark.asyncio
async def test_refreshes_of_one_listener_deliver_in_read_order(monkeypatch: pytest.MonkeyPatch):
    store = PostgresDocumentStore(_NoConnections())
    query = Query("tasks")
    older = Snapshot(query, (Document(id="a", data={"title": "old"}),))
    newer = Snapshot(query, (Document(id="a", data={"title": "new"}),))
    release_first = asyncio.Event()
    reads = 0

    async def fetch(_query: Query) -> Snapshot:
        nonlocal reads
        reads += 1
        if reads == 1:
            await release_first.wait()
            return older
        return newer

    monkeypatch.setattr(store, "fetch", fetch)
    delivered: list[Snapshot] = []
    registration = _PostgresRegistration(store, query, lambda snapshot, error: delivered.append(snapshot))

    first = asyncio.create_task(store._refresh(registration))
    await asyncio.sleep(0)
    second = asyncio.create_task(store._refresh(registration))
    await asyncio.sleep(0.01)

    assert reads == 1
    release_first.set()
    await asyncio.gather(first, second)

    assert delivered == [older, newer]
    assert registration.last == newer


@pytest.mark.asyncio
async def test_removing_the_last_listener_stops_listening(monkeypatch: pytest.MonkeyPatch):
    store = PostgresDocumentStore(_NoConnections())

    async def listen_forever() -> None:
        await asyncio.Event().wait()

    monkeypatch.setattr(store, "_listen_loop", listen_forever)
    registration = store.listen(Query("tasks"), lambda snapshot, error: None)
    listen_task = store._listen_task

    registration.remove()
    await asyncio.gather(listen_task, return_exceptions=True)

    assert listen_task.cancelled()
    assert store._listen_task is None
    await store.close()
