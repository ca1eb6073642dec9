# tests/test_memory_store.py

from __future__ import annotations

import pytest

from todo_sync.db.memory import MemoryDocumentStore
from todo_sync.db.store import DocumentNotFoundError, Query

from .fakes import sequential_ids


@pytest.fixture()
def mem() -> MemoryDocumentStore:
    return MemoryDocumentStore(id_factory=sequential_ids("a", "b", "c", "d", "e"))


def by_priority(collection: str = "tasks") -> Query:
    return Query(collection).ordered_by("priority", descending=True)


@pytest.mark.asyncio
async def test_add_get_update_delete(mem: MemoryDocumentStore):
    doc_id = await mem.add("tasks", {"title": "Buy milk", "priority": 1})
    assert doc_id == "a"

    await mem.update("tasks", doc_id, {"priority": 3})
    doc = await mem.get("tasks", doc_id)
    assert doc.data == {"title": "Buy milk", "priority": 3}

    assert await mem.delete("tasks", doc_id) is True
    assert await mem.get("tasks", doc_id) is None
    assert await mem.delete("tasks", doc_id) is False


@pytest.mark.asyncio
async def test_update_missing_document_raises(mem: MemoryDocumentStore):
    with pytest.raises(DocumentNotFoundError):
        await mem.update("tasks", "nope", {"title": "x"})


@pytest.mark.asyncio
async def test_returned_documents_are_copies(mem: MemoryDocumentStore):
    doc_id = await mem.add("tasks", {"tags": ["home"]})
    doc = await mem.get("tasks", doc_id)
    doc.data["tags"].append("work")

    assert (await mem.get("tasks", doc_id)).data == {"tags": ["home"]}


@pytest.mark.asyncio
async def test_ordered_query_sorts_descending_and_keeps_store_order_for_ties(
    mem: MemoryDocumentStore,
):
    for title, priority in [("a", 1), ("b", 3), ("c", 1), ("d", 2), ("e", 3)]:
        await mem.add("tasks", {"title": title, "priority": priority})

    snapshot = await mem.fetch(by_priority())

    # Ties keep insertion order here; callers must not rely on that.
    assert [d.data["title"] for d in snapshot.documents] == ["b", "e", "d", "a", "c"]


@pytest.mark.asyncio
async def test_ordered_query_excludes_documents_without_the_order_field(mem: MemoryDocumentStore):
    await mem.add("tasks", {"title": "no priority"})
    await mem.add("tasks", {"title": "has priority", "priority": 2})

    snapshot = await mem.fetch(by_priority())

    assert [d.data["title"] for d in snapshot.documents] == ["has priority"]


@pytest.mark.asyncio
async def test_equality_filter_does_not_mix_booleans_and_numbers(mem: MemoryDocumentStore):
    await mem.add("tasks", {"isCompleted": False, "priority": 1})
    await mem.add("tasks", {"isCompleted": 0, "priority": 1})
    await mem.add("tasks", {"isCompleted": True, "priority": 1})

    snapshot = await mem.fetch(by_priority().where_equal("isCompleted", False))

    assert [d.id for d in snapshot.documents] == ["a"]


@pytest.mark.asyncio
async def test_ordering_tolerates_mixed_value_types(mem: MemoryDocumentStore):
    await mem.add("tasks", {"priority": "high"})
    await mem.add("tasks", {"priority": 2})

    snapshot = await mem.fetch(by_priority())

    assert len(snapshot) == 2


@pytest.mark.asyncio
async def test_listen_delivers_initial_and_changed_snapshots_only(mem: MemoryDocumentStore):
    received = []
    pending = by_priority().where_equal("isCompleted", False)
    registration = mem.listen(pending, lambda snap, err: received.append((snap, err)))

    assert len(received) == 1
    assert received[0][0].documents == ()

    done_id = await mem.add("tasks", {"title": "done", "isCompleted": True, "priority": 1})
    assert len(received) == 1  # not part of the pending result

    await mem.update("tasks", done_id, {"title": "still done"})
    assert len(received) == 1

    await mem.add("tasks", {"title": "open", "isCompleted": False, "priority": 1})
    assert len(received) == 2
    assert [d.data["title"] for d in received[1][0].documents] == ["open"]

    registration.remove()
    registration.remove()
    await mem.add("tasks", {"title": "later", "isCompleted": False, "priority": 1})
    assert len(received) == 2
    assert mem.listener_count == 0


@pytest.mark.asyncio
async def test_listeners_only_see_their_collection(mem: MemoryDocumentStore):
    received = []
    mem.listen(by_priority("tasks"), lambda snap, err: received.append(snap))

    await mem.add("notes", {"priority": 1})

    assert len(received) == 1
