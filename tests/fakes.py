# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from itertools import chain, count
from typing import Any

from todo_sync.db.memory import MemoryDocumentStore
from todo_sync.db.store import ListenerRegistration, Query, SnapshotCallback


def sequential_ids(*ids: str) -> Callable[[], str]:
    """Id factory handing out the given ids in order, then doc1, doc2, ..."""
    remaining = chain(ids, (f"doc{n}" for n in count(1)))
    return lambda: next(remaining)


class FlakyDocumentStore(MemoryDocumentStore):
    """
    Memory store with switches for failure scenarios.

    - fail_writes: raised by add/update/delete before touching data
    - write_gate: when set, writes wait for the event before applying
    - fail_subscriptions(): reports an error to every open listener, or only
      to those of one query
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.fail_writes: Exception | None = None
        self.write_gate: asyncio.Event | None = None
        self.listen_calls = 0

    async def _before_write(self) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        if self.write_gate is not None:
            await self.write_gate.wait()

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        await self._before_write()
        return await super().add(collection, data)

    async def update(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        await self._before_write()
        await super().update(collection, document_id, data)

    async def delete(self, collection: str, document_id: str) -> bool:
        await self._before_write()
        return await super().delete(collection, document_id)

    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        self.listen_calls += 1
        return super().listen(query, callback)

    def fail_subscriptions(self, error: Exception, query: Query | None = None) -> None:
        for registration in list(self._listeners):
            if query is not None and registration.query != query:
                continue
            registration.remove()
            registration.callback(None, error)


class ForgetfulDocumentStore(MemoryDocumentStore):
    """Accepts updates but never applies them."""

    async def update(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        return None


class CollectingNotifier:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def notify(self, message: str) -> None:
        self.messages.append(message)


async def next_item(stream, timeout: float = 1.0):
    return await asyncio.wait_for(anext(stream), timeout)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
