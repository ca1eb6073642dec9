"""Document store contract shared by the memory and Lakebase backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from todo_sync.core.models import Document


class DocumentStoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, collection: str, document_id: str) -> None:
        super().__init__(f"Document {collection}/{document_id} not found")
        self.collection = collection
        self.document_id = document_id


@dataclass(frozen=True)
class Query:
    """
    A live-queryable view of one collection.

    Supports equality filters and a single order field. Documents that lack
    the order field are not part of an ordered result.
    """

    collection: str
    filters: tuple[tuple[str, Any], ...] = ()
    order_by: str | None = None
    descending: bool = False

    def where_equal(self, field: str, value: Any) -> Query:
        return replace(self, filters=(*self.filters, (field, value)))

    def ordered_by(self, field: str, *, descending: bool = False) -> Query:
        return replace(self, order_by=field, descending=descending)

    def matches(self, data: Mapping[str, Any]) -> bool:
        if self.order_by is not None and data.get(self.order_by) is None:
            return False
        return all(
            field in data and values_equal(data[field], value)
            for field, value in self.filters
        )

    def apply(self, documents: Iterable[Document]) -> list[Document]:
        """Filter and order documents the way the store would."""
        selected = [doc for doc in documents if self.matches(doc.data)]
        if self.order_by is None:
            return selected
        field = self.order_by
        # sorted() is stable with reverse=True, so ties keep store order.
        return sorted(
            selected,
            key=lambda doc: _order_key(doc.data.get(field)),
            reverse=self.descending,
        )


@dataclass(frozen=True)
class Snapshot:
    """The full result set of a query at one point in time."""

    query: Query
    documents: tuple[Document, ...] = ()

    def __len__(self) -> int:
        return len(self.documents)


SnapshotCallback = Callable[[Snapshot | None, Exception | None], None]


class ListenerRegistration(ABC):
    @abstractmethod
    def remove(self) -> None:
        """Stop delivering snapshots to the callback. Safe to call twice."""


class DocumentStore(ABC):
    """Abstract document store: schemaless field maps keyed by string ids."""

    @abstractmethod
    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Store a new document and return its assigned id."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Document | None:
        """Return a document by id, or None if it does not exist."""

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, data: Mapping[str, Any]
    ) -> None:
        """Merge fields into an existing document.

        Raises DocumentNotFoundError when the document does not exist.
        """

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> bool:
        """Delete a document. Return True if it existed."""

    @abstractmethod
    async def fetch(self, query: Query) -> Snapshot:
        """Run a query once."""

    @abstractmethod
    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        """
        Subscribe to a query.

        The callback receives ``(snapshot, None)`` with the initial result and
        again whenever the result changes, or ``(None, error)`` once if the
        subscription fails. After an error no further calls are made.
        Callbacks may be invoked from any thread.
        """

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def values_equal(left: Any, right: Any) -> bool:
    """Equality that does not treat booleans and numbers as interchangeable."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


_TYPE_RANK = {bool: 1, int: 2, float: 2, datetime: 3, str: 4}


def _order_key(value: Any) -> tuple[int, Any]:
    rank = _TYPE_RANK.get(type(value))
    if rank is None:
        return (9, repr(value))
    return (rank, value)
