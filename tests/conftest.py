# tests/conftest.py

from __future__ import annotations

import pytest

from todo_sync.repository import TodoRepository
from todo_sync.viewmodel import TodoViewModel

from .fakes import CollectingNotifier, FlakyDocumentStore, sequential_ids


@pytest.fixture()
def store() -> FlakyDocumentStore:
    """Memory store that hands out predictable ids."""
    return FlakyDocumentStore(id_factory=sequential_ids("abc123", "def456", "ghi789", "jkl012"))


@pytest.fixture()
def repo(store: FlakyDocumentStore) -> TodoRepository:
    return TodoRepository(store)


@pytest.fixture()
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture()
def vm(repo: TodoRepository, notifier: CollectingNotifier) -> TodoViewModel:
    # share_timeout=0 tears subscriptions down as soon as the last watcher leaves;
    # failed subscriptions reopen after a tenth of a second.
    return TodoViewModel(repo, notifier, share_timeout=0, retry_delay=0.1)
