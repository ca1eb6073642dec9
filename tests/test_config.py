# tests/test_config.py

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from todo_sync.config import LakebaseSettings, OAuthTokenManager, Settings, StoreSettings
from todo_sync.db import create_store
from todo_sync.db.memory import MemoryDocumentStore


@pytest.fixture(autouse=True)
def _no_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)


def test_store_defaults():
    store = Settings().store

    assert store.backend == "memory"
    assert store.collection == "tasks"
    assert store.share_timeout_seconds == 5.0
    assert store.strict_delete is False


def test_store_settings_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TODO_COLLECTION", "chores")
    monkeypatch.setenv("TODO_STRICT_DELETE", "true")
    monkeypatch.setenv("TODO_SHARE_TIMEOUT_SECONDS", "0.5")

    store = StoreSettings()

    assert store.collection == "chores"
    assert store.strict_delete is True
    assert store.share_timeout_seconds == 0.5


def test_memory_backend_is_default():
    assert isinstance(create_store(StoreSettings()), MemoryDocumentStore)


def test_explicit_lakebase_credentials_skip_discovery(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LAKEBASE_HOST", "localhost")
    monkeypatch.setenv("LAKEBASE_USER", "todo")
    monkeypatch.setenv("LAKEBASE_PASSWORD", "secret")

    lb = LakebaseSettings()

    assert (lb.get_host(), lb.get_user(), lb.get_password()) == ("localhost", "todo", "secret")


def test_token_manager_without_endpoint_returns_none():
    assert OAuthTokenManager().get_token("") is None


def test_token_manager_reuses_fresh_token():
    manager = OAuthTokenManager()
    manager._token = "cached"
    manager._endpoint_name = "projects/p/branches/b/endpoints/e"
    manager._expires_at = datetime.now() + timedelta(minutes=30)

    assert manager.get_token("projects/p/branches/b/endpoints/e") == "cached"
    assert not manager.is_fresh("projects/p/branches/other/endpoints/e")
