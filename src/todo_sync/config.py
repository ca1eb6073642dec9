"""Configuration management for Todo Sync."""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Literal

import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


def _get_workspace_client():
    """Return a Databricks WorkspaceClient (imported lazily, only the Lakebase backend needs it)."""
    from databricks.sdk import WorkspaceClient

    return WorkspaceClient()


class OAuthTokenManager:
    """Caches a Lakebase OAuth token and refreshes it shortly before expiry."""

    lifetime = timedelta(minutes=55)
    refresh_margin = timedelta(minutes=5)

    def __init__(self) -> None:
        self._token: str | None = None
        self._expires_at: datetime | None = None
        self._endpoint_name: str | None = None

    def is_fresh(self, endpoint_name: str) -> bool:
        return bool(
            self._token
            and self._endpoint_name == endpoint_name
            and self._expires_at
            and datetime.now() < self._expires_at - self.refresh_margin
        )

    def get_token(self, endpoint_name: str) -> str | None:
        if not endpoint_name:
            return None
        if self.is_fresh(endpoint_name):
            return self._token

        try:
            logger.info("generating_oauth_token", endpoint=endpoint_name)
            cred = _get_workspace_client().postgres.generate_database_credential(
                endpoint=endpoint_name
            )
        except Exception as e:
            logger.error("oauth_token_generation_failed", error=str(e))
            return None

        self._token = cred.token
        self._endpoint_name = endpoint_name
        self._expires_at = datetime.now() + self.lifetime
        return self._token


_token_manager = OAuthTokenManager()


class StoreSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TODO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: Literal["memory", "lakebase"] = "memory"
    collection: str = "tasks"
    share_timeout_seconds: float = 5.0
    retry_delay_seconds: float = 1.0
    strict_delete: bool = False
    notification_history: int = 20


class LakebaseSettings(BaseSettings):
    """Connection settings for the Lakebase (PostgreSQL) document store.

    Explicit ``host``/``user``/``password`` win; anything left empty is
    discovered from the Databricks identity the SDK resolves.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAKEBASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database: str = "todosync"
    host: str = ""
    port: int = 5432
    sslmode: str = "require"
    user: str = ""
    password: str = ""
    project_id: str = "todo-sync"
    branch_id: str = ""
    endpoint_id: str = "default"

    def get_branch_id(self) -> str:
        """Explicit branch, else "production" for service principals, else "dev-{username}"."""
        if self.branch_id:
            return self.branch_id

        w = _get_workspace_client()
        if w.config.client_id:
            return "production"

        username = w.current_user.me().user_name.split("@")[0]
        return f"dev-{username.replace('.', '-').lower()}"

    @property
    def endpoint_name(self) -> str:
        return (
            f"projects/{self.project_id}/branches/{self.get_branch_id()}"
            f"/endpoints/{self.endpoint_id}"
        )

    def get_host(self) -> str:
        if self.host:
            return self.host
        w = _get_workspace_client()
        return w.postgres.get_endpoint(name=self.endpoint_name).status.hosts.host

    def get_user(self) -> str:
        """Postgres role: explicit user, else the service principal id or user email."""
        if self.user:
            return self.user

        w = _get_workspace_client()
        if w.config.client_id:
            return w.config.client_id
        return w.current_user.me().user_name

    def get_password(self) -> str:
        if self.password:
            return self.password
        return _token_manager.get_token(endpoint_name=self.endpoint_name) or ""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def lakebase(self) -> LakebaseSettings:
        return LakebaseSettings()


@lru_cache
def get_settings() -> Settings:
    return Settings()
