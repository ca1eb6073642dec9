"""Lakebase (PostgreSQL) document store for Todo Sync.

Documents live in a single ``documents`` table as JSONB. A trigger publishes
the collection name on ``document_changes`` after every write; one LISTEN
connection per store turns those notifications into fresh query snapshots.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import psycopg
import structlog
from psycopg import sql
from psycopg.types.json import Jsonb

from todo_sync.config import LakebaseSettings, get_settings
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

CHANGES_CHANNEL = "document_changes"
TIMESTAMP_KEY = "$timestamp"


def to_json(value: Any) -> Any:
    """Make a field value JSON-safe; timestamps become ``{"$timestamp": iso}``."""
    if isinstance(value, datetime):
        return {TIMESTAMP_KEY: value.isoformat()}
    if isinstance(value, Mapping):
        return {str(k): to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value


def from_json(value: Any) -> Any:
    if isinstance(value, dict):
        raw = value.get(TIMESTAMP_KEY)
        if len(value) == 1 and isinstance(raw, str):
            try:
                return datetime.fromisoformat(raw)
            except ValueError:
                return value
        return {k: from_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_json(v) for v in value]
    return value


def build_select(query: Query) -> tuple[sql.Composed, list[Any]]:
    """SELECT for a query: equality filters via JSONB containment, one order field."""
    conditions = [sql.SQL("collection = %s")]
    params: list[Any] = [query.collection]

    if query.filters:
        conditions.append(sql.SQL("data @> %s"))
        params.append(Jsonb({field: to_json(value) for field, value in query.filters}))

    order = sql.SQL("")
    if query.order_by is not None:
        field = sql.Literal(query.order_by)
        conditions.append(sql.SQL("data ? {}").format(field))
        conditions.append(sql.SQL("data -> {} <> 'null'::jsonb").format(field))
        order = sql.SQL(" ORDER BY data -> {} {}").format(
            field, sql.SQL("DESC" if query.descending else "ASC")
        )

    statement = sql.SQL("SELECT id, data FROM documents WHERE {}{}").format(
        sql.SQL(" AND ").join(conditions), order
    )
    return statement, params


class LakebaseConnectionFactory:
    """Opens async Lakebase connections, authenticating with a cached OAuth token."""

    def __init__(self, settings: LakebaseSettings | None = None):
        self._settings = settings or get_settings().lakebase
        self._host = self._settings.get_host()
        self._database = self._settings.database
        self._username = self._settings.get_user()

        logger.info(
            "lakebase_factory_initialized",
            host=self._host,
            database=self._database,
            user=self._username,
        )

    async def connect(self, *, autocommit: bool = False) -> psycopg.AsyncConnection:
        # Token generation goes through the blocking Databricks SDK.
        password = await asyncio.to_thread(self._settings.get_password)
        return await psycopg.AsyncConnection.connect(
            host=self._host,
            port=self._settings.port,
            dbname=self._database,
            user=self._username,
            password=password,
            sslmode=self._settings.sslmode,
            autocommit=autocommit,
        )


class _PostgresRegistration(ListenerRegistration):
    def __init__(self, store: PostgresDocumentStore, query: Query, callback: SnapshotCallback):
        self._store = store
        self.query = query
        self.callback = callback
        self.last: Snapshot | None = None
        self.active = True
        # One fetch at a time, so snapshots are delivered in the order they were read.
        self.refreshing = asyncio.Lock()

    def remove(self) -> None:
        self._store._remove_listener(self)


class PostgresDocumentStore(DocumentStore):
    """Document store backed by a Lakebase ``documents`` table."""

    def __init__(self, factory: LakebaseConnectionFactory):
        self._factory = factory
        self._listeners: list[_PostgresRegistration] = []
        self._listen_task: asyncio.Task | None = None
        self._listening = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        conn = await self._factory.connect()
        try:
            yield conn
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        finally:
            await conn.close()

    async def health_check(self) -> bool:
        try:
            async with self.session() as conn, conn.cursor() as cur:
                await cur.execute("SELECT 1")
            return True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False

    # --- Documents ---

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        async with self.session() as conn, conn.cursor() as cur:
            await cur.execute(
                "INSERT INTO documents (collection, data) VALUES (%s, %s) RETURNING id",
                (collection, Jsonb(to_json(data))),
            )
            row = await cur.fetchone()
        return str(row[0])

    async def get(self, collection: str, document_id: str) -> Document | None:
        async with self.session() as conn, conn.cursor() as cur:
            await cur.execute(
                "SELECT id, data FROM documents WHERE collection = %s AND id = %s",
                (collection, document_id),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    async def update(
        self, collection: str, document_id: str, data: Mapping[str, Any]
    ) -> None:
        async with self.session() as conn, conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE documents
                SET data = data || %s, updated_at = NOW()
                WHERE collection = %s AND id = %s
                """,
                (Jsonb(to_json(data)), collection, document_id),
            )
            if cur.rowcount == 0:
                raise DocumentNotFoundError(collection, document_id)

    async def delete(self, collection: str, document_id: str) -> bool:
        async with self.session() as conn, conn.cursor() as cur:
            await cur.execute(
                "DELETE FROM documents WHERE collection = %s AND id = %s",
                (collection, document_id),
            )
            return cur.rowcount > 0

    async def fetch(self, query: Query) -> Snapshot:
        statement, params = build_select(query)
        async with self.session() as conn, conn.cursor() as cur:
            await cur.execute(statement, params)
            rows = await cur.fetchall()
        return Snapshot(query=query, documents=tuple(self._row_to_document(r) for r in rows))

    @staticmethod
    def _row_to_document(row: tuple) -> Document:
        return Document(id=str(row[0]), data=from_json(row[1] or {}))

    # --- Live queries ---

    def listen(self, query: Query, callback: SnapshotCallback) -> ListenerRegistration:
        registration = _PostgresRegistration(self, query, callback)
        self._listeners.append(registration)
        if self._listen_task is None or self._listen_task.done():
            self._listening = asyncio.Event()
            self._listen_task = asyncio.get_running_loop().create_task(self._listen_loop())
        self._spawn(self._initial_snapshot(registration))
        return registration

    def _remove_listener(self, registration: _PostgresRegistration) -> None:
        registration.active = False
        if registration in self._listeners:
            self._listeners.remove(registration)
        if (
            not self._listeners
            and self._listen_task is not None
            and self._listen_task is not asyncio.current_task()
        ):
            logger.info("document_listener_stopped", channel=CHANGES_CHANNEL)
            self._listen_task.cancel()
            self._listen_task = None
            self._listening.set()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _initial_snapshot(self, registration: _PostgresRegistration) -> None:
        # Only read once LISTEN is active so no change slips in between.
        await self._listening.wait()
        await self._refresh(registration)

    async def _listen_loop(self) -> None:
        try:
            async with await self._factory.connect(autocommit=True) as conn:
                await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(CHANGES_CHANNEL)))
                logger.info("document_listener_started", channel=CHANGES_CHANNEL)
                self._listening.set()
                async for notify in conn.notifies():
                    for registration in list(self._listeners):
                        if registration.query.collection == notify.payload:
                            await self._refresh(registration)
                    if not self._listeners:
                        logger.info("document_listener_stopped", channel=CHANGES_CHANNEL)
                        self._listen_task = None
                        return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("document_listener_failed", error=str(e))
            self._fail_all(e)

    async def _refresh(self, registration: _PostgresRegistration) -> None:
        async with registration.refreshing:
            if not registration.active:
                return
            try:
                snapshot = await self.fetch(registration.query)
            except Exception as e:
                logger.error(
                    "document_query_failed",
                    collection=registration.query.collection,
                    error=str(e),
                )
                self._remove_listener(registration)
                registration.callback(None, e)
                return
            if registration.active and snapshot != registration.last:
                registration.last = snapshot
                registration.callback(snapshot, None)

    def _fail_all(self, error: Exception) -> None:
        for registration in list(self._listeners):
            self._remove_listener(registration)
            registration.callback(None, error)
        # Wake pending initial reads; they skip inactive registrations.
        self._listening.set()

    async def close(self) -> None:
        pending = [t for t in (self._listen_task, *self._tasks) if t is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._listen_task = None
