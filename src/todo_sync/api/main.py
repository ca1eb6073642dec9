"""FastAPI adapter exposing the todo view model over HTTP."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from todo_sync import __version__
from todo_sync.api.schemas import (
    CreateTodoRequest,
    HealthResponse,
    NotificationsResponse,
    OperationResponse,
    TodoListResponse,
    TodoResponse,
    UiStateResponse,
    UpdateStatusRequest,
    UpdateTodoRequest,
)
from todo_sync.config import Settings, get_settings
from todo_sync.core.models import Todo
from todo_sync.db import create_store
from todo_sync.db.store import DocumentStore
from todo_sync.logging_setup import configure_logging
from todo_sync.notifications import RecentNotifications
from todo_sync.repository import TodoRepository
from todo_sync.viewmodel import Error, LiveList, Loading, OperationResult, Success, TodoViewModel

logger = structlog.get_logger()

PROJECT_ROOT = Path(__file__).resolve().parents[3]


async def _check_migrations(store: DocumentStore) -> None:
    """Warn on startup if the Lakebase schema is behind the latest alembic revision."""
    from todo_sync.db.postgres import PostgresDocumentStore

    if not isinstance(store, PostgresDocumentStore):
        return
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
        head = ScriptDirectory.from_config(alembic_cfg).get_current_head()

        async with store.session() as conn, conn.cursor() as cur:
            await cur.execute("SELECT version_num FROM alembic_version")
            row = await cur.fetchone()
            current = row[0] if row else None

        if current is None:
            logger.warning(
                "migrations_not_initialized",
                hint="Run 'alembic upgrade head' to initialize the database",
            )
        elif current != head:
            logger.warning(
                "migrations_pending",
                current=current,
                head=head,
                hint="Run 'alembic upgrade head' to apply pending migrations",
            )
        else:
            logger.info("migrations_up_to_date", revision=current)
    except Exception as e:
        logger.warning("migration_check_failed", error=str(e))


async def _pin(live: LiveList) -> None:
    """Keep a live list subscribed for the lifetime of the app."""
    async for _ in live.watch():
        pass


def create_app(settings: Settings | None = None, store: DocumentStore | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store_settings = settings.store
        doc_store = store or create_store(store_settings, settings.lakebase)
        await _check_migrations(doc_store)

        repository = TodoRepository(
            doc_store,
            collection=store_settings.collection,
            strict_delete=store_settings.strict_delete,
        )
        notifications = RecentNotifications(store_settings.notification_history)
        view_model = TodoViewModel(
            repository,
            notifications,
            share_timeout=store_settings.share_timeout_seconds,
            retry_delay=store_settings.retry_delay_seconds,
        )
        app.state.store = doc_store
        app.state.repository = repository
        app.state.notifications = notifications
        app.state.view_model = view_model

        pins = [
            asyncio.create_task(_pin(view_model.todo_list)),
            asyncio.create_task(_pin(view_model.pending_todos)),
        ]
        logger.info("todo_sync_started", backend=store_settings.backend)
        try:
            yield
        finally:
            for pin in pins:
                pin.cancel()
            await asyncio.gather(*pins, return_exceptions=True)
            await view_model.aclose()
            await doc_store.close()
            logger.info("todo_sync_stopped")

    app = FastAPI(
        title="Todo Sync API",
        description="Live to-do lists over a document store",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        healthy = await request.app.state.store.health_check()
        return HealthResponse(
            status="ok",
            version=__version__,
            store="connected" if healthy else "disconnected",
        )

    @app.get("/api/todos", response_model=TodoListResponse)
    async def list_todos(request: Request) -> TodoListResponse:
        return _list_response(request.app.state.view_model.todo_list.value)

    @app.get("/api/todos/pending", response_model=TodoListResponse)
    async def list_pending_todos(request: Request) -> TodoListResponse:
        return _list_response(request.app.state.view_model.pending_todos.value)

    @app.get("/api/todos/{todo_id}", response_model=TodoResponse)
    async def get_todo(todo_id: str, request: Request) -> TodoResponse:
        todo = await _get_existing(request, todo_id)
        return TodoResponse.from_todo(todo)

    @app.get("/api/state", response_model=UiStateResponse)
    async def get_state(request: Request) -> UiStateResponse:
        match request.app.state.view_model.ui_state.value:
            case Loading():
                return UiStateResponse(status="loading")
            case Success():
                return UiStateResponse(status="success")
            case Error(message=message):
                return UiStateResponse(status="error", message=message)

    @app.get("/api/notifications", response_model=NotificationsResponse)
    async def get_notifications(request: Request) -> NotificationsResponse:
        return NotificationsResponse(messages=request.app.state.notifications.messages)

    @app.post("/api/todos", response_model=OperationResponse, status_code=201)
    async def create_todo(body: CreateTodoRequest, request: Request) -> OperationResponse:
        operation = request.app.state.view_model.add_todo(
            body.title,
            body.description,
            priority=body.priority,
            due_date=body.due_date,
        )
        return await _finish(operation)

    @app.put("/api/todos/{todo_id}", response_model=OperationResponse)
    async def update_todo(
        todo_id: str, body: UpdateTodoRequest, request: Request
    ) -> OperationResponse:
        existing = await _get_existing(request, todo_id)
        todo = existing.model_copy(update=body.model_dump())
        return await _finish(request.app.state.view_model.update_todo(todo))

    @app.patch("/api/todos/{todo_id}/status", response_model=OperationResponse)
    async def update_todo_status(
        todo_id: str, body: UpdateStatusRequest, request: Request
    ) -> OperationResponse:
        existing = await _get_existing(request, todo_id)
        view_model = request.app.state.view_model
        return await _finish(view_model.update_todo_status(existing, body.is_completed))

    @app.delete("/api/todos/{todo_id}", status_code=204)
    async def delete_todo(todo_id: str, request: Request) -> Response:
        existing = await _get_existing(request, todo_id)
        await _finish(request.app.state.view_model.delete_todo(existing))
        return Response(status_code=204)

    @app.post("/api/diagnostics/round-trip", response_model=OperationResponse)
    async def round_trip(request: Request) -> OperationResponse:
        return await _finish(request.app.state.view_model.test_firestore_connection())

    return app


def _list_response(todos: list[Todo]) -> TodoListResponse:
    return TodoListResponse(
        todos=[TodoResponse.from_todo(t) for t in todos],
        total=len(todos),
    )


async def _get_existing(request: Request, todo_id: str) -> Todo:
    todo = await request.app.state.repository.get(todo_id)
    if todo is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


async def _finish(operation) -> OperationResponse:
    if operation is None:
        raise HTTPException(status_code=422, detail="Title must not be blank")
    result: OperationResult = await operation
    if isinstance(result.state, Error):
        raise HTTPException(status_code=502, detail=result.state.message)
    return OperationResponse(operation=result.operation, todo_id=result.todo_id)


app = create_app()
