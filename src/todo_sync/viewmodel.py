"""View state for todo screens: live lists, the latest operation status and mutations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Generic, TypeVar

import structlog

from todo_sync.core.models import Todo, utc_now
from todo_sync.notifications import LogNotifier, Notifier
from todo_sync.repository import TodoRepository

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Loading:
    pass


@dataclass(frozen=True, slots=True)
class Success:
    pass


@dataclass(frozen=True, slots=True)
class Error:
    message: str


UiState = Loading | Success | Error


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of one mutation, independent of whatever ran after it."""

    operation: str
    state: Success | Error
    todo_id: str | None = None

    @property
    def ok(self) -> bool:
        return isinstance(self.state, Success)


class StateValue(Generic[T]):
    """
    Holder of a current value that can be watched.

    Watchers see the current value first, then the latest value after each
    change; intermediate values may be skipped. Setting an equal value is
    not a change.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._changed = asyncio.Event()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def watch(self) -> AsyncIterator[T]:
        while True:
            changed = self._changed
            yield self._value
            await changed.wait()


class LiveList(Generic[T]):
    """
    A list kept current by one shared upstream subscription.

    The upstream starts with the first watcher. When the last watcher leaves
    it stays open for ``stop_timeout`` seconds so a quick re-subscribe reuses
    it, then it is cancelled. The last received list is kept across stops and
    upstream failures. A failed upstream is reopened after ``retry_delay``
    seconds for as long as someone is watching.
    """

    def __init__(
        self,
        name: str,
        source: Callable[[], AsyncIterator[list[T]]],
        *,
        stop_timeout: float = 5.0,
        retry_delay: float = 1.0,
        on_emit: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.name = name
        self._source = source
        self._stop_timeout = stop_timeout
        self._retry_delay = retry_delay
        self._on_emit = on_emit
        self._on_error = on_error
        self._state: StateValue[list[T]] = StateValue([])
        self._watchers = 0
        self._task: asyncio.Task | None = None
        self._stop_handle: asyncio.TimerHandle | None = None

    @property
    def value(self) -> list[T]:
        return self._state.value

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def watch(self) -> AsyncIterator[list[T]]:
        self._acquire()
        try:
            async for todos in self._state.watch():
                yield todos
        finally:
            self._release()

    def _acquire(self) -> None:
        self._watchers += 1
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None
        if self._task is None or self._task.done():
            logger.debug("live_list_started", name=self.name)
            self._task = asyncio.get_running_loop().create_task(self._collect())

    def _release(self) -> None:
        self._watchers -= 1
        if self._watchers > 0:
            return
        if self._stop_timeout <= 0:
            self.stop()
        else:
            self._stop_handle = asyncio.get_running_loop().call_later(
                self._stop_timeout, self.stop
            )

    def stop(self) -> None:
        """Cancel the upstream subscription now."""
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None
        if self._task is not None:
            logger.debug("live_list_stopped", name=self.name)
            self._task.cancel()
            self._task = None

    async def _collect(self) -> None:
        while True:
            try:
                async for items in self._source():
                    self._state.set(items)
                    if self._on_emit is not None:
                        self._on_emit()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("live_list_failed", name=self.name, error=str(e))
                if self._on_error is not None:
                    self._on_error(e)
            # stop() cancels this sleep.
            await asyncio.sleep(self._retry_delay)
            logger.info("live_list_retrying", name=self.name)


class TodoViewModel:
    """
    Mediates between the repository's live queries and a presentation layer.

    ``ui_state`` is shared by all operations and reflects whichever finished
    last, so a slow success can overwrite a newer failure. Every mutation
    also returns an awaitable with its own OperationResult for callers that
    need the outcome of that specific call.
    """

    def __init__(
        self,
        repository: TodoRepository,
        notifier: Notifier | None = None,
        *,
        share_timeout: float = 5.0,
        retry_delay: float = 1.0,
    ) -> None:
        self._repository = repository
        self._notifier = notifier or LogNotifier()
        self.ui_state: StateValue[UiState] = StateValue(Loading())
        self._in_flight = 0
        # Startup Loading clears on the first emission from either list; a
        # subscription Error only once the failed list emits again. Any write
        # outcome clears both.
        self._starting = True
        self._failed_lists: set[str] = set()
        self._operations: set[asyncio.Task] = set()

        self.todo_list: LiveList[Todo] = LiveList(
            "todo_list",
            repository.observe_all,
            stop_timeout=share_timeout,
            retry_delay=retry_delay,
            on_emit=partial(self._on_list_emitted, "todo_list"),
            on_error=self._on_todo_list_error,
        )
        self.pending_todos: LiveList[Todo] = LiveList(
            "pending_todos",
            repository.observe_pending,
            stop_timeout=share_timeout,
            retry_delay=retry_delay,
            on_emit=partial(self._on_list_emitted, "pending_todos"),
            on_error=self._on_pending_error,
        )

    # --- Live list callbacks ---

    def _on_list_emitted(self, name: str) -> None:
        recovered = name in self._failed_lists
        self._failed_lists.discard(name)
        if (self._starting or recovered) and not self._failed_lists and not self._in_flight:
            self._starting = False
            self.ui_state.set(Success())

    def _on_todo_list_error(self, error: Exception) -> None:
        message = str(error) or "Unknown error"
        self._failed_lists.add("todo_list")
        self.ui_state.set(Error(message))
        self._notifier.notify(f"Error loading tasks: {message}")

    def _on_pending_error(self, error: Exception) -> None:
        self._failed_lists.add("pending_todos")
        self.ui_state.set(Error(str(error) or "Unknown error"))

    # --- Mutations ---

    def add_todo(
        self,
        title: str,
        description: str,
        priority: int = 1,
        due_date: datetime | None = None,
    ) -> Awaitable[OperationResult] | None:
        """Create a todo. Returns None, doing nothing, when the title is blank."""
        if not title.strip():
            logger.debug("add_todo_rejected_blank_title")
            return None

        todo = Todo(
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            created_at=utc_now(),
        )

        async def write() -> str:
            return await self._repository.create(todo)

        return self._launch(
            "add",
            write,
            success=f"Task added: {title}",
            failure="Error adding task",
        )

    def update_todo_status(self, todo: Todo, is_completed: bool) -> Awaitable[OperationResult]:
        updated = todo.model_copy(update={"is_completed": is_completed})
        status = "completed" if is_completed else "pending"

        async def write() -> str:
            await self._repository.update(updated)
            return updated.id

        return self._launch(
            "update_status",
            write,
            success=f"Task marked as {status}",
            failure="Error updating status",
        )

    def update_todo(self, todo: Todo) -> Awaitable[OperationResult] | None:
        """Write an edited todo. Returns None, doing nothing, when the title is blank."""
        if not todo.title.strip():
            logger.debug("update_todo_rejected_blank_title", todo_id=todo.id)
            return None

        async def write() -> str:
            await self._repository.update(todo)
            return todo.id

        return self._launch(
            "update",
            write,
            success=f"Task updated: {todo.title}",
            failure="Error updating task",
        )

    def delete_todo(self, todo: Todo) -> Awaitable[OperationResult]:
        async def write() -> str:
            await self._repository.delete(todo)
            return todo.id

        return self._launch(
            "delete",
            write,
            success=f"Task deleted: {todo.title}",
            failure="Error deleting task",
        )

    def test_firestore_connection(self) -> Awaitable[OperationResult]:
        """Run the store round-trip check through the usual status sequence."""
        return self._launch(
            "test_connection",
            self._repository.verify_round_trip,
            success="Connection test completed",
            failure="Error in connection test",
        )

    test_connection = test_firestore_connection

    def _launch(
        self,
        operation: str,
        write: Callable[[], Awaitable[str]],
        *,
        success: str,
        failure: str,
    ) -> Awaitable[OperationResult]:
        task = asyncio.get_running_loop().create_task(
            self._run(operation, write, success, failure)
        )
        self._operations.add(task)
        task.add_done_callback(self._operations.discard)
        # Callers may stop waiting, but a dispatched write always completes.
        return asyncio.shield(task)

    async def _run(
        self,
        operation: str,
        write: Callable[[], Awaitable[str]],
        success: str,
        failure: str,
    ) -> OperationResult:
        self._in_flight += 1
        self.ui_state.set(Loading())
        try:
            todo_id = await write()
        except Exception as e:
            message = str(e) or failure
            logger.error("operation_failed", operation=operation, error=message)
            state: Success | Error = Error(message)
            self.ui_state.set(state)
            self._notifier.notify(f"{failure}: {message}")
            return OperationResult(operation, state)
        finally:
            self._in_flight -= 1
            self._starting = False
            self._failed_lists.clear()

        state = Success()
        self.ui_state.set(state)
        self._notifier.notify(success)
        logger.info("operation_succeeded", operation=operation, todo_id=todo_id)
        return OperationResult(operation, state, todo_id)

    # --- Lifecycle ---

    async def aclose(self) -> None:
        """Wait for dispatched writes, then stop both live lists."""
        if self._operations:
            await asyncio.gather(*self._operations, return_exceptions=True)
        self.todo_list.stop()
        self.pending_todos.stop()
