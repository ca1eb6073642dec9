"""Pydantic request/response schemas for the Todo Sync API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from todo_sync.core.models import Priority, Todo


class CreateTodoRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=2000)
    priority: int = Priority.LOW
    due_date: datetime | None = None


class UpdateTodoRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=2000)
    is_completed: bool = False
    priority: int = Priority.LOW
    due_date: datetime | None = None


class UpdateStatusRequest(BaseModel):
    is_completed: bool


class TodoResponse(BaseModel):
    id: str
    title: str
    description: str
    is_completed: bool
    priority: int
    priority_label: str
    created_at: datetime
    due_date: datetime | None

    @classmethod
    def from_todo(cls, todo: Todo) -> "TodoResponse":
        return cls(
            id=todo.id,
            title=todo.title,
            description=todo.description,
            is_completed=todo.is_completed,
            priority=todo.priority,
            priority_label=todo.priority_label,
            created_at=todo.created_at,
            due_date=todo.due_date,
        )


class TodoListResponse(BaseModel):
    todos: list[TodoResponse]
    total: int


class UiStateResponse(BaseModel):
    status: Literal["loading", "success", "error"]
    message: str | None = None


class OperationResponse(BaseModel):
    operation: str
    todo_id: str | None


class NotificationsResponse(BaseModel):
    messages: list[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    store: str
