"""Mapping between ``Todo`` records and stored documents."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from todo_sync.core.models import Document, Todo, utc_now

TITLE = "title"
DESCRIPTION = "description"
IS_COMPLETED = "isCompleted"
PRIORITY = "priority"
CREATED_AT = "createdAt"
DUE_DATE = "dueDate"


def encode(todo: Todo) -> dict[str, Any]:
    """Field map for a todo. The id travels as the document key, never here."""
    return {
        TITLE: todo.title,
        DESCRIPTION: todo.description,
        IS_COMPLETED: todo.is_completed,
        PRIORITY: int(todo.priority),
        CREATED_AT: todo.created_at,
        DUE_DATE: todo.due_date,
    }


def decode(document: Document) -> Todo | None:
    """Build a todo from a document, or ``None`` if a field has the wrong type."""
    data = document.data
    try:
        created_at = data.get(CREATED_AT)
        if not isinstance(created_at, datetime):
            created_at = utc_now()

        return Todo(
            id=document.id,
            title=_get_string(data, TITLE),
            description=_get_string(data, DESCRIPTION),
            is_completed=_get_bool(data, IS_COMPLETED),
            priority=_get_int(data, PRIORITY, default=1),
            created_at=created_at,
            due_date=_get_timestamp(data, DUE_DATE),
        )
    except (TypeError, ValueError, OverflowError):
        return None


def _get_string(data, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{key} is not a string")
    return value


def _get_bool(data, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise TypeError(f"{key} is not a boolean")
    return value


def _get_int(data, key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass; a stored flag is not a number.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} is not a number")
    return int(value)


def _get_timestamp(data, key: str) -> datetime | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise TypeError(f"{key} is not a timestamp")
    return value
