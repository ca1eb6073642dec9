"""Domain models for Todo Sync."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Priority(IntEnum):
    """Priority level for a todo item."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def label_for(cls, value: int) -> str:
        """Display label for a stored priority; unknown values render as Low."""
        try:
            return cls(value).label
        except ValueError:
            return cls.LOW.label


class Todo(BaseModel):
    """A todo item.

    ``id`` is empty until the document store assigns one on first persist.
    Instances are immutable; use ``model_copy(update=...)`` to derive edits.
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    title: str = ""
    description: str = ""
    is_completed: bool = False
    priority: int = Priority.LOW
    created_at: datetime = Field(default_factory=utc_now)
    due_date: datetime | None = None

    @property
    def is_persisted(self) -> bool:
        return bool(self.id)

    @property
    def priority_label(self) -> str:
        return Priority.label_for(self.priority)


@dataclass(frozen=True, slots=True)
class Document:
    """A stored document: its store-assigned key plus its field map."""

    id: str
    data: Mapping[str, Any] = field(default_factory=dict)
