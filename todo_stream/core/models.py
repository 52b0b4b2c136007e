"""Todo domain types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Todo:
    id: int
    description: str


class MutationKind(str, Enum):
    CREATE = "Create"
    DELETE = "Delete"


@dataclass(frozen=True)
class TodoUpdate:
    """A single mutation broadcast on the bus. Never persisted."""

    mutation_kind: MutationKind
    id: int

    @classmethod
    def created(cls, todo_id: int) -> "TodoUpdate":
        return cls(mutation_kind=MutationKind.CREATE, id=int(todo_id))

    @classmethod
    def deleted(cls, todo_id: int) -> "TodoUpdate":
        return cls(mutation_kind=MutationKind.DELETE, id=int(todo_id))
