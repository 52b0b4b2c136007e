"""Jinja2 template renderer for pages, rows and stream fragments."""

from __future__ import annotations

from pathlib import Path

from fastapi.templating import Jinja2Templates

from todo_stream.core.models import MutationKind, Todo, TodoUpdate

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
STATIC_DIR = Path(__file__).resolve().parent / "static"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def dom_id(todo_id: int) -> str:
    return f"todo-{int(todo_id)}"


templates.env.globals["dom_id"] = dom_id


def render_row(todo: Todo) -> str:
    return templates.get_template("todo.html").render(todo=todo)


def render_update(update: TodoUpdate) -> str:
    """Render the DOM patch pushed to stream subscribers for ``update``."""
    if update.mutation_kind is MutationKind.CREATE:
        template = "events/create.html"
    elif update.mutation_kind is MutationKind.DELETE:
        template = "events/delete.html"
    else:
        raise ValueError(f"unhandled mutation kind: {update.mutation_kind!r}")
    return templates.get_template(template).render(todo_id=update.id).strip()
