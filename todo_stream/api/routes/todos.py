"""Todo routes.

Mutations are two independent steps: the store write is the source of truth,
then a best-effort publish on the mutation bus. A failed publish is logged and
never undoes the write or changes the response.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response
from fastapi.responses import HTMLResponse
from loguru import logger

from todo_stream.api.deps import get_bus
from todo_stream.api.templating import render_row, templates
from todo_stream.core.errors import BusPublishDegraded
from todo_stream.core.models import TodoUpdate
from todo_stream.infra.events.broker import MutationBus
from todo_stream.infra.repos.todos import create_todo, delete_todo, list_todos

router = APIRouter(tags=["todos"])


def notify(bus: MutationBus, update: TodoUpdate) -> int:
    try:
        receivers = bus.publish(update)
    except BusPublishDegraded as exc:
        logger.warning("Todo {} was {}d but the notification was dropped: {}",
                       update.id, update.mutation_kind.value.lower(), exc)
        return 0
    if not receivers:
        logger.debug("Todo {} was {}d but nobody's listening to the stream",
                     update.id, update.mutation_kind.value.lower())
    return receivers


@router.get("/todos", response_class=HTMLResponse)
async def api_list_todos(request: Request):
    todos = await list_todos()
    return templates.TemplateResponse(request, "todos.html", {"todos": todos})


@router.post("/todos", response_class=HTMLResponse)
async def api_create_todo(
    description: str = Form(""),
    bus: MutationBus = Depends(get_bus),
):
    if not description.strip():
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_description", "message": "A todo needs a non-empty description."},
        )
    todo = await create_todo(description)
    notify(bus, TodoUpdate.created(todo.id))
    return HTMLResponse(render_row(todo))


@router.delete("/todos/{todo_id}")
async def api_delete_todo(todo_id: int, bus: MutationBus = Depends(get_bus)):
    await delete_todo(todo_id)
    notify(bus, TodoUpdate.deleted(todo_id))
    return Response(status_code=200)
