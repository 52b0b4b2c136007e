"""Request-scoped access to process-wide resources."""

from __future__ import annotations

from fastapi import Request

from todo_stream.infra.events.broker import MutationBus


def get_bus(request: Request) -> MutationBus:
    return request.app.state.bus
