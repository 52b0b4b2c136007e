"""Server-sent event stream of todo mutations.

Each connection owns one bus subscription for its lifetime. Updates are
rendered into htmx DOM patches; the SSE transport emits a keep-alive comment
every keep-alive interval so intermediaries do not drop an idle connection.
"""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends
from loguru import logger
from sse_starlette.sse import EventSourceResponse, ServerSentEvent
from starlette.background import BackgroundTask

from todo_stream.api.deps import get_bus
from todo_stream.api.templating import render_update
from todo_stream.config import get_settings
from todo_stream.core.errors import SubscriberLagged, SubscriptionClosed
from todo_stream.infra.events.broker import MutationBus, Subscription

router = APIRouter(tags=["stream"])


def keepalive_record() -> ServerSentEvent:
    return ServerSentEvent(comment=get_settings().keepalive_text)


async def todo_events(subscription: Subscription) -> AsyncIterator[ServerSentEvent]:
    """Yield one SSE record per update until the subscription closes.

    The subscription is released when the bus shuts down or when the client
    disconnects and the generator is cancelled.
    """
    async with subscription:
        try:
            while True:
                try:
                    update = await subscription.recv()
                except SubscriberLagged as exc:
                    logger.warning("Stream subscriber lagged; skipped {} update(s)", exc.missed)
                    continue
                except SubscriptionClosed:
                    break
                yield ServerSentEvent(event=update.mutation_kind.value, data=render_update(update))
        finally:
            logger.debug("Todo stream subscriber detached")


@router.get("/todos/stream")
async def stream_todos(bus: MutationBus = Depends(get_bus)):
    settings = get_settings()
    # Attach before the response starts so nothing published after the
    # client sees the connection open is missed.
    subscription = bus.subscribe()
    logger.debug("Todo stream subscriber attached ({} active)", bus.subscriber_count)
    return EventSourceResponse(
        todo_events(subscription),
        ping=settings.stream_keepalive_sec,
        ping_message_factory=keepalive_record,
        background=BackgroundTask(subscription.close),
    )
