"""FastAPI entrypoint for the todo stream service."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from todo_stream import __version__
from todo_stream.config import get_settings
from todo_stream.core.errors import StoreError
from todo_stream.infra.db.sqlite import init_db
from todo_stream.infra.events.broker import MutationBus
from todo_stream.observability.context import CORRELATION_HEADER, get_correlation_id, set_correlation_id
from todo_stream.observability.log import configure_logging

from todo_stream.api.routes.pages import router as pages_router
from todo_stream.api.routes.todos import router as todos_router
from todo_stream.api.sse.todos import router as stream_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    try:
        await init_db(settings=settings)
    except Exception as exc:
        raise RuntimeError(
            f"Database migration failed for {settings.db_path}; refusing to serve traffic."
        ) from exc

    app.state.bus = MutationBus(capacity=settings.bus_capacity)
    logger.info("Mutation bus ready (capacity {} per subscriber)", settings.bus_capacity)
    yield
    app.state.bus.close()


app = FastAPI(
    title="Todo Stream",
    description="Multi-client todo list with live server-sent updates",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(pages_router)
app.include_router(stream_router)
app.include_router(todos_router)


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    incoming_correlation = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    set_correlation_id(incoming_correlation)
    try:
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = incoming_correlation
        return response
    finally:
        set_correlation_id("")


def _error_response(status_code: int, code: str, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "details": {"correlation_id": get_correlation_id()},
        },
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code", "http_error")
        message = detail.get("message", "Request failed.")
    else:
        code = "http_error"
        message = str(detail)
    return _error_response(exc.status_code, code, message, headers=exc.headers)


@app.exception_handler(StoreError)
async def store_exception_handler(request: Request, exc: StoreError):
    logger.error("{} {} failed: {}", request.method, request.url.path, exc)
    return _error_response(exc.status_code, exc.code, str(exc) or "Todo store error.")


@app.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "service": "todo_stream",
        "version": __version__,
        "subscribers": request.app.state.bus.subscriber_count,
    }
