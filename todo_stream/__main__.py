"""Run the todo stream service with uvicorn."""

from __future__ import annotations

import uvicorn

from todo_stream.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "todo_stream.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
