"""Todo stream configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return bool(default)
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    try:
        return int(str(value).strip())
    except Exception:
        return int(default)


def _as_path(value: str | None, default: Path) -> Path:
    raw = (value or "").strip()
    return Path(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    db_path: Path
    sqlite_busy_timeout_ms: int

    # Mutation bus / event stream
    bus_capacity: int
    stream_keepalive_sec: int
    keepalive_text: str

    # Server
    host: str
    port: int
    reload: bool
    log_level: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    base_dir = Path(__file__).resolve().parents[1]
    load_dotenv(dotenv_path=base_dir / ".env", override=False)

    db_path = _as_path(os.getenv("TODOS_DATABASE_PATH"), base_dir / ".runtime" / "data" / "todos.db")
    if not db_path.is_absolute():
        db_path = base_dir / db_path

    return Settings(
        base_dir=base_dir,
        db_path=db_path,
        sqlite_busy_timeout_ms=max(100, _as_int(os.getenv("TODOS_SQLITE_BUSY_TIMEOUT_MS"), 5000)),
        bus_capacity=max(1, _as_int(os.getenv("TODOS_BUS_CAPACITY"), 10)),
        stream_keepalive_sec=max(1, _as_int(os.getenv("TODOS_STREAM_KEEPALIVE_SEC"), 600)),
        keepalive_text=(os.getenv("TODOS_KEEPALIVE_TEXT") or "keep-alive-text").strip(),
        host=(os.getenv("TODOS_HOST") or "127.0.0.1").strip(),
        port=_as_int(os.getenv("TODOS_PORT"), 8000),
        reload=_as_bool(os.getenv("TODOS_RELOAD"), False),
        log_level=(os.getenv("TODOS_LOG_LEVEL") or "INFO").strip().upper(),
    )
