"""Todo repository (SQLite).

The store is the sole writer of the ``todos`` table. Driver errors are
translated into the ``StoreError`` taxonomy so callers never see sqlite
exceptions.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite
from loguru import logger

from todo_stream.core.errors import StoreRejected, StoreUnavailable
from todo_stream.core.models import Todo
from todo_stream.infra.db.sqlite import get_db


def _row_to_todo(row) -> Todo:
    return Todo(id=int(row["id"]), description=str(row["description"]))


@asynccontextmanager
async def _connection() -> AsyncIterator[aiosqlite.Connection]:
    db = await get_db()
    try:
        yield db
    except aiosqlite.IntegrityError as exc:
        logger.warning("Todo write rejected: {}", exc)
        raise StoreRejected(str(exc)) from exc
    except aiosqlite.Error as exc:
        logger.error("Todo store unavailable: {}", exc)
        raise StoreUnavailable(str(exc)) from exc
    finally:
        await db.close()


async def create_todo(description: str) -> Todo:
    async with _connection() as db:
        cur = await db.execute(
            "INSERT INTO todos(description) VALUES (?) RETURNING id, description",
            (description,),
        )
        row = await cur.fetchone()
        await db.commit()
        return _row_to_todo(row)


async def list_todos() -> list[Todo]:
    async with _connection() as db:
        cur = await db.execute("SELECT id, description FROM todos ORDER BY id ASC")
        rows = await cur.fetchall()
        return [_row_to_todo(r) for r in rows]


async def delete_todo(todo_id: int) -> None:
    """Delete by id. Deleting a missing id is not an error."""
    async with _connection() as db:
        await db.execute("DELETE FROM todos WHERE id = ?", (int(todo_id),))
        await db.commit()
