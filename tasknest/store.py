"""Todo store: persistence of Todo records.

Each function runs in its own transaction. ``replace_all`` keeps the
whole-collection overwrite available for snapshot imports; the service
layer uses the record-level functions so concurrent requests touching
different todos never lose each other's writes. Two writers racing on
the same todo resolve as last-writer-wins.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import delete as sqlalchemy_delete
from sqlmodel import select

from .db import async_session
from .models import Todo, User
from .utils import now_utc

logger = logging.getLogger(__name__)

# SQLite INTEGER is a signed 64-bit value; no stored todo has an id outside it.
TODO_ID_MIN = -(2 ** 63)
TODO_ID_MAX = 2 ** 63 - 1


def storable_id(todo_id: int) -> bool:
    return TODO_ID_MIN <= todo_id <= TODO_ID_MAX


def _copy(t: Todo) -> Todo:
    return Todo(
        id=t.id,
        text=t.text,
        completed=t.completed,
        user_id=t.user_id,
        due_date=t.due_date,
        created_at=t.created_at or now_utc(),
        modified_at=t.modified_at or now_utc(),
    )


async def load_all() -> list[Todo]:
    """Return every todo ordered by id (insertion order); empty on first run."""
    async with async_session() as sess:
        q = await sess.exec(select(Todo).order_by(Todo.id))
        return list(q.all())


async def replace_all(todos: Iterable[Todo]) -> None:
    """Overwrite the whole collection atomically."""
    await import_records((), todos)


async def import_records(new_users: Iterable[User], todos: Optional[Iterable[Todo]]) -> None:
    """Insert ``new_users`` and replace the todo collection in one transaction.

    The users are flushed first so replaced todos may reference them. A
    ``todos`` of None leaves the collection as it is. Nothing is kept if
    any statement fails.
    """
    user_rows = list(new_users)
    rows = None if todos is None else [_copy(t) for t in todos]
    async with async_session() as sess:
        if user_rows:
            sess.add_all(user_rows)
            await sess.flush()
        if rows is not None:
            await sess.exec(sqlalchemy_delete(Todo))
            sess.add_all(rows)
        await sess.commit()
    if rows is not None:
        logger.info('replaced todo collection with %d records', len(rows))


async def list_for_user(user_id: str, completed: Optional[bool] = None) -> list[Todo]:
    async with async_session() as sess:
        stmt = select(Todo).where(Todo.user_id == user_id)
        if completed is not None:
            stmt = stmt.where(Todo.completed == completed)
        q = await sess.exec(stmt.order_by(Todo.id))
        return list(q.all())


async def get_owned(user_id: str, todo_id: int) -> Optional[Todo]:
    """Look a todo up by (id, owner); a foreign todo reads as absent."""
    if not storable_id(todo_id):
        return None
    async with async_session() as sess:
        q = await sess.exec(select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
        return q.first()


async def insert(todo: Todo) -> Todo:
    async with async_session() as sess:
        sess.add(todo)
        await sess.commit()
        await sess.refresh(todo)
    return todo


async def update_owned(user_id: str, todo_id: int, changes: dict) -> Optional[Todo]:
    """Apply column changes to an owned todo in one transaction.

    Returns the updated todo, or None when (id, owner) matches nothing.
    """
    if not storable_id(todo_id):
        return None
    async with async_session() as sess:
        q = await sess.exec(select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
        todo = q.first()
        if todo is None:
            return None
        for key, value in changes.items():
            setattr(todo, key, value)
        todo.modified_at = now_utc()
        sess.add(todo)
        await sess.commit()
        await sess.refresh(todo)
    return todo


async def delete_owned(user_id: str, todo_id: int) -> bool:
    """Delete by (id, owner). Returns False when no row matched."""
    if not storable_id(todo_id):
        return False
    async with async_session() as sess:
        res = await sess.exec(
            sqlalchemy_delete(Todo).where(Todo.id == todo_id, Todo.user_id == user_id)
        )
        await sess.commit()
    return bool(res.rowcount)
