"""Todo service: ownership-scoped operations on todos.

Every function takes the caller's resolved Identity explicitly. A todo
owned by someone else is reported exactly like a missing one so callers
cannot probe for other users' records.
"""
import logging
from typing import Optional

from . import store
from .errors import InvalidInput, NotFound, Unauthenticated
from .models import Identity, Todo
from .utils import parse_due_date

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Todo not found or not owned by user"


def _owner(identity: Optional[Identity]) -> str:
    if identity is None or not identity.user_id:
        raise Unauthenticated("Unauthorized")
    return identity.user_id


def _clean_due_date(value):
    try:
        return parse_due_date(value)
    except (ValueError, OverflowError):
        raise InvalidInput("dueDate must be an ISO date")


async def list_todos(identity: Optional[Identity], completed: Optional[bool] = None) -> list[Todo]:
    user_id = _owner(identity)
    return await store.list_for_user(user_id, completed=completed)


async def get_todo(identity: Optional[Identity], todo_id: int) -> Todo:
    user_id = _owner(identity)
    todo = await store.get_owned(user_id, todo_id)
    if todo is None:
        raise NotFound(NOT_FOUND_MESSAGE)
    return todo


async def create_todo(identity: Optional[Identity], text, due_date=None) -> Todo:
    user_id = _owner(identity)
    if not isinstance(text, str) or not text.strip():
        raise InvalidInput("Text is required")
    todo = Todo(text=text, completed=False, user_id=user_id, due_date=_clean_due_date(due_date))
    todo = await store.insert(todo)
    logger.info('user id=%s created todo id=%s', user_id, todo.id)
    return todo


async def update_todo(identity: Optional[Identity], todo_id: int, fields: dict) -> Todo:
    """Merge the present fields (text, completed, dueDate) over an owned todo.

    Keys absent from ``fields`` keep their stored values; any other key,
    including a userId, is ignored.
    """
    user_id = _owner(identity)
    changes = {}
    if 'text' in fields:
        text = fields['text']
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Text is required")
        changes['text'] = text
    if 'completed' in fields:
        completed = fields['completed']
        if not isinstance(completed, bool):
            raise InvalidInput("completed must be a boolean")
        changes['completed'] = completed
    if 'dueDate' in fields:
        changes['due_date'] = _clean_due_date(fields['dueDate'])
    todo = await store.update_owned(user_id, todo_id, changes)
    if todo is None:
        raise NotFound(NOT_FOUND_MESSAGE)
    logger.info('user id=%s updated todo id=%s fields=%s', user_id, todo_id, sorted(changes))
    return todo


async def delete_todo(identity: Optional[Identity], todo_id: int) -> None:
    user_id = _owner(identity)
    if not await store.delete_owned(user_id, todo_id):
        raise NotFound(NOT_FOUND_MESSAGE)
    logger.info('user id=%s deleted todo id=%s', user_id, todo_id)
