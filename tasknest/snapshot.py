"""Flat-file snapshots of the user and todo collections.

A snapshot is two JSON files, ``users.json`` and ``todos.json``, each a
pretty-printed array holding the full collection. This is the layout the
service used before it moved to SQLite, so old data files can be imported
and the database can be exported back to the same shape.

Reading distinguishes a missing file (an empty collection) from a file
that exists but cannot be parsed, which raises StorageError instead of
being silently treated as empty.
"""
import json
import logging
import os
import tempfile
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError

from . import store
from . import users
from .errors import StorageError
from .models import Todo, User
from .utils import format_due_date, parse_due_date

logger = logging.getLogger(__name__)

T = TypeVar('T')


def serialize_todo(todo: Todo) -> dict:
    return {
        "id": todo.id,
        "text": todo.text,
        "completed": bool(todo.completed),
        "userId": todo.user_id,
        "dueDate": format_due_date(todo.due_date),
    }


def serialize_user(user: User) -> dict:
    # the hash is stored under "password", as in the legacy users.json
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "password": user.password_hash,
    }


def _todo_from_record(rec) -> Todo:
    if not isinstance(rec, dict):
        raise StorageError(f"todo record is not an object: {rec!r}")
    todo_id = rec.get("id")
    if not isinstance(todo_id, int) or isinstance(todo_id, bool) or not store.storable_id(todo_id):
        raise StorageError(f"todo record has invalid id: {todo_id!r}")
    text = rec.get("text")
    user_id = rec.get("userId")
    completed = rec.get("completed", False)
    if not isinstance(text, str) or not text:
        raise StorageError(f"todo {todo_id} has invalid text")
    if not isinstance(user_id, str) or not user_id:
        raise StorageError(f"todo {todo_id} has invalid userId")
    if not isinstance(completed, bool):
        raise StorageError(f"todo {todo_id} has invalid completed flag")
    try:
        due_date = parse_due_date(rec.get("dueDate"))
    except (ValueError, OverflowError):
        raise StorageError(f"todo {todo_id} has invalid dueDate")
    return Todo(id=todo_id, text=text, completed=completed, user_id=user_id, due_date=due_date)


def _user_from_record(rec) -> User:
    if not isinstance(rec, dict):
        raise StorageError(f"user record is not an object: {rec!r}")
    values = {key: rec.get(key) for key in ("id", "name", "email", "password")}
    for key, value in values.items():
        if not isinstance(value, str) or not value:
            raise StorageError(f"user record has invalid {key}")
    return User(id=values["id"], name=values["name"], email=values["email"], password_hash=values["password"])


def _load_array(text: str) -> list:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageError(f"snapshot is not valid JSON: {e}")
    if not isinstance(data, list):
        raise StorageError("snapshot must be a JSON array")
    return data


def todos_to_json(todos) -> str:
    return json.dumps([serialize_todo(t) for t in todos], indent=2)


def todos_from_json(text: str) -> list[Todo]:
    return [_todo_from_record(rec) for rec in _load_array(text)]


def users_to_json(user_rows) -> str:
    return json.dumps([serialize_user(u) for u in user_rows], indent=2)


def users_from_json(text: str) -> list[User]:
    return [_user_from_record(rec) for rec in _load_array(text)]


def read_snapshot(path: str, decoder: Callable[[str], list[T]]) -> list[T]:
    """Decode one snapshot file; a missing file is an empty collection."""
    if not os.path.exists(path):
        logger.info('snapshot %s not found; treating as empty', path)
        return []
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise StorageError(f"cannot read snapshot {path}: {e}")
    try:
        return decoder(text)
    except StorageError as e:
        raise StorageError(f"{path}: {e.message}")


def write_snapshot(path: str, text: str) -> None:
    """Replace ``path`` atomically: write a temp file beside it, then rename."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix='.snapshot-', suffix='.tmp', dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


async def export_snapshot(users_path: str, todos_path: str) -> tuple[int, int]:
    """Dump the database into the two snapshot files. Returns the counts."""
    all_users = await users.load_all()
    all_todos = await store.load_all()
    write_snapshot(users_path, users_to_json(all_users))
    write_snapshot(todos_path, todos_to_json(all_todos))
    logger.info('exported %d users and %d todos', len(all_users), len(all_todos))
    return len(all_users), len(all_todos)


async def import_snapshot(users_path: Optional[str], todos_path: Optional[str]) -> tuple[int, int]:
    """Load snapshot files into the database.

    Users whose email is already registered are matched to the existing
    account and their todos are re-owned by it; other users are inserted
    keeping their id and password hash. The todo collection is replaced.
    Everything is validated first, then written in a single transaction,
    so a failed import leaves the database untouched. Returns the number
    of users added and todos stored.
    """
    snap_users = read_snapshot(users_path, users_from_json) if users_path else []
    snap_todos = read_snapshot(todos_path, todos_from_json) if todos_path else []

    seen_emails = set()
    seen_user_ids = set()
    for u in snap_users:
        if u.email in seen_emails:
            raise StorageError(f"duplicate email in users snapshot: {u.email}")
        if u.id in seen_user_ids:
            raise StorageError(f"duplicate user id in users snapshot: {u.id}")
        seen_emails.add(u.email)
        seen_user_ids.add(u.id)

    id_map: dict[str, str] = {}
    to_create: list[User] = []
    for u in snap_users:
        existing = await users.find_by_email(u.email)
        if existing is not None:
            id_map[u.id] = existing.id
            continue
        if await users.get_by_id(u.id) is not None:
            raise StorageError(f"user id {u.id} is already taken by another email")
        id_map[u.id] = u.id
        to_create.append(u)

    seen_ids = set()
    for t in snap_todos:
        if t.id in seen_ids:
            raise StorageError(f"duplicate todo id in todos snapshot: {t.id}")
        seen_ids.add(t.id)
        if t.user_id in id_map:
            t.user_id = id_map[t.user_id]
        elif await users.get_by_id(t.user_id) is None:
            raise StorageError(f"todo {t.id} references unknown user {t.user_id}")

    try:
        await store.import_records(to_create, snap_todos if todos_path else None)
    except IntegrityError as e:
        # a registration committed between validation and the write
        logger.warning('snapshot import rolled back: %s', e.orig)
        raise StorageError("snapshot conflicts with records written during the import")
    logger.info('imported %d users and %d todos', len(to_create), len(snap_todos))
    return len(to_create), len(snap_todos)
