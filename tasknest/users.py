"""Credential store: persistence and lookup of User records."""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .db import async_session
from .errors import Conflict
from .models import User

logger = logging.getLogger(__name__)


async def find_by_email(email: str) -> Optional[User]:
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.email == email))
        return q.first()


async def get_by_id(user_id: str) -> Optional[User]:
    async with async_session() as sess:
        return await sess.get(User, user_id)


async def create(name: str, email: str, password_hash: str, *, user_id: Optional[str] = None) -> User:
    """Insert a new user, raising Conflict if the email is already taken.

    The existence check and the insert share one transaction; the unique
    index on email turns a concurrent duplicate into Conflict too.
    """
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.email == email))
        if q.first() is not None:
            raise Conflict("User already exists")
        user = User(name=name, email=email, password_hash=password_hash)
        if user_id:
            user.id = user_id
        sess.add(user)
        try:
            await sess.commit()
        except IntegrityError:
            await sess.rollback()
            logger.info('duplicate registration lost the race for email=%s', email)
            raise Conflict("User already exists")
        await sess.refresh(user)
    logger.info('created user id=%s email=%s', user.id, email)
    return user


async def load_all() -> list[User]:
    async with async_session() as sess:
        q = await sess.exec(select(User).order_by(User.created_at, User.id))
        return list(q.all())
