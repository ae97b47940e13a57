from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel
from sqlmodel import SQLModel, Field
from .utils import now_utc, new_user_id


class User(SQLModel, table=True):
    """Registered user. Password stored as a passlib hash; never updated."""
    id: str = Field(default_factory=new_user_id, primary_key=True, max_length=32)
    name: str
    # Emails are compared exactly as stored (case-sensitive).
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: str
    created_at: datetime | None = Field(default_factory=now_utc)


class Todo(SQLModel, table=True):
    # AUTOINCREMENT keeps ids monotonic: SQLite never reuses the id of a
    # deleted row, even the highest one.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    text: str
    completed: bool = Field(default=False)
    user_id: str = Field(foreign_key="user.id", index=True)
    due_date: Optional[date] = None
    created_at: datetime | None = Field(default_factory=now_utc)
    modified_at: datetime | None = Field(default_factory=now_utc)


class Session(SQLModel, table=True):
    """Server-side session store for browser clients.

    session_token is a secure random string stored in an HttpOnly cookie and
    mapped to a user_id. Expired rows are removed when they are looked up.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    session_token: str = Field(sa_column_kwargs={"unique": True, "index": True})
    user_id: str = Field(foreign_key="user.id", index=True)
    created_at: datetime | None = Field(default_factory=now_utc)
    expires_at: Optional[datetime] = None


class Identity(BaseModel):
    """The authenticated caller, as resolved from a token or session."""
    user_id: str
    name: str
    email: str

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, name=user.name, email=user.email)
