import secrets
import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import delete as sqlalchemy_delete
from sqlmodel import select

from . import config
from . import users
from .db import async_session
from .errors import InvalidInput, Unauthenticated
from .models import Identity, Session, User
from .utils import as_utc, now_utc

logger = logging.getLogger(__name__)

SECRET_KEY = config.SECRET_KEY
ALGORITHM = config.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = config.ACCESS_TOKEN_EXPIRE_MINUTES
SESSION_EXPIRE_MINUTES = config.SESSION_EXPIRE_MINUTES
SESSION_COOKIE_NAME = "session_token"

# pbkdf2_sha256 is pure-Python and portable; bcrypt stays accepted so
# hashes imported from the legacy users.json still verify.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

# Verified against when the email is unknown so that both failure paths
# of authenticate() pay for one hash verification.
_dummy_hash: Optional[str] = None


def _get_dummy_hash() -> str:
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_context.hash(secrets.token_urlsafe(16))
    return _dummy_hash


def hash_password(raw_password: str) -> str:
    return pwd_context.hash(raw_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # unknown or malformed hash format stored for this user
        logger.warning('stored password hash could not be parsed')
        return False


def _required(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


async def register(name, email, raw_password) -> User:
    """Create a user from a registration form.

    Raises InvalidInput when any field is absent or blank and Conflict
    when the email is already registered.
    """
    if not (_required(name) and _required(email) and _required(raw_password)):
        raise InvalidInput("Missing fields")
    password_hash = hash_password(raw_password)
    return await users.create(name, email, password_hash)


async def authenticate(email, raw_password) -> Optional[Identity]:
    """Return the Identity for valid credentials, otherwise None.

    Unknown email and wrong password are deliberately indistinguishable.
    """
    if not isinstance(email, str) or not isinstance(raw_password, str):
        return None
    user = await users.find_by_email(email)
    if user is None:
        verify_password(raw_password, _get_dummy_hash())
        logger.info('authentication failed for email=%s', email)
        return None
    if not verify_password(raw_password, user.password_hash):
        logger.info('authentication failed for email=%s', email)
        return None
    logger.info('authenticated user id=%s', user.id)
    return Identity.from_user(user)


def create_access_token(identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = now_utc() + expires_delta
    to_encode = {
        "sub": identity.user_id,
        "name": identity.name,
        "email": identity.email,
        "type": "access",
        # RFC 7519 recommends NumericDate (seconds since epoch). Encode as int.
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def resolve_token(token: str) -> Identity:
    """Resolve a bearer token to the Identity of a user that still exists.

    Expired, tampered or wrong-type tokens raise Unauthenticated.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info('rejected access token: %s', e)
        raise Unauthenticated("Could not validate credentials")
    if payload.get("type") != "access":
        logger.info('rejected access token: type=%s', payload.get("type"))
        raise Unauthenticated("Could not validate credentials")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Could not validate credentials")
    user = await users.get_by_id(user_id)
    if user is None:
        logger.info('rejected access token for unknown user id=%s', user_id)
        raise Unauthenticated("Could not validate credentials")
    return Identity.from_user(user)


async def create_session(identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
    """Create a server-side session and return its token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=SESSION_EXPIRE_MINUTES)
    sess_token = secrets.token_urlsafe(32)
    async with async_session() as s:
        s.add(Session(session_token=sess_token, user_id=identity.user_id, expires_at=now_utc() + expires_delta))
        await s.commit()
    logger.info('created session for user id=%s', identity.user_id)
    return sess_token


async def resolve_session(session_token: str) -> Optional[Identity]:
    async with async_session() as s:
        q = await s.exec(select(Session).where(Session.session_token == session_token))
        sess_row = q.first()
        if not sess_row:
            return None
        expires_at = as_utc(sess_row.expires_at)
        if expires_at and expires_at < now_utc():
            await s.exec(sqlalchemy_delete(Session).where(Session.session_token == session_token))
            await s.commit()
            logger.info('expired session removed for user id=%s', sess_row.user_id)
            return None
        user = await s.get(User, sess_row.user_id)
    if user is None:
        return None
    return Identity.from_user(user)


async def delete_session(session_token: str) -> None:
    async with async_session() as s:
        await s.exec(sqlalchemy_delete(Session).where(Session.session_token == session_token))
        await s.commit()


async def get_current_identity(token: Optional[str] = Depends(oauth2_scheme), request: Request = None) -> Optional[Identity]:
    # An Authorization header is authoritative: a tampered bearer token is
    # rejected even when a valid session cookie is also present.
    if token is not None:
        return await resolve_token(token)
    if request is not None:
        session_token = request.cookies.get(SESSION_COOKIE_NAME)
        if session_token:
            return await resolve_session(session_token)
    return None


async def require_identity(identity: Optional[Identity] = Depends(get_current_identity)) -> Identity:
    """Dependency that enforces an authenticated caller."""
    if identity is None:
        raise Unauthenticated("Unauthorized")
    return identity
