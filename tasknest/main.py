from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional
import logging
import sys

from fastapi import FastAPI, Depends, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import auth
from . import config
from . import todos as todo_service
from .db import init_db
from .errors import InvalidInput, TaskNestError, Unauthenticated
from .models import Identity
from .snapshot import serialize_todo

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from the tasknest package appear on the server
# console when no handlers are configured (fallback for development/testing).
_pkg_logger = logging.getLogger('tasknest')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(config.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The server must not start signing tokens with the placeholder secret.
    if auth.SECRET_KEY == config.INSECURE_SECRET_KEY:
        if not config.DEV_MODE:
            raise RuntimeError("SECRET_KEY not set or insecure fallback in use; set the SECRET_KEY environment variable before starting the server")
        logger.warning('DEV_MODE: running with the insecure fallback SECRET_KEY')
    await init_db()
    logger.info('starting server using DATABASE_URL=%s', config.DATABASE_URL)
    yield
    logger.info('server shutting down')


app = FastAPI(lifespan=lifespan)


@app.exception_handler(TaskNestError)
async def _tasknest_error_handler(request: Request, exc: TaskNestError):
    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    fields = sorted({'.'.join(str(p) for p in err.get('loc', ())[1:]) for err in exc.errors()} - {''})
    message = "invalid request: " + ", ".join(fields) if fields else "invalid request"
    return JSONResponse({"error": message}, status_code=400)


class CredentialsRequest(BaseModel):
    email: str
    password: str


async def _json_object(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInput("invalid JSON")
    if not isinstance(payload, dict):
        raise InvalidInput("request body must be a JSON object")
    return payload


def _todo_id(payload: dict) -> int:
    value = payload.get('id')
    if isinstance(value, bool):
        raise InvalidInput("id must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    raise InvalidInput("id is required and must be an integer")


def _identity_body(identity: Identity) -> dict:
    return {"id": identity.user_id, "name": identity.name, "email": identity.email}


@app.get('/health')
async def health():
    return {"status": "ok"}


@app.post('/register', status_code=201)
async def register(request: Request):
    payload = await _json_object(request)
    await auth.register(payload.get('name'), payload.get('email'), payload.get('password'))
    return {"message": "User created"}


@app.post('/auth/token')
async def login_for_access_token(req: CredentialsRequest):
    identity = await auth.authenticate(req.email, req.password)
    if identity is None:
        raise Unauthenticated("Incorrect email or password")
    access_token = auth.create_access_token(identity)
    return {"access_token": access_token, "token_type": "bearer"}


@app.post('/auth/login')
async def login_with_session(req: CredentialsRequest, response: Response):
    """Cookie-based login for browser clients.

    Sets an HttpOnly ``session_token`` cookie bound to a server-side
    session row and returns the caller's identity.
    """
    identity = await auth.authenticate(req.email, req.password)
    if identity is None:
        raise Unauthenticated("Incorrect email or password")
    expires = timedelta(minutes=auth.SESSION_EXPIRE_MINUTES)
    session_token = await auth.create_session(identity, expires_delta=expires)
    response.set_cookie(
        auth.SESSION_COOKIE_NAME,
        session_token,
        httponly=True,
        samesite='lax',
        secure=config.SESSION_COOKIE_SECURE,
        max_age=int(expires.total_seconds()),
    )
    return _identity_body(identity)


@app.post('/auth/logout')
async def logout(request: Request, response: Response):
    session_token = request.cookies.get(auth.SESSION_COOKIE_NAME)
    if session_token:
        await auth.delete_session(session_token)
    response.delete_cookie(auth.SESSION_COOKIE_NAME)
    return {"ok": True}


@app.get('/auth/me')
async def whoami(identity: Identity = Depends(auth.require_identity)):
    return _identity_body(identity)


@app.get('/todos')
async def list_todos(completed: Optional[bool] = None, identity: Identity = Depends(auth.require_identity)):
    rows = await todo_service.list_todos(identity, completed=completed)
    return [serialize_todo(t) for t in rows]


@app.get('/todos/{todo_id}')
async def get_todo(todo_id: int, identity: Identity = Depends(auth.require_identity)):
    return serialize_todo(await todo_service.get_todo(identity, todo_id))


@app.post('/todos', status_code=201)
async def create_todo(request: Request, identity: Identity = Depends(auth.require_identity)):
    """Create a todo for the caller. JSON body: text (required), dueDate (optional).

    Any userId in the body is ignored; the owner is always the caller.
    """
    payload = await _json_object(request)
    todo = await todo_service.create_todo(identity, payload.get('text'), payload.get('dueDate'))
    return serialize_todo(todo)


@app.put('/todos')
async def update_todo(request: Request, identity: Identity = Depends(auth.require_identity)):
    """Update an owned todo. JSON body: id plus any of text, completed, dueDate."""
    payload = await _json_object(request)
    todo_id = _todo_id(payload)
    todo = await todo_service.update_todo(identity, todo_id, payload)
    return serialize_todo(todo)


@app.delete('/todos', status_code=204)
async def delete_todo(request: Request, identity: Identity = Depends(auth.require_identity)):
    payload = await _json_object(request)
    await todo_service.delete_todo(identity, _todo_id(payload))
    return Response(status_code=204)
