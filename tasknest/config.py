"""Runtime configuration for the TaskNest service.

Settings are read from environment variables so they can be changed in
development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# Placeholder used when SECRET_KEY is missing. The app lifespan refuses to
# start while this value is in use; tests set their own key.
INSECURE_SECRET_KEY = "CHANGE_ME_IN_ENV_FOR_TESTS"
SECRET_KEY = os.getenv("SECRET_KEY", INSECURE_SECRET_KEY)
ALGORITHM = "HS256"

# Lifetime of bearer access tokens issued by /auth/token.
ACCESS_TOKEN_EXPIRE_MINUTES = _int_env('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24)

# Lifetime of server-side cookie sessions issued by /auth/login.
SESSION_EXPIRE_MINUTES = _int_env('SESSION_EXPIRE_MINUTES', 60 * 24 * 7)

# Mark the session cookie Secure (HTTPS only). Leave off for local http.
SESSION_COOKIE_SECURE = _trueish(os.getenv('SESSION_COOKIE_SECURE', '0'))

# SQLAlchemy async URL of the record store. Point this at another file to
# keep separate databases, e.g. sqlite+aiosqlite:///./story.db
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tasknest.db")

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Use DEV_MODE=1 to relax startup checks meant for deployed servers.
DEV_MODE = _trueish(os.getenv('DEV_MODE', '0'))


# Optional local overrides: define variables in tasknest/local_config.py to
# override the defaults above without changing versioned config. Keep that
# file out of version control.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    pass
