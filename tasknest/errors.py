"""Errors raised by the credential, auth and todo layers.

Each error carries the HTTP status the API reports it with; the handler
in ``tasknest.main`` renders them as ``{"error": message}``.
"""


class TaskNestError(Exception):
    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(TaskNestError):
    """A required field is missing, empty or of the wrong type."""
    status_code = 400
    default_message = "invalid input"


class Unauthenticated(TaskNestError):
    """No identity, or the presented token/session is invalid or expired."""
    status_code = 401
    default_message = "Unauthorized"


class NotFound(TaskNestError):
    """The record does not exist or is not owned by the caller."""
    status_code = 404
    default_message = "not found"


class Conflict(TaskNestError):
    status_code = 409
    default_message = "conflict"


class StorageError(TaskNestError):
    """A persisted collection exists but cannot be read or parsed."""
    status_code = 500
    default_message = "storage error"
