"""
Material Trial Tracker exceptions.

Every failure in the lifecycle core is a caller-input problem detected before
any mutation, except CommitError which wraps a storage failure during the
single commit of a command. Error handlers in errors.py map each class to an
HTTP status.
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for all lifecycle core errors."""

    code = "lifecycle_error"
    http_status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NotFound(LifecycleError):
    """Unknown request id."""

    code = "not_found"
    http_status = 404

    def __init__(self, request_id, message: str | None = None):
        self.request_id = request_id
        super().__init__(message or f"Material request {request_id} not found.")


class Forbidden(LifecycleError):
    """The actor's role does not own the request's current stage."""

    code = "forbidden"
    http_status = 403


class InvalidTransition(LifecycleError):
    """The command is not applicable to the request's current status."""

    code = "invalid_transition"
    http_status = 409

    def __init__(self, status, command, message: str | None = None):
        self.status = status
        self.command = command
        if message is None:
            message = f"Command '{command}' is not allowed while the request is '{status}'."
        super().__init__(message)


class ValidationError(LifecycleError):
    """A payload field required by the transition guard is missing or invalid."""

    code = "validation_error"
    http_status = 422

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Field '{field}' is required.")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class CommitError(LifecycleError):
    """Storage failed while committing a transition; nothing was persisted."""

    code = "commit_failed"
    http_status = 500


class AuditImmutableError(LifecycleError):
    """Raised when code attempts to modify or delete a stored audit entry."""

    code = "audit_immutable"
    http_status = 500
