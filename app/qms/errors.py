"""
Application errors.

Every error carries an HTTP status and a machine-readable ``code`` so the API
layer can render ``{"success": false, "error": {"code", "message"}}`` without
knowing which service raised it.
"""
from __future__ import annotations

from typing import Any


class QMSError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(QMSError, ValueError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidTransition(ValidationError):
    """Requested status is not an allowed edge from the current status."""

    code = "INVALID_TRANSITION"


class TerminalState(InvalidTransition):
    """The entity is in a terminal status and cannot move anywhere."""

    code = "TERMINAL_STATE"


class OpenActionsRemain(ValidationError):
    """An NCR cannot be closed while any corrective action is unverified."""

    code = "OPEN_ACTIONS_REMAIN"


class ActionsIncomplete(ValidationError):
    """An NCR cannot be resolved without completed corrective actions."""

    code = "ACTIONS_INCOMPLETE"


class AuthenticationError(QMSError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(QMSError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class NotFoundError(QMSError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, entity_id: object | None = None) -> None:
        message = f"{resource} with ID {entity_id} not found" if entity_id is not None else f"{resource} not found"
        super().__init__(message)
