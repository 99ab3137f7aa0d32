"""
Typed failures raised by the workflow core.

Route handlers never translate these by hand: the global exception handler in
``responses`` serialises them with their ``status_code`` and ``error_code``.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for every failure a workflow operation can report."""

    status_code = 400
    error_code = "WORKFLOW_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(WorkflowError):
    """Malformed input, e.g. a body below the minimum length."""

    status_code = 422
    error_code = "VALIDATION_ERROR"


class NotFound(WorkflowError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, id: Any = None):
        message = f"{resource} not found" if id is None else f"{resource} '{id}' not found"
        super().__init__(message, {"resource": resource, "id": id})


class Forbidden(WorkflowError):
    status_code = 403
    error_code = "FORBIDDEN"


class InvalidState(WorkflowError):
    """Operation not legal in the entity's current state."""

    status_code = 400
    error_code = "INVALID_STATE"

    def __init__(self, message: str, current_state: str):
        super().__init__(f"{message} (current state: {current_state})", {"current_state": current_state})
        self.current_state = current_state


class Conflict(WorkflowError):
    status_code = 409
    error_code = "CONFLICT"


class TransientStoreFailure(WorkflowError):
    """Store timeout or lost connection. The whole operation may be retried."""

    status_code = 503
    error_code = "STORE_UNAVAILABLE"


class RenderFailure(WorkflowError):
    """The document renderer failed; magazine state was left unchanged."""

    status_code = 502
    error_code = "RENDER_FAILED"
