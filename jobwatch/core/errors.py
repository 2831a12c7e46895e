"""Domain errors for the execution core and their HTTP rendering.

Services raise these; the API layer never builds HTTPExceptions for domain
failures. `register_exception_handlers` maps each error to a status code and
a stable JSON body:

    {"success": false, "error": "invalid_transition", "message": "...", "details": {...}}
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from jobwatch.core.logging import get_logger

logger = get_logger(__name__)


class ExecutionError(Exception):
    """Base class for all execution core errors."""

    code = "execution_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ExecutionError):
    """Missing or malformed required input."""

    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(ExecutionError):
    """A lookup that must resolve to exactly one execution found nothing."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(ExecutionError):
    """Requested status is not a legal successor of the current status."""

    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        requested_status: str | None = None,
        **details: Any,
    ) -> None:
        super().__init__(
            message,
            current_status=current_status,
            requested_status=requested_status,
            **details,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ConflictError(InvalidTransitionError):
    """Lost a compare-and-set race against a concurrent mutation."""

    code = "conflict"


class DependencyError(ExecutionError):
    """A downstream collaborator (the retry trigger) could not be reached."""

    code = "dependency_error"
    status_code = status.HTTP_502_BAD_GATEWAY


async def execution_error_handler(request: Request, exc: ExecutionError) -> JSONResponse:
    """Render an ExecutionError as JSON."""
    logger.bind(
        path=request.url.path,
        error=exc.code,
        details=exc.details,
    ).info("request_rejected")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain error handler on the application."""
    app.add_exception_handler(ExecutionError, execution_error_handler)  # type: ignore[arg-type]
