from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class NotifierError(Exception):
    """Base for errors that carry a machine-readable ``error_code``."""

    default_message = "Notifier error"
    default_code = "NOTIFIER_ERROR"

    def __init__(self, message: str | None = None, error_code: str | None = None):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_code
        super().__init__(self.message)


class AuthenticationError(NotifierError):
    default_message = "Authentication failed"
    default_code = "AUTH_ERROR"


class NotificationDeliveryError(NotifierError):
    """Raised when an email/SMS provider rejects or fails a send."""

    default_message = "Notification delivery failed"
    default_code = "DELIVERY_ERROR"


class LeaseServiceError(NotifierError):
    """Raised when the lease backend cannot be reached."""

    default_message = "Lease backend unavailable"
    default_code = "LEASE_ERROR"


# exception -> (status, error_type, public message or None to echo exc.message)
_NOTIFIER_ERROR_RESPONSES: dict[type[NotifierError], tuple[int, str, str | None]] = {
    AuthenticationError: (
        status.HTTP_401_UNAUTHORIZED,
        "AUTHENTICATION_ERROR",
        None,
    ),
    LeaseServiceError: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "LEASE_SERVICE_ERROR",
        "Coordination backend unavailable",
    ),
    NotificationDeliveryError: (
        status.HTTP_502_BAD_GATEWAY,
        "DELIVERY_ERROR",
        None,
    ),
}


def _format_validation_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


def setup_error_handlers(app: FastAPI):
    """Register the handlers that turn exceptions into ``ApiResponse`` envelopes."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = _format_validation_errors(exc)
        logger.warning(f"Rejected request body: {errors}")
        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=errors,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(NotifierError)
    async def notifier_exception_handler(request: Request, exc: NotifierError):
        status_code, error_type, public_message = _NOTIFIER_ERROR_RESPONSES.get(
            type(exc),
            (status.HTTP_500_INTERNAL_SERVER_ERROR, "NOTIFIER_ERROR", None),
        )
        log = logger.warning if status_code < 500 else logger.error
        log(f"{type(exc).__name__} [{exc.error_code}]: {exc.message}")
        return ResponseBuilder.error(
            request=request,
            message=public_message or exc.message,
            error_code=exc.error_code,
            status_code=status_code,
            meta={"error_type": error_type},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.opt(exception=exc).error("Database error while handling request")
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(f"Unhandled exception: {exc}")
        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
