from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth_provider.platform.logger import get_logger
from auth_provider.platform.response import error_response

logger = get_logger("exceptions")


class AppError(Exception):
    """
    Base for every error the API reports on purpose.

    `message` is what the caller sees. Anything more detailed belongs in the
    log, never in the response.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def extra_content(self) -> dict:
        """Fields rendered next to `error` in the response body."""
        return {}


# ── Input validation (400) ──────────────────────


class BadRequest(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Bad request"


class InvalidRequestBody(BadRequest):
    message = "Invalid request body"


class EmailRequired(BadRequest):
    message = "Email is required"


class InvalidEmailFormat(BadRequest):
    message = "Invalid email format"


class VerificationFieldsRequired(BadRequest):
    message = "Email and verification code are required"


class F3NameRequired(BadRequest):
    message = "F3 name is required"


class HospitalNameRequired(BadRequest):
    message = "Hospital name is required"


# ── Authorization (401 / 403) ───────────────────


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Forbidden"


# ── Server side (500) ───────────────────────────


class ServerMisconfigured(AppError):
    message = "Server configuration error"


class DeliverySendFailed(AppError):
    message = "Failed to send verification email. Please try again."


def add_exception_handlers(app):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
                exc_info=exc.__cause__ or exc,
            )
        else:
            logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}")
        return error_response(exc.message, status_code=exc.status_code, **exc.extra_content())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Request validation failed on {request.url.path}: {exc.errors()}")
        return error_response(InvalidRequestBody.message, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        return error_response(
            "Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
