from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response.

    ``public_message`` is what the client sees. The constructor message is
    kept for server-side logs only, so security failures never leak which
    check failed.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ConfigurationError(AppError):
    """A required secret or key is missing or unusable."""


class InvalidCredential(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Invalid or expired credential"


class SessionExpired(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Session expired"


class InvalidNonce(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid or expired nonce"


class InvalidSignature(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Invalid signature"


class NoActiveKey(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    public_message = "No active ephemeral key"


class EphemeralKeyNotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Ephemeral key not found"


class InsufficientScope(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    public_message = "Insufficient scope"


class InvalidScope(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid scope"


class DecryptionFailed(AppError):
    """Authentication tag mismatch or otherwise undecryptable blob."""


class MalformedBlob(DecryptionFailed):
    """Encrypted blob does not have the iv:tag:ciphertext shape."""


class SignalNotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Not found"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        # Missing signaling artifacts are a normal polling outcome, the
        # message itself is safe to return.
        self.public_message = self.message


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            error_type=type(exc).__name__,
            error=exc.message,
            path=request.url.path,
        )
    else:
        logger.info(
            "Request rejected",
            error_type=type(exc).__name__,
            error=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    logger.info("Validation error", path=request.url.path, errors=errors)

    # A missing or empty body field is a plain 400, matching the documented
    # "missing field" failures of the REST surface.
    missing = [
        ".".join(str(p) for p in err.get("loc", ())[1:]) or "body"
        for err in errors
        if err.get("type") in {"missing", "string_too_short", "too_short"}
        and err.get("loc", ("",))[0] == "body"
    ]
    if missing and len(missing) == len(errors):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": f"Missing required field(s): {', '.join(missing)}"},
        )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(errors)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
