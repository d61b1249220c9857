from typing import Iterable, Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class WebhookException(Exception):
    """HTTP level failure: the caller receives a status code and a plain message, no AdmissionReview."""

    def __init__(self, message: str, *, status_code: int = 400, code: str = "BAD_REQUEST") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class BadRequestError(WebhookException):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400, code="BAD_REQUEST")


class UnsupportedMediaTypeError(WebhookException):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=415, code="UNSUPPORTED_MEDIA_TYPE")


class PayloadTooLargeError(WebhookException):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=413, code="PAYLOAD_TOO_LARGE")


class RequestTimeoutError(WebhookException):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=408, code="REQUEST_TIMEOUT")


class NetworkSelectionError(BadRequestError):
    """Malformed network selection annotation."""


class NodeSelectorError(BadRequestError):
    """Network attachment declares more than one node selector label."""


class AdmissionDeniedError(Exception):
    """Request is well formed but the Pod must not be admitted."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SignalTimeoutError(TimeoutError):
    """A lifecycle signal did not reach the awaited state in time."""


class ServiceError(Exception):
    """Base class for background service lifecycle failures."""

    def __init__(self, service_name: str, message: str) -> None:
        super().__init__(f"{service_name}: {message}")
        self.service_name = service_name


class ServiceAlreadyRunningError(ServiceError):
    def __init__(self, service_name: str) -> None:
        super().__init__(service_name, "service must have exited before attempting to run again")


class ServicePreflightError(ServiceError):
    pass


class ServiceStartError(ServiceError):
    pass


class ServiceTimeoutError(ServiceError):
    pass


class ServiceReloadError(ServiceError):
    pass


class CombinedServiceError(Exception):
    """Several lifecycle errors reported as one failure."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


def combine_errors(*errors: Optional[BaseException]) -> Optional[BaseException]:
    """Collapse the non-empty errors into one, or return None when there are none."""
    present = [e for e in errors if e is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    flattened = []
    for err in present:
        if isinstance(err, CombinedServiceError):
            flattened.extend(err.errors)
        else:
            flattened.append(err)
    return CombinedServiceError(flattened)


def register_exception_handlers(app: FastAPI) -> None:
    """HTTP level errors are answered with plain text, mirroring what the API server expects."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        logger.warning("HTTPException: status=%s path=%s method=%s", exc.status_code, request.url.path, request.method)
        return PlainTextResponse(message, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(WebhookException)
    async def webhook_exception_handler(request: Request, exc: WebhookException):  # type: ignore[override]
        logger.warning("WebhookException: status=%s code=%s message=%s", exc.status_code, exc.code, exc.message)
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logger.exception("UnhandledException: path=%s", request.url.path)
        return PlainTextResponse("internal server error", status_code=500)
