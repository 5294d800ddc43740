"""Error taxonomy shared by provider clients, the reliability layer and the pipeline."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError


class AttendryError(Exception):
    """Base class for all Attendry errors."""


class QueryBuildError(AttendryError, ValueError):
    """Raised when a search query cannot be built (e.g. empty base query)."""


class ServiceError(AttendryError):
    """An external service call failed."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        service: str = "",
        status_code: int | None = None,
        payload: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.payload = payload


class NetworkError(ServiceError):
    retryable = True


class RequestTimeoutError(ServiceError):
    retryable = True


class RateLimitError(ServiceError):
    retryable = True


class UpstreamServerError(ServiceError):
    retryable = True


class AuthenticationError(ServiceError):
    """401/403 from a provider. Opens the service's circuit immediately."""


class UpstreamClientError(ServiceError):
    """Any other 4xx. Not retried."""


class SchemaValidationError(ServiceError):
    """Response payload or extracted item failed schema validation."""


class CircuitOpenError(ServiceError):
    """Raised without calling the service while its circuit is open."""


def error_for_status(status_code: int, message: str, *, service: str = "", payload: Any | None = None) -> ServiceError:
    if status_code in (401, 403):
        cls: type[ServiceError] = AuthenticationError
    elif status_code == 429:
        cls = RateLimitError
    elif status_code == 408:
        cls = RequestTimeoutError
    elif status_code >= 500:
        cls = UpstreamServerError
    elif status_code >= 400:
        cls = UpstreamClientError
    else:
        cls = NetworkError
    return cls(message, service=service, status_code=status_code, payload=payload)


def classify_error(exc: BaseException, service: str = "") -> ServiceError:
    """Map an arbitrary exception onto the taxonomy.

    Unknown exceptions are treated as transient network failures.
    """
    if isinstance(exc, ServiceError):
        if not exc.service:
            exc.service = service
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return error_for_status(
            response.status_code,
            f"{service or 'service'} returned HTTP {response.status_code}",
            service=service,
            payload=_safe_body(response),
        )
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return RequestTimeoutError(str(exc) or "request timed out", service=service)
    # SDK errors (openai, postgrest) expose the HTTP status without being httpx errors.
    status_code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if isinstance(status_code, int) and 400 <= status_code < 600:
        return error_for_status(status_code, f"{type(exc).__name__}: {exc}", service=service)
    if "timeout" in type(exc).__name__.lower():
        return RequestTimeoutError(f"{type(exc).__name__}: {exc}", service=service)
    if isinstance(exc, PydanticValidationError):
        return SchemaValidationError(str(exc), service=service)
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return SchemaValidationError(f"{type(exc).__name__}: {exc}", service=service)
    return NetworkError(f"{type(exc).__name__}: {exc}", service=service)


def _safe_body(response: httpx.Response) -> str:
    try:
        return response.text[:500]
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""
