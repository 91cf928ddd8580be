"""
Error taxonomy for upstream Azure DevOps calls.

HTTP failures are classified once, at the client boundary, into an ErrorKind.
Callers branch on the kind instead of inspecting status codes or messages.
"""

from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Classification of an upstream failure."""

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    CLIENT = "client"
    TRANSPORT = "transport"
    DECODE = "decode"


# Failures worth retrying with backoff
RETRYABLE_KINDS = {ErrorKind.RATE_LIMITED, ErrorKind.SERVER, ErrorKind.TRANSPORT}
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


class AzureDevOpsError(Exception):
    """An upstream call failed."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.url = url

    @property
    def is_not_found(self) -> bool:
        return self.kind is ErrorKind.NOT_FOUND


class AuthorizationError(AzureDevOpsError):
    """The access token was rejected (401) or lacks permissions (403)."""


class OperationCancelled(Exception):
    """The caller signalled cancellation while an operation was in flight."""


# Errors that must never be swallowed by per-item isolation
FATAL_ERRORS = (AuthorizationError, OperationCancelled)


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind."""
    if status_code == 401:
        return ErrorKind.UNAUTHORIZED
    if status_code == 403:
        return ErrorKind.FORBIDDEN
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.CLIENT


def error_from_response(response: httpx.Response) -> AzureDevOpsError:
    """Build the error matching a non-success response."""
    kind = classify_status(response.status_code)
    url = str(response.request.url) if response.request is not None else None
    message = f"Azure DevOps returned HTTP {response.status_code} for {url}"
    if kind in (ErrorKind.UNAUTHORIZED, ErrorKind.FORBIDDEN):
        return AuthorizationError(kind, message, response.status_code, url)
    return AzureDevOpsError(kind, message, response.status_code, url)
