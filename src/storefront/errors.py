"""
storefront.errors

Typed failures raised by the authorization and workflow core.

Responsibilities:
- Give every failure a stable machine-readable `code` and an HTTP status.
- Keep the taxonomy flat so the API layer can render all of them with one handler.
"""

from __future__ import annotations

from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_503_SERVICE_UNAVAILABLE,
)


class StorefrontError(Exception):
    code = "StorefrontError"
    status_code = HTTP_409_CONFLICT
    # Only optimistic-concurrency conflicts are safe for the caller to retry.
    retryable = False

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class Unauthenticated(StorefrontError):
    code = "Unauthenticated"
    status_code = HTTP_401_UNAUTHORIZED


class InvalidCredentials(Unauthenticated):
    code = "InvalidCredentials"


class Forbidden(StorefrontError):
    code = "Forbidden"
    status_code = HTTP_403_FORBIDDEN


class NotFound(StorefrontError):
    code = "NotFound"
    status_code = HTTP_404_NOT_FOUND


class Conflict(StorefrontError):
    code = "Conflict"


class InvalidRequest(StorefrontError):
    # Rendered like request-model validation failures.
    code = "ValidationError"
    status_code = 422


class IllegalTransition(StorefrontError):
    code = "IllegalTransition"

    def __init__(self, current: str, target: str, detail: str = "") -> None:
        super().__init__(detail or f"{current} -> {target} is not a permitted transition")
        self.current = current
        self.target = target


class AlreadyAssigned(StorefrontError):
    code = "AlreadyAssigned"


class AlreadyClaimed(StorefrontError):
    code = "AlreadyClaimed"


class NoAgentAvailable(StorefrontError):
    code = "NoAgentAvailable"
    status_code = HTTP_503_SERVICE_UNAVAILABLE


class StaleVersion(StorefrontError):
    code = "StaleVersion"
    retryable = True


class ReopenLimitExceeded(StorefrontError):
    code = "ReopenLimitExceeded"


# --- Module Notes -----------------------------------------------------------
# Rendering lives in `api.envelope`; services only raise.
