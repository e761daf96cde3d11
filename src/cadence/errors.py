from __future__ import annotations

from typing import Any


class CadenceError(Exception):
    code = "CADENCE_ERROR"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message}


class AuthorizationError(CadenceError):
    """Missing or unresolvable actor/org. The reason is never exposed."""

    code = "UNAUTHORIZED"
    http_status = 401

    def __init__(self) -> None:
        super().__init__("Unauthorized")


class DomainValidationError(CadenceError):
    code = "VALIDATION_FAILED"
    http_status = 422

    def __init__(self, message: str, *, errors: list[Any] | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.errors = errors or []

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message, "errors": self.errors}


class NotFoundError(CadenceError):
    code = "NOT_FOUND"
    http_status = 404


class ExternalServiceError(CadenceError):
    code = "EXTERNAL_SERVICE_FAILED"
    http_status = 502


class ExtractionError(ExternalServiceError):
    code = "EXTRACTION_FAILED"
    http_status = 422


class PersistenceError(CadenceError):
    code = "PERSISTENCE_FAILED"
    http_status = 500
