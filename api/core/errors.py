"""
Error taxonomy shared by the Store, the synchronizer and the routers.

Every error carries the HTTP status it maps to; `main.py` installs a single
exception handler that turns them into JSON responses.
"""

from __future__ import annotations

from typing import Any


class ApiError(RuntimeError):
    status_code = 500
    default_detail = "Internal server error."

    def __init__(self, detail: str | None = None, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.errors = errors or []


class ValidationError(ApiError):
    status_code = 422
    default_detail = "Invalid input."


# Programmer misuse (undeclared key set or foreign key). Never caller-correctable.
class ImplementationError(ApiError):
    status_code = 500
    default_detail = "Internal server error."


class NotFound(ApiError):
    status_code = 404
    default_detail = "Not found."


class Conflict(ApiError):
    status_code = 409
    default_detail = "Conflict."


class Forbidden(ApiError):
    status_code = 403
    default_detail = "Forbidden."


# Paid content without an active subscription.
class PaymentRequired(ApiError):
    status_code = 402
    default_detail = "An active subscription is required."


# Search index / payment provider failures.
class ExternalSystemFailure(ApiError):
    status_code = 502
    default_detail = "An external system failed."


class SignatureInvalid(ApiError):
    status_code = 400
    default_detail = "Invalid webhook signature."


def field_error(field: str, error: str) -> dict[str, str]:
    return {"field": field, "error": error}
