"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://claimdesk.dev/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        extensions: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.extensions = extensions or {}
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — authenticated but not allowed to act on this resource."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
            extensions={"reason": reason} if reason else None,
        )


class ValidationException(AppException):
    """400 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=400,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class InvalidTransitionException(AppException):
    """400 — the claim status graph does not allow this move."""

    def __init__(self, current_status: Any, target_status: Any, detail: Optional[str] = None) -> None:
        current = getattr(current_status, "value", current_status)
        target = getattr(target_status, "value", target_status)
        self.current_status = current
        self.target_status = target
        super().__init__(
            status_code=400,
            error_type="invalid-transition",
            title="Invalid Status Transition",
            detail=detail or f"Cannot move a claim from '{current}' to '{target}'.",
            extensions={"current_status": current, "target_status": target},
        )


class LimitExceededException(AppException):
    """400 — the claim would push usage over the owner's effective limit."""

    def __init__(self, amount: Decimal, remaining: Decimal, effective_limit: Decimal) -> None:
        self.amount = amount
        self.remaining = remaining
        self.effective_limit = effective_limit
        super().__init__(
            status_code=400,
            error_type="limit-exceeded",
            title="Claim Limit Exceeded",
            detail=(
                f"Claim amount {amount} exceeds remaining claim limit {remaining}."
            ),
            errors={"amount": [f"Remaining claim limit is {remaining}."]},
            extensions={
                "remaining": float(remaining),
                "effective_limit": float(effective_limit),
            },
        )


class InfrastructureException(AppException):
    """503 — storage or configuration backend unreachable."""

    def __init__(self, detail: str = "A backing service is unavailable.") -> None:
        super().__init__(
            status_code=503,
            error_type="infrastructure",
            title="Service Unavailable",
            detail=detail,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    body.update(exc.extensions)
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=400,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 400,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
