# Overview: JSON envelopes shared by every blueprint.

from __future__ import annotations

from flask import current_app, jsonify

from .services.auth_service import AuthError
from .services.transaction_service import TransactionError
from .validation import ConflictError, ForbiddenError, NotFoundError, ValidationError


DOMAIN_ERRORS = (
    ValidationError,
    NotFoundError,
    ConflictError,
    ForbiddenError,
    AuthError,
    TransactionError,
)


def success(data=None, status: int = 200, message: str | None = None):
    """{"success": true, "data": ..., "message"?: ...}"""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def error(message: str, status: int = 400, details: dict | None = None):
    body = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def service_error(exc: Exception):
    """Translate a domain exception into its error envelope and status."""
    if isinstance(exc, TransactionError):
        return error(str(exc), exc.status_code, exc.details)
    if isinstance(exc, NotFoundError):
        return error(str(exc), 404)
    if isinstance(exc, ConflictError):
        return error(str(exc), 409)
    if isinstance(exc, ForbiddenError):
        return error(str(exc), 403)
    if isinstance(exc, AuthError):
        return error(str(exc), 401)
    if isinstance(exc, ValidationError):
        return error(str(exc), 400)
    raise TypeError(f"not a domain error: {exc!r}")


def internal_error(log_message: str):
    """Log the active exception and answer with a generic 500."""
    current_app.logger.exception(log_message)
    return error("Internal server error", 500)
