"""Application error types and the Flask handlers that render them."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Domain error carrying an HTTP status and a client-safe message."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class BadRequestError(AppError):
    status_code = 400
    default_message = "Bad request"


class ValidationError(BadRequestError):
    default_message = "Validation failed"

    def __init__(self, errors: Dict[str, Any], message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message, errors=errors)


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Not authorized, please log in"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource conflict"


class ServiceUnavailableError(AppError):
    status_code = 503
    default_message = "Service unavailable"


def register_error_handlers(app: Flask) -> None:
    """Translate raised errors into the JSON envelope used by every endpoint."""

    @app.errorhandler(AppError)
    def handle_app_error(exc: AppError):
        if exc.status_code >= 500:
            logger.error("Application error: %s", exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc: IntegrityError):
        logger.warning("Integrity constraint violated: %s", exc.orig)
        return jsonify({"success": False, "message": "Resource already exists or violates a constraint"}), 409

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        message = exc.description if exc.code != 404 else "Route not found"
        return jsonify({"success": False, "message": message}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        logger.exception("Unhandled exception")
        return jsonify({"success": False, "message": "Internal server error"}), 500
