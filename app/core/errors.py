from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class WorkflowError(ValueError):
    status_code = 400
    kind = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"success": False, "error": self.kind, "message": self.message}


class GuardNotSatisfied(WorkflowError):
    # "You can't do this yet": wrong stage, missing payment, unverified documents.
    status_code = 400
    kind = "guard_not_satisfied"


class ValidationError(WorkflowError):
    status_code = 422
    kind = "validation_error"


class ConfigurationError(ValidationError):
    kind = "configuration_error"


class NotFoundError(WorkflowError):
    status_code = 404
    kind = "not_found"


class AuthorizationError(WorkflowError):
    status_code = 403
    kind = "authorization_error"


class ConflictError(WorkflowError):
    status_code = 409
    kind = "conflict"


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(WorkflowError)
    def workflow_error(exc: WorkflowError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def http_error(exc: HTTPException):
        payload = {
            "success": False,
            "error": (exc.name or "error").lower().replace(" ", "_"),
            "message": exc.description,
        }
        return jsonify(payload), exc.code

    @app.errorhandler(500)
    def internal_error(exc):
        logger.exception("Unhandled error while serving request: %s", exc)
        return jsonify({"success": False, "error": "internal_error", "message": "Internal server error"}), 500
