from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
import logging

from services.outcomes import Failure, FailureKind

logger = logging.getLogger(__name__)

# Failure kinds returned by SessionService -> HTTP status
FAILURE_STATUS = {
    FailureKind.VALIDATION_FAILURE: 400,
    FailureKind.INVALID_CREDENTIALS: 400,
    FailureKind.DUPLICATE_USER: 400,
    FailureKind.INVALID_SESSION: 401,
    FailureKind.PERSISTENCE_FAILURE: 500,
    FailureKind.HASHING_ERROR: 500,
}


def error_response(error: str, message: str, status: int, errors: list | None = None):
    payload = {"error": error, "message": message, "status": status}
    if errors is not None:
        payload["errors"] = errors
    return jsonify(payload), status


def failure_response(failure: Failure):
    """Render a service Failure; the internal ``reason`` is never exposed."""
    status = FAILURE_STATUS.get(failure.kind, 500)
    return error_response(failure.kind.value, failure.message, status)


def flatten_validation_messages(messages) -> list:
    """
    Turn marshmallow's {field: [msg, ...]} mapping into
    [{"field": field, "msg": msg}, ...].
    """
    if isinstance(messages, list):
        return [{"field": "_schema", "msg": str(m)} for m in messages]
    errors = []
    for field, msgs in messages.items():
        if isinstance(msgs, dict):
            for nested in flatten_validation_messages(msgs):
                nested["field"] = f"{field}.{nested['field']}"
                errors.append(nested)
            continue
        if not isinstance(msgs, list):
            msgs = [msgs]
        errors.extend({"field": field, "msg": str(m)} for m in msgs)
    return errors


def register_error_handlers(app):
    # 404 Not Found
    @app.errorhandler(404)
    def not_found(e):
        return error_response("NOT_FOUND", "Resource not found", 404)

    # Marshmallow validation errors: field errors as a list
    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        return error_response(
            FailureKind.VALIDATION_FAILURE.value,
            "Invalid input",
            400,
            errors=flatten_validation_messages(err.messages),
        )

    # Werkzeug HTTPExceptions map to their status codes
    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        return error_response(err.name.upper().replace(" ", "_"), err.description, err.code or 400)

    # 500 Internal Error (catch-all)
    @app.errorhandler(Exception)
    def internal_error(err: Exception):
        logger.exception("Unhandled exception", exc_info=err)
        details = None
        if current_app and current_app.debug:
            details = [{"type": err.__class__.__name__, "msg": str(err)}]
        return error_response("INTERNAL_ERROR", "An unexpected error occurred", 500, errors=details)
