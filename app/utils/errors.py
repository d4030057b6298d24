"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Certification not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return api_error(E.VALIDATION_RULE, "Missing answers", details=field_errors)
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from app.core.exceptions import (
    AIUnavailableError,
    ClosedCertificationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    QuestionGenerationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • CERTIFICATION_CLOSED stands alone so clients can branch on it
    """

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CERTIFICATION_CLOSED = "CERTIFICATION_CLOSED"

    # Permissions – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Upstream – HTTP 502 / 503
    UPSTREAM = "ERR_UPSTREAM"
    UNAVAILABLE = "ERR_UNAVAILABLE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CERTIFICATION_CLOSED: 409,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.UPSTREAM: 502,
    E.UNAVAILABLE: 503,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, orphan users, pending ids).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_service_error_handlers(bp) -> None:
    """Attach the service-exception → HTTP mapping to a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(ClosedCertificationError)
    def _handle_closed(error: ClosedCertificationError):
        return api_error(E.CERTIFICATION_CLOSED, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(QuestionGenerationError)
    def _handle_generation(error: QuestionGenerationError):
        logger.warning("Question generation failed endpoint=%s: %s", request.endpoint, error)
        return api_error(E.UPSTREAM, "Question generation failed")

    @bp.errorhandler(AIUnavailableError)
    def _handle_unavailable(error: AIUnavailableError):
        logger.error("AI provider unavailable: %s", error)
        return api_error(E.UNAVAILABLE, "AI service not configured. Please contact administrator.")
