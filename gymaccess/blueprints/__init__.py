"""
Gym Access Platform
Blueprint registry and shared view helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from gymaccess.core.exceptions import (
    CheckinError,
    ConflictError,
    InternalPersistenceFailure,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from gymaccess.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = max(min(int(request.args.get("limit", default_limit)), max_limit), 1)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def checkin_error_response(error: CheckinError):
    """JSON body for a check-in failure kind; only internal failures log at error."""
    if isinstance(error, InternalPersistenceFailure):
        logger.error("Check-in failed internally at %s", request.endpoint)
    else:
        logger.info("Check-in refused: %s", error.code)
    resp, status = api_error(error.code, str(error), status=error.status, details=error.details())
    if status == 409 and "retry_after_seconds" in error.details():
        resp.headers["Retry-After"] = str(error.details()["retry_after_seconds"])
    return resp, status


def register_error_handlers(bp):
    """Attach the platform exception → JSON mapping to a blueprint."""

    @bp.errorhandler(CheckinError)
    def _handle_checkin(error: CheckinError):
        return checkin_error_response(error)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT, str(error), details=error.details)

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
