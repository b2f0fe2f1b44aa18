"""
REACH Content Board
Blueprint registry and shared request helpers.
"""

import logging

from flask import current_app, g, request

from reach.core.exceptions import (
    ConflictRetryableError,
    ForbiddenError,
    InvalidTargetError,
    NotFoundError,
    ValidationError,
)
from reach.services.permission import PERMISSIONS_EXTENSION
from reach.utils.errors import E, api_error

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


def current_permissions():
    """The PermissionMatrix built by create_app."""
    return current_app.extensions[PERMISSIONS_EXTENSION]


def current_role():
    return getattr(g, "current_role", None)


def current_user_id():
    return getattr(g, "current_user_id", None)


def register_error_handlers(bp):
    """Map the board exception hierarchy onto the standard error envelope."""

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, str(error), details={
            "role": error.role, "action": error.action, "stage": error.stage,
        })

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(InvalidTargetError)
    def _handle_invalid_target(error: InvalidTargetError):
        return api_error(E.INVALID_TARGET, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictRetryableError)
    def _handle_conflict(error: ConflictRetryableError):
        return api_error(E.CONFLICT_RETRYABLE, str(error), details={"retryable": True})
