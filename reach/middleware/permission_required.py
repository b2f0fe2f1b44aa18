"""
Route guard — requires an authenticated acting role.

Usage:
    @card_bp.route("/cards/<card_id>", methods=["PUT"])
    @require_role
    def update_card(card_id):
        ...

Stage-level decisions (read / write / delete per stage) are made by the
service layer; this decorator only rejects requests with no role at all.
"""

import functools
import logging

from flask import g, request

from reach.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_role(f):
    """Decorator: 401 unless the JWT middleware resolved a role."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not getattr(g, "current_role", None):
            logger.info("Unauthenticated request to %s %s", request.method, request.path)
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)

    return decorated
