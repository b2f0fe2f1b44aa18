"""
JWT Auth Middleware — parses the Bearer token, sets the acting identity on g.

    Authorization: Bearer <token>  →  g.current_user_id, g.current_role

The token's ``role`` claim is the acting board role (admin, strategist,
scriptwriter, editor, coordinator, member, client). A missing or invalid
token leaves both unset; ``require_role`` turns that into a 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from reach.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user_id = None
        g.current_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)
            return

        g.current_user_id = payload.get("sub")
        g.current_role = payload.get("role")
