"""
REACH Content Board
Comment blueprint — card discussion threads and the caller's mentions.

Endpoints:
    GET  /api/v1/cards/<card_id>/comments        newest-first thread
    POST /api/v1/cards/<card_id>/comments        comment or reply (+ mentions)
    GET  /api/v1/mentions                        caller's mentions (?unread=true)
    PUT  /api/v1/mentions/<mention_id>/read      acknowledge one mention
"""

import logging

from flask import Blueprint, jsonify, request

from reach.blueprints import (
    current_permissions,
    current_role,
    current_user_id,
    register_error_handlers,
)
from reach.middleware.permission_required import require_role
from reach.services import comment_service
from reach.utils.errors import E, api_error

logger = logging.getLogger(__name__)

comment_bp = Blueprint("comments", __name__, url_prefix="/api/v1")
register_error_handlers(comment_bp)


@comment_bp.route("/cards/<card_id>/comments", methods=["GET"])
@require_role
def list_comments(card_id):
    comments = comment_service.list_comments(current_permissions(), current_role(), card_id)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@comment_bp.route("/cards/<card_id>/comments", methods=["POST"])
@require_role
def add_comment(card_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    if not data.get("content"):
        return api_error(E.VALIDATION_REQUIRED, "content is required")

    comment = comment_service.add_comment(
        current_permissions(), current_role(), card_id, data, actor_id=current_user_id(),
    )
    return jsonify(comment.to_dict()), 201


@comment_bp.route("/mentions", methods=["GET"])
@require_role
def list_mentions():
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    mentions = comment_service.list_mentions(current_user_id(), unread_only=unread_only)
    return jsonify({"items": [m.to_dict() for m in mentions], "total": len(mentions)})


@comment_bp.route("/mentions/<int:mention_id>/read", methods=["PUT"])
@require_role
def mark_mention_read(mention_id):
    mention = comment_service.mark_mention_read(current_role(), mention_id, current_user_id())
    return jsonify(mention.to_dict())
