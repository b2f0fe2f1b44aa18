"""
REACH Content Board
Card blueprint — single-card reads and mutations.

Endpoints:
    GET    /api/v1/cards/<card_id>              card detail
    PUT    /api/v1/cards/<card_id>              field edits and/or stage/position change
    DELETE /api/v1/cards/<card_id>              delete + compact the stage
    PUT    /api/v1/cards/<card_id>/move         drag-and-drop: stage_id + position (>= 1)
    GET    /api/v1/cards/<card_id>/audit-logs   newest-first history

Every ordering effect goes through the card service; this module only
parses requests and serialises results.
"""

import logging

from flask import Blueprint, jsonify, request

from reach.blueprints import (
    current_permissions,
    current_role,
    current_user_id,
    paginate_query,
    register_error_handlers,
)
from reach.middleware.permission_required import require_role
from reach.services import card_service
from reach.utils.errors import E, api_error

logger = logging.getLogger(__name__)

card_bp = Blueprint("cards", __name__, url_prefix="/api/v1")
register_error_handlers(card_bp)


def _transition_payload(result):
    return {
        **result.card.to_dict(),
        "moved": result.moved,
        "reordered": result.reordered,
        "changed_fields": sorted(result.changed_fields),
    }


@card_bp.route("/cards/<card_id>", methods=["GET"])
@require_role
def get_card(card_id):
    card = card_service.get_card(current_permissions(), current_role(), card_id)
    return jsonify(card.to_dict())


@card_bp.route("/cards/<card_id>", methods=["PUT"])
@require_role
def update_card(card_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "JSON object body required")

    result = card_service.update_card(
        current_permissions(), current_role(), card_id, data,
        actor_id=current_user_id(),
    )
    return jsonify(_transition_payload(result))


@card_bp.route("/cards/<card_id>/move", methods=["PUT"])
@require_role
def move_card(card_id):
    data = request.get_json(silent=True) or {}
    if not data.get("stage_id"):
        return api_error(E.VALIDATION_REQUIRED, "stage_id is required")
    if "position" not in data:
        return api_error(E.VALIDATION_REQUIRED, "position is required")

    result = card_service.move_card(
        current_permissions(), current_role(), card_id,
        data["stage_id"], data["position"], actor_id=current_user_id(),
    )
    return jsonify(_transition_payload(result))


@card_bp.route("/cards/<card_id>", methods=["DELETE"])
@require_role
def delete_card(card_id):
    shifted = card_service.delete_card(
        current_permissions(), current_role(), card_id, actor_id=current_user_id(),
    )
    return jsonify({"deleted": True, "id": card_id, "shifted": shifted})


@card_bp.route("/cards/<card_id>/audit-logs", methods=["GET"])
@require_role
def card_audit_logs(card_id):
    query = card_service.card_audit_history(current_permissions(), current_role(), card_id)
    logs, total = paginate_query(query, default_limit=50, max_limit=200)
    return jsonify({"items": [log.to_dict() for log in logs], "total": total})
