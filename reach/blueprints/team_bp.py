"""
REACH Content Board
Team blueprint — team bootstrap, stages, board view and card listing/creation.

Endpoints:
    POST /api/v1/teams                       create team + five default stages
    GET  /api/v1/teams/<team_id>/stages      stages in column order
    GET  /api/v1/teams/<team_id>/board       columns with the cards the role may read
    GET  /api/v1/teams/<team_id>/cards       flat card list (?stage_id= filter)
    POST /api/v1/teams/<team_id>/cards       create a card (appended to its stage)
    POST /api/v1/teams/<team_id>/stages/<stage_id>/compact   renumber a stage to 1..N (admin)
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
from reach.models.permissions import Role, coerce_enum
from reach.services import card_service
from reach.utils.errors import E, api_error

logger = logging.getLogger(__name__)

team_bp = Blueprint("teams", __name__, url_prefix="/api/v1")
register_error_handlers(team_bp)


@team_bp.route("/teams", methods=["POST"])
@require_role
def create_team():
    data = request.get_json(silent=True) or {}
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    if coerce_enum(Role, current_role()) is not Role.ADMIN:
        return api_error(E.FORBIDDEN, "Only admins can create teams")

    team = card_service.create_team(data["name"], data.get("description", ""))
    return jsonify(team.to_dict(include_stages=True)), 201


@team_bp.route("/teams/<team_id>/stages", methods=["GET"])
@require_role
def list_stages(team_id):
    stages = card_service.list_stages(team_id)
    return jsonify({"items": [s.to_dict() for s in stages], "total": len(stages)})


@team_bp.route("/teams/<team_id>/board", methods=["GET"])
@require_role
def get_board(team_id):
    return jsonify(card_service.get_board(current_permissions(), current_role(), team_id))


@team_bp.route("/teams/<team_id>/cards", methods=["GET"])
@require_role
def list_cards(team_id):
    cards = card_service.list_cards(
        current_permissions(), current_role(), team_id,
        stage_id=request.args.get("stage_id"),
    )
    return jsonify({"items": [c.to_dict() for c in cards], "total": len(cards)})


@team_bp.route("/teams/<team_id>/cards", methods=["POST"])
@require_role
def create_card(team_id):
    data = request.get_json(silent=True) or {}
    if not data.get("title"):
        return api_error(E.VALIDATION_REQUIRED, "title is required")

    card = card_service.create_card(
        current_permissions(), current_role(), team_id, data,
        actor_id=current_user_id(),
    )
    return jsonify(card.to_dict()), 201


@team_bp.route("/teams/<team_id>/stages/<stage_id>/compact", methods=["POST"])
@require_role
def compact_stage(team_id, stage_id):
    renumbered = card_service.compact_stage(
        current_permissions(), current_role(), team_id, stage_id,
        actor_id=current_user_id(),
    )
    return jsonify({"stage_id": stage_id, "renumbered": renumbered})
