"""
REACH Content Board
Permission blueprint — what the acting role may do, per stage.

Endpoints:
    GET  /api/v1/permissions/me         full matrix row + derived flags for the caller
    POST /api/v1/permissions/evaluate   {"stage": ..., "action": ...} → {"allowed": bool}
"""

import logging

from flask import Blueprint, jsonify, request

from reach.blueprints import current_permissions, current_role, register_error_handlers
from reach.middleware.permission_required import require_role
from reach.models.permissions import PermissionAction, coerce_enum, normalize_stage
from reach.services import card_service
from reach.services.permission import build_policy
from reach.utils.errors import E, api_error

logger = logging.getLogger(__name__)

permission_bp = Blueprint("permissions", __name__, url_prefix="/api/v1/permissions")
register_error_handlers(permission_bp)


@permission_bp.route("/me", methods=["GET"])
@require_role
def my_permissions():
    return jsonify(card_service.describe_permissions(current_permissions(), current_role()))


@permission_bp.route("/evaluate", methods=["POST"])
@require_role
def evaluate():
    data = request.get_json(silent=True) or {}
    stage = normalize_stage(data.get("stage"))
    if stage is None:
        return api_error(E.VALIDATION_INVALID, "stage must be one of the five workflow stages")
    action = coerce_enum(PermissionAction, data.get("action"))
    if action is None:
        return api_error(E.VALIDATION_INVALID, "action is not a known permission action")

    policy = build_policy(current_permissions())
    role = current_role()
    return jsonify({
        "role": role,
        "stage": stage.value,
        "action": action.value,
        "allowed": policy.evaluate_access(role, stage, action),
        "level": policy.evaluator.level_for(role, stage).value,
    })
