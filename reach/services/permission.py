"""
Role × Stage access control.

Two layers over a ``PermissionMatrix``:

    PermissionEvaluator — action-level answers
        has_access(role, stage, action)
        has_global_capability(role, capability)

    StageAccessPolicy — the predicates the rest of the board needs
        can_edit_card / can_delete_card / can_drag_card / is_stage_read_only
        accessible_stages / can_view_all_cards / filter_visible_cards
        can_comment / can_approve / can_assign_users / permission_description

Evaluation is deny-by-default: unknown roles, stages or actions resolve to
``False``; nothing here raises.

Usage:
    from reach.services.permission import build_policy

    policy = build_policy(current_app.extensions[PERMISSIONS_EXTENSION])
    if not policy.can_edit_card("editor", "assemble"):
        ...
"""

import logging

from reach.models.permissions import (
    LEVEL_ACTIONS,
    PermissionAction,
    PermissionLevel,
    PermissionMatrix,
    Role,
    StageName,
    coerce_enum,
    normalize_stage,
)

logger = logging.getLogger(__name__)

# Key under which create_app stores the process-wide PermissionMatrix
PERMISSIONS_EXTENSION = "reach.permissions"

__all__ = [
    "PERMISSIONS_EXTENSION",
    "PermissionEvaluator",
    "StageAccessPolicy",
    "build_policy",
    "normalize_stage",
]

_LEVEL_DESCRIPTIONS = {
    PermissionLevel.FULL: "Full access - create, edit, delete, move cards, assign users",
    PermissionLevel.COMMENT_APPROVE: "View cards, add comments, approve/reject content",
    PermissionLevel.READ_ONLY: "View cards and comments only",
    PermissionLevel.NONE: "No access to this stage",
}


def _is_admin(role) -> bool:
    return coerce_enum(Role, role) is Role.ADMIN


class PermissionEvaluator:
    """Answers "may *role* perform *action* on *stage*" from a PermissionMatrix."""

    def __init__(self, matrix: PermissionMatrix):
        self.matrix = matrix

    def level_for(self, role, stage) -> PermissionLevel:
        return self.matrix.level_for(role, normalize_stage(stage))

    def has_access(self, role, stage, action) -> bool:
        level = self.level_for(role, stage)
        if level is PermissionLevel.NONE:
            return False
        action_key = coerce_enum(PermissionAction, action)
        if action_key is None:
            return False
        return action_key in LEVEL_ACTIONS[level]

    def has_global_capability(self, role, capability: str) -> bool:
        # admin is a superuser regardless of the capability table
        if _is_admin(role):
            return True
        return capability in self.matrix.capabilities_for(role)


class StageAccessPolicy:
    """Board-level predicates composed from a PermissionEvaluator."""

    def __init__(self, evaluator: PermissionEvaluator):
        self.evaluator = evaluator

    # ── single-stage predicates ──────────────────────────────────────────

    def evaluate_access(self, role, stage, action) -> bool:
        return self.evaluator.has_access(role, stage, action)

    def can_edit_card(self, role, stage) -> bool:
        return self.evaluator.has_access(role, stage, PermissionAction.WRITE)

    def can_delete_card(self, role, stage) -> bool:
        if _is_admin(role):
            return True
        return self.evaluator.has_access(role, stage, PermissionAction.DELETE)

    def can_comment(self, role, stage) -> bool:
        return self.evaluator.has_access(role, stage, PermissionAction.COMMENT)

    def can_approve(self, role, stage) -> bool:
        return self.evaluator.has_access(role, stage, PermissionAction.APPROVE)

    def can_drag_card(self, role, stage) -> bool:
        """Only ``full`` stages are draggable; comment/approve is not enough."""
        return self.evaluator.level_for(role, stage) is PermissionLevel.FULL

    def is_stage_read_only(self, role, stage) -> bool:
        return self.evaluator.level_for(role, stage) in (
            PermissionLevel.READ_ONLY, PermissionLevel.COMMENT_APPROVE,
        )

    def permission_description(self, role, stage) -> str:
        return _LEVEL_DESCRIPTIONS[self.evaluator.level_for(role, stage)]

    # ── role-wide predicates ─────────────────────────────────────────────

    def can_assign_users(self, role, target_stage=None) -> bool:
        """Reassignment rights.

        global_reassign / user_management → anywhere;
        limited_reassign → only where the role holds ``assign`` on the stage.
        """
        capabilities = self.evaluator.matrix.capabilities_for(role)
        if {"global_reassign", "user_management"} & capabilities:
            return True
        if "limited_reassign" in capabilities and target_stage is not None:
            return self.evaluator.has_access(role, target_stage, PermissionAction.ASSIGN)
        return False

    def accessible_stages(self, role) -> list[StageName]:
        """Stages the role can see (read), in board order. Visible, not editable."""
        return [
            stage for stage in StageName
            if self.evaluator.has_access(role, stage, PermissionAction.READ)
        ]

    def can_view_all_cards(self, role) -> bool:
        if _is_admin(role):
            return True
        capabilities = self.evaluator.matrix.capabilities_for(role)
        return "view_all" in capabilities or "global_view" in capabilities

    def filter_visible_cards(self, cards, role, stage_of=None) -> list:
        """Read-time filter: drop cards whose stage the role cannot read.

        Cards are not modified or hidden from other roles. ``stage_of``
        extracts a stage (name or row) from a card; by default it reads
        ``card.stage_name`` / ``card["stage_name"]``.
        """
        cards = list(cards)
        if self.can_view_all_cards(role):
            return cards
        stage_of = stage_of or _default_stage_of
        visible = set(self.accessible_stages(role))
        return [card for card in cards if normalize_stage(stage_of(card)) in visible]

    def describe(self, role) -> dict:
        """Per-stage summary for the permissions endpoint."""
        stages = {}
        for stage in StageName:
            level = self.evaluator.level_for(role, stage)
            stages[stage.value] = {
                "level": level.value,
                "description": _LEVEL_DESCRIPTIONS[level],
                "can_edit": self.can_edit_card(role, stage),
                "can_delete": self.can_delete_card(role, stage),
                "can_drag": self.can_drag_card(role, stage),
                "can_comment": self.can_comment(role, stage),
                "can_approve": self.can_approve(role, stage),
                "read_only": self.is_stage_read_only(role, stage),
            }
        role_key = coerce_enum(Role, role)
        return {
            "role": role_key.value if role_key else role,
            "stages": stages,
            "accessible_stages": [s.value for s in self.accessible_stages(role)],
            "global_capabilities": sorted(self.evaluator.matrix.capabilities_for(role)),
            "can_view_all_cards": self.can_view_all_cards(role),
            "can_assign_users": self.can_assign_users(role),
        }


def _default_stage_of(card):
    if isinstance(card, dict):
        return card.get("stage_name") or (card.get("stage") or {}).get("name")
    return getattr(card, "stage_name", None)


def build_policy(matrix: PermissionMatrix) -> StageAccessPolicy:
    return StageAccessPolicy(PermissionEvaluator(matrix))
