"""Stage transition service — the single entry point for card mutations.

``apply_card_change(role, card, changes)``:

    1. stage change      → role needs ``write`` on the DESTINATION stage
    2. position / fields → role needs ``write`` on the CURRENT stage
    3. structural change → CardOrderingEngine, inside one unit of work
    4. field-only edit   → plain row update, no ordering effect
    5. admin             → skips 1–2, never skips 3

A card is only ever observable in its source stage or its destination
stage: the shift and the landing write commit together or not at all.

Rejections are raised as ``reach.core.exceptions`` types before the unit of
work opens; a lost race is rolled back and surfaces as
``ConflictRetryableError``.
"""

import logging
from dataclasses import dataclass, field

from reach.core.exceptions import (
    ForbiddenError,
    InvalidTargetError,
    NotFoundError,
)
from reach.models.permissions import PermissionAction, Role, coerce_enum, normalize_stage
from reach.services.card_ordering import CardOrderingEngine, validate_position
from reach.services.card_repository import CardRepository
from reach.services.permission import StageAccessPolicy

logger = logging.getLogger(__name__)


def _field_value(card, name):
    # ORM rows expose columns as attributes; CardSlot keeps them in ``fields``
    extra = getattr(card, "fields", None)
    if isinstance(extra, dict) and not hasattr(type(card), name):
        return extra.get(name)
    return getattr(card, name, None)


@dataclass
class CardChanges:
    """Requested mutation. ``None`` means "leave as is"."""

    stage_id: str | None = None
    position: int | None = None
    fields: dict = field(default_factory=dict)


@dataclass
class TransitionResult:
    card: object
    moved: bool = False
    reordered: bool = False
    changed_fields: dict = field(default_factory=dict)
    from_stage: str | None = None
    to_stage: str | None = None
    from_position: int | None = None
    to_position: int | None = None

    @property
    def noop(self) -> bool:
        return not (self.moved or self.reordered or self.changed_fields)


class StageTransitionService:
    """Permission gate + ordering engine for a single card change."""

    def __init__(self, policy: StageAccessPolicy, repository: CardRepository,
                 engine: CardOrderingEngine | None = None):
        self.policy = policy
        self.repository = repository
        self.engine = engine or CardOrderingEngine(repository)

    def _require_write(self, role, stage) -> None:
        stage_name = normalize_stage(stage)
        if not self.policy.evaluate_access(role, stage_name, PermissionAction.WRITE):
            logger.warning(
                "Card change denied: role=%s stage=%s action=write",
                getattr(role, "value", role), stage_name.value if stage_name else stage.name,
            )
            raise ForbiddenError(role=role, action=PermissionAction.WRITE,
                                 stage=stage_name or stage.name)

    def _resolve_target(self, card, changes: CardChanges):
        """Return (current_stage, dest_stage or None, position or None) with no-ops removed."""
        current_stage = self.repository.get_stage(card.stage_id)
        if current_stage is None:
            raise NotFoundError(resource="Stage", resource_id=card.stage_id)

        dest_stage = None
        if changes.stage_id is not None and changes.stage_id != card.stage_id:
            dest_stage = self.repository.get_stage(changes.stage_id)
            if dest_stage is None:
                raise NotFoundError(resource="Stage", resource_id=changes.stage_id)
            if dest_stage.team_id != card.team_id:
                raise InvalidTargetError(
                    "Cannot move card to a different team's stage",
                    details={"stage_id": "belongs to another team"},
                )
            if normalize_stage(dest_stage) is None:
                raise InvalidTargetError(
                    f"Stage '{dest_stage.name}' is not a workflow stage",
                    details={"stage_id": "unknown workflow stage"},
                )

        position = changes.position
        if position is not None:
            validate_position(position)
            if dest_stage is None:
                # Same-stage targets past the end clamp to the last slot.
                position = min(position, self.repository.stage_size(card.team_id, card.stage_id))
                if position == card.position:
                    position = None
        return current_stage, dest_stage, position

    def apply_card_change(self, role, card, changes: CardChanges, after=None) -> TransitionResult:
        """Validate, authorise and apply one card change.

        ``after(result)`` runs inside the same unit of work once the change is
        written, so rows it adds (audit events) commit or roll back with it.
        It is not called for a no-op.
        """
        if coerce_enum(Role, role) is None:
            raise ForbiddenError(role=role, action="act")

        current_stage, dest_stage, position = self._resolve_target(card, changes)
        before = {k: _field_value(card, k) for k in (changes.fields or {})}
        fields = {k: v for k, v in (changes.fields or {}).items() if before[k] != v}

        result = TransitionResult(card=card, from_stage=card.stage_id, from_position=card.position)
        if dest_stage is None and position is None and not fields:
            logger.debug("No-op change for card %s", card.id)
            return result

        if coerce_enum(Role, role) is not Role.ADMIN:
            if dest_stage is not None:
                self._require_write(role, dest_stage)
            if dest_stage is None or fields:
                self._require_write(role, current_stage)

        def _unit_of_work():
            current = self.repository.get_card_for_update(card.id)
            if current is None:
                raise NotFoundError(resource="ContentCard", resource_id=card.id)
            result.from_stage = current.stage_id
            result.from_position = current.position

            if fields:
                self.repository.update_card_fields(current.id, fields)
            if dest_stage is not None:
                result.moved = self.engine.move(current, dest_stage.id, position)
            elif position is not None:
                result.reordered = self.engine.reorder(current, position)

            updated = self.repository.get_card(card.id)
            result.card = updated
            result.changed_fields = {k: {"old": before[k], "new": v} for k, v in fields.items()}
            result.to_stage = updated.stage_id
            result.to_position = updated.position
            if after is not None and not result.noop:
                after(result)
            return result

        self.repository.with_transaction(_unit_of_work)
        if result.moved:
            logger.info(
                "Card %s moved %s/%s -> %s/%s by role=%s",
                card.id, result.from_stage, result.from_position,
                result.to_stage, result.to_position, getattr(role, "value", role),
            )
        return result
