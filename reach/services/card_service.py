"""Card service layer — board operations behind the card/team blueprints.

Transaction policy: every mutation runs inside
``SqlCardRepository.with_transaction`` (or commits once at the end), so a
route handler never sees a half-applied shift. Audit rows are written
inside the same unit of work as the change they record.

Operations:
- Team bootstrap (five workflow stages, positions 1..5)
- Card create / update / move / delete, all ordering via CardOrderingEngine
- Board and card listing filtered by the role's readable stages
- Per-role permission summary
"""

import logging
from datetime import datetime

from reach.core.exceptions import (
    ForbiddenError,
    InvalidTargetError,
    NotFoundError,
    ValidationError,
)
from reach.models import db
from reach.models.audit import card_history_query, write_audit
from reach.models.board import (
    CARD_PRIORITIES,
    CARD_STATUSES,
    DEFAULT_STAGES,
    ContentCard,
    Stage,
    Team,
)
from reach.models.permissions import PermissionAction, Role, coerce_enum
from reach.services.card_ordering import CardOrderingEngine, validate_position
from reach.services.card_repository import SqlCardRepository
from reach.services.permission import build_policy
from reach.services.stage_transition import CardChanges, StageTransitionService

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 300

# Fields a client may change through update_card; stage_id/position are structural.
UPDATABLE_FIELDS = (
    "title", "description", "content", "content_type",
    "priority", "status", "assigned_to", "due_date", "tags",
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _acting_role(role) -> Role:
    role_key = coerce_enum(Role, role)
    if role_key is None:
        raise ForbiddenError(role=role, action="act")
    return role_key


def _get_team(team_id) -> Team:
    team = db.session.get(Team, team_id)
    if team is None:
        raise NotFoundError(resource="Team", resource_id=team_id)
    return team


def _get_card(card_id) -> ContentCard:
    card = db.session.get(ContentCard, card_id)
    if card is None:
        raise NotFoundError(resource="ContentCard", resource_id=card_id)
    return card


def _parse_due_date(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 datetime",
                              details={"due_date": "invalid datetime"})


def _clean_fields(data: dict) -> dict:
    """Validate and normalise the non-structural card fields present in *data*."""
    fields = {k: data[k] for k in UPDATABLE_FIELDS if k in data}
    errors = {}

    if "title" in fields:
        title = (fields["title"] or "").strip() if isinstance(fields["title"], str) else ""
        if not title:
            errors["title"] = "required"
        elif len(title) > TITLE_MAX_LENGTH:
            errors["title"] = f"must be <= {TITLE_MAX_LENGTH} characters"
        fields["title"] = title
    if "priority" in fields and fields["priority"] not in CARD_PRIORITIES:
        errors["priority"] = f"must be one of {sorted(CARD_PRIORITIES)}"
    if "status" in fields and fields["status"] not in CARD_STATUSES:
        errors["status"] = f"must be one of {sorted(CARD_STATUSES)}"
    if "tags" in fields:
        tags = fields["tags"] or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            errors["tags"] = "must be a list of strings"
        fields["tags"] = tags
    if "due_date" in fields:
        try:
            fields["due_date"] = _parse_due_date(fields["due_date"])
        except ValidationError as exc:
            errors.update(exc.details)

    if errors:
        raise ValidationError("Invalid card fields", details=errors)
    return fields


def _stage_label(repository, stage_id):
    stage = repository.get_stage(stage_id)
    if stage is None:
        return None
    canonical = stage.canonical_name
    return canonical.value if canonical else stage.name


# ── Teams & stages ───────────────────────────────────────────────────────


def create_team(name, description=""):
    """Create a team with its five workflow stages in board order.

    Returns:
        Team instance (committed).
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    team = Team(name=name, description=description or "")
    db.session.add(team)
    db.session.flush()
    for position, (_, display_name, color) in enumerate(DEFAULT_STAGES, start=1):
        db.session.add(Stage(
            team_id=team.id, name=display_name, position=position, color=color,
        ))
    db.session.commit()
    logger.info("Created team %s with %d stages", team.id, len(DEFAULT_STAGES))
    return team


def list_stages(team_id) -> list[Stage]:
    _get_team(team_id)
    return Stage.query.filter_by(team_id=team_id).order_by(Stage.position).all()


# ── Cards ────────────────────────────────────────────────────────────────


def create_card(permissions, role, team_id, data, actor_id=None) -> ContentCard:
    """Append a new card to the end of a stage (default: the team's first).

    Requires ``write`` on that stage; admin bypasses the check.
    """
    role_key = _acting_role(role)
    team = _get_team(team_id)
    if "title" not in data:
        raise ValidationError("title is required", details={"title": "required"})
    fields = _clean_fields(data)

    stage_id = data.get("stage_id")
    if stage_id:
        stage = db.session.get(Stage, stage_id)
        if stage is None:
            raise NotFoundError(resource="Stage", resource_id=stage_id)
        if stage.team_id != team.id:
            raise InvalidTargetError("Stage belongs to a different team",
                                     details={"stage_id": "belongs to another team"})
    else:
        stage = Stage.query.filter_by(team_id=team.id).order_by(Stage.position).first()
        if stage is None:
            raise ValidationError("Team has no stages", details={"team_id": "no stages"})

    policy = build_policy(permissions)
    if role_key is not Role.ADMIN and not policy.can_edit_card(role_key, stage):
        logger.warning("Card create denied: role=%s stage=%s", role_key.value, stage.name)
        raise ForbiddenError(role=role_key, action=PermissionAction.WRITE, stage=stage.canonical_name)

    tags = fields.pop("tags", [])
    card = ContentCard(
        team_id=team.id,
        stage_id=stage.id,
        created_by=actor_id,
        priority=fields.pop("priority", "medium"),
        status=fields.pop("status", "not_started"),
        **fields,
    )
    card.tags = tags

    repository = SqlCardRepository()
    engine = CardOrderingEngine(repository)

    def _unit_of_work():
        engine.insert(card, stage.id)
        write_audit(
            entity_type="content_card", entity_id=card.id, action="created",
            team_id=team.id, actor_id=actor_id, actor_role=role_key,
            diff={"title": card.title, "stage": _stage_label(repository, stage.id),
                  "position": card.position},
        )
        return card

    return repository.with_transaction(_unit_of_work)


def get_card(permissions, role, card_id) -> ContentCard:
    role_key = _acting_role(role)
    card = _get_card(card_id)
    policy = build_policy(permissions)
    if not policy.filter_visible_cards([card], role_key):
        raise ForbiddenError(role=role_key, action=PermissionAction.READ, stage=card.stage_name)
    return card


def update_card(permissions, role, card_id, data, actor_id=None):
    """Apply field edits and/or a stage/position change to one card.

    Returns:
        TransitionResult (committed, audited).
    """
    role_key = _acting_role(role)
    card = _get_card(card_id)
    fields = _clean_fields(data)

    policy = build_policy(permissions)
    if ("assigned_to" in fields and fields["assigned_to"] != card.assigned_to
            and role_key is not Role.ADMIN
            and not policy.can_assign_users(role_key, card.stage)):
        raise ForbiddenError(role=role_key, action=PermissionAction.ASSIGN, stage=card.stage_name)

    position = data.get("position")
    changes = CardChanges(stage_id=data.get("stage_id"), position=position, fields=fields)

    repository = SqlCardRepository()
    service = StageTransitionService(policy, repository)

    def _record(result):
        if result.changed_fields:
            write_audit(
                entity_type="content_card", entity_id=card_id, action="updated",
                team_id=result.card.team_id, actor_id=actor_id, actor_role=role_key,
                diff=result.changed_fields,
            )
        if result.moved or result.reordered:
            write_audit(
                entity_type="content_card", entity_id=card_id, action="moved",
                team_id=result.card.team_id, actor_id=actor_id, actor_role=role_key,
                diff={
                    "from_stage": _stage_label(repository, result.from_stage),
                    "to_stage": _stage_label(repository, result.to_stage),
                    "from_position": result.from_position,
                    "to_position": result.to_position,
                },
            )

    return service.apply_card_change(role_key, card, changes, after=_record)


def move_card(permissions, role, card_id, stage_id, position, actor_id=None):
    """Move endpoint contract: both a destination stage and a position >= 1."""
    if not stage_id:
        raise ValidationError("stage_id is required", details={"stage_id": "required"})
    if position is None:
        raise ValidationError("position is required", details={"position": "required"})
    validate_position(position)
    return update_card(
        permissions, role, card_id, {"stage_id": stage_id, "position": position},
        actor_id=actor_id,
    )


def delete_card(permissions, role, card_id, actor_id=None) -> int:
    """Delete a card and close the gap it leaves. Returns the number of cards shifted."""
    role_key = _acting_role(role)
    card = _get_card(card_id)
    policy = build_policy(permissions)
    if not policy.can_delete_card(role_key, card.stage):
        logger.warning("Card delete denied: role=%s card=%s", role_key.value, card_id)
        raise ForbiddenError(role=role_key, action=PermissionAction.DELETE, stage=card.stage_name)

    repository = SqlCardRepository()
    engine = CardOrderingEngine(repository)
    snapshot = {
        "title": card.title,
        "stage": _stage_label(repository, card.stage_id),
        "position": card.position,
    }
    team_id = card.team_id

    def _unit_of_work():
        shifted = engine.remove(card)
        write_audit(
            entity_type="content_card", entity_id=card_id, action="deleted",
            team_id=team_id, actor_id=actor_id, actor_role=role_key, diff=snapshot,
        )
        return shifted

    return repository.with_transaction(_unit_of_work)


def compact_stage(permissions, role, team_id, stage_id, actor_id=None) -> int:
    """Renumber a stage to 1..N, repairing gaps left by data imported or
    edited outside the ordering engine.

    Requires the ``team_management`` capability. Returns how many cards
    were renumbered; a dense stage is left untouched and not audited.
    """
    role_key = _acting_role(role)
    team = _get_team(team_id)
    stage = db.session.get(Stage, stage_id)
    if stage is None or stage.team_id != team.id:
        raise NotFoundError(resource="Stage", resource_id=stage_id)

    policy = build_policy(permissions)
    if not policy.evaluator.has_global_capability(role_key, "team_management"):
        logger.warning("Stage compaction denied: role=%s stage=%s", role_key.value, stage_id)
        raise ForbiddenError(role=role_key, action="compact", stage=stage.canonical_name)

    repository = SqlCardRepository()
    engine = CardOrderingEngine(repository)

    def _unit_of_work():
        renumbered = engine.compact(team.id, stage.id)
        if renumbered:
            write_audit(
                entity_type="stage", entity_id=stage.id, action="compacted",
                team_id=team.id, actor_id=actor_id, actor_role=role_key,
                diff={"renumbered": renumbered},
            )
        return renumbered

    return repository.with_transaction(_unit_of_work)


def card_audit_history(permissions, role, card_id):
    """Newest-first audit query for a card. Deleted cards keep a readable history."""
    role_key = _acting_role(role)
    card = db.session.get(ContentCard, card_id)
    if card is not None:
        get_card(permissions, role_key, card_id)
    elif not build_policy(permissions).can_view_all_cards(role_key):
        raise NotFoundError(resource="ContentCard", resource_id=card_id)
    return card_history_query(card_id)


def list_cards(permissions, role, team_id, stage_id=None) -> list[ContentCard]:
    role_key = _acting_role(role)
    _get_team(team_id)
    query = ContentCard.query.filter_by(team_id=team_id)
    if stage_id:
        query = query.filter_by(stage_id=stage_id)
    cards = query.join(Stage).order_by(Stage.position, ContentCard.position).all()
    return build_policy(permissions).filter_visible_cards(cards, role_key)


def get_board(permissions, role, team_id) -> dict:
    """Stages in column order, each with the cards the role may read."""
    role_key = _acting_role(role)
    team = _get_team(team_id)
    policy = build_policy(permissions)
    visible = policy.filter_visible_cards(
        ContentCard.query.filter_by(team_id=team.id).order_by(ContentCard.position).all(),
        role_key,
    )
    by_stage = {}
    for card in visible:
        by_stage.setdefault(card.stage_id, []).append(card)

    columns = []
    for stage in team.stages:
        level = policy.evaluator.level_for(role_key, stage)
        columns.append({
            **stage.to_dict(),
            "permission_level": level.value,
            "can_drag": policy.can_drag_card(role_key, stage),
            "read_only": policy.is_stage_read_only(role_key, stage),
            "cards": [c.to_dict() for c in by_stage.get(stage.id, [])],
        })
    return {"team": team.to_dict(), "role": role_key.value, "stages": columns}


def describe_permissions(permissions, role) -> dict:
    return build_policy(permissions).describe(_acting_role(role))
