"""
REACH Content Board
Board domain models.

Models:
    - Team: owns one set of the five workflow stages and their cards
    - Stage: a workflow column (Research → Envision → Assemble → Connect → Hone)
    - ContentCard: a piece of content moving through the stages

Ordering invariant: within a stage the cards' ``position`` values are
exactly 1..N. ``uq_content_cards_stage_position`` backs the uniqueness half
of that invariant at the database level; density is maintained by
``reach.services.card_ordering.CardOrderingEngine``.
"""

import json
import uuid
from datetime import datetime, timezone

from reach.models import db
from reach.models.permissions import StageName, normalize_stage

# ── Shared constants ─────────────────────────────────────────────────────

CARD_PRIORITIES = {"low", "medium", "high", "urgent"}

CARD_STATUSES = {
    "not_started", "in_progress", "blocked", "ready_for_review", "completed",
}

# (canonical name, display name, colour) in board order
DEFAULT_STAGES = (
    (StageName.RESEARCH, "Research", "#3B82F6"),
    (StageName.ENVISION, "Envision", "#8B5CF6"),
    (StageName.ASSEMBLE, "Assemble", "#EC4899"),
    (StageName.CONNECT, "Connect", "#F59E0B"),
    (StageName.HONE, "Hone", "#10B981"),
)


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Team(db.Model):
    """A content team. Creating one seeds its five stages (see card_service.create_team)."""

    __tablename__ = "teams"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    stages = db.relationship(
        "Stage", backref="team", lazy="select",
        cascade="all, delete-orphan", order_by="Stage.position",
    )

    def to_dict(self, include_stages=False):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_stages:
            result["stages"] = [s.to_dict() for s in self.stages]
        return result

    def __repr__(self):
        return f"<Team {self.id}: {self.name}>"


class Stage(db.Model):
    """
    One workflow column of a team's board.

    Permission checks key on the canonical ``StageName`` derived from
    ``name``, never on ``id``: every team has its own five stage rows.
    """

    __tablename__ = "stages"
    __table_args__ = (
        db.UniqueConstraint("team_id", "position", name="uq_stages_team_position"),
        db.UniqueConstraint("team_id", "name", name="uq_stages_team_name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False, comment="Research | Envision | …")
    description = db.Column(db.Text, default="")
    position = db.Column(db.Integer, nullable=False, comment="Column order on the board, 1-based")
    color = db.Column(db.String(7), comment="Hex colour")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def canonical_name(self):
        return normalize_stage(self.name)

    def to_dict(self):
        canonical = self.canonical_name
        return {
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "canonical_name": canonical.value if canonical else None,
            "description": self.description,
            "position": self.position,
            "color": self.color,
        }

    def __repr__(self):
        return f"<Stage {self.id}: {self.name}>"


class ContentCard(db.Model):
    """
    A content card on the board.

    Lifecycle: created at the end of its stage → moved between stages /
    reordered within a stage → deleted (remaining cards are compacted).
    """

    __tablename__ = "content_cards"
    __table_args__ = (
        db.UniqueConstraint("stage_id", "position", name="uq_content_cards_stage_position"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stage_id = db.Column(
        db.String(36), db.ForeignKey("stages.id"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    content = db.Column(db.Text, default="", comment="Rich content / script body")
    content_type = db.Column(db.String(50), default="")
    priority = db.Column(db.String(10), default="medium", comment="low | medium | high | urgent")
    status = db.Column(db.String(30), default="not_started")
    assigned_to = db.Column(db.String(64), nullable=True, index=True, comment="Opaque user id")
    created_by = db.Column(db.String(64), nullable=True, comment="Opaque user id")
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    position = db.Column(db.Integer, nullable=False)
    tags_json = db.Column(db.Text, default="[]")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    stage = db.relationship("Stage", lazy="joined")

    @property
    def tags(self) -> list:
        try:
            return json.loads(self.tags_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []

    @tags.setter
    def tags(self, value):
        self.tags_json = json.dumps(list(value or []))

    @property
    def stage_name(self):
        return self.stage.canonical_name if self.stage else None

    def to_dict(self):
        stage_name = self.stage_name
        return {
            "id": self.id,
            "team_id": self.team_id,
            "stage_id": self.stage_id,
            "stage_name": stage_name.value if stage_name else None,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "content_type": self.content_type,
            "priority": self.priority,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "created_by": self.created_by,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "position": self.position,
            "tags": self.tags,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ContentCard {self.id}: {self.title[:40]}>"
