"""
REACH Content Board
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of content-card events.

The ``moved`` rows double as the "card moved" event feed read by the
external notification dispatcher.
"""

import json
from datetime import datetime, timezone

from reach.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"content_card", "stage"}

AUDIT_ACTIONS = {
    # Card lifecycle
    "created",
    "updated",
    "moved",
    "deleted",
    # Discussion
    "commented",
    "mention_added",
    # Stage maintenance
    "compacted",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every card mutation.

    One row per action. ``diff_json`` carries ``{field: {old, new}}`` for
    updates and ``{from_stage, to_stage, from_position, to_position}`` for moves.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_team", "team_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.String(36), nullable=True)

    # Polymorphic entity reference (no FK: rows outlive deleted cards)
    entity_type = db.Column(db.String(30), nullable=False, comment="content_card | stage")
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(db.String(30), nullable=False, comment="see AUDIT_ACTIONS")
    actor_id = db.Column(db.String(64), nullable=True, comment="Opaque user id from the access token")
    actor_role = db.Column(db.String(30), nullable=True)

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    team_id: str | None = None,
    actor_id: str | None = None,
    actor_role: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Raises ValueError for an entity type or action outside
    ``AUDIT_ENTITY_TYPES`` / ``AUDIT_ACTIONS``.

    Returns the (flushed) AuditLog instance.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type!r}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    if actor_id is None or actor_role is None:
        from flask import g, has_request_context
        if has_request_context():
            actor_id = actor_id or getattr(g, "current_user_id", None)
            actor_role = actor_role or getattr(g, "current_role", None)

    log = AuditLog(
        team_id=team_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=str(actor_id) if actor_id is not None else None,
        actor_role=getattr(actor_role, "value", actor_role),
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def card_history_query(card_id: str):
    """Newest-first audit rows for one content card, as an unexecuted query."""
    return (
        AuditLog.query
        .filter_by(entity_type="content_card", entity_id=str(card_id))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
    )
