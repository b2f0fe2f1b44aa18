"""
REACH Content Board
Discussion domain models.

Models:
    - CardComment: a (optionally threaded) comment on a content card
    - CommentMention: one mentioned user per comment, with a read flag

Comments and their mentions are removed by the database when the card is
deleted (``ON DELETE CASCADE``); their audit rows are kept.
"""

from datetime import datetime, timezone

from reach.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class CardComment(db.Model):
    """Comment on a content card. ``parent_comment_id`` makes it a reply."""

    __tablename__ = "card_comments"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    card_id = db.Column(
        db.String(36), db.ForeignKey("content_cards.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    parent_comment_id = db.Column(
        db.Integer, db.ForeignKey("card_comments.id", ondelete="CASCADE"),
        nullable=True,
    )
    author_id = db.Column(db.String(64), nullable=True, comment="Opaque user id")
    author_role = db.Column(db.String(30), nullable=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    mentions = db.relationship(
        "CommentMention", backref="comment", lazy="select",
        cascade="all, delete-orphan", order_by="CommentMention.id",
    )

    @property
    def mentioned_user_ids(self) -> list:
        return [m.mentioned_user_id for m in self.mentions]

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "parent_comment_id": self.parent_comment_id,
            "author_id": self.author_id,
            "author_role": self.author_role,
            "content": self.content,
            "mentions": self.mentioned_user_ids,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<CardComment {self.id} on {self.card_id}>"


class CommentMention(db.Model):
    __tablename__ = "comment_mentions"
    __table_args__ = (
        db.UniqueConstraint("comment_id", "mentioned_user_id", name="uq_comment_mentions_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    comment_id = db.Column(
        db.Integer, db.ForeignKey("card_comments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    mentioned_user_id = db.Column(db.String(64), nullable=False, index=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "comment_id": self.comment_id,
            "card_id": self.comment.card_id if self.comment else None,
            "mentioned_user_id": self.mentioned_user_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
