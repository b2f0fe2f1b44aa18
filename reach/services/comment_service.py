"""Card discussion — comments, replies and @mentions.

Commenting needs the ``comment`` action on the card's current stage, so
``comment_approve`` stages (strategists everywhere, clients on Connect)
accept comments even though their cards cannot be edited or dragged.
Reading a thread needs only ``read`` on the stage.

Each comment writes a ``commented`` audit row on its card, and each
mentioned user gets a ``mention_added`` row: the event feed the
notification dispatcher consumes. The comment and its audit rows commit
together.
"""

import logging
from datetime import datetime, timezone

from reach.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from reach.models import db
from reach.models.audit import write_audit
from reach.models.comment import CardComment, CommentMention
from reach.models.permissions import PermissionAction, Role, coerce_enum
from reach.services import card_service
from reach.services.permission import build_policy

logger = logging.getLogger(__name__)


def _clean_mentions(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ValidationError("mentions must be a list of user ids",
                              details={"mentions": "must be a list of non-empty strings"})
    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(v.strip() for v in value))


def add_comment(permissions, role, card_id, data, actor_id=None) -> CardComment:
    """Post a comment (or a reply) on a card and record its mentions.

    Returns:
        CardComment instance (committed).
    """
    card = card_service.get_card(permissions, role, card_id)
    role_key = coerce_enum(Role, role)
    policy = build_policy(permissions)
    if not policy.can_comment(role_key, card.stage):
        logger.warning("Comment denied: role=%s card=%s", role_key.value, card_id)
        raise ForbiddenError(role=role_key, action=PermissionAction.COMMENT, stage=card.stage_name)

    content = data.get("content")
    content = content.strip() if isinstance(content, str) else ""
    if not content:
        raise ValidationError("Comment content is required", details={"content": "required"})
    mentions = _clean_mentions(data.get("mentions"))

    parent_id = data.get("parent_comment_id")
    if parent_id is not None:
        parent = db.session.get(CardComment, parent_id)
        if parent is None:
            raise NotFoundError(resource="CardComment", resource_id=parent_id)
        if parent.card_id != card.id:
            raise ValidationError("Reply must target a comment on the same card",
                                  details={"parent_comment_id": "belongs to another card"})

    comment = CardComment(
        team_id=card.team_id,
        card_id=card.id,
        parent_comment_id=parent_id,
        author_id=actor_id,
        author_role=role_key.value,
        content=content,
    )
    comment.mentions = [CommentMention(mentioned_user_id=user_id) for user_id in mentions]
    db.session.add(comment)
    db.session.flush()

    write_audit(
        entity_type="content_card", entity_id=card.id, action="commented",
        team_id=card.team_id, actor_id=actor_id, actor_role=role_key,
        diff={"comment_id": comment.id, "parent_comment_id": parent_id, "mentions": mentions},
    )
    for mention in comment.mentions:
        write_audit(
            entity_type="content_card", entity_id=card.id, action="mention_added",
            team_id=card.team_id, actor_id=actor_id, actor_role=role_key,
            diff={"comment_id": comment.id, "mention_id": mention.id,
                  "mentioned_user_id": mention.mentioned_user_id},
        )
    db.session.commit()
    logger.info("Comment %s on card %s (%d mentions)", comment.id, card.id, len(mentions))
    return comment


def list_comments(permissions, role, card_id) -> list[CardComment]:
    """Newest-first comments on a card the role can read."""
    card_service.get_card(permissions, role, card_id)
    return (
        CardComment.query
        .filter_by(card_id=card_id)
        .order_by(CardComment.id.desc())
        .all()
    )


def list_mentions(user_id, unread_only=False) -> list[CommentMention]:
    query = CommentMention.query.filter_by(mentioned_user_id=str(user_id))
    if unread_only:
        query = query.filter_by(is_read=False)
    return query.order_by(CommentMention.id.desc()).all()


def mark_mention_read(role, mention_id, user_id) -> CommentMention:
    """Only the mentioned user can acknowledge a mention. Idempotent."""
    mention = db.session.get(CommentMention, mention_id)
    if mention is None:
        raise NotFoundError(resource="CommentMention", resource_id=mention_id)
    if mention.mentioned_user_id != str(user_id):
        raise ForbiddenError(role=role, action="acknowledge")
    if not mention.is_read:
        mention.is_read = True
        mention.read_at = datetime.now(timezone.utc)
        db.session.commit()
    return mention
