"""Card storage contract used by the ordering engine and transition service.

Transaction policy: repository methods only ``flush()``; the single place
that commits or rolls back is ``with_transaction``. A stage partition is
locked (``SELECT ... FOR UPDATE`` on the stage row) the first time its
cards are read inside a unit of work, which serialises concurrent shifts
of the same stage on PostgreSQL. SQLite serialises writers on its own.
Reads taken after the lock bypass the identity map (``populate_existing``)
so a card loaded earlier in the request never feeds a stale position to
the engine.

Implementations:
    SqlCardRepository       — Flask-SQLAlchemy session (production)
    InMemoryCardRepository  — dict-backed, same semantics (engine unit tests)
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, OperationalError

from reach.core.exceptions import ConflictRetryableError
from reach.models import db
from reach.models.board import ContentCard, Stage

logger = logging.getLogger(__name__)


class CardRepository(ABC):
    """Storage operations the ordering engine composes into one unit of work."""

    @abstractmethod
    def get_card(self, card_id):
        """Return the card or None."""

    @abstractmethod
    def get_stage(self, stage_id):
        """Return the stage (anything with ``id``, ``team_id``, ``name``) or None."""

    @abstractmethod
    def get_cards_in_stage(self, team_id, stage_id) -> list:
        """Cards of one (team, stage) partition ordered by position.

        Must reflect a consistent snapshot for the rest of the unit of work.
        """

    @abstractmethod
    def update_card_position(self, card_id, new_position: int, new_stage_id=None) -> None:
        """Single-row position (and optionally stage) update."""

    @abstractmethod
    def update_card_fields(self, card_id, fields: dict) -> None:
        """Single-row non-ordering field update."""

    @abstractmethod
    def add_card(self, card) -> None:
        """Persist a new card whose ``stage_id``/``position`` are already set."""

    @abstractmethod
    def remove_card(self, card_id) -> None:
        """Delete one card row."""

    @abstractmethod
    def with_transaction(self, fn):
        """Run ``fn()`` atomically: commit on success, full rollback otherwise.

        Serialisation failures surface as ``ConflictRetryableError``.
        """

    def get_card_for_update(self, card_id):
        """Return the card as currently stored, with its stage partition locked.

        Called inside a unit of work before any position is computed, so the
        engine never shifts from a position read before the lock.
        """
        return self.get_card(card_id)

    def stage_size(self, team_id, stage_id) -> int:
        return len(self.get_cards_in_stage(team_id, stage_id))

    def max_position(self, team_id, stage_id) -> int:
        """Highest position in the stage, 0 when empty."""
        return max((c.position for c in self.get_cards_in_stage(team_id, stage_id)), default=0)


# ═════════════════════════════════════════════════════════════════════════════
# SQLAlchemy
# ═════════════════════════════════════════════════════════════════════════════


class SqlCardRepository(CardRepository):
    """Repository over ``db.session``."""

    def __init__(self, session=None):
        self.session = session or db.session

    def get_card(self, card_id):
        return self.session.get(ContentCard, card_id)

    def get_stage(self, stage_id):
        return self.session.get(Stage, stage_id)

    def _lock_stage(self, stage_id) -> None:
        # Row lock on the stage = lock on its whole position partition.
        # with_for_update() is silently ignored by SQLite.
        (
            self.session.query(Stage.id)
            .filter(Stage.id == stage_id)
            .with_for_update()
            .first()
        )

    def get_card_for_update(self, card_id):
        stage_id = (
            self.session.query(ContentCard.stage_id)
            .filter(ContentCard.id == card_id)
            .scalar()
        )
        while stage_id is not None:
            self._lock_stage(stage_id)
            card = (
                self.session.query(ContentCard)
                .filter(ContentCard.id == card_id)
                .execution_options(populate_existing=True)
                .first()
            )
            # Moved by another writer between the read and the lock: lock again.
            if card is None or card.stage_id == stage_id:
                return card
            stage_id = card.stage_id
        return None

    def get_cards_in_stage(self, team_id, stage_id) -> list:
        self._lock_stage(stage_id)
        # populate_existing: rows already in the identity map may predate the lock
        return (
            self.session.query(ContentCard)
            .filter(ContentCard.team_id == team_id, ContentCard.stage_id == stage_id)
            .execution_options(populate_existing=True)
            .order_by(ContentCard.position, ContentCard.id)
            .all()
        )

    def update_card_position(self, card_id, new_position: int, new_stage_id=None) -> None:
        card = self.session.get(ContentCard, card_id)
        card.position = new_position
        if new_stage_id is not None and new_stage_id != card.stage_id:
            card.stage_id = new_stage_id
            self.session.expire(card, ["stage"])
        # Flush row by row: the (stage_id, position) unique constraint is
        # checked per statement, so the engine's update order must reach the DB.
        self.session.flush()

    def update_card_fields(self, card_id, fields: dict) -> None:
        card = self.session.get(ContentCard, card_id)
        for name, value in fields.items():
            setattr(card, name, value)
        self.session.flush()

    def add_card(self, card) -> None:
        self.session.add(card)
        self.session.flush()

    def remove_card(self, card_id) -> None:
        card = self.session.get(ContentCard, card_id)
        if card is not None:
            self.session.delete(card)
            self.session.flush()

    def with_transaction(self, fn):
        try:
            result = fn()
            self.session.commit()
            return result
        except (IntegrityError, OperationalError) as exc:
            self.session.rollback()
            logger.warning("Card transaction rolled back on conflict: %s", exc.orig)
            raise ConflictRetryableError() from exc
        except Exception:
            self.session.rollback()
            raise


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class CardSlot:
    """Minimal card shape the ordering engine needs."""

    id: str
    team_id: str
    stage_id: str
    position: int = 0
    fields: dict = field(default_factory=dict)


@dataclass
class StageSlot:
    id: str
    team_id: str
    name: str


class InMemoryCardRepository(CardRepository):
    """Dict-backed repository enforcing the same uniqueness rule as the DB schema.

    ``with_transaction`` snapshots state and restores it on any exception,
    so a failed unit of work leaves nothing behind.
    """

    def __init__(self, stages=(), cards=()):
        self.stages = {s.id: s for s in stages}
        self.cards = {c.id: c for c in cards}
        self.write_count = 0

    def get_card(self, card_id):
        return self.cards.get(card_id)

    def get_stage(self, stage_id):
        return self.stages.get(stage_id)

    def get_cards_in_stage(self, team_id, stage_id) -> list:
        return sorted(
            (c for c in self.cards.values() if c.team_id == team_id and c.stage_id == stage_id),
            key=lambda c: (c.position, c.id),
        )

    def _check_free(self, card_id, stage_id, position) -> None:
        for other in self.cards.values():
            if other.id != card_id and other.stage_id == stage_id and other.position == position:
                raise ConflictRetryableError(
                    f"position {position} already taken in stage {stage_id} by {other.id}"
                )

    def update_card_position(self, card_id, new_position: int, new_stage_id=None) -> None:
        card = self.cards[card_id]
        stage_id = new_stage_id if new_stage_id is not None else card.stage_id
        self._check_free(card_id, stage_id, new_position)
        card.position = new_position
        card.stage_id = stage_id
        self.write_count += 1

    def update_card_fields(self, card_id, fields: dict) -> None:
        self.cards[card_id].fields.update(fields)
        self.write_count += 1

    def add_card(self, card) -> None:
        self._check_free(card.id, card.stage_id, card.position)
        self.cards[card.id] = card
        self.write_count += 1

    def remove_card(self, card_id) -> None:
        self.cards.pop(card_id, None)
        self.write_count += 1

    def with_transaction(self, fn):
        snapshot = copy.deepcopy(self.cards)
        try:
            return fn()
        except Exception:
            self.cards = snapshot
            raise
