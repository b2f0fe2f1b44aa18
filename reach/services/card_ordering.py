"""Card ordering engine — dense 1..N positions per (team, stage).

Every mutation path (create, reorder, cross-stage move, delete) goes
through this one class; nothing else writes ``ContentCard.position``.

Invariant after each committed operation, for every (team, stage):
    {card.position} == {1, 2, …, N}

Operations:
    insert   — append at currentMax + 1 (1 for an empty stage)
    reorder  — same stage, shift the run between old and new by one
    move     — close the gap in the source, open a slot in the destination,
               then write the card (delete-then-insert-at-position)
    remove   — delete, then close the gap
    compact  — renumber a stage to 1..N (repairs legacy gaps)

Update order is chosen so that no two rows ever share a (stage, position)
even mid-operation: the moved card is first parked at position 0, then the
run is shifted walking away from the gap, then the card lands. That keeps
the ``uq_content_cards_stage_position`` constraint valid statement by
statement.

The engine never opens or commits a transaction; callers wrap each
operation in ``repository.with_transaction``.
"""

import logging

from reach.core.exceptions import InvalidTargetError, NotFoundError
from reach.services.card_repository import CardRepository

logger = logging.getLogger(__name__)

BASE_POSITION = 1
_PARKED_POSITION = BASE_POSITION - 1


def validate_position(position) -> int:
    """Reject non-integers and anything below the base position."""
    if isinstance(position, bool) or not isinstance(position, int):
        raise InvalidTargetError(
            "position must be an integer", details={"position": "must be an integer"},
        )
    if position < BASE_POSITION:
        raise InvalidTargetError(
            f"position must be >= {BASE_POSITION}",
            details={"position": f"must be >= {BASE_POSITION}"},
        )
    return position


class CardOrderingEngine:
    """Position bookkeeping for cards on top of a CardRepository."""

    def __init__(self, repository: CardRepository):
        self.repository = repository

    # ── helpers ──────────────────────────────────────────────────────────

    def _fresh(self, card):
        current = self.repository.get_card_for_update(card.id)
        if current is None:
            raise NotFoundError(resource="ContentCard", resource_id=card.id)
        return current

    def _snapshot(self, team_id, stage_id, exclude_id=None) -> list[tuple]:
        """(card_id, position) pairs of a stage, ascending, minus one card."""
        return [
            (c.id, c.position)
            for c in self.repository.get_cards_in_stage(team_id, stage_id)
            if c.id != exclude_id
        ]

    def _shift(self, rows, delta: int) -> int:
        # Walk away from the gap so every intermediate state stays unique:
        # decrements ascending, increments descending.
        ordered = sorted(rows, key=lambda r: r[1], reverse=delta > 0)
        for card_id, position in ordered:
            self.repository.update_card_position(card_id, position + delta)
        return len(ordered)

    def next_position(self, team_id, stage_id) -> int:
        return max(self.repository.max_position(team_id, stage_id) + 1, BASE_POSITION)

    # ── operations ───────────────────────────────────────────────────────

    def insert(self, card, stage_id=None):
        """Append a new card to the end of its stage."""
        stage_id = stage_id or card.stage_id
        card.stage_id = stage_id
        card.position = self.next_position(card.team_id, stage_id)
        self.repository.add_card(card)
        logger.debug("Inserted card %s at %s/%d", card.id, stage_id, card.position)
        return card

    def reorder(self, card, new_position: int) -> bool:
        """Move a card within its own stage. Returns False for a no-op.

        A target past the end clamps to the last slot.
        """
        validate_position(new_position)
        current = self._fresh(card)
        old_position = current.position
        siblings = self._snapshot(current.team_id, current.stage_id, exclude_id=current.id)
        new_position = min(new_position, len(siblings) + 1)
        if new_position == old_position:
            return False

        self.repository.update_card_position(current.id, _PARKED_POSITION)
        if old_position < new_position:
            shifted = self._shift(
                [r for r in siblings if old_position < r[1] <= new_position], -1,
            )
        else:
            shifted = self._shift(
                [r for r in siblings if new_position <= r[1] < old_position], +1,
            )
        self.repository.update_card_position(current.id, new_position)
        logger.debug(
            "Reordered card %s in stage %s: %d -> %d (%d shifted)",
            current.id, current.stage_id, old_position, new_position, shifted,
        )
        return True

    def move(self, card, dest_stage_id, new_position: int | None = None) -> bool:
        """Move a card to another stage of the same team.

        ``new_position`` None appends; a target past the end clamps to
        ``size + 1``. Falls back to ``reorder`` when the stage is unchanged.
        """
        current = self._fresh(card)
        if dest_stage_id == current.stage_id:
            if new_position is None:
                return False
            return self.reorder(current, new_position)
        if new_position is not None:
            validate_position(new_position)

        source_stage_id = current.stage_id
        old_position = current.position

        # Lock both partitions in a fixed order to avoid lock-order deadlocks.
        snapshots = {}
        for stage_id in sorted((source_stage_id, dest_stage_id), key=str):
            snapshots[stage_id] = self._snapshot(current.team_id, stage_id, exclude_id=current.id)
        source_rows = snapshots[source_stage_id]
        dest_rows = snapshots[dest_stage_id]

        dest_size = len(dest_rows)
        if new_position is None or new_position > dest_size + 1:
            new_position = dest_size + 1

        self.repository.update_card_position(current.id, _PARKED_POSITION)
        self._shift([r for r in source_rows if r[1] > old_position], -1)
        self._shift([r for r in dest_rows if r[1] >= new_position], +1)
        self.repository.update_card_position(current.id, new_position, dest_stage_id)
        logger.debug(
            "Moved card %s: %s/%d -> %s/%d",
            current.id, source_stage_id, old_position, dest_stage_id, new_position,
        )
        return True

    def remove(self, card) -> int:
        """Delete a card and close the gap. Returns how many cards shifted."""
        current = self._fresh(card)
        deleted_position = current.position
        siblings = self._snapshot(current.team_id, current.stage_id, exclude_id=current.id)
        self.repository.remove_card(current.id)
        shifted = self._shift([r for r in siblings if r[1] > deleted_position], -1)
        logger.debug(
            "Removed card %s from stage %s at %d (%d shifted)",
            card.id, current.stage_id, deleted_position, shifted,
        )
        return shifted

    def compact(self, team_id, stage_id) -> int:
        """Renumber a stage to 1..N keeping relative order. Returns rows changed."""
        targets = [
            (card_id, position, index)
            for index, (card_id, position) in enumerate(self._snapshot(team_id, stage_id), start=BASE_POSITION)
            if position != index
        ]
        # Lower ascending first, then raise descending: no step lands on an occupied slot.
        lowered = [t for t in targets if t[2] < t[1]]
        raised = [t for t in reversed(targets) if t[2] > t[1]]
        for card_id, _, index in lowered + raised:
            self.repository.update_card_position(card_id, index)
        if targets:
            logger.info("Compacted stage %s: %d cards renumbered", stage_id, len(targets))
        return len(targets)
