"""
REACH Content Board
Tests — CardOrderingEngine against the in-memory repository.

Covers:
    - insert / reorder / move / remove / compact
    - Target clamping and position validation
    - Dense 1..N positions after randomized operation sequences
    - Full rollback of a failed unit of work
"""

import random

import pytest

from reach.core.exceptions import ConflictRetryableError, InvalidTargetError, NotFoundError
from reach.services.card_ordering import CardOrderingEngine, validate_position
from reach.services.card_repository import CardSlot, InMemoryCardRepository, StageSlot

TEAM = "team-1"
STAGES = ("s-research", "s-envision", "s-assemble")


def _make_repo(layout):
    """layout: {stage_id: [card_id, ...]} → repository with dense positions."""
    stages = [StageSlot(id=s, team_id=TEAM, name=s.split("-", 1)[1]) for s in STAGES]
    cards = [
        CardSlot(id=card_id, team_id=TEAM, stage_id=stage_id, position=index)
        for stage_id, ids in layout.items()
        for index, card_id in enumerate(ids, start=1)
    ]
    return InMemoryCardRepository(stages=stages, cards=cards)


def _order(repo, stage_id):
    return [c.id for c in repo.get_cards_in_stage(TEAM, stage_id)]


def _assert_dense(repo):
    for stage_id in STAGES:
        positions = [c.position for c in repo.get_cards_in_stage(TEAM, stage_id)]
        assert positions == list(range(1, len(positions) + 1)), (stage_id, positions)


@pytest.fixture()
def repo():
    return _make_repo({
        "s-research": ["a", "b", "c", "d", "e"],
        "s-envision": ["x", "y", "z"],
        "s-assemble": [],
    })


@pytest.fixture()
def engine(repo):
    return CardOrderingEngine(repo)


# ═════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═════════════════════════════════════════════════════════════════════════════

class TestValidatePosition:
    @pytest.mark.parametrize("bad", [0, -3, "2", 1.5, None, True])
    def test_rejects(self, bad):
        with pytest.raises(InvalidTargetError):
            validate_position(bad)

    def test_accepts(self):
        assert validate_position(1) == 1
        assert validate_position(250) == 250


# ═════════════════════════════════════════════════════════════════════════════
# INSERT
# ═════════════════════════════════════════════════════════════════════════════

class TestInsert:
    def test_insert_into_empty_stage_starts_at_one(self, repo, engine):
        card = engine.insert(CardSlot(id="n1", team_id=TEAM, stage_id="s-assemble"))
        assert card.position == 1
        engine.insert(CardSlot(id="n2", team_id=TEAM, stage_id="s-assemble"))
        assert _order(repo, "s-assemble") == ["n1", "n2"]
        _assert_dense(repo)

    def test_insert_appends_after_last(self, repo, engine):
        card = engine.insert(CardSlot(id="f", team_id=TEAM, stage_id="s-research"))
        assert card.position == 6

    def test_insert_into_occupied_slot_conflicts(self, repo):
        with pytest.raises(ConflictRetryableError):
            repo.add_card(CardSlot(id="dup", team_id=TEAM, stage_id="s-research", position=2))


# ═════════════════════════════════════════════════════════════════════════════
# REORDER
# ═════════════════════════════════════════════════════════════════════════════

class TestReorder:
    def test_move_down(self, repo, engine):
        assert engine.reorder(repo.get_card("a"), 3) is True
        assert _order(repo, "s-research") == ["b", "c", "a", "d", "e"]
        _assert_dense(repo)

    def test_move_up(self, repo, engine):
        assert engine.reorder(repo.get_card("d"), 1) is True
        assert _order(repo, "s-research") == ["d", "a", "b", "c", "e"]
        _assert_dense(repo)

    def test_same_position_is_a_noop(self, repo, engine):
        assert engine.reorder(repo.get_card("c"), 3) is False
        assert repo.write_count == 0

    def test_past_end_clamps_to_last(self, repo, engine):
        assert engine.reorder(repo.get_card("b"), 99) is True
        assert _order(repo, "s-research") == ["a", "c", "d", "e", "b"]
        assert repo.get_card("b").position == 5

    def test_last_card_past_end_is_a_noop(self, repo, engine):
        assert engine.reorder(repo.get_card("e"), 40) is False
        assert repo.write_count == 0

    def test_only_the_run_between_slots_shifts(self, repo, engine):
        engine.reorder(repo.get_card("b"), 4)
        assert repo.get_card("a").position == 1
        assert repo.get_card("e").position == 5

    def test_invalid_position_writes_nothing(self, repo, engine):
        with pytest.raises(InvalidTargetError):
            engine.reorder(repo.get_card("a"), 0)
        assert repo.write_count == 0

    def test_unknown_card(self, engine):
        with pytest.raises(NotFoundError):
            engine.reorder(CardSlot(id="ghost", team_id=TEAM, stage_id="s-research"), 1)


# ═════════════════════════════════════════════════════════════════════════════
# MOVE
# ═════════════════════════════════════════════════════════════════════════════

class TestMove:
    def test_move_into_middle_of_destination(self, repo, engine):
        assert engine.move(repo.get_card("c"), "s-envision", 2) is True
        assert _order(repo, "s-research") == ["a", "b", "d", "e"]
        assert _order(repo, "s-envision") == ["x", "c", "y", "z"]
        assert repo.get_card("c").stage_id == "s-envision"
        _assert_dense(repo)

    def test_move_without_position_appends(self, repo, engine):
        engine.move(repo.get_card("a"), "s-envision")
        assert _order(repo, "s-envision") == ["x", "y", "z", "a"]
        assert _order(repo, "s-research") == ["b", "c", "d", "e"]
        _assert_dense(repo)

    def test_move_past_end_clamps_to_size_plus_one(self, repo, engine):
        engine.move(repo.get_card("a"), "s-envision", 17)
        assert repo.get_card("a").position == 4

    def test_move_into_empty_stage(self, repo, engine):
        engine.move(repo.get_card("e"), "s-assemble", 3)
        assert repo.get_card("e").position == 1
        _assert_dense(repo)

    def test_move_to_top(self, repo, engine):
        engine.move(repo.get_card("z"), "s-research", 1)
        assert _order(repo, "s-research") == ["z", "a", "b", "c", "d", "e"]
        assert _order(repo, "s-envision") == ["x", "y"]
        _assert_dense(repo)

    def test_same_stage_falls_back_to_reorder(self, repo, engine):
        assert engine.move(repo.get_card("a"), "s-research", 2) is True
        assert _order(repo, "s-research") == ["b", "a", "c", "d", "e"]

    def test_same_stage_without_position_is_a_noop(self, repo, engine):
        assert engine.move(repo.get_card("a"), "s-research") is False
        assert repo.write_count == 0

    def test_invalid_position_writes_nothing(self, repo, engine):
        with pytest.raises(InvalidTargetError):
            engine.move(repo.get_card("a"), "s-envision", -1)
        assert repo.write_count == 0


# ═════════════════════════════════════════════════════════════════════════════
# REMOVE / COMPACT
# ═════════════════════════════════════════════════════════════════════════════

class TestRemoveAndCompact:
    def test_remove_closes_the_gap(self, repo, engine):
        shifted = engine.remove(repo.get_card("b"))
        assert shifted == 3
        assert _order(repo, "s-research") == ["a", "c", "d", "e"]
        assert repo.get_card("b") is None
        _assert_dense(repo)

    def test_remove_last_shifts_nothing(self, repo, engine):
        assert engine.remove(repo.get_card("z")) == 0
        assert _order(repo, "s-envision") == ["x", "y"]

    def test_remove_only_card_empties_stage(self, repo, engine):
        engine.insert(CardSlot(id="solo", team_id=TEAM, stage_id="s-assemble"))
        assert engine.remove(repo.get_card("solo")) == 0
        assert repo.get_cards_in_stage(TEAM, "s-assemble") == []
        assert repo.max_position(TEAM, "s-assemble") == 0
        assert engine.next_position(TEAM, "s-assemble") == 1

    def test_compact_repairs_gaps(self):
        repo = InMemoryCardRepository(
            stages=[StageSlot(id="s-research", team_id=TEAM, name="research")],
            cards=[
                CardSlot(id="p", team_id=TEAM, stage_id="s-research", position=3),
                CardSlot(id="q", team_id=TEAM, stage_id="s-research", position=4),
                CardSlot(id="r", team_id=TEAM, stage_id="s-research", position=9),
            ],
        )
        assert CardOrderingEngine(repo).compact(TEAM, "s-research") == 3
        assert [(c.id, c.position) for c in repo.get_cards_in_stage(TEAM, "s-research")] == [
            ("p", 1), ("q", 2), ("r", 3),
        ]

    def test_compact_dense_stage_changes_nothing(self, repo, engine):
        assert engine.compact(TEAM, "s-research") == 0
        assert repo.write_count == 0


# ═════════════════════════════════════════════════════════════════════════════
# TRANSACTIONS & INVARIANTS
# ═════════════════════════════════════════════════════════════════════════════

class TestUnitOfWork:
    def test_failed_unit_of_work_restores_everything(self, repo, engine):
        def _boom():
            engine.move(repo.get_card("a"), "s-envision", 1)
            raise RuntimeError("storage went away")

        with pytest.raises(RuntimeError):
            repo.with_transaction(_boom)

        assert _order(repo, "s-research") == ["a", "b", "c", "d", "e"]
        assert _order(repo, "s-envision") == ["x", "y", "z"]
        _assert_dense(repo)

    def test_successful_unit_of_work_returns_result(self, repo, engine):
        moved = repo.with_transaction(lambda: engine.move(repo.get_card("a"), "s-assemble"))
        assert moved is True
        assert _order(repo, "s-assemble") == ["a"]


class TestDensityInvariant:
    @pytest.mark.parametrize("seed", [1, 7, 42, 2024])
    def test_random_operation_sequences_keep_positions_dense(self, seed):
        rng = random.Random(seed)
        repo = _make_repo({s: [] for s in STAGES})
        engine = CardOrderingEngine(repo)
        next_id = 0

        for _ in range(300):
            cards = list(repo.cards.values())
            op = rng.choice(("insert", "insert", "reorder", "move", "remove"))
            if op == "insert" or not cards:
                next_id += 1
                engine.insert(CardSlot(id=f"c{next_id}", team_id=TEAM,
                                       stage_id=rng.choice(STAGES)))
            elif op == "reorder":
                engine.reorder(rng.choice(cards), rng.randint(1, 12))
            elif op == "move":
                position = rng.choice((None, rng.randint(1, 12)))
                repo.with_transaction(
                    lambda: engine.move(rng.choice(cards), rng.choice(STAGES), position)
                )
            else:
                engine.remove(rng.choice(cards))
            _assert_dense(repo)

        assert len(repo.cards) == sum(repo.stage_size(TEAM, s) for s in STAGES)
