from itertools import permutations

from darts.logic.types import TurnWithThrows
from darts.messaging.types import ThrowChange, ThrowPatch, TurnChange, TurnPatch
from darts.realtime.reducer import ReducerState, apply_throw_change, apply_turn_change

LEG = "leg-1"


def _state(*turns: TurnWithThrows) -> ReducerState:
    return ReducerState(current_leg_id=LEG, turns=turns, turn_throw_counts={t.id: len(t.throws) for t in turns})


def _turn(turn_id="t1", number=1, player="alice", **kwargs) -> TurnWithThrows:
    return TurnWithThrows(id=turn_id, leg_id=LEG, player_id=player, turn_number=number, **kwargs)


def _throw(dart_index: int, segment: str = "S20", op: str = "insert", turn_id: str = "t1", scored: int | None = 20) -> ThrowChange:
    patch = ThrowPatch(id=f"{turn_id}-d{dart_index}", turn_id=turn_id, dart_index=dart_index, segment=segment, scored=scored)
    if op == "delete":
        return ThrowChange(op=op, old=patch)
    return ThrowChange(op=op, new=patch)


def _turn_change(op: str = "insert", **fields) -> TurnChange:
    patch = TurnPatch(**fields)
    if op == "delete":
        return TurnChange(op=op, old=patch)
    return TurnChange(op=op, new=patch)


def _fold(changes, state):
    for change in changes:
        apply = apply_throw_change if isinstance(change, ThrowChange) else apply_turn_change
        result = apply(change, state)
        state = ReducerState(state.current_leg_id, result.turns, result.turn_throw_counts)
    return state


class TestApplyThrowChange:
    def test_unknown_turn_needs_reconcile(self):
        result = apply_throw_change(_throw(1), _state())

        assert result.effects.needs_reconcile
        assert result.turns == ()

    def test_insert_adds_throw_and_count(self):
        result = apply_throw_change(_throw(1), _state(_turn()))

        assert [t.segment for t in result.turns[0].throws] == ["S20"]
        assert result.turn_throw_counts == {"t1": 1}
        assert result.effects.completed_turn_id is None

    def test_duplicate_insert_is_idempotent(self):
        once = _fold([_throw(1)], _state(_turn()))
        twice = _fold([_throw(1), _throw(1)], _state(_turn()))

        assert once == twice

    def test_update_replaces_segment(self):
        result = apply_throw_change(_throw(1, "T20", op="update", scored=60), _fold([_throw(1)], _state(_turn())))

        assert result.turns[0].throws[0].segment == "T20"
        assert result.turns[0].throws[0].scored == 60
        assert result.turn_throw_counts == {"t1": 1}

    def test_delete_removes_throw(self):
        result = apply_throw_change(_throw(2, op="delete"), _fold([_throw(1), _throw(2)], _state(_turn())))

        assert [t.dart_index for t in result.turns[0].throws] == [1]
        assert result.turn_throw_counts == {"t1": 1}

    def test_missing_score_derived_from_segment(self):
        result = apply_throw_change(_throw(1, "T19", scored=None), _state(_turn()))

        assert result.turns[0].throws[0].scored == 57

    def test_third_dart_completes_once(self):
        state = _fold([_throw(1), _throw(2)], _state(_turn()))

        first = apply_throw_change(_throw(3), state)
        again = apply_throw_change(_throw(3), ReducerState(LEG, first.turns, first.turn_throw_counts))

        assert first.effects.completed_turn_id == "t1"
        assert again.effects.completed_turn_id is None

    def test_throws_of_another_leg_are_ignored(self):
        other = TurnWithThrows(id="t1", leg_id="old-leg", player_id="alice", turn_number=1)

        result = apply_throw_change(_throw(1), _state(other))

        assert result.turns[0].throws == ()

    def test_arrival_order_does_not_matter(self):
        changes = [_throw(1, "S1", scored=1), _throw(2, "S2", scored=2), _throw(3, "S3", scored=3)]
        expected = _fold(changes, _state(_turn()))

        for order in permutations(changes):
            assert _fold(order, _state(_turn())) == expected


class TestApplyTurnChange:
    def test_insert(self):
        result = apply_turn_change(
            _turn_change(id="t2", leg_id=LEG, player_id="bob", turn_number=2),
            _state(_turn()),
        )

        assert [t.id for t in result.turns] == ["t1", "t2"]
        assert result.turn_throw_counts["t2"] == 0

    def test_insert_missing_columns_needs_reconcile(self):
        result = apply_turn_change(_turn_change(id="t2", leg_id=LEG), _state())

        assert result.effects.needs_reconcile

    def test_update_of_unknown_turn_needs_reconcile(self):
        result = apply_turn_change(_turn_change("update", id="t9", total_scored=60), _state(_turn()))

        assert result.effects.needs_reconcile

    def test_turns_of_another_leg_are_ignored(self):
        result = apply_turn_change(
            _turn_change(id="t2", leg_id="old-leg", player_id="bob", turn_number=2),
            _state(_turn()),
        )

        assert [t.id for t in result.turns] == ["t1"]

    def test_recorded_total_completes(self):
        result = apply_turn_change(_turn_change("update", id="t1", total_scored=60), _state(_turn()))

        assert result.turns[0].total_scored == 60
        assert result.effects.completed_turn_id == "t1"

    def test_same_total_again_does_not_complete(self):
        result = apply_turn_change(_turn_change("update", id="t1", total_scored=60), _state(_turn(total_scored=60)))

        assert result.effects.completed_turn_id is None

    def test_bust_completes(self):
        result = apply_turn_change(_turn_change("update", id="t1", busted=True, total_scored=0), _state(_turn()))

        assert result.turns[0].busted
        assert result.effects.completed_turn_id == "t1"

    def test_partial_update_keeps_other_columns(self):
        result = apply_turn_change(_turn_change("update", id="t1", total_scored=45), _state(_turn(tiebreak_round=1)))

        assert result.turns[0].tiebreak_round == 1
        assert result.turns[0].player_id == "alice"

    def test_delete(self):
        result = apply_turn_change(_turn_change("delete", id="t1"), _state(_turn(), _turn("t2", 2, "bob")))

        assert [t.id for t in result.turns] == ["t2"]
        assert "t1" not in result.turn_throw_counts

    def test_delete_of_unknown_turn_is_a_no_op(self):
        state = _state(_turn())

        assert apply_turn_change(_turn_change("delete", id="t9"), state).turns == state.turns

    def test_turns_stay_sorted_by_number(self):
        state = _fold(
            [
                _turn_change(id="t3", leg_id=LEG, player_id="alice", turn_number=3),
                _turn_change(id="t1", leg_id=LEG, player_id="alice", turn_number=1),
                _turn_change(id="t2", leg_id=LEG, player_id="bob", turn_number=2),
            ],
            _state(),
        )

        assert [t.turn_number for t in state.turns] == [1, 2, 3]
