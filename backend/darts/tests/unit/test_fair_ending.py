from darts.logic.enums import FairEndingPhase
from darts.logic.fair_ending import (
    NORMAL_STATE,
    compute_fair_ending_state,
    fair_ending_banner,
    get_next_fair_ending_player,
    is_closed_turn,
    is_tiebreak_phase,
)
from darts.tests.helpers.records import make_turn

TWO = ["alice", "bob"]
THREE = ["alice", "bob", "carol"]


def _state(turns, order=TWO, start=101, **kwargs):
    return compute_fair_ending_state(turns, order, start, fair_ending=True, **kwargs)


class TestIsClosedTurn:
    def test_three_darts(self):
        assert is_closed_turn(make_turn(1, "alice", "S1", "S1", "S1"))

    def test_open_turn_with_two_darts(self):
        assert not is_closed_turn(make_turn(1, "alice", "S1", "S1", total=0))

    def test_checkout_with_one_dart_is_closed(self):
        assert is_closed_turn(make_turn(1, "alice", "D20"))

    def test_busted_turn_is_closed(self):
        assert is_closed_turn(make_turn(1, "alice", "T20", busted=True))

    def test_throw_counts_override_row_darts(self):
        turn = make_turn(1, "alice", total=0)

        assert is_closed_turn(turn, {turn.id: 3})
        assert not is_closed_turn(turn, {turn.id: 1})

    def test_unknown_count_is_closed(self):
        assert is_closed_turn(make_turn(1, "alice", total=0).as_turn())

    def test_short_earlier_turn_is_closed(self):
        turn = make_turn(1, "alice", "Miss", "Miss", total=0)

        assert is_closed_turn(turn, latest=3)
        assert not is_closed_turn(turn, latest=1)

    def test_short_earlier_turn_still_counts_towards_the_round(self):
        # alice's first turn lost a dart to a correction after bob had thrown
        turns = [
            make_turn(1, "alice", "Miss", "Miss", total=0),
            make_turn(2, "bob", "S1", "S1", "S1"),
            make_turn(3, "alice", "T20", "S1", "D20"),
        ]

        state = _state(turns)
        assert state.phase == FairEndingPhase.COMPLETING_ROUND
        assert get_next_fair_ending_player(state, TWO, turns) == "bob"


class TestSingleCheckout:
    def test_disabled_is_always_normal(self):
        turns = [make_turn(1, "alice", "D20")]

        assert compute_fair_ending_state(turns, TWO, 40, fair_ending=False) is NORMAL_STATE

    def test_normal_until_someone_checks_out(self):
        turns = [make_turn(1, "alice", "T20", "Miss", "Miss"), make_turn(2, "bob", "S1", "S1", "S1")]

        assert _state(turns).phase == FairEndingPhase.NORMAL

    def test_completing_round_then_resolved(self):
        turns = [
            make_turn(1, "alice", "T20", "Miss", "Miss"),
            make_turn(2, "bob", "S1", "S1", "S1"),
            make_turn(3, "alice", "S1", "D20"),
        ]

        state = _state(turns)
        assert state.phase == FairEndingPhase.COMPLETING_ROUND
        assert state.checked_out_player_ids == ("alice",)
        assert get_next_fair_ending_player(state, TWO, turns) == "bob"

        turns.append(make_turn(4, "bob", "S1", "S1", "S1"))
        state = _state(turns)
        assert state.phase == FairEndingPhase.RESOLVED
        assert state.winner_id == "alice"
        assert get_next_fair_ending_player(state, TWO, turns) is None

    def test_bust_while_completing_round_is_not_a_checkout(self):
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "T20", busted=True),
        ]

        state = _state(turns, start=40)

        assert state.phase == FairEndingPhase.RESOLVED
        assert state.winner_id == "alice"

    def test_open_turn_does_not_complete_the_round(self):
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "S1", "S1", total=0),
        ]

        state = _state(turns, start=40)

        assert state.phase == FairEndingPhase.COMPLETING_ROUND
        assert get_next_fair_ending_player(state, TWO, turns) == "bob"

    def test_open_turn_counted_by_throw_counts_for_bare_rows(self):
        turns = [make_turn(1, "alice", "D20").as_turn(), make_turn(2, "bob", total=0).as_turn()]
        counts = {turns[0].id: 1, turns[1].id: 2}

        assert _state(turns, start=40, throw_counts=counts).phase == FairEndingPhase.COMPLETING_ROUND

    def test_round_completion_assumes_one_turn_per_player_per_round(self):
        # Counts, not rounds: bob throwing twice makes alice owe a turn even though she checked out.
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "S1", "S1", "S1"),
            make_turn(3, "bob", "S1", "S1", "S1"),
        ]

        state = _state(turns, order=THREE, start=40)

        assert state.phase == FairEndingPhase.COMPLETING_ROUND
        assert get_next_fair_ending_player(state, THREE, turns) == "alice"


class TestTiebreak:
    def test_simultaneous_checkouts_start_round_one(self):
        turns = [make_turn(1, "alice", "D20"), make_turn(2, "bob", "D20")]

        state = _state(turns, start=40)

        assert state.phase == FairEndingPhase.TIEBREAK
        assert is_tiebreak_phase(state)
        assert state.tiebreak_round == 1
        assert state.tiebreak_player_ids == ("alice", "bob")
        assert get_next_fair_ending_player(state, TWO, turns) == "alice"

    def test_next_player_skips_those_who_threw_this_round(self):
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "D20"),
            make_turn(3, "alice", "T20", "T20", "T20", tiebreak_round=1),
        ]

        state = _state(turns, start=40)

        assert state.phase == FairEndingPhase.TIEBREAK
        assert state.tiebreak_scores == {"alice": 180, "bob": 0}
        assert get_next_fair_ending_player(state, TWO, turns) == "bob"

    def test_unequal_scores_resolve(self):
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "D20"),
            make_turn(3, "alice", "S20", "S20", "S20", tiebreak_round=1),
            make_turn(4, "bob", "T20", "S1", "S1", tiebreak_round=1),
        ]

        state = _state(turns, start=40)

        assert state.phase == FairEndingPhase.RESOLVED
        assert state.winner_id == "bob"
        assert state.tiebreak_round == 1

    def test_tie_advances_with_tied_players_only(self):
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "D20"),
            make_turn(3, "carol", "D20"),
            make_turn(4, "alice", "T20", "T20", "T20", tiebreak_round=1),
            make_turn(5, "bob", "T20", "T20", "T20", tiebreak_round=1),
            make_turn(6, "carol", "S20", "S20", "S20", tiebreak_round=1),
        ]

        state = _state(turns, order=THREE, start=40)

        assert state.phase == FairEndingPhase.TIEBREAK
        assert state.tiebreak_round == 2
        assert state.tiebreak_player_ids == ("alice", "bob")
        assert get_next_fair_ending_player(state, THREE, turns) == "alice"

        turns += [
            make_turn(7, "alice", "S20", "Miss", "Miss", tiebreak_round=2),
            make_turn(8, "bob", "S19", "Miss", "Miss", tiebreak_round=2),
        ]
        state = _state(turns, order=THREE, start=40)

        assert state.phase == FairEndingPhase.RESOLVED
        assert state.winner_id == "alice"

    def test_open_tiebreak_turn_is_not_counted(self):
        turns = [
            make_turn(1, "alice", "D20"),
            make_turn(2, "bob", "D20"),
            make_turn(3, "alice", "T20", "T20", "T20", tiebreak_round=1),
            make_turn(4, "bob", "S1", total=0, tiebreak_round=1),
        ]

        state = _state(turns, start=40)

        assert state.phase == FairEndingPhase.TIEBREAK
        assert get_next_fair_ending_player(state, TWO, turns) == "bob"


class TestFairEndingBanner:
    NAMES = {"alice": "Alice", "bob": "Bob"}

    def test_normal_has_no_banner(self):
        assert fair_ending_banner(NORMAL_STATE, self.NAMES) is None

    def test_completing_round(self):
        state = _state([make_turn(1, "alice", "D20")], start=40)

        assert fair_ending_banner(state, self.NAMES) == "Completing round: Alice checked out"

    def test_tiebreak(self):
        state = _state([make_turn(1, "alice", "D20"), make_turn(2, "bob", "D20")], start=40)

        assert fair_ending_banner(state, self.NAMES) == "Tiebreak round 1: Alice, Bob, highest score wins"

    def test_resolved(self):
        state = _state([make_turn(1, "alice", "D20"), make_turn(2, "bob", "S1", "S1", "S1")], start=40)

        assert fair_ending_banner(state, self.NAMES) == "Alice wins the leg"
