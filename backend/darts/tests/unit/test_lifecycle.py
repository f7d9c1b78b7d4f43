import pytest

from darts.logic.segments import parse_segment_label
from darts.store.exceptions import DuplicateRowError
from darts.store.lifecycle import (
    complete_leg,
    is_incomplete_turn,
    next_starting_player,
    recompute_leg_turns,
    resolve_or_create_turn,
)
from darts.store.memory import InMemoryMatchStore
from darts.tests.helpers.records import make_match, make_players, make_turn

PLAYER_IDS = ["alice", "bob"]


@pytest.fixture
def store():
    return InMemoryMatchStore()


async def _throw_turn(store, leg_id, number, player_id, *labels, total=None, busted=False):
    turn = await store.insert_turn(match_id="match-1", leg_id=leg_id, player_id=player_id, turn_number=number)
    for index, label in enumerate(labels, start=1):
        segment = parse_segment_label(label)
        await store.insert_throw(match_id="match-1", turn_id=turn.id, dart_index=index, segment=label, scored=segment.scored)
    if total is not None or busted:
        await store.update_turn(turn.id, total_scored=total or 0, busted=busted)
    return turn


class TestIsIncompleteTurn:
    def test_open(self):
        assert is_incomplete_turn(make_turn(1, "alice", "S1", total=0))

    def test_three_darts(self):
        assert not is_incomplete_turn(make_turn(1, "alice", "S1", "S1", "S1"))

    def test_one_dart_checkout(self):
        assert not is_incomplete_turn(make_turn(1, "alice", "D20"))

    def test_bust(self):
        assert not is_incomplete_turn(make_turn(1, "alice", "T20", busted=True))


class TestResolveOrCreateTurn:
    async def test_creates_next_turn(self, store):
        leg = store.seed_match(make_match(), make_players("Alice", "Bob"))
        await _throw_turn(store, leg.id, 1, "alice", "S1", "S1", "S1", total=3)

        turn = await resolve_or_create_turn(store, match_id="match-1", leg_id=leg.id, player_id="bob")

        assert turn.turn_number == 2
        assert turn.player_id == "bob"

    async def test_reuses_open_turn_with_its_darts(self, store):
        leg = store.seed_match(make_match(), make_players("Alice", "Bob"))
        existing = await _throw_turn(store, leg.id, 1, "alice", "T20")

        turn = await resolve_or_create_turn(store, match_id="match-1", leg_id=leg.id, player_id="alice")

        assert turn.id == existing.id
        assert [t.segment for t in turn.throws] == ["T20"]
        assert store.calls["insert_turn"] == 1

    async def test_short_earlier_turn_is_not_reused(self, store):
        leg = store.seed_match(make_match(), make_players("Alice", "Bob"))
        await _throw_turn(store, leg.id, 1, "alice", "Miss", "Miss", total=0)
        await _throw_turn(store, leg.id, 2, "bob", "S1", "S1", "S1", total=3)

        turn = await resolve_or_create_turn(store, match_id="match-1", leg_id=leg.id, player_id="alice")

        assert turn.turn_number == 3
        assert store.calls["insert_turn"] == 3

    async def test_open_turn_of_other_tiebreak_round_is_not_reused(self, store):
        leg = store.seed_match(make_match(), make_players("Alice", "Bob"))
        await _throw_turn(store, leg.id, 1, "alice", "T20")

        turn = await resolve_or_create_turn(store, match_id="match-1", leg_id=leg.id, player_id="alice", tiebreak_round=1)

        assert turn.turn_number == 2
        assert turn.tiebreak_round == 1

    async def test_retries_once_on_race(self, store):
        leg = store.seed_match(make_match(), make_players("Alice", "Bob"))
        store.fail_next("insert_turn", DuplicateRowError("taken"))

        turn = await resolve_or_create_turn(store, match_id="match-1", leg_id=leg.id, player_id="alice")

        assert turn.turn_number == 1
        assert store.calls["insert_turn"] == 2

    async def test_gives_up_after_second_race(self, store, monkeypatch):
        leg = store.seed_match(make_match(), make_players("Alice", "Bob"))

        async def always_taken(**kwargs):
            raise DuplicateRowError("taken")

        monkeypatch.setattr(store, "insert_turn", always_taken)

        with pytest.raises(DuplicateRowError, match="could not open a turn"):
            await resolve_or_create_turn(store, match_id="match-1", leg_id=leg.id, player_id="alice")


class TestRecomputeLegTurns:
    async def test_edit_removes_win(self, store):
        match = make_match(201)
        leg = store.seed_match(match, make_players("Alice", "Bob"))
        first = await _throw_turn(store, leg.id, 1, "alice", "T20", "T20", "T20", total=180)
        await _throw_turn(store, leg.id, 2, "bob", "S1", "S1", "S1", total=3)
        win = await _throw_turn(store, leg.id, 3, "alice", "S1", "D10", total=21)

        throw = (await store.get_turn(first.id)).throws[2]
        await store.update_throw(throw.id, segment="T19", scored=57)
        replay = await recompute_leg_turns(store, match, leg.id, PLAYER_IDS)

        # alice is left on 24, so S1 D10 no longer finishes and her last turn is open again
        assert replay.leg_winner_id is None
        assert (await store.get_turn(first.id)).total_scored == 177
        assert (await store.get_turn(win.id)).total_scored == 0

    async def test_edit_introduces_bust(self, store):
        match = make_match(201)
        leg = store.seed_match(match, make_players("Alice", "Bob"))
        first = await _throw_turn(store, leg.id, 1, "alice", "T20", "T20", "T19", total=177)
        await _throw_turn(store, leg.id, 2, "bob", "S1", "S1", "S1", total=3)
        later = await _throw_turn(store, leg.id, 3, "alice", "S4", "D10", total=24)

        throw = (await store.get_turn(first.id)).throws[2]
        await store.update_throw(throw.id, segment="T20", scored=60)
        replay = await recompute_leg_turns(store, match, leg.id, PLAYER_IDS)

        recomputed = await store.get_turn(later.id)
        assert recomputed.busted
        assert recomputed.total_scored == 0
        assert replay.leg_winner_id is None

    async def test_edit_creates_win(self, store):
        match = make_match(201)
        leg = store.seed_match(match, make_players("Alice", "Bob"))
        await _throw_turn(store, leg.id, 1, "alice", "T20", "T20", "T20", total=180)
        await _throw_turn(store, leg.id, 2, "bob", "S1", "S1", "S1", total=3)
        last = await _throw_turn(store, leg.id, 3, "alice", "S1", "D5")

        throw = (await store.get_turn(last.id)).throws[1]
        await store.update_throw(throw.id, segment="D10", scored=20)
        replay = await recompute_leg_turns(store, match, leg.id, PLAYER_IDS)

        assert replay.leg_winner_id == "alice"
        assert (await store.get_turn(last.id)).total_scored == 21

    async def test_open_latest_turn_keeps_zero_total(self, store):
        match = make_match()
        leg = store.seed_match(match, make_players("Alice", "Bob"))
        await _throw_turn(store, leg.id, 1, "alice", "T20", "T20", "T20", total=180)
        open_turn = await _throw_turn(store, leg.id, 2, "bob", "T20")

        await recompute_leg_turns(store, match, leg.id, PLAYER_IDS)

        assert (await store.get_turn(open_turn.id)).total_scored == 0
        assert store.calls["update_turn"] == 1


class TestCompleteLeg:
    def test_next_starting_player_rotates(self):
        assert next_starting_player(["a", "b", "c"], "c") == "a"
        assert next_starting_player(["a", "b", "c"], "a") == "b"
        assert next_starting_player(["a", "b"], "zed") == "a"

    async def test_opens_next_leg(self, store):
        match = make_match(legs_to_win=2)
        leg = store.seed_match(match, make_players("Alice", "Bob"))

        completion = await complete_leg(store, match, leg, "alice", PLAYER_IDS)

        assert completion.leg.winner_player_id == "alice"
        assert completion.next_leg.leg_number == 2
        assert completion.next_leg.starting_player_id == "bob"
        assert completion.match_winner_id is None

    async def test_wins_match(self, store):
        match = make_match()
        leg = store.seed_match(match, make_players("Alice", "Bob"))

        completion = await complete_leg(store, match, leg, "bob", PLAYER_IDS)

        assert completion.match_winner_id == "bob"
        assert completion.next_leg is None
        assert (await store.get_match("match-1")).winner_player_id == "bob"

    async def test_is_idempotent(self, store):
        match = make_match(legs_to_win=2)
        leg = store.seed_match(match, make_players("Alice", "Bob"))
        first = await complete_leg(store, match, leg, "alice", PLAYER_IDS)

        again = await complete_leg(store, match, first.leg, "alice", PLAYER_IDS)

        assert again.next_leg is None
        assert len(await store.list_legs("match-1")) == 2

    async def test_next_leg_created_by_another_scorer(self, store):
        match = make_match(legs_to_win=2)
        leg = store.seed_match(match, make_players("Alice", "Bob"))
        store.fail_next("insert_leg", DuplicateRowError("leg exists"))

        completion = await complete_leg(store, match, leg, "alice", PLAYER_IDS)

        assert completion.next_leg is None
        assert completion.leg.winner_player_id == "alice"
