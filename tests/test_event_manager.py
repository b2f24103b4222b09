import pytest

from vrf_lottery.lottery.event_manager import MemoryStore
from vrf_lottery.lottery.exceptions import PayoutFailed

from conftest import FEE, INTERVAL

ALICE = "0x1234567890abcdef1234567890abcdef12345678"


def play_round(lottery, clock, players, word):
    for player in players:
        lottery.enter(player, FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")
    return lottery.fulfill_random_words(request_id, [word])


def test_store_records_feed_and_history(lottery, clock):
    store = MemoryStore()
    store.attach(lottery)

    play_round(lottery, clock, [ALICE, "bob"], 0)

    feed = store.get_live_feed()
    assert [item.event_type for item in feed] == [
        "EnteredRound", "EnteredRound", "RoundClosing", "WinnerPicked",
    ]
    assert feed[0].message.startswith("0x123456...5678 entered round 1")
    assert feed[-1].details["winner"] == ALICE

    history = store.get_round_history()
    assert len(history) == 1
    assert history[0].round_number == 1
    assert history[0].winner == ALICE
    assert history[0].winner_prize == 2 * FEE
    assert history[0].participant_count == 2


def test_rejected_operations_leave_no_feed(lottery, clock):
    store = MemoryStore()
    store.attach(lottery)
    lottery.enter("bob", FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")
    lottery.ledger.register_recipient("bob", lambda *args: False)

    with pytest.raises(PayoutFailed):
        lottery.fulfill_random_words(request_id, [0])

    assert [item.event_type for item in store.get_live_feed()] == ["EnteredRound", "RoundClosing"]
    assert store.get_round_history() == []


def test_capacities_are_bounded(lottery, clock):
    store = MemoryStore(feed_capacity=3, history_capacity=2)
    store.attach(lottery)
    for word in range(3):
        play_round(lottery, clock, ["bob"], word)

    assert len(store.get_live_feed()) == 3
    assert [s.round_number for s in store.get_round_history()] == [2, 3]

    store.set_history_capacity(1)
    assert [s.round_number for s in store.get_round_history()] == [3]
    store.set_feed_capacity(1)
    assert store.get_live_feed()[0].event_type == "WinnerPicked"

    store.clear_all_data()
    assert store.get_live_feed() == []
    assert store.get_round_history(limit=5) == []


def test_store_listeners_receive_serialized_records(lottery, clock):
    store = MemoryStore()
    store.attach(lottery)
    feed, history = [], []
    store.add_listener("live_feed", feed.append)
    store.add_listener("history_update", history.append)

    play_round(lottery, clock, ["bob"], 5)

    assert [item["type"] for item in feed] == ["EnteredRound", "RoundClosing", "WinnerPicked"]
    assert history == [store.get_round_history()[0].to_dict()]
    assert history[0]["random_word"] == "5"
