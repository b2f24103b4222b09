import pytest

from vrf_lottery.blockchain.client import FulfillmentEvent
from vrf_lottery.blockchain.vrf import ChainlinkVRFOracle, expand_random_words
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.ledger import Ledger
from vrf_lottery.lottery.models import LotteryConfig, LotteryState

from conftest import FEE, INTERVAL


class FakeCoordinatorClient:
    """Stands in for VRFCoordinatorClient: hands out ids and serves queued logs."""

    def __init__(self):
        self.block = 100
        self.next_request_id = 41
        self.requests = []
        self.logs = []
        self.from_blocks = []

    def get_latest_block(self):
        return self.block

    def get_last_seen_block(self):
        return self.block

    def request_random_words(self, **kwargs):
        self.next_request_id += 1
        self.requests.append(kwargs)
        return self.next_request_id

    def get_fulfillments(self, from_block):
        self.from_blocks.append(from_block)
        logs, self.logs = self.logs, []
        return logs

    def fulfill(self, request_id, seed, success=True):
        self.block += 1
        self.logs.append(FulfillmentEvent(request_id, seed, success, self.block, "0xabc"))


@pytest.fixture
def client():
    return FakeCoordinatorClient()


@pytest.fixture
def vrf_lottery(client, clock):
    oracle = ChainlinkVRFOracle(client, poll_interval=0.01)
    ledger = Ledger()
    lottery = Lottery(LotteryConfig(entrance_fee=FEE, interval=INTERVAL), oracle, ledger=ledger, clock=clock)
    oracle.attach(lottery)
    return lottery, oracle, ledger


def test_expand_random_words_is_deterministic():
    words = expand_random_words(12345, 3)
    assert len(words) == 3
    assert words == expand_random_words(12345, 3)
    assert len(set(words)) == 3
    assert all(0 <= w < 2 ** 256 for w in words)
    assert expand_random_words(12346, 1)[0] != words[0]


def test_request_passes_configuration(vrf_lottery, client, clock):
    lottery, oracle, _ = vrf_lottery
    lottery.enter("0x" + "a" * 40, FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")

    assert request_id == 42
    assert oracle.get_outstanding() == [42]
    assert client.requests[0]["num_words"] == 1
    assert client.requests[0]["gas_lane"] == lottery.config.gas_lane


def test_poll_delivers_fulfillment(vrf_lottery, client, clock):
    lottery, oracle, ledger = vrf_lottery
    lottery.enter("A", FEE)
    lottery.enter("B", FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")

    assert oracle.poll_fulfillments() == 0
    client.fulfill(request_id, seed=987654321)
    assert oracle.poll_fulfillments() == 1

    expected = ["A", "B"][expand_random_words(987654321, 1)[0] % 2]
    assert lottery.get_recent_winner() == expected
    assert ledger.balance_of(expected) == 2 * FEE
    assert lottery.get_state() == LotteryState.OPEN
    assert oracle.get_outstanding() == []
    assert client.from_blocks[-1] == 101


def test_poll_ignores_foreign_requests(vrf_lottery, client, clock):
    lottery, oracle, _ = vrf_lottery
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")

    client.fulfill(request_id + 100, seed=1)
    assert oracle.poll_fulfillments() == 0
    assert lottery.get_state() == LotteryState.CALCULATING


def test_failed_payout_is_retried(vrf_lottery, client, clock):
    lottery, oracle, ledger = vrf_lottery
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")
    ledger.register_recipient("A", lambda *args: False)

    client.fulfill(request_id, seed=5)
    assert oracle.poll_fulfillments() == 0
    assert lottery.get_state() == LotteryState.CALCULATING

    ledger.unregister_recipient("A")
    assert oracle.poll_fulfillments() == 1
    assert ledger.balance_of("A") == FEE


def test_poll_requires_attached_lottery(client):
    oracle = ChainlinkVRFOracle(client)
    with pytest.raises(RuntimeError):
        oracle.poll_fulfillments()


def test_fulfillment_seen_before_request_id_is_recorded(client, clock):
    settled_during_request = []

    class EagerOracle(ChainlinkVRFOracle):
        def request_random_words(self, **kwargs):
            request_id = super().request_random_words(**kwargs)
            client.fulfill(request_id, seed=77)
            settled_during_request.append(self.poll_fulfillments())
            return request_id

    oracle = EagerOracle(client)
    lottery = Lottery(LotteryConfig(entrance_fee=FEE, interval=INTERVAL), oracle, clock=clock)
    oracle.attach(lottery)
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)

    request_id = lottery.perform_upkeep(b"")

    assert settled_during_request == [0]
    assert oracle.get_outstanding() == [request_id]
    assert oracle.poll_fulfillments() == 1
    assert lottery.get_recent_winner() == "A"
    assert oracle.get_outstanding() == []
