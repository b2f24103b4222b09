import pytest

from vrf_lottery.blockchain.vrf import RandomnessOracle
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.ledger import Ledger
from vrf_lottery.lottery.models import LotteryConfig


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeOracle(RandomnessOracle):
    """Records requests and hands out sequential ids; fulfillment is driven by the test."""

    def __init__(self):
        self.requests = []
        self.fail_with = None
        self._next_id = 1

    def request_random_words(self, gas_lane, subscription_id, request_confirmations,
                             callback_gas_limit, num_words):
        if self.fail_with is not None:
            raise self.fail_with
        request_id = self._next_id
        self._next_id += 1
        self.requests.append({
            "request_id": request_id,
            "gas_lane": gas_lane,
            "subscription_id": subscription_id,
            "request_confirmations": request_confirmations,
            "callback_gas_limit": callback_gas_limit,
            "num_words": num_words,
        })
        return request_id

    @property
    def last_request_id(self):
        return self.requests[-1]["request_id"]


FEE = 100
INTERVAL = 30


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def config():
    return LotteryConfig(entrance_fee=FEE, interval=INTERVAL, subscription_id=588)


@pytest.fixture
def lottery(config, oracle, ledger, clock):
    return Lottery(config, oracle, ledger=ledger, clock=clock)


@pytest.fixture
def closed_round(lottery, clock):
    """Lottery with players A and B, interval elapsed and upkeep performed."""
    lottery.enter("A", FEE)
    lottery.enter("B", FEE)
    clock.advance(INTERVAL + 1)
    request_id = lottery.perform_upkeep(b"")
    return lottery, request_id
