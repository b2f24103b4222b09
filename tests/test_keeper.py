import asyncio

from vrf_lottery.lottery.keeper import UpkeepKeeper
from vrf_lottery.lottery.models import LotteryState

from conftest import FEE, INTERVAL


def test_run_once_not_eligible(lottery, oracle):
    keeper = UpkeepKeeper(lottery, {"keeper": {"check_interval": "1"}})
    assert keeper.check_interval == 1.0
    assert keeper.run_once() is False
    assert keeper.run_once() is False
    assert keeper.status.checks == 2
    assert keeper.status.upkeeps_performed == 0
    assert oracle.requests == []


def test_run_once_performs_upkeep(lottery, clock, oracle):
    keeper = UpkeepKeeper(lottery)
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)

    assert keeper.run_once() is True
    assert lottery.get_state() == LotteryState.CALCULATING
    assert keeper.status.upkeeps_performed == 1
    # already calculating: nothing more to do
    assert keeper.run_once() is False
    assert len(oracle.requests) == 1


def test_lost_race_is_not_an_error(lottery, clock, oracle):
    keeper = UpkeepKeeper(lottery)
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)

    original_check = lottery.check_upkeep

    def check_then_race(perform_data=b""):
        status = original_check(perform_data)
        lottery.perform_upkeep(b"")  # another caller wins
        return status

    lottery.check_upkeep = check_then_race
    assert keeper.run_once() is False
    assert keeper.status.last_error is None
    assert len(oracle.requests) == 1


def test_loop_start_stop(lottery, clock):
    keeper = UpkeepKeeper(lottery, {"keeper": {"check_interval": 0.01}})
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)

    async def scenario():
        await keeper.start()
        assert keeper.get_status()["status"] == "running"
        for _ in range(200):
            if lottery.get_state() == LotteryState.CALCULATING:
                break
            await asyncio.sleep(0.01)
        await keeper.stop()

    asyncio.run(scenario())
    assert lottery.get_state() == LotteryState.CALCULATING
    assert keeper.get_status()["status"] == "stopped"


def test_loop_records_oracle_errors(lottery, clock, oracle):
    oracle.fail_with = ConnectionError("rpc down")
    keeper = UpkeepKeeper(lottery, {"keeper": {"check_interval": 0.01}})
    lottery.enter("A", FEE)
    clock.advance(INTERVAL + 1)

    async def scenario():
        await keeper.start()
        for _ in range(200):
            if keeper.status.last_error:
                break
            await asyncio.sleep(0.01)
        await keeper.stop()

    asyncio.run(scenario())
    assert "rpc down" in keeper.status.last_error
    assert lottery.get_state() == LotteryState.OPEN
