"""
Randomness oracle interface and the Chainlink VRF adapter.

The lottery only ever calls `request_random_words`; the oracle answers later
through the lottery's `fulfill_random_words` entry point, correlated by the
request id it returned.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, List, Optional

from eth_abi import encode
from eth_utils import keccak

from vrf_lottery.lottery.exceptions import InvalidRandomness, PayoutFailed, UnknownRequest
from vrf_lottery.utils.logger import get_logger

if TYPE_CHECKING:
    from vrf_lottery.blockchain.client import VRFCoordinatorClient
    from vrf_lottery.lottery.engine import Lottery

logger = get_logger(__name__)


class RandomnessOracle(ABC):
    """Accepts randomness requests and fulfills them asynchronously."""

    @abstractmethod
    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        """Register a request and return its identifier."""


def expand_random_words(output_seed: int, num_words: int) -> List[int]:
    """Derive words from a fulfillment seed the way VRFCoordinatorV2 does:
    word_i = uint256(keccak256(abi.encode(seed, i))).
    """
    return [
        int.from_bytes(keccak(encode(["uint256", "uint256"], [output_seed, i])), "big")
        for i in range(num_words)
    ]


class ChainlinkVRFOracle(RandomnessOracle):
    """Requests randomness from a VRF Coordinator V2 and replays fulfillments.

    The coordinator emits `RandomWordsFulfilled(requestId, outputSeed, ...)`
    for every request it answers. This adapter polls those logs, expands the
    seed into words and hands them to the attached lottery.
    """

    def __init__(self, client: "VRFCoordinatorClient", poll_interval: float = 5.0) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._lottery: Optional["Lottery"] = None
        # request id -> number of words asked for
        self._outstanding: Dict[int, int] = {}
        # request id -> words waiting to be delivered (or redelivered)
        self._ready: Dict[int, List[int]] = {}
        self._from_block: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def attach(self, lottery: "Lottery") -> None:
        self._lottery = lottery

    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        if self._from_block is None:
            self._from_block = self._client.get_latest_block()
        request_id = self._client.request_random_words(
            gas_lane=gas_lane,
            subscription_id=subscription_id,
            request_confirmations=request_confirmations,
            callback_gas_limit=callback_gas_limit,
            num_words=num_words,
        )
        self._outstanding[request_id] = num_words
        return request_id

    def get_outstanding(self) -> List[int]:
        return sorted(self._outstanding)

    # ------------------------------------------------------------------
    # Fulfillment polling
    # ------------------------------------------------------------------
    def poll_fulfillments(self) -> int:
        """Scan new coordinator logs and deliver fulfillments. Returns rounds settled."""
        if self._lottery is None:
            raise RuntimeError("No lottery attached to the oracle")

        if self._outstanding:
            if self._from_block is None:
                self._from_block = self._client.get_latest_block()
            for event in self._client.get_fulfillments(self._from_block):
                num_words = self._outstanding.get(event.request_id)
                if num_words is None:
                    continue
                if not event.success:
                    logger.warning("Coordinator reported failed callback for request %s", event.request_id)
                self._ready[event.request_id] = expand_random_words(event.output_seed, num_words)
            self._from_block = self._client.get_last_seen_block() + 1

        settled = 0
        for request_id, words in list(self._ready.items()):
            if self._deliver(request_id, words):
                settled += 1
        return settled

    def _deliver(self, request_id: int, words: List[int]) -> bool:
        try:
            winner = self._lottery.fulfill_random_words(request_id, words)
        except UnknownRequest as exc:
            if self._lottery.is_requesting_randomness():
                # lottery has not recorded the request id yet; retry next poll
                logger.debug("Request %s not yet registered by the lottery", request_id)
                return False
            logger.warning("Dropping fulfillment for request %s: %s", request_id, exc)
            self._forget(request_id)
            return False
        except InvalidRandomness as exc:
            logger.warning("Dropping fulfillment for request %s: %s", request_id, exc)
            self._forget(request_id)
            return False
        except PayoutFailed as exc:
            # kept in _ready so the next poll retries the settlement
            logger.error("Settlement for request %s failed, will retry: %s", request_id, exc)
            return False

        logger.info("Request %s fulfilled, winner %s", request_id, winner)
        self._forget(request_id)
        return True

    def _forget(self, request_id: int) -> None:
        self._outstanding.pop(request_id, None)
        self._ready.pop(request_id, None)

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._task:
            return
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info("VRF fulfillment poller started (every %ss)", self._poll_interval)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("VRF fulfillment poller stopped")

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.to_thread(self.poll_fulfillments)
            except Exception as exc:
                logger.error("VRF poll loop error: %s", exc)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                break
            except asyncio.TimeoutError:
                continue
