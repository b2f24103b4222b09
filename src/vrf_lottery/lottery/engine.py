"""
Lottery Engine - the round state machine

Participants enter by paying at least the entrance fee. Once the interval has
elapsed, any caller may close the round: the engine asks the randomness oracle
for a random word and waits in CALCULATING. When the oracle delivers the word
for the pending request, the winner is picked by index, the bookkeeping is
reset and the whole pot is paid out.

Every mutating call runs as one transaction under the engine's lock. A
transaction that raises leaves no trace: state, ledger balances and queued
events are rolled back together. The oracle request is the one call made
with the lock released; while it is in flight the round is CALCULATING
with no pending request id.
"""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import contextmanager
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from vrf_lottery.blockchain.vrf import RandomnessOracle
from vrf_lottery.lottery.exceptions import (
    IndexOutOfRange,
    InsufficientPayment,
    InvalidRandomness,
    LedgerError,
    LotteryConfigError,
    PayoutFailed,
    RandomnessRequestFailed,
    ReservedParticipant,
    RoundNotOpen,
    UnknownRequest,
    UpkeepNotNeeded,
)
from vrf_lottery.lottery.ledger import Ledger
from vrf_lottery.lottery.models import (
    EnteredRound,
    LotteryConfig,
    LotteryState,
    RoundClosing,
    UpkeepStatus,
    WinnerPicked,
)
from vrf_lottery.utils.common import shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

EVENT_TYPES = ("entered", "round_closing", "winner_picked")


class Lottery:
    """Periodic lottery settled by an external randomness oracle."""

    def __init__(
        self,
        config: LotteryConfig,
        oracle: RandomnessOracle,
        ledger: Optional[Ledger] = None,
        clock: Callable[[], float] = time.time,
        address: str = "lottery",
    ) -> None:
        if config.entrance_fee < 0:
            raise LotteryConfigError("entrance_fee must not be negative")
        if config.interval < 0:
            raise LotteryConfigError("interval must not be negative")
        if config.num_words < 1:
            raise LotteryConfigError("num_words must be at least 1")

        self.config = config
        self.address = address
        self.ledger = ledger or Ledger()
        self._oracle = oracle
        self._clock = clock

        self._lock = RLock()
        self._depth = 0
        self._pending_events: List[Any] = []
        self._listeners: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)

        self._state = LotteryState.OPEN
        self._players: List[str] = []
        self._last_timestamp = clock()
        self._pending_request_id: Optional[int] = None
        self._recent_winner: Optional[str] = None
        self._round_number = 1

        logger.info(
            "Lottery initialized: fee=%s interval=%ss subscription=%s",
            config.entrance_fee,
            config.interval,
            config.subscription_id,
        )

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Callable[[Any], None]) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        with self._lock:
            self._listeners[event_type].append(callback)

    def _emit(self, event: Any) -> None:
        listeners = list(self._listeners.get(event.event_type, []))
        for callback in listeners:
            try:
                callback(event)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event.event_type, exc)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Serialize a mutating call and release its events only on commit."""
        with self._lock:
            self._depth += 1
            mark = len(self._pending_events)
            try:
                yield
            except BaseException:
                del self._pending_events[mark:]
                raise
            finally:
                self._depth -= 1
            if self._depth == 0:
                events, self._pending_events = self._pending_events, []
            else:
                events = []

        for event in events:
            self._emit(event)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------
    def enter(self, participant: str, amount: int) -> None:
        """Join the current round; any amount at or above the fee is kept in full."""
        with self._transaction():
            if participant == self.address:
                raise ReservedParticipant(participant)
            if amount < self.config.entrance_fee:
                raise InsufficientPayment(amount, self.config.entrance_fee)
            if self._state != LotteryState.OPEN:
                raise RoundNotOpen(self._state)

            self._players.append(participant)
            self.ledger.deposit(self.address, amount)
            self._pending_events.append(
                EnteredRound(
                    participant=participant,
                    amount=amount,
                    round_number=self._round_number,
                    timestamp=self._clock(),
                )
            )
            logger.info(
                "Round %s: %s entered with %s (players=%d)",
                self._round_number,
                shorten_eth_address(participant),
                amount,
                len(self._players),
            )

    # ------------------------------------------------------------------
    # Upkeep
    # ------------------------------------------------------------------
    def check_upkeep(self, perform_data: bytes = b"") -> UpkeepStatus:
        """Report whether the round can be closed. Never mutates state."""
        with self._lock:
            return self._upkeep_status()

    def _upkeep_status(self) -> UpkeepStatus:
        is_open = self._state == LotteryState.OPEN
        time_passed = (self._clock() - self._last_timestamp) >= self.config.interval
        has_players = len(self._players) > 0
        has_balance = self.ledger.balance_of(self.address) > 0
        return UpkeepStatus(
            upkeep_needed=is_open and time_passed and has_players and has_balance,
            is_open=is_open,
            time_passed=time_passed,
            has_players=has_players,
            has_balance=has_balance,
        )

    def perform_upkeep(self, perform_data: bytes = b"") -> int:
        """Close the round and request randomness. Returns the request id.

        The round is reserved (CALCULATING, no request id yet) under the lock,
        the oracle is called with the lock released, and the request id is
        recorded afterwards. A failed request reopens the round.
        """
        with self._transaction():
            status = self._upkeep_status()
            if not status.upkeep_needed:
                logger.debug("Upkeep not needed: %s", status)
                raise UpkeepNotNeeded(
                    self.ledger.balance_of(self.address),
                    len(self._players),
                    self._state,
                    status=status,
                )
            self._state = LotteryState.CALCULATING
            round_number = self._round_number

        try:
            request_id = int(
                self._oracle.request_random_words(
                    gas_lane=self.config.gas_lane,
                    subscription_id=self.config.subscription_id,
                    request_confirmations=self.config.request_confirmations,
                    callback_gas_limit=self.config.callback_gas_limit,
                    num_words=self.config.num_words,
                )
            )
        except Exception as exc:
            with self._transaction():
                self._state = LotteryState.OPEN
            logger.error("Randomness request failed for round %s: %s", round_number, exc)
            raise RandomnessRequestFailed(str(exc)) from exc

        with self._transaction():
            self._pending_request_id = request_id
            self._pending_events.append(
                RoundClosing(
                    request_id=self._pending_request_id,
                    round_number=self._round_number,
                    participant_count=len(self._players),
                    pot=self.ledger.balance_of(self.address),
                    timestamp=self._clock(),
                )
            )
            logger.info(
                "Round %s closing: requested randomness (request_id=%s)",
                self._round_number,
                self._pending_request_id,
            )
            return self._pending_request_id

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------
    def fulfill_random_words(self, request_id: int, random_words: Sequence[int]) -> str:
        """Settle the round with the oracle's random words. Returns the winner."""
        with self._transaction():
            if self._pending_request_id is None or request_id != self._pending_request_id:
                logger.warning(
                    "Rejected fulfillment for request %s (pending=%s)",
                    request_id,
                    self._pending_request_id,
                )
                raise UnknownRequest(request_id, self._pending_request_id)

            words = [int(word) for word in random_words]
            if not words:
                raise InvalidRandomness("Fulfillment carried no random words")
            if words[0] < 0:
                raise InvalidRandomness("Random words must be unsigned")

            random_word = words[0]
            participant_count = len(self._players)
            winner = self._players[random_word % participant_count]
            prize = self.ledger.balance_of(self.address)
            saved = self._save()

            # reset before paying out; a reentrant hook sees a fresh OPEN round
            settled_round = self._round_number
            self._recent_winner = winner
            self._players = []
            self._state = LotteryState.OPEN
            self._last_timestamp = max(self._last_timestamp, self._clock())
            self._pending_request_id = None
            self._round_number += 1

            try:
                self.ledger.transfer(self.address, winner, prize)
            except LedgerError as exc:
                self._restore(saved)
                logger.error(
                    "Payout of %s to %s failed, round %s stays CALCULATING: %s",
                    prize,
                    shorten_eth_address(winner),
                    settled_round,
                    exc,
                )
                raise PayoutFailed(winner, prize, reason=str(exc)) from exc

            self._pending_events.append(
                WinnerPicked(
                    winner=winner,
                    prize=prize,
                    round_number=settled_round,
                    request_id=request_id,
                    random_word=random_word,
                    participant_count=participant_count,
                    timestamp=self._last_timestamp,
                )
            )
            logger.info(
                "Round %s settled: winner %s (index %d of %d) received %s",
                settled_round,
                shorten_eth_address(winner),
                random_word % participant_count,
                participant_count,
                prize,
            )
            return winner

    def _save(self) -> Tuple[Any, ...]:
        return (
            self._state,
            list(self._players),
            self._last_timestamp,
            self._pending_request_id,
            self._recent_winner,
            self._round_number,
            self.ledger.snapshot(),
        )

    def _restore(self, saved: Tuple[Any, ...]) -> None:
        (
            self._state,
            self._players,
            self._last_timestamp,
            self._pending_request_id,
            self._recent_winner,
            self._round_number,
            balances,
        ) = saved
        self.ledger.restore(balances)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_state(self) -> LotteryState:
        with self._lock:
            return self._state

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._players):
                raise IndexOutOfRange(index, len(self._players))
            return self._players[index]

    def get_players(self) -> List[str]:
        with self._lock:
            return list(self._players)

    def get_number_of_players(self) -> int:
        with self._lock:
            return len(self._players)

    def get_entrance_fee(self) -> int:
        return self.config.entrance_fee

    def get_interval(self) -> int:
        return self.config.interval

    def get_recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._recent_winner

    def get_last_timestamp(self) -> float:
        with self._lock:
            return self._last_timestamp

    def get_pending_request_id(self) -> Optional[int]:
        with self._lock:
            return self._pending_request_id

    def is_requesting_randomness(self) -> bool:
        """True while perform_upkeep waits on the oracle for a request id."""
        with self._lock:
            return self._state == LotteryState.CALCULATING and self._pending_request_id is None

    def get_balance(self) -> int:
        return self.ledger.balance_of(self.address)

    def get_round_number(self) -> int:
        with self._lock:
            return self._round_number

    def get_num_words(self) -> int:
        return self.config.num_words

    def get_request_confirmations(self) -> int:
        return self.config.request_confirmations

    def get_subscription_id(self) -> int:
        return self.config.subscription_id

    def snapshot(self) -> Dict[str, Any]:
        """Public state as a JSON-friendly dict."""
        with self._lock:
            now = self._clock()
            return {
                "state": self._state.value,
                "stateLabel": self._state.name,
                "roundNumber": self._round_number,
                "players": list(self._players),
                "numberOfPlayers": len(self._players),
                "balance": self.ledger.balance_of(self.address),
                "entranceFee": self.config.entrance_fee,
                "interval": self.config.interval,
                "lastTimestamp": self._last_timestamp,
                "secondsUntilEligible": max(0.0, self._last_timestamp + self.config.interval - now),
                "pendingRequestId": self._pending_request_id,
                "recentWinner": self._recent_winner,
            }
