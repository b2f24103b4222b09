"""In-memory activity feed and round history for the lottery."""

from __future__ import annotations

from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.models import (
    EnteredRound,
    LiveFeedItem,
    RoundClosing,
    RoundSnapshot,
    WinnerPicked,
)
from vrf_lottery.utils.common import format_wei, shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class MemoryStore:
    """Volatile storage for the live feed and settled-round history."""

    def __init__(self, *, feed_capacity: int = 100, history_capacity: int = 20) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Callable[[Dict[str, Any]], None]]] = defaultdict(list)
        self._feed_capacity = feed_capacity
        self._history_capacity = history_capacity
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._history: deque[RoundSnapshot] = deque(maxlen=history_capacity)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Subscribe to store updates: `live_feed` and `history_update`."""
        with self._lock:
            self._listeners[event_type].append(callback)
        logger.debug(f"[MemoryStore] Adding listener for event_type={event_type}")

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)

    def attach(self, lottery: Lottery) -> None:
        """Subscribe to every event the lottery emits."""
        lottery.add_listener("entered", self.on_entered)
        lottery.add_listener("round_closing", self.on_round_closing)
        lottery.add_listener("winner_picked", self.on_winner_picked)
        logger.info("[MemoryStore] attached to lottery %s", lottery.address)

    def on_entered(self, event: EnteredRound) -> None:
        who = shorten_eth_address(event.participant)
        self.add_live_feed(
            event_type="EnteredRound",
            message=f"{who} entered round {event.round_number} with {format_wei(event.amount)}",
            details={
                "roundNumber": event.round_number,
                "participant": event.participant,
                "amount": event.amount,
            },
            event_time=event.timestamp,
        )

    def on_round_closing(self, event: RoundClosing) -> None:
        self.add_live_feed(
            event_type="RoundClosing",
            message=(
                f"Round {event.round_number} closed with {event.participant_count} players, "
                f"waiting for randomness (request {event.request_id})"
            ),
            details={
                "roundNumber": event.round_number,
                "requestId": event.request_id,
                "participantCount": event.participant_count,
                "pot": event.pot,
            },
            event_time=event.timestamp,
        )

    def on_winner_picked(self, event: WinnerPicked) -> None:
        winner = shorten_eth_address(event.winner)
        self.add_live_feed(
            event_type="WinnerPicked",
            message=f"Round {event.round_number} completed - winner: {winner} won {format_wei(event.prize)}",
            details={
                "roundNumber": event.round_number,
                "winner": event.winner,
                "prize": event.prize,
                "requestId": event.request_id,
            },
            event_time=event.timestamp,
        )
        self.add_history_snapshot(
            RoundSnapshot(
                round_number=event.round_number,
                winner=event.winner,
                winner_prize=event.prize,
                participant_count=event.participant_count,
                request_id=event.request_id,
                random_word=event.random_word,
                finished_at=event.timestamp,
            )
        )

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    def add_live_feed(
        self,
        *,
        event_type: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        event_time: float = 0.0,
    ) -> None:
        item = LiveFeedItem(
            event_type=event_type,
            message=message,
            details=dict(details or {}),
            event_time=event_time,
        )
        with self._lock:
            self._live_feed.append(item)
        logger.info("[MemoryStore] appended live feed item %s: %s", item.event_type, item.message)
        self._emit("live_feed", item.to_dict())

    def add_history_snapshot(self, snapshot: RoundSnapshot) -> None:
        with self._lock:
            self._history.append(snapshot)
        logger.info(f"[MemoryStore] Added history snapshot for round {snapshot.round_number}")
        self._emit("history_update", snapshot.to_dict())

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_round_history(self, limit: Optional[int] = None) -> List[RoundSnapshot]:
        with self._lock:
            items = list(self._history)
        if limit is not None:
            return items[-limit:]
        return items

    def get_live_feed(self, limit: Optional[int] = None) -> List[LiveFeedItem]:
        with self._lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:]
        return items

    def clear_all_data(self) -> None:
        with self._lock:
            self._history.clear()
            self._live_feed.clear()
        logger.debug("[MemoryStore] clear_all_data called")

    # ------------------------------------------------------------------
    # Runtime resizing helpers
    # ------------------------------------------------------------------
    def set_feed_capacity(self, capacity: int) -> None:
        """Resize the live feed capacity (max entries)."""
        with self._lock:
            if capacity == self._feed_capacity:
                return
            old_items = list(self._live_feed)
            self._live_feed = deque(old_items[-capacity:], maxlen=capacity)
            self._feed_capacity = capacity
        logger.info(f"[MemoryStore] live feed capacity set to {capacity}")

    def set_history_capacity(self, capacity: int) -> None:
        """Resize the round history capacity (max snapshots)."""
        with self._lock:
            if capacity == self._history_capacity:
                return
            old_items = list(self._history)
            self._history = deque(old_items[-capacity:], maxlen=capacity)
            self._history_capacity = capacity
        logger.info(f"[MemoryStore] history capacity set to {capacity}")
