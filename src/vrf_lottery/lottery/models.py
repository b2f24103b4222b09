"""Core data models for the VRF lottery."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple


# Local-chain defaults of the reference deployment
DEFAULT_ENTRANCE_FEE = 10 ** 16  # 0.01 ETH in wei
DEFAULT_INTERVAL = 30
DEFAULT_GAS_LANE = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"
DEFAULT_SUBSCRIPTION_ID = 588
DEFAULT_CALLBACK_GAS_LIMIT = 500_000
DEFAULT_REQUEST_CONFIRMATIONS = 3
NUM_WORDS = 1


class LotteryState(IntEnum):
    """Lottery phases, numbered as `getLotteryState()` reports them."""

    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class LotteryConfig:
    """Immutable parameters supplied when the lottery is created."""

    entrance_fee: int = DEFAULT_ENTRANCE_FEE
    interval: int = DEFAULT_INTERVAL
    gas_lane: str = DEFAULT_GAS_LANE
    subscription_id: int = DEFAULT_SUBSCRIPTION_ID
    callback_gas_limit: int = DEFAULT_CALLBACK_GAS_LIMIT
    request_confirmations: int = DEFAULT_REQUEST_CONFIRMATIONS
    num_words: int = NUM_WORDS

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "LotteryConfig":
        """Build from the `lottery` section of the loaded configuration.

        Values coming from environment overrides are strings, so every
        numeric field is coerced with int().
        """
        section = config.get("lottery", {}) or {}
        return cls(
            entrance_fee=int(section.get("entrance_fee", DEFAULT_ENTRANCE_FEE)),
            interval=int(section.get("interval", DEFAULT_INTERVAL)),
            gas_lane=str(section.get("gas_lane", DEFAULT_GAS_LANE)),
            subscription_id=int(section.get("subscription_id", DEFAULT_SUBSCRIPTION_ID)),
            callback_gas_limit=int(section.get("callback_gas_limit", DEFAULT_CALLBACK_GAS_LIMIT)),
            request_confirmations=int(
                section.get("request_confirmations", DEFAULT_REQUEST_CONFIRMATIONS)
            ),
            num_words=int(section.get("num_words", NUM_WORDS)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entranceFee": self.entrance_fee,
            "interval": self.interval,
            "gasLane": self.gas_lane,
            "subscriptionId": self.subscription_id,
            "callbackGasLimit": self.callback_gas_limit,
            "requestConfirmations": self.request_confirmations,
            "numWords": self.num_words,
        }


@dataclass(frozen=True)
class UpkeepStatus:
    """Result of `check_upkeep`, with the individual conditions kept for diagnostics."""

    upkeep_needed: bool
    is_open: bool
    time_passed: bool
    has_players: bool
    has_balance: bool
    perform_data: bytes = b""

    def as_tuple(self) -> Tuple[bool, bytes]:
        return self.upkeep_needed, self.perform_data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upkeepNeeded": self.upkeep_needed,
            "isOpen": self.is_open,
            "timePassed": self.time_passed,
            "hasPlayers": self.has_players,
            "hasBalance": self.has_balance,
            "performData": "0x" + self.perform_data.hex(),
        }


# ----------------------------------------------------------------------
# Events emitted by the lottery
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class EnteredRound:
    participant: str
    amount: int
    round_number: int
    timestamp: float

    event_type = "entered"


@dataclass(frozen=True)
class RoundClosing:
    request_id: int
    round_number: int
    participant_count: int
    pot: int
    timestamp: float

    event_type = "round_closing"


@dataclass(frozen=True)
class WinnerPicked:
    winner: str
    prize: int
    round_number: int
    request_id: int
    random_word: int
    participant_count: int
    timestamp: float

    event_type = "winner_picked"


# ----------------------------------------------------------------------
# Records kept by the event store
# ----------------------------------------------------------------------
@dataclass
class RoundSnapshot:
    """Historical record of a settled round."""

    round_number: int
    winner: str
    winner_prize: int
    participant_count: int
    request_id: int
    random_word: int
    finished_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_number": self.round_number,
            "winner": self.winner,
            "winner_prize_wei": self.winner_prize,
            "participant_count": self.participant_count,
            "request_id": self.request_id,
            # uint256 words overflow JSON numbers
            "random_word": str(self.random_word),
            "finished_at": self.finished_at,
        }


@dataclass
class LiveFeedItem:
    """Entry pushed to the activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    event_time: float = 0.0

    def get_item_id(self) -> str:
        round_number = self.details.get("roundNumber", 0)
        return f"{round_number}-{self.event_time}-{self.event_type}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.get_item_id(),
            "type": self.event_type,
            "message": self.message,
            "details": self.details,
            "timestamp": self.event_time,
        }


@dataclass
class KeeperStatus:
    """Operational metrics for the upkeep keeper loop."""

    is_running: bool = False
    checks: int = 0
    upkeeps_performed: int = 0
    last_check_at: Optional[float] = None
    last_upkeep_at: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "running" if self.is_running else "stopped",
            "checks": self.checks,
            "upkeepsPerformed": self.upkeeps_performed,
            "lastCheckAt": self.last_check_at,
            "lastUpkeepAt": self.last_upkeep_at,
            "lastError": self.last_error,
        }
