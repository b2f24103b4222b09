"""In-memory value ledger.

Holds the balances the lottery moves around: entrance fees are deposited into
the lottery's own account and the pot is transferred out to the winner.
Recipients may register a hook that runs on every incoming transfer; the hook
can reject the transfer (raise, or return False) and it can call back into the
lottery, which is how reentrancy during a payout is exercised.
"""

from __future__ import annotations

from collections import defaultdict
from threading import RLock
from typing import Callable, Dict, Optional

from vrf_lottery.lottery.exceptions import InsufficientFunds, TransferRejected
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

# hook(sender, recipient, amount) -> False to reject
RecipientHook = Callable[[str, str, int], Optional[bool]]


class Ledger:
    """Balances keyed by account identifier."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._balances: Dict[str, int] = defaultdict(int)
        self._hooks: Dict[str, RecipientHook] = {}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def deposit(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Deposit amount must not be negative")
        with self._lock:
            self._balances[account] += amount
        logger.debug("[Ledger] deposit %s -> %s", amount, account)

    def register_recipient(self, account: str, hook: RecipientHook) -> None:
        with self._lock:
            self._hooks[account] = hook

    def unregister_recipient(self, account: str) -> None:
        with self._lock:
            self._hooks.pop(account, None)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------
    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move `amount` from sender to recipient.

        Value is credited before the recipient hook runs, so a hook that calls
        back in sees its own balance already updated. A rejecting hook undoes
        the movement and raises TransferRejected.
        """
        if amount < 0:
            raise ValueError("Transfer amount must not be negative")

        with self._lock:
            balance = self._balances.get(sender, 0)
            if balance < amount:
                raise InsufficientFunds(sender, balance, amount)

            self._balances[sender] -= amount
            self._balances[recipient] += amount
            hook = self._hooks.get(recipient)

            if hook is not None:
                try:
                    accepted = hook(sender, recipient, amount)
                except Exception as exc:
                    self._undo(sender, recipient, amount)
                    raise TransferRejected(recipient, reason=str(exc)) from exc
                if accepted is False:
                    self._undo(sender, recipient, amount)
                    raise TransferRejected(recipient, reason="recipient refused")

        logger.debug("[Ledger] transfer %s from %s to %s", amount, sender, recipient)

    def _undo(self, sender: str, recipient: str, amount: int) -> None:
        self._balances[recipient] -= amount
        self._balances[sender] += amount

    # ------------------------------------------------------------------
    # Journal helpers
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._balances)

    def restore(self, snapshot: Dict[str, int]) -> None:
        with self._lock:
            self._balances = defaultdict(int, snapshot)
