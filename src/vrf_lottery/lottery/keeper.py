"""
Upkeep keeper - the automation trigger.

Polls `check_upkeep` on a fixed cadence and calls `perform_upkeep` when the
round is eligible. The keeper holds no privileges: it races any other caller
and a lost race simply shows up as UpkeepNotNeeded.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.exceptions import LotteryError, UpkeepNotNeeded
from vrf_lottery.lottery.models import KeeperStatus
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class UpkeepKeeper:
    """Periodic check/perform loop for a single lottery."""

    def __init__(self, lottery: Lottery, config: Optional[Dict[str, Any]] = None) -> None:
        self._lottery = lottery
        keeper_cfg = (config or {}).get("keeper", {})
        self.check_interval = float(keeper_cfg.get("check_interval", 5.0))
        self.status = KeeperStatus()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def run_once(self) -> bool:
        """One check/perform cycle. Returns True when a request was issued."""
        self.status.checks += 1
        self.status.last_check_at = time.time()

        check = self._lottery.check_upkeep(b"")
        if not check.upkeep_needed:
            logger.debug(
                "No upkeep: open=%s time_passed=%s players=%s balance=%s",
                check.is_open,
                check.time_passed,
                check.has_players,
                check.has_balance,
            )
            return False

        try:
            request_id = self._lottery.perform_upkeep(check.perform_data)
        except UpkeepNotNeeded:
            logger.debug("Upkeep already performed by another caller")
            return False

        self.status.upkeeps_performed += 1
        self.status.last_upkeep_at = time.time()
        self.status.last_error = None
        logger.info("Keeper performed upkeep, request_id=%s", request_id)
        return True

    async def start(self) -> None:
        """Start the background loop."""
        if self._task:
            logger.warning("Keeper already running")
            return
        self._stop_event.clear()
        self.status.is_running = True
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Keeper started (check every %ss)", self.check_interval)

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.status.is_running = False
        logger.info("Keeper stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                # perform_upkeep may block on the oracle transaction
                await asyncio.to_thread(self.run_once)
            except LotteryError as exc:
                self.status.last_error = str(exc)
                logger.error("Keeper upkeep failed: %s", exc)
            except Exception as exc:
                self.status.last_error = str(exc)
                logger.exception("Unexpected keeper error: %s", exc)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.check_interval)
                break
            except asyncio.TimeoutError:
                continue

    def get_status(self) -> Dict[str, Any]:
        status = self.status.to_dict()
        status["checkInterval"] = self.check_interval
        return status
