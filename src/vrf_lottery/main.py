#!/usr/bin/env python3
"""
VRF Lottery Application

Wires the lottery engine to the Chainlink VRF coordinator, the upkeep keeper,
the in-memory event store and the HTTP API, and runs them until a shutdown
signal arrives.
"""

import asyncio
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env before any logger is configured so LOG_LEVEL and LOG_FILE apply
ENV_PATH = Path.cwd() / ".env"
load_dotenv(ENV_PATH)

from vrf_lottery.blockchain.client import VRFCoordinatorClient
from vrf_lottery.blockchain.vrf import ChainlinkVRFOracle
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.event_manager import MemoryStore
from vrf_lottery.lottery.keeper import UpkeepKeeper
from vrf_lottery.lottery.models import LotteryConfig
from vrf_lottery.utils.common import format_wei
from vrf_lottery.utils.config import load_config
from vrf_lottery.utils.logger import get_logger
from vrf_lottery.web_server import LotteryWebServer

logger = get_logger(__name__)


class LotteryApp:
    """Lottery application.

    Responsible for building the coordinator client, oracle, lottery, keeper,
    store and web server, starting their loops and shutting them down cleanly.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else load_config()
        self.vrf_client = None
        self.oracle = None
        self.lottery = None
        self.store = None
        self.keeper = None
        self.web_server = None
        self.running = True

    def _display_config_summary(self, lottery_config: LotteryConfig):
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)

        blockchain_config = self.config.get('blockchain', {})
        logger.info(f"RPC URL: {blockchain_config.get('rpc_url', 'Not configured')}")
        logger.info(f"Chain ID: {blockchain_config.get('chain_id', 'Not configured')}")
        logger.info(f"VRF Coordinator: {blockchain_config.get('coordinator_address', 'Not configured')}")

        logger.info(f"Entrance fee: {format_wei(lottery_config.entrance_fee)}")
        logger.info(f"Interval: {lottery_config.interval}s")
        logger.info(f"Subscription: {lottery_config.subscription_id}")
        logger.info(f"Callback gas limit: {lottery_config.callback_gas_limit}")

        server_config = self.config.get('server', {})
        logger.info(f"Server: {server_config.get('host', '0.0.0.0')}:{server_config.get('port', 6080)}")
        logger.info("=" * 60)

    def initialize(self):
        """Build every component; connects to the RPC endpoint."""
        lottery_config = LotteryConfig.from_dict(self.config)
        self._display_config_summary(lottery_config)

        self.vrf_client = VRFCoordinatorClient(self.config)
        self.vrf_client.connect()

        poll_interval = float(self.config.get('blockchain', {}).get('poll_interval', 5.0))
        self.oracle = ChainlinkVRFOracle(self.vrf_client, poll_interval=poll_interval)

        self.lottery = Lottery(lottery_config, self.oracle)
        self.oracle.attach(self.lottery)

        store_config = self.config.get('store', {})
        self.store = MemoryStore(
            feed_capacity=int(store_config.get('live_feed_max_entries', 100)),
            history_capacity=int(store_config.get('round_history_max', 20)),
        )
        self.store.attach(self.lottery)

        self.keeper = UpkeepKeeper(self.lottery, self.config)
        self.web_server = LotteryWebServer(
            self.config, self.lottery, self.store, keeper=self.keeper, vrf_client=self.vrf_client
        )
        logger.info("Application initialization completed")

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        self.initialize()

        server_host = self.config.get('server', {}).get('host', '0.0.0.0')
        server_port = int(self.config.get('server', {}).get('port', 6080))

        try:
            await self.oracle.start()
            await self.keeper.start()
            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))

            # a bind failure finishes the task right away
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            logger.info(f"Lottery running, API at http://{server_host}:{server_port}/api/")
            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        """Stop all services and cleanup resources."""
        self.running = False

        if self.keeper:
            await self.keeper.stop()
        if self.oracle:
            await self.oracle.stop()
        if self.web_server:
            await self.web_server.stop()
        if self.vrf_client:
            self.vrf_client.close()
        if self.store:
            self.store.clear_all_data()

        logger.info("Lottery application stopped")

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False


async def main():
    """Main entry point for the lottery application"""
    app = LotteryApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.exception(f"Application failed: {e}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
