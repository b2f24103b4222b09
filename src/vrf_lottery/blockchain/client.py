"""Web3 client for the Chainlink VRF Coordinator V2."""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.contract import Contract

from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

FULFILLED_EVENT_SIGNATURE = "RandomWordsFulfilled(uint256,uint256,uint96,bool)"


@dataclass
class FulfillmentEvent:
    """Decoded `RandomWordsFulfilled` log."""

    request_id: int
    output_seed: int
    success: bool
    block_number: int
    transaction_hash: str


class VRFCoordinatorClient:
    """Thin wrapper around web3.py for the coordinator calls the lottery needs.

    Methods are blocking; async callers wrap them with asyncio.to_thread.
    """

    def __init__(self, config: Dict[str, Any]):
        self._config = config

        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://127.0.0.1:8545")
        self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        self.chain_id: int = int(blockchain_cfg.get("chain_id", 31337))
        self.coordinator_address: Optional[str] = blockchain_cfg.get("coordinator_address")
        self.tx_timeout: int = int(blockchain_cfg.get("tx_timeout_seconds", 180))

        self._w3: Optional[Web3] = None
        self._contract: Optional[Contract] = None
        self.contract_abi: Optional[List[Dict[str, Any]]] = None

        private_key = blockchain_cfg.get("operator_private_key")
        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            logger.info("Operator account loaded: %s", self.account.address)

        gas_price_setting = blockchain_cfg.get("gas_price")
        self._gas_price_override: Optional[int] = None
        if gas_price_setting:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")

        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))
        self._latest_block: Optional[int] = None
        self._last_seen_block: int = 0

    def get_last_seen_block(self) -> int:
        """Return the highest block already scanned for fulfillments."""
        return self._last_seen_block

    def connect(self) -> None:
        """Establish the RPC connection and bind the coordinator contract."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        if not self._w3.is_connected():  # pragma: no cover - depends on live RPC
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")

        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        actual_chain_id = self._w3.eth.chain_id
        if actual_chain_id != self.chain_id:
            logger.warning(f"Chain ID mismatch: expected {self.chain_id}, got {actual_chain_id}")

        self._load_contract()
        self._last_seen_block = int(self._w3.eth.block_number)

    def close(self) -> None:
        """Drop references; the HTTP provider closes on its own."""
        self._contract = None
        self._w3 = None

    def _load_contract(self) -> None:
        if not self.coordinator_address:
            raise ValueError("No VRF coordinator address configured")

        abi_path = self._resolve_abi_path()
        logger.info("Loading coordinator ABI from %s", abi_path)
        with abi_path.open("r", encoding="utf-8") as handle:
            self.contract_abi = json.load(handle)

        w3 = self._ensure_web3()
        address = Web3.to_checksum_address(self.coordinator_address)
        code = w3.eth.get_code(address)
        if len(code) == 0:
            raise ValueError(f"No contract deployed at {address}")

        self._contract = w3.eth.contract(address=address, abi=self.contract_abi)
        logger.info(f"Coordinator bound at {address} with {len(code)} bytes of code")

    def _resolve_abi_path(self) -> Path:
        abi_path = Path(__file__).parent / "abi" / "VRFCoordinatorV2.abi"
        if not abi_path.is_file():
            raise FileNotFoundError(f"Coordinator ABI file not found at {abi_path}")
        return abi_path

    def _ensure_contract(self) -> Contract:
        if not self._contract:
            raise RuntimeError("Coordinator contract not initialised")
        return self._contract

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def _send_transaction(self, function_name: str, *args) -> str:
        if not self.account:
            raise ValueError("Operator account not configured")

        contract = self._ensure_contract()
        w3 = self._ensure_web3()

        tx_function = getattr(contract.functions, function_name)(*args)
        gas_estimate = tx_function.estimate_gas({"from": self.account.address})
        gas_price = self._gas_price_override or w3.eth.gas_price
        txn = tx_function.build_transaction(
            {
                "from": self.account.address,
                "gas": int(gas_estimate * self._gas_multiplier),
                "gasPrice": gas_price,
                "nonce": w3.eth.get_transaction_count(self.account.address),
                "chainId": self.chain_id,
            }
        )
        signed = self.account.sign_transaction(txn)
        # eth-account renamed rawTransaction to raw_transaction
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
        tx_hash = w3.eth.send_raw_transaction(raw)
        logger.info("Sent transaction %s for %s", Web3.to_hex(tx_hash), function_name)
        return Web3.to_hex(tx_hash)

    def wait_for_transaction(self, tx_hash: str) -> Any:
        w3 = self._ensure_web3()
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        if int(receipt["status"]) != 1:
            raise RuntimeError(f"Transaction {tx_hash} reverted")
        return receipt

    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        """Send `requestRandomWords` and return the request id from the receipt."""
        contract = self._ensure_contract()
        tx_hash = self._send_transaction(
            "requestRandomWords",
            Web3.to_bytes(hexstr=gas_lane),
            int(subscription_id),
            int(request_confirmations),
            int(callback_gas_limit),
            int(num_words),
        )
        receipt = self.wait_for_transaction(tx_hash)
        events = contract.events.RandomWordsRequested().process_receipt(receipt)
        if not events:
            raise RuntimeError(f"No RandomWordsRequested event in transaction {tx_hash}")
        request_id = int(events[0]["args"]["requestId"])
        logger.info("Randomness requested: request_id=%s tx=%s", request_id, tx_hash)
        return request_id

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------
    def get_fulfillments(self, from_block: int) -> List[FulfillmentEvent]:
        """Fetch `RandomWordsFulfilled` logs from `from_block` to the chain head."""
        w3 = self._ensure_web3()
        contract = self._ensure_contract()

        self._latest_block = int(w3.eth.block_number)
        if from_block > self._latest_block:
            logger.debug("Requested block %s is ahead of latest block %s, skip", from_block, self._latest_block)
            return []

        raw_logs = w3.eth.get_logs(
            {
                "fromBlock": from_block,
                "toBlock": self._latest_block,
                "address": contract.address,
                "topics": [Web3.to_hex(Web3.keccak(text=FULFILLED_EVENT_SIGNATURE))],
            }
        )
        self._last_seen_block = self._latest_block

        collected: List[FulfillmentEvent] = []
        event = contract.events.RandomWordsFulfilled()
        for raw in raw_logs:
            decoded = event.process_log(raw)
            collected.append(
                FulfillmentEvent(
                    request_id=int(decoded["args"]["requestId"]),
                    output_seed=int(decoded["args"]["outputSeed"]),
                    success=bool(decoded["args"]["success"]),
                    block_number=int(decoded["blockNumber"]),
                    transaction_hash=Web3.to_hex(decoded["transactionHash"]),
                )
            )

        collected.sort(key=lambda evt: (evt.block_number, evt.transaction_hash))
        if collected:
            logger.info("Decoded %d fulfillments from block %s to %s", len(collected), from_block, self._latest_block)
        return collected

    def get_latest_block(self) -> int:
        w3 = self._ensure_web3()
        self._latest_block = int(w3.eth.block_number)
        return self._latest_block

    def health_check(self) -> Dict[str, Any]:
        try:
            latest_block = self.get_latest_block()
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:  # pragma: no cover - health failures are diagnostic
            logger.exception("Blockchain health check failed")
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "coordinator": self.coordinator_address,
            "operator": self.account.address if self.account else None,
            "lastSeenBlock": self._last_seen_block,
        }
