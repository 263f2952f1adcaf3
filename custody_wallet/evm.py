"""
EVM node access for the scanner, fee estimator and transfer executor.

Wraps a synchronous web3 HTTP connection and exposes only the node
operations the wallet pipeline needs.
"""

from typing import Any, Optional, Union

import requests
import structlog
from hexbytes import HexBytes
from web3 import Web3
from web3.types import BlockData, TxParams, TxReceipt

logger = structlog.get_logger()

TxHash = Union[HexBytes, bytes, str]


class NodeConnectionError(Exception):
    """The node could not be reached."""

    def __init__(self, rpc_url: str, message: str):
        self.rpc_url = rpc_url
        self.message = message
        super().__init__(f"Cannot reach node at {rpc_url}: {message}")


def to_address(value: str) -> str:
    """Validate an address string and return its checksummed form."""
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"Invalid EVM address: {value!r}")
    return Web3.to_checksum_address(value)


class EvmNode:
    """
    Synchronous client for a single EVM JSON-RPC endpoint.

    Every method maps to one node call; errors from web3 propagate
    unchanged so callers can decide how to classify them.
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0):
        self.rpc_url = rpc_url
        self._session = requests.Session()
        self.w3 = Web3(
            Web3.HTTPProvider(
                rpc_url,
                request_kwargs={"timeout": timeout},
                session=self._session,
            )
        )

    @classmethod
    def connect(cls, rpc_url: str, timeout: float = 30.0) -> "EvmNode":
        """Create a node client and fail fast if the endpoint is unreachable."""
        node = cls(rpc_url, timeout=timeout)
        try:
            chain_id = node.chain_id()
        except Exception as e:
            node.close()
            raise NodeConnectionError(rpc_url, str(e)) from e

        logger.info("evm_node_connected", rpc_url=rpc_url, chain_id=chain_id)
        return node

    def check_connectivity(self) -> bool:
        """Return True if the node answers."""
        try:
            return self.w3.is_connected()
        except Exception:
            return False

    def block_number(self) -> int:
        """Current chain head height."""
        return self.w3.eth.block_number

    def chain_id(self) -> int:
        return self.w3.eth.chain_id

    def get_block(self, number: int) -> BlockData:
        """Get a block with full transaction objects."""
        return self.w3.eth.get_block(number, full_transactions=True)

    def get_latest_header(self) -> BlockData:
        """Get the latest block without transaction bodies (used for base fee)."""
        return self.w3.eth.get_block("latest")

    def get_receipt(self, tx_hash: TxHash) -> TxReceipt:
        return self.w3.eth.get_transaction_receipt(tx_hash)

    def get_raw_transaction(self, tx_hash: TxHash) -> HexBytes:
        """Get the signed, serialized transaction bytes."""
        return self.w3.eth.get_raw_transaction(tx_hash)

    def get_balance(self, address: str) -> int:
        return self.w3.eth.get_balance(to_address(address))

    def get_pending_nonce(self, address: str) -> int:
        """Next nonce for an address, counting pending transactions."""
        return self.w3.eth.get_transaction_count(to_address(address), "pending")

    def estimate_gas(self, call: TxParams) -> int:
        return self.w3.eth.estimate_gas(call)

    def suggest_priority_fee(self) -> int:
        return self.w3.eth.max_priority_fee

    def suggest_gas_price(self) -> int:
        return self.w3.eth.gas_price

    def send_raw_transaction(self, raw_transaction: bytes) -> HexBytes:
        return self.w3.eth.send_raw_transaction(raw_transaction)

    def wait_for_receipt(
        self,
        tx_hash: TxHash,
        timeout: float = 120.0,
        poll_latency: float = 1.0,
    ) -> TxReceipt:
        """Block until the transaction is mined or the timeout expires."""
        return self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency
        )

    def close(self) -> None:
        """Release the HTTP session."""
        self._session.close()
        logger.debug("evm_node_closed", rpc_url=self.rpc_url)


def receipt_succeeded(receipt: Any) -> bool:
    """True if a receipt reports successful execution."""
    return receipt.get("status") == 1


def tx_hash_hex(tx_hash: Optional[TxHash]) -> str:
    """0x-prefixed hex form of a transaction hash."""
    if tx_hash is None:
        return ""
    return Web3.to_hex(HexBytes(tx_hash))
