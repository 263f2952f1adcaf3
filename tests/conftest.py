"""
Shared fixtures: an in-memory EVM node and real signed transactions.
"""

from __future__ import annotations

from typing import Any, Optional

import pytest
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

GWEI = 1_000_000_000
ETHER = 10**18

SENDER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
SENDER = Account.from_key(SENDER_KEY).address
OTHER = Account.from_key(OTHER_KEY).address

CUSTODY_A = Web3.to_checksum_address("0x" + "aa" * 20)
CUSTODY_B = Web3.to_checksum_address("0x" + "bb" * 20)
STRANGER = Web3.to_checksum_address("0x" + "cc" * 20)


class MockEvmNode:
    """
    In-memory stand-in for EvmNode.

    Set `failures[method] = exc` to make a method raise; every call is
    appended to `calls`.
    """

    def __init__(self, chain_id: int = 1, head: int = 100, rpc_url: str = "mock://node"):
        self.rpc_url = rpc_url
        self._chain_id = chain_id
        self.head = head
        self.blocks: dict[int, dict[str, Any]] = {}
        self.receipts: dict[bytes, dict[str, Any]] = {}
        self.raw_txs: dict[bytes, bytes] = {}
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}

        self.gas_estimate = 21_000
        self.priority_fee = 2 * GWEI
        self.gas_price = 30 * GWEI
        self.base_fee: Optional[int] = 20 * GWEI
        self.receipt_status = 1

        self.failures: dict[str, Exception] = {}
        self.fail_blocks: set[int] = set()
        self.calls: list[str] = []
        self.fetched_blocks: list[int] = []
        self.estimate_calls: list[dict[str, Any]] = []
        self.sent: list[bytes] = []
        self.closed = False

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    # -- test setup helpers --

    def add_transaction(
        self, block_number: int, tx: dict[str, Any], raw: Optional[bytes] = None, status: int = 1
    ) -> None:
        block = self.blocks.setdefault(block_number, {"number": block_number, "transactions": []})
        block["transactions"].append(tx)
        key = bytes(tx["hash"])
        self.receipts[key] = {
            "transactionHash": tx["hash"],
            "blockNumber": block_number,
            "status": status,
            "gasUsed": 21_000,
        }
        if raw is not None:
            self.raw_txs[key] = raw

    # -- EvmNode interface --

    def check_connectivity(self) -> bool:
        return "check_connectivity" not in self.failures

    def block_number(self) -> int:
        self._record("block_number")
        return self.head

    def chain_id(self) -> int:
        self._record("chain_id")
        return self._chain_id

    def get_block(self, number: int) -> dict[str, Any]:
        self._record("get_block")
        self.fetched_blocks.append(number)
        if number in self.fail_blocks:
            raise RuntimeError(f"block {number} unavailable")
        return self.blocks.get(number, {"number": number, "transactions": []})

    def get_latest_header(self) -> dict[str, Any]:
        self._record("get_latest_header")
        header: dict[str, Any] = {"number": self.head}
        if self.base_fee is not None:
            header["baseFeePerGas"] = self.base_fee
        return header

    def get_receipt(self, tx_hash: bytes) -> dict[str, Any]:
        self._record("get_receipt")
        return self.receipts[bytes(tx_hash)]

    def get_raw_transaction(self, tx_hash: bytes) -> HexBytes:
        self._record("get_raw_transaction")
        return HexBytes(self.raw_txs[bytes(tx_hash)])

    def get_balance(self, address: str) -> int:
        self._record("get_balance")
        return self.balances.get(address, 0)

    def get_pending_nonce(self, address: str) -> int:
        self._record("get_pending_nonce")
        return self.nonces.get(address, 0)

    def estimate_gas(self, call: dict[str, Any]) -> int:
        self._record("estimate_gas")
        self.estimate_calls.append(call)
        return self.gas_estimate

    def suggest_priority_fee(self) -> int:
        self._record("suggest_priority_fee")
        return self.priority_fee

    def suggest_gas_price(self) -> int:
        self._record("suggest_gas_price")
        return self.gas_price

    def send_raw_transaction(self, raw_transaction: bytes) -> HexBytes:
        self._record("send_raw_transaction")
        self.sent.append(bytes(raw_transaction))
        return Web3.keccak(raw_transaction)

    def wait_for_receipt(self, tx_hash: bytes, timeout: float = 120.0, poll_latency: float = 1.0) -> dict[str, Any]:
        self._record("wait_for_receipt")
        return {
            "transactionHash": HexBytes(tx_hash),
            "blockNumber": self.head + 1,
            "status": self.receipt_status,
            "gasUsed": 21_000,
        }

    def close(self) -> None:
        self.closed = True


def signed_transfer(
    private_key: str,
    to: Optional[str],
    value: int,
    nonce: int = 0,
    chain_id: int = 1,
    dynamic: bool = False,
) -> tuple[dict[str, Any], bytes]:
    """
    Sign a transfer and return (block transaction dict, raw bytes).
    """
    tx: dict[str, Any] = {
        "nonce": nonce,
        "gas": 21_000,
        "value": value,
        "data": b"",
        "chainId": chain_id,
    }
    if to is not None:
        tx["to"] = to
    if dynamic:
        tx["maxPriorityFeePerGas"] = 2 * GWEI
        tx["maxFeePerGas"] = 50 * GWEI
    else:
        tx["gasPrice"] = 10 * GWEI

    signed = Account.sign_transaction(tx, private_key)
    block_tx = {
        "hash": HexBytes(signed.hash),
        "from": Account.from_key(private_key).address,
        "to": to,
        "value": value,
        "nonce": nonce,
        "chainId": chain_id,
    }
    return block_tx, bytes(signed.raw_transaction)


@pytest.fixture
def node() -> MockEvmNode:
    return MockEvmNode()
