"""
Deposit detection for custodial addresses.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import structlog
from eth_account import Account
from web3.types import BlockData, TxData, TxReceipt

from .evm import EvmNode, receipt_succeeded, to_address, tx_hash_hex
from .units import format_ether

logger = structlog.get_logger()


@dataclass(frozen=True)
class Deposit:
    """A native-coin transfer into a watched address."""

    tx_hash: str
    block_number: int
    sender: str
    receiver: str
    value: int  # wei
    success: bool


DepositCallback = Callable[[Deposit], None]


class DepositHandler:
    """
    Scanner handler that reports value transfers into watched addresses.

    The callback runs synchronously on the scanner thread.
    """

    def __init__(
        self,
        node: EvmNode,
        addresses: Iterable[str] = (),
        callback: Optional[DepositCallback] = None,
    ):
        self.node = node
        self.callback = callback
        self._lock = threading.Lock()
        self._watch: frozenset[str] = frozenset(to_address(a) for a in addresses)

    @property
    def watch_addresses(self) -> frozenset[str]:
        return self._watch

    def add_watch_address(self, address: str) -> None:
        """Start watching an address. Safe to call while scanning."""
        address = to_address(address)
        with self._lock:
            self._watch = self._watch | {address}
        logger.info("watch_address_added", address=address, watched=len(self._watch))

    def is_watched(self, address: str) -> bool:
        return to_address(address) in self._watch

    def handle_block(self, block: BlockData) -> None:
        pass

    def handle_transaction(self, tx: TxData, receipt: TxReceipt) -> None:
        to = tx.get("to")
        if to is None:
            return  # contract creation

        if tx.get("value", 0) == 0:
            return

        receiver = to_address(to)
        if receiver not in self._watch:
            return

        sender = self.recover_sender(tx)

        deposit = Deposit(
            tx_hash=tx_hash_hex(tx["hash"]),
            block_number=receipt["blockNumber"],
            sender=sender,
            receiver=receiver,
            value=tx["value"],
            success=receipt_succeeded(receipt),
        )

        logger.info(
            "deposit_detected",
            sender=deposit.sender,
            receiver=deposit.receiver,
            value_eth=format_ether(deposit.value),
            tx_hash=deposit.tx_hash,
            block=deposit.block_number,
            success=deposit.success,
        )

        if self.callback is not None:
            self.callback(deposit)

    def recover_sender(self, tx: TxData) -> str:
        """
        Recover the signer of a transaction from its signature.

        The serialized transaction carries the chain id (EIP-155 / typed
        envelopes), so recovery does not trust the node's `from` field.
        """
        raw = self.node.get_raw_transaction(tx["hash"])
        return Account.recover_transaction(raw)
