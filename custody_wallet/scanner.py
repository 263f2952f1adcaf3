"""
Confirmed-block scanner.

Polls an EVM node, keeps a cursor on the next block to scan and hands
every confirmed block and transaction to the registered handlers.
A failing handler or block is logged and skipped; the cursor always
moves forward.
"""

import threading
from typing import Optional, Protocol

import structlog
from web3.types import BlockData, TxData, TxReceipt

from .config import ScannerConfig
from .evm import EvmNode, NodeConnectionError, tx_hash_hex

logger = structlog.get_logger()


class Handler(Protocol):
    """Consumer of scanned blocks and transactions."""

    def handle_block(self, block: BlockData) -> None:
        ...

    def handle_transaction(self, tx: TxData, receipt: TxReceipt) -> None:
        ...


class ChainScanner:
    """
    Scans one chain in ascending block order.

    The cursor never points past `head - confirm_blocks + 1`, so a block is
    only scanned once it has the configured number of confirmations.
    """

    def __init__(self, node: EvmNode, config: ScannerConfig, name: str = ""):
        self.node = node
        self.config = config
        self.name = name
        self.handlers: list[Handler] = []

        try:
            self.chain_id = node.chain_id()
            head = node.block_number()
        except Exception as e:
            raise NodeConnectionError(getattr(node, "rpc_url", name), str(e)) from e

        self._cursor = config.start_block if config.start_block > 0 else head

        logger.info(
            "scanner_initialized",
            chain=name,
            chain_id=self.chain_id,
            start_block=self._cursor,
            confirm_blocks=config.confirm_blocks,
            batch_size=config.batch_size,
        )

    @property
    def cursor(self) -> int:
        """Next block height to scan."""
        return self._cursor

    def add_handler(self, handler: Handler) -> None:
        self.handlers.append(handler)

    def start(self, stop_event: threading.Event, poll_interval: Optional[float] = None) -> None:
        """
        Scan until `stop_event` is set.

        Each tick waits `poll_interval` seconds, then scans one batch.
        Tick failures (e.g. node unreachable) are logged and retried on the
        next tick.
        """
        interval = poll_interval if poll_interval is not None else self.config.poll_interval_seconds
        logger.info("scanner_starting", chain=self.name, chain_id=self.chain_id, cursor=self._cursor)

        while not stop_event.wait(interval):
            try:
                self.run_once(stop_event)
            except Exception as e:
                logger.error("scan_tick_failed", chain=self.name, cursor=self._cursor, error=str(e))

        logger.info("scanner_stopped", chain=self.name, cursor=self._cursor)

    def run_once(self, stop_event: Optional[threading.Event] = None) -> int:
        """
        Scan one batch of confirmed blocks.

        Returns the number of blocks the cursor advanced by.
        """
        head = self.node.block_number()
        confirmed_head = head - self.config.confirm_blocks
        if self._cursor > confirmed_head:
            return 0

        start = self._cursor
        end = min(start + self.config.batch_size - 1, confirmed_head)
        logger.info("scanning_blocks", chain=self.name, start=start, end=end, head=head)

        for number in range(start, end + 1):
            if stop_event is not None and stop_event.is_set():
                break
            try:
                self.scan_block(number)
            except Exception as e:
                logger.error("block_scan_failed", chain=self.name, block=number, error=str(e))
            self._cursor = number + 1

        return self._cursor - start

    def scan_block(self, number: int) -> None:
        """Fetch one block and dispatch it and its transactions to every handler."""
        block = self.node.get_block(number)
        handlers = tuple(self.handlers)

        for handler in handlers:
            try:
                handler.handle_block(block)
            except Exception as e:
                logger.error(
                    "block_handler_failed",
                    chain=self.name,
                    block=number,
                    handler=type(handler).__name__,
                    error=str(e),
                )

        for tx in block.get("transactions", []):
            tx_hash = tx["hash"]
            try:
                receipt = self.node.get_receipt(tx_hash)
            except Exception as e:
                logger.error(
                    "receipt_fetch_failed",
                    chain=self.name,
                    block=number,
                    tx_hash=tx_hash_hex(tx_hash),
                    error=str(e),
                )
                continue

            for handler in handlers:
                try:
                    handler.handle_transaction(tx, receipt)
                except Exception as e:
                    logger.error(
                        "transaction_handler_failed",
                        chain=self.name,
                        block=number,
                        tx_hash=tx_hash_hex(tx_hash),
                        handler=type(handler).__name__,
                        error=str(e),
                    )

    def close(self) -> None:
        """Release the node connection."""
        self.node.close()
        logger.info("scanner_closed", chain=self.name)
