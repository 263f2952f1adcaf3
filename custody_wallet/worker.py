"""
Multi-chain deposit worker.

Runs one scanner thread per configured chain. All threads share a single
stop event; shutdown waits at most the configured grace period.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from .config import ChainConfig, Settings
from .deposit import DepositCallback, DepositHandler
from .evm import EvmNode, NodeConnectionError
from .scanner import ChainScanner

logger = structlog.get_logger()

NodeFactory = Callable[[str], EvmNode]


@dataclass
class ChainWorker:
    """A running scanner and its thread."""

    chain: ChainConfig
    scanner: ChainScanner
    deposits: DepositHandler
    thread: Optional[threading.Thread] = None


class DepositWorker:
    """Starts and stops the scanners for every configured chain."""

    def __init__(
        self,
        settings: Settings,
        on_deposit: DepositCallback,
        node_factory: NodeFactory = EvmNode.connect,
    ):
        self.settings = settings
        self.on_deposit = on_deposit
        self.node_factory = node_factory
        self.stop_event = threading.Event()
        self.workers: list[ChainWorker] = []

    def _connect(self, chain: ChainConfig) -> Optional[EvmNode]:
        """Return a node for the first reachable RPC URL of a chain."""
        for rpc_url in chain.rpc_urls:
            try:
                return self.node_factory(rpc_url)
            except NodeConnectionError as e:
                logger.warning("rpc_unreachable", chain=chain.name, rpc_url=rpc_url, error=e.message)
        return None

    def build(self) -> list[ChainWorker]:
        """Create a scanner with a deposit handler for each usable chain."""
        scanner_defaults = self.settings.scanner

        for chain in self.settings.chains:
            if not chain.rpc_urls:
                logger.warning("chain_skipped_no_rpc", chain=chain.name)
                continue

            node = self._connect(chain)
            if node is None:
                logger.error("chain_skipped_unreachable", chain=chain.name)
                continue

            try:
                scanner = ChainScanner(node, chain.scanner_config(scanner_defaults), name=chain.name)
            except NodeConnectionError as e:
                logger.error("scanner_init_failed", chain=chain.name, error=str(e))
                node.close()
                continue

            if chain.chain_id is not None and chain.chain_id != scanner.chain_id:
                logger.warning(
                    "chain_id_mismatch",
                    chain=chain.name,
                    configured=chain.chain_id,
                    reported=scanner.chain_id,
                )

            deposits = DepositHandler(
                node,
                addresses=[*self.settings.watch_addresses, *chain.watch_addresses],
                callback=self.on_deposit,
            )
            scanner.add_handler(deposits)
            self.workers.append(ChainWorker(chain=chain, scanner=scanner, deposits=deposits))

        return self.workers

    def start(self) -> int:
        """Start a thread per chain. Returns the number of running scanners."""
        if not self.workers:
            self.build()

        for worker in self.workers:
            worker.thread = threading.Thread(
                target=worker.scanner.start,
                args=(self.stop_event, worker.scanner.config.poll_interval_seconds),
                name=f"scanner-{worker.chain.name}",
                daemon=True,
            )
            worker.thread.start()
            logger.info("scanner_thread_started", chain=worker.chain.name)

        return len(self.workers)

    def stop(self, grace_period: Optional[float] = None) -> None:
        """Signal every scanner to stop and wait for in-flight calls to finish."""
        if grace_period is None:
            grace_period = self.settings.scanner.shutdown_grace_seconds

        self.stop_event.set()
        deadline = time.monotonic() + grace_period

        for worker in self.workers:
            if worker.thread is not None:
                worker.thread.join(timeout=max(deadline - time.monotonic(), 0))
                if worker.thread.is_alive():
                    logger.warning("scanner_thread_still_running", chain=worker.chain.name)
            worker.scanner.close()

        logger.info("worker_stopped", scanners=len(self.workers))

    def wait(self) -> None:
        """Block until `stop_event` is set."""
        while not self.stop_event.wait(1.0):
            pass
