"""
Tests for the confirmed-block scanner.
"""

import threading
import time

import pytest

from custody_wallet.config import ScannerConfig
from custody_wallet.evm import NodeConnectionError
from custody_wallet.scanner import ChainScanner

from conftest import CUSTODY_A, MockEvmNode, SENDER_KEY, signed_transfer


class RecordingHandler:
    def __init__(self):
        self.blocks: list[int] = []
        self.txs: list[tuple[int, bytes]] = []

    def handle_block(self, block):
        self.blocks.append(block["number"])

    def handle_transaction(self, tx, receipt):
        self.txs.append((receipt["blockNumber"], bytes(tx["hash"])))


class FailingHandler:
    def __init__(self):
        self.calls = 0

    def handle_block(self, block):
        self.calls += 1
        raise RuntimeError("handler bug")

    def handle_transaction(self, tx, receipt):
        self.calls += 1
        raise RuntimeError("handler bug")


def make_scanner(node: MockEvmNode, **config) -> ChainScanner:
    config.setdefault("confirm_blocks", 12)
    config.setdefault("batch_size", 10)
    return ChainScanner(node, ScannerConfig(**config), name="test")


class TestCursor:
    """Tests for cursor initialisation and advancement."""

    def test_start_block_zero_uses_head(self, node):
        node.head = 500
        scanner = make_scanner(node, start_block=0)
        assert scanner.cursor == 500

    def test_explicit_start_block(self, node):
        scanner = make_scanner(node, start_block=42)
        assert scanner.cursor == 42

    def test_batch_is_capped_by_confirmations(self, node):
        """head 100, confirm 12, cursor 80: scans 80..88 only."""
        node.head = 100
        scanner = make_scanner(node, start_block=80)

        advanced = scanner.run_once()

        assert advanced == 9
        assert node.fetched_blocks == list(range(80, 89))
        assert scanner.cursor == 89

    def test_batch_is_capped_by_batch_size(self, node):
        node.head = 1000
        scanner = make_scanner(node, start_block=100, batch_size=5)

        assert scanner.run_once() == 5
        assert node.fetched_blocks == [100, 101, 102, 103, 104]
        assert scanner.cursor == 105

    def test_waits_for_confirmations(self, node):
        node.head = 100
        scanner = make_scanner(node, start_block=89)

        assert scanner.run_once() == 0
        assert node.fetched_blocks == []
        assert scanner.cursor == 89

    def test_cursor_never_passes_confirmed_head(self, node):
        node.head = 50
        scanner = make_scanner(node, start_block=1, confirm_blocks=3, batch_size=7)
        previous = scanner.cursor

        for head in range(50, 80, 4):
            node.head = head
            scanner.run_once()
            assert scanner.cursor >= previous
            assert scanner.cursor <= head - 3 + 1
            previous = scanner.cursor

        assert node.fetched_blocks == sorted(node.fetched_blocks)
        assert len(node.fetched_blocks) == len(set(node.fetched_blocks))

    def test_zero_confirmations_scans_head(self, node):
        node.head = 10
        scanner = make_scanner(node, start_block=8, confirm_blocks=0)
        scanner.run_once()
        assert node.fetched_blocks == [8, 9, 10]


class TestDispatch:
    """Tests for handler dispatch and error isolation."""

    def test_blocks_and_transactions_in_order(self, node):
        node.head = 100
        tx1, raw1 = signed_transfer(SENDER_KEY, CUSTODY_A, 1, nonce=0)
        tx2, raw2 = signed_transfer(SENDER_KEY, CUSTODY_A, 2, nonce=1)
        tx3, raw3 = signed_transfer(SENDER_KEY, CUSTODY_A, 3, nonce=2)
        node.add_transaction(11, tx1, raw1)
        node.add_transaction(11, tx2, raw2)
        node.add_transaction(13, tx3, raw3)

        scanner = make_scanner(node, start_block=10, batch_size=5)
        handler = RecordingHandler()
        scanner.add_handler(handler)
        scanner.run_once()

        assert handler.blocks == [10, 11, 12, 13, 14]
        assert handler.txs == [
            (11, bytes(tx1["hash"])),
            (11, bytes(tx2["hash"])),
            (13, bytes(tx3["hash"])),
        ]

    def test_failing_handler_does_not_block_others(self, node):
        node.head = 100
        tx, raw = signed_transfer(SENDER_KEY, CUSTODY_A, 1)
        node.add_transaction(10, tx, raw)

        scanner = make_scanner(node, start_block=10, batch_size=2)
        failing = FailingHandler()
        recording = RecordingHandler()
        scanner.add_handler(failing)
        scanner.add_handler(recording)

        assert scanner.run_once() == 2
        assert failing.calls == 3
        assert recording.blocks == [10, 11]
        assert len(recording.txs) == 1

    def test_failing_block_is_skipped(self, node):
        """The cursor moves past a block that cannot be fetched."""
        node.head = 100
        node.fail_blocks.add(11)
        scanner = make_scanner(node, start_block=10, batch_size=3)
        handler = RecordingHandler()
        scanner.add_handler(handler)

        assert scanner.run_once() == 3
        assert handler.blocks == [10, 12]
        assert scanner.cursor == 13

    def test_missing_receipt_skips_transaction(self, node):
        node.head = 100
        tx1, raw1 = signed_transfer(SENDER_KEY, CUSTODY_A, 1, nonce=0)
        tx2, raw2 = signed_transfer(SENDER_KEY, CUSTODY_A, 2, nonce=1)
        node.add_transaction(10, tx1, raw1)
        node.add_transaction(10, tx2, raw2)
        del node.receipts[bytes(tx1["hash"])]

        scanner = make_scanner(node, start_block=10, batch_size=1)
        handler = RecordingHandler()
        scanner.add_handler(handler)
        scanner.run_once()

        assert handler.txs == [(10, bytes(tx2["hash"]))]

    def test_no_handlers(self, node):
        node.head = 100
        scanner = make_scanner(node, start_block=10, batch_size=3)
        assert scanner.run_once() == 3


class TestLifecycle:
    """Tests for construction, stop and close."""

    def test_unreachable_node_raises(self):
        node = MockEvmNode()
        node.failures["chain_id"] = RuntimeError("connection refused")
        with pytest.raises(NodeConnectionError):
            make_scanner(node)

    def test_stop_event_halts_between_blocks(self, node):
        node.head = 100
        stop = threading.Event()

        class StopAfterFirst(RecordingHandler):
            def handle_block(self, block):
                super().handle_block(block)
                stop.set()

        scanner = make_scanner(node, start_block=10, batch_size=5)
        handler = StopAfterFirst()
        scanner.add_handler(handler)

        assert scanner.run_once(stop) == 1
        assert handler.blocks == [10]
        assert scanner.cursor == 11

    def test_start_returns_when_stopped(self, node):
        stop = threading.Event()
        stop.set()
        scanner = make_scanner(node, start_block=10)
        scanner.start(stop, poll_interval=0.01)
        assert node.fetched_blocks == []

    def test_start_survives_tick_failures(self, node):
        scanner = make_scanner(node, start_block=10)
        node.failures["block_number"] = RuntimeError("timeout")
        stop = threading.Event()

        thread = threading.Thread(target=scanner.start, args=(stop, 0.01))
        thread.start()
        time.sleep(0.1)
        assert thread.is_alive()

        stop.set()
        thread.join(timeout=2)
        assert not thread.is_alive()
        assert node.calls.count("block_number") > 1

    def test_close_releases_node(self, node):
        scanner = make_scanner(node)
        scanner.close()
        assert node.closed
