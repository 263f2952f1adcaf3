"""
Tests for the multi-chain deposit worker.
"""

from custody_wallet.config import Settings
from custody_wallet.evm import NodeConnectionError
from custody_wallet.worker import DepositWorker

from conftest import CUSTODY_A, CUSTODY_B, MockEvmNode, SENDER_KEY, signed_transfer


class NodePool:
    """node_factory that hands out mock nodes per RPC URL."""

    def __init__(self, nodes: dict[str, MockEvmNode]):
        self.nodes = nodes
        self.requested: list[str] = []

    def __call__(self, rpc_url: str) -> MockEvmNode:
        self.requested.append(rpc_url)
        if rpc_url not in self.nodes:
            raise NodeConnectionError(rpc_url, "connection refused")
        return self.nodes[rpc_url]


def make_settings(**overrides) -> Settings:
    data = {
        "chains": [
            {"name": "mainnet", "chain_id": 1, "rpc_urls": ["rpc://mainnet"]},
            {"name": "bsc", "chain_id": 56, "rpc_urls": ["rpc://bsc"], "watch_addresses": [CUSTODY_B]},
        ],
        "watch_addresses": [CUSTODY_A],
        "scanner": {"start_block": 10, "confirm_blocks": 1, "poll_interval_seconds": 0.01},
    }
    data.update(overrides)
    return Settings(**data)


class TestBuild:
    """Tests for per-chain scanner construction."""

    def test_one_scanner_per_chain(self):
        pool = NodePool({"rpc://mainnet": MockEvmNode(chain_id=1), "rpc://bsc": MockEvmNode(chain_id=56)})
        worker = DepositWorker(make_settings(), on_deposit=lambda d: None, node_factory=pool)

        workers = worker.build()

        assert [w.chain.name for w in workers] == ["mainnet", "bsc"]
        assert workers[0].scanner.cursor == 10

    def test_watch_addresses_are_merged(self):
        pool = NodePool({"rpc://mainnet": MockEvmNode(chain_id=1), "rpc://bsc": MockEvmNode(chain_id=56)})
        workers = DepositWorker(make_settings(), on_deposit=lambda d: None, node_factory=pool).build()

        assert workers[0].deposits.watch_addresses == frozenset({CUSTODY_A})
        assert workers[1].deposits.watch_addresses == frozenset({CUSTODY_A, CUSTODY_B})

    def test_unreachable_chain_is_skipped(self):
        pool = NodePool({"rpc://bsc": MockEvmNode(chain_id=56)})
        workers = DepositWorker(make_settings(), on_deposit=lambda d: None, node_factory=pool).build()
        assert [w.chain.name for w in workers] == ["bsc"]

    def test_chain_without_rpc_is_skipped(self):
        settings = make_settings(chains=[{"name": "empty"}])
        pool = NodePool({})
        workers = DepositWorker(settings, on_deposit=lambda d: None, node_factory=pool).build()

        assert workers == []
        assert pool.requested == []

    def test_falls_back_to_next_rpc(self):
        settings = make_settings(
            chains=[{"name": "mainnet", "rpc_urls": ["rpc://down", "rpc://up"]}]
        )
        pool = NodePool({"rpc://up": MockEvmNode(chain_id=1)})
        workers = DepositWorker(settings, on_deposit=lambda d: None, node_factory=pool).build()

        assert len(workers) == 1
        assert pool.requested == ["rpc://down", "rpc://up"]

    def test_scanner_init_failure_closes_node(self):
        broken = MockEvmNode(chain_id=1)
        broken.failures["block_number"] = RuntimeError("boom")
        settings = make_settings(chains=[{"name": "mainnet", "rpc_urls": ["rpc://mainnet"]}])

        workers = DepositWorker(
            settings, on_deposit=lambda d: None, node_factory=NodePool({"rpc://mainnet": broken})
        ).build()

        assert workers == []
        assert broken.closed

    def test_per_chain_scanner_overrides(self):
        settings = make_settings(
            chains=[{"name": "mainnet", "rpc_urls": ["rpc://mainnet"], "confirm_blocks": 5}]
        )
        pool = NodePool({"rpc://mainnet": MockEvmNode(chain_id=1)})
        workers = DepositWorker(settings, on_deposit=lambda d: None, node_factory=pool).build()

        assert workers[0].scanner.config.confirm_blocks == 5
        assert workers[0].scanner.config.start_block == 10


class TestRun:
    """Tests for threaded scanning and shutdown."""

    def test_deposits_reported_from_every_chain(self):
        mainnet = MockEvmNode(chain_id=1, head=20)
        bsc = MockEvmNode(chain_id=56, head=20)
        tx1, raw1 = signed_transfer(SENDER_KEY, CUSTODY_A, 111, chain_id=1)
        tx2, raw2 = signed_transfer(SENDER_KEY, CUSTODY_B, 222, chain_id=56)
        mainnet.add_transaction(11, tx1, raw1)
        bsc.add_transaction(12, tx2, raw2)

        found = []
        worker = DepositWorker(
            make_settings(),
            on_deposit=found.append,
            node_factory=NodePool({"rpc://mainnet": mainnet, "rpc://bsc": bsc}),
        )

        assert worker.start() == 2
        for w in worker.workers:
            assert w.thread.name == f"scanner-{w.chain.name}"

        deadline = 200
        while len(found) < 2 and deadline:
            worker.stop_event.wait(0.01)
            deadline -= 1
        worker.stop(grace_period=2)

        assert sorted(d.value for d in found) == [111, 222]
        assert all(not w.thread.is_alive() for w in worker.workers)
        assert mainnet.closed and bsc.closed

    def test_stop_without_start(self):
        pool = NodePool({"rpc://mainnet": MockEvmNode(chain_id=1), "rpc://bsc": MockEvmNode(chain_id=56)})
        worker = DepositWorker(make_settings(), on_deposit=lambda d: None, node_factory=pool)
        worker.build()

        worker.stop(grace_period=0)

        assert worker.stop_event.is_set()
        assert all(w.scanner.node.closed for w in worker.workers)
