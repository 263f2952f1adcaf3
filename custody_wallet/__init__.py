"""
Custody Wallet

Watches EVM chains for deposits into custodial addresses, gates outgoing
transfers through compliance rules and sends them with speed-tiered gas
parameters.

Usage:
    # Scan every configured chain for deposits
    custody-wallet scan --config config.yaml

    # Compare gas parameters for all speed tiers
    custody-wallet compare-speeds --rpc-url https://... --from 0x... --to 0x...

    # Send a transfer
    custody-wallet transfer --rpc-url https://... --to 0x... --amount 0.01
"""

__version__ = "0.1.0"

from .config import ChainConfig, RiskConfig, ScannerConfig, Settings, load_settings
from .deposit import Deposit, DepositHandler
from .evm import EvmNode, NodeConnectionError
from .gas import EstimationError, FeeEstimator, GasParams, Speed, build_transaction
from .risk import CheckResult, ComplianceGate, RiskLevel
from .scanner import ChainScanner, Handler
from .transfer import TransferError, TransferExecutor, TransferRequest, TransferResult
from .worker import DepositWorker

__all__ = [
    "__version__",
    "ChainConfig",
    "RiskConfig",
    "ScannerConfig",
    "Settings",
    "load_settings",
    "Deposit",
    "DepositHandler",
    "EvmNode",
    "NodeConnectionError",
    "EstimationError",
    "FeeEstimator",
    "GasParams",
    "Speed",
    "build_transaction",
    "CheckResult",
    "ComplianceGate",
    "RiskLevel",
    "ChainScanner",
    "Handler",
    "TransferError",
    "TransferExecutor",
    "TransferRequest",
    "TransferResult",
    "DepositWorker",
]
