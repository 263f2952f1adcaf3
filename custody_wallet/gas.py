"""
Gas parameter estimation for legacy and EIP-1559 transactions.

All fee arithmetic is done on integers in wei. Multipliers are expressed
in tenths so that 1.1x becomes `* 11 // 10`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

import structlog
from web3.types import TxParams

from .evm import EvmNode, to_address

logger = structlog.get_logger()


class Speed(str, Enum):
    """Fee urgency tier."""

    SLOW = "slow"  # cheapest
    NORMAL = "normal"  # recommended
    FAST = "fast"  # next block


# Multipliers in tenths
SPEED_MULTIPLIERS: dict[Speed, int] = {
    Speed.SLOW: 10,
    Speed.NORMAL: 11,
    Speed.FAST: 15,
}

# Chains that use a single gasPrice field instead of base fee + tip
LEGACY_CHAIN_IDS = frozenset(
    {
        56,  # BSC
        97,  # BSC testnet
        137,  # Polygon
        80002,  # Polygon Amoy testnet
    }
)

GAS_LIMIT_BUFFER_PERCENT = 120
LEGACY_PRICE_BUMP_WEI = 1_000_000_000  # 1 gwei


class EstimationError(Exception):
    """An upstream node call failed while estimating gas parameters."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"{step} failed: {cause}")


@dataclass(frozen=True)
class GasParams:
    """Gas parameters for one transaction."""

    gas_limit: int
    is_legacy: bool
    gas_price: Optional[int] = None  # legacy only
    max_priority_fee: Optional[int] = None  # EIP-1559 only
    max_fee: Optional[int] = None  # EIP-1559 only

    @property
    def max_cost(self) -> int:
        """Upper bound of the fee in wei (gas_limit x price or fee cap)."""
        per_gas = self.gas_price if self.is_legacy else self.max_fee
        return self.gas_limit * (per_gas or 0)


def parse_speed(value: Union[Speed, str, None]) -> Speed:
    """Map any input to a speed tier; unknown values fall back to normal."""
    try:
        return Speed(value)
    except ValueError:
        return Speed.NORMAL


def speed_multiplier(speed: Union[Speed, str, None]) -> int:
    """Multiplier in tenths for a speed tier."""
    return SPEED_MULTIPLIERS[parse_speed(speed)]


def is_legacy_chain(chain_id: int) -> bool:
    return chain_id in LEGACY_CHAIN_IDS


def legacy_gas_price(suggested_price: int, multiplier: int) -> int:
    """gasPrice = suggested x multiplier / 10 + 1 gwei."""
    return suggested_price * multiplier // 10 + LEGACY_PRICE_BUMP_WEI


def dynamic_fees(
    suggested_tip: int, base_fee: int, multiplier: int
) -> tuple[int, int]:
    """
    Compute (tip, fee cap) for an EIP-1559 transaction.

    The fee cap is raised to the tip when the arithmetic would leave it lower.
    """
    tip = suggested_tip * multiplier // 10
    fee_cap = (base_fee + tip) * multiplier // 10
    if fee_cap < tip:
        fee_cap = tip
    return tip, fee_cap


class FeeEstimator:
    """Suggests gas parameters from live node data."""

    def __init__(self, node: EvmNode):
        self.node = node

    def _call(self, step: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception as e:
            logger.warning("gas_estimation_step_failed", step=step, error=str(e))
            raise EstimationError(step, e) from e

    def suggest(
        self,
        sender: str,
        receiver: Optional[str],
        value: int,
        data: bytes = b"",
        speed: Union[Speed, str] = Speed.NORMAL,
    ) -> GasParams:
        """
        Estimate gas parameters for a pending call.

        Args:
            sender: Sending address
            receiver: Receiving address, or None for contract creation
            value: Amount in wei
            data: Call data
            speed: Urgency tier; unknown tiers behave as normal

        Raises:
            EstimationError: if any node call fails
        """
        call: TxParams = {"from": to_address(sender), "value": value}
        if receiver is not None:
            call["to"] = to_address(receiver)
        if data:
            call["data"] = data

        estimated = self._call("estimate gas", self.node.estimate_gas, call)
        gas_limit = estimated * GAS_LIMIT_BUFFER_PERCENT // 100

        chain_id = self._call("get chain id", self.node.chain_id)
        multiplier = speed_multiplier(speed)

        if is_legacy_chain(chain_id):
            suggested_price = self._call("suggest gas price", self.node.suggest_gas_price)
            return GasParams(
                gas_limit=gas_limit,
                is_legacy=True,
                gas_price=legacy_gas_price(suggested_price, multiplier),
            )

        suggested_tip = self._call("suggest priority fee", self.node.suggest_priority_fee)
        suggested_price = self._call("suggest gas price", self.node.suggest_gas_price)
        header = self._call("get latest header", self.node.get_latest_header)

        base_fee = header.get("baseFeePerGas")
        if base_fee is None:
            # Pre-London header: the suggested price stands in for the base fee
            base_fee = suggested_price

        tip, fee_cap = dynamic_fees(suggested_tip, base_fee, multiplier)
        return GasParams(
            gas_limit=gas_limit,
            is_legacy=False,
            max_priority_fee=tip,
            max_fee=fee_cap,
        )


def build_transaction(
    nonce: int,
    to: Optional[str],
    value: int,
    data: bytes,
    params: GasParams,
    chain_id: int,
) -> dict[str, Any]:
    """Build an unsigned transaction dict for the fee model in `params`."""
    tx: dict[str, Any] = {
        "chainId": chain_id,
        "nonce": nonce,
        "value": value,
        "gas": params.gas_limit,
        "data": data,
    }
    if to is not None:
        tx["to"] = to_address(to)

    if params.is_legacy:
        tx["gasPrice"] = params.gas_price
    else:
        tx["type"] = 2
        tx["maxPriorityFeePerGas"] = params.max_priority_fee
        tx["maxFeePerGas"] = params.max_fee
    return tx
