"""
Pydantic models for API requests and responses.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .gas import Speed


# ============================================================================
# Health
# ============================================================================

class HealthResponse(BaseModel):
    """Service status."""

    status: str = Field(..., description="ok or degraded")
    version: str
    chain: str = Field(..., description="Chain served by this API")
    chain_id: Optional[int] = None
    evm_rpc: bool = Field(..., description="Whether the node answers")


# ============================================================================
# Balance
# ============================================================================

class BalanceResponse(BaseModel):
    """Native balance of an address."""

    address: str
    balance_wei: str = Field(..., description="Balance in wei (decimal string)")
    balance: str = Field(..., description="Balance in ETH for display")


# ============================================================================
# Gas Estimate
# ============================================================================

class GasEstimateRequest(BaseModel):
    """Request gas parameters for a pending call."""

    sender: str = Field(..., description="Sender address (0x...)")
    receiver: Optional[str] = Field(None, description="Receiver address; omit for contract creation")
    amount: str = Field("0", description="Amount in ETH")
    data: str = Field("", description="Call data (hex)")
    speed: str = Field(Speed.NORMAL.value, description="slow, normal or fast; unknown tiers act as normal")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "sender": "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
                    "receiver": "0x1234567890123456789012345678901234567890",
                    "amount": "0.1",
                    "speed": "fast",
                }
            ]
        }
    }


class GasEstimateResponse(BaseModel):
    """Suggested gas parameters. Wei values are decimal strings."""

    gas_limit: int
    is_legacy: bool
    gas_price: Optional[str] = None
    max_priority_fee: Optional[str] = None
    max_fee: Optional[str] = None
    max_cost: str = Field(..., description="Upper bound of the fee in ETH")


# ============================================================================
# Risk Check
# ============================================================================

class RiskCheckRequest(BaseModel):
    """Preview the compliance decision for a transfer."""

    sender: str
    receiver: str
    amount: str = Field(..., description="Amount in ETH")


class RiskCheckResponse(BaseModel):
    passed: bool
    risk: str = Field(..., description="none, low, medium or high")
    reason: str = ""


# ============================================================================
# Transfer
# ============================================================================

class TransferApiRequest(BaseModel):
    """Send a transfer from the hot wallet."""

    receiver: str = Field(..., description="Receiver address (0x...)")
    amount: str = Field(..., description="Amount in ETH")
    speed: str = Field(Speed.NORMAL.value)


class TransferApiResponse(BaseModel):
    success: bool
    tx_hash: str
    block_number: int
    gas_used: int
