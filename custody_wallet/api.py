"""
Custody Wallet API - HTTP access to balances, gas estimates, compliance
checks and hot-wallet transfers.

Endpoints:
- GET  /health
- GET  /api/v1/balance?address=0x...
- POST /api/v1/gas/estimate
- POST /api/v1/risk/check
- POST /api/v1/transfer   (X-API-Key when api_token is configured)
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import structlog
from eth_account import Account
from fastapi import Depends, FastAPI, HTTPException, Query, Request

from . import __version__
from .auth import verify_api_token
from .config import Settings, load_settings
from .evm import EvmNode, NodeConnectionError
from .gas import EstimationError, FeeEstimator
from .models import (
    BalanceResponse,
    GasEstimateRequest,
    GasEstimateResponse,
    HealthResponse,
    RiskCheckRequest,
    RiskCheckResponse,
    TransferApiRequest,
    TransferApiResponse,
)
from .risk import ComplianceGate
from .transfer import (
    ComplianceRejectedError,
    CredentialMismatchError,
    InsufficientBalanceError,
    TransferError,
    TransferExecutor,
    TransferRequest,
)
from .units import ether_to_wei, format_ether

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@dataclass
class WalletServices:
    """Node-backed components shared by all requests."""

    chain: str
    node: EvmNode
    estimator: FeeEstimator
    compliance: ComplianceGate
    executor: TransferExecutor


def build_services(settings: Settings) -> WalletServices:
    """Connect to the API chain and wire up estimator, gate and executor."""
    chain = settings.get_chain()

    node: Optional[EvmNode] = None
    for rpc_url in chain.rpc_urls:
        try:
            node = EvmNode.connect(rpc_url)
            break
        except NodeConnectionError as e:
            logger.warning("rpc_unreachable", chain=chain.name, rpc_url=rpc_url, error=e.message)
    if node is None:
        raise NodeConnectionError(",".join(chain.rpc_urls) or "<none>", f"no reachable RPC for {chain.name}")

    estimator = FeeEstimator(node)
    compliance = ComplianceGate(settings.risk)
    return WalletServices(
        chain=chain.name,
        node=node,
        estimator=estimator,
        compliance=compliance,
        executor=TransferExecutor(node, estimator=estimator, compliance=compliance),
    )


def get_services(request: Request) -> WalletServices:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Node connection not initialized")
    return services


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _parse_amount(amount: str) -> int:
    try:
        return ether_to_wei(amount)
    except (ValueError, ArithmeticError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid amount {amount!r}: {e}")


def _wei(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[WalletServices] = None,
) -> FastAPI:
    """
    Create the API application.

    When `services` is given it is used as is; otherwise the node
    connection is opened at startup and closed at shutdown.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = app.state.services is None
        if owned:
            app.state.services = build_services(settings)

        logger.info(
            "API started",
            version=__version__,
            chain=app.state.services.chain,
            host=settings.server.host,
            port=settings.server.port,
        )

        yield

        if owned:
            app.state.services.node.close()
        logger.info("API stopped")

    app = FastAPI(
        title="Custody Wallet API",
        description="Balances, gas estimates, compliance checks and transfers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health", response_model=HealthResponse)
    def health_check(svc: WalletServices = Depends(get_services)) -> HealthResponse:
        """Service status and node connectivity."""
        evm_ok = svc.node.check_connectivity()
        chain_id = None
        if evm_ok:
            try:
                chain_id = svc.node.chain_id()
            except Exception as e:
                logger.warning("health_chain_id_failed", error=str(e))
                evm_ok = False

        return HealthResponse(
            status="ok" if evm_ok else "degraded",
            version=__version__,
            chain=svc.chain,
            chain_id=chain_id,
            evm_rpc=evm_ok,
        )

    # ========================================================================
    # Balance
    # ========================================================================

    @app.get("/api/v1/balance", response_model=BalanceResponse)
    def get_balance(
        address: str = Query(..., description="Address to query"),
        svc: WalletServices = Depends(get_services),
    ) -> BalanceResponse:
        try:
            wei = svc.node.get_balance(address)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error("balance_query_failed", address=address, error=str(e))
            raise HTTPException(status_code=502, detail=f"Node error: {e}")

        return BalanceResponse(address=address, balance_wei=str(wei), balance=format_ether(wei))

    # ========================================================================
    # Gas Estimate
    # ========================================================================

    @app.post("/api/v1/gas/estimate", response_model=GasEstimateResponse)
    def estimate_gas(
        request: GasEstimateRequest,
        svc: WalletServices = Depends(get_services),
    ) -> GasEstimateResponse:
        value = _parse_amount(request.amount)
        try:
            data = bytes.fromhex(request.data.removeprefix("0x"))
            params = svc.estimator.suggest(
                request.sender, request.receiver, value, data, request.speed
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except EstimationError as e:
            raise HTTPException(status_code=502, detail=str(e))

        return GasEstimateResponse(
            gas_limit=params.gas_limit,
            is_legacy=params.is_legacy,
            gas_price=_wei(params.gas_price),
            max_priority_fee=_wei(params.max_priority_fee),
            max_fee=_wei(params.max_fee),
            max_cost=format_ether(params.max_cost),
        )

    # ========================================================================
    # Compliance
    # ========================================================================

    @app.post("/api/v1/risk/check", response_model=RiskCheckResponse)
    def check_risk(
        request: RiskCheckRequest,
        svc: WalletServices = Depends(get_services),
    ) -> RiskCheckResponse:
        """Preview the compliance decision; daily totals are not consumed."""
        amount = _parse_amount(request.amount)
        try:
            result = svc.compliance.check(request.sender, request.receiver, amount, commit=False)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return RiskCheckResponse(
            passed=result.passed,
            risk=result.risk.name.lower(),
            reason=result.reason,
        )

    # ========================================================================
    # Transfer
    # ========================================================================

    @app.post(
        "/api/v1/transfer",
        response_model=TransferApiResponse,
        dependencies=[Depends(verify_api_token)],
    )
    def send_transfer(
        request: TransferApiRequest,
        svc: WalletServices = Depends(get_services),
        cfg: Settings = Depends(get_settings),
    ) -> TransferApiResponse:
        """Send from the configured hot wallet and wait for the receipt."""
        if not cfg.hot_wallet_private_key:
            raise HTTPException(status_code=503, detail="Hot wallet key not configured")

        amount = _parse_amount(request.amount)

        try:
            sender = Account.from_key(cfg.hot_wallet_private_key).address
        except Exception as e:
            logger.error("hot_wallet_misconfigured", error=str(e))
            raise HTTPException(status_code=500, detail="Hot wallet misconfigured")

        try:
            result = svc.executor.execute(
                TransferRequest(
                    sender=sender,
                    private_key=cfg.hot_wallet_private_key,
                    receiver=request.receiver,
                    amount=amount,
                    speed=request.speed,
                )
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except InsufficientBalanceError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ComplianceRejectedError as e:
            raise HTTPException(
                status_code=403,
                detail={"reason": e.result.reason, "risk": e.result.risk.name.lower()},
            )
        except CredentialMismatchError as e:
            logger.error("hot_wallet_misconfigured", error=str(e))
            raise HTTPException(status_code=500, detail="Hot wallet misconfigured")
        except (TransferError, EstimationError) as e:
            raise HTTPException(status_code=502, detail=str(e))

        return TransferApiResponse(
            success=result.success,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            gas_used=result.gas_used,
        )

    return app
