"""
Outbound native-coin transfers.

Executes one transfer end to end: credential check, balance check,
optional compliance check, nonce, gas estimation, signing, broadcast and
receipt wait. Nothing is retried; the first failing step raises.
"""

from dataclasses import dataclass
from typing import Optional, Union

import structlog
from eth_account import Account

from .evm import EvmNode, receipt_succeeded, to_address, tx_hash_hex
from .gas import FeeEstimator, Speed, build_transaction
from .risk import CheckResult, ComplianceGate
from .units import format_ether

logger = structlog.get_logger()


class TransferError(Exception):
    """A transfer could not be completed."""


class CredentialMismatchError(TransferError):
    """The private key does not belong to the claimed sender."""


class InsufficientBalanceError(TransferError):
    """Sender balance is below the requested amount."""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance: need {format_ether(required)}, "
            f"have {format_ether(balance)}"
        )


class ComplianceRejectedError(TransferError):
    """The compliance gate did not pass the transfer."""

    def __init__(self, result: CheckResult):
        self.result = result
        super().__init__(f"Compliance check failed ({result.risk.name.lower()}): {result.reason}")


class SigningError(TransferError):
    pass


class BroadcastError(TransferError):
    pass


class ConfirmationError(TransferError):
    pass


@dataclass(frozen=True)
class TransferRequest:
    """One outbound transfer."""

    sender: str
    private_key: str
    receiver: str
    amount: int  # wei
    speed: Union[Speed, str] = Speed.NORMAL
    data: bytes = b""


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a broadcast and mined transfer."""

    tx_hash: str
    block_number: int
    gas_used: int
    success: bool


class TransferExecutor:
    """Signs and sends transfers through a single node."""

    def __init__(
        self,
        node: EvmNode,
        estimator: Optional[FeeEstimator] = None,
        compliance: Optional[ComplianceGate] = None,
        receipt_timeout: float = 120.0,
        poll_latency: float = 1.0,
    ):
        self.node = node
        self.estimator = estimator or FeeEstimator(node)
        self.compliance = compliance
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency

    def execute(self, request: TransferRequest) -> TransferResult:
        """
        Execute a transfer and wait for its receipt.

        Raises:
            CredentialMismatchError: key does not derive the sender address
            InsufficientBalanceError: balance below the amount
            ComplianceRejectedError: gate configured and did not pass
            EstimationError: gas estimation failed
            TransferError: any other node, signing, broadcast or receipt failure
        """
        sender = to_address(request.sender)
        receiver = to_address(request.receiver)

        # 1. Key must match the sender
        try:
            account = Account.from_key(request.private_key)
        except Exception as e:
            raise CredentialMismatchError(f"Invalid private key: {e}") from e
        if account.address != sender:
            raise CredentialMismatchError(
                f"Private key address {account.address} does not match sender {sender}"
            )

        # 2. Balance covers the amount (fees are not reserved)
        balance = self._node_call("get balance", self.node.get_balance, sender)
        if balance < request.amount:
            raise InsufficientBalanceError(balance=balance, required=request.amount)

        if self.compliance is not None:
            result = self.compliance.check(sender, receiver, request.amount)
            if not result.passed:
                logger.warning(
                    "transfer_rejected_by_compliance",
                    sender=sender,
                    receiver=receiver,
                    amount_eth=format_ether(request.amount),
                    risk=result.risk.name,
                    reason=result.reason,
                )
                raise ComplianceRejectedError(result)

        # 3. Nonce
        nonce = self._node_call("get nonce", self.node.get_pending_nonce, sender)

        # 4. Gas (EstimationError propagates as is)
        params = self.estimator.suggest(
            sender, receiver, request.amount, request.data, request.speed
        )

        # 5. Chain id
        chain_id = self._node_call("get chain id", self.node.chain_id)

        # 6. Unsigned transaction for the estimator's fee model
        tx = build_transaction(nonce, receiver, request.amount, request.data, params, chain_id)

        # 7. Sign
        try:
            signed = account.sign_transaction(tx)
        except Exception as e:
            raise SigningError(f"Signing failed: {e}") from e

        # 8. Broadcast
        try:
            tx_hash = self.node.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            logger.error("transfer_broadcast_failed", sender=sender, nonce=nonce, error=str(e))
            raise BroadcastError(f"Broadcast failed: {e}") from e

        tx_hex = tx_hash_hex(tx_hash)
        logger.info(
            "transfer_tx_sent",
            tx_hash=tx_hex,
            sender=sender,
            receiver=receiver,
            amount_eth=format_ether(request.amount),
            nonce=nonce,
            legacy=params.is_legacy,
            gas_limit=params.gas_limit,
        )

        # 9. Wait for the receipt
        try:
            receipt = self.node.wait_for_receipt(
                tx_hash, timeout=self.receipt_timeout, poll_latency=self.poll_latency
            )
        except Exception as e:
            raise ConfirmationError(f"Waiting for receipt of {tx_hex} failed: {e}") from e

        result = TransferResult(
            tx_hash=tx_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            success=receipt_succeeded(receipt),
        )

        if result.success:
            logger.info(
                "transfer_tx_confirmed",
                tx_hash=tx_hex,
                block=result.block_number,
                gas_used=result.gas_used,
            )
        else:
            logger.error("transfer_tx_reverted", tx_hash=tx_hex, block=result.block_number)

        return result

    def get_balance(self, address: str) -> int:
        return self.node.get_balance(address)

    def close(self) -> None:
        self.node.close()

    @staticmethod
    def _node_call(step: str, fn, *args):
        try:
            return fn(*args)
        except Exception as e:
            raise TransferError(f"{step} failed: {e}") from e
