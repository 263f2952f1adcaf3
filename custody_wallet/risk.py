"""
Compliance gate for outgoing transfers.

Rules are evaluated in a fixed order and the first failing rule decides
the result:

1. gate disabled -> pass
2. sender or receiver whitelisted -> pass
3. sender or receiver blacklisted -> fail (high)
4. amount above single-transaction limit -> fail (medium)
5. sender's daily total would exceed daily limit -> fail (medium)
6. manual approval required and amount above half the single limit -> fail (low)
7. pass

The daily total is committed once the daily limit check passes, so a
transfer held for manual approval still counts against the limit.
"""

import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import IntEnum
from typing import Callable

import structlog

from .config import RiskConfig
from .evm import to_address
from .units import format_ether

logger = structlog.get_logger()


class RiskLevel(IntEnum):
    """Severity attached to a compliance decision."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a compliance check."""

    passed: bool
    risk: RiskLevel = RiskLevel.NONE
    reason: str = ""


@dataclass
class DailyAmount:
    """Running total for one address on one UTC day."""

    day: date
    amount: int


PASS = CheckResult(passed=True)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class ComplianceGate:
    """
    Blacklist / whitelist / limit checks with per-address daily totals.

    One instance owns its lists and accumulators. All state is guarded by
    a single lock so `check` and the list mutations can be called from
    concurrent transfer requests.
    """

    def __init__(
        self,
        config: RiskConfig,
        today: Callable[[], date] = utc_today,
    ):
        self.config = config
        self._today = today
        self._lock = threading.Lock()
        self._blacklist: set[str] = {to_address(a) for a in config.blacklist_addrs}
        self._whitelist: set[str] = {to_address(a) for a in config.whitelist_addrs}
        self._daily: dict[str, DailyAmount] = {}

        logger.info(
            "compliance_gate_initialized",
            enabled=config.enabled,
            single_limit=config.single_limit,
            daily_limit=config.daily_limit,
            blacklisted=len(self._blacklist),
            whitelisted=len(self._whitelist),
            require_manual_approval=config.require_manual_approval,
        )

    def check(self, sender: str, receiver: str, amount: int, commit: bool = True) -> CheckResult:
        """
        Evaluate a transfer of `amount` wei from `sender` to `receiver`.

        With `commit=False` the daily total is never touched, which lets
        callers preview a decision.
        """
        if not self.config.enabled:
            return PASS

        sender = to_address(sender)
        receiver = to_address(receiver)

        with self._lock:
            if sender in self._whitelist or receiver in self._whitelist:
                return PASS

            if sender in self._blacklist:
                return CheckResult(
                    passed=False,
                    risk=RiskLevel.HIGH,
                    reason=f"Sender address {sender} is blacklisted",
                )
            if receiver in self._blacklist:
                return CheckResult(
                    passed=False,
                    risk=RiskLevel.HIGH,
                    reason=f"Receiver address {receiver} is blacklisted",
                )

            single_limit = self.config.single_limit
            if single_limit is not None and amount > single_limit:
                return CheckResult(
                    passed=False,
                    risk=RiskLevel.MEDIUM,
                    reason=(
                        f"Exceeds single transaction limit: "
                        f"{format_ether(amount)} > {format_ether(single_limit)}"
                    ),
                )

            today = self._today()
            daily_limit = self.config.daily_limit
            if daily_limit is not None:
                entry = self._daily.get(sender)
                current = entry.amount if entry is not None and entry.day == today else 0
                new_total = current + amount
                if new_total > daily_limit:
                    return CheckResult(
                        passed=False,
                        risk=RiskLevel.MEDIUM,
                        reason=(
                            f"Exceeds daily limit: "
                            f"{format_ether(new_total)} > {format_ether(daily_limit)}"
                        ),
                    )
                if commit:
                    self._daily[sender] = DailyAmount(day=today, amount=new_total)

            if self.config.require_manual_approval and single_limit is not None:
                if amount > single_limit // 2:
                    return CheckResult(
                        passed=False,
                        risk=RiskLevel.LOW,
                        reason="Large transfer requires manual approval",
                    )

        return PASS

    def get_daily_amount(self, address: str) -> int:
        """Amount committed today for an address (0 if none or stale)."""
        address = to_address(address)
        with self._lock:
            entry = self._daily.get(address)
            if entry is not None and entry.day == self._today():
                return entry.amount
            return 0

    def is_blacklisted(self, address: str) -> bool:
        address = to_address(address)
        with self._lock:
            return address in self._blacklist

    def is_whitelisted(self, address: str) -> bool:
        address = to_address(address)
        with self._lock:
            return address in self._whitelist

    def add_to_blacklist(self, address: str) -> None:
        self._update(self._blacklist.add, address, "blacklist_added")

    def remove_from_blacklist(self, address: str) -> None:
        self._update(self._blacklist.discard, address, "blacklist_removed")

    def add_to_whitelist(self, address: str) -> None:
        self._update(self._whitelist.add, address, "whitelist_added")

    def remove_from_whitelist(self, address: str) -> None:
        self._update(self._whitelist.discard, address, "whitelist_removed")

    def _update(self, op: Callable[[str], None], address: str, event: str) -> None:
        address = to_address(address)
        with self._lock:
            op(address)
        logger.info(event, address=address)

    @property
    def blacklist(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._blacklist)

    @property
    def whitelist(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._whitelist)
