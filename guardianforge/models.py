"""
Shared data models for guardianforge.

These dataclasses are the canonical data shapes used across all modules:
the tracker produces deltas, the assessor turns them into assessments,
the reporter turns assessments into reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum

WEI_PER_NATIVE = Decimal(10**18)

FALLBACK_REASONING = "parse failure"


class AnomalyType(IntEnum):
    """Closed set of suspected causes, encoded as the registry's uint."""

    NONE = 0
    LARGE_TRANSACTION = 1
    FAILED_SIGNATURE = 2
    SUSPICIOUS_CONTRACT = 3
    RAPID_TRANSACTIONS = 4
    HIGH_RISK_INTERACTION = 5


class SubmissionState(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (SubmissionState.CONFIRMED, SubmissionState.FAILED)


def wei_to_native(wei: int) -> Decimal:
    """Convert wei to native units (ETH, POL, ...)."""
    return Decimal(wei) / WEI_PER_NATIVE


def format_native(wei: int) -> str:
    """Human-readable signed amount: -8200000000000000000 → '-8.2'."""
    value = wei_to_native(wei)
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


@dataclass
class MonitoredWallet:
    """A wallet under watch. One per configured address, never removed during a run."""

    address: str
    label: str = ""
    last_balance: int | None = None     # wei; None until first observation
    last_checked_at: datetime | None = None

    def short_address(self) -> str:
        """Return truncated address for display: 0xd8dA...6045"""
        if len(self.address) > 12:
            return f"{self.address[:6]}...{self.address[-4:]}"
        return self.address

    def display_name(self) -> str:
        return self.label if self.label else self.short_address()


@dataclass
class BalanceDelta:
    """Change between two consecutive observations. Never persisted."""

    wallet: MonitoredWallet
    previous: int
    current: int

    @property
    def change(self) -> int:
        return self.current - self.previous

    @property
    def native(self) -> Decimal:
        return wei_to_native(self.change)

    def formatted(self) -> str:
        return format_native(self.change)


@dataclass
class RiskAssessment:
    """Sanitized outcome of one reasoning-service call."""

    risk_score: int
    anomaly_type: AnomalyType
    reasoning: str

    @classmethod
    def fallback(cls, reasoning: str = FALLBACK_REASONING) -> RiskAssessment:
        """The safe default: never escalates."""
        return cls(risk_score=0, anomaly_type=AnomalyType.NONE, reasoning=reasoning)

    def to_dict(self) -> dict:
        return {
            "risk_score": self.risk_score,
            "anomaly_type": self.anomaly_type.name,
            "anomaly_code": int(self.anomaly_type),
            "reasoning": self.reasoning,
            "risk_level": risk_level(self.risk_score),
        }


@dataclass
class AnomalyReport:
    """An escalation to the registry. Discarded once CONFIRMED or FAILED."""

    wallet: str
    anomaly_type: AnomalyType
    risk_score: int
    state: SubmissionState = SubmissionState.PENDING
    transaction_handle: str | None = None
    error: str | None = None
    created_at: datetime | None = None

    @property
    def in_flight(self) -> bool:
        return not self.state.terminal

    def to_dict(self) -> dict:
        return {
            "wallet": self.wallet,
            "anomaly_type": self.anomaly_type.name,
            "risk_score": self.risk_score,
            "state": self.state.value,
            "transaction_handle": self.transaction_handle,
            "error": self.error,
        }


@dataclass
class WalletStatus:
    """Registry read surface (`getWalletStatus`), used by presentation only."""

    address: str
    is_frozen: bool
    frozen_at: int          # unix seconds, 0 if never frozen
    last_check: int         # unix seconds
    highest_risk: int
    recovery_status: int
    approval_count: int
    required_count: int

    @classmethod
    def from_tuple(cls, address: str, values: tuple | list) -> WalletStatus:
        (
            is_frozen,
            frozen_at,
            last_check,
            highest_risk,
            recovery_status,
            approval_count,
            required_count,
        ) = values
        return cls(
            address=address,
            is_frozen=bool(is_frozen),
            frozen_at=int(frozen_at),
            last_check=int(last_check),
            highest_risk=int(highest_risk),
            recovery_status=int(recovery_status),
            approval_count=int(approval_count),
            required_count=int(required_count),
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "is_frozen": self.is_frozen,
            "frozen_at": self.frozen_at,
            "last_check": self.last_check,
            "highest_risk": self.highest_risk,
            "risk_level": risk_level(self.highest_risk),
            "recovery_status": self.recovery_status,
            "approval_count": self.approval_count,
            "required_count": self.required_count,
        }


@dataclass
class CycleSummary:
    """Per-cycle outcome, keyed by wallet address."""

    cycle: int
    outcomes: dict[str, str] = field(default_factory=dict)

    def count(self, outcome: str) -> int:
        return sum(1 for o in self.outcomes.values() if o == outcome)

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle,
            "wallets_checked": len(self.outcomes),
            "escalated": self.count("escalated"),
            "errors": self.count("error"),
        }


def risk_level(score: int) -> str:
    """
    Map a 0–100 risk score to a label.

    Returns:
        "clear" (0), "low" (<30), "medium" (<50), "high" (<70), "critical" (70+)
    """
    if score <= 0:
        return "clear"
    elif score < 30:
        return "low"
    elif score < 50:
        return "medium"
    elif score < 70:
        return "high"
    return "critical"
