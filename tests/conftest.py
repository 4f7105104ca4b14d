"""Pytest fixtures shared across all guardianforge tests."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from guardianforge.config import ChainConfig, GuardianConfig, LLMConfig, MonitorConfig
from guardianforge.exceptions import ProviderError
from guardianforge.models import (
    AnomalyType,
    BalanceDelta,
    MonitoredWallet,
    RiskAssessment,
    WalletStatus,
)

ETH = 10**18

WALLET_A = "0x9965507D1a55bcC2695C58ba16FB37d819B0A4dc"
WALLET_B = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
WALLET_C = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bB12"
WALLET_D = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
TEST_PRIVATE_KEY = "0x" + "11" * 32

_ENV_VARS = [
    "RPC_URL",
    "AGENT_PRIVATE_KEY",
    "CONTRACT_ADDRESS",
    "MONITORED_WALLETS",
    "GROQ_API_KEY",
    "POLL_INTERVAL",
    "GUARDIANFORGE_CONFIG",
    "GUARDIANFORGE_REQUEST_TIMEOUT",
    "GUARDIANFORGE_CONFIRMATION_TIMEOUT",
    "GUARDIANFORGE_LLM_BASE_URL",
    "GUARDIANFORGE_LLM_MODEL",
    "GUARDIANFORGE_REPORT_THRESHOLD",
    "GUARDIANFORGE_BALANCE_EPSILON",
    "GUARDIANFORGE_MAX_CONCURRENCY",
    "GUARDIANFORGE_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Never read the developer's real env or ~/.guardianforge/config.toml."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GUARDIANFORGE_CONFIG_PATH", str(tmp_path / "absent.toml"))
    monkeypatch.chdir(tmp_path)


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeProvider:
    """
    In-memory chain-state provider.

    Each address maps to a sequence of balances (wei) or exceptions, consumed
    one per read. The last entry repeats once the sequence is exhausted.
    """

    def __init__(self, balances: dict[str, list[int | Exception]] | None = None) -> None:
        self._balances = {k.lower(): list(v) for k, v in (balances or {}).items()}
        self.calls: list[str] = []

    def push(self, address: str, *values: int | Exception) -> None:
        self._balances.setdefault(address.lower(), []).extend(values)

    async def get_balance(self, address: str) -> int:
        self.calls.append(address)
        seq = self._balances.get(address.lower())
        if not seq:
            raise ProviderError(f"no balance scripted for {address}")
        value = seq.pop(0) if len(seq) > 1 else seq[0]
        if isinstance(value, Exception):
            raise value
        return value


class FakeRegistry:
    """
    In-memory anomaly registry.

    confirm_gate, when set to an unset asyncio.Event, holds every confirmation
    wait open until the test releases it.
    """

    def __init__(self) -> None:
        self.submissions: list[tuple[str, int, int]] = []
        self.confirmed: list[str] = []
        self.broadcast_error: Exception | None = None
        self.confirmation_error: Exception | None = None
        self.confirm_gate: asyncio.Event | None = None
        self.statuses: dict[str, tuple] = {}
        self.status_error: Exception | None = None

    async def submit_anomaly(self, wallet: str, anomaly_type: int, risk_score: int) -> str:
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.submissions.append((wallet, anomaly_type, risk_score))
        return "0x" + format(len(self.submissions), "064x")

    async def wait_for_confirmation(self, tx_hash: str) -> None:
        if self.confirm_gate is not None:
            await self.confirm_gate.wait()
        if self.confirmation_error is not None:
            raise self.confirmation_error
        self.confirmed.append(tx_hash)

    async def get_wallet_status(self, wallet: str) -> WalletStatus:
        if self.status_error is not None:
            raise self.status_error
        values = self.statuses.get(wallet.lower(), (False, 0, 0, 0, 0, 0, 0))
        return WalletStatus.from_tuple(wallet, values)


class FakeAssessor:
    """Returns scripted assessments per wallet; fallback for unknown wallets."""

    def __init__(self, verdicts: dict[str, RiskAssessment | Exception] | None = None) -> None:
        self._verdicts = {k.lower(): v for k, v in (verdicts or {}).items()}
        self.calls: list[tuple[str, str]] = []

    async def assess(self, wallet: MonitoredWallet, delta: BalanceDelta) -> RiskAssessment:
        self.calls.append((wallet.address, delta.formatted()))
        verdict = self._verdicts.get(wallet.address.lower(), RiskAssessment.fallback())
        if isinstance(verdict, Exception):
            raise verdict
        return verdict


class EventSink:
    """Collects emitted events in order."""

    def __init__(self) -> None:
        self.events: list[dict] = []

    def __call__(self, event: dict) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["type"] == event_type]

    @property
    def types(self) -> list[str]:
        return [e["type"] for e in self.events]


async def no_sleep(_secs: float) -> None:
    await asyncio.sleep(0)


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def sink() -> EventSink:
    return EventSink()


@pytest.fixture
def critical_assessment() -> RiskAssessment:
    return RiskAssessment(
        risk_score=91,
        anomaly_type=AnomalyType.HIGH_RISK_INTERACTION,
        reasoning="Large outflow draining most of the balance",
    )


@pytest.fixture
def sample_config() -> GuardianConfig:
    """Fully populated GuardianConfig for tests."""
    return GuardianConfig(
        chain=ChainConfig(
            rpc_url="http://127.0.0.1:8545",
            private_key=TEST_PRIVATE_KEY,
            contract_address=CONTRACT,
        ),
        llm=LLMConfig(api_key="gsk_test_key_12345"),
        monitor=MonitorConfig(
            wallets=[WALLET_A, WALLET_B],
            poll_interval_ms=1_000,
            balance_epsilon=Decimal("0.01"),
            report_threshold=50,
        ),
    )
