"""Tests for guardianforge/reporter.py - submission lifecycle and dedupe."""

from __future__ import annotations

import asyncio

import pytest

from guardianforge.exceptions import AlreadyReporting, ProviderError, ProviderTimeoutError, SubmissionFailure
from guardianforge.models import AnomalyType, MonitoredWallet, RiskAssessment, SubmissionState
from guardianforge.reporter import AnomalyReporter
from tests.conftest import WALLET_A, WALLET_B, FakeRegistry


@pytest.fixture
def reporter(registry: FakeRegistry) -> AnomalyReporter:
    return AnomalyReporter(registry, threshold=50)


# ── Threshold ─────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(("score", "expected"), [(0, False), (49, False), (50, True), (100, True)])
def test_should_report(reporter: AnomalyReporter, score: int, expected: bool) -> None:
    assert reporter.should_report(RiskAssessment(score, AnomalyType.NONE, "")) is expected


def test_high_score_with_none_type_still_reportable(reporter: AnomalyReporter) -> None:
    assert reporter.should_report(RiskAssessment(80, AnomalyType.NONE, ""))


# ── Lifecycle ─────────────────────────────────────────────────────────────────


async def test_report_confirms_and_releases(
    reporter: AnomalyReporter, registry: FakeRegistry, critical_assessment: RiskAssessment
) -> None:
    report = await reporter.report(MonitoredWallet(WALLET_A), critical_assessment)

    assert report.state is SubmissionState.CONFIRMED
    assert report.transaction_handle is not None
    assert report.transaction_handle.startswith("0x")
    assert registry.submissions == [(WALLET_A, 5, 91)]
    assert registry.confirmed == [report.transaction_handle]
    assert reporter.in_flight(WALLET_A) is None
    assert reporter.in_flight_count == 0


async def test_state_is_submitted_while_awaiting_confirmation(
    reporter: AnomalyReporter, registry: FakeRegistry, critical_assessment: RiskAssessment
) -> None:
    registry.confirm_gate = asyncio.Event()
    report = reporter.begin(MonitoredWallet(WALLET_A), critical_assessment)
    assert report.state is SubmissionState.PENDING

    task = asyncio.create_task(reporter.submit(report))
    while report.state is SubmissionState.PENDING:
        await asyncio.sleep(0)

    assert report.state is SubmissionState.SUBMITTED
    assert reporter.in_flight(WALLET_A) is report

    registry.confirm_gate.set()
    await task
    assert report.state is SubmissionState.CONFIRMED


def test_begin_twice_raises_already_reporting(
    reporter: AnomalyReporter, registry: FakeRegistry, critical_assessment: RiskAssessment
) -> None:
    reporter.begin(MonitoredWallet(WALLET_A), critical_assessment)

    with pytest.raises(AlreadyReporting) as exc_info:
        reporter.begin(MonitoredWallet(WALLET_A.lower()), critical_assessment)

    assert exc_info.value.details["state"] == "PENDING"
    assert registry.submissions == []


def test_dedupe_is_per_wallet(reporter: AnomalyReporter, critical_assessment: RiskAssessment) -> None:
    reporter.begin(MonitoredWallet(WALLET_A), critical_assessment)
    reporter.begin(MonitoredWallet(WALLET_B), critical_assessment)
    assert reporter.in_flight_count == 2


async def test_broadcast_failure_marks_failed_and_releases(
    reporter: AnomalyReporter, registry: FakeRegistry, critical_assessment: RiskAssessment
) -> None:
    registry.broadcast_error = ProviderError("insufficient funds for gas")

    with pytest.raises(SubmissionFailure) as exc_info:
        await reporter.report(MonitoredWallet(WALLET_A), critical_assessment)

    report = exc_info.value.report
    assert report.state is SubmissionState.FAILED
    assert report.transaction_handle is None
    assert report.error == "insufficient funds for gas"
    assert "broadcast" in exc_info.value.message
    assert reporter.in_flight(WALLET_A) is None

    # Not retried; a fresh report may start.
    registry.broadcast_error = None
    again = await reporter.report(MonitoredWallet(WALLET_A), critical_assessment)
    assert again.state is SubmissionState.CONFIRMED


async def test_confirmation_failure_keeps_transaction_handle(
    reporter: AnomalyReporter, registry: FakeRegistry, critical_assessment: RiskAssessment
) -> None:
    registry.confirmation_error = ProviderTimeoutError("not mined")

    with pytest.raises(SubmissionFailure) as exc_info:
        await reporter.report(MonitoredWallet(WALLET_A), critical_assessment)

    report = exc_info.value.report
    assert report.state is SubmissionState.FAILED
    assert report.transaction_handle == "0x" + format(1, "064x")
    assert exc_info.value.details["transaction_handle"] == report.transaction_handle
    assert reporter.in_flight_count == 0


async def test_unexpected_registry_error_also_fails_cleanly(
    reporter: AnomalyReporter, registry: FakeRegistry, critical_assessment: RiskAssessment
) -> None:
    registry.broadcast_error = RuntimeError("socket closed")

    with pytest.raises(SubmissionFailure):
        await reporter.report(MonitoredWallet(WALLET_A), critical_assessment)

    assert reporter.in_flight(WALLET_A) is None
