"""Anomaly reporter: escalation to the on-chain registry, with dedupe.

At most one report per wallet may be PENDING or SUBMITTED. The in-flight
flag is taken synchronously in begin() and released only when the report
reaches CONFIRMED or FAILED, so a second cycle that sees the same delta
before the first submission settles gets AlreadyReporting instead of a
second transaction.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from guardianforge.chain import AnomalyRegistry
from guardianforge.exceptions import AlreadyReporting, GuardianError, SubmissionFailure
from guardianforge.models import (
    AnomalyReport,
    MonitoredWallet,
    RiskAssessment,
    SubmissionState,
)

logger = logging.getLogger(__name__)

DEFAULT_REPORT_THRESHOLD = 50


class AnomalyReporter:
    """
    Submits reportAnomaly transactions and waits for settlement.

    Reports are not retried: a FAILED report is dropped and the next cycle's
    delta, if still significant, may start a fresh one.
    """

    def __init__(
        self,
        registry: AnomalyRegistry,
        threshold: int = DEFAULT_REPORT_THRESHOLD,
    ) -> None:
        self._registry = registry
        self._threshold = threshold
        self._in_flight: dict[str, AnomalyReport] = {}

    @property
    def threshold(self) -> int:
        return self._threshold

    def should_report(self, assessment: RiskAssessment) -> bool:
        """Return True if the score meets the configured report threshold."""
        return assessment.risk_score >= self._threshold

    def in_flight(self, address: str) -> AnomalyReport | None:
        return self._in_flight.get(address.lower())

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def begin(self, wallet: MonitoredWallet, assessment: RiskAssessment) -> AnomalyReport:
        """
        Register a PENDING report for wallet, taking its in-flight flag.

        Raises:
            AlreadyReporting: wallet already has a PENDING/SUBMITTED report.
        """
        key = wallet.address.lower()
        existing = self._in_flight.get(key)
        if existing is not None:
            raise AlreadyReporting(
                f"Report already in flight for {wallet.address} ({existing.state.value})",
                details={
                    "wallet": wallet.address,
                    "state": existing.state.value,
                    "transaction_handle": existing.transaction_handle,
                },
            )
        report = AnomalyReport(
            wallet=wallet.address,
            anomaly_type=assessment.anomaly_type,
            risk_score=assessment.risk_score,
            created_at=datetime.now(tz=UTC),
        )
        self._in_flight[key] = report
        return report

    async def submit(self, report: AnomalyReport) -> AnomalyReport:
        """
        Broadcast the report and wait until it is included.

        PENDING → SUBMITTED on broadcast acceptance → CONFIRMED on inclusion.
        Any error → FAILED and SubmissionFailure. The in-flight flag is
        released in both terminal cases.
        """
        try:
            try:
                report.transaction_handle = await self._registry.submit_anomaly(
                    report.wallet, int(report.anomaly_type), report.risk_score
                )
            except Exception as e:
                raise self._fail(report, "broadcast", e) from e
            report.state = SubmissionState.SUBMITTED

            try:
                await self._registry.wait_for_confirmation(report.transaction_handle)
            except Exception as e:
                raise self._fail(report, "confirmation", e) from e
            report.state = SubmissionState.CONFIRMED
            logger.info(
                "Anomaly report confirmed for %s (type=%s, risk=%d, tx=%s)",
                report.wallet,
                report.anomaly_type.name,
                report.risk_score,
                report.transaction_handle,
            )
            return report
        finally:
            self._in_flight.pop(report.wallet.lower(), None)

    async def report(self, wallet: MonitoredWallet, assessment: RiskAssessment) -> AnomalyReport:
        """begin() + submit(): escalate one assessment and wait for the outcome."""
        return await self.submit(self.begin(wallet, assessment))

    def _fail(self, report: AnomalyReport, stage: str, error: Exception) -> SubmissionFailure:
        report.state = SubmissionState.FAILED
        report.error = error.message if isinstance(error, GuardianError) else str(error)
        logger.error("Anomaly report %s failed for %s: %s", stage, report.wallet, report.error)
        return SubmissionFailure(
            f"Anomaly report {stage} failed for {report.wallet}: {report.error}",
            report=report,
        )
