"""Poll scheduler and JSONL event stream for guardianforge.

Implements the monitoring loop behind `guardianforge run`.
Emits one JSON object per line to stdout, designed for agent/pipe consumers.

Event types emitted:
  agent_start          - loop begins
  wallet_quiet         - balance change below epsilon (or first observation)
  wallet_activity      - significant balance change detected
  risk_assessed        - reasoning service verdict for that change
  anomaly_escalated    - report registered, broadcast starting
  anomaly_confirmed    - reportAnomaly included on-chain
  report_failed        - broadcast or confirmation failed
  report_deduplicated  - a report for the wallet is still in flight
  wallet_error         - wallet skipped this cycle (provider or unexpected error)
  heartbeat            - end of every cycle, even with no activity
  agent_stop           - cancellation / max cycles reached

stdout is flushed after each write (critical for pipe consumers).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from guardianforge.assessor import RiskAssessor
from guardianforge.exceptions import AlreadyReporting, GuardianError, SubmissionFailure
from guardianforge.models import AnomalyReport, CycleSummary, MonitoredWallet
from guardianforge.output import DecimalEncoder
from guardianforge.reporter import AnomalyReporter
from guardianforge.tracker import BalanceTracker

logger = logging.getLogger(__name__)

QUIET = "quiet"
ASSESSED = "assessed"
ESCALATED = "escalated"
DEDUPLICATED = "deduplicated"
ERROR = "error"

DEFAULT_INTERVAL_SECS = 30.0
DEFAULT_MAX_CONCURRENCY = 4


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print(); buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event, cls=DecimalEncoder) + "\n")
    sys.stdout.flush()


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class PollScheduler:
    """
    Drives Tracker → Assessor → Reporter for every wallet, every interval.

    Per-wallet failures are logged and emitted, never propagated. Escalations
    run as background tasks so one wallet's confirmation wait does not hold up
    other wallets or the next cycle.

    Args:
        tracker: Owns the monitored wallet table.
        assessor: Reasoning-service risk assessment.
        reporter: Registry escalation with per-wallet dedupe.
        interval_secs: Sleep between cycles.
        max_concurrency: Wallets checked in parallel within one cycle.
        sleep: Injectable sleep coroutine (tests pass a no-op).
        emit: Injectable event sink (defaults to JSONL on stdout).
    """

    def __init__(
        self,
        tracker: BalanceTracker,
        assessor: RiskAssessor,
        reporter: AnomalyReporter,
        interval_secs: float = DEFAULT_INTERVAL_SECS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        emit: Callable[[dict[str, Any]], None] = emit_event,
    ) -> None:
        self._tracker = tracker
        self._assessor = assessor
        self._reporter = reporter
        self._interval = interval_secs
        self._max_concurrency = max(1, max_concurrency)
        self._sleep = sleep
        self._emit = emit
        self._cycle = 0
        self._total_escalations = 0
        self._report_tasks: set[asyncio.Task] = set()

    @property
    def cycles_completed(self) -> int:
        return self._cycle

    @property
    def pending_reports(self) -> int:
        return len(self._report_tasks)

    async def run_forever(self, max_cycles: int | None = None) -> None:
        """
        Main loop. Runs until cancelled, or until max_cycles cycles have run.

        Cancellation stops polling but leaves in-flight reports running;
        callers that want to wait for them use drain().
        """
        self._emit({
            "type": "agent_start",
            "timestamp": _now_iso(),
            "wallets": [w.address for w in self._tracker.wallets],
            "interval_secs": self._interval,
            "report_threshold": self._reporter.threshold,
            "balance_epsilon": self._tracker.epsilon,
        })

        try:
            while True:
                summary = await self.run_cycle()
                self._emit({
                    "type": "heartbeat",
                    "timestamp": _now_iso(),
                    **summary.to_dict(),
                    "reports_in_flight": self._reporter.in_flight_count,
                })
                if max_cycles is not None and summary.cycle >= max_cycles:
                    break
                await self._sleep(self._interval)
        except asyncio.CancelledError:
            logger.info("Monitoring loop cancelled after %d cycles", self._cycle)

        self._emit({
            "type": "agent_stop",
            "timestamp": _now_iso(),
            "cycles_completed": self._cycle,
            "total_escalations": self._total_escalations,
            "reports_in_flight": self._reporter.in_flight_count,
        })

    async def run_cycle(self) -> CycleSummary:
        """Check every wallet once. Never raises for a per-wallet failure."""
        self._cycle += 1
        wallets = self._tracker.wallets
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _guarded(wallet: MonitoredWallet) -> str:
            async with semaphore:
                return await self._check_wallet(wallet)

        outcomes = await asyncio.gather(*(_guarded(w) for w in wallets))
        return CycleSummary(
            cycle=self._cycle,
            outcomes={w.address: o for w, o in zip(wallets, outcomes)},
        )

    async def drain(self) -> None:
        """Wait for every in-flight escalation to reach CONFIRMED or FAILED."""
        while self._report_tasks:
            await asyncio.gather(*list(self._report_tasks))

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    async def _check_wallet(self, wallet: MonitoredWallet) -> str:
        address = wallet.address
        try:
            delta = await self._tracker.observe(wallet)
            if not self._tracker.is_significant(delta):
                self._emit({
                    "type": "wallet_quiet",
                    "timestamp": _now_iso(),
                    "address": address,
                    "change": delta.formatted(),
                    "cycle": self._cycle,
                })
                return QUIET

            logger.info("Activity on %s: %s", wallet.short_address(), delta.formatted())
            self._emit({
                "type": "wallet_activity",
                "timestamp": _now_iso(),
                "address": address,
                "previous_wei": str(delta.previous),
                "current_wei": str(delta.current),
                "change": delta.formatted(),
                "cycle": self._cycle,
            })

            assessment = await self._assessor.assess(wallet, delta)
            self._emit({
                "type": "risk_assessed",
                "timestamp": _now_iso(),
                "address": address,
                **assessment.to_dict(),
                "escalate": self._reporter.should_report(assessment),
                "cycle": self._cycle,
            })
            if not self._reporter.should_report(assessment):
                return ASSESSED

            report = self._reporter.begin(wallet, assessment)
            self._spawn_report(report)
            return ESCALATED

        except AlreadyReporting as e:
            logger.info("Skipping escalation for %s: %s", address, e.message)
            self._emit({
                "type": "report_deduplicated",
                "timestamp": _now_iso(),
                "address": address,
                "transaction_handle": e.details.get("transaction_handle"),
                "cycle": self._cycle,
            })
            return DEDUPLICATED
        except GuardianError as e:
            logger.warning("Skipping %s this cycle: %s", address, e.message)
            self._emit_wallet_error(address, e.error_code, e.message)
            return ERROR
        except Exception as e:
            logger.exception("Unexpected error checking %s", address)
            self._emit_wallet_error(address, "unexpected_error", str(e))
            return ERROR

    def _spawn_report(self, report: AnomalyReport) -> None:
        # The task owns the in-flight flag from here on; submit() releases it.
        task = asyncio.create_task(self._escalate(report))
        self._report_tasks.add(task)
        task.add_done_callback(self._report_tasks.discard)
        self._total_escalations += 1
        self._emit({
            "type": "anomaly_escalated",
            "timestamp": _now_iso(),
            **report.to_dict(),
            "cycle": self._cycle,
        })

    async def _escalate(self, report: AnomalyReport) -> None:
        try:
            await self._reporter.submit(report)
        except SubmissionFailure as e:
            self._emit({
                "type": "report_failed",
                "timestamp": _now_iso(),
                **report.to_dict(),
                "error_code": e.error_code,
                "message": e.message,
            })
            return
        self._emit({
            "type": "anomaly_confirmed",
            "timestamp": _now_iso(),
            **report.to_dict(),
        })

    def _emit_wallet_error(self, address: str, error_code: str, message: str) -> None:
        self._emit({
            "type": "wallet_error",
            "timestamp": _now_iso(),
            "address": address,
            "error_code": error_code,
            "message": message,
            "recoverable": True,
            "cycle": self._cycle,
        })
