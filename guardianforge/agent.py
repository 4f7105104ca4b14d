"""Wiring: build the monitoring agent from a loaded config.

Everything the scheduler needs is constructed here and handed in
explicitly; no module holds process-wide state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from guardianforge.assessor import ReasoningClient, RiskAssessor
from guardianforge.chain import build_chain_clients
from guardianforge.chain.provider import Web3ChainProvider
from guardianforge.chain.registry import RegistryClient
from guardianforge.config import GuardianConfig
from guardianforge.reporter import AnomalyReporter
from guardianforge.scheduler import PollScheduler, emit_event
from guardianforge.tracker import BalanceTracker

logger = logging.getLogger(__name__)


@dataclass
class Agent:
    """A fully wired monitoring agent plus the clients it must close."""

    scheduler: PollScheduler
    tracker: BalanceTracker
    assessor: RiskAssessor
    reporter: AnomalyReporter
    reasoning: ReasoningClient
    provider: Web3ChainProvider
    registry: RegistryClient

    async def close(self) -> None:
        await self.reasoning.close()
        await self.provider.w3.provider.disconnect()


def build_agent(
    config: GuardianConfig,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    emit: Callable[[dict[str, Any]], None] = emit_event,
) -> Agent:
    """
    Construct tracker, assessor, reporter and scheduler from config.

    Raises:
        ConfigInvalidError: The signing key cannot be parsed.
    """
    provider, registry = build_chain_clients(config)
    reasoning = ReasoningClient.from_config(config.llm)
    assessor = RiskAssessor(reasoning)
    tracker = BalanceTracker(
        provider,
        config.monitor.wallets,
        epsilon=config.monitor.balance_epsilon,
    )
    reporter = AnomalyReporter(registry, threshold=config.monitor.report_threshold)
    scheduler = PollScheduler(
        tracker,
        assessor,
        reporter,
        interval_secs=config.monitor.poll_interval_secs,
        max_concurrency=config.monitor.max_concurrency,
        sleep=sleep,
        emit=emit,
    )
    logger.info(
        "Agent %s monitoring %d wallet(s) via %s",
        registry.agent_address,
        len(tracker.wallets),
        config.chain.rpc_url,
    )
    return Agent(
        scheduler=scheduler,
        tracker=tracker,
        assessor=assessor,
        reporter=reporter,
        reasoning=reasoning,
        provider=provider,
        registry=registry,
    )
