"""Click CLI entry point for guardianforge.

All commands are thin orchestration wrappers; business logic lives in
config, chain, tracker, assessor, reporter, scheduler and output modules.

Exit codes:
  0   - success
  2   - reasoning service error
  3   - chain provider error
  5   - config error (missing credential, empty wallet set, ...)
  6   - registry submission failed
  130 - monitoring loop interrupted
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from guardianforge import __version__
from guardianforge.config import (
    GuardianConfig,
    get_default_config_path,
    load_config,
    require_runtime,
)
from guardianforge.exceptions import GuardianError, SubmissionFailure
from guardianforge.output import format_output, mask_secret

SIMULATION_SCENARIOS: list[dict[str, str]] = [
    {"name": "normal", "wallet": "0x742d35Cc6634C0532925a3b844Bc9e7595f0bB12", "change": "-0.05"},
    {"name": "suspicious", "wallet": "0x8ba1f109551bD432803012645Ac136ddd64DBA72", "change": "-1.5"},
    {"name": "critical_drain", "wallet": "0x9965507D1a55bcC2695C58ba16FB37d819B0A4dc", "change": "-8.2"},
]


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: GuardianError | Exception) -> None:
    """Write error JSON to stderr and exit with the error's code."""
    if isinstance(err, GuardianError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


def _configure_logging(level: str) -> None:
    """Diagnostics go to stderr; stdout is reserved for JSON/JSONL output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load(ctx: click.Context) -> GuardianConfig:
    return load_config(ctx.obj.get("config_path"))


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="GUARDIANFORGE_CONFIG",
    default=None,
    help="Config file path (default: ~/.guardianforge/config.toml)",
)
@click.option(
    "--env-file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Load environment variables from this .env file (default: ./.env if present)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="GUARDIANFORGE_LOG_LEVEL",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    env_file: str | None,
    log_level: str,
) -> None:
    """GuardianForge - autonomous wallet-threat monitoring agent."""
    ctx.ensure_object(dict)
    load_dotenv(env_file or find_dotenv(usecwd=True))
    _configure_logging(log_level)
    ctx.obj["config_path"] = config_path


# ── run ───────────────────────────────────────────────────────────────────────


@cli.command("run")
@click.option("--once", is_flag=True, help="Run a single cycle, wait for escalations, exit")
@click.option(
    "--interval",
    type=click.IntRange(min=1),
    default=None,
    help="Poll interval in milliseconds (overrides POLL_INTERVAL)",
)
@click.option("--max-cycles", type=click.IntRange(min=1), default=None)
@click.pass_context
def run_command(
    ctx: click.Context,
    once: bool,
    interval: int | None,
    max_cycles: int | None,
) -> None:
    """Start the monitoring loop. Emits JSONL events to stdout."""
    from guardianforge.agent import build_agent

    try:
        config = _load(ctx)
        if interval is not None:
            config.monitor.poll_interval_ms = interval
        require_runtime(config)
    except GuardianError as e:
        _output_error(e)

    async def _run() -> None:
        agent = build_agent(config)
        try:
            await agent.scheduler.run_forever(max_cycles=1 if once else max_cycles)
            await agent.scheduler.drain()
        finally:
            await agent.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except GuardianError as e:
        _output_error(e)


# ── assess ────────────────────────────────────────────────────────────────────


@cli.command("assess", context_settings={"ignore_unknown_options": True})
@click.argument("address")
@click.argument("change")
@click.pass_context
def assess_command(ctx: click.Context, address: str, change: str) -> None:
    """Assess a hypothetical balance CHANGE (native units, e.g. -8.2) for ADDRESS."""
    from guardianforge.assessor import ReasoningClient, RiskAssessor

    try:
        config = _load(ctx)
        require_runtime(config, needs=("GROQ_API_KEY",))
    except GuardianError as e:
        _output_error(e)
    change_text = _normalize_change(change)

    async def _run() -> dict[str, Any]:
        client = ReasoningClient.from_config(config.llm)
        try:
            assessment = await RiskAssessor(client).assess_change(address, change_text)
        finally:
            await client.close()
        return {
            "wallet": address,
            "change": change_text,
            "assessment": assessment.to_dict(),
            "would_report": assessment.risk_score >= config.monitor.report_threshold,
        }

    click.echo(format_output(asyncio.run(_run()), "json"))


# ── simulate ──────────────────────────────────────────────────────────────────


@cli.command("simulate")
@click.option("--report", "do_report", is_flag=True, help="Escalate scenarios above threshold on-chain")
@click.option("--format", "fmt", type=click.Choice(["json", "table"]), default="json")
@click.pass_context
def simulate_command(ctx: click.Context, do_report: bool, fmt: str) -> None:
    """Run the demo scenarios: normal, suspicious, critical drain."""
    from guardianforge.assessor import ReasoningClient, RiskAssessor

    needs = ("GROQ_API_KEY", "AGENT_PRIVATE_KEY", "CONTRACT_ADDRESS") if do_report else ("GROQ_API_KEY",)
    try:
        config = _load(ctx)
        require_runtime(config, needs=needs)
    except GuardianError as e:
        _output_error(e)

    async def _run() -> dict[str, Any]:
        client = ReasoningClient.from_config(config.llm)
        assessor = RiskAssessor(client)
        provider = reporter = registry = None
        if do_report:
            from guardianforge.chain import build_chain_clients
            from guardianforge.reporter import AnomalyReporter

            provider, registry = build_chain_clients(config)
            reporter = AnomalyReporter(registry, threshold=config.monitor.report_threshold)

        results = []
        try:
            for scenario in SIMULATION_SCENARIOS:
                results.append(await _simulate_one(scenario, assessor, reporter, registry))
        finally:
            await client.close()
            if provider is not None:
                await provider.w3.provider.disconnect()
        return {
            "report_threshold": config.monitor.report_threshold,
            "scenarios": results,
        }

    try:
        click.echo(format_output(asyncio.run(_run()), fmt))
    except GuardianError as e:
        _output_error(e)


async def _simulate_one(
    scenario: dict[str, str],
    assessor: Any,
    reporter: Any,
    registry: Any,
) -> dict[str, Any]:
    from guardianforge.models import MonitoredWallet

    assessment = await assessor.assess_change(scenario["wallet"], scenario["change"])
    result: dict[str, Any] = {
        **scenario,
        "assessment": assessment.to_dict(),
        "report": None,
    }
    if reporter is None or not reporter.should_report(assessment):
        return result

    try:
        report = await reporter.report(MonitoredWallet(address=scenario["wallet"]), assessment)
    except SubmissionFailure as e:
        result["report"] = e.report.to_dict() if e.report else {"state": "FAILED"}
        return result
    result["report"] = report.to_dict()
    try:
        status = await registry.get_wallet_status(scenario["wallet"])
    except GuardianError as e:
        result["status"] = {"error": e.message}
        return result
    result["status"] = status.to_dict()
    return result


# ── status ────────────────────────────────────────────────────────────────────


@cli.command("status")
@click.argument("addresses", nargs=-1)
@click.option("--format", "fmt", type=click.Choice(["json", "table"]), default="json")
@click.pass_context
def status_command(ctx: click.Context, addresses: tuple[str, ...], fmt: str) -> None:
    """Read freeze / recovery status from the registry (default: monitored wallets)."""
    from guardianforge.chain import build_chain_clients

    try:
        config = _load(ctx)
        require_runtime(config, needs=("CONTRACT_ADDRESS",))
    except GuardianError as e:
        _output_error(e)

    targets = list(addresses) or config.monitor.wallets
    if not targets:
        _output_error(
            GuardianError("No addresses given and MONITORED_WALLETS is empty")
        )

    async def _run() -> dict[str, Any]:
        provider, registry = build_chain_clients(config, with_signer=False)
        statuses: list[dict[str, Any]] = []
        try:
            for address in targets:
                try:
                    status = await registry.get_wallet_status(address)
                except GuardianError as e:
                    statuses.append({"address": address, "error": e.message})
                    continue
                row = status.to_dict()
                row["last_check_iso"] = _iso(status.last_check)
                row["frozen_at_iso"] = _iso(status.frozen_at)
                statuses.append(row)
        finally:
            await provider.w3.provider.disconnect()
        return {"count": len(statuses), "statuses": statuses}

    click.echo(format_output(asyncio.run(_run()), fmt))


# ── config ────────────────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Inspect configuration."""


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (secrets masked)."""
    try:
        config = _load(ctx)
    except GuardianError as e:
        _output_error(e)

    result = {
        "config_path": ctx.obj.get("config_path") or str(get_default_config_path()),
        "chain": {
            "rpc_url": config.chain.rpc_url,
            "contract_address": config.chain.contract_address,
            "private_key": mask_secret(config.chain.private_key),
            "confirmation_timeout_secs": config.chain.confirmation_timeout_secs,
        },
        "llm": {
            "base_url": config.llm.base_url,
            "model": config.llm.model,
            "api_key": mask_secret(config.llm.api_key),
            "temperature": config.llm.temperature,
            "max_tokens": config.llm.max_tokens,
        },
        "monitor": {
            "wallets": config.monitor.wallets,
            "poll_interval_ms": config.monitor.poll_interval_ms,
            "balance_epsilon": config.monitor.balance_epsilon,
            "report_threshold": config.monitor.report_threshold,
            "max_concurrency": config.monitor.max_concurrency,
        },
    }
    click.echo(format_output(result, "json"))


# ── Helpers ───────────────────────────────────────────────────────────────────


def _normalize_change(raw: str) -> str:
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise click.BadParameter(f"must be a decimal amount, got {raw!r}", param_hint="CHANGE") from e
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def _iso(ts: int) -> str | None:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
