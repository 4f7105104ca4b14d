"""Output format routing for guardianforge.

Converts result dicts to the requested format: json or table.

Design rules:
- JSON: 2-space indent, deterministic key order, utf-8
- Table: Rich-formatted, colour by risk level

All functions return strings. The caller writes to stdout.
"""

from __future__ import annotations

import io
import json
from decimal import Decimal
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

VALID_FORMATS = {"json", "table"}

_RISK_COLORS = {
    "clear": "green",
    "low": "cyan",
    "medium": "yellow",
    "high": "red",
    "critical": "bold red",
}


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


def format_output(data: Any, fmt: str) -> str:
    """
    Format data for stdout output.

    Args:
        data: Result dict, list, or any JSON-serialisable value.
        fmt: "json" | "table"

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "table":
        return format_table(data)
    return format_json(data)


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent, sorted keys)."""
    return json.dumps(data, indent=2, sort_keys=True, cls=DecimalEncoder, ensure_ascii=False)


# ── Table ────────────────────────────────────────────────────────────────────


def format_table(data: Any) -> str:
    """
    Format as a Rich terminal table.

    Handles:
    - Wallet status results (dict with 'statuses')
    - Simulation / assessment results (dict with 'scenarios')
    - Generic dict fallback
    """
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=120)

    if isinstance(data, dict) and "statuses" in data:
        _render_status_table(console, data)
    elif isinstance(data, dict) and "scenarios" in data:
        _render_scenario_table(console, data)
    else:
        console.print_json(json.dumps(data, cls=DecimalEncoder))

    return buf.getvalue()


def _risk_text(score: int, level: str) -> Text:
    return Text(f"{score} ({level})", style=_RISK_COLORS.get(level, "dim"))


def _short(address: str) -> str:
    return f"{address[:8]}…{address[-6:]}" if len(address) > 16 else address


def _render_status_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Guardian Wallet Status", show_header=True, header_style="bold blue")
    table.add_column("Address", style="cyan", no_wrap=True)
    table.add_column("Freeze", justify="center")
    table.add_column("Highest Risk", justify="right")
    table.add_column("Last Check")
    table.add_column("Recovery", justify="center")
    table.add_column("Approvals", justify="right")

    for s in data.get("statuses", []):
        if "error" in s:
            table.add_row(_short(s.get("address", "")), "—", "—", s["error"], "—", "—")
            continue
        frozen = Text("FROZEN", style="bold red") if s.get("is_frozen") else Text("active", style="green")
        table.add_row(
            _short(s.get("address", "")),
            frozen,
            _risk_text(s.get("highest_risk", 0), s.get("risk_level", "clear")),
            str(s.get("last_check_iso") or "—"),
            str(s.get("recovery_status", 0)),
            f"{s.get('approval_count', 0)}/{s.get('required_count', 0)}",
        )

    console.print(table)


def _render_scenario_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Risk Simulation", show_header=True, header_style="bold blue")
    table.add_column("Scenario")
    table.add_column("Wallet", style="cyan", no_wrap=True)
    table.add_column("Change", justify="right")
    table.add_column("Risk", justify="right")
    table.add_column("Anomaly")
    table.add_column("Report")
    table.add_column("Reasoning")

    for s in data.get("scenarios", []):
        assessment = s.get("assessment", {})
        report = s.get("report") or {}
        table.add_row(
            s.get("name", ""),
            _short(s.get("wallet", "")),
            s.get("change", ""),
            _risk_text(assessment.get("risk_score", 0), assessment.get("risk_level", "clear")),
            assessment.get("anomaly_type", "NONE"),
            report.get("state", "—"),
            assessment.get("reasoning", ""),
        )

    console.print(table)
    console.print(f"Report threshold: [bold]{data.get('report_threshold', 50)}[/bold]")


# ── Utility ──────────────────────────────────────────────────────────────────


def mask_secret(key: str) -> str:
    """
    Mask an API key or private key for safe display.

    'abcdefg123' → 'abcd****'
    '' → '****'
    """
    if not key:
        return "****"
    if len(key) <= 4:
        return "****"
    return key[:4] + "****"
