"""Tests for guardianforge/output.py - output formatting."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

import pytest

from guardianforge.output import DecimalEncoder, format_json, format_output, format_table, mask_secret
from tests.conftest import WALLET_A, WALLET_B


def make_status_result() -> dict[str, Any]:
    return {
        "count": 2,
        "statuses": [
            {
                "address": WALLET_A,
                "is_frozen": True,
                "frozen_at": 1700000000,
                "last_check": 1700000100,
                "last_check_iso": "2023-11-14T22:15:00+00:00",
                "highest_risk": 91,
                "risk_level": "critical",
                "recovery_status": 1,
                "approval_count": 1,
                "required_count": 2,
            },
            {"address": WALLET_B, "error": "execution reverted"},
        ],
    }


def make_simulation_result() -> dict[str, Any]:
    return {
        "report_threshold": 50,
        "scenarios": [
            {
                "name": "critical_drain",
                "wallet": WALLET_A,
                "change": "-8.2",
                "assessment": {
                    "risk_score": 91,
                    "anomaly_type": "HIGH_RISK_INTERACTION",
                    "anomaly_code": 5,
                    "reasoning": "Likely drain",
                    "risk_level": "critical",
                },
                "report": {"state": "CONFIRMED"},
            }
        ],
    }


# ── JSON ──────────────────────────────────────────────────────────────────────


def test_format_json_indented() -> None:
    out = format_json({"a": 1})
    assert out == '{\n  "a": 1\n}'


def test_format_json_sorts_keys() -> None:
    out = format_json({"wallet": WALLET_A, "assessment": {"risk_score": 91, "anomaly_code": 5}})
    assert out.index('"assessment"') < out.index('"wallet"')
    assert out.index('"anomaly_code"') < out.index('"risk_score"')


def test_decimal_encoder() -> None:
    assert json.dumps({"eps": Decimal("0.01")}, cls=DecimalEncoder) == '{"eps": "0.01"}'


def test_format_output_json_roundtrip() -> None:
    data = make_status_result()
    assert json.loads(format_output(data, "json")) == data


def test_format_output_unknown_format() -> None:
    with pytest.raises(ValueError, match="Unknown format"):
        format_output({}, "csv")


# ── Table ─────────────────────────────────────────────────────────────────────


def test_status_table() -> None:
    out = format_table(make_status_result())
    assert "Guardian Wallet Status" in out
    assert "FROZEN" in out
    assert "91 (critical)" in out
    assert "1/2" in out
    assert "execution reverted" in out


def test_scenario_table() -> None:
    out = format_output(make_simulation_result(), "TABLE")
    assert "Risk Simulation" in out
    assert "critical_drain" in out
    assert "CONFIRMED" in out
    assert "Report threshold: 50" in out


def test_table_fallback_to_json() -> None:
    out = format_table({"wallet": WALLET_A, "change": "-8.2"})
    assert "-8.2" in out


# ── mask_secret ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("key", "expected"),
    [("gsk_abcdef", "gsk_****"), ("abcd", "****"), ("", "****")],
)
def test_mask_secret(key: str, expected: str) -> None:
    assert mask_secret(key) == expected
