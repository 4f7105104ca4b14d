"""
Custom exception hierarchy for guardianforge.

Each exception maps to a CLI exit code and JSON error_code field.
cli.py catches all GuardianError subclasses and formats them as JSON output.

Only ConfigError is fatal to the agent process. Everything else is scoped to
a single wallet in a single poll cycle.

Exit code mapping:
  1 - GuardianError (generic error)
  2 - AssessmentFailure (reasoning service unreachable or unparseable)
  3 - ProviderError (chain RPC or transaction-layer failure)
  4 - AlreadyReporting (dedupe guard tripped)
  5 - ConfigError (missing/malformed config)
  6 - SubmissionFailure (registry broadcast or confirmation failed)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from guardianforge.models import AnomalyReport


class GuardianError(Exception):
    """Base exception for all guardianforge errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(GuardianError):
    """Configuration is missing or malformed. Raised before the loop starts."""

    exit_code = 5
    error_code = "config_error"


class ConfigMissingError(ConfigError):
    """A required setting (credential, wallet list, ...) is absent."""

    error_code = "config_missing"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class ProviderError(GuardianError):
    """Chain-state read or transaction-layer failure."""

    exit_code = 3
    error_code = "provider_error"


class ProviderTimeoutError(ProviderError):
    """RPC call or confirmation wait timed out."""

    error_code = "provider_timeout"


class AssessmentFailure(GuardianError):
    """Reasoning service unreachable or returned an unusable response.

    Never surfaces past the assessor; it is turned into the fallback assessment.
    """

    exit_code = 2
    error_code = "assessment_failure"


class ReasoningTimeoutError(AssessmentFailure):
    """Reasoning service request timed out."""

    error_code = "reasoning_timeout"


class ReasoningAPIError(AssessmentFailure):
    """Reasoning service returned a non-success status or malformed envelope."""

    error_code = "reasoning_api_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class AlreadyReporting(GuardianError):
    """A report for this wallet is already PENDING or SUBMITTED."""

    exit_code = 4
    error_code = "already_reporting"


class SubmissionFailure(GuardianError):
    """Registry broadcast or confirmation failed; the report is FAILED."""

    exit_code = 6
    error_code = "submission_failure"

    def __init__(self, message: str, report: AnomalyReport | None = None) -> None:
        details = {}
        if report is not None:
            details = {
                "wallet": report.wallet,
                "transaction_handle": report.transaction_handle,
            }
        super().__init__(message, details=details)
        self.report = report
