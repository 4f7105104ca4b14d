"""
Config loading for guardianforge.

Sources (in precedence order, highest first):
  1. Environment variables (RPC_URL, AGENT_PRIVATE_KEY, ... and GUARDIANFORGE_*)
  2. ~/.guardianforge/config.toml
  3. Built-in defaults

Secrets (signing key, reasoning-service key) are expected from the
environment; the TOML file is for tuning. load_config() never insists on
them. Commands that need them call require_runtime().

Usage:
    from guardianforge.config import load_config, require_runtime
    config = load_config()
    require_runtime(config)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable

import toml

from guardianforge.exceptions import ConfigInvalidError, ConfigMissingError

DEFAULT_CONFIG_DIR = Path.home() / ".guardianforge"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

DEFAULT_RPC_URL = "https://rpc-amoy.polygon.technology/"
DEFAULT_LLM_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_LLM_MODEL = "llama-3.3-70b-versatile"

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _wallet_list(raw: str) -> list[str]:
    return [a.strip() for a in raw.split(",") if a.strip()]


def _decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"not a decimal: {raw!r}") from e


# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, Callable[[str], Any]]] = [
    ("RPC_URL", "chain.rpc_url", str),
    ("AGENT_PRIVATE_KEY", "chain.private_key", str),
    ("CONTRACT_ADDRESS", "chain.contract_address", str),
    ("MONITORED_WALLETS", "monitor.wallets", _wallet_list),
    ("GROQ_API_KEY", "llm.api_key", str),
    ("POLL_INTERVAL", "monitor.poll_interval_ms", int),
    ("GUARDIANFORGE_REQUEST_TIMEOUT", "chain.request_timeout_secs", float),
    ("GUARDIANFORGE_CONFIRMATION_TIMEOUT", "chain.confirmation_timeout_secs", float),
    ("GUARDIANFORGE_LLM_BASE_URL", "llm.base_url", str),
    ("GUARDIANFORGE_LLM_MODEL", "llm.model", str),
    ("GUARDIANFORGE_REPORT_THRESHOLD", "monitor.report_threshold", int),
    ("GUARDIANFORGE_BALANCE_EPSILON", "monitor.balance_epsilon", _decimal),
    ("GUARDIANFORGE_MAX_CONCURRENCY", "monitor.max_concurrency", int),
]

# Required values for `run`, keyed by the env var a user would set.
_RUNTIME_REQUIREMENTS: list[tuple[str, str]] = [
    ("AGENT_PRIVATE_KEY", "chain.private_key"),
    ("CONTRACT_ADDRESS", "chain.contract_address"),
    ("GROQ_API_KEY", "llm.api_key"),
    ("MONITORED_WALLETS", "monitor.wallets"),
]


@dataclass
class ChainConfig:
    """RPC endpoint, registry contract and the agent's signing key."""

    rpc_url: str = DEFAULT_RPC_URL
    private_key: str = ""
    contract_address: str = ""
    request_timeout_secs: float = 30.0
    confirmation_timeout_secs: float = 120.0


@dataclass
class LLMConfig:
    """Reasoning service (Groq, OpenAI-compatible chat completions)."""

    api_key: str = ""
    base_url: str = DEFAULT_LLM_BASE_URL
    model: str = DEFAULT_LLM_MODEL
    temperature: float = 0.1
    max_tokens: int = 200
    timeout_secs: float = 30.0


@dataclass
class MonitorConfig:
    """Polling cadence and decision thresholds."""

    wallets: list[str] = field(default_factory=list)
    poll_interval_ms: int = 30_000
    balance_epsilon: Decimal = Decimal("0.01")   # native units
    report_threshold: int = 50                   # 0–100; scores >= this escalate
    max_concurrency: int = 4

    @property
    def poll_interval_secs(self) -> float:
        return self.poll_interval_ms / 1000


@dataclass
class GuardianConfig:
    """Full configuration object. Passed via Click context to all commands."""

    chain: ChainConfig = field(default_factory=ChainConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)


def load_config(path: str | None = None) -> GuardianConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses GUARDIANFORGE_CONFIG_PATH
              env var or default (~/.guardianforge/config.toml).

    Returns:
        GuardianConfig with all values resolved.

    Raises:
        ConfigInvalidError: Config file is invalid TOML or values are out of range.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        config = _dict_to_config(raw)
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value in {config_path}: {e}") from e
    _apply_env_overrides(config)
    config.monitor.wallets = _dedupe_wallets(config.monitor.wallets)
    _validate_config(config)

    return config


def require_runtime(config: GuardianConfig, needs: tuple[str, ...] | None = None) -> None:
    """
    Check that every value a command needs is present.

    Args:
        config: Loaded config.
        needs: Subset of env var names to check; all runtime requirements if None.

    Raises:
        ConfigMissingError: Naming every absent variable at once.
    """
    missing: list[str] = []
    for env_var, dotted_key in _RUNTIME_REQUIREMENTS:
        if needs is not None and env_var not in needs:
            continue
        section, key = dotted_key.split(".", 1)
        if not getattr(getattr(config, section), key):
            missing.append(env_var)

    if missing:
        raise ConfigMissingError(
            f"Missing required configuration: {', '.join(missing)}",
            details={"missing": missing},
        )


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("GUARDIANFORGE_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _dict_to_config(raw: dict) -> GuardianConfig:
    """Build GuardianConfig from raw TOML dict, applying defaults for missing keys."""
    config = GuardianConfig()

    chain = raw.get("chain", {})
    config.chain.rpc_url = chain.get("rpc_url", DEFAULT_RPC_URL)
    config.chain.private_key = chain.get("private_key", "")
    config.chain.contract_address = chain.get("contract_address", "")
    config.chain.request_timeout_secs = float(chain.get("request_timeout_secs", 30.0))
    config.chain.confirmation_timeout_secs = float(
        chain.get("confirmation_timeout_secs", 120.0)
    )

    llm = raw.get("llm", {})
    config.llm.api_key = llm.get("api_key", "")
    config.llm.base_url = llm.get("base_url", DEFAULT_LLM_BASE_URL)
    config.llm.model = llm.get("model", DEFAULT_LLM_MODEL)
    config.llm.temperature = float(llm.get("temperature", 0.1))
    config.llm.max_tokens = int(llm.get("max_tokens", 200))
    config.llm.timeout_secs = float(llm.get("timeout_secs", 30.0))

    monitor = raw.get("monitor", {})
    wallets = monitor.get("wallets", [])
    if isinstance(wallets, str):
        wallets = _wallet_list(wallets)
    config.monitor.wallets = [str(w).strip() for w in wallets if str(w).strip()]
    config.monitor.poll_interval_ms = int(monitor.get("poll_interval_ms", 30_000))
    config.monitor.balance_epsilon = _decimal(str(monitor.get("balance_epsilon", "0.01")))
    config.monitor.report_threshold = int(monitor.get("report_threshold", 50))
    config.monitor.max_concurrency = int(monitor.get("max_concurrency", 4))

    return config


def _apply_env_overrides(config: GuardianConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None or val == "":
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e


def _dedupe_wallets(wallets: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for address in wallets:
        key = address.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(address)
    return result


def _validate_config(config: GuardianConfig) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    if not 0 <= config.monitor.report_threshold <= 100:
        raise ConfigInvalidError(
            f"monitor.report_threshold must be 0–100, got {config.monitor.report_threshold}"
        )
    if config.monitor.poll_interval_ms <= 0:
        raise ConfigInvalidError(
            f"POLL_INTERVAL must be positive, got {config.monitor.poll_interval_ms}"
        )
    if config.monitor.balance_epsilon < 0:
        raise ConfigInvalidError(
            f"monitor.balance_epsilon must be non-negative, "
            f"got {config.monitor.balance_epsilon}"
        )
    if config.monitor.max_concurrency < 1:
        raise ConfigInvalidError(
            f"monitor.max_concurrency must be at least 1, "
            f"got {config.monitor.max_concurrency}"
        )
    if config.chain.request_timeout_secs <= 0:
        raise ConfigInvalidError(
            f"chain.request_timeout_secs must be positive, "
            f"got {config.chain.request_timeout_secs}"
        )
    bad = [a for a in config.monitor.wallets if not ADDRESS_RE.match(a)]
    if bad:
        raise ConfigInvalidError(
            f"Invalid wallet address(es) in MONITORED_WALLETS: {', '.join(bad)}",
            details={"invalid": bad},
        )
    contract = config.chain.contract_address
    if contract and not ADDRESS_RE.match(contract):
        raise ConfigInvalidError(f"CONTRACT_ADDRESS is not a valid address: {contract!r}")
