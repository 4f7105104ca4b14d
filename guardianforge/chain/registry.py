"""
Anomaly registry client - the on-chain GuardianForgeAgent contract.

Write path (agent):  reportAnomaly(address wallet, uint256 anomalyType, uint256 riskScore)
Read path (presentation only): getWalletStatus(address) → 7-tuple

Design decisions:
- Transactions are built with web3.py, signed locally with eth_account and
  sent raw; the agent's key never leaves the process.
- Broadcast (nonce lookup + send) is serialized with one asyncio.Lock because
  all reports share a single signing account. The lock is released before
  the confirmation wait.
- Receipts with status != 1 are treated as failures.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted

from guardianforge.chain.provider import to_checksum
from guardianforge.exceptions import (
    ConfigInvalidError,
    ConfigMissingError,
    ProviderError,
    ProviderTimeoutError,
)
from guardianforge.models import WalletStatus

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 120.0

REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "reportAnomaly",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "wallet", "type": "address"},
            {"name": "anomalyType", "type": "uint256"},
            {"name": "riskScore", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getWalletStatus",
        "stateMutability": "view",
        "inputs": [{"name": "wallet", "type": "address"}],
        "outputs": [
            {"name": "isFrozen", "type": "bool"},
            {"name": "frozenAt", "type": "uint256"},
            {"name": "lastCheck", "type": "uint256"},
            {"name": "highestRisk", "type": "uint256"},
            {"name": "recoveryStatus", "type": "uint8"},
            {"name": "approvalCount", "type": "uint256"},
            {"name": "requiredCount", "type": "uint256"},
        ],
    },
]


def _hex(value: Any) -> str:
    """HexBytes / bytes / str → 0x-prefixed hex string."""
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    h = bytes(value).hex()
    return "0x" + h


class RegistryClient:
    """
    Async client for the anomaly registry contract.

    A client built without a private key can only read (`status` command).
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        private_key: str | None = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ) -> None:
        self._w3 = w3
        self._contract_address = contract_address
        self._confirmation_timeout = confirmation_timeout
        self._broadcast_lock = asyncio.Lock()
        self._contract: Any = None
        self._account: Any = None
        if private_key:
            try:
                self._account = Account.from_key(private_key)
            except Exception as e:
                raise ConfigInvalidError("AGENT_PRIVATE_KEY is not a valid private key") from e

    @property
    def agent_address(self) -> str | None:
        return self._account.address if self._account is not None else None

    @property
    def contract(self) -> Any:
        if self._contract is None:
            if not self._contract_address:
                raise ConfigMissingError(
                    "Missing required configuration: CONTRACT_ADDRESS",
                    details={"missing": ["CONTRACT_ADDRESS"]},
                )
            self._contract = self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(self._contract_address),
                abi=REGISTRY_ABI,
            )
        return self._contract

    async def submit_anomaly(self, wallet: str, anomaly_type: int, risk_score: int) -> str:
        """Build, sign and broadcast reportAnomaly. Returns the tx hash."""
        if self._account is None:
            raise ConfigMissingError(
                "Missing required configuration: AGENT_PRIVATE_KEY",
                details={"missing": ["AGENT_PRIVATE_KEY"]},
            )
        checksum = to_checksum(wallet)
        call = self.contract.functions.reportAnomaly(checksum, int(anomaly_type), int(risk_score))

        async with self._broadcast_lock:
            try:
                nonce = await self._w3.eth.get_transaction_count(
                    self._account.address, "pending"
                )
                tx = await call.build_transaction(
                    {"from": self._account.address, "nonce": nonce}
                )
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                raise ProviderError(
                    f"reportAnomaly broadcast failed for {wallet}: {e}",
                    details={"wallet": wallet},
                ) from e

        tx_hex = _hex(tx_hash)
        logger.info("reportAnomaly broadcast for %s: %s", wallet, tx_hex)
        return tx_hex

    async def wait_for_confirmation(self, tx_hash: str) -> None:
        """Wait for inclusion; raise unless the receipt reports success."""
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._confirmation_timeout
            )
        except TimeExhausted as e:
            raise ProviderTimeoutError(
                f"Transaction {tx_hash} not confirmed within {self._confirmation_timeout}s",
                details={"tx_hash": tx_hash},
            ) from e
        except Exception as e:
            raise ProviderError(
                f"Receipt lookup failed for {tx_hash}: {e}",
                details={"tx_hash": tx_hash},
            ) from e

        if receipt.get("status") != 1:
            raise ProviderError(
                f"Transaction {tx_hash} reverted",
                details={"tx_hash": tx_hash, "block": receipt.get("blockNumber")},
            )

    async def get_wallet_status(self, wallet: str) -> WalletStatus:
        checksum = to_checksum(wallet)
        contract = self.contract
        try:
            values = await contract.functions.getWalletStatus(checksum).call()
        except Exception as e:
            raise ProviderError(
                f"getWalletStatus failed for {wallet}: {e}",
                details={"wallet": wallet},
            ) from e
        return WalletStatus.from_tuple(wallet, values)
