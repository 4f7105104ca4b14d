"""
Chain layer for guardianforge.

Two narrow seams to the outside world:
  ChainStateProvider - balance reads, consumed by the tracker
  AnomalyRegistry    - reportAnomaly writes + confirmation, consumed by the reporter

Both are Protocols so tests can drive the agent with in-memory fakes.
The web3.py implementations live in provider.py and registry.py.

Usage:
    from guardianforge.chain import build_chain_clients
    provider, registry = build_chain_clients(config)
    wei = await provider.get_balance(address)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from guardianforge.chain.provider import Web3ChainProvider
    from guardianforge.chain.registry import RegistryClient
    from guardianforge.config import GuardianConfig
    from guardianforge.models import WalletStatus


@runtime_checkable
class ChainStateProvider(Protocol):
    """Read-only chain access."""

    async def get_balance(self, address: str) -> int:
        """
        Return the current native balance of address, in wei.

        Raises:
            ProviderError: RPC unreachable, timed out, or returned an error.
        """
        ...


@runtime_checkable
class AnomalyRegistry(Protocol):
    """Write side of the on-chain anomaly registry."""

    async def submit_anomaly(self, wallet: str, anomaly_type: int, risk_score: int) -> str:
        """
        Sign and broadcast reportAnomaly(wallet, anomaly_type, risk_score).

        Returns the transaction hash (0x-prefixed hex) once the node accepts it.

        Raises:
            ProviderError: Build, sign or broadcast failed.
        """
        ...

    async def wait_for_confirmation(self, tx_hash: str) -> None:
        """
        Block until tx_hash is included with a success status.

        Raises:
            ProviderTimeoutError: Not included within the confirmation timeout.
            ProviderError: Reverted, or the receipt could not be fetched.
        """
        ...

    async def get_wallet_status(self, wallet: str) -> WalletStatus:
        """Read getWalletStatus(wallet). Presentation surface only."""
        ...


def build_chain_clients(
    config: GuardianConfig,
    with_signer: bool = True,
) -> tuple[Web3ChainProvider, RegistryClient]:
    """
    Factory: one AsyncWeb3 connection shared by the provider and the registry.

    Args:
        config: Loaded config (rpc_url, contract_address, private_key).
        with_signer: False for read-only commands (no private key needed).
    """
    from guardianforge.chain.provider import Web3ChainProvider, connect
    from guardianforge.chain.registry import RegistryClient

    w3 = connect(config.chain.rpc_url, timeout=config.chain.request_timeout_secs)
    provider = Web3ChainProvider(w3, timeout=config.chain.request_timeout_secs)
    registry = RegistryClient(
        w3,
        contract_address=config.chain.contract_address,
        private_key=config.chain.private_key if with_signer else None,
        confirmation_timeout=config.chain.confirmation_timeout_secs,
    )
    return provider, registry
