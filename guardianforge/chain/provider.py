"""
Chain-state provider - web3.py balance reads.

Design decisions:
- Uses AsyncWeb3 over HTTP; one connection shared with the registry client.
- PoA extra-data middleware is injected so Polygon-family chains decode blocks.
- Every RPC call is bounded by asyncio.wait_for; any failure is normalised
  into ProviderError so the scheduler can treat it as a per-wallet skip.
"""

from __future__ import annotations

import asyncio
import logging

from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from guardianforge.config import ADDRESS_RE
from guardianforge.exceptions import ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


def connect(rpc_url: str, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> AsyncWeb3:
    """Create an AsyncWeb3 client for rpc_url with PoA middleware injected."""
    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    try:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    except Exception as e:
        logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
    return w3


def to_checksum(address: str) -> str:
    """Validate and checksum an address. No network call."""
    if not ADDRESS_RE.match(address):
        raise ProviderError(
            f"Invalid address: {address!r}. Must be 0x + 40 hex chars.",
            details={"address": address},
        )
    return AsyncWeb3.to_checksum_address(address)


class Web3ChainProvider:
    """Balance reads for monitored wallets."""

    def __init__(self, w3: AsyncWeb3, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self._w3 = w3
        self._timeout = timeout

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    async def get_balance(self, address: str) -> int:
        """Current balance of address in wei."""
        checksum = to_checksum(address)
        try:
            balance = await asyncio.wait_for(
                self._w3.eth.get_balance(checksum), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"Balance read timed out for {address}",
                details={"address": address, "timeout_secs": self._timeout},
            ) from e
        except Exception as e:
            raise ProviderError(
                f"Balance read failed for {address}: {e}",
                details={"address": address},
            ) from e
        return int(balance)
