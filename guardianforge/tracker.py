"""Balance tracker: the owned table of last-observed balances.

One MonitoredWallet per configured address, created at startup and never
removed during a run. Only the tracker mutates last_balance.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Callable, Iterable

from guardianforge.chain import ChainStateProvider
from guardianforge.models import BalanceDelta, MonitoredWallet

DEFAULT_EPSILON = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class BalanceTracker:
    """
    Computes signed balance deltas between consecutive observations.

    Args:
        provider: Chain-state provider used for balance reads.
        addresses: Monitored addresses; duplicates (case-insensitive) collapse.
        epsilon: Minimum absolute change, in native units, that counts as activity.
        clock: Injectable "now" for last_checked_at.
    """

    def __init__(
        self,
        provider: ChainStateProvider,
        addresses: Iterable[str],
        epsilon: Decimal = DEFAULT_EPSILON,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._provider = provider
        self._epsilon = Decimal(epsilon)
        self._clock = clock
        self._wallets: dict[str, MonitoredWallet] = {}
        for address in addresses:
            key = address.lower()
            if key not in self._wallets:
                self._wallets[key] = MonitoredWallet(address=address)

    @property
    def wallets(self) -> list[MonitoredWallet]:
        return list(self._wallets.values())

    @property
    def epsilon(self) -> Decimal:
        return self._epsilon

    def get(self, address: str) -> MonitoredWallet | None:
        return self._wallets.get(address.lower())

    async def observe(self, wallet: MonitoredWallet) -> BalanceDelta:
        """
        Read the current balance and return the change since the last read.

        The first observation seeds the baseline (delta 0). The stored balance
        is updated on every successful read, significant or not.

        Raises:
            ProviderError: Balance read failed; the stored balance is untouched.
        """
        current = await self._provider.get_balance(wallet.address)
        previous = wallet.last_balance if wallet.last_balance is not None else current
        wallet.last_balance = current
        wallet.last_checked_at = self._clock()
        return BalanceDelta(wallet=wallet, previous=previous, current=current)

    def is_significant(self, delta: BalanceDelta) -> bool:
        """True when the change is non-zero and |change| in native units reaches epsilon."""
        return delta.change != 0 and abs(delta.native) >= self._epsilon
