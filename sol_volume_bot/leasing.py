"""
Wallet Lease Manager
====================
Hands out exclusive, non-blocking leases on wallets from the pool.

A wallet's address is in the lease set exactly while one worker holds it.
Selection is uniformly random among idle wallets; when every wallet is
leased, acquire() polls until one is released.
"""

import asyncio
import random
import threading
from typing import Awaitable, Callable, FrozenSet, Optional, Sequence, Set

from .wallet import WalletIdentity
from .utils import NoAvailableWalletError, StartupConfigurationError, get_logger, format_address

logger = get_logger(__name__)


class WalletLeaseManager:
    """
    Owns the wallet pool and the shared set of leased addresses.

    Check-and-insert and removal happen under one lock, so the manager is
    safe to share between asyncio tasks and threads alike.
    """

    def __init__(
        self,
        pool: Sequence[WalletIdentity],
        poll_interval: float = 0.05,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not pool:
            raise StartupConfigurationError("Wallet pool is empty")
        self._pool = tuple(pool)
        self._leased: Set[str] = set()
        self._lock = threading.Lock()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.poll_interval = poll_interval

    @property
    def pool(self):
        return self._pool

    @property
    def pool_size(self) -> int:
        return len(self._pool)

    @property
    def leased(self) -> FrozenSet[str]:
        """Snapshot of the currently leased addresses."""
        with self._lock:
            return frozenset(self._leased)

    @property
    def available_count(self) -> int:
        with self._lock:
            return len(self._pool) - len(self._leased)

    def is_leased(self, address: str) -> bool:
        with self._lock:
            return address in self._leased

    def try_acquire(self) -> Optional[WalletIdentity]:
        """Lease a random idle wallet, or return None when all are leased."""
        with self._lock:
            if len(self._leased) >= len(self._pool):
                return None
            # At least one idle wallet exists, so redrawing terminates
            while True:
                wallet = self._rng.choice(self._pool)
                if wallet.address not in self._leased:
                    self._leased.add(wallet.address)
                    return wallet

    async def acquire(self, timeout: Optional[float] = None) -> WalletIdentity:
        """
        Lease a random idle wallet, polling while the pool is exhausted.

        Args:
            timeout: Give up after this many seconds (default: wait forever)

        Raises:
            NoAvailableWalletError: If timeout elapses with every wallet leased
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        waited = False

        while True:
            wallet = self.try_acquire()
            if wallet is not None:
                logger.debug(f"Leased wallet {format_address(wallet.address)}")
                return wallet

            if deadline is not None and loop.time() >= deadline:
                raise NoAvailableWalletError(
                    f"All {len(self._pool)} wallets stayed leased for {timeout}s"
                )
            if not waited:
                logger.debug("All wallets leased, waiting for a release")
                waited = True
            await self._sleep(self.poll_interval)

    def release(self, address: str):
        """Return a wallet to the pool. Releasing an idle wallet is a no-op."""
        with self._lock:
            self._leased.discard(address)
        logger.debug(f"Released wallet {format_address(address)}")
