"""
Worker Scheduler
================
Runs N concurrent workers, each looping lease -> cycle -> release -> delay.

- Worker count is capped at the wallet pool size
- A crash inside one iteration is logged and followed by a recovery pause;
  it never takes down the other workers
- Aggregated statistics are rendered as a Rich table on shutdown
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from rich.table import Table
from rich import box

from .config import Config
from .cycle import CycleResult, TradeCycleController
from .leasing import WalletLeaseManager
from .utils import console, get_logger, format_amount, format_duration

logger = get_logger(__name__)

RECOVERY_DELAY = 30.0


@dataclass
class TradeStats:
    """Aggregated statistics across every worker."""
    cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    stuck_cycles: int = 0
    crashes: int = 0
    volume_sol: float = 0.0
    wallet_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.cycles == 0:
            return 0.0
        return (self.successful_cycles / self.cycles) * 100

    def record(self, result: CycleResult):
        self.cycles += 1
        per_wallet = self.wallet_stats.setdefault(
            result.wallet_address, {'cycles': 0, 'successful': 0}
        )
        per_wallet['cycles'] += 1

        if result.success:
            self.successful_cycles += 1
            per_wallet['successful'] += 1
        else:
            self.failed_cycles += 1
        if result.stuck:
            self.stuck_cycles += 1
        if result.buy and result.buy.success and result.amount:
            self.volume_sol += result.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycles': self.cycles,
            'successful_cycles': self.successful_cycles,
            'failed_cycles': self.failed_cycles,
            'stuck_cycles': self.stuck_cycles,
            'crashes': self.crashes,
            'success_rate': self.success_rate,
            'volume_sol': self.volume_sol,
            'wallet_stats': self.wallet_stats
        }


class WorkerScheduler:
    """
    Drives the trade cycle controller from several workers at once.

    The lease manager guarantees no two workers ever trade the same wallet,
    so the workers need no coordination beyond it.
    """

    def __init__(
        self,
        config: Config,
        lease_manager: WalletLeaseManager,
        controller: TradeCycleController,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        recovery_delay: float = RECOVERY_DELAY,
    ):
        self.config = config
        self.lease_manager = lease_manager
        self.controller = controller
        self.recovery_delay = recovery_delay
        self.stats = TradeStats()
        self._sleep = sleep
        self._running = False

    @property
    def worker_count(self) -> int:
        return min(self.config.threads, self.lease_manager.pool_size)

    @property
    def running(self) -> bool:
        return self._running

    def stop(self):
        """Let every worker finish its current iteration, then exit."""
        if self._running:
            logger.info("Stopping workers after their current cycle")
        self._running = False

    async def run_once(self, worker_id: int) -> CycleResult:
        """One iteration: lease a wallet, trade it, release it, record the result."""
        wallet = await self.lease_manager.acquire()
        try:
            logger.info(f"[WORKER {worker_id}] Trading with wallet {wallet.address}")
            result = await self.controller.run_cycle(wallet)
        finally:
            self.lease_manager.release(wallet.address)

        self.stats.record(result)
        return result

    async def _worker(self, worker_id: int):
        logger.debug(f"[WORKER {worker_id}] Started")
        while self._running:
            try:
                await self.run_once(worker_id)
                if self._running:
                    await self._sleep(self.config.delay_seconds)
            except Exception as e:
                self.stats.crashes += 1
                logger.critical(f"[WORKER {worker_id}] Unhandled error: {e}", exc_info=True)
                logger.info(
                    f"[WORKER {worker_id}] Recovering in {format_duration(self.recovery_delay)}"
                )
                await self._sleep(self.recovery_delay)
        logger.debug(f"[WORKER {worker_id}] Stopped")

    async def run(self):
        """Start the workers and wait for all of them to exit."""
        if self.config.threads > self.lease_manager.pool_size:
            logger.warning(
                f"Requested {self.config.threads} threads but only "
                f"{self.lease_manager.pool_size} wallets loaded; "
                f"running {self.worker_count} workers"
            )

        self._running = True
        logger.info(
            f"Starting {self.worker_count} worker(s) on {self.lease_manager.pool_size} wallet(s)"
        )
        tasks = [
            asyncio.create_task(self._worker(worker_id))
            for worker_id in range(1, self.worker_count + 1)
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            self._running = False
            for task in tasks:
                task.cancel()

    def get_stats_table(self) -> Table:
        """Get a Rich table with current statistics."""
        table = Table(title="Volume Bot Statistics", box=box.ROUNDED)

        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Cycles", str(self.stats.cycles))
        table.add_row("Successful", str(self.stats.successful_cycles))
        table.add_row("Failed", str(self.stats.failed_cycles))
        table.add_row("Stuck (bought, not sold)", str(self.stats.stuck_cycles))
        table.add_row("Worker Crashes", str(self.stats.crashes))
        table.add_row("Success Rate", f"{self.stats.success_rate:.1f}%")
        table.add_row("Volume Bought", f"{format_amount(self.stats.volume_sol)} SOL")

        counters = self.controller.policy.counters.snapshot()
        table.add_row("Cooldowns", str(counters['cooldowns']))

        return table

    def print_summary(self, target: Optional[Any] = None):
        (target or console).print(self.get_stats_table())
