"""
Trade Cycle Controller
======================
One cycle for one leased wallet: buy a sampled amount of the token, wait,
then sell the whole token balance back to SOL.

A sell is only attempted after a buy returned a transaction id. A failed
sell leaves the wallet holding the token; that is logged as [STUCK] and
left for the next cycle on the wallet to pick up.
"""

import asyncio
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .config import Config
from .executor import AUTO_AMOUNT, SwapOptions
from .retry import RetryPolicy, TradeOutcome
from .sampler import AmountSampler
from .wallet import WalletIdentity
from .utils import get_logger, format_amount

logger = get_logger(__name__)


class CyclePhase(Enum):
    IDLE = "idle"
    BUYING = "buying"
    AWAITING_SELL_DELAY = "awaiting_sell_delay"
    SELLING = "selling"
    DONE = "done"


@dataclass
class CycleResult:
    """Outcome of one buy -> sell cycle."""
    wallet_address: str
    phase: CyclePhase = CyclePhase.IDLE
    success: bool = False
    amount: Optional[float] = None
    buy: Optional[TradeOutcome] = None
    sell: Optional[TradeOutcome] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def buy_tx(self) -> Optional[str]:
        return self.buy.tx_id if self.buy else None

    @property
    def sell_tx(self) -> Optional[str]:
        return self.sell.tx_id if self.sell else None

    @property
    def stuck(self) -> bool:
        """Bought but not sold: the wallet still holds the token."""
        return bool(self.buy and self.buy.success and not (self.sell and self.sell.success))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'wallet_address': self.wallet_address,
            'success': self.success,
            'amount': self.amount,
            'phase': self.phase.value,
            'buy_tx': self.buy_tx,
            'sell_tx': self.sell_tx,
            'stuck': self.stuck,
            'error': self.error,
            'timestamp': self.timestamp
        }


class TradeCycleController:
    """Sequences the buy and sell legs of a cycle through the retry policy."""

    def __init__(
        self,
        config: Config,
        executor,
        policy: RetryPolicy,
        sampler: Optional[AmountSampler] = None,
        options: Optional[SwapOptions] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.executor = executor
        self.policy = policy
        self.sampler = sampler or AmountSampler(config.min_amount, config.max_amount)
        self.options = options or SwapOptions.from_config(config)
        self._sleep = sleep

    def _log_transaction(self, tx_id: str, is_buy: bool, amount: Optional[float] = None):
        amount_str = f" ({format_amount(amount)} SOL)" if is_buy and amount else ""
        logger.info(f"{'[BOUGHT]' if is_buy else '[SOLD]'} [{tx_id}]{amount_str}")

    async def buy(self, wallet: WalletIdentity, amount: float) -> TradeOutcome:
        """Swap `amount` SOL into the target token, retrying with the same amount."""
        async def attempt() -> str:
            logger.info(f"[BUYING] [{wallet.address}] Initiating swap with {format_amount(amount)} SOL")
            return await self.executor.swap(
                self.config.base_asset,
                self.config.token_address,
                amount,
                self.config.slippage,
                wallet,
                self.config.priority_fee,
                self.options,
            )

        outcome = await self.policy.execute(attempt, label="buy")
        if outcome.success:
            self._log_transaction(outcome.tx_id, True, amount)
        return outcome

    async def sell(self, wallet: WalletIdentity) -> TradeOutcome:
        """Swap the wallet's entire token balance back into SOL."""
        async def attempt() -> str:
            logger.info(f"[SELLING] [{wallet.address}] Initiating swap")
            return await self.executor.swap(
                self.config.token_address,
                self.config.base_asset,
                AUTO_AMOUNT,
                self.config.slippage,
                wallet,
                self.config.priority_fee,
                self.options,
            )

        outcome = await self.policy.execute(attempt, label="sell")
        if outcome.success:
            self._log_transaction(outcome.tx_id, False)
        return outcome

    async def run_cycle(self, wallet: WalletIdentity) -> CycleResult:
        """Run buy -> sell-delay -> sell for a wallet the caller has leased."""
        result = CycleResult(wallet_address=wallet.address)

        result.phase = CyclePhase.BUYING
        result.amount = self.sampler.sample()
        result.buy = await self.buy(wallet, result.amount)
        if not result.buy.success:
            result.error = f"buy failed: {result.buy.error}"
            result.phase = CyclePhase.DONE
            return result

        result.phase = CyclePhase.AWAITING_SELL_DELAY
        await self._sleep(self.config.sell_delay_seconds)

        result.phase = CyclePhase.SELLING
        result.sell = await self.sell(wallet)
        result.phase = CyclePhase.DONE

        if not result.sell.success:
            result.error = f"sell failed: {result.sell.error}"
            logger.warning(
                f"[STUCK] [{wallet.address}] Bought {format_amount(result.amount)} SOL of "
                f"{self.config.token_address} but the sell failed; tokens remain in the wallet"
            )
            return result

        result.success = True
        return result
