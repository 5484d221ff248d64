"""
Solana Volume Bot

Runs concurrent buy -> sell cycles for a target SPL token across a pool of
Solana wallets, through the Solana Tracker swap API.

Usage:
    from sol_volume_bot import ConfigManager, load_wallet_pool, WorkerScheduler

    # Or from the shell: sol-volume-bot run --threads 3
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import Config, ConfigManager
from .wallet import WalletIdentity, SecureKeyManager, load_wallet_pool
from .sampler import AmountSampler, sample_amount
from .leasing import WalletLeaseManager
from .executor import AUTO_AMOUNT, SwapOptions, SolanaTrackerExecutor, DryRunExecutor, create_executor
from .retry import FailureCounters, RetryPolicy, TradeOutcome, classify_failure
from .cycle import CycleResult, TradeCycleController
from .scheduler import TradeStats, WorkerScheduler
from .utils import (
    FailureKind,
    VolumeBotError,
    StartupConfigurationError,
    NoAvailableWalletError,
    SwapError,
    RateLimitedError,
    TransactionExpiredError,
    setup_logging,
    get_logger,
)

__all__ = [
    "Config",
    "ConfigManager",
    "WalletIdentity",
    "SecureKeyManager",
    "load_wallet_pool",
    "AmountSampler",
    "sample_amount",
    "WalletLeaseManager",
    "AUTO_AMOUNT",
    "SwapOptions",
    "SolanaTrackerExecutor",
    "DryRunExecutor",
    "create_executor",
    "FailureCounters",
    "RetryPolicy",
    "TradeOutcome",
    "classify_failure",
    "CycleResult",
    "TradeCycleController",
    "TradeStats",
    "WorkerScheduler",
    "FailureKind",
    "VolumeBotError",
    "StartupConfigurationError",
    "NoAvailableWalletError",
    "SwapError",
    "RateLimitedError",
    "TransactionExpiredError",
    "setup_logging",
    "get_logger",
]
