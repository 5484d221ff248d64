"""Shared fixtures for the volume bot test suite."""

import sys
import random
from pathlib import Path
from typing import List

import pytest
import base58
from solders.keypair import Keypair

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sol_volume_bot.config import Config
from sol_volume_bot.wallet import WalletIdentity
from sol_volume_bot.utils import SecureLogger

TOKEN = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


class ManualClock:
    """Fake clock whose sleep() records the delay and jumps time forward."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeExecutor:
    """Executor returning scripted results: a string is a tx id, an exception is raised."""

    def __init__(self, script=None, default="TX"):
        self.script = list(script or [])
        self.default = default
        self.calls = []

    async def swap(self, from_asset, to_asset, amount, slippage, wallet, priority_fee, options):
        self.calls.append({
            "from": from_asset,
            "to": to_asset,
            "amount": amount,
            "wallet": wallet.address,
        })
        result = self.script.pop(0) if self.script else f"{self.default}{len(self.calls)}"
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        pass


def make_secret() -> str:
    """Fresh base58 encoded 64-byte Solana secret key."""
    return base58.b58encode(bytes(Keypair())).decode()


def make_wallet(label: str = "") -> WalletIdentity:
    return WalletIdentity.from_keypair(Keypair(), label=label)


def make_config(**overrides) -> Config:
    values = dict(
        token_address=TOKEN,
        min_amount=0.001,
        max_amount=0.001,
        delay_ms=10000,
        sell_delay_ms=5000,
        max_retries=3,
        retry_delay_ms=10000,
        log_file=None,
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def wallets():
    return tuple(make_wallet(f"WALLET_{i}_PRIVATE_KEY") for i in range(1, 4))


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture(autouse=True)
def reset_secrets():
    yield
    SecureLogger.clear_secrets()
