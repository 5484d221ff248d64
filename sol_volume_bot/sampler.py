"""Trade size sampling."""

import math
import random
from typing import Optional, Tuple

AMOUNT_DECIMALS = 4
_SCALE = 10 ** AMOUNT_DECIMALS


def amount_grid(min_amount: float, max_amount: float) -> Tuple[int, int]:
    """
    Smallest and largest 4-decimal amounts inside [min_amount, max_amount],
    in units of 0.0001. low > high means the range holds no such amount.
    """
    low = math.ceil(round(min_amount * _SCALE, 6))
    high = math.floor(round(max_amount * _SCALE, 6))
    return low, high


def check_range(min_amount: float, max_amount: float):
    """Raise ValueError unless the range can be sampled."""
    if min_amount > max_amount:
        raise ValueError(f"min_amount ({min_amount}) is greater than max_amount ({max_amount})")
    if min_amount == max_amount:
        return
    low, high = amount_grid(min_amount, max_amount)
    if low > high:
        raise ValueError(
            f"range {min_amount} - {max_amount} contains no amount with "
            f"{AMOUNT_DECIMALS} decimals"
        )


class AmountSampler:
    """Draws buy sizes uniformly from a configured SOL range."""

    def __init__(self, min_amount: float, max_amount: float, rng: Optional[random.Random] = None):
        check_range(min_amount, max_amount)
        self.min_amount = min_amount
        self.max_amount = max_amount
        self._rng = rng or random.Random()

    @property
    def fixed(self) -> bool:
        return self.min_amount == self.max_amount

    def sample(self) -> float:
        """Return a fresh trade size. Call once per buy, not per retry."""
        return sample_amount(self.min_amount, self.max_amount, self._rng)


def sample_amount(min_amount: float, max_amount: float, rng: Optional[random.Random] = None) -> float:
    """
    Sample a trade size in [min_amount, max_amount].

    Equal bounds return min_amount unchanged (fixed-amount mode). Otherwise
    the draw is rounded to 4 decimals and clamped to the nearest 4-decimal
    amount still inside the range, so both rules always hold. A range with
    no 4-decimal amount in it (narrower than 0.0001) raises ValueError.
    """
    check_range(min_amount, max_amount)
    if min_amount == max_amount:
        return min_amount

    rng = rng or random
    low, high = amount_grid(min_amount, max_amount)
    amount = round(rng.uniform(min_amount, max_amount), AMOUNT_DECIMALS)
    return min(max(amount, low / _SCALE), high / _SCALE)
