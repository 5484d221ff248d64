"""Tests for trade size sampling."""

import random

import pytest

from sol_volume_bot.sampler import AmountSampler, sample_amount


class TestSampleAmount:
    """Tests for sample_amount()."""

    def test_fixed_amount_returned_unchanged(self):
        """Equal bounds return the configured amount exactly."""
        assert sample_amount(0.001, 0.001) == 0.001
        assert sample_amount(0.123456, 0.123456) == 0.123456

    def test_samples_stay_in_range(self):
        """Every draw lies inside [min, max]."""
        rng = random.Random(42)
        for _ in range(500):
            amount = sample_amount(0.01, 0.05, rng)
            assert 0.01 <= amount <= 0.05

    def test_samples_rounded_to_four_decimals(self):
        rng = random.Random(7)
        for _ in range(200):
            amount = sample_amount(0.001, 0.5, rng)
            assert round(amount, 4) == amount

    def test_clamped_draws_keep_four_decimals(self):
        """Bounds with more decimals clamp to the nearest 4-decimal amount inside."""
        rng = random.Random(3)
        for _ in range(500):
            amount = sample_amount(0.00012, 0.0005, rng)
            assert 0.0002 <= amount <= 0.0005
            assert round(amount, 4) == amount

    @pytest.mark.parametrize("low,high", [(0.00012, 0.00018), (0.00101, 0.00104)])
    def test_range_without_four_decimal_amount_rejected(self, low, high):
        with pytest.raises(ValueError, match="decimals"):
            sample_amount(low, high)

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValueError):
            sample_amount(0.5, 0.1)


class TestAmountSampler:
    """Tests for the AmountSampler wrapper."""

    def test_fixed_flag(self):
        assert AmountSampler(0.001, 0.001).fixed
        assert not AmountSampler(0.001, 0.002).fixed

    def test_seeded_sampler_is_reproducible(self):
        first = AmountSampler(0.01, 1.0, random.Random(99))
        second = AmountSampler(0.01, 1.0, random.Random(99))
        assert [first.sample() for _ in range(10)] == [second.sample() for _ in range(10)]

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValueError):
            AmountSampler(2.0, 1.0)

    def test_narrow_range_rejected(self):
        with pytest.raises(ValueError):
            AmountSampler(0.00012, 0.00018)
