"""
Unit tests for the indicator library.
"""
import math

import pytest

from fusion_trader.agents.data_structures import Candle
from fusion_trader.analysis.indicators import (
    atr,
    bollinger,
    closes,
    ema,
    macd,
    normalize,
    rsi,
    volume_profile,
)


@pytest.mark.unit
def test_closes_accepts_mixed_candle_shapes():
    raw = [
        {"close": 100.0},
        {"c": "101.5"},
        [0, 101, 103, 100, 102.0, 10, 1],
        103,
    ]
    assert closes(raw) == [100.0, 101.5, 102.0, 103.0]
    assert closes(None) == []


@pytest.mark.unit
def test_normalize_clamps_and_handles_empty_range():
    assert normalize(5, 0, 10) == 0.5
    assert normalize(-1, 0, 10) == 0.0
    assert normalize(20, 0, 10) == 1.0
    assert normalize(3, 2, 2) == 0.0


@pytest.mark.unit
def test_ema_seeds_with_simple_average():
    assert ema([1, 2, 3], 3) == pytest.approx(2.0)
    # k = 0.5 for period 3: 4 * 0.5 + 2 * 0.5
    assert ema([1, 2, 3, 4], 3) == pytest.approx(3.0)


@pytest.mark.unit
def test_ema_requires_enough_values():
    assert ema([1, 2], 3) is None
    assert ema([], 9) is None


@pytest.mark.unit
def test_rsi_strictly_increasing_is_exactly_100():
    values = [float(i) for i in range(1, 31)]
    assert rsi(values, 14) == 100.0


@pytest.mark.unit
def test_rsi_strictly_decreasing_is_zero():
    values = [float(i) for i in range(30, 0, -1)]
    assert rsi(values, 14) == pytest.approx(0.0)


@pytest.mark.unit
def test_rsi_insufficient_data_returns_none():
    assert rsi([1.0] * 14, 14) is None


@pytest.mark.unit
def test_rsi_stays_in_range_for_alternating_series():
    values = [100 + (1 if i % 2 else -1) * (i % 5) for i in range(40)]
    value = rsi(values, 14)
    assert value is not None
    assert 0 <= value <= 100


@pytest.mark.unit
def test_macd_needs_slow_plus_signal_values():
    assert macd([1.0] * 34) is None
    assert macd([1.0] * 35) is not None


@pytest.mark.unit
def test_macd_positive_histogram_on_accelerating_uptrend(rising_closes):
    result = macd(rising_closes)
    assert result.macd > 0
    assert result.histogram > 0
    assert result.histogram == pytest.approx(result.macd - result.signal)


@pytest.mark.unit
def test_macd_flat_series_is_zero():
    result = macd([50.0] * 60)
    assert result.macd == pytest.approx(0.0)
    assert result.histogram == pytest.approx(0.0)


@pytest.mark.unit
def test_bollinger_uses_population_std():
    values = [1.0, 2.0, 3.0, 4.0]
    bands = bollinger(values, period=4, mult=2)
    expected_std = math.sqrt(1.25)
    assert bands.middle == pytest.approx(2.5)
    assert bands.std == pytest.approx(expected_std)
    assert bands.upper == pytest.approx(2.5 + 2 * expected_std)
    assert bands.lower == pytest.approx(2.5 - 2 * expected_std)


@pytest.mark.unit
def test_bollinger_flat_series_collapses_bands():
    bands = bollinger([10.0] * 25)
    assert bands.upper == bands.middle == bands.lower == 10.0


@pytest.mark.unit
def test_atr_averages_true_range(candle_factory):
    candles = candle_factory([100.0] * 4, spread=1.0)
    assert atr(candles, 3) == pytest.approx(2.0)


@pytest.mark.unit
def test_atr_insufficient_data_returns_none(candle_factory):
    assert atr(candle_factory([100.0] * 14), 14) is None
    assert atr([], 14) is None


@pytest.mark.unit
def test_volume_profile_identical_closes_use_unit_bucket(candle_factory):
    profile = volume_profile(candle_factory([100.0] * 5, volume=10.0), bins=4)
    assert profile.nodes == [50.0, 0.0, 0.0, 0.0]
    assert profile.poc == pytest.approx(100.5)
    assert profile.range_min == profile.range_max == 100.0


@pytest.mark.unit
def test_volume_profile_puts_max_close_in_last_bucket(candle_factory):
    profile = volume_profile(candle_factory([100.0, 110.0, 120.0], volume=1.0), bins=2)
    assert profile.nodes == [1.0, 2.0]
    assert profile.poc == pytest.approx(115.0)


@pytest.mark.unit
def test_volume_profile_empty_returns_none():
    assert volume_profile([]) is None


@pytest.mark.unit
@pytest.mark.parametrize("bad_close", [math.nan, math.inf, -math.inf])
def test_volume_profile_non_finite_close_returns_none(candle_factory, bad_close):
    bars = list(candle_factory([100.0, 101.0, 102.0]))
    bars.append(Candle(open=102.0, high=103.0, low=101.0, close=bad_close, volume=1.0))
    assert volume_profile(bars) is None


@pytest.mark.unit
def test_volume_profile_non_finite_volume_returns_none(candle_factory):
    bars = list(candle_factory([100.0, 101.0]))
    bars.append(Candle(open=101.0, high=102.0, low=100.0, close=101.5, volume=math.nan))
    assert volume_profile(bars) is None


@pytest.mark.unit
@pytest.mark.parametrize("bad_close", [math.nan, math.inf])
def test_atr_non_finite_bar_in_window_returns_none(candle_factory, bad_close):
    bars = list(candle_factory([100.0 + i for i in range(20)]))
    bars[-1] = Candle(open=119.0, high=120.0, low=118.0, close=bad_close, volume=1.0)
    assert atr(bars, 14) is None
