"""
Technical Analysis Engine Test
==============================
"""
import pytest
import numpy as np
import pandas as pd

from tradebot.config import IndicatorConfig, SmoothingMode
from tradebot.errors import ValidationError
from tradebot.features import TechnicalAnalysisEngine, IndicatorSnapshot


def make_engine(prices, volumes=None, config=None):
    engine = TechnicalAnalysisEngine("SOL", config)
    volumes = volumes if volumes is not None else [1000.0] * len(prices)
    for price, volume in zip(prices, volumes):
        engine.add_sample(price, volume)
    return engine


def random_walk(n: int, seed: int = 42):
    rng = np.random.default_rng(seed)
    return (100 * np.cumprod(1 + rng.normal(0, 0.03, n))).tolist()


class TestIngestion:
    """Sample history"""

    def test_add_sample_appends(self):
        engine = TechnicalAnalysisEngine("SOL")
        sample = engine.add_sample(101.5, 250, "2024-01-01 09:30")
        engine.add_sample(102.0)

        assert len(engine) == 2
        assert engine.samples[0] == sample
        assert sample.timestamp == pd.Timestamp("2024-01-01 09:30")
        assert engine.samples[1].volume == 0.0
        assert engine.last_price == 102.0

    def test_default_timestamp(self):
        engine = TechnicalAnalysisEngine()
        before = pd.Timestamp.now()
        sample = engine.add_sample(10)
        assert sample.timestamp >= before

    def test_samples_are_immutable(self):
        engine = make_engine([1, 2, 3])
        with pytest.raises(AttributeError):
            engine.samples[0].price = 5
        assert isinstance(engine.samples, tuple)

    def test_last_n(self):
        engine = make_engine([1, 2, 3, 4])
        assert [s.price for s in engine.last_n(2)] == [3.0, 4.0]
        assert engine.last_n(0) == []

    def test_data_summary(self):
        assert TechnicalAnalysisEngine().get_data_summary()['data_points'] == 0

        summary = make_engine([5, 1, 9]).get_data_summary()
        assert summary['data_points'] == 3
        assert summary['price_range'] == {'min': 1.0, 'max': 9.0}


class TestMovingAverages:
    """SMA / EMA / WMA"""

    def test_sma(self):
        assert make_engine([10, 20, 30]).sma(3) == pytest.approx(20)

    def test_sma_uses_trailing_window(self):
        assert make_engine([100, 10, 20, 30]).sma(3) == pytest.approx(20)

    def test_insufficient_data_returns_none(self):
        engine = make_engine([10, 20])
        assert engine.sma(3) is None
        assert engine.ema(3) is None
        assert engine.wma(3) is None

    def test_invalid_period(self):
        engine = make_engine([10, 20, 30])
        with pytest.raises(ValidationError):
            engine.sma(0)
        with pytest.raises(ValidationError):
            engine.ema(-1)

    def test_ema_seeded_from_first_sample(self):
        # multiplier 2/3: 10 + (20 - 10) * 2/3
        assert make_engine([10, 20]).ema(2) == pytest.approx(16.6666667)

    def test_ema_runs_over_whole_history(self):
        engine = make_engine([10, 20, 30])
        step1 = 10 + (20 - 10) * 2 / 3
        expected = step1 + (30 - step1) * 2 / 3
        assert engine.ema(2) == pytest.approx(expected)

    def test_wma_weights_recent_highest(self):
        # (1*1 + 2*2 + 3*3) / 6
        assert make_engine([1, 2, 3]).wma(3) == pytest.approx(14 / 6)


class TestOscillators:
    """RSI / MACD / Stochastic"""

    def test_rsi_all_gains_is_100(self):
        engine = make_engine(list(range(1, 16)))
        assert engine.rsi(14) == 100.0

    def test_rsi_balanced(self):
        assert make_engine([1, 2, 1]).rsi(2) == pytest.approx(50)

    def test_rsi_needs_period_plus_one(self):
        assert make_engine(list(range(14))).rsi(14) is None

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_rsi_bounds(self, seed):
        engine = make_engine(random_walk(40, seed))
        value = engine.rsi(14)
        assert 0 <= value <= 100

    def test_rsi_all_losses_is_zero(self):
        engine = make_engine(list(range(20, 5, -1)))
        assert engine.rsi(14) == pytest.approx(0)

    def test_macd_requires_slow_period(self):
        assert make_engine(random_walk(25)).macd() is None
        assert make_engine(random_walk(26)).macd() is not None

    def test_macd_approximate_signal(self):
        engine = make_engine(random_walk(40))
        result = engine.macd()
        expected = engine.ema(12) - engine.ema(26)

        assert result.macd == pytest.approx(expected)
        assert result.signal == pytest.approx(result.macd * 0.9)
        assert result.histogram == pytest.approx(result.macd - result.signal)

    def test_macd_standard_signal(self):
        prices = random_walk(60)
        engine = make_engine(prices, config=IndicatorConfig(smoothing=SmoothingMode.STANDARD))
        result = engine.macd()

        series = pd.Series(prices)
        macd_series = (series.ewm(span=12, adjust=False).mean()
                       - series.ewm(span=26, adjust=False).mean())
        expected_signal = macd_series.ewm(span=9, adjust=False).mean().iloc[-1]

        assert result.signal == pytest.approx(expected_signal)
        assert result.histogram == pytest.approx(result.macd - expected_signal)

    def test_stochastic_approximate(self):
        result = make_engine(list(range(1, 15))).stochastic(14, 3)
        assert result.k == pytest.approx(100)
        assert result.d == pytest.approx(95)

    def test_stochastic_flat_window(self):
        result = make_engine([7.0] * 14).stochastic(14, 3)
        assert result.k == 50.0

    def test_stochastic_standard(self):
        config = IndicatorConfig(smoothing=SmoothingMode.STANDARD)
        assert make_engine(list(range(1, 16)), config=config).stochastic(14, 3) is None

        # Three %K readings: 100, 100, 0
        prices = list(range(1, 17)) + [1]
        result = make_engine(prices, config=config).stochastic(14, 3)
        assert result.k == pytest.approx(0)
        assert result.d == pytest.approx(200 / 3)


class TestVolatilityAndVolume:
    """Bollinger / volume"""

    @pytest.mark.parametrize("k", [0.0, 1.0, 2.0, 3.5])
    def test_bollinger_ordering(self, k):
        bands = make_engine(random_walk(30)).bollinger_bands(20, k)
        assert bands.upper >= bands.middle >= bands.lower

    def test_bollinger_population_std(self):
        prices = [2, 4, 4, 4, 5, 5, 7, 9]  # population std = 2
        bands = make_engine(prices).bollinger_bands(8, 2)
        assert bands.middle == pytest.approx(5)
        assert bands.upper == pytest.approx(9)
        assert bands.lower == pytest.approx(1)
        assert bands.bandwidth == pytest.approx(8 / 5 * 100)

    def test_bollinger_flat(self):
        bands = make_engine([3.0] * 20).bollinger_bands()
        assert bands.upper == bands.middle == bands.lower == 3.0
        assert bands.bandwidth == 0.0

    def test_volume_ratio(self):
        volumes = [1.0] * 19 + [3.0]
        profile = make_engine([10.0] * 20, volumes).volume_profile(20)
        assert profile.average_volume == pytest.approx(1.1)
        assert profile.volume_ratio == pytest.approx(3 / 1.1)

    def test_volume_ratio_zero_volume(self):
        profile = make_engine([10.0] * 20, [0.0] * 20).volume_profile(20)
        assert profile.volume_ratio == 0.0
        assert profile.volume_trend == 0.0

    def test_volume_trend(self):
        engine = make_engine([10.0] * 4, [1, 1, 3, 3])
        assert engine.volume_trend(4) == pytest.approx(200)

    def test_volume_trend_single_sample_window(self):
        assert make_engine([10.0], [5.0]).volume_trend(1) == 0.0


class TestSupportResistance:
    """Local extrema"""

    def test_levels(self):
        levels = make_engine([1, 3, 2, 0.5, 4, 2]).support_resistance(6)
        assert levels.resistance == 4
        assert levels.resistance_strength == 2
        assert levels.support == 0.5
        assert levels.support_strength == 1

    def test_no_extrema(self):
        levels = make_engine(list(range(10))).support_resistance(10)
        assert levels.support is None
        assert levels.resistance is None
        assert levels.support_strength == 0

    def test_plateau_is_not_extremum(self):
        levels = make_engine([1, 3, 3, 1]).support_resistance(4)
        assert levels.resistance is None


class TestSnapshot:
    """get_technical_analysis"""

    def test_empty(self):
        assert TechnicalAnalysisEngine().get_technical_analysis() is None

    def test_partial_history(self):
        snapshot = make_engine([10, 11, 12]).get_technical_analysis()
        assert isinstance(snapshot, IndicatorSnapshot)
        assert snapshot.current_price == 12
        assert snapshot.sample_count == 3
        assert snapshot.sma_short is None
        assert snapshot.rsi is None
        assert snapshot.macd is None

        data = snapshot.to_dict()
        assert data['momentum']['macd'] is None
        assert data['moving_averages']['sma_short'] is None

    def test_full_history(self):
        snapshot = make_engine(random_walk(60)).get_technical_analysis()
        assert snapshot.sma_long is not None
        assert snapshot.macd is not None
        assert snapshot.bollinger_bands is not None
        assert snapshot.support_resistance is not None

        data = snapshot.to_dict()
        assert data['symbol'] == "SOL"
        assert set(data['volatility']['bollinger_bands']) == {'upper', 'middle', 'lower', 'bandwidth'}
