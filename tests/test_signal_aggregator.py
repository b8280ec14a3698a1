"""
Signal Aggregator Test
======================
"""
import pytest
import pandas as pd

from tradebot.alpha import SignalAggregator, SignalDirection
from tradebot.config import SignalConfig
from tradebot.features import (
    TechnicalAnalysisEngine,
    IndicatorSnapshot,
    MACDResult,
    BollingerBands,
    VolumeProfile,
    SupportResistance
)


def snapshot(price: float = 100.0, **indicators) -> IndicatorSnapshot:
    return IndicatorSnapshot(
        symbol="SOL",
        current_price=price,
        timestamp=pd.Timestamp("2024-01-01"),
        sample_count=60,
        **indicators
    )


@pytest.fixture
def aggregator():
    return SignalAggregator()


class TestRules:
    """Individual indicator rules"""

    def test_missing_snapshot_is_neutral(self, aggregator):
        signal = aggregator.aggregate(None)
        assert signal.overall_signal is SignalDirection.NEUTRAL
        assert signal.confidence == 0
        assert signal.buy_reasons == [] and signal.sell_reasons == []

    def test_no_indicators_is_neutral(self, aggregator):
        signal = aggregator.aggregate(snapshot())
        assert signal.overall_signal is SignalDirection.NEUTRAL
        assert signal.confidence == 0

    def test_rsi(self, aggregator):
        assert aggregator.aggregate(snapshot(rsi=25)).buy_reasons == ['RSI oversold']
        assert aggregator.aggregate(snapshot(rsi=75)).sell_reasons == ['RSI overbought']

        neutral = aggregator.aggregate(snapshot(rsi=30))
        assert neutral.buy_strength == 0 and neutral.sell_strength == 0

    def test_macd(self, aggregator):
        bullish = aggregator.aggregate(snapshot(macd=MACDResult(1.0, 0.9, 0.1)))
        bearish = aggregator.aggregate(snapshot(macd=MACDResult(-1.0, -0.9, -0.1)))
        flat = aggregator.aggregate(snapshot(macd=MACDResult(0.0, 0.0, 0.0)))

        assert bullish.buy_reasons == ['MACD bullish crossover']
        assert bearish.sell_reasons == ['MACD bearish crossover']
        assert flat.buy_strength == flat.sell_strength == 0

    def test_bollinger(self, aggregator):
        bands = BollingerBands(upper=110, middle=100, lower=90, bandwidth=20)
        assert aggregator.aggregate(snapshot(89, bollinger_bands=bands)).buy_strength == 1
        assert aggregator.aggregate(snapshot(110, bollinger_bands=bands)).sell_strength == 1
        assert aggregator.aggregate(snapshot(100, bollinger_bands=bands)).overall_signal is SignalDirection.NEUTRAL

    def test_trend(self, aggregator):
        up = aggregator.aggregate(snapshot(sma_short=105, sma_long=100))
        down = aggregator.aggregate(snapshot(sma_short=100, sma_long=100))

        assert up.overall_signal is SignalDirection.BUY
        assert down.overall_signal is SignalDirection.SELL

    def test_trend_needs_both_averages(self, aggregator):
        signal = aggregator.aggregate(snapshot(sma_short=105))
        assert signal.buy_strength == signal.sell_strength == 0

    def test_volume_confirmation_is_buy_only(self, aggregator):
        high = VolumeProfile(current_volume=200, average_volume=100, volume_ratio=2.0, volume_trend=0)
        normal = VolumeProfile(current_volume=150, average_volume=100, volume_ratio=1.5, volume_trend=0)

        assert aggregator.aggregate(snapshot(volume=high)).buy_reasons == ['High volume confirmation']
        assert aggregator.aggregate(snapshot(volume=normal)).buy_strength == 0

    def test_support_and_resistance(self, aggregator):
        levels = SupportResistance(support=100, resistance=103, support_strength=1, resistance_strength=1)
        signal = aggregator.aggregate(snapshot(101, support_resistance=levels))

        assert 'Price near support level' in signal.buy_reasons
        assert 'Price near resistance level' in signal.sell_reasons

    def test_missing_levels_are_skipped(self, aggregator):
        levels = SupportResistance(support=None, resistance=None, support_strength=0, resistance_strength=0)
        signal = aggregator.aggregate(snapshot(support_resistance=levels))
        assert signal.buy_strength == signal.sell_strength == 0

    def test_thresholds_are_configurable(self):
        aggregator = SignalAggregator(SignalConfig(rsi_oversold=40))
        assert aggregator.aggregate(snapshot(rsi=35)).buy_reasons == ['RSI oversold']


class TestCombination:
    """Majority vote and confidence"""

    def test_majority_buy(self, aggregator):
        signal = aggregator.aggregate(snapshot(
            rsi=20,
            macd=MACDResult(1.0, 0.9, 0.1),
            sma_short=105, sma_long=100,
            bollinger_bands=BollingerBands(upper=100, middle=99, lower=98, bandwidth=2)
        ))
        # 3 buy (RSI, MACD, trend) vs 1 sell (upper band)
        assert signal.overall_signal is SignalDirection.BUY
        assert signal.confidence == pytest.approx(0.5)

    def test_tie_is_neutral(self, aggregator):
        signal = aggregator.aggregate(snapshot(rsi=20, macd=MACDResult(-1.0, -0.9, -0.1)))
        assert signal.overall_signal is SignalDirection.NEUTRAL
        assert signal.confidence == 0

    def test_unanimous_confidence_is_one(self, aggregator):
        signal = aggregator.aggregate(snapshot(rsi=80, sma_short=90, sma_long=100))
        assert signal.overall_signal is SignalDirection.SELL
        assert signal.confidence == 1.0

    def test_to_dict(self, aggregator):
        data = aggregator.aggregate(snapshot(rsi=20)).to_dict()
        assert data['overall_signal'] == 'buy'
        assert data['buy'] == ['RSI oversold']
        assert data['buy_strength'] == 1

    def test_evaluate_engine(self, aggregator):
        engine = TechnicalAnalysisEngine("SOL")
        assert aggregator.evaluate(engine).overall_signal is SignalDirection.NEUTRAL

        for price in range(1, 61):
            engine.add_sample(price, 1000)
        signal = aggregator.evaluate(engine)
        assert 0 <= signal.confidence <= 1
        assert 'RSI overbought' in signal.sell_reasons
