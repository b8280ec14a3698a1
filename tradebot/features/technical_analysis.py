"""
Technical Analysis Module
=========================
Price/volume history for one instrument and the indicators derived from it.

Every indicator is recomputed on demand from the full sample history and
returns ``None`` while fewer samples than it needs have been collected.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple
import logging

from ..errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceSample:
    """One price/volume observation."""
    price: float
    volume: float
    timestamp: pd.Timestamp

    def to_dict(self) -> dict:
        return {
            'price': self.price,
            'volume': self.volume,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class MACDResult:
    macd: float
    signal: float
    histogram: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BollingerBands:
    upper: float
    middle: float
    lower: float
    bandwidth: float  # band width as % of the middle band

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StochasticResult:
    k: float
    d: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VolumeProfile:
    current_volume: float
    average_volume: float
    volume_ratio: float
    volume_trend: Optional[float]  # % change, second half vs first half of window

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SupportResistance:
    support: Optional[float]
    resistance: Optional[float]
    support_strength: int
    resistance_strength: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IndicatorSnapshot:
    """Indicator bundle computed from the current sample history."""
    symbol: str
    current_price: float
    timestamp: pd.Timestamp
    sample_count: int

    # Moving averages
    sma_short: Optional[float] = None
    sma_long: Optional[float] = None
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    wma: Optional[float] = None

    # Momentum
    rsi: Optional[float] = None
    macd: Optional[MACDResult] = None
    stochastic: Optional[StochasticResult] = None

    # Volatility / volume / levels
    bollinger_bands: Optional[BollingerBands] = None
    volume: Optional[VolumeProfile] = None
    support_resistance: Optional[SupportResistance] = None

    def to_dict(self) -> dict:
        def nested(value):
            return value.to_dict() if value is not None else None

        return {
            'symbol': self.symbol,
            'current_price': self.current_price,
            'timestamp': self.timestamp.isoformat(),
            'sample_count': self.sample_count,
            'moving_averages': {
                'sma_short': self.sma_short,
                'sma_long': self.sma_long,
                'ema_fast': self.ema_fast,
                'ema_slow': self.ema_slow,
                'wma': self.wma
            },
            'momentum': {
                'rsi': self.rsi,
                'macd': nested(self.macd),
                'stochastic': nested(self.stochastic)
            },
            'volatility': {
                'bollinger_bands': nested(self.bollinger_bands)
            },
            'volume': nested(self.volume),
            'support_resistance': nested(self.support_resistance)
        }


class TechnicalAnalysisEngine:
    """
    Technical analysis over an append-only price/volume history.

    Indicators:
    - Moving averages (SMA, EMA, WMA)
    - RSI, MACD, Stochastic
    - Bollinger Bands
    - Volume ratio and trend
    - Support and resistance levels
    """

    def __init__(self, symbol: str = "", config=None):
        from ..config import IndicatorConfig
        self.config = config or IndicatorConfig()
        self.symbol = symbol

        self._samples: List[PriceSample] = []
        self._prices: List[float] = []
        self._volumes: List[float] = []

    # =====================
    # Ingestion
    # =====================

    def add_sample(self, price: float, volume: float = 0.0, timestamp=None) -> PriceSample:
        """Append a price/volume observation."""
        ts = pd.Timestamp.now() if timestamp is None else pd.Timestamp(timestamp)
        sample = PriceSample(price=float(price), volume=float(volume), timestamp=ts)

        self._samples.append(sample)
        self._prices.append(sample.price)
        self._volumes.append(sample.volume)
        return sample

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> Tuple[PriceSample, ...]:
        return tuple(self._samples)

    @property
    def prices(self) -> pd.Series:
        return pd.Series(self._prices, dtype=float)

    @property
    def volumes(self) -> pd.Series:
        return pd.Series(self._volumes, dtype=float)

    @property
    def last_price(self) -> Optional[float]:
        return self._prices[-1] if self._prices else None

    def last_n(self, n: int) -> List[PriceSample]:
        """Return the last ``n`` samples."""
        return self._samples[-n:] if n > 0 else []

    def _window(self, period: int, values: Optional[List[float]] = None) -> Optional[np.ndarray]:
        """Trailing window of ``period`` values, or None if not enough data."""
        if period <= 0:
            raise ValidationError(f"period must be positive, got {period}")
        values = self._prices if values is None else values
        if len(values) < period:
            return None
        return np.asarray(values[-period:], dtype=float)

    # =====================
    # Moving Averages
    # =====================

    def sma(self, period: int = 20) -> Optional[float]:
        """Simple Moving Average of the last ``period`` prices."""
        window = self._window(period)
        if window is None:
            return None
        return float(window.mean())

    def _ema_series(self, period: int) -> Optional[pd.Series]:
        # Seeded from the first sample of the whole history
        if period <= 0:
            raise ValidationError(f"period must be positive, got {period}")
        if len(self._prices) < period:
            return None
        return self.prices.ewm(span=period, adjust=False).mean()

    def ema(self, period: int = 20) -> Optional[float]:
        """Exponential Moving Average over all samples, multiplier 2/(period+1)."""
        series = self._ema_series(period)
        if series is None:
            return None
        return float(series.iloc[-1])

    def wma(self, period: int = 20) -> Optional[float]:
        """Linearly Weighted Moving Average, most recent sample weighted highest."""
        window = self._window(period)
        if window is None:
            return None
        weights = np.arange(1, period + 1, dtype=float)
        return float(np.dot(window, weights) / weights.sum())

    # =====================
    # Oscillators
    # =====================

    def rsi(self, period: int = 14) -> Optional[float]:
        """Relative Strength Index over the last ``period + 1`` samples."""
        window = self._window(period + 1)
        if window is None:
            return None

        deltas = np.diff(window)
        gains = deltas[deltas > 0].sum()
        losses = -deltas[deltas < 0].sum()

        avg_gain = gains / period
        avg_loss = losses / period

        if avg_loss == 0:
            return 100.0

        rs = avg_gain / avg_loss
        return float(100 - (100 / (1 + rs)))

    def macd(self, fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[MACDResult]:
        """Moving Average Convergence Divergence."""
        if len(self._prices) < slow:
            return None

        ema_fast = self._ema_series(fast)
        ema_slow = self._ema_series(slow)
        if ema_fast is None or ema_slow is None:
            return None

        macd_series = ema_fast - ema_slow
        macd_line = float(macd_series.iloc[-1])

        if self._standard_smoothing:
            signal_line = float(macd_series.ewm(span=signal, adjust=False).mean().iloc[-1])
        else:
            signal_line = macd_line * 0.9

        return MACDResult(
            macd=macd_line,
            signal=signal_line,
            histogram=macd_line - signal_line
        )

    @staticmethod
    def _percent_k(window: np.ndarray) -> float:
        highest = window.max()
        lowest = window.min()
        if highest == lowest:
            return 50.0
        return float((window[-1] - lowest) / (highest - lowest) * 100)

    def stochastic(self, k_period: int = 14, d_period: int = 3) -> Optional[StochasticResult]:
        """Stochastic Oscillator (%K, %D)."""
        if not self._standard_smoothing:
            window = self._window(k_period)
            if window is None:
                return None
            k = self._percent_k(window)
            return StochasticResult(k=k, d=k * 0.95)

        if len(self._prices) < k_period + d_period - 1:
            return None

        prices = self.prices
        lowest = prices.rolling(window=k_period).min()
        highest = prices.rolling(window=k_period).max()
        price_range = highest - lowest
        k_series = ((prices - lowest) / price_range.replace(0, np.nan) * 100).fillna(50.0)

        k_values = k_series.iloc[-d_period:]
        return StochasticResult(k=float(k_values.iloc[-1]), d=float(k_values.mean()))

    @property
    def _standard_smoothing(self) -> bool:
        from ..config import SmoothingMode
        return self.config.smoothing == SmoothingMode.STANDARD

    # =====================
    # Volatility
    # =====================

    def bollinger_bands(self, period: int = 20, k: float = 2.0) -> Optional[BollingerBands]:
        """Bollinger Bands with population standard deviation."""
        window = self._window(period)
        if window is None:
            return None

        middle = float(window.mean())
        std = float(window.std())

        return BollingerBands(
            upper=middle + std * k,
            middle=middle,
            lower=middle - std * k,
            bandwidth=(std * k * 2) / middle * 100 if middle != 0 else 0.0
        )

    # =====================
    # Volume
    # =====================

    def volume_profile(self, period: int = 20) -> Optional[VolumeProfile]:
        """Current volume relative to the trailing average."""
        window = self._window(period, self._volumes)
        if window is None:
            return None

        current = float(window[-1])
        average = float(window.mean())

        return VolumeProfile(
            current_volume=current,
            average_volume=average,
            volume_ratio=current / average if average > 0 else 0.0,
            volume_trend=self.volume_trend(period)
        )

    def volume_trend(self, period: int = 10) -> Optional[float]:
        """Volume trend (%): mean of second half of window vs first half."""
        window = self._window(period, self._volumes)
        if window is None:
            return None

        half = period // 2
        first_half = window[:half]
        second_half = window[half:]
        if len(first_half) == 0:
            return 0.0

        first_avg = first_half.mean()
        if first_avg == 0:
            return 0.0
        return float((second_half.mean() - first_avg) / first_avg * 100)

    # =====================
    # Levels
    # =====================

    def support_resistance(self, lookback: int = 50) -> Optional[SupportResistance]:
        """Support/resistance from strict local extrema in the lookback window."""
        window = self._window(lookback)
        if window is None:
            return None

        interior = window[1:-1]
        highs = interior[(interior > window[:-2]) & (interior > window[2:])]
        lows = interior[(interior < window[:-2]) & (interior < window[2:])]

        return SupportResistance(
            support=float(lows.min()) if len(lows) > 0 else None,
            resistance=float(highs.max()) if len(highs) > 0 else None,
            support_strength=int(len(lows)),
            resistance_strength=int(len(highs))
        )

    # =====================
    # Aggregate views
    # =====================

    def get_technical_analysis(self) -> Optional[IndicatorSnapshot]:
        """Compute the full indicator bundle, or None with no data."""
        if not self._samples:
            return None

        cfg = self.config
        return IndicatorSnapshot(
            symbol=self.symbol,
            current_price=self._prices[-1],
            timestamp=self._samples[-1].timestamp,
            sample_count=len(self._samples),
            sma_short=self.sma(cfg.sma_short_period),
            sma_long=self.sma(cfg.sma_long_period),
            ema_fast=self.ema(cfg.ema_fast_period),
            ema_slow=self.ema(cfg.ema_slow_period),
            wma=self.wma(cfg.wma_period),
            rsi=self.rsi(cfg.rsi_period),
            macd=self.macd(cfg.ema_fast_period, cfg.ema_slow_period, cfg.macd_signal_period),
            stochastic=self.stochastic(cfg.stochastic_k_period, cfg.stochastic_d_period),
            bollinger_bands=self.bollinger_bands(cfg.bollinger_period, cfg.bollinger_std),
            volume=self.volume_profile(cfg.volume_period),
            support_resistance=self.support_resistance(cfg.support_resistance_lookback)
        )

    def get_data_summary(self) -> Dict:
        """Sample count, time range and price range."""
        if not self._samples:
            return {'data_points': 0, 'date_range': None, 'price_range': None}

        return {
            'data_points': len(self._samples),
            'date_range': {
                'start': self._samples[0].timestamp.isoformat(),
                'end': self._samples[-1].timestamp.isoformat()
            },
            'price_range': {
                'min': min(self._prices),
                'max': max(self._prices)
            }
        }
