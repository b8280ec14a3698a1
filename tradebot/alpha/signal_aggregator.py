"""
Signal Aggregation Module
=========================
Combines individual indicator readings into one directional signal.

Each rule contributes a reason to the buy or sell list independently;
the overall direction is a simple majority vote and the confidence is
the normalized margin of that vote.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from enum import Enum
import logging

from ..features import IndicatorSnapshot

logger = logging.getLogger(__name__)


class SignalDirection(Enum):
    """Overall signal direction."""
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"


@dataclass
class Signal:
    """Aggregated trading signal."""
    buy_reasons: List[str] = field(default_factory=list)
    sell_reasons: List[str] = field(default_factory=list)
    overall_signal: SignalDirection = SignalDirection.NEUTRAL
    confidence: float = 0.0  # 0 to 1

    @property
    def buy_strength(self) -> int:
        return len(self.buy_reasons)

    @property
    def sell_strength(self) -> int:
        return len(self.sell_reasons)

    def to_dict(self) -> dict:
        return {
            'buy': list(self.buy_reasons),
            'sell': list(self.sell_reasons),
            'overall_signal': self.overall_signal.value,
            'buy_strength': self.buy_strength,
            'sell_strength': self.sell_strength,
            'confidence': self.confidence
        }


class SignalAggregator:
    """
    Rule-based vote over an indicator snapshot.

    Rules:
    - RSI oversold / overbought
    - MACD above / below its signal line
    - Price at lower / upper Bollinger Band
    - Short SMA above / below long SMA (trend)
    - High volume (buy confirmation only)
    - Price near support / resistance
    """

    def __init__(self, config=None):
        from ..config import SignalConfig
        self.config = config or SignalConfig()

    def aggregate(self, snapshot: Optional[IndicatorSnapshot]) -> Signal:
        """Derive a Signal from an indicator snapshot."""
        if snapshot is None:
            return Signal()

        cfg = self.config
        price = snapshot.current_price
        buy: List[str] = []
        sell: List[str] = []

        # RSI
        if snapshot.rsi is not None:
            if snapshot.rsi < cfg.rsi_oversold:
                buy.append('RSI oversold')
            elif snapshot.rsi > cfg.rsi_overbought:
                sell.append('RSI overbought')

        # MACD
        if snapshot.macd is not None:
            if snapshot.macd.macd > snapshot.macd.signal:
                buy.append('MACD bullish crossover')
            elif snapshot.macd.macd < snapshot.macd.signal:
                sell.append('MACD bearish crossover')

        # Bollinger Bands
        bb = snapshot.bollinger_bands
        if bb is not None:
            if price <= bb.lower:
                buy.append('Price at lower Bollinger Band')
            elif price >= bb.upper:
                sell.append('Price at upper Bollinger Band')

        # Trend
        if snapshot.sma_short is not None and snapshot.sma_long is not None:
            if snapshot.sma_short > snapshot.sma_long:
                buy.append('SMA short above SMA long (bullish trend)')
            else:
                sell.append('SMA short below SMA long (bearish trend)')

        # Volume confirmation
        if snapshot.volume is not None and snapshot.volume.volume_ratio > cfg.volume_confirmation_ratio:
            buy.append('High volume confirmation')

        # Support / resistance
        sr = snapshot.support_resistance
        if sr is not None:
            if sr.support is not None and price <= sr.support * (1 + cfg.level_proximity_pct):
                buy.append('Price near support level')
            if sr.resistance is not None and price >= sr.resistance * (1 - cfg.level_proximity_pct):
                sell.append('Price near resistance level')

        return self._combine(buy, sell)

    @staticmethod
    def _combine(buy: List[str], sell: List[str]) -> Signal:
        buy_strength = len(buy)
        sell_strength = len(sell)

        if buy_strength > sell_strength and buy_strength > 0:
            overall = SignalDirection.BUY
        elif sell_strength > buy_strength and sell_strength > 0:
            overall = SignalDirection.SELL
        else:
            overall = SignalDirection.NEUTRAL

        confidence = abs(buy_strength - sell_strength) / max(buy_strength + sell_strength, 1)

        return Signal(
            buy_reasons=buy,
            sell_reasons=sell,
            overall_signal=overall,
            confidence=confidence
        )

    def evaluate(self, engine) -> Signal:
        """Aggregate the current snapshot of a TechnicalAnalysisEngine."""
        signal = self.aggregate(engine.get_technical_analysis())
        logger.debug(
            f"{engine.symbol} signal: {signal.overall_signal.value} "
            f"(conf: {signal.confidence:.2f}, buy: {signal.buy_strength}, sell: {signal.sell_strength})"
        )
        return signal
