"""
Momentum Strategy
=================
FLAT -> LONG -> FLAT.

Entry needs price momentum, a volume spike and a confident BUY from the
signal aggregator. Exit on reversed momentum or a confident SELL.
"""

from collections import deque
from typing import List, Optional
import logging

from .base import TradingStrategy, StrategyType, StrategyState, ExecutionIntent
from ..alpha import Signal, SignalDirection

logger = logging.getLogger(__name__)


class MomentumStrategy(TradingStrategy):
    """Trend-following entries routed through the Risk Manager."""

    strategy_type = StrategyType.MOMENTUM

    def __init__(self, symbol, risk_manager, config=None, aggregator=None, analysis=None):
        super().__init__(symbol, risk_manager, aggregator=aggregator, analysis=analysis)
        from ..config import MomentumConfig
        self.config = config or MomentumConfig()

        self.prices = deque(maxlen=self.config.lookback_period)
        self.volumes = deque(maxlen=self.config.lookback_period)
        self.last_signal: Optional[Signal] = None

    @property
    def state(self) -> StrategyState:
        return StrategyState.LONG if self.open_position_ids else StrategyState.FLAT

    def update(self, price: float, volume: float = 0.0):
        self.prices.append(price)
        self.volumes.append(volume)

    def calculate_momentum(self) -> float:
        """Relative change across the lookback window (0 until it is full)."""
        if len(self.prices) < self.config.lookback_period:
            return 0.0
        first = self.prices[0]
        return (self.prices[-1] - first) / first

    def calculate_volume_ratio(self) -> float:
        """Latest volume relative to the mean of the earlier window volumes."""
        if len(self.volumes) < 2:
            return 1.0
        earlier = list(self.volumes)[:-1]
        avg_volume = sum(earlier) / len(earlier)
        if avg_volume <= 0:
            return 0.0
        return self.volumes[-1] / avg_volume

    def should_buy(self, signal: Signal) -> bool:
        cfg = self.config
        basic_momentum = (
            self.calculate_momentum() > cfg.momentum_threshold
            and self.calculate_volume_ratio() > cfg.volume_threshold
        )
        confirmed = (
            signal.overall_signal is SignalDirection.BUY
            and signal.confidence > cfg.min_confidence
        )
        return basic_momentum and confirmed

    def should_sell(self, signal: Signal) -> bool:
        cfg = self.config
        reversal = self.calculate_momentum() < -cfg.momentum_threshold
        confirmed = (
            signal.overall_signal is SignalDirection.SELL
            and signal.confidence > cfg.min_confidence
        )
        return reversal or confirmed

    def evaluate(self, price: float) -> List[ExecutionIntent]:
        intents = self._enforce_risk_levels(price)

        signal = self.aggregator.evaluate(self.analysis)
        self.last_signal = signal

        if self.state is StrategyState.FLAT:
            if self.should_buy(signal):
                intent = self._open_position(
                    price,
                    reason='momentum_entry',
                    details={
                        'momentum': self.calculate_momentum(),
                        'volume_ratio': self.calculate_volume_ratio()
                    }
                )
                if intent:
                    intents.append(intent)
        elif self.should_sell(signal):
            intent = self._close_position(
                self.open_position_ids[-1], price, 'momentum_signal',
                details={'momentum': self.calculate_momentum()}
            )
            if intent:
                intents.append(intent)

        return intents

    def get_status(self) -> dict:
        status = super().get_status()
        summary = self.risk_manager.get_portfolio_summary()

        status.update({
            'momentum': self.calculate_momentum(),
            'volume_ratio': self.calculate_volume_ratio(),
            'signal': self.last_signal.to_dict() if self.last_signal else None,
            'risk_metrics': {
                'total_pnl': summary['total_pnl'],
                'total_pnl_percentage': summary['total_pnl_percentage'],
                'current_drawdown': summary['current_drawdown'],
                'win_rate': summary['win_rate'],
                'profit_factor': summary['profit_factor'],
                'active_positions': summary['active_positions']
            }
        })
        return status
