"""
Dip-Buy Strategy
================
FLAT -> HOLDING -> FLAT.

Buys a fixed fraction of the balance when price falls ``dip_threshold``
below the recent high, sells everything once price is back above
``recovery_threshold`` of that high.
"""

from collections import deque
from typing import List, Optional
import logging

from .base import TradingStrategy, StrategyType, StrategyState, ExecutionIntent

logger = logging.getLogger(__name__)


class DipBuyStrategy(TradingStrategy):
    """Mean-reversion entries routed through the Risk Manager."""

    strategy_type = StrategyType.DIP_BUY

    def __init__(self, symbol, risk_manager, config=None, aggregator=None, analysis=None):
        super().__init__(symbol, risk_manager, aggregator=aggregator, analysis=analysis)
        from ..config import DipBuyConfig
        self.config = config or DipBuyConfig()

        self.prices = deque(maxlen=self.config.lookback_period)
        self.dip_buys = 0
        self.recovery_sells = 0

    @property
    def state(self) -> StrategyState:
        return StrategyState.HOLDING if self.open_position_ids else StrategyState.FLAT

    @property
    def recent_high(self) -> Optional[float]:
        return max(self.prices) if self.prices else None

    def update(self, price: float, volume: float = 0.0):
        self.prices.append(price)

    def current_dip(self) -> float:
        """Fractional decline of the latest price from the recent high."""
        high = self.recent_high
        if not high:
            return 0.0
        return (high - self.prices[-1]) / high

    def should_buy_dip(self) -> bool:
        if not self.recent_high or len(self.prices) < self.config.min_samples:
            return False
        return self.current_dip() >= self.config.dip_threshold

    def should_sell_recovery(self) -> bool:
        if not self.recent_high or len(self.prices) < self.config.min_samples:
            return False
        if self.state is not StrategyState.HOLDING:
            return False
        return self.prices[-1] / self.recent_high >= self.config.recovery_threshold

    def evaluate(self, price: float) -> List[ExecutionIntent]:
        intents = self._enforce_risk_levels(price)

        if self.state is StrategyState.FLAT:
            if self.should_buy_dip():
                intent = self._buy_dip(price)
                if intent:
                    intents.append(intent)
        elif self.should_sell_recovery():
            intents.extend(self._sell_recovery(price))

        return intents

    def _buy_dip(self, price: float) -> Optional[ExecutionIntent]:
        spend = self.balance * self.config.buy_fraction
        if spend <= 0:
            self.last_rejection = 'No balance available'
            return None

        dip_pct = self.current_dip() * 100
        intent = self._open_position(
            price,
            size=spend / price,
            trade_type='dip_buy',
            reason='dip',
            details={'dip_percentage': dip_pct, 'recent_high': self.recent_high}
        )
        if intent:
            self.dip_buys += 1
            logger.info(f"{self.symbol} dip buy @ {price} ({dip_pct:.1f}% below {self.recent_high})")
        return intent

    def _sell_recovery(self, price: float) -> List[ExecutionIntent]:
        recovery_pct = price / self.recent_high * 100
        intents = []
        for position_id in list(self.open_position_ids):
            intent = self._close_position(
                position_id, price, 'recovery',
                trade_type='recovery_sell',
                details={'recovery_percentage': recovery_pct}
            )
            if intent:
                intents.append(intent)

        if intents:
            self.recovery_sells += 1
        return intents

    def get_status(self) -> dict:
        status = super().get_status()
        status.update({
            'dip_buys': self.dip_buys,
            'recovery_sells': self.recovery_sells,
            'recent_high': self.recent_high,
            'current_dip': self.current_dip() * 100
        })
        return status
