"""
Market-Making Strategy
======================
Continuous two-sided quoting around the latest price.

Quotes are resting orders, not stop-bounded positions, so inventory and
cash live in this strategy's own ledger. New buy quotes are still gated
by the shared Risk Manager's exposure and drawdown check.
"""

import pandas as pd
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from .base import (
    TradingStrategy, StrategyType, StrategyState, StrategyTrade,
    ExecutionIntent, IntentAction
)

logger = logging.getLogger(__name__)

# Float tolerance for inventory comparisons
INVENTORY_EPSILON = 1e-9


@dataclass
class QuoteOrder:
    side: str  # 'buy' or 'sell'
    price: float
    size: float
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'side': self.side,
            'price': self.price,
            'size': self.size,
            'timestamp': self.timestamp.isoformat()
        }


class MarketMakingStrategy(TradingStrategy):
    """Earns the spread between filled buy and sell quotes."""

    strategy_type = StrategyType.MARKET_MAKING

    def __init__(self, symbol, risk_manager, config=None, aggregator=None, analysis=None):
        from ..config import MarketMakingConfig
        config = config or MarketMakingConfig()
        super().__init__(symbol, risk_manager, aggregator=aggregator, analysis=analysis,
                         initial_balance=config.initial_balance)
        self.config = config

        self.buy_orders: List[QuoteOrder] = []
        self.sell_orders: List[QuoteOrder] = []
        self.buy_quote: Optional[float] = None
        self.sell_quote: Optional[float] = None
        self.profits = 0.0

    @property
    def state(self) -> StrategyState:
        return StrategyState.QUOTING

    def update(self, price: float, volume: float = 0.0):
        self.update_quotes(price)

    def update_quotes(self, price: float):
        self.buy_quote = price * (1 - self.config.spread_percentage)
        self.sell_quote = price * (1 + self.config.spread_percentage)

    def place_buy_order(self) -> Optional[QuoteOrder]:
        if self.buy_quote is None or len(self.buy_orders) >= self.config.max_orders:
            return None

        cost = self.buy_quote * self.config.order_size
        if self.balance <= cost:
            return None

        check = self.risk_manager.can_open_position(cost)
        if not check.can_open:
            self.last_rejection = check.reason
            return None

        order = QuoteOrder('buy', self.buy_quote, self.config.order_size)
        self.buy_orders.append(order)
        return order

    def place_sell_order(self) -> Optional[QuoteOrder]:
        if self.sell_quote is None or len(self.sell_orders) >= self.config.max_orders:
            return None
        if self.position + INVENTORY_EPSILON < self.config.order_size:
            return None

        order = QuoteOrder('sell', self.sell_quote, self.config.order_size)
        self.sell_orders.append(order)
        return order

    def check_order_fills(self, current_price: float) -> List[ExecutionIntent]:
        """Fill every resting order whose trigger the price has crossed."""
        intents = []

        for i in range(len(self.buy_orders) - 1, -1, -1):
            order = self.buy_orders[i]
            if current_price > order.price:
                continue
            cost = order.price * order.size
            if self.balance < cost:
                continue

            self.balance -= cost
            self.position += order.size
            self.trades.append(StrategyTrade('buy', order.price, order.size, self.name, reason='quote_fill'))
            del self.buy_orders[i]
            intents.append(self._fill_intent(IntentAction.OPEN, order))

        for i in range(len(self.sell_orders) - 1, -1, -1):
            order = self.sell_orders[i]
            if current_price < order.price:
                continue
            if self.position + INVENTORY_EPSILON < order.size:
                continue

            self.balance += order.price * order.size
            self.position -= order.size
            if abs(self.position) < INVENTORY_EPSILON:
                self.position = 0.0

            profit = (order.price - self.get_average_buy_price()) * order.size
            self.profits += profit
            self.trades.append(StrategyTrade('sell', order.price, order.size, self.name,
                                             pnl=profit, reason='quote_fill'))
            del self.sell_orders[i]
            intents.append(self._fill_intent(IntentAction.CLOSE, order))

        if intents:
            logger.info(f"{self.symbol} market making: {len(intents)} fill(s) @ {current_price}, "
                        f"inventory {self.position:.4f}, spread profit {self.profits:.2f}")
        return intents

    def _fill_intent(self, action: IntentAction, order: QuoteOrder) -> ExecutionIntent:
        return ExecutionIntent(
            action=action,
            symbol=self.symbol,
            size=order.size,
            price=order.price,
            strategy=self.name,
            reason='quote_fill'
        )

    def get_average_buy_price(self) -> float:
        """Size-weighted price of all filled buys."""
        buys = [t for t in self.trades if t.trade_type == 'buy']
        total_size = sum(t.size for t in buys)
        if total_size == 0:
            return 0.0
        return sum(t.price * t.size for t in buys) / total_size

    def evaluate(self, price: float) -> List[ExecutionIntent]:
        self.place_buy_order()
        self.place_sell_order()
        return self.check_order_fills(price)

    def get_status(self) -> dict:
        status = super().get_status()
        status.update({
            'profits': self.profits,
            'buy_orders': len(self.buy_orders),
            'sell_orders': len(self.sell_orders),
            'buy_quote': self.buy_quote,
            'sell_quote': self.sell_quote,
            'spread': self.config.spread_percentage
        })
        return status
