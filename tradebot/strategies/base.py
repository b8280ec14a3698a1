"""
Strategy Base
=============
Shared lifecycle of every strategy variant:

    process_tick -> update (local window) -> evaluate -> ExecutionIntents

Collaborators (RiskManager, SignalAggregator, TechnicalAnalysisEngine) are
injected. Each strategy keeps its own trade list and a balance/position
ledger that mirrors the Risk Manager's for the positions it opened.
"""

import pandas as pd
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import logging

from ..alpha import SignalAggregator
from ..features import TechnicalAnalysisEngine
from ..risk import RiskManager, Trade

logger = logging.getLogger(__name__)


class StrategyType(Enum):
    """Available strategy variants."""
    MOMENTUM = "momentum"
    MARKET_MAKING = "market_making"
    DIP_BUY = "dip_buy"


class StrategyState(Enum):
    FLAT = "flat"
    LONG = "long"
    HOLDING = "holding"
    QUOTING = "quoting"


class IntentAction(Enum):
    OPEN = "open"
    CLOSE = "close"


@dataclass
class ExecutionIntent:
    """Instruction for the external execution layer."""
    action: IntentAction
    symbol: str
    size: float
    price: float
    strategy: str
    position_id: Optional[str] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'symbol': self.symbol,
            'size': self.size,
            'price': self.price,
            'strategy': self.strategy,
            'position_id': self.position_id,
            'reason': self.reason
        }


@dataclass
class StrategyTrade:
    """Entry in a strategy's local trade list."""
    trade_type: str
    price: float
    size: float
    strategy: str
    position_id: Optional[str] = None
    pnl: Optional[float] = None
    reason: str = ""
    details: Dict[str, float] = field(default_factory=dict)
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        data = {
            'type': self.trade_type,
            'price': self.price,
            'size': self.size,
            'strategy': self.strategy,
            'position_id': self.position_id,
            'pnl': self.pnl,
            'reason': self.reason,
            'timestamp': self.timestamp.isoformat()
        }
        data.update(self.details)
        return data


class TradingStrategy(ABC):
    """
    Base class for strategy variants.

    Subclasses implement ``update`` (local window bookkeeping) and
    ``evaluate`` (decide and execute). Strategies that route through the
    Risk Manager use ``_open_position`` / ``_close_position`` and call
    ``_enforce_risk_levels`` at the start of every evaluation so that
    stop-loss and take-profit closes show up in the local ledger.
    """

    strategy_type: StrategyType = None

    def __init__(self, symbol: str, risk_manager: RiskManager,
                 aggregator: Optional[SignalAggregator] = None,
                 analysis: Optional[TechnicalAnalysisEngine] = None,
                 initial_balance: Optional[float] = None):
        self.symbol = symbol
        self.risk_manager = risk_manager
        self.aggregator = aggregator or SignalAggregator()
        self.analysis = analysis or TechnicalAnalysisEngine(symbol)

        self.balance = risk_manager.initial_balance if initial_balance is None else initial_balance
        self.position = 0.0
        self.trades: List[StrategyTrade] = []
        self.open_position_ids: List[str] = []

        self.last_price: Optional[float] = None
        self.last_rejection: Optional[str] = None

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @property
    @abstractmethod
    def state(self) -> StrategyState:
        pass

    def process_tick(self, price: float, volume: float = 0.0,
                     timestamp=None) -> List[ExecutionIntent]:
        """Ingest one tick and return the resulting execution intents."""
        self.analysis.add_sample(price, volume, timestamp)
        self.last_price = price
        self.update(price, volume)
        return self.evaluate(price)

    @abstractmethod
    def update(self, price: float, volume: float = 0.0):
        """Update the strategy's local window."""
        pass

    @abstractmethod
    def evaluate(self, price: float) -> List[ExecutionIntent]:
        """Decide and execute at the latest price."""
        pass

    def get_portfolio_value(self, current_price: float) -> float:
        return self.balance + self.position * current_price

    def get_status(self) -> dict:
        price = self.last_price
        return {
            'strategy': self.name,
            'symbol': self.symbol,
            'state': self.state.value,
            'balance': self.balance,
            'position': self.position,
            'portfolio_value': self.get_portfolio_value(price) if price is not None else self.balance,
            'trades': len(self.trades),
            'open_positions': list(self.open_position_ids),
            'last_price': price,
            'last_rejection': self.last_rejection
        }

    def get_trades(self) -> List[dict]:
        return [t.to_dict() for t in self.trades]

    # =====================
    # Risk Manager routing
    # =====================

    def _open_position(self, price: float, size: Optional[float] = None,
                       trade_type: str = 'buy', reason: str = '',
                       details: Optional[Dict[str, float]] = None) -> Optional[ExecutionIntent]:
        """Open through the Risk Manager; None if it refused."""
        stop_loss_price = price * (1 - self.risk_manager.config.stop_loss_percentage)
        result = self.risk_manager.open_position(
            self.symbol, price, stop_loss_price,
            strategy_tag=self.name, size=size
        )

        if not result.success:
            self.last_rejection = result.reason
            logger.info(f"{self.symbol} {self.name}: entry skipped ({result.reason})")
            return None

        position = result.position
        self.last_rejection = None
        self.balance -= position.value
        self.position += position.size
        self.open_position_ids.append(position.id)

        self.trades.append(StrategyTrade(
            trade_type=trade_type,
            price=price,
            size=position.size,
            strategy=self.name,
            position_id=position.id,
            reason=reason,
            details=dict(details or {}, stop_loss=position.stop_loss_price)
        ))

        return ExecutionIntent(
            action=IntentAction.OPEN,
            symbol=self.symbol,
            size=position.size,
            price=price,
            strategy=self.name,
            position_id=position.id,
            reason=reason
        )

    def _close_position(self, position_id: str, price: float, reason: str,
                        trade_type: str = 'sell',
                        details: Optional[Dict[str, float]] = None) -> Optional[ExecutionIntent]:
        result = self.risk_manager.close_position(position_id, price, reason)
        if not result.success:
            logger.warning(f"{self.symbol} {self.name}: close of {position_id} failed ({result.reason})")
            return None
        return self._record_close(result.trade, trade_type, details)

    def _record_close(self, trade: Trade, trade_type: str,
                      details: Optional[Dict[str, float]] = None) -> ExecutionIntent:
        self.open_position_ids.remove(trade.id)
        self.balance += trade.value + trade.realized_pnl
        self.position = self.position - trade.size if self.open_position_ids else 0.0

        self.trades.append(StrategyTrade(
            trade_type=trade_type,
            price=trade.exit_price,
            size=trade.size,
            strategy=self.name,
            position_id=trade.id,
            pnl=trade.realized_pnl,
            reason=trade.exit_reason,
            details=dict(details or {}, pnl_percentage=trade.realized_pnl_percentage)
        ))

        return ExecutionIntent(
            action=IntentAction.CLOSE,
            symbol=self.symbol,
            size=trade.size,
            price=trade.exit_price,
            strategy=self.name,
            position_id=trade.id,
            reason=trade.exit_reason
        )

    def _enforce_risk_levels(self, price: float) -> List[ExecutionIntent]:
        """Apply stop-loss/take-profit, then pick up closes made outside this strategy."""
        self.risk_manager.check_risk_levels(price, symbol=self.symbol)
        return self._reconcile_risk_closes()

    def _reconcile_risk_closes(self) -> List[ExecutionIntent]:
        intents = []
        for position_id in list(self.open_position_ids):
            if position_id in self.risk_manager.positions:
                continue

            trade = self.risk_manager.get_trade(position_id)
            if trade is None:
                logger.warning(
                    f"{self.symbol} {self.name}: position {position_id} vanished from the risk manager"
                )
                self.open_position_ids.remove(position_id)
                if not self.open_position_ids:
                    self.position = 0.0
                continue

            intents.append(self._record_close(trade, 'sell'))
            logger.info(f"{self.symbol} {self.name}: position {position_id} closed by {trade.exit_reason}")

        return intents
