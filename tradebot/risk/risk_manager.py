"""
Risk Management Module
======================
Position sizing, exposure/drawdown limits, and the account ledger.

The RiskManager exclusively owns the balance, the open positions and the
trade history. Opening debits the position value from the balance and
closing credits value + realized P&L, so at every observation point:

    current_balance + sum(open position values)
        == initial_balance + sum(realized P&L)
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field, fields, asdict, replace
from typing import Dict, List, Optional
from enum import Enum
import logging
import threading
import uuid

from ..errors import OperationResult, ValidationError, TradingError

logger = logging.getLogger(__name__)


class RiskLevel(Enum):
    """Risk levels for the portfolio."""
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"


class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExitReason:
    """Exit reasons recorded on trades."""
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MANUAL = "manual"


@dataclass
class Position:
    """An open, sized exposure with stop-loss and take-profit levels."""
    id: str
    symbol: str
    entry_price: float
    stop_loss_price: float
    take_profit_price: float
    size: float
    value: float
    strategy_tag: str
    risk_amount: float
    status: PositionStatus = PositionStatus.OPEN
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def unrealized_pnl(self, current_price: float) -> float:
        return (current_price - self.entry_price) * self.size

    def to_dict(self, current_price: Optional[float] = None) -> dict:
        price = self.entry_price if current_price is None else current_price
        return {
            'id': self.id,
            'symbol': self.symbol,
            'entry_price': self.entry_price,
            'stop_loss_price': self.stop_loss_price,
            'take_profit_price': self.take_profit_price,
            'size': self.size,
            'value': self.value,
            'strategy': self.strategy_tag,
            'risk_amount': self.risk_amount,
            'status': self.status.value,
            'timestamp': self.timestamp.isoformat(),
            'current_value': self.size * price,
            'unrealized_pnl': self.unrealized_pnl(price)
        }


@dataclass(frozen=True)
class Trade:
    """Immutable record of a closed position."""
    id: str
    symbol: str
    entry_price: float
    stop_loss_price: float
    take_profit_price: float
    size: float
    value: float
    strategy_tag: str
    risk_amount: float
    entry_timestamp: pd.Timestamp
    exit_price: float
    realized_pnl: float
    realized_pnl_percentage: float
    exit_reason: str
    exit_timestamp: pd.Timestamp

    @property
    def status(self) -> PositionStatus:
        return PositionStatus.CLOSED

    @classmethod
    def from_position(cls, position: Position, exit_price: float, pnl: float,
                      pnl_pct: float, reason: str) -> 'Trade':
        return cls(
            id=position.id,
            symbol=position.symbol,
            entry_price=position.entry_price,
            stop_loss_price=position.stop_loss_price,
            take_profit_price=position.take_profit_price,
            size=position.size,
            value=position.value,
            strategy_tag=position.strategy_tag,
            risk_amount=position.risk_amount,
            entry_timestamp=position.timestamp,
            exit_price=exit_price,
            realized_pnl=pnl,
            realized_pnl_percentage=pnl_pct,
            exit_reason=reason,
            exit_timestamp=pd.Timestamp.now()
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data['status'] = self.status.value
        data['entry_timestamp'] = self.entry_timestamp.isoformat()
        data['exit_timestamp'] = self.exit_timestamp.isoformat()
        return data


@dataclass
class Portfolio:
    """Account balance and aggregate performance metrics."""
    initial_balance: float
    current_balance: float
    peak_balance: float
    max_drawdown_reached: float = 0.0
    win_rate: float = 0.0  # percent
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0

    @property
    def drawdown(self) -> float:
        if self.peak_balance <= 0:
            return 0.0
        return (self.peak_balance - self.current_balance) / self.peak_balance


@dataclass
class PositionSizing:
    """Position sizing result."""
    position_size: float
    position_value: float
    risk_amount: float
    risk_percentage: float
    max_position_size: float
    is_limited: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExposureCheck:
    """Outcome of a portfolio-level limit check."""
    can_open: bool
    reason: str = ""
    current_exposure: float = 0.0
    new_exposure: float = 0.0
    max_allowed: float = 0.0
    current_drawdown: float = 0.0
    max_drawdown: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OpenResult(OperationResult):
    position: Optional[Position] = None
    sizing: Optional[PositionSizing] = None
    exposure_check: Optional[ExposureCheck] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.position is not None:
            data['position'] = self.position.to_dict()
        if self.sizing is not None:
            data['sizing'] = self.sizing.to_dict()
        if self.exposure_check is not None:
            data['exposure_check'] = self.exposure_check.to_dict()
        return data


@dataclass
class CloseResult(OperationResult):
    trade: Optional[Trade] = None
    pnl: float = 0.0
    pnl_percentage: float = 0.0
    new_balance: float = 0.0

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.trade is not None:
            data.update({
                'trade': self.trade.to_dict(),
                'pnl': self.pnl,
                'pnl_percentage': self.pnl_percentage,
                'new_balance': self.new_balance
            })
        return data


def _is_valid_price(value) -> bool:
    return value is not None and np.isfinite(value) and value > 0


class RiskManager:
    """
    Risk manager and account ledger.

    Responsibilities:
    - Risk-based position sizing, capped per position
    - Total exposure and drawdown limits
    - Opening/closing positions against the balance
    - Stop-loss / take-profit enforcement
    - Win rate, average win/loss and profit factor
    """

    def __init__(self, config=None):
        from ..config import RiskConfig
        self.config = config or RiskConfig()

        self.portfolio = Portfolio(
            initial_balance=self.config.initial_balance,
            current_balance=self.config.initial_balance,
            peak_balance=self.config.initial_balance
        )
        self.positions: Dict[str, Position] = {}
        self.trades: List[Trade] = []

        self._position_counter = 0
        self.lock = threading.RLock()

    @property
    def initial_balance(self) -> float:
        return self.portfolio.initial_balance

    @property
    def current_balance(self) -> float:
        return self.portfolio.current_balance

    @property
    def peak_balance(self) -> float:
        return self.portfolio.peak_balance

    # =====================
    # Sizing & limits
    # =====================

    def calculate_position_size(self, entry_price: float, stop_loss_price: float,
                                portfolio_value: Optional[float] = None) -> PositionSizing:
        """
        Size a position so that hitting the stop loses ``risk_per_trade``.

        Args:
            entry_price: Planned entry price
            stop_loss_price: Planned stop-loss price
            portfolio_value: Value to size against (defaults to current balance)

        Returns:
            PositionSizing with the capped size

        Raises:
            ValidationError: on a non-positive entry price, a non-positive
                portfolio value, or a zero stop distance
        """
        portfolio = self.current_balance if portfolio_value is None else portfolio_value

        if not _is_valid_price(entry_price):
            raise ValidationError(f"Entry price must be positive, got {entry_price}")
        if not _is_valid_price(portfolio):
            raise ValidationError(f"Portfolio value must be positive, got {portfolio}")

        price_difference = abs(entry_price - stop_loss_price)
        if price_difference == 0:
            raise ValidationError('Stop loss price cannot be equal to entry price')

        risk_amount = portfolio * self.config.risk_per_trade
        raw_size = risk_amount / price_difference

        max_position_size = portfolio * self.config.max_position_size / entry_price
        final_size = min(raw_size, max_position_size)

        return PositionSizing(
            position_size=final_size,
            position_value=final_size * entry_price,
            risk_amount=risk_amount,
            risk_percentage=(risk_amount / portfolio) * 100,
            max_position_size=max_position_size,
            is_limited=raw_size >= max_position_size
        )

    def _explicit_sizing(self, entry_price: float, stop_loss_price: float,
                         size: float) -> PositionSizing:
        """Cap a caller-chosen size to the per-position limit."""
        portfolio = self.current_balance
        if not _is_valid_price(entry_price):
            raise ValidationError(f"Entry price must be positive, got {entry_price}")
        if not _is_valid_price(size):
            raise ValidationError(f"Position size must be positive, got {size}")
        if not _is_valid_price(portfolio):
            raise ValidationError(f"Portfolio value must be positive, got {portfolio}")
        if entry_price == stop_loss_price:
            raise ValidationError('Stop loss price cannot be equal to entry price')

        max_position_size = portfolio * self.config.max_position_size / entry_price
        final_size = min(size, max_position_size)
        risk_amount = final_size * abs(entry_price - stop_loss_price)

        return PositionSizing(
            position_size=final_size,
            position_value=final_size * entry_price,
            risk_amount=risk_amount,
            risk_percentage=(risk_amount / portfolio) * 100,
            max_position_size=max_position_size,
            is_limited=size >= max_position_size
        )

    def can_open_position(self, position_value: float) -> ExposureCheck:
        """
        Check total exposure and drawdown limits for a new position.

        Returns:
            ExposureCheck with can_open and, when blocked, the reason
        """
        with self.lock:
            current_exposure = self.get_total_exposure()
            new_exposure = current_exposure + position_value
            max_allowed = self.current_balance * self.config.max_total_exposure
            current_drawdown = self.get_current_drawdown()

            check = ExposureCheck(
                can_open=True,
                current_exposure=current_exposure,
                new_exposure=new_exposure,
                max_allowed=max_allowed,
                current_drawdown=current_drawdown,
                max_drawdown=self.config.max_drawdown
            )

            if position_value is None or not np.isfinite(position_value) or position_value < 0:
                check.can_open = False
                check.reason = f'Invalid position value: {position_value}'
            elif new_exposure > max_allowed:
                check.can_open = False
                check.reason = 'Maximum total exposure exceeded'
            elif current_drawdown >= self.config.max_drawdown:
                check.can_open = False
                check.reason = 'Maximum drawdown reached'

            return check

    # =====================
    # Ledger mutations
    # =====================

    def open_position(self, symbol: str, entry_price: float, stop_loss_price: float,
                      take_profit_price: Optional[float] = None,
                      strategy_tag: str = 'unknown',
                      size: Optional[float] = None) -> OpenResult:
        """
        Open a position if sizing and limits allow.

        Args:
            symbol: Instrument
            entry_price: Entry price
            stop_loss_price: Stop-loss price
            take_profit_price: Take-profit price (defaults to entry + take_profit_percentage)
            strategy_tag: Strategy that requested the position
            size: Explicit size; capped to the per-position limit. Risk-based
                sizing is used when omitted.

        Returns:
            OpenResult; on failure nothing is mutated
        """
        with self.lock:
            try:
                if size is None:
                    sizing = self.calculate_position_size(entry_price, stop_loss_price)
                else:
                    sizing = self._explicit_sizing(entry_price, stop_loss_price, size)
                if sizing.position_size <= 0:
                    raise ValidationError('Position size must be positive')
            except TradingError as e:
                logger.warning(f"Cannot size {symbol} position: {e.message}")
                return OpenResult.failure_from(e)

            check = self.can_open_position(sizing.position_value)
            if check.can_open:
                # Exposure must still fit once the value is debited
                balance_after = self.current_balance - sizing.position_value
                if check.new_exposure > balance_after * self.config.max_total_exposure:
                    check.can_open = False
                    check.reason = 'Maximum total exposure exceeded'

            if not check.can_open:
                reason = f"Cannot open position: {check.reason}"
                logger.warning(f"{symbol} {strategy_tag}: {reason}")
                return OpenResult(
                    success=False,
                    reason=reason,
                    error='LimitExceededError',
                    sizing=sizing,
                    exposure_check=check
                )

            position = Position(
                id=self._generate_position_id(),
                symbol=symbol,
                entry_price=entry_price,
                stop_loss_price=stop_loss_price,
                take_profit_price=(take_profit_price if take_profit_price is not None
                                   else self.calculate_take_profit(entry_price)),
                size=sizing.position_size,
                value=sizing.position_value,
                strategy_tag=strategy_tag,
                risk_amount=sizing.risk_amount
            )

            self.positions[position.id] = position
            self.portfolio.current_balance -= position.value

            logger.info(
                f"Opened {symbol} position {position.id} ({strategy_tag}): "
                f"{position.size:.6f} @ {entry_price} (SL {position.stop_loss_price}, "
                f"TP {position.take_profit_price})"
            )

            return OpenResult(success=True, position=position, sizing=sizing, exposure_check=check)

    def close_position(self, position_id: str, exit_price: float,
                       reason: str = ExitReason.MANUAL) -> CloseResult:
        """
        Close an open position and realize its P&L.

        Args:
            position_id: Id returned by open_position
            exit_price: Exit price
            reason: Exit reason recorded on the trade

        Returns:
            CloseResult; NotFoundError failure for an unknown id
        """
        with self.lock:
            position = self.positions.get(position_id)
            if position is None:
                return CloseResult(success=False, reason='Position not found', error='NotFoundError')
            if not _is_valid_price(exit_price):
                return CloseResult(
                    success=False,
                    reason=f"Exit price must be positive, got {exit_price}",
                    error='ValidationError'
                )

            pnl = (exit_price - position.entry_price) * position.size
            pnl_pct = (pnl / position.value) * 100 if position.value else 0.0

            position.status = PositionStatus.CLOSED
            trade = Trade.from_position(position, exit_price, pnl, pnl_pct, reason)

            self.portfolio.current_balance += position.value + pnl
            if self.portfolio.current_balance > self.portfolio.peak_balance:
                self.portfolio.peak_balance = self.portfolio.current_balance

            self.trades.append(trade)
            del self.positions[position_id]

            self._update_risk_metrics()

            logger.info(
                f"Closed {position.symbol} position {position_id} @ {exit_price} "
                f"({reason}). Realized P&L: {pnl:,.2f} ({pnl_pct:+.2f}%)"
            )

            return CloseResult(
                success=True,
                trade=trade,
                pnl=pnl,
                pnl_percentage=pnl_pct,
                new_balance=self.portfolio.current_balance
            )

    def check_risk_levels(self, current_price: float,
                          symbol: Optional[str] = None) -> List[CloseResult]:
        """
        Close positions whose stop-loss or take-profit has been crossed.

        Args:
            current_price: Latest price
            symbol: Only consider positions in this instrument

        Returns:
            CloseResult for every position closed by this call
        """
        triggered = []

        with self.lock:
            for position_id, position in list(self.positions.items()):
                if symbol is not None and position.symbol != symbol:
                    continue
                if position_id not in self.positions:
                    continue

                reason = None
                if position.stop_loss_price is not None and current_price <= position.stop_loss_price:
                    reason = ExitReason.STOP_LOSS
                elif position.take_profit_price is not None and current_price >= position.take_profit_price:
                    reason = ExitReason.TAKE_PROFIT

                if reason:
                    result = self.close_position(position_id, current_price, reason)
                    if result.success:
                        triggered.append(result)

        return triggered

    # =====================
    # Metrics
    # =====================

    def calculate_take_profit(self, entry_price: float) -> float:
        return entry_price * (1 + self.config.take_profit_percentage)

    def get_total_exposure(self) -> float:
        """Total value committed to open positions."""
        return sum(p.value for p in self.positions.values())

    def get_current_drawdown(self) -> float:
        """Fractional decline of the balance from its peak."""
        return self.portfolio.drawdown

    def get_realized_pnl(self) -> float:
        return sum(t.realized_pnl for t in self.trades)

    def _update_risk_metrics(self):
        """Recompute aggregate metrics over the full trade history."""
        if not self.trades:
            return

        wins = [t.realized_pnl for t in self.trades if t.realized_pnl > 0]
        losses = [t.realized_pnl for t in self.trades if t.realized_pnl < 0]

        self.portfolio.win_rate = (len(wins) / len(self.trades)) * 100
        self.portfolio.average_win = float(np.mean(wins)) if wins else 0.0
        self.portfolio.average_loss = abs(float(np.mean(losses))) if losses else 0.0
        self.portfolio.profit_factor = (
            self.portfolio.average_win / self.portfolio.average_loss
            if self.portfolio.average_loss > 0 else 0.0
        )

        current_drawdown = self.get_current_drawdown()
        if current_drawdown > self.portfolio.max_drawdown_reached:
            self.portfolio.max_drawdown_reached = current_drawdown

    def get_risk_level(self) -> RiskLevel:
        """Classify the current drawdown relative to the drawdown limit."""
        drawdown = self.get_current_drawdown()
        limit = self.config.max_drawdown

        if drawdown > limit * 0.9:
            return RiskLevel.CRITICAL
        if drawdown > limit * 0.7:
            return RiskLevel.HIGH
        if drawdown > limit * 0.5:
            return RiskLevel.ELEVATED
        if drawdown < limit * 0.2:
            return RiskLevel.LOW
        return RiskLevel.NORMAL

    # =====================
    # Reporting
    # =====================

    def get_portfolio_summary(self) -> dict:
        """Read-only snapshot of balance, exposure and performance."""
        with self.lock:
            p = self.portfolio
            total_exposure = self.get_total_exposure()
            total_pnl = p.current_balance - p.initial_balance

            return {
                'initial_balance': p.initial_balance,
                'current_balance': p.current_balance,
                'equity': p.current_balance + total_exposure,
                'total_pnl': total_pnl,
                'total_pnl_percentage': (total_pnl / p.initial_balance) * 100,
                'realized_pnl': self.get_realized_pnl(),
                'total_exposure': total_exposure,
                'exposure_percentage': (total_exposure / p.current_balance) * 100 if p.current_balance > 0 else 0.0,
                'current_drawdown': p.drawdown,
                'max_drawdown_reached': p.max_drawdown_reached,
                'risk_level': self.get_risk_level().value,
                'active_positions': len(self.positions),
                'total_trades': len(self.trades),
                'win_rate': p.win_rate,
                'average_win': p.average_win,
                'average_loss': p.average_loss,
                'profit_factor': p.profit_factor,
                'peak_balance': p.peak_balance,
                'timestamp': pd.Timestamp.now().isoformat()
            }

    def get_active_positions(self, current_price: Optional[float] = None) -> List[dict]:
        """Read-only snapshot of open positions."""
        with self.lock:
            return [p.to_dict(current_price) for p in self.positions.values()]

    def get_trade(self, position_id: str) -> Optional[Trade]:
        """Closed trade for a position id, or None if it never closed."""
        with self.lock:
            for trade in reversed(self.trades):
                if trade.id == position_id:
                    return trade
            return None

    def get_trade_history(self, limit: Optional[int] = None) -> List[dict]:
        """Closed trades, oldest first."""
        if limit is not None and limit <= 0:
            return []
        with self.lock:
            trades = self.trades if limit is None else self.trades[-limit:]
            return [t.to_dict() for t in trades]

    # =====================
    # Maintenance
    # =====================

    def reset(self):
        """
        Return to the initial balance with no positions or history.

        Strategies built on this ledger keep their local books; inside an
        engine use ``TradingEngine.reset`` so they are rebuilt too.
        """
        with self.lock:
            self.portfolio = Portfolio(
                initial_balance=self.config.initial_balance,
                current_balance=self.config.initial_balance,
                peak_balance=self.config.initial_balance
            )
            self.positions = {}
            self.trades = []
            logger.info("Risk manager reset")

    def update_risk_parameters(self, **params):
        """Update risk limits. The ledger itself is not touched."""
        known = {f.name for f in fields(self.config)}
        unknown = set(params) - known
        if unknown:
            raise ValidationError(f"Unknown risk parameters: {', '.join(sorted(unknown))}")
        replace(self.config, **params).validate()

        with self.lock:
            for name, value in params.items():
                setattr(self.config, name, value)
        logger.info(f"Risk parameters updated: {params}")

    def _generate_position_id(self) -> str:
        self._position_counter += 1
        return f"pos_{self._position_counter:05d}_{uuid.uuid4().hex[:8]}"
