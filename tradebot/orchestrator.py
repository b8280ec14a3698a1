"""
Engine Orchestrator
===================
Per-tick pipeline for every registered (symbol, strategy) pair:
    TICK → TECHNICAL ANALYSIS → SIGNALS → STRATEGY → RISK MANAGER → MONITORING

Each pair owns an InstrumentState record (its own sample history, strategy
ledger and lock). Ticks for one pair are serialized by that lock; a tick
that arrives while another is in flight is queued or dropped according to
``EngineConfig.busy_policy``. Stopping is cooperative: the stop flag is
read before each evaluation and never interrupts one in progress.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging
import threading

from .config import EngineConfig, BusyPolicy
from .errors import OperationResult, NotFoundError, ValidationError
from .features import TechnicalAnalysisEngine
from .alpha import SignalAggregator
from .risk import RiskManager
from .strategies import StrategyFactory, StrategyType, TradingStrategy, ExecutionIntent
from .monitoring import MonitoringSystem

logger = logging.getLogger(__name__)

StateKey = Tuple[str, StrategyType]


@dataclass
class InstrumentState:
    """Everything owned by one (symbol, strategy) pair."""
    symbol: str
    strategy_type: StrategyType
    strategy: TradingStrategy
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    ticks_processed: int = 0
    ticks_dropped: int = 0
    errors: int = 0
    last_error: Optional[str] = None
    last_tick: Optional[pd.Timestamp] = None
    last_intents: List[ExecutionIntent] = field(default_factory=list)

    @property
    def key(self) -> StateKey:
        return (self.symbol, self.strategy_type)

    @property
    def name(self) -> str:
        return f"{self.symbol}/{self.strategy_type.value}"

    @property
    def analysis(self) -> TechnicalAnalysisEngine:
        return self.strategy.analysis

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'strategy': self.strategy_type.value,
            'ticks_processed': self.ticks_processed,
            'ticks_dropped': self.ticks_dropped,
            'errors': self.errors,
            'last_error': self.last_error,
            'last_tick': self.last_tick.isoformat() if self.last_tick is not None else None,
            'last_intents': [i.to_dict() for i in self.last_intents]
        }


@dataclass
class TickResult(OperationResult):
    symbol: str = ""
    intents: List[ExecutionIntent] = field(default_factory=list)
    processed: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            'symbol': self.symbol,
            'intents': [i.to_dict() for i in self.intents],
            'processed': list(self.processed),
            'dropped': list(self.dropped),
            'failures': dict(self.failures)
        })
        return data


class TradingEngine:
    """
    Decision engine host.

    Coordinates:
    1. TECHNICAL ANALYSIS: per-pair sample history and indicators
    2. SIGNALS: shared rule-based aggregator
    3. STRATEGY: Momentum / Market-Making / Dip-Buy state machines
    4. RISK MANAGER: shared ledger, sizing and limits
    5. MONITORING: equity drawdown/exposure alerts and kill switch
    """

    def __init__(self, config: EngineConfig = None, risk_manager: RiskManager = None):
        self.config = config or EngineConfig()

        self.risk_manager = risk_manager or RiskManager(self.config.risk)
        self.aggregator = SignalAggregator(self.config.signals)
        self.monitoring = MonitoringSystem(
            self.config.monitoring,
            max_drawdown=self.risk_manager.config.max_drawdown,
            max_exposure=self.risk_manager.config.max_total_exposure,
            initial_equity=self.risk_manager.initial_balance
        )
        self.monitoring.on_kill_switch(self._on_kill_switch)

        self.states: Dict[StateKey, InstrumentState] = {}
        self._registry_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._stop_event.set()
        self.started_at: Optional[pd.Timestamp] = None
        self.stop_reason = ""

        self.ticks_rejected = 0
        self.error_count = 0

        logger.info(f"TradingEngine initialized (busy policy: {self.config.busy_policy.value})")

    # =====================
    # Registry
    # =====================

    def register(self, symbol: str, strategy_type, options: Optional[dict] = None) -> InstrumentState:
        """
        Register a strategy for an instrument.

        Raises:
            ValidationError: unknown strategy/option, or pair already registered
        """
        stype = StrategyFactory.resolve_type(strategy_type)
        key = (symbol, stype)

        with self._registry_lock:
            if key in self.states:
                raise ValidationError(f"{symbol}/{stype.value} is already registered")

            analysis = TechnicalAnalysisEngine(symbol, self.config.indicators)
            strategy = StrategyFactory.create_strategy(
                stype, symbol, self.risk_manager,
                options=options,
                aggregator=self.aggregator,
                analysis=analysis,
                config=getattr(self.config, stype.value)
            )
            state = InstrumentState(symbol=symbol, strategy_type=stype, strategy=strategy)
            self.states[key] = state

        logger.info(f"Registered {state.name}")
        return state

    def unregister(self, symbol: str, strategy_type) -> InstrumentState:
        stype = StrategyFactory.resolve_type(strategy_type)
        with self._registry_lock:
            state = self.states.pop((symbol, stype), None)
        if state is None:
            raise NotFoundError(f"{symbol}/{stype.value} is not registered")

        if state.strategy.open_position_ids:
            logger.warning(
                f"Unregistered {state.name} with {len(state.strategy.open_position_ids)} "
                f"open position(s) left in the risk manager"
            )
        else:
            logger.info(f"Unregistered {state.name}")
        return state

    def get_state(self, symbol: str, strategy_type) -> InstrumentState:
        stype = StrategyFactory.resolve_type(strategy_type)
        state = self.states.get((symbol, stype))
        if state is None:
            raise NotFoundError(f"{symbol}/{stype.value} is not registered")
        return state

    def get_symbol_states(self, symbol: str) -> List[InstrumentState]:
        with self._registry_lock:
            return [s for s in self.states.values() if s.symbol == symbol]

    # =====================
    # Lifecycle
    # =====================

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def start(self) -> OperationResult:
        """Accept ticks again. Refused while the kill switch is tripped."""
        if self.monitoring.kill_switch.is_triggered():
            reason = f"Kill switch triggered: {self.monitoring.kill_switch.trigger_reason}"
            logger.warning(f"Start refused. {reason}")
            return OperationResult(success=False, reason=reason, error='LimitExceededError')

        if not self.running:
            self.started_at = pd.Timestamp.now()
            self.stop_reason = ""
            self._stop_event.clear()
            logger.info("Trading engine started")
        return OperationResult(success=True)

    def stop(self, reason: str = "Stopped by operator") -> OperationResult:
        """Stop before the next evaluation. In-flight evaluations complete."""
        if self.running:
            self._stop_event.set()
            self.stop_reason = reason
            logger.info(f"Trading engine stopped: {reason}")
        return OperationResult(success=True)

    def _on_kill_switch(self, reason: str):
        logger.critical("Kill switch triggered - stopping all trading")
        self.stop(f"Kill switch: {reason}")

    # =====================
    # Ticking
    # =====================

    def on_tick(self, symbol: str, price: float, volume: float = 0.0,
                timestamp=None) -> TickResult:
        """
        Feed one price/volume tick to every strategy registered for ``symbol``.

        Returns:
            TickResult with the execution intents produced. Never raises for
            bad input or strategy failures.
        """
        if not self.running:
            return TickResult(success=False, reason='Engine is stopped', symbol=symbol)

        invalid = self._validate_tick(price, volume)
        if invalid:
            self.ticks_rejected += 1
            logger.warning(f"Rejected {symbol} tick: {invalid}")
            return TickResult(success=False, reason=invalid, error='ValidationError', symbol=symbol)

        states = self.get_symbol_states(symbol)
        if not states:
            return TickResult(
                success=False,
                reason=f"No strategies registered for {symbol}",
                error='NotFoundError',
                symbol=symbol
            )

        result = TickResult(success=True, symbol=symbol)
        for state in states:
            if not self.running:
                break
            self._run_state(state, price, volume, timestamp, result)

        self._update_monitoring()

        if result.failures:
            result.success = False
            result.reason = f"{len(result.failures)} strategy evaluation(s) failed"
            result.error = 'TradingError'
        elif not result.processed:
            result.success = False
            result.reason = 'Tick dropped: evaluation already in flight' if result.dropped else 'Engine is stopped'

        return result

    @staticmethod
    def _validate_tick(price, volume) -> Optional[str]:
        try:
            price = float(price)
            volume = float(volume)
        except (TypeError, ValueError):
            return f"Price and volume must be numbers, got {price!r} / {volume!r}"
        if not np.isfinite(price) or price <= 0:
            return f"Price must be a positive finite number, got {price}"
        if not np.isfinite(volume) or volume < 0:
            return f"Volume must be a non-negative finite number, got {volume}"
        return None

    def _acquire(self, state: InstrumentState) -> bool:
        if self.config.busy_policy is BusyPolicy.DROP:
            return state.lock.acquire(blocking=False)
        return state.lock.acquire()

    def _run_state(self, state: InstrumentState, price: float, volume: float,
                   timestamp, result: TickResult):
        if not self._acquire(state):
            state.ticks_dropped += 1
            result.dropped.append(state.name)
            logger.warning(f"Dropped tick for {state.name}: evaluation in flight")
            return

        try:
            intents = state.strategy.process_tick(float(price), float(volume), timestamp)
            state.ticks_processed += 1
            state.last_tick = pd.Timestamp.now()
            state.last_intents = intents
            result.intents.extend(intents)
            result.processed.append(state.name)
        except Exception as e:
            state.errors += 1
            state.last_error = str(e)
            self.error_count += 1
            result.failures[state.name] = str(e)
            logger.exception(f"Tick evaluation failed for {state.name}: {e}")
        finally:
            state.lock.release()

    def _update_monitoring(self):
        rm = self.risk_manager
        balance = rm.current_balance
        exposure_pct = rm.get_total_exposure() / balance * 100 if balance > 0 else 0.0
        self.monitoring.update(self.get_equity(), exposure_pct, self.error_count)

    def get_equity(self) -> float:
        """Free balance plus open positions marked at the last price seen."""
        with self.risk_manager.lock:
            balance = self.risk_manager.current_balance
            positions = list(self.risk_manager.positions.values())

        equity = balance
        for p in positions:
            last = self._last_price(p.symbol)
            equity += p.value if last is None else p.size * last
        return equity

    # =====================
    # Maintenance
    # =====================

    def reset(self) -> OperationResult:
        """
        Clear the shared ledger and every registered strategy's local book.

        Registrations, options and sample histories are kept. The kill
        switch is not touched; it still needs its own keyed reset.
        """
        with self._registry_lock:
            states = list(self.states.values())

        for state in states:
            state.lock.acquire()
        try:
            self.risk_manager.reset()
            for state in states:
                state.strategy = StrategyFactory.create_strategy(
                    state.strategy_type, state.symbol, self.risk_manager,
                    aggregator=self.aggregator,
                    analysis=state.analysis,
                    config=state.strategy.config
                )
                state.errors = 0
                state.last_error = None
                state.last_intents = []
        finally:
            for state in states:
                state.lock.release()

        self.error_count = 0
        self.monitoring.reset_equity(self.risk_manager.initial_balance)
        logger.info(f"Engine reset: {len(states)} strategy ledger(s) cleared")
        return OperationResult(success=True)

    # =====================
    # Reporting
    # =====================

    def get_portfolio_summary(self) -> dict:
        return self.risk_manager.get_portfolio_summary()

    def get_active_positions(self) -> List[dict]:
        positions = self.risk_manager.get_active_positions()
        for p in positions:
            last = self._last_price(p['symbol'])
            if last is not None:
                p['current_value'] = p['size'] * last
                p['unrealized_pnl'] = (last - p['entry_price']) * p['size']
        return positions

    def get_trade_history(self, limit: Optional[int] = None) -> List[dict]:
        return self.risk_manager.get_trade_history(limit)

    def get_technical_analysis(self, symbol: str) -> Optional[dict]:
        """Indicator snapshot for a registered symbol (None before any tick)."""
        states = self.get_symbol_states(symbol)
        if not states:
            raise NotFoundError(f"No strategies registered for {symbol}")
        snapshot = states[0].analysis.get_technical_analysis()
        if snapshot is None:
            return None
        data = snapshot.to_dict()
        data['signals'] = self.aggregator.aggregate(snapshot).to_dict()
        return data

    def get_strategy_status(self, symbol: str, strategy_type) -> dict:
        state = self.get_state(symbol, strategy_type)
        status = state.strategy.get_status()
        status['engine'] = state.to_dict()
        return status

    def get_status(self) -> dict:
        """Get comprehensive engine status."""
        with self._registry_lock:
            states = list(self.states.values())

        return {
            'running': self.running,
            'started_at': self.started_at.isoformat() if self.started_at is not None else None,
            'stop_reason': self.stop_reason,
            'busy_policy': self.config.busy_policy.value,
            'strategies': [s.to_dict() for s in states],
            'available_strategies': StrategyFactory.get_available_strategies(),
            'ticks_rejected': self.ticks_rejected,
            'error_count': self.error_count,
            'risk_level': self.risk_manager.get_risk_level().value,
            'monitoring': self.monitoring.get_status()
        }

    def _last_price(self, symbol: str) -> Optional[float]:
        for state in self.get_symbol_states(symbol):
            if state.analysis.last_price is not None:
                return state.analysis.last_price
        return None
