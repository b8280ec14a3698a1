"""
Trading Decision Engine
=======================

In-process decision engine for an automated asset-trading bot. It is told
about price/volume ticks and asked for decisions; it performs no network
or storage I/O itself.

PIPELINE (per tick, per registered symbol/strategy pair):
    ┌─────────┐
    │  TICK   │  ← price, volume, timestamp (from an external feed)
    └────┬────┘
         ↓
    ┌──────────────┐
    │ INDICATORS   │  ← SMA, EMA, WMA, RSI, MACD, BB, Stochastic, S/R
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ SIGNALS      │  ← rule vote → buy / sell / neutral + confidence
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ STRATEGY     │  ← momentum / market making / dip buy
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ RISK MANAGER │  ← sizing, exposure & drawdown limits, ledger
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ MONITORING   │  ← alerts, kill-switch
    └──────────────┘

USAGE:
    from tradebot import TradingEngine, EngineConfig

    engine = TradingEngine(EngineConfig.from_env())
    engine.register("SOL", "momentum")
    engine.start()

    result = engine.on_tick("SOL", price=101.5, volume=1800)
    for intent in result.intents:
        ...  # hand off to the execution layer

    engine.get_portfolio_summary()

MODULES:
    - features: Technical analysis engine (price/volume history, indicators)
    - alpha: Signal aggregation
    - risk: Risk manager (sizing, limits, positions, trade history)
    - strategies: Momentum, market-making and dip-buy variants + factory
    - monitoring: Alerts and kill-switch
"""

from .config import EngineConfig, BusyPolicy, SmoothingMode, setup_logging
from .errors import (
    TradingError, ValidationError, LimitExceededError,
    NotFoundError, InsufficientDataError, OperationResult
)
from .features import TechnicalAnalysisEngine, IndicatorSnapshot, PriceSample
from .alpha import SignalAggregator, Signal, SignalDirection
from .risk import RiskManager, RiskLevel, Position, Trade
from .strategies import (
    StrategyFactory, StrategyType, TradingStrategy, ExecutionIntent, IntentAction,
    MomentumStrategy, MarketMakingStrategy, DipBuyStrategy
)
from .monitoring import MonitoringSystem, AlertSeverity
from .orchestrator import TradingEngine, TickResult, InstrumentState

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingEngine',
    'TickResult',
    'InstrumentState',
    'EngineConfig',
    'BusyPolicy',
    'SmoothingMode',
    'setup_logging',

    # Errors
    'TradingError',
    'ValidationError',
    'LimitExceededError',
    'NotFoundError',
    'InsufficientDataError',
    'OperationResult',

    # Features
    'TechnicalAnalysisEngine',
    'IndicatorSnapshot',
    'PriceSample',

    # Alpha
    'SignalAggregator',
    'Signal',
    'SignalDirection',

    # Risk
    'RiskManager',
    'RiskLevel',
    'Position',
    'Trade',

    # Strategies
    'StrategyFactory',
    'StrategyType',
    'TradingStrategy',
    'ExecutionIntent',
    'IntentAction',
    'MomentumStrategy',
    'MarketMakingStrategy',
    'DipBuyStrategy',

    # Monitoring
    'MonitoringSystem',
    'AlertSeverity'
]
