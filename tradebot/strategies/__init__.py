"""
Strategy Engine Module
======================
"""
from .base import (
    TradingStrategy,
    StrategyType,
    StrategyState,
    IntentAction,
    ExecutionIntent,
    StrategyTrade
)
from .momentum import MomentumStrategy
from .market_making import MarketMakingStrategy, QuoteOrder
from .dip_buy import DipBuyStrategy
from .factory import StrategyFactory

__all__ = [
    'TradingStrategy',
    'StrategyType',
    'StrategyState',
    'IntentAction',
    'ExecutionIntent',
    'StrategyTrade',
    'MomentumStrategy',
    'MarketMakingStrategy',
    'QuoteOrder',
    'DipBuyStrategy',
    'StrategyFactory'
]
