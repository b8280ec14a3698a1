"""
Strategy Factory
================
"""

from dataclasses import fields, replace
from typing import List, Optional

from .base import StrategyType, TradingStrategy
from .momentum import MomentumStrategy
from .market_making import MarketMakingStrategy
from .dip_buy import DipBuyStrategy
from ..config import MomentumConfig, MarketMakingConfig, DipBuyConfig
from ..errors import ValidationError


class StrategyFactory:
    """Builds strategy variants from a type name and option overrides."""

    _registry = {
        StrategyType.MOMENTUM: (MomentumStrategy, MomentumConfig),
        StrategyType.MARKET_MAKING: (MarketMakingStrategy, MarketMakingConfig),
        StrategyType.DIP_BUY: (DipBuyStrategy, DipBuyConfig),
    }

    @classmethod
    def create_strategy(cls, strategy_type, symbol: str, risk_manager,
                        options: Optional[dict] = None, aggregator=None,
                        analysis=None, config=None) -> TradingStrategy:
        """
        Create a strategy.

        Args:
            strategy_type: StrategyType or its value ("momentum", ...)
            symbol: Instrument the strategy trades
            risk_manager: Shared RiskManager
            options: Overrides for the variant's config fields
            aggregator: SignalAggregator to inject
            analysis: TechnicalAnalysisEngine to inject
            config: Base config for the variant (defaults otherwise)

        Raises:
            ValidationError: unknown strategy type or option
        """
        stype = cls.resolve_type(strategy_type)
        strategy_cls, config_cls = cls._registry[stype]

        base = config or config_cls()
        options = options or {}
        known = {f.name for f in fields(config_cls)}
        unknown = set(options) - known
        if unknown:
            raise ValidationError(
                f"Unknown {stype.value} options: {', '.join(sorted(unknown))}"
            )

        return strategy_cls(
            symbol, risk_manager,
            config=replace(base, **options),
            aggregator=aggregator,
            analysis=analysis
        )

    @staticmethod
    def resolve_type(strategy_type) -> StrategyType:
        if isinstance(strategy_type, StrategyType):
            return strategy_type
        try:
            return StrategyType(strategy_type)
        except ValueError:
            raise ValidationError(f"Unknown strategy type: {strategy_type}")

    @staticmethod
    def get_available_strategies() -> List[str]:
        return [t.value for t in StrategyType]
