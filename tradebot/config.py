"""
Configuration Management
========================
Central configuration for the decision engine.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Optional
from enum import Enum
import json
import logging
import os

from .errors import ValidationError


class BusyPolicy(Enum):
    """What to do with a tick that arrives while one is in flight."""
    QUEUE = "queue"  # wait for the in-flight tick to finish
    DROP = "drop"    # discard the new tick


class SmoothingMode(Enum):
    """How MACD signal line and stochastic %D are derived."""
    APPROXIMATE = "approximate"  # 0.9 x MACD, 0.95 x %K
    STANDARD = "standard"        # EMA of MACD series, SMA of %K series


@dataclass
class IndicatorConfig:
    """Technical analysis configuration."""
    # Moving averages
    sma_short_period: int = 20
    sma_long_period: int = 50
    ema_fast_period: int = 12
    ema_slow_period: int = 26
    wma_period: int = 20

    # Oscillators
    rsi_period: int = 14
    macd_signal_period: int = 9
    stochastic_k_period: int = 14
    stochastic_d_period: int = 3
    smoothing: SmoothingMode = SmoothingMode.APPROXIMATE

    # Volatility
    bollinger_period: int = 20
    bollinger_std: float = 2.0

    # Volume / levels
    volume_period: int = 20
    support_resistance_lookback: int = 50


@dataclass
class SignalConfig:
    """Signal aggregation thresholds."""
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    volume_confirmation_ratio: float = 1.5
    level_proximity_pct: float = 0.02  # 2% band around support/resistance


@dataclass
class RiskConfig:
    """Risk manager configuration (fractions of balance)."""
    initial_balance: float = 10000.0
    max_position_size: float = 0.10   # Max 10% of portfolio per position
    max_total_exposure: float = 0.50  # Max 50% committed
    stop_loss_percentage: float = 0.05
    take_profit_percentage: float = 0.15
    max_drawdown: float = 0.20        # No new opens at 20% drawdown
    risk_per_trade: float = 0.02

    def validate(self):
        if self.initial_balance <= 0:
            raise ValidationError("initial_balance must be positive")
        for name in ('max_position_size', 'max_total_exposure', 'stop_loss_percentage',
                     'max_drawdown', 'risk_per_trade'):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValidationError(f"{name} must be in (0, 1], got {value}")
        if self.take_profit_percentage <= 0:
            raise ValidationError("take_profit_percentage must be positive")


@dataclass
class MomentumConfig:
    """Momentum strategy parameters."""
    lookback_period: int = 10
    momentum_threshold: float = 0.02
    volume_threshold: float = 1.5
    min_confidence: float = 0.3


@dataclass
class MarketMakingConfig:
    """Market-making strategy parameters."""
    spread_percentage: float = 0.01
    order_size: float = 0.1
    max_orders: int = 10
    initial_balance: float = 10000.0


@dataclass
class DipBuyConfig:
    """Dip-buy strategy parameters."""
    dip_threshold: float = 0.05
    lookback_period: int = 20
    recovery_threshold: float = 0.8
    buy_fraction: float = 0.2  # Fraction of balance spent per dip
    min_samples: int = 5


@dataclass
class MonitoringConfig:
    """Monitoring and alerting configuration."""
    # Kill switch
    enable_kill_switch: bool = True
    drawdown_kill_threshold: float = 0.25
    max_tick_errors: int = 10

    # Warnings fire at this share of a limit
    warning_ratio: float = 0.8
    max_alerts: int = 500

    # Logging
    log_level: str = "INFO"
    log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class ApiConfig:
    """HTTP adapter configuration."""
    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False


@dataclass
class EngineConfig:
    """Master engine configuration."""
    default_symbol: str = "SOL"
    busy_policy: BusyPolicy = BusyPolicy.QUEUE

    # Component configs
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    signals: SignalConfig = field(default_factory=SignalConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    momentum: MomentumConfig = field(default_factory=MomentumConfig)
    market_making: MarketMakingConfig = field(default_factory=MarketMakingConfig)
    dip_buy: DipBuyConfig = field(default_factory=DipBuyConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    # Environment variable -> (section, field, type)
    ENV_OVERRIDES = {
        'INITIAL_BALANCE': ('risk', 'initial_balance', float),
        'MAX_POSITION_SIZE': ('risk', 'max_position_size', float),
        'MAX_TOTAL_EXPOSURE': ('risk', 'max_total_exposure', float),
        'STOP_LOSS_PERCENTAGE': ('risk', 'stop_loss_percentage', float),
        'TAKE_PROFIT_PERCENTAGE': ('risk', 'take_profit_percentage', float),
        'RISK_PER_TRADE': ('risk', 'risk_per_trade', float),
        'MAX_DRAWDOWN': ('risk', 'max_drawdown', float),
        'LOG_LEVEL': ('monitoring', 'log_level', str),
        'PORT': ('api', 'port', int),
    }

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self._to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'EngineConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls._from_dict(data)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None,
                 base: Optional['EngineConfig'] = None) -> 'EngineConfig':
        """Apply environment overrides on top of ``base`` (or defaults)."""
        environ = os.environ if environ is None else environ
        config = base or cls()

        for var, (section, name, cast) in cls.ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                value = cast(raw)
            except ValueError:
                raise ValidationError(f"Invalid value for {var}: {raw!r}")
            setattr(getattr(config, section), name, value)

        config.validate()
        return config

    def validate(self):
        """Reject configurations the engine cannot run with."""
        self.risk.validate()
        if not isinstance(logging.getLevelName(self.monitoring.log_level.upper()), int):
            raise ValidationError(f"Unknown log level: {self.monitoring.log_level}")

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data['busy_policy'] = self.busy_policy.value
        data['indicators']['smoothing'] = self.indicators.smoothing.value
        return data

    @classmethod
    def _from_dict(cls, data: dict) -> 'EngineConfig':
        """Create from dictionary."""
        config = cls()
        config.default_symbol = data.get('default_symbol', config.default_symbol)
        config.busy_policy = BusyPolicy(data.get('busy_policy', config.busy_policy.value))

        for f in fields(cls):
            section = getattr(config, f.name)
            values = data.get(f.name)
            if not isinstance(values, dict) or not hasattr(section, '__dataclass_fields__'):
                continue
            for key, value in values.items():
                if key not in section.__dataclass_fields__:
                    raise ValidationError(f"Unknown {f.name} setting: {key}")
                setattr(section, key, value)

        config.indicators.smoothing = SmoothingMode(config.indicators.smoothing)
        config.validate()
        return config


def setup_logging(config: Optional[MonitoringConfig] = None):
    """Configure root logging once for an entry point."""
    config = config or MonitoringConfig()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=config.log_format
    )


# Default configuration instance
DEFAULT_CONFIG = EngineConfig()
