"""
Monitoring Module
=================
Equity drawdown and exposure watch, kill-switch, and alerts.

The kill switch is enforced automatically: once triggered the engine stops
accepting ticks until an authorized reset.
"""

import pandas as pd
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional
from enum import Enum
import logging

logger = logging.getLogger(__name__)

RESET_KEY = "MANUAL_RESET_CONFIRMED"


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


@dataclass
class Alert:
    """Alert notification."""
    severity: AlertSeverity
    title: str
    message: str
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)
    source: str = ""

    def to_dict(self) -> dict:
        return {
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source
        }


class AlertManager:
    """Keeps a bounded alert history and dispatches to handlers."""

    def __init__(self, config=None):
        from ..config import MonitoringConfig
        self.config = config or MonitoringConfig()

        self.alerts = deque(maxlen=self.config.max_alerts)
        self.alert_handlers: List[Callable[[Alert], None]] = [self._log_alert]

    def add_handler(self, handler: Callable[[Alert], None]):
        """Add custom alert handler."""
        self.alert_handlers.append(handler)

    def send_alert(self, severity: AlertSeverity, title: str, message: str,
                   source: str = "") -> Alert:
        """Create and dispatch an alert."""
        alert = Alert(severity=severity, title=title, message=message, source=source)
        self.alerts.append(alert)

        for handler in self.alert_handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler error: {e}")

        return alert

    @staticmethod
    def _log_alert(alert: Alert):
        level = {
            AlertSeverity.INFO: logging.INFO,
            AlertSeverity.WARNING: logging.WARNING,
            AlertSeverity.CRITICAL: logging.CRITICAL,
            AlertSeverity.EMERGENCY: logging.CRITICAL,
        }[alert.severity]
        logger.log(level, f"[ALERT] {alert.title}: {alert.message}")

    def get_recent_alerts(self, hours: int = 24,
                          severity: Optional[AlertSeverity] = None) -> List[Alert]:
        """Get recent alerts filtered by time and severity."""
        cutoff = pd.Timestamp.now() - timedelta(hours=hours)
        alerts = [a for a in self.alerts if a.timestamp >= cutoff]
        if severity:
            alerts = [a for a in alerts if a.severity == severity]
        return alerts


class KillSwitch:
    """
    Automatic kill switch.

    Trips on drawdown at or beyond ``drawdown_kill_threshold`` or on
    ``max_tick_errors`` contained tick failures. Stays tripped until
    reset with the override key.
    """

    def __init__(self, config=None):
        from ..config import MonitoringConfig
        self.config = config or MonitoringConfig()

        self.triggered = False
        self.trigger_reason = ""
        self.trigger_time: Optional[pd.Timestamp] = None

        self.callbacks: List[Callable[[str], None]] = []

    def add_callback(self, callback: Callable[[str], None]):
        """Add callback executed with the reason when the switch trips."""
        self.callbacks.append(callback)

    def check_conditions(self, drawdown: float, error_count: int = 0) -> bool:
        """Return True if the kill switch is (now) triggered."""
        if not self.config.enable_kill_switch:
            return False
        if self.triggered:
            return True

        reasons = []
        if drawdown >= self.config.drawdown_kill_threshold:
            reasons.append(f"Drawdown {drawdown:.1%} >= {self.config.drawdown_kill_threshold:.1%}")
        if error_count >= self.config.max_tick_errors:
            reasons.append(f"Tick errors: {error_count}")

        if reasons:
            self.trigger("; ".join(reasons))
            return True
        return False

    def trigger(self, reason: str):
        """Trigger the kill switch."""
        if self.triggered:
            return

        self.triggered = True
        self.trigger_reason = reason
        self.trigger_time = pd.Timestamp.now()

        logger.critical(f"KILL SWITCH TRIGGERED: {reason}")

        for callback in self.callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Kill switch callback error: {e}")

    def is_triggered(self) -> bool:
        return self.triggered

    def reset(self, override_key: Optional[str] = None) -> bool:
        """Reset the kill switch (requires the override key)."""
        if override_key != RESET_KEY:
            logger.warning("Kill switch reset requires proper authorization")
            return False

        self.triggered = False
        self.trigger_reason = ""
        self.trigger_time = None

        logger.warning("Kill switch reset - trading can resume")
        return True


class MonitoringSystem:
    """
    Watches equity drawdown and exposure after every tick.

    Drawdown is measured on equity (free balance plus marked open
    positions) against its running peak, so value committed to open
    positions does not count as a loss.

    Warnings fire once when a metric crosses ``warning_ratio`` of its
    limit and re-arm when it falls back below.
    """

    def __init__(self, config=None, max_drawdown: float = 0.20, max_exposure: float = 0.50,
                 initial_equity: Optional[float] = None):
        from ..config import MonitoringConfig
        self.config = config or MonitoringConfig()
        self.max_drawdown = max_drawdown
        self.max_exposure = max_exposure

        self.alert_manager = AlertManager(self.config)
        self.kill_switch = KillSwitch(self.config)

        self.last_update: Optional[pd.Timestamp] = None
        self.equity: Optional[float] = initial_equity
        self.peak_equity: Optional[float] = initial_equity
        self.last_drawdown = 0.0
        self.last_exposure_pct = 0.0
        self.peak_drawdown = 0.0
        self._warned: Dict[str, bool] = {'drawdown': False, 'exposure': False}

    def update(self, equity: float, exposure_pct: float, error_count: int = 0) -> bool:
        """
        Record the latest portfolio state.

        Args:
            equity: Free balance plus the marked value of open positions
            exposure_pct: Committed value as a percentage of balance
            error_count: Contained tick failures so far

        Returns:
            True if the kill switch is triggered
        """
        self.last_update = pd.Timestamp.now()
        self.equity = equity
        if self.peak_equity is None or equity > self.peak_equity:
            self.peak_equity = equity

        drawdown = (self.peak_equity - equity) / self.peak_equity if self.peak_equity > 0 else 0.0
        self.last_drawdown = drawdown
        self.last_exposure_pct = exposure_pct
        self.peak_drawdown = max(self.peak_drawdown, drawdown)

        was_triggered = self.kill_switch.is_triggered()
        triggered = self.kill_switch.check_conditions(drawdown, error_count)
        if triggered and not was_triggered:
            self.alert_manager.send_alert(
                AlertSeverity.EMERGENCY,
                "KILL SWITCH TRIGGERED",
                f"Trading halted: {self.kill_switch.trigger_reason}",
                source="KillSwitch"
            )

        self._check_warning(
            'drawdown', drawdown, self.max_drawdown,
            f"Equity drawdown: {drawdown:.1%} (limit: {self.max_drawdown:.1%})"
        )
        self._check_warning(
            'exposure', exposure_pct / 100, self.max_exposure,
            f"Current exposure: {exposure_pct:.1f}% of balance (limit: {self.max_exposure:.0%})"
        )

        return triggered

    def reset_equity(self, equity: float):
        """Start a new equity baseline after the ledger is reset."""
        self.equity = equity
        self.peak_equity = equity
        self.last_drawdown = 0.0
        self.peak_drawdown = 0.0
        self._warned = {'drawdown': False, 'exposure': False}

    def _check_warning(self, key: str, value: float, limit: float, message: str):
        near_limit = limit > 0 and value >= limit * self.config.warning_ratio
        if near_limit and not self._warned[key]:
            self.alert_manager.send_alert(
                AlertSeverity.WARNING,
                f"High {key.capitalize()}",
                message,
                source="RiskMonitor"
            )
        self._warned[key] = near_limit

    def on_kill_switch(self, callback: Callable[[str], None]):
        """Register callback for kill switch trigger."""
        self.kill_switch.add_callback(callback)

    def get_status(self) -> dict:
        """Get current monitoring status."""
        return {
            'kill_switch_triggered': self.kill_switch.is_triggered(),
            'kill_switch_reason': self.kill_switch.trigger_reason,
            'last_update': self.last_update.isoformat() if self.last_update is not None else None,
            'equity': self.equity,
            'peak_equity': self.peak_equity,
            'current_drawdown': self.last_drawdown,
            'peak_drawdown': self.peak_drawdown,
            'exposure_percentage': self.last_exposure_pct,
            'recent_alerts': [a.to_dict() for a in self.alert_manager.get_recent_alerts(hours=1)]
        }
