"""
Monitoring Module
=================
"""
from .monitoring_system import (
    MonitoringSystem,
    AlertManager,
    Alert,
    AlertSeverity,
    KillSwitch,
    RESET_KEY
)

__all__ = [
    'MonitoringSystem',
    'AlertManager',
    'Alert',
    'AlertSeverity',
    'KillSwitch',
    'RESET_KEY'
]
