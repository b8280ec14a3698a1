"""
Risk Management Module
======================
"""
from .risk_manager import (
    RiskManager,
    RiskLevel,
    Position,
    PositionStatus,
    Trade,
    Portfolio,
    PositionSizing,
    ExposureCheck,
    OpenResult,
    CloseResult,
    ExitReason
)

__all__ = [
    'RiskManager',
    'RiskLevel',
    'Position',
    'PositionStatus',
    'Trade',
    'Portfolio',
    'PositionSizing',
    'ExposureCheck',
    'OpenResult',
    'CloseResult',
    'ExitReason'
]
