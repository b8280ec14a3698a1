"""
Signal Aggregation Module
=========================
"""
from .signal_aggregator import (
    SignalAggregator,
    Signal,
    SignalDirection
)

__all__ = [
    'SignalAggregator',
    'Signal',
    'SignalDirection'
]
