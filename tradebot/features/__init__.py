"""
Technical Analysis Module
=========================
"""
from .technical_analysis import (
    TechnicalAnalysisEngine,
    PriceSample,
    IndicatorSnapshot,
    MACDResult,
    BollingerBands,
    StochasticResult,
    VolumeProfile,
    SupportResistance
)

__all__ = [
    'TechnicalAnalysisEngine',
    'PriceSample',
    'IndicatorSnapshot',
    'MACDResult',
    'BollingerBands',
    'StochasticResult',
    'VolumeProfile',
    'SupportResistance'
]
