"""
Core pipeline: calendar features, forecaster adapter, residuals and window test.
"""

from .calendar_features import CalendarFeatureBuilder, CalendarFeatures
from .forecasting import ForecastFitter, RankedSparsityForecaster, WeightingPolicy
from .residuals import compute_residuals, parse_transform
from .window_testing import TestResult, WindowSignificanceTester, WindowSpec

__all__ = [
    "CalendarFeatureBuilder",
    "CalendarFeatures",
    "ForecastFitter",
    "RankedSparsityForecaster",
    "WeightingPolicy",
    "compute_residuals",
    "parse_transform",
    "TestResult",
    "WindowSignificanceTester",
    "WindowSpec",
]
