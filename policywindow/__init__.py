"""
policywindow: Forecast-based policy window significance testing

Fits a regularized seasonal/trend forecaster to a daily pollutant series,
computes forecast residuals and tests whether residuals during a policy
window (e.g. a fare-free transit month) differ from zero, with a
sensitivity scan over arbitrary windows of the same length.
"""

__version__ = "1.0.0"

from .config import AnalysisConfig, load_config
from .core.calendar_features import CalendarFeatureBuilder, CalendarFeatures
from .core.errors import (AlignmentMismatch, FitDidNotConverge, InsufficientData,
                          InvalidConfiguration, PolicyWindowError)
from .core.forecasting import (FittedModel, ForecastFitter, ForecastResult,
                               RankedSparsityForecaster, WeightingPolicy)
from .core.residuals import (IdentityTransform, LogOffsetTransform, ResidualSeries,
                             compute_residuals, parse_transform)
from .core.window_testing import TestResult, WindowSignificanceTester, WindowSpec
from .robustness.sensitivity_scanner import (SensitivityReport, SensitivityScanner,
                                             monthly_candidate_starts)
from .analysis.intervention_analyzer import InterventionAnalyzer, InterventionAnalysisResults

__all__ = [
    # Configuration
    "AnalysisConfig",
    "load_config",

    # Errors
    "PolicyWindowError",
    "InvalidConfiguration",
    "FitDidNotConverge",
    "InsufficientData",
    "AlignmentMismatch",

    # Core pipeline
    "CalendarFeatureBuilder",
    "CalendarFeatures",
    "ForecastFitter",
    "FittedModel",
    "ForecastResult",
    "RankedSparsityForecaster",
    "WeightingPolicy",
    "IdentityTransform",
    "LogOffsetTransform",
    "ResidualSeries",
    "compute_residuals",
    "parse_transform",
    "WindowSpec",
    "TestResult",
    "WindowSignificanceTester",

    # Sensitivity scan
    "SensitivityScanner",
    "SensitivityReport",
    "monthly_candidate_starts",

    # Orchestration
    "InterventionAnalyzer",
    "InterventionAnalysisResults",
]
