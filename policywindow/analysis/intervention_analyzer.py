"""
Intervention Analyzer - Main Integration Class

Runs the forecast-and-compare procedure for one pollutant series:

1. Validate the transform against the raw values (before any fitting)
2. Build calendar features on the full date range
3. Fit the forecaster once (holdout prefix, or full history with an
   unpenalized window indicator)
4. Forecast and compute residuals (in indicator mode the forecast zeroes
   the window indicator, so the window effect stays in the residuals)
5. Test the policy window, then scan arbitrary windows of the same length

Each run owns its own features, model and residuals, so analyses of
different pollutants never share state.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Union

import numpy as np
import pandas as pd

from ..config import AnalysisConfig
from ..core.calendar_features import CalendarFeatureBuilder
from ..core.errors import InvalidConfiguration
from ..core.forecasting import (FittedModel, ForecastFitter, RankedSparsityForecaster,
                                WeightingPolicy, indicator_effect)
from ..core.residuals import ResidualSeries, compute_residuals, parse_transform
from ..core.window_testing import TestResult, WindowSignificanceTester, WindowSpec
from ..robustness.sensitivity_scanner import (SensitivityReport, SensitivityScanner,
                                              monthly_candidate_starts)
from ..utils.data_processor import DataProcessor, observations_to_series
from ..utils.data_structures import TimeSeriesObservation

INDICATOR_COLUMN = 'policy_window'


@dataclass
class InterventionAnalysisResults:
    """Everything produced by one analysis run"""

    policy_window: WindowSpec
    policy_result: TestResult
    residuals: ResidualSeries
    model: FittedModel
    sensitivity: Optional[SensitivityReport] = None
    indicator_coefficient: Optional[float] = None
    config: Optional[AnalysisConfig] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def relative_change(self) -> Dict[str, float]:
        return self.policy_result.relative_change(self.residuals.transform)

    def summary(self) -> Dict[str, Any]:
        # 'relative_change' on the log scale, 'absolute_change' under identity
        change_label = self.residuals.transform.change_label
        summary = {
            'policy_window': {'start': str(self.policy_window.start.date()),
                              'end': str(self.policy_window.end.date()),
                              'length_days': self.policy_window.length_days},
            'policy_result': self.policy_result.to_dict(),
            change_label: self.relative_change(),
            'transform': repr(self.residuals.transform),
            'residuals': {'n': len(self.residuals),
                          'dropped_unmatched_dates': self.residuals.dropped_count},
            'model': {'gamma': self.model.gamma,
                      'penalty': self.model.penalty,
                      'criterion': self.model.criterion,
                      'criterion_value': self.model.criterion_value,
                      'train_end': str(self.model.train_end.date()),
                      'selected_terms': self.model.selected_columns},
            'timestamp': self.timestamp,
        }
        if self.indicator_coefficient is not None:
            summary['indicator_coefficient'] = self.indicator_coefficient
            summary[f'indicator_{change_label}'] = \
                self.residuals.transform.effect_to_relative_change(self.indicator_coefficient)
        if self.sensitivity is not None:
            summary['sensitivity'] = {
                'candidates': len(self.sensitivity),
                'succeeded': len(self.sensitivity.successes),
                'failed': len(self.sensitivity.failures),
                'policy_empirical_rank': self.sensitivity.empirical_rank(),
                'false_positive_rate_05': self.sensitivity.false_positive_rate(0.05),
            }
        return summary


class InterventionAnalyzer:
    """
    Coordinates features, forecaster, residuals, window test and scan.

    Args:
        config: Analysis configuration
        fitter: Forecasting capability; defaults to a
            :class:`RankedSparsityForecaster` built from ``config``
    """

    def __init__(self, config: Optional[AnalysisConfig] = None,
                 fitter: Optional[ForecastFitter] = None):
        self.config = config or AnalysisConfig()
        self.config.ensure_valid()
        self.logger = logging.getLogger(__name__)

        self.fitter = fitter or RankedSparsityForecaster(
            n_lags_max=self.config.n_lags_max,
            gammas=self.config.gammas,
            criterion=self.config.criterion,
        )
        self.tester = WindowSignificanceTester(
            ci_multiplier=self.config.ci_multiplier,
            cov_type=self.config.cov_type,
            reference=self.config.reference,
            month_control=self.config.month_control,
            hac_lags=self.config.hac_lags,
        )
        self.scanner = SensitivityScanner(self.tester, max_workers=self.config.max_workers)

    def _prepare_series(self, observations) -> pd.Series:
        if isinstance(observations, pd.Series):
            series = observations.sort_index().astype(float)
            series.index = pd.DatetimeIndex(series.index).normalize()
            if series.index.has_duplicates:
                raise InvalidConfiguration("Series contains duplicate dates")
        else:
            series = observations_to_series(observations)

        full = pd.date_range(series.index.min(), series.index.max(), freq='D')
        if len(full) != len(series):
            self.logger.info(f"Reindexing onto {len(full)} contiguous days")
            series = series.reindex(full)
        if series.isna().any():
            series = DataProcessor().impute_missing(series)
        return series

    def candidate_starts(self, residuals: ResidualSeries, window: WindowSpec):
        """Monthly candidate starts over the configured or residual range, including the policy start"""
        first = self.config.scan_first or residuals.dates.min()
        last = self.config.scan_last or \
            residuals.dates.max() - pd.Timedelta(days=window.length_days)
        starts = monthly_candidate_starts(first, last)
        if window.start not in starts:
            starts = sorted(starts + [window.start])
        return starts

    def run(self, observations: Union[pd.Series, Iterable[TimeSeriesObservation]]) -> InterventionAnalysisResults:
        cfg = self.config
        series = self._prepare_series(observations)
        window = WindowSpec(cfg.policy_start, cfg.window_length_days)

        self.logger.info("Step 1: Validating transform")
        transform = parse_transform(cfg.transform)
        transform.validate(series.to_numpy())
        y = transform.forward(series)

        self.logger.info("Step 2: Building calendar features")
        builder = CalendarFeatureBuilder(cfg.spline_df, series.index)
        exog = builder.build(series.index).design_matrix()

        self.logger.info(f"Step 3: Fitting forecaster ({cfg.mode} mode)")
        indicator_coefficient = None
        if cfg.mode == 'holdout':
            n_before = int(np.sum(series.index < window.start))
            if n_before == 0 or n_before == len(series):
                raise InvalidConfiguration(
                    f"Policy start {window.start.date()} must fall inside the series "
                    f"({series.index.min().date()}..{series.index.max().date()})"
                )
            train_fraction = min(1.0, (n_before + 0.5) / len(series))
            policy = WeightingPolicy(penalize_calendar=cfg.penalize_calendar)
            model = self.fitter.fit(y, exog, train_fraction, policy)
            horizon = len(series) - model.n_train
        else:
            exog[INDICATOR_COLUMN] = window.label(series.index).astype(float)
            policy = WeightingPolicy(unpenalized=(INDICATOR_COLUMN,),
                                     penalize_calendar=cfg.penalize_calendar)
            model = self.fitter.fit(y, exog, cfg.train_fraction, policy)
            horizon = len(series) - model.n_train
            indicator_coefficient = indicator_effect(model, INDICATOR_COLUMN)
            self.logger.info(f"Window indicator coefficient: {indicator_coefficient:.4f}")

        self.logger.info("Step 4: Forecasting and computing residuals")
        forecast_model = model
        if indicator_coefficient is not None:
            # Counterfactual forecast: the window indicator is zeroed so the
            # tested residuals never have the window effect removed
            counterfactual = model.exogenous.copy()
            counterfactual[INDICATOR_COLUMN] = 0.0
            forecast_model = replace(model, exogenous=counterfactual)
        forecast = self.fitter.forecast(forecast_model, horizon, mode='rolling')

        # Days before the first forecast are lag burn-in, not unmatched dates
        observed = series.loc[forecast.dates.min():] if len(forecast) else series
        residuals = compute_residuals(observed, forecast, transform)

        self.logger.info(f"Step 5: Testing policy window {window}")
        policy_result = self.tester.test_window(residuals, window)
        self.logger.info(f"Policy window effect {policy_result.estimate:.4f} "
                         f"(se={policy_result.std_error:.4f}, p={policy_result.p_value:.4f})")

        sensitivity = None
        if cfg.run_scan:
            self.logger.info("Step 6: Running sensitivity scan")
            sensitivity = self.scanner.scan(residuals, window.length_days,
                                            self.candidate_starts(residuals, window),
                                            policy_start=window.start)

        return InterventionAnalysisResults(
            policy_window=window,
            policy_result=policy_result,
            residuals=residuals,
            model=model,
            sensitivity=sensitivity,
            indicator_coefficient=indicator_coefficient,
            config=cfg,
        )
