"""
Window Significance Tester

Tests whether forecast residuals inside a calendar window differ from zero.
Every residual is labelled with a 0/1 window indicator and the residuals are
regressed on month-of-year dummies plus the indicator:

    e_t = a + sum_m d_m * month_m(t) + b * window(t) + u_t

Month dummies absorb seasonal structure the forecaster may have left in the
residuals, so it is not mistaken for a window effect. Residual variance
differs by season (summer is forecast more accurately than winter), so the
standard error of ``b`` comes from a heteroskedasticity-consistent covariance
estimate rather than the classical OLS one.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats

from .errors import InsufficientData, InvalidConfiguration
from .residuals import ResidualSeries, Transform, parse_transform

COV_TYPES = ('nonrobust', 'HC0', 'HC1', 'HC2', 'HC3', 'HAC')
REFERENCES = ('t', 'normal')


@dataclass(frozen=True)
class WindowSpec:
    """
    Calendar window ``[start, start + length_days]``, both ends inclusive.

    A window of length ``L`` therefore covers ``L + 1`` calendar days.
    """

    start: pd.Timestamp
    length_days: int

    def __post_init__(self):
        if isinstance(self.length_days, bool) or not isinstance(self.length_days, (int, np.integer)):
            raise InvalidConfiguration(f"length_days must be an integer, got {self.length_days!r}")
        if self.length_days < 1:
            raise InvalidConfiguration(f"length_days must be >= 1, got {self.length_days}")
        object.__setattr__(self, 'start', pd.Timestamp(self.start).normalize())

    @property
    def end(self) -> pd.Timestamp:
        return self.start + pd.Timedelta(days=int(self.length_days))

    def contains(self, dates) -> np.ndarray:
        dates = pd.DatetimeIndex(dates).normalize()
        return np.asarray((dates >= self.start) & (dates <= self.end))

    def label(self, dates) -> pd.Series:
        """0/1 indicator for each date"""
        dates = pd.DatetimeIndex(dates)
        return pd.Series(self.contains(dates).astype(int), index=dates, name='window')

    def __str__(self):
        return f"{self.start.date()}..{self.end.date()}"


@dataclass(frozen=True)
class TestResult:
    """Robust estimate of the window effect"""

    __test__ = False

    estimate: float
    std_error: float
    ci_low: float
    ci_high: float
    p_value: float
    n_inside: int = 0
    n_outside: int = 0
    cov_type: str = 'HC3'

    def is_significant(self, alpha: float = 0.05) -> bool:
        return self.p_value < alpha

    def relative_change(self, transform: Union[str, Transform]) -> Dict[str, float]:
        """
        Estimate and interval mapped to the natural scale.

        On the log scale these are relative changes, ``exp(b) - 1``. Under
        the identity transform they are the additive effect in the series'
        own units (see ``transform.change_label``).
        """
        transform = parse_transform(transform)
        return {
            'estimate': transform.effect_to_relative_change(self.estimate),
            'ci_low': transform.effect_to_relative_change(self.ci_low),
            'ci_high': transform.effect_to_relative_change(self.ci_high),
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WindowSignificanceTester:
    """
    Regression-based test of a window indicator on forecast residuals.

    Args:
        ci_multiplier: Interval half-width in standard errors. The default of
            1.0 gives a +-1 SE band; 1.96 gives the conventional 95% interval
        cov_type: statsmodels covariance type ('HC0'..'HC3', 'HAC', 'nonrobust')
        reference: 't' (residual degrees of freedom) or 'normal'
        month_control: Include month-of-year dummies
        hac_lags: Newey-West lags, required when ``cov_type='HAC'``
    """

    def __init__(self, ci_multiplier: float = 1.0, cov_type: str = 'HC3',
                 reference: str = 't', month_control: bool = True,
                 hac_lags: Optional[int] = None):
        if not ci_multiplier > 0:
            raise InvalidConfiguration(f"ci_multiplier must be positive, got {ci_multiplier}")
        if cov_type not in COV_TYPES:
            raise InvalidConfiguration(f"cov_type must be one of {COV_TYPES}, got {cov_type!r}")
        if reference not in REFERENCES:
            raise InvalidConfiguration(f"reference must be one of {REFERENCES}, got {reference!r}")
        if cov_type == 'HAC' and (hac_lags is None or hac_lags < 0):
            raise InvalidConfiguration("hac_lags must be a non-negative integer for HAC covariance")

        self.ci_multiplier = float(ci_multiplier)
        self.cov_type = cov_type
        self.reference = reference
        self.month_control = month_control
        self.hac_lags = hac_lags
        self.logger = logging.getLogger(__name__)

    def _design(self, dates: pd.DatetimeIndex, window: WindowSpec) -> pd.DataFrame:
        columns = []
        if self.month_control:
            months = pd.Series(dates.month, index=dates).astype('category')
            columns.append(pd.get_dummies(months, prefix='month', drop_first=True, dtype=float))
        columns.append(window.label(dates).astype(float))
        return sm.add_constant(pd.concat(columns, axis=1), has_constant='add')

    def _fit(self, y: pd.Series, X: pd.DataFrame):
        if self.cov_type == 'HAC':
            return sm.OLS(y, X).fit(cov_type='HAC', cov_kwds={'maxlags': self.hac_lags})
        return sm.OLS(y, X).fit(cov_type=self.cov_type)

    def _p_value(self, statistic: float, df_resid: float) -> float:
        if np.isnan(statistic):
            return 1.0
        if self.reference == 't':
            p = 2 * stats.t.sf(abs(statistic), df_resid)
        else:
            p = 2 * stats.norm.sf(abs(statistic))
        return float(min(max(p, 0.0), 1.0))

    def test_window(self, residuals: Union[ResidualSeries, pd.Series],
                    window: WindowSpec) -> TestResult:
        """Estimate the window effect on ``residuals``"""
        series = residuals.residuals if isinstance(residuals, ResidualSeries) else residuals
        series = series.dropna().sort_index()
        dates = pd.DatetimeIndex(series.index)

        inside = window.contains(dates)
        n_inside = int(inside.sum())
        n_outside = int(len(inside) - n_inside)
        n_month_levels = dates.month.nunique() if self.month_control else 1

        if n_inside < 2:
            raise InsufficientData(f"Window {window} contains {n_inside} residual(s); at least 2 needed")
        if n_outside < 2 * n_month_levels:
            raise InsufficientData(
                f"Window {window} leaves {n_outside} residual(s) outside; "
                f"at least {2 * n_month_levels} needed"
            )

        X = self._design(dates, window)
        if np.linalg.matrix_rank(X.to_numpy()) < X.shape[1]:
            raise InsufficientData(f"Window {window} is collinear with the month effects")

        results = self._fit(series.astype(float), X)
        estimate = float(results.params['window'])
        std_error = float(results.bse['window'])

        if not np.isfinite(std_error):
            raise InsufficientData(f"Robust standard error is undefined for window {window}")
        if std_error > 0:
            statistic = estimate / std_error
        elif estimate == 0:
            statistic = 0.0
        else:
            statistic = float(np.copysign(np.inf, estimate))

        result = TestResult(
            estimate=estimate,
            std_error=std_error,
            ci_low=estimate - self.ci_multiplier * std_error,
            ci_high=estimate + self.ci_multiplier * std_error,
            p_value=self._p_value(statistic, results.df_resid),
            n_inside=n_inside,
            n_outside=n_outside,
            cov_type=self.cov_type,
        )

        self.logger.debug(f"Window {window}: estimate={estimate:.4f} "
                          f"(se={std_error:.4f}, p={result.p_value:.4f})")
        return result


def test_window(residuals: Union[ResidualSeries, pd.Series], window: WindowSpec,
                **tester_kwargs) -> TestResult:
    """Run :class:`WindowSignificanceTester` with ``tester_kwargs`` on one window"""
    return WindowSignificanceTester(**tester_kwargs).test_window(residuals, window)


test_window.__test__ = False
