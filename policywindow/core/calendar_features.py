"""
Calendar Feature Builder

Derives the exogenous calendar regressors used by the forecaster: a weekday
category, a month category and a smooth trend basis. The trend basis is a
natural cubic regression spline (patsy ``cr``) whose knots are learned once
from the full date range handed to the builder, so every later request for
features (training prefix, forecast horizon, rolling predictions) sees the
same basis.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from patsy import build_design_matrices, dmatrix

from .errors import InvalidConfiguration

WEEKDAY_LEVELS = list(range(7))
MONTH_LEVELS = list(range(1, 13))
MIN_SPLINE_DF = 3


@dataclass(frozen=True)
class CalendarFeatures:
    """Calendar covariates, one row per observation date"""

    weekday: pd.Series   # categorical, 0=Monday .. 6=Sunday
    month: pd.Series     # categorical, 1..12
    trend: pd.DataFrame  # spline_df columns

    @property
    def dates(self) -> pd.DatetimeIndex:
        return self.trend.index

    def __len__(self) -> int:
        return len(self.trend)

    def design_matrix(self, drop_first: bool = True) -> pd.DataFrame:
        """
        Dummy-encode weekday and month and append the trend basis.

        Dummy columns are generated for every level, present or not, so
        matrices built from different date subsets line up column by column.
        """
        weekday = pd.get_dummies(self.weekday, prefix='weekday',
                                 drop_first=drop_first, dtype=float)
        month = pd.get_dummies(self.month, prefix='month',
                               drop_first=drop_first, dtype=float)
        return pd.concat([weekday, month, self.trend], axis=1)


class CalendarFeatureBuilder:
    """
    Builds calendar features against a fixed trend basis.

    Args:
        spline_df: Degrees of freedom of the trend spline
        trend_dates: Dates spanning the full analysis range; the spline
            knots are placed on this range and never refit
    """

    def __init__(self, spline_df: int, trend_dates):
        self.logger = logging.getLogger(__name__)
        self.spline_df = spline_df

        trend_dates = pd.DatetimeIndex(trend_dates).normalize()
        n_distinct = trend_dates.nunique()

        if not isinstance(spline_df, (int, np.integer)) or spline_df < MIN_SPLINE_DF:
            raise InvalidConfiguration(
                f"spline_df must be an integer >= {MIN_SPLINE_DF}, got {spline_df!r}"
            )
        if spline_df > n_distinct:
            raise InvalidConfiguration(
                f"spline_df ({spline_df}) exceeds the number of distinct dates ({n_distinct})"
            )

        self.origin = trend_dates.min()
        self.last = trend_dates.max()

        t = self._time_index(trend_dates.unique().sort_values())
        basis = dmatrix(f"cr(t, df={spline_df}, constraints='center') - 1",
                        {'t': t}, return_type='dataframe')
        self._design_info = basis.design_info

        self.logger.debug(f"Trend basis fitted on {self.origin.date()}..{self.last.date()} "
                          f"with df={spline_df}")

    def _time_index(self, dates: pd.DatetimeIndex) -> np.ndarray:
        return np.asarray((dates - self.origin).days, dtype=float)

    def trend_basis(self, dates) -> pd.DataFrame:
        """Evaluate the fixed trend basis at ``dates``"""
        dates = pd.DatetimeIndex(dates).normalize()
        if len(dates) and (dates.min() < self.origin or dates.max() > self.last):
            raise InvalidConfiguration(
                f"Dates {dates.min().date()}..{dates.max().date()} fall outside the trend "
                f"range {self.origin.date()}..{self.last.date()}"
            )

        (basis,) = build_design_matrices([self._design_info],
                                         {'t': self._time_index(dates)},
                                         return_type='dataframe')
        basis.index = dates
        basis.columns = [f"trend_{i}" for i in range(basis.shape[1])]
        return basis

    def build(self, dates) -> CalendarFeatures:
        """Produce weekday, month and trend features for each date"""
        dates = pd.DatetimeIndex(dates).normalize()
        if dates.has_duplicates:
            raise InvalidConfiguration("Dates passed to the feature builder must be unique")

        weekday = pd.Series(pd.Categorical(dates.dayofweek, categories=WEEKDAY_LEVELS),
                            index=dates, name='weekday')
        month = pd.Series(pd.Categorical(dates.month, categories=MONTH_LEVELS),
                          index=dates, name='month')
        return CalendarFeatures(weekday=weekday, month=month, trend=self.trend_basis(dates))


def build_calendar_features(dates, spline_df: int,
                            trend_dates: Optional[pd.DatetimeIndex] = None) -> CalendarFeatures:
    """Build features for ``dates`` with a trend basis fitted on ``trend_dates`` (default: ``dates``)"""
    builder = CalendarFeatureBuilder(spline_df, dates if trend_dates is None else trend_dates)
    return builder.build(dates)
