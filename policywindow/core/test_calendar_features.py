"""
Tests for the calendar feature builder
"""

import numpy as np
import pandas as pd
import pytest

from policywindow.core.calendar_features import CalendarFeatureBuilder, build_calendar_features
from policywindow.core.errors import InvalidConfiguration


def test_one_feature_row_per_date():
    dates = pd.date_range('2021-01-01', '2022-12-31', freq='D')
    features = build_calendar_features(dates, spline_df=5)

    assert len(features) == len(dates)
    assert features.trend.shape == (len(dates), 5)
    assert list(features.weekday.cat.categories) == list(range(7))
    assert list(features.month.cat.categories) == list(range(1, 13))
    # 2021-01-01 was a Friday
    assert features.weekday.iloc[0] == 4
    assert features.month.iloc[-1] == 12


def test_design_matrix_columns_stable_across_subsets():
    dates = pd.date_range('2021-01-01', '2021-12-31', freq='D')
    builder = CalendarFeatureBuilder(4, dates)

    full = builder.build(dates).design_matrix()
    january = builder.build(dates[:31]).design_matrix()

    # drop_first: 6 weekday + 11 month dummies + 4 trend columns
    assert full.shape[1] == 6 + 11 + 4
    assert list(january.columns) == list(full.columns)
    assert january.filter(like='month_').sum().sum() == 0


def test_trend_basis_identical_for_any_subset():
    dates = pd.date_range('2020-01-01', '2021-06-30', freq='D')
    builder = CalendarFeatureBuilder(6, dates)

    whole = builder.trend_basis(dates)
    part = builder.trend_basis(dates[100:200])

    np.testing.assert_array_equal(whole.iloc[100:200].to_numpy(), part.to_numpy())


def test_trend_basis_deterministic_across_builders():
    dates = pd.date_range('2020-01-01', '2020-12-31', freq='D')
    first = CalendarFeatureBuilder(4, dates).trend_basis(dates)
    second = CalendarFeatureBuilder(4, dates).trend_basis(dates)

    pd.testing.assert_frame_equal(first, second)


def test_spline_df_exceeding_distinct_dates_rejected():
    dates = pd.date_range('2021-01-01', periods=5, freq='D')

    with pytest.raises(InvalidConfiguration):
        CalendarFeatureBuilder(6, dates)


def test_spline_df_too_small_rejected():
    dates = pd.date_range('2021-01-01', periods=60, freq='D')

    with pytest.raises(InvalidConfiguration):
        CalendarFeatureBuilder(1, dates)


def test_dates_outside_trend_range_rejected():
    dates = pd.date_range('2021-01-01', periods=60, freq='D')
    builder = CalendarFeatureBuilder(4, dates)

    with pytest.raises(InvalidConfiguration):
        builder.build(pd.date_range('2021-02-15', periods=30, freq='D'))


def test_duplicate_dates_rejected():
    dates = pd.date_range('2021-01-01', periods=60, freq='D')
    builder = CalendarFeatureBuilder(4, dates)

    with pytest.raises(InvalidConfiguration):
        builder.build(dates.append(dates[:1]))
