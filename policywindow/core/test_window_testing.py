"""
Tests for the window significance tester
"""

import numpy as np
import pandas as pd
import pytest

from policywindow.core import window_testing
from policywindow.core.errors import InsufficientData, InvalidConfiguration
from policywindow.core.residuals import compute_residuals
from policywindow.core.window_testing import WindowSignificanceTester, WindowSpec


def designed_effect_residuals():
    """365 zero residuals with days 213..243 (Aug 2..Sep 1, 2022) set to -0.05"""
    dates = pd.date_range('2022-01-01', periods=365, freq='D')
    values = np.zeros(365)
    values[213:244] = -0.05
    return pd.Series(values, index=dates, name='residual')


def noise_residuals(seed=42, years=4):
    rng = np.random.default_rng(seed)
    dates = pd.date_range('2018-01-01', periods=365 * years + 1, freq='D')
    return pd.Series(rng.normal(0, 1, len(dates)), index=dates, name='residual')


def test_window_spec_is_inclusive():
    window = WindowSpec('2022-08-01', 30)

    assert window.end == pd.Timestamp('2022-08-31')
    labels = window.label(pd.date_range('2022-07-30', '2022-09-02', freq='D'))
    assert labels.sum() == 31
    assert labels.loc['2022-07-31'] == 0
    assert labels.loc['2022-08-01'] == 1
    assert labels.loc['2022-08-31'] == 1
    assert labels.loc['2022-09-01'] == 0


@pytest.mark.parametrize('length', [0, -3, 2.5])
def test_window_spec_rejects_bad_length(length):
    with pytest.raises(InvalidConfiguration):
        WindowSpec('2022-08-01', length)


def test_widening_window_only_adds_later_dates():
    dates = pd.date_range('2022-01-01', '2022-12-31', freq='D')
    short = WindowSpec('2022-05-10', 10).contains(dates)
    long = WindowSpec('2022-05-10', 40).contains(dates)

    assert np.all(long[short])
    newly_inside = dates[long & ~short]
    assert newly_inside.min() > WindowSpec('2022-05-10', 10).end


def test_designed_effect_detected():
    residuals = designed_effect_residuals()
    window = WindowSpec(residuals.index[213], 30)

    result = window_testing.test_window(residuals, window)

    assert window.end == residuals.index[243]
    assert result.n_inside == 31
    assert result.estimate < 0
    assert result.estimate == pytest.approx(-0.05, abs=1e-8)
    assert result.p_value < 0.01


def test_result_is_deterministic():
    residuals = noise_residuals()
    window = WindowSpec('2019-03-01', 30)
    tester = WindowSignificanceTester()

    assert tester.test_window(residuals, window) == tester.test_window(residuals, window)


def test_accepts_residual_series():
    residuals = noise_residuals()
    wrapped = compute_residuals(residuals, pd.Series(0.0, index=residuals.index))
    window = WindowSpec('2019-03-01', 30)
    tester = WindowSignificanceTester()

    assert tester.test_window(wrapped, window) == tester.test_window(residuals, window)


def test_interval_uses_multiplier():
    residuals = noise_residuals()
    window = WindowSpec('2020-07-01', 30)

    narrow = WindowSignificanceTester().test_window(residuals, window)
    wide = WindowSignificanceTester(ci_multiplier=1.96).test_window(residuals, window)

    assert narrow.ci_high - narrow.ci_low == pytest.approx(2 * narrow.std_error)
    assert wide.ci_high - wide.ci_low == pytest.approx(2 * 1.96 * wide.std_error)
    assert narrow.estimate == wide.estimate
    assert narrow.p_value == wide.p_value


def test_robust_errors_differ_from_classical_under_heteroskedasticity():
    rng = np.random.default_rng(7)
    dates = pd.date_range('2019-01-01', '2021-12-31', freq='D')
    scale = np.where(dates.month.isin([11, 12, 1, 2]), 3.0, 0.3)
    residuals = pd.Series(rng.normal(0, scale), index=dates)
    window = WindowSpec('2020-12-01', 30)

    robust = WindowSignificanceTester(cov_type='HC3').test_window(residuals, window)
    classical = WindowSignificanceTester(cov_type='nonrobust').test_window(residuals, window)

    assert robust.estimate == pytest.approx(classical.estimate)
    assert robust.std_error > classical.std_error


@pytest.mark.parametrize('kwargs', [
    {'cov_type': 'HC1'},
    {'cov_type': 'HAC', 'hac_lags': 7},
    {'reference': 'normal'},
    {'month_control': False},
])
def test_alternative_settings_produce_valid_results(kwargs):
    result = WindowSignificanceTester(**kwargs).test_window(noise_residuals(), WindowSpec('2019-06-01', 30))

    assert 0.0 <= result.p_value <= 1.0
    assert result.std_error > 0
    assert result.ci_low < result.estimate < result.ci_high


@pytest.mark.parametrize('kwargs', [
    {'ci_multiplier': 0},
    {'cov_type': 'HC9'},
    {'reference': 'cauchy'},
    {'cov_type': 'HAC'},
])
def test_invalid_tester_settings(kwargs):
    with pytest.raises(InvalidConfiguration):
        WindowSignificanceTester(**kwargs)


def test_window_longer_than_series_is_insufficient():
    residuals = designed_effect_residuals()

    with pytest.raises(InsufficientData):
        window_testing.test_window(residuals, WindowSpec(residuals.index[0], 400))


def test_window_with_single_day_inside_is_insufficient():
    residuals = designed_effect_residuals()

    with pytest.raises(InsufficientData):
        window_testing.test_window(residuals, WindowSpec(residuals.index[-1], 30))


def test_too_few_outside_observations():
    residuals = designed_effect_residuals()

    with pytest.raises(InsufficientData):
        window_testing.test_window(residuals, WindowSpec(residuals.index[5], 350))


def test_window_matching_a_month_block_is_rank_deficient():
    residuals = designed_effect_residuals()

    with pytest.raises(InsufficientData):
        window_testing.test_window(residuals, WindowSpec('2022-08-01', 30))


def test_relative_change_on_log_scale():
    residuals = designed_effect_residuals()
    result = window_testing.test_window(residuals, WindowSpec(residuals.index[213], 30))

    change = result.relative_change('log_offset(1)')

    assert change['estimate'] == pytest.approx(np.expm1(-0.05), abs=1e-8)
    assert result.to_dict()['n_inside'] == 31
