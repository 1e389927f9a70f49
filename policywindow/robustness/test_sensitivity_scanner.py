"""
Tests for the sensitivity scanner
"""

import numpy as np
import pandas as pd
import pytest

from policywindow.core.errors import InvalidConfiguration
from policywindow.core.window_testing import WindowSignificanceTester, WindowSpec
from policywindow.robustness.sensitivity_scanner import SensitivityScanner, monthly_candidate_starts


@pytest.fixture
def noise():
    rng = np.random.default_rng(2024)
    dates = pd.date_range('2018-01-01', '2021-12-31', freq='D')
    return pd.Series(rng.normal(0, 1, len(dates)), index=dates, name='residual')


def test_monthly_candidate_starts():
    starts = monthly_candidate_starts('2020-01-15', '2020-06-01')

    assert starts == [pd.Timestamp(d) for d in
                      ('2020-02-01', '2020-03-01', '2020-04-01', '2020-05-01', '2020-06-01')]


def test_one_entry_per_candidate_in_order(noise):
    starts = monthly_candidate_starts('2019-01-01', '2019-12-01')[::-1]

    report = SensitivityScanner().scan(noise, 30, starts)

    assert len(report) == len(starts)
    assert [e.window.start for e in report.entries] == starts
    assert len(report.successes) == len(starts)
    assert report.policy_index is None


def test_failed_candidates_are_marked_not_omitted(noise):
    starts = [pd.Timestamp('2019-03-01'), pd.Timestamp('2021-12-31'), pd.Timestamp('2017-01-01'),
              pd.Timestamp('2020-05-01')]

    report = SensitivityScanner().scan(noise, 30, starts)

    assert len(report) == 4
    assert [e.succeeded for e in report.entries] == [True, False, False, True]
    assert all(e.error for e in report.failures)
    assert len(report.successes) == 2

    frame = report.to_frame()
    assert len(frame) == 4
    assert frame['succeeded'].tolist() == [True, False, False, True]
    assert frame['p_value'].isna().tolist() == [False, True, True, False]


def test_policy_window_marked(noise):
    starts = monthly_candidate_starts('2018-02-01', '2021-10-01')

    report = SensitivityScanner().scan(noise, 30, starts, policy_start='2020-08-01')

    assert report.entries[report.policy_index].window.start == pd.Timestamp('2020-08-01')
    assert report.to_frame()['is_policy'].sum() == 1
    rank = report.empirical_rank()
    assert 0 < rank <= 1
    assert rank == pytest.approx(np.mean(report.estimates() <= report.policy_entry.result.estimate))


def test_policy_start_not_among_candidates(noise):
    report = SensitivityScanner().scan(noise, 30, [pd.Timestamp('2019-01-01')],
                                       policy_start='2019-01-15')

    assert len(report) == 1
    assert report.policy_index is None
    assert report.empirical_rank() is None


def test_candidates_scanned_against_same_residuals(noise):
    tester = WindowSignificanceTester()
    starts = monthly_candidate_starts('2019-01-01', '2019-06-01')

    report = SensitivityScanner(tester).scan(noise, 30, starts)

    for entry in report.entries:
        assert entry.result == tester.test_window(noise, WindowSpec(entry.window.start, 30))


def test_parallel_scan_matches_sequential(noise):
    starts = monthly_candidate_starts('2018-03-01', '2021-09-01')

    sequential = SensitivityScanner().scan(noise, 30, starts)
    parallel = SensitivityScanner(max_workers=4).scan(noise, 30, starts)

    assert sequential.entries == parallel.entries


def test_false_positive_rate_is_calibrated(noise):
    # 24 non-overlapping month-long windows of pure noise
    starts = monthly_candidate_starts('2018-02-01', '2020-01-01')
    assert len(starts) == 24

    report = SensitivityScanner().scan(noise, 27, starts)

    rejections = sum(e.result.p_value < 0.05 for e in report.successes)
    assert len(report.successes) == 24
    # Binomial(24, 0.05): P(X >= 6) < 0.002
    assert rejections <= 5
    assert report.false_positive_rate(0.05) == pytest.approx(rejections / 24)


def test_invalid_worker_count():
    with pytest.raises(InvalidConfiguration):
        SensitivityScanner(max_workers=0)
