"""
Sensitivity scan over arbitrary comparison windows.

The policy-window test is repeated for many candidate windows of the same
length (e.g. one starting on the first of every month over several years),
all against the same fixed residual series. The forecast is fitted once and
never refitted per candidate, so every candidate is judged on equal terms and
the model has not seen the label it is tested against. The distribution of
candidate estimates is the yardstick for how unusual the policy window is.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..core.errors import InsufficientData, InvalidConfiguration
from ..core.residuals import ResidualSeries
from ..core.window_testing import TestResult, WindowSignificanceTester, WindowSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanEntry:
    """Outcome for one candidate window: a result or the reason it failed"""

    window: WindowSpec
    result: Optional[TestResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class SensitivityReport:
    """Scan entries in candidate order, with the policy window marked"""

    entries: List[ScanEntry] = field(default_factory=list)
    policy_index: Optional[int] = None
    window_length_days: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def successes(self) -> List[ScanEntry]:
        return [e for e in self.entries if e.succeeded]

    @property
    def failures(self) -> List[ScanEntry]:
        return [e for e in self.entries if not e.succeeded]

    @property
    def policy_entry(self) -> Optional[ScanEntry]:
        if self.policy_index is None:
            return None
        return self.entries[self.policy_index]

    def estimates(self) -> np.ndarray:
        return np.array([e.result.estimate for e in self.successes], dtype=float)

    def empirical_rank(self) -> Optional[float]:
        """
        Share of successful candidate estimates at or below the policy estimate.

        Values near 0 mean the policy window shows one of the most negative
        effects among arbitrary windows of the same length.
        """
        policy = self.policy_entry
        if policy is None or not policy.succeeded:
            return None
        estimates = self.estimates()
        return float(np.mean(estimates <= policy.result.estimate))

    def false_positive_rate(self, alpha: float = 0.05, exclude_policy: bool = True) -> Optional[float]:
        """Share of successful candidates reporting p < alpha"""
        entries = [e for i, e in enumerate(self.entries)
                   if e.succeeded and not (exclude_policy and i == self.policy_index)]
        if not entries:
            return None
        return float(np.mean([e.result.p_value < alpha for e in entries]))

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for i, entry in enumerate(self.entries):
            row = {
                'start': entry.window.start,
                'end': entry.window.end,
                'is_policy': i == self.policy_index,
                'succeeded': entry.succeeded,
                'error': entry.error,
            }
            if entry.succeeded:
                row.update(entry.result.to_dict())
            rows.append(row)
        return pd.DataFrame(rows)


def monthly_candidate_starts(first, last) -> List[pd.Timestamp]:
    """First day of every month from ``first`` through ``last``"""
    return list(pd.date_range(pd.Timestamp(first), pd.Timestamp(last), freq='MS'))


class SensitivityScanner:
    """
    Runs the window test for each candidate start.

    ``InsufficientData`` on a candidate is recorded as a failed entry and the
    scan continues; any other error propagates.

    Args:
        tester: Window significance tester shared by all candidates
        max_workers: Threads used across candidates (1 runs sequentially)
    """

    def __init__(self, tester: Optional[WindowSignificanceTester] = None, max_workers: int = 1):
        if max_workers < 1:
            raise InvalidConfiguration(f"max_workers must be >= 1, got {max_workers}")
        self.tester = tester or WindowSignificanceTester()
        self.max_workers = max_workers

    def _run_one(self, residuals: Union[ResidualSeries, pd.Series], window: WindowSpec) -> ScanEntry:
        try:
            return ScanEntry(window=window, result=self.tester.test_window(residuals, window))
        except InsufficientData as e:
            logger.warning(f"Candidate window {window} skipped: {e}")
            return ScanEntry(window=window, error=str(e))

    def scan(self, residuals: Union[ResidualSeries, pd.Series], window_length_days: int,
             candidate_starts: Sequence, policy_start=None) -> SensitivityReport:
        """
        Test one window of ``window_length_days`` per candidate start.

        Args:
            residuals: Fixed residual series shared read-only by all candidates
            window_length_days: Length of every candidate window
            candidate_starts: Start dates, scanned and reported in this order
            policy_start: Start of the policy window; marked in the report
                when it is one of the candidate starts
        """
        windows = [WindowSpec(start, window_length_days) for start in candidate_starts]

        policy_index = None
        if policy_start is not None:
            policy = pd.Timestamp(policy_start).normalize()
            starts = [w.start for w in windows]
            if policy in starts:
                policy_index = starts.index(policy)
            else:
                logger.warning(f"Policy start {policy.date()} is not among the candidate starts")

        logger.info(f"Scanning {len(windows)} candidate windows of {window_length_days} days")

        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                entries = list(executor.map(lambda w: self._run_one(residuals, w), windows))
        else:
            entries = [self._run_one(residuals, w) for w in windows]

        report = SensitivityReport(entries=entries, policy_index=policy_index,
                                   window_length_days=window_length_days)
        logger.info(f"Scan finished: {len(report.successes)} succeeded, {len(report.failures)} failed")
        return report
