"""
Data structures shared across the intervention analysis pipeline.
"""

from dataclasses import dataclass
from typing import Optional

import pandas as pd


@dataclass(frozen=True)
class TimeSeriesObservation:
    """One day of the analysed series; ``value`` is None when missing"""

    date: pd.Timestamp
    value: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, 'date', pd.Timestamp(self.date).normalize())

    @property
    def is_missing(self) -> bool:
        return self.value is None or pd.isna(self.value)
