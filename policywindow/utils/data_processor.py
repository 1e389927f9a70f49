"""
Data preparation for the intervention analysis.

Turns EPA AQS daily summaries (one row per monitor, parameter and pollutant
standard) into the contiguous daily series the core expects: average across
monitors per day, left-join onto the complete min..max date sequence, then
fill the gaps by interpolation.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from ..core.errors import InsufficientData, InvalidConfiguration
from .data_structures import TimeSeriesObservation

INTERPOLATION_METHODS = ('linear', 'time', 'cubic', 'forward', 'backward')


@dataclass
class ProcessingConfig:
    """Configuration for data preparation"""

    # Input columns
    date_column: str = 'date_local'
    value_column: str = 'daily_avg'

    # AQS daily summaries
    measurement_column: str = 'arithmetic_mean'
    site_column: str = 'site_number'
    pollutant_standard: Optional[str] = None  # e.g. 'Ozone 8-Hour 2008'

    # Missing value handling
    interpolation_method: str = 'linear'
    max_missing_pct: float = 20.0


class DataProcessor:
    """
    Prepares raw daily pollutant data for the forecasting core
    """

    def __init__(self, config: Optional[ProcessingConfig] = None):
        self.config = config or ProcessingConfig()
        self.logger = logging.getLogger(__name__)

        if self.config.interpolation_method not in INTERPOLATION_METHODS:
            raise InvalidConfiguration(
                f"interpolation_method must be one of {INTERPOLATION_METHODS}, "
                f"got {self.config.interpolation_method!r}"
            )

    def aggregate_daily_summary(self, frame: pd.DataFrame,
                                pollutant_standard: Optional[str] = None) -> pd.DataFrame:
        """
        Average monitor readings per day.

        Returns a frame with the date column, ``daily_avg`` (mean of the
        measurement column), ``n_obs`` (rows averaged) and ``n_sites``
        (distinct monitoring sites).
        """
        cfg = self.config
        standard = pollutant_standard or cfg.pollutant_standard
        if standard is not None:
            frame = frame[frame['pollutant_standard'] == standard]
            self.logger.info(f"Kept {len(frame)} rows for pollutant standard '{standard}'")

        daily = frame.groupby(cfg.date_column).agg(
            daily_avg=(cfg.measurement_column, 'mean'),
            n_obs=(cfg.measurement_column, 'size'),
            n_sites=(cfg.site_column, 'nunique'),
        ).reset_index()
        daily[cfg.date_column] = pd.to_datetime(daily[cfg.date_column])
        return daily.sort_values(cfg.date_column).reset_index(drop=True)

    def complete_daily_index(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Left-join ``frame`` onto every date between its first and last date"""
        date_column = self.config.date_column
        dates = pd.to_datetime(frame[date_column])
        full = pd.DataFrame({date_column: pd.date_range(dates.min(), dates.max(), freq='D')})

        frame = frame.assign(**{date_column: dates})
        completed = full.merge(frame, on=date_column, how='left')

        added = len(completed) - len(frame.drop_duplicates(date_column))
        if added:
            self.logger.info(f"Inserted {added} missing calendar days")
        return completed

    def impute_missing(self, series: pd.Series) -> pd.Series:
        """Fill missing values of a daily series by interpolation"""
        missing_pct = 100.0 * series.isna().mean() if len(series) else 0.0
        if missing_pct > self.config.max_missing_pct:
            self.logger.warning(f"{series.name}: {missing_pct:.1f}% missing exceeds "
                                f"{self.config.max_missing_pct}%")

        method = self.config.interpolation_method
        if method == 'forward':
            filled = series.ffill().bfill()
        elif method == 'backward':
            filled = series.bfill().ffill()
        else:
            filled = series.interpolate(method=method, limit_direction='both')

        if filled.isna().any():
            raise InsufficientData(f"{series.name}: no observed values to impute from")
        return filled

    def load_daily_series(self, path: Union[str, Path]) -> pd.Series:
        """Read a CSV and return a gap-free, imputed, date-indexed series"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Data file not found: {path}")

        cfg = self.config
        frame = pd.read_csv(path)
        for column in (cfg.date_column, cfg.value_column):
            if column not in frame.columns:
                raise InvalidConfiguration(f"Column '{column}' not found in {path}")

        frame = self.complete_daily_index(frame[[cfg.date_column, cfg.value_column]])
        series = frame.set_index(cfg.date_column)[cfg.value_column].astype(float)
        series.index = pd.DatetimeIndex(series.index, name='date')
        self.logger.info(f"Loaded {len(series)} days from {path} "
                         f"({int(series.isna().sum())} missing)")
        return self.impute_missing(series)


def to_observations(series: pd.Series) -> List[TimeSeriesObservation]:
    return [TimeSeriesObservation(date=date, value=None if pd.isna(value) else float(value))
            for date, value in series.items()]


def observations_to_series(observations: Iterable[TimeSeriesObservation],
                           name: str = 'value') -> pd.Series:
    """Collect observations into a sorted date-indexed series, rejecting duplicate dates"""
    observations = list(observations)
    index = pd.DatetimeIndex([o.date for o in observations], name='date')
    values = [np.nan if o.is_missing else float(o.value) for o in observations]
    series = pd.Series(values, index=index, name=name, dtype=float).sort_index()
    if series.index.has_duplicates:
        raise InvalidConfiguration("Observations contain duplicate dates")
    return series
