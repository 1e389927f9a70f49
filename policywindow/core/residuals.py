"""
Residual Engine

Residuals are ``transform(observed) - forecast``: the forecaster is fitted on
transformed values, so its forecasts already live on the transformed scale.
The transform is carried as an explicit forward/inverse pair so that an
effect estimated on the log scale can be reported as a relative change.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Union

import numpy as np
import pandas as pd

from .errors import AlignmentMismatch, InsufficientData, InvalidConfiguration
from .forecasting import ForecastResult

logger = logging.getLogger(__name__)


class IdentityTransform:
    """Residuals on the natural scale"""

    name = 'identity'
    change_label = 'absolute_change'

    def forward(self, values):
        return values

    def inverse(self, values):
        return values

    def validate(self, values) -> None:
        pass

    def effect_to_relative_change(self, effect: float) -> float:
        """On the natural scale the effect is already additive; returned unchanged"""
        return effect

    def __eq__(self, other):
        return isinstance(other, IdentityTransform)

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return 'IdentityTransform()'


class LogOffsetTransform:
    """
    ``log(x + offset)``.

    An additive effect ``b`` on this scale is a multiplicative change of
    ``exp(b)`` on the natural scale.
    """

    name = 'log_offset'
    change_label = 'relative_change'

    def __init__(self, offset: float = 0.0):
        if not np.isfinite(offset):
            raise InvalidConfiguration(f"Transform offset must be finite, got {offset}")
        self.offset = float(offset)

    def validate(self, values) -> None:
        shifted = np.asarray(values, dtype=float) + self.offset
        bad = int(np.sum(~(shifted > 0)))
        if bad:
            raise InvalidConfiguration(
                f"log(x + {self.offset}) is undefined for {bad} observation(s); increase the offset"
            )

    def forward(self, values):
        self.validate(values)
        return np.log(values + self.offset)

    def inverse(self, values):
        return np.exp(values) - self.offset

    def effect_to_relative_change(self, effect: float) -> float:
        return math.expm1(effect)

    def __eq__(self, other):
        return isinstance(other, LogOffsetTransform) and other.offset == self.offset

    def __hash__(self):
        return hash((self.name, self.offset))

    def __repr__(self):
        return f'LogOffsetTransform(offset={self.offset})'


Transform = Union[IdentityTransform, LogOffsetTransform]

_LOG_OFFSET_PATTERN = re.compile(r'^log_offset\(\s*([-+0-9.eE]+)\s*\)$')


def parse_transform(selector: Union[str, Transform, None]) -> Transform:
    """Parse ``'identity'``, ``'log'`` or ``'log_offset(c)'`` into a transform"""
    if selector is None:
        return IdentityTransform()
    if isinstance(selector, (IdentityTransform, LogOffsetTransform)):
        return selector

    text = selector.strip().lower()
    if text == 'identity':
        return IdentityTransform()
    if text == 'log':
        return LogOffsetTransform(0.0)

    match = _LOG_OFFSET_PATTERN.match(text)
    if match:
        try:
            return LogOffsetTransform(float(match.group(1)))
        except ValueError:
            pass
    raise InvalidConfiguration(f"Unknown transform selector: {selector!r}")


@dataclass(frozen=True)
class ResidualSeries:
    """Date-indexed residuals with the alignment diagnostics that produced them"""

    residuals: pd.Series
    transform: Transform
    alignment: AlignmentMismatch = AlignmentMismatch()

    @property
    def dropped_count(self) -> int:
        return self.alignment.dropped_count

    @property
    def dates(self) -> pd.DatetimeIndex:
        return self.residuals.index

    def __len__(self) -> int:
        return len(self.residuals)

    def to_frame(self) -> pd.DataFrame:
        return self.residuals.rename('residual').rename_axis('date').to_frame()


def compute_residuals(observed: pd.Series,
                      forecast: Union[ForecastResult, pd.Series],
                      transform: Union[str, Transform, None] = None) -> ResidualSeries:
    """
    Residuals of ``transform(observed)`` against ``forecast`` on common dates.

    Dates present on only one side are dropped and counted; an empty overlap
    raises :class:`InsufficientData`.
    """
    transform = parse_transform(transform)
    predicted = forecast.values if isinstance(forecast, ForecastResult) else forecast

    if observed.index.has_duplicates or predicted.index.has_duplicates:
        raise InvalidConfiguration("Observed and forecast series must not contain duplicate dates")

    observed = observed.dropna()
    predicted = predicted.dropna()

    common = observed.index.intersection(predicted.index).sort_values()
    alignment = AlignmentMismatch(
        observed_only=len(observed.index.difference(predicted.index)),
        forecast_only=len(predicted.index.difference(observed.index)),
    )
    if len(common) == 0:
        raise InsufficientData("Observed and forecast series share no dates")
    if alignment:
        logger.warning(f"Dropped {alignment.dropped_count} unmatched dates "
                       f"({alignment.observed_only} observed-only, "
                       f"{alignment.forecast_only} forecast-only)")

    values = transform.forward(observed.loc[common].astype(float))
    residuals = (values - predicted.loc[common].astype(float)).rename('residual')
    return ResidualSeries(residuals=residuals, transform=transform, alignment=alignment)
