"""
Error taxonomy for the intervention-window testing pipeline.

Configuration problems are raised before any fitting happens, solver
failures carry the solver diagnostics, and data shortfalls are raised per
window so the sensitivity scanner can record them and keep going.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class PolicyWindowError(Exception):
    """Base class for all policywindow errors"""


class InvalidConfiguration(PolicyWindowError):
    """Malformed spline degrees of freedom, window length or transform offset"""


class InsufficientData(PolicyWindowError):
    """Too few observations for a stable regression"""


class FitDidNotConverge(PolicyWindowError):
    """The external fitting routine reported non-convergence"""

    def __init__(self, message: str, diagnostics: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or {}


@dataclass(frozen=True)
class AlignmentMismatch:
    """
    Diagnostic record for observed/forecast date sets that disagree.

    Not raised: the residual engine drops the unmatched dates and reports
    the counts here.
    """

    observed_only: int = 0
    forecast_only: int = 0

    @property
    def dropped_count(self) -> int:
        return self.observed_only + self.forecast_only

    def __bool__(self) -> bool:
        return self.dropped_count > 0
