"""
Configuration settings for the policywindow analysis.
"""

import json
import numbers
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .core.residuals import parse_transform
from .core.errors import InvalidConfiguration

CONFIG_ENV_VAR = 'POLICYWINDOW_CONFIG'
OUTPUT_DIR_ENV_VAR = 'POLICYWINDOW_OUTPUT_DIR'

# Default configuration
DEFAULT_CONFIG = {
    # Policy window (Denver RTD "Zero Fare for Cleaner Air", August 2022)
    "policy_start": "2022-08-01",
    "window_length_days": 30,

    # Modelling
    "mode": "holdout",
    "transform": "log_offset(1)",
    "spline_df": 6,
    "n_lags_max": 14,
    "gammas": [0.0, 0.5, 1.0, 2.0],
    "criterion": "BIC",
    "penalize_calendar": True,
    "train_fraction": 1.0,

    # Inference
    "ci_multiplier": 1.0,
    "cov_type": "HC3",
    "reference": "t",
    "month_control": True,
    "hac_lags": None,

    # Sensitivity scan
    "run_scan": True,
    "scan_first": None,
    "scan_last": None,
    "max_workers": 1,

    # Output
    "output_dir": "results",
}

MODES = ("holdout", "indicator")

NUMERIC_FIELDS = {
    "window_length_days": int,
    "spline_df": int,
    "n_lags_max": int,
    "hac_lags": int,
    "max_workers": int,
    "train_fraction": float,
    "ci_multiplier": float,
}


def _is_number(value, integer: bool = False) -> bool:
    if isinstance(value, bool):
        return False
    if integer:
        return isinstance(value, numbers.Integral)
    return isinstance(value, numbers.Real)


@dataclass
class AnalysisConfig:
    """
    Configuration for one intervention analysis run.

    Attributes:
        policy_start: First day of the policy window (YYYY-MM-DD)
        window_length_days: Window length L; the window covers L + 1 days
        mode: 'holdout' fits on the history before the window and forecasts
            through it; 'indicator' fits on the full history with an
            unpenalized window indicator
        transform: 'identity', 'log' or 'log_offset(c)'
        spline_df: Degrees of freedom of the trend spline
        n_lags_max: Autoregressive lags offered to the forecaster
        gammas: Ranked-sparsity exponents searched by the forecaster
        criterion: Penalty selection criterion ('BIC' or 'AICc')
        penalize_calendar: Whether calendar terms are penalized
        train_fraction: Training share in 'indicator' mode
        ci_multiplier: Interval half-width in standard errors
        cov_type: Robust covariance type for the window regression
        reference: 't' or 'normal' reference distribution for p-values
        month_control: Include month dummies in the window regression
        hac_lags: Lags for HAC covariance
        run_scan: Run the sensitivity scan
        scan_first / scan_last: Range of monthly candidate starts (defaults
            to the residual span)
        max_workers: Threads for the sensitivity scan
        output_dir: Where CLI results are written
    """

    policy_start: str = DEFAULT_CONFIG["policy_start"]
    window_length_days: int = DEFAULT_CONFIG["window_length_days"]

    mode: str = DEFAULT_CONFIG["mode"]
    transform: str = DEFAULT_CONFIG["transform"]
    spline_df: int = DEFAULT_CONFIG["spline_df"]
    n_lags_max: int = DEFAULT_CONFIG["n_lags_max"]
    gammas: List[float] = field(default_factory=lambda: list(DEFAULT_CONFIG["gammas"]))
    criterion: str = DEFAULT_CONFIG["criterion"]
    penalize_calendar: bool = DEFAULT_CONFIG["penalize_calendar"]
    train_fraction: float = DEFAULT_CONFIG["train_fraction"]

    ci_multiplier: float = DEFAULT_CONFIG["ci_multiplier"]
    cov_type: str = DEFAULT_CONFIG["cov_type"]
    reference: str = DEFAULT_CONFIG["reference"]
    month_control: bool = DEFAULT_CONFIG["month_control"]
    hac_lags: Optional[int] = DEFAULT_CONFIG["hac_lags"]

    run_scan: bool = DEFAULT_CONFIG["run_scan"]
    scan_first: Optional[str] = DEFAULT_CONFIG["scan_first"]
    scan_last: Optional[str] = DEFAULT_CONFIG["scan_last"]
    max_workers: int = DEFAULT_CONFIG["max_workers"]

    output_dir: str = DEFAULT_CONFIG["output_dir"]

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'AnalysisConfig':
        """Create configuration from dictionary."""
        unknown = set(config_dict) - set(DEFAULT_CONFIG)
        if unknown:
            raise InvalidConfiguration(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**config_dict)

    def validate(self) -> List[str]:
        """
        Validate configuration parameters.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        # Type checks first; range checks below only run on well-typed values
        mistyped = set()
        for name, expected in NUMERIC_FIELDS.items():
            value = getattr(self, name)
            if value is None and name == "hac_lags":
                continue
            if not _is_number(value, integer=expected is int):
                kind = "an integer" if expected is int else "a number"
                errors.append(f"{name} must be {kind}, got {value!r}")
                mistyped.add(name)

        for name in ("mode", "transform", "criterion", "cov_type", "reference"):
            value = getattr(self, name)
            if not isinstance(value, str):
                errors.append(f"{name} must be a string, got {value!r}")
                mistyped.add(name)

        for name in ("policy_start", "scan_first", "scan_last"):
            value = getattr(self, name)
            if value is None and name != "policy_start":
                continue
            try:
                datetime.strptime(str(value), "%Y-%m-%d")
            except ValueError:
                errors.append(f"Invalid {name} format: {value}")

        def check(name, ok, message):
            if name not in mistyped and not ok(getattr(self, name)):
                errors.append(message)

        check("window_length_days", lambda v: v >= 1,
              f"window_length_days must be >= 1, got {self.window_length_days}")
        check("mode", lambda v: v in MODES,
              f"Invalid mode: {self.mode}. Must be one of {MODES}")

        if "transform" not in mistyped:
            try:
                parse_transform(self.transform)
            except InvalidConfiguration as e:
                errors.append(str(e))

        check("spline_df", lambda v: v >= 3, f"spline_df must be >= 3, got {self.spline_df}")
        check("n_lags_max", lambda v: v >= 1, f"n_lags_max must be >= 1, got {self.n_lags_max}")

        if not isinstance(self.gammas, (list, tuple)) or not self.gammas:
            errors.append(f"gammas must be a non-empty list, got {self.gammas!r}")
        elif not all(_is_number(g) and g >= 0 for g in self.gammas):
            errors.append(f"gammas must be non-negative numbers, got {self.gammas!r}")

        check("criterion", lambda v: v in ("BIC", "AICc"),
              f"Invalid criterion: {self.criterion}. Must be 'BIC' or 'AICc'")
        check("train_fraction", lambda v: 0 < v <= 1,
              f"train_fraction must be in (0, 1], got {self.train_fraction}")
        check("ci_multiplier", lambda v: v > 0,
              f"ci_multiplier must be positive, got {self.ci_multiplier}")

        if "cov_type" not in mistyped:
            if self.cov_type not in ("nonrobust", "HC0", "HC1", "HC2", "HC3", "HAC"):
                errors.append(f"Invalid cov_type: {self.cov_type}")
            elif self.cov_type == "HAC" and self.hac_lags is None:
                errors.append("hac_lags is required when cov_type is 'HAC'")
        check("hac_lags", lambda v: v is None or v >= 0,
              f"hac_lags must be >= 0, got {self.hac_lags}")

        check("reference", lambda v: v in ("t", "normal"),
              f"Invalid reference: {self.reference}. Must be 't' or 'normal'")
        check("max_workers", lambda v: v >= 1, f"max_workers must be >= 1, got {self.max_workers}")

        return errors

    def ensure_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise InvalidConfiguration("; ".join(errors))


def load_config_from_file(config_path: str) -> AnalysisConfig:
    """Load configuration from a JSON file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config_dict = json.load(f)

    return AnalysisConfig.from_dict(config_dict)


def save_config_to_file(config_obj: AnalysisConfig, config_path: str) -> None:
    """Save configuration to a JSON file."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config_obj.to_dict(), f, indent=2)


def load_config(config_path: Optional[str] = None) -> AnalysisConfig:
    """
    Resolve the run configuration.

    Order: explicit path, then ``POLICYWINDOW_CONFIG`` (a ``.env`` file in the
    working directory is read first), then defaults. ``POLICYWINDOW_OUTPUT_DIR``
    overrides the output directory.
    """
    load_dotenv()

    config_path = config_path or os.getenv(CONFIG_ENV_VAR)
    config = load_config_from_file(config_path) if config_path else AnalysisConfig()

    output_dir = os.getenv(OUTPUT_DIR_ENV_VAR)
    if output_dir:
        config.output_dir = output_dir
    return config
