"""
Forecast Model Adapter

The forecasting capability is an opaque service behind two operations,
``fit`` and ``forecast`` (see :class:`ForecastFitter`). Any implementation
satisfying them can be plugged into the pipeline, including a test double
returning canned forecasts.

:class:`RankedSparsityForecaster` is the bundled binding: a lasso
autoregression with exogenous regressors in which lag ``k`` carries the
penalty weight ``|PACF_k|^-gamma`` (ranked sparsity: weakly related lags are
shrunk harder). Exogenous columns named in the weighting policy, and the
intercept, are left out of the penalty by partialling them out before the
lasso (Frisch-Waugh-Lovell), so e.g. a policy indicator is never shrunk
toward zero.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import lasso_path
from statsmodels.tsa.stattools import pacf

from .calendar_features import CalendarFeatures
from .errors import FitDidNotConverge, InsufficientData, InvalidConfiguration

FORECAST_MODES = ('recursive', 'rolling', 'historical')  # 'historical' is an alias of 'rolling'
CRITERIA = ('BIC', 'AICc')
CALENDAR_PREFIXES = ('weekday_', 'month_', 'trend_')

ExogenousInput = Union[CalendarFeatures, pd.DataFrame, None]


@dataclass(frozen=True)
class WeightingPolicy:
    """
    Which exogenous columns are exempt from the lasso penalty.

    Attributes:
        unpenalized: Column names fitted without penalty (e.g. a policy
            window indicator)
        penalize_calendar: Whether weekday/month/trend columns are penalized
    """

    unpenalized: Tuple[str, ...] = ()
    penalize_calendar: bool = True

    def is_exempt(self, column: str) -> bool:
        if column in self.unpenalized:
            return True
        if not self.penalize_calendar and column.startswith(CALENDAR_PREFIXES):
            return True
        return False


@dataclass(frozen=True)
class ForecastResult:
    """Point forecasts aligned one-to-one with their target dates"""

    values: pd.Series
    mode: str

    @property
    def dates(self) -> pd.DatetimeIndex:
        return self.values.index

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class FittedModel:
    """Opaque handle returned by :meth:`ForecastFitter.fit`"""

    intercept: float
    coefficients: pd.Series
    n_lags: int
    series: pd.Series
    exogenous: pd.DataFrame
    n_train: int
    unpenalized: Tuple[str, ...] = ()
    penalty: float = 0.0
    gamma: Optional[float] = None
    criterion: str = 'BIC'
    criterion_value: float = float('nan')
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def train_end(self) -> pd.Timestamp:
        return self.series.index[self.n_train - 1]

    @property
    def selected_columns(self):
        return list(self.coefficients.index[self.coefficients != 0])


class ForecastFitter(ABC):
    """Boundary interface around an external regularized time-series fitter"""

    @abstractmethod
    def fit(self, series: pd.Series, exogenous_features: ExogenousInput = None,
            train_fraction: float = 1.0,
            weighting_policy: Optional[WeightingPolicy] = None) -> FittedModel:
        """Train on the first ``train_fraction`` of ``series``"""

    @abstractmethod
    def forecast(self, model: FittedModel, horizon: int,
                 mode: str = 'recursive') -> ForecastResult:
        """
        ``recursive``: ``horizon`` sequential forecasts after the training
        span. ``rolling``: one-step-ahead forecasts with observed lags, from
        the first lag-complete date through ``horizon`` days past training.
        """


def _as_frame(exogenous_features: ExogenousInput, index: pd.DatetimeIndex) -> pd.DataFrame:
    if exogenous_features is None:
        return pd.DataFrame(index=index)
    if isinstance(exogenous_features, CalendarFeatures):
        return exogenous_features.design_matrix()
    return exogenous_features.astype(float)


def _lag_frame(series: pd.Series, n_lags: int) -> pd.DataFrame:
    return pd.concat({f"lag_{k}": series.shift(k) for k in range(1, n_lags + 1)}, axis=1)


def _criterion(rss: float, n: int, df: int, criterion: str) -> float:
    if rss <= 0:
        return -np.inf
    base = n * np.log(rss / n)
    if criterion == 'BIC':
        return base + df * np.log(n)
    if n - df - 1 <= 0:
        return np.inf
    return base + 2 * df + 2 * df * (df + 1) / (n - df - 1)


class RankedSparsityForecaster(ForecastFitter):
    """
    Ranked-sparsity lasso autoregression with exogenous regressors.

    Args:
        n_lags_max: Number of autoregressive lags offered to the lasso
        gammas: Candidate exponents for the PACF-based lag weights; the
            (gamma, penalty) pair minimizing ``criterion`` is kept
        criterion: 'BIC' or 'AICc'
        n_alphas: Length of the penalty path
        eps: Ratio of smallest to largest penalty on the path
        max_iter: Coordinate descent iterations per penalty
        tol: Coordinate descent tolerance
    """

    def __init__(self, n_lags_max: int = 14,
                 gammas: Sequence[float] = (0.0, 0.5, 1.0, 2.0),
                 criterion: str = 'BIC',
                 n_alphas: int = 100,
                 eps: float = 1e-3,
                 max_iter: int = 10000,
                 tol: float = 1e-4):
        if n_lags_max < 1:
            raise InvalidConfiguration(f"n_lags_max must be >= 1, got {n_lags_max}")
        if criterion not in CRITERIA:
            raise InvalidConfiguration(f"criterion must be one of {CRITERIA}, got {criterion!r}")
        if not gammas:
            raise InvalidConfiguration("At least one gamma is required")

        self.n_lags_max = n_lags_max
        self.gammas = tuple(float(g) for g in gammas)
        self.criterion = criterion
        self.n_alphas = n_alphas
        self.eps = eps
        self.max_iter = max_iter
        self.tol = tol
        self.logger = logging.getLogger(__name__)

    def _validate_inputs(self, series: pd.Series, exog: pd.DataFrame,
                         train_fraction: float, policy: WeightingPolicy) -> int:
        if not isinstance(series.index, pd.DatetimeIndex):
            raise InvalidConfiguration("series must be indexed by date")
        if series.index.has_duplicates:
            raise InvalidConfiguration("series contains duplicate dates")
        if series.isna().any():
            raise InvalidConfiguration("series contains missing values; impute before fitting")
        if not 0 < train_fraction <= 1:
            raise InvalidConfiguration(f"train_fraction must be in (0, 1], got {train_fraction}")

        missing = series.index.difference(exog.index)
        if len(missing):
            raise InvalidConfiguration(f"Exogenous features missing for {len(missing)} series dates")
        if exog.loc[series.index].isna().any().any():
            raise InvalidConfiguration("Exogenous features contain missing values")

        unknown = set(policy.unpenalized) - set(exog.columns)
        if unknown:
            raise InvalidConfiguration(f"Unpenalized columns not among exogenous features: {sorted(unknown)}")

        n_train = int(np.floor(len(series) * train_fraction))
        if n_train // 2 <= self.n_lags_max:
            raise InsufficientData(
                f"{n_train} training observations are too few for {self.n_lags_max} lags"
            )
        return n_train

    def _path(self, X: np.ndarray, y: np.ndarray, gamma: float) -> Tuple[np.ndarray, np.ndarray]:
        n = len(y)
        alpha_max = np.max(np.abs(X.T @ y)) / n if X.shape[1] else 0.0
        if alpha_max <= 0:
            return np.array([0.0]), np.zeros((X.shape[1], 1))

        alphas = np.geomspace(alpha_max, alpha_max * self.eps, self.n_alphas)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', ConvergenceWarning)
            alphas, coefs, _ = lasso_path(X, y, alphas=alphas,
                                          max_iter=self.max_iter, tol=self.tol)

        failures = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
        if failures:
            raise FitDidNotConverge(
                f"Coordinate descent did not converge (gamma={gamma})",
                diagnostics={
                    'gamma': gamma,
                    'max_iter': self.max_iter,
                    'tol': self.tol,
                    'messages': [str(w.message) for w in failures],
                },
            )
        return alphas, coefs

    def fit(self, series: pd.Series, exogenous_features: ExogenousInput = None,
            train_fraction: float = 1.0,
            weighting_policy: Optional[WeightingPolicy] = None) -> FittedModel:
        policy = weighting_policy or WeightingPolicy()
        exog = _as_frame(exogenous_features, series.index)
        n_train = self._validate_inputs(series, exog, train_fraction, policy)

        lags = _lag_frame(series, self.n_lags_max)
        design = pd.concat([lags, exog.loc[series.index]], axis=1).iloc[self.n_lags_max:n_train]
        y = series.iloc[self.n_lags_max:n_train].to_numpy(dtype=float)
        n = len(y)

        free_cols = [c for c in exog.columns if policy.is_exempt(c)]
        pen_cols = [c for c in design.columns if c not in free_cols]

        Z = np.column_stack([np.ones(n), design[free_cols].to_numpy(dtype=float)])
        X_pen = design[pen_cols].to_numpy(dtype=float)
        if n <= Z.shape[1] + 1:
            raise InsufficientData(f"{n} rows cannot support {Z.shape[1]} unpenalized terms")

        # Partial the unpenalized terms out of y and the penalized columns
        y_r = y - Z @ np.linalg.lstsq(Z, y, rcond=None)[0]
        X_r = X_pen - Z @ np.linalg.lstsq(Z, X_pen, rcond=None)[0]
        scale = X_r.std(axis=0)
        keep = scale > 1e-12

        is_lag = np.array([c.startswith('lag_') for c in pen_cols])
        lag_order = np.array([int(c.split('_')[1]) if c.startswith('lag_') else 0 for c in pen_cols])
        z_rank = np.linalg.matrix_rank(Z)

        partial = np.abs(pacf(series.iloc[:n_train].to_numpy(dtype=float), nlags=self.n_lags_max))[1:]
        partial = np.clip(partial, 1e-8, None)

        best = None
        for gamma in self.gammas:
            weights = np.ones(len(pen_cols))
            weights[is_lag] = partial[lag_order[is_lag] - 1] ** (-gamma)
            X_s = X_r[:, keep] / scale[keep] / weights[keep]
            alphas, coefs = self._path(X_s, y_r, gamma)

            for j, alpha in enumerate(alphas):
                beta_s = coefs[:, j]
                rss = float(np.sum((y_r - X_s @ beta_s) ** 2))
                df = int(np.count_nonzero(beta_s)) + z_rank
                value = _criterion(rss, n, df, self.criterion)
                if best is None or value < best[0]:
                    beta = np.zeros(len(pen_cols))
                    beta[keep] = beta_s / scale[keep] / weights[keep]
                    best = (value, gamma, float(alpha), beta)

        value, gamma, alpha, beta_pen = best
        b_free = np.linalg.lstsq(Z, y - X_pen @ beta_pen, rcond=None)[0]

        coefficients = pd.concat([
            pd.Series(beta_pen, index=pen_cols),
            pd.Series(b_free[1:], index=free_cols),
        ]).reindex(list(design.columns))

        self.logger.info(f"Fitted ranked-sparsity model on {n} rows: gamma={gamma}, "
                         f"penalty={alpha:.3g}, {self.criterion}={value:.2f}, "
                         f"{int(np.count_nonzero(beta_pen))}/{len(pen_cols)} penalized terms kept")

        return FittedModel(
            intercept=float(b_free[0]),
            coefficients=coefficients,
            n_lags=self.n_lags_max,
            series=series.astype(float),
            exogenous=exog,
            n_train=n_train,
            unpenalized=tuple(free_cols),
            penalty=alpha,
            gamma=gamma,
            criterion=self.criterion,
            criterion_value=float(value),
            diagnostics={'n_rows': n, 'n_penalized': len(pen_cols), 'n_unpenalized': len(free_cols)},
        )

    def _predict_rows(self, model: FittedModel, rows: pd.DataFrame) -> np.ndarray:
        return model.intercept + rows[model.coefficients.index].to_numpy(dtype=float) @ \
            model.coefficients.to_numpy(dtype=float)

    def forecast(self, model: FittedModel, horizon: int,
                 mode: str = 'recursive') -> ForecastResult:
        if mode not in FORECAST_MODES:
            raise InvalidConfiguration(f"mode must be one of {FORECAST_MODES}, got {mode!r}")
        if horizon < 0:
            raise InvalidConfiguration(f"horizon must be >= 0, got {horizon}")

        if mode in ('rolling', 'historical'):
            return self._rolling(model, horizon)
        return self._recursive(model, horizon)

    def _rolling(self, model: FittedModel, horizon: int) -> ForecastResult:
        last = min(model.n_train - 1 + horizon, len(model.series) - 1)
        lags = _lag_frame(model.series, model.n_lags)
        rows = pd.concat([lags, model.exogenous.loc[model.series.index]], axis=1)
        rows = rows.iloc[model.n_lags:last + 1]
        values = pd.Series(self._predict_rows(model, rows), index=rows.index, name='forecast')
        return ForecastResult(values=values, mode='rolling')

    def _recursive(self, model: FittedModel, horizon: int) -> ForecastResult:
        dates = pd.date_range(model.train_end + pd.Timedelta(days=1), periods=horizon, freq='D')
        lag_names = [f"lag_{k}" for k in range(1, model.n_lags + 1)]
        exog_cols = [c for c in model.coefficients.index if c not in lag_names]
        lag_coefs = model.coefficients[lag_names].to_numpy(dtype=float)

        exog_part = np.full(horizon, model.intercept)
        if exog_cols:
            missing = dates.difference(model.exogenous.index)
            if len(missing):
                raise InvalidConfiguration(
                    f"Exogenous features do not cover the forecast horizon ({len(missing)} dates missing)"
                )
            exog_part += model.exogenous.loc[dates, exog_cols].to_numpy(dtype=float) @ \
                model.coefficients[exog_cols].to_numpy(dtype=float)

        history = list(model.series.iloc[:model.n_train].to_numpy(dtype=float))

        predictions = []
        for step in range(horizon):
            recent = np.array(history[-1:-model.n_lags - 1:-1])
            value = float(exog_part[step] + recent @ lag_coefs)
            predictions.append(value)
            history.append(value)

        values = pd.Series(predictions, index=dates, name='forecast', dtype=float)
        return ForecastResult(values=values, mode='recursive')


def indicator_effect(model: FittedModel, column: str) -> float:
    """Coefficient on an (unpenalized) indicator column of a fitted model"""
    if column not in model.coefficients.index:
        raise InvalidConfiguration(f"Column {column!r} was not part of the fitted model")
    if column not in model.unpenalized:
        logging.getLogger(__name__).warning(
            f"Column {column!r} was penalized; its coefficient is shrunk toward zero"
        )
    return float(model.coefficients[column])
