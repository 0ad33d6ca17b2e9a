"""
roughlib.regressor - Pluggable regression backend and the fitted model artifact.

Any object with ``fit(X, y, params, seed)`` and ``predict(estimator, X)``
satisfies :class:`Regressor`.  The default backend wraps scikit-learn's
gradient boosting with gbm-style hyperparameter names:

==================  =====================================================
Parameter           GradientBoostingRegressor argument
==================  =====================================================
interaction_depth   ``max_leaf_nodes = interaction_depth + 1``
n_trees             ``n_estimators``
shrinkage           ``learning_rate``
n_minobsinnode      ``min_samples_leaf``
bag_fraction        ``subsample``
==================  =====================================================

:class:`FittedModel` binds the predictor order used at fit time into the
artifact itself; :meth:`FittedModel.predict_log` always reindexes its input
to that order, so a caller cannot pass permuted predictors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import GradientBoostingRegressor

from roughlib.core import COMID, TARGET
from roughlib.preprocess import (
    DEFAULT_PATH_LENGTH_THRESHOLD,
    DEFAULT_SLOPE_EPSILON,
    Preprocessor,
)

log = logging.getLogger(__name__)


class Regressor(Protocol):
    """Capability interface for a nonlinear regressor in log space."""

    def fit(
        self, X: pd.DataFrame, y: pd.Series, params: Mapping[str, Any], seed: int
    ) -> Any: ...

    def predict(self, estimator: Any, X: pd.DataFrame) -> np.ndarray: ...


class GradientBoostingBackend:
    """Gradient-boosted regression trees with squared-error loss."""

    name = "gbm"

    def build(self, params: Mapping[str, Any], seed: int) -> GradientBoostingRegressor:
        depth = int(params.get("interaction_depth", 1))
        return GradientBoostingRegressor(
            loss="squared_error",
            n_estimators=int(params.get("n_trees", 100)),
            learning_rate=float(params.get("shrinkage", 0.1)),
            max_depth=None,
            max_leaf_nodes=depth + 1,
            min_samples_leaf=int(params.get("n_minobsinnode", 10)),
            subsample=float(params.get("bag_fraction", 0.5)),
            random_state=seed,
        )

    def fit(
        self, X: pd.DataFrame, y: pd.Series, params: Mapping[str, Any], seed: int
    ) -> GradientBoostingRegressor:
        estimator = self.build(params, seed)
        estimator.fit(X, np.asarray(y, dtype=float))
        return estimator

    def predict(self, estimator: GradientBoostingRegressor, X: pd.DataFrame) -> np.ndarray:
        return estimator.predict(X)


# ---------------------------------------------------------------------------
# FittedModel
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FittedModel:
    """
    Immutable result of a training run.

    Parameters
    ----------
    name : str
        Model identifier written into every validation record.
    params : dict
        Chosen hyperparameter configuration.
    estimator : object
        Backend estimator fitted on log predictors -> log target.
    predictors : tuple of str
        Predictor order the estimator was trained on.
    backend : Regressor
        Backend that produced *estimator*; used for prediction.
    target : str
        Dependent variable name.
    cv_error : float, optional
        Resampling RMSE (log space) of the chosen configuration.
    seed : int
        Random seed used for resampling and fitting.
    log_ranges : dict
        Predictor -> ``(min, max)`` of the log-space training values.
    n_train : int
        Number of training rows after preprocessing.
    slope_epsilon, path_length_threshold : float
        Degenerate-geometry thresholds applied to the training frame; new
        reaches are filtered with the same values.
    """

    name: str
    params: Dict[str, Any]
    estimator: Any
    predictors: Tuple[str, ...]
    backend: Any = field(default_factory=GradientBoostingBackend)
    target: str = TARGET
    cv_error: Optional[float] = None
    seed: int = 0
    log_ranges: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    n_train: int = 0
    slope_epsilon: float = DEFAULT_SLOPE_EPSILON
    path_length_threshold: float = DEFAULT_PATH_LENGTH_THRESHOLD

    def preprocessor(self, key: str = COMID) -> Preprocessor:
        """Preprocessor reproducing the training filter-and-log sequence."""
        return Preprocessor(
            predictors=self.predictors,
            target=self.target,
            slope_epsilon=self.slope_epsilon,
            path_length_threshold=self.path_length_threshold,
            key=key,
        )

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def reorder(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Return *frame* restricted to the training predictors, in training order."""
        missing = [p for p in self.predictors if p not in frame.columns]
        if missing:
            raise KeyError(f"Model {self.name!r} requires predictors {missing}")
        return frame.loc[:, list(self.predictors)]

    def predict_log(self, frame_log: pd.DataFrame) -> np.ndarray:
        """Predict log-roughness from log-space predictors (any column order)."""
        if len(frame_log) == 0:
            return np.empty(0, dtype=float)
        return np.asarray(self.backend.predict(self.estimator, self.reorder(frame_log)), float)

    def predict(self, frame_log: pd.DataFrame) -> np.ndarray:
        """Predict roughness in natural units."""
        return np.exp(self.predict_log(frame_log))

    def extrapolating(self, frame_log: pd.DataFrame) -> np.ndarray:
        """True for rows with any log predictor outside the training range."""
        out = np.zeros(len(frame_log), dtype=bool)
        for code, (lo, hi) in self.log_ranges.items():
            if code in frame_log.columns:
                vals = frame_log[code].to_numpy(dtype=float)
                out |= (vals < lo) | (vals > hi)
        return out

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str | Path) -> Path:
        """Persist with joblib; returns the written path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, path)
        log.info("Saved model %r to %s", self.name, path)
        return path

    @classmethod
    def load(cls, path: str | Path) -> "FittedModel":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model artifact not found: {path}")
        model = joblib.load(path)
        if not isinstance(model, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        log.info("Loaded model %r from %s", model.name, path)
        return model

    def summary(self) -> str:
        lines = [
            f"Model     : {self.name}",
            f"Target    : log({self.target})",
            f"Predictors: {', '.join(self.predictors)}",
            f"Train rows: {self.n_train}",
        ]
        for key in sorted(self.params):
            lines.append(f"  {key:<18} : {self.params[key]}")
        if self.cv_error is not None:
            lines.append(f"  {'resampled RMSE':<18} : {self.cv_error:.4f}")
        return "\n".join(lines)


def training_ranges(frame_log: pd.DataFrame, predictors) -> Dict[str, Tuple[float, float]]:
    """Per-predictor ``(min, max)`` of a log-space training frame."""
    return {
        p: (float(frame_log[p].min()), float(frame_log[p].max()))
        for p in predictors
        if len(frame_log)
    }
