"""
roughlib.search - Grid search over gradient-boosting hyperparameters.

Every grid point is scored independently by a resampling scheme and the
point with the lowest resampled RMSE (log space) wins; ties go to the
earliest grid index.  The winner is refit on the full training frame.

Two resampling schemes are provided:

:class:`RepeatedCVResampler`
    Repeated k-fold cross-validation; the error is the mean held-out RMSE
    over all ``n_folds * n_repeats`` folds.

:class:`BootstrapResampler`
    Optimism-corrected bootstrap (Efron-Gong).  For each replicate the model
    is fitted on a bootstrap sample and the optimism is the difference
    between its RMSE on the original data and on the bootstrap sample.  The
    error is the apparent RMSE plus the mean optimism.

Both draw their resamples from ``seed`` alone, so every grid point sees the
same splits and a search is reproducible.  Large grids can be evaluated in
pieces (``indices=``), saved with :func:`save_results`, and merged with
:func:`merge_results` before :func:`select_best`.

Typical usage
-------------
::

    grid = HyperparameterGrid(
        interaction_depth=(3, 5, 7),
        n_trees=(500, 1000),
        shrinkage=(0.01, 0.05),
        n_minobsinnode=(10,),
        bag_fraction=0.5,
    )
    search = HyperparameterSearch(grid, RepeatedCVResampler(n_folds=5, n_repeats=2), seed=42)
    outcome = search.run(X_log, y_log, name="nhd_gbm")
    outcome.model.predict(X_new_log)
"""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import RepeatedKFold

from roughlib.core import TARGET, ConfigurationError
from roughlib.parallel import run_tasks, shared
from roughlib.preprocess import Preprocessor
from roughlib.regressor import FittedModel, GradientBoostingBackend, training_ranges

log = logging.getLogger(__name__)

GRID_DIMENSIONS: Tuple[str, ...] = ("interaction_depth", "n_trees", "shrinkage", "n_minobsinnode")


def rmse(observed: np.ndarray, predicted: np.ndarray) -> float:
    """Root-mean-square error."""
    diff = np.asarray(observed, dtype=float) - np.asarray(predicted, dtype=float)
    return float(np.sqrt(np.mean(diff**2)))


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GridPoint:
    """One hyperparameter configuration and its position in the grid."""

    index: int
    interaction_depth: int
    n_trees: int
    shrinkage: float
    n_minobsinnode: int
    bag_fraction: float

    def params(self) -> Dict[str, Any]:
        return {
            "interaction_depth": self.interaction_depth,
            "n_trees": self.n_trees,
            "shrinkage": self.shrinkage,
            "n_minobsinnode": self.n_minobsinnode,
            "bag_fraction": self.bag_fraction,
        }


@dataclass
class HyperparameterGrid:
    """
    Full-factorial grid of boosting hyperparameters.

    Points are enumerated with ``interaction_depth`` varying slowest and
    ``n_minobsinnode`` fastest; the enumeration index is the tie-breaker in
    :func:`select_best`.

    Parameters
    ----------
    interaction_depth : sequence of int
        Tree complexity (number of splits per tree).
    n_trees : sequence of int
        Number of boosting iterations.
    shrinkage : sequence of float
        Learning rate.
    n_minobsinnode : sequence of int
        Minimum observations in a terminal node.
    bag_fraction : float
        Row-subsampling fraction per iteration, shared by every point.
    """

    interaction_depth: Sequence[int] = (1, 3, 5)
    n_trees: Sequence[int] = (100, 500)
    shrinkage: Sequence[float] = (0.01, 0.1)
    n_minobsinnode: Sequence[int] = (10,)
    bag_fraction: float = 0.5

    def __post_init__(self) -> None:
        self.interaction_depth = tuple(int(v) for v in self.interaction_depth)
        self.n_trees = tuple(int(v) for v in self.n_trees)
        self.shrinkage = tuple(float(v) for v in self.shrinkage)
        self.n_minobsinnode = tuple(int(v) for v in self.n_minobsinnode)
        self.bag_fraction = float(self.bag_fraction)

    def __len__(self) -> int:
        return (
            len(self.interaction_depth)
            * len(self.n_trees)
            * len(self.shrinkage)
            * len(self.n_minobsinnode)
        )

    def validate(self) -> None:
        """
        Raise ``ConfigurationError`` for an empty or out-of-range grid.
        """
        if len(self) == 0:
            empty = [d for d in GRID_DIMENSIONS if not getattr(self, d)]
            raise ConfigurationError(f"hyperparameter grid is empty (no values for {empty})")
        if not 0.0 < self.bag_fraction <= 1.0:
            raise ConfigurationError(f"bag_fraction must be in (0, 1], got {self.bag_fraction}")
        problems = []
        if any(v < 1 for v in self.interaction_depth):
            problems.append("interaction_depth values must be >= 1")
        if any(v < 1 for v in self.n_trees):
            problems.append("n_trees values must be >= 1")
        if any(not 0.0 < v <= 1.0 for v in self.shrinkage):
            problems.append("shrinkage values must be in (0, 1]")
        if any(v < 1 for v in self.n_minobsinnode):
            problems.append("n_minobsinnode values must be >= 1")
        if problems:
            raise ConfigurationError("; ".join(problems))

    def points(self) -> List[GridPoint]:
        combos = itertools.product(
            self.interaction_depth, self.n_trees, self.shrinkage, self.n_minobsinnode
        )
        return [
            GridPoint(i, depth, trees, rate, minobs, self.bag_fraction)
            for i, (depth, trees, rate, minobs) in enumerate(combos)
        ]

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HyperparameterGrid":
        def _seq(key, default):
            val = d.get(key, default)
            return (val,) if isinstance(val, (int, float)) else tuple(val)

        base = cls()
        return cls(
            interaction_depth=_seq("interaction_depth", base.interaction_depth),
            n_trees=_seq("n_trees", base.n_trees),
            shrinkage=_seq("shrinkage", base.shrinkage),
            n_minobsinnode=_seq("n_minobsinnode", base.n_minobsinnode),
            bag_fraction=d.get("bag_fraction", base.bag_fraction),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interaction_depth": list(self.interaction_depth),
            "n_trees": list(self.n_trees),
            "shrinkage": list(self.shrinkage),
            "n_minobsinnode": list(self.n_minobsinnode),
            "bag_fraction": self.bag_fraction,
        }


# ---------------------------------------------------------------------------
# Resampling schemes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RepeatedCVResampler:
    """Repeated k-fold cross-validation."""

    n_folds: int = 10
    n_repeats: int = 3
    name: str = field(default="repeatedcv", init=False)

    def __post_init__(self) -> None:
        if self.n_folds < 2:
            raise ConfigurationError(f"n_folds must be >= 2, got {self.n_folds}")
        if self.n_repeats < 1:
            raise ConfigurationError(f"n_repeats must be >= 1, got {self.n_repeats}")

    def min_rows(self) -> int:
        return self.n_folds

    def evaluate(self, backend, X: pd.DataFrame, y: pd.Series, params, seed: int) -> float:
        splitter = RepeatedKFold(
            n_splits=self.n_folds, n_repeats=self.n_repeats, random_state=seed
        )
        errors = []
        for train_idx, test_idx in splitter.split(X):
            est = backend.fit(X.iloc[train_idx], y.iloc[train_idx], params, seed)
            pred = backend.predict(est, X.iloc[test_idx])
            errors.append(rmse(y.iloc[test_idx].to_numpy(), pred))
        return float(np.mean(errors))

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.name, "n_folds": self.n_folds, "n_repeats": self.n_repeats}


@dataclass(frozen=True)
class BootstrapResampler:
    """Optimism-corrected bootstrap."""

    n_replicates: int = 25
    name: str = field(default="optimism_boot", init=False)

    def __post_init__(self) -> None:
        if self.n_replicates < 1:
            raise ConfigurationError(f"n_replicates must be >= 1, got {self.n_replicates}")

    def min_rows(self) -> int:
        return 2

    def evaluate(self, backend, X: pd.DataFrame, y: pd.Series, params, seed: int) -> float:
        y_arr = y.to_numpy(dtype=float)
        full = backend.fit(X, y, params, seed)
        apparent = rmse(y_arr, backend.predict(full, X))

        rng = np.random.default_rng(seed)
        n = len(X)
        optimism = []
        for _ in range(self.n_replicates):
            idx = rng.integers(0, n, size=n)
            X_boot, y_boot = X.iloc[idx], y.iloc[idx]
            est = backend.fit(X_boot, y_boot, params, seed)
            err_boot = rmse(y_boot.to_numpy(dtype=float), backend.predict(est, X_boot))
            err_orig = rmse(y_arr, backend.predict(est, X))
            optimism.append(err_orig - err_boot)
        return apparent + float(np.mean(optimism))

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.name, "n_replicates": self.n_replicates}


def make_resampler(method: str, **kwargs):
    """Build a resampler from its method name (``repeatedcv`` or ``optimism_boot``)."""
    method = method.lower()
    if method in ("repeatedcv", "cv", "kfold"):
        return RepeatedCVResampler(
            n_folds=int(kwargs.get("n_folds", 10)), n_repeats=int(kwargs.get("n_repeats", 3))
        )
    if method in ("optimism_boot", "bootstrap", "boot"):
        return BootstrapResampler(n_replicates=int(kwargs.get("n_replicates", 25)))
    raise ConfigurationError(
        f"unknown resampling method {method!r}; expected 'repeatedcv' or 'optimism_boot'"
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GridResult:
    """Resampled error of one grid point."""

    index: int
    params: Dict[str, Any]
    error: float

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"index": self.index}
        d.update(self.params)
        d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GridResult":
        params = {
            "interaction_depth": int(d["interaction_depth"]),
            "n_trees": int(d["n_trees"]),
            "shrinkage": float(d["shrinkage"]),
            "n_minobsinnode": int(d["n_minobsinnode"]),
            "bag_fraction": float(d["bag_fraction"]),
        }
        return cls(index=int(d["index"]), params=params, error=float(d["error"]))


def merge_results(*result_sets: Iterable[GridResult]) -> List[GridResult]:
    """
    Merge grid results evaluated in separate runs.

    Results are keyed by grid index.  The same index evaluated twice must
    describe the same configuration; the first error seen is kept.

    Raises
    ------
    ConfigurationError
        If one index maps to two different configurations.
    """
    merged: Dict[int, GridResult] = {}
    for results in result_sets:
        for res in results:
            prev = merged.get(res.index)
            if prev is None:
                merged[res.index] = res
            elif prev.params != res.params:
                raise ConfigurationError(
                    f"grid index {res.index} refers to different configurations "
                    f"({prev.params} vs {res.params}); results come from different grids"
                )
            else:
                log.debug("Grid index %d evaluated more than once; keeping first", res.index)
    return [merged[i] for i in sorted(merged)]


def select_best(results: Sequence[GridResult]) -> GridResult:
    """Lowest resampled error; ties go to the earliest grid index."""
    if not results:
        raise ConfigurationError("no grid results to select from")

    def _key(res: GridResult):
        err = res.error if res.error is not None and math.isfinite(res.error) else math.inf
        return (err, res.index)

    return min(results, key=_key)


def results_frame(results: Sequence[GridResult]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in results])


def save_results(results: Sequence[GridResult], path: str | Path) -> Path:
    """Write grid results to CSV so partial searches can be merged later."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    results_frame(results).to_csv(path, index=False)
    log.info("Saved %d grid results to %s", len(results), path)
    return path


def load_results(path: str | Path) -> List[GridResult]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Grid results CSV not found: {path}")
    frame = pd.read_csv(path)
    return [GridResult.from_dict(row) for row in frame.to_dict(orient="records")]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def _evaluate_point(point: GridPoint) -> GridResult:
    """Worker task: resampled error of one grid point against the shared frame."""
    X = shared("X")
    y = shared("y")
    backend = shared("backend")
    resampler = shared("resampler")
    seed = shared("seed")
    error = resampler.evaluate(backend, X, y, point.params(), seed)
    return GridResult(index=point.index, params=point.params(), error=error)


@dataclass
class SearchOutcome:
    """Fitted winner plus the error of every evaluated grid point."""

    model: FittedModel
    best: GridResult
    results: List[GridResult]

    def results_frame(self) -> pd.DataFrame:
        return results_frame(self.results)


class HyperparameterSearch:
    """
    Resampling-driven selection of boosting hyperparameters.

    Parameters
    ----------
    grid : HyperparameterGrid
        Candidate configurations.
    resampler : RepeatedCVResampler or BootstrapResampler
        Error estimator applied to each configuration.
    backend : Regressor, optional
        Regression backend (default :class:`GradientBoostingBackend`).
    seed : int
        Seed shared by resampling and fitting.
    parallel : bool
        Evaluate grid points on a process pool.
    workers : int, optional
        Pool size (default: all cores but one).
    """

    def __init__(
        self,
        grid: HyperparameterGrid,
        resampler,
        backend=None,
        seed: int = 0,
        parallel: bool = True,
        workers: Optional[int] = None,
    ) -> None:
        grid.validate()
        self.grid = grid
        self.resampler = resampler
        self.backend = backend or GradientBoostingBackend()
        self.seed = int(seed)
        self.parallel = parallel
        self.workers = workers
        self._points = grid.points()

    @property
    def points(self) -> List[GridPoint]:
        return list(self._points)

    def _check_frame(self, X: pd.DataFrame, y: pd.Series) -> None:
        if len(X) != len(y):
            raise ValueError(f"X has {len(X)} rows but y has {len(y)}")
        if len(X) < self.resampler.min_rows():
            raise ConfigurationError(
                f"{self.resampler.name} needs at least {self.resampler.min_rows()} "
                f"training rows, got {len(X)}"
            )

    def evaluate(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        indices: Optional[Iterable[int]] = None,
    ) -> List[GridResult]:
        """
        Resampled error for a subset (default: all) of grid points.

        Parameters
        ----------
        X, y : log-space predictors and target
        indices : iterable of int, optional
            Grid indices to evaluate, enabling partial searches.

        Returns
        -------
        list of GridResult
            Sorted by grid index.
        """
        self._check_frame(X, y)
        if indices is None:
            points = self.points
        else:
            wanted = set(indices)
            unknown = wanted - {p.index for p in self._points}
            if unknown:
                raise ConfigurationError(f"grid indices out of range: {sorted(unknown)}")
            points = [p for p in self._points if p.index in wanted]

        log.info(
            "Evaluating %d of %d grid points with %s (seed=%d)",
            len(points),
            len(self._points),
            self.resampler.name,
            self.seed,
        )
        state = {
            "X": X,
            "y": y,
            "backend": self.backend,
            "resampler": self.resampler,
            "seed": self.seed,
        }
        results = [
            res
            for _, res in run_tasks(
                _evaluate_point,
                points,
                shared_state=state,
                parallel=self.parallel,
                workers=self.workers,
            )
        ]
        return sorted(results, key=lambda r: r.index)

    def refit(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        best: GridResult,
        name: str,
        target: str = TARGET,
        preprocessor: Optional[Preprocessor] = None,
    ) -> FittedModel:
        """
        Fit the chosen configuration on the full training frame.

        The degenerate-geometry thresholds of *preprocessor* (default values
        when omitted) are stored on the model for use at scoring time.
        """
        pre = preprocessor or Preprocessor(predictors=tuple(X.columns), target=target)
        estimator = self.backend.fit(X, y, best.params, self.seed)
        return FittedModel(
            name=name,
            params=dict(best.params),
            estimator=estimator,
            predictors=tuple(X.columns),
            backend=self.backend,
            target=target,
            cv_error=best.error,
            seed=self.seed,
            log_ranges=training_ranges(X, X.columns),
            n_train=len(X),
            slope_epsilon=pre.slope_epsilon,
            path_length_threshold=pre.path_length_threshold,
        )

    def run(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        name: str = "model",
        target: str = TARGET,
        prior_results: Optional[Iterable[GridResult]] = None,
        preprocessor: Optional[Preprocessor] = None,
    ) -> SearchOutcome:
        """
        Evaluate the grid, select the best point and refit it.

        Parameters
        ----------
        X, y : log-space predictors and target
        name : str
            Model name stored in the artifact.
        target : str
            Target column name.
        prior_results : iterable of GridResult, optional
            Results from earlier partial runs; those indices are not
            re-evaluated.
        preprocessor : Preprocessor, optional
            Preprocessor that produced *X*; its thresholds are recorded on
            the fitted model.

        Returns
        -------
        SearchOutcome
        """
        prior = merge_results(prior_results or [])
        by_index = {p.index: p for p in self._points}
        for res in prior:
            point = by_index.get(res.index)
            if point is None or point.params() != res.params:
                raise ConfigurationError(
                    f"prior result for grid index {res.index} does not match this grid"
                )
        done = {r.index for r in prior}
        todo = [p.index for p in self._points if p.index not in done]

        if len(self._points) == 1 and not prior:
            log.info("Grid has a single configuration; no alternatives to compare")
        fresh = self.evaluate(X, y, indices=todo) if todo else []
        results = merge_results(prior, fresh)
        best = select_best(results)
        log.info("Best grid point %d: %s (error=%.4f)", best.index, best.params, best.error)
        model = self.refit(X, y, best, name=name, target=target, preprocessor=preprocessor)
        return SearchOutcome(model=model, best=best, results=results)
