"""
roughlib.preprocess - Degenerate-geometry filtering and log-space transform.

The model is fitted in natural-log space::

    log(n) = f( log(areasqkm), log(lengthkm), log(slope), ... )

so every predictor and the target must be strictly positive.  Preprocessing
runs, in order:

1. project to the declared predictors (plus the target when training),
2. drop degenerate geometry (path length at or below the threshold, slope
   at or below ``slope_epsilon``),
3. natural log of every column,
4. drop rows with missing values,
5. drop rows with non-finite values.

Exactly the same sequence is applied to new reaches before prediction, and
predictions are mapped back with :func:`inverse_transform` once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from roughlib.core import COMID, DEFAULT_PREDICTORS, PATH_LENGTH, SLOPE, TARGET

log = logging.getLogger(__name__)

DEFAULT_SLOPE_EPSILON = 1e-5
DEFAULT_PATH_LENGTH_THRESHOLD = 0.0


def degenerate_mask(
    frame: pd.DataFrame,
    slope_column: str = SLOPE,
    path_length_column: str = PATH_LENGTH,
    slope_epsilon: float = DEFAULT_SLOPE_EPSILON,
    path_length_threshold: float = DEFAULT_PATH_LENGTH_THRESHOLD,
) -> pd.Series:
    """Boolean mask, True where a row has degenerate geometry."""
    mask = pd.Series(False, index=frame.index)
    if path_length_column in frame.columns:
        mask |= frame[path_length_column] <= path_length_threshold
    if slope_column in frame.columns:
        mask |= frame[slope_column] <= slope_epsilon
    return mask


def filter_degenerate(frame: pd.DataFrame, **kwargs) -> pd.DataFrame:
    """Return *frame* without degenerate-geometry rows (see :func:`degenerate_mask`)."""
    return frame[~degenerate_mask(frame, **kwargs)]


def log_transform(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Natural log of every column.

    Zero maps to ``-inf`` and negatives to NaN; both are removed by the
    later preprocessing steps rather than raising here.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.log(frame.astype(float))


def inverse_transform(values):
    """Map log-space values back to natural units."""
    return np.exp(values)


def finite_rows(frame: pd.DataFrame) -> pd.Series:
    """True for rows with every value finite."""
    return pd.Series(np.isfinite(frame.to_numpy(dtype=float)).all(axis=1), index=frame.index)


@dataclass
class Preprocessor:
    """
    Paired filter-and-log transform for training and scoring frames.

    Parameters
    ----------
    predictors : sequence of str
        Predictor columns in model order.
    target : str
        Dependent variable column (default ``"n"``).
    slope_epsilon : float
        Rows with slope at or below this value are dropped (default 1e-5).
    path_length_threshold : float
        Rows with path length at or below this value are dropped (default 0).
    key : str
        Identifier column, used as the output index.

    Examples
    --------
    >>> pre = Preprocessor(predictors=("areasqkm", "slope", "pathlength"))
    >>> train_log = pre.transform(training_frame)
    >>> x_log = pre.transform_predictors(new_reaches)
    """

    predictors: Tuple[str, ...] = DEFAULT_PREDICTORS
    target: str = TARGET
    slope_epsilon: float = DEFAULT_SLOPE_EPSILON
    path_length_threshold: float = DEFAULT_PATH_LENGTH_THRESHOLD
    slope_column: str = SLOPE
    path_length_column: str = PATH_LENGTH
    key: str = COMID

    def __post_init__(self) -> None:
        self.predictors = tuple(self.predictors)
        if not self.predictors:
            raise ValueError("Preprocessor requires at least one predictor")
        if self.target in self.predictors:
            raise ValueError(f"Target {self.target!r} cannot also be a predictor")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _indexed(self, frame: pd.DataFrame) -> pd.DataFrame:
        if self.key in frame.columns:
            return frame.set_index(self.key)
        return frame

    def project(self, frame: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
        """Keep exactly *columns*, indexed by the identifier column."""
        frame = self._indexed(frame)
        missing = [c for c in columns if c not in frame.columns]
        if missing:
            raise KeyError(f"Columns not found in frame: {missing}")
        return frame.loc[:, list(columns)]

    def degenerate(self, frame: pd.DataFrame) -> pd.Series:
        """Degenerate-geometry mask using this preprocessor's thresholds."""
        return degenerate_mask(
            frame,
            slope_column=self.slope_column,
            path_length_column=self.path_length_column,
            slope_epsilon=self.slope_epsilon,
            path_length_threshold=self.path_length_threshold,
        )

    def _run(self, frame: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
        indexed = self._indexed(frame)
        out = self.project(indexed, columns)
        n_in = len(out)

        # Geometry columns need not be predictors, so the mask uses the unprojected frame
        out = out[~self.degenerate(indexed).to_numpy()]
        n_geom = n_in - len(out)

        out = log_transform(out)

        n_before = len(out)
        out = out.dropna(how="any")
        n_missing = n_before - len(out)

        n_before = len(out)
        out = out[finite_rows(out)]
        n_nonfinite = n_before - len(out)

        log.debug(
            "Preprocessed %d rows: %d degenerate, %d missing, %d non-finite, %d kept",
            n_in,
            n_geom,
            n_missing,
            n_nonfinite,
            len(out),
        )
        return out

    def transform(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Training transform: predictors and target, in log space."""
        out = self._run(frame, self.predictors + (self.target,))
        log.info("Training frame: %d of %d rows usable after preprocessing", len(out), len(frame))
        return out

    def transform_predictors(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Scoring transform: predictors only, same filter-and-log sequence."""
        return self._run(frame, self.predictors)

    def split(self, frame_log: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
        """Split a transformed training frame into ``(X, y)``."""
        return frame_log.loc[:, list(self.predictors)], frame_log[self.target]

    def inverse(self, values: Optional[np.ndarray]) -> Optional[np.ndarray]:
        """Exponentiate log-space predictions or targets."""
        if values is None:
            return None
        return inverse_transform(values)
