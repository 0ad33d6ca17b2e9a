"""
roughlib.scoring - Predict roughness for many reaches and score it against rating curves.

For each reach the fitted model predicts ``n``, which is turned into a
simulated rating curve with a Manning-type scaling of the flat-tub
reference flow (the flow computed for the same geometry with unit
roughness)::

    flow_scalar = sqrt(slope) / (length_m * n)
    Q_sim       = flow_scalar * Q_flat_tub

and the simulated flows are compared with the observed curve by
max-min normalized RMSE.

Failures are per reach: a reach with no attribute row, several attribute
rows, degenerate geometry, non-finite predictors or no usable curve gets a
:class:`ValidationRecord` whose unavailable fields are ``None`` and whose
``reason`` says why.  Scoring never raises for a single bad reach.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from roughlib.core import (
    COMID,
    FLAT_TUB_FLOW,
    FLOW,
    LENGTH,
    METERS_PER_KM,
    SLOPE,
    STAGE,
)
from roughlib.parallel import chunked, run_tasks, shared
from roughlib.regressor import FittedModel

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10_000


class UnavailableResult(str, Enum):
    """Why a reach has no prediction and/or no error metric."""

    MISSING_ATTRIBUTES = "missing_attributes"
    DUPLICATE_ATTRIBUTES = "duplicate_attributes"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    NON_FINITE_PREDICTORS = "non_finite_predictors"
    NON_FINITE_PREDICTION = "non_finite_prediction"
    MISSING_RATING_CURVE = "missing_rating_curve"
    MISSING_REFERENCE_FLOW = "missing_reference_flow"
    FLAT_RATING_CURVE = "flat_rating_curve"


@dataclass(frozen=True)
class ValidationRecord:
    """
    Scoring outcome for one reach.

    Parameters
    ----------
    model : str
        Name of the model that produced the prediction.
    comid : object
        Reach identifier.
    nrmse : float or None
        Max-min normalized RMSE of simulated vs observed flow; None when
        unavailable.
    n : float or None
        Predicted Manning's roughness; None when unavailable.
    reason : UnavailableResult or None
        Why a field is unavailable; None when both are available.
    extrapolated : bool
        True when a log predictor lies outside the training range.
    """

    model: str
    comid: Any
    nrmse: Optional[float] = None
    n: Optional[float] = None
    reason: Optional[UnavailableResult] = None
    extrapolated: bool = False

    @property
    def available(self) -> bool:
        return self.n is not None and self.nrmse is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            COMID: self.comid,
            "nrmse": self.nrmse,
            "n": self.n,
            "reason": self.reason.value if self.reason is not None else None,
            "extrapolated": self.extrapolated,
        }


# ---------------------------------------------------------------------------
# Hydraulics and metric
# ---------------------------------------------------------------------------


def flow_scalar(slope: float, length_m: float, n: float) -> float:
    """Manning-type scaling ``sqrt(slope) / (length_m * n)``."""
    return math.sqrt(slope) / (length_m * n)


def nrmse(simulated: Sequence[float], observed: Sequence[float]) -> Optional[float]:
    """
    RMSE normalized by the observed range (max - min).

    The range is taken over every finite observed value; the error only over
    pairs where both values are finite.  Returns None when no pair remains
    or the observed range is zero.
    """
    sim = np.asarray(simulated, dtype=float)
    obs = np.asarray(observed, dtype=float)
    if sim.shape != obs.shape:
        raise ValueError(f"simulated {sim.shape} and observed {obs.shape} differ in shape")
    finite_obs = obs[np.isfinite(obs)]
    if len(finite_obs) == 0:
        return None
    span = float(finite_obs.max() - finite_obs.min())
    if span == 0.0:
        return None
    ok = np.isfinite(sim) & np.isfinite(obs)
    if not ok.any():
        return None
    sim, obs = sim[ok], obs[ok]
    return float(np.sqrt(np.mean((sim - obs) ** 2)) / span)


# ---------------------------------------------------------------------------
# Rating curve lookup
# ---------------------------------------------------------------------------


class RatingCurves:
    """
    Observed rating curves in long format, indexed by reach.

    Parameters
    ----------
    frame : pd.DataFrame
        Columns ``comid``, ``stage``, ``flow`` and optionally a per-stage
        ``flat_tub_flow``.  Rows are ordered by stage within each reach.
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None, key: str = COMID) -> None:
        self._stage: Optional[np.ndarray] = None
        self._flow: Optional[np.ndarray] = None
        self._ref: Optional[np.ndarray] = None
        self._index: Dict[Any, np.ndarray] = {}
        if frame is None or len(frame) == 0:
            return
        missing = [c for c in (key, STAGE, FLOW) if c not in frame.columns]
        if missing:
            raise KeyError(f"Rating curve table is missing columns {missing}")
        frame = frame.sort_values([key, STAGE], kind="mergesort")
        self._stage = frame[STAGE].to_numpy(dtype=float)
        self._flow = frame[FLOW].to_numpy(dtype=float)
        if FLAT_TUB_FLOW in frame.columns:
            self._ref = frame[FLAT_TUB_FLOW].to_numpy(dtype=float)
        self._index = frame.groupby(key, sort=False).indices
        # groupby().indices are positions in the sorted frame

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, comid: Any) -> bool:
        return comid in self._index

    def get(self, comid: Any):
        """Return ``(stage, flow, flat_tub_flow or None)`` arrays, or None."""
        pos = self._index.get(comid)
        if pos is None:
            return None
        ref = self._ref[pos] if self._ref is not None else None
        return self._stage[pos], self._flow[pos], ref


# ---------------------------------------------------------------------------
# BatchScorer
# ---------------------------------------------------------------------------


def _score_chunk(comids: List[Any]) -> List[ValidationRecord]:
    """Worker task: score one chunk of identifiers with the shared scorer."""
    return shared("scorer").score_ids(comids)


class BatchScorer:
    """
    Apply a fitted model to a population of reaches and validate it.

    Parameters
    ----------
    model : FittedModel
        Model to apply (read-only).
    attributes : pd.DataFrame
        Reach attributes with a ``comid`` column.  Duplicate identifiers are
        allowed here; such reaches are reported unavailable.
    rating_curves : pd.DataFrame, optional
        Long-format observed curves (see :class:`RatingCurves`).
    key : str
        Identifier column.

    Examples
    --------
    >>> scorer = BatchScorer(model, attributes, rating_curves)
    >>> records = scorer.score(parallel=True, chunk_size=5000)
    """

    def __init__(
        self,
        model: FittedModel,
        attributes: pd.DataFrame,
        rating_curves: Optional[pd.DataFrame] = None,
        key: str = COMID,
    ) -> None:
        if key not in attributes.columns:
            raise KeyError(f"Attribute table has no {key!r} column")
        needed = set(model.predictors) | {SLOPE, LENGTH}
        missing = sorted(c for c in needed if c not in attributes.columns)
        if missing:
            raise KeyError(f"Attribute table is missing columns required for scoring: {missing}")

        # Same predictors and thresholds as the training frame
        self.preprocessor = model.preprocessor(key=key)
        self.model = model
        self.key = key

        counts = attributes[key].value_counts(sort=False)
        self._counts: Dict[Any, int] = counts.to_dict()
        single = attributes[attributes[key].map(counts) == 1]
        self._attributes = single.set_index(key)
        self._curves = RatingCurves(rating_curves, key=key)
        self._all_ids = list(pd.unique(attributes[key]))

    @property
    def identifiers(self) -> List[Any]:
        """Unique identifiers in the attribute table, in first-seen order."""
        return list(self._all_ids)

    # ------------------------------------------------------------------
    # Per-record logic
    # ------------------------------------------------------------------

    def _record(self, comid, **kwargs) -> ValidationRecord:
        return ValidationRecord(model=self.model.name, comid=comid, **kwargs)

    def _validate(self, comid, row: pd.Series, n: float, extrapolated: bool) -> ValidationRecord:
        curve = self._curves.get(comid)
        if curve is None or len(curve[1]) == 0:
            return self._record(
                comid, n=n, reason=UnavailableResult.MISSING_RATING_CURVE, extrapolated=extrapolated
            )
        _, observed, ref = curve

        if ref is None or not np.isfinite(ref).any():
            scalar_ref = row.get(FLAT_TUB_FLOW) if FLAT_TUB_FLOW in row.index else None
            if scalar_ref is None or pd.isna(scalar_ref):
                return self._record(
                    comid,
                    n=n,
                    reason=UnavailableResult.MISSING_REFERENCE_FLOW,
                    extrapolated=extrapolated,
                )
            ref = np.full(len(observed), float(scalar_ref))

        length_m = float(row[LENGTH]) * METERS_PER_KM
        if not np.isfinite(length_m) or length_m <= 0:
            return self._record(
                comid, n=n, reason=UnavailableResult.DEGENERATE_GEOMETRY, extrapolated=extrapolated
            )
        simulated = flow_scalar(float(row[SLOPE]), length_m, n) * ref
        err = nrmse(simulated, observed)
        if err is None:
            finite = observed[np.isfinite(observed)]
            if len(finite) == 0:
                reason = UnavailableResult.MISSING_RATING_CURVE
            elif finite.max() == finite.min():
                reason = UnavailableResult.FLAT_RATING_CURVE
            else:
                # observed curve is usable but no stage has a finite reference flow
                reason = UnavailableResult.MISSING_REFERENCE_FLOW
            return self._record(comid, n=n, reason=reason, extrapolated=extrapolated)
        return self._record(comid, n=n, nrmse=err, extrapolated=extrapolated)

    def score_ids(self, comids: Iterable[Any]) -> List[ValidationRecord]:
        """
        Score a batch of identifiers in-process.

        The model is invoked once for every eligible reach in the batch; all
        other steps are per reach.
        """
        comids = list(comids)
        records: Dict[Any, ValidationRecord] = {}
        eligible = []
        for comid in comids:
            count = self._counts.get(comid, 0)
            if count == 0:
                records[comid] = self._record(comid, reason=UnavailableResult.MISSING_ATTRIBUTES)
            elif count > 1:
                records[comid] = self._record(
                    comid, reason=UnavailableResult.DUPLICATE_ATTRIBUTES
                )
            else:
                eligible.append(comid)

        if eligible:
            rows = self._attributes.loc[eligible]
            x_log = self.preprocessor.transform_predictors(rows)
            kept = set(x_log.index)
            dropped = [c for c in eligible if c not in kept]
            if dropped:
                degenerate = self.preprocessor.degenerate(rows.loc[dropped])
                for comid, is_degenerate in zip(dropped, degenerate.to_numpy()):
                    reason = (
                        UnavailableResult.DEGENERATE_GEOMETRY
                        if is_degenerate
                        else UnavailableResult.NON_FINITE_PREDICTORS
                    )
                    records[comid] = self._record(comid, reason=reason)

            if len(x_log):
                n_pred = self.model.predict(x_log)
                extrapolated = self.model.extrapolating(x_log)
                for comid, n, extra in zip(x_log.index, n_pred, extrapolated):
                    extra = bool(extra)
                    if not np.isfinite(n) or n <= 0:
                        records[comid] = self._record(
                            comid,
                            reason=UnavailableResult.NON_FINITE_PREDICTION,
                            extrapolated=extra,
                        )
                        continue
                    records[comid] = self._validate(comid, rows.loc[comid], float(n), extra)

        return [records[c] for c in comids]

    def score_reach(self, comid: Any) -> ValidationRecord:
        """Score a single reach."""
        return self.score_ids([comid])[0]

    def score(
        self,
        comids: Optional[Iterable[Any]] = None,
        parallel: bool = True,
        workers: Optional[int] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> Iterator[ValidationRecord]:
        """
        Score many reaches, optionally on a process pool.

        Parameters
        ----------
        comids : iterable, optional
            Identifiers to score (default: every identifier in the attribute
            table).  Repeated identifiers are scored once.
        parallel : bool
            Fan chunks out to worker processes.
        workers : int, optional
            Pool size (default: all cores but one).
        chunk_size : int
            Identifiers per task.

        Yields
        ------
        ValidationRecord
            One per unique identifier, in completion order.
        """
        ids = self.identifiers if comids is None else list(comids)
        unique_ids = list(dict.fromkeys(ids))
        if len(unique_ids) != len(ids):
            log.warning(
                "Ignoring %d repeated identifiers in scoring request", len(ids) - len(unique_ids)
            )

        chunks = chunked(unique_ids, chunk_size)
        log.info(
            "Scoring %d reaches with model %r in %d chunk(s)",
            len(unique_ids),
            self.model.name,
            len(chunks),
        )
        for _, batch in run_tasks(
            _score_chunk,
            chunks,
            shared_state={"scorer": self},
            parallel=parallel,
            workers=workers,
        ):
            yield from batch
