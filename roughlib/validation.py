"""
roughlib.validation - Collect per-reach validation records into one result set.

Scoring can produce records out of order and from several processes, so
results are merged by identifier rather than by position.  A repeated
identifier means a scoring task ran twice and aborts the aggregation.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from roughlib.core import COMID, DuplicateRecordError, IncompleteResultError
from roughlib.scoring import ValidationRecord

log = logging.getLogger(__name__)

RESULT_COLUMNS = ["model", COMID, "nrmse", "n", "reason", "extrapolated"]


@dataclass
class ValidationResultSet:
    """
    All validation records of one scoring run, keyed by identifier.

    Parameters
    ----------
    records : dict
        ``comid -> ValidationRecord``.
    """

    records: Dict[Any, ValidationRecord] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, comid: Any) -> bool:
        return comid in self.records

    def __getitem__(self, comid: Any) -> ValidationRecord:
        return self.records[comid]

    @property
    def n_available(self) -> int:
        return sum(1 for r in self.records.values() if r.available)

    @property
    def n_unavailable(self) -> int:
        return len(self.records) - self.n_available

    def reason_counts(self) -> Dict[str, int]:
        """Number of records per unavailability reason."""
        counts = Counter(r.reason.value for r in self.records.values() if r.reason is not None)
        return dict(sorted(counts.items()))

    def to_frame(self) -> pd.DataFrame:
        """One row per identifier: model, comid, nrmse, n, reason, extrapolated."""
        rows = [r.to_dict() for r in self.records.values()]
        return pd.DataFrame(rows, columns=RESULT_COLUMNS)

    def summary_stats(self) -> Dict[str, Any]:
        """Counts plus distribution statistics of nRMSE and predicted n."""
        nrmse = np.array([r.nrmse for r in self.records.values() if r.nrmse is not None])
        n = np.array([r.n for r in self.records.values() if r.n is not None])

        def _describe(values: np.ndarray) -> Dict[str, Optional[float]]:
            if len(values) == 0:
                return {"mean": None, "median": None, "p10": None, "p90": None}
            return {
                "mean": float(np.mean(values)),
                "median": float(np.median(values)),
                "p10": float(np.percentile(values, 10)),
                "p90": float(np.percentile(values, 90)),
            }

        models = sorted({r.model for r in self.records.values()})
        return {
            "models": models,
            "n_records": len(self.records),
            "n_available": self.n_available,
            "n_unavailable": self.n_unavailable,
            "n_extrapolated": sum(1 for r in self.records.values() if r.extrapolated),
            "unavailable_reasons": self.reason_counts(),
            "nrmse": _describe(nrmse),
            "n": _describe(n),
        }

    def save(self, path: str | Path) -> Path:
        """Write the result set to CSV."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False)
        log.info("Saved %d validation records to %s", len(self), path)
        return path


class ValidationAggregator:
    """
    Merge a stream of :class:`ValidationRecord` into a :class:`ValidationResultSet`.

    Examples
    --------
    >>> agg = ValidationAggregator()
    >>> agg.extend(scorer.score())
    >>> agg.verify_coverage(validation_ids)
    >>> results = agg.result_set()
    """

    def __init__(self) -> None:
        self._records: Dict[Any, ValidationRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: ValidationRecord) -> None:
        """
        Add one record.

        Raises
        ------
        DuplicateRecordError
            If a record with the same identifier was already added.
        """
        if record.comid in self._records:
            raise DuplicateRecordError(record.comid)
        self._records[record.comid] = record

    def extend(self, records: Iterable[ValidationRecord]) -> "ValidationAggregator":
        for record in records:
            self.add(record)
        return self

    def missing(self, expected: Iterable[Any]) -> List[Any]:
        """Expected identifiers without a record, in the given order."""
        return [c for c in dict.fromkeys(expected) if c not in self._records]

    def verify_coverage(self, expected: Iterable[Any]) -> None:
        """
        Raise ``IncompleteResultError`` unless every expected identifier has a record.
        """
        missing = self.missing(expected)
        if missing:
            raise IncompleteResultError(missing)

    def result_set(self) -> ValidationResultSet:
        results = ValidationResultSet(records=dict(self._records))
        if results.n_unavailable:
            log.warning(
                "%d of %d reaches unavailable: %s",
                results.n_unavailable,
                len(results),
                results.reason_counts(),
            )
        log.info(
            "Aggregated %d validation records (%d available)", len(results), results.n_available
        )
        return results


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _fmt(value: Optional[float], spec: str = ".4f") -> str:
    return "n/a" if value is None else format(value, spec)


def generate_text_report(results: ValidationResultSet) -> str:
    """Plain-text summary of a validation run."""
    stats = results.summary_stats()
    lines: List[str] = []
    lines.append("Roughness Validation Report")
    lines.append("=" * 40)
    lines.append(f"Model(s):     {', '.join(stats['models']) or 'n/a'}")
    lines.append(f"Reaches:      {stats['n_records']}")
    lines.append(f"Available:    {stats['n_available']}")
    lines.append(f"Unavailable:  {stats['n_unavailable']}")
    lines.append(f"Extrapolated: {stats['n_extrapolated']}")

    if stats["unavailable_reasons"]:
        lines.append("")
        lines.append("Unavailable by reason:")
        for reason, count in stats["unavailable_reasons"].items():
            lines.append(f"  {reason:<24} {count}")

    for label, key in (("nRMSE", "nrmse"), ("Predicted n", "n")):
        d = stats[key]
        lines.append("")
        lines.append(f"{label}:")
        lines.append(f"  mean   {_fmt(d['mean'])}")
        lines.append(f"  median {_fmt(d['median'])}")
        lines.append(f"  p10    {_fmt(d['p10'])}")
        lines.append(f"  p90    {_fmt(d['p90'])}")

    return "\n".join(lines)


def generate_json_report(results: ValidationResultSet) -> str:
    """JSON summary of a validation run."""
    return json.dumps(results.summary_stats(), indent=2)
