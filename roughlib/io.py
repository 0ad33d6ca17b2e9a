"""
roughlib.io - Read input tables at the file boundary.

All inputs are CSV.  Reach codes are read as strings so that leading zeros
(``"01..."`` regions) survive.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from roughlib.core import COMID, FLOW, REACHCODE, STAGE, TARGET

log = logging.getLogger(__name__)


def _read_csv(path: str | Path, required: Iterable[str], what: str) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    frame = pd.read_csv(path, dtype={REACHCODE: str, REACHCODE.upper(): str})
    frame.columns = [c.strip().lower() for c in frame.columns]
    missing = [c for c in required if c not in frame.columns]
    if missing:
        raise ValueError(f"{what} file {path} is missing columns {missing}")
    log.info("Read %d rows from %s", len(frame), path)
    return frame


def read_targets(path: str | Path, target: str = TARGET) -> pd.DataFrame:
    """Read the optimized-roughness table (``comid``, target)."""
    return _read_csv(path, (COMID, target), "Target")


def read_attributes(path: str | Path) -> pd.DataFrame:
    """Read the reach attribute table (``comid``, predictors, ``reachcode``)."""
    return _read_csv(path, (COMID,), "Attribute")


def read_rating_curves(path: str | Path) -> pd.DataFrame:
    """Read long-format rating curves (``comid``, ``stage``, ``flow``[, ``flat_tub_flow``])."""
    return _read_csv(path, (COMID, STAGE, FLOW), "Rating curve")
