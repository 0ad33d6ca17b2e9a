"""
roughlib.partition - Region-balanced training / validation split.

Reaches are grouped by a region code taken from the leading digits of the
hierarchical reach code (``"120100020304"`` -> ``"12"`` for a two-digit
prefix).  The training set takes at most ``cap`` reaches per region in input
order, which bounds the weight of over-represented regions without a
proportional allocation rule.  The validation set is everything else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd

from roughlib.core import COMID, REACHCODE, REGION

log = logging.getLogger(__name__)

DEFAULT_PREFIX_LENGTH = 2
DEFAULT_CAP = 500


def region_code(reachcode: object, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> Optional[str]:
    """
    Return the region code for one reach code.

    Parameters
    ----------
    reachcode : str
        Hierarchical reach code.  Must be a string; integer codes lose their
        leading zeros.
    prefix_length : int
        Number of leading characters kept.

    Returns
    -------
    str or None
        The prefix, or None for a missing reach code.
    """
    if reachcode is None or (isinstance(reachcode, float) and pd.isna(reachcode)):
        return None
    code = str(reachcode).strip()
    if not code:
        return None
    return code[:prefix_length]


def region_codes(
    frame: pd.DataFrame,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
    column: str = REACHCODE,
) -> pd.Series:
    """Vectorised :func:`region_code` over a frame's reach code column."""
    codes = frame[column].astype("string").str.strip()
    codes = codes.mask(codes == "")
    return codes.str[:prefix_length].rename(REGION)


def stratified_sample(
    frame: pd.DataFrame,
    cap: int = DEFAULT_CAP,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
    column: str = REACHCODE,
) -> pd.DataFrame:
    """
    Take the first *cap* rows of every region, in input order.

    Regions with fewer than *cap* rows contribute all of them.  Rows without
    a reach code belong to no region and are never selected.

    Returns
    -------
    pd.DataFrame
        Selected rows in their original relative order.
    """
    if cap < 1:
        raise ValueError(f"Per-region cap must be >= 1, got {cap}")
    regions = region_codes(frame, prefix_length, column)
    has_region = regions.notna()
    selected = frame[has_region].groupby(regions[has_region], sort=False).head(cap)
    return selected


@dataclass
class Partition:
    """Training and validation sets drawn from one population."""

    training: pd.DataFrame
    validation: pd.DataFrame
    prefix_length: int = DEFAULT_PREFIX_LENGTH
    cap: int = DEFAULT_CAP

    def region_counts(self) -> Dict[str, int]:
        """Number of training reaches selected from each region."""
        counts = region_codes(self.training, self.prefix_length).value_counts(sort=False)
        return {str(k): int(v) for k, v in counts.items()}

    def summary(self) -> str:
        lines = [
            f"Training  : {len(self.training)} reaches (cap {self.cap} per region)",
            f"Validation: {len(self.validation)} reaches",
        ]
        for region, count in sorted(self.region_counts().items()):
            lines.append(f"  region {region:<6} : {count}")
        return "\n".join(lines)


def partition(
    frame: pd.DataFrame,
    cap: int = DEFAULT_CAP,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
    key: str = COMID,
    column: str = REACHCODE,
) -> Partition:
    """
    Split a population into a region-balanced training set and the rest.

    Parameters
    ----------
    frame : pd.DataFrame
        Joined population, one row per *key*.
    cap : int
        Maximum reaches per region in the training set (default 500).
    prefix_length : int
        Reach code prefix length defining a region (default 2).
    key : str
        Identifier column used for the set difference.
    column : str
        Reach code column.

    Returns
    -------
    Partition
        ``validation`` is exactly the population minus ``training`` by *key*.
    """
    training = stratified_sample(frame, cap=cap, prefix_length=prefix_length, column=column)
    validation = frame[~frame[key].isin(training[key])]
    log.info(
        "Partitioned %d reaches into %d training / %d validation (cap=%d, prefix=%d)",
        len(frame),
        len(training),
        len(validation),
        cap,
        prefix_length,
    )
    return Partition(
        training=training,
        validation=validation,
        prefix_length=prefix_length,
        cap=cap,
    )
