"""
roughlib.join - Merge optimized roughness targets with reach attributes.
"""

from __future__ import annotations

import logging

import pandas as pd

from roughlib.core import COMID, JoinError

log = logging.getLogger(__name__)


def _duplicated_keys(frame: pd.DataFrame, key: str) -> list:
    dup = frame[key][frame[key].duplicated(keep=False)]
    return sorted(dup.unique().tolist(), key=str)


def join_attributes(
    targets: pd.DataFrame,
    attributes: pd.DataFrame,
    key: str = COMID,
) -> pd.DataFrame:
    """
    Left-join reach attributes onto the target table.

    Every target row is kept; attribute columns are null where the target
    identifier has no attribute row.

    Parameters
    ----------
    targets : pd.DataFrame
        Table holding the dependent variable, keyed by *key*.
    attributes : pd.DataFrame
        Table holding predictors and the reach code, keyed by *key*.
    key : str
        Join column (default ``"comid"``).

    Returns
    -------
    pd.DataFrame
        Joined table, in target row order.

    Raises
    ------
    JoinError
        If *key* is missing from either table, or either table has
        duplicate keys.
    """
    for name, frame in (("target", targets), ("attribute", attributes)):
        if key not in frame.columns:
            raise JoinError(f"join key {key!r} not found in {name} table")

    dup_attr = _duplicated_keys(attributes, key)
    if dup_attr:
        raise JoinError(
            f"{len(dup_attr)} duplicate {key!r} value(s) in attribute table "
            f"(ambiguous join), e.g. {dup_attr[:5]}"
        )
    dup_target = _duplicated_keys(targets, key)
    if dup_target:
        raise JoinError(
            f"{len(dup_target)} duplicate {key!r} value(s) in target table, e.g. {dup_target[:5]}"
        )

    # Columns present on both sides keep the target's copy
    overlap = [c for c in attributes.columns if c in targets.columns and c != key]
    joined = targets.merge(
        attributes.drop(columns=overlap),
        on=key,
        how="left",
        validate="one_to_one",
    )

    unmatched = int((~targets[key].isin(attributes[key])).sum())
    if unmatched:
        log.warning("%d of %d target rows have no attribute row", unmatched, len(targets))
    log.info("Joined %d target rows with %d attribute rows", len(targets), len(attributes))
    return joined
