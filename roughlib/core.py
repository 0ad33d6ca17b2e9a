"""
roughlib.core - Shared column names and the error taxonomy.

Column name constants
---------------------
Attribute tables follow NHDPlus-style column names so that predictor names
are identical between training and scoring.

=============  ==============================================
Name           Description
=============  ==============================================
comid          Unique reach identifier
areasqkm       Incremental catchment area (sq km)
lengthkm       Reach length (km)
slope          Reach slope (m/m)
pathlength     Flow path length to the network outlet (km)
arbolatesu     Accumulated upstream reach length (km)
reachcode      Hierarchical 14-digit reach code (string)
n              Observed / optimized Manning's roughness
flat_tub_flow  Reference flow computed with unit roughness
=============  ==============================================
"""

from __future__ import annotations

from typing import Tuple

COMID = "comid"
AREA = "areasqkm"
LENGTH = "lengthkm"
SLOPE = "slope"
PATH_LENGTH = "pathlength"
ARBOLATE_SUM = "arbolatesu"
REACHCODE = "reachcode"
TARGET = "n"
STAGE = "stage"
FLOW = "flow"
FLAT_TUB_FLOW = "flat_tub_flow"
REGION = "region"

# Canonical predictor order used when no explicit order is configured
DEFAULT_PREDICTORS: Tuple[str, ...] = (AREA, LENGTH, SLOPE, PATH_LENGTH, ARBOLATE_SUM)

METERS_PER_KM = 1000.0


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RoughlibError(Exception):
    """Base class for fatal pipeline errors."""


class JoinError(RoughlibError, ValueError):
    """Raised when target and attribute tables cannot be joined unambiguously.

    Parameters
    ----------
    message : str
        Description of the violated join invariant.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Attribute join failed: {message}")


class ConfigurationError(RoughlibError, ValueError):
    """Raised for an empty or invalid hyperparameter grid or resampling scheme."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid configuration: {message}")


class DuplicateRecordError(RoughlibError):
    """Raised when two validation records share one identifier.

    Parameters
    ----------
    comid : object
        The identifier that was reported twice.
    """

    def __init__(self, comid: object) -> None:
        super().__init__(
            f"Validation aggregation failed: comid {comid!r} was scored more than once"
        )
        self.comid = comid


class IncompleteResultError(RoughlibError):
    """Raised when scored identifiers do not cover the requested population."""

    def __init__(self, missing: list) -> None:
        preview = ", ".join(repr(m) for m in missing[:10])
        more = f" (+{len(missing) - 10} more)" if len(missing) > 10 else ""
        super().__init__(
            f"Validation aggregation failed: {len(missing)} comid(s) have no result: "
            f"{preview}{more}"
        )
        self.missing = missing
