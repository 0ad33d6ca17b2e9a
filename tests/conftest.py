"""
Shared fixtures: a small synthetic reach population with known roughness.

Roughness follows a smooth function of the predictors so that a boosted
model can learn it; observed rating curves are generated from the true
roughness with the same Manning-type scaling used in scoring.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np
import pandas as pd
import pytest

from roughlib.core import (
    ARBOLATE_SUM,
    AREA,
    COMID,
    FLAT_TUB_FLOW,
    FLOW,
    LENGTH,
    PATH_LENGTH,
    REACHCODE,
    SLOPE,
    STAGE,
    TARGET,
)

REGIONS = ("01", "05", "12", "17")
STAGES = np.arange(0.5, 6.0, 0.5)


def true_n(frame: pd.DataFrame) -> np.ndarray:
    return 0.035 * frame[SLOPE].to_numpy() ** 0.08 * frame[AREA].to_numpy() ** -0.03


def make_attributes(n_per_region: Dict[str, int], seed: int = 7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows: List[dict] = []
    comid = 1000
    for region, count in n_per_region.items():
        for i in range(count):
            comid += 1
            rows.append(
                {
                    COMID: comid,
                    AREA: float(rng.uniform(1.0, 50.0)),
                    LENGTH: float(rng.uniform(0.2, 5.0)),
                    SLOPE: float(rng.uniform(1e-4, 0.05)),
                    PATH_LENGTH: float(rng.uniform(10.0, 2000.0)),
                    ARBOLATE_SUM: float(rng.uniform(1.0, 500.0)),
                    REACHCODE: f"{region}{i:012d}",
                }
            )
    return pd.DataFrame(rows)


def make_targets(attributes: pd.DataFrame, seed: int = 11) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    noise = rng.lognormal(0.0, 0.02, size=len(attributes))
    return pd.DataFrame({COMID: attributes[COMID].to_numpy(), TARGET: true_n(attributes) * noise})


def make_rating_curves(attributes: pd.DataFrame, targets: pd.DataFrame) -> pd.DataFrame:
    n_by_id = dict(zip(targets[COMID], targets[TARGET]))
    rows = []
    for rec in attributes.to_dict(orient="records"):
        length_m = rec[LENGTH] * 1000.0
        scalar = np.sqrt(rec[SLOPE]) / (length_m * n_by_id[rec[COMID]])
        for stage in STAGES:
            ref = 50.0 * length_m * stage**1.6
            rows.append(
                {COMID: rec[COMID], STAGE: stage, FLOW: scalar * ref, FLAT_TUB_FLOW: ref}
            )
    return pd.DataFrame(rows)


@pytest.fixture
def attributes() -> pd.DataFrame:
    return make_attributes({"01": 30, "05": 12, "12": 25, "17": 8})


@pytest.fixture
def targets(attributes) -> pd.DataFrame:
    return make_targets(attributes)


@pytest.fixture
def rating_curves(attributes, targets) -> pd.DataFrame:
    return make_rating_curves(attributes, targets)


class ConstantBackend:
    """Backend that ignores its inputs and predicts one log value."""

    name = "constant"

    def __init__(self, value: float = -3.0) -> None:
        self.value = value

    def fit(self, X, y, params, seed):
        return {"value": self.value, "columns": list(X.columns)}

    def predict(self, estimator, X):
        return np.full(len(X), estimator["value"])


class LinearBackend:
    """Order-sensitive backend: weights are applied positionally."""

    name = "linear"

    def __init__(self, weights) -> None:
        self.weights = np.asarray(weights, dtype=float)

    def fit(self, X, y, params, seed):
        return self.weights

    def predict(self, estimator, X):
        return X.to_numpy(dtype=float) @ estimator - 3.0


@pytest.fixture
def constant_backend() -> ConstantBackend:
    return ConstantBackend(-3.0)


@pytest.fixture
def linear_backend() -> LinearBackend:
    # areasqkm, lengthkm, slope, pathlength, arbolatesu
    return LinearBackend([0.05, -0.02, 0.1, 0.01, -0.03])
