"""Tests for roughlib.preprocess."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from roughlib.core import (
    ARBOLATE_SUM,
    AREA,
    COMID,
    LENGTH,
    PATH_LENGTH,
    REACHCODE,
    SLOPE,
    TARGET,
)
from roughlib.join import join_attributes
from roughlib.preprocess import (
    Preprocessor,
    degenerate_mask,
    filter_degenerate,
    inverse_transform,
    log_transform,
)


def _reach(comid, slope=0.001, pathlength=1000.0, area=10.0, length=1.0, arbolate=20.0, n=0.04):
    return {
        COMID: comid,
        AREA: area,
        LENGTH: length,
        SLOPE: slope,
        PATH_LENGTH: pathlength,
        ARBOLATE_SUM: arbolate,
        REACHCODE: "120100020304",
        TARGET: n,
    }


@pytest.fixture
def pre() -> Preprocessor:
    return Preprocessor()


class TestDegenerateFilter:
    def test_zero_path_length_dropped(self):
        frame = pd.DataFrame([_reach(1), _reach(2, pathlength=0.0)])
        assert list(filter_degenerate(frame)[COMID]) == [1]

    def test_slope_at_epsilon_dropped(self):
        frame = pd.DataFrame([_reach(1, slope=1e-5), _reach(2, slope=1.1e-5)])
        assert list(filter_degenerate(frame)[COMID]) == [2]

    def test_custom_thresholds(self):
        frame = pd.DataFrame([_reach(1, slope=0.001), _reach(2, pathlength=5.0)])
        mask = degenerate_mask(frame, slope_epsilon=0.01, path_length_threshold=10.0)
        assert mask.tolist() == [True, True]


class TestLogTransform:
    def test_exp_log_round_trip(self):
        values = pd.DataFrame({"a": [1e-4, 0.5, 1.0, 37.2, 1e6]})
        back = inverse_transform(log_transform(values))
        np.testing.assert_allclose(back["a"].to_numpy(), values["a"].to_numpy(), rtol=1e-12)

    def test_non_positive_values_do_not_raise(self):
        out = log_transform(pd.DataFrame({"a": [0.0, -1.0, 2.0]}))
        assert np.isneginf(out["a"].iloc[0])
        assert np.isnan(out["a"].iloc[1])


class TestPreprocessor:
    def test_projection_and_index(self, pre):
        frame = pd.DataFrame([_reach(1), _reach(2)])
        out = pre.transform(frame)
        assert list(out.columns) == list(pre.predictors) + [TARGET]
        assert out.index.name == COMID
        assert REACHCODE not in out.columns

    def test_values_are_natural_log(self, pre):
        out = pre.transform(pd.DataFrame([_reach(1, slope=0.001, n=0.04)]))
        assert out.loc[1, SLOPE] == pytest.approx(np.log(0.001))
        assert out.loc[1, TARGET] == pytest.approx(np.log(0.04))

    def test_reach_b_filtered(self, pre):
        frame = pd.DataFrame([_reach(1), _reach(2, slope=0.0, pathlength=500.0)])
        out = pre.transform(frame)
        assert 2 not in out.index
        assert 1 in out.index

    def test_missing_values_dropped(self, pre):
        frame = pd.DataFrame([_reach(1), _reach(2, area=np.nan), _reach(3, n=np.nan)])
        assert list(pre.transform(frame).index) == [1]

    def test_non_finite_dropped(self, pre):
        frame = pd.DataFrame([_reach(1), _reach(2, area=0.0), _reach(3, n=np.inf)])
        out = pre.transform(frame)
        assert list(out.index) == [1]
        assert np.isfinite(out.to_numpy()).all()

    def test_no_degenerate_rows_survive(self, pre, targets, attributes):
        frame = join_attributes(targets, attributes)
        frame.loc[frame.index[:5], SLOPE] = 0.0
        frame.loc[frame.index[5:8], PATH_LENGTH] = 0.0
        out = pre.transform(frame)
        assert (np.exp(out[SLOPE]) > 1e-5).all()
        assert (np.exp(out[PATH_LENGTH]) > 0).all()
        assert len(out) == len(frame) - 8

    def test_transform_predictors_excludes_target(self, pre):
        frame = pd.DataFrame([_reach(1)]).drop(columns=[TARGET])
        out = pre.transform_predictors(frame)
        assert list(out.columns) == list(pre.predictors)

    def test_geometry_filter_applies_when_slope_not_a_predictor(self):
        pre = Preprocessor(predictors=(AREA, LENGTH))
        frame = pd.DataFrame([_reach(1), _reach(2, slope=0.0)])
        assert list(pre.transform(frame).index) == [1]

    def test_missing_column_raises(self, pre):
        frame = pd.DataFrame([_reach(1)]).drop(columns=[ARBOLATE_SUM])
        with pytest.raises(KeyError, match=ARBOLATE_SUM):
            pre.transform(frame)

    def test_split(self, pre):
        X, y = pre.split(pre.transform(pd.DataFrame([_reach(1), _reach(2)])))
        assert list(X.columns) == list(pre.predictors)
        assert y.name == TARGET

    def test_target_as_predictor_rejected(self):
        with pytest.raises(ValueError, match="cannot also be a predictor"):
            Preprocessor(predictors=(AREA, TARGET))
