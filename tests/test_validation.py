"""Tests for roughlib.validation."""

from __future__ import annotations

import json

import pandas as pd
import pytest

from roughlib.core import COMID, DuplicateRecordError, IncompleteResultError
from roughlib.scoring import UnavailableResult, ValidationRecord
from roughlib.validation import (
    RESULT_COLUMNS,
    ValidationAggregator,
    ValidationResultSet,
    generate_json_report,
    generate_text_report,
)


def _records():
    return [
        ValidationRecord("gbm", 1, nrmse=0.10, n=0.030),
        ValidationRecord("gbm", 2, nrmse=0.20, n=0.040, extrapolated=True),
        ValidationRecord("gbm", 3, n=0.050, reason=UnavailableResult.MISSING_RATING_CURVE),
        ValidationRecord("gbm", 4, reason=UnavailableResult.MISSING_ATTRIBUTES),
    ]


@pytest.fixture
def result_set() -> ValidationResultSet:
    return ValidationAggregator().extend(_records()).result_set()


class TestValidationAggregator:
    def test_merge_by_identifier_any_order(self):
        forward = ValidationAggregator().extend(_records()).result_set()
        backward = ValidationAggregator().extend(reversed(_records())).result_set()
        assert forward.records == backward.records

    def test_duplicate_identifier_aborts(self):
        agg = ValidationAggregator()
        agg.add(ValidationRecord("gbm", 1, nrmse=0.1, n=0.03))
        with pytest.raises(DuplicateRecordError) as exc:
            agg.add(ValidationRecord("gbm", 1, nrmse=0.2, n=0.03))
        assert exc.value.comid == 1

    def test_missing_identifiers(self):
        agg = ValidationAggregator().extend(_records())
        assert agg.missing([1, 2, 9, 8]) == [9, 8]
        with pytest.raises(IncompleteResultError) as exc:
            agg.verify_coverage([1, 2, 9])
        assert exc.value.missing == [9]

    def test_full_coverage_passes(self):
        ValidationAggregator().extend(_records()).verify_coverage([1, 2, 3, 4])

    def test_unavailable_records_are_kept(self, result_set):
        assert len(result_set) == 4
        assert result_set[4].reason is UnavailableResult.MISSING_ATTRIBUTES


class TestValidationResultSet:
    def test_counts(self, result_set):
        assert result_set.n_available == 2
        assert result_set.n_unavailable == 2
        assert result_set.reason_counts() == {"missing_attributes": 1, "missing_rating_curve": 1}
        assert 3 in result_set and 99 not in result_set

    def test_to_frame(self, result_set):
        frame = result_set.to_frame()
        assert list(frame.columns) == RESULT_COLUMNS
        assert len(frame) == 4
        row = frame.set_index(COMID).loc[3]
        assert pd.isna(row["nrmse"])
        assert row["reason"] == "missing_rating_curve"

    def test_empty_frame_has_columns(self):
        assert list(ValidationResultSet().to_frame().columns) == RESULT_COLUMNS

    def test_summary_stats(self, result_set):
        stats = result_set.summary_stats()
        assert stats["models"] == ["gbm"]
        assert stats["n_extrapolated"] == 1
        assert stats["nrmse"]["mean"] == pytest.approx(0.15)
        assert stats["n"]["median"] == pytest.approx(0.04)

    def test_summary_stats_with_nothing_available(self):
        results = ValidationResultSet(
            {1: ValidationRecord("gbm", 1, reason=UnavailableResult.MISSING_ATTRIBUTES)}
        )
        assert results.summary_stats()["nrmse"]["mean"] is None

    def test_save_csv(self, result_set, tmp_path):
        path = result_set.save(tmp_path / "out" / "results.csv")
        frame = pd.read_csv(path)
        assert sorted(frame[COMID]) == [1, 2, 3, 4]


class TestReports:
    def test_text_report(self, result_set):
        text = generate_text_report(result_set)
        assert "Roughness Validation Report" in text
        assert "missing_rating_curve" in text
        assert "Available:    2" in text

    def test_json_report(self, result_set):
        data = json.loads(generate_json_report(result_set))
        assert data["n_records"] == 4
        assert data["unavailable_reasons"]["missing_attributes"] == 1

    def test_text_report_without_values(self):
        text = generate_text_report(ValidationResultSet())
        assert "n/a" in text
