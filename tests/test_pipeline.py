"""End-to-end tests for roughlib.pipeline and the command-line interface."""

from __future__ import annotations

import json

import pandas as pd
import pytest
from click.testing import CliRunner

from roughlib.cli import cli
from roughlib.config import PipelineConfig, ResamplingConfig
from roughlib.core import COMID, SLOPE, TARGET, ConfigurationError, JoinError
from roughlib.pipeline import run_pipeline, train_model, validate_model
from roughlib.regressor import FittedModel
from roughlib.scoring import UnavailableResult
from roughlib.search import HyperparameterGrid, load_results


@pytest.fixture
def config(tmp_path) -> PipelineConfig:
    return PipelineConfig(
        model_name="test_gbm",
        seed=1,
        output_dir=tmp_path / "out",
        parallel=False,
        region_cap=10,
        resampling=ResamplingConfig(method="repeatedcv", n_folds=3, n_repeats=1),
        grid=HyperparameterGrid(
            interaction_depth=(1, 2),
            n_trees=(20,),
            shrinkage=(0.1,),
            n_minobsinnode=(2,),
            bag_fraction=0.8,
        ),
    )


class TestTrainModel:
    def test_training_uses_capped_partition(self, targets, attributes, config):
        result = train_model(targets, attributes, config)
        assert result.partition.region_counts() == {"01": 10, "05": 10, "12": 10, "17": 8}
        assert result.model.n_train == 38
        assert len(result.search.results) == 2

    def test_artifacts_written(self, targets, attributes, config):
        result = train_model(targets, attributes, config)
        loaded = FittedModel.load(config.model_path)
        assert loaded.params == result.model.params
        assert len(load_results(config.grid_results_path)) == 2

    def test_no_artifacts_without_persist(self, targets, attributes, config):
        config.persist = False
        train_model(targets, attributes, config)
        assert not config.model_path.exists()

    def test_invalid_grid_fails_before_join(self, targets, attributes, config):
        config.grid = HyperparameterGrid(n_trees=())
        with pytest.raises(ConfigurationError):
            train_model(targets, attributes.drop(columns=[COMID]), config)

    def test_join_error_propagates(self, targets, attributes, config):
        dup = pd.concat([attributes, attributes.iloc[[0]]], ignore_index=True)
        with pytest.raises(JoinError):
            train_model(targets, dup, config)


class TestRunPipeline:
    def test_validation_covers_held_out_reaches(
        self, targets, attributes, rating_curves, config
    ):
        result = run_pipeline(targets, attributes, rating_curves, config)
        held_out = set(result.training.partition.validation[COMID])
        assert set(result.validation.records) == held_out
        assert result.validation.n_available == len(held_out)
        assert all(r.model == "test_gbm" for r in result.validation.records.values())

    def test_score_all_reaches(self, targets, attributes, rating_curves, config):
        result = run_pipeline(targets, attributes, rating_curves, config, score="all")
        assert len(result.validation) == len(attributes)

    def test_outputs_written(self, targets, attributes, rating_curves, config):
        run_pipeline(targets, attributes, rating_curves, config)
        frame = pd.read_csv(config.results_path)
        assert {"model", COMID, "nrmse", "n", "reason", "extrapolated"} <= set(frame.columns)
        report = json.loads(config.report_path.read_text())
        assert report["models"] == ["test_gbm"]

    def test_predictions_are_plausible(self, targets, attributes, rating_curves, config):
        result = run_pipeline(targets, attributes, rating_curves, config)
        n = [r.n for r in result.validation.records.values()]
        assert min(n) > 0.01 and max(n) < 0.1

    def test_bad_score_option(self, targets, attributes, config):
        with pytest.raises(ValueError):
            run_pipeline(targets, attributes, config=config, score="training")


class TestValidateModel:
    def test_degenerate_reaches_removed_from_scoring(
        self, targets, attributes, rating_curves, config
    ):
        model = train_model(targets, attributes, config).model
        frame = attributes.copy()
        frame.loc[0, SLOPE] = 0.0
        results = validate_model(model, frame, rating_curves, config)
        assert frame[COMID][0] not in results
        assert len(results) == len(frame) - 1

    def test_requested_ids_without_attributes(self, targets, attributes, rating_curves, config):
        model = train_model(targets, attributes, config).model
        ids = list(attributes[COMID].iloc[:3]) + [123456789]
        results = validate_model(model, attributes, rating_curves, config, comids=ids)
        assert len(results) == 4
        assert results[123456789].reason is UnavailableResult.MISSING_ATTRIBUTES

    def test_duplicate_rows_with_degenerate_copy_still_reported(
        self, targets, attributes, rating_curves, config
    ):
        model = train_model(targets, attributes, config).model
        copy = attributes.iloc[[0]].assign(**{SLOPE: 0.0})
        frame = pd.concat([attributes, copy], ignore_index=True)
        comid = attributes[COMID][0]
        results = validate_model(model, frame, rating_curves, config)
        assert comid in results
        assert results[comid].reason is UnavailableResult.DUPLICATE_ATTRIBUTES
        assert len(results) == len(attributes)

    def test_scoring_uses_training_thresholds(self, targets, attributes, rating_curves, config):
        config.slope_epsilon = 1e-3
        model = train_model(targets, attributes, config).model
        assert model.slope_epsilon == 1e-3
        frame = attributes.copy()
        frame.loc[0, SLOPE] = 5e-4
        scoring_config = PipelineConfig(persist=False, parallel=False)
        results = validate_model(model, frame, rating_curves, scoring_config)
        assert frame[COMID][0] not in results
        assert len(results) == int((frame[SLOPE] > 1e-3).sum())

    def test_invalid_config_rejected_before_scoring(
        self, targets, attributes, rating_curves, config
    ):
        model = train_model(targets, attributes, config).model
        config.chunk_size = 0
        with pytest.raises(ConfigurationError, match="chunk_size"):
            validate_model(model, attributes, rating_curves, config)


class TestCli:
    @pytest.fixture
    def csv_inputs(self, tmp_path, targets, attributes, rating_curves):
        paths = {
            "targets": tmp_path / "targets.csv",
            "attributes": tmp_path / "attributes.csv",
            "curves": tmp_path / "curves.csv",
        }
        targets.to_csv(paths["targets"], index=False)
        attributes.to_csv(paths["attributes"], index=False)
        rating_curves.to_csv(paths["curves"], index=False)
        return paths

    @pytest.fixture
    def config_file(self, tmp_path, config):
        return config.save(tmp_path / "config.json")

    def test_run(self, csv_inputs, config_file, tmp_path):
        runner = CliRunner()
        out_dir = tmp_path / "cli_out"
        result = runner.invoke(
            cli,
            [
                "run",
                str(csv_inputs["targets"]),
                str(csv_inputs["attributes"]),
                str(csv_inputs["curves"]),
                "--config",
                str(config_file),
                "--output-dir",
                str(out_dir),
                "--sequential",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Roughness Validation Report" in result.output
        assert (out_dir / "test_gbm.joblib").exists()
        assert (out_dir / "test_gbm_validation.csv").exists()

    def test_train_then_score(self, csv_inputs, config_file, tmp_path):
        runner = CliRunner()
        out_dir = tmp_path / "cli_out"
        common = ["--config", str(config_file), "--output-dir", str(out_dir), "--sequential"]
        trained = runner.invoke(
            cli, ["train", str(csv_inputs["targets"]), str(csv_inputs["attributes"])] + common
        )
        assert trained.exit_code == 0, trained.output
        assert "Model saved to" in trained.output

        scored = runner.invoke(
            cli,
            [
                "score",
                str(out_dir / "test_gbm.joblib"),
                str(csv_inputs["attributes"]),
                str(csv_inputs["curves"]),
                "--format",
                "json",
            ]
            + common,
        )
        assert scored.exit_code == 0, scored.output
        assert '"n_records": 75' in scored.output
        report = json.loads((out_dir / "test_gbm_report.json").read_text())
        assert report["n_records"] == 75

    def test_join_error_exit_code(self, csv_inputs, config_file, tmp_path, attributes):
        dup_path = tmp_path / "dup.csv"
        pd.concat([attributes, attributes.iloc[[0]]]).to_csv(dup_path, index=False)
        result = CliRunner().invoke(
            cli,
            ["train", str(csv_inputs["targets"]), str(dup_path), "--config", str(config_file)],
        )
        assert result.exit_code == 1
        assert "Attribute join failed" in result.output

    def test_target_column_required(self, csv_inputs, tmp_path, targets):
        bad = tmp_path / "bad_targets.csv"
        targets.drop(columns=[TARGET]).to_csv(bad, index=False)
        result = CliRunner().invoke(cli, ["train", str(bad), str(csv_inputs["attributes"])])
        assert result.exit_code != 0

    def test_invalid_config_file_reports_error(self, csv_inputs, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        result = CliRunner().invoke(
            cli,
            [
                "train",
                str(csv_inputs["targets"]),
                str(csv_inputs["attributes"]),
                "--config",
                str(bad),
            ],
        )
        assert result.exit_code == 1
        assert "Error: Invalid configuration" in result.output

    def test_score_without_config_uses_model_thresholds(
        self, csv_inputs, tmp_path, config, attributes
    ):
        config.slope_epsilon = 1e-3
        config_file = config.save(tmp_path / "strict.json")
        out_dir = tmp_path / "cli_out"
        runner = CliRunner()
        trained = runner.invoke(
            cli,
            [
                "train",
                str(csv_inputs["targets"]),
                str(csv_inputs["attributes"]),
                "--config",
                str(config_file),
                "--output-dir",
                str(out_dir),
                "--sequential",
            ],
        )
        assert trained.exit_code == 0, trained.output

        frame = attributes.copy()
        frame.loc[0, SLOPE] = 5e-4
        scoring_path = tmp_path / "scoring.csv"
        frame.to_csv(scoring_path, index=False)
        scored = runner.invoke(
            cli,
            [
                "score",
                str(out_dir / "test_gbm.joblib"),
                str(scoring_path),
                str(csv_inputs["curves"]),
                "--output-dir",
                str(out_dir),
                "--sequential",
            ],
        )
        assert scored.exit_code == 0, scored.output
        written = pd.read_csv(out_dir / "test_gbm_validation.csv")
        assert frame[COMID][0] not in set(written[COMID])
        assert len(written) == int((frame[SLOPE] > 1e-3).sum())
