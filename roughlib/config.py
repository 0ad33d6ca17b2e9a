"""
roughlib.config - Pipeline configuration.

Configuration is a plain dataclass with defaults for every option, so a
run can be configured in code, from a dict, or from a JSON file::

    {
        "model_name": "nhd_gbm_v1",
        "seed": 42,
        "output_dir": "./output",
        "region_cap": 500,
        "resampling": {"method": "repeatedcv", "n_folds": 5, "n_repeats": 3},
        "grid": {
            "interaction_depth": [3, 5, 7],
            "n_trees": [500, 1000],
            "shrinkage": [0.01, 0.05],
            "n_minobsinnode": [10],
            "bag_fraction": 0.5
        }
    }

The worker count defaults to all cores but one; the ``ROUGHLIB_WORKERS``
environment variable overrides it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from roughlib.core import DEFAULT_PREDICTORS, TARGET, ConfigurationError
from roughlib.partition import DEFAULT_CAP, DEFAULT_PREFIX_LENGTH
from roughlib.preprocess import DEFAULT_PATH_LENGTH_THRESHOLD, DEFAULT_SLOPE_EPSILON, Preprocessor
from roughlib.scoring import DEFAULT_CHUNK_SIZE
from roughlib.search import HyperparameterGrid, make_resampler

logger = logging.getLogger(__name__)


@dataclass
class ResamplingConfig:
    """Resampling scheme used to score grid points.

    Parameters
    ----------
    method : str
        ``"repeatedcv"`` (repeated k-fold) or ``"optimism_boot"``.
    n_folds : int
        Folds per repetition (repeated CV).
    n_repeats : int
        Repetitions (repeated CV).
    n_replicates : int
        Bootstrap replicates (optimism bootstrap).
    """

    method: str = "repeatedcv"
    n_folds: int = 10
    n_repeats: int = 3
    n_replicates: int = 25

    def build(self):
        """Return the resampler; raises ``ConfigurationError`` on bad parameters."""
        return make_resampler(
            self.method,
            n_folds=self.n_folds,
            n_repeats=self.n_repeats,
            n_replicates=self.n_replicates,
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ResamplingConfig":
        base = cls()
        return cls(
            method=str(d.get("method", base.method)),
            n_folds=int(d.get("n_folds", base.n_folds)),
            n_repeats=int(d.get("n_repeats", base.n_repeats)),
            n_replicates=int(d.get("n_replicates", base.n_replicates)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "n_folds": self.n_folds,
            "n_repeats": self.n_repeats,
            "n_replicates": self.n_replicates,
        }


@dataclass
class PipelineConfig:
    """Options for one training and validation run.

    Parameters
    ----------
    model_name : str
        Name stored in the model artifact and every validation record.
    seed : int
        Seed for resampling and model fitting.
    persist : bool
        Write the model and validation results to ``output_dir`` on completion.
    output_dir : Path
        Destination for persisted artifacts.
    parallel : bool
        Use worker pools for grid evaluation and scoring.
    workers : int or None
        Pool size; None means all cores but one.
    region_prefix_length : int
        Reach code prefix length defining a stratification region.
    region_cap : int
        Maximum training reaches per region.
    slope_epsilon : float
        Reaches with slope at or below this are degenerate.
    path_length_threshold : float
        Reaches with path length at or below this are degenerate.
    predictors : tuple of str
        Predictor columns, in model order.
    target : str
        Target column.
    resampling : ResamplingConfig
    grid : HyperparameterGrid
        Includes the shared bagging fraction.
    chunk_size : int
        Reaches per scoring task.
    """

    model_name: str = "gbm_n"
    seed: int = 0
    persist: bool = True
    output_dir: Path = Path("./output")
    parallel: bool = True
    workers: Optional[int] = None
    region_prefix_length: int = DEFAULT_PREFIX_LENGTH
    region_cap: int = DEFAULT_CAP
    slope_epsilon: float = DEFAULT_SLOPE_EPSILON
    path_length_threshold: float = DEFAULT_PATH_LENGTH_THRESHOLD
    predictors: Tuple[str, ...] = DEFAULT_PREDICTORS
    target: str = TARGET
    resampling: ResamplingConfig = field(default_factory=ResamplingConfig)
    grid: HyperparameterGrid = field(default_factory=HyperparameterGrid)
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.predictors = tuple(self.predictors)

    def validate(self) -> None:
        """
        Check every option before any computation starts.

        Raises
        ------
        ConfigurationError
            On an empty/invalid grid, bad resampling parameters or any
            out-of-range option.
        """
        self.grid.validate()
        self.resampling.build()
        problems = []
        if not self.model_name:
            problems.append("model_name must not be empty")
        if self.region_prefix_length < 1:
            problems.append(f"region_prefix_length must be >= 1, got {self.region_prefix_length}")
        if self.region_cap < 1:
            problems.append(f"region_cap must be >= 1, got {self.region_cap}")
        if self.slope_epsilon < 0:
            problems.append(f"slope_epsilon must be >= 0, got {self.slope_epsilon}")
        if self.chunk_size < 1:
            problems.append(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.workers is not None and self.workers < 1:
            problems.append(f"workers must be >= 1, got {self.workers}")
        if not self.predictors:
            problems.append("at least one predictor is required")
        if len(set(self.predictors)) != len(self.predictors):
            problems.append(f"predictors contain duplicates: {list(self.predictors)}")
        if self.target in self.predictors:
            problems.append(f"target {self.target!r} is also listed as a predictor")
        if problems:
            raise ConfigurationError("; ".join(problems))

    def preprocessor(self) -> Preprocessor:
        return Preprocessor(
            predictors=self.predictors,
            target=self.target,
            slope_epsilon=self.slope_epsilon,
            path_length_threshold=self.path_length_threshold,
        )

    @property
    def model_path(self) -> Path:
        return self.output_dir / f"{self.model_name}.joblib"

    @property
    def results_path(self) -> Path:
        return self.output_dir / f"{self.model_name}_validation.csv"

    @property
    def report_path(self) -> Path:
        return self.output_dir / f"{self.model_name}_report.json"

    @property
    def grid_results_path(self) -> Path:
        return self.output_dir / f"{self.model_name}_grid.csv"

    # ------------------------------------------------------------------
    # I/O helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipelineConfig":
        """Build from a flat dict with optional ``resampling`` and ``grid`` sub-dicts.

        A top-level ``bag_fraction`` overrides the grid's value.
        """
        known = {
            "model_name",
            "seed",
            "persist",
            "output_dir",
            "parallel",
            "workers",
            "region_prefix_length",
            "region_cap",
            "slope_epsilon",
            "path_length_threshold",
            "predictors",
            "target",
            "chunk_size",
        }
        unknown = set(d) - known - {"resampling", "grid", "bag_fraction"}
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {k: d[k] for k in known if k in d}
        grid_dict = dict(d.get("grid", {}))
        if "bag_fraction" in d:
            grid_dict["bag_fraction"] = d["bag_fraction"]
        kwargs["grid"] = HyperparameterGrid.from_dict(grid_dict)
        kwargs["resampling"] = ResamplingConfig.from_dict(d.get("resampling", {}))
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "seed": self.seed,
            "persist": self.persist,
            "output_dir": str(self.output_dir),
            "parallel": self.parallel,
            "workers": self.workers,
            "region_prefix_length": self.region_prefix_length,
            "region_cap": self.region_cap,
            "slope_epsilon": self.slope_epsilon,
            "path_length_threshold": self.path_length_threshold,
            "predictors": list(self.predictors),
            "target": self.target,
            "chunk_size": self.chunk_size,
            "resampling": self.resampling.to_dict(),
            "grid": self.grid.to_dict(),
        }

    @classmethod
    def load(cls, path: str | Path) -> "PipelineConfig":
        """Read a JSON configuration file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with path.open() as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"{path} is not valid JSON: {e}") from e
        logger.info("Loaded configuration from %s", path)
        return cls.from_dict(data)

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))
        return path
