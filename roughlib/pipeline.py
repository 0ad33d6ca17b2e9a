"""
roughlib.pipeline - End-to-end training and validation.

::

    targets + attributes --join--> population --partition--> training / validation
    training --preprocess--> log frame --search--> FittedModel
    FittedModel + reaches (+ rating curves) --score--> ValidationResultSet

Fatal errors (join, configuration, aggregation) abort the run and are
logged with the stage in which they occurred.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional

import pandas as pd

from roughlib.config import PipelineConfig
from roughlib.core import COMID, RoughlibError
from roughlib.join import join_attributes
from roughlib.partition import Partition, partition
from roughlib.regressor import FittedModel
from roughlib.scoring import BatchScorer
from roughlib.search import GridResult, HyperparameterSearch, SearchOutcome, save_results
from roughlib.validation import ValidationAggregator, ValidationResultSet, generate_json_report

log = logging.getLogger(__name__)


@contextmanager
def _stage(name: str) -> Iterator[None]:
    log.info("== %s ==", name)
    try:
        yield
    except RoughlibError as e:
        log.error("Stage %r failed: %s", name, e)
        raise


@dataclass
class TrainingResult:
    """Output of :func:`train_model`."""

    model: FittedModel
    partition: Partition
    search: SearchOutcome
    training_frame: pd.DataFrame


@dataclass
class PipelineResult:
    """Output of :func:`run_pipeline`."""

    training: TrainingResult
    validation: ValidationResultSet

    @property
    def model(self) -> FittedModel:
        return self.training.model


def train_model(
    targets: pd.DataFrame,
    attributes: pd.DataFrame,
    config: Optional[PipelineConfig] = None,
    prior_results: Optional[Iterable[GridResult]] = None,
) -> TrainingResult:
    """
    Join, partition, preprocess and search for the best model.

    Parameters
    ----------
    targets : pd.DataFrame
        ``comid`` and target column.
    attributes : pd.DataFrame
        ``comid``, predictors and ``reachcode``.
    config : PipelineConfig, optional
    prior_results : iterable of GridResult, optional
        Grid results from earlier partial searches.

    Returns
    -------
    TrainingResult
    """
    config = config or PipelineConfig()
    with _stage("configuration"):
        config.validate()
        resampler = config.resampling.build()

    with _stage("join"):
        population = join_attributes(targets, attributes)

    with _stage("partition"):
        part = partition(
            population, cap=config.region_cap, prefix_length=config.region_prefix_length
        )

    with _stage("preprocess"):
        pre = config.preprocessor()
        frame_log = pre.transform(part.training)
        X, y = pre.split(frame_log)

    with _stage("hyperparameter search"):
        search = HyperparameterSearch(
            config.grid,
            resampler,
            seed=config.seed,
            parallel=config.parallel,
            workers=config.workers,
        )
        outcome = search.run(
            X,
            y,
            name=config.model_name,
            target=config.target,
            prior_results=prior_results,
            preprocessor=pre,
        )

    if config.persist:
        outcome.model.save(config.model_path)
        save_results(outcome.results, config.grid_results_path)

    return TrainingResult(
        model=outcome.model, partition=part, search=outcome, training_frame=frame_log
    )


def validate_model(
    model: FittedModel,
    attributes: pd.DataFrame,
    rating_curves: Optional[pd.DataFrame] = None,
    config: Optional[PipelineConfig] = None,
    comids: Optional[Iterable[Any]] = None,
) -> ValidationResultSet:
    """
    Score reaches with *model* and aggregate the validation records.

    Reaches with a single, degenerate attribute row are removed from the
    scoring input, using the thresholds stored on *model* so that scoring
    filters exactly as training did.  Every remaining requested identifier
    gets exactly one record; identifiers with zero or several attribute
    rows are kept and reported unavailable.

    Parameters
    ----------
    model : FittedModel
    attributes : pd.DataFrame
        Population attributes (may contain reaches without rating curves).
    rating_curves : pd.DataFrame, optional
        Long-format observed curves.
    config : PipelineConfig, optional
    comids : iterable, optional
        Identifiers to score (default: all in *attributes*).

    Returns
    -------
    ValidationResultSet
    """
    config = config or PipelineConfig()
    with _stage("configuration"):
        config.validate()

    with _stage("scoring"):
        pre = model.preprocessor()
        single = attributes[COMID].map(attributes[COMID].value_counts()) == 1
        mask = pre.degenerate(attributes).to_numpy() & single.to_numpy()
        degenerate = attributes.loc[mask, COMID]
        requested: List[Any] = list(
            dict.fromkeys(attributes[COMID] if comids is None else comids)
        )
        skipped = set(degenerate)
        scoring_ids = [c for c in requested if c not in skipped]
        if len(scoring_ids) < len(requested):
            log.info(
                "Removed %d reaches with degenerate geometry from scoring input",
                len(requested) - len(scoring_ids),
            )

        scorer = BatchScorer(model, attributes, rating_curves)
        aggregator = ValidationAggregator()
        aggregator.extend(
            scorer.score(
                scoring_ids,
                parallel=config.parallel,
                workers=config.workers,
                chunk_size=config.chunk_size,
            )
        )

    with _stage("aggregation"):
        aggregator.verify_coverage(scoring_ids)
        results = aggregator.result_set()

    if config.persist:
        results.save(config.results_path)
        config.report_path.parent.mkdir(parents=True, exist_ok=True)
        config.report_path.write_text(generate_json_report(results))
    return results


def run_pipeline(
    targets: pd.DataFrame,
    attributes: pd.DataFrame,
    rating_curves: Optional[pd.DataFrame] = None,
    config: Optional[PipelineConfig] = None,
    score: str = "validation",
) -> PipelineResult:
    """
    Train a model and validate it.

    Parameters
    ----------
    targets, attributes, rating_curves : pd.DataFrame
    config : PipelineConfig, optional
    score : str
        ``"validation"`` scores the held-out reaches; ``"all"`` scores every
        reach in *attributes*.

    Returns
    -------
    PipelineResult
    """
    if score not in ("validation", "all"):
        raise ValueError(f"score must be 'validation' or 'all', got {score!r}")
    config = config or PipelineConfig()
    training = train_model(targets, attributes, config)
    comids = training.partition.validation[COMID] if score == "validation" else None
    validation = validate_model(training.model, attributes, rating_curves, config, comids=comids)
    return PipelineResult(training=training, validation=validation)
