"""
roughlib - Manning's roughness estimation for river network reaches

Includes:
- Target/attribute join with ambiguity checks
- Region-balanced (reach code prefix) training/validation partitioning
- Log-space preprocessing with degenerate-geometry filtering
- Gradient-boosting hyperparameter search:
  - Repeated k-fold cross-validation
  - Optimism-corrected bootstrap
- Parallel batch scoring against observed rating curves (nRMSE)
- Validation result aggregation and reporting
"""

from .config import PipelineConfig, ResamplingConfig
from .core import (
    ConfigurationError,
    DuplicateRecordError,
    IncompleteResultError,
    JoinError,
    RoughlibError,
)
from .join import join_attributes
from .partition import Partition, partition, region_code, stratified_sample
from .pipeline import PipelineResult, TrainingResult, run_pipeline, train_model, validate_model
from .preprocess import Preprocessor, filter_degenerate, inverse_transform, log_transform
from .regressor import FittedModel, GradientBoostingBackend, Regressor
from .scoring import BatchScorer, UnavailableResult, ValidationRecord, flow_scalar, nrmse
from .search import (
    BootstrapResampler,
    GridResult,
    HyperparameterGrid,
    HyperparameterSearch,
    RepeatedCVResampler,
    merge_results,
    select_best,
)
from .validation import ValidationAggregator, ValidationResultSet

__version__ = "0.1.0"
__author__ = "roughlib"

__all__ = [
    # Errors
    "RoughlibError",
    "JoinError",
    "ConfigurationError",
    "DuplicateRecordError",
    "IncompleteResultError",
    # Configuration
    "PipelineConfig",
    "ResamplingConfig",
    # Data preparation
    "join_attributes",
    "region_code",
    "stratified_sample",
    "partition",
    "Partition",
    "Preprocessor",
    "filter_degenerate",
    "log_transform",
    "inverse_transform",
    # Model
    "Regressor",
    "GradientBoostingBackend",
    "FittedModel",
    "HyperparameterGrid",
    "HyperparameterSearch",
    "RepeatedCVResampler",
    "BootstrapResampler",
    "GridResult",
    "merge_results",
    "select_best",
    # Scoring and validation
    "BatchScorer",
    "ValidationRecord",
    "UnavailableResult",
    "flow_scalar",
    "nrmse",
    "ValidationAggregator",
    "ValidationResultSet",
    # Pipeline
    "train_model",
    "validate_model",
    "run_pipeline",
    "TrainingResult",
    "PipelineResult",
]
