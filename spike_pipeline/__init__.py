"""
Spike Pipeline Package

Feature alignment, dimensionality reduction and binary decoding of trial
outcomes from variable-shaped spike-count matrices.
"""

from .config import PipelineConfig
from .errors import (
    DegenerateDataError,
    DegenerateInputError,
    EmptyInputError,
    NumericInstabilityError,
    PipelineError,
    SchemaMismatchError,
    SessionNotFoundError,
)
from .sessions import InMemorySessionStore, Session, Trial, create_sample_sessions
from .data_processing import FeatureTable, FeatureTableBuilder, flatten_trial, split_table
from .representation import FittedTransform, PCAProjector, Standardizer
from .alignment import AlignedFeatures, InferenceAligner
from .model import TrialClassifier
from .evaluation import EvaluationResult, ModelEvaluator, confusion_counts
from .pipeline import DecodingPipeline, PipelineResult

__version__ = "0.1.0"
__all__ = [
    "PipelineConfig",
    "PipelineError",
    "DegenerateInputError",
    "SchemaMismatchError",
    "DegenerateDataError",
    "EmptyInputError",
    "NumericInstabilityError",
    "SessionNotFoundError",
    "Trial",
    "Session",
    "InMemorySessionStore",
    "create_sample_sessions",
    "flatten_trial",
    "FeatureTable",
    "FeatureTableBuilder",
    "split_table",
    "Standardizer",
    "PCAProjector",
    "FittedTransform",
    "InferenceAligner",
    "AlignedFeatures",
    "TrialClassifier",
    "ModelEvaluator",
    "EvaluationResult",
    "confusion_counts",
    "DecodingPipeline",
    "PipelineResult",
]
