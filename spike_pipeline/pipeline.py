"""End-to-end decoding pipeline: feature table, fitted transform, classifier, evaluation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pandas as pd

from .alignment import AlignedFeatures, InferenceAligner
from .config import PipelineConfig
from .data_processing import FeatureTable, FeatureTableBuilder, split_table
from .evaluation import EvaluationResult, ModelEvaluator
from .model import TrialClassifier
from .representation import FittedTransform

logger = logging.getLogger(__name__)

BUNDLE_FILE = "bundle.json"
TRANSFORM_FILE = "transform.json"
MODEL_FILE = "model.joblib"


@dataclass
class PipelineResult:
    holdout: EvaluationResult
    n_train: int
    n_holdout: int
    n_features: int
    n_components: int
    cv_score: float
    best_params: Dict[str, Any] = field(default_factory=dict)


class DecodingPipeline:
    """Fits the transform and classifier on training rows, then scores unseen sessions."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.transform: Optional[FittedTransform] = None
        self.classifier: Optional[TrialClassifier] = None
        self.evaluator = ModelEvaluator()
        self._aligner: Optional[InferenceAligner] = None

    @property
    def is_fitted(self) -> bool:
        return self.transform is not None and self.classifier is not None

    @property
    def aligner(self) -> InferenceAligner:
        if self._aligner is None:
            if self.transform is None:
                raise RuntimeError("DecodingPipeline must be fitted before aligning new data.")
            self._aligner = InferenceAligner(self.transform, n_jobs=self.config.n_jobs)
        return self._aligner

    def build_table(self, source) -> FeatureTable:
        return FeatureTableBuilder(n_jobs=self.config.n_jobs).build(source)

    def fit(self, source) -> PipelineResult:
        """
        Build the feature table, split it, fit on the training part and score the holdout.

        Args:
            source: Session store, sessions or trials

        Returns:
            PipelineResult with holdout metrics
        """
        cfg = self.config
        logger.info("Starting decoding pipeline fit")
        table = self.build_table(source)
        train_table, holdout = split_table(
            table, test_size=cfg.test_size, random_state=cfg.random_state,
            positive_outcome=cfg.positive_outcome,
        )

        # Standardizer and PCA see training rows only
        self.transform = FittedTransform.fit(train_table, cfg.n_components, cfg.random_state)
        self._aligner = None

        train = self.aligner.transform(train_table.data)
        self.classifier = TrialClassifier(
            random_state=cfg.random_state,
            cv_folds=cfg.cv_folds,
            param_grid=cfg.param_grid,
            scoring=cfg.scoring,
            n_jobs=cfg.n_jobs,
            calibrate=cfg.calibrate,
        ).train(train.features, train.labels(cfg.positive_outcome))

        holdout_metrics = self._score(self.aligner.transform(holdout), "holdout")
        logger.info("Decoding pipeline fit completed")
        return PipelineResult(
            holdout=holdout_metrics,
            n_train=train_table.n_rows,
            n_holdout=len(holdout),
            n_features=len(train_table.feature_columns),
            n_components=self.transform.n_components,
            cv_score=float(self.classifier.cv_score),
            best_params=dict(self.classifier.best_params),
        )

    def _require_fitted(self) -> None:
        if not self.is_fitted:
            raise RuntimeError("DecodingPipeline must be fitted before prediction.")

    def _score(self, aligned: AlignedFeatures, name: str) -> EvaluationResult:
        y_true = aligned.labels(self.config.positive_outcome)
        return self.evaluator.calculate_metrics(
            y_true,
            self.classifier.predict(aligned.features),
            self.classifier.predict_probability(aligned.features),
            model_name=name,
        )

    def predict(self, source: Union[pd.DataFrame, Any]) -> pd.DataFrame:
        """Predicted label and positive-class probability per usable trial."""
        self._require_fitted()
        aligned = self.aligner.transform(source)
        return pd.DataFrame(
            {
                "outcome": aligned.outcome,
                "prediction": self.classifier.predict(aligned.features),
                "probability": self.classifier.predict_probability(aligned.features),
            },
            index=aligned.features.index,
        )

    def evaluate(self, source: Union[pd.DataFrame, Any], name: str = "test") -> EvaluationResult:
        self._require_fitted()
        return self._score(self.aligner.transform(source), name)

    def save(self, directory: Union[str, Path]) -> Path:
        self._require_fitted()
        root = Path(directory)
        root.mkdir(parents=True, exist_ok=True)
        self.transform.save(root / TRANSFORM_FILE)
        self.classifier.save(str(root / MODEL_FILE))
        bundle = {
            "config": self.config.to_dict(),
            "transform": TRANSFORM_FILE,
            "model": MODEL_FILE,
            "feature_columns": list(self.transform.feature_columns),
            "n_components": self.transform.n_components,
        }
        with open(root / BUNDLE_FILE, "w") as fh:
            json.dump(bundle, fh, indent=2)
        logger.info(f"Saved pipeline bundle to {root}")
        return root

    @classmethod
    def load(cls, directory: Union[str, Path]) -> "DecodingPipeline":
        root = Path(directory)
        with open(root / BUNDLE_FILE) as fh:
            bundle = json.load(fh)
        pipeline = cls(PipelineConfig.from_dict(bundle.get("config", {})))
        pipeline.transform = FittedTransform.load(root / bundle.get("transform", TRANSFORM_FILE))
        pipeline.classifier = TrialClassifier.load(str(root / bundle.get("model", MODEL_FILE)))
        return pipeline


if __name__ == "__main__":
    from .sessions import InMemorySessionStore, create_sample_sessions

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    store = InMemorySessionStore(create_sample_sessions(n_sessions=3, n_trials=60))
    pipeline = DecodingPipeline(PipelineConfig(n_components=10))
    result = pipeline.fit(store)
    print(f"Holdout metrics: {result.holdout.to_dict()}")

    # Unseen sessions with a different bin count are padded/truncated to the training width
    unseen = create_sample_sessions(n_sessions=2, n_trials=40, n_bins=[6, 8], random_state=7)
    print(f"Test metrics: {pipeline.evaluate(unseen).to_dict()}")
