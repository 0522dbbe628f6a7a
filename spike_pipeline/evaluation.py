"""
Evaluation Module

Confusion-matrix derived metrics for the binary trial-outcome classifier,
reported per class so imbalanced outcomes stay visible.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    precision_recall_fscore_support,
    roc_auc_score,
)

logger = logging.getLogger(__name__)


def _ratio(num: float, den: float) -> float:
    return float(num) / float(den) if den > 0 else 0.0


@dataclass(frozen=True)
class EvaluationResult:
    """Flat evaluation record; every field is a float in [0, 1]."""

    accuracy: float
    precision_positive: float
    precision_negative: float
    recall_positive: float
    recall_negative: float
    f1_positive: float
    f1_negative: float
    auc: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_confusion(cls, tp: int, fn: int, fp: int, tn: int, auc: float = 0.0) -> "EvaluationResult":
        """
        Build the record from confusion-matrix counts.

        Args:
            tp: True positives
            fn: False negatives
            fp: False positives
            tn: True negatives
            auc: ROC-AUC computed elsewhere (needs scores, not counts)
        """
        precision_pos = _ratio(tp, tp + fp)
        precision_neg = _ratio(tn, tn + fn)
        recall_pos = _ratio(tp, tp + fn)
        recall_neg = _ratio(tn, tn + fp)
        return cls(
            accuracy=_ratio(tp + tn, tp + tn + fp + fn),
            precision_positive=precision_pos,
            precision_negative=precision_neg,
            recall_positive=recall_pos,
            recall_negative=recall_neg,
            f1_positive=_ratio(2 * precision_pos * recall_pos, precision_pos + recall_pos),
            f1_negative=_ratio(2 * precision_neg * recall_neg, precision_neg + recall_neg),
            auc=float(auc),
        )


def confusion_counts(y_true: np.ndarray, y_pred: np.ndarray) -> Tuple[int, int, int, int]:
    """Return ``(tn, fp, fn, tp)`` with label 1 as the positive class."""
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return int(tn), int(fp), int(fn), int(tp)


class ModelEvaluator:
    """Computes evaluation records and keeps them by name."""

    def __init__(self):
        """Initialize ModelEvaluator."""
        self.evaluation_results: Dict[str, EvaluationResult] = {}

    def calculate_metrics(
        self,
        y_true: np.ndarray,
        y_pred: np.ndarray,
        y_proba: Optional[np.ndarray] = None,
        model_name: Optional[str] = None,
    ) -> EvaluationResult:
        """
        Calculate per-class evaluation metrics.

        Args:
            y_true: True 0/1 labels
            y_pred: Predicted 0/1 labels
            y_proba: Positive-class probabilities (optional, needed for AUC)
            model_name: Store the result under this name when given

        Returns:
            EvaluationResult
        """
        y_true = np.asarray(y_true).astype(int)
        y_pred = np.asarray(y_pred).astype(int)

        precision, recall, f1, _ = precision_recall_fscore_support(
            y_true, y_pred, labels=[0, 1], zero_division=0
        )

        auc = 0.0
        if y_proba is None:
            logger.warning("No probabilities supplied; AUC reported as 0.0")
        elif len(np.unique(y_true)) < 2:
            logger.warning("Only one class present in y_true; AUC undefined, reported as 0.0")
        else:
            auc = float(roc_auc_score(y_true, np.asarray(y_proba, dtype=float)))

        result = EvaluationResult(
            accuracy=float(accuracy_score(y_true, y_pred)),
            precision_positive=float(precision[1]),
            precision_negative=float(precision[0]),
            recall_positive=float(recall[1]),
            recall_negative=float(recall[0]),
            f1_positive=float(f1[1]),
            f1_negative=float(f1[0]),
            auc=auc,
        )
        tn, fp, fn, tp = confusion_counts(y_true, y_pred)
        logger.info(f"Confusion matrix: TP={tp} FN={fn} FP={fp} TN={tn}; "
                    f"accuracy={result.accuracy:.4f} auc={result.auc:.4f}")

        if model_name is not None:
            self.evaluation_results[model_name] = result
        return result
