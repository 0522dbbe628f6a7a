"""
Model Training Module

Cross-validated logistic regression over the projected trial features
(stimulus contrasts plus principal components).
"""

import logging
from typing import Any, Dict, List, Optional, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.calibration import CalibratedClassifierCV
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import GridSearchCV, StratifiedKFold

from .config import default_param_grid
from .errors import DegenerateDataError, EmptyInputError, SchemaMismatchError

logger = logging.getLogger(__name__)

ArrayLike = Union[pd.DataFrame, np.ndarray]


class TrialClassifier:
    """Binary decision function trained once and then used read-only."""

    stage = "classifier"

    def __init__(
        self,
        random_state: int = 42,
        cv_folds: int = 5,
        param_grid: Optional[Dict[str, List[Any]]] = None,
        scoring: str = "roc_auc",
        n_jobs: int = 1,
        calibrate: bool = False,
    ):
        """
        Initialize TrialClassifier.

        Args:
            random_state: Random seed for reproducibility
            cv_folds: Number of stratified cross-validation folds
            param_grid: Hyperparameter grid for the logistic regression
            scoring: Scorer used to select hyperparameters
            n_jobs: Parallel workers for fold fitting
            calibrate: Whether to calibrate probabilities with a sigmoid fit
        """
        self.random_state = random_state
        self.cv_folds = cv_folds
        self.param_grid = param_grid or default_param_grid()
        self.scoring = scoring
        self.n_jobs = n_jobs
        self.calibrate = calibrate

        self.model = None
        self.best_params: Dict[str, Any] = {}
        self.cv_score: Optional[float] = None
        self.feature_names: Optional[List[str]] = None
        self.n_features: Optional[int] = None

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    def _base_model(self) -> LogisticRegression:
        return LogisticRegression(
            random_state=self.random_state,
            max_iter=1000,
            class_weight="balanced",
        )

    def _n_splits(self, y: np.ndarray) -> int:
        _, counts = np.unique(y, return_counts=True)
        if len(counts) < 2:
            raise DegenerateDataError(
                "training labels contain a single class",
                stage=self.stage,
                expected=2,
                actual=len(counts),
            )
        minority = int(counts.min())
        if minority < 2:
            raise DegenerateDataError(
                "cross-validation needs at least two rows of each class",
                stage=self.stage,
                expected=">=2",
                actual=minority,
            )
        if minority < self.cv_folds:
            logger.warning(f"Reducing cv folds from {self.cv_folds} to {minority} (minority class size)")
            return minority
        return self.cv_folds

    def train(self, features: ArrayLike, labels: ArrayLike) -> "TrialClassifier":
        """
        Fit the classifier with grid-searched regularisation.

        Args:
            features: Training features (contrasts + components)
            labels: 0/1 labels

        Returns:
            self
        """
        X = np.asarray(features, dtype=float)
        y = np.asarray(labels).astype(int)
        if X.shape[0] == 0:
            raise EmptyInputError("cannot train on zero rows", stage=self.stage)
        if X.shape[0] != y.shape[0]:
            raise SchemaMismatchError(
                "feature and label row counts differ",
                stage=self.stage,
                expected=X.shape[0],
                actual=y.shape[0],
            )

        n_splits = self._n_splits(y)
        logger.info(f"Training logistic regression on {X.shape[0]} rows x {X.shape[1]} features")

        grid_search = GridSearchCV(
            self._base_model(),
            self.param_grid,
            scoring=self.scoring,
            cv=StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=self.random_state),
            n_jobs=self.n_jobs,
            verbose=0,
        )
        grid_search.fit(X, y)

        model = grid_search.best_estimator_
        self.best_params = dict(grid_search.best_params_)
        self.cv_score = float(grid_search.best_score_)
        logger.info(f"Best params: {self.best_params}")
        logger.info(f"Best CV score ({self.scoring}): {self.cv_score:.4f}")

        if self.calibrate:
            logger.info("Calibrating model using sigmoid method...")
            model = CalibratedClassifierCV(
                self._base_model().set_params(**self.best_params),
                method="sigmoid",
                cv=n_splits,
            ).fit(X, y)

        self.model = model
        self.feature_names = [str(c) for c in features.columns] if isinstance(features, pd.DataFrame) else None
        self.n_features = int(X.shape[1])
        return self

    def _check_input(self, features: ArrayLike) -> np.ndarray:
        if not self.is_trained:
            raise RuntimeError("TrialClassifier must be trained before prediction.")
        X = np.asarray(features, dtype=float)
        if X.ndim != 2 or X.shape[1] != self.n_features:
            raise SchemaMismatchError(
                "feature width differs from trained model",
                stage=self.stage,
                expected=self.n_features,
                actual=X.shape[1] if X.ndim == 2 else X.shape,
            )
        if self.feature_names is not None and isinstance(features, pd.DataFrame):
            if [str(c) for c in features.columns] != self.feature_names:
                raise SchemaMismatchError(
                    "feature columns differ from trained model",
                    stage=self.stage,
                    expected=self.n_features,
                    actual=X.shape[1],
                )
        return X

    def predict(self, features: ArrayLike) -> np.ndarray:
        return self.model.predict(self._check_input(features)).astype(int)

    def predict_probability(self, features: ArrayLike) -> np.ndarray:
        """Probability of the positive class for each row."""
        X = self._check_input(features)
        classes = list(self.model.classes_)
        return self.model.predict_proba(X)[:, classes.index(1)]

    def save(self, file_path: str):
        logger.info(f"Saving model to {file_path}")
        joblib.dump(self, file_path)

    @classmethod
    def load(cls, file_path: str) -> "TrialClassifier":
        logger.info(f"Loading model from {file_path}")
        model = joblib.load(file_path)
        if not isinstance(model, cls):
            raise TypeError(f"{file_path} does not contain a {cls.__name__}")
        return model
