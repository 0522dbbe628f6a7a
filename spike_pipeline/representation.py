"""
Representation Learning Module

Standardization and PCA projection learnt once on training rows and
re-applied read-only to every later input. The fitted parameters, together
with the ordered feature schema and the padded trial width, form the
persisted transform artifact.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from .data_processing import FeatureTable
from .errors import (
    DegenerateDataError,
    EmptyInputError,
    NumericInstabilityError,
    SchemaMismatchError,
)

logger = logging.getLogger(__name__)


def component_names(n_components: int) -> List[str]:
    return [f"pca_z{i + 1}" for i in range(n_components)]


def _check_columns(stage: str, expected: Sequence[str], frame: pd.DataFrame) -> None:
    actual = list(frame.columns)
    if actual == list(expected):
        return
    if len(actual) != len(expected):
        raise SchemaMismatchError(
            "column count differs from fitted schema",
            stage=stage,
            expected=len(expected),
            actual=len(actual),
        )
    if set(actual) != set(expected):
        unknown = sorted(set(actual) - set(expected))[:5]
        raise SchemaMismatchError(
            f"column set differs from fitted schema (unexpected e.g. {unknown})",
            stage=stage,
            expected=len(expected),
            actual=len(actual),
        )
    raise SchemaMismatchError(
        "column order differs from fitted schema; reorder before applying",
        stage=stage,
        expected=len(expected),
        actual=len(actual),
    )


def _finite_values(stage: str, frame: pd.DataFrame, what: str = "input") -> np.ndarray:
    values = frame.to_numpy(dtype=float)
    if not np.isfinite(values).all():
        bad_rows = int((~np.isfinite(values)).any(axis=1).sum())
        raise NumericInstabilityError(
            f"non-finite {what} values in {bad_rows} rows",
            stage=stage,
        )
    return values


def _complete_basis(components: np.ndarray, ratio: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
    """Extend orthonormal rows to ``k`` rows with directions orthogonal to all of them."""
    n_have = components.shape[0]
    # Rows of vt past the rank of ``components`` span its orthogonal complement
    _, _, vt = np.linalg.svd(components, full_matrices=True)
    extra = vt[n_have:k]
    return np.vstack([components, extra]), np.concatenate([ratio, np.zeros(k - n_have)])


class Standardizer:
    """Column-wise z-scoring with parameters frozen at fit time (population std)."""

    stage = "standardizer"

    def __init__(self):
        self.columns: Optional[List[str]] = None
        self.means: Optional[np.ndarray] = None
        self.stds: Optional[np.ndarray] = None

    @property
    def is_fitted(self) -> bool:
        return self.columns is not None

    def fit(self, frame: pd.DataFrame) -> "Standardizer":
        if frame.shape[0] == 0:
            raise EmptyInputError("cannot fit on zero rows", stage=self.stage)
        if frame.shape[1] == 0:
            raise DegenerateDataError("no feature columns to standardize", stage=self.stage)
        values = _finite_values(self.stage, frame)

        # Zero variance means every value in the column is equal
        constant = np.ptp(values, axis=0) == 0
        if constant.any():
            names = [c for c, flag in zip(frame.columns, constant) if flag]
            raise DegenerateDataError(
                f"zero-variance columns reached standardization: {names[:5]}",
                stage=self.stage,
                expected="std > 0",
                actual=f"{len(names)} constant columns",
            )

        self.columns = [str(c) for c in frame.columns]
        self.means = values.mean(axis=0)
        self.stds = values.std(axis=0)
        return self

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        if not self.is_fitted:
            raise RuntimeError("Standardizer must be fitted before apply().")
        _check_columns(self.stage, self.columns, frame)
        values = _finite_values(self.stage, frame)
        scaled = (values - self.means) / self.stds
        return pd.DataFrame(scaled, columns=self.columns, index=frame.index)

    def to_dict(self) -> Dict[str, Any]:
        if not self.is_fitted:
            return {}
        return {
            "columns": list(self.columns),
            "means": self.means.tolist(),
            "stds": self.stds.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Standardizer":
        obj = cls()
        if not data:
            return obj
        obj.columns = list(data["columns"])
        obj.means = np.asarray(data["means"], dtype=float)
        obj.stds = np.asarray(data["stds"], dtype=float)
        if not (len(obj.columns) == len(obj.means) == len(obj.stds)):
            raise SchemaMismatchError(
                "persisted standardizer has inconsistent lengths",
                stage=cls.stage,
                expected=len(obj.columns),
                actual=(len(obj.means), len(obj.stds)),
            )
        return obj


class PCAProjector:
    """
    Orthogonal projection onto the leading principal components.

    Fitting delegates to scikit-learn; applying is a plain matrix product
    against the stored loadings, so a reloaded projector reproduces it exactly.
    """

    stage = "pca"

    def __init__(self, random_state: int = 42):
        self.random_state = random_state
        self.columns: Optional[List[str]] = None
        self.loadings: Optional[np.ndarray] = None
        self.centre: Optional[np.ndarray] = None
        self.explained_variance_ratio: Optional[np.ndarray] = None

    @property
    def is_fitted(self) -> bool:
        return self.loadings is not None

    @property
    def n_components(self) -> int:
        return 0 if self.loadings is None else int(self.loadings.shape[0])

    def fit(self, frame: pd.DataFrame, component_count: int = 50) -> "PCAProjector":
        n_rows, n_cols = frame.shape
        if n_rows == 0:
            raise EmptyInputError("cannot fit on zero rows", stage=self.stage)
        if n_cols == 0:
            raise DegenerateDataError("no feature columns to project", stage=self.stage)
        values = _finite_values(self.stage, frame)

        k = min(component_count, n_cols)
        n_fit = min(k, n_rows)

        logger.info(f"Fitting PCA (n_components={k}) on {n_rows} rows x {n_cols} columns")
        pca = PCA(n_components=n_fit, svd_solver="full", random_state=self.random_state)
        pca.fit(values)

        if not (np.isfinite(pca.components_).all() and np.isfinite(pca.mean_).all()):
            raise NumericInstabilityError("PCA basis contains non-finite values", stage=self.stage)

        loadings = pca.components_
        ratio = np.nan_to_num(pca.explained_variance_ratio_)
        if n_fit < k:
            logger.warning(
                f"Only {n_rows} rows available; padding PCA basis with "
                f"{k - n_fit} zero-variance directions"
            )
            loadings, ratio = _complete_basis(loadings, ratio, k)

        self.columns = [str(c) for c in frame.columns]
        self.loadings = loadings.copy()
        self.centre = pca.mean_.copy()
        self.explained_variance_ratio = ratio.copy()
        logger.info(f"PCA retained {k} components explaining {self.explained_variance_ratio.sum():.3f} of variance")
        return self

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        if not self.is_fitted:
            raise RuntimeError("PCAProjector must be fitted before apply().")
        _check_columns(self.stage, self.columns, frame)
        values = _finite_values(self.stage, frame)
        projected = (values - self.centre) @ self.loadings.T
        if not np.isfinite(projected).all():
            raise NumericInstabilityError("projection produced non-finite values", stage=self.stage)
        return pd.DataFrame(projected, columns=component_names(self.n_components), index=frame.index)

    def to_dict(self) -> Dict[str, Any]:
        if not self.is_fitted:
            return {}
        return {
            "columns": list(self.columns),
            "n_components": self.n_components,
            "loadings": self.loadings.tolist(),
            "centre": self.centre.tolist(),
            "explained_variance_ratio": self.explained_variance_ratio.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PCAProjector":
        obj = cls()
        if not data:
            return obj
        obj.columns = list(data["columns"])
        n_cols = len(obj.columns)
        obj.loadings = np.asarray(data["loadings"], dtype=float).reshape(-1, n_cols)
        obj.centre = np.asarray(data["centre"], dtype=float)
        obj.explained_variance_ratio = np.asarray(data.get("explained_variance_ratio", []), dtype=float)
        if obj.n_components != int(data["n_components"]) or len(obj.centre) != n_cols:
            raise SchemaMismatchError(
                "persisted PCA basis does not match its column list",
                stage=cls.stage,
                expected=(int(data["n_components"]), n_cols),
                actual=(obj.n_components, len(obj.centre)),
            )
        return obj


@dataclass(frozen=True)
class FittedTransform:
    """Schema + standardizer + PCA basis, learnt once and reused read-only."""

    feature_columns: Tuple[str, ...]
    max_length: int
    standardizer: Standardizer
    projector: PCAProjector

    stage = "fitted_transform"

    @classmethod
    def fit(cls, table: FeatureTable, n_components: int = 50, random_state: int = 42) -> "FittedTransform":
        """
        Fit standardization and PCA on a training feature table.

        Args:
            table: Training table (already cleaned and variance-filtered)
            n_components: Upper bound on retained components
            random_state: Seed passed to PCA

        Returns:
            Immutable fitted transform carrying the table's schema
        """
        features = table.features
        standardizer = Standardizer().fit(features)
        projector = PCAProjector(random_state=random_state).fit(standardizer.apply(features), n_components)
        return cls(
            feature_columns=tuple(table.feature_columns),
            max_length=int(table.max_length),
            standardizer=standardizer,
            projector=projector,
        )

    @property
    def n_components(self) -> int:
        return self.projector.n_components

    @property
    def component_columns(self) -> List[str]:
        return component_names(self.n_components)

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        _check_columns(self.stage, self.feature_columns, frame)
        return self.projector.apply(self.standardizer.apply(frame))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_columns": list(self.feature_columns),
            "max_length": self.max_length,
            "n_components": self.n_components,
            "standardizer": self.standardizer.to_dict(),
            "pca": self.projector.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FittedTransform":
        standardizer = Standardizer.from_dict(data["standardizer"])
        projector = PCAProjector.from_dict(data["pca"])
        columns = tuple(data["feature_columns"])
        if list(columns) != standardizer.columns or list(columns) != projector.columns:
            raise SchemaMismatchError(
                "persisted stages disagree with the feature schema",
                stage=cls.stage,
                expected=len(columns),
                actual=(len(standardizer.columns or []), len(projector.columns or [])),
            )
        return cls(
            feature_columns=columns,
            max_length=int(data["max_length"]),
            standardizer=standardizer,
            projector=projector,
        )

    def save(self, file_path: Union[str, Path]) -> None:
        logger.info(f"Saving fitted transform to {file_path}")
        with open(file_path, "w") as fh:
            json.dump(self.to_dict(), fh)

    @classmethod
    def load(cls, file_path: Union[str, Path]) -> "FittedTransform":
        logger.info(f"Loading fitted transform from {file_path}")
        with open(file_path) as fh:
            return cls.from_dict(json.load(fh))
