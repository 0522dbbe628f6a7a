"""
Data Processing Module

Turns trials into a rectangular feature table: flattening, right-padding to a
shared width, and the cleaning predicates applied in a fixed order
(finite-check -> row completeness -> column variance).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import train_test_split

from .errors import DegenerateDataError, EmptyInputError
from .sessions import Trial, TrialRecord, iter_trial_records

logger = logging.getLogger(__name__)

RESERVED_COLUMNS: Tuple[str, ...] = ("outcome", "contrast_left", "contrast_right")
COVARIATE_COLUMNS: Tuple[str, ...] = ("contrast_left", "contrast_right")
INDEX_NAMES = ["session_id", "trial_index"]
MISSING = np.nan


def spike_column(position: int) -> str:
    return f"spk_{position}"


def column_names(length: int) -> List[str]:
    """Names for a padded row of the given total length."""
    n_spikes = max(0, length - len(RESERVED_COLUMNS))
    return list(RESERVED_COLUMNS[:length]) + [spike_column(i) for i in range(n_spikes)]


def flatten_trial(trial: Trial) -> np.ndarray:
    """
    Flatten one trial into ``[outcome, contrast_left, contrast_right, spikes...]``.

    The spike matrix is flattened row-major (neuron by neuron), so the length
    varies with the trial's time-bin count. Padding is the caller's job.
    """
    head = np.array([trial.outcome, trial.contrast_left, trial.contrast_right], dtype=float)
    return np.concatenate([head, trial.spike_matrix.ravel(order="C")])


def pad_rows(vectors: Sequence[np.ndarray], length: int) -> np.ndarray:
    """Right-pad (or truncate) every vector to ``length`` with the missing marker."""
    matrix = np.full((len(vectors), length), MISSING, dtype=float)
    for i, vec in enumerate(vectors):
        n = min(len(vec), length)
        matrix[i, :n] = vec[:n]
    return matrix


def mask_non_finite(matrix: np.ndarray) -> np.ndarray:
    return np.where(np.isfinite(matrix), matrix, MISSING)


def complete_rows(frame: pd.DataFrame) -> pd.Series:
    """Rows holding no missing marker anywhere."""
    return frame.notna().all(axis=1)


def constant_columns(frame: pd.DataFrame, columns: Iterable[str]) -> List[str]:
    """Columns whose variance over ``frame`` is exactly zero (all values equal)."""
    return [c for c in columns if frame[c].nunique(dropna=False) <= 1]


def trial_index(records: Sequence[TrialRecord]) -> pd.MultiIndex:
    return pd.MultiIndex.from_tuples(
        [(session_id, idx) for session_id, idx, _ in records], names=INDEX_NAMES
    )


@dataclass(frozen=True)
class FeatureTable:
    """Cleaned, rectangular feature rows plus the schema they define."""

    data: pd.DataFrame
    feature_columns: Tuple[str, ...]
    max_length: int
    dropped_rows: int = 0
    dropped_columns: Tuple[str, ...] = ()

    @property
    def n_rows(self) -> int:
        return len(self.data)

    @property
    def features(self) -> pd.DataFrame:
        return self.data[list(self.feature_columns)]

    @property
    def covariates(self) -> pd.DataFrame:
        return self.data[list(COVARIATE_COLUMNS)]

    @property
    def outcome(self) -> pd.Series:
        return self.data["outcome"]

    def labels(self, positive_outcome: float = 1.0) -> pd.Series:
        return (self.outcome == positive_outcome).astype(int).rename("label")

    def restrict(self, positions: Sequence[int]) -> "FeatureTable":
        """
        Table over a subset of rows, with the variance predicate re-applied.

        The subset defines its own schema: a column constant within it is
        dropped even if it varied across the full table.
        """
        subset = self.data.iloc[list(positions)]
        if subset.empty:
            raise EmptyInputError("row subset is empty", stage="feature_table")
        constant = constant_columns(subset, self.feature_columns)
        kept = tuple(c for c in self.feature_columns if c not in constant)
        if constant:
            logger.info(f"Dropping {len(constant)} columns constant within subset of {len(subset)} rows")
        return FeatureTable(
            data=subset.drop(columns=constant),
            feature_columns=kept,
            max_length=self.max_length,
            dropped_rows=self.dropped_rows,
            dropped_columns=self.dropped_columns + tuple(constant),
        )


class FeatureTableBuilder:
    """Assembles trials from every session into one cleaned feature table."""

    def __init__(self, n_jobs: int = 1):
        """
        Initialize FeatureTableBuilder.

        Args:
            n_jobs: Workers used to flatten trials (1 runs inline, -1 uses all cores)
        """
        self.n_jobs = n_jobs

    def flatten_all(self, records: Sequence[TrialRecord]) -> List[np.ndarray]:
        trials = [trial for _, _, trial in records]
        if self.n_jobs == 1 or len(trials) < 2:
            return [flatten_trial(t) for t in trials]
        return list(
            Parallel(n_jobs=self.n_jobs, prefer="threads")(delayed(flatten_trial)(t) for t in trials)
        )

    def raw_frame(self, source) -> pd.DataFrame:
        """Padded, uncleaned table: one row per trial, width = longest flattened trial."""
        records = iter_trial_records(source)
        if not records:
            raise EmptyInputError("no trials supplied", stage="feature_table")
        vectors = self.flatten_all(records)
        max_length = max(len(v) for v in vectors)
        return pd.DataFrame(
            pad_rows(vectors, max_length),
            columns=column_names(max_length),
            index=trial_index(records),
        )

    def build(self, source) -> FeatureTable:
        """
        Build the feature table.

        Args:
            source: Session store, sessions, trials or (session_id, index, trial) records

        Returns:
            FeatureTable with the retained feature columns and padded width
        """
        raw = self.raw_frame(source)
        max_length = raw.shape[1]
        logger.info(f"Flattened {raw.shape[0]} trials into {max_length} columns")

        frame = pd.DataFrame(mask_non_finite(raw.to_numpy()), columns=raw.columns, index=raw.index)

        keep = complete_rows(frame)
        cleaned = frame[keep]
        dropped_rows = int((~keep).sum())
        logger.info(f"Dropped {dropped_rows} incomplete rows, {len(cleaned)} remain")
        if cleaned.empty:
            raise EmptyInputError(
                "every row contained a missing or non-finite value",
                stage="feature_table",
                expected=">0 rows",
                actual=0,
            )

        spike_cols = list(cleaned.columns[len(RESERVED_COLUMNS):])
        constant = constant_columns(cleaned, spike_cols)
        cleaned = cleaned.drop(columns=constant)
        kept = tuple(c for c in spike_cols if c not in constant)
        logger.info(f"Dropped {len(constant)} zero-variance columns, {len(kept)} feature columns retained")

        return FeatureTable(
            data=cleaned,
            feature_columns=kept,
            max_length=max_length,
            dropped_rows=dropped_rows,
            dropped_columns=tuple(constant),
        )


def split_table(
    table: FeatureTable,
    test_size: float = 0.2,
    random_state: int = 42,
    positive_outcome: float = 1.0,
) -> Tuple[FeatureTable, pd.DataFrame]:
    """
    Stratified split into a training table and a holdout frame.

    The training table is restricted (variance predicate re-applied) so its
    schema is learnt from training rows only; the holdout keeps its raw
    columns and is aligned later like any unseen data.

    Returns:
        Training FeatureTable and holdout DataFrame
    """
    labels = table.labels(positive_outcome)
    counts = labels.value_counts()
    if len(counts) < 2 or counts.min() < 2:
        raise DegenerateDataError(
            "stratified split needs at least two rows of each class",
            stage="split",
            expected="2 classes x >=2 rows",
            actual=counts.to_dict(),
        )

    logger.info(f"Splitting data with test_size={test_size}")
    train_pos, test_pos = train_test_split(
        np.arange(table.n_rows),
        test_size=test_size,
        random_state=random_state,
        stratify=labels.to_numpy(),
    )
    train_pos = np.sort(train_pos)
    test_pos = np.sort(test_pos)

    logger.info(f"Training set: {len(train_pos)} samples")
    logger.info(f"Holdout set: {len(test_pos)} samples")
    return table.restrict(train_pos), table.data.iloc[test_pos]
