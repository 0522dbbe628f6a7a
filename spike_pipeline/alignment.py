"""Re-create the training feature schema for unseen trials."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Union

import numpy as np
import pandas as pd

from .data_processing import (
    COVARIATE_COLUMNS,
    RESERVED_COLUMNS,
    FeatureTableBuilder,
    column_names,
    complete_rows,
    mask_non_finite,
    pad_rows,
    trial_index,
)
from .errors import DegenerateDataError, EmptyInputError
from .representation import FittedTransform
from .sessions import iter_trial_records

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlignedFeatures:
    """Classifier-ready rows for new data, indexed by (session_id, trial_index)."""

    features: pd.DataFrame
    outcome: pd.Series
    dropped_rows: int

    def labels(self, positive_outcome: float = 1.0) -> pd.Series:
        """0/1 labels; every row must carry an outcome."""
        n_labelled = int(self.outcome.notna().sum())
        if n_labelled < len(self.outcome):
            raise DegenerateDataError(
                "outcome missing for some usable trials; unlabelled rows can be predicted, not scored",
                stage="evaluation",
                expected=len(self.outcome),
                actual=n_labelled,
            )
        return (self.outcome == positive_outcome).astype(int).rename("label")


class InferenceAligner:
    """
    Maps raw trials onto the schema a ``FittedTransform`` was fitted with.

    Trials are padded or truncated to the training width, columns are
    selected and ordered exactly as at fit time, and any expected column the
    new data lacks is filled with the missing marker. Rows still holding a
    missing marker are then dropped, and an empty result is an error.
    """

    stage = "alignment"

    def __init__(self, transform: FittedTransform, n_jobs: int = 1):
        self.fitted = transform
        self._builder = FeatureTableBuilder(n_jobs=n_jobs)

    @property
    def aligned_columns(self) -> List[str]:
        return list(RESERVED_COLUMNS) + list(self.fitted.feature_columns)

    def flatten(self, source) -> pd.DataFrame:
        """Flatten new trials to the stored training width (never recomputed)."""
        records = iter_trial_records(source)
        if not records:
            raise EmptyInputError("no trials supplied", stage=self.stage)
        width = self.fitted.max_length
        vectors = self._builder.flatten_all(records)
        longer = sum(len(v) > width for v in vectors)
        if longer:
            logger.info(f"Truncating {longer} trials longer than training width {width}")
        return pd.DataFrame(
            mask_non_finite(pad_rows(vectors, width)),
            columns=column_names(width),
            index=trial_index(records),
        )

    def align(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Select and order the fitted columns; absent ones become missing markers."""
        absent = [c for c in self.aligned_columns if c not in frame.columns]
        if absent:
            logger.warning(f"{len(absent)} expected columns absent from new data; filling with missing marker")
        aligned = frame.reindex(columns=self.aligned_columns)
        return aligned.astype(float).replace([np.inf, -np.inf], np.nan)

    def transform_frame(self, frame: pd.DataFrame) -> AlignedFeatures:
        aligned = self.align(frame)
        required = list(COVARIATE_COLUMNS) + list(self.fitted.feature_columns)
        keep = complete_rows(aligned[required])
        usable = aligned[keep]
        dropped = int((~keep).sum())
        if dropped:
            logger.info(f"Dropped {dropped} incomplete rows after alignment, {len(usable)} remain")
        if usable.empty:
            raise EmptyInputError(
                "no usable rows after alignment",
                stage=self.stage,
                expected=">0 rows",
                actual=0,
            )

        projected = self.fitted.apply(usable[list(self.fitted.feature_columns)])
        features = pd.concat([usable[list(COVARIATE_COLUMNS)], projected], axis=1)
        return AlignedFeatures(features=features, outcome=usable["outcome"], dropped_rows=dropped)

    def transform_trials(self, source) -> AlignedFeatures:
        return self.transform_frame(self.flatten(source))

    def transform(self, source: Union[pd.DataFrame, object]) -> AlignedFeatures:
        if isinstance(source, pd.DataFrame):
            return self.transform_frame(source)
        return self.transform_trials(source)
