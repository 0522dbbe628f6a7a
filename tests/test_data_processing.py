"""Tests for trial flattening and feature table construction."""

from __future__ import annotations

from typing import List, Tuple

import numpy as np
import pandas as pd
import pytest

from spike_pipeline.data_processing import (
    FeatureTableBuilder,
    column_names,
    flatten_trial,
    split_table,
)
from spike_pipeline.errors import DegenerateDataError, EmptyInputError
from spike_pipeline.sessions import Session, Trial


def make_trial(outcome: float, shape: Tuple[int, int], offset: float = 0.0) -> Trial:
    n = shape[0] * shape[1]
    matrix = (np.arange(n, dtype=float) + offset).reshape(shape)
    return Trial(outcome, 0.25 + offset / 100.0, 0.5, matrix)


def make_mixed_sessions() -> List[Session]:
    shapes = [(2, 3), (2, 3), (2, 4), (2, 4), (2, 2), (2, 2)]
    trials = [make_trial(1.0 if i % 2 == 0 else -1.0, s, offset=i) for i, s in enumerate(shapes)]
    return [
        Session("s1", "mouse_a", trials[0:2]),
        Session("s2", "mouse_a", trials[2:4]),
        Session("s3", "mouse_b", trials[4:6]),
    ]


def test_flatten_trial_layout_is_row_major() -> None:
    trial = Trial(1.0, 0.5, 0.0, [[1, 2, 3], [4, 5, 6]])
    flat = flatten_trial(trial)
    np.testing.assert_array_equal(flat, [1.0, 0.5, 0.0, 1, 2, 3, 4, 5, 6])


def test_flatten_trial_empty_matrix_yields_reserved_only() -> None:
    trial = Trial(-1.0, 0.0, 1.0, np.empty((0, 0)))
    assert flatten_trial(trial).tolist() == [-1.0, 0.0, 1.0]


def test_raw_frame_pads_to_global_maximum() -> None:
    raw = FeatureTableBuilder().raw_frame(make_mixed_sessions())
    assert raw.shape == (6, 11)
    assert list(raw.columns[:3]) == ["outcome", "contrast_left", "contrast_right"]
    # 2x3 trial: 9 values then two missing markers
    assert raw.iloc[0, :9].notna().all()
    assert raw.iloc[0, 9:].isna().all()


def test_build_drops_incomplete_rows_and_keeps_back_reference() -> None:
    table = FeatureTableBuilder().build(make_mixed_sessions())
    assert table.max_length == 11
    assert table.n_rows == 2
    assert table.dropped_rows == 4
    assert list(table.data.index) == [("s2", 0), ("s2", 1)]
    assert table.data.index.names == ["session_id", "trial_index"]
    assert table.data.notna().all().all()


def test_build_replaces_non_finite_values_and_drops_row() -> None:
    trials = [
        Trial(1.0, 0.0, 0.5, [[1.0, 2.0], [3.0, 4.0]]),
        Trial(-1.0, 0.5, 0.0, [[np.inf, 2.0], [5.0, 1.0]]),
        Trial(-1.0, 1.0, 0.25, [[2.0, 0.0], [1.0, 3.0]]),
    ]
    table = FeatureTableBuilder().build(Session("s1", "m", trials))
    assert table.n_rows == 2
    assert ("s1", 1) not in table.data.index


def test_build_drops_zero_variance_feature_columns() -> None:
    trials = [
        Trial(1.0, 0.0, 0.5, [[7.0, 1.0, 2.0]]),
        Trial(-1.0, 0.5, 0.0, [[7.0, 3.0, 2.0]]),
        Trial(1.0, 1.0, 0.25, [[7.0, 5.0, 2.0]]),
    ]
    table = FeatureTableBuilder().build(Session("s1", "m", trials))
    assert table.feature_columns == ("spk_1",)
    assert set(table.dropped_columns) == {"spk_0", "spk_2"}
    assert list(table.data.columns) == ["outcome", "contrast_left", "contrast_right", "spk_1"]


def test_reserved_columns_are_never_variance_filtered() -> None:
    trials = [
        Trial(1.0, 0.5, 0.5, [[1.0, 2.0]]),
        Trial(1.0, 0.5, 0.5, [[3.0, 4.0]]),
    ]
    table = FeatureTableBuilder().build(Session("s1", "m", trials))
    assert list(table.data.columns[:3]) == ["outcome", "contrast_left", "contrast_right"]


def test_build_fails_when_every_row_is_dropped() -> None:
    trials = [
        Trial(1.0, 0.0, 0.5, [[1.0, 2.0]]),
        Trial(-1.0, 0.5, np.nan, [[1.0, 2.0, 3.0]]),
    ]
    with pytest.raises(EmptyInputError):
        FeatureTableBuilder().build(Session("s1", "m", trials))


def test_build_fails_on_no_trials() -> None:
    with pytest.raises(EmptyInputError):
        FeatureTableBuilder().build([])


def test_parallel_flattening_matches_inline() -> None:
    sessions = make_mixed_sessions()
    inline = FeatureTableBuilder(n_jobs=1).raw_frame(sessions)
    parallel = FeatureTableBuilder(n_jobs=2).raw_frame(sessions)
    pd.testing.assert_frame_equal(inline, parallel)


def test_column_names() -> None:
    assert column_names(5) == ["outcome", "contrast_left", "contrast_right", "spk_0", "spk_1"]


def make_balanced_session(n_trials: int = 20) -> Session:
    rng = np.random.default_rng(3)
    outcomes = [1.0 if i % 2 == 0 else -1.0 for i in range(n_trials)]
    spikes = [rng.poisson(2.0, size=(3, 4)).astype(float) for _ in range(n_trials)]
    return Session.from_arrays(
        "s1", "m", outcomes, rng.random(n_trials), rng.random(n_trials), spikes
    )


def test_split_table_is_stratified_and_disjoint() -> None:
    table = FeatureTableBuilder().build(make_balanced_session())
    train, holdout = split_table(table, test_size=0.2, random_state=0)
    assert train.n_rows == 16
    assert len(holdout) == 4
    assert set(train.data.index).isdisjoint(set(holdout.index))
    assert train.labels().sum() == 8
    assert (holdout["outcome"] == 1.0).sum() == 2


def test_restrict_reapplies_variance_filter() -> None:
    trials = [
        Trial(1.0, 0.0, 0.5, [[1.0, 5.0]]),
        Trial(-1.0, 0.5, 0.0, [[1.0, 6.0]]),
        Trial(1.0, 1.0, 0.25, [[2.0, 7.0]]),
    ]
    table = FeatureTableBuilder().build(Session("s1", "m", trials))
    assert table.feature_columns == ("spk_0", "spk_1")
    subset = table.restrict([0, 1])
    assert subset.feature_columns == ("spk_1",)
    assert "spk_0" in subset.dropped_columns


def test_split_table_requires_two_rows_per_class() -> None:
    trials = [
        Trial(1.0, 0.0, 0.5, [[1.0, 5.0]]),
        Trial(-1.0, 0.5, 0.0, [[2.0, 6.0]]),
        Trial(1.0, 1.0, 0.25, [[3.0, 7.0]]),
    ]
    table = FeatureTableBuilder().build(Session("s1", "m", trials))
    with pytest.raises(DegenerateDataError):
        split_table(table)
