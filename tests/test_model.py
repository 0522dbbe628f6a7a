"""Tests for TrialClassifier."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from spike_pipeline.errors import DegenerateDataError, SchemaMismatchError
from spike_pipeline.model import TrialClassifier


def make_separable(n: int = 80, seed: int = 0) -> tuple[pd.DataFrame, np.ndarray]:
    rng = np.random.default_rng(seed)
    y = np.arange(n) % 2
    X = pd.DataFrame(
        {
            "contrast_left": rng.random(n),
            "contrast_right": rng.random(n),
            "pca_z1": rng.normal(size=n) + 3.0 * (2 * y - 1),
            "pca_z2": rng.normal(size=n),
        }
    )
    return X, y


def test_train_and_predict_separable_data() -> None:
    X, y = make_separable()
    clf = TrialClassifier(random_state=0).train(X, y)
    assert (clf.predict(X) == y).mean() > 0.9
    assert clf.cv_score is not None and clf.cv_score > 0.9
    assert "C" in clf.best_params


def test_predict_probability_is_positive_class_probability() -> None:
    X, y = make_separable()
    clf = TrialClassifier(random_state=0).train(X, y)
    proba = clf.predict_probability(X)
    assert proba.shape == (len(X),)
    assert ((proba >= 0.0) & (proba <= 1.0)).all()
    assert proba[y == 1].mean() > proba[y == 0].mean()


def test_calibrated_model_predicts() -> None:
    X, y = make_separable()
    clf = TrialClassifier(random_state=0, calibrate=True).train(X, y)
    proba = clf.predict_probability(X)
    assert ((proba >= 0.0) & (proba <= 1.0)).all()


def test_predict_rejects_wrong_width() -> None:
    X, y = make_separable()
    clf = TrialClassifier().train(X, y)
    with pytest.raises(SchemaMismatchError):
        clf.predict(X.iloc[:, :3])
    with pytest.raises(SchemaMismatchError):
        clf.predict_probability(X.to_numpy()[:, :3])


def test_predict_rejects_reordered_columns() -> None:
    X, y = make_separable()
    clf = TrialClassifier().train(X, y)
    with pytest.raises(SchemaMismatchError):
        clf.predict(X[list(reversed(X.columns))])


def test_train_rejects_single_class() -> None:
    X, _ = make_separable()
    with pytest.raises(DegenerateDataError):
        TrialClassifier().train(X, np.ones(len(X), dtype=int))


def test_train_reduces_folds_for_small_minority() -> None:
    X, y = make_separable(n=40)
    y = np.zeros(40, dtype=int)
    y[:3] = 1
    X.loc[:2, "pca_z1"] += 5.0
    clf = TrialClassifier(cv_folds=5).train(X, y)
    assert clf.is_trained


def test_predict_before_training() -> None:
    X, _ = make_separable()
    with pytest.raises(RuntimeError):
        TrialClassifier().predict(X)


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    X, y = make_separable()
    clf = TrialClassifier(random_state=0).train(X, y)
    path = tmp_path / "model.joblib"
    clf.save(str(path))
    restored = TrialClassifier.load(str(path))
    np.testing.assert_array_equal(restored.predict_probability(X), clf.predict_probability(X))
    assert restored.feature_names == list(X.columns)
