"""
Pipeline Configuration

Defaults for feature alignment, dimensionality reduction and classifier
training. Seed and worker count can be overridden from the environment.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping


def _env_int(name: str, default: int) -> int:
    """Read an integer override from the environment, falling back to default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def default_param_grid() -> Dict[str, List[Any]]:
    return {"C": [0.001, 0.01, 0.1, 1, 10, 100]}


@dataclass
class PipelineConfig:
    """Configuration for the trial decoding pipeline."""

    # Dimensionality reduction
    n_components: int = 50
    # Holdout / cross-validation
    test_size: float = 0.2
    cv_folds: int = 5
    random_state: int = field(default_factory=lambda: _env_int("SPIKE_PIPELINE_RANDOM_STATE", 42))
    n_jobs: int = field(default_factory=lambda: _env_int("SPIKE_PIPELINE_N_JOBS", 1))
    # Classifier
    param_grid: Dict[str, List[Any]] = field(default_factory=default_param_grid)
    scoring: str = "roc_auc"
    calibrate: bool = False
    # Outcome value mapped to label 1
    positive_outcome: float = 1.0

    def __post_init__(self) -> None:
        if self.n_components < 1:
            raise ValueError("n_components must be at least 1")
        if not 0.0 < self.test_size < 1.0:
            raise ValueError("test_size must be between 0 and 1 (exclusive)")
        if self.cv_folds < 2:
            raise ValueError("cv_folds must be at least 2")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
