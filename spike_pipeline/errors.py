"""Error taxonomy for the decoding pipeline.

All pipeline errors are fatal: they carry the stage that raised them and,
where relevant, the expected and actual shapes, and are never recovered
inside the library.
"""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for every failure raised by a pipeline stage."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        self.stage = stage
        self.expected = expected
        self.actual = actual
        parts = [message]
        if stage:
            parts.insert(0, f"[{stage}]")
        if expected is not None or actual is not None:
            parts.append(f"(expected={expected}, actual={actual})")
        super().__init__(" ".join(parts))


class DegenerateInputError(PipelineError):
    """Input is structurally unusable by the stage it was handed to."""


class SchemaMismatchError(DegenerateInputError):
    """Column set, order or width differs between fit and apply."""


class DegenerateDataError(DegenerateInputError):
    """Data cannot support the statistics a stage needs (zero variance, one class)."""


class EmptyInputError(DegenerateDataError):
    """No rows are left after cleaning or alignment."""


class NumericInstabilityError(PipelineError):
    """A non-finite value entered or left a stage that forbids it."""


class SessionNotFoundError(KeyError):
    """Requested session id is not held by the store."""
