"""
Session Store Module

Holds per-session trial records (spike-count matrices, stimulus contrasts and
outcome labels) and the store interface the feature pipeline reads from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .errors import SessionNotFoundError

logger = logging.getLogger(__name__)

TrialRecord = Tuple[str, int, "Trial"]


def _as_spike_matrix(values) -> np.ndarray:
    matrix = np.array(values, dtype=float)
    if matrix.size == 0:
        matrix = np.zeros((0, 0), dtype=float)
    elif matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    elif matrix.ndim != 2:
        raise ValueError(f"spike_matrix must be 2-D (neurons x time bins), got shape {matrix.shape}")
    matrix.setflags(write=False)
    return matrix


@dataclass(frozen=True, eq=False)
class Trial:
    """One behavioural event: outcome, stimulus contrasts and spike counts."""

    outcome: float
    contrast_left: float
    contrast_right: float
    spike_matrix: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "spike_matrix", _as_spike_matrix(self.spike_matrix))

    @property
    def n_neurons(self) -> int:
        return int(self.spike_matrix.shape[0])

    @property
    def n_bins(self) -> int:
        return int(self.spike_matrix.shape[1])


@dataclass(frozen=True)
class Session:
    """Ordered trials sharing one neuron population."""

    session_id: str
    subject: str
    trials: Tuple[Trial, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "trials", tuple(self.trials))
        counts = {t.n_neurons for t in self.trials if t.spike_matrix.size}
        if len(counts) > 1:
            raise ValueError(
                f"Session {self.session_id!r} mixes neuron counts {sorted(counts)}"
            )

    @property
    def n_trials(self) -> int:
        return len(self.trials)

    @property
    def n_neurons(self) -> int:
        for trial in self.trials:
            if trial.spike_matrix.size:
                return trial.n_neurons
        return 0

    def iter_trials(self) -> Iterator[TrialRecord]:
        for idx, trial in enumerate(self.trials):
            yield self.session_id, idx, trial

    @classmethod
    def from_arrays(
        cls,
        session_id: str,
        subject: str,
        outcome: Sequence[float],
        contrast_left: Sequence[float],
        contrast_right: Sequence[float],
        spikes: Sequence[np.ndarray],
    ) -> "Session":
        """Build a session from parallel per-trial arrays."""
        lengths = {len(outcome), len(contrast_left), len(contrast_right), len(spikes)}
        if len(lengths) != 1:
            raise ValueError(
                f"Per-trial arrays for session {session_id!r} differ in length: "
                f"outcome={len(outcome)}, contrast_left={len(contrast_left)}, "
                f"contrast_right={len(contrast_right)}, spikes={len(spikes)}"
            )
        trials = [
            Trial(float(o), float(cl), float(cr), s)
            for o, cl, cr, s in zip(outcome, contrast_left, contrast_right, spikes)
        ]
        return cls(session_id=session_id, subject=subject, trials=tuple(trials))


class SessionStore(Protocol):
    def load(self, session_id: str) -> Session:
        ...


class InMemorySessionStore:
    """Session store backed by a dict; preserves insertion order."""

    def __init__(self, sessions: Optional[Sequence[Session]] = None):
        self._sessions: Dict[str, Session] = {}
        for session in sessions or ():
            self.add(session)

    def add(self, session: Session) -> None:
        if session.session_id in self._sessions:
            logger.warning(f"Replacing session {session.session_id!r} in store")
        self._sessions[session.session_id] = session

    def load(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    @property
    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def trials(self) -> Iterator[TrialRecord]:
        for session in self:
            yield from session.iter_trials()


def iter_trial_records(
    source: Union[InMemorySessionStore, Session, Sequence[Session], Sequence[Trial], Sequence[TrialRecord]],
) -> List[TrialRecord]:
    """Normalise a store, session(s), bare trials or records into (session_id, index, trial) records."""
    if isinstance(source, InMemorySessionStore):
        return list(source.trials())
    if isinstance(source, Session):
        return list(source.iter_trials())
    records: List[TrialRecord] = []
    for idx, item in enumerate(source):
        if isinstance(item, Session):
            records.extend(item.iter_trials())
        elif isinstance(item, Trial):
            records.append(("unassigned", idx, item))
        elif isinstance(item, tuple) and len(item) == 3:
            records.append(item)
        else:
            raise TypeError(f"Expected Session or Trial, got {type(item).__name__}")
    return records


def create_sample_sessions(
    n_sessions: int = 3,
    n_trials: int = 60,
    n_neurons: int = 12,
    n_bins: Union[int, Sequence[int]] = 6,
    signal: float = 2.0,
    random_state: int = 42,
) -> List[Session]:
    """
    Create synthetic sessions whose firing depends on the trial outcome.

    Args:
        n_sessions: Number of sessions
        n_trials: Trials per session
        n_neurons: Neurons per session
        n_bins: Time bins per trial, or one value per session
        signal: Extra firing rate of the first half of neurons on success trials
        random_state: Random seed for reproducibility

    Returns:
        List of sessions; outcomes are 1 (success) or -1 (failure)
    """
    rng = np.random.default_rng(random_state)
    bins = [n_bins] * n_sessions if isinstance(n_bins, int) else list(n_bins)
    if len(bins) != n_sessions:
        raise ValueError("n_bins must be an int or have one entry per session")

    sessions = []
    contrasts = np.array([0.0, 0.25, 0.5, 1.0])
    for s in range(n_sessions):
        # Alternate outcomes so both classes are always present
        outcome = np.where(np.arange(n_trials) % 2 == 0, 1.0, -1.0)
        rng.shuffle(outcome)
        spikes = []
        for o in outcome:
            rate = np.full((n_neurons, bins[s]), 1.0)
            if o > 0:
                rate[: max(1, n_neurons // 2)] += signal
            spikes.append(rng.poisson(rate).astype(float))
        sessions.append(
            Session.from_arrays(
                session_id=f"session_{s + 1}",
                subject=f"subject_{s % 2 + 1}",
                outcome=outcome,
                contrast_left=rng.choice(contrasts, size=n_trials),
                contrast_right=rng.choice(contrasts, size=n_trials),
                spikes=spikes,
            )
        )
    return sessions
