"""
Session scoring: raw scores and standardized ability proxies.

theta is a single-pass, moment-based proxy for latent ability:

    raw_score = number of correct responses in the session (within the window)
    theta     = (raw_score - mean(raw_scores)) / sd(raw_scores)

sd is the Bessel-corrected sample standard deviation; when it is 0 (one
session, or every session scored the same) it is treated as 1 so theta is
simply mean-centered. theta is recomputed for every run from that run's
own window and is never persisted.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List

from edumeter_analytics.core.response_store import ResponseRecord
from edumeter_analytics.core.statistics import mean, sample_stdev


@dataclass(frozen=True)
class SessionScore:
    """Raw score and standardized theta for one session."""

    session_id: str
    raw_score: int
    theta: float


def raw_scores(responses: Iterable[ResponseRecord]) -> Dict[str, int]:
    """
    Count correct responses per session.

    Every session with at least one response appears, including sessions
    with no correct answers (raw score 0). Insertion order follows first
    appearance in `responses`.
    """
    totals: Dict[str, int] = {}
    for r in responses:
        totals.setdefault(r.session_id, 0)
        if r.is_correct:
            totals[r.session_id] += 1
    return totals


def score_sessions(responses: Iterable[ResponseRecord]) -> Dict[str, SessionScore]:
    """
    Compute raw scores and theta proxies for every session in the window.

    Args:
        responses: All in-window responses for one tenant.

    Returns:
        Mapping of session_id to SessionScore. Empty when there are no responses.
    """
    totals = raw_scores(responses)
    if not totals:
        return {}

    scores: List[int] = list(totals.values())
    score_mean = mean(scores)
    score_std = sample_stdev(scores) or 1.0

    return {
        session_id: SessionScore(
            session_id=session_id,
            raw_score=raw,
            theta=(raw - score_mean) / score_std,
        )
        for session_id, raw in totals.items()
    }


def theta_by_session(scores: Dict[str, SessionScore]) -> Dict[str, float]:
    """Project SessionScore objects onto session_id -> theta."""
    return {session_id: s.theta for session_id, s in scores.items()}
