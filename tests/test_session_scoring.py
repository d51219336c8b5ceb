"""
Tests for session raw scores and theta proxies.
"""
from datetime import datetime, timezone

import pytest

from edumeter_analytics.core.response_store import ResponseRecord
from edumeter_analytics.core.session_scoring import (
    raw_scores,
    score_sessions,
    theta_by_session,
)

ANSWERED = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _record(session_id, item_id, is_correct):
    return ResponseRecord(
        item_id=item_id,
        session_id=session_id,
        is_correct=is_correct,
        response_time_ms=None,
        answered_at=ANSWERED,
    )


class TestRawScores:
    def test_counts_correct_per_session(self):
        responses = [
            _record("s1", "i1", True),
            _record("s1", "i2", True),
            _record("s2", "i1", False),
            _record("s3", "i1", None),
            _record("s3", "i2", True),
        ]
        assert raw_scores(responses) == {"s1": 2, "s2": 0, "s3": 1}

    def test_empty(self):
        assert raw_scores([]) == {}


class TestScoreSessions:
    def test_z_scores_use_sample_std(self):
        # raw scores 2, 0, 1 -> mean 1, sample std 1
        responses = [
            _record("s1", "i1", True),
            _record("s1", "i2", True),
            _record("s2", "i1", False),
            _record("s3", "i1", True),
        ]
        scores = score_sessions(responses)

        assert scores["s1"].raw_score == 2
        assert scores["s1"].theta == pytest.approx(1.0)
        assert scores["s2"].theta == pytest.approx(-1.0)
        assert scores["s3"].theta == pytest.approx(0.0)

    def test_zero_variance_treated_as_unit_std(self):
        responses = [_record("s1", "i1", True), _record("s2", "i1", True)]
        thetas = theta_by_session(score_sessions(responses))
        assert thetas == {"s1": 0.0, "s2": 0.0}

    def test_single_session_is_mean_centered(self):
        thetas = theta_by_session(score_sessions([_record("s1", "i1", True)]))
        assert thetas == {"s1": 0.0}

    def test_no_responses(self):
        assert score_sessions([]) == {}
