"""
Tests for the gradient 2PL IRT estimator.

Tests cover:
- sigmoid saturation
- estimate_2pl: determinism, bounds, divergence reset
- calibrate_items: minimum-response skip and direction of difficulty
- run_irt: persisted rows, sentinels, model restriction
"""
import math
from datetime import datetime, timezone

import numpy as np
import pytest
from sqlalchemy import select

from edumeter_analytics.core.config import AnalyticsConfig, IrtOptions
from edumeter_analytics.core.errors import ConfigurationError
from edumeter_analytics.core.irt import (
    ESTIMATION_METHOD,
    ItemParameters,
    calibrate_items,
    estimate_2pl,
    run_irt,
    sigmoid,
)
from edumeter_analytics.core.response_store import ResponseRecord
from edumeter_analytics.models import AnalysisRun, IrtModelKind, ItemIrtParam

TENANT = "tenant-a"
ANSWERED = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _synthetic_item(n: int = 200, a: float = 1.2, b: float = 0.3, seed: int = 7):
    """Thetas and outcomes drawn from a known 2PL item."""
    rng = np.random.default_rng(seed)
    thetas = rng.standard_normal(n)
    p = 1.0 / (1.0 + np.exp(-a * (thetas - b)))
    outcomes = (rng.random(n) < p).astype(int)
    return thetas.tolist(), outcomes.tolist()


def _two_item_responses(n_sessions: int = 40):
    """Every session answers an easy item E and a hard item H."""
    responses = []
    for i in range(n_sessions):
        session_id = f"s{i:03d}"
        for item_id, correct in (("E", i < 36), ("H", i < 4)):
            responses.append(
                ResponseRecord(
                    item_id=item_id,
                    session_id=session_id,
                    is_correct=correct,
                    response_time_ms=None,
                    answered_at=ANSWERED,
                )
            )
    return responses


class TestSigmoid:
    def test_midpoint(self):
        assert sigmoid(0.0) == 0.5

    def test_saturates_beyond_bounds(self):
        assert sigmoid(35.5) == 1.0
        assert sigmoid(-35.5) == 0.0
        assert sigmoid(1e6) == 1.0
        assert sigmoid(-1e6) == 0.0

    def test_inside_bounds_is_logistic(self):
        assert sigmoid(2.0) == pytest.approx(1.0 / (1.0 + math.exp(-2.0)))
        assert 0.0 < sigmoid(-35.0) < 1e-15

    def test_array_matches_scalar(self):
        z = np.array([-40.0, -35.0, -2.0, 0.0, 2.0, 35.0, 40.0])

        values = sigmoid(z)

        assert isinstance(values, np.ndarray)
        assert values.tolist() == [sigmoid(float(v)) for v in z]


class TestItemParameters:
    def test_two_pl_sentinels(self):
        params = ItemParameters.two_pl(1.4, -0.2)
        assert params.model == IrtModelKind.TWO_PL
        assert params.c == 0.0
        assert params.d == 1.0


class TestEstimate2PL:
    def test_deterministic(self):
        thetas, outcomes = _synthetic_item()
        first = estimate_2pl(thetas, outcomes, IrtOptions())
        second = estimate_2pl(thetas, outcomes, IrtOptions())

        assert first.params.a == second.params.a
        assert first.params.b == second.params.b
        assert first.iterations == second.iterations

    def test_within_bounds_and_finite(self):
        options = IrtOptions()
        for seed in range(5):
            thetas, outcomes = _synthetic_item(seed=seed, a=2.5, b=-1.0)
            fit = estimate_2pl(thetas, outcomes, options)

            assert math.isfinite(fit.params.a) and math.isfinite(fit.params.b)
            assert options.min_a <= fit.params.a <= options.max_a
            assert options.min_b <= fit.params.b <= options.max_b

    def test_perfect_separation_stays_clamped(self):
        thetas = [-2.0, -1.0, 1.0, 2.0] * 10
        outcomes = [0, 0, 1, 1] * 10
        options = IrtOptions(learning_rate=5.0, max_iters=500)

        fit = estimate_2pl(thetas, outcomes, options)

        assert options.min_a <= fit.params.a <= options.max_a
        assert options.min_b <= fit.params.b <= options.max_b

    def test_custom_bounds_are_respected(self):
        thetas = [-2.0, -1.0, 1.0, 2.0] * 10
        outcomes = [0, 0, 1, 1] * 10
        options = IrtOptions(learning_rate=5.0, max_a=1.5)

        fit = estimate_2pl(thetas, outcomes, options)

        assert fit.params.a <= 1.5

    def test_non_finite_update_resets_to_prior(self):
        thetas = [10.0, -10.0]
        outcomes = [0, 1]
        options = IrtOptions(learning_rate=1e308)

        fit = estimate_2pl(thetas, outcomes, options)

        assert fit.reset is True
        assert fit.converged is False
        assert (fit.params.a, fit.params.b) == (1.0, 0.0)
        assert fit.iterations == 1

    def test_iteration_cap(self):
        thetas, outcomes = _synthetic_item()
        fit = estimate_2pl(thetas, outcomes, IrtOptions(max_iters=3, tolerance=0.0))

        assert fit.iterations == 3
        assert fit.converged is False

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            estimate_2pl([0.0, 1.0], [1], IrtOptions())


class TestCalibrateItems:
    def test_item_below_minimum_is_skipped(self):
        responses = _two_item_responses() + [
            ResponseRecord(
                item_id="Z",
                session_id=f"s{i:03d}",
                is_correct=True,
                response_time_ms=None,
                answered_at=ANSWERED,
            )
            for i in range(10)
        ]

        fitted, skipped = calibrate_items(responses, IrtOptions())

        assert "Z" not in fitted
        assert skipped == ["Z"]
        assert fitted["E"][1] == 40

    def test_easy_item_has_lower_difficulty(self):
        fitted, _ = calibrate_items(_two_item_responses(), IrtOptions())

        easy, hard = fitted["E"][0].params, fitted["H"][0].params
        assert easy.b < 0.0 < hard.b

    def test_rejects_non_2pl_model(self):
        with pytest.raises(ConfigurationError):
            calibrate_items([], IrtOptions(model=IrtModelKind.THREE_PL))


class TestRunIrt:
    def _seed_two_items(self, db_session, make_session, add_response, n=40):
        for i in range(n):
            session = make_session()
            add_response(session, "E", i < 36)
            add_response(session, "H", i < 4)
        db_session.commit()

    def test_persists_parameters_with_sentinels(
        self, db_session, make_session, add_response
    ):
        self._seed_two_items(db_session, make_session, add_response)

        summary = run_irt(db_session, TENANT, AnalyticsConfig())

        assert summary["item_count"] == 2
        assert summary["skipped"] == 0
        assert summary["reset"] == 0
        rows = list(db_session.scalars(select(ItemIrtParam)))
        assert {r.item_id for r in rows} == {"E", "H"}
        for r in rows:
            assert r.model == IrtModelKind.TWO_PL
            assert r.c_param == 0.0
            assert r.d_param == 1.0
            assert r.estimation_method == ESTIMATION_METHOD
            assert r.n == 40
            assert 0.2 <= r.a_param <= 3.0
            assert -4.0 <= r.b_param <= 4.0

    def test_item_with_ten_responses_gets_no_row(
        self, db_session, make_session, add_response, seed_item
    ):
        self._seed_two_items(db_session, make_session, add_response)
        seed_item("Z", total=10, correct=5)

        summary = run_irt(db_session, TENANT, AnalyticsConfig())

        assert summary["skipped"] == 1
        items = {
            r.item_id
            for r in db_session.scalars(
                select(ItemIrtParam).where(
                    ItemIrtParam.analysis_run_id == summary["analysis_run_id"]
                )
            )
        }
        assert "Z" not in items

    def test_rerun_reproduces_parameters(self, db_session, make_session, add_response):
        self._seed_two_items(db_session, make_session, add_response)

        first = run_irt(db_session, TENANT, AnalyticsConfig())
        second = run_irt(db_session, TENANT, AnalyticsConfig())

        def params(run_id):
            return {
                r.item_id: (r.a_param, r.b_param)
                for r in db_session.scalars(
                    select(ItemIrtParam).where(ItemIrtParam.analysis_run_id == run_id)
                )
            }

        assert params(first["analysis_run_id"]) == params(second["analysis_run_id"])

    def test_records_hyperparameters(self, db_session):
        config = AnalyticsConfig(irt=IrtOptions(learning_rate=0.1, l2=0.0))

        summary = run_irt(db_session, TENANT, config)

        run = db_session.get(AnalysisRun, summary["analysis_run_id"])
        assert run.params["model"] == "2PL"
        assert run.params["method"] == "gradient"
        assert run.params["learningRate"] == 0.1
        assert run.params["l2"] == 0.0
        assert run.params["minResponses"] == 30

    def test_non_2pl_model_aborts_before_run(self, db_session):
        config = AnalyticsConfig(irt=IrtOptions(model=IrtModelKind.FOUR_PL))

        with pytest.raises(ConfigurationError):
            run_irt(db_session, TENANT, config)

        assert list(db_session.scalars(select(AnalysisRun))) == []
