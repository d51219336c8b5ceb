"""
Two-parameter logistic (2PL) IRT estimation by regularized gradient ascent.

Model:
    P(correct | theta) = sigmoid(a * (theta - b))

Each item is fitted independently against the session theta proxies from
session_scoring (no EM, no joint ability estimation). Starting from the
prior (a=1, b=0), every iteration accumulates the log-likelihood gradient
over all (theta, y) pairs for the item:

    grad_a = sum((y - P) * (theta - b)) - l2 * a
    grad_b = sum((y - P) * (-a))        - l2 * b
    a += lr * grad_a / n
    b += lr * grad_b / n

then clamps a and b to their bounds. Iteration stops when |step_a| + |step_b|
falls below the tolerance or the iteration cap is reached. A non-finite
a or b resets the item to the prior and stops its fit, so persisted
parameters are always finite and in bounds.

The fit is a pure function of (thetas, outcomes, options) evaluated in a
fixed order, so identical inputs reproduce bit-identical (a, b).
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TypedDict, Union

import numpy as np
from sqlalchemy.orm import Session

from edumeter_analytics.core.config import AnalyticsConfig, IrtOptions
from edumeter_analytics.core.datetime_utils import window_start
from edumeter_analytics.core.db_error_handling import handle_db_error
from edumeter_analytics.core.errors import ConfigurationError
from edumeter_analytics.core.response_store import ResponseRecord, fetch_responses
from edumeter_analytics.core.run_ledger import (
    create_run,
    dataset_fingerprint,
    persist_rows,
)
from edumeter_analytics.core.session_scoring import score_sessions, theta_by_session
from edumeter_analytics.domain_types import IrtModelKind, RunType
from edumeter_analytics.models.models import ItemIrtParam

logger = logging.getLogger(__name__)

ESTIMATION_METHOD = "gradient_2pl"

# Sigmoid saturates exactly outside [-35, 35]; exp(35) is ~1.6e15, so the
# unclamped value is already within 1e-15 of the bound.
SIGMOID_SATURATION = 35.0

PRIOR_A = 1.0
PRIOR_B = 0.0


@dataclass(frozen=True)
class ItemParameters:
    """
    Item parameters tagged with their model family.

    Slots a model does not estimate carry fixed sentinels: guessing c = 0
    and upper asymptote d = 1 under 2PL.
    """

    model: IrtModelKind
    a: float
    b: float
    c: float = 0.0
    d: float = 1.0

    @classmethod
    def two_pl(cls, a: float, b: float) -> "ItemParameters":
        return cls(model=IrtModelKind.TWO_PL, a=a, b=b, c=0.0, d=1.0)


@dataclass(frozen=True)
class FitResult:
    """Outcome of fitting one item."""

    params: ItemParameters
    iterations: int
    converged: bool
    reset: bool


class IrtJobSummary(TypedDict):
    """Summary statistics from an IRT run."""

    analysis_run_id: str
    item_count: int
    skipped: int
    reset: int


def sigmoid(z: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Logistic function with explicit saturation at +/-35.

    Accepts a scalar or a numpy array; the fit evaluates it over all of an
    item's (theta, y) pairs at once. Scalars come back as float.
    """
    z = np.asarray(z, dtype=np.float64)
    clipped = np.clip(z, -SIGMOID_SATURATION, SIGMOID_SATURATION)
    p = 1.0 / (1.0 + np.exp(-clipped))
    p = np.where(z > SIGMOID_SATURATION, 1.0, p)
    p = np.where(z < -SIGMOID_SATURATION, 0.0, p)
    return float(p) if p.ndim == 0 else p


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _require_two_pl(options: IrtOptions) -> None:
    if options.model != IrtModelKind.TWO_PL:
        raise ConfigurationError(
            f"IRT model {options.model.value} is not supported; only 2PL is estimated",
            context={"model": options.model.value},
        )


def estimate_2pl(
    thetas: List[float], outcomes: List[int], options: IrtOptions
) -> FitResult:
    """
    Fit 2PL parameters for one item.

    Args:
        thetas: Theta proxy of the session behind each response.
        outcomes: 1 for correct, 0 otherwise (same order as thetas).
        options: Learning rate, L2 shrinkage, tolerance, iteration cap, bounds.

    Returns:
        FitResult with finite, in-bounds parameters.
    """
    if len(thetas) != len(outcomes):
        raise ValueError("thetas and outcomes must have equal length")

    theta = np.asarray(thetas, dtype=np.float64)
    y = np.asarray(outcomes, dtype=np.float64)
    n = len(theta) or 1

    a, b = PRIOR_A, PRIOR_B
    converged = False
    reset = False
    iterations = 0

    # Overflow inside a diverging fit is handled by the finiteness check
    with np.errstate(over="ignore", invalid="ignore"):
        for iterations in range(1, options.max_iters + 1):
            residual = y - sigmoid(a * (theta - b))
            grad_a = float(np.sum(residual * (theta - b))) - options.l2 * a
            grad_b = float(np.sum(residual * -a)) - options.l2 * b

            step_a = options.learning_rate * grad_a / n
            step_b = options.learning_rate * grad_b / n
            a += step_a
            b += step_b

            if not (math.isfinite(a) and math.isfinite(b)):
                a, b = PRIOR_A, PRIOR_B
                reset = True
                break

            a = _clamp(a, options.min_a, options.max_a)
            b = _clamp(b, options.min_b, options.max_b)

            if abs(step_a) + abs(step_b) < options.tolerance:
                converged = True
                break

    return FitResult(
        params=ItemParameters.two_pl(a, b),
        iterations=iterations,
        converged=converged,
        reset=reset,
    )


def build_item_data(
    responses: List[ResponseRecord], thetas: Dict[str, float]
) -> Dict[str, Tuple[List[float], List[int]]]:
    """Group responses into per-item (thetas, outcomes) in response order."""
    grouped: Dict[str, Tuple[List[float], List[int]]] = {}
    for r in responses:
        item_thetas, item_outcomes = grouped.setdefault(r.item_id, ([], []))
        item_thetas.append(thetas.get(r.session_id, 0.0))
        item_outcomes.append(1 if r.is_correct else 0)
    return grouped


def calibrate_items(
    responses: List[ResponseRecord], options: IrtOptions
) -> Tuple[Dict[str, Tuple[FitResult, int]], List[str]]:
    """
    Fit every item with at least options.min_responses responses.

    Returns:
        ({item_id: (FitResult, n)}, skipped_item_ids)

    Raises:
        ConfigurationError: If a model other than 2PL is requested.
    """
    _require_two_pl(options)

    thetas = theta_by_session(score_sessions(responses))
    fitted: Dict[str, Tuple[FitResult, int]] = {}
    skipped: List[str] = []

    for item_id, (item_thetas, item_outcomes) in build_item_data(responses, thetas).items():
        if len(item_thetas) < options.min_responses:
            skipped.append(item_id)
            continue
        fit = estimate_2pl(item_thetas, item_outcomes, options)
        if fit.reset:
            logger.warning(
                f"IRT fit for item {item_id} diverged after {fit.iterations} "
                "iterations; reset to prior (a=1, b=0)",
                extra={"item_id": item_id},
            )
        fitted[item_id] = (fit, len(item_thetas))

    return fitted, skipped


def run_irt(
    db: Session,
    tenant_id: str,
    config: AnalyticsConfig,
    batch_size: Optional[int] = None,
) -> IrtJobSummary:
    """
    Run a 2PL IRT calibration over the configured window.

    Items below the minimum response count are skipped for this run (no row,
    no error). Every other item gets exactly one ItemIrtParam row.

    Raises:
        ConfigurationError: If the configured model is not 2PL.
        DatabaseOperationError: If a read or write fails.
    """
    options = config.irt
    _require_two_pl(options)

    since = window_start(config.window_days)

    with handle_db_error(db, "fetch responses for IRT"):
        responses = fetch_responses(db, tenant_id, since)

    params = {"model": options.model.value, "method": "gradient", "windowDays": config.window_days}
    params.update(options.to_params())
    run = create_run(
        db,
        tenant_id,
        RunType.IRT,
        params=params,
        data_range={"since": since.isoformat()},
        dataset_hash=dataset_fingerprint(len(responses), since),
        software_version=config.software_version,
    )

    fitted, skipped = calibrate_items(responses, options)
    rows = [
        ItemIrtParam(
            tenant_id=tenant_id,
            item_id=item_id,
            analysis_run_id=run.id,
            model=fit.params.model,
            a_param=fit.params.a,
            b_param=fit.params.b,
            c_param=fit.params.c,
            d_param=fit.params.d,
            estimation_method=ESTIMATION_METHOD,
            n=n,
            created_at=run.created_at,
        )
        for item_id, (fit, n) in fitted.items()
    ]
    persist_rows(
        db,
        rows,
        "insert IRT parameters",
        batch_size=batch_size or config.commit_batch_size,
    )

    reset_count = sum(1 for fit, _ in fitted.values() if fit.reset)
    if rows:
        logger.info(
            f"IRT run {run.id} complete: {len(rows)} calibrated, {len(skipped)} skipped "
            f"(< {options.min_responses} responses), {reset_count} reset. "
            f"Mean a={np.mean([r.a_param for r in rows]):.2f}, "
            f"Mean b={np.mean([r.b_param for r in rows]):.2f}"
        )
    else:
        logger.warning(
            f"IRT run {run.id}: no items met the minimum of "
            f"{options.min_responses} responses ({len(skipped)} skipped)"
        )

    return {
        "analysis_run_id": run.id,
        "item_count": len(rows),
        "skipped": len(skipped),
        "reset": reset_count,
    }
