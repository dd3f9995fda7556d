"""
joinpoint_trend.batch
~~~~~~~~~~~~~~~~~~~~~
Run many independent (category, k) fits on a fixed-size worker pool.

A failure of one request is recorded on its own outcome and never
affects the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import pandas as pd
from joblib import Parallel, delayed

from .errors import JoinpointError
from .fitter import DEFAULT_MIN_SEGMENT_LENGTH, JoinpointFitter
from .types import FitRequest, FitResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOutcome:
    """Result or labelled error of one request in a batch."""

    category: Optional[str]
    k: int
    result: Optional[FitResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def _fit_one(fitter: JoinpointFitter, request: FitRequest) -> BatchOutcome:
    try:
        result = fitter.fit(request)
    except JoinpointError as exc:
        return BatchOutcome(
            category=request.category,
            k=int(request.k),
            error=str(exc),
            error_type=type(exc).__name__,
        )
    return BatchOutcome(category=request.category, k=int(request.k), result=result)


def fit_batch(
    requests: Iterable[FitRequest],
    min_segment_length: int = DEFAULT_MIN_SEGMENT_LENGTH,
    n_jobs: int = 1,
) -> list[BatchOutcome]:
    """Fit every request independently.

    Parameters
    ----------
    requests : iterable of FitRequest
        One request per (category, k).
    min_segment_length : int
        Forwarded to :class:`JoinpointFitter`.
    n_jobs : int
        Worker count for :class:`joblib.Parallel` (``-1`` = all cores).

    Returns
    -------
    list[BatchOutcome]
        One outcome per request, in input order.
    """
    requests = list(requests)
    fitter = JoinpointFitter(min_segment_length=min_segment_length)
    logger.info("Fitting %d request(s) with n_jobs=%s", len(requests), n_jobs)

    outcomes = Parallel(n_jobs=n_jobs)(
        delayed(_fit_one)(fitter, request) for request in requests
    )

    for outcome in outcomes:
        if not outcome.ok:
            logger.warning(
                "Fit failed for %s (k=%d): %s: %s",
                outcome.category,
                outcome.k,
                outcome.error_type,
                outcome.error,
            )
    return list(outcomes)


# ------------------------------------------------------------------
# Tabulation
# ------------------------------------------------------------------


def outcomes_to_frame(outcomes: Iterable[BatchOutcome]) -> pd.DataFrame:
    """One row per outcome with the fitted parameters or the error."""
    rows = []
    for outcome in outcomes:
        result = outcome.result
        rows.append(
            {
                "category": outcome.category,
                "k": outcome.k,
                "status": "ok" if outcome.ok else outcome.error_type,
                "error": outcome.error,
                "intercept": None if result is None else result.intercept,
                "slopes": None if result is None else list(result.slopes),
                "joinpoints": None if result is None else list(result.joinpoints),
                "residual_sum_of_squares": (
                    None if result is None else result.residual_sum_of_squares
                ),
                "log_likelihood": None if result is None else result.log_likelihood,
                "bic": None if result is None else result.bic,
                "aapc": None if result is None else result.aapc,
            }
        )
    columns = [
        "category", "k", "status", "error", "intercept", "slopes", "joinpoints",
        "residual_sum_of_squares", "log_likelihood", "bic", "aapc",
    ]
    return pd.DataFrame(rows, columns=columns)


def joinpoint_table(outcomes: Iterable[BatchOutcome], k: int) -> pd.DataFrame:
    """Joinpoints of every successful k-joinpoint fit.

    Rows are joinpoint numbers ``1..k``, columns are categories.
    """
    columns = {
        outcome.category: list(outcome.result.joinpoints)
        for outcome in outcomes
        if outcome.ok and outcome.k == k
    }
    frame = pd.DataFrame(columns, index=pd.RangeIndex(1, k + 1, name="joinpoint"))
    return frame


def best_outcomes(outcomes: Iterable[BatchOutcome]) -> dict[Optional[str], FitResult]:
    """BIC-best successful fit per category (smaller k wins ties)."""
    best: dict[Optional[str], FitResult] = {}
    for outcome in sorted(
        (o for o in outcomes if o.ok), key=lambda o: (str(o.category), o.k)
    ):
        current = best.get(outcome.category)
        if current is None or outcome.result.bic < current.bic:
            best[outcome.category] = outcome.result
    return best
