"""
joinpoint_trend.fitter
~~~~~~~~~~~~~~~~~~~~~~
Joinpoint regression: exhaustive search over observed time values for
the k breakpoints of a continuous piecewise-linear (or log-linear)
trend.

For every admissible set of joinpoints the model is linear in the basis
``{1, t, max(t - tau_1, 0), ..., max(t - tau_k, 0)}`` and is solved
directly; the best-scoring set wins.
"""

from __future__ import annotations

import logging
import math
from itertools import combinations
from typing import Iterator, Sequence

import numpy as np
import pwlf
import statsmodels.api as sm
from scipy import linalg

from .errors import InfeasibleRequest, InputError, NumericalFailure
from .types import (
    LINK_LOG,
    LINKS,
    METHOD_LEAST_SQUARES,
    METHOD_POISSON,
    FitRequest,
    FitResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_SEGMENT_LENGTH = 3


def design_matrix(
    times: Sequence[float], joinpoints: Sequence[float], origin: float = 0.0
) -> np.ndarray:
    """Columns ``1, t - origin, max(t - tau_j, 0)`` for each joinpoint."""
    t = np.asarray(times, dtype=float)
    columns = [np.ones_like(t), t - origin]
    columns.extend(np.maximum(t - tau, 0.0) for tau in joinpoints)
    return np.column_stack(columns)


def _gaussian_log_likelihood(ssr: float, n_data_points: int) -> float:
    if ssr <= 0:
        return math.inf
    return -0.5 * n_data_points * (
        math.log(2.0 * math.pi) + math.log(ssr / n_data_points) + 1.0
    )


class JoinpointFitter:
    """Fit a continuous piecewise-linear trend with exactly k joinpoints.

    Parameters
    ----------
    min_segment_length : int
        Minimum number of observations supporting each segment
        (default 3, at least 2).  Joinpoints are only placed on observed
        times that leave every segment this many points.
    """

    def __init__(self, min_segment_length: int = DEFAULT_MIN_SEGMENT_LENGTH) -> None:
        if min_segment_length < 2:
            raise ValueError(
                f"min_segment_length must be at least 2, got {min_segment_length}"
            )
        self.min_segment_length = int(min_segment_length)

    # ------------------------------------------------------------------
    # Static helpers
    # ------------------------------------------------------------------

    @staticmethod
    def n_parameters(n_segments: int) -> int:
        """Slopes and intercept per segment plus one location per joinpoint."""
        return (2 * n_segments) + (n_segments - 1)

    @staticmethod
    def calculate_bic(ssr: float, n_data_points: int, n_segments: int) -> float:
        """Bayesian Information Criterion for a least-squares fit.

        Parameters
        ----------
        ssr : float
            Sum of squared residuals from the fit.
        n_data_points : int
            Number of observations.
        n_segments : int
            Number of linear segments in the model.

        Returns
        -------
        float
            BIC score (lower is better); ``-inf`` for a perfect fit.
        """
        k = JoinpointFitter.n_parameters(n_segments)
        if ssr <= 0:
            return -math.inf
        return float(
            n_data_points * np.log(ssr / n_data_points) + k * np.log(n_data_points)
        )

    @staticmethod
    def calculate_likelihood_bic(
        log_likelihood: float, n_data_points: int, n_segments: int
    ) -> float:
        """BIC from a maximised log-likelihood (Poisson fits)."""
        k = JoinpointFitter.n_parameters(n_segments)
        return float(-2.0 * log_likelihood + k * np.log(n_data_points))

    # ------------------------------------------------------------------
    # Candidate enumeration
    # ------------------------------------------------------------------

    def required_observations(self, k: int) -> int:
        return (k + 1) * self.min_segment_length

    def candidate_indices(
        self, n_data_points: int, k: int
    ) -> Iterator[tuple[int, ...]]:
        """Yield admissible joinpoint index tuples in ascending lexicographic order.

        Segment *j* holds the observations from its left joinpoint
        (inclusive) up to the next one (exclusive), and each must hold at
        least ``min_segment_length`` of them.
        """
        if k == 0:
            yield ()
            return
        m = self.min_segment_length
        for combo in combinations(range(m, n_data_points - m + 1), k):
            if all(b - a >= m for a, b in zip(combo, combo[1:])):
                yield combo

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, request: FitRequest) -> None:
        """Raise :class:`InputError` or :class:`InfeasibleRequest` for a
        request that cannot be fitted."""
        times, values = request.times, request.values
        label = request.label

        if times.ndim != 1 or values.ndim != 1:
            raise InputError(f"{label}: times and values must be 1-D")
        if times.size != values.size:
            raise InputError(
                f"{label}: times ({times.size}) and values ({values.size}) "
                "must have the same length"
            )
        if times.size < 2:
            raise InputError(f"{label}: at least two observations are required")
        if not (np.all(np.isfinite(times)) and np.all(np.isfinite(values))):
            raise InputError(f"{label}: times and values must be finite")
        if np.any(np.diff(times) <= 0):
            raise InputError(f"{label}: times must be strictly increasing")

        k = request.k
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 0:
            raise InputError(f"{label}: k must be a non-negative integer, got {k!r}")
        if request.link not in LINKS:
            raise InputError(
                f"{label}: unknown link {request.link!r}, expected one of {LINKS}"
            )
        if request.link == LINK_LOG and np.any(values <= 0):
            raise InputError(f"{label}: the log link requires strictly positive values")

        exposure = request.exposure
        if exposure is not None:
            if request.link != LINK_LOG:
                raise InputError(f"{label}: an exposure offset requires the log link")
            if exposure.shape != times.shape:
                raise InputError(f"{label}: exposure must align with times")
            if not np.all(np.isfinite(exposure)) or np.any(exposure <= 0):
                raise InputError(f"{label}: exposure must be finite and positive")

        weights = request.weights
        if weights is not None:
            if exposure is not None:
                raise InputError(
                    f"{label}: weights apply to least-squares fits, not Poisson fits"
                )
            if weights.shape != times.shape:
                raise InputError(f"{label}: weights must align with times")
            if not np.all(np.isfinite(weights)) or np.any(weights <= 0):
                raise InputError(f"{label}: weights must be finite and positive")

        if k > 0 and times.size < self.required_observations(k):
            raise InfeasibleRequest(
                f"{label}: {k} joinpoint(s) with at least "
                f"{self.min_segment_length} points per segment need "
                f"{self.required_observations(k)} observations, got {times.size}"
            )

    @staticmethod
    def _check_design(design: np.ndarray, label: str) -> None:
        singular_values = linalg.svdvals(design)
        tol = singular_values.max() * max(design.shape) * np.finfo(float).eps
        if singular_values.min() <= tol:
            raise NumericalFailure(f"{label}: design matrix is rank deficient")

    # ------------------------------------------------------------------
    # Searches
    # ------------------------------------------------------------------

    def _search_least_squares(
        self, request: FitRequest, candidates: list[tuple[int, ...]]
    ) -> FitResult:
        """Minimise the (weighted) residual sum of squares over *candidates*."""
        times = np.array(request.times, dtype=float)
        response = np.array(request.values, dtype=float)
        if request.link == LINK_LOG:
            response = np.log(response)
        # pwlf scales rows by its weights, so pass the square roots.
        weights = None if request.weights is None else np.sqrt(request.weights)
        model = pwlf.PiecewiseLinFit(times, response, weights=weights)
        start, end = times[0], times[-1]

        def breaks_for(combo: tuple[int, ...]) -> np.ndarray:
            return np.concatenate(([start], times[list(combo)], [end]))

        best_ssr = math.inf
        best_combo: tuple[int, ...] | None = None
        for combo in candidates:
            ssr = model.fit_with_breaks(breaks_for(combo))
            if not np.isfinite(ssr):
                raise NumericalFailure(
                    f"{request.label}: least-squares solve failed at "
                    f"joinpoints {times[list(combo)].tolist()}"
                )
            if ssr < best_ssr:
                best_ssr, best_combo = ssr, combo

        joinpoints = times[list(best_combo)]
        ssr = float(model.fit_with_breaks(breaks_for(best_combo)))
        self._check_design(design_matrix(times, joinpoints, origin=start), request.label)

        beta = np.asarray(model.beta, dtype=float)
        slopes = np.cumsum(beta[1:])
        intercept = beta[0] - beta[1] * start

        n = times.size
        if n > model.n_parameters:
            with np.errstate(divide="ignore", invalid="ignore"):
                p_values = tuple(float(p) for p in model.p_values()[1:])
        else:
            p_values = tuple(math.nan for _ in slopes)

        return FitResult(
            intercept=float(intercept),
            slopes=tuple(float(s) for s in slopes),
            joinpoints=tuple(float(tau) for tau in joinpoints),
            residual_sum_of_squares=ssr,
            log_likelihood=_gaussian_log_likelihood(ssr, n),
            link=request.link,
            method=METHOD_LEAST_SQUARES,
            n_observations=n,
            time_range=(float(start), float(end)),
            p_values=p_values,
            bic=self.calculate_bic(ssr, n, len(slopes)),
            category=request.category,
        )

    def _fit_glm(self, request, counts, design, offset, joinpoints):
        model = sm.GLM(counts, design, family=sm.families.Poisson(), offset=offset)
        try:
            results = model.fit()
        except (np.linalg.LinAlgError, ValueError) as exc:
            raise NumericalFailure(
                f"{request.label}: Poisson fit failed at joinpoints "
                f"{joinpoints.tolist()}: {exc}"
            ) from exc
        if not results.converged or not np.isfinite(results.llf):
            raise NumericalFailure(
                f"{request.label}: Poisson fit did not converge at joinpoints "
                f"{joinpoints.tolist()}"
            )
        return results

    def _search_poisson(
        self, request: FitRequest, candidates: list[tuple[int, ...]]
    ) -> FitResult:
        """Maximise the Poisson likelihood of counts with a log-exposure offset."""
        times = np.array(request.times, dtype=float)
        counts = np.array(request.values, dtype=float)
        offset = np.log(np.array(request.exposure, dtype=float))
        start = times[0]

        best = None
        best_joinpoints = times[:0]
        for combo in candidates:
            joinpoints = times[list(combo)]
            design = design_matrix(times, joinpoints, origin=start)
            results = self._fit_glm(request, counts, design, offset, joinpoints)
            if best is None or results.llf > best.llf:
                best, best_joinpoints = results, joinpoints

        self._check_design(
            design_matrix(times, best_joinpoints, origin=start), request.label
        )

        params = np.asarray(best.params, dtype=float)
        slopes = np.cumsum(params[1:])
        intercept = params[0] - params[1] * start
        n = times.size
        llf = float(best.llf)

        return FitResult(
            intercept=float(intercept),
            slopes=tuple(float(s) for s in slopes),
            joinpoints=tuple(float(tau) for tau in best_joinpoints),
            residual_sum_of_squares=float(best.deviance),
            log_likelihood=llf,
            link=LINK_LOG,
            method=METHOD_POISSON,
            n_observations=n,
            time_range=(float(start), float(times[-1])),
            p_values=tuple(float(p) for p in np.asarray(best.pvalues)[1:]),
            bic=self.calculate_likelihood_bic(llf, n, len(slopes)),
            category=request.category,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fit(self, request: FitRequest) -> FitResult:
        """Return the best fit with exactly ``request.k`` joinpoints.

        Raises
        ------
        InputError
            Malformed or insufficient series.
        InfeasibleRequest
            ``k`` cannot meet the minimum segment length.
        NumericalFailure
            The inner solve was singular or did not converge.
        """
        self.validate(request)
        candidates = list(self.candidate_indices(request.n_observations, int(request.k)))
        if not candidates:
            raise InfeasibleRequest(
                f"{request.label}: no admissible joinpoint placement"
            )
        logger.debug(
            "%s: searching %d joinpoint placement(s)", request.label, len(candidates)
        )
        if request.exposure is not None:
            result = self._search_poisson(request, candidates)
        else:
            result = self._search_least_squares(request, candidates)
        logger.debug(
            "%s: joinpoints=%s slopes=%s", request.label, result.joinpoints, result.slopes
        )
        return result


def fit_joinpoints(
    request: FitRequest, min_segment_length: int = DEFAULT_MIN_SEGMENT_LENGTH
) -> FitResult:
    """Convenience wrapper around :meth:`JoinpointFitter.fit`."""
    return JoinpointFitter(min_segment_length=min_segment_length).fit(request)
