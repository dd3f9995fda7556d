"""
joinpoint_trend.types
~~~~~~~~~~~~~~~~~~~~~
Immutable request/result records exchanged with the joinpoint fitter.

A :class:`FitRequest` is built once per (category, k) pair by the data
layer; the fitter turns it into exactly one :class:`FitResult`, which
the narrative and plotting layers only ever read.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import InputError

LINK_IDENTITY = "identity"
LINK_LOG = "log"
LINKS = (LINK_IDENTITY, LINK_LOG)

METHOD_LEAST_SQUARES = "least_squares"
METHOD_POISSON = "poisson_mle"


def _as_readonly_array(name: str, raw) -> np.ndarray:
    try:
        arr = np.array(raw, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{name} must be numeric: {exc}") from exc
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class FitRequest:
    """One series to fit with a fixed number of joinpoints.

    Parameters
    ----------
    times : array-like
        Strictly increasing 1-D time values (e.g. years).
    values : array-like
        Response aligned with *times*: a rate, or a count when
        *exposure* is given.
    k : int
        Number of joinpoints to place.
    link : {"identity", "log"}
        ``"log"`` fits ``ln(values)``, or a Poisson model of counts
        against ``ln(exposure)`` when *exposure* is supplied.
    exposure : array-like, optional
        Population at risk for each time (log link only).
    weights : array-like, optional
        Per-observation least-squares weights.
    category : str, optional
        Series label, carried through to the result.
    """

    times: np.ndarray
    values: np.ndarray
    k: int = 0
    link: str = LINK_IDENTITY
    exposure: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    category: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("times", "values", "exposure", "weights"):
            raw = getattr(self, name)
            if raw is not None:
                object.__setattr__(self, name, _as_readonly_array(name, raw))

    @property
    def n_observations(self) -> int:
        return int(self.times.size)

    @property
    def label(self) -> str:
        """Human-readable ``category/k`` tag used in log and error messages."""
        return f"{self.category or '<series>'} (k={self.k})"


@dataclass(frozen=True)
class FitResult:
    """Best continuous piecewise-linear fit for one :class:`FitRequest`.

    The linear predictor is::

        eta(t) = intercept + slopes[0] * t + sum_j delta_j * max(t - joinpoints[j], 0)

    where ``delta_j = slopes[j + 1] - slopes[j]``.  Under the log link
    ``eta`` is the log of the rate (per unit of exposure when counts were
    fitted).
    """

    intercept: float
    slopes: tuple[float, ...]
    joinpoints: tuple[float, ...]
    residual_sum_of_squares: float
    log_likelihood: float
    link: str = LINK_IDENTITY
    method: str = METHOD_LEAST_SQUARES
    n_observations: int = 0
    time_range: tuple[float, float] = (math.nan, math.nan)
    p_values: tuple[float, ...] = ()
    bic: float = math.nan
    category: Optional[str] = None

    # ------------------------------------------------------------------
    # Derived parameters
    # ------------------------------------------------------------------

    @property
    def k(self) -> int:
        return len(self.joinpoints)

    @property
    def slope_changes(self) -> tuple[float, ...]:
        """Change in slope introduced at each joinpoint."""
        return tuple(
            self.slopes[i + 1] - self.slopes[i] for i in range(len(self.joinpoints))
        )

    @property
    def segment_bounds(self) -> tuple[float, ...]:
        start, end = self.time_range
        return (start, *self.joinpoints, end)

    @property
    def segment_lines(self) -> list[tuple[float, float]]:
        """``(intercept, slope)`` of the straight line carrying each segment."""
        lines = [(self.intercept, self.slopes[0])]
        for tau, delta, slope in zip(
            self.joinpoints, self.slope_changes, self.slopes[1:]
        ):
            prev_intercept = lines[-1][0]
            lines.append((prev_intercept - delta * tau, slope))
        return lines

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def predict(self, t) -> np.ndarray:
        """Linear predictor at *t* (log scale under the log link)."""
        t = np.asarray(t, dtype=float)
        eta = self.intercept + self.slopes[0] * t
        for tau, delta in zip(self.joinpoints, self.slope_changes):
            eta = eta + delta * np.maximum(t - tau, 0.0)
        return eta

    def fitted_response(self, t) -> np.ndarray:
        """Fitted value at *t* on the response scale."""
        eta = self.predict(t)
        if self.link == LINK_LOG:
            return np.exp(eta)
        return eta

    # ------------------------------------------------------------------
    # Trend summaries
    # ------------------------------------------------------------------

    @property
    def apc(self) -> Optional[tuple[float, ...]]:
        """Annual percent change per segment, or *None* for the identity link."""
        if self.link != LINK_LOG:
            return None
        return tuple(100.0 * math.expm1(s) for s in self.slopes)

    @property
    def average_slope(self) -> float:
        """Segment slopes averaged with weights equal to segment durations."""
        bounds = self.segment_bounds
        durations = np.diff(bounds)
        total = durations.sum()
        if not np.isfinite(total) or total <= 0:
            return float(self.slopes[0])
        return float(np.dot(durations, self.slopes) / total)

    @property
    def aapc(self) -> Optional[float]:
        """Average annual percent change over the whole range (log link only)."""
        if self.link != LINK_LOG:
            return None
        return 100.0 * math.expm1(self.average_slope)

    def segments(self) -> list[dict]:
        """Per-segment statistics.

        Returns
        -------
        list[dict]
            One dict per segment with keys ``start_year``, ``end_year``,
            ``start_value``, ``end_value`` (fitted, response scale),
            ``slope`` and ``apc`` (*None* for the identity link).
        """
        bounds = self.segment_bounds
        apc = self.apc
        values = self.fitted_response(np.asarray(bounds, dtype=float))
        segments: list[dict] = []
        for i, slope in enumerate(self.slopes):
            segments.append(
                {
                    "start_year": float(bounds[i]),
                    "end_year": float(bounds[i + 1]),
                    "start_value": float(values[i]),
                    "end_value": float(values[i + 1]),
                    "slope": float(slope),
                    "apc": None if apc is None else apc[i],
                }
            )
        return segments
