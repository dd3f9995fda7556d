"""
joinpoint_trend.narrative
~~~~~~~~~~~~~~~~~~~~~~~~~
Convert joinpoint fits into human-readable text narratives.

Two calling paths are supported:

  Path 1 – precomputed:
      get_fit_narrative(result=fit, metric="heart disease mortality")
      get_fit_narrative(segments=fit.segments(), metric="heart disease mortality")

  Path 2 – raw data (models for k = 0..3 are fitted and the BIC-best one
  is narrated):
      get_fit_narrative(x=years, y=deaths, exposure=population,
                        metric="heart disease mortality")
"""

from __future__ import annotations

import math
from typing import Optional

from .types import FitResult

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------

_MILLNAMES = ["", " K", " M", " B", " T"]

_TRANSITION_PREFIXES = [
    "Trend then shifted,",
    "This trajectory pivoted again,",
    "Then,",
]


# ------------------------------------------------------------------
# Formatting helpers
# ------------------------------------------------------------------


def millify(n: float) -> str:
    """Format a large number into a human-readable string with suffix.

    Examples
    --------
    >>> millify(1_500_000)
    '1.50 M'
    >>> millify(750)
    '750.00'
    """
    n = float(n)
    idx = max(
        0,
        min(
            len(_MILLNAMES) - 1,
            int(math.floor(0 if n == 0 else math.log10(abs(n)) / 3)),
        ),
    )
    return f"{n / 10 ** (3 * idx):.2f}{_MILLNAMES[idx]}"


def _rate_phrase(seg: dict) -> str:
    if seg.get("apc") is None:
        return f"{seg['slope']:+.2f} per year"
    return f"{seg['apc']:+.2f}% per year"


# ------------------------------------------------------------------
# Segment consolidation
# ------------------------------------------------------------------


def consolidate_segments(segments: list[dict]) -> list[dict]:
    """Merge consecutive segments that share the same slope direction.

    Two segments are merged when both slopes are non-negative or both
    are negative.  The merged segment spans from the first ``start_year``
    to the last ``end_year``.  Its slope is recomputed over the combined
    span: rise-over-run for identity-link segments, log rise-over-run
    (with a matching ``apc``) for log-link segments.

    Parameters
    ----------
    segments : list[dict]
        Segment list as returned by :meth:`FitResult.segments`.

    Returns
    -------
    list[dict]
        Consolidated segment list (may be shorter than *segments*).
    """
    if not segments:
        return []

    # Copy so we don't mutate the caller's data
    consolidated = [dict(segments[0])]

    for seg in segments[1:]:
        last = consolidated[-1]
        same_direction = (last["slope"] >= 0 and seg["slope"] >= 0) or (
            last["slope"] < 0 and seg["slope"] < 0
        )
        if not same_direction:
            consolidated.append(dict(seg))
            continue

        last["end_year"] = seg["end_year"]
        last["end_value"] = seg["end_value"]
        duration = last["end_year"] - last["start_year"]
        if duration == 0:
            last["slope"] = 0.0
        elif last.get("apc") is not None:
            last["slope"] = (
                math.log(last["end_value"]) - math.log(last["start_value"])
            ) / duration
        else:
            last["slope"] = (last["end_value"] - last["start_value"]) / duration
        if last.get("apc") is not None:
            last["apc"] = 100.0 * math.expm1(last["slope"])

    return consolidated


# ------------------------------------------------------------------
# Narrative generation
# ------------------------------------------------------------------


def get_fit_narrative(
    result: Optional[FitResult] = None,
    segments: Optional[list[dict]] = None,
    metric: str = "mortality rate",
    x=None,
    y=None,
    exposure=None,
    extractor_kwargs: Optional[dict] = None,
) -> str:
    """Generate a plain-English narrative from a joinpoint fit.

    Parameters
    ----------
    result : FitResult, optional
        A fitted model (Path 1).
    segments : list[dict], optional
        Precomputed segments from :meth:`FitResult.segments` (Path 1).
    metric : str
        Human-readable metric label used in the generated text.
    x, y : array-like, optional
        Raw times and responses (Path 2).
    exposure : array-like, optional
        Population at risk for Path 2 count data.
    extractor_kwargs : dict, optional
        Extra keyword arguments forwarded to :class:`JoinpointExtractor`
        when using Path 2 (e.g. ``{"max_joinpoints": 2}``).

    Returns
    -------
    str
        A multi-sentence narrative string.

    Raises
    ------
    ValueError
        If none of *result*, *segments* or (*x*, *y*) is provided.
    """
    # --- Path 2: raw data supplied → fit first ---
    if x is not None and y is not None:
        from .extractor import JoinpointExtractor

        extractor = JoinpointExtractor(x, y, exposure=exposure, **(extractor_kwargs or {}))
        best = extractor.select_best_model()
        segments = [] if best is None else best.segments()

    elif result is not None:
        segments = result.segments()

    # --- Validate inputs ---
    elif segments is None:
        raise ValueError(
            "Provide either (x, y) for raw data, "
            "or a fit result / segments for precomputed data."
        )

    return _build_narrative(segments, metric)


# ------------------------------------------------------------------
# Internal narrative builder (pure logic, no fitting)
# ------------------------------------------------------------------


def _build_narrative(segments: list[dict], metric: str) -> str:
    """Core narrative logic shared by both calling paths."""
    segments = consolidate_segments(segments)

    if len(segments) == 0:
        return f"No trend could be fitted for the {metric}."

    # --- Single monotone trend ---
    if len(segments) == 1:
        seg = segments[0]
        total_change = seg["end_value"] - seg["start_value"]
        direction = "increased" if total_change > 0 else "decreased"
        if seg.get("apc") is not None:
            amount = f"by {abs(seg['apc']):.2f}% per year"
        else:
            pct_change = (
                (total_change / seg["start_value"]) * 100
                if seg["start_value"] != 0
                else 0.0
            )
            amount = f"by {millify(abs(total_change))} ({pct_change:+.2f}%)"
        return (
            f"between {int(seg['start_year'])} and {int(seg['end_year'])}, "
            f"the {metric} {direction} {amount}, "
            f"maintaining a consistent trajectory."
        )

    # --- Multi-segment narrative ---
    narrative: list[str] = []
    for i, seg in enumerate(segments):
        direction = "an upward" if seg["slope"] > 0 else "a downward"

        if i == 0:
            narrative.append(
                f"From {int(seg['start_year'])} to {int(seg['end_year'])}, "
                f"the {metric} showed {direction} trend ({_rate_phrase(seg)})."
            )
            continue

        prev_slope = segments[i - 1]["slope"]
        prefix = _TRANSITION_PREFIXES[min(i - 1, len(_TRANSITION_PREFIXES) - 1)]

        if prev_slope > 0 and seg["slope"] < 0:
            transition = (
                f"reaching a peak in {int(seg['start_year'])} "
                f"before reversing into a decline ({_rate_phrase(seg)})."
            )
        elif prev_slope < 0 and seg["slope"] > 0:
            transition = (
                f"hitting a low in {int(seg['start_year'])} "
                f"followed by a recovery ({_rate_phrase(seg)})."
            )
        else:
            transition = (
                f"continuing its {direction} path through {int(seg['end_year'])} "
                f"({_rate_phrase(seg)})."
            )

        narrative.append(f"{prefix} {transition}")

    return " ".join(narrative)
