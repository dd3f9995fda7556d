"""
joinpoint_trend
~~~~~~~~~~~~~~~
Joinpoint regression for historical mortality-rate series: find the
years where a trend's slope changes, fit continuous piecewise
(log-)linear models, and describe them in plain English.

Two calling paths are supported:

Path 1 – a single fit with a fixed number of joinpoints:

    from joinpoint_trend import FitRequest, fit_joinpoints

    result = fit_joinpoints(
        FitRequest(times=years, values=deaths, exposure=population, k=2, link="log")
    )
    result.joinpoints, result.slopes, result.apc

Path 2 – compare 0..K joinpoints for one series and narrate the best:

    from joinpoint_trend import JoinpointExtractor, get_fit_narrative

    extractor = JoinpointExtractor(years, deaths, exposure=population, max_joinpoints=3)
    best = extractor.select_best_model()
    narrative = get_fit_narrative(result=best, metric="heart disease mortality")

Many (category, k) fits can be run at once with :func:`fit_batch`; the
:mod:`joinpoint_trend.data` and :mod:`joinpoint_trend.plotting` modules
handle CSV ingestion and charts.
"""

from .batch import BatchOutcome, fit_batch, joinpoint_table, outcomes_to_frame
from .errors import InfeasibleRequest, InputError, JoinpointError, NumericalFailure
from .extractor import JoinpointExtractor
from .fitter import JoinpointFitter, design_matrix, fit_joinpoints
from .narrative import consolidate_segments, get_fit_narrative, millify
from .types import LINK_IDENTITY, LINK_LOG, FitRequest, FitResult

__all__ = [
    "BatchOutcome",
    "FitRequest",
    "FitResult",
    "InfeasibleRequest",
    "InputError",
    "JoinpointError",
    "JoinpointExtractor",
    "JoinpointFitter",
    "LINK_IDENTITY",
    "LINK_LOG",
    "NumericalFailure",
    "consolidate_segments",
    "design_matrix",
    "fit_batch",
    "fit_joinpoints",
    "get_fit_narrative",
    "joinpoint_table",
    "millify",
    "outcomes_to_frame",
]

__version__ = "0.1.0"
