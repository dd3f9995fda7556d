"""
joinpoint_trend.data
~~~~~~~~~~~~~~~~~~~~
Load long-format mortality tables, join population denominators and
turn each cause of death into :class:`FitRequest` objects.

Expected inputs (as in the CDC NCHS historical age-adjusted death rate
tables):

* observations: ``year, asdr, cod`` rows, rates per 100,000
* population: ``year, pop`` rows
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from .errors import InputError
from .types import LINK_LOG, METHOD_POISSON, FitRequest, FitResult

logger = logging.getLogger(__name__)

RATE_SCALE = 100_000

CATEGORY_ALIASES = {
    "Accidents": "accidents",
    "Cancer": "cancer",
    "Heart Disease": "heart",
    "Influenza and Pneumonia": "pi",
    "Stroke": "stroke",
    "Tuberculosis": "tb",
}


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------


def _require_columns(frame: pd.DataFrame, columns: Iterable[str], source) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise InputError(f"{source}: missing column(s) {missing}")


def load_observations(
    source,
    time_col: str = "year",
    value_col: str = "asdr",
    category_col: str = "cod",
) -> pd.DataFrame:
    """Read a long table of (time, value, category) observations.

    Parameters
    ----------
    source : str, path or DataFrame
        CSV location, or an already-loaded frame.

    Returns
    -------
    pandas.DataFrame
        Columns ``time``, ``value``, ``category`` sorted by category then
        time.
    """
    frame = source.copy() if isinstance(source, pd.DataFrame) else pd.read_csv(source)
    _require_columns(frame, (time_col, value_col, category_col), source)

    frame = frame.rename(
        columns={time_col: "time", value_col: "value", category_col: "category"}
    )[["time", "value", "category"]].copy()
    frame["category"] = frame["category"].astype(str)
    frame["time"] = frame["time"].astype(float)

    duplicated = frame.duplicated(subset=["category", "time"])
    if duplicated.any():
        first = frame.loc[duplicated].iloc[0]
        raise InputError(
            f"duplicate observation for category {first['category']!r} "
            f"at time {first['time']}"
        )

    frame = frame.sort_values(["category", "time"]).reset_index(drop=True)
    logger.info(
        "Loaded %d observations across %d categories",
        len(frame),
        frame["category"].nunique(),
    )
    return frame


def load_population(
    source, time_col: str = "year", population_col: str = "pop"
) -> pd.DataFrame:
    """Read a (time, population) table."""
    frame = source.copy() if isinstance(source, pd.DataFrame) else pd.read_csv(source)
    _require_columns(frame, (time_col, population_col), source)
    frame = frame.rename(columns={time_col: "time", population_col: "population"})
    frame["time"] = frame["time"].astype(float)
    if frame["time"].duplicated().any():
        raise InputError("population table has duplicate times")
    return frame[["time", "population"]].sort_values("time").reset_index(drop=True)


# ------------------------------------------------------------------
# Reshaping
# ------------------------------------------------------------------


def normalize_categories(
    frame: pd.DataFrame, aliases: Mapping[str, str] = CATEGORY_ALIASES
) -> pd.DataFrame:
    """Map verbose category labels to short names; unknown labels pass through."""
    frame = frame.copy()
    frame["category"] = frame["category"].map(lambda c: aliases.get(c, c))
    return frame


def attach_counts(
    observations: pd.DataFrame,
    population: pd.DataFrame,
    rate_scale: float = RATE_SCALE,
) -> pd.DataFrame:
    """Join population by time and back-calculate counts from rates.

    ``count = value / rate_scale * population``
    """
    merged = observations.merge(population, on="time", how="left")
    missing = merged["population"].isna()
    if missing.any():
        times = sorted(merged.loc[missing, "time"].unique().tolist())
        raise InputError(f"no population for time(s) {times}")
    merged["count"] = merged["value"] / rate_scale * merged["population"]
    return merged


def to_wide(frame: pd.DataFrame) -> pd.DataFrame:
    """Pivot to one row per time with ``{category}.r`` / ``{category}.n`` columns.

    A ``pop`` column is included when counts have been attached.
    """
    wide = frame.pivot(index="time", columns="category", values="value")
    wide.columns = [f"{c}.r" for c in wide.columns]
    if "count" in frame.columns:
        counts = frame.pivot(index="time", columns="category", values="count")
        counts.columns = [f"{c}.n" for c in counts.columns]
        wide = wide.join(counts)
        population = frame.drop_duplicates("time").set_index("time")["population"]
        wide["pop"] = population
    return wide.reset_index()


# ------------------------------------------------------------------
# Fit requests
# ------------------------------------------------------------------


def iter_series(frame: pd.DataFrame):
    """Yield ``(category, sub_frame)`` sorted by time."""
    for category, group in frame.groupby("category", sort=True):
        yield category, group.sort_values("time")


def build_requests(
    frame: pd.DataFrame,
    ks: Iterable[int],
    link: str = LINK_LOG,
    use_counts: bool = True,
) -> list[FitRequest]:
    """One :class:`FitRequest` per (category, k).

    With ``use_counts`` the counts and population from
    :func:`attach_counts` are fitted (Poisson); otherwise the rates are.
    """
    ks = list(ks)
    if use_counts and "count" not in frame.columns:
        raise InputError("use_counts requires attach_counts() to be applied first")

    requests: list[FitRequest] = []
    for category, group in iter_series(frame):
        times = group["time"].to_numpy(dtype=float)
        if use_counts:
            values = group["count"].to_numpy(dtype=float)
            exposure: Optional[np.ndarray] = group["population"].to_numpy(dtype=float)
        else:
            values = group["value"].to_numpy(dtype=float)
            exposure = None
        for k in ks:
            requests.append(
                FitRequest(
                    times=times,
                    values=values,
                    k=k,
                    link=link,
                    exposure=exposure,
                    category=category,
                )
            )
    return requests


def fitted_table(
    frame: pd.DataFrame,
    results: Iterable[FitResult],
    rate_scale: float = RATE_SCALE,
) -> pd.DataFrame:
    """Wide table of observations next to every model's fitted values.

    Columns are ``time``, ``{category}.obs`` and ``{category}.{k}``.
    Fits of counts (Poisson) are rescaled to rates per *rate_scale* so
    they sit on the observation scale.
    """
    times = np.sort(frame["time"].unique()).astype(float)
    table = pd.DataFrame({"time": times})
    for category, group in iter_series(frame):
        observed = group.set_index("time")["value"]
        table[f"{category}.obs"] = observed.reindex(times).to_numpy()

    for result in results:
        fitted = result.fitted_response(times)
        if result.method == METHOD_POISSON:
            fitted = fitted * rate_scale
        table[f"{result.category}.{result.k}"] = fitted
    return table
