"""
joinpoint_trend.plotting
~~~~~~~~~~~~~~~~~~~~~~~~
Overlay fitted joinpoint models and joinpoint markers on a scatter of
the observations.  Every function draws on the given ``Axes`` (or a new
one) and returns it; fit results are only read.
"""

from __future__ import annotations

from typing import Mapping, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .types import FitResult

# One colour per joinpoint count, k = 0..3.
K_COLORS = ["#c91e63", "#9c27b0", "#ee5722", "#00bcd4"]
JOINPOINT_COLORS = ["#5c6bc0", "#26c6da", "#ffa726"]
# One colour per category in the combined best-fit chart.
CATEGORY_COLORS = ["#b8396b", "#ffd1d7", "#fff5cc", "#76bae0", "#b28f81", "#54483e"]


def _color(palette: list[str], i: int) -> str:
    return palette[i % len(palette)]


def _axes(ax):
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 5))
    return ax


def plot_observations(
    frame: pd.DataFrame,
    ax=None,
    log_scale: bool = False,
    ylabel: str = "Age-Adjusted Death Rate (per 100,000)",
):
    """Scatter every category of a long ``time, value, category`` frame."""
    ax = _axes(ax)
    for category, group in frame.groupby("category", sort=True):
        ax.scatter(group["time"], group["value"], s=12, alpha=0.6, label=category)
    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Year")
    ax.set_ylabel(ylabel)
    ax.legend(loc="best", fontsize="small")
    return ax


def plot_model_fits(
    times,
    values,
    results: Mapping[int, FitResult],
    best_k: Optional[int] = None,
    scale: float = 1.0,
    ax=None,
    title: Optional[str] = None,
    log_scale: bool = False,
):
    """Observations plus one fitted curve per k.

    The *best_k* model is drawn solid and thicker; the others dashed.
    Fitted values are multiplied by *scale* (e.g. 100,000 to show a
    Poisson fit as a rate per 100,000).
    """
    ax = _axes(ax)
    times = np.asarray(times, dtype=float)
    ax.scatter(times, values, s=18, facecolors="none", edgecolors="darkgrey")
    for k in sorted(results):
        fitted = results[k].fitted_response(times) * scale
        is_best = k == best_k
        ax.plot(
            times,
            fitted,
            color=_color(K_COLORS, k),
            linewidth=1.5 if is_best else 1.1,
            linestyle="-" if is_best else "--",
            label=f"{k} joinpoint(s)" + (" (best)" if is_best else ""),
        )
    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Year")
    if title:
        ax.set_title(title)
    ax.legend(loc="best", fontsize="small")
    return ax


def plot_joinpoints(
    times,
    values,
    results: Mapping[int, FitResult],
    ax=None,
    title: Optional[str] = None,
    log_scale: bool = True,
):
    """Observations with a vertical line at every joinpoint, one colour per k."""
    ax = _axes(ax)
    ax.scatter(times, values, s=18, color="darkgrey", edgecolors="black", alpha=0.6)
    for k in sorted(results):
        if k == 0:
            continue
        for i, tau in enumerate(results[k].joinpoints):
            ax.axvline(
                tau,
                color=_color(JOINPOINT_COLORS, k - 1),
                linewidth=1.2,
                label=f"{k} joinpoint(s)" if i == 0 else None,
            )
    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Year")
    if title:
        ax.set_title(title)
    if any(results[k].joinpoints for k in results):
        ax.legend(loc="best", fontsize="small")
    return ax


def plot_best_fits(
    frame: pd.DataFrame,
    best: Mapping[str, FitResult],
    scale: float = 1.0,
    ax=None,
    title: str = "Major Causes of Death",
    ylabel: str = "Age-Adjusted Mortality Rate (per 100,000)",
):
    """Every category's observations with its best-fit curve on one chart.

    *frame* is the long ``time, value, category`` table and *best* maps
    each category to its selected fit.  Categories without a fit are
    drawn as observations only.
    """
    ax = _axes(ax)
    for i, (category, group) in enumerate(frame.groupby("category", sort=True)):
        times = group["time"].to_numpy(dtype=float)
        ax.scatter(times, group["value"], s=18, facecolors="none", edgecolors="#5d6d7e")
        if category not in best:
            continue
        result = best[category]
        ax.plot(
            times,
            result.fitted_response(times) * scale,
            color=_color(CATEGORY_COLORS, i),
            linewidth=1.5,
            label=f"{category} ({result.k} joinpoint(s))",
        )
    ax.set_xlabel("Year")
    ax.set_ylabel(ylabel)
    if len(frame):
        ax.set_title(f"{title}, {int(frame['time'].min())}-{int(frame['time'].max())}")
    else:
        ax.set_title(title)
    if best:
        ax.legend(loc="best", fontsize="small")
    return ax
