"""
joinpoint_trend.cli
~~~~~~~~~~~~~~~~~~~
``joinpoint-trend`` command: load a mortality table, fit 0..K joinpoint
models per cause of death, and report joinpoints, BIC-best models and
narratives.

Example::

    joinpoint-trend "mortality data.csv" --population "usa pop.csv" \\
        --max-joinpoints 3 --output fits.csv --plot-dir plots
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .batch import best_outcomes, fit_batch, joinpoint_table, outcomes_to_frame
from .data import (
    RATE_SCALE,
    attach_counts,
    build_requests,
    fitted_table,
    iter_series,
    load_observations,
    load_population,
    normalize_categories,
)
from .errors import InputError, JoinpointError
from .extractor import DEFAULT_MAX_JOINPOINTS
from .fitter import DEFAULT_MIN_SEGMENT_LENGTH
from .narrative import get_fit_narrative
from .types import LINK_LOG, LINKS

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="joinpoint-trend",
        description="Fit joinpoint regression models to mortality-rate series.",
    )
    parser.add_argument("observations", type=Path, help="CSV of year, rate, cause rows")
    parser.add_argument(
        "--population",
        type=Path,
        default=None,
        help="CSV of year, population; fits counts with a Poisson model when given",
    )
    parser.add_argument("--time-col", default="year")
    parser.add_argument("--value-col", default="asdr")
    parser.add_argument("--category-col", default="cod")
    parser.add_argument("--population-col", default="pop")
    parser.add_argument(
        "--link", choices=LINKS, default=LINK_LOG, help="link function (default: log)"
    )
    parser.add_argument(
        "--max-joinpoints", type=int, default=DEFAULT_MAX_JOINPOINTS,
        help="fit models with 0..N joinpoints (default: %(default)s)",
    )
    parser.add_argument(
        "--min-segment-length", type=int, default=DEFAULT_MIN_SEGMENT_LENGTH,
        help="minimum observations per segment (default: %(default)s)",
    )
    parser.add_argument(
        "--n-jobs", type=int, default=1, help="parallel workers (-1 = all cores)"
    )
    parser.add_argument("--output", type=Path, default=None, help="write fit summary CSV")
    parser.add_argument(
        "--fitted-output", type=Path, default=None,
        help="write observed and fitted values per model as a wide CSV",
    )
    parser.add_argument("--plot-dir", type=Path, default=None, help="save PNG charts here")
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def _save_plots(frame, outcomes, best, plot_dir: Path, scale: float) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from .plotting import plot_best_fits, plot_joinpoints, plot_model_fits

    plot_dir.mkdir(parents=True, exist_ok=True)
    for category, group in iter_series(frame):
        results = {o.k: o.result for o in outcomes if o.ok and o.category == category}
        if not results:
            continue
        best_k = best[category].k if category in best else None
        fig, (left, right) = plt.subplots(1, 2, figsize=(14, 5))
        plot_model_fits(
            group["time"], group["value"], results, best_k=best_k,
            scale=scale, ax=left, title=category,
        )
        plot_joinpoints(group["time"], group["value"], results, ax=right, title=category)
        path = plot_dir / f"{category}.png"
        fig.savefig(path, dpi=100, bbox_inches="tight")
        plt.close(fig)
        logger.info("Saved %s", path)

    fig, ax = plt.subplots(figsize=(10, 6))
    plot_best_fits(frame, best, scale=scale, ax=ax)
    path = plot_dir / "best_fits.png"
    fig.savefig(path, dpi=100, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved %s", path)


def run(args: argparse.Namespace) -> int:
    observations = normalize_categories(
        load_observations(
            args.observations,
            time_col=args.time_col,
            value_col=args.value_col,
            category_col=args.category_col,
        )
    )

    use_counts = args.population is not None
    if use_counts:
        if args.link != LINK_LOG:
            raise InputError("a population denominator requires --link log")
        population = load_population(
            args.population, time_col=args.time_col, population_col=args.population_col
        )
        frame = attach_counts(observations, population)
    else:
        frame = observations

    requests = build_requests(
        frame, range(args.max_joinpoints + 1), link=args.link, use_counts=use_counts
    )
    outcomes = fit_batch(
        requests, min_segment_length=args.min_segment_length, n_jobs=args.n_jobs
    )
    best = best_outcomes(outcomes)

    for k in range(1, args.max_joinpoints + 1):
        table = joinpoint_table(outcomes, k)
        if not table.empty:
            print(f"\n{k} joinpoint model(s):")
            print(table.to_string())

    print()
    for category, result in sorted(best.items(), key=lambda item: str(item[0])):
        print(f"[{category}] best model: k={result.k}, joinpoints={list(result.joinpoints)}")
        print(f"  {get_fit_narrative(result=result, metric=f'{category} mortality rate')}")

    if args.output is not None:
        outcomes_to_frame(outcomes).to_csv(args.output, index=False)
        logger.info("Wrote %s", args.output)
    if args.fitted_output is not None:
        results = [o.result for o in outcomes if o.ok]
        fitted_table(frame, results).to_csv(args.fitted_output, index=False)
        logger.info("Wrote %s", args.fitted_output)
    if args.plot_dir is not None:
        _save_plots(frame, outcomes, best, args.plot_dir, RATE_SCALE if use_counts else 1.0)

    failed = sum(1 for o in outcomes if not o.ok)
    if failed:
        logger.warning("%d of %d fit(s) failed", failed, len(outcomes))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    try:
        return run(args)
    except JoinpointError as exc:
        print(f"joinpoint-trend: error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
