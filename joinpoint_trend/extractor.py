"""
joinpoint_trend.extractor
~~~~~~~~~~~~~~~~~~~~~~~~~
High-level facade that fits every joinpoint count from zero up to a
maximum for one series and picks the best model by BIC.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .errors import InfeasibleRequest, JoinpointError
from .fitter import JoinpointFitter
from .types import LINK_LOG, FitRequest, FitResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_JOINPOINTS = 3


class JoinpointExtractor:
    """Compare joinpoint models with 0..``max_joinpoints`` joinpoints.

    Parameters
    ----------
    x : array-like
        1-D array of times (e.g. integer years).
    y : array-like
        Rates, or counts when *exposure* is given.
    exposure : array-like, optional
        Population at risk aligned with *x*; switches to a Poisson fit.
    link : {"log", "identity"}
        Link function (default ``"log"``).
    max_joinpoints : int
        Largest number of joinpoints to try (default 3).
    fitter : JoinpointFitter, optional
        Custom fitter instance.  A default :class:`JoinpointFitter` is
        used when not provided.
    category : str, optional
        Series label carried into every result.

    Examples
    --------
    >>> import numpy as np
    >>> from joinpoint_trend import JoinpointExtractor
    >>> x = np.arange(1950, 1970)
    >>> y = np.where(x < 1960, 100.0 + 2 * (x - 1950), 120.0 - 3 * (x - 1960))
    >>> suite = JoinpointExtractor(x, y, link="identity", max_joinpoints=1).extract_full_suite()
    >>> suite["best_k"], suite["joinpoints"][1]
    (1, [1960.0])
    """

    def __init__(
        self,
        x: "array-like",
        y: "array-like",
        exposure: "array-like | None" = None,
        link: str = LINK_LOG,
        max_joinpoints: int = DEFAULT_MAX_JOINPOINTS,
        fitter: JoinpointFitter | None = None,
        category: Optional[str] = None,
    ) -> None:
        self.x = np.asarray(x, dtype=float)
        self.y = np.asarray(y, dtype=float)
        self.exposure = None if exposure is None else np.asarray(exposure, dtype=float)
        self.link = link
        self.max_joinpoints = max_joinpoints
        self.category = category
        self.fitter = fitter if fitter is not None else JoinpointFitter()
        self._models: Optional[dict[int, FitResult]] = None

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def build_request(self, k: int) -> FitRequest:
        return FitRequest(
            times=self.x,
            values=self.y,
            k=k,
            link=self.link,
            exposure=self.exposure,
            category=self.category,
        )

    def fit_models(self) -> dict[int, FitResult]:
        """Fit k = 0..``max_joinpoints`` and return the successful fits.

        A k that cannot be fitted is logged and skipped; once the series
        is too short for some k, larger k are not attempted.
        """
        if self._models is not None:
            return self._models

        models: dict[int, FitResult] = {}
        for k in range(self.max_joinpoints + 1):
            request = self.build_request(k)
            try:
                models[k] = self.fitter.fit(request)
            except InfeasibleRequest as exc:
                logger.info("Stopping at %s: %s", request.label, exc)
                break
            except JoinpointError as exc:
                logger.warning("Fit failed for %s: %s", request.label, exc)
                continue

        self._models = models
        return models

    def select_best_model(self) -> Optional[FitResult]:
        """Model with the lowest BIC; the smaller k wins a tie.

        Returns *None* when no k could be fitted.
        """
        best: Optional[FitResult] = None
        for k in sorted(self.fit_models()):
            model = self._models[k]
            if best is None or model.bic < best.bic:
                best = model
        return best

    # ------------------------------------------------------------------
    # Tabulation
    # ------------------------------------------------------------------

    def get_joinpoints(self) -> dict[int, list[float]]:
        """Joinpoint locations for every fitted k."""
        return {k: list(m.joinpoints) for k, m in self.fit_models().items()}

    def get_slopes(self) -> dict[int, list[float]]:
        """Segment slopes for every fitted k."""
        return {k: list(m.slopes) for k, m in self.fit_models().items()}

    def extract_full_suite(self) -> dict:
        """Return all insights as a single flat dictionary.

        Keys
        ----
        category : str or None
        best_k : int or None
            Joinpoint count of the BIC-best model.
        joinpoints, slopes, bic : dict[int, ...]
            Per-k joinpoints, segment slopes and BIC.
        segments : list[dict]
            Segment statistics of the best model (see
            :meth:`FitResult.segments`).
        aapc : float or None
            Average annual percent change of the best model.
        """
        models = self.fit_models()
        best = self.select_best_model()
        return {
            "category": self.category,
            "best_k": None if best is None else best.k,
            "joinpoints": self.get_joinpoints(),
            "slopes": self.get_slopes(),
            "bic": {k: m.bic for k, m in models.items()},
            "segments": [] if best is None else best.segments(),
            "aapc": None if best is None else best.aapc,
        }
