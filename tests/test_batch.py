"""Unit tests for joinpoint_trend.batch."""

import logging

import numpy as np
import pandas as pd
import pytest

from joinpoint_trend.batch import (
    BatchOutcome,
    best_outcomes,
    fit_batch,
    joinpoint_table,
    outcomes_to_frame,
)
from joinpoint_trend.types import FitRequest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def requests():
    """Two healthy categories, one infeasible k and one malformed series."""
    x = np.arange(1900, 1930, dtype=float)
    heart = np.where(x <= 1915, 100.0 + 4.0 * (x - 1900), 160.0 - 2.0 * (x - 1915))
    # alternating wiggle that no hinge can absorb
    tb = 200.0 - 5.0 * (x - 1900) + np.where(np.arange(x.size) % 2 == 0, 1.0, -1.0)
    short = FitRequest(times=x[:5], values=tb[:5], k=2, category="short")
    bad = FitRequest(times=x[::-1], values=tb, k=0, category="bad")
    return [
        FitRequest(times=x, values=heart, k=0, category="heart"),
        FitRequest(times=x, values=heart, k=1, category="heart"),
        FitRequest(times=x, values=tb, k=0, category="tb"),
        FitRequest(times=x, values=tb, k=1, category="tb"),
        short,
        bad,
    ]


# ---------------------------------------------------------------------------
# fit_batch
# ---------------------------------------------------------------------------

class TestFitBatch:
    def test_one_outcome_per_request_in_order(self, requests):
        outcomes = fit_batch(requests)
        assert [(o.category, o.k) for o in outcomes] == [
            (r.category, r.k) for r in requests
        ]

    def test_failures_are_isolated(self, requests):
        outcomes = fit_batch(requests)
        status = {(o.category, o.k): o for o in outcomes}
        assert status[("heart", 1)].ok
        assert status[("tb", 0)].ok
        assert status[("short", 2)].error_type == "InfeasibleRequest"
        assert status[("bad", 0)].error_type == "InputError"
        assert "bad" in status[("bad", 0)].error

    def test_parallel_matches_serial(self, requests):
        serial = fit_batch(requests, n_jobs=1)
        parallel = fit_batch(requests, n_jobs=2)
        for a, b in zip(serial, parallel):
            if a.ok:
                assert a.result.joinpoints == b.result.joinpoints
                assert a.result.slopes == pytest.approx(b.result.slopes)
        assert [o.error_type for o in serial] == [o.error_type for o in parallel]

    def test_failures_logged(self, requests, caplog):
        with caplog.at_level(logging.WARNING, logger="joinpoint_trend.batch"):
            fit_batch(requests)
        assert "InfeasibleRequest" in caplog.text
        assert "InputError" in caplog.text

    def test_min_segment_length_forwarded(self, requests):
        outcomes = fit_batch(requests[:2], min_segment_length=15)
        assert outcomes[1].ok
        assert outcomes[1].result.joinpoints == (1915.0,)


# ---------------------------------------------------------------------------
# Tabulation
# ---------------------------------------------------------------------------

class TestTables:
    def test_outcomes_to_frame(self, requests):
        frame = outcomes_to_frame(fit_batch(requests))
        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == len(requests)
        assert set(frame["status"]) == {"ok", "InfeasibleRequest", "InputError"}
        assert frame.loc[frame["status"] != "ok", "bic"].isna().all()

    def test_joinpoint_table(self, requests):
        table = joinpoint_table(fit_batch(requests), k=1)
        assert list(table.columns) == ["heart", "tb"]
        assert table.index.name == "joinpoint"
        assert list(table.index) == [1]
        assert table.loc[1, "heart"] == 1915.0

    def test_best_outcomes(self, requests):
        best = best_outcomes(fit_batch(requests))
        assert set(best) == {"heart", "tb"}
        assert best["heart"].k == 1
        assert best["tb"].k == 0

    def test_outcome_ok_flag(self):
        assert not BatchOutcome(category="x", k=0, error="boom").ok
