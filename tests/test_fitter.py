"""Unit tests for joinpoint_trend.fitter.JoinpointFitter."""

import math

import numpy as np
import pwlf
import pytest

from joinpoint_trend.errors import (
    InfeasibleRequest,
    InputError,
    JoinpointError,
    NumericalFailure,
)
from joinpoint_trend.fitter import JoinpointFitter, design_matrix, fit_joinpoints
from joinpoint_trend.types import METHOD_LEAST_SQUARES, METHOD_POISSON, FitRequest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def two_segment():
    """Noise-free series 1900–1998 rising at 2/yr until 1950, then falling 3/yr."""
    x = np.arange(1900, 1999, dtype=float)
    y = np.where(x <= 1950, 10.0 + 2.0 * (x - 1900), 110.0 - 3.0 * (x - 1950))
    return x, y


@pytest.fixture
def noisy():
    """Three-segment trend with Gaussian noise."""
    rng = np.random.default_rng(7)
    x = np.arange(1960, 2000, dtype=float)
    y = np.piecewise(
        x,
        [x < 1972, (x >= 1972) & (x < 1986), x >= 1986],
        [
            lambda t: 50.0 + 1.5 * (t - 1960),
            lambda t: 68.0 - 2.0 * (t - 1972),
            lambda t: 40.0 + 0.5 * (t - 1986),
        ],
    )
    return x, y + rng.normal(0, 1.0, x.size)


@pytest.fixture
def poisson_counts():
    """Counts exactly equal to population(t) * exp(0.01 t)."""
    t = np.arange(0, 50, dtype=float)
    population = 1000.0 + 10.0 * t
    counts = population * np.exp(0.01 * t)
    return t, counts, population


# ---------------------------------------------------------------------------
# calculate_bic
# ---------------------------------------------------------------------------

class TestCalculateBic:
    def test_lower_ssr_gives_lower_bic(self):
        bic_good = JoinpointFitter.calculate_bic(ssr=10, n_data_points=20, n_segments=2)
        bic_bad = JoinpointFitter.calculate_bic(ssr=100, n_data_points=20, n_segments=2)
        assert bic_good < bic_bad

    def test_more_segments_penalises_bic(self):
        bic_simple = JoinpointFitter.calculate_bic(ssr=50, n_data_points=20, n_segments=1)
        bic_complex = JoinpointFitter.calculate_bic(ssr=50, n_data_points=20, n_segments=3)
        assert bic_complex > bic_simple

    def test_returns_float(self):
        assert isinstance(JoinpointFitter.calculate_bic(100, 20, 2), float)

    def test_perfect_fit_is_minus_infinity(self):
        assert JoinpointFitter.calculate_bic(0.0, 20, 2) == -math.inf

    def test_likelihood_bic_penalises_parameters(self):
        simple = JoinpointFitter.calculate_likelihood_bic(-100.0, 30, 1)
        complex_ = JoinpointFitter.calculate_likelihood_bic(-100.0, 30, 2)
        assert complex_ - simple == pytest.approx(3 * np.log(30))


# ---------------------------------------------------------------------------
# candidate_indices
# ---------------------------------------------------------------------------

class TestCandidateIndices:
    def test_zero_joinpoints_single_empty_candidate(self):
        assert list(JoinpointFitter().candidate_indices(10, 0)) == [()]

    def test_exact_fit_of_minimum_length(self):
        fitter = JoinpointFitter(min_segment_length=3)
        assert list(fitter.candidate_indices(9, 2)) == [(3, 6)]

    def test_endpoints_excluded(self):
        fitter = JoinpointFitter(min_segment_length=3)
        assert list(fitter.candidate_indices(10, 1)) == [(3,), (4,), (5,), (6,), (7,)]

    def test_lexicographic_and_spaced(self):
        fitter = JoinpointFitter(min_segment_length=2)
        candidates = list(fitter.candidate_indices(12, 3))
        assert candidates == sorted(candidates)
        for combo in candidates:
            assert combo[0] >= 2 and 12 - combo[-1] >= 2
            assert all(b - a >= 2 for a, b in zip(combo, combo[1:]))

    def test_min_segment_length_below_two_rejected(self):
        with pytest.raises(ValueError):
            JoinpointFitter(min_segment_length=1)


# ---------------------------------------------------------------------------
# design_matrix
# ---------------------------------------------------------------------------

class TestDesignMatrix:
    def test_hinge_columns(self):
        A = design_matrix([0, 1, 2, 3], [1.0], origin=0.0)
        np.testing.assert_allclose(A[:, 0], 1.0)
        np.testing.assert_allclose(A[:, 1], [0, 1, 2, 3])
        np.testing.assert_allclose(A[:, 2], [0, 0, 1, 2])

    def test_origin_shifts_time_column(self):
        A = design_matrix([1900, 1901], [], origin=1900.0)
        np.testing.assert_allclose(A[:, 1], [0, 1])


# ---------------------------------------------------------------------------
# k = 0: ordinary least squares
# ---------------------------------------------------------------------------

class TestNoJoinpoints:
    def test_matches_closed_form_ols(self, noisy):
        x, y = noisy
        result = fit_joinpoints(FitRequest(times=x, values=y, k=0))

        x_bar, y_bar = x.mean(), y.mean()
        slope = np.sum((x - x_bar) * (y - y_bar)) / np.sum((x - x_bar) ** 2)
        intercept = y_bar - slope * x_bar

        assert result.slopes[0] == pytest.approx(slope, rel=1e-9)
        assert result.intercept == pytest.approx(intercept, rel=1e-7)
        assert result.joinpoints == ()

    def test_rss_matches_residuals(self, noisy):
        x, y = noisy
        result = fit_joinpoints(FitRequest(times=x, values=y, k=0))
        residuals = y - result.predict(x)
        assert result.residual_sum_of_squares == pytest.approx(np.sum(residuals ** 2))

    def test_two_points_always_fit(self):
        result = fit_joinpoints(FitRequest(times=[2000, 2001], values=[5.0, 7.0], k=0))
        assert result.slopes[0] == pytest.approx(2.0)
        assert result.residual_sum_of_squares == pytest.approx(0.0, abs=1e-20)

    def test_method_and_metadata(self, noisy):
        x, y = noisy
        result = fit_joinpoints(FitRequest(times=x, values=y, k=0, category="heart"))
        assert result.method == METHOD_LEAST_SQUARES
        assert result.category == "heart"
        assert result.n_observations == x.size
        assert result.time_range == (1960.0, 1999.0)


# ---------------------------------------------------------------------------
# k >= 1: breakpoint search
# ---------------------------------------------------------------------------

class TestJoinpointSearch:
    def test_recovers_true_breakpoint(self, two_segment):
        x, y = two_segment
        result = fit_joinpoints(FitRequest(times=x, values=y, k=1))
        assert result.joinpoints == (1950.0,)
        assert result.slopes[0] == pytest.approx(2.0, abs=1e-6)
        assert result.slopes[1] == pytest.approx(-3.0, abs=1e-6)

    def test_recovered_intercept(self, two_segment):
        x, y = two_segment
        result = fit_joinpoints(FitRequest(times=x, values=y, k=1))
        assert result.intercept == pytest.approx(10.0 - 2.0 * 1900, abs=1e-6)

    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_joinpoints_increasing_and_interior(self, noisy, k):
        x, y = noisy
        result = fit_joinpoints(FitRequest(times=x, values=y, k=k))
        taus = result.joinpoints
        assert len(taus) == k
        assert all(a < b for a, b in zip(taus, taus[1:]))
        assert all(x.min() < tau < x.max() for tau in taus)
        assert len(result.slopes) == k + 1

    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_continuity_at_joinpoints(self, noisy, k):
        x, y = noisy
        result = fit_joinpoints(FitRequest(times=x, values=y, k=k))
        lines = result.segment_lines
        for j, tau in enumerate(result.joinpoints):
            left = lines[j][0] + lines[j][1] * tau
            right = lines[j + 1][0] + lines[j + 1][1] * tau
            assert left == pytest.approx(right, abs=1e-8)

    def test_more_joinpoints_never_fit_worse(self, noisy):
        x, y = noisy
        fitter = JoinpointFitter(min_segment_length=3)
        rss = [
            fitter.fit(FitRequest(times=x, values=y, k=k)).residual_sum_of_squares
            for k in range(4)
        ]
        for k in range(3):
            assert rss[k + 1] <= rss[k] + 1e-9

    def test_spacing_rule_can_leave_more_joinpoints_worse(self):
        # n = 9, m = 3: k=2 admits only joinpoints at indices 3 and 6, which
        # cannot reproduce a single vertex at index 4.
        x = np.arange(9, dtype=float)
        y = np.abs(x - 4.0)
        fitter = JoinpointFitter(min_segment_length=3)

        one = fitter.fit(FitRequest(times=x, values=y, k=1))
        two = fitter.fit(FitRequest(times=x, values=y, k=2))

        assert one.joinpoints == (4.0,)
        assert one.residual_sum_of_squares == pytest.approx(0.0, abs=1e-20)
        assert two.joinpoints == (3.0, 6.0)
        assert two.residual_sum_of_squares > 1.0

    def test_deterministic(self, noisy):
        x, y = noisy
        request = FitRequest(times=x, values=y, k=2)
        assert fit_joinpoints(request) == fit_joinpoints(request)

    def test_p_values_per_slope_parameter(self, noisy):
        x, y = noisy
        result = fit_joinpoints(FitRequest(times=x, values=y, k=2))
        assert len(result.p_values) == 3
        assert all(0.0 <= p <= 1.0 for p in result.p_values)

    def test_weights_downplay_outlier(self):
        x = np.arange(0, 10, dtype=float)
        y = 1.0 + 3.0 * x
        y[-1] += 100.0
        weights = np.ones_like(x)
        weights[-1] = 1e-8

        weighted = fit_joinpoints(FitRequest(times=x, values=y, k=0, weights=weights))
        unweighted = fit_joinpoints(FitRequest(times=x, values=y, k=0))

        assert weighted.slopes[0] == pytest.approx(3.0, abs=1e-4)
        assert abs(unweighted.slopes[0] - 3.0) > 1.0


# ---------------------------------------------------------------------------
# Log link
# ---------------------------------------------------------------------------

class TestLogLink:
    def test_log_linear_rates(self):
        x = np.arange(1900, 1940, dtype=float)
        y = 50.0 * np.exp(-0.02 * (x - 1900))
        result = fit_joinpoints(FitRequest(times=x, values=y, k=0, link="log"))
        assert result.slopes[0] == pytest.approx(-0.02, abs=1e-9)
        assert result.apc[0] == pytest.approx(100.0 * (np.exp(-0.02) - 1.0))
        np.testing.assert_allclose(result.fitted_response(x), y, rtol=1e-8)

    def test_poisson_recovers_rate_slope(self, poisson_counts):
        t, counts, population = poisson_counts
        result = fit_joinpoints(
            FitRequest(times=t, values=counts, exposure=population, k=0, link="log")
        )
        assert result.method == METHOD_POISSON
        assert result.slopes[0] == pytest.approx(0.01, abs=1e-6)
        assert result.intercept == pytest.approx(0.0, abs=1e-6)
        assert result.residual_sum_of_squares < 1e-6

    def test_poisson_recovers_joinpoint(self):
        t = np.arange(0, 40, dtype=float)
        population = np.full(t.size, 5000.0)
        eta = np.where(t <= 20, -3.0 + 0.03 * t, -3.0 + 0.6 - 0.02 * (t - 20))
        counts = population * np.exp(eta)
        result = fit_joinpoints(
            FitRequest(times=t, values=counts, exposure=population, k=1, link="log")
        )
        assert result.joinpoints == (20.0,)
        assert result.slopes[0] == pytest.approx(0.03, abs=1e-6)
        assert result.slopes[1] == pytest.approx(-0.02, abs=1e-6)

    def test_poisson_bic_uses_likelihood(self, poisson_counts):
        t, counts, population = poisson_counts
        result = fit_joinpoints(
            FitRequest(times=t, values=counts, exposure=population, k=0, link="log")
        )
        expected = JoinpointFitter.calculate_likelihood_bic(
            result.log_likelihood, t.size, 1
        )
        assert result.bic == pytest.approx(expected)


# ---------------------------------------------------------------------------
# Failure conditions
# ---------------------------------------------------------------------------

class TestFailures:
    def test_too_few_points(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[2000], values=[1.0], k=0))

    def test_non_increasing_times(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[3, 2, 1], values=[1.0, 2.0, 3.0], k=0))

    def test_duplicate_times(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[1, 1, 2], values=[1.0, 2.0, 3.0], k=0))

    def test_length_mismatch(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[1, 2, 3], values=[1.0, 2.0], k=0))

    def test_non_positive_under_log_link(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[1, 2, 3], values=[1.0, 0.0, 3.0], k=0, link="log"))

    def test_exposure_requires_log_link(self):
        with pytest.raises(InputError):
            fit_joinpoints(
                FitRequest(times=[1, 2, 3], values=[1.0, 2.0, 3.0], exposure=[10, 10, 10], k=0)
            )

    def test_unknown_link(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[1, 2, 3], values=[1.0, 2.0, 3.0], link="logit"))

    def test_negative_k(self):
        with pytest.raises(InputError):
            fit_joinpoints(FitRequest(times=[1, 2, 3], values=[1.0, 2.0, 3.0], k=-1))

    def test_non_numeric_values(self):
        with pytest.raises(InputError):
            FitRequest(times=[1, 2, 3], values=["a", "b", "c"])

    def test_insufficient_data_for_k(self):
        request = FitRequest(times=np.arange(5.0), values=np.arange(5.0) ** 2, k=2)
        with pytest.raises(InfeasibleRequest):
            JoinpointFitter(min_segment_length=3).fit(request)

    def test_failed_solve_surfaces(self, monkeypatch, noisy):
        x, y = noisy
        monkeypatch.setattr(
            pwlf.PiecewiseLinFit, "fit_with_breaks", lambda self, breaks: np.inf
        )
        with pytest.raises(NumericalFailure):
            fit_joinpoints(FitRequest(times=x, values=y, k=1))

    def test_non_converged_poisson_fit_surfaces(self):
        t = np.arange(12, dtype=float)
        counts = np.where(t % 2 == 0, 1.0, 1e6)
        request = FitRequest(
            times=t, values=counts, exposure=np.full(12, 1e300), k=1, link="log"
        )
        with pytest.raises(NumericalFailure) as excinfo:
            fit_joinpoints(request)
        assert "np.float64" not in str(excinfo.value)

    def test_rank_deficient_design_rejected(self):
        t = np.arange(10, dtype=float)
        design = np.column_stack([np.ones_like(t), t, t])
        with pytest.raises(NumericalFailure):
            JoinpointFitter._check_design(design, "duplicated column")

    def test_full_rank_design_accepted(self):
        design = design_matrix(np.arange(10, dtype=float), [4.0])
        JoinpointFitter._check_design(design, "hinge")

    def test_errors_share_base_class(self):
        for exc in (InputError, InfeasibleRequest, NumericalFailure):
            assert issubclass(exc, JoinpointError)
            assert issubclass(exc, ValueError)
