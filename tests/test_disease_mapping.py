"""Tests for spatepi.disease_mapping — SMR and empirical Bayes smoothing."""

import numpy as np
import pytest

from spatepi.datasets import make_lattice
from spatepi.disease_mapping import (
    empirical_bayes_global,
    empirical_bayes_local,
    excess_risk,
    expected_counts,
    standardized_ratio,
)
from spatepi.weights import build_weights, distance_band_weights


class TestExpectedAndRatios:
    def test_expected_sums_to_observed(self):
        pop = np.array([100.0, 200.0, 700.0])
        cases = np.array([3.0, 1.0, 6.0])
        e = expected_counts(pop, cases=cases)
        assert e.sum() == pytest.approx(cases.sum())
        np.testing.assert_allclose(e, pop * 0.01)

    def test_expected_from_rate(self):
        np.testing.assert_allclose(expected_counts([10.0, 20.0], rate=0.5), [5.0, 10.0])

    def test_expected_needs_cases_or_rate(self):
        with pytest.raises(ValueError, match="cases or rate"):
            expected_counts([10.0, 20.0])

    def test_smr_and_excess(self):
        o = np.array([4.0, 0.0, 9.0])
        e = np.array([2.0, 1.0, 10.0])
        np.testing.assert_allclose(standardized_ratio(o, e), [2.0, 0.0, 0.9])
        np.testing.assert_allclose(excess_risk(o, e), [2.0, -1.0, -1.0])

    def test_zero_expected_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            standardized_ratio([1.0, 2.0], [1.0, 0.0])

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            standardized_ratio([-1.0, 2.0], [1.0, 1.0])

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="length"):
            standardized_ratio([1.0, 2.0], [1.0, 1.0, 1.0])


class TestEmpiricalBayes:
    def test_shrinks_towards_global_mean(self):
        rng = np.random.default_rng(0)
        e = rng.uniform(0.5, 20.0, 200)
        o = rng.poisson(e * rng.gamma(4.0, 0.25, 200)).astype(float)
        smr = o / e
        eb = empirical_bayes_global(o, e)
        m = o.sum() / e.sum()
        # Every estimate lies between the SMR and the global mean
        assert np.all(np.abs(eb - m) <= np.abs(smr - m) + 1e-12)
        assert eb.var() < smr.var()

    def test_small_expected_shrink_more(self):
        o = np.array([2.0, 40.0, 10.0, 10.0])
        e = np.array([1.0, 20.0, 10.0, 10.0])
        smr = o / e
        eb = empirical_bayes_global(o, e)
        m = o.sum() / e.sum()
        # Both first two have SMR 2; the small one is pulled further in
        assert smr[0] == smr[1]
        assert abs(eb[0] - m) < abs(eb[1] - m)

    def test_no_extra_variance_means_full_shrinkage(self):
        # All SMRs equal → s² = 0 → A = 0 → EB = m everywhere
        e = np.array([1.0, 2.0, 4.0])
        eb = empirical_bayes_global(2.0 * e, e)
        np.testing.assert_allclose(eb, 2.0)

    def test_local_keeps_island_smr(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [50.0, 50.0]])
        w = distance_band_weights(coords, threshold=2.0)
        assert w.islands == [3]
        o = np.array([1.0, 5.0, 3.0, 7.0])
        e = np.array([2.0, 2.0, 2.0, 2.0])
        eb = empirical_bayes_local(o, e, w)
        assert eb[3] == pytest.approx(3.5)

    def test_local_pools_neighbourhood(self):
        gdf = make_lattice(5, 5)
        w = build_weights(gdf, "queen")
        rng = np.random.default_rng(1)
        e = rng.uniform(1.0, 5.0, 25)
        o = rng.poisson(e).astype(float)
        eb = empirical_bayes_local(o, e, w)
        assert eb.shape == (25,)
        assert np.all(np.isfinite(eb))
        assert np.all(eb >= 0)

    def test_local_size_mismatch(self):
        w = build_weights(make_lattice(2, 2), "queen")
        with pytest.raises(ValueError, match="units"):
            empirical_bayes_local(np.ones(5), np.ones(5), w)
