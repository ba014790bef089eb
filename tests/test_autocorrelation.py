"""Tests for spatepi.autocorrelation — Moran's I, Geary's C, LISA."""

import numpy as np
import pytest

from spatepi.autocorrelation import (
    fdr_threshold,
    gearys_c,
    local_morans_i,
    moran_scatter_data,
    morans_i,
    quadrants,
)
from spatepi.datasets import make_lattice
from spatepi.types import LisaQuadrant
from spatepi.weights import build_weights


@pytest.fixture(scope="module")
def lattice():
    return make_lattice(8, 8, cell_size=1.0)


@pytest.fixture(scope="module")
def w(lattice):
    return build_weights(lattice, "rook", transform="r")


@pytest.fixture(scope="module")
def gradient(lattice):
    """Smooth west-to-east trend: strong positive autocorrelation."""
    return lattice['col'].to_numpy(dtype=float) + 0.1 * lattice['row'].to_numpy()


@pytest.fixture(scope="module")
def checkerboard(lattice):
    """Alternating values: perfect negative autocorrelation under rook."""
    return ((lattice['row'] + lattice['col']) % 2).to_numpy(dtype=float)


# ═══════════════════════════════════════════════════════════════════════
# GLOBAL MORAN'S I
# ═══════════════════════════════════════════════════════════════════════

class TestMoransI:
    def test_expectation(self, w, gradient):
        res = morans_i(gradient, w, permutations=0)
        assert res.expected == pytest.approx(-1.0 / 63.0)

    def test_positive_for_trend(self, w, gradient):
        res = morans_i(gradient, w, permutations=99, rng=np.random.default_rng(0))
        assert res.I > 0.7
        assert res.z_norm > 5
        assert res.p_norm < 1e-6
        assert res.p_sim == pytest.approx(0.01)

    def test_checkerboard_is_minus_one(self, w, checkerboard):
        res = morans_i(checkerboard, w, permutations=0)
        assert res.I == pytest.approx(-1.0)

    def test_bounded(self, w):
        rng = np.random.default_rng(3)
        for _ in range(20):
            res = morans_i(rng.normal(size=64), w, permutations=0)
            assert -1.0 - 1e-9 <= res.I <= 1.0 + 1e-9

    def test_random_data_near_expectation(self, w):
        rng = np.random.default_rng(7)
        Is = [morans_i(rng.normal(size=64), w, permutations=0).I for _ in range(200)]
        assert np.mean(Is) == pytest.approx(-1.0 / 63.0, abs=0.02)

    def test_permutation_outputs(self, w, gradient):
        res = morans_i(gradient, w, permutations=49, rng=np.random.default_rng(1))
        assert res.permutations == 49
        assert res.sim.shape == (49,)
        assert 1.0 / 50 <= res.p_sim <= 1.0
        assert res.z_sim > 0

    def test_permutations_reproducible(self, w, gradient):
        a = morans_i(gradient, w, permutations=20, rng=np.random.default_rng(9))
        b = morans_i(gradient, w, permutations=20, rng=np.random.default_rng(9))
        np.testing.assert_array_equal(a.sim, b.sim)

    def test_no_permutations(self, w, gradient):
        res = morans_i(gradient, w, permutations=0)
        assert res.sim is None
        assert res.p_sim is None

    def test_scale_invariant(self, w, gradient):
        a = morans_i(gradient, w, permutations=0)
        b = morans_i(10.0 * gradient + 3.0, w, permutations=0)
        assert a.I == pytest.approx(b.I)

    def test_variances_positive(self, w, gradient):
        res = morans_i(gradient, w, permutations=0)
        assert res.var_norm > 0
        assert res.var_rand > 0

    def test_constant_rejected(self, w):
        with pytest.raises(ValueError, match="constant"):
            morans_i(np.ones(64), w)

    def test_length_mismatch(self, w):
        with pytest.raises(ValueError, match="units"):
            morans_i(np.arange(10.0), w)

    def test_nan_rejected(self, w, gradient):
        y = gradient.copy()
        y[3] = np.nan
        with pytest.raises(ValueError, match="NaN"):
            morans_i(y, w)

    def test_negative_permutations(self, w, gradient):
        with pytest.raises(ValueError, match="permutations"):
            morans_i(gradient, w, permutations=-1)


# ═══════════════════════════════════════════════════════════════════════
# GLOBAL GEARY'S C
# ═══════════════════════════════════════════════════════════════════════

class TestGearysC:
    def test_below_one_for_trend(self, w, gradient):
        res = gearys_c(gradient, w, permutations=99, rng=np.random.default_rng(0))
        assert res.C < 0.5
        assert res.expected == 1.0
        assert res.z_norm < 0
        assert res.p_sim == pytest.approx(0.01)

    def test_above_one_for_checkerboard(self, w, checkerboard):
        res = gearys_c(checkerboard, w, permutations=0)
        assert res.C > 1.5

    def test_random_near_one(self, w):
        rng = np.random.default_rng(5)
        Cs = [gearys_c(rng.normal(size=64), w, permutations=0).C for _ in range(200)]
        assert np.mean(Cs) == pytest.approx(1.0, abs=0.03)


# ═══════════════════════════════════════════════════════════════════════
# LOCAL MORAN (LISA)
# ═══════════════════════════════════════════════════════════════════════

class TestLocalMoran:
    def test_mean_relates_to_global(self, w, gradient):
        glob = morans_i(gradient, w, permutations=0)
        loc = local_morans_i(gradient, w, permutations=9, rng=np.random.default_rng(0))
        n = len(gradient)
        # Row-standardised: Σ I_i = (n − 1) · I
        assert loc.Is.sum() / (n - 1) == pytest.approx(glob.I)

    def test_quadrants_for_trend(self, w, gradient, lattice):
        loc = local_morans_i(gradient, w, permutations=99, rng=np.random.default_rng(0))
        east = lattice['col'].to_numpy() == 7
        west = lattice['col'].to_numpy() == 0
        assert np.all(loc.quadrant[east] == LisaQuadrant.HH)
        assert np.all(loc.quadrant[west] == LisaQuadrant.LL)

    def test_clusters_are_ns_where_not_significant(self, w, gradient):
        loc = local_morans_i(gradient, w, permutations=99, rng=np.random.default_rng(2))
        assert np.all(loc.clusters[~loc.significant] == LisaQuadrant.NS)
        np.testing.assert_array_equal(loc.clusters[loc.significant],
                                      loc.quadrant[loc.significant])
        assert loc.significant.sum() > 0

    def test_p_values_in_range(self, w, gradient):
        loc = local_morans_i(gradient, w, permutations=49, rng=np.random.default_rng(4))
        assert np.all(loc.p_sim >= 1.0 / 50)
        assert np.all(loc.p_sim <= 1.0)

    def test_fdr_is_stricter(self, w):
        y = np.random.default_rng(8).normal(size=64)
        plain = local_morans_i(y, w, permutations=99, rng=np.random.default_rng(1))
        fdr = local_morans_i(y, w, permutations=99, rng=np.random.default_rng(1), fdr=True)
        assert fdr.threshold <= plain.threshold
        assert fdr.significant.sum() <= plain.significant.sum()

    def test_needs_permutations(self, w, gradient):
        with pytest.raises(ValueError, match="permutations"):
            local_morans_i(gradient, w, permutations=0)

    def test_bad_alpha(self, w, gradient):
        with pytest.raises(ValueError, match="alpha"):
            local_morans_i(gradient, w, permutations=9, alpha=1.5)


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

class TestHelpers:
    def test_fdr_threshold_known_case(self):
        p = np.array([0.001, 0.008, 0.039, 0.041, 0.6])
        # k·α/n = 0.01, 0.02, 0.03, 0.04, 0.05; largest passing k is 2
        assert fdr_threshold(p, 0.05) == pytest.approx(0.02)

    def test_fdr_threshold_fallback(self):
        p = np.array([0.5, 0.6, 0.9, 0.95])
        assert fdr_threshold(p, 0.05) == pytest.approx(0.05 / 4)

    def test_fdr_threshold_bad_input(self):
        with pytest.raises(ValueError):
            fdr_threshold(np.array([]), 0.05)
        with pytest.raises(ValueError):
            fdr_threshold(np.array([0.1]), 0.0)

    def test_quadrant_codes(self):
        z = np.array([1.0, -1.0, -1.0, 1.0])
        lag = np.array([1.0, 1.0, -1.0, -1.0])
        np.testing.assert_array_equal(quadrants(z, lag), [1, 2, 3, 4])

    def test_scatter_slope_equals_moran(self, w, gradient):
        z, lag, slope = moran_scatter_data(gradient, w)
        assert z.mean() == pytest.approx(0.0, abs=1e-12)
        assert slope == pytest.approx(morans_i(gradient, w, permutations=0).I)
