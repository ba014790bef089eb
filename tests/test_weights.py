"""Tests for spatepi.weights — libpysal weights construction and summaries."""

import numpy as np
import pytest

from spatepi.datasets import make_lattice
from spatepi.weights import (
    build_weights,
    contiguity_weights,
    distance_band_weights,
    knn_weights,
    spatial_lag,
    summarize_weights,
    to_dense,
)


@pytest.fixture
def lattice():
    return make_lattice(3, 3, cell_size=1.0)


# ═══════════════════════════════════════════════════════════════════════
# CONTIGUITY
# ═══════════════════════════════════════════════════════════════════════

class TestContiguity:
    def test_queen_neighbour_counts(self, lattice):
        w = contiguity_weights(lattice, "queen")
        # Centre cell (id 4) touches all 8 others; corners touch 3
        assert w.cardinalities[4] == 8
        assert w.cardinalities[0] == 3

    def test_rook_neighbour_counts(self, lattice):
        w = contiguity_weights(lattice, "rook")
        assert w.cardinalities[4] == 4
        assert w.cardinalities[0] == 2

    def test_ids_are_positions(self, lattice):
        w = contiguity_weights(lattice)
        assert list(w.id_order) == list(range(9))

    def test_bad_rule(self, lattice):
        with pytest.raises(ValueError, match="rule"):
            contiguity_weights(lattice, "bishop")

    def test_empty_frame(self, lattice):
        with pytest.raises(ValueError, match="empty"):
            contiguity_weights(lattice.iloc[:0])


# ═══════════════════════════════════════════════════════════════════════
# DISTANCE-BASED
# ═══════════════════════════════════════════════════════════════════════

class TestDistanceBased:
    def test_knn_every_unit_has_k(self, lattice):
        w = knn_weights(lattice, k=2)
        assert all(c == 2 for c in w.cardinalities.values())

    def test_knn_k_too_large(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        with pytest.raises(ValueError, match="k must be"):
            knn_weights(coords, k=3)

    def test_distance_band_default_has_no_islands(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 0.0], [6.5, 0.0]])
        w = distance_band_weights(coords)
        assert w.islands == []

    def test_distance_band_explicit_threshold(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 0.0]])
        w = distance_band_weights(coords, threshold=1.5)
        assert w.islands == [2]

    def test_distance_band_bad_threshold(self):
        coords = np.array([[0.0, 0.0], [1.0, 0.0]])
        with pytest.raises(ValueError, match="threshold"):
            distance_band_weights(coords, threshold=-1.0)

    def test_bad_coords_shape(self):
        with pytest.raises(ValueError, match="shape"):
            knn_weights(np.zeros((5, 3)), k=1)


# ═══════════════════════════════════════════════════════════════════════
# DISPATCH, SUMMARY, OPERATORS
# ═══════════════════════════════════════════════════════════════════════

class TestBuildAndSummarize:
    def test_row_standardised_rows_sum_to_one(self, lattice):
        w = build_weights(lattice, "queen", transform="r")
        np.testing.assert_allclose(to_dense(w).sum(axis=1), 1.0)

    def test_binary_transform(self, lattice):
        w = build_weights(lattice, "rook", transform="b")
        assert set(np.unique(to_dense(w))) == {0.0, 1.0}

    def test_bad_kind(self, lattice):
        with pytest.raises(ValueError, match="kind"):
            build_weights(lattice, "triangulation")

    def test_bad_transform(self, lattice):
        with pytest.raises(ValueError, match="transform"):
            build_weights(lattice, "queen", transform="z")

    def test_summary(self, lattice):
        w = build_weights(lattice, "rook", transform="b")
        s = summarize_weights(w, "rook")
        assert s.n == 9
        assert s.n_links == 24          # 12 shared edges, both directions
        assert s.min_neighbors == 2
        assert s.max_neighbors == 4
        assert s.islands == []
        assert s.to_dict()['kind'] == "rook"

    def test_spatial_lag_is_neighbour_mean(self, lattice):
        w = build_weights(lattice, "rook", transform="r")
        y = np.arange(9, dtype=float)
        lag = spatial_lag(w, y)
        # Corner 0 has rook neighbours 1 and 3
        assert lag[0] == pytest.approx(2.0)
        # Centre 4 has neighbours 1, 3, 5, 7
        assert lag[4] == pytest.approx(4.0)

    def test_spatial_lag_length_mismatch(self, lattice):
        w = build_weights(lattice, "rook")
        with pytest.raises(ValueError, match="units"):
            spatial_lag(w, np.ones(4))

    def test_dense_is_symmetric_for_contiguity(self, lattice):
        d = to_dense(build_weights(lattice, "queen", transform="b"))
        np.testing.assert_array_equal(d, d.T)
        assert np.all(np.diag(d) == 0)
