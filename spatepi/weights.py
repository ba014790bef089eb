"""Spatial weights construction for areal and point data.

Wraps libpysal so the workshop code can ask for "queen", "rook", "knn" or
"distance" neighbours by name, with the argument checks in one place.
Every builder returns a ``libpysal.weights.W`` whose ids are the
positional row numbers 0..n-1 of the input, so W rows line up with
``gdf.iloc``.

Polygon inputs use centroids for the distance-based kinds.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

import geopandas as gpd
import numpy as np
from libpysal import weights as lpw
from libpysal.weights.spatial_lag import lag_spatial
from libpysal.weights.util import min_threshold_distance

from spatepi.types import WEIGHT_KINDS, WeightsSummary

logger = logging.getLogger(__name__)

ArrayOrFrame = Union[gpd.GeoDataFrame, gpd.GeoSeries, np.ndarray]


# ═══════════════════════════════════════════════════════════════════════
# INPUT HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _coords(data: ArrayOrFrame) -> np.ndarray:
    """(n, 2) coordinates from an array, or point / polygon geometries."""
    if isinstance(data, (gpd.GeoDataFrame, gpd.GeoSeries)):
        geom = data.geometry if isinstance(data, gpd.GeoDataFrame) else data
        if len(geom) == 0:
            raise ValueError("Cannot build weights from an empty frame")
        if not (geom.geom_type == 'Point').all():
            geom = geom.centroid
        return np.column_stack([geom.x.to_numpy(), geom.y.to_numpy()])
    coords = np.asarray(data, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise ValueError(f"coords must have shape (n, 2), got {coords.shape}")
    if coords.shape[0] == 0:
        raise ValueError("Cannot build weights from zero locations")
    return coords


# ═══════════════════════════════════════════════════════════════════════
# BUILDERS
# ═══════════════════════════════════════════════════════════════════════

def contiguity_weights(gdf: gpd.GeoDataFrame, rule: str = "queen") -> lpw.W:
    """Polygon contiguity: shared edge (rook) or shared edge/vertex (queen)."""
    if len(gdf) == 0:
        raise ValueError("Cannot build weights from an empty frame")
    if rule == "queen":
        w = lpw.Queen.from_dataframe(gdf, use_index=False, silence_warnings=True)
    elif rule == "rook":
        w = lpw.Rook.from_dataframe(gdf, use_index=False, silence_warnings=True)
    else:
        raise ValueError(f"rule must be 'queen' or 'rook', got '{rule}'")
    _warn_islands(w, rule)
    return w


def knn_weights(data: ArrayOrFrame, k: int = 4) -> lpw.W:
    """k-nearest-neighbour weights (asymmetric in general)."""
    coords = _coords(data)
    n = coords.shape[0]
    if k < 1 or k >= n:
        raise ValueError(f"k must be in [1, n-1={n - 1}], got {k}")
    return lpw.KNN.from_array(coords, k=k)


def distance_band_weights(
    data: ArrayOrFrame,
    threshold: Optional[float] = None,
    binary: bool = True,
) -> lpw.W:
    """Neighbours within a distance band.

    Args:
        data: Coordinates or geometries.
        threshold: Band radius in CRS units. None uses the smallest
            radius that gives every location at least one neighbour.
        binary: 1/0 weights when True, inverse-distance weights otherwise.
    """
    coords = _coords(data)
    if coords.shape[0] < 2:
        raise ValueError("Distance band weights need at least 2 locations")
    if threshold is None:
        threshold = float(min_threshold_distance(coords))
        logger.debug("distance band threshold defaulted to %.3f", threshold)
    elif threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")
    w = lpw.DistanceBand(coords, threshold=threshold, binary=binary,
                         silence_warnings=True)
    _warn_islands(w, f"distance<={threshold:g}")
    return w


def build_weights(
    gdf: gpd.GeoDataFrame,
    kind: str = "queen",
    k: int = 4,
    threshold: Optional[float] = None,
    transform: str = "r",
) -> lpw.W:
    """Build weights by name and apply a transform.

    Args:
        gdf: Areal (polygons) or point data.
        kind: One of 'queen', 'rook', 'knn', 'distance'.
        k: Neighbours for 'knn'.
        threshold: Band radius for 'distance'.
        transform: 'r' (row-standardised), 'b' (binary) or 'v'
            (variance-stabilising).
    """
    if kind in ("queen", "rook"):
        w = contiguity_weights(gdf, rule=kind)
    elif kind == "knn":
        w = knn_weights(gdf, k=k)
    elif kind == "distance":
        w = distance_band_weights(gdf, threshold=threshold)
    else:
        raise ValueError(f"kind must be one of {WEIGHT_KINDS}, got '{kind}'")
    if transform not in ("r", "b", "v"):
        raise ValueError(f"transform must be 'r', 'b' or 'v', got '{transform}'")
    w.transform = transform
    return w


def _warn_islands(w: lpw.W, label: str) -> None:
    if w.islands:
        logger.warning(
            "%s weights: %d island(s) with no neighbours: %s",
            label, len(w.islands), w.islands[:10],
        )


# ═══════════════════════════════════════════════════════════════════════
# DESCRIPTIVES & OPERATORS
# ═══════════════════════════════════════════════════════════════════════

def summarize_weights(w: lpw.W, kind: str = "custom") -> WeightsSummary:
    """Connectivity summary of a weights object."""
    cards = np.array([w.cardinalities[i] for i in w.id_order])
    return WeightsSummary(
        kind=kind,
        transform=str(w.transform).lower(),
        n=int(w.n),
        n_links=int(w.nonzero),
        pct_nonzero=float(w.pct_nonzero),
        mean_neighbors=float(cards.mean()),
        min_neighbors=int(cards.min()),
        max_neighbors=int(cards.max()),
        islands=list(w.islands),
    )


def spatial_lag(w: lpw.W, y: np.ndarray) -> np.ndarray:
    """Spatial lag Wy (neighbourhood weighted sum / mean for row-standardised W)."""
    y = np.asarray(y, dtype=float)
    if y.shape[0] != w.n:
        raise ValueError(f"y has {y.shape[0]} values but W has {w.n} units")
    return lag_spatial(w, y)


def to_dense(w: lpw.W) -> np.ndarray:
    """Dense (n, n) weights matrix in ``w.id_order``."""
    return np.asarray(w.sparse.toarray(), dtype=float)
