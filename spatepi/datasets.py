"""Workshop datasets: reproducible synthetic data, file loaders, CRS helpers.

Three bundled datasets, one per workshop section, all generated from a
seeded ``numpy.random.Generator`` so every participant sees the same
numbers:

  - Exposure survey (geostatistics): monitoring sites with a Gaussian
    random-field exposure (exponential covariance + nugget)
  - Lattice disease data (areal): square regions with population,
    a deprivation covariate, expected and observed case counts whose
    log relative risk has SAR-correlated residual structure
  - Case-control points (point patterns): case locations from a cluster,
    CSR or point-source process plus CSR controls

Real data can be swapped in with ``load_point_data`` / ``load_areal_data``;
``ensure_projected`` puts any frame into a metric CRS before distances
are computed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from shapely.geometry import box

from spatepi.pointpattern import (
    Window,
    simulate_csr,
    simulate_inhomogeneous,
    simulate_poisson,
    simulate_thomas,
)
from spatepi.weights import contiguity_weights, to_dense

logger = logging.getLogger(__name__)

DEFAULT_CRS = "EPSG:32630"


# ═══════════════════════════════════════════════════════════════════════
# GEOSTATISTICS: EXPOSURE SURVEY
# ═══════════════════════════════════════════════════════════════════════

def exponential_covariance(h: np.ndarray, sill: float,
                           range_: float) -> np.ndarray:
    """C(h) = sill · exp(−3h / range), range being the effective (95%) range."""
    return sill * np.exp(-3.0 * np.asarray(h, dtype=float) / range_)


def make_exposure_survey(
    n_sites: int = 150,
    extent: float = 10000.0,
    mean: float = 5.0,
    sill: float = 1.0,
    range_: float = 2500.0,
    nugget: float = 0.1,
    rng: Optional[np.random.Generator] = None,
    crs: str = DEFAULT_CRS,
    origin: Tuple[float, float] = (0.0, 0.0),
) -> gpd.GeoDataFrame:
    """Simulated environmental exposure measured at monitoring sites.

    Sites are uniform in a square of side ``extent``. The exposure is
    ``mean + S(x) + ε`` with S a zero-mean Gaussian field of exponential
    covariance and ε ~ N(0, nugget), sampled jointly by Cholesky
    factorisation.

    Returns:
        GeoDataFrame with columns site_id, exposure, geometry.
    """
    if n_sites < 3:
        raise ValueError(f"n_sites must be >= 3, got {n_sites}")
    if extent <= 0 or sill <= 0 or range_ <= 0:
        raise ValueError("extent, sill and range_ must be positive")
    if nugget < 0:
        raise ValueError(f"nugget must be >= 0, got {nugget}")
    if rng is None:
        rng = np.random.default_rng()

    xy = rng.uniform(0.0, extent, size=(n_sites, 2)) + np.asarray(origin)
    cov = exponential_covariance(cdist(xy, xy), sill, range_)
    cov[np.diag_indices_from(cov)] += nugget + 1e-10 * sill
    chol = np.linalg.cholesky(cov)
    values = mean + chol @ rng.standard_normal(n_sites)

    logger.debug("exposure survey: %d sites, field sd %.3f",
                 n_sites, float(values.std()))
    return gpd.GeoDataFrame(
        {'site_id': np.arange(n_sites), 'exposure': values},
        geometry=gpd.points_from_xy(xy[:, 0], xy[:, 1]),
        crs=crs,
    )


# ═══════════════════════════════════════════════════════════════════════
# AREAL DATA: LATTICE DISEASE COUNTS
# ═══════════════════════════════════════════════════════════════════════

def make_lattice(nrows: int, ncols: int, cell_size: float = 1000.0,
                 crs: str = DEFAULT_CRS,
                 origin: Tuple[float, float] = (0.0, 0.0)) -> gpd.GeoDataFrame:
    """Square-cell polygons in row-major order (row 0 at the bottom)."""
    if nrows < 1 or ncols < 1:
        raise ValueError(f"lattice must be at least 1x1, got {nrows}x{ncols}")
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")
    x0, y0 = origin
    cells, rows, cols = [], [], []
    for r in range(nrows):
        for c in range(ncols):
            cells.append(box(x0 + c * cell_size, y0 + r * cell_size,
                             x0 + (c + 1) * cell_size, y0 + (r + 1) * cell_size))
            rows.append(r)
            cols.append(c)
    return gpd.GeoDataFrame(
        {'region_id': np.arange(nrows * ncols), 'row': rows, 'col': cols},
        geometry=cells, crs=crs,
    )


def sar_field(W: np.ndarray, rho: float, rng: np.random.Generator,
              sd: float = 1.0) -> np.ndarray:
    """Draw u = (I − ρW)⁻¹ ε with ε ~ N(0, sd²)."""
    n = W.shape[0]
    eps = rng.normal(0.0, sd, n)
    return np.linalg.solve(np.eye(n) - rho * W, eps)


def make_areal_disease_data(
    nrows: int = 12,
    ncols: int = 12,
    cell_size: float = 1000.0,
    baseline_rate: float = 0.002,
    population_mean: float = 5000.0,
    covariate_effect: float = 0.4,
    spatial_rho: float = 0.7,
    noise_sd: float = 0.3,
    rng: Optional[np.random.Generator] = None,
    crs: str = DEFAULT_CRS,
) -> gpd.GeoDataFrame:
    """Lattice of regions with simulated disease counts.

    log RR_i = covariate_effect · deprivation_i + u_i, with u a SAR field
    over queen row-standardised neighbours. Deprivation is itself a
    standardised SAR field (ρ = 0.5) so it is spatially smooth.

    Returns:
        GeoDataFrame with region_id, row, col, population, deprivation,
        true_rr, expected, cases, geometry.
    """
    if not (-1.0 < spatial_rho < 1.0):
        raise ValueError(f"spatial_rho must be in (-1, 1), got {spatial_rho}")
    if rng is None:
        rng = np.random.default_rng()
    gdf = make_lattice(nrows, ncols, cell_size, crs)
    w = contiguity_weights(gdf, rule="queen")
    w.transform = "r"
    W = to_dense(w)
    n = len(gdf)

    population = np.round(
        rng.lognormal(np.log(population_mean) - 0.125, 0.5, n)
    ).astype(int) + 1
    deprivation = sar_field(W, 0.5, rng)
    deprivation = (deprivation - deprivation.mean()) / deprivation.std()
    u = sar_field(W, spatial_rho, rng, sd=noise_sd) if noise_sd > 0 else np.zeros(n)
    log_rr = covariate_effect * deprivation + u
    true_rr = np.exp(log_rr - np.log(np.average(np.exp(log_rr), weights=population)))

    expected = population * baseline_rate
    cases = rng.poisson(expected * true_rr)

    gdf['population'] = population
    gdf['deprivation'] = deprivation
    gdf['true_rr'] = true_rr
    gdf['expected'] = expected
    gdf['cases'] = cases
    logger.debug("areal data: %d regions, %d cases", n, int(cases.sum()))
    return gdf


# ═══════════════════════════════════════════════════════════════════════
# POINT PATTERNS: CASE-CONTROL LOCATIONS
# ═══════════════════════════════════════════════════════════════════════

def make_window(kind: str = "rectangle", width: float = 10000.0,
                height: float = 10000.0) -> Window:
    """Observation window used by the point-pattern section."""
    if kind == "rectangle":
        return Window.rectangle(width, height)
    if kind == "lshape":
        return Window.lshape(width, height)
    raise ValueError(f"window kind must be 'rectangle' or 'lshape', got '{kind}'")


def point_source_intensity(window: Window, peak: float,
                           spread: Optional[float] = None,
                           background: float = 0.2):
    """λ(x, y) = peak · (background + (1 − background)·exp(−d²/2s²)).

    The source sits at the window's representative point (inside the
    window even for non-convex shapes).
    """
    src = window.geometry.representative_point()
    if spread is None:
        xmin, ymin, xmax, ymax = window.bounds
        spread = 0.15 * min(xmax - xmin, ymax - ymin)

    def _fn(x, y):
        d2 = (np.asarray(x) - src.x) ** 2 + (np.asarray(y) - src.y) ** 2
        return peak * (background + (1.0 - background) * np.exp(-d2 / (2.0 * spread ** 2)))

    return _fn


def simulate_cases(
    window: Window,
    process: str,
    rng: np.random.Generator,
    intensity: float = 2.0e-6,
    kappa: float = 2.0e-7,
    cluster_scale: float = 300.0,
    mu: float = 10.0,
) -> np.ndarray:
    """Case locations from 'csr', 'thomas' or 'inhomogeneous' processes."""
    if process == "csr":
        return simulate_poisson(intensity, window, rng)
    if process == "thomas":
        return simulate_thomas(kappa, cluster_scale, mu, window, rng)
    if process == "inhomogeneous":
        return simulate_inhomogeneous(
            point_source_intensity(window, intensity), intensity, window, rng,
        )
    raise ValueError(
        f"process must be 'csr', 'thomas' or 'inhomogeneous', got '{process}'"
    )


def make_case_control(
    window: Window,
    process: str = "thomas",
    n_controls: int = 200,
    rng: Optional[np.random.Generator] = None,
    crs: str = DEFAULT_CRS,
    **process_kwargs,
) -> gpd.GeoDataFrame:
    """Cases from ``process`` plus ``n_controls`` CSR controls.

    Returns:
        Point GeoDataFrame with a boolean ``case`` column.
    """
    if n_controls < 0:
        raise ValueError(f"n_controls must be >= 0, got {n_controls}")
    if rng is None:
        rng = np.random.default_rng()
    cases = simulate_cases(window, process, rng, **process_kwargs)
    controls = simulate_csr(n_controls, window, rng)
    xy = np.vstack([cases, controls])
    flag = np.concatenate([np.ones(len(cases), bool), np.zeros(len(controls), bool)])
    logger.debug("case-control: %d cases (%s), %d controls",
                 len(cases), process, len(controls))
    return gpd.GeoDataFrame(
        {'case': flag},
        geometry=gpd.points_from_xy(xy[:, 0], xy[:, 1]),
        crs=crs,
    )


def split_case_control(gdf: gpd.GeoDataFrame,
                       column: str = "case") -> Tuple[np.ndarray, np.ndarray]:
    """(cases, controls) coordinate arrays from a case-control frame."""
    if column not in gdf.columns:
        raise ValueError(f"column '{column}' not found")
    xy = coordinates(gdf)
    flag = gdf[column].to_numpy().astype(bool)
    return xy[flag], xy[~flag]


# ═══════════════════════════════════════════════════════════════════════
# LOADERS & CRS HELPERS
# ═══════════════════════════════════════════════════════════════════════

def load_point_data(path: Union[str, Path], x: str = "x", y: str = "y",
                    crs: Optional[str] = None) -> gpd.GeoDataFrame:
    """Read a CSV of point records with coordinate columns ``x`` and ``y``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point data file not found: {path}")
    df = pd.read_csv(path)
    missing = [c for c in (x, y) if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name}: missing coordinate column(s) {missing}")
    return gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(df[x], df[y]), crs=crs)


def load_areal_data(path: Union[str, Path],
                    layer: Optional[str] = None) -> gpd.GeoDataFrame:
    """Read polygons from any vector format geopandas understands."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Areal data file not found: {path}")
    if layer is None:
        return gpd.read_file(path)
    return gpd.read_file(path, layer=layer)


def ensure_projected(gdf: gpd.GeoDataFrame,
                     crs: Optional[str] = None) -> gpd.GeoDataFrame:
    """Return ``gdf`` in a projected CRS.

    - No CRS → ValueError (distances would be meaningless)
    - ``crs`` given and different → reprojected to ``crs``
    - Geographic and no ``crs`` → reprojected to the estimated UTM zone
    - Already projected and no ``crs`` → returned unchanged
    """
    if gdf.crs is None:
        raise ValueError("GeoDataFrame has no CRS; set one with set_crs() first")
    if crs is not None:
        if gdf.crs.equals(crs):
            return gdf
        out = gdf.to_crs(crs)
        if out.crs.is_geographic:
            raise ValueError(f"Target CRS '{crs}' is geographic, not projected")
        return out
    if gdf.crs.is_geographic:
        utm = gdf.estimate_utm_crs()
        logger.info("reprojecting from %s to estimated UTM %s",
                    gdf.crs.to_string(), utm.to_string())
        return gdf.to_crs(utm)
    return gdf


def coordinates(gdf: gpd.GeoDataFrame) -> np.ndarray:
    """(n, 2) coordinates; polygon centroids for areal data."""
    geom = gdf.geometry
    if not (geom.geom_type == 'Point').all():
        geom = geom.centroid
    return np.column_stack([geom.x.to_numpy(), geom.y.to_numpy()])
