"""Core data types for SpatEpi.

This module is the single source of truth for:
  - LisaQuadrant: Moran-scatterplot quadrant / LISA cluster codes
  - Accepted option names (variogram models, estimators, K corrections,
    spatial-weight kinds)
  - Result objects passed between the statistics, viz and workshop layers

Result objects keep full arrays for plotting and expose ``to_dict()`` with
JSON-ready scalars for the run summary.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS & OPTION NAMES
# ═══════════════════════════════════════════════════════════════════════

class LisaQuadrant(IntEnum):
    """Moran scatterplot quadrants (PySAL numbering).

    HH: high value, high neighbourhood lag (hot spot)
    LH: low value surrounded by high values (spatial outlier)
    LL: low value, low lag (cold spot)
    HL: high value surrounded by low values (spatial outlier)
    NS: not significant at the chosen level
    """
    NS = 0
    HH = 1
    LH = 2
    LL = 3
    HL = 4


VARIOGRAM_MODELS = (
    'spherical', 'exponential', 'gaussian', 'cubic', 'stable', 'matern',
)
VARIOGRAM_ESTIMATORS = ('matheron', 'cressie', 'dowd', 'genton')
K_CORRECTIONS = ('none', 'border', 'translation')
WEIGHT_KINDS = ('queen', 'rook', 'knn', 'distance')


def _summary(values: np.ndarray) -> Dict[str, float]:
    """min / mean / max of the finite entries (NaN when none)."""
    finite = np.asarray(values, dtype=float)
    finite = finite[np.isfinite(finite)]
    if finite.size == 0:
        return {'min': float('nan'), 'mean': float('nan'), 'max': float('nan')}
    return {
        'min': float(finite.min()),
        'mean': float(finite.mean()),
        'max': float(finite.max()),
    }


# ═══════════════════════════════════════════════════════════════════════
# GEOSTATISTICS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class VariogramFit:
    """Experimental variogram plus the fitted theoretical model."""
    bins: np.ndarray            # Upper edge of each lag class
    experimental: np.ndarray    # Semivariance per lag class
    counts: np.ndarray          # Point pairs per lag class
    model: str
    estimator: str
    effective_range: float
    sill: float                 # Partial sill (excludes nugget)
    nugget: float
    rmse: float
    n_sites: int
    variogram: Any = field(default=None, repr=False)  # skgstat.Variogram

    @property
    def lag_centers(self) -> np.ndarray:
        edges = np.concatenate([[0.0], self.bins])
        return 0.5 * (edges[:-1] + edges[1:])

    def model_curve(self, h: np.ndarray) -> np.ndarray:
        """Evaluate the fitted model at lag distances h."""
        return np.asarray(self.variogram.fitted_model(np.asarray(h, dtype=float)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model': self.model,
            'estimator': self.estimator,
            'effective_range': float(self.effective_range),
            'sill': float(self.sill),
            'nugget': float(self.nugget),
            'rmse': float(self.rmse),
            'n_sites': int(self.n_sites),
            'n_lags': int(len(self.bins)),
        }


@dataclass
class KrigingResult:
    """Ordinary kriging predictions on a regular grid (rows = y)."""
    grid_x: np.ndarray          # (nx,) cell-centre x coordinates
    grid_y: np.ndarray          # (ny,) cell-centre y coordinates
    prediction: np.ndarray      # (ny, nx)
    variance: np.ndarray        # (ny, nx) kriging variance
    n_missing: int              # Cells left NaN (too few sites in range)

    @property
    def shape(self):
        return self.prediction.shape

    def to_dict(self) -> Dict[str, Any]:
        return {
            'grid_shape': list(self.prediction.shape),
            'prediction': _summary(self.prediction),
            'variance': _summary(self.variance),
            'n_missing': int(self.n_missing),
        }


@dataclass
class CrossValidationResult:
    """Leave-one-out kriging cross-validation."""
    observed: np.ndarray
    predicted: np.ndarray
    residuals: np.ndarray       # observed − predicted (NaN where unpredicted)
    rmse: float
    mae: float
    mean_error: float
    n_failed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rmse': float(self.rmse),
            'mae': float(self.mae),
            'mean_error': float(self.mean_error),
            'n_failed': int(self.n_failed),
            'n': int(len(self.observed)),
        }


# ═══════════════════════════════════════════════════════════════════════
# AREAL DATA
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class WeightsSummary:
    """Connectivity description of a spatial weights object."""
    kind: str
    transform: str
    n: int
    n_links: int
    pct_nonzero: float
    mean_neighbors: float
    min_neighbors: int
    max_neighbors: int
    islands: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'transform': self.transform,
            'n': int(self.n),
            'n_links': int(self.n_links),
            'pct_nonzero': float(self.pct_nonzero),
            'mean_neighbors': float(self.mean_neighbors),
            'min_neighbors': int(self.min_neighbors),
            'max_neighbors': int(self.max_neighbors),
            'n_islands': len(self.islands),
        }


@dataclass
class MoranResult:
    """Global Moran's I with analytical and permutation inference."""
    I: float
    expected: float
    var_norm: float
    z_norm: float
    p_norm: float
    var_rand: float
    z_rand: float
    p_rand: float
    n: int
    permutations: int = 0
    sim: Optional[np.ndarray] = field(default=None, repr=False)
    p_sim: Optional[float] = None
    z_sim: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'I': float(self.I),
            'expected': float(self.expected),
            'z_norm': float(self.z_norm),
            'p_norm': float(self.p_norm),
            'z_rand': float(self.z_rand),
            'p_rand': float(self.p_rand),
            'permutations': int(self.permutations),
            'p_sim': None if self.p_sim is None else float(self.p_sim),
            'z_sim': None if self.z_sim is None else float(self.z_sim),
        }


@dataclass
class GearyResult:
    """Global Geary's C (E[C] = 1; C < 1 means positive autocorrelation)."""
    C: float
    expected: float
    var_norm: float
    z_norm: float
    p_norm: float
    n: int
    permutations: int = 0
    sim: Optional[np.ndarray] = field(default=None, repr=False)
    p_sim: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'C': float(self.C),
            'expected': float(self.expected),
            'z_norm': float(self.z_norm),
            'p_norm': float(self.p_norm),
            'permutations': int(self.permutations),
            'p_sim': None if self.p_sim is None else float(self.p_sim),
        }


@dataclass
class LocalMoranResult:
    """Local Moran's I_i with conditional-permutation inference."""
    Is: np.ndarray              # (n,) local statistics
    quadrant: np.ndarray        # (n,) LisaQuadrant codes 1–4
    p_sim: np.ndarray           # (n,) pseudo p-values
    significant: np.ndarray     # (n,) bool
    clusters: np.ndarray        # (n,) quadrant where significant, NS elsewhere
    alpha: float
    threshold: float            # Effective p cut-off (alpha or FDR threshold)
    permutations: int

    def counts(self) -> Dict[str, int]:
        return {
            q.name: int(np.sum(self.clusters == q.value)) for q in LisaQuadrant
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'alpha': float(self.alpha),
            'threshold': float(self.threshold),
            'permutations': int(self.permutations),
            'n_significant': int(np.sum(self.significant)),
            'clusters': self.counts(),
        }


@dataclass
class LagrangeMultiplierTest:
    """LM diagnostic for spatial dependence in OLS residuals."""
    name: str
    statistic: float
    df: int
    p_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statistic': float(self.statistic),
            'df': int(self.df),
            'p_value': float(self.p_value),
        }


@dataclass
class RegressionResult:
    """Coefficient table and fit statistics for OLS / spatial models."""
    model: str                  # 'ols', 'lag' or 'error'
    names: List[str]
    betas: np.ndarray
    std_err: np.ndarray
    z_stat: np.ndarray
    p_values: np.ndarray
    sigma2: float
    log_likelihood: float
    aic: float
    r2: float                   # R² (OLS) or squared corr(y, ŷ) (spatial)
    n: int
    residuals: np.ndarray = field(repr=False, default=None)
    predicted: np.ndarray = field(repr=False, default=None)
    spatial_param: Optional[float] = None     # ρ (lag) or λ (error)
    spatial_param_se: Optional[float] = None
    residual_moran: Optional[MoranResult] = None
    lm_tests: List[LagrangeMultiplierTest] = field(default_factory=list)

    def coefficients(self) -> Dict[str, Dict[str, float]]:
        return {
            name: {
                'estimate': float(b),
                'std_err': float(se),
                'z': float(z),
                'p': float(p),
            }
            for name, b, se, z, p in zip(
                self.names, self.betas, self.std_err, self.z_stat, self.p_values
            )
        }

    def to_dict(self) -> Dict[str, Any]:
        out = {
            'model': self.model,
            'n': int(self.n),
            'coefficients': self.coefficients(),
            'sigma2': float(self.sigma2),
            'log_likelihood': float(self.log_likelihood),
            'aic': float(self.aic),
            'r2': float(self.r2),
        }
        if self.spatial_param is not None:
            out['spatial_param'] = float(self.spatial_param)
            out['spatial_param_se'] = (
                None if self.spatial_param_se is None
                else float(self.spatial_param_se)
            )
        if self.residual_moran is not None:
            out['residual_moran'] = self.residual_moran.to_dict()
        if self.lm_tests:
            out['lm_tests'] = {t.name: t.to_dict() for t in self.lm_tests}
        return out


# ═══════════════════════════════════════════════════════════════════════
# POINT PATTERNS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class QuadratTestResult:
    """Pearson χ² quadrat test of CSR."""
    counts: np.ndarray          # (ny, nx) observed counts (NaN outside window)
    expected: np.ndarray        # (ny, nx) expected counts (NaN outside window)
    x_edges: np.ndarray
    y_edges: np.ndarray
    statistic: float
    df: int
    p_value: float
    alternative: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statistic': float(self.statistic),
            'df': int(self.df),
            'p_value': float(self.p_value),
            'alternative': self.alternative,
            'n_quadrats': int(np.sum(np.isfinite(self.expected))),
        }


@dataclass
class DensitySurface:
    """Gridded kernel surface (intensity or log relative risk)."""
    grid_x: np.ndarray
    grid_y: np.ndarray
    values: np.ndarray          # (ny, nx); NaN outside the window
    sigma: float
    kind: str = 'intensity'
    edge_corrected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'sigma': float(self.sigma),
            'edge_corrected': bool(self.edge_corrected),
            'grid_shape': list(self.values.shape),
            'values': _summary(self.values),
        }


@dataclass
class SummaryFunction:
    """A second-order / nearest-neighbour summary evaluated at radii."""
    name: str                   # 'K', 'L' or 'G'
    radii: np.ndarray
    values: np.ndarray
    correction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'correction': self.correction,
            'r_max': float(self.radii[-1]),
            'value_at_r_max': float(self.values[-1]),
        }


@dataclass
class Envelope:
    """Pointwise CSR simulation envelope around an observed summary."""
    name: str
    radii: np.ndarray
    observed: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    mean: np.ndarray
    n_simulations: int

    @property
    def above(self) -> np.ndarray:
        return self.observed > self.upper

    @property
    def below(self) -> np.ndarray:
        return self.observed < self.lower

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'n_simulations': int(self.n_simulations),
            'n_radii_above': int(np.sum(self.above)),
            'n_radii_below': int(np.sum(self.below)),
        }


@dataclass
class ClarkEvansResult:
    """Clark–Evans aggregation index (R < 1 clustered, R > 1 regular)."""
    R: float
    z: float
    p_value: float
    mean_nn: float
    expected_nn: float
    n: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'R': float(self.R),
            'z': float(self.z),
            'p_value': float(self.p_value),
            'mean_nn': float(self.mean_nn),
            'expected_nn': float(self.expected_nn),
            'n': int(self.n),
        }
