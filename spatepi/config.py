"""Configuration system for SpatEpi workshop runs.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides (CLI flags)

One dataclass per YAML top-level key. Unknown keys inside a section are
ignored so older scenario files keep loading; unknown *sections* are
rejected by ``validate_config`` because they usually mean a typo.

Design decisions:
  - Distances are in the units of the projected CRS (metres by default)
  - Permutation inference is on by default (999 draws), as in PySAL
  - The default CRS is a UTM zone so synthetic datasets are projected
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pyproj
from pyproj.exceptions import CRSError
import yaml

from spatepi.types import (
    K_CORRECTIONS,
    VARIOGRAM_ESTIMATORS,
    VARIOGRAM_MODELS,
    WEIGHT_KINDS,
)

SECTION_NAMES = ("geostat", "areal", "points")


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class WorkshopSection:
    """Top-level run control shared by every tutorial section."""
    seed: int = 42
    crs: str = "EPSG:32630"          # WGS 84 / UTM zone 30N
    sections: List[str] = field(
        default_factory=lambda: list(SECTION_NAMES)
    )
    permutations: int = 999          # Permutation draws for Moran/Geary/LISA
    alpha: float = 0.05              # Significance level for LISA maps


@dataclass
class GeostatSection:
    """Exposure survey + variogram + kriging parameters."""
    n_sites: int = 150
    extent: float = 10000.0          # Side of the square study area (m)
    field_mean: float = 5.0
    field_sill: float = 1.0          # Partial sill of the simulated field
    field_range: float = 2500.0      # Effective range of the simulated field (m)
    field_nugget: float = 0.1
    model: str = "spherical"
    estimator: str = "matheron"
    n_lags: int = 15
    maxlag: Union[str, float] = "median"
    use_nugget: bool = True
    grid_resolution: float = 250.0   # Kriging grid cell size (m)
    min_points: int = 5
    max_points: int = 20
    cross_validate: bool = True


@dataclass
class ArealSection:
    """Lattice disease data + weights + autocorrelation + regression."""
    nrows: int = 12
    ncols: int = 12
    cell_size: float = 1000.0        # Side of each square region (m)
    baseline_rate: float = 0.002     # Cases per person at relative risk 1
    population_mean: float = 5000.0
    covariate_effect: float = 0.4    # log-RR per SD of deprivation
    spatial_rho: float = 0.7         # SAR autocorrelation of residual log-RR
    noise_sd: float = 0.3
    weights: str = "queen"
    k: int = 4                       # Neighbours for kind='knn'
    distance_threshold: Optional[float] = None  # For kind='distance'; None = min threshold
    transform: str = "r"
    fdr: bool = False
    smoothing: str = "global"        # 'global', 'local' or 'none'
    regression: bool = True


@dataclass
class PointPatternSection:
    """Case-control point pattern parameters."""
    window: str = "rectangle"        # 'rectangle' or 'lshape'
    width: float = 10000.0
    height: float = 10000.0
    process: str = "thomas"          # 'csr', 'thomas' or 'inhomogeneous'
    intensity: float = 2.0e-6        # Points per m² for 'csr' / peak for 'inhomogeneous'
    kappa: float = 2.0e-7            # Parent intensity for 'thomas'
    cluster_scale: float = 300.0     # Offspring displacement SD (m)
    mu: float = 10.0                 # Mean offspring per parent
    n_controls: int = 200
    bandwidth: Union[str, float] = "scott"
    grid_size: int = 64
    edge_correction: bool = True
    nx: int = 5
    ny: int = 5
    k_correction: str = "translation"
    n_radii: int = 50
    max_radius: Optional[float] = None
    n_simulations: int = 99


@dataclass
class OutputSection:
    """Output control."""
    output_dir: str = "results/workshop"
    save_figures: bool = True
    figure_dpi: int = 150
    summary_file: str = "summary.json"
    log_level: str = "INFO"


@dataclass
class WorkshopConfig:
    """Complete workshop configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    workshop: WorkshopSection = field(default_factory=WorkshopSection)
    geostat: GeostatSection = field(default_factory=GeostatSection)
    areal: ArealSection = field(default_factory=ArealSection)
    points: PointPatternSection = field(default_factory=PointPatternSection)
    output: OutputSection = field(default_factory=OutputSection)


_SECTION_MAP = {
    'workshop': WorkshopSection,
    'geostat': GeostatSection,
    'areal': ArealSection,
    'points': PointPatternSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> WorkshopConfig:
    """Convert a merged YAML dict to a WorkshopConfig."""
    unknown = set(data) - set(_SECTION_MAP)
    if unknown:
        raise ValueError(
            f"Unknown configuration section(s): {sorted(unknown)}. "
            f"Valid sections: {sorted(_SECTION_MAP)}"
        )
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return WorkshopConfig(**sections)


def config_to_dict(config: WorkshopConfig) -> Dict[str, Any]:
    """Plain nested dict of a config (YAML/JSON serialisable)."""
    return dataclasses.asdict(config)


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _require_positive(value: float, name: str) -> None:
    if value is None or value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def validate_config(config: WorkshopConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Section names and significance settings
      - Variogram model / estimator / kriging neighbourhood
      - Lattice, weights and smoothing choices
      - Point process, bandwidth and summary-function settings
      - The CRS string parses with pyproj
    """
    ws = config.workshop
    unknown = set(ws.sections) - set(SECTION_NAMES)
    if unknown:
        raise ValueError(
            f"workshop.sections must be drawn from {SECTION_NAMES}, "
            f"got unknown {sorted(unknown)}"
        )
    if ws.seed < 0:
        raise ValueError("workshop.seed must be non-negative")
    if ws.permutations < 1:
        raise ValueError(
            f"workshop.permutations must be >= 1, got {ws.permutations}"
        )
    if not (0.0 < ws.alpha < 1.0):
        raise ValueError(f"workshop.alpha must be in (0, 1), got {ws.alpha}")
    try:
        pyproj.CRS.from_user_input(ws.crs)
    except CRSError as exc:
        raise ValueError(f"workshop.crs '{ws.crs}' is not a valid CRS") from exc

    # Geostatistics
    g = config.geostat
    if g.model not in VARIOGRAM_MODELS:
        raise ValueError(
            f"geostat.model must be one of {VARIOGRAM_MODELS}, got '{g.model}'"
        )
    if g.estimator not in VARIOGRAM_ESTIMATORS:
        raise ValueError(
            f"geostat.estimator must be one of {VARIOGRAM_ESTIMATORS}, "
            f"got '{g.estimator}'"
        )
    if g.n_sites < 3:
        raise ValueError(f"geostat.n_sites must be >= 3, got {g.n_sites}")
    if g.n_lags < 2:
        raise ValueError(f"geostat.n_lags must be >= 2, got {g.n_lags}")
    _require_positive(g.extent, "geostat.extent")
    _require_positive(g.field_range, "geostat.field_range")
    _require_positive(g.field_sill, "geostat.field_sill")
    _require_positive(g.grid_resolution, "geostat.grid_resolution")
    if g.field_nugget < 0:
        raise ValueError("geostat.field_nugget must be >= 0")
    if isinstance(g.maxlag, str):
        if g.maxlag not in ("median", "mean"):
            raise ValueError(
                f"geostat.maxlag must be 'median', 'mean' or a number, "
                f"got '{g.maxlag}'"
            )
    else:
        _require_positive(g.maxlag, "geostat.maxlag")
    if g.min_points < 1 or g.min_points > g.max_points:
        raise ValueError(
            f"geostat.min_points ({g.min_points}) must be in "
            f"[1, max_points={g.max_points}]"
        )

    # Areal data
    a = config.areal
    if a.nrows < 2 or a.ncols < 2:
        raise ValueError(
            f"areal lattice must be at least 2x2, got {a.nrows}x{a.ncols}"
        )
    _require_positive(a.cell_size, "areal.cell_size")
    _require_positive(a.baseline_rate, "areal.baseline_rate")
    _require_positive(a.population_mean, "areal.population_mean")
    if not (-1.0 < a.spatial_rho < 1.0):
        raise ValueError(
            f"areal.spatial_rho must be in (-1, 1), got {a.spatial_rho}"
        )
    if a.noise_sd < 0:
        raise ValueError("areal.noise_sd must be >= 0")
    if a.weights not in WEIGHT_KINDS:
        raise ValueError(
            f"areal.weights must be one of {WEIGHT_KINDS}, got '{a.weights}'"
        )
    if a.k < 1:
        raise ValueError(f"areal.k must be >= 1, got {a.k}")
    if a.weights == "knn" and a.k >= a.nrows * a.ncols:
        raise ValueError(
            f"areal.k ({a.k}) must be smaller than the number of regions "
            f"({a.nrows * a.ncols})"
        )
    if a.distance_threshold is not None:
        _require_positive(a.distance_threshold, "areal.distance_threshold")
    if a.transform not in ("r", "b", "v"):
        raise ValueError(
            f"areal.transform must be 'r', 'b' or 'v', got '{a.transform}'"
        )
    if a.smoothing not in ("global", "local", "none"):
        raise ValueError(
            f"areal.smoothing must be 'global', 'local' or 'none', "
            f"got '{a.smoothing}'"
        )

    # Point patterns
    p = config.points
    if p.window not in ("rectangle", "lshape"):
        raise ValueError(
            f"points.window must be 'rectangle' or 'lshape', got '{p.window}'"
        )
    if p.process not in ("csr", "thomas", "inhomogeneous"):
        raise ValueError(
            f"points.process must be 'csr', 'thomas' or 'inhomogeneous', "
            f"got '{p.process}'"
        )
    _require_positive(p.width, "points.width")
    _require_positive(p.height, "points.height")
    _require_positive(p.intensity, "points.intensity")
    _require_positive(p.kappa, "points.kappa")
    _require_positive(p.cluster_scale, "points.cluster_scale")
    _require_positive(p.mu, "points.mu")
    if p.n_controls < 2:
        raise ValueError(f"points.n_controls must be >= 2, got {p.n_controls}")
    if isinstance(p.bandwidth, str):
        if p.bandwidth != "scott":
            raise ValueError(
                f"points.bandwidth must be 'scott' or a number, "
                f"got '{p.bandwidth}'"
            )
    else:
        _require_positive(p.bandwidth, "points.bandwidth")
    if p.grid_size < 8:
        raise ValueError(f"points.grid_size must be >= 8, got {p.grid_size}")
    if p.nx < 1 or p.ny < 1:
        raise ValueError(
            f"points.nx and points.ny must be >= 1, got {p.nx}x{p.ny}"
        )
    if p.k_correction not in K_CORRECTIONS:
        raise ValueError(
            f"points.k_correction must be one of {K_CORRECTIONS}, "
            f"got '{p.k_correction}'"
        )
    if p.n_radii < 2:
        raise ValueError(f"points.n_radii must be >= 2, got {p.n_radii}")
    if p.max_radius is not None:
        _require_positive(p.max_radius, "points.max_radius")
        if p.max_radius > 0.5 * min(p.width, p.height):
            warnings.warn(
                f"points.max_radius {p.max_radius:g} exceeds half the shorter "
                f"window side; K and G estimates there rest on very few pairs.",
                UserWarning,
                stacklevel=2,
            )
    if p.n_simulations < 1:
        raise ValueError(
            f"points.n_simulations must be >= 1, got {p.n_simulations}"
        )

    # Output
    if config.output.figure_dpi < 10:
        raise ValueError("output.figure_dpi must be >= 10")


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> WorkshopConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML (ignored if missing).
        sweep_overrides: Optional dict of overrides (e.g. from CLI flags).

    Returns:
        Validated WorkshopConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def config_from_dict(data: Dict) -> WorkshopConfig:
    """Build and validate a config from an in-memory dict."""
    config = _yaml_to_config(data)
    validate_config(config)
    return config


def default_config() -> WorkshopConfig:
    """Return a WorkshopConfig with all default values."""
    config = WorkshopConfig()
    validate_config(config)
    return config
