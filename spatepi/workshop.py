"""End-to-end workshop runner.

Each tutorial section is an independent pipeline

    generate / load data → transform → statistics → figures

driven by its own block of the configuration and its own random
stream(s). ``run_workshop`` runs the configured sections in order, times
them, and writes a JSON summary (config hash, git hash, package version,
per-section results) under the output directory.

Sections:
  - geostat: exposure survey → variogram → kriging → LOO cross-validation
  - areal: lattice counts → SMR / EB smoothing → weights → Moran, Geary,
    LISA → OLS diagnostics and spatial lag / error models
  - points: case-control pattern → intensity, KDE, quadrat test →
    K / L / G, Clark–Evans → CSR envelope → spatial relative risk
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import yaml

from spatepi import __version__
from spatepi.autocorrelation import gearys_c, local_morans_i, morans_i
from spatepi.config import WorkshopConfig, config_to_dict
from spatepi.datasets import (
    coordinates,
    make_areal_disease_data,
    make_case_control,
    make_exposure_survey,
    make_window,
    split_case_control,
)
from spatepi.disease_mapping import (
    empirical_bayes_global,
    empirical_bayes_local,
    excess_risk,
    standardized_ratio,
)
from spatepi.geostat import (
    cross_validate,
    fit_variogram,
    ordinary_kriging,
    prediction_grid,
)
from spatepi.pointpattern import (
    clark_evans,
    csr_envelope,
    default_radii,
    g_function,
    intensity,
    kernel_density,
    l_function,
    quadrat_test,
    relative_risk,
    ripley_k,
)
from spatepi.regression import ols, spatial_error_model, spatial_lag_model
from spatepi.rng import create_rng_hierarchy, get_stream
from spatepi.utils import config_hash, get_git_hash, timer
from spatepi.weights import build_weights, summarize_weights

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# RESULT CONTAINERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SectionResult:
    """Outcome of one tutorial section."""
    name: str
    summary: Dict[str, Any]
    figures: List[str] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class WorkshopResult:
    """Outcome of a full workshop run."""
    sections: Dict[str, SectionResult]
    timings: Dict[str, float]
    config_hash: str
    summary_path: Optional[Path] = None


class _FigureSink:
    """Saves figures under ``output_dir`` when enabled, else discards them."""

    def __init__(self, config: WorkshopConfig, output_dir: Optional[Path]):
        self.enabled = output_dir is not None and config.output.save_figures
        self.output_dir = output_dir
        self.dpi = config.output.figure_dpi
        self.paths: List[str] = []

    def __call__(self, name: str, plot_fn, *args, **kwargs) -> None:
        if not self.enabled:
            return
        # matplotlib is only imported once a figure is actually written
        from spatepi.viz.style import save_figure
        fig = plot_fn(*args, **kwargs)
        path = self.output_dir / f"{name}.png"
        save_figure(fig, path, dpi=self.dpi)
        self.paths.append(str(path))
        logger.debug("saved figure %s", path)


def _json_default(obj):
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


# ═══════════════════════════════════════════════════════════════════════
# SECTION 1: GEOSTATISTICS
# ═══════════════════════════════════════════════════════════════════════

def run_geostat_section(
    config: WorkshopConfig,
    rng: np.random.Generator,
    output_dir: Optional[Path] = None,
) -> SectionResult:
    """Exposure survey → variogram → kriging surface → cross-validation."""
    g = config.geostat
    save = _FigureSink(config, output_dir)

    survey = make_exposure_survey(
        n_sites=g.n_sites, extent=g.extent, mean=g.field_mean,
        sill=g.field_sill, range_=g.field_range, nugget=g.field_nugget,
        rng=rng, crs=config.workshop.crs,
    )
    coords = coordinates(survey)
    values = survey['exposure'].to_numpy()
    logger.info("geostat: %d monitoring sites, exposure mean %.3f",
                len(survey), float(values.mean()))

    fit = fit_variogram(coords, values, model=g.model, estimator=g.estimator,
                        n_lags=g.n_lags, maxlag=g.maxlag, use_nugget=g.use_nugget)
    grid_x, grid_y, mask = prediction_grid((0.0, 0.0, g.extent, g.extent),
                                           g.grid_resolution)
    kriging = ordinary_kriging(fit, grid_x, grid_y, g.min_points, g.max_points, mask)

    summary: Dict[str, Any] = {
        'n_sites': int(len(survey)),
        'exposure_mean': float(values.mean()),
        'exposure_var': float(values.var(ddof=1)),
        'variogram': fit.to_dict(),
        'kriging': kriging.to_dict(),
    }
    artifacts: Dict[str, Any] = {'survey': survey, 'variogram': fit, 'kriging': kriging}

    if g.cross_validate:
        cv = cross_validate(fit, g.min_points, g.max_points)
        summary['cross_validation'] = cv.to_dict()
        artifacts['cross_validation'] = cv

    if save.enabled:
        from spatepi.viz import geostat as gviz
        save('geostat_sites', gviz.plot_sites, survey)
        save('geostat_variogram', gviz.plot_variogram, fit)
        save('geostat_kriging', gviz.plot_kriging_surface, kriging, sites=coords)
        if 'cross_validation' in artifacts:
            save('geostat_cross_validation', gviz.plot_cross_validation,
                 artifacts['cross_validation'])

    return SectionResult('geostat', summary, save.paths, artifacts)


# ═══════════════════════════════════════════════════════════════════════
# SECTION 2: AREAL DATA
# ═══════════════════════════════════════════════════════════════════════

def run_areal_section(
    config: WorkshopConfig,
    rng: np.random.Generator,
    permutation_rng: np.random.Generator,
    output_dir: Optional[Path] = None,
) -> SectionResult:
    """Disease counts → smoothing → weights → autocorrelation → regression."""
    a = config.areal
    ws = config.workshop
    save = _FigureSink(config, output_dir)

    gdf = make_areal_disease_data(
        nrows=a.nrows, ncols=a.ncols, cell_size=a.cell_size,
        baseline_rate=a.baseline_rate, population_mean=a.population_mean,
        covariate_effect=a.covariate_effect, spatial_rho=a.spatial_rho,
        noise_sd=a.noise_sd, rng=rng, crs=ws.crs,
    )
    observed = gdf['cases'].to_numpy(dtype=float)
    expected = gdf['expected'].to_numpy(dtype=float)
    gdf['smr'] = standardized_ratio(observed, expected)
    gdf['excess'] = excess_risk(observed, expected)

    w = build_weights(gdf, kind=a.weights, k=a.k,
                      threshold=a.distance_threshold, transform=a.transform)
    w_summary = summarize_weights(w, a.weights)
    logger.info("areal: %d regions, %d cases, %s weights (mean %.1f neighbours)",
                len(gdf), int(observed.sum()), a.weights, w_summary.mean_neighbors)

    if a.smoothing == 'global':
        gdf['rr'] = empirical_bayes_global(observed, expected)
    elif a.smoothing == 'local':
        gdf['rr'] = empirical_bayes_local(observed, expected, w)
    else:
        gdf['rr'] = gdf['smr']
    y = gdf['rr'].to_numpy()

    moran = morans_i(y, w, permutations=ws.permutations, rng=permutation_rng)
    geary = gearys_c(y, w, permutations=ws.permutations, rng=permutation_rng)
    lisa = local_morans_i(y, w, permutations=ws.permutations, rng=permutation_rng,
                          alpha=ws.alpha, fdr=a.fdr)
    logger.info("areal: Moran's I = %.3f (pseudo p = %.3g), %d significant LISA units",
                moran.I, moran.p_sim, int(lisa.significant.sum()))

    summary: Dict[str, Any] = {
        'n_regions': int(len(gdf)),
        'total_cases': int(observed.sum()),
        'smoothing': a.smoothing,
        'smr': {'min': float(gdf['smr'].min()), 'max': float(gdf['smr'].max())},
        'rr': {'min': float(y.min()), 'max': float(y.max())},
        'weights': w_summary.to_dict(),
        'moran': moran.to_dict(),
        'geary': geary.to_dict(),
        'lisa': lisa.to_dict(),
    }
    artifacts: Dict[str, Any] = {
        'data': gdf, 'weights': w, 'moran': moran, 'geary': geary, 'lisa': lisa,
    }

    if a.regression:
        # Empirical log-SMR with a 0.5 continuity correction for zero counts
        log_smr = np.log((observed + 0.5) / expected)
        X = gdf[['deprivation']].to_numpy()
        names = ['deprivation']
        fits = {
            'ols': ols(log_smr, X, w=w, names=names),
            'lag': spatial_lag_model(log_smr, X, w, names=names),
            'error': spatial_error_model(log_smr, X, w, names=names),
        }
        summary['regression'] = {k: v.to_dict() for k, v in fits.items()}
        artifacts['regression'] = fits
        gdf['ols_residual'] = fits['ols'].residuals

    if save.enabled:
        from spatepi.viz import areal as aviz
        save('areal_smr', aviz.plot_choropleth, gdf, 'smr',
             title='Standardised morbidity ratio')
        if a.smoothing != 'none':
            save('areal_smoothed_rr', aviz.plot_choropleth, gdf, 'rr',
                 title=f'Empirical Bayes relative risk ({a.smoothing})')
        save('areal_moran_scatter', aviz.plot_moran_scatter, y, w, moran=moran,
             variable='relative risk')
        save('areal_moran_permutations', aviz.plot_permutation_distribution, moran)
        save('areal_lisa_clusters', aviz.plot_lisa_clusters, gdf, lisa)
        if a.regression:
            save('areal_ols_residuals', aviz.plot_choropleth, gdf, 'ols_residual',
                 title='OLS residuals (log SMR ~ deprivation)', diverging=True)

    return SectionResult('areal', summary, save.paths, artifacts)


# ═══════════════════════════════════════════════════════════════════════
# SECTION 3: POINT PATTERNS
# ═══════════════════════════════════════════════════════════════════════

def run_point_pattern_section(
    config: WorkshopConfig,
    rng: np.random.Generator,
    envelope_rng: np.random.Generator,
    output_dir: Optional[Path] = None,
) -> SectionResult:
    """Case-control pattern → first-order → second-order → relative risk."""
    p = config.points
    save = _FigureSink(config, output_dir)

    window = make_window(p.window, p.width, p.height)
    data = make_case_control(
        window, process=p.process, n_controls=p.n_controls, rng=rng,
        crs=config.workshop.crs, intensity=p.intensity, kappa=p.kappa,
        cluster_scale=p.cluster_scale, mu=p.mu,
    )
    cases, controls = split_case_control(data)
    if cases.shape[0] < 2:
        raise ValueError(
            f"the '{p.process}' process produced {cases.shape[0]} case(s); "
            f"increase points.intensity / kappa / mu"
        )
    logger.info("points: %d cases (%s), %d controls in a %s window",
                cases.shape[0], p.process, controls.shape[0], p.window)

    lam = intensity(cases, window)
    kde = kernel_density(cases, window, p.bandwidth, p.grid_size, p.edge_correction)
    quadrats = quadrat_test(cases, window, p.nx, p.ny)
    radii = default_radii(window, p.n_radii, p.max_radius)
    k_fn = ripley_k(cases, window, radii, p.k_correction)
    l_fn = l_function(k_fn)
    g_fn = g_function(cases, window, radii,
                      'border' if p.k_correction == 'border' else 'none')
    ce = clark_evans(cases, window)
    envelope = csr_envelope(cases, window, 'L', radii, p.n_simulations,
                            envelope_rng, p.k_correction)
    risk = relative_risk(cases, controls, window, p.bandwidth, p.grid_size)
    logger.info("points: Clark-Evans R = %.3f, quadrat X2 = %.1f (p = %.3g)",
                ce.R, quadrats.statistic, quadrats.p_value)

    summary: Dict[str, Any] = {
        'n_cases': int(cases.shape[0]),
        'n_controls': int(controls.shape[0]),
        'window_area': float(window.area),
        'intensity': float(lam),
        'kde': kde.to_dict(),
        'quadrat_test': quadrats.to_dict(),
        'K': k_fn.to_dict(),
        'L': l_fn.to_dict(),
        'G': g_fn.to_dict(),
        'clark_evans': ce.to_dict(),
        'envelope': envelope.to_dict(),
        'relative_risk': risk.to_dict(),
    }
    artifacts: Dict[str, Any] = {
        'window': window, 'data': data, 'kde': kde, 'quadrats': quadrats,
        'K': k_fn, 'L': l_fn, 'G': g_fn, 'clark_evans': ce,
        'envelope': envelope, 'relative_risk': risk,
    }

    if save.enabled:
        from spatepi.viz import points as pviz
        save('points_pattern', pviz.plot_point_pattern, cases, window, controls=controls)
        save('points_kde', pviz.plot_density_surface, kde, window=window, points=cases)
        save('points_quadrats', pviz.plot_quadrat_counts, quadrats, window, points=cases)
        save('points_l_envelope', pviz.plot_summary_function, envelope)
        save('points_g_function', pviz.plot_summary_function, g_fn, intensity=lam)
        save('points_relative_risk', pviz.plot_relative_risk, risk, window,
             cases=cases, controls=controls)

    return SectionResult('points', summary, save.paths, artifacts)


# ═══════════════════════════════════════════════════════════════════════
# END-TO-END
# ═══════════════════════════════════════════════════════════════════════

def run_workshop(config: WorkshopConfig) -> WorkshopResult:
    """Run the configured sections and write the JSON summary.

    Each section draws from its own named stream, so adding or removing a
    section never changes the numbers another section produces.
    """
    output_dir = Path(config.output.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    cfg_dict = config_to_dict(config)
    chash = config_hash(yaml.safe_dump(cfg_dict, sort_keys=True))
    rngs = create_rng_hierarchy(config.workshop.seed)

    timings: Dict[str, float] = {}
    sections: Dict[str, SectionResult] = {}
    for name in config.workshop.sections:
        logger.info("── section: %s ──", name)
        with timer(name, timings):
            if name == 'geostat':
                result = run_geostat_section(
                    config, get_stream(rngs, 'geostat'), output_dir)
            elif name == 'areal':
                result = run_areal_section(
                    config, get_stream(rngs, 'areal'),
                    get_stream(rngs, 'permutation'), output_dir)
            elif name == 'points':
                result = run_point_pattern_section(
                    config, get_stream(rngs, 'points'),
                    get_stream(rngs, 'envelope'), output_dir)
            else:
                raise ValueError(f"Unknown workshop section '{name}'")
        sections[name] = result
        logger.info("section %s finished in %.2fs (%d figures)",
                    name, timings[name], len(result.figures))

    summary = {
        'package': 'spatepi',
        'version': __version__,
        'git_hash': get_git_hash(),
        'config_hash': chash,
        'seed': config.workshop.seed,
        'sections': {name: s.summary for name, s in sections.items()},
        'figures': {name: s.figures for name, s in sections.items()},
        'timings': timings,
        'config': cfg_dict,
    }
    summary_path = output_dir / config.output.summary_file
    with open(summary_path, 'w') as f:
        json.dump(summary, f, indent=2, default=_json_default)
    logger.info("summary written to %s", summary_path)

    return WorkshopResult(sections=sections, timings=timings,
                          config_hash=chash, summary_path=summary_path)
