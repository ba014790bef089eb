"""Geostatistics figures: sites, variogram, kriging surface, cross-validation.

Every function:
  - Accepts result objects from ``spatepi.geostat`` (or a GeoDataFrame)
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)
  - Uses the shared dark theme from ``spatepi.viz.style``

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import Optional

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np

from spatepi.types import CrossValidationResult, KrigingResult, VariogramFit
from spatepi.viz.style import (
    ACCENT_COLORS,
    SEQUENTIAL_CMAP,
    TEXT_COLOR,
    THEORY_COLOR,
    VARIANCE_CMAP,
    add_colorbar,
    dark_figure,
    grid_extent,
    map_axes,
    save_figure,
    themed_legend,
)


# ═══════════════════════════════════════════════════════════════════════
# 1. MONITORING SITES
# ═══════════════════════════════════════════════════════════════════════

def plot_sites(
    gdf: gpd.GeoDataFrame,
    column: str = 'exposure',
    title: str = 'Monitoring sites',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Site locations coloured by the measured value."""
    if column not in gdf.columns:
        raise ValueError(f"column '{column}' not found")
    fig, ax = dark_figure()
    values = gdf[column].to_numpy(dtype=float)
    sc = ax.scatter(gdf.geometry.x, gdf.geometry.y, c=values,
                    cmap=SEQUENTIAL_CMAP, s=40, edgecolors='white',
                    linewidths=0.5, zorder=3)
    add_colorbar(fig, sc, ax, column)
    map_axes(ax, title)
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 2. VARIOGRAM
# ═══════════════════════════════════════════════════════════════════════

def plot_variogram(
    fit: VariogramFit,
    show_counts: bool = True,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Experimental semivariances with the fitted model curve.

    Marker size scales with the number of point pairs per lag class;
    dotted lines mark the effective range and nugget + sill.
    """
    fig, ax = dark_figure(figsize=(9, 6))
    lags = fit.lag_centers
    counts = np.asarray(fit.counts, dtype=float)
    sizes = 20 + 120 * counts / counts.max() if counts.max() > 0 else 40

    ax.scatter(lags, fit.experimental, s=sizes, color=ACCENT_COLORS[2],
               edgecolors='white', linewidths=0.5, zorder=3,
               label=f'Experimental ({fit.estimator})')
    h = np.linspace(0.0, float(fit.bins[-1]), 200)
    ax.plot(h, fit.model_curve(h), color=ACCENT_COLORS[0], linewidth=2,
            label=f'{fit.model.capitalize()} model')

    ax.axvline(fit.effective_range, color=THEORY_COLOR, linestyle=':', linewidth=1)
    ax.axhline(fit.nugget + fit.sill, color=THEORY_COLOR, linestyle=':', linewidth=1)

    if show_counts:
        for x, y, c in zip(lags, fit.experimental, counts):
            ax.annotate(f'{int(c)}', (x, y), xytext=(0, 8),
                        textcoords='offset points', ha='center',
                        color=TEXT_COLOR, fontsize=7)

    ax.set_xlabel('Lag distance (m)', fontsize=12)
    ax.set_ylabel('Semivariance γ(h)', fontsize=12)
    ax.set_title(
        f'Variogram: range {fit.effective_range:.0f}, sill {fit.sill:.2f}, '
        f'nugget {fit.nugget:.2f}',
        fontsize=13, fontweight='bold',
    )
    ax.set_xlim(left=0)
    ax.set_ylim(bottom=0)
    themed_legend(ax, loc='lower right')
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 3. KRIGING SURFACE
# ═══════════════════════════════════════════════════════════════════════

def plot_kriging_surface(
    result: KrigingResult,
    sites: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Side-by-side kriging prediction and kriging variance maps.

    Args:
        result: Output of ordinary_kriging.
        sites: Optional (n, 2) site coordinates overlaid on both panels.
        save_path: Optional path to save the figure.
    """
    fig, axes = dark_figure(1, 2, figsize=(15, 6.5))
    extent = grid_extent(result.grid_x, result.grid_y)
    panels = (
        (result.prediction, SEQUENTIAL_CMAP, 'Predicted value', 'Kriging prediction'),
        (result.variance, VARIANCE_CMAP, 'Kriging variance', 'Prediction uncertainty'),
    )
    for ax, (values, cmap, label, title) in zip(axes, panels):
        im = ax.imshow(np.ma.masked_invalid(values), origin='lower',
                       extent=extent, cmap=cmap, interpolation='nearest')
        add_colorbar(fig, im, ax, label)
        if sites is not None:
            ax.scatter(sites[:, 0], sites[:, 1], s=8, color='white',
                       alpha=0.7, zorder=3)
        map_axes(ax, title)
    if result.n_missing:
        fig.suptitle(f'{result.n_missing} cells unpredicted (too few sites in range)',
                     color=TEXT_COLOR, fontsize=10)
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 4. CROSS-VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def plot_cross_validation(
    cv: CrossValidationResult,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Observed vs leave-one-out predicted values, and the residual histogram."""
    fig, (ax1, ax2) = dark_figure(1, 2, figsize=(13, 5.5))
    ok = np.isfinite(cv.predicted)

    ax1.scatter(cv.observed[ok], cv.predicted[ok], s=25, color=ACCENT_COLORS[1],
                edgecolors='white', linewidths=0.4, zorder=3)
    lo = float(min(cv.observed[ok].min(), cv.predicted[ok].min())) if ok.any() else 0.0
    hi = float(max(cv.observed[ok].max(), cv.predicted[ok].max())) if ok.any() else 1.0
    ax1.plot([lo, hi], [lo, hi], color=THEORY_COLOR, linestyle='--', linewidth=1)
    ax1.set_xlabel('Observed', fontsize=12)
    ax1.set_ylabel('LOO predicted', fontsize=12)
    ax1.set_title(f'RMSE {cv.rmse:.3f}   MAE {cv.mae:.3f}',
                  fontsize=13, fontweight='bold')

    ax2.hist(cv.residuals[ok], bins=20, color=ACCENT_COLORS[3],
             edgecolor='white', linewidth=0.4)
    ax2.axvline(0.0, color=THEORY_COLOR, linestyle='--', linewidth=1)
    ax2.set_xlabel('Residual (observed − predicted)', fontsize=12)
    ax2.set_ylabel('Sites', fontsize=12)
    ax2.set_title(f'Mean error {cv.mean_error:+.3f}', fontsize=13, fontweight='bold')

    if save_path:
        save_figure(fig, save_path)
    return fig
