"""Point-pattern figures: event maps, kernel surfaces, quadrats, K/L/G.

Every function:
  - Accepts coordinate arrays, a Window, and/or result objects from
    ``spatepi.pointpattern``
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)
  - Uses the shared dark theme from ``spatepi.viz.style``

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import Optional, Union

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np

from spatepi.pointpattern import Window
from spatepi.types import DensitySurface, Envelope, QuadratTestResult, SummaryFunction
from spatepi.viz.style import (
    CASE_COLOR,
    CONTROL_COLOR,
    DIVERGING_CMAP,
    ENVELOPE_COLOR,
    GRID_COLOR,
    OBSERVED_COLOR,
    SEQUENTIAL_CMAP,
    TEXT_COLOR,
    THEORY_COLOR,
    add_colorbar,
    dark_figure,
    grid_extent,
    map_axes,
    save_figure,
    symmetric_norm,
    themed_legend,
)


def _draw_window(ax, window: Window) -> None:
    gpd.GeoSeries([window.geometry]).boundary.plot(
        ax=ax, color=TEXT_COLOR, linewidth=1.2, zorder=4,
    )


# ═══════════════════════════════════════════════════════════════════════
# 1. EVENT MAP
# ═══════════════════════════════════════════════════════════════════════

def plot_point_pattern(
    points: np.ndarray,
    window: Window,
    controls: Optional[np.ndarray] = None,
    title: Optional[str] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Event locations in their window; controls drawn underneath if given."""
    fig, ax = dark_figure()
    if controls is not None and len(controls):
        ax.scatter(controls[:, 0], controls[:, 1], s=12, marker='^',
                   color=CONTROL_COLOR, alpha=0.7, zorder=2,
                   label=f'Controls ({len(controls)})')
    ax.scatter(points[:, 0], points[:, 1], s=14, color=CASE_COLOR,
               edgecolors='white', linewidths=0.3, zorder=3,
               label=f'Cases ({len(points)})' if controls is not None
               else f'Events ({len(points)})')
    _draw_window(ax, window)
    map_axes(ax, title or f'Point pattern (n = {len(points)})')
    themed_legend(ax, loc='upper right', fontsize=9)
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 2. KERNEL INTENSITY SURFACE
# ═══════════════════════════════════════════════════════════════════════

def plot_density_surface(
    surface: DensitySurface,
    window: Optional[Window] = None,
    points: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Kernel intensity surface (events per unit area)."""
    fig, ax = dark_figure()
    im = ax.imshow(np.ma.masked_invalid(surface.values), origin='lower',
                   extent=grid_extent(surface.grid_x, surface.grid_y),
                   cmap=SEQUENTIAL_CMAP, interpolation='bilinear')
    add_colorbar(fig, im, ax, 'Intensity (events / m²)')
    if points is not None:
        ax.scatter(points[:, 0], points[:, 1], s=4, color='white', alpha=0.5, zorder=3)
    if window is not None:
        _draw_window(ax, window)
    edge = 'edge-corrected' if surface.edge_corrected else 'uncorrected'
    map_axes(ax, f'Kernel density (σ = {surface.sigma:.0f} m, {edge})')
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 3. QUADRAT COUNTS
# ═══════════════════════════════════════════════════════════════════════

def plot_quadrat_counts(
    result: QuadratTestResult,
    window: Window,
    points: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Quadrat grid annotated with observed / expected counts."""
    fig, ax = dark_figure()
    if points is not None:
        ax.scatter(points[:, 0], points[:, 1], s=6, color=CASE_COLOR,
                   alpha=0.6, zorder=2)
    for x in result.x_edges:
        ax.axvline(x, color=GRID_COLOR, linewidth=1.0, zorder=1)
    for y in result.y_edges:
        ax.axhline(y, color=GRID_COLOR, linewidth=1.0, zorder=1)

    xc = 0.5 * (result.x_edges[:-1] + result.x_edges[1:])
    yc = 0.5 * (result.y_edges[:-1] + result.y_edges[1:])
    ny, nx = result.counts.shape
    for j in range(ny):
        for i in range(nx):
            if not np.isfinite(result.expected[j, i]):
                continue
            ax.text(xc[i], yc[j],
                    f'{int(result.counts[j, i])}\n({result.expected[j, i]:.1f})',
                    ha='center', va='center', fontsize=8, color=TEXT_COLOR,
                    zorder=5)
    _draw_window(ax, window)
    map_axes(ax, f'Quadrat test: X² = {result.statistic:.1f}, '
                 f'df = {result.df}, p = {result.p_value:.3g}')
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 4. SUMMARY FUNCTIONS & ENVELOPES
# ═══════════════════════════════════════════════════════════════════════

def _csr_curve(name: str, r: np.ndarray, intensity: Optional[float]) -> Optional[np.ndarray]:
    if name == 'K':
        return np.pi * r ** 2
    if name == 'L':
        return r
    if name == 'G' and intensity is not None:
        return 1.0 - np.exp(-intensity * np.pi * r ** 2)
    return None


def plot_summary_function(
    summary: Union[Envelope, SummaryFunction],
    intensity: Optional[float] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Observed K, L or G with its CSR benchmark and (optional) envelope.

    Args:
        summary: An Envelope (shaded band drawn) or a bare SummaryFunction.
        intensity: Estimated λ, needed only for the CSR curve of G.
        save_path: Optional path to save the figure.
    """
    fig, ax = dark_figure(figsize=(9, 6))
    r = summary.radii
    if isinstance(summary, Envelope):
        observed = summary.observed
        ax.fill_between(r, summary.lower, summary.upper, color=ENVELOPE_COLOR,
                        alpha=0.3, linewidth=0,
                        label=f'CSR envelope ({summary.n_simulations} sims)')
        subtitle = (f'{int(np.sum(summary.above))} radii above, '
                    f'{int(np.sum(summary.below))} below')
    else:
        observed = summary.values
        subtitle = f'{summary.correction} correction'

    theory = _csr_curve(summary.name, r, intensity)
    if theory is not None:
        ax.plot(r, theory, color=THEORY_COLOR, linestyle='--', linewidth=1.2,
                label='CSR')
    ax.plot(r, observed, color=OBSERVED_COLOR, linewidth=2, label='Observed')

    ax.set_xlabel('Distance r (m)', fontsize=12)
    ax.set_ylabel(f'{summary.name}(r)', fontsize=12)
    ax.set_title(f'{summary.name}-function: {subtitle}', fontsize=13,
                 fontweight='bold')
    themed_legend(ax, loc='upper left')
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 5. SPATIAL RELATIVE RISK
# ═══════════════════════════════════════════════════════════════════════

def plot_relative_risk(
    surface: DensitySurface,
    window: Window,
    cases: Optional[np.ndarray] = None,
    controls: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Log relative-risk surface (cases vs controls), red above zero."""
    fig, ax = dark_figure()
    im = ax.imshow(np.ma.masked_invalid(surface.values), origin='lower',
                   extent=grid_extent(surface.grid_x, surface.grid_y),
                   cmap=DIVERGING_CMAP, norm=symmetric_norm(surface.values),
                   interpolation='bilinear')
    add_colorbar(fig, im, ax, 'log relative risk')
    if controls is not None:
        ax.scatter(controls[:, 0], controls[:, 1], s=6, marker='^',
                   color=CONTROL_COLOR, alpha=0.6, zorder=2)
    if cases is not None:
        ax.scatter(cases[:, 0], cases[:, 1], s=6, color='white', alpha=0.6, zorder=3)
    _draw_window(ax, window)
    map_axes(ax, f'Spatial relative risk (σ = {surface.sigma:.0f} m)')
    if save_path:
        save_figure(fig, save_path)
    return fig
