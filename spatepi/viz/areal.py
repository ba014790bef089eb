"""Areal-data figures: choropleths, Moran scatterplot, LISA cluster map.

Every function:
  - Accepts a GeoDataFrame and/or result objects from
    ``spatepi.autocorrelation``
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
import matplotlib.colors as mcolors
import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import numpy as np
from libpysal.weights import W

from spatepi.autocorrelation import moran_scatter_data, quadrants
from spatepi.types import GearyResult, LisaQuadrant, LocalMoranResult, MoranResult
from spatepi.viz.style import (
    ACCENT_COLORS,
    DIVERGING_CMAP,
    GRID_COLOR,
    LISA_COLORS,
    SEQUENTIAL_CMAP,
    THEORY_COLOR,
    add_colorbar,
    dark_figure,
    map_axes,
    save_figure,
    symmetric_norm,
    themed_legend,
)


# ═══════════════════════════════════════════════════════════════════════
# 1. CHOROPLETH
# ═══════════════════════════════════════════════════════════════════════

def plot_choropleth(
    gdf: gpd.GeoDataFrame,
    column: str,
    values: Optional[np.ndarray] = None,
    title: Optional[str] = None,
    diverging: bool = False,
    label: Optional[str] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Polygons shaded by a column (or by an aligned ``values`` array).

    Args:
        gdf: Polygon GeoDataFrame.
        column: Column to map; also the default colourbar label.
        values: Optional (n,) array used instead of ``gdf[column]``.
        title: Plot title (defaults to the column name).
        diverging: Use a zero-centred diverging palette (residuals,
            log relative risks).
        label: Colourbar label.
        save_path: Optional path to save the figure.
    """
    if values is None:
        if column not in gdf.columns:
            raise ValueError(f"column '{column}' not found")
        values = gdf[column].to_numpy(dtype=float)
    values = np.asarray(values, dtype=float)
    if values.shape[0] != len(gdf):
        raise ValueError(f"values has {values.shape[0]} entries, frame has {len(gdf)}")

    if diverging:
        norm = symmetric_norm(values)
        cmap = plt.get_cmap(DIVERGING_CMAP)
    else:
        finite = values[np.isfinite(values)]
        vmin, vmax = (finite.min(), finite.max()) if finite.size else (0.0, 1.0)
        if vmin == vmax:
            vmax = vmin + 1.0
        norm = mcolors.Normalize(vmin=vmin, vmax=vmax)
        cmap = plt.get_cmap(SEQUENTIAL_CMAP)

    fig, ax = dark_figure()
    colors = cmap(norm(np.ma.masked_invalid(values)))
    colors[~np.isfinite(values)] = mcolors.to_rgba('#444444')
    gdf.plot(ax=ax, color=colors, edgecolor=GRID_COLOR, linewidth=0.4)
    sm = plt.cm.ScalarMappable(norm=norm, cmap=cmap)
    sm.set_array([])
    add_colorbar(fig, sm, ax, label or column)
    map_axes(ax, title or column)
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 2. MORAN SCATTERPLOT
# ═══════════════════════════════════════════════════════════════════════

def plot_moran_scatter(
    y: np.ndarray,
    w: W,
    moran: Optional[MoranResult] = None,
    variable: str = 'y',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Standardised value against its spatial lag, coloured by quadrant.

    The fitted line's slope is Moran's I for row-standardised weights.
    """
    z, lag, slope = moran_scatter_data(y, w)
    q = quadrants(z, lag)

    fig, ax = dark_figure(figsize=(8, 8))
    for quad in (LisaQuadrant.HH, LisaQuadrant.LH, LisaQuadrant.LL, LisaQuadrant.HL):
        sel = q == quad
        ax.scatter(z[sel], lag[sel], s=28, color=LISA_COLORS[quad],
                   edgecolors='white', linewidths=0.3, zorder=3,
                   label=f'{quad.name} ({int(sel.sum())})')
    xs = np.array([z.min(), z.max()])
    intercept = float(lag.mean() - slope * z.mean())
    ax.plot(xs, intercept + slope * xs, color=ACCENT_COLORS[2], linewidth=2)
    ax.axhline(0.0, color=THEORY_COLOR, linewidth=0.8)
    ax.axvline(0.0, color=THEORY_COLOR, linewidth=0.8)

    title = f"Moran scatterplot: slope {slope:.3f}"
    if moran is not None:
        p = moran.p_sim if moran.p_sim is not None else moran.p_norm
        title = f"Moran's I = {moran.I:.3f} (p = {p:.3g})"
    ax.set_xlabel(f'{variable} (standardised)', fontsize=12)
    ax.set_ylabel(f'Spatial lag of {variable}', fontsize=12)
    ax.set_title(title, fontsize=13, fontweight='bold')
    themed_legend(ax, loc='upper left', fontsize=9)
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 3. LISA CLUSTER MAP
# ═══════════════════════════════════════════════════════════════════════

def plot_lisa_clusters(
    gdf: gpd.GeoDataFrame,
    lisa: LocalMoranResult,
    title: Optional[str] = None,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Cluster map: significant HH/LL/LH/HL units coloured, the rest grey."""
    if len(lisa.clusters) != len(gdf):
        raise ValueError(
            f"LISA has {len(lisa.clusters)} units, frame has {len(gdf)}"
        )
    colors = [LISA_COLORS[LisaQuadrant(int(c))] for c in lisa.clusters]

    fig, ax = dark_figure()
    gdf.plot(ax=ax, color=colors, edgecolor=GRID_COLOR, linewidth=0.4)
    counts = lisa.counts()
    handles = [
        mpatches.Patch(color=LISA_COLORS[q], label=f'{q.name} ({counts[q.name]})')
        for q in (LisaQuadrant.HH, LisaQuadrant.LL, LisaQuadrant.LH,
                  LisaQuadrant.HL, LisaQuadrant.NS)
    ]
    themed_legend(ax, handles=handles, loc='upper left',
                  bbox_to_anchor=(1.01, 1.0), fontsize=9)
    if title is None:
        rule = 'FDR' if lisa.threshold != lisa.alpha else 'p'
        title = f'LISA clusters ({rule} ≤ {lisa.threshold:.3g})'
    map_axes(ax, title)
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 4. PERMUTATION NULL DISTRIBUTION
# ═══════════════════════════════════════════════════════════════════════

def plot_permutation_distribution(
    result: Union[MoranResult, GearyResult],
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Histogram of permuted statistics with the observed value marked."""
    if result.sim is None:
        raise ValueError("result has no permutation distribution (permutations=0)")
    if isinstance(result, MoranResult):
        name, observed = "Moran's I", result.I
    else:
        name, observed = "Geary's C", result.C

    fig, ax = dark_figure(figsize=(9, 5.5))
    ax.hist(result.sim, bins=40, color=ACCENT_COLORS[3], edgecolor='white',
            linewidth=0.3, alpha=0.85, label=f'{result.permutations} permutations')
    ax.axvline(result.expected, color=THEORY_COLOR, linestyle='--', linewidth=1,
               label=f'Expected {result.expected:.3f}')
    ax.axvline(observed, color=ACCENT_COLORS[0], linewidth=2.5,
               label=f'Observed {observed:.3f}')
    ax.set_xlabel(name, fontsize=12)
    ax.set_ylabel('Frequency', fontsize=12)
    ax.set_title(f'{name} reference distribution (pseudo p = {result.p_sim:.3g})',
                 fontsize=13, fontweight='bold')
    themed_legend(ax, loc='upper left')
    if save_path:
        save_figure(fig, save_path)
    return fig
