"""Dark theme styling for SpatEpi figures.

Provides the shared colours, palettes and figure helpers so every
workshop plot has the same look.
"""

import matplotlib as mpl
mpl.use('Agg')

import matplotlib.pyplot as plt
import numpy as np

from spatepi.types import LisaQuadrant

# ═══════════════════════════════════════════════════════════════════════
# COLOR PALETTE
# ═══════════════════════════════════════════════════════════════════════

DARK_BG = '#1a1a2e'
DARK_PANEL = '#16213e'
TEXT_COLOR = '#e0e0e0'
GRID_COLOR = '#2a2a4a'

ACCENT_COLORS = [
    '#e94560',  # crimson
    '#48c9b0',  # teal
    '#f39c12',  # amber
    '#3498db',  # sky blue
    '#2ecc71',  # green
    '#9b59b6',  # violet
]

# PySAL / GeoDa cluster-map convention
LISA_COLORS = {
    LisaQuadrant.NS: '#6c6c7a',
    LisaQuadrant.HH: '#d7191c',
    LisaQuadrant.LH: '#abd9e9',
    LisaQuadrant.LL: '#2c7bb6',
    LisaQuadrant.HL: '#fdae61',
}

CASE_COLOR = '#e94560'
CONTROL_COLOR = '#48c9b0'
OBSERVED_COLOR = '#f39c12'
ENVELOPE_COLOR = '#3498db'
THEORY_COLOR = '#95a5a6'

SEQUENTIAL_CMAP = 'magma'
DIVERGING_CMAP = 'RdBu_r'
VARIANCE_CMAP = 'viridis'


# ═══════════════════════════════════════════════════════════════════════
# THEME HELPERS
# ═══════════════════════════════════════════════════════════════════════

def apply_dark_theme(fig=None, ax=None):
    """Apply dark theme to a matplotlib Figure and/or Axes."""
    if fig is not None:
        fig.patch.set_facecolor(DARK_BG)
    if ax is not None:
        ax.set_facecolor(DARK_PANEL)
        ax.tick_params(colors=TEXT_COLOR)
        ax.xaxis.label.set_color(TEXT_COLOR)
        ax.yaxis.label.set_color(TEXT_COLOR)
        ax.title.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        ax.grid(True, color=GRID_COLOR, alpha=0.3, linewidth=0.5)


def dark_figure(nrows=1, ncols=1, figsize=None, **kwargs):
    """Create a Figure + Axes with the dark theme already applied.

    Returns (fig, ax) where ax may be a single Axes or an ndarray.
    """
    if figsize is None:
        figsize = (8, 7) if (nrows == 1 and ncols == 1) else (7 * ncols, 6 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    apply_dark_theme(fig=fig)
    if isinstance(axes, np.ndarray):
        for a in axes.flat:
            apply_dark_theme(ax=a)
    else:
        apply_dark_theme(ax=axes)
    return fig, axes


def map_axes(ax, title=None, units='m'):
    """Equal-aspect map panel with easting / northing labels and no grid."""
    ax.set_aspect('equal')
    ax.grid(False)
    ax.set_xlabel(f'Easting ({units})')
    ax.set_ylabel(f'Northing ({units})')
    if title:
        ax.set_title(title, fontsize=13, fontweight='bold')


def add_colorbar(fig, mappable, ax, label):
    """Colourbar with themed label and tick colours."""
    cbar = fig.colorbar(mappable, ax=ax, pad=0.02, shrink=0.8)
    cbar.set_label(label, color=TEXT_COLOR, fontsize=11)
    cbar.ax.yaxis.set_tick_params(color=TEXT_COLOR)
    plt.setp(cbar.ax.yaxis.get_ticklabels(), color=TEXT_COLOR)
    return cbar


def themed_legend(ax, **kwargs):
    """Legend on the dark panel."""
    leg = ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
                    labelcolor=TEXT_COLOR, **kwargs)
    return leg


def grid_extent(grid_x, grid_y):
    """imshow extent for cell-centre coordinates (regular spacing)."""
    dx = (grid_x[1] - grid_x[0]) if len(grid_x) > 1 else 1.0
    dy = (grid_y[1] - grid_y[0]) if len(grid_y) > 1 else 1.0
    return (grid_x[0] - dx / 2, grid_x[-1] + dx / 2,
            grid_y[0] - dy / 2, grid_y[-1] + dy / 2)


def symmetric_norm(values):
    """Diverging norm centred on zero for the finite part of ``values``."""
    finite = np.asarray(values, dtype=float)
    finite = finite[np.isfinite(finite)]
    vmax = float(np.abs(finite).max()) if finite.size else 1.0
    if vmax == 0:
        vmax = 1.0
    return mpl.colors.TwoSlopeNorm(vmin=-vmax, vcenter=0.0, vmax=vmax)


def save_figure(fig, save_path, dpi=150):
    """Save a figure with tight layout and dark background."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)
