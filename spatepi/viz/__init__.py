"""SpatEpi visualization library.

Modules:
  - style: Dark theme colours, palettes and helpers
  - geostat: Sites, variogram, kriging surface, cross-validation
  - areal: Choropleth, Moran scatterplot, LISA clusters, null distribution
  - points: Event map, kernel density, quadrats, K/L/G envelopes, relative risk
"""

from spatepi.viz.style import (  # noqa: F401
    ACCENT_COLORS,
    DARK_BG,
    DARK_PANEL,
    GRID_COLOR,
    LISA_COLORS,
    TEXT_COLOR,
    apply_dark_theme,
    dark_figure,
    save_figure,
)

from spatepi.viz.geostat import (  # noqa: F401
    plot_cross_validation,
    plot_kriging_surface,
    plot_sites,
    plot_variogram,
)

from spatepi.viz.areal import (  # noqa: F401
    plot_choropleth,
    plot_lisa_clusters,
    plot_moran_scatter,
    plot_permutation_distribution,
)

from spatepi.viz.points import (  # noqa: F401
    plot_density_surface,
    plot_point_pattern,
    plot_quadrat_counts,
    plot_relative_risk,
    plot_summary_function,
)
