"""SpatEpi: spatial-epidemiology workshop toolkit.

Reproducible companion code for a three-part workshop:
  - Geostatistics: empirical variograms, model fitting, ordinary kriging
  - Areal data: spatial weights, global/local Moran's I, Geary's C,
    spatial lag and spatial error regression, disease-map smoothing
  - Point patterns: kernel density, quadrat tests, K/L/G functions with
    CSR envelopes, case-control relative risk

Each section can be run on its own or end-to-end via ``spatepi.workshop``.
"""

__version__ = "0.1.0"
