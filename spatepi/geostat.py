"""Geostatistics: variograms and ordinary kriging.

Workflow of the workshop's first section:
  1. empirical_variogram / fit_variogram: bin half squared differences by
     lag, fit a theoretical model (scikit-gstat Variogram)
  2. prediction_grid + ordinary_kriging: predict the exposure surface and
     its kriging variance on a regular grid (scikit-gstat OrdinaryKriging)
  3. cross_validate: leave-one-out kriging to judge the model choice

Kriging uses only sites within the fitted effective range (at most
``max_points`` of them); cells with fewer than ``min_points`` such sites
are returned as NaN and counted in ``KrigingResult.n_missing``.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple, Union

import numpy as np
import skgstat as skg

from spatepi.pointpattern import Window
from spatepi.types import (
    VARIOGRAM_ESTIMATORS,
    VARIOGRAM_MODELS,
    CrossValidationResult,
    KrigingResult,
    VariogramFit,
)

logger = logging.getLogger(__name__)


def _check_inputs(coords: np.ndarray, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    coords = np.asarray(coords, dtype=float)
    values = np.asarray(values, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise ValueError(f"coords must have shape (n, 2), got {coords.shape}")
    if coords.shape[0] != values.shape[0]:
        raise ValueError(
            f"coords ({coords.shape[0]}) and values ({values.shape[0]}) differ in length"
        )
    if coords.shape[0] < 3:
        raise ValueError(f"need at least 3 sites, got {coords.shape[0]}")
    if not np.all(np.isfinite(values)):
        raise ValueError("values contain NaN or inf")
    if np.ptp(values) == 0:
        raise ValueError("values are constant; the variogram is identically zero")
    return coords, values


# ═══════════════════════════════════════════════════════════════════════
# VARIOGRAM
# ═══════════════════════════════════════════════════════════════════════

def empirical_variogram(
    coords: np.ndarray,
    values: np.ndarray,
    model: str = "spherical",
    estimator: str = "matheron",
    n_lags: int = 15,
    maxlag: Union[str, float, None] = "median",
    use_nugget: bool = True,
) -> VariogramFit:
    """Experimental variogram and least-squares model fit.

    Args:
        coords: (n, 2) site coordinates (projected units).
        values: (n,) measurements.
        model: Theoretical model name (see VARIOGRAM_MODELS).
        estimator: Semivariance estimator (see VARIOGRAM_ESTIMATORS).
        n_lags: Number of equal-width lag classes.
        maxlag: 'median', 'mean', an absolute distance, or a fraction
            (< 1) of the maximum pairwise distance.
        use_nugget: Fit a nugget term.

    Returns:
        VariogramFit wrapping the fitted skgstat.Variogram.
    """
    if model not in VARIOGRAM_MODELS:
        raise ValueError(f"model must be one of {VARIOGRAM_MODELS}, got '{model}'")
    if estimator not in VARIOGRAM_ESTIMATORS:
        raise ValueError(
            f"estimator must be one of {VARIOGRAM_ESTIMATORS}, got '{estimator}'"
        )
    if n_lags < 2:
        raise ValueError(f"n_lags must be >= 2, got {n_lags}")
    coords, values = _check_inputs(coords, values)

    V = skg.Variogram(
        coords, values,
        model=model,
        estimator=estimator,
        n_lags=n_lags,
        maxlag=maxlag,
        use_nugget=use_nugget,
    )
    desc = V.describe()
    return VariogramFit(
        bins=np.asarray(V.bins, dtype=float),
        experimental=np.asarray(V.experimental, dtype=float),
        counts=np.asarray(V.bin_count),
        model=model,
        estimator=estimator,
        effective_range=float(desc['effective_range']),
        sill=float(desc['sill']),
        nugget=float(desc['nugget']),
        rmse=float(V.rmse),
        n_sites=int(coords.shape[0]),
        variogram=V,
    )


def fit_variogram(coords: np.ndarray, values: np.ndarray, **kwargs) -> VariogramFit:
    """empirical_variogram + a log line describing the fit."""
    fit = empirical_variogram(coords, values, **kwargs)
    logger.info(
        "variogram (%s, %s): range=%.1f sill=%.3f nugget=%.3f rmse=%.4f",
        fit.model, fit.estimator, fit.effective_range, fit.sill,
        fit.nugget, fit.rmse,
    )
    return fit


# ═══════════════════════════════════════════════════════════════════════
# KRIGING
# ═══════════════════════════════════════════════════════════════════════

def prediction_grid(
    bounds: Tuple[float, float, float, float],
    resolution: float,
    window: Optional[Window] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Cell centres of a regular grid covering ``bounds``.

    Returns:
        (grid_x, grid_y, mask): 1-D centre coordinates and a (ny, nx)
        boolean mask (all True without a window).
    """
    if resolution <= 0:
        raise ValueError(f"resolution must be positive, got {resolution}")
    xmin, ymin, xmax, ymax = bounds
    if xmax <= xmin or ymax <= ymin:
        raise ValueError(f"degenerate bounds {bounds}")
    nx = max(1, int(np.ceil((xmax - xmin) / resolution)))
    ny = max(1, int(np.ceil((ymax - ymin) / resolution)))
    gx = xmin + resolution * (np.arange(nx) + 0.5)
    gy = ymin + resolution * (np.arange(ny) + 0.5)
    if window is None:
        mask = np.ones((ny, nx), dtype=bool)
    else:
        mask = window.mask(gx, gy)
    return gx, gy, mask


def ordinary_kriging(
    fit: VariogramFit,
    grid_x: np.ndarray,
    grid_y: np.ndarray,
    min_points: int = 5,
    max_points: int = 20,
    mask: Optional[np.ndarray] = None,
) -> KrigingResult:
    """Ordinary kriging of the fitted variogram's data onto a grid.

    Args:
        fit: Result of empirical_variogram.
        grid_x, grid_y: 1-D cell-centre coordinates.
        min_points, max_points: Kriging neighbourhood size.
        mask: Optional (ny, nx) mask; cells outside stay NaN and are not
            counted as missing.
    """
    if min_points < 1 or min_points > max_points:
        raise ValueError(
            f"min_points ({min_points}) must be in [1, max_points={max_points}]"
        )
    xx, yy = np.meshgrid(np.asarray(grid_x, float), np.asarray(grid_y, float))
    if mask is None:
        mask = np.ones(xx.shape, dtype=bool)
    elif mask.shape != xx.shape:
        raise ValueError(f"mask shape {mask.shape} != grid shape {xx.shape}")

    ok = skg.OrdinaryKriging(
        fit.variogram, min_points=min_points, max_points=max_points,
        mode='exact',
    )
    prediction = np.full(xx.shape, np.nan)
    variance = np.full(xx.shape, np.nan)
    if mask.any():
        prediction[mask] = ok.transform(xx[mask], yy[mask])
        variance[mask] = np.asarray(ok.sigma, dtype=float)

    n_missing = int(np.sum(np.isnan(prediction) & mask))
    if n_missing:
        logger.warning(
            "kriging left %d of %d cells unpredicted (fewer than %d sites in range)",
            n_missing, int(mask.sum()), min_points,
        )
    return KrigingResult(grid_x=np.asarray(grid_x, float),
                         grid_y=np.asarray(grid_y, float),
                         prediction=prediction, variance=variance,
                         n_missing=n_missing)


def cross_validate(
    fit: VariogramFit,
    min_points: int = 5,
    max_points: int = 20,
) -> CrossValidationResult:
    """Leave-one-out ordinary kriging at every site.

    The variogram model is held fixed; each site is predicted from all
    the others. Sites that cannot be predicted are NaN and excluded from
    the error summaries.
    """
    V = fit.variogram
    coords = np.asarray(V.coordinates, dtype=float)
    values = np.asarray(V.values, dtype=float)
    n = coords.shape[0]
    if n - 1 < min_points:
        raise ValueError(
            f"leave-one-out needs more than min_points={min_points} sites, got {n}"
        )

    predicted = np.full(n, np.nan)
    keep = np.ones(n, dtype=bool)
    for i in range(n):
        keep[i] = False
        ok = skg.OrdinaryKriging(
            V, min_points=min_points, max_points=max_points, mode='exact',
            coordinates=coords[keep], values=values[keep],
        )
        predicted[i] = ok.transform(coords[i:i + 1, 0], coords[i:i + 1, 1])[0]
        keep[i] = True

    residuals = values - predicted
    ok_mask = np.isfinite(residuals)
    n_failed = int(n - ok_mask.sum())
    if ok_mask.any():
        res = residuals[ok_mask]
        rmse = float(np.sqrt(np.mean(res ** 2)))
        mae = float(np.mean(np.abs(res)))
        mean_error = float(np.mean(res))
    else:
        rmse = mae = mean_error = float('nan')
    logger.info("LOO cross-validation: rmse=%.4f mae=%.4f (%d failed)",
                rmse, mae, n_failed)
    return CrossValidationResult(observed=values, predicted=predicted,
                                 residuals=residuals, rmse=rmse, mae=mae,
                                 mean_error=mean_error, n_failed=n_failed)
