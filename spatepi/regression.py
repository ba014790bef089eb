"""Spatial regression: OLS diagnostics and maximum-likelihood SAR models.

Models:
  - ols: y = Xβ + ε, with Moran's I of the residuals and Lagrange
    Multiplier tests (LM-error, LM-lag and their robust forms) when W is
    supplied
  - spatial_lag_model: y = ρWy + Xβ + ε
  - spatial_error_model: y = Xβ + u,  u = λWu + ε

Both SAR models maximise the concentrated log-likelihood over the
admissible interval (1/ω_min, 1/ω_max) of the eigenvalues ω of W; the
log-Jacobian is Σ log(1 − ρω_i). Standard errors come from the inverse of
the asymptotic information matrix (Anselin 1988, ch. 6).

W is used densely; this is meant for the workshop's few hundred regions,
not for national-scale lattices.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from libpysal.weights import W
from scipy import optimize, stats

from spatepi.types import LagrangeMultiplierTest, MoranResult, RegressionResult
from spatepi.weights import to_dense

logger = logging.getLogger(__name__)

_BOUND_EPS = 1e-6


# ═══════════════════════════════════════════════════════════════════════
# DESIGN MATRIX HELPERS
# ═══════════════════════════════════════════════════════════════════════

def add_constant(X: np.ndarray) -> np.ndarray:
    """Prepend a column of ones."""
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    return np.column_stack([np.ones(X.shape[0]), X])


def _prepare(y: np.ndarray, X: np.ndarray,
             names: Optional[Sequence[str]]) -> Tuple[np.ndarray, np.ndarray, List[str]]:
    y = np.asarray(y, dtype=float).ravel()
    Xc = add_constant(X)
    if Xc.shape[0] != y.shape[0]:
        raise ValueError(f"X has {Xc.shape[0]} rows but y has {y.shape[0]} values")
    if Xc.shape[0] <= Xc.shape[1]:
        raise ValueError(
            f"need more observations ({Xc.shape[0]}) than parameters ({Xc.shape[1]})"
        )
    if not (np.all(np.isfinite(y)) and np.all(np.isfinite(Xc))):
        raise ValueError("y and X must be finite")
    if np.linalg.matrix_rank(Xc) < Xc.shape[1]:
        raise np.linalg.LinAlgError("design matrix is rank deficient (collinear columns)")
    if names is None:
        names = [f"x{i}" for i in range(1, Xc.shape[1])]
    if len(names) != Xc.shape[1] - 1:
        raise ValueError(f"expected {Xc.shape[1] - 1} names, got {len(names)}")
    return y, Xc, ['CONSTANT'] + list(names)


def _dense_w(w: W, n: int) -> np.ndarray:
    if w.n != n:
        raise ValueError(f"W has {w.n} units but the data have {n} rows")
    return to_dense(w)


def _eig_bounds(Wd: np.ndarray) -> Tuple[np.ndarray, float, float]:
    """Real parts of W's eigenvalues and the open interval for ρ / λ."""
    eig = np.linalg.eigvals(Wd).real
    lo = 1.0 / eig.min() + _BOUND_EPS
    hi = 1.0 / eig.max() - _BOUND_EPS
    return eig, lo, hi


def _coef_table(est: np.ndarray, se: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    with np.errstate(divide='ignore', invalid='ignore'):
        z = est / se
    return z, 2.0 * stats.norm.sf(np.abs(z))


# ═══════════════════════════════════════════════════════════════════════
# OLS + DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════

def _residual_moran(residuals: np.ndarray, X: np.ndarray, Wd: np.ndarray) -> MoranResult:
    """Moran's I of OLS residuals with the Cliff–Ord regression moments.

    E[I] = (n/S0) tr(MW)/(n−k), with M the residual-maker matrix.
    Randomisation fields are not defined for residuals and are NaN.
    """
    n, k = X.shape
    e = residuals
    s0 = Wd.sum()
    M = np.eye(n) - X @ np.linalg.solve(X.T @ X, X.T)
    MW = M @ Wd
    I = n / s0 * float(e @ Wd @ e) / float(e @ e)
    tr_mw = np.trace(MW)
    EI = n / s0 * tr_mw / (n - k)
    num = np.trace(MW @ M @ Wd.T) + np.trace(MW @ MW) + tr_mw ** 2
    VI = (n / s0) ** 2 * num / ((n - k) * (n - k + 2)) - EI ** 2
    z = (I - EI) / np.sqrt(VI)
    nan = float('nan')
    return MoranResult(I=I, expected=EI, var_norm=VI, z_norm=float(z),
                       p_norm=float(2.0 * stats.norm.sf(abs(z))),
                       var_rand=nan, z_rand=nan, p_rand=nan, n=n)


def _lm_statistics(residuals: np.ndarray, X: np.ndarray, y: np.ndarray,
                   Wd: np.ndarray) -> List[LagrangeMultiplierTest]:
    n = X.shape[0]
    e = residuals
    s2 = float(e @ e) / n
    T = np.trace(Wd.T @ Wd + Wd @ Wd)
    b = np.linalg.lstsq(X, y, rcond=None)[0]
    wxb = Wd @ (X @ b)
    M = np.eye(n) - X @ np.linalg.solve(X.T @ X, X.T)
    nJ = float(wxb @ M @ wxb) / s2 + T

    d_err = float(e @ Wd @ e) / s2
    d_lag = float(e @ Wd @ y) / s2
    lm_err = d_err ** 2 / T
    lm_lag = d_lag ** 2 / nJ
    rlm_err = (d_err - T / nJ * d_lag) ** 2 / (T - T * T / nJ)
    rlm_lag = (d_lag - d_err) ** 2 / (nJ - T)

    return [
        LagrangeMultiplierTest(name, float(stat), 1, float(stats.chi2.sf(stat, 1)))
        for name, stat in (
            ('lm_error', lm_err), ('lm_lag', lm_lag),
            ('robust_lm_error', rlm_err), ('robust_lm_lag', rlm_lag),
        )
    ]


def lm_tests(residuals: np.ndarray, X: np.ndarray, y: np.ndarray,
             w: W) -> List[LagrangeMultiplierTest]:
    """LM-error, LM-lag and their robust variants (χ²₁).

    Args:
        residuals: OLS residuals.
        X: Design matrix *including* the constant column (see add_constant).
        y: Dependent variable.
        w: Spatial weights aligned with the rows of X.
    """
    X = np.asarray(X, dtype=float)
    return _lm_statistics(np.asarray(residuals, dtype=float).ravel(), X,
                          np.asarray(y, dtype=float).ravel(),
                          _dense_w(w, X.shape[0]))


def ols(y: np.ndarray, X: np.ndarray, w: Optional[W] = None,
        names: Optional[Sequence[str]] = None) -> RegressionResult:
    """Ordinary least squares with optional spatial diagnostics."""
    y, Xc, names = _prepare(y, X, names)
    n, k = Xc.shape
    XtX_inv = np.linalg.inv(Xc.T @ Xc)
    betas = XtX_inv @ Xc.T @ y
    predicted = Xc @ betas
    e = y - predicted
    ee = float(e @ e)
    sigma2 = ee / (n - k)
    std_err = np.sqrt(np.diag(XtX_inv) * sigma2)
    with np.errstate(divide='ignore', invalid='ignore'):
        t = betas / std_err
    p = 2.0 * stats.t.sf(np.abs(t), n - k)
    ll = -0.5 * n * (np.log(2.0 * np.pi) + np.log(ee / n) + 1.0)
    r2 = 1.0 - ee / float(np.sum((y - y.mean()) ** 2))

    result = RegressionResult(
        model='ols', names=names, betas=betas, std_err=std_err, z_stat=t,
        p_values=p, sigma2=sigma2, log_likelihood=float(ll),
        aic=float(-2.0 * ll + 2.0 * k), r2=float(r2), n=n,
        residuals=e, predicted=predicted,
    )
    if w is not None:
        Wd = _dense_w(w, n)
        result.residual_moran = _residual_moran(e, Xc, Wd)
        result.lm_tests = _lm_statistics(e, Xc, y, Wd)
    return result


# ═══════════════════════════════════════════════════════════════════════
# SPATIAL LAG MODEL
# ═══════════════════════════════════════════════════════════════════════

def spatial_lag_model(y: np.ndarray, X: np.ndarray, w: W,
                      names: Optional[Sequence[str]] = None) -> RegressionResult:
    """ML estimation of y = ρWy + Xβ + ε."""
    y, Xc, names = _prepare(y, X, names)
    n, k = Xc.shape
    Wd = _dense_w(w, n)
    eig, lo, hi = _eig_bounds(Wd)
    wy = Wd @ y

    b0 = np.linalg.lstsq(Xc, y, rcond=None)[0]
    bL = np.linalg.lstsq(Xc, wy, rcond=None)[0]
    e0 = y - Xc @ b0
    eL = wy - Xc @ bL

    def neg_concentrated(rho: float) -> float:
        e = e0 - rho * eL
        return 0.5 * n * np.log(float(e @ e) / n) - np.sum(np.log(1.0 - rho * eig))

    opt = optimize.minimize_scalar(neg_concentrated, bounds=(lo, hi), method='bounded')
    rho = float(opt.x)
    betas = b0 - rho * bL
    resid = y - rho * wy - Xc @ betas
    sigma2 = float(resid @ resid) / n
    ll = (-0.5 * n * (np.log(2.0 * np.pi) + np.log(sigma2) + 1.0)
          + float(np.sum(np.log(1.0 - rho * eig))))

    # Asymptotic information matrix for (β, ρ, σ²)
    WA = Wd @ np.linalg.inv(np.eye(n) - rho * Wd)
    wa_xb = WA @ (Xc @ betas)
    info = np.zeros((k + 2, k + 2))
    info[:k, :k] = Xc.T @ Xc / sigma2
    info[:k, k] = info[k, :k] = Xc.T @ wa_xb / sigma2
    info[k, k] = np.trace(WA @ WA) + np.trace(WA.T @ WA) + float(wa_xb @ wa_xb) / sigma2
    info[k, k + 1] = info[k + 1, k] = np.trace(WA) / sigma2
    info[k + 1, k + 1] = n / (2.0 * sigma2 ** 2)
    cov = np.linalg.inv(info)
    se = np.sqrt(np.diag(cov))
    z, p = _coef_table(betas, se[:k])

    predicted = rho * wy + Xc @ betas
    r2 = float(np.corrcoef(y, predicted)[0, 1] ** 2)
    logger.info("spatial lag model: rho=%.3f (se %.3f), logL=%.2f", rho, se[k], ll)
    return RegressionResult(
        model='lag', names=names, betas=betas, std_err=se[:k], z_stat=z,
        p_values=p, sigma2=sigma2, log_likelihood=float(ll),
        aic=float(-2.0 * ll + 2.0 * (k + 1)), r2=r2, n=n,
        residuals=resid, predicted=predicted,
        spatial_param=rho, spatial_param_se=float(se[k]),
    )


# ═══════════════════════════════════════════════════════════════════════
# SPATIAL ERROR MODEL
# ═══════════════════════════════════════════════════════════════════════

def spatial_error_model(y: np.ndarray, X: np.ndarray, w: W,
                        names: Optional[Sequence[str]] = None) -> RegressionResult:
    """ML estimation of y = Xβ + u, u = λWu + ε."""
    y, Xc, names = _prepare(y, X, names)
    n, k = Xc.shape
    Wd = _dense_w(w, n)
    eig, lo, hi = _eig_bounds(Wd)
    wy = Wd @ y
    wX = Wd @ Xc

    def _filtered(lam: float):
        ys = y - lam * wy
        Xs = Xc - lam * wX
        b = np.linalg.lstsq(Xs, ys, rcond=None)[0]
        e = ys - Xs @ b
        return b, e, Xs

    def neg_concentrated(lam: float) -> float:
        _, e, _ = _filtered(lam)
        return 0.5 * n * np.log(float(e @ e) / n) - np.sum(np.log(1.0 - lam * eig))

    opt = optimize.minimize_scalar(neg_concentrated, bounds=(lo, hi), method='bounded')
    lam = float(opt.x)
    betas, eps, Xs = _filtered(lam)
    sigma2 = float(eps @ eps) / n
    ll = (-0.5 * n * (np.log(2.0 * np.pi) + np.log(sigma2) + 1.0)
          + float(np.sum(np.log(1.0 - lam * eig))))

    cov_b = sigma2 * np.linalg.inv(Xs.T @ Xs)
    se_b = np.sqrt(np.diag(cov_b))
    WB = Wd @ np.linalg.inv(np.eye(n) - lam * Wd)
    tr_wb = np.trace(WB)
    info = np.array([
        [np.trace(WB @ WB) + np.trace(WB.T @ WB), tr_wb / sigma2],
        [tr_wb / sigma2, n / (2.0 * sigma2 ** 2)],
    ])
    se_lam = float(np.sqrt(np.linalg.inv(info)[0, 0]))
    z, p = _coef_table(betas, se_b)

    predicted = Xc @ betas
    resid = y - predicted
    r2 = float(np.corrcoef(y, predicted)[0, 1] ** 2)
    logger.info("spatial error model: lambda=%.3f (se %.3f), logL=%.2f",
                lam, se_lam, ll)
    return RegressionResult(
        model='error', names=names, betas=betas, std_err=se_b, z_stat=z,
        p_values=p, sigma2=sigma2, log_likelihood=float(ll),
        aic=float(-2.0 * ll + 2.0 * (k + 1)), r2=r2, n=n,
        residuals=resid, predicted=predicted,
        spatial_param=lam, spatial_param_se=se_lam,
    )
