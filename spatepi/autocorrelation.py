"""Spatial autocorrelation statistics for areal data.

Global statistics:
  - morans_i: Moran's I with inference under normality, randomisation and
    random permutation
  - gearys_c: Geary's C with normality and permutation inference

Local statistics:
  - local_morans_i: LISA I_i with conditional permutation pseudo p-values,
    Moran-scatterplot quadrants and significance-filtered cluster codes
  - fdr_threshold: Benjamini–Hochberg cut-off for the LISA map

Conventions follow PySAL/esda: pseudo p-values are
(larger + 1) / (permutations + 1) where ``larger`` counts simulated values
at least as extreme *on the side of the observed value*, and quadrants are
numbered HH=1, LH=2, LL=3, HL=4.

All functions take the variable as a 1-D array aligned with ``w.id_order``
and a libpysal ``W`` (any transform; Moran's I is usually run with
row-standardised weights).
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from libpysal.weights import W
from scipy import stats

from spatepi.types import (
    GearyResult,
    LisaQuadrant,
    LocalMoranResult,
    MoranResult,
)


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _check_y(y: np.ndarray, w: W) -> np.ndarray:
    y = np.asarray(y, dtype=float).ravel()
    if y.shape[0] != w.n:
        raise ValueError(f"y has {y.shape[0]} values but W has {w.n} units")
    if y.shape[0] < 4:
        raise ValueError(f"need at least 4 units, got {y.shape[0]}")
    if not np.all(np.isfinite(y)):
        raise ValueError("y contains NaN or inf")
    if np.ptp(y) == 0:
        raise ValueError("y is constant; autocorrelation is undefined")
    return y


def _check_permutations(permutations: int) -> None:
    if permutations < 0:
        raise ValueError(f"permutations must be >= 0, got {permutations}")


def _pseudo_p(sims: np.ndarray, observed: np.ndarray) -> np.ndarray:
    """Folded pseudo p-value, vectorised over the trailing axis of ``observed``."""
    permutations = sims.shape[0]
    larger = np.sum(sims >= observed, axis=0)
    larger = np.where(permutations - larger < larger, permutations - larger, larger)
    return (larger + 1.0) / (permutations + 1.0)


def _two_sided(z: float) -> float:
    return float(2.0 * stats.norm.sf(abs(z)))


# ═══════════════════════════════════════════════════════════════════════
# GLOBAL MORAN'S I
# ═══════════════════════════════════════════════════════════════════════

def morans_i(
    y: np.ndarray,
    w: W,
    permutations: int = 999,
    rng: Optional[np.random.Generator] = None,
) -> MoranResult:
    """Global Moran's I.

    I = (n / S0) · zᵀWz / zᵀz with z = y − ȳ. E[I] = −1/(n−1).

    Args:
        y: (n,) variable.
        w: Spatial weights.
        permutations: Number of random permutations (0 skips).
        rng: Generator for the permutations.

    Returns:
        MoranResult with normality, randomisation and permutation inference.
    """
    _check_permutations(permutations)
    y = _check_y(y, w)
    n = w.n
    s0, s1, s2 = float(w.s0), float(w.s1), float(w.s2)
    if s0 == 0:
        raise ValueError("W has no links (S0 = 0)")
    Wm = w.sparse
    z = y - y.mean()
    zz = float(z @ z)
    I = n / s0 * float(z @ (Wm @ z)) / zz
    EI = -1.0 / (n - 1)

    var_norm = (n * n * s1 - n * s2 + 3.0 * s0 * s0) / ((n * n - 1) * s0 * s0) - EI ** 2
    kurt = n * float(np.sum(z ** 4)) / zz ** 2
    a = n * ((n * n - 3 * n + 3) * s1 - n * s2 + 3.0 * s0 * s0)
    b = kurt * ((n * n - n) * s1 - 2.0 * n * s2 + 6.0 * s0 * s0)
    var_rand = (a - b) / ((n - 1) * (n - 2) * (n - 3) * s0 * s0) - EI ** 2
    z_norm = (I - EI) / np.sqrt(var_norm)
    z_rand = (I - EI) / np.sqrt(var_rand)

    result = MoranResult(
        I=I, expected=EI,
        var_norm=var_norm, z_norm=float(z_norm), p_norm=_two_sided(z_norm),
        var_rand=var_rand, z_rand=float(z_rand), p_rand=_two_sided(z_rand),
        n=n,
    )
    if permutations:
        if rng is None:
            rng = np.random.default_rng()
        Z = np.array([rng.permutation(z) for _ in range(permutations)])
        WZ = (Wm @ Z.T).T
        sims = n / s0 * np.sum(Z * WZ, axis=1) / zz
        result.permutations = permutations
        result.sim = sims
        result.p_sim = float(_pseudo_p(sims, np.asarray(I)))
        sd = sims.std()
        result.z_sim = float((I - sims.mean()) / sd) if sd > 0 else float('nan')
    return result


# ═══════════════════════════════════════════════════════════════════════
# GLOBAL GEARY'S C
# ═══════════════════════════════════════════════════════════════════════

def gearys_c(
    y: np.ndarray,
    w: W,
    permutations: int = 999,
    rng: Optional[np.random.Generator] = None,
) -> GearyResult:
    """Global Geary's C.

    C = (n − 1) Σ w_ij (y_i − y_j)² / (2 S0 Σ z²). E[C] = 1; values below
    1 indicate positive autocorrelation.
    """
    _check_permutations(permutations)
    y = _check_y(y, w)
    n = w.n
    s0, s1, s2 = float(w.s0), float(w.s1), float(w.s2)
    if s0 == 0:
        raise ValueError("W has no links (S0 = 0)")
    coo = w.sparse.tocoo()
    row, col, data = coo.row, coo.col, coo.data
    z = y - y.mean()
    zz = float(z @ z)

    def _c(v: np.ndarray) -> np.ndarray:
        diff = v[..., row] - v[..., col]
        return (n - 1) * np.sum(data * diff ** 2, axis=-1) / (2.0 * s0 * zz)

    C = float(_c(y))
    var_norm = ((2 * s1 + s2) * (n - 1) - 4 * s0 * s0) / (2 * (n + 1) * s0 * s0)
    z_norm = (C - 1.0) / np.sqrt(var_norm)
    result = GearyResult(C=C, expected=1.0, var_norm=var_norm,
                         z_norm=float(z_norm), p_norm=_two_sided(z_norm), n=n)
    if permutations:
        if rng is None:
            rng = np.random.default_rng()
        Y = np.array([rng.permutation(y) for _ in range(permutations)])
        sims = _c(Y)
        result.permutations = permutations
        result.sim = sims
        result.p_sim = float(_pseudo_p(sims, np.asarray(C)))
    return result


# ═══════════════════════════════════════════════════════════════════════
# LOCAL MORAN'S I (LISA)
# ═══════════════════════════════════════════════════════════════════════

def fdr_threshold(p_values: np.ndarray, alpha: float = 0.05) -> float:
    """Benjamini–Hochberg p-value cut-off.

    Largest k·α/n such that p_(k) ≤ k·α/n; falls back to α/n (Bonferroni)
    when no p-value qualifies.
    """
    if not (0.0 < alpha < 1.0):
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    p = np.sort(np.asarray(p_values, dtype=float))
    n = p.size
    if n == 0:
        raise ValueError("p_values is empty")
    crit = np.arange(1, n + 1) * alpha / n
    passing = np.nonzero(p <= crit)[0]
    if passing.size == 0:
        return alpha / n
    return float(crit[passing[-1]])


def quadrants(z: np.ndarray, lag: np.ndarray) -> np.ndarray:
    """Moran-scatterplot quadrant codes (HH=1, LH=2, LL=3, HL=4)."""
    zp = z > 0
    lp = lag > 0
    q = np.empty(z.shape, dtype=int)
    q[zp & lp] = LisaQuadrant.HH
    q[~zp & lp] = LisaQuadrant.LH
    q[~zp & ~lp] = LisaQuadrant.LL
    q[zp & ~lp] = LisaQuadrant.HL
    return q


def local_morans_i(
    y: np.ndarray,
    w: W,
    permutations: int = 999,
    rng: Optional[np.random.Generator] = None,
    alpha: float = 0.05,
    fdr: bool = False,
) -> LocalMoranResult:
    """Local Moran's I_i with conditional randomisation.

    I_i = (n − 1) · z_i · (Wz)_i / Σ z². For each unit the value z_i is
    held fixed and its k_i neighbour values are drawn at random without
    replacement from the other n − 1 units. One set of draws is shared
    across units (indices are shifted past i), as in esda.

    Units with no neighbours get I_i = 0 and p = 1.
    """
    if permutations < 1:
        raise ValueError(f"local Moran needs permutations >= 1, got {permutations}")
    if not (0.0 < alpha < 1.0):
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    y = _check_y(y, w)
    if rng is None:
        rng = np.random.default_rng()
    n = w.n
    Wm = w.sparse.tocsr()
    z = y - y.mean()
    den = float(z @ z)
    lag = Wm @ z
    Is = (n - 1) * z * lag / den

    cards = np.diff(Wm.indptr)
    k_max = int(cards.max())
    draws = np.array([
        rng.choice(n - 1, size=k_max, replace=False) for _ in range(permutations)
    ]) if k_max > 0 else np.empty((permutations, 0), dtype=int)

    p_sim = np.ones(n)
    for i in range(n):
        k = int(cards[i])
        if k == 0:
            continue
        wi = Wm.data[Wm.indptr[i]:Wm.indptr[i + 1]]
        idx = draws[:, :k].copy()
        idx[idx >= i] += 1
        sims = (n - 1) * z[i] * (z[idx] @ wi) / den
        p_sim[i] = _pseudo_p(sims, np.asarray(Is[i]))

    q = quadrants(z, lag)
    threshold = fdr_threshold(p_sim, alpha) if fdr else alpha
    significant = (p_sim <= threshold) & (cards > 0)
    clusters = np.where(significant, q, LisaQuadrant.NS)
    return LocalMoranResult(Is=Is, quadrant=q, p_sim=p_sim,
                            significant=significant, clusters=clusters,
                            alpha=alpha, threshold=threshold,
                            permutations=permutations)


def moran_scatter_data(y: np.ndarray, w: W) -> Tuple[np.ndarray, np.ndarray, float]:
    """Standardised values, their spatial lag, and the fitted slope.

    With row-standardised weights the slope of lag on z equals Moran's I.
    """
    y = _check_y(y, w)
    z = (y - y.mean()) / y.std()
    lag = w.sparse @ z
    slope = float(np.polyfit(z, lag, 1)[0])
    return z, lag, slope
