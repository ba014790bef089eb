"""Disease mapping: standardised ratios and empirical Bayes smoothing.

Raw standardised morbidity ratios (SMR = O/E) are noisy where expected
counts are small; Marshall's (1991) empirical Bayes estimators shrink
each ratio towards a global or neighbourhood mean by an amount that
depends on how much information the region carries.

Marshall's method of moments, with r_i = O_i / E_i:
  m   = ΣO / ΣE
  s²  = Σ E_i (r_i − m)² / ΣE
  A   = s² − m / Ē                  (prior variance, truncated at 0)
  C_i = A / (A + m / E_i)           (shrinkage weight)
  EB_i = m + C_i (r_i − m)
The local version computes m, s², A over each region and its neighbours.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from libpysal.weights import W

logger = logging.getLogger(__name__)


def _as_counts(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains NaN or inf")
    if np.any(arr < 0):
        raise ValueError(f"{name} must be non-negative")
    return arr


def _check_pair(observed, expected):
    observed = _as_counts(observed, "observed")
    expected = _as_counts(expected, "expected")
    if observed.shape != expected.shape:
        raise ValueError(
            f"observed ({observed.size}) and expected ({expected.size}) differ in length"
        )
    if np.any(expected == 0):
        raise ValueError("expected counts must be positive (found zeros)")
    return observed, expected


def expected_counts(population, cases=None, rate: Optional[float] = None) -> np.ndarray:
    """Expected counts by indirect standardisation.

    With ``rate`` None the reference rate is the overall rate ΣO / ΣP,
    so the expected counts sum to the observed total.
    """
    population = _as_counts(population, "population")
    if rate is None:
        if cases is None:
            raise ValueError("either cases or rate must be given")
        cases = _as_counts(cases, "cases")
        if cases.shape != population.shape:
            raise ValueError("cases and population differ in length")
        total = population.sum()
        if total == 0:
            raise ValueError("total population is zero")
        rate = cases.sum() / total
    elif rate < 0:
        raise ValueError(f"rate must be non-negative, got {rate}")
    return population * rate


def standardized_ratio(observed, expected) -> np.ndarray:
    """SMR = observed / expected."""
    observed, expected = _check_pair(observed, expected)
    return observed / expected


def excess_risk(observed, expected) -> np.ndarray:
    """Excess cases, observed − expected."""
    observed, expected = _check_pair(observed, expected)
    return observed - expected


def _marshall(r_i: np.ndarray, e_i: np.ndarray, O: np.ndarray,
              E: np.ndarray) -> np.ndarray:
    """Shrink ratios r_i (with expected e_i) towards the pool (O, E)."""
    m = O.sum() / E.sum()
    s2 = np.sum(E * (O / E - m) ** 2) / E.sum()
    A = max(s2 - m / E.mean(), 0.0)
    denom = A + m / e_i
    C = np.divide(A, denom, out=np.zeros_like(e_i), where=denom > 0)
    return m + C * (r_i - m)


def empirical_bayes_global(observed, expected) -> np.ndarray:
    """Marshall's global empirical Bayes relative-risk estimates."""
    observed, expected = _check_pair(observed, expected)
    eb = _marshall(observed / expected, expected, observed, expected)
    logger.debug("global EB: SMR range [%.3f, %.3f] -> [%.3f, %.3f]",
                 float((observed / expected).min()), float((observed / expected).max()),
                 float(eb.min()), float(eb.max()))
    return eb


def empirical_bayes_local(observed, expected, w: W) -> np.ndarray:
    """Marshall's local empirical Bayes: each unit pooled with its neighbours.

    Neighbourhoods come from ``w`` (weights are ignored, only links are
    used). An island is pooled with itself alone, which leaves its SMR
    unchanged.
    """
    observed, expected = _check_pair(observed, expected)
    n = observed.size
    if w.n != n:
        raise ValueError(f"W has {w.n} units but the data have {n}")
    A = w.sparse.tocsr()
    r = observed / expected
    eb = np.empty(n)
    for i in range(n):
        idx = np.append(A.indices[A.indptr[i]:A.indptr[i + 1]], i)
        eb[i] = _marshall(r[i:i + 1], expected[i:i + 1],
                          observed[idx], expected[idx])[0]
    return eb
