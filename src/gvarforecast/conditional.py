"""
Conditional forecasts by minimum-norm structural shocks.

For every posterior draw the shock sequence eta (fhorz*K) has to satisfy
R eta = r, where each row of R is one constrained (horizon, variable) cell
and r is the gap between the (jittered) target and the unconditional path.
The solution splits into the pseudo-inverse part, which meets the
constraints, and a random null-space part, which leaves them untouched.

References: Waggoner & Zha (1999), Jarocinski (2010).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import svd

logger = logging.getLogger(__name__)


@dataclass
class ShockSolution:
    eta: np.ndarray   # (fhorz, K)
    rank: int         # singular values inverted
    n_dropped: int    # constrained directions treated as null space


def constraint_system(
    constr_use: np.ndarray,
    pred: np.ndarray,
    irf: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    constr_use: (fhorz, K) targets, NaN = free
    pred:       (K, fhorz) unconditional path of this draw
    irf:        (K, K, >= fhorz) impulse responses, irf[:, :, 0] = impact

    Returns r (v,) and R (v, K*fhorz); columns of R are grouped by shock horizon.
    """
    horizon, K = constr_use.shape
    cells = np.argwhere(~np.isnan(constr_use))  # row-major: horizon, then variable
    v, s = cells.shape[0], K * horizon

    r = np.zeros(v)
    R = np.zeros((v, s))
    for pos, (i, j) in enumerate(cells):
        r[pos] = constr_use[i, j] - pred[j, i]
        for k in range(i + 1):
            R[pos, k * K:(k + 1) * K] = irf[j, :, i - k]
    return r, R


def solve_shocks(
    r: np.ndarray,
    R: np.ndarray,
    horizon: int,
    rng: np.random.Generator,
    svd_rtol: Optional[float] = None,
) -> ShockSolution:
    """
    eta = V1 D^{-1} U1' r + V2 z,  z ~ N(0, I).

    svd_rtol None inverts all v leading singular values (exact zeros excepted);
    a float drops singular values <= svd_rtol * max(d) into the null space.
    """
    v, s = R.shape
    K = s // horizon
    U, d, Vt = svd(R, full_matrices=True)
    V = Vt.T

    if svd_rtol is None:
        keep = d > 0.0
    else:
        keep = d > svd_rtol * (d.max() if d.size else 0.0)
    rank = int(keep.sum())

    V1 = V[:, :rank]
    V2 = V[:, rank:]
    eta = V1 @ ((U[:, :rank].T @ r) / d[:rank])
    if V2.shape[1]:
        eta = eta + V2 @ rng.standard_normal(V2.shape[1])

    if rank < v:
        logger.debug("constraint design has %d of %d directions below tolerance", v - rank, v)
    return ShockSolution(eta=eta.reshape(horizon, K), rank=rank, n_dropped=v - rank)


def convolve_shocks(pred: np.ndarray, irf: np.ndarray, eta: np.ndarray) -> np.ndarray:
    """
    path[:, h] = pred[:, h] + sum_{k<=h} irf[:, :, h-k] @ eta[k]
    """
    K, horizon = pred.shape
    out = pred.copy()
    for h in range(horizon):
        temp = np.zeros(K)
        for k in range(h + 1):
            temp += irf[:, :, h - k] @ eta[k]
        out[:, h] += temp
    return out


def conditional_draw(
    pred: np.ndarray,
    irf: np.ndarray,
    constr_use: np.ndarray,
    rng: np.random.Generator,
    svd_rtol: Optional[float] = None,
) -> Tuple[np.ndarray, int]:
    """
    Conditional path (K, fhorz) of one draw and the number of dropped directions.
    Without any constrained cell the unconditional path is returned unchanged.
    """
    horizon = constr_use.shape[0]
    r, R = constraint_system(constr_use, pred, irf)
    if R.shape[0] == 0:
        return pred.copy(), 0
    sol = solve_shocks(r, R, horizon=horizon, rng=rng, svd_rtol=svd_rtol)
    return convolve_shocks(pred, irf, sol.eta), sol.n_dropped
