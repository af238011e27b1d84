from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.linalg import LinAlgError
from scipy.linalg import cholesky

from .companion import get_companion

logger = logging.getLogger(__name__)


@dataclass
class DrawPath:
    path: np.ndarray                  # (K, fhorz)
    n_fallback: int                   # horizons sampled without a Cholesky factor
    cov: Optional[np.ndarray] = None  # (fhorz, K, K) observed-block covariances, if kept


def _sample_block(mean: np.ndarray, cov: np.ndarray, rng: np.random.Generator):
    """
    One draw from N(mean, cov). Cholesky when cov is numerically PD,
    else eigen-based sampling that tolerates a singular cov.
    """
    K = mean.shape[0]
    try:
        L = cholesky(cov, lower=True)
    except LinAlgError:
        y = rng.multivariate_normal(mean, cov, method="eigh", check_valid="ignore")
        return y, True
    return mean + L @ rng.standard_normal(K), False


def simulate_draw(
    A: np.ndarray,
    sigma: np.ndarray,
    state0: np.ndarray,
    plag: int,
    fhorz: int,
    rng: np.random.Generator,
    keep_cov: bool = False,
    const: bool = True,
    trend: bool = False,
) -> DrawPath:
    """
    Predictive simulation for one posterior draw.

    mean_h = M mean_{h-1},  cov_h = M cov_{h-1} M' + J sigma J',  cov_0 = 0,
    y_h ~ N(mean_h[:K], cov_h[:K, :K]).
    """
    K = sigma.shape[0]
    M, J = get_companion(A, K=K, plag=plag, const=const, trend=trend)
    nkk = M.shape[0]
    if state0.shape != (nkk,):
        raise ValueError(f"state0 must have length nkk={nkk}, got {state0.shape}")

    Jsigt = J @ sigma @ J.T
    z = state0.copy()
    Sigma00 = np.zeros((nkk, nkk))

    path = np.empty((K, fhorz))
    covs = np.empty((fhorz, K, K)) if keep_cov else None
    n_fallback = 0
    for h in range(fhorz):
        z = M @ z
        Sigma00 = M @ Sigma00 @ M.T + Jsigt
        Sigma00 = 0.5 * (Sigma00 + Sigma00.T)
        block = Sigma00[:K, :K]
        path[:, h], fell_back = _sample_block(z[:K], block, rng)
        n_fallback += int(fell_back)
        if covs is not None:
            covs[h] = block
    if n_fallback:
        logger.debug("covariance block not PD at %d of %d horizons; sampled via eigen decomposition", n_fallback, fhorz)
    return DrawPath(path=path, n_fallback=n_fallback, cov=covs)
