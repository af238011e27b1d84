"""
Forecast error variance decompositions.

Both variants share the same normalization: the cumulated squared responses
of variable i to shock j up to horizon h, divided by their sum over shocks.
With generalized impulse responses this is the Lanne-Nyberg (2016) GFEVD,
which sums to one by construction; with orthogonalized (Cholesky) responses
it is the usual FEVD.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from numpy.linalg import LinAlgError

from .impulse import impulse_response, ma_coefficients, structural_impact

logger = logging.getLogger(__name__)


def generalized_irf(F: np.ndarray, sigma: np.ndarray, n_ahead: int) -> np.ndarray:
    """
    GIRF[:, j, h] = Phi_h sigma e_j / sqrt(sigma_jj), shape (K, K, n_ahead).
    """
    phi = ma_coefficients(F, n_ahead)
    return np.einsum("ikh,kj->ijh", phi, structural_impact(sigma, ident="girf"))


def fevd_shares(irf: np.ndarray) -> np.ndarray:
    """
    irf: (K, K, H) responses -> shares (K response, K shock, H).
    Rows with zero total variance come back as NaN.
    """
    num = np.cumsum(irf ** 2, axis=2)
    den = num.sum(axis=1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        shares = num / den
    shares[np.broadcast_to(den == 0, shares.shape)] = np.nan
    return shares


def gfevd_draw(F: np.ndarray, sigma: np.ndarray, n_ahead: int) -> np.ndarray:
    return fevd_shares(generalized_irf(F, sigma, n_ahead))


def fevd_draw(F: np.ndarray, sigma: np.ndarray, n_ahead: int, rotation: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Cholesky-ordered shares for one draw. A sigma without a Cholesky factor
    gives all-NaN shares, which the accumulators count as a skipped draw.
    """
    try:
        smat = structural_impact(sigma, ident="chol", rotation=rotation)
    except LinAlgError:
        logger.debug("sigma is not positive definite; FEVD draw returned as NaN")
        K = sigma.shape[0]
        return np.full((K, K, n_ahead), np.nan)
    return fevd_shares(impulse_response(F, smat, n_ahead))
