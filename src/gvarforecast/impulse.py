from __future__ import annotations

from typing import Literal, Optional

import numpy as np
from scipy.linalg import cholesky

from .companion import lag_companion


Identification = Literal["chol", "girf"]


def ma_coefficients(F: np.ndarray, nstep: int) -> np.ndarray:
    """
    Moving-average matrices Phi_h = J' C^h J of the VAR with lag tensor F (K, K, plag).
    Returns (K, K, nstep) with Phi_0 = I.
    """
    if nstep < 1:
        raise ValueError("nstep must be >= 1")
    K, _, p = F.shape
    C = lag_companion(F)

    phi = np.zeros((K, K, nstep))
    C_pow = np.eye(K * p)
    for h in range(nstep):
        phi[:, :, h] = C_pow[:K, :K]
        C_pow = C_pow @ C
    return phi


def structural_impact(
    sigma: np.ndarray,
    ident: Identification = "chol",
    rotation: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Impact matrix of the shocks.

    chol: lower Cholesky factor P of sigma, times an optional orthogonal rotation Q (P @ Q).
    girf: generalized impact, column j = sigma[:, j] / sqrt(sigma[j, j]).
    """
    K = sigma.shape[0]
    if ident == "chol":
        P = cholesky(sigma, lower=True)
        if rotation is None:
            return P
        Q = np.asarray(rotation, dtype=float)
        if Q.shape != (K, K):
            raise ValueError(f"rotation must be (K,K) = ({K},{K}), got {Q.shape}")
        if not np.allclose(Q.T @ Q, np.eye(K), atol=1e-8):
            raise ValueError("rotation must be orthogonal.")
        return P @ Q
    if ident == "girf":
        if rotation is not None:
            raise ValueError("rotation is only defined for ident='chol'.")
        return sigma / np.sqrt(np.diag(sigma))[None, :]
    raise ValueError(f"Unknown identification: {ident}")


def impulse_response(F: np.ndarray, smat: np.ndarray, nstep: int) -> np.ndarray:
    """
    Returns irf: (K, K, nstep) where irf[i, j, h] = response of variable i at
    horizon h to a unit shock j at horizon 0 (irf[:, :, 0] = smat).
    """
    K = F.shape[0]
    if smat.shape != (K, K):
        raise ValueError(f"F and smat conflict on # of variables: {F.shape} vs {smat.shape}")
    phi = ma_coefficients(F, nstep)
    return np.einsum("ikh,kj->ijh", phi, smat)
