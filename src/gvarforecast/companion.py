from __future__ import annotations

from typing import Tuple

import numpy as np


def lag_tensor(A: np.ndarray, K: int, plag: int) -> np.ndarray:
    """
    A: (K, K*plag + const + trend) stacked coefficients [A_1|...|A_p|det]
    returns F: (K, K, plag) with F[:, :, l] = A_{l+1}
    """
    if A.ndim != 2 or A.shape[0] != K or A.shape[1] < K * plag:
        raise ValueError(f"A must be (K, K*plag + const + trend) with K={K}, plag={plag}, got {A.shape}")
    return np.stack([A[:, l * K:(l + 1) * K] for l in range(plag)], axis=2)


def lag_companion(F: np.ndarray) -> np.ndarray:
    """
    F: (K, K, plag) lag coefficients
    companion size: (K*plag, K*plag)
    """
    K, K2, p = F.shape
    if K != K2:
        raise ValueError(f"F must be (K, K, plag), got {F.shape}")
    A_comp = np.zeros((K * p, K * p))
    A_comp[:K, :] = np.concatenate([F[:, :, l] for l in range(p)], axis=1)
    if p > 1:
        A_comp[K:, :-K] = np.eye(K * (p - 1))
    return A_comp


def get_companion(
    A: np.ndarray,
    K: int,
    plag: int,
    const: bool = True,
    trend: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    VAR(p) with deterministic terms -> VAR(1) state form
        state_{t+1} = M state_t + J u_{t+1}
    state = [y_t; ...; y_{t-p+1}; const; trend], size nkk = K*plag + const + trend.

    Deterministic rows are identity: the constant stays 1 and the trend keeps
    the value it has in the initial state over the whole forecast.
    """
    nkk = K * plag + int(const) + int(trend)
    if A.shape != (K, nkk):
        raise ValueError(f"Coefficient block must be (K, K*plag + const + trend) = ({K},{nkk}), got {A.shape}")

    M = np.zeros((nkk, nkk))
    M[:K, :] = A
    if plag > 1:
        M[K:K * plag, :K * (plag - 1)] = np.eye(K * (plag - 1))
    for d in range(K * plag, nkk):
        M[d, d] = 1.0

    J = np.zeros((nkk, K))
    J[:K, :K] = np.eye(K)
    return M, J
