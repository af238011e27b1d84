import numpy as np
import pytest
from scipy.linalg import cholesky

from gvarforecast.impulse import impulse_response, ma_coefficients, structural_impact


def _lag_tensor():
    F = np.zeros((2, 2, 2))
    F[:, :, 0] = [[0.5, 0.1], [0.2, 0.3]]
    F[:, :, 1] = [[0.1, 0.0], [0.0, 0.1]]
    return F


SIGMA = np.array([[1.0, 0.3], [0.3, 0.5]])


def test_ma_coefficients_match_direct_recursion():
    F = _lag_tensor()
    phi = ma_coefficients(F, nstep=6)

    direct = np.zeros((2, 2, 6))
    direct[:, :, 0] = np.eye(2)
    for h in range(1, 6):
        for l in range(1, min(h, 2) + 1):
            direct[:, :, h] += F[:, :, l - 1] @ direct[:, :, h - l]
    np.testing.assert_allclose(phi, direct, atol=1e-12)


def test_impulse_response_impact_is_smat():
    smat = cholesky(SIGMA, lower=True)
    irf = impulse_response(_lag_tensor(), smat, nstep=5)
    assert irf.shape == (2, 2, 5)
    np.testing.assert_allclose(irf[:, :, 0], smat)
    np.testing.assert_allclose(irf[:, :, 1], _lag_tensor()[:, :, 0] @ smat)


def test_generalized_impact_columns():
    g = structural_impact(SIGMA, ident="girf")
    np.testing.assert_allclose(g[:, 1], SIGMA[:, 1] / np.sqrt(0.5))
    np.testing.assert_allclose(g[0, 0], 1.0)


def test_rotated_cholesky_reproduces_sigma():
    theta = 0.4
    Q = np.array([[np.cos(theta), -np.sin(theta)], [np.sin(theta), np.cos(theta)]])
    B0inv = structural_impact(SIGMA, ident="chol", rotation=Q)
    np.testing.assert_allclose(B0inv @ B0inv.T, SIGMA)


def test_rejects_non_orthogonal_rotation():
    with pytest.raises(ValueError, match="orthogonal"):
        structural_impact(SIGMA, ident="chol", rotation=np.array([[1.0, 1.0], [0.0, 1.0]]))


def test_smat_dimension_conflict():
    with pytest.raises(ValueError, match="conflict"):
        impulse_response(_lag_tensor(), np.eye(3), nstep=3)
