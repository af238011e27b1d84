import numpy as np
import pandas as pd
import pytest

from gvarforecast.draws import PosteriorDraws


LABELS = ["US.y", "US.p", "EA.y"]


def make_draws(
    n_draws: int = 50,
    plag: int = 2,
    T: int = 40,
    trend: bool = False,
    holdout: int = 0,
    seed: int = 7,
    singular_first: bool = False,
) -> PosteriorDraws:
    """Stable 3-variable GVAR draws around a common posterior mean."""
    rng = np.random.default_rng(seed)
    K = len(LABELS)
    n_det = 1 + int(trend)

    A1 = np.array([[0.5, 0.1, 0.0], [0.0, 0.4, 0.1], [0.1, 0.0, 0.3]])
    A2 = 0.1 * np.eye(K)
    base = [A1, A2][:plag] + [np.zeros((K, K))] * max(0, plag - 2)
    c = np.array([0.2, 0.1, -0.1])

    A_large = np.zeros((n_draws, K, K * plag + n_det))
    S_large = np.zeros((n_draws, K, K))
    Ginv_large = np.zeros((n_draws, K, K))
    F_large = np.zeros((n_draws, K, K, plag))
    for i in range(n_draws):
        lags = [B + 0.02 * rng.standard_normal((K, K)) for B in base]
        A_large[i, :, :K * plag] = np.concatenate(lags, axis=1)
        A_large[i, :, K * plag] = c + 0.01 * rng.standard_normal(K)
        if trend:
            A_large[i, :, K * plag + 1] = 0.001
        F_large[i] = np.stack(lags, axis=2)
        S_large[i] = np.diag(0.5 + 0.1 * rng.random(K))
        G = np.eye(K)
        G[1, 0], G[2, 0], G[2, 1] = 0.3, -0.2, 0.1
        Ginv_large[i] = G

    if singular_first:
        # rank K-1 residual covariance
        S_large[0] = np.diag([1.0, 1.0, 0.0])

    X = np.zeros((T + holdout, K))
    for t in range(plag, T + holdout):
        X[t] = c + sum(base[l] @ X[t - l - 1] for l in range(plag)) + 0.3 * rng.standard_normal(K)
    idx = pd.period_range("2000Q1", periods=T + holdout, freq="Q")
    full = pd.DataFrame(X, index=idx, columns=LABELS)

    return PosteriorDraws(
        xglobal=full.iloc[:T],
        plag=plag,
        A_large=A_large,
        S_large=S_large,
        Ginv_large=Ginv_large,
        F_large=F_large,
        trend=trend,
        holdout=full.iloc[T:] if holdout else None,
    )


@pytest.fixture
def draws():
    return make_draws()


@pytest.fixture
def draws_factory():
    return make_draws
