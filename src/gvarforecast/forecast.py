from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from functools import partial
from typing import Literal, Optional, Tuple

import numpy as np
import pandas as pd
from numpy.linalg import LinAlgError

from .conditional import conditional_draw
from .config import ReportConfig, RunConfig
from .draws import ArrayOrFrame, ConstraintSpec, PosteriorDraws, VariableId
from .fevd import fevd_draw, gfevd_draw
from .impulse import impulse_response, structural_impact
from .parallel import DrawStore, RunningMean, run_draws
from .simulate import simulate_draw
from .summary import bands_frame, lps_stats, quantile_summary

logger = logging.getLogger(__name__)


@dataclass
class ForecastResult:
    fcast: np.ndarray                       # (K, fhorz, 5), indexed by Band
    variables: Tuple[VariableId, ...]
    fhorz: int
    xglobal: pd.DataFrame
    lps_stats: Optional[np.ndarray] = None  # (K, 2, h), indexed by Moment
    holdout: Optional[pd.DataFrame] = None
    pred_store: Optional[np.ndarray] = None # (draws, K, fhorz)
    n_fallback: int = 0
    conditional: bool = False

    def to_frame(self, config: ReportConfig = ReportConfig()) -> pd.DataFrame:
        return bands_frame(self.fcast, self.variables, config.band_labels)


@dataclass
class DecompositionResult:
    """
    fevd: (K response, K shock, n_ahead) running mean, or
          (K, K, n_ahead, 5) quantiles indexed by Band when running=False.
    """
    fevd: np.ndarray
    variables: Tuple[VariableId, ...]
    n_ahead: int
    kind: str
    running: bool
    n_used: int
    store: Optional[np.ndarray] = None      # (draws, K, K, n_ahead) when running=False

    def to_frame(self, config: ReportConfig = ReportConfig()) -> pd.DataFrame:
        K = len(self.variables)
        shocks = [v.label(config.sep) for v in self.variables]
        frames = []
        for j in range(K):
            block = self.fevd[:, j]
            if self.running:
                block = block[..., None]
                labels = ("share",)
            else:
                labels = config.band_labels
            frames.append(bands_frame(block, self.variables, labels, extra={"shock": [shocks[j]] * K}))
        return pd.concat(frames, ignore_index=True)


# ----------------- per-draw work (module level so joblib can pickle it) -----------------
def _predict_draw(irep: int, rng: np.random.Generator, draws: PosteriorDraws, state0: np.ndarray, fhorz: int):
    res = simulate_draw(
        draws.A_large[irep],
        draws.sigma(irep),
        state0,
        plag=draws.plag,
        fhorz=fhorz,
        rng=rng,
        const=draws.const,
        trend=draws.trend,
    )
    return res.path, res.n_fallback


def _impact_or_eigen(sigma: np.ndarray, rotation: Optional[np.ndarray]) -> Tuple[np.ndarray, int]:
    try:
        return structural_impact(sigma, ident="chol", rotation=rotation), 0
    except LinAlgError:
        # any factor with smat smat' = sigma yields the same conditional distribution
        lam, U = np.linalg.eigh(sigma)
        return U * np.sqrt(np.clip(lam, 0.0, None)), 1


def _cond_draw(
    irep: int,
    rng: np.random.Generator,
    draws: PosteriorDraws,
    pred_store: np.ndarray,
    spec: ConstraintSpec,
    svd_rtol: Optional[float],
    rotation: Optional[np.ndarray],
):
    pred = pred_store[irep]
    horizon = pred.shape[1]
    smat, flagged = _impact_or_eigen(draws.sigma(irep), rotation)
    irf = impulse_response(draws.lag_tensor(irep), smat, nstep=horizon)
    constr_use = spec.jittered(rng)
    path, n_dropped = conditional_draw(pred, irf, constr_use, rng, svd_rtol=svd_rtol)
    return path, flagged + int(n_dropped > 0)


def _decomp_draw(irep: int, rng: np.random.Generator, draws: PosteriorDraws, n_ahead: int, kind: str, rotation):
    F = draws.lag_tensor(irep)
    sigma = draws.sigma(irep)
    if kind == "gfevd":
        return gfevd_draw(F, sigma, n_ahead), 0
    shares = fevd_draw(F, sigma, n_ahead, rotation=rotation)
    return shares, int(np.isnan(shares).all())


class GVARForecaster:
    """
    Posterior-predictive analysis of an estimated Bayesian GVAR.

    draws:  PosteriorDraws produced by the estimator
    config: RunConfig (workers, seed, progress observer, cancellation flag)
    """

    def __init__(self, draws: PosteriorDraws, config: RunConfig = RunConfig()):
        if not isinstance(draws, PosteriorDraws):
            raise TypeError("Please provide a `PosteriorDraws` object.")
        self.draws = draws
        self.config = config

    # ----------------- 1) unconditional forecasts -----------------
    def predict(self, fhorz: int = 8, save_store: bool = False) -> ForecastResult:
        """
        Simulates the predictive density fhorz steps ahead for every draw.

        save_store=True keeps the full (draws, K, fhorz) ensemble, which
        cond_predict() needs.

        The recursion starts from the regressors of period T+1,
        [y_T, ..., y_{T-plag+1}, 1, trend], see PosteriorDraws.last_state().
        The BGVAR R package starts one period earlier, from the last in-sample
        regressor row, so its numbers differ from these.
        """
        fhorz = int(fhorz)
        if fhorz < 1:
            raise ValueError("fhorz must be >= 1")
        d = self.draws
        start = time.time()
        logger.info("Start predicting %d steps ahead with %d draws.", fhorz, d.n_draws)

        draw_fn = partial(_predict_draw, draws=d, state0=d.last_state(), fhorz=fhorz)
        acc = run_draws(draw_fn, d.n_draws, partial(DrawStore, shape=(d.K, fhorz)), self.config)
        fcst_t = acc.values
        if acc.n_flags:
            logger.info("%d draw-horizons sampled from a singular covariance block.", acc.n_flags)

        stats, holdout = None, None
        if d.holdout is not None and len(d.holdout) > 0:
            h = len(d.holdout)
            if h > fhorz:
                warnings.warn(f"Hold-out sample ({h}) longer than fhorz ({fhorz}); scoring the first {fhorz} periods.")
                h = fhorz
            stats = lps_stats(fcst_t, h)
            holdout = d.holdout.iloc[:h]

        logger.info("Prediction done in %.1f seconds.", time.time() - start)
        return ForecastResult(
            fcast=quantile_summary(fcst_t),
            variables=d.variables,
            fhorz=fhorz,
            xglobal=d.xglobal,
            lps_stats=stats,
            holdout=holdout,
            pred_store=fcst_t if save_store else None,
            n_fallback=acc.n_flags,
        )

    # ----------------- 2) conditional forecasts -----------------
    def cond_predict(
        self,
        constr: ArrayOrFrame,
        pred: ForecastResult,
        constr_sd: Optional[ArrayOrFrame] = None,
        svd_rtol: Optional[float] = None,
        rotation: Optional[np.ndarray] = None,
    ) -> ForecastResult:
        """
        Conditional forecasts given future paths for some variables.

        constr:    (fhorz, K) targets, NaN where unconstrained (or a DataFrame with variable labels)
        pred:      result of predict(..., save_store=True)
        constr_sd: standard deviations around the targets, NaN/0 = hard constraint
        svd_rtol:  None -> untruncated pseudo-inverse; float -> singular values below
                   svd_rtol * max are treated as null-space directions
        rotation:  optional orthogonal Q, shocks identified by chol(Sigma) @ Q
        """
        if not isinstance(pred, ForecastResult):
            raise TypeError("Please provide a `ForecastResult` from predict().")
        if pred.pred_store is None:
            raise ValueError("Please set 'save_store=True' when computing predictions.")
        d = self.draws
        if pred.pred_store.shape != (d.n_draws, d.K, pred.fhorz):
            raise ValueError(
                f"pred_store has shape {pred.pred_store.shape}, expected {(d.n_draws, d.K, pred.fhorz)} for these draws."
            )
        if svd_rtol is not None and svd_rtol < 0:
            raise ValueError("svd_rtol must be non-negative.")
        if rotation is not None:
            # validated once here rather than inside every draw
            structural_impact(np.eye(d.K), ident="chol", rotation=rotation)
        spec = ConstraintSpec.build(constr, fhorz=pred.fhorz, labels=d.labels, constr_sd=constr_sd)

        start = time.time()
        logger.info("Start conditional forecasts with %d constrained cells.", spec.n_constrained)
        draw_fn = partial(
            _cond_draw,
            draws=d,
            pred_store=pred.pred_store,
            spec=spec,
            svd_rtol=svd_rtol,
            rotation=rotation,
        )
        acc = run_draws(draw_fn, d.n_draws, partial(DrawStore, shape=(d.K, pred.fhorz)), self.config)
        if acc.n_flags:
            logger.info("%d draws used a degenerate-system fallback.", acc.n_flags)
        logger.info("Conditional forecasts done in %.1f seconds.", time.time() - start)

        return ForecastResult(
            fcast=quantile_summary(acc.values),
            variables=d.variables,
            fhorz=pred.fhorz,
            xglobal=d.xglobal,
            n_fallback=acc.n_flags,
            conditional=True,
        )

    # ----------------- 3) variance decompositions -----------------
    def gfevd(self, n_ahead: int = 24, running: bool = True) -> DecompositionResult:
        """
        Generalized FEVD (Lanne-Nyberg), shares sum to one over shocks.

        running=True keeps a running mean only; running=False keeps every
        draw (memory grows with draws * K^2 * n_ahead) and reports quantiles.
        """
        return self._decompose("gfevd", n_ahead, running, rotation=None)

    def fevd(self, n_ahead: int = 24, running: bool = True, rotation: Optional[np.ndarray] = None) -> DecompositionResult:
        """Orthogonalized FEVD with Cholesky (optionally rotated) shocks."""
        return self._decompose("fevd", n_ahead, running, rotation=rotation)

    def _decompose(
        self,
        kind: Literal["gfevd", "fevd"],
        n_ahead: int,
        running: bool,
        rotation: Optional[np.ndarray],
    ) -> DecompositionResult:
        n_ahead = int(n_ahead)
        if n_ahead < 1:
            raise ValueError("n_ahead must be >= 1")
        d = self.draws
        if rotation is not None:
            structural_impact(np.eye(d.K), ident="chol", rotation=rotation)
        start = time.time()
        logger.info("Start computing %s over %d draws (running=%s).", kind, d.n_draws, running)

        shape = (d.K, d.K, n_ahead)
        new_acc = partial(RunningMean if running else DrawStore, shape=shape)
        draw_fn = partial(_decomp_draw, draws=d, n_ahead=n_ahead, kind=kind, rotation=rotation)
        acc = run_draws(draw_fn, d.n_draws, new_acc, self.config)
        if acc.n_flags:
            logger.info("%d draws had no Cholesky factor of Sigma.", acc.n_flags)

        if running:
            if acc.skipped:
                logger.warning("%d of %d draws gave non-finite shares and were skipped.", acc.skipped, d.n_draws)
            out = DecompositionResult(acc.mean, d.variables, n_ahead, kind, True, n_used=acc.count)
        else:
            n_used = int(np.isfinite(acc.values).all(axis=(1, 2, 3)).sum())
            if n_used < d.n_draws:
                logger.warning("%d of %d draws gave non-finite shares.", d.n_draws - n_used, d.n_draws)
            out = DecompositionResult(
                quantile_summary(acc.values), d.variables, n_ahead, kind, False, n_used=n_used, store=acc.values
            )
        logger.info("%s done in %.1f seconds.", kind, time.time() - start)
        return out
