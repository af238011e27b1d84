import threading

import numpy as np
import pandas as pd
import pytest

from gvarforecast.config import RunConfig
from gvarforecast.draws import PosteriorDraws
from gvarforecast.forecast import GVARForecaster
from gvarforecast.parallel import DrawsCancelled
from gvarforecast.summary import Band, lps, rmse


def test_unconditional_forecast_end_to_end(draws):
    res = GVARForecaster(draws, RunConfig(seed=1)).predict(fhorz=4)
    assert res.fcast.shape == (3, 4, 5)
    assert not np.isnan(res.fcast).any()
    assert (res.fcast[:, :, Band.LOW16] <= res.fcast[:, :, Band.HIGH84]).all()
    assert res.pred_store is None
    assert res.lps_stats is None

    frame = res.to_frame()
    assert list(frame.columns) == ["country", "variable", "horizon", "low16", "low25", "median", "high75", "high84"]
    assert len(frame) == 12


def test_sequential_runs_are_reproducible(draws):
    a = GVARForecaster(draws, RunConfig(seed=11)).predict(fhorz=3, save_store=True)
    b = GVARForecaster(draws, RunConfig(seed=11)).predict(fhorz=3, save_store=True)
    np.testing.assert_array_equal(a.pred_store, b.pred_store)


def test_conditional_forecast_hits_hard_constraint(draws):
    model = GVARForecaster(draws, RunConfig(seed=2))
    pred = model.predict(fhorz=4, save_store=True)
    constr = np.full((4, 3), np.nan)
    constr[0, 0] = 5.0

    cond = model.cond_predict(constr, pred)
    assert cond.conditional
    assert cond.fcast[0, 0, Band.MEDIAN] == pytest.approx(5.0, abs=1e-9)
    assert cond.fcast[0, 0, Band.LOW16] == pytest.approx(5.0, abs=1e-9)
    assert not np.isnan(cond.fcast).any()


def test_conditional_without_constraints_reproduces_unconditional(draws):
    model = GVARForecaster(draws, RunConfig(seed=3))
    pred = model.predict(fhorz=3, save_store=True)
    cond = model.cond_predict(np.full((3, 3), np.nan), pred)
    np.testing.assert_allclose(cond.fcast, pred.fcast)


def test_soft_constraints_spread_around_target(draws):
    model = GVARForecaster(draws, RunConfig(seed=4))
    pred = model.predict(fhorz=2, save_store=True)
    constr = pd.DataFrame(np.nan, index=range(2), columns=["EA.y", "US.p", "US.y"])
    constr.loc[1, "US.p"] = 1.0
    sd = constr.notna() * 0.5

    cond = model.cond_predict(constr, pred, constr_sd=sd)
    band = cond.fcast[1, 1]
    assert band[Band.LOW16] < 1.0 < band[Band.HIGH84]


def test_cond_predict_preconditions(draws):
    model = GVARForecaster(draws)
    pred = model.predict(fhorz=2)
    with pytest.raises(ValueError, match="save_store"):
        model.cond_predict(np.full((2, 3), np.nan), pred)

    pred = model.predict(fhorz=2, save_store=True)
    with pytest.raises(ValueError, match="dimensions of 'constr'"):
        model.cond_predict(np.full((3, 3), np.nan), pred)
    with pytest.raises(ValueError, match="dimensions of 'constr_sd'"):
        model.cond_predict(np.full((2, 3), np.nan), pred, constr_sd=np.zeros((2, 2)))
    with pytest.raises(ValueError, match="svd_rtol"):
        model.cond_predict(np.full((2, 3), np.nan), pred, svd_rtol=-1.0)


def test_singular_covariance_draw_does_not_raise(draws_factory):
    d = draws_factory(singular_first=True)
    model = GVARForecaster(d, RunConfig(seed=5))
    pred = model.predict(fhorz=4, save_store=True)
    assert np.all(np.isfinite(pred.pred_store[0]))

    constr = np.full((4, 3), np.nan)
    constr[1, 2] = 0.0
    cond = model.cond_predict(constr, pred)
    assert np.all(np.isfinite(cond.fcast))


def test_holdout_scores(draws_factory):
    d = draws_factory(holdout=3)
    with pytest.warns(UserWarning, match="Hold-out"):
        res = GVARForecaster(d, RunConfig(seed=6)).predict(fhorz=2)
    assert res.lps_stats.shape == (3, 2, 2)
    assert lps(res).shape == (2, 3)
    assert (rmse(res).to_numpy() >= 0).all()


def test_parallel_workers_match_shapes(draws):
    cfg = RunConfig(n_workers=2, seed=8, backend="threading")
    res = GVARForecaster(draws, cfg).predict(fhorz=4, save_store=True)
    assert res.pred_store.shape == (draws.n_draws, 3, 4)
    assert np.all(np.isfinite(res.pred_store))
    assert (res.fcast[:, :, Band.LOW16] <= res.fcast[:, :, Band.HIGH84]).all()

    dec = GVARForecaster(draws, cfg).gfevd(n_ahead=3)
    ref = GVARForecaster(draws).gfevd(n_ahead=3)
    np.testing.assert_allclose(dec.fevd, ref.fevd, atol=1e-12)


def test_progress_observer_and_cancellation(draws):
    seen = []
    GVARForecaster(draws, RunConfig(progress=lambda done, total: seen.append((done, total)))).predict(fhorz=1)
    assert len(seen) == draws.n_draws
    assert seen[-1] == (draws.n_draws, draws.n_draws)

    stop = threading.Event()

    def observer(done, total):
        if done == 10:
            stop.set()

    with pytest.raises(DrawsCancelled) as err:
        GVARForecaster(draws, RunConfig(progress=observer, cancel=stop)).predict(fhorz=1)
    assert err.value.done == 10


def test_bad_worker_count():
    with pytest.raises(ValueError, match="n_workers"):
        RunConfig(n_workers=0)


def test_parallel_merge_keeps_draw_order(draws):
    cfg = RunConfig(n_workers=2, backend="threading")
    par = GVARForecaster(draws, cfg).gfevd(n_ahead=3, running=False)
    seq = GVARForecaster(draws).gfevd(n_ahead=3, running=False)
    np.testing.assert_array_equal(par.store, seq.store)

    fev_par = GVARForecaster(draws, cfg).fevd(n_ahead=3, running=False)
    fev_seq = GVARForecaster(draws).fevd(n_ahead=3, running=False)
    np.testing.assert_array_equal(fev_par.store, fev_seq.store)


def test_first_step_mean_starts_from_period_after_sample(draws_factory):
    d = draws_factory(trend=True)
    quiet = PosteriorDraws(d.xglobal, plag=d.plag, A_large=d.A_large, S_large=np.zeros_like(d.S_large),
                           Ginv_large=d.Ginv_large, trend=True)
    pred = GVARForecaster(quiet, RunConfig(seed=4)).predict(fhorz=2, save_store=True)

    X = d.xglobal.to_numpy()
    state0 = np.r_[X[-1], X[-2], 1.0, quiet.bigT + 1]
    np.testing.assert_array_equal(quiet.last_state(), state0)
    np.testing.assert_allclose(pred.pred_store[:, :, 0], np.einsum("nkj,j->nk", d.A_large, state0), atol=1e-10)
    assert pred.n_fallback == 2 * d.n_draws
