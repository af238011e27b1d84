from __future__ import annotations

from enum import IntEnum
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import norm

from .draws import VariableId


class Band(IntEnum):
    LOW16 = 0
    LOW25 = 1
    MEDIAN = 2
    HIGH75 = 3
    HIGH84 = 4


QUANTILE_LEVELS = np.array([0.16, 0.25, 0.50, 0.75, 0.84])


class Moment(IntEnum):
    MEAN = 0
    SD = 1


def quantile_summary(ensemble: np.ndarray) -> np.ndarray:
    """
    ensemble: (draws, ...) -> (..., 5), quantiles over draws at QUANTILE_LEVELS,
    indexed by Band. NaN entries are ignored.
    """
    q = np.nanquantile(ensemble, QUANTILE_LEVELS, axis=0)
    return np.moveaxis(q, 0, -1)


def lps_stats(ensemble: np.ndarray, h: int) -> np.ndarray:
    """
    ensemble: (draws, K, fhorz) -> (K, 2, h) with mean and sd (ddof=1) over draws,
    indexed by Moment, for the first h horizons.
    """
    sub = ensemble[:, :, :h]
    out = np.empty((sub.shape[1], 2, h))
    out[:, Moment.MEAN, :] = np.nanmean(sub, axis=0)
    out[:, Moment.SD, :] = np.nanstd(sub, axis=0, ddof=1)
    return out


def _score_frame(values: np.ndarray, variables: Sequence[VariableId]) -> pd.DataFrame:
    cols = pd.MultiIndex.from_tuples([(v.country, v.variable) for v in variables], names=["country", "variable"])
    idx = pd.RangeIndex(1, values.shape[0] + 1, name="horizon")
    return pd.DataFrame(values, index=idx, columns=cols)


def _holdout_moments(obj):
    if getattr(obj, "holdout", None) is None or getattr(obj, "lps_stats", None) is None:
        raise ValueError(
            "Please submit a forecast object that includes a hold out sample for evaluation "
            "(reserve a hold-out sample when estimating the model)!"
        )
    y = obj.holdout.to_numpy(dtype=float)     # (h, K)
    mean = obj.lps_stats[:, Moment.MEAN, :].T   # (h, K)
    sd = obj.lps_stats[:, Moment.SD, :].T
    return y, mean, sd


def lps(obj) -> pd.DataFrame:
    """
    Log-predictive scores, h x K: Gaussian log density of each hold-out value
    under N(mean, sd) of the predictive draws for that cell.
    """
    y, mean, sd = _holdout_moments(obj)
    return _score_frame(norm.logpdf(y, loc=mean, scale=sd), obj.variables)


def rmse(obj) -> pd.DataFrame:
    """
    Root mean squared error per (horizon, variable) cell, i.e. sqrt((y - mean)^2).
    One observation per cell, so nothing is averaged here.
    """
    y, mean, _ = _holdout_moments(obj)
    return _score_frame(np.sqrt((y - mean) ** 2), obj.variables)


def score_breakdown(scores: pd.DataFrame) -> Dict[str, pd.Series]:
    """
    Aggregates an lps() or rmse() frame: mean per country, mean per variable
    (both over all horizons) and sum over variables per horizon.
    """
    values = scores.to_numpy(dtype=float)
    countries = scores.columns.get_level_values("country")
    variables = scores.columns.get_level_values("variable")
    by_country = pd.Series(
        {c: float(np.nanmean(values[:, countries == c])) for c in pd.unique(countries)}, name="country"
    )
    by_variable = pd.Series(
        {v: float(np.nanmean(values[:, variables == v])) for v in pd.unique(variables)}, name="variable"
    )
    by_horizon = scores.sum(axis=1).rename("horizon")
    return {"country": by_country, "variable": by_variable, "horizon": by_horizon}


def bands_frame(
    bands: np.ndarray,
    variables: Sequence[VariableId],
    labels: Sequence[str],
    extra: Optional[Dict[str, Sequence]] = None,
) -> pd.DataFrame:
    """
    Tidy long frame of a (K, H, 5) band array: one row per (variable, horizon).
    """
    K, H, nb = bands.shape
    if len(labels) != nb:
        raise ValueError(f"Need {nb} band labels, got {len(labels)}")
    rows = {
        "country": np.repeat([v.country for v in variables], H),
        "variable": np.repeat([v.variable for v in variables], H),
        "horizon": np.tile(np.arange(1, H + 1), K),
    }
    if extra:
        rows.update({k: np.repeat(list(val), H) for k, val in extra.items()})
    for b in range(nb):
        rows[labels[b]] = bands[:, :, b].reshape(-1)
    return pd.DataFrame(rows)
