from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from statsmodels.tsa.tsatools import lagmat

from .companion import lag_tensor


ArrayOrFrame = Union[np.ndarray, pd.DataFrame]


def _as_float_array(a: Any, ndim: int, label: str) -> np.ndarray:
    x = np.asarray(a, dtype=float)
    if x.ndim != ndim:
        raise ValueError(f"{label}: expected {ndim}D array, got shape {x.shape}")
    return x


def _validate_values(X: np.ndarray, label: str):
    if not np.isfinite(X).all():
        bad = np.argwhere(~np.isfinite(X))
        raise ValueError(f"{label} contains NaN/inf at positions like {bad[:5].tolist()} (showing up to 5).")


@dataclass(frozen=True)
class VariableId:
    """Country/variable pair identifying one column of the global panel."""
    country: str
    variable: str

    @classmethod
    def parse(cls, label: str, sep: str = ".") -> "VariableId":
        label = str(label)
        if sep not in label:
            return cls(country="", variable=label)
        country, variable = label.split(sep, 1)
        return cls(country=country, variable=variable)

    def label(self, sep: str = ".") -> str:
        return f"{self.country}{sep}{self.variable}" if self.country else self.variable

    def __str__(self) -> str:
        return self.label()


class PosteriorDraws:
    """
    Stacked output of the (external) Bayesian GVAR estimator.

    Arrays are draw-first:
      - A_large:    (draws, K, K*plag + const + trend), columns [A_1|...|A_p|const|trend]
      - S_large:    (draws, K, K)
      - Ginv_large: (draws, K, K), Sigma = Ginv S Ginv'
      - F_large:    (draws, K, K, plag), optional; derived from A_large if missing

    xglobal is the T x K panel (time in rows, combined "country.variable" columns).
    holdout, if given, holds the observations reserved for evaluation, one row per horizon.
    """

    def __init__(
        self,
        xglobal: pd.DataFrame,
        plag: int,
        A_large: np.ndarray,
        S_large: np.ndarray,
        Ginv_large: np.ndarray,
        F_large: Optional[np.ndarray] = None,
        const: bool = True,
        trend: bool = False,
        holdout: Optional[pd.DataFrame] = None,
        sep: str = ".",
    ):
        if not isinstance(xglobal, pd.DataFrame):
            raise TypeError("xglobal must be a pandas DataFrame (time x variables).")
        self.plag = int(plag)
        if self.plag < 1:
            raise ValueError("plag must be >= 1")
        self.const = bool(const)
        self.trend = bool(trend)

        self.xglobal = xglobal.copy()
        self.X = xglobal.to_numpy(dtype=float)
        _validate_values(self.X, label="xglobal")
        self.T, self.K = self.X.shape
        if self.T <= self.plag:
            raise ValueError(f"Need T > plag. Got T={self.T}, plag={self.plag}")

        # resolved once; nothing downstream re-parses labels
        self.variables: Tuple[VariableId, ...] = tuple(VariableId.parse(c, sep=sep) for c in xglobal.columns)
        self.labels: List[str] = [str(c) for c in xglobal.columns]

        self.A_large = _as_float_array(A_large, 3, "A_large")
        self.S_large = _as_float_array(S_large, 3, "S_large")
        self.Ginv_large = _as_float_array(Ginv_large, 3, "Ginv_large")
        self.F_large = None if F_large is None else _as_float_array(F_large, 4, "F_large")
        self.holdout = None
        if holdout is not None:
            self.holdout = holdout.reindex(columns=xglobal.columns)
            if self.holdout.isna().all(axis=0).any():
                missing = [c for c in xglobal.columns if self.holdout[c].isna().all()]
                raise ValueError(f"holdout lacks columns {missing[:5]} of xglobal.")

        self.validate()

    # ----------------- shapes -----------------
    @property
    def n_det(self) -> int:
        return int(self.const) + int(self.trend)

    @property
    def nkk(self) -> int:
        return self.plag * self.K + self.n_det

    @property
    def n_draws(self) -> int:
        return self.A_large.shape[0]

    @property
    def bigT(self) -> int:
        # effective sample length after losing plag initial observations
        return self.T - self.plag

    def validate(self):
        K, n = self.K, self.n_draws
        if n < 1:
            raise ValueError("A_large holds no draws.")
        expected = {
            "A_large": (n, K, K * self.plag + self.n_det),
            "S_large": (n, K, K),
            "Ginv_large": (n, K, K),
        }
        if self.F_large is not None:
            expected["F_large"] = (n, K, K, self.plag)
        for name, shape in expected.items():
            got = getattr(self, name).shape
            if got != shape:
                raise ValueError(f"{name} must have shape {shape} (draws, ...), got {got}")
        for name in expected:
            _validate_values(getattr(self, name), label=name)

    # ----------------- per-draw access -----------------
    def sigma(self, irep: int) -> np.ndarray:
        Ginv = self.Ginv_large[irep]
        Sig = Ginv @ self.S_large[irep] @ Ginv.T
        return 0.5 * (Sig + Sig.T)

    def lag_tensor(self, irep: int) -> np.ndarray:
        if self.F_large is not None:
            return self.F_large[irep]
        return lag_tensor(self.A_large[irep], K=self.K, plag=self.plag)

    def last_state(self) -> np.ndarray:
        """
        Regressor vector for the first forecast period T+1:
        [y_T, y_{T-1}, ..., y_{T-plag+1}, 1, trend_{T+1}] of length nkk.
        """
        # row T of the untrimmed lag matrix holds lags 1..plag of period T+1
        lags = lagmat(self.X, maxlag=self.plag, trim="none", original="ex")[self.T]
        det = []
        if self.const:
            det.append(1.0)
        if self.trend:
            det.append(float(self.bigT + 1))
        return np.concatenate([lags, np.asarray(det, dtype=float)])


class ConstraintSpec:
    """
    Future path constraints, horizon x K.

    target: NaN where unconstrained.
    sd:     standard deviation around each target, 0 where hard (NaN is read as 0).
    """

    def __init__(self, target: np.ndarray, sd: np.ndarray):
        self.target = target
        self.sd = sd

    @classmethod
    def build(
        cls,
        constr: ArrayOrFrame,
        fhorz: int,
        labels: Sequence[str],
        constr_sd: Optional[ArrayOrFrame] = None,
    ) -> "ConstraintSpec":
        K = len(labels)
        target = cls._coerce(constr, labels, "constr")
        if target.shape != (fhorz, K):
            raise ValueError(f"Please respecify dimensions of 'constr': expected {(fhorz, K)}, got {target.shape}.")
        if np.isinf(target).any():
            raise ValueError("'constr' may contain finite values or NaN only.")

        if constr_sd is None:
            sd = np.zeros((fhorz, K))
        else:
            sd = cls._coerce(constr_sd, labels, "constr_sd")
            if sd.shape != (fhorz, K):
                raise ValueError(f"Please respecify dimensions of 'constr_sd': expected {(fhorz, K)}, got {sd.shape}.")
            sd = np.where(np.isnan(sd), 0.0, sd)
            if np.isinf(sd).any() or (sd < 0).any():
                raise ValueError("'constr_sd' must be finite and non-negative.")
        return cls(target=target, sd=sd)

    @staticmethod
    def _coerce(a: ArrayOrFrame, labels: Sequence[str], name: str) -> np.ndarray:
        if isinstance(a, pd.DataFrame):
            unknown = [c for c in a.columns if str(c) not in labels]
            if unknown:
                raise ValueError(f"'{name}' has columns not in the model: {unknown[:5]}")
            a = a.rename(columns=str).reindex(columns=list(labels))
            return a.to_numpy(dtype=float)
        return _as_float_array(a, 2, name)

    @property
    def mask(self) -> np.ndarray:
        return ~np.isnan(self.target)

    @property
    def n_constrained(self) -> int:
        return int(self.mask.sum())

    def jittered(self, rng: np.random.Generator) -> np.ndarray:
        """Targets plus N(0, sd) noise; unconstrained cells stay NaN."""
        noise = rng.standard_normal(self.target.shape) * self.sd
        return self.target + noise
