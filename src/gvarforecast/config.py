from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Optional, Protocol, Tuple


Backend = Literal["loky", "threading", "multiprocessing"]


class CancelFlag(Protocol):
    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class RunConfig:
    """
    How the per-draw loop is executed.

    n_workers: 1 -> sequential, bit-reproducible for a fixed seed.
               >1 -> draw range split across joblib workers.
    progress:  optional observer progress(done, total), called between draws.
    cancel:    optional flag with is_set() (threading.Event works), checked
               between draws only.
    """
    n_workers: int = 1
    seed: Optional[int] = None
    backend: Backend = "loky"
    progress: Optional[Callable[[int, int], None]] = None
    cancel: Optional[CancelFlag] = None

    def __post_init__(self):
        if int(self.n_workers) < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")


@dataclass(frozen=True)
class ReportConfig:
    # separator of combined labels like "US.y"
    sep: str = "."
    band_labels: Tuple[str, ...] = ("low16", "low25", "median", "high75", "high84")
