# src/epi_distancing/aggregate/quantiles.py
"""
Reduce an ensemble of trajectories to quantile bands and peak summaries.

A statistic is any function mapping one 12-compartment state vector to a
scalar. The bands are computed over surviving replicates only; failed
replicates are counted and reported as excluded.
"""

from dataclasses import dataclass
from typing import Callable, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from ..errors import AggregationError, InvalidParameter
from ..simulate.ode_system import E1, E1D, E2, E2D, I, ID, S, SD

logger = logging.getLogger(__name__)

# 10th, 50th and 90th percentiles: an 80% band around the median
DEFAULT_PROBS = (0.1, 0.5, 0.9)


# ---------- statistics ----------

def symptomatic(state):
    return state[I] + state[ID]


def total_infectious(state):
    return state[E1] + state[E2] + state[I] + state[E1D] + state[E2D] + state[ID]


def ever_infected(state):
    """N - (S + Sd), with N read off the conserved state sum."""
    return np.sum(state) - (state[S] + state[SD])


STATISTICS = {
    "symptomatic": symptomatic,
    "total_infectious": total_infectious,
    "ever_infected": ever_infected,
}


# ---------- result types ----------

@dataclass(frozen=True, eq=False)
class AggregatedSeries:
    """Per-time quantile band of one statistic.

    ``probs`` holds the probability levels behind lower, median and upper.
    """
    time: np.ndarray
    lower: np.ndarray
    median: np.ndarray
    upper: np.ndarray
    probs: Tuple[float, float, float] = DEFAULT_PROBS
    n_included: int = 0
    n_excluded: int = 0

    def __len__(self):
        return self.time.size

    def rows(self):
        return list(zip(self.time.tolist(), self.lower.tolist(), self.median.tolist(), self.upper.tolist()))

    def to_frame(self, epoch=None) -> pd.DataFrame:
        """Row-oriented table; adds a ``date`` column counted in days from ``epoch``."""
        df = pd.DataFrame({
            "time": self.time,
            "lower": self.lower,
            "median": self.median,
            "upper": self.upper,
        })
        if epoch is not None:
            df["date"] = pd.Timestamp(epoch) + pd.to_timedelta(df["time"], unit="D")
        return df


@dataclass(frozen=True)
class SummaryInfo:
    peak_time: float
    peak_size: float
    sampled_R0: float
    replicate: int


@dataclass(frozen=True)
class SummaryTable:
    rows: Tuple[SummaryInfo, ...]
    n_excluded: int = 0

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def __getitem__(self, i):
        return self.rows[i]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(s.replicate, s.peak_time, s.peak_size, s.sampled_R0) for s in self.rows],
            columns=["replicate", "peak_time", "peak_size", "sampled_R0"],
        )


# ---------- helpers ----------

def _check_probs(probs):
    probs = tuple(float(p) for p in probs)
    if len(probs) != 3:
        raise InvalidParameter("probs must hold exactly three levels (lower, median, upper)")
    if not all(0.0 <= p <= 1.0 for p in probs):
        raise InvalidParameter("probs must lie in [0, 1]")
    if not probs[0] <= probs[1] <= probs[2]:
        raise InvalidParameter("probs must be non-decreasing")
    return probs


def _evaluate(statistic, states):
    """Apply ``statistic`` to every row of ``states``."""
    try:
        values = np.array([float(statistic(row)) for row in states], dtype=float)
    except Exception as exc:
        raise AggregationError(f"Statistic {getattr(statistic, '__name__', statistic)!r} failed: {exc}") from exc
    if not np.all(np.isfinite(values)):
        raise AggregationError("Statistic returned non-finite values")
    return values


def statistic_matrix(ensemble, statistic: Callable) -> np.ndarray:
    """Statistic values for surviving replicates, shape (n_survivors, n_times)."""
    survivors = ensemble.survivors
    if not survivors:
        raise AggregationError(
            f"No surviving replicates to aggregate ({ensemble.n_failed} failed)"
        )
    return np.vstack([_evaluate(statistic, rep.trajectory.states) for rep in survivors])


# ---------- public API ----------

def aggregate(ensemble, statistic: Callable, probs: Sequence[float] = DEFAULT_PROBS) -> AggregatedSeries:
    """Quantile band of ``statistic`` across replicates at each grid time.

    Args:
        ensemble (Ensemble)
        statistic: callable state -> float
        probs: (lower, median, upper) probability levels
    Returns:
        AggregatedSeries
    Raises:
        AggregationError, InvalidParameter
    """
    probs = _check_probs(probs)
    values = statistic_matrix(ensemble, statistic)
    lower, median, upper = np.quantile(values, probs, axis=0)
    # Interpolated quantiles can cross by rounding when the band collapses
    median = np.maximum(median, lower)
    upper = np.maximum(upper, median)

    n_excluded = ensemble.n_failed
    if n_excluded:
        logger.info("Aggregation excluded %d failed replicates", n_excluded)

    return AggregatedSeries(
        time=np.array(ensemble.times, dtype=float),
        lower=lower,
        median=median,
        upper=upper,
        probs=probs,
        n_included=values.shape[0],
        n_excluded=n_excluded,
    )


def summarize(ensemble, statistic: Callable) -> SummaryTable:
    """Peak time and peak size of ``statistic`` for every surviving replicate."""
    values = statistic_matrix(ensemble, statistic)
    times = np.asarray(ensemble.times, dtype=float)
    rows = []
    for rep, series in zip(ensemble.survivors, values):
        k = int(np.argmax(series))
        rows.append(SummaryInfo(
            peak_time=float(times[k]),
            peak_size=float(series[k]),
            sampled_R0=float(rep.R0),
            replicate=rep.index,
        ))

    n_excluded = ensemble.n_failed
    if n_excluded:
        logger.info("Summary excluded %d failed replicates", n_excluded)
    return SummaryTable(rows=tuple(rows), n_excluded=n_excluded)


def peak_time(series: AggregatedSeries, band: str = "median") -> float:
    """Time at which one band of an aggregated series is largest."""
    if band not in ("lower", "median", "upper"):
        raise InvalidParameter(f"Unknown band {band!r}")
    values = getattr(series, band)
    return float(series.time[int(np.argmax(values))])
