# src/epi_distancing/pipeline.py
"""
One-call simulation run: config -> ensemble -> aggregated statistics.

Every input of a run lives on a SimulationConfig value, so no call depends
on state left behind by an earlier one.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np

from .aggregate.quantiles import DEFAULT_PROBS, STATISTICS, AggregatedSeries, SummaryTable, aggregate, summarize
from .errors import InvalidParameter
from .simulate.contact_profiles import Constant, ContactProfile, make_profile
from .simulate.ensemble import Ensemble, run_ensemble
from .simulate.integrator import (
    DEFAULT_ATOL,
    DEFAULT_MAX_EVALUATIONS,
    DEFAULT_METHOD,
    DEFAULT_RTOL,
    IntegratorSettings,
)
from .simulate.parameters import ParameterSet, check_time_grid, initial_state, time_grid

# Start logger
logger = logging.getLogger(__name__)


@dataclass
class SimulationConfig:
    # Epidemiological parameters
    N: float = 2_400_000
    D: float = 5.0
    R0: float = 2.5
    k1: float = 0.25
    k2: float = 1.0
    q: float = 0.0
    r: float = 1.0
    ur: float = 0.8
    i0: float = 50
    profile: ContactProfile = field(default_factory=Constant)
    # Time grid: explicit times win over start/end/step
    start: float = 0.0
    end: float = 400.0
    step: float = 1.0
    times: Optional[Sequence[float]] = None
    # Ensemble
    n_reps: int = 50
    r0_sample_sd: float = 0.1
    seed: Optional[int] = None
    max_failure_fraction: float = 0.5
    parallel: Optional[bool] = None
    num_workers: Optional[int] = None
    # Integrator
    method: str = DEFAULT_METHOD
    rtol: float = DEFAULT_RTOL
    atol: float = DEFAULT_ATOL
    max_evaluations: int = DEFAULT_MAX_EVALUATIONS
    # Aggregation
    probs: Tuple[float, float, float] = DEFAULT_PROBS
    epoch: Optional[str] = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SimulationConfig":
        """Build a config from plain data, e.g. a parsed YAML or JSON document."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise InvalidParameter(f"Unknown config keys: {unknown}")
        values = dict(mapping)
        if "profile" in values:
            values["profile"] = make_profile(values["profile"])
        if "probs" in values:
            values["probs"] = tuple(values["probs"])
        return cls(**values)

    def params(self) -> ParameterSet:
        return ParameterSet(
            N=self.N, D=self.D, R0=self.R0, k1=self.k1, k2=self.k2,
            q=self.q, r=self.r, ur=self.ur,
        )

    def time_grid(self) -> np.ndarray:
        if self.times is not None:
            return check_time_grid(self.times)
        return time_grid(self.start, self.end, self.step)

    def initial_state(self) -> np.ndarray:
        return initial_state(self.N, self.i0, self.params().distancing_fraction)

    def settings(self) -> IntegratorSettings:
        return IntegratorSettings(
            method=self.method, rtol=self.rtol, atol=self.atol,
            max_evaluations=self.max_evaluations,
        )


@dataclass
class SimulationResult:
    config: SimulationConfig
    ensemble: Ensemble
    series: Dict[str, AggregatedSeries]
    summaries: Dict[str, SummaryTable]

    def frames(self):
        """Aggregated series as DataFrames keyed by statistic name."""
        return {name: s.to_frame(epoch=self.config.epoch) for name, s in self.series.items()}


def simulate(
    cfg: SimulationConfig,
    statistics: Optional[Mapping[str, Callable]] = None,
    initial: Optional[Sequence[float]] = None,
    cancel=None,
) -> SimulationResult:
    """Run the ensemble described by ``cfg`` and aggregate each statistic.

    ``initial`` overrides the state derived from (N, i0, distancing fraction).
    """
    params = cfg.params()
    times = cfg.time_grid()
    profile = make_profile(cfg.profile)
    state0 = cfg.initial_state() if initial is None else np.asarray(initial, dtype=float)
    statistics = dict(STATISTICS if statistics is None else statistics)

    ensemble = run_ensemble(
        params,
        profile,
        state0,
        times,
        n_reps=cfg.n_reps,
        r0_sample_sd=cfg.r0_sample_sd,
        seed=cfg.seed,
        settings=cfg.settings(),
        max_failure_fraction=cfg.max_failure_fraction,
        parallel=cfg.parallel,
        num_workers=cfg.num_workers,
        cancel=cancel,
    )

    series = {name: aggregate(ensemble, stat, probs=cfg.probs) for name, stat in statistics.items()}
    summaries = {name: summarize(ensemble, stat) for name, stat in statistics.items()}
    logger.info(
        "Simulation done: %d replicates, %d failed, statistics %s",
        len(ensemble), ensemble.n_failed, sorted(series),
    )
    return SimulationResult(config=cfg, ensemble=ensemble, series=series, summaries=summaries)
