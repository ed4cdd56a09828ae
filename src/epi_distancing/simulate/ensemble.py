# src/epi_distancing/simulate/ensemble.py
#
# Run the ODE model once per sampled R0 and collect the replicates.
#
# Seeding: SeedSequence(seed).spawn(n_reps) gives one child stream per
# replicate index, so replicate i draws the same R0 whatever the order of
# execution and whether or not a worker pool is used.

from dataclasses import dataclass
from multiprocessing import Pool, cpu_count
from typing import List, Optional, Tuple
import logging

import numpy as np
from numpy.random import SeedSequence, default_rng

from ..errors import EnsembleFailure, IntegrationError, InvalidParameter
from .integrator import IntegratorSettings, Trajectory, integrate
from .ode_system import EpidemicODESystem
from .parameters import check_initial_state, check_time_grid

# Start logger
logger = logging.getLogger(__name__)

# Below this many replicates a pool costs more than it saves
PARALLEL_THRESHOLD = 10
MAX_DEFAULT_WORKERS = 8


@dataclass(frozen=True, eq=False)
class Replicate:
    index: int
    R0: float
    trajectory: Optional[Trajectory] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.trajectory is None


@dataclass(frozen=True, eq=False)
class Ensemble:
    """Replicates in attempt order, all sharing one time grid."""
    replicates: Tuple[Replicate, ...]
    times: np.ndarray
    seed: Optional[int] = None
    n_requested: int = 0
    cancelled: bool = False

    def __len__(self):
        return len(self.replicates)

    def __iter__(self):
        return iter(self.replicates)

    @property
    def survivors(self) -> List[Replicate]:
        return [rep for rep in self.replicates if not rep.failed]

    @property
    def failed(self) -> List[Replicate]:
        return [rep for rep in self.replicates if rep.failed]

    @property
    def n_failed(self) -> int:
        return len(self.failed)

    @property
    def failed_indices(self) -> List[int]:
        return [rep.index for rep in self.failed]

    @property
    def sampled_R0(self) -> np.ndarray:
        return np.array([rep.R0 for rep in self.replicates], dtype=float)


def sample_R0(mean, sd, n_reps, seed=None):
    """Draw one R0 per replicate from Normal(mean, sd).

    Returns:
        draws (nparray(n_reps,)), seed (int): the master seed actually used,
        so an unseeded run can be reproduced from its logs
    """
    ss = SeedSequence(seed)
    draws = np.array([default_rng(child).normal(mean, sd) for child in ss.spawn(n_reps)], dtype=float)
    return draws, ss.entropy


def _run_replicate(task) -> Replicate:
    """Worker entry point (top-level so the pool can pickle it)."""
    index, r0, base_params, profile, initial_state, times, settings = task
    try:
        params = base_params.with_R0(r0)
        system = EpidemicODESystem(params, profile)
        trajectory = integrate(initial_state, times, system, settings=settings, breakpoints=system.breakpoints())
    except (IntegrationError, InvalidParameter) as exc:
        logger.warning("Replicate %d (R0=%.4f) failed: %s", index, r0, exc)
        return Replicate(index=index, R0=float(r0), error=str(exc))
    logger.debug("Replicate %d (R0=%.4f) done", index, r0)
    return Replicate(index=index, R0=float(r0), trajectory=trajectory)


def _chunks(tasks, size):
    for start in range(0, len(tasks), size):
        yield tasks[start:start + size]


def run_ensemble(
    base_params,
    profile,
    initial_state,
    times,
    n_reps: int,
    r0_sample_sd: float,
    seed: Optional[int] = None,
    settings: Optional[IntegratorSettings] = None,
    max_failure_fraction: float = 0.5,
    parallel: Optional[bool] = None,
    num_workers: Optional[int] = None,
    cancel=None,
) -> Ensemble:
    """Simulate ``n_reps`` replicates with R0 ~ Normal(base_params.R0, r0_sample_sd).

    Args:
        base_params (ParameterSet): shared rates, R0 is the sampling mean
        profile: contact-reduction profile shared by every replicate
        initial_state: 12-compartment state at times[0]
        times: output grid
        n_reps: number of replicates (>= 1)
        r0_sample_sd: standard deviation of the R0 draws (>= 0)
        seed: master seed
        settings: integrator settings
        max_failure_fraction: largest tolerated share of failed replicates
        parallel: use a worker pool; None picks it for more than 10 replicates
        num_workers: pool size, defaults to min(cpu_count, 8)
        cancel: object with ``is_set()``; checked before each dispatch
    Returns:
        Ensemble
    Raises:
        InvalidParameter, TimeGridError, EnsembleFailure
    """
    # Validate everything before the first integration
    if isinstance(n_reps, bool) or int(n_reps) != n_reps or n_reps < 1:
        raise InvalidParameter(f"n_reps must be a positive integer, got {n_reps!r}")
    n_reps = int(n_reps)
    if not np.isfinite(r0_sample_sd) or r0_sample_sd < 0:
        raise InvalidParameter(f"r0_sample_sd must be >= 0, got {r0_sample_sd!r}")
    if not 0.0 <= max_failure_fraction <= 1.0:
        raise InvalidParameter("max_failure_fraction must lie in [0, 1]")
    times = check_time_grid(times)
    initial_state = check_initial_state(initial_state)
    # Fails early on bad rates
    EpidemicODESystem(base_params, profile)
    settings = settings or IntegratorSettings()

    draws, master_seed = sample_R0(base_params.R0, r0_sample_sd, n_reps, seed)
    tasks = [
        (i, float(r0), base_params, profile, initial_state, times, settings)
        for i, r0 in enumerate(draws)
    ]

    if parallel is None:
        parallel = n_reps > PARALLEL_THRESHOLD
    if num_workers is None:
        num_workers = min(cpu_count(), MAX_DEFAULT_WORKERS)
    num_workers = max(1, int(num_workers))

    logger.info(
        "Running %d replicates (R0 %.3f, sd %.3f, seed %s, %s)",
        n_reps, base_params.R0, r0_sample_sd, master_seed,
        f"{num_workers} workers" if parallel else "sequential",
    )

    replicates = []
    cancelled = False
    if parallel:
        with Pool(num_workers) as pool:
            for chunk in _chunks(tasks, num_workers):
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    break
                replicates.extend(pool.map(_run_replicate, chunk))
    else:
        for task in tasks:
            if cancel is not None and cancel.is_set():
                cancelled = True
                break
            replicates.append(_run_replicate(task))

    if cancelled:
        logger.warning("Run cancelled after %d of %d replicates", len(replicates), n_reps)

    ensemble = Ensemble(
        replicates=tuple(replicates),
        times=times,
        seed=master_seed,
        n_requested=n_reps,
        cancelled=cancelled,
    )

    attempted = len(replicates)
    if attempted:
        logger.info("%d of %d replicates failed", ensemble.n_failed, attempted)
        if ensemble.n_failed / attempted > max_failure_fraction:
            raise EnsembleFailure(
                f"{ensemble.n_failed} of {attempted} replicates failed "
                f"(limit {max_failure_fraction:.0%}); failed indices {ensemble.failed_indices}",
                ensemble=ensemble,
            )
    return ensemble
