# src/epi_distancing/simulate/integrator.py
"""
Adaptive ODE integration on a caller-given time grid.

Wraps scipy's solve_ivp. The state is only reported at the grid points;
internally the solver picks its own steps. Profile breakpoints that fall
inside the grid split the run into segments, and each segment restarts
the solver from the state reached at the end of the previous one.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
import logging

import numpy as np
import pandas as pd
from scipy.integrate import OdeSolver, solve_ivp

from ..errors import EpiDistancingError, IntegrationError, InvalidParameter
from .parameters import COMPARTMENTS, REDUCED_COMPARTMENTS, check_time_grid

logger = logging.getLogger(__name__)

# Names solve_ivp accepts; an OdeSolver subclass is accepted too
SOLVER_METHODS = ("RK23", "RK45", "DOP853", "Radau", "BDF", "LSODA")
DEFAULT_METHOD = "LSODA"
DEFAULT_RTOL = 1e-6
DEFAULT_ATOL = 1e-6
DEFAULT_MAX_EVALUATIONS = 200_000


@dataclass(frozen=True)
class IntegratorSettings:
    method: str = DEFAULT_METHOD
    rtol: float = DEFAULT_RTOL
    atol: float = DEFAULT_ATOL
    max_evaluations: int = DEFAULT_MAX_EVALUATIONS

    def __post_init__(self):
        method = self.method
        if not (method in SOLVER_METHODS or (isinstance(method, type) and issubclass(method, OdeSolver))):
            raise InvalidParameter(f"Unknown solver method {method!r}; expected one of {SOLVER_METHODS}")
        if not self.rtol > 0 or not self.atol > 0:
            raise InvalidParameter("rtol and atol must be > 0")
        if int(self.max_evaluations) < 1:
            raise InvalidParameter("max_evaluations must be >= 1")


@dataclass(frozen=True, eq=False)
class Trajectory:
    """States at each grid time, shape (n_times, n_compartments)."""
    times: np.ndarray
    states: np.ndarray

    def __post_init__(self):
        # Own read-only copies so no caller array gets frozen
        for name in ("times", "states"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def __len__(self):
        return self.times.size

    @property
    def compartments(self):
        if self.states.shape[1] == len(COMPARTMENTS):
            return COMPARTMENTS
        if self.states.shape[1] == len(REDUCED_COMPARTMENTS):
            return REDUCED_COMPARTMENTS
        return tuple(f"x{i}" for i in range(self.states.shape[1]))

    def column(self, name):
        return self.states[:, self.compartments.index(name)]

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.states, columns=list(self.compartments))
        df.insert(0, "time", self.times)
        return df


class _EvaluationBudgetExceeded(Exception):
    pass


class _CountingKernel:
    """Counts derivative calls and stops the solver once the budget is spent."""

    def __init__(self, fun, budget):
        self.fun = fun
        self.budget = budget
        self.calls = 0
        self.exhausted = False

    def __call__(self, t, y):
        self.calls += 1
        if self.calls > self.budget:
            self.exhausted = True
            raise _EvaluationBudgetExceeded
        return self.fun(t, y)


def _segment_knots(times, breakpoints):
    """Grid ends plus every breakpoint strictly inside them, sorted."""
    t0, t1 = times[0], times[-1]
    inner = sorted({float(b) for b in breakpoints if t0 < float(b) < t1})
    return [t0] + inner + [t1]


def integrate(
    initial_state: Sequence[float],
    times: Iterable[float],
    derivative_fn,
    settings: Optional[IntegratorSettings] = None,
    breakpoints: Iterable[float] = (),
) -> Trajectory:
    """Integrate ``derivative_fn(t, y)`` from ``initial_state`` over ``times``.

    Args:
        initial_state: state at times[0]
        times: strictly increasing grid with at least 2 points
        derivative_fn: callable (t, y) -> dy/dt
        settings: solver method and tolerances
        breakpoints: times where the right-hand side is not smooth
    Returns:
        Trajectory
    Raises:
        TimeGridError, IntegrationError
    """
    settings = settings or IntegratorSettings()
    times = check_time_grid(times)
    y = np.array(initial_state, dtype=float)
    if y.ndim != 1:
        raise IntegrationError("initial state must be a 1D vector")
    if not np.all(np.isfinite(y)):
        raise IntegrationError("initial state contains non-finite values")

    kernel = _CountingKernel(derivative_fn, int(settings.max_evaluations))
    knots = _segment_knots(times, breakpoints)
    out = np.empty((times.size, y.size), dtype=float)

    for a, b in zip(knots[:-1], knots[1:]):
        last = b == knots[-1]
        mask = (times >= a) & ((times <= b) if last else (times < b))
        seg_times = times[mask]
        # Always evaluate at b so the next segment can start from it
        if seg_times.size and seg_times[-1] == b:
            t_eval = seg_times
        else:
            t_eval = np.append(seg_times, b)

        try:
            sol = solve_ivp(
                kernel,
                (a, b),
                y,
                method=settings.method,
                t_eval=t_eval,
                rtol=settings.rtol,
                atol=settings.atol,
            )
        except _EvaluationBudgetExceeded:
            sol = None
        except EpiDistancingError:
            raise
        except (ValueError, ArithmeticError, IndexError, TypeError) as exc:
            raise IntegrationError(f"Solver failed on [{a}, {b}]: {exc}") from exc

        if kernel.exhausted or sol is None:
            raise IntegrationError(
                f"Exceeded {settings.max_evaluations} derivative evaluations before t={b}"
            )
        if not sol.success:
            raise IntegrationError(f"Solver failed on [{a}, {b}]: {sol.message}")
        if not np.all(np.isfinite(sol.y)):
            raise IntegrationError(f"Non-finite state produced on [{a}, {b}]")

        out[mask] = sol.y[:, : seg_times.size].T
        y = sol.y[:, -1]
        logger.debug("Integrated segment [%g, %g] (%d grid points)", a, b, seg_times.size)

    logger.debug("Integration used %d derivative evaluations", kernel.calls)
    return Trajectory(times=times, states=out)
