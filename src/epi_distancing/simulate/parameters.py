# src/epi_distancing/simulate/parameters.py
# Rate constants, initial conditions and time grids for the two-group model
from dataclasses import dataclass, replace, fields
import math

import numpy as np

from ..errors import InvalidParameter, TimeGridError

# Order of the 12 compartments in every state vector
COMPARTMENTS = ("S", "E1", "E2", "I", "Q", "R", "Sd", "E1d", "E2d", "Id", "Qd", "Rd")
REDUCED_COMPARTMENTS = ("S", "E1", "E2", "I", "Q")

# Split of the initial infections across E1, E2, I
INITIAL_SPLIT = (0.4, 0.1, 0.5)


@dataclass(frozen=True)
class ParameterSet:
    """Epidemiological rates and population size.

    Args:
        N: population size
        D: mean duration of the infectious and quarantine periods (days)
        R0: basic reproduction number
        k1: progression rate E1 -> E2
        k2: progression rate E2 -> I
        q: self-quarantine rate I -> Q
        r: rate of entering the distancing group
        ur: rate of leaving the distancing group
    Raises:
        InvalidParameter
    """
    N: float = 2_400_000
    D: float = 5.0
    R0: float = 2.5
    k1: float = 0.25
    k2: float = 1.0
    q: float = 0.0
    r: float = 1.0
    ur: float = 0.8

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
                raise InvalidParameter(f"{f.name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise InvalidParameter(f"{f.name} must be finite, got {value!r}")
            # Store plain floats so replicas pickle and compare cleanly
            object.__setattr__(self, f.name, float(value))

        for name in ("N", "D", "R0", "k1", "k2"):
            if getattr(self, name) <= 0:
                raise InvalidParameter(f"{name} must be > 0, got {getattr(self, name)}")
        for name in ("q", "r", "ur"):
            if getattr(self, name) < 0:
                raise InvalidParameter(f"{name} must be >= 0, got {getattr(self, name)}")

    @property
    def beta(self) -> float:
        """Transmission intensity R0 / (D + 1/k2)."""
        return self.R0 / (self.D + 1.0 / self.k2)

    @property
    def distancing_fraction(self) -> float:
        """Long-run share of the population in the distancing group."""
        total = self.r + self.ur
        if total == 0:
            return 0.0
        return self.r / total

    def with_R0(self, R0: float) -> "ParameterSet":
        return replace(self, R0=R0)


def initial_state(N, i0, fraction):
    """Build the 12-compartment starting state.

    The population is split (1 - fraction) / fraction between the normal
    and distancing groups and ``i0`` initial infections are spread over
    E1, E2 and I in each group with the same weights.
    """
    N = float(N)
    i0 = float(i0)
    fraction = float(fraction)
    if N <= 0:
        raise InvalidParameter("N must be > 0")
    if i0 < 0 or i0 > N:
        raise InvalidParameter("i0 must lie in [0, N]")
    if not 0.0 <= fraction <= 1.0:
        raise InvalidParameter("distancing fraction must lie in [0, 1]")

    e1, e2, i = INITIAL_SPLIT
    state = np.zeros(len(COMPARTMENTS), dtype=float)
    for offset, weight in ((0, 1.0 - fraction), (6, fraction)):
        state[offset + 0] = (N - i0) * weight
        state[offset + 1] = e1 * i0 * weight
        state[offset + 2] = e2 * i0 * weight
        state[offset + 3] = i * i0 * weight
    return state


def reduced_initial_state(N, i0):
    """Starting state of the 5-compartment no-distancing model."""
    full = initial_state(N, i0, 0.0)
    return full[: len(REDUCED_COMPARTMENTS)].copy()


def time_grid(start, end, step):
    """Regular grid from start to end, including end when it lies on the lattice."""
    if not all(math.isfinite(v) for v in (start, end, step)):
        raise TimeGridError(f"start, end and step must be finite, got {(start, end, step)}")
    if step <= 0:
        raise TimeGridError("step must be > 0")
    if end <= start:
        raise TimeGridError("end must be greater than start")
    n = int(math.floor((end - start) / step + 1e-9))
    times = start + step * np.arange(n + 1, dtype=float)
    return check_time_grid(times)


def check_time_grid(times):
    """Return ``times`` as a float array or raise TimeGridError."""
    arr = np.asarray(times, dtype=float)
    if arr.ndim != 1:
        raise TimeGridError("time grid must be one-dimensional")
    if arr.size < 2:
        raise TimeGridError("time grid needs at least 2 points")
    if not np.all(np.isfinite(arr)):
        raise TimeGridError("time grid contains non-finite values")
    if not np.all(np.diff(arr) > 0):
        raise TimeGridError("time grid must be strictly increasing")
    return arr


def check_initial_state(state, size=len(COMPARTMENTS)):
    """Return ``state`` as a float vector or raise InvalidParameter."""
    arr = np.asarray(state, dtype=float)
    if arr.shape != (size,):
        raise InvalidParameter(f"initial state must have shape ({size},), got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter("initial state contains non-finite values")
    if np.any(arr < 0):
        raise InvalidParameter("initial state compartments must be >= 0")
    return arr
