# src/epi_distancing/simulate/ode_system.py
"""
SEIQR model with a normal and a socially distancing sub-population.

State order: S, E1, E2, I, Q, R, Sd, E1d, E2d, Id, Qd, Rd

    beta      = R0 / (D + 1/k2)
    contact   = I + E2 + f(t) * (Id + E2d)
    dS/dt     = -beta * contact * S / N         - r*S  + ur*Sd
    dSd/dt    = -f(t) * beta * contact * Sd / N + r*S  - ur*Sd
    E1 -> E2 at k1, E2 -> I at k2, I -> Q at q, I, Q -> R at 1/D

Every compartment exchanges mass with its distancing counterpart at rates
r (into distancing) and ur (out of distancing), so the state sum is
conserved.
"""

import numpy as np

from ..errors import InvalidParameter

S, E1, E2, I, Q, R = range(6)
SD, E1D, E2D, ID, QD, RD = range(6, 12)
N_COMPARTMENTS = 12
N_REDUCED = 5


def _check_rates(params):
    for name in ("N", "D", "k1", "k2"):
        value = getattr(params, name)
        if not value > 0:
            raise InvalidParameter(f"{name} must be > 0, got {value}")


def _progression(y, params, incidence):
    """Within-group flows for one (S, E1, E2, I, Q, R) block."""
    s, e1, e2, i, q, _ = y
    recovery = 1.0 / params.D
    return np.array([
        -incidence,
        incidence - params.k1 * e1,
        params.k1 * e1 - params.k2 * e2,
        params.k2 * e2 - params.q * i - recovery * i,
        params.q * i - recovery * q,
        recovery * (i + q),
    ])


def derivative(t, y, params, profile):
    """Rate of change of the 12-compartment state at time ``t``.

    Args:
        t (float): time in days
        y (array(12,)): current state
        params (ParameterSet): rates and population size
        profile (callable): contact-reduction factor f(t)
    Returns:
        dy (nparray(12,))
    Raises:
        InvalidParameter
    """
    _check_rates(params)
    y = np.asarray(y, dtype=float)
    normal, distancing = y[:6], y[6:]

    f = float(profile(t))
    beta = params.R0 / (params.D + 1.0 / params.k2)
    contact = y[I] + y[E2] + f * (y[ID] + y[E2D])
    incidence = beta * contact * y[S] / params.N
    incidence_d = f * beta * contact * y[SD] / params.N

    # Group exchange, normal -> distancing at r and back at ur
    exchange = params.ur * distancing - params.r * normal

    dy = np.empty(N_COMPARTMENTS)
    dy[:6] = _progression(normal, params, incidence) + exchange
    dy[6:] = _progression(distancing, params, incidence_d) - exchange
    return dy


def reduced_derivative(t, y, params):
    """5-compartment (S, E1, E2, I, Q) model without a distancing group.

    R is implied by N minus the other compartments.
    """
    _check_rates(params)
    s, e1, e2, i, q = np.asarray(y, dtype=float)
    beta = params.R0 / (params.D + 1.0 / params.k2)
    incidence = beta * (i + e2) * s / params.N
    recovery = 1.0 / params.D
    return np.array([
        -incidence,
        incidence - params.k1 * e1,
        params.k1 * e1 - params.k2 * e2,
        params.k2 * e2 - params.q * i - recovery * i,
        params.q * i - recovery * q,
    ])


class EpidemicODESystem:
    """Binds parameters and a profile into a ``fun(t, y)`` kernel.

    Instances are picklable so they can be shipped to worker processes.
    """

    def __init__(self, params, profile, reduced=False):
        _check_rates(params)
        self.params = params
        self.profile = profile
        self.reduced = reduced

    def __call__(self, t, y):
        if self.reduced:
            return reduced_derivative(t, y, self.params)
        return derivative(t, y, self.params, self.profile)

    def breakpoints(self):
        if self.reduced or not hasattr(self.profile, "breakpoints"):
            return ()
        return tuple(self.profile.breakpoints())

    def __repr__(self):
        return f"EpidemicODESystem(params={self.params!r}, profile={self.profile!r}, reduced={self.reduced})"
