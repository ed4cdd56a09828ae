from types import SimpleNamespace

import numpy as np
import pytest

from epi_distancing.errors import InvalidParameter
from epi_distancing.simulate.contact_profiles import Constant, StepWindow
from epi_distancing.simulate.ode_system import (
    E1,
    E1D,
    EpidemicODESystem,
    I,
    R,
    S,
    SD,
    derivative,
    reduced_derivative,
)
from epi_distancing.simulate.parameters import ParameterSet


def _state(**values):
    names = ["S", "E1", "E2", "I", "Q", "R", "Sd", "E1d", "E2d", "Id", "Qd", "Rd"]
    return np.array([float(values.get(n, 0.0)) for n in names])


def test_hand_computed_rates():
    """
    N=1000, R0=2, D=5, k2=1 -> beta = 1/3.
    contact = I + E2 + f*(Id + E2d) = 10 + 0.5*10 = 15
    normal incidence     = beta * 15 * 500 / 1000       = 2.5
    distancing incidence = 0.5 * beta * 15 * 480 / 1000 = 1.2
    """
    p = ParameterSet(N=1000, D=5, R0=2, k1=0.25, k2=1, q=0, r=0, ur=0)
    y = _state(S=500, I=10, Sd=480, Id=10)
    dy = derivative(0.0, y, p, Constant(0.5))

    assert dy[S] == pytest.approx(-2.5)
    assert dy[E1] == pytest.approx(2.5)
    assert dy[SD] == pytest.approx(-1.2)
    assert dy[E1D] == pytest.approx(1.2)
    # recovery at 1/D
    assert dy[I] == pytest.approx(-2.0)
    assert dy[R] == pytest.approx(2.0)


def test_quarantine_flow():
    p = ParameterSet(N=100, D=5, R0=1, k1=1, k2=1, q=0.3, r=0, ur=0)
    y = _state(S=0, I=10)
    dy = derivative(0.0, y, p, Constant(1.0))
    # I -> Q at q, I -> R at 1/D
    assert dy[I] == pytest.approx(-10 * (0.3 + 0.2))
    assert dy[4] == pytest.approx(3.0)


def test_group_exchange():
    """Normal loses r*X and regains ur*Xd; the distancing group mirrors it."""
    p = ParameterSet(N=150, R0=1.0, r=1.0, ur=0.8)
    y = _state(S=100, Sd=50)
    dy = derivative(0.0, y, p, Constant(1.0))
    assert dy[S] == pytest.approx(-100 + 0.8 * 50)
    assert dy[SD] == pytest.approx(100 - 0.8 * 50)


def test_derivative_conserves_population():
    rng = np.random.default_rng(1)
    p = ParameterSet(N=10_000, q=0.1, r=0.3, ur=0.05)
    profile = StepWindow(5, 50, 0.2)
    for t in (0.0, 10.0, 70.0):
        y = rng.uniform(0, 1000, size=12)
        dy = derivative(t, y, p, profile)
        assert abs(dy.sum()) < 1e-9 * np.abs(dy).max()


def test_contact_factor_only_touches_distancing_terms():
    """With no infectious individuals in the distancing group, f only scales Sd's exposure."""
    p = ParameterSet(N=1000, r=0, ur=0)
    y = _state(S=400, I=20, Sd=400)
    full = derivative(0.0, y, p, Constant(1.0))
    reduced = derivative(0.0, y, p, Constant(0.25))
    assert reduced[S] == pytest.approx(full[S])
    assert reduced[SD] == pytest.approx(0.25 * full[SD])


def test_reduced_model_matches_full_model_without_distancing():
    p = ParameterSet(N=1000, q=0.2, r=0, ur=0)
    y = _state(S=900, E1=40, E2=10, I=50)
    full = derivative(3.0, y, p, Constant(0.3))
    reduced = reduced_derivative(3.0, y[:5], p)
    assert np.allclose(full[:5], reduced)
    assert np.all(full[6:] == 0)


@pytest.mark.parametrize("bad", ["N", "D", "k1", "k2"])
def test_non_positive_rates_raise(bad):
    """Duck-typed parameters bypass ParameterSet validation; the derivative still refuses them."""
    values = dict(N=100.0, D=5.0, R0=2.0, k1=0.25, k2=1.0, q=0.0, r=0.0, ur=0.0)
    values[bad] = 0.0
    params = SimpleNamespace(**values)
    with pytest.raises(InvalidParameter):
        derivative(0.0, _state(S=100), params, Constant(1.0))
    with pytest.raises(InvalidParameter):
        reduced_derivative(0.0, np.zeros(5), params)


def test_system_kernel_and_breakpoints():
    p = ParameterSet(N=1000)
    profile = StepWindow(10, 20, 0.5)
    system = EpidemicODESystem(p, profile)
    y = _state(S=990, I=10)
    assert np.allclose(system(12.0, y), derivative(12.0, y, p, profile))
    assert system.breakpoints() == (10.0, 20.0)

    reduced = EpidemicODESystem(p, profile, reduced=True)
    assert reduced.breakpoints() == ()
    assert reduced(0.0, y[:5]).shape == (5,)


def test_negative_state_not_clamped():
    p = ParameterSet(N=100, r=0, ur=0)
    y = _state(S=100, I=-1.0)
    dy = derivative(0.0, y, p, Constant(1.0))
    # negative I gives negative incidence and positive dS
    assert dy[S] > 0
    assert dy[I] > 0
