import threading

import numpy as np
import pytest

from epi_distancing.errors import EnsembleFailure, InvalidParameter, TimeGridError
from epi_distancing.simulate.contact_profiles import Constant, StepWindow
from epi_distancing.simulate.ensemble import run_ensemble, sample_R0
from epi_distancing.simulate.integrator import IntegratorSettings
from epi_distancing.simulate.parameters import ParameterSet, initial_state, time_grid


def _inputs(N=10_000, i0=10, end=120, **overrides):
    params = ParameterSet(N=N, **overrides)
    y0 = initial_state(params.N, i0, params.distancing_fraction)
    return params, y0, time_grid(0, end, 1)


def test_sampling_is_reproducible_and_index_stable():
    """Replicate i gets the same draw whatever n_reps is."""
    a, seed_a = sample_R0(2.5, 0.3, 10, seed=7)
    b, seed_b = sample_R0(2.5, 0.3, 10, seed=7)
    c, _ = sample_R0(2.5, 0.3, 20, seed=7)
    assert np.array_equal(a, b)
    assert seed_a == seed_b == 7
    assert np.array_equal(a, c[:10])


def test_zero_sd_collapses_draws():
    draws, _ = sample_R0(2.5, 0.0, 5, seed=1)
    assert np.all(draws == 2.5)


def test_run_shapes_and_order():
    params, y0, times = _inputs()
    ens = run_ensemble(params, Constant(1.0), y0, times, n_reps=4, r0_sample_sd=0.2, seed=3, parallel=False)

    assert len(ens) == 4
    assert [rep.index for rep in ens] == [0, 1, 2, 3]
    assert ens.n_failed == 0
    assert ens.n_requested == 4
    assert not ens.cancelled
    for rep in ens:
        assert rep.trajectory.states.shape == (times.size, 12)
        assert np.array_equal(rep.trajectory.times, times)
    # sampled R0 values match the documented seeding scheme
    expected, _ = sample_R0(params.R0, 0.2, 4, seed=3)
    assert np.allclose(ens.sampled_R0, expected)


def test_reproducible_across_calls():
    params, y0, times = _inputs()
    a = run_ensemble(params, StepWindow(20, 60, 0.4), y0, times, n_reps=3, r0_sample_sd=0.3, seed=11, parallel=False)
    b = run_ensemble(params, StepWindow(20, 60, 0.4), y0, times, n_reps=3, r0_sample_sd=0.3, seed=11, parallel=False)
    for ra, rb in zip(a, b):
        assert ra.R0 == rb.R0
        assert np.array_equal(ra.trajectory.states, rb.trajectory.states)


def test_pool_matches_sequential():
    params, y0, times = _inputs(end=60)
    seq = run_ensemble(params, Constant(1.0), y0, times, n_reps=4, r0_sample_sd=0.2, seed=5, parallel=False)
    par = run_ensemble(params, Constant(1.0), y0, times, n_reps=4, r0_sample_sd=0.2, seed=5,
                       parallel=True, num_workers=2)
    assert [r.index for r in par] == [0, 1, 2, 3]
    for rs, rp in zip(seq, par):
        assert rs.R0 == rp.R0
        assert np.allclose(rs.trajectory.states, rp.trajectory.states, rtol=1e-12, atol=0)


def test_zero_sd_gives_identical_replicates():
    params, y0, times = _inputs()
    ens = run_ensemble(params, Constant(1.0), y0, times, n_reps=3, r0_sample_sd=0.0, seed=0, parallel=False)
    first = ens.replicates[0].trajectory.states
    for rep in ens:
        assert rep.R0 == params.R0
        assert np.array_equal(rep.trajectory.states, first)


def test_non_positive_draws_are_recorded_as_failures():
    """
    With a mean R0 of 0.5 and sd 1, roughly a third of draws are <= 0.
    Those replicates fail on their own without stopping the run.
    """
    params, y0, times = _inputs(R0=0.5)
    ens = run_ensemble(params, Constant(1.0), y0, times, n_reps=40, r0_sample_sd=1.0, seed=2,
                       max_failure_fraction=1.0, parallel=False)

    assert len(ens) == 40
    assert ens.n_failed == int(np.sum(ens.sampled_R0 <= 0))
    assert ens.n_failed > 0
    for rep in ens.failed:
        assert rep.trajectory is None
        assert "R0" in rep.error
    assert all(rep.R0 > 0 for rep in ens.survivors)
    assert ens.failed_indices == [rep.index for rep in ens if rep.R0 <= 0]


def test_too_many_failures_raise():
    params, y0, times = _inputs()
    with pytest.raises(EnsembleFailure) as info:
        run_ensemble(params, Constant(1.0), y0, times, n_reps=3, r0_sample_sd=0.1, seed=1,
                     settings=IntegratorSettings(max_evaluations=5), parallel=False)
    ens = info.value.ensemble
    assert ens.n_failed == 3
    assert ens.failed_indices == [0, 1, 2]
    # failed replicates keep their sampled R0
    assert np.all(np.isfinite(ens.sampled_R0))


@pytest.mark.parametrize("kwargs", [
    {"n_reps": 0},
    {"n_reps": 2.5},
    {"r0_sample_sd": -0.1},
    {"max_failure_fraction": 1.5},
])
def test_invalid_run_settings(kwargs):
    params, y0, times = _inputs()
    args = dict(n_reps=2, r0_sample_sd=0.1, seed=1, parallel=False)
    args.update(kwargs)
    with pytest.raises(InvalidParameter):
        run_ensemble(params, Constant(1.0), y0, times, **args)


def _bad_state(kind):
    y0 = initial_state(10_000, 10, ParameterSet(N=10_000).distancing_fraction)
    if kind == "short":
        return np.full(5, 100.0)
    if kind == "negative":
        y0[0] = -500.0
    elif kind == "nan":
        y0[3] = np.nan
    return y0


@pytest.mark.parametrize("kind", ["short", "negative", "nan"])
def test_bad_initial_state_fails_before_running(kind):
    """A malformed state is a configuration error, not a replicate failure."""
    params, _, times = _inputs()
    with pytest.raises(InvalidParameter):
        run_ensemble(params, Constant(1.0), _bad_state(kind), times, n_reps=3, r0_sample_sd=0.1,
                     seed=1, parallel=False)


def test_unknown_solver_fails_before_running():
    params, y0, times = _inputs()
    with pytest.raises(InvalidParameter, match="solver method"):
        run_ensemble(params, Constant(1.0), y0, times, n_reps=3, r0_sample_sd=0.1, seed=1,
                     settings=IntegratorSettings(method="nope"), parallel=False)


def test_bad_grid_fails_before_running():
    params, y0, _ = _inputs()
    with pytest.raises(TimeGridError):
        run_ensemble(params, Constant(1.0), y0, [0.0, 5.0, 5.0], n_reps=2, r0_sample_sd=0.1, parallel=False)


def test_cancel_before_start():
    params, y0, times = _inputs()
    cancel = threading.Event()
    cancel.set()
    ens = run_ensemble(params, Constant(1.0), y0, times, n_reps=5, r0_sample_sd=0.1, seed=1,
                       parallel=False, cancel=cancel)
    assert ens.cancelled
    assert len(ens) == 0


class _CancelAfter:
    """Reports cancellation once it has been asked ``n`` times."""

    def __init__(self, n):
        self.n = n
        self.asked = 0

    def is_set(self):
        self.asked += 1
        return self.asked > self.n


def test_cancel_midway_keeps_dispatched_replicates():
    params, y0, times = _inputs()
    ens = run_ensemble(params, Constant(1.0), y0, times, n_reps=6, r0_sample_sd=0.1, seed=1,
                       parallel=False, cancel=_CancelAfter(2))
    assert ens.cancelled
    assert [rep.index for rep in ens] == [0, 1]
    assert ens.n_requested == 6
