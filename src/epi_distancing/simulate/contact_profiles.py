# src/epi_distancing/simulate/contact_profiles.py
"""
Contact-reduction profiles f(t) applied to the distancing group.

A profile is a stateless callable: ``profile(t)`` (or ``profile.sample(t)``)
returns the factor in [0, 1] by which the distancing group's contacts are
scaled, 1 meaning no reduction. Profiles may be sampled at any time and in
any order, as adaptive integrators probe intermediate times.

Each profile also lists its ``breakpoints()``: times where the factor jumps
or changes slope. The integrator restarts at those times so a short window
cannot be stepped over.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
import math

from ..errors import InvalidParameter


def _check_factor(name, value):
    value = float(value)
    if not math.isfinite(value) or value < 0.0 or value > 1.0:
        raise InvalidParameter(f"{name} must lie in [0, 1], got {value}")
    return value


def _check_time(name, value):
    value = float(value)
    if not math.isfinite(value):
        raise InvalidParameter(f"{name} must be finite, got {value}")
    return value


class ContactProfile:
    """Base class, subclasses implement ``sample``."""

    def sample(self, t: float) -> float:
        raise NotImplementedError

    def breakpoints(self) -> Tuple[float, ...]:
        return ()

    def __call__(self, t: float) -> float:
        return self.sample(t)


@dataclass(frozen=True)
class Constant(ContactProfile):
    value: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "value", _check_factor("value", self.value))

    def sample(self, t):
        return self.value


@dataclass(frozen=True)
class StepWindow(ContactProfile):
    """``value`` strictly inside (start, end), 1 elsewhere."""
    start: float
    end: float
    value: float

    def __post_init__(self):
        object.__setattr__(self, "start", _check_time("start", self.start))
        object.__setattr__(self, "end", _check_time("end", self.end))
        object.__setattr__(self, "value", _check_factor("value", self.value))
        if self.end < self.start:
            raise InvalidParameter("StepWindow end must be >= start")

    def sample(self, t):
        if self.start < t < self.end:
            return self.value
        return 1.0

    def breakpoints(self):
        return (self.start, self.end)


@dataclass(frozen=True)
class LinearRamp(ContactProfile):
    """Linear change from ``from_value`` to ``to_value`` over [ramp_start, ramp_end].

    After the ramp the factor holds ``to_value``. If ``release`` is given the
    hold ends there and the factor steps to ``release_value`` (1 restores
    normal contacts).
    """
    ramp_start: float
    ramp_end: float
    from_value: float
    to_value: float
    release: Optional[float] = None
    release_value: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "ramp_start", _check_time("ramp_start", self.ramp_start))
        object.__setattr__(self, "ramp_end", _check_time("ramp_end", self.ramp_end))
        object.__setattr__(self, "from_value", _check_factor("from_value", self.from_value))
        object.__setattr__(self, "to_value", _check_factor("to_value", self.to_value))
        object.__setattr__(self, "release_value", _check_factor("release_value", self.release_value))
        if self.ramp_end < self.ramp_start:
            raise InvalidParameter("ramp_end must be >= ramp_start")
        if self.release is not None:
            release = _check_time("release", self.release)
            if release < self.ramp_end:
                raise InvalidParameter("release must be >= ramp_end")
            object.__setattr__(self, "release", release)

    def sample(self, t):
        if t < self.ramp_start:
            return self.from_value
        if self.release is not None and t >= self.release:
            return self.release_value
        if t >= self.ramp_end:
            return self.to_value
        frac = (t - self.ramp_start) / (self.ramp_end - self.ramp_start)
        return self.from_value + frac * (self.to_value - self.from_value)

    def breakpoints(self):
        points = (self.ramp_start, self.ramp_end)
        if self.release is not None:
            points += (self.release,)
        return points


_KINDS = {
    "constant": Constant,
    "step": StepWindow,
    "ramp": LinearRamp,
}


def make_profile(definition: Mapping) -> ContactProfile:
    """Build a profile from a mapping like ``{"kind": "step", "start": 15, ...}``.

    Already-built profiles are returned unchanged.
    """
    if isinstance(definition, ContactProfile):
        return definition
    if not isinstance(definition, Mapping):
        raise InvalidParameter(f"profile definition must be a mapping, got {type(definition).__name__}")

    options = dict(definition)
    kind = str(options.pop("kind", "constant")).lower()
    if kind not in _KINDS:
        raise InvalidParameter(f"Unknown profile kind {kind!r}; expected one of {sorted(_KINDS)}")
    try:
        return _KINDS[kind](**options)
    except TypeError as exc:
        raise InvalidParameter(f"Bad options for {kind!r} profile: {exc}") from exc
