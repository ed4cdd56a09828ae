# src/epi_distancing/errors.py
"""Exceptions raised by the simulation engine.

Validation errors subclass ValueError and run-time failures subclass
RuntimeError, so callers that only catch the builtin types keep working.
"""


class EpiDistancingError(Exception):
    """Base class for every error raised by the package."""


class InvalidParameter(EpiDistancingError, ValueError):
    """A rate, factor or run setting is outside its allowed range."""


class TimeGridError(EpiDistancingError, ValueError):
    """Time grid is not strictly increasing or has fewer than 2 points."""


class IntegrationError(EpiDistancingError, RuntimeError):
    """A single integration failed or produced non-finite values."""


class EnsembleFailure(EpiDistancingError, RuntimeError):
    """Too many replicates of an ensemble failed.

    The partially filled ensemble is kept on ``.ensemble`` so the caller
    can inspect which replicates failed and why.
    """

    def __init__(self, message, ensemble=None):
        super().__init__(message)
        self.ensemble = ensemble


class AggregationError(EpiDistancingError, RuntimeError):
    """A statistic could not be evaluated, or no replicate survived."""
