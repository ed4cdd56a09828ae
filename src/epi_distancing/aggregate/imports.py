# src/epi_distancing/aggregate/imports.py
# Post hoc overlay of imported cases on an aggregated series.
# The model's state equations never see these counts.
from dataclasses import replace
import logging

import numpy as np
from numpy.random import default_rng

from ..errors import InvalidParameter
from .quantiles import AggregatedSeries

logger = logging.getLogger(__name__)


def draw_imports(n, rate, seed=None):
    """Independent Poisson(rate) counts, one per grid point."""
    if not np.isfinite(rate) or rate < 0:
        raise InvalidParameter(f"import rate must be >= 0, got {rate!r}")
    rng = default_rng(seed)
    return rng.poisson(rate, size=n)


def add_imports(series: AggregatedSeries, rate: float, seed=None) -> AggregatedSeries:
    """Return a copy of ``series`` with the same import count added to every band.

    ``rate`` is the Poisson mean per grid point, whatever the grid spacing;
    on a daily grid that is a daily import rate. Adding one draw to lower, median and upper alike keeps the bands ordered.
    """
    counts = draw_imports(len(series), rate, seed).astype(float)
    logger.debug("Overlaying %d imported cases (rate %.3f per grid point)", int(counts.sum()), rate)
    return replace(
        series,
        lower=series.lower + counts,
        median=series.median + counts,
        upper=series.upper + counts,
    )
