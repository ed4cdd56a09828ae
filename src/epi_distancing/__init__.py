"""Two-group SEIQR epidemic model with social distancing and R0 ensembles."""
from .version_info import VERSION as __version__

from .errors import (
    AggregationError,
    EnsembleFailure,
    EpiDistancingError,
    IntegrationError,
    InvalidParameter,
    TimeGridError,
)
from .simulate.parameters import ParameterSet, initial_state, time_grid
from .simulate.contact_profiles import Constant, LinearRamp, StepWindow, make_profile
from .simulate.ode_system import EpidemicODESystem, derivative, reduced_derivative
from .simulate.integrator import IntegratorSettings, Trajectory, integrate
from .simulate.ensemble import Ensemble, Replicate, run_ensemble
from .aggregate.quantiles import (
    AggregatedSeries,
    SummaryInfo,
    SummaryTable,
    aggregate,
    ever_infected,
    summarize,
    symptomatic,
    total_infectious,
)
from .aggregate.imports import add_imports
from .pipeline import SimulationConfig, SimulationResult, simulate
