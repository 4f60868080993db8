# libbinding — Equilibrium Binding Curve Fitting Library
# Public API Exports

from .errors import (
    BindingError,
    DataShapeError,
    FitConvergenceError,
    InsufficientDataError,
    ConfigurationError,
)
from .models import AggregatedDataset, AggregatedPoint, ModelParameters, FitConfig, FitResult
from .equations import MODEL_REGISTRY, PARAMETER_NAMES, evaluate, hill, hyperbolic, quadratic
from .aggregate import aggregate
from .solver import BindingSolver, estimate_initial_guess, fit_curve, fit_many, diagnose_residuals
from .loaders import (TableLoader, LocalFileLoader, RemoteURLLoader, InMemoryTableLoader, loader_for,
                      read_table_bytes, read_table_text)
from .units import CONC_TO_MOLAR, convert_concentration
from .simulation import titration_series, fractional_saturation, simulate_experiment, make_example_table
from .report import generate_fit_report, results_table
