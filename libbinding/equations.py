import numpy as np

from .errors import ConfigurationError

def hill(c, smin, smax, kd, h):
    """Cooperative binding (Hill equation)."""
    c_h = np.power(np.asarray(c, dtype=float), h)
    k_h = np.power(kd, h)
    return smin + (smax - smin) * c_h / (k_h + c_h)

def hyperbolic(c, smin, smax, kd):
    c = np.asarray(c, dtype=float)
    return smin + (smax - smin) * c / (kd + c)

def quadratic(c, smin, smax, kd, r0):
    """
    Ligand depletion model: no assumption that free ligand equals total ligand.
    S = Smin + (Smax - Smin) * ((Kd + R0 + c) - sqrt((Kd + R0 + c)^2 - 4*R0*c)) / (2*R0)
    """
    if r0 is None or not r0 > 0:
        raise ConfigurationError(f"Quadratic model needs a receptor concentration R0 > 0 (got {r0}).")
    c = np.asarray(c, dtype=float)
    total = kd + r0 + c
    disc = np.square(total) - 4 * r0 * c
    if np.any(disc < 0):
        raise ConfigurationError(
            f"Negative discriminant in quadratic model (Kd={kd:g}, R0={r0:g}); "
            "Kd and R0 do not match the concentration range."
        )
    bound = (total - np.sqrt(disc)) / (2 * r0)
    return smin + (smax - smin) * bound

MODEL_REGISTRY = {
    "Hill": hill,
    "Hyperbolic": hyperbolic,
    "Quadratic": quadratic,
}

# Fitted parameters, in the order used by ModelParameters.values
PARAMETER_NAMES = {
    "Hill": ("smin", "smax", "kd", "h"),
    "Hyperbolic": ("smin", "smax", "kd"),
    "Quadratic": ("smin", "smax", "kd"),
}

def evaluate(model, c, params, r0=None):
    """Predicted signal for `model` at concentrations `c` given ordered `params`."""
    if model not in MODEL_REGISTRY:
        raise ConfigurationError(f"Unknown binding model '{model}'. Choose from {list(MODEL_REGISTRY)}.")
    names = PARAMETER_NAMES[model]
    if len(params) != len(names):
        raise ConfigurationError(f"{model} takes {len(names)} parameters {names}, got {len(params)}.")
    kwargs = dict(zip(names, params))
    if model == "Quadratic":
        kwargs["r0"] = r0
    return MODEL_REGISTRY[model](np.asarray(c, dtype=float), **kwargs)
