"""
Equilibrium binding experiment simulation.

Predicts what a titration would look like for a hypothetical Kd before the
experiment is run, and builds synthetic replicate tables in the same layout
as real data files.
"""
import numpy as np
import pandas as pd

from .equations import evaluate, quadratic

def titration_series(l_max, dilution=2.0, points=15):
    """Ligand concentrations of a serial dilution, highest first."""
    if points < 1:
        raise ValueError("A titration needs at least one point.")
    if dilution <= 1:
        raise ValueError("Dilution factor must be > 1.")
    return l_max / np.power(dilution, np.arange(points))

def fractional_saturation(l_tot, kd, r_tot):
    """Fraction of receptor bound, from the quadratic model with Smin=0 and Smax=1."""
    return quadratic(np.asarray(l_tot, dtype=float), 0.0, 1.0, kd, r_tot)

def simulate_experiment(kd=10.0, l_max=1000.0, dilution=2.0, points=15, r_tot=1.0):
    """
    Predicted fractional saturation at each titration point.

    The two design ratios tell whether the experiment can measure Kd:
    L_max/Kd should be well above 1 to reach saturation, and Kd/R_tot
    well above 1 to stay out of the titration regime.
    """
    conc = titration_series(l_max, dilution, points)
    table = pd.DataFrame({
        "concentration": conc,
        "fractional_saturation": fractional_saturation(conc, kd, r_tot),
    })
    ratios = {"lmax_over_kd": l_max / kd, "kd_over_rtot": kd / r_tot}
    return table, ratios

def make_example_table(model, params, concentrations, n_replicates=3, cv=0.03,
                       r0=None, control_rows=2, seed=None):
    """
    Synthetic replicate table in the source file layout: one concentration
    column, `n_replicates` signal columns and `control_rows` zero-concentration
    rows at the end (signal = Smin).
    """
    rng = np.random.default_rng(seed)
    conc = np.asarray(concentrations, dtype=float)
    signal = evaluate(model, conc, params, r0=r0)
    smin = params[0]
    scale = max(abs(params[1] - params[0]), 1e-12)

    columns = {"concentration": np.concatenate([conc, np.zeros(control_rows)])}
    for k in range(n_replicates):
        # Noise proportional to the signal span, so zero-signal points are still noisy
        noisy = signal + rng.normal(0.0, cv * scale, size=signal.shape)
        controls = smin + rng.normal(0.0, cv * scale, size=control_rows)
        columns[f"replicate_{k + 1}"] = np.concatenate([noisy, controls])
    return pd.DataFrame(columns)
