"""
libbinding/report.py
─────────────────────────────────────────────────────────────────────────────
Plain-text report generator for binding curve fits.
The layout is for people reading the file; nothing parses it back.
"""
import datetime
import math

import pandas as pd

from .solver import diagnose_residuals
from .units import format_concentration

# ─────────────────────────────────────────────────────────────────────────────
#  LAYOUT
# ─────────────────────────────────────────────────────────────────────────────
_W  = 72        # line width
_DV = "═" * _W  # heavy divider
_DH = "─" * _W  # light divider
_DT = "·" * _W  # dot divider

def _sec(title):
    return f"\n{_DV}\n  {title}\n{_DV}\n"

def _sub(title):
    return f"\n  ── {title} {'─' * max(0, _W - len(title) - 6)}\n"

def _fmt(value, digits=4):
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return "n/a"
    return f"{value:.{digits}g}"


# ─────────────────────────────────────────────────────────────────────────────
#  MODEL THEORY
# ─────────────────────────────────────────────────────────────────────────────
MODEL_THEORY = {
    "Hill": {
        "equation": "S = Smin + (Smax − Smin) · Lʰ / (Kdʰ + Lʰ)",
        "assumptions": [
            "Free ligand ≈ total ligand (receptor concentration << Kd)",
            "Cooperativity summarised by a single empirical coefficient h",
        ],
        "parameters": {
            "smin": "Signal with no ligand bound",
            "smax": "Signal at full saturation",
            "kd":   "Ligand concentration at half-maximal signal",
            "h":    "Hill coefficient: h > 1 positive, h < 1 negative cooperativity",
        },
    },
    "Hyperbolic": {
        "equation": "S = Smin + (Smax − Smin) · L / (Kd + L)",
        "assumptions": [
            "Single class of independent binding sites (Hill model with h = 1)",
            "Free ligand ≈ total ligand (receptor concentration << Kd)",
        ],
        "parameters": {
            "smin": "Signal with no ligand bound",
            "smax": "Signal at full saturation",
            "kd":   "Equilibrium dissociation constant (half-maximal signal)",
        },
    },
    "Quadratic": {
        "equation": ("S = Smin + (Smax − Smin) · ((Kd + R0 + L) − √((Kd + R0 + L)² − 4·R0·L)) / (2·R0)"),
        "assumptions": [
            "Single binding site, 1:1 stoichiometry",
            "Ligand depletion accounted for: R0 is the known total receptor concentration",
        ],
        "parameters": {
            "smin": "Signal with no ligand bound",
            "smax": "Signal at full saturation",
            "kd":   "Equilibrium dissociation constant",
        },
    },
}

PARAMETER_LABELS = {"smin": "Smin", "smax": "Smax", "kd": "Kd", "h": "h"}


def generate_fit_report(result, data, config, source=None):
    """Full report for one fit: data, parameters, statistics and residual checks."""
    theory    = MODEL_THEORY.get(result.model, {})
    unit      = config.concentration_unit
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d  %H:%M")
    diag      = diagnose_residuals(result.residuals)

    lines = []
    A = lines.append

    A(_DV)
    A("  BINDING CURVE FIT REPORT")
    A(_DV)
    A(f"  Generated  :  {timestamp}")
    if source:
        A(f"  Data file  :  {source}")
    A(_DT)

    # ── 1. DATA ─────────────────────────────────────────────────────────────
    A(_sec("1.  DATA"))
    A(f"  Data points           :  {result.n_points}")
    A(f"  Replicates per point  :  {data.n_replicates}")
    A(f"  Concentration column  :  {data.concentration_label}  ({unit})")
    A(f"  Trailing rows skipped :  {config.trim_trailing_rows}")
    A("")
    A(f"  {'Concentration':>14}  {'Mean':>12}  {'Std':>12}  {'Residual':>12}")
    A("  " + "─" * 56)
    for p, res in zip(data.points, result.residuals):
        A(f"  {_fmt(p.concentration):>14}  {_fmt(p.mean):>12}  {_fmt(p.std):>12}  {_fmt(res):>12}")

    # ── 2. MODEL ────────────────────────────────────────────────────────────
    A(_sec(f"2.  MODEL  ·  {result.model.upper()}"))
    A(f"  {theory.get('equation', '')}")
    if result.model == "Quadratic":
        A(f"  R0 (fixed)  =  {format_concentration(result.r0, unit)}")
    A(_sub("Assumptions"))
    for item in theory.get("assumptions", []):
        A(f"  • {item}")

    # ── 3. PARAMETERS ───────────────────────────────────────────────────────
    A(_sec("3.  FITTED PARAMETERS"))
    A(f"  {'Parameter':<10} {'Initial':>12} {'Value':>12} {'Std. error':>12}   Meaning")
    A("  " + "─" * 68)
    initial = result.initial.as_dict()
    errors  = result.errors()
    for name, value in result.parameters.as_dict().items():
        meaning = theory.get("parameters", {}).get(name, "")
        A(f"  {PARAMETER_LABELS[name]:<10} {_fmt(initial[name]):>12} {_fmt(value):>12} "
          f"{_fmt(errors[name]):>12}   {meaning}")
    kd, kd_err = result.parameters["kd"], errors["kd"]
    A("")
    A(f"  Kd = {_fmt(kd)} ± {_fmt(kd_err)} {unit}")

    # ── 4. FIT STATISTICS ───────────────────────────────────────────────────
    A(_sec("4.  FIT STATISTICS"))
    A(f"  Regression algorithm  :  Levenberg-Marquardt (damped least squares)")
    A(f"  Weighting             :  {'1/std² (replicate scatter)' if result.weighted else 'None (unweighted)'}")
    A(f"  Degrees of freedom    :  {result.dof}")
    A(f"  Sum of squared resid. :  {_fmt(result.ssr, 6)}")
    if result.weighted:
        A(f"  Weighted chi-square   :  {_fmt(result.chi_square, 6)}")
    A(f"  AIC                   :  {_fmt(result.aic, 6)}")
    A(f"  R²                    :  {_fmt(result.r_squared, 6)}")
    A(f"  Function evaluations  :  {result.nfev}")

    # ── 5. RESIDUALS ────────────────────────────────────────────────────────
    A(_sec("5.  RESIDUAL DIAGNOSTICS"))
    A(f"  Shapiro-Wilk p        :  {diag['shapiro_p']:.3f}   "
      f"({'consistent with normal' if diag['shapiro_p'] > 0.05 else 'NOT normal'})")
    A(f"  Sign runs             :  {diag['runs']}   (Z = {diag['runs_z']:.2f}, p = {diag['runs_p']:.3f})")
    if diag['systematic']:
        A("")
        A("  Residuals cluster by sign: the model misses the shape of the curve.")
        A("  Try another model, or check that the titration covers both plateaus.")
    A("")
    A(_DV)
    return "\n".join(lines)


def results_table(results, labels=None) -> pd.DataFrame:
    """One row per fit: parameters and standard errors side by side."""
    rows = []
    for i, result in enumerate(results):
        row = {"dataset": labels[i] if labels else i, "model": result.model}
        for name, value in result.parameters.as_dict().items():
            row[PARAMETER_LABELS[name]] = value
            row[f"{PARAMETER_LABELS[name]} SE"] = result.errors()[name]
        row["dof"] = result.dof
        row["SSR"] = result.ssr
        rows.append(row)
    return pd.DataFrame(rows)
