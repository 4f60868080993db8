import logging
from concurrent.futures import ProcessPoolExecutor
from itertools import repeat

import numpy as np
from lmfit import Model, Parameters
from scipy import stats

from .equations import MODEL_REGISTRY, PARAMETER_NAMES
from .errors import (BindingError, ConfigurationError, DataShapeError,
                     FitConvergenceError, InsufficientDataError)
from .models import AggregatedDataset, FitConfig, FitResult, ModelParameters

logger = logging.getLogger(__name__)

# Lower bound on Kd during the fit; keeps the quadratic discriminant positive
KD_FLOOR = 1e-12

def estimate_initial_guess(data: AggregatedDataset, model: str) -> ModelParameters:
    """
    Starting values for the optimiser.
    Smin/Smax are the extreme means; Kd is the concentration of the first
    point whose mean is closest to halfway between them; h starts at 1.
    """
    if model not in PARAMETER_NAMES:
        raise ConfigurationError(f"Unknown binding model '{model}'.")
    c, mean, _ = data.to_arrays()
    if len(c) == 0:
        raise DataShapeError("Cannot estimate initial parameters from an empty dataset.")
    smin = float(np.min(mean))
    smax = float(np.max(mean))
    half_signal = smin + (smax - smin) / 2
    # argmin returns the first occurrence on ties
    idx = int(np.argmin(np.abs(half_signal - mean)))
    values = [smin, smax, float(c[idx])]
    if model == "Hill":
        values.append(1.0)
    guess = ModelParameters(model=model, values=values)
    logger.debug("Initial guess for %s: %s", model, guess.as_dict())
    return guess

def fit_curve(model, concentration, signal, initial: ModelParameters, sigma=None, r0=None,
              max_nfev=2000, tolerance=1.5e-8) -> FitResult:
    """
    Levenberg-Marquardt fit of one binding model.

    With `sigma` the minimised quantity is sum(((y - f) / sigma)**2), i.e.
    lmfit weights of 1/sigma. Standard errors come from the covariance
    scaled by chi2 / (n - p).
    """
    if model not in MODEL_REGISTRY:
        raise ConfigurationError(f"Unknown binding model '{model}'.")
    if initial.model != model:
        raise ConfigurationError(f"Initial parameters are for {initial.model}, not {model}.")
    x = np.asarray(concentration, dtype=float)
    y = np.asarray(signal, dtype=float)
    if x.shape != y.shape:
        raise DataShapeError(f"Concentration and signal lengths differ ({x.size} vs {y.size}).")

    n_params = len(PARAMETER_NAMES[model])
    if x.size <= n_params:
        raise InsufficientDataError(
            f"{model} has {n_params} parameters but only {x.size} data points; "
            f"degrees of freedom would be {x.size - n_params}."
        )

    weights = None
    if sigma is not None:
        sigma = np.asarray(sigma, dtype=float)
        if sigma.shape != y.shape or not np.all(np.isfinite(sigma)):
            raise DataShapeError("Weighted fit needs a finite standard deviation for every point.")
        if np.any(sigma <= 0):
            bad = x[sigma <= 0].tolist()
            raise DataShapeError(f"Zero standard deviation at concentrations {bad}; cannot weight these points.")
        weights = 1.0 / sigma

    if model == "Quadratic" and (r0 is None or not r0 > 0):
        raise ConfigurationError(f"The Quadratic model requires R0 > 0 (got {r0}).")

    gmodel = Model(MODEL_REGISTRY[model], independent_vars=['c'])
    params = Parameters()
    for name, value in initial.as_dict().items():
        if name == 'kd':
            params.add('kd', value=max(value, KD_FLOOR), min=KD_FLOOR)
        else:
            params.add(name, value=value)
    if model == "Quadratic":
        params.add('r0', value=r0, vary=False)

    fit_kwargs = {'c': x}
    if weights is not None:
        fit_kwargs['weights'] = weights

    try:
        result = gmodel.fit(y, params, method='leastsq', max_nfev=max_nfev,
                            fit_kws={'ftol': tolerance, 'xtol': tolerance}, **fit_kwargs)
    except ValueError as exc:
        # lmfit refuses NaN model output (e.g. overflow in c**h far from the data)
        raise FitConvergenceError(f"{model} fit failed: {exc}") from exc

    if not result.success or getattr(result, 'aborted', False):
        raise FitConvergenceError(f"{model} fit did not converge: {result.message}", nfev=result.nfev)

    names = PARAMETER_NAMES[model]
    if not result.errorbars:
        logger.warning("%s fit: covariance matrix could not be estimated, standard errors are undefined", model)
    stderr = [float(result.params[n].stderr) if result.params[n].stderr is not None else float("nan")
              for n in names]

    residuals = result.best_fit - y
    fitted = ModelParameters(model=model, values=[float(result.params[n].value) for n in names])
    logger.info("%s fit converged after %d evaluations: %s", model, result.nfev, fitted.as_dict())

    return FitResult(
        model=model,
        parameters=fitted,
        initial=initial,
        stderr=stderr,
        residuals=residuals.tolist(),
        dof=int(result.nfree),
        ssr=float(np.sum(np.square(residuals))),
        chi_square=float(result.chisqr),
        weighted=weights is not None,
        r0=r0 if model == "Quadratic" else None,
        nfev=int(result.nfev),
        aic=float(result.aic),
        r_squared=float(getattr(result, 'rsquared', float("nan"))),
    )

# Sign-run test threshold on the lower-tail p-value
RUNS_ALPHA = 0.05
# Models closer than this in AIC are not told apart
AIC_MARGIN = 2.0

def diagnose_residuals(residuals):
    """
    Checks that residuals along the titration look like noise.

    Residuals are taken in table order, i.e. sorted by concentration. A fit
    that misses a plateau or the transition leaves long same-sign stretches,
    which the Wald-Wolfowitz runs test picks up. Shapiro-Wilk is reported
    alongside as a check on the noise model.

    Returns a dict with `shapiro_p`, `runs`, `runs_z`, `runs_p` and
    `systematic` (runs_p below RUNS_ALPHA).
    """
    residuals = np.asarray(residuals, dtype=float)
    shapiro_p = 1.0
    if len(residuals) >= 3 and np.ptp(residuals) > 0:
        shapiro_p = float(stats.shapiro(residuals).pvalue)

    signs = np.sign(residuals)
    signs = signs[signs != 0]
    runs = int(1 + np.sum(signs[1:] != signs[:-1])) if len(signs) else 0
    n_pos, n_neg = int(np.sum(signs > 0)), int(np.sum(signs < 0))
    z_score, p_value = 0.0, 1.0
    if n_pos and n_neg:
        n = n_pos + n_neg
        expected = 2.0 * n_pos * n_neg / n + 1
        var = (expected - 1) * (expected - 2) / (n - 1)
        if var > 0:
            z_score = float((runs - expected) / np.sqrt(var))
            # Lower tail: too few runs means same-sign stretches
            p_value = float(stats.norm.cdf(z_score))

    return {
        "shapiro_p": shapiro_p,
        "runs": runs,
        "runs_z": z_score,
        "runs_p": p_value,
        "systematic": p_value < RUNS_ALPHA,
    }

class BindingSolver:
    """Runs the fitting pipeline for one aggregated dataset."""

    def __init__(self, data: AggregatedDataset, config: FitConfig):
        self.data = data
        self.config = config
        self.c, self.mean, self.std = data.to_arrays()

    def estimate_initial_guess(self, model=None) -> ModelParameters:
        return estimate_initial_guess(self.data, model or self.config.model)

    def _use_weights(self, weighted):
        if weighted is None:
            weighted = self.config.weighted
        if weighted is None:
            return self.data.weighted
        if weighted and not self.data.weighted:
            raise DataShapeError(
                f"Weighted fit requested but the dataset has {self.data.n_replicates} replicate column; "
                "standard deviations need at least two."
            )
        return weighted

    def fit_model(self, model=None, initial=None, weighted=None) -> FitResult:
        model = model or self.config.model
        if initial is None:
            initial = self.estimate_initial_guess(model)
        sigma = self.std if self._use_weights(weighted) else None
        return fit_curve(model, self.c, self.mean, initial, sigma=sigma, r0=self.config.r0,
                         max_nfev=self.config.max_nfev, tolerance=self.config.tolerance)

    def run_model_competition(self, weighted=None):
        """Fit every applicable model and rank them by AIC (best first)."""
        models = ["Hyperbolic", "Hill"]
        if self.config.r0 is not None:
            models.append("Quadratic")

        results = []
        for m in models:
            try:
                results.append(self.fit_model(m, weighted=weighted))
            except BindingError as exc:
                logger.warning("Leaving %s out of the comparison: %s", m, exc)
        results.sort(key=lambda r: r.aic)
        return results

    @staticmethod
    def check_ambiguity(sorted_results):
        """Warning text when the two best models are within AIC_MARGIN, else None."""
        if len(sorted_results) < 2:
            return None
        best, runner_up = sorted_results[0], sorted_results[1]
        delta_aic = abs(runner_up.aic - best.aic)
        if delta_aic >= AIC_MARGIN:
            return None
        pair = {best.model, runner_up.model}
        if pair == {"Hill", "Hyperbolic"}:
            detail = "the data do not resolve cooperativity; report the hyperbolic Kd"
        elif pair == {"Quadratic", "Hyperbolic"}:
            detail = "ligand depletion is negligible at this receptor concentration"
        else:
            detail = "both describe the titration equally well"
        return f"{best.model} and {runner_up.model} are within ΔAIC = {delta_aic:.2f}: {detail}."

    def diagnose_residuals(self, result: FitResult):
        return diagnose_residuals(result.residuals)

def _fit_dataset(data, config):
    return BindingSolver(data, config).fit_model()

def fit_many(datasets, config: FitConfig, max_workers=None):
    """Fit independent datasets with the same configuration; results keep the input order."""
    datasets = list(datasets)
    if not max_workers or max_workers <= 1 or len(datasets) < 2:
        return [_fit_dataset(d, config) for d in datasets]
    with ProcessPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(_fit_dataset, datasets, repeat(config)))
