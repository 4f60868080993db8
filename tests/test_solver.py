import os
import sys
import unittest
from types import SimpleNamespace

import numpy as np
from pydantic import ValidationError

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from libbinding.aggregate import aggregate
from libbinding.equations import evaluate
from libbinding.errors import (ConfigurationError, DataShapeError, FitConvergenceError,
                               InsufficientDataError)
from libbinding.models import AggregatedDataset, AggregatedPoint, FitConfig, ModelParameters
from libbinding.simulation import make_example_table, titration_series
from libbinding.solver import BindingSolver, diagnose_residuals, estimate_initial_guess, fit_curve, fit_many

def single_replicate(conc, signal):
    points = [AggregatedPoint(concentration=c, mean=m) for c, m in zip(conc, signal)]
    return AggregatedDataset(points=points, n_replicates=1)

def noiseless(model, params, conc, r0=None):
    return single_replicate(conc, evaluate(model, conc, params, r0=r0))

class TestInitialGuess(unittest.TestCase):

    def test_half_signal_row(self):
        data = single_replicate([100, 50, 25, 12.5, 6.25], [1, 2, 3, 4, 5])
        guess = estimate_initial_guess(data, "Hyperbolic")
        self.assertEqual(guess.values, (1.0, 5.0, 25.0))

    def test_hill_appends_unit_coefficient(self):
        data = single_replicate([100, 50, 25, 12.5, 6.25], [1, 2, 3, 4, 5])
        guess = estimate_initial_guess(data, "Hill")
        self.assertEqual(guess.as_dict(), {"smin": 1.0, "smax": 5.0, "kd": 25.0, "h": 1.0})

    def test_ties_resolve_to_first_row(self):
        # Half signal is 2; rows 2 and 3 are both 1 away
        data = single_replicate([40, 30, 20, 10], [0, 1, 3, 4])
        self.assertEqual(estimate_initial_guess(data, "Hyperbolic")["kd"], 30.0)
        flat = single_replicate([40, 30, 20, 10], [7, 7, 7, 7])
        self.assertEqual(estimate_initial_guess(flat, "Quadratic")["kd"], 40.0)

class TestFitCurve(unittest.TestCase):

    def test_hyperbolic_end_to_end(self):
        """Noiseless hyperbolic titration (Smin=0, Smax=100, Kd=10)."""
        conc = [0.1, 1, 10, 100, 1000]
        data = noiseless("Hyperbolic", [0.0, 100.0, 10.0], conc)
        result = BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model()

        self.assertAlmostEqual(result.parameters["kd"], 10.0, places=3)
        self.assertAlmostEqual(result.parameters["smax"], 100.0, places=3)
        self.assertFalse(result.weighted)
        self.assertEqual(result.dof, 2)
        self.assertEqual(len(result.residuals), 5)
        self.assertEqual(len(result.stderr), 3)

    def test_result_is_immutable(self):
        data = noiseless("Hyperbolic", [0.0, 100.0, 10.0], [0.1, 1, 10, 100, 1000])
        result = BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model()
        for field in (result.residuals, result.stderr, result.parameters.values):
            self.assertIsInstance(field, tuple)
        with self.assertRaises(AttributeError):
            result.residuals.append(0.0)
        with self.assertRaises(TypeError):
            result.parameters.values[2] = 1.0
        with self.assertRaises(ValidationError):
            result.dof = 0
        self.assertAlmostEqual(result.parameters["kd"], 10.0, places=3)

    def test_hyperbolic_rounded_means(self):
        data = single_replicate([0.1, 1, 10, 100, 1000], [0.99, 9.09, 50.0, 90.9, 99.0])
        result = BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model()
        self.assertAlmostEqual(result.parameters["kd"], 10.0, delta=0.2)

    def test_quadratic_round_trip(self):
        conc = titration_series(1000.0, 2.0, 15)
        true = [10.0, 110.0, 8.0]
        data = noiseless("Quadratic", true, conc, r0=5.0)
        result = BindingSolver(data, FitConfig(model="Quadratic", r0=5.0)).fit_model()

        for fitted, expected in zip(result.parameters.values, true):
            self.assertAlmostEqual(fitted, expected, places=4)
        self.assertEqual(result.r0, 5.0)
        self.assertLess(result.ssr, 1e-8)

    def test_hill_recovers_cooperativity(self):
        conc = titration_series(1000.0, 2.0, 15)
        data = noiseless("Hill", [0.0, 100.0, 10.0, 2.0], conc)
        result = BindingSolver(data, FitConfig(model="Hill")).fit_model()
        self.assertAlmostEqual(result.parameters["kd"], 10.0, places=3)
        self.assertAlmostEqual(result.parameters["h"], 2.0, places=3)
        self.assertEqual(result.initial["h"], 1.0)

    def test_residuals_are_predicted_minus_observed(self):
        data = single_replicate([0.1, 1, 10, 100, 1000], [0.99, 9.09, 50.0, 90.9, 99.0])
        result = BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model()
        c, mean, _ = data.to_arrays()
        np.testing.assert_allclose(result.residuals, result.predict(c) - mean, atol=1e-9)
        self.assertAlmostEqual(result.ssr, float(np.sum(np.square(result.residuals))), places=12)
        self.assertAlmostEqual(result.chi_square, result.ssr, places=12)

    def test_weighted_fit_with_replicates(self):
        conc = titration_series(500.0, 2.0, 12)
        table = make_example_table("Hyperbolic", [20.0, 200.0, 15.0], conc, n_replicates=3, cv=0.01, seed=7)
        data = aggregate(table)
        result = BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model()

        self.assertTrue(result.weighted)
        self.assertEqual(result.dof, 12 - 3)
        self.assertTrue(all(np.isfinite(result.stderr)) and all(se > 0 for se in result.stderr))
        self.assertAlmostEqual(result.parameters["kd"], 15.0, delta=3.0)
        # Weighted objective is sum(((f - y) / std)^2)
        _, _, std = data.to_arrays()
        expected = float(np.sum(np.square(np.asarray(result.residuals) / std)))
        self.assertAlmostEqual(result.chi_square / expected, 1.0, places=8)

    def test_single_replicate_cannot_be_weighted(self):
        data = noiseless("Hyperbolic", [0.0, 100.0, 10.0], [0.1, 1, 10, 100, 1000])
        self.assertFalse(BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model().weighted)
        with self.assertRaises(DataShapeError):
            BindingSolver(data, FitConfig(model="Hyperbolic")).fit_model(weighted=True)
        with self.assertRaises(DataShapeError):
            BindingSolver(data, FitConfig(model="Hyperbolic", weighted=True)).fit_model()

    def test_zero_std_cannot_be_weighted(self):
        conc = [0.1, 1, 10, 100, 1000]
        guess = ModelParameters(model="Hyperbolic", values=[0.0, 100.0, 10.0])
        with self.assertRaises(DataShapeError):
            fit_curve("Hyperbolic", conc, [1, 9, 50, 91, 99], guess, sigma=[1, 1, 0, 1, 1])
        with self.assertRaises(DataShapeError):
            fit_curve("Hyperbolic", conc, [1, 9, 50, 91, 99], guess, sigma=[1, 1, np.nan, 1, 1])

    def test_no_degrees_of_freedom(self):
        guess = ModelParameters(model="Hyperbolic", values=[0.0, 100.0, 10.0])
        with self.assertRaises(InsufficientDataError):
            fit_curve("Hyperbolic", [1.0, 10.0, 100.0], [9.0, 50.0, 91.0], guess)
        with self.assertRaises(InsufficientDataError):
            fit_curve("Hyperbolic", [1.0, 10.0], [9.0, 50.0], guess)
        hill_guess = ModelParameters(model="Hill", values=[0.0, 100.0, 10.0, 1.0])
        with self.assertRaises(InsufficientDataError):
            fit_curve("Hill", [1.0, 10.0, 100.0, 1000.0], [9.0, 50.0, 91.0, 99.0], hill_guess)

    def test_iteration_budget_exhausted(self):
        conc = titration_series(500.0, 2.0, 12)
        table = make_example_table("Hill", [20.0, 200.0, 15.0, 1.8], conc, n_replicates=3, cv=0.05, seed=3)
        data = aggregate(table)
        config = FitConfig(model="Hill", max_nfev=2)
        with self.assertRaises(FitConvergenceError):
            BindingSolver(data, config).fit_model()

    def test_quadratic_needs_r0(self):
        guess = ModelParameters(model="Quadratic", values=[0.0, 100.0, 10.0])
        with self.assertRaises(ConfigurationError):
            fit_curve("Quadratic", [0.1, 1, 10, 100, 1000], [1, 9, 50, 91, 99], guess)

    def test_initial_guess_must_match_model(self):
        guess = ModelParameters(model="Hill", values=[0.0, 100.0, 10.0, 1.0])
        with self.assertRaises(ConfigurationError):
            fit_curve("Hyperbolic", [0.1, 1, 10, 100, 1000], [1, 9, 50, 91, 99], guess)

class TestFitConfig(unittest.TestCase):

    def test_defaults(self):
        config = FitConfig()
        self.assertEqual(config.model, "Hill")
        self.assertEqual(config.trim_trailing_rows, 2)
        self.assertIsNone(config.r0)

    def test_receptor_concentration(self):
        with self.assertRaises(ConfigurationError):
            FitConfig(model="Quadratic")
        with self.assertRaises(ConfigurationError):
            FitConfig(model="Quadratic", r0=0.0)
        self.assertEqual(FitConfig(model="Quadratic", r0=2.5).r0, 2.5)

    def test_field_validation(self):
        with self.assertRaises(ValidationError):
            FitConfig(trim_trailing_rows=-1)
        with self.assertRaises(ValidationError):
            FitConfig(model="Langmuir")
        with self.assertRaises(ValidationError):
            ModelParameters(model="Hill", values=[1.0, 2.0, 3.0])

class TestModelCompetition(unittest.TestCase):

    def test_hill_wins_on_cooperative_data(self):
        conc = titration_series(1000.0, 2.0, 15)
        data = noiseless("Hill", [0.0, 100.0, 10.0, 2.5], conc)
        solver = BindingSolver(data, FitConfig(model="Hyperbolic"))
        ranked = solver.run_model_competition()

        self.assertEqual({r.model for r in ranked}, {"Hill", "Hyperbolic"})
        self.assertEqual(ranked[0].model, "Hill")
        self.assertIsNone(solver.check_ambiguity(ranked))

    def test_quadratic_joins_when_r0_is_set(self):
        conc = titration_series(1000.0, 2.0, 15)
        data = noiseless("Quadratic", [0.0, 100.0, 10.0], conc, r0=2.0)
        ranked = BindingSolver(data, FitConfig(model="Quadratic", r0=2.0)).run_model_competition()
        self.assertIn("Quadratic", [r.model for r in ranked])

    def test_ambiguity_wording(self):
        ranked = [SimpleNamespace(model="Hyperbolic", aic=-40.0), SimpleNamespace(model="Hill", aic=-39.1)]
        self.assertIn("cooperativity", BindingSolver.check_ambiguity(ranked))
        ranked[1] = SimpleNamespace(model="Quadratic", aic=-38.5)
        self.assertIn("ligand depletion", BindingSolver.check_ambiguity(ranked))
        ranked[1] = SimpleNamespace(model="Hill", aic=-30.0)
        self.assertIsNone(BindingSolver.check_ambiguity(ranked))
        self.assertIsNone(BindingSolver.check_ambiguity(ranked[:1]))

class TestFitMany(unittest.TestCase):

    def test_order_is_preserved(self):
        conc = titration_series(2000.0, 2.0, 14)
        kds = [80.0, 5.0, 20.0]
        datasets = [noiseless("Hyperbolic", [0.0, 100.0, kd], conc) for kd in kds]
        config = FitConfig(model="Hyperbolic")

        sequential = fit_many(datasets, config)
        parallel = fit_many(datasets, config, max_workers=2)

        for kd, a, b in zip(kds, sequential, parallel):
            self.assertAlmostEqual(a.parameters["kd"], kd, places=3)
            self.assertAlmostEqual(b.parameters["kd"], kd, places=3)

class TestResidualDiagnostics(unittest.TestCase):

    def test_clustered_signs_flag_systematic_deviation(self):
        # One stretch below the curve, then one above it
        residuals = [-1.0, -2.0, -1.5, -0.5, 0.5, 1.0, 2.0, 1.5]
        diag = diagnose_residuals(residuals)
        self.assertEqual(diag["runs"], 2)
        self.assertLess(diag["runs_z"], -1.96)
        self.assertLess(diag["runs_p"], 0.05)
        self.assertTrue(diag["systematic"])
        self.assertTrue(0.0 <= diag["shapiro_p"] <= 1.0)

    def test_alternating_signs_are_random(self):
        diag = diagnose_residuals([0.4, -0.3, 0.2, -0.5, 0.1, -0.2, 0.3, -0.1, 0.2])
        self.assertFalse(diag["systematic"])

    def test_short_or_flat_residuals(self):
        diag = diagnose_residuals([0.1, -0.1])
        self.assertEqual(diag["shapiro_p"], 1.0)
        self.assertEqual(diag["runs_z"], 0.0)
        self.assertFalse(diag["systematic"])
        flat = diagnose_residuals([0.0, 0.0, 0.0])
        self.assertEqual(flat["runs"], 0)
        self.assertEqual(flat["runs_p"], 1.0)

if __name__ == '__main__':
    unittest.main()
