"""Solve an nlp with scipy.optimize through its flat evaluation contract."""

from dataclasses import dataclass

import numpy as np
from scipy.optimize import BFGS, Bounds, NonlinearConstraint, OptimizeResult, minimize

from nlp_util.complexity import ComplexityMonitor
from nlp_util.logconfig import create_logger
from trajopt_nlp.bounds import bounds_to_arrays
from trajopt_nlp.nlp import NLP

LOG = create_logger(__name__)


class UnsupportedSolverMethodError(ValueError):
    """Raise when the requested scipy method cannot handle general constraints."""


@dataclass
class SolverSettings:
    """Define the configuration of a scipy solve."""

    # Scipy method, only those supporting bounds and nonlinear constraints
    method: str = "trust-constr"
    max_iterations: int = 500
    tolerance: float = 1e-8
    # 0 is silent, higher levels are forwarded to the scipy method
    verbose: int = 0

    # Tolerance used by the constraint status report after the solve
    constraint_tolerance: float = 1e-6
    # Record the time spent in each nlp evaluation function
    monitor_complexity: bool = False

    SUPPORTED_METHODS = ("trust-constr", "SLSQP")

    def __post_init__(self):
        """Validate the requested method."""
        if self.method not in self.SUPPORTED_METHODS:
            raise UnsupportedSolverMethodError(
                f"Solver method {self.method} is not supported, choose one of {self.SUPPORTED_METHODS}."
            )

    def get_scipy_options(self) -> dict:
        """Translate the settings into the options of the chosen scipy method."""
        if self.method == "trust-constr":
            return {
                "maxiter": self.max_iterations,
                "gtol": self.tolerance,
                "xtol": self.tolerance,
                "verbose": self.verbose,
            }
        return {"maxiter": self.max_iterations, "ftol": self.tolerance, "disp": bool(self.verbose)}


class ScipyAdapter:
    """Hand an nlp to scipy.optimize.minimize without exposing its structure."""

    # Nlp functions called by the solver, timed when complexity monitoring is enabled
    EVALUATION_METHODS = (
        "evaluate_cost_function",
        "evaluate_cost_function_gradient",
        "evaluate_constraints",
        "get_jacobian_of_constraints",
        "set_variables",
    )

    def __init__(self, nlp: NLP, settings: SolverSettings = None):
        self.nlp = nlp
        self.settings = settings or SolverSettings()
        self.complexity_monitor: ComplexityMonitor = None

    def _evaluate_jacobian(self, x: np.ndarray):
        """Constraint jacobian at x, sparse for trust-constr and dense otherwise."""
        self.nlp.set_variables(x)
        jacobian = self.nlp.get_jacobian_of_constraints()
        return jacobian.tocsr() if self.settings.method == "trust-constr" else jacobian.toarray()

    def _build_constraints(self) -> list[NonlinearConstraint]:
        if self.nlp.get_number_of_constraints() == 0:
            return []

        lower, upper = bounds_to_arrays(self.nlp.get_bounds_on_constraints())
        constraint_kwargs = {"hess": BFGS()} if self.settings.method == "trust-constr" else {}
        return [
            NonlinearConstraint(
                fun=self.nlp.evaluate_constraints, lb=lower, ub=upper, jac=self._evaluate_jacobian, **constraint_kwargs
            )
        ]

    def _save_iterate(self, xk, *_):
        """Record each solver iterate into the nlp history, never stops the solver."""
        self.nlp.set_variables(xk)
        self.nlp.save_current()

    def solve(self) -> OptimizeResult:
        """Run the solver from the nlp starting values and leave the nlp at the solution."""
        if not self.settings.monitor_complexity:
            return self._run_solver()

        self.complexity_monitor = ComplexityMonitor()
        self.complexity_monitor.register_monitored_object(self.nlp, monitored_methods=self.EVALUATION_METHODS)
        try:
            return self._run_solver()
        finally:
            self.complexity_monitor.release_monitored_objects()
            self.complexity_monitor.report_complexity()

    def _run_solver(self) -> OptimizeResult:
        nlp, settings = self.nlp, self.settings

        # Sparsity is fixed before the first value query, as for any sparse nlp solver
        rows, _ = nlp.get_jacobian_sparsity_pattern()
        LOG.info(
            f"Solving with {settings.method}: {nlp.get_number_of_optimization_variables()} variables, "
            f"{nlp.get_number_of_constraints()} constraints, {rows.size} jacobian nonzeros."
        )

        x0 = nlp.get_starting_values()
        nlp.save_current()

        lower, upper = bounds_to_arrays(nlp.get_bounds_on_optimization_variables())
        minimize_kwargs = {"hess": BFGS()} if settings.method == "trust-constr" else {}
        result = minimize(
            fun=nlp.evaluate_cost_function,
            x0=x0,
            method=settings.method,
            jac=nlp.evaluate_cost_function_gradient,
            bounds=Bounds(lower, upper),
            constraints=self._build_constraints(),
            callback=self._save_iterate,
            options=settings.get_scipy_options(),
            **minimize_kwargs,
        )

        if result.success:
            LOG.info(f"Solver converged: {result.message}")
        else:
            LOG.warning(f"Solver did not converge: {result.message}")

        nlp.set_variables(result.x)
        nlp.save_current()
        nlp.print_current()
        nlp.print_status_of_constraints(settings.constraint_tolerance)
        return result
