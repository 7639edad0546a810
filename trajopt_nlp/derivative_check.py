"""Verify analytic nlp derivatives against finite difference perturbation."""

from collections.abc import Callable

import numpy as np

from nlp_util.logconfig import create_logger
from trajopt_nlp.nlp import NLP

LOG = create_logger(__name__)


def get_jacobian_by_perturbation(
    function: Callable[[np.ndarray], np.ndarray],
    flat_values: np.ndarray,
    perturbation_percentage: float = 1e-3,
    min_perturbation: float = 1e-5,
) -> np.ndarray:
    """Numerically compute the jacobian of a flat vector function via central difference.

    A scalar function yields a jacobian of a single row, i.e. the transposed gradient.
    """
    flat_values = np.asarray(flat_values, dtype=float)
    num_variables = flat_values.size

    jacobian_columns = []
    for var_index in range(num_variables):
        # Compute perturbation size
        perturbation = max(abs(flat_values[var_index]) * perturbation_percentage, min_perturbation)

        # Perturb positively
        perturbed_values_pos = flat_values.copy()
        perturbed_values_pos[var_index] += perturbation
        output_pos = np.atleast_1d(np.asarray(function(perturbed_values_pos), dtype=float))

        # Perturb negatively
        perturbed_values_neg = flat_values.copy()
        perturbed_values_neg[var_index] -= perturbation
        output_neg = np.atleast_1d(np.asarray(function(perturbed_values_neg), dtype=float))

        jacobian_columns.append((output_pos - output_neg) / (2 * perturbation))

    if not jacobian_columns:
        num_outputs = np.atleast_1d(np.asarray(function(flat_values))).size
        return np.zeros((num_outputs, 0))
    return np.stack(jacobian_columns, axis=1)


def check_constraint_jacobian(nlp: NLP, flat_values: np.ndarray, **perturbation_kwargs) -> float:
    """Get the max absolute difference between the analytic and numeric constraint jacobian.

    The nlp is left at flat_values afterwards.
    """
    numeric_jacobian = get_jacobian_by_perturbation(nlp.evaluate_constraints, flat_values, **perturbation_kwargs)
    nlp.set_variables(flat_values)
    analytic_jacobian = nlp.get_jacobian_of_constraints().toarray()

    max_error = float(np.max(np.abs(analytic_jacobian - numeric_jacobian), initial=0.0))
    LOG.info(f"Constraint jacobian max absolute error against finite difference: {max_error:.3e}")
    return max_error


def check_cost_gradient(nlp: NLP, flat_values: np.ndarray, **perturbation_kwargs) -> float:
    """Get the max absolute difference between the analytic and numeric cost gradient."""
    numeric_gradient = get_jacobian_by_perturbation(nlp.evaluate_cost_function, flat_values, **perturbation_kwargs)
    analytic_gradient = nlp.evaluate_cost_function_gradient(flat_values)

    max_error = float(np.max(np.abs(analytic_gradient - numeric_gradient.reshape(-1)), initial=0.0))
    LOG.info(f"Cost gradient max absolute error against finite difference: {max_error:.3e}")
    return max_error
