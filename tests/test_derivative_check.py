"""Test the finite difference verification of nlp derivatives."""

import numpy as np
import pytest

from trajopt_nlp.derivative_check import (
    check_constraint_jacobian,
    check_cost_gradient,
    get_jacobian_by_perturbation,
)


def test_linear_function_jacobian():
    """Test the perturbation jacobian of a linear map is its matrix."""
    matrix = np.array([[1.0, -2.0, 0.5], [0.0, 3.0, 4.0]])
    jacobian = get_jacobian_by_perturbation(lambda x: matrix @ x, np.array([10.0, -0.2, 0.0]))
    assert jacobian.shape == (2, 3)
    assert np.allclose(jacobian, matrix)


def test_scalar_function_gives_single_row():
    """Test a scalar function yields the transposed gradient."""
    jacobian = get_jacobian_by_perturbation(lambda x: float(np.sum(x**2)), np.array([1.0, -3.0]))
    assert jacobian.shape == (1, 2)
    assert np.allclose(jacobian, [[2.0, -6.0]], rtol=1e-6)


def test_no_variables():
    """Test a function of an empty vector has an empty jacobian."""
    jacobian = get_jacobian_by_perturbation(lambda x: np.zeros(2), np.zeros(0))
    assert jacobian.shape == (2, 0)


@pytest.mark.parametrize("flat_values", [[0.5, 1.5], [0.0, 0.0], [-0.8, 3.0]])
def test_example_nlp_derivatives(example_nlp, flat_values):
    """Test the analytic derivatives of the reference problem match finite difference."""
    assert check_constraint_jacobian(example_nlp, np.array(flat_values)) < 1e-6
    assert check_cost_gradient(example_nlp, np.array(flat_values)) < 1e-6
    assert np.array_equal(example_nlp.get_starting_values(), flat_values)
