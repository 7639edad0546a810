"""Test constraint sets and cost terms differentiated by jax."""

import jax.numpy as jnp
import numpy as np
import pytest

from trajopt_nlp.autodiff import AutoDiffConstraintSet, AutoDiffCostTerm
from trajopt_nlp.bounds import BOUND_ZERO, Bound
from trajopt_nlp.derivative_check import check_constraint_jacobian, check_cost_gradient
from trajopt_nlp.nlp import NLP
from trajopt_nlp.variables import VectorVariableSet


def product_and_square(x, y):
    """Constraint values [x_0 * y_0, x_1^2]."""
    return jnp.array([x[0] * y[0], x[1] ** 2])


@pytest.fixture
def nlp():
    """Create an nlp on two variable sets x = (2, 3) and y = (4,) with auto-differentiated components."""
    nlp = NLP()
    nlp.init([VectorVariableSet("x", [2.0, 3.0]), VectorVariableSet("y", [4.0])])
    nlp.add_constraint(
        AutoDiffConstraintSet("product_and_square", product_and_square, ["x", "y"], [BOUND_ZERO, Bound(0.0, 1.0)])
    )
    nlp.add_cost(AutoDiffCostTerm("squared_x", lambda x: jnp.sum(x**2), ["x"]), weight=1.0)
    yield nlp


def test_constraint_values(nlp):
    """Test the values follow the user function."""
    assert np.allclose(nlp.evaluate_constraints(np.array([2.0, 3.0, 4.0])), [8.0, 9.0])


def test_constraint_jacobian(nlp):
    """Test the jacobian blocks are placed at the columns of their variable sets."""
    nlp.set_variables([2.0, 3.0, 4.0])
    jacobian = nlp.get_jacobian_of_constraints()
    assert np.allclose(jacobian.toarray(), [[4.0, 0.0, 2.0], [0.0, 6.0, 0.0]])
    # Every entry of the dense blocks is structural
    assert jacobian.nnz == 6


def test_sparsity_pattern_independent_of_point(nlp):
    """Test the pattern holds at a point where derivatives vanish."""
    rows, cols = nlp.get_jacobian_sparsity_pattern()
    values = nlp.eval_nonzeros_of_jacobian(np.zeros(3))
    assert values.shape == rows.shape == cols.shape == (6,)
    assert np.allclose(values, 0.0)


def test_cost_gradient(nlp):
    """Test the gradient is zero padded for the unused variable set."""
    assert nlp.evaluate_cost_function(np.array([2.0, 3.0, 4.0])) == pytest.approx(13.0)
    assert np.allclose(nlp.evaluate_cost_function_gradient(np.array([2.0, 3.0, 4.0])), [4.0, 6.0, 0.0])


def test_matches_finite_difference(nlp):
    """Test the auto-differentiated derivatives against finite difference."""
    flat_values = np.array([-1.5, 0.7, 2.5])
    assert check_constraint_jacobian(nlp, flat_values) < 1e-6
    assert check_cost_gradient(nlp, flat_values) < 1e-6


def test_cost_gradient_differentiated_once(monkeypatch):
    """Test the gradient over several variable sets comes from a single differentiation."""
    nlp = NLP()
    nlp.init([VectorVariableSet("x", [2.0, 3.0]), VectorVariableSet("y", [4.0])])
    cost_term = AutoDiffCostTerm("mixed", lambda x, y: jnp.sum(x**2) + y[0] ** 3, ["x", "y"])
    nlp.add_cost(cost_term)

    num_differentiations = []
    auto_diffed_gradient = cost_term._auto_diffed_gradient

    def counted_gradient(*args):
        num_differentiations.append(1)
        return auto_diffed_gradient(*args)

    monkeypatch.setattr(cost_term, "_auto_diffed_gradient", counted_gradient)
    assert np.allclose(nlp.evaluate_cost_function_gradient(np.array([2.0, 3.0, 4.0])), [4.0, 6.0, 48.0])
    assert len(num_differentiations) == 1
