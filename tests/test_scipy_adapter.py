"""Test solving nlps with scipy through the flat evaluation contract."""

import matplotlib.pyplot as plt
import numpy as np
import pytest

from trajopt_nlp.nlp import ConstraintStatus
from trajopt_nlp.solvers.scipy_adapter import ScipyAdapter, SolverSettings, UnsupportedSolverMethodError
from trajopt_nlp.visualizer import get_iteration_history, plot_iteration_history


def test_unsupported_method_raises():
    """Test methods without general constraint support are rejected."""
    with pytest.raises(UnsupportedSolverMethodError):
        SolverSettings(method="BFGS")


@pytest.mark.parametrize("method", SolverSettings.SUPPORTED_METHODS)
def test_scipy_options(method):
    """Test the iteration limit is forwarded to every supported method."""
    settings = SolverSettings(method=method, max_iterations=42)
    assert settings.get_scipy_options()["maxiter"] == 42


def test_solve_example_slsqp(example_nlp):
    """Test SLSQP finds the optimum of the reference problem."""
    result = ScipyAdapter(example_nlp, SolverSettings(method="SLSQP")).solve()

    assert result.success
    solution = example_nlp.get_variable_values("var_set1")
    assert np.isclose(abs(solution[0]), 1.0, atol=1e-4)
    assert np.isclose(solution[1], 0.0, atol=1e-4)
    assert all(
        report.status is not ConstraintStatus.VIOLATED
        for report in example_nlp.print_status_of_constraints(tolerance=1e-4)
    )


def test_solve_example_trust_constr(example_nlp):
    """Test trust-constr with the sparse jacobian finds the optimum of the reference problem."""
    ScipyAdapter(example_nlp, SolverSettings(method="trust-constr", max_iterations=1000)).solve()

    solution = example_nlp.get_variable_values("var_set1")
    assert np.isclose(abs(solution[0]), 1.0, atol=1e-2)
    assert np.isclose(solution[1], 0.0, atol=1e-2)
    assert example_nlp.get_max_constraint_violation() < 1e-2


def test_solve_records_iterations(example_nlp):
    """Test the starting point and the solution are saved around the iterates."""
    ScipyAdapter(example_nlp, SolverSettings(method="SLSQP")).solve()

    assert example_nlp.get_iteration_count() >= 2
    example_nlp.set_opt_variables(0)
    assert np.array_equal(example_nlp.get_starting_values(), [0.5, 1.5])

    costs, violations = get_iteration_history(example_nlp)
    assert costs.shape == violations.shape == (example_nlp.get_iteration_count(),)
    assert costs[-1] == pytest.approx(-4.0, abs=1e-3)
    # The history restores the final solution
    assert np.isclose(example_nlp.get_variable_values("var_set1")[1], 0.0, atol=1e-4)


def test_solve_monitors_complexity(example_nlp):
    """Test the evaluation functions are timed when monitoring is enabled."""
    adapter = ScipyAdapter(example_nlp, SolverSettings(method="SLSQP", monitor_complexity=True))
    adapter.solve()

    statistics = adapter.complexity_monitor.get_statistics()
    assert "evaluate_cost_function" in statistics
    num_calls, total_time, avg_time = statistics["evaluate_cost_function"]
    assert num_calls > 0
    assert total_time >= 0.0
    assert avg_time == pytest.approx(total_time / num_calls)


def test_plot_iteration_history(example_nlp, show_plots):
    """Test the convergence plot of a solved nlp."""
    ScipyAdapter(example_nlp, SolverSettings(method="SLSQP")).solve()
    fig = plot_iteration_history(example_nlp)
    assert len(fig.axes) == 2

    if show_plots:
        plt.show()
    plt.close(fig)


def test_monitoring_released_after_solve(example_nlp):
    """Test a second solve is not recorded by the monitor of the first one."""
    first_adapter = ScipyAdapter(example_nlp, SolverSettings(method="SLSQP", monitor_complexity=True))
    first_adapter.solve()
    first_statistics = first_adapter.complexity_monitor.get_statistics()
    assert "evaluate_cost_function" not in vars(example_nlp)

    second_adapter = ScipyAdapter(example_nlp, SolverSettings(method="SLSQP", monitor_complexity=True))
    second_adapter.solve()
    assert first_adapter.complexity_monitor.get_statistics() == first_statistics
    assert second_adapter.complexity_monitor.get_statistics()["evaluate_cost_function"][0] > 0
