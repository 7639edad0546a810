"""Plot the convergence of a solved nlp from its saved iterations."""

import matplotlib.pyplot as plt
import numpy as np

from trajopt_nlp.nlp import NLP


def get_iteration_history(nlp: NLP) -> tuple[np.ndarray, np.ndarray]:
    """Evaluate cost and max constraint violation at every saved iteration.

    The nlp is restored to its last saved iteration afterwards.
    """
    costs, violations = [], []
    for iteration in range(nlp.get_iteration_count()):
        nlp.set_opt_variables(iteration)
        costs.append(nlp.evaluate_cost_function(nlp.get_starting_values()))
        violations.append(nlp.get_max_constraint_violation())

    if nlp.get_iteration_count():
        nlp.set_opt_variables_final()
    return np.asarray(costs), np.asarray(violations)


def plot_iteration_history(nlp: NLP):
    """Plot cost and max constraint violation against the saved iterations."""
    costs, violations = get_iteration_history(nlp)
    iterations = np.arange(costs.size)

    fig, (cost_ax, violation_ax) = plt.subplots(2, 1, sharex=True, figsize=(8, 6))
    cost_ax.plot(iterations, costs, marker="o")
    cost_ax.set_ylabel("cost")
    cost_ax.grid(True)

    # Zero violations cannot be drawn on a log scale
    violation_ax.semilogy(iterations, np.maximum(violations, np.finfo(float).tiny), marker="o")
    violation_ax.set_ylabel("max constraint violation")
    violation_ax.set_xlabel("iteration")
    violation_ax.grid(True)

    fig.suptitle("NLP iteration history")
    fig.tight_layout()
    return fig
