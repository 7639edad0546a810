"""Define a small reference problem exercising the full nlp contract.

    min_x  -(x_1 - 2)^2
    s.t.   x_0^2 + x_1 = 1
           -1 <= x_0 <= 1

with the two variables in a single variable set. The optimum is x = (1, 0).
"""

import numpy as np
from scipy import sparse

from trajopt_nlp.bounds import INF, Bound
from trajopt_nlp.constraints import ConstraintSet
from trajopt_nlp.costs import CostTerm
from trajopt_nlp.nlp import NLP
from trajopt_nlp.variables import VectorVariableSet

EXAMPLE_VARIABLE_SET_NAME = "var_set1"


class ExampleVariables(VectorVariableSet):
    """Two variables where only the first one is bounded."""

    def __init__(self, name: str = EXAMPLE_VARIABLE_SET_NAME, initial_values=(0.5, 1.5)):
        super().__init__(name, initial_values, bounds=[Bound(-1.0, 1.0), Bound(-INF, INF)])


class ExampleConstraint(ConstraintSet):
    """Single equality constraint x_0^2 + x_1 = 1."""

    def __init__(self, name: str = "constraint1", variable_set_name: str = EXAMPLE_VARIABLE_SET_NAME):
        super().__init__(name, 1)
        self.variable_set_name = variable_set_name

    def get_values(self) -> np.ndarray:
        x = self.get_variable_values(self.variable_set_name)
        return np.array([x[0] ** 2 + x[1]])

    def get_bounds(self) -> list[Bound]:
        return [Bound(1.0, 1.0)]

    def get_jacobian_block(self, variable_set_name: str):
        if variable_set_name != self.variable_set_name:
            return None
        x = self.get_variable_values(self.variable_set_name)
        # Both entries are structural, even where 2 * x_0 happens to vanish
        return sparse.coo_matrix(([2.0 * x[0], 1.0], ([0, 0], [0, 1])), shape=(1, 2))


class ExampleCost(CostTerm):
    """Concave cost -(x_1 - 2)^2."""

    def __init__(self, name: str = "cost_term1", variable_set_name: str = EXAMPLE_VARIABLE_SET_NAME):
        super().__init__(name)
        self.variable_set_name = variable_set_name

    def get_cost(self) -> float:
        x = self.get_variable_values(self.variable_set_name)
        return float(-((x[1] - 2.0) ** 2))

    def get_gradient_block(self, variable_set_name: str) -> np.ndarray:
        if variable_set_name != self.variable_set_name:
            return None
        x = self.get_variable_values(self.variable_set_name)
        return np.array([0.0, -2.0 * (x[1] - 2.0)])


def build_example_nlp(initial_values=(0.5, 1.5)) -> NLP:
    """Register the example variables, constraint and cost into a fresh nlp."""
    nlp = NLP()
    nlp.init([ExampleVariables(initial_values=initial_values)])
    nlp.add_constraint([ExampleConstraint()])
    nlp.add_cost(ExampleCost(), weight=1.0)
    return nlp
