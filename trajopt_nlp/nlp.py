"""Define the nonlinear program handed to a generic constrained optimization solver.

The NLP owns one variable, one constraint and one cost container, and exposes
them only through flat vectors:

    minimize     f(x)
    subject to   g_l <= g(x) <= g_u
                 x_l <=   x  <= x_u

with x the concatenation of all variable sets and g(x) the concatenation of all
constraint sets. Registration happens in the BUILDING state. The first call of
any evaluation function moves the NLP into the FROZEN state, from which on the
layout, the bounds and the jacobian sparsity pattern are fixed.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy import sparse

from nlp_util.logconfig import create_logger
from trajopt_nlp.bounds import Bound
from trajopt_nlp.constraints import ConstraintContainer, ConstraintSet
from trajopt_nlp.costs import CostContainer, CostTerm
from trajopt_nlp.variables import (
    ContractViolationError,
    InconsistentVectorLengthError,
    RegistrationFrozenError,
    VariableContainer,
    VariableSet,
)

LOG = create_logger(__name__)


class NLPState(Enum):
    """Lifecycle of the nlp, shapes are mutable only while building."""

    BUILDING = "building"
    FROZEN = "frozen"


class ConstraintStatus(Enum):
    """Classification of a single constraint value against its bound."""

    SATISFIED = "satisfied"
    WITHIN_TOLERANCE = "within tolerance"
    VIOLATED = "violated"


@dataclass
class ConstraintReport:
    """Status of one constraint row at the current variables."""

    constraint_name: str
    # Row index inside the constraint set
    index: int
    value: float
    bound: Bound
    status: ConstraintStatus


def classify_constraint(value: float, bound: Bound, tolerance: float) -> ConstraintStatus:
    """Classify a value as inside the bound, inside the tolerance band around it, or outside."""
    violation = bound.violation(value)
    if violation == 0.0:
        return ConstraintStatus.SATISFIED
    if violation <= tolerance:
        return ConstraintStatus.WITHIN_TOLERANCE
    return ConstraintStatus.VIOLATED


class NLP:
    """Nonlinear program over registered variable sets, constraint sets and cost terms."""

    # Violations below this threshold are not counted in the component table
    PRINT_VIOLATION_TOLERANCE = 1e-4

    def __init__(self):
        self._variables = VariableContainer()
        self._constraints = ConstraintContainer(self._variables)
        self._costs = CostContainer(self._variables)

        self._state = NLPState.BUILDING
        self._initialized = False

        # Flat variable vectors saved along the solver iterations
        self._iteration_history: list[np.ndarray] = []

    @property
    def state(self) -> NLPState:
        return self._state

    ## Registration ===================================================

    def _ensure_building(self, component_name: str):
        if self._state is not NLPState.BUILDING:
            raise RegistrationFrozenError(
                f"Cannot register {component_name}, the nlp is frozen after its first evaluation."
            )

    def init(self, variable_sets: Sequence[VariableSet]):
        """Register the variable sets and freeze the flat variable layout, once.

        Sets added through add_variable_set beforehand keep their place in front.
        """
        self._ensure_building("variable sets")
        if self._initialized:
            raise ContractViolationError("The nlp variables are already initialized.")
        for variable_set in variable_sets:
            self._variables.add_variable_set(variable_set)
        self._variables.freeze()
        self._initialized = True
        LOG.info(
            f"Initialized {len(self._variables)} variable sets with {self._variables.get_total_count()} variables."
        )

    def add_variable_set(self, variable_set: VariableSet):
        """Append a single variable set to the flat variable layout, only before init."""
        self._ensure_building(f"variable set {variable_set.name}")
        if self._variables.is_frozen:
            raise RegistrationFrozenError(
                f"Cannot add variable set {variable_set.name}, the variable layout is frozen by init."
            )
        self._variables.add_variable_set(variable_set)

    def add_constraint(self, constraint_sets: ConstraintSet | Sequence[ConstraintSet]):
        """Append one or more constraint sets to the flat constraint layout."""
        if isinstance(constraint_sets, ConstraintSet):
            constraint_sets = [constraint_sets]
        for constraint_set in constraint_sets:
            self._ensure_building(f"constraint set {constraint_set.name}")
            self._constraints.add_constraint_set(constraint_set)

    def add_cost(self, cost_term: CostTerm, weight: float = 1.0):
        """Register a cost term scaled by weight."""
        self._ensure_building(f"cost term {cost_term.name}")
        self._costs.add_cost_term(cost_term, weight)

    def _freeze(self):
        """Move from building into frozen state, a no-op once frozen."""
        if self._state is NLPState.FROZEN:
            return
        self._variables.freeze()
        self._constraints.freeze()
        self._costs.freeze()
        self._state = NLPState.FROZEN
        LOG.info(
            f"Frozen nlp with {self.get_number_of_optimization_variables()} variables, "
            f"{self.get_number_of_constraints()} constraints and {len(self._costs)} cost terms."
        )

    ## Variables ======================================================

    def set_variables(self, x: Sequence[float]):
        """Make x the current point every following query refers to."""
        self._freeze()
        self._variables.set_variables(x)
        self._constraints.update()

    def get_number_of_optimization_variables(self) -> int:
        return self._variables.get_total_count()

    def get_bounds_on_optimization_variables(self) -> list[Bound]:
        return self._variables.get_bounds()

    def get_starting_values(self) -> np.ndarray:
        """Get the current flat variable vector, the initial guess before solving."""
        return self._variables.get_flat_values()

    def get_variable_values(self, name: str) -> np.ndarray:
        """Get a copy of the current values of a variable set, for reading out the solution."""
        return np.array(self._variables.get_variable_set(name).get_values(), dtype=float)

    ## Cost ===========================================================

    def has_cost_terms(self) -> bool:
        return self._costs.has_terms()

    def evaluate_cost_function(self, x: Sequence[float]) -> float:
        """Evaluate the weighted cost at x, zero for a pure feasibility problem."""
        self.set_variables(x)
        if not self.has_cost_terms():
            return 0.0
        return self._costs.get_value()

    def evaluate_cost_function_gradient(self, x: Sequence[float]) -> np.ndarray:
        """Evaluate the weighted cost gradient at x, zero for a pure feasibility problem."""
        self.set_variables(x)
        if not self.has_cost_terms():
            return np.zeros(self.get_number_of_optimization_variables())
        return self._costs.get_gradient()

    ## Constraints ====================================================

    def get_number_of_constraints(self) -> int:
        return self._constraints.get_total_count()

    def get_bounds_on_constraints(self) -> list[Bound]:
        return self._constraints.get_bounds()

    def evaluate_constraints(self, x: Sequence[float]) -> np.ndarray:
        """Evaluate the flat constraint vector at x."""
        self.set_variables(x)
        return self._constraints.get_values()

    def get_jacobian_sparsity_pattern(self) -> tuple[np.ndarray, np.ndarray]:
        """Get the (rows, cols) of the structural jacobian nonzeros, fixed for the life of the nlp."""
        self._freeze()
        return self._constraints.get_sparsity_pattern()

    def eval_nonzeros_of_jacobian(self, x: Sequence[float], values: np.ndarray = None) -> np.ndarray:
        """Write the jacobian values at x in the order of the sparsity pattern.

        The values are written into the given buffer if any, which is also returned.
        """
        self.set_variables(x)
        jacobian = self._constraints.get_jacobian()

        if values is None:
            return jacobian.data.copy()
        if np.shape(values) != (jacobian.nnz,):
            raise InconsistentVectorLengthError(
                f"Jacobian value buffer has shape {np.shape(values)}, expected ({jacobian.nnz},)."
            )
        values[:] = jacobian.data
        return values

    def get_jacobian_of_constraints(self) -> sparse.coo_matrix:
        """Get the full constraint jacobian at the current variables."""
        return self._constraints.get_jacobian()

    def get_max_constraint_violation(self) -> float:
        """Get the largest distance of any constraint value outside of its bound."""
        values = self._constraints.get_values()
        bounds = self._constraints.get_bounds()
        return max((bound.violation(value) for value, bound in zip(values, bounds)), default=0.0)

    ## Diagnostics ====================================================

    def print_status_of_constraints(self, tolerance: float) -> list[ConstraintReport]:
        """Log and return the status of every constraint row at the current variables."""
        values = self._constraints.get_values()
        bounds = self._constraints.get_bounds()

        reports = []
        for constraint_set, start_index, end_index in self._constraints.iter_with_slices():
            for index in range(end_index - start_index):
                value, bound = values[start_index + index], bounds[start_index + index]
                reports.append(
                    ConstraintReport(
                        constraint_name=constraint_set.name,
                        index=index,
                        value=float(value),
                        bound=bound,
                        status=classify_constraint(value, bound, tolerance),
                    )
                )

        report_msg = [f"\nConstraint status (tolerance {tolerance:g}):"]
        for report in reports:
            if report.bound.is_equality:
                bound_msg = f"= {report.bound.upper: .3e}"
            else:
                bound_msg = f"in [{report.bound.lower: .3e}, {report.bound.upper: .3e}]"
            report_msg.append(
                f"{report.constraint_name}[{report.index}]: {report.value: .6e} {bound_msg} -> {report.status.value}"
            )
        num_violated = sum(report.status is ConstraintStatus.VIOLATED for report in reports)
        report_msg.append(f"{num_violated} of {len(reports)} constraints violated.")
        LOG.info("\n".join(report_msg))
        return reports

    def _count_violations(self, values: np.ndarray, bounds: list[Bound]) -> int:
        return sum(bound.violation(value) > self.PRINT_VIOLATION_TOLERANCE for value, bound in zip(values, bounds))

    def print_current(self):
        """Log a table of all registered components at the current variables."""
        flat_values = self._variables.get_flat_values()
        variable_bounds = self._variables.get_bounds()
        constraint_values = self._constraints.get_values()
        constraint_bounds = self._constraints.get_bounds()

        table = [f"\n{'name':<24}{'offset':>8}{'size':>8}{'violated':>10}{'value':>16}", "variables:"]
        for variable_set, start_index, end_index in self._variables.iter_with_slices():
            num_violated = self._count_violations(
                flat_values[start_index:end_index], variable_bounds[start_index:end_index]
            )
            table.append(f"  {variable_set.name:<22}{start_index:>8}{variable_set.size:>8}{num_violated:>10}")

        table.append("constraints:")
        for constraint_set, start_index, end_index in self._constraints.iter_with_slices():
            num_violated = self._count_violations(
                constraint_values[start_index:end_index], constraint_bounds[start_index:end_index]
            )
            table.append(f"  {constraint_set.name:<22}{start_index:>8}{constraint_set.size:>8}{num_violated:>10}")

        table.append("costs:")
        for cost_term, weight in self._costs:
            table.append(f"  {cost_term.name:<22}{'':>8}{'':>8}{'':>10}{weight * cost_term.get_cost():>16.6e}")
        table.append(f"total cost: {self._costs.get_value():.6e}")
        LOG.info("\n".join(table))

    ## Iteration history ==============================================

    def save_current(self):
        """Append the current flat variable vector to the iteration history."""
        self._iteration_history.append(self._variables.get_flat_values())

    def get_iteration_count(self) -> int:
        return len(self._iteration_history)

    def set_opt_variables(self, iteration: int):
        """Restore the variables saved at the given iteration."""
        if not -len(self._iteration_history) <= iteration < len(self._iteration_history):
            raise IndexError(f"Iteration {iteration} is out of range for {len(self._iteration_history)} saved.")
        self.set_variables(self._iteration_history[iteration])

    def set_opt_variables_final(self):
        """Restore the variables saved last."""
        self.set_opt_variables(-1)
