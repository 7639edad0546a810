"""Define cost terms and the container aggregating them into one weighted cost."""

from collections.abc import Iterator

import numpy as np

from nlp_util.logconfig import create_logger
from trajopt_nlp.constraints import VariablesNotLinkedError
from trajopt_nlp.variables import InconsistentVectorLengthError, RegistrationFrozenError, VariableContainer

LOG = create_logger(__name__)


class CostTerm:
    """Base of a named scalar cost depending on a subset of the variable sets."""

    def __init__(self, name: str):
        self.name = name
        self._variables: VariableContainer = None

    def link_variables(self, variables: VariableContainer):
        """Link the variable container this term reads from."""
        self._variables = variables

    @property
    def variables(self) -> VariableContainer:
        if self._variables is None:
            raise VariablesNotLinkedError(f"Cost term {self.name} is not linked with any variables.")
        return self._variables

    def get_variable_values(self, variable_set_name: str) -> np.ndarray:
        """Convenience getter for the current values of a linked variable set."""
        return self.variables.get_variable_set(variable_set_name).get_values()

    def get_cost(self) -> float:
        """Get the unweighted cost at the current variables."""
        raise NotImplementedError(f"get_cost is not implemented for {self.__class__.__name__}.")

    def get_gradient_block(self, variable_set_name: str) -> np.ndarray:
        """Get the gradient w.r.t. one variable set, None if independent of it."""
        raise NotImplementedError(f"get_gradient_block is not implemented for {self.__class__.__name__}.")

    def get_gradient(self) -> np.ndarray:
        """Assemble the zero padded gradient w.r.t. the full flat variable vector."""
        variables = self.variables
        gradient = np.zeros(variables.get_total_count())
        for variable_set, start_index, end_index in variables.iter_with_slices():
            block = self.get_gradient_block(variable_set.name)
            if block is None:
                continue
            block = np.asarray(block, dtype=float).reshape(-1)
            if block.size != variable_set.size:
                raise InconsistentVectorLengthError(
                    f"Cost term {self.name} gradient block for {variable_set.name} has {block.size} entries, "
                    f"expected {variable_set.size}."
                )
            gradient[start_index:end_index] += block
        return gradient


class CostContainer:
    """Aggregate weighted cost terms.

    The aggregated value is sum_i w_i * c_i and the gradient sum_i w_i * grad(c_i),
    both over the full flat variable vector.
    """

    def __init__(self, variables: VariableContainer):
        self._variables = variables
        self._cost_terms: list[tuple[CostTerm, float]] = []
        self._frozen = False

    def add_cost_term(self, cost_term: CostTerm, weight: float = 1.0):
        """Register a cost term with its weight and link it with the variables."""
        if self._frozen:
            raise RegistrationFrozenError(f"Cannot add cost term {cost_term.name} after the layout is frozen.")
        if any(existing.name == cost_term.name for existing, _ in self._cost_terms):
            LOG.warning(f"Cost term name {cost_term.name} is registered more than once.")
        cost_term.link_variables(self._variables)
        self._cost_terms.append((cost_term, float(weight)))

    def freeze(self):
        self._frozen = True

    def has_terms(self) -> bool:
        """Whether any cost term is registered, a pure feasibility problem otherwise."""
        return bool(self._cost_terms)

    def get_value(self) -> float:
        """Get the weighted sum of all term costs."""
        return float(sum(weight * float(cost_term.get_cost()) for cost_term, weight in self._cost_terms))

    def get_gradient(self) -> np.ndarray:
        """Get the weighted sum of all term gradients."""
        num_variables = self._variables.get_total_count()
        gradient = np.zeros(num_variables)
        for cost_term, weight in self._cost_terms:
            term_gradient = np.asarray(cost_term.get_gradient(), dtype=float).reshape(-1)
            if term_gradient.size != num_variables:
                raise InconsistentVectorLengthError(
                    f"Cost term {cost_term.name} returned a gradient of length {term_gradient.size}, "
                    f"expected {num_variables}."
                )
            gradient += weight * term_gradient
        return gradient

    def __iter__(self) -> Iterator[tuple[CostTerm, float]]:
        return iter(self._cost_terms)

    def __len__(self) -> int:
        return len(self._cost_terms)
