"""Define constraint sets and cost terms differentiated by jax.

The user function takes the values of the listed variable sets as positional
arguments, in the listed order, and must be traceable by jax. Every entry of an
auto-differentiated jacobian block is structural, so the sparsity pattern never
depends on the evaluation point.
"""

from collections.abc import Callable, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from trajopt_nlp.bounds import Bound
from trajopt_nlp.constraints import ConstraintSet
from trajopt_nlp.costs import CostTerm

# Solver tolerances are meaningless in single precision
jax.config.update("jax_enable_x64", True)


class AutoDiffConstraintSet(ConstraintSet):
    """A constraint set whose jacobian blocks come from reverse mode auto differentiation."""

    def __init__(
        self,
        name: str,
        function: Callable[..., jnp.ndarray],
        variable_set_names: Sequence[str],
        bounds: Sequence[Bound],
    ):
        super().__init__(name, len(bounds))
        self.variable_set_names = tuple(variable_set_names)
        self._bounds = list(bounds)

        self._function = lambda *args: jnp.atleast_1d(function(*args))
        # Guaranteed one jacobian per argument, in the order of variable_set_names
        self._auto_diffed_jacobian = jax.jacrev(self._function, argnums=tuple(range(len(self.variable_set_names))))
        # Blocks of the jacobian being assembled, differentiated once for all variable sets
        self._jacobian_blocks: dict[str, np.ndarray] = None

    def _get_arguments(self) -> list[jnp.ndarray]:
        return [jnp.asarray(self.get_variable_values(name)) for name in self.variable_set_names]

    def get_values(self) -> np.ndarray:
        return np.asarray(self._function(*self._get_arguments()), dtype=float)

    def get_bounds(self) -> list[Bound]:
        return list(self._bounds)

    def get_jacobian_block(self, variable_set_name: str):
        if variable_set_name not in self.variable_set_names:
            return None
        if self._jacobian_blocks is not None:
            return self._jacobian_blocks[variable_set_name]
        return self._differentiate()[variable_set_name]

    def _differentiate(self) -> dict[str, np.ndarray]:
        jacobian_blocks = self._auto_diffed_jacobian(*self._get_arguments())
        return {
            name: np.asarray(block, dtype=float).reshape(self.size, -1)
            for name, block in zip(self.variable_set_names, jacobian_blocks)
        }

    def get_jacobian(self):
        self._jacobian_blocks = self._differentiate()
        try:
            return super().get_jacobian()
        finally:
            self._jacobian_blocks = None


class AutoDiffCostTerm(CostTerm):
    """A cost term whose gradient comes from reverse mode auto differentiation."""

    def __init__(self, name: str, function: Callable[..., jnp.ndarray], variable_set_names: Sequence[str]):
        super().__init__(name)
        self.variable_set_names = tuple(variable_set_names)
        self._function = function
        self._auto_diffed_gradient = jax.grad(function, argnums=tuple(range(len(self.variable_set_names))))
        # Blocks of the gradient being assembled, differentiated once for all variable sets
        self._gradient_blocks: dict[str, np.ndarray] = None

    def _get_arguments(self) -> list[jnp.ndarray]:
        return [jnp.asarray(self.get_variable_values(name)) for name in self.variable_set_names]

    def get_cost(self) -> float:
        return float(self._function(*self._get_arguments()))

    def get_gradient_block(self, variable_set_name: str) -> np.ndarray:
        if variable_set_name not in self.variable_set_names:
            return None
        if self._gradient_blocks is not None:
            return self._gradient_blocks[variable_set_name]
        return self._differentiate()[variable_set_name]

    def _differentiate(self) -> dict[str, np.ndarray]:
        gradient_blocks = self._auto_diffed_gradient(*self._get_arguments())
        return {
            name: np.asarray(block, dtype=float).reshape(-1)
            for name, block in zip(self.variable_set_names, gradient_blocks)
        }

    def get_gradient(self) -> np.ndarray:
        self._gradient_blocks = self._differentiate()
        try:
            return super().get_gradient()
        finally:
            self._gradient_blocks = None
