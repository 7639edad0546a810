"""Define constraint sets and the container stacking them into one flat constraint vector.

Every constraint set owns a contiguous block of rows in the flat constraint
vector. Its jacobian is reported per variable set it depends on, each block in
size of m x n_k where m is the number of constraints of the set and n_k the size
of the k-th variable set. The blocks are placed at the column offset of their
variable set, giving the set jacobian in size of m x n with n the total number
of optimization variables:

    J_set = [dg/dx_0, dg/dx_1, ..., dg/dx_k]

The container places each set jacobian at its row offset in turn:

    J = [J_set_0; J_set_1; ...; J_set_c]

All assembly is carried out on coordinate lists, an entry stored in a sparse
block (explicit zeros included) is structural, while every entry of a dense
block is structural.
"""

from collections.abc import Iterable, Iterator, Sequence

import numpy as np
from scipy import sparse

from nlp_util.logconfig import create_logger
from trajopt_nlp.bounds import BOUND_ZERO, Bound
from trajopt_nlp.variables import (
    ContractViolationError,
    InconsistentVectorLengthError,
    RegistrationFrozenError,
    VariableContainer,
)

LOG = create_logger(__name__)


class SparsityPatternChangedError(ContractViolationError):
    """Raise when the structural nonzeros of the jacobian differ from the frozen pattern."""


class VariablesNotLinkedError(ContractViolationError):
    """Raise when a component is evaluated before it is linked with the variables."""


def _to_coordinates(block, expected_shape: tuple[int, int]) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Get rows, cols and data of the structural entries of a block."""
    if sparse.issparse(block):
        coo_block = block.tocoo()
        shape = coo_block.shape
        rows, cols, data = coo_block.row, coo_block.col, coo_block.data
    else:
        dense_block = np.atleast_2d(np.asarray(block, dtype=float))
        shape = dense_block.shape
        rows, cols = np.indices(shape).reshape(2, -1)
        data = dense_block.reshape(-1)

    if tuple(shape) != tuple(expected_shape):
        raise InconsistentVectorLengthError(f"Jacobian block has shape {shape}, expected {expected_shape}.")
    return rows.astype(np.int64), cols.astype(np.int64), data.astype(float)


def stack_sparse_blocks(
    blocks: Iterable[tuple[int, int, object, tuple[int, int]]], shape: tuple[int, int]
) -> sparse.coo_matrix:
    """Place blocks at their (row offset, column offset) into one canonical coordinate matrix.

    Each block is given as (row_offset, col_offset, block, block_shape). The result
    is sorted row-major with duplicate coordinates summed, and explicit zeros kept,
    so two calls with the same block structure always yield the same coordinates.
    """
    row_collection, col_collection, data_collection = [], [], []
    for row_offset, col_offset, block, block_shape in blocks:
        rows, cols, data = _to_coordinates(block, block_shape)
        row_collection.append(rows + row_offset)
        col_collection.append(cols + col_offset)
        data_collection.append(data)

    if not row_collection:
        return sparse.coo_matrix(shape, dtype=float)

    rows = np.concatenate(row_collection)
    cols = np.concatenate(col_collection)
    data = np.concatenate(data_collection)

    # Merge duplicates through the linear row-major index, which np.unique also sorts
    num_cols = max(shape[1], 1)
    unique_linear_index, inverse = np.unique(rows * num_cols + cols, return_inverse=True)
    merged_data = np.bincount(inverse.reshape(-1), weights=data, minlength=unique_linear_index.size)
    merged_rows, merged_cols = np.divmod(unique_linear_index, num_cols)
    return sparse.coo_matrix((merged_data, (merged_rows, merged_cols)), shape=shape)


class ConstraintSet:
    """Base of a named block of constraints with a fixed number of rows.

    Derived classes read the variable sets they depend on by name from the linked
    variable container and report their derivatives per variable set.
    """

    def __init__(self, name: str, size: int):
        """Construct with the name and the immutable number of constraints."""
        if size < 0:
            raise ValueError(f"Constraint set {name} cannot have a negative size {size}.")
        self.name = name
        self._size = int(size)
        self._variables: VariableContainer = None

    @property
    def size(self) -> int:
        """Get the number of scalar constraints in this set."""
        return self._size

    def link_variables(self, variables: VariableContainer):
        """Link the variable container this set reads from."""
        self._variables = variables

    @property
    def variables(self) -> VariableContainer:
        """Get the linked variable container."""
        if self._variables is None:
            raise VariablesNotLinkedError(f"Constraint set {self.name} is not linked with any variables.")
        return self._variables

    def get_variable_values(self, variable_set_name: str) -> np.ndarray:
        """Convenience getter for the current values of a linked variable set."""
        return self.variables.get_variable_set(variable_set_name).get_values()

    def update(self):
        """Hook called whenever the variables change, e.g. to refresh shared quantities."""

    def get_values(self) -> np.ndarray:
        """Get the constraint values at the current variables."""
        raise NotImplementedError(f"get_values is not implemented for {self.__class__.__name__}.")

    def get_bounds(self) -> list[Bound]:
        """Get the bound of each constraint row."""
        raise NotImplementedError(f"get_bounds is not implemented for {self.__class__.__name__}.")

    def get_jacobian_block(self, variable_set_name: str):
        """Get the derivative w.r.t. one variable set, None if independent of it.

        The return is either a scipy sparse matrix or a dense array in size of
        size x variable_set.size.
        """
        raise NotImplementedError(f"get_jacobian_block is not implemented for {self.__class__.__name__}.")

    def get_jacobian(self) -> sparse.coo_matrix:
        """Assemble the jacobian w.r.t. the full flat variable vector."""
        variables = self.variables
        blocks = []
        for variable_set, start_index, _ in variables.iter_with_slices():
            block = self.get_jacobian_block(variable_set.name)
            if block is None:
                continue
            blocks.append((0, start_index, block, (self.size, variable_set.size)))
        return stack_sparse_blocks(blocks, shape=(self.size, variables.get_total_count()))


class LinearConstraintSet(ConstraintSet):
    """Define constraints in the form of sum_k A_k @ x_k + b, equality to zero by default.

    The A_k matrices are keyed by the name of the variable set x_k they act on.
    """

    def __init__(self, name: str, matrices: dict, bias: Sequence[float], bounds: Sequence[Bound] = None):
        self.bias = np.asarray(bias, dtype=float).reshape(-1)
        super().__init__(name, self.bias.size)
        self.matrices = dict(matrices)

        for variable_set_name, matrix in self.matrices.items():
            if matrix.shape[0] != self.size:
                raise InconsistentVectorLengthError(
                    f"Matrix for {variable_set_name} has {matrix.shape[0]} rows, expected {self.size}."
                )
        self._bounds = list(bounds) if bounds is not None else [BOUND_ZERO] * self.size

    def get_values(self) -> np.ndarray:
        values = self.bias.copy()
        for variable_set_name, matrix in self.matrices.items():
            values += matrix @ self.get_variable_values(variable_set_name)
        return values

    def get_bounds(self) -> list[Bound]:
        return list(self._bounds)

    def get_jacobian_block(self, variable_set_name: str):
        return self.matrices.get(variable_set_name)


class ConstraintContainer:
    """Stack registered constraint sets into one flat constraint vector and jacobian.

    Values and jacobian are cached per variable update. Once frozen, the first
    assembled jacobian fixes the sparsity pattern and any later jacobian with
    different structural coordinates is rejected.

    Sets registered since the last update are updated before their first
    evaluation, so their update hook always runs ahead of values and jacobian.
    """

    def __init__(self, variables: VariableContainer):
        self._variables = variables
        self._constraint_sets: list[ConstraintSet] = []
        self._offsets: list[int] = None
        self._frozen = False

        self._sparsity_pattern: tuple[np.ndarray, np.ndarray] = None
        self._values_cache: np.ndarray = None
        self._jacobian_cache: sparse.coo_matrix = None
        # Whether any set has not seen an update against the current variables
        self._needs_update = True

    def add_constraint_set(self, constraint_set: ConstraintSet):
        """Append a constraint set to the end of the flat layout and link it with the variables."""
        if self._frozen:
            raise RegistrationFrozenError(
                f"Cannot add constraint set {constraint_set.name} after the layout is frozen."
            )
        if any(existing.name == constraint_set.name for existing in self._constraint_sets):
            LOG.warning(f"Constraint set name {constraint_set.name} is registered more than once.")
        constraint_set.link_variables(self._variables)
        self._constraint_sets.append(constraint_set)
        self._needs_update = True
        self._invalidate()

    def freeze(self):
        """Freeze the layout and cache the row offset of every set."""
        if self._frozen:
            return
        self._offsets = self._compute_offsets()
        self._frozen = True
        # Anything assembled before freezing was never checked against a pattern
        self._invalidate()

    def _compute_offsets(self) -> list[int]:
        offsets = [0]
        for constraint_set in self._constraint_sets:
            offsets.append(offsets[-1] + constraint_set.size)
        return offsets

    def _get_offsets(self) -> list[int]:
        return self._offsets if self._frozen else self._compute_offsets()

    def _invalidate(self):
        self._values_cache = None
        self._jacobian_cache = None

    def get_total_count(self) -> int:
        """Get the number of scalar constraints over all sets."""
        return self._get_offsets()[-1]

    def iter_with_slices(self) -> Iterator[tuple[ConstraintSet, int, int]]:
        """Iterate over (set, start row, end row) in registration order."""
        offsets = self._get_offsets()
        for index, constraint_set in enumerate(self._constraint_sets):
            yield constraint_set, offsets[index], offsets[index + 1]

    def update(self):
        """Let every set recompute against the current variables."""
        self._invalidate()
        for constraint_set in self._constraint_sets:
            constraint_set.update()
        self._needs_update = False

    def _ensure_updated(self):
        if self._needs_update:
            self.update()

    def get_values(self) -> np.ndarray:
        """Concatenate the values of each set in registration order."""
        self._ensure_updated()
        if self._frozen and self._values_cache is not None:
            return self._values_cache.copy()

        values_collection = []
        for constraint_set in self._constraint_sets:
            values = np.asarray(constraint_set.get_values(), dtype=float).reshape(-1)
            if values.size != constraint_set.size:
                raise InconsistentVectorLengthError(
                    f"Constraint set {constraint_set.name} returned {values.size} values, "
                    f"declared {constraint_set.size}."
                )
            values_collection.append(values)

        self._values_cache = np.concatenate(values_collection) if values_collection else np.zeros(0)
        return self._values_cache.copy()

    def get_bounds(self) -> list[Bound]:
        """Concatenate the bounds of each set in registration order."""
        bounds = []
        for constraint_set in self._constraint_sets:
            set_bounds = list(constraint_set.get_bounds())
            if len(set_bounds) != constraint_set.size:
                raise InconsistentVectorLengthError(
                    f"Constraint set {constraint_set.name} returned {len(set_bounds)} bounds, "
                    f"declared {constraint_set.size}."
                )
            bounds.extend(set_bounds)
        return bounds

    def get_jacobian(self) -> sparse.coo_matrix:
        """Stack the jacobian of each set at its row offset."""
        self._ensure_updated()
        if self._frozen and self._jacobian_cache is not None:
            return self._jacobian_cache.copy()

        num_variables = self._variables.get_total_count()
        jacobian = stack_sparse_blocks(
            (
                (start_index, 0, constraint_set.get_jacobian(), (constraint_set.size, num_variables))
                for constraint_set, start_index, _ in self.iter_with_slices()
            ),
            shape=(self.get_total_count(), num_variables),
        )

        if self._frozen:
            self._check_sparsity_pattern(jacobian)
        self._jacobian_cache = jacobian
        return jacobian.copy()

    def _check_sparsity_pattern(self, jacobian: sparse.coo_matrix):
        """Record the pattern at its first frozen assembly and compare against it afterwards."""
        if self._sparsity_pattern is None:
            self._sparsity_pattern = (jacobian.row.copy(), jacobian.col.copy())
            LOG.info(f"Recorded jacobian sparsity pattern with {jacobian.nnz} structural nonzeros.")
            return

        rows, cols = self._sparsity_pattern
        if not (np.array_equal(rows, jacobian.row) and np.array_equal(cols, jacobian.col)):
            raise SparsityPatternChangedError(
                f"Jacobian structure changed from {rows.size} to {jacobian.nnz} nonzeros or moved coordinates. "
                "Constraint sets must report the same structural entries at every evaluation."
            )

    def get_sparsity_pattern(self) -> tuple[np.ndarray, np.ndarray]:
        """Get the frozen (rows, cols) pattern, assembling the jacobian if not yet recorded."""
        if self._sparsity_pattern is None:
            if not self._frozen:
                raise ContractViolationError("Sparsity pattern is only defined once the layout is frozen.")
            self.get_jacobian()
        rows, cols = self._sparsity_pattern
        return rows.copy(), cols.copy()

    def __iter__(self) -> Iterator[ConstraintSet]:
        return iter(self._constraint_sets)

    def __len__(self) -> int:
        return len(self._constraint_sets)
