"""Define optimization variable sets and the container laying them out in a flat vector."""

from collections.abc import Iterator, Sequence

import numpy as np

from nlp_util.logconfig import create_logger
from trajopt_nlp.bounds import NO_BOUND, Bound

LOG = create_logger(__name__)


class ContractViolationError(RuntimeError):
    """Raise when a caller breaks the structural contract of the nlp, not recoverable."""


class InconsistentVectorLengthError(ContractViolationError):
    """Raise when a flat vector or a block does not have the length of the registered layout."""


class RegistrationFrozenError(ContractViolationError):
    """Raise when registering a component after the layout is frozen."""


class ComponentNotFoundError(KeyError):
    """Raise when no registered component carries the requested name."""


class VariableSet:
    """Base of a named block of decision variables with a fixed size.

    Derived classes decide how values are stored, e.g. as spline node values
    or phase durations, and only need to round trip them through flat slices.
    """

    def __init__(self, name: str, size: int):
        """Construct with the name and the immutable number of variables."""
        if size < 0:
            raise ValueError(f"Variable set {name} cannot have a negative size {size}.")
        self.name = name
        self._size = int(size)

    @property
    def size(self) -> int:
        """Get the number of scalar variables in this set."""
        return self._size

    def get_values(self) -> np.ndarray:
        """Get the current values as a 1D array of length size."""
        raise NotImplementedError(f"get_values is not implemented for {self.__class__.__name__}.")

    def set_values(self, values: np.ndarray):
        """Overwrite the current values from a 1D array of length size."""
        raise NotImplementedError(f"set_values is not implemented for {self.__class__.__name__}.")

    def get_bounds(self) -> list[Bound]:
        """Get the bound of each variable, unbounded unless overridden."""
        return [NO_BOUND] * self.size


class VectorVariableSet(VariableSet):
    """A variable set storing its values in a plain float vector."""

    def __init__(self, name: str, initial_values: Sequence[float], bounds: Sequence[Bound] = None):
        values = np.array(initial_values, dtype=float).reshape(-1)
        super().__init__(name, values.size)
        self._values = values

        if bounds is not None and len(bounds) != self.size:
            raise InconsistentVectorLengthError(
                f"Variable set {name} has {self.size} variables but {len(bounds)} bounds."
            )
        self._bounds = list(bounds) if bounds is not None else [NO_BOUND] * self.size

    def get_values(self) -> np.ndarray:
        return self._values.copy()

    def set_values(self, values: np.ndarray):
        values = np.asarray(values, dtype=float)
        if values.shape != (self.size,):
            raise InconsistentVectorLengthError(
                f"Variable set {self.name} expects {self.size} values, got shape {values.shape}."
            )
        self._values = values.copy()

    def get_bounds(self) -> list[Bound]:
        return list(self._bounds)


class VariableContainer:
    """Lay out registered variable sets in one flat vector.

    The flat position of the i-th scalar of the k-th registered set is the
    summed size of sets 0..k-1 plus i. The offsets are cached at freeze, after
    which the layout can no longer change.
    """

    def __init__(self):
        self._variable_sets: list[VariableSet] = []
        self._offsets: list[int] = None
        self._frozen = False

    def add_variable_set(self, variable_set: VariableSet):
        """Append a variable set to the end of the flat layout."""
        if self._frozen:
            raise RegistrationFrozenError(f"Cannot add variable set {variable_set.name} after the layout is frozen.")
        if any(existing.name == variable_set.name for existing in self._variable_sets):
            LOG.warning(f"Variable set name {variable_set.name} is registered more than once.")
        self._variable_sets.append(variable_set)

    def freeze(self):
        """Freeze the layout and cache the offset of every set."""
        if self._frozen:
            return
        self._offsets = self._compute_offsets()
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def _compute_offsets(self) -> list[int]:
        """Compute the start index of each set, with the total count appended."""
        offsets = [0]
        for variable_set in self._variable_sets:
            offsets.append(offsets[-1] + variable_set.size)
        return offsets

    def _get_offsets(self) -> list[int]:
        return self._offsets if self._frozen else self._compute_offsets()

    def get_total_count(self) -> int:
        """Get the number of scalar optimization variables over all sets."""
        return self._get_offsets()[-1]

    def get_slice(self, name: str) -> tuple[int, int]:
        """Get the start and end flat indices of the first set with the given name."""
        offsets = self._get_offsets()
        for index, variable_set in enumerate(self._variable_sets):
            if variable_set.name == name:
                return offsets[index], offsets[index + 1]
        raise ComponentNotFoundError(f"Variable set {name} is not registered.")

    def iter_with_slices(self) -> Iterator[tuple[VariableSet, int, int]]:
        """Iterate over (set, start index, end index) in registration order."""
        offsets = self._get_offsets()
        for index, variable_set in enumerate(self._variable_sets):
            yield variable_set, offsets[index], offsets[index + 1]

    def get_variable_set(self, name: str) -> VariableSet:
        """Get the first registered set with the given name."""
        for variable_set in self._variable_sets:
            if variable_set.name == name:
                return variable_set
        raise ComponentNotFoundError(f"Variable set {name} is not registered.")

    def set_variables(self, flat_values: Sequence[float]):
        """Distribute contiguous slices of the flat vector into each set in registration order."""
        flat_values = np.asarray(flat_values, dtype=float)
        if flat_values.shape != (expected_length := self.get_total_count(),):
            raise InconsistentVectorLengthError(
                f"Flat variable vector has shape {flat_values.shape}, expected ({expected_length},)."
            )

        for variable_set, start_index, end_index in self.iter_with_slices():
            variable_set.set_values(flat_values[start_index:end_index].copy())

    def get_flat_values(self) -> np.ndarray:
        """Concatenate the current values of each set in registration order."""
        values_collection = []
        for variable_set in self._variable_sets:
            values = np.asarray(variable_set.get_values(), dtype=float).reshape(-1)
            if values.size != variable_set.size:
                raise InconsistentVectorLengthError(
                    f"Variable set {variable_set.name} returned {values.size} values, declared {variable_set.size}."
                )
            values_collection.append(values)
        return np.concatenate(values_collection) if values_collection else np.zeros(0)

    def get_bounds(self) -> list[Bound]:
        """Concatenate the bounds of each set in registration order."""
        bounds = []
        for variable_set in self._variable_sets:
            set_bounds = list(variable_set.get_bounds())
            if len(set_bounds) != variable_set.size:
                raise InconsistentVectorLengthError(
                    f"Variable set {variable_set.name} returned {len(set_bounds)} bounds, declared {variable_set.size}."
                )
            bounds.extend(set_bounds)
        return bounds

    def __iter__(self) -> Iterator[VariableSet]:
        return iter(self._variable_sets)

    def __len__(self) -> int:
        return len(self._variable_sets)
