"""Define the bounds attached to optimization variables and constraints."""

from dataclasses import dataclass

import numpy as np

INF = np.inf


class InvalidBoundError(ValueError):
    """Raise when the lower end of a bound exceeds its upper end."""


@dataclass(frozen=True)
class Bound:
    """Define a closed interval [lower, upper] for a single scalar.

    Either end may be infinite to describe a one-sided or free scalar.
    """

    lower: float = -INF
    upper: float = INF

    def __post_init__(self):
        """Validate the interval is not empty."""
        if np.isnan(self.lower) or np.isnan(self.upper):
            raise InvalidBoundError(f"Bound ends must not be NaN, got [{self.lower}, {self.upper}].")
        if self.lower > self.upper:
            raise InvalidBoundError(f"Lower bound {self.lower} exceeds upper bound {self.upper}.")

    def violation(self, value: float) -> float:
        """Get the distance of value outside of the interval, zero when inside."""
        if np.isnan(value):
            return INF
        if value < self.lower:
            return float(self.lower - value)
        if value > self.upper:
            return float(value - self.upper)
        return 0.0

    @property
    def is_equality(self) -> bool:
        """Whether the interval collapses to a single value."""
        return self.lower == self.upper


NO_BOUND = Bound(-INF, INF)
BOUND_ZERO = Bound(0.0, 0.0)
BOUND_GREATER_ZERO = Bound(0.0, INF)
BOUND_SMALLER_ZERO = Bound(-INF, 0.0)


def bounds_to_arrays(bounds: list[Bound]) -> tuple[np.ndarray, np.ndarray]:
    """Split a sequence of bounds into lower and upper arrays for solver consumption."""
    lower = np.array([bound.lower for bound in bounds], dtype=float)
    upper = np.array([bound.upper for bound in bounds], dtype=float)
    return lower, upper
