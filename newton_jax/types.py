"""Type definitions for newton-jax.

This module contains type aliases and custom types used throughout the package.
All types use jaxtyping for runtime type checking with beartype.
"""

from collections.abc import Callable, Sequence
from typing import Any, Union

from jaxtyping import Array, ArrayLike, Float, Shaped

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]
Matrix = Float[Array, "n n"]

# Residual function type: takes the unknowns and args, returns F(y)
# with the same length as y. A root of the system is F(y) = 0.
ResidualFn = Callable[[Vector, Any], Vector]

# Jacobian function type: takes the unknowns and args, returns J(y)
# where J[i, j] = dF_i/dy_j
JacobianFn = Callable[[Vector, Any], Matrix]

# Per-component projection policy: a keyword ("nonnegative" or "none")
# or one tag per component (see Projection)
ProjectionPolicy = Union[str, Sequence[int], Sequence[bool], Shaped[ArrayLike, " n"]]


# Result codes for solver termination
class SolverResult:
    """Constants for solver termination status."""

    SUCCESS = 0
    MAX_ITERATIONS = 1
    SINGULAR_JACOBIAN = 2
    NON_FINITE = 3

    _NAMES = {
        SUCCESS: "success",
        MAX_ITERATIONS: "max_iterations",
        SINGULAR_JACOBIAN: "singular_jacobian",
        NON_FINITE: "non_finite",
    }

    @classmethod
    def name(cls, code: int) -> str:
        return cls._NAMES[code]
