"""Dense linear solves for the Newton step.

Each Newton iteration solves the square system

    J(y) delta = -F(y)

for a small dense Jacobian. The solves here never raise on a degenerate
matrix: they return the step together with a ``success`` flag so the caller
can stop instead of propagating NaN or Inf into the next iterate. This keeps
them usable inside ``jax.jit``.

Two methods are available:

- ``"lu"``: LU factorization with partial pivoting. The matrix is declared
  singular when a pivot is negligible relative to the largest pivot, which
  is how LAPACK's ``getrf`` detects exact singularity, extended with a
  relative threshold for numerically degenerate matrices.
- ``"lstsq"``: minimum-norm least-squares step via SVD. Rank-deficient
  Jacobians still produce a finite step.
"""

from typing import NamedTuple

import jax.numpy as jnp
import jax.scipy.linalg as jsl
from beartype import beartype
from jaxtyping import Array, Bool, Float, jaxtyped

LINEAR_SOLVERS = ("lu", "lstsq")


class LinearSolveResult(NamedTuple):
    """Result from a linear solve.

    Attributes:
        delta: The solution vector (meaningless when success is False).
        success: Whether the matrix was regular and the solution finite.
    """

    delta: Float[Array, " n"]
    success: Bool[Array, ""]


@jaxtyped(typechecker=beartype)
def lu_solve(
    matrix: Float[Array, "n n"],
    rhs: Float[Array, " n"],
    pivot_rtol: float | None = None,
) -> LinearSolveResult:
    """Solve matrix @ x = rhs with LU decomposition and partial pivoting.

    Args:
        matrix: Square coefficient matrix.
        rhs: Right-hand side.
        pivot_rtol: Relative pivot threshold. A pivot ``|U_ii|`` at or below
            ``pivot_rtol * max_j |U_jj|`` marks the matrix singular.
            Defaults to ``n * eps`` of the matrix dtype.

    Returns:
        LinearSolveResult with the solution and a regularity flag.
    """
    n = matrix.shape[0]
    if pivot_rtol is None:
        pivot_rtol = n * float(jnp.finfo(matrix.dtype).eps)

    lu, piv = jsl.lu_factor(matrix)
    pivots = jnp.abs(jnp.diag(lu))

    # An all-zero matrix has a zero threshold, so the <= still flags it
    threshold = pivot_rtol * jnp.max(pivots)
    singular = jnp.any(pivots <= threshold) | ~jnp.all(jnp.isfinite(lu))

    delta = jsl.lu_solve((lu, piv), rhs)
    success = ~singular & jnp.all(jnp.isfinite(delta))

    return LinearSolveResult(delta=delta, success=success)


@jaxtyped(typechecker=beartype)
def lstsq_solve(
    matrix: Float[Array, "n n"],
    rhs: Float[Array, " n"],
) -> LinearSolveResult:
    """Minimum-norm least-squares solution of matrix @ x = rhs.

    Args:
        matrix: Square coefficient matrix, possibly rank deficient.
        rhs: Right-hand side.

    Returns:
        LinearSolveResult; success is False only for non-finite output.
    """
    delta, _, _, _ = jnp.linalg.lstsq(matrix, rhs)
    return LinearSolveResult(delta=delta, success=jnp.all(jnp.isfinite(delta)))


def solve_linear(
    matrix: Float[Array, "n n"],
    rhs: Float[Array, " n"],
    method: str = "lu",
    pivot_rtol: float | None = None,
) -> LinearSolveResult:
    """Dispatch to the requested dense solver.

    Args:
        matrix: Square coefficient matrix.
        rhs: Right-hand side.
        method: ``"lu"`` (default) or ``"lstsq"``.
        pivot_rtol: Pivot threshold forwarded to :func:`lu_solve`.

    Returns:
        LinearSolveResult from the selected method.
    """
    if method == "lu":
        return lu_solve(matrix, rhs, pivot_rtol)
    if method == "lstsq":
        return lstsq_solve(matrix, rhs)
    raise ValueError(
        f"Unknown linear solver {method!r}; expected one of {LINEAR_SOLVERS}"
    )
