"""Newton-Raphson solver implementation using Optimistix.

This module contains the Newton-Raphson root finder that extends
optimistix.AbstractRootFinder to solve small dense nonlinear systems
F(y) = 0, typically the stationarity system of a Lagrangian (gradient of
the Lagrangian, primal feasibility and complementarity proxies).

Each iteration:

1. Evaluates the residual F(y) and stops if ||F(y)||_2 is below tolerance.
2. Evaluates the user-supplied analytic Jacobian J(y).
3. Solves the dense system J delta = -F (LU by default).
4. Updates y <- y + delta and projects the bounded components onto
   y_i >= 0.

There is no line search or trust region. A singular Jacobian stops the
iteration with a distinguishable result instead of producing a NaN step.

The solver can be driven three ways:

- :func:`solve`: the plain ``(converged, y)`` interface with single-argument
  residual and Jacobian functions.
- :func:`run`: eager driver returning a :class:`NewtonSolution` with a
  termination code and logging for each step.
- ``optimistix.root_find(fn, NewtonRaphson(...), y0)``: compiled.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
import optimistix._misc as optx_misc
from jaxtyping import Array, ArrayLike, Bool, Float, Int

from newton_jax.linear import LINEAR_SOLVERS, solve_linear
from newton_jax.projection import project, projection_mask
from newton_jax.types import JacobianFn, ProjectionPolicy, ResidualFn, SolverResult

logger = logging.getLogger(__name__)

# Raised when a Jacobian needs concrete values (np.asarray, if on y, int(y))
_UNTRACEABLE_ERRORS = (
    jax.errors.ConcretizationTypeError,
    jax.errors.TracerArrayConversionError,
    jax.errors.TracerIntegerConversionError,
)


class NewtonError(RuntimeError):
    """A Newton run stopped without a usable step.

    Attributes:
        solution: The NewtonSolution at the point of failure. Its value is
            the last finite iterate.
    """

    def __init__(self, message: str, solution: "NewtonSolution"):
        super().__init__(message)
        self.solution = solution


class SingularJacobianError(NewtonError):
    """The Jacobian could not be solved against at the current iterate."""


class NonFiniteResidualError(NewtonError):
    """The residual evaluated to NaN or Inf."""


class NewtonState(eqx.Module):
    """State for the Newton-Raphson solver.

    Attributes:
        step_count: Number of Newton steps taken so far.
        f_val: Residual F(y_k) at the current iterate.
        f_norm: Euclidean norm of f_val.
        f_norm_init: Residual norm at the initial point (for rtol).
        linear_solve_failed: Whether the last linear solve was degenerate.
    """

    step_count: Int[Array, ""]
    f_val: Float[Array, " n"]
    f_norm: Float[Array, ""]
    f_norm_init: Float[Array, ""]
    linear_solve_failed: Bool[Array, ""]


class NewtonSolution(eqx.Module):
    """Outcome of an eager Newton run.

    Attributes:
        value: Final iterate (the root when converged).
        result: A SolverResult code.
        num_steps: Number of Newton steps taken.
        residual_norm: ||F(value)||_2.
    """

    value: Float[Array, " n"]
    result: int
    num_steps: int
    residual_norm: float

    @property
    def converged(self) -> bool:
        return self.result == SolverResult.SUCCESS


class NewtonRaphson(optx.AbstractRootFinder):
    """Newton-Raphson root finder with an analytic Jacobian.

    The residual function is the ``fn`` passed to init/step (or to
    ``optimistix.root_find``); the Jacobian is a field of the solver because
    it is never computed by differentiation.

    Convergence is declared when

        ||F(y)||_2 < atol + rtol * ||F(y_0)||_2

    which, with the default rtol = 0, is the plain absolute test.

    Attributes:
        rtol: Relative tolerance on the residual norm (default 0).
        atol: Absolute tolerance on the residual norm.
        max_steps: Maximum number of Newton steps for :func:`run`.
        jacobian_fn: Analytic Jacobian jacobian_fn(y, args) -> J(y).
        projection: Projection policy applied after every step (see
            :mod:`newton_jax.projection`). The default clamps every
            component at zero.
        linear_solver: ``"lu"`` (default) or ``"lstsq"``.
        pivot_rtol: Relative pivot threshold for the LU singularity test.

    Example:
        >>> import jax.numpy as jnp
        >>> from newton_jax import NewtonRaphson, run
        >>>
        >>> def residual(y, args):
        ...     return jnp.array([y[0] ** 2 - 2.0])
        >>>
        >>> def jacobian(y, args):
        ...     return jnp.array([[2.0 * y[0]]])
        >>>
        >>> solver = NewtonRaphson(atol=1e-10, jacobian_fn=jacobian)
        >>> sol = run(solver, residual, jnp.array([1.0]))
    """

    # Convergence tolerances
    rtol: float = 0.0
    atol: float = 1e-6

    # Norm function for convergence checking (required by AbstractRootFinder)
    norm: Callable = eqx.field(static=True, default=optx_misc.two_norm)

    # Maximum iterations
    max_steps: int = 100

    # Analytic Jacobian (static - never differentiated)
    jacobian_fn: Optional[JacobianFn] = eqx.field(static=True, default=None)

    # Post-step projection (static for compilation)
    projection: ProjectionPolicy = eqx.field(static=True, default="nonnegative")

    # Linear solve parameters
    linear_solver: str = eqx.field(static=True, default="lu")
    pivot_rtol: Optional[float] = eqx.field(static=True, default=None)

    def __check_init__(self):
        """Validate the configuration.

        Called by equinox after __init__. Sequence projection policies are
        stored as tuples so the static field stays hashable.
        """
        if self.jacobian_fn is None:
            raise ValueError("NewtonRaphson requires an analytic jacobian_fn")
        if isinstance(self.max_steps, bool) or not isinstance(
            self.max_steps, (int, np.integer)
        ):
            raise ValueError(f"max_steps must be an integer, got {self.max_steps!r}")
        if self.max_steps < 0:
            raise ValueError(f"max_steps must be >= 0, got {self.max_steps}")
        if not (self.atol >= 0):
            raise ValueError(f"atol must be >= 0, got {self.atol}")
        if not (self.rtol >= 0):
            raise ValueError(f"rtol must be >= 0, got {self.rtol}")
        if self.linear_solver not in LINEAR_SOLVERS:
            raise ValueError(
                f"Unknown linear solver {self.linear_solver!r}; "
                f"expected one of {LINEAR_SOLVERS}"
            )
        if isinstance(self.projection, (np.ndarray, jax.Array)):
            object.__setattr__(
                self, "projection", tuple(np.asarray(self.projection).tolist())
            )
        if not isinstance(self.projection, (str, tuple)):
            if not isinstance(self.projection, Sequence):
                raise TypeError(
                    "projection must be a string or a sequence, "
                    f"got {type(self.projection)}"
                )
            object.__setattr__(self, "projection", tuple(self.projection))

    def _evaluate_residual(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
    ) -> tuple[Float[Array, " n"], Any]:
        """Evaluate fn and check the residual has the shape of y."""
        f_val, aux = fn(y, args)
        f_val = jnp.asarray(f_val, dtype=y.dtype)
        if f_val.shape != y.shape:
            raise ValueError(
                f"Residual has shape {f_val.shape} but the state has shape "
                f"{y.shape}; the system must be square"
            )
        return f_val, aux

    def _evaluate_jacobian(
        self,
        y: Float[Array, " n"],
        args: Any,
    ) -> Float[Array, "n n"]:
        """Evaluate the analytic Jacobian and check it is n x n."""
        n = y.shape[0]
        jac = jnp.asarray(self.jacobian_fn(y, args), dtype=y.dtype)  # type: ignore[misc]
        if jac.shape != (n, n):
            raise ValueError(f"Jacobian has shape {jac.shape}, expected {(n, n)}")
        return jac

    def _status(
        self,
        state: NewtonState,
    ) -> tuple[Bool[Array, ""], Bool[Array, ""], Bool[Array, ""]]:
        """Return (converged, singular, non_finite) for the current state."""
        threshold = self.atol + self.rtol * state.f_norm_init
        # A NaN norm compares False here, so it cannot count as converged
        converged = state.f_norm < threshold
        non_finite = ~jnp.all(jnp.isfinite(state.f_val))
        return converged, state.linear_solve_failed, non_finite

    def init(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        f_struct: Any,
        aux_struct: Any,
        tags: frozenset[object],
    ) -> NewtonState:
        """Initialize the Newton state.

        Evaluates the residual at the starting point and checks all shapes.
        The Jacobian shape is checked with an abstract trace only, so a
        starting point that already converges never evaluates it. Jacobians
        that need concrete values skip this check.

        Args:
            fn: Residual function with signature fn(y, args) -> (F(y), aux).
            y: Initial iterate.
            args: Additional arguments passed to fn and jacobian_fn.
            options: Runtime options dictionary.
            f_struct: Structure of function output (unused).
            aux_struct: Structure of auxiliary output (unused).
            tags: Lineax tags for the problem.

        Returns:
            Initial NewtonState.
        """
        if y.ndim != 1 or y.shape[0] == 0:
            raise ValueError(
                f"The state must be a non-empty 1-D array, got shape {y.shape}"
            )
        n = y.shape[0]

        f_val, _aux = self._evaluate_residual(fn, y, args)

        try:
            jac_shape = np.shape(eqx.filter_eval_shape(self.jacobian_fn, y, args))
        except _UNTRACEABLE_ERRORS:
            # NumPy or Python control flow on y; checked at each evaluation
            logger.debug("Jacobian is not traceable; skipping the shape check")
        else:
            if jac_shape != (n, n):
                raise ValueError(
                    f"Jacobian has shape {jac_shape}, expected {(n, n)}"
                )

        # Validates policy length against n
        projection_mask(self.projection, n)

        f_norm = self.norm(f_val)

        return NewtonState(
            step_count=jnp.array(0),
            f_val=f_val,
            f_norm=f_norm,
            f_norm_init=f_norm,
            linear_solve_failed=jnp.array(False),
        )

    def step(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: NewtonState,
        tags: frozenset[object],
    ) -> tuple[Float[Array, " n"], NewtonState, Any]:
        """Perform one Newton iteration.

        This method:
        1. Evaluates the Jacobian at the current iterate.
        2. Solves J delta = -F.
        3. Updates y + delta and applies the projection.
        4. Re-evaluates the residual at the new iterate.

        If the linear solve fails the iterate is left unchanged and the
        failure is recorded in the state for terminate().

        Args:
            fn: Residual function.
            y: Current iterate.
            args: Additional arguments.
            options: Runtime options.
            state: Current solver state.
            tags: Lineax tags.

        Returns:
            Tuple of (new_y, new_state, aux).
        """
        mask = projection_mask(self.projection, y.shape[0])

        jac = self._evaluate_jacobian(y, args)
        solve_result = solve_linear(
            jac, -state.f_val, method=self.linear_solver, pivot_rtol=self.pivot_rtol
        )

        y_candidate = project(y + solve_result.delta, mask)

        # Keep the last finite iterate when the step is unusable
        y_new = jnp.where(solve_result.success, y_candidate, y)

        f_val_new, aux = self._evaluate_residual(fn, y_new, args)

        new_state = NewtonState(
            step_count=state.step_count + 1,
            f_val=f_val_new,
            f_norm=self.norm(f_val_new),
            f_norm_init=state.f_norm_init,
            linear_solve_failed=~solve_result.success,
        )

        return y_new, new_state, aux

    def terminate(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: NewtonState,
        tags: frozenset[object],
    ) -> tuple[Bool[Array, ""], Any]:
        """Check if the solver should terminate.

        Terminates when the residual norm is below tolerance (success), when
        the last linear solve was singular, or when the residual is not
        finite. The step budget is enforced by the caller.

        Args:
            fn: Residual function.
            y: Current iterate.
            args: Additional arguments.
            options: Runtime options.
            state: Current solver state.
            tags: Lineax tags.

        Returns:
            Tuple of (done, result).
        """
        converged, singular, non_finite = self._status(state)

        done = converged | singular | non_finite

        result = jax.lax.cond(
            converged,
            lambda: optx.RESULTS.successful,
            lambda: jax.lax.cond(
                singular,
                lambda: optx.RESULTS.singular,
                lambda: jax.lax.cond(
                    non_finite,
                    lambda: optx.RESULTS.nonlinear_divergence,
                    lambda: optx.RESULTS.successful,  # Still running
                ),
            ),
        )

        return done, result

    def postprocess(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        aux: Any,
        args: Any,
        options: dict[str, Any],
        state: NewtonState,
        tags: frozenset[object],
        result: Any,
    ) -> tuple[Float[Array, " n"], Any, dict[str, Any]]:
        """Post-process the result.

        Returns:
            Tuple of (y, aux, stats) where stats holds the step count and
            the final residual norm.
        """
        stats = {
            "num_steps": state.step_count,
            "residual_norm": state.f_norm,
        }

        return y, aux, stats


def run(
    solver: NewtonRaphson,
    residual_fn: ResidualFn,
    y0: ArrayLike,
    args: Any = None,
) -> NewtonSolution:
    """Run the Newton iteration eagerly to completion.

    The loop checks convergence before every step, so at most
    ``solver.max_steps`` Newton steps are taken and the final iterate is
    always checked. With ``max_steps = 0`` only the initial point is checked.

    Args:
        solver: Configured NewtonRaphson solver.
        residual_fn: Residual function residual_fn(y, args) -> F(y).
        y0: Initial iterate (copied into a new array).
        args: Additional arguments for residual_fn and the Jacobian.

    Returns:
        NewtonSolution with the final iterate and termination code.
    """

    def fn(y, args):
        return residual_fn(y, args), None

    y = jnp.asarray(y0)
    if not jnp.issubdtype(y.dtype, jnp.inexact):
        y = y.astype(jnp.result_type(float))

    state = solver.init(fn, y, args, {}, None, None, frozenset())

    while True:
        converged, singular, non_finite = (bool(flag) for flag in solver._status(state))
        num_steps = int(state.step_count)
        logger.debug("step %d: ||F|| = %.6e", num_steps, float(state.f_norm))

        if converged:
            result = SolverResult.SUCCESS
            break
        if singular:
            result = SolverResult.SINGULAR_JACOBIAN
            break
        if non_finite:
            result = SolverResult.NON_FINITE
            break
        if num_steps >= solver.max_steps:
            result = SolverResult.MAX_ITERATIONS
            break

        y, state, _ = solver.step(fn, y, args, {}, state, frozenset())

    solution = NewtonSolution(
        value=y,
        result=result,
        num_steps=num_steps,
        residual_norm=float(state.f_norm),
    )

    if result == SolverResult.SUCCESS:
        logger.info(
            "converged after %d steps, ||F|| = %.3e", num_steps, solution.residual_norm
        )
    elif result == SolverResult.MAX_ITERATIONS:
        logger.warning(
            "no convergence after %d steps, ||F|| = %.3e",
            num_steps,
            solution.residual_norm,
        )
    else:
        logger.warning(
            "stopped after %d steps: %s", num_steps, SolverResult.name(result)
        )

    return solution


def solve(
    initial_state: ArrayLike,
    residual_fn: Callable[[Float[Array, " n"]], ArrayLike],
    jacobian_fn: Callable[[Float[Array, " n"]], ArrayLike],
    max_iterations: int = 100,
    tolerance: float = 1e-6,
    *,
    projection: ProjectionPolicy = "nonnegative",
    linear_solver: str = "lu",
) -> tuple[bool, Float[Array, " n"]]:
    """Solve residual_fn(y) = 0 with Newton's method.

    Non-convergence is a normal outcome reported by the flag; the last
    iterate is returned either way.

    Args:
        initial_state: Starting point of length N > 0.
        residual_fn: Pure function y -> F(y) of length N.
        jacobian_fn: Pure function y -> J(y) of shape (N, N).
        max_iterations: Newton step budget (>= 0).
        tolerance: Threshold on ||F(y)||_2 (>= 0).
        projection: Post-step projection policy. The default clamps every
            component at zero.
        linear_solver: ``"lu"`` or ``"lstsq"``.

    Returns:
        Tuple (converged, final_state).

    Raises:
        ValueError: Invalid budget, tolerance or shapes.
        SingularJacobianError: The Jacobian was singular at some iterate.
        NonFiniteResidualError: The residual became NaN or Inf.
    """
    solver = NewtonRaphson(
        atol=tolerance,
        max_steps=max_iterations,
        jacobian_fn=lambda y, args: jacobian_fn(y),
        projection=projection,
        linear_solver=linear_solver,
    )
    solution = run(solver, lambda y, args: residual_fn(y), initial_state)

    if solution.result == SolverResult.SINGULAR_JACOBIAN:
        raise SingularJacobianError(
            f"Singular Jacobian after {solution.num_steps} steps "
            f"(||F|| = {solution.residual_norm:.3e})",
            solution,
        )
    if solution.result == SolverResult.NON_FINITE:
        raise NonFiniteResidualError(
            f"Non-finite residual after {solution.num_steps} steps", solution
        )
    return solution.converged, solution.value
