"""newton-jax: Newton-Raphson for Lagrangian stationarity systems in JAX.

This package provides a small dense Newton-Raphson root finder built on JAX
and the Optimistix framework. It targets square systems of a few dozen
unknowns with closed-form Jacobians, such as the KKT conditions of a
constrained problem, and reports singular Jacobians instead of stepping
with NaNs.
"""

from newton_jax.linear import LinearSolveResult, lstsq_solve, lu_solve, solve_linear
from newton_jax.problems import AbstractStationarityProblem, LinearObjectiveKKT
from newton_jax.projection import Projection, project, projection_mask
from newton_jax.solver import (
    NewtonError,
    NewtonRaphson,
    NewtonSolution,
    NewtonState,
    NonFiniteResidualError,
    SingularJacobianError,
    run,
    solve,
)
from newton_jax.types import JacobianFn, ResidualFn, SolverResult
from newton_jax.utils import jacobian_error

__all__ = [
    # Main solver
    "NewtonRaphson",
    "NewtonState",
    "NewtonSolution",
    "run",
    "solve",
    # Errors
    "NewtonError",
    "SingularJacobianError",
    "NonFiniteResidualError",
    # Types
    "ResidualFn",
    "JacobianFn",
    "SolverResult",
    # Linear solves
    "LinearSolveResult",
    "solve_linear",
    "lu_solve",
    "lstsq_solve",
    # Projection
    "Projection",
    "project",
    "projection_mask",
    # Problems
    "AbstractStationarityProblem",
    "LinearObjectiveKKT",
    # Utilities
    "jacobian_error",
]
