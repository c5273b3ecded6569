"""Stationarity systems for the Newton solver.

A problem supplies the residual of a Lagrangian stationarity system and its
closed-form Jacobian. The solver treats both as opaque pure functions and
never differentiates them, so problem authors are responsible for the
Jacobian being correct (``newton_jax.utils.jacobian_error`` helps check it).
"""

import abc
from typing import Any

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float

from newton_jax.projection import Projection


class AbstractStationarityProblem(eqx.Module):
    """Interface for a square nonlinear system F(y) = 0 with analytic J(y)."""

    @property
    @abc.abstractmethod
    def labels(self) -> tuple[str, ...]:
        """Names of the unknowns, in state-vector order."""

    @abc.abstractmethod
    def residual(self, y: Float[Array, " n"], args: Any = None) -> Float[Array, " n"]:
        """Evaluate F(y)."""

    @abc.abstractmethod
    def jacobian(self, y: Float[Array, " n"], args: Any = None) -> Float[Array, "n n"]:
        """Evaluate J(y) with J[i, j] = dF_i/dy_j."""

    @property
    def size(self) -> int:
        return len(self.labels)

    def initial_guess(self) -> Float[Array, " n"]:
        return jnp.ones(self.size)


class LinearObjectiveKKT(AbstractStationarityProblem):
    """Stationarity system of a linear objective with mixed constraints.

    Objective ``f(x) = c1 x1 + c2 x2`` with the Lagrangian

        L = f + l1 g1 + l2 g2 + l3 g3 + mu1 h1

    where

        g1 = x1 + x2 - capacity     (inequality, g1 <= 0)
        g2 = -x1                    (inequality)
        g3 = -x2                    (inequality)
        h1 = x1^2 + x2^2 - radius_sq

    Unknowns are ``(x1, x2, l1, l2, l3, mu1)``. The system treats every
    constraint as active: both partial derivatives of L in x, plus the
    constraint functions themselves. With the default data the three
    "active" linear constraints are incompatible (x1 = x2 = 0 and
    x1 + x2 = 4), so the system has no root and its Jacobian is rank
    deficient everywhere: the four constraint rows F3..F6 only involve
    x1 and x2. From the default guess of six ones, the LU solve therefore
    ends the run with ``SINGULAR_JACOBIAN``; the run only exhausts its
    iteration budget (``MAX_ITERATIONS``) with ``linear_solver="lstsq"``.

    Attributes:
        cost: Objective coefficients (c1, c2).
        capacity: Right-hand side of g1.
        radius_sq: Squared radius of h1.
    """

    cost: tuple[float, float] = (3.0, 4.0)
    capacity: float = 4.0
    radius_sq: float = 4.0

    @property
    def labels(self) -> tuple[str, ...]:
        return ("x1", "x2", "lambda1", "lambda2", "lambda3", "mu1")

    @property
    def kkt_projection(self) -> tuple[int, ...]:
        """Clamp only the inequality multipliers l1, l2, l3."""
        free, nonneg = Projection.NONE, Projection.NON_NEGATIVE
        return (free, free, nonneg, nonneg, nonneg, free)

    def residual(self, y: Float[Array, " n"], args: Any = None) -> Float[Array, " n"]:
        x1, x2, l1, l2, l3, mu1 = y
        c1, c2 = self.cost
        return jnp.stack(
            [
                c1 + l1 - l2 + 2 * mu1 * x1,  # dL/dx1
                c2 + l1 - l3 + 2 * mu1 * x2,  # dL/dx2
                x1 + x2 - self.capacity,  # g1
                -x1,  # g2
                -x2,  # g3
                x1**2 + x2**2 - self.radius_sq,  # h1
            ]
        )

    def jacobian(self, y: Float[Array, " n"], args: Any = None) -> Float[Array, "n n"]:
        x1, x2, _, _, _, mu1 = y
        zero = jnp.zeros_like(x1)
        one = jnp.ones_like(x1)
        rows = [
            [2 * mu1, zero, one, -one, zero, 2 * x1],
            [zero, 2 * mu1, one, zero, -one, 2 * x2],
            [one, one, zero, zero, zero, zero],
            [-one, zero, zero, zero, zero, zero],
            [zero, -one, zero, zero, zero, zero],
            [2 * x1, 2 * x2, zero, zero, zero, zero],
        ]
        return jnp.stack([jnp.stack(row) for row in rows])

    def objective(self, y: Float[Array, " n"]) -> Float[Array, ""]:
        c1, c2 = self.cost
        return c1 * y[0] + c2 * y[1]

    def constraints(self, y: Float[Array, " n"]) -> Float[Array, " 3"]:
        """Inequality constraint values (g1, g2, g3)."""
        x1, x2 = y[0], y[1]
        return jnp.stack([x1 + x2 - self.capacity, -x1, -x2])

    def complementarity(self, y: Float[Array, " n"]) -> Float[Array, " 3"]:
        """Products l_i * g_i(x); all zero at a KKT point."""
        return y[2:5] * self.constraints(y)
