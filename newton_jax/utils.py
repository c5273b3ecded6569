from typing import Callable, TypeVar

import jax
import jax.numpy as jnp

T = TypeVar("T")


def args_closure(
    fn: Callable[[jax.Array, T], jax.Array], args: T
) -> Callable[[jax.Array], jax.Array]:
    def wrapped(x: jax.Array) -> jax.Array:
        return fn(x, args)

    return wrapped


def jacobian_error(
    residual_fn: Callable[[jax.Array, T], jax.Array],
    jacobian_fn: Callable[[jax.Array, T], jax.Array],
    y: jax.Array,
    args: T = None,
) -> jax.Array:
    """Largest absolute difference between an analytic Jacobian and AD.

    The solver itself never differentiates; this is only a check that a
    hand-written Jacobian matches its residual.

    Args:
        residual_fn: Residual function residual_fn(y, args) -> F(y).
        jacobian_fn: Analytic Jacobian jacobian_fn(y, args) -> J(y).
        y: Point at which both are compared.
        args: Extra arguments forwarded to both functions.

    Returns:
        max |J_analytic - J_ad| as a scalar array.
    """
    analytic = jacobian_fn(y, args)
    automatic = jax.jacfwd(args_closure(residual_fn, args))(y)
    return jnp.max(jnp.abs(analytic - automatic))
