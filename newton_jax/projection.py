"""Bound projection applied after each Newton step.

After ``y <- y + delta`` the solver clamps selected components to be
non-negative:

    y_i <- max(y_i, 0)    for every i tagged NON_NEGATIVE

The default policy ("nonnegative") tags every component. For a KKT system
that is only correct for inequality multipliers (and primal variables with
explicit sign bounds). Equality multipliers are sign-free in standard KKT
theory, so clamping them can move the iteration away from a genuine
stationary point. Pass a per-component policy to tag only the unknowns that
really are bounded.
"""

from collections.abc import Sequence

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from newton_jax.types import ProjectionPolicy


class Projection:
    """Per-component projection tags."""

    NONE = 0
    NON_NEGATIVE = 1


def projection_mask(policy: ProjectionPolicy, n: int) -> tuple[bool, ...]:
    """Resolve a projection policy into a static mask.

    Args:
        policy: ``"nonnegative"`` (clamp all), ``"none"`` (clamp nothing), or
            a sequence or 1-D array of ``n`` Projection tags or bools.
        n: Number of unknowns.

    Returns:
        Tuple of n bools, True where the component is clamped at zero.
    """
    if isinstance(policy, str):
        if policy == "nonnegative":
            return (True,) * n
        if policy == "none":
            return (False,) * n
        raise ValueError(
            f"Unknown projection policy {policy!r}; "
            "expected 'nonnegative', 'none' or a per-component sequence"
        )

    if isinstance(policy, (np.ndarray, jax.Array)):
        policy = np.asarray(policy).tolist()

    if not isinstance(policy, Sequence):
        raise TypeError(
            f"Projection policy must be a string or a sequence, got {type(policy)}"
        )
    if len(policy) != n:
        raise ValueError(
            f"Projection policy has {len(policy)} entries but the state has {n}"
        )

    mask = []
    for tag in policy:
        if tag not in (Projection.NONE, Projection.NON_NEGATIVE):
            raise ValueError(f"Invalid projection tag {tag!r}")
        mask.append(bool(tag))
    return tuple(mask)


@jaxtyped(typechecker=beartype)
def project(
    y: Float[Array, " n"],
    mask: tuple[bool, ...],
) -> Float[Array, " n"]:
    """Clamp the masked components of y at zero.

    Args:
        y: Iterate after the Newton update.
        mask: Static mask from :func:`projection_mask`.

    Returns:
        Projected iterate.
    """
    if not any(mask):
        return y
    # Static numpy mask (not a traced array) keeps this JIT friendly
    clamp = np.asarray(mask, dtype=bool)
    return jnp.where(clamp, jnp.maximum(y, 0.0), y)
