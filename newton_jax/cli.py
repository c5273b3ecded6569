"""
Command line driver: solve the reference KKT system and print diagnostics.

Exit status is 0 when the solver converges and 1 otherwise.
"""

import logging
from typing import Optional

import click
import jax

from newton_jax.linear import LINEAR_SOLVERS
from newton_jax.problems import LinearObjectiveKKT
from newton_jax.solver import NewtonRaphson, run
from newton_jax.types import SolverResult

logger = logging.getLogger(__name__)

_LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def _parse_guess(ctx: click.Context, param: click.Parameter, value: Optional[str]):
    if value is None:
        return None
    try:
        return [float(item) for item in value.split(",") if item.strip()]
    except ValueError:
        raise click.BadParameter(
            "expected comma-separated numbers, e.g. 1,1,1,1,1,1"
        ) from None


@click.command()
@click.option(
    "--initial-guess",
    "-x",
    callback=_parse_guess,
    help="Comma-separated starting values for x1,x2,lambda1,lambda2,lambda3,mu1 "
    "(default: all ones)",
)
@click.option(
    "--max-iterations",
    "-n",
    type=click.IntRange(min=0),
    default=100,
    show_default=True,
    help="Newton step budget",
)
@click.option(
    "--tolerance",
    "-t",
    type=click.FloatRange(min=0.0),
    default=1e-6,
    show_default=True,
    help="Convergence threshold on the residual norm",
)
@click.option(
    "--projection",
    type=click.Choice(["all", "kkt", "none"]),
    default="all",
    show_default=True,
    help="Components clamped at zero after each step: all unknowns, "
    "only the inequality multipliers, or none",
)
@click.option(
    "--linear-solver",
    type=click.Choice(LINEAR_SOLVERS),
    default="lu",
    show_default=True,
    help="Dense solver for the Newton step",
)
@click.option(
    "--x64/--no-x64",
    default=True,
    show_default=True,
    help="Use 64-bit floating point",
)
@click.option("--verbose", "-v", count=True, help="-v for INFO, -vv for DEBUG")
def main(
    initial_guess: Optional[list[float]],
    max_iterations: int,
    tolerance: float,
    projection: str,
    linear_solver: str,
    x64: bool,
    verbose: int,
) -> None:
    """
    Solve the Lagrangian stationarity system with Newton's method.

    Example:
        newton-kkt
        newton-kkt --linear-solver lstsq --projection kkt -v
    """
    logging.basicConfig(
        level=_LOG_LEVELS[min(verbose, len(_LOG_LEVELS) - 1)],
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    jax.config.update("jax_enable_x64", x64)

    problem = LinearObjectiveKKT()
    y0 = problem.initial_guess() if initial_guess is None else initial_guess
    if len(y0) != problem.size:
        raise click.BadParameter(
            f"expected {problem.size} values, got {len(y0)}",
            param_hint="--initial-guess",
        )

    policy = {"all": "nonnegative", "kkt": problem.kkt_projection, "none": "none"}

    solver = NewtonRaphson(
        atol=tolerance,
        max_steps=max_iterations,
        jacobian_fn=problem.jacobian,
        projection=policy[projection],
        linear_solver=linear_solver,
    )
    logger.info(
        "solving %d-variable system (max_iterations=%d, tolerance=%g, solver=%s)",
        problem.size,
        max_iterations,
        tolerance,
        linear_solver,
    )
    solution = run(solver, problem.residual, y0)

    if solution.result == SolverResult.MAX_ITERATIONS:
        raise click.ClickException(
            f"No solution found after {solution.num_steps} iterations "
            f"(residual norm {solution.residual_norm:.6g})."
        )
    if solution.result == SolverResult.SINGULAR_JACOBIAN:
        raise click.ClickException(
            f"No solution found: singular Jacobian after {solution.num_steps} "
            "iterations. Try --linear-solver lstsq or another starting point."
        )
    if solution.result == SolverResult.NON_FINITE:
        raise click.ClickException(
            f"No solution found: residual became non-finite after "
            f"{solution.num_steps} iterations."
        )

    y = solution.value
    click.echo(f"Solution found in {solution.num_steps} iterations:")
    for label, value in zip(problem.labels, y.tolist()):
        click.echo(f"{label} = {value}")
    click.echo(f"Objective f(x*) = {float(problem.objective(y))}")

    click.echo("\nComplementarity check:")
    for i, product in enumerate(problem.complementarity(y).tolist(), start=1):
        click.echo(f"lambda{i} * g{i}(x) = {product}")
