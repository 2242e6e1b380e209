"""
Levenberg-Marquardt refinement of the joint calibration problem.

Each iteration solves the damped normal equations

    (J^T J + lambda I) delta = J^T r

restricted to the free parameters, in variables scaled by the diagonal of
J^T J so that one damping value suits focal lengths in pixels and distortion
coefficients alike. A step is accepted only if it lowers the total squared
residual; otherwise lambda grows and the same iteration is retried.
"""

from __future__ import annotations

import enum
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from rigcalib.core.residuals import Evaluation, ReprojectionProblem
from rigcalib.core.solvers import LinearSolver, SVDSolver
from rigcalib.core.types import DidNotConverge, TermCriteria, TerminationStatus
from rigcalib.utils.logging import get_logger

logger = get_logger("core.optimizer")


class OptimizerState(enum.Enum):
    """Lifecycle of one refinement run."""
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    DIVERGED = "diverged"


_STATUS = {
    OptimizerState.CONVERGED: TerminationStatus.CONVERGED,
    OptimizerState.MAX_ITERATIONS_REACHED: TerminationStatus.MAX_ITERATIONS_REACHED,
    OptimizerState.DIVERGED: TerminationStatus.DIVERGED,
}


@dataclass
class OptimizationResult:
    """Outcome of a refinement run.

    Attributes:
        x: Best parameter vector found.
        cost: Sum of squared residuals at ``x``.
        initial_cost: Sum of squared residuals at the starting point.
        iterations: Number of accepted steps.
        status: How the run ended.
        evaluation: Residuals at ``x`` (without Jacobian).
    """
    x: NDArray[np.float64]
    cost: float
    initial_cost: float
    iterations: int
    status: TerminationStatus
    evaluation: Evaluation

    @property
    def converged(self) -> bool:
        return self.status is TerminationStatus.CONVERGED


class LevenbergMarquardt:
    """Damped Gauss-Newton optimizer over a :class:`ReprojectionProblem`.

    Args:
        problem: Residual/Jacobian provider.
        criteria: Termination criteria.
        solver: Linear solver for the damped normal equations.
        initial_damping: Starting lambda (in scaled variables).
        damping_factor: Multiplier applied on rejection, divisor on acceptance.
        max_damping: Lambda above which no step can lower the cost any more.
    """

    MIN_DAMPING = 1e-12

    def __init__(
        self,
        problem: ReprojectionProblem,
        criteria: Optional[TermCriteria] = None,
        solver: Optional[LinearSolver] = None,
        initial_damping: float = 1e-3,
        damping_factor: float = 10.0,
        max_damping: float = 1e16,
    ):
        self.problem = problem
        self.layout = problem.layout
        self.criteria = criteria or TermCriteria()
        self.solver = solver or SVDSolver()
        self.initial_damping = initial_damping
        self.damping_factor = damping_factor
        self.max_damping = max_damping
        self.state = OptimizerState.INITIALIZED

    def _finish(
        self,
        state: OptimizerState,
        x: NDArray[np.float64],
        cost: float,
        initial_cost: float,
        iterations: int,
    ) -> OptimizationResult:
        self.state = state
        status = _STATUS[state]
        if state is OptimizerState.MAX_ITERATIONS_REACHED and self.criteria.uses_eps:
            message = (
                f"Levenberg-Marquardt stopped after {iterations} iterations without "
                f"reaching epsilon={self.criteria.epsilon:g}"
            )
            logger.warning(message)
            warnings.warn(message, DidNotConverge, stacklevel=3)
        logger.debug(f"LM finished: {status.value}, cost {initial_cost:.6e} -> {cost:.6e}")
        return OptimizationResult(
            x=x,
            cost=cost,
            initial_cost=initial_cost,
            iterations=iterations,
            status=status,
            evaluation=self.problem.evaluate(x, with_jacobian=False),
        )

    def run(self, x0: NDArray[np.float64]) -> OptimizationResult:
        """Refine ``x0``; the returned cost never exceeds the initial one."""
        criteria = self.criteria
        layout = self.layout
        x = np.array(x0, dtype=np.float64, copy=True)
        S = layout.selection_matrix()

        self.state = OptimizerState.ITERATING
        evaluation = self.problem.evaluate(x)
        cost = evaluation.cost
        initial_cost = cost
        iterations = 0

        if not np.isfinite(cost):
            logger.error("Initial residuals are not finite")
            return self._finish(OptimizerState.DIVERGED, x, cost, initial_cost, 0)
        if layout.n_free == 0:
            return self._finish(OptimizerState.CONVERGED, x, cost, initial_cost, 0)

        damping = self.initial_damping
        identity = np.eye(layout.n_free)

        while True:
            if criteria.uses_count and iterations >= criteria.max_count:
                return self._finish(
                    OptimizerState.MAX_ITERATIONS_REACHED, x, cost, initial_cost, iterations
                )
            if cost == 0.0:
                return self._finish(OptimizerState.CONVERGED, x, cost, initial_cost, iterations)

            JtJ, Jtr = evaluation.normal_equations()
            A = S.T @ JtJ @ S
            g = S.T @ Jtr

            diag = np.diag(A).copy()
            diag[diag <= 0.0] = 1.0
            scale = 1.0 / np.sqrt(diag)
            A_scaled = A * np.outer(scale, scale)
            g_scaled = g * scale

            accepted = False
            while damping <= self.max_damping:
                step = scale * self.solver.solve(A_scaled + damping * identity, g_scaled)
                x_trial = layout.apply_step(x, step)
                trial = self.problem.evaluate(x_trial)
                trial_cost = trial.cost
                if np.isfinite(trial_cost) and trial_cost < cost:
                    accepted = True
                    break
                damping *= self.damping_factor

            if not accepted:
                # No damping gives descent: x is stationary to working precision
                logger.debug(f"Damping saturated at iteration {iterations}")
                return self._finish(OptimizerState.CONVERGED, x, cost, initial_cost, iterations)

            iterations += 1
            change = np.linalg.norm(x_trial - x) / max(np.linalg.norm(x), np.finfo(float).tiny)
            reduction = (cost - trial_cost) / cost
            logger.debug(
                f"LM iteration {iterations}: cost {cost:.6e} -> {trial_cost:.6e}, "
                f"lambda={damping:.1e}, relative change {change:.3e}"
            )

            x, evaluation, cost = x_trial, trial, trial_cost
            damping = max(damping / self.damping_factor, self.MIN_DAMPING)

            if criteria.uses_eps and (change <= criteria.epsilon or reduction <= criteria.epsilon):
                return self._finish(OptimizerState.CONVERGED, x, cost, initial_cost, iterations)
