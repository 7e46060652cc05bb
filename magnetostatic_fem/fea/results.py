"""FEA result container dataclasses."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np

from magnetostatic_fem.fea.errors import NonlinearNonConvergenceError


class NonlinearState(str, enum.Enum):
    """Lifecycle of a :class:`NonlinearProblem` solve."""

    INITIALIZED = "initialized"
    LINEAR_BOOTSTRAP = "linear_bootstrap"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"
    TIME_LIMIT_REACHED = "time_limit_reached"

    @property
    def is_terminal(self) -> bool:
        return self in (
            NonlinearState.CONVERGED,
            NonlinearState.MAX_ITER_REACHED,
            NonlinearState.TIME_LIMIT_REACHED,
        )


@dataclass(frozen=True)
class IterationInfo:
    """Snapshot passed to the nonlinear observer after every round."""
    iteration: int
    diff: float
    elapsed_s: float


@dataclass
class SolveResult:
    """Linear solve result."""
    q: np.ndarray
    solver_iterations: int
    residual: float
    solve_time_s: float
    solver_name: str


@dataclass
class NonlinearResult:
    """Outcome of the under-relaxed Picard iteration.

    ``q`` is the last relaxed solution whether or not the loop converged;
    ``diff_history`` holds the residual ratio of every completed round.
    """
    q: np.ndarray
    state: NonlinearState
    converged: bool
    iterations: int
    diff: float
    diff_history: list[float] = field(default_factory=list)
    solve_time_s: float = 0.0
    solver_name: str = ""

    def raise_for_status(self) -> "NonlinearResult":
        """Raise :class:`NonlinearNonConvergenceError` unless converged."""
        if not self.converged:
            raise NonlinearNonConvergenceError(
                f"Nonlinear iteration stopped in state {self.state.value} after "
                f"{self.iterations} iterations (diff {self.diff:.3e})",
                result=self,
            )
        return self
