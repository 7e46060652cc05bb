"""Linear and nonlinear magnetostatic problem orchestrators.

``Problem`` performs a single assemble/solve pass with constant element
reluctivities. ``NonlinearProblem`` bootstraps from a linear solve and then
runs an under-relaxed Picard iteration:

1. Assemble with the current solution ``Q`` (reluctivity from ``|B|_e``).
2. Solve for ``Q'``.
3. Relax: ``Q = W * Q' + (1 - W) * Q_prev``.
4. Reassemble with the relaxed ``Q`` and measure
   ``Diff = ||A(Q) Q - B(Q)|| / ||B(Q)||``.
5. Stop when ``Diff < eps``, after ``max_iter`` rounds, or when the optional
   wall-clock limit expires.

The system reassembled in step 4 is exactly the one step 1 of the next round
would build, so it is reused.

Both orchestrators answer point queries on the solved field:
``get_value_a`` (bilinear interpolation), ``get_value_b`` (element-averaged
flux density) and ``get_flux_components`` (point-wise ``(Bx, By)``).
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Union

import numpy as np

from magnetostatic_fem.fea.assembler import NewtonSLAEBuilder, SLAEBuilder
from magnetostatic_fem.fea.config import (
    FiniteElement,
    Mesh,
    NonlinearProblemConfig,
    Point,
    ProblemConfig,
)
from magnetostatic_fem.fea.elements import (
    RectangleBounds,
    flux_density,
    flux_density_components,
    interpolate,
)
from magnetostatic_fem.fea.errors import ElementNotFoundError, InvalidMeshError
from magnetostatic_fem.fea.locator import ElementLocator
from magnetostatic_fem.fea.matrix import SymmetricSparseMatrix
from magnetostatic_fem.fea.portrait import PortraitBuilder
from magnetostatic_fem.fea.results import (
    IterationInfo,
    NonlinearResult,
    NonlinearState,
    SolveResult,
)
from magnetostatic_fem.fea.solvers import LOSSolver, create_solver

logger = logging.getLogger(__name__)

PointLike = Union[Point, tuple[float, float]]
IterationObserver = Callable[[IterationInfo], None]


def _check_mesh(mesh: Mesh, label: str = "mesh") -> None:
    errors = mesh.validate()
    if errors:
        raise InvalidMeshError(f"Invalid {label}: " + "; ".join(errors))


def _as_point(point: PointLike) -> Point:
    if isinstance(point, Point):
        return point
    x, y = point
    return Point(float(x), float(y))


# ---------------------------------------------------------------------------
# Field queries
# ---------------------------------------------------------------------------
class _FieldQueries:
    """Point queries on a nodal solution over a rectangular mesh."""

    def __init__(self, mesh: Mesh) -> None:
        self._mesh = mesh
        self._locator = ElementLocator(mesh)
        self._q: Optional[np.ndarray] = None

    def _solution(self) -> np.ndarray:
        if self._q is None:
            raise RuntimeError(f"{type(self).__name__} has no solution; call solve() first")
        return self._q

    def _locate(self, point: Point) -> tuple[FiniteElement, RectangleBounds]:
        index = self._locator.find(point)
        if index is None:
            raise ElementNotFoundError(point.x, point.y)
        return self._mesh.elements[index], self._locator.bounds(index)

    def _local_values(self, point: PointLike):
        q = self._solution()
        p = _as_point(point)
        element, bounds = self._locate(p)
        return p, bounds, q[list(element.vertices)]

    def get_value_a(self, point: PointLike) -> float:
        """Vector potential at ``point`` by bilinear interpolation."""
        p, bounds, q_local = self._local_values(point)
        return float(interpolate(p, bounds, q_local))

    def get_value_b(self, point: PointLike) -> float:
        """Flux density magnitude of the element containing ``point``."""
        _, bounds, q_local = self._local_values(point)
        return flux_density(bounds, q_local)

    def get_flux_components(self, point: PointLike) -> tuple[float, float]:
        """Point-wise ``(Bx, By) = (dA/dy, -dA/dx)`` at ``point``."""
        p, bounds, q_local = self._local_values(point)
        return flux_density_components(p, bounds, q_local)

    @property
    def mesh(self) -> Mesh:
        return self._mesh

    @property
    def q(self) -> Optional[np.ndarray]:
        """Nodal solution, or None before :meth:`solve`."""
        return self._q


# ---------------------------------------------------------------------------
# Linear problem
# ---------------------------------------------------------------------------
class Problem(_FieldQueries):
    """Single linear solve with constant reluctivities.

    Raises
    ------
    ValueError
        If the configuration is invalid.
    InvalidMeshError
        If the mesh violates its structural invariants.
    """

    def __init__(self, config: ProblemConfig) -> None:
        errors = config.validate()
        if errors:
            raise ValueError("Invalid problem configuration: " + "; ".join(errors))
        _check_mesh(config.mesh)
        super().__init__(config.mesh)

        self._config = config
        self._matrix = SymmetricSparseMatrix(
            config.mesh.node_count, PortraitBuilder(config.mesh).build()
        )
        self._rhs = np.zeros(config.mesh.node_count, dtype=np.float64)
        self._builder = SLAEBuilder(config.mesh)
        self._solver: LOSSolver = create_solver(
            config.solver_type,
            tolerance=config.solver_tolerance,
            max_iterations=config.solver_max_iterations,
        )

    def solve(self) -> SolveResult:
        """Assemble and solve once; the solution is kept for point queries."""
        t0 = time.perf_counter()
        self._builder.build(self._matrix, self._rhs)
        self._q = self._solver.solve(self._matrix, self._rhs)
        elapsed = time.perf_counter() - t0

        logger.info(
            "Linear solve: %d nodes, %d elements, %d solver iterations, %.3fs",
            self._mesh.node_count,
            len(self._mesh.elements),
            self._solver.last_iterations,
            elapsed,
        )
        return SolveResult(
            q=self._q.copy(),
            solver_iterations=self._solver.last_iterations,
            residual=self._solver.last_residual,
            solve_time_s=elapsed,
            solver_name=type(self._solver).__name__,
        )

    @property
    def config(self) -> ProblemConfig:
        return self._config

    @property
    def matrix(self) -> SymmetricSparseMatrix:
        return self._matrix

    @property
    def rhs(self) -> np.ndarray:
        return self._rhs


# ---------------------------------------------------------------------------
# Nonlinear problem
# ---------------------------------------------------------------------------
class NonlinearProblem(_FieldQueries):
    """Under-relaxed Picard iteration for flux-dependent reluctivities.

    Parameters
    ----------
    config : NonlinearProblemConfig
        Mesh, optional bootstrap mesh, loop controls and solver settings.

    Raises
    ------
    ValueError
        If the configuration is invalid.
    InvalidMeshError
        If either mesh violates its structural invariants.
    """

    def __init__(self, config: NonlinearProblemConfig) -> None:
        errors = config.validate()
        if errors:
            raise ValueError("Invalid nonlinear problem configuration: " + "; ".join(errors))
        _check_mesh(config.mesh)
        if config.linear_mesh is not None:
            _check_mesh(config.linear_mesh, "linear mesh")
        super().__init__(config.mesh)

        self._config = config
        self._matrix = SymmetricSparseMatrix(
            config.mesh.node_count, PortraitBuilder(config.mesh).build()
        )
        self._rhs = np.zeros(config.mesh.node_count, dtype=np.float64)
        self._builder = NewtonSLAEBuilder(config.mesh)
        self._solver: LOSSolver = create_solver(
            config.solver_type,
            tolerance=config.solver_tolerance,
            max_iterations=config.solver_max_iterations,
        )

        self._state = NonlinearState.INITIALIZED
        self._current_iter = 0
        self._diff = float("nan")
        self._diff_history: list[float] = []

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self, observer: Optional[IterationObserver] = None) -> NonlinearResult:
        """Run the bootstrap and the relaxation loop.

        Parameters
        ----------
        observer : callable, optional
            Called with an :class:`IterationInfo` after every round.

        Returns
        -------
        NonlinearResult
            Terminal state and the last relaxed solution. Non-convergence is
            reported here, not raised; see ``NonlinearResult.raise_for_status``.

        Raises
        ------
        SolverDivergenceError
            If an inner linear solve fails.
        """
        cfg = self._config
        t0 = time.perf_counter()
        self._current_iter = 0
        self._diff = float("nan")
        self._diff_history = []

        self._state = NonlinearState.LINEAR_BOOTSTRAP
        q = self._bootstrap()
        self._q = q

        self._state = NonlinearState.ITERATING
        w = cfg.relaxation
        self._builder.build(self._matrix, self._rhs, q)

        while True:
            q_new = self._solver.solve(self._matrix, self._rhs)
            q = w * q_new + (1.0 - w) * q
            self._q = q

            self._builder.build(self._matrix, self._rhs, q)
            residual = self._matrix.multiply(q) - self._rhs
            norm_b = float(np.linalg.norm(self._rhs))
            norm_r = float(np.linalg.norm(residual))
            diff = norm_r / norm_b if norm_b > 0.0 else norm_r

            self._current_iter += 1
            self._diff = diff
            self._diff_history.append(diff)
            elapsed = time.perf_counter() - t0
            logger.debug(
                "Nonlinear iteration %d: diff=%.3e (%d solver iterations)",
                self._current_iter,
                diff,
                self._solver.last_iterations,
            )
            if observer is not None:
                observer(IterationInfo(iteration=self._current_iter, diff=diff, elapsed_s=elapsed))

            if diff < cfg.eps:
                self._state = NonlinearState.CONVERGED
                break
            if self._current_iter >= cfg.max_iter:
                self._state = NonlinearState.MAX_ITER_REACHED
                break
            if cfg.time_limit_s is not None and elapsed >= cfg.time_limit_s:
                self._state = NonlinearState.TIME_LIMIT_REACHED
                break

        elapsed = time.perf_counter() - t0
        converged = self._state is NonlinearState.CONVERGED
        if converged:
            logger.info(
                "Nonlinear solve converged: %d iterations, diff=%.3e, %.3fs",
                self._current_iter, self._diff, elapsed,
            )
        else:
            logger.warning(
                "Nonlinear solve stopped (%s): %d iterations, diff=%.3e > eps=%.1e",
                self._state.value, self._current_iter, self._diff, cfg.eps,
            )

        return NonlinearResult(
            q=q.copy(),
            state=self._state,
            converged=converged,
            iterations=self._current_iter,
            diff=self._diff,
            diff_history=list(self._diff_history),
            solve_time_s=elapsed,
            solver_name=type(self._solver).__name__,
        )

    def _bootstrap(self) -> np.ndarray:
        """Initial guess from a linear solve, transferred onto this mesh."""
        cfg = self._config
        mesh = self._mesh
        linear_mesh = cfg.linear_mesh if cfg.linear_mesh is not None else mesh.linearized()

        linear = Problem(
            ProblemConfig(
                mesh=linear_mesh,
                solver_type=cfg.solver_type,
                solver_tolerance=cfg.solver_tolerance,
                solver_max_iterations=cfg.solver_max_iterations,
            )
        )
        linear.solve()

        if linear_mesh.points == mesh.points:
            q = linear.q.copy()
        else:
            q = np.zeros(mesh.node_count, dtype=np.float64)
            outside = 0
            for node, point in enumerate(mesh.points):
                try:
                    q[node] = linear.get_value_a(point)
                except ElementNotFoundError:
                    outside += 1
            if outside:
                logger.warning(
                    "%d of %d nodes lie outside the linear mesh; starting them at 0.0",
                    outside, mesh.node_count,
                )

        for node, value in self._builder.dirichlet_values().items():
            q[node] = value
        return q

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> NonlinearProblemConfig:
        return self._config

    @property
    def state(self) -> NonlinearState:
        return self._state

    @property
    def current_iter(self) -> int:
        return self._current_iter

    @property
    def diff(self) -> float:
        return self._diff

    @property
    def diff_history(self) -> list[float]:
        return list(self._diff_history)

    @property
    def eps(self) -> float:
        return self._config.eps

    @property
    def max_iter(self) -> int:
        return self._config.max_iter

    @property
    def relaxation(self) -> float:
        return self._config.relaxation

    @property
    def matrix(self) -> SymmetricSparseMatrix:
        return self._matrix

    @property
    def rhs(self) -> np.ndarray:
        return self._rhs

    def __repr__(self) -> str:
        return (
            f"NonlinearProblem(n_nodes={self._mesh.node_count}, "
            f"state={self._state.value}, iter={self._current_iter})"
        )
