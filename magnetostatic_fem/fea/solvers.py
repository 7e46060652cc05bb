"""Preconditioned LOS iterative solvers.

Implements the Local Optimal Scheme (LOS), a Krylov method for symmetric
systems, with two-sided preconditioning by an incomplete factorization
computed on the matrix portrait (no fill-in):

- ``LOSLU``  -- incomplete LU, ``A ~ L U`` with unit upper ``U``.
- ``LOSLLT`` -- incomplete Cholesky, ``A ~ L L^T``; requires an SPD matrix.

Iteration
---------
::

    r0 = L^-1 (b - A x0),   z0 = U^-1 r0,   p0 = L^-1 A z0
    alpha = (p, r) / (p, p)
    x += alpha z;   r -= alpha p
    t = U^-1 r;   w = L^-1 A t
    beta = -(p, w) / (p, p)
    z = t + beta z;   p = w + beta p

The iteration stops once ``||r|| / ||L^-1 b|| < tolerance``. All loops run
in a fixed order, so identical inputs give bit-identical results.
"""
from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.sparse.linalg import spsolve_triangular

from magnetostatic_fem.fea.config import SolverType
from magnetostatic_fem.fea.errors import PreconditionerBreakdownError, SolverDivergenceError
from magnetostatic_fem.fea.matrix import SymmetricSparseMatrix
from magnetostatic_fem.fea.solver_interface import LinearSolver

logger = logging.getLogger(__name__)

_DEFAULT_TOLERANCE = 1.0e-14
_DEFAULT_MAX_ITERATIONS = 10000


# ---------------------------------------------------------------------------
# Incomplete factorizations
# ---------------------------------------------------------------------------
class IncompleteFactorization(ABC):
    """Zero fill-in factorization of a :class:`SymmetricSparseMatrix`.

    The factor values live on the matrix portrait: ``lower`` holds one value
    per off-diagonal slot and ``diag`` one per row. The triangular factors
    are kept as ``scipy.sparse.csr_matrix`` and applied with
    ``spsolve_triangular``.
    """

    def __init__(self, matrix: SymmetricSparseMatrix) -> None:
        portrait = matrix.portrait
        self._n = matrix.n
        self._ig = portrait.ig
        self._jg = portrait.jg
        self.lower, self.diag = self._factorize(matrix.di, matrix.ggl)

        shape = (self._n, self._n)
        strict = sp.csr_matrix((self.lower, self._jg, self._ig), shape=shape)
        self.l_factor: sp.csr_matrix = (strict + sp.diags(self.diag)).tocsr()
        self.u_factor: sp.csr_matrix = self._upper_factor(strict).tocsr()

    def _factorize(
        self,
        di: NDArray[np.float64],
        ggl: NDArray[np.float64],
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        ig, jg = self._ig, self._jg
        lower = np.zeros_like(ggl, dtype=np.float64)
        diag = np.zeros_like(di, dtype=np.float64)

        for i in range(self._n):
            start, end = int(ig[i]), int(ig[i + 1])
            pivot_sum = 0.0
            for k in range(start, end):
                j = int(jg[k])
                j_start = int(ig[j])
                # Sparse dot product of rows i and j over the columns < j.
                common, ia, jb = np.intersect1d(
                    jg[start:k], jg[j_start:int(ig[j + 1])],
                    assume_unique=True, return_indices=True,
                )
                s = float(ggl[k])
                if common.size:
                    s -= float(np.sum(self._product(
                        lower[start + ia], lower[j_start + jb], diag[common]
                    )))
                lower[k] = self._off_diagonal(s, diag[j])
                pivot_sum += self._pivot_term(lower[k], diag[j])
            diag[i] = self._pivot(i, float(di[i]) - pivot_sum)

        return lower, diag

    @staticmethod
    @abstractmethod
    def _product(l_a, l_b, d_m):
        ...

    @staticmethod
    @abstractmethod
    def _off_diagonal(s: float, d_j: float) -> float:
        ...

    @staticmethod
    @abstractmethod
    def _pivot_term(l_k: float, d_j: float) -> float:
        ...

    @abstractmethod
    def _pivot(self, row: int, value: float) -> float:
        ...

    @abstractmethod
    def _upper_factor(self, strict: sp.csr_matrix) -> sp.spmatrix:
        ...

    def forward(self, b: NDArray[np.float64]) -> NDArray[np.float64]:
        """Solve ``L y = b``."""
        return spsolve_triangular(self.l_factor, np.asarray(b, dtype=np.float64), lower=True)

    def backward(self, y: NDArray[np.float64]) -> NDArray[np.float64]:
        """Solve ``U x = y``."""
        return spsolve_triangular(self.u_factor, np.asarray(y, dtype=np.float64), lower=False)


class IncompleteLU(IncompleteFactorization):
    """ILU(0): ``L`` carries the pivots, ``U[j, i] = L[i, j] / L[j, j]``."""

    @staticmethod
    def _product(l_a, l_b, d_m):
        return l_a * l_b / d_m

    @staticmethod
    def _off_diagonal(s: float, d_j: float) -> float:
        return s

    @staticmethod
    def _pivot_term(l_k: float, d_j: float) -> float:
        return l_k * l_k / d_j

    def _pivot(self, row: int, value: float) -> float:
        if value == 0.0 or not math.isfinite(value):
            raise PreconditionerBreakdownError(
                f"Incomplete LU breakdown: pivot {value!r} in row {row}"
            )
        return value

    def _upper_factor(self, strict: sp.csr_matrix) -> sp.spmatrix:
        unit_lower = sp.identity(self._n, format="csr") + strict @ sp.diags(1.0 / self.diag)
        return unit_lower.T


class IncompleteCholesky(IncompleteFactorization):
    """IC(0): ``A ~ L L^T``; a non-positive pivot means ``A`` is not SPD enough."""

    @staticmethod
    def _product(l_a, l_b, d_m):
        return l_a * l_b

    @staticmethod
    def _off_diagonal(s: float, d_j: float) -> float:
        return s / d_j

    @staticmethod
    def _pivot_term(l_k: float, d_j: float) -> float:
        return l_k * l_k

    def _pivot(self, row: int, value: float) -> float:
        if not value > 0.0 or not math.isfinite(value):
            raise PreconditionerBreakdownError(
                f"Incomplete Cholesky breakdown: pivot {value!r} in row {row}; "
                "the matrix is not numerically SPD"
            )
        return math.sqrt(value)

    def _upper_factor(self, strict: sp.csr_matrix) -> sp.spmatrix:
        return (strict + sp.diags(self.diag)).T


# ---------------------------------------------------------------------------
# LOS solvers
# ---------------------------------------------------------------------------
class LOSSolver(LinearSolver):
    """Local Optimal Scheme with incomplete-factorization preconditioning.

    Parameters
    ----------
    tolerance : float
        Relative preconditioned residual at which the iteration stops.
    max_iterations : int
        Iteration budget; exhausting it raises ``SolverDivergenceError``.

    Attributes
    ----------
    last_iterations : int
        Iterations used by the most recent :meth:`solve`.
    last_residual : float
        Relative preconditioned residual reached by the most recent solve.
    """

    factorization_class: type[IncompleteFactorization]

    def __init__(
        self,
        tolerance: float = _DEFAULT_TOLERANCE,
        max_iterations: int = _DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if tolerance <= 0:
            raise ValueError("tolerance must be positive")
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.last_iterations = 0
        self.last_residual = float("nan")

    def solve(
        self,
        matrix: SymmetricSparseMatrix,
        rhs: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Solve ``A q = b``.

        Raises
        ------
        SolverDivergenceError
            If the tolerance is not reached within ``max_iterations``, or the
            iteration breaks down.
        PreconditionerBreakdownError
            If the incomplete factorization hits an invalid pivot.
        """
        t0 = time.perf_counter()
        f = np.asarray(rhs, dtype=np.float64)
        if f.shape != (matrix.n,):
            raise ValueError(f"RHS of length {matrix.n} expected, got shape {f.shape}")

        x = np.zeros(matrix.n, dtype=np.float64)
        if not np.any(f):
            self.last_iterations = 0
            self.last_residual = 0.0
            return x

        factors = self.factorization_class(matrix)

        r = factors.forward(f)
        norm_f = float(np.linalg.norm(r))
        z = factors.backward(r)
        p = factors.forward(matrix.multiply(z))

        residual = 1.0
        iterations = 0
        while residual >= self.tolerance:
            if iterations >= self.max_iterations:
                self._fail("did not converge", iterations, residual)
            pp = float(p @ p)
            if pp == 0.0:
                self._fail("broke down (zero search direction)", iterations, residual)

            alpha = float(p @ r) / pp
            x += alpha * z
            r -= alpha * p

            t = factors.backward(r)
            w = factors.forward(matrix.multiply(t))
            beta = -float(p @ w) / pp
            z = t + beta * z
            p = w + beta * p

            iterations += 1
            residual = float(np.linalg.norm(r)) / norm_f
            if not math.isfinite(residual):
                self._fail("diverged (non-finite residual)", iterations, residual)

        self.last_iterations = iterations
        self.last_residual = residual
        logger.info(
            "%s converged: n=%d, iterations=%d, residual=%.3e, time=%.3fs",
            type(self).__name__,
            matrix.n,
            iterations,
            residual,
            time.perf_counter() - t0,
        )
        return x

    def _fail(self, reason: str, iterations: int, residual: float) -> None:
        self.last_iterations = iterations
        self.last_residual = residual
        logger.warning(
            "%s %s after %d iterations (residual %.3e, tolerance %.1e)",
            type(self).__name__,
            reason,
            iterations,
            residual,
            self.tolerance,
        )
        raise SolverDivergenceError(
            f"{type(self).__name__} {reason} after {iterations} iterations "
            f"(residual {residual:.3e}, tolerance {self.tolerance:.1e})",
            iterations=iterations,
            residual=residual,
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(tolerance={self.tolerance:g}, "
            f"max_iterations={self.max_iterations})"
        )


class LOSLU(LOSSolver):
    """LOS preconditioned by incomplete LU (general case)."""

    solver_type = SolverType.LOS_LU
    factorization_class = IncompleteLU


class LOSLLT(LOSSolver):
    """LOS preconditioned by incomplete Cholesky (SPD matrices only)."""

    solver_type = SolverType.LOS_LLT
    factorization_class = IncompleteCholesky


_SOLVERS: dict[SolverType, type[LOSSolver]] = {
    SolverType.LOS_LU: LOSLU,
    SolverType.LOS_LLT: LOSLLT,
}


def create_solver(
    solver_type: SolverType | str = SolverType.LOS_LU,
    tolerance: float = _DEFAULT_TOLERANCE,
    max_iterations: int = _DEFAULT_MAX_ITERATIONS,
) -> LOSSolver:
    """Instantiate the solver variant selected by ``solver_type``.

    Raises :class:`ValueError` for an unknown solver type.
    """
    try:
        cls = _SOLVERS[SolverType(solver_type)]
    except ValueError:
        raise ValueError(
            f"Unknown solver type {solver_type!r}. "
            f"Available: {[t.value for t in SolverType]}"
        ) from None
    return cls(tolerance=tolerance, max_iterations=max_iterations)
