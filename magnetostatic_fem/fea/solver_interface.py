"""Abstract linear solver interface for the assembled systems."""
from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
from numpy.typing import NDArray

from magnetostatic_fem.fea.config import SolverType
from magnetostatic_fem.fea.matrix import SymmetricSparseMatrix


class LinearSolver(ABC):
    """Abstract base for solvers of ``A q = b``."""

    solver_type: SolverType

    @abstractmethod
    def solve(
        self,
        matrix: SymmetricSparseMatrix,
        rhs: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Return a new solution vector of the same length as ``rhs``."""
        ...
