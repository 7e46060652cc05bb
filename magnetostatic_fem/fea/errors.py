"""Exception hierarchy for the magnetostatic FEA pipeline.

Structural errors (invalid mesh, missing portrait slot, query outside the
mesh) indicate bad input or a programming mistake and should fail fast.
Numerical errors (solver divergence, nonlinear non-convergence) are
recoverable: the caller may retry with other settings.
"""
from __future__ import annotations

from typing import Any, Optional


class FEMError(Exception):
    """Base class for all errors raised by the FEA pipeline."""


class InvalidMeshError(FEMError, ValueError):
    """The mesh violates one of its structural invariants."""


class SplitPointUnreachableError(InvalidMeshError):
    """The requested split point lies outside the generated radial range."""


class PortraitEntryError(FEMError, KeyError):
    """A matrix position that is not part of the sparse portrait was addressed."""

    def __init__(self, row: int, col: int) -> None:
        super().__init__(row, col)
        self.row = row
        self.col = col

    def __str__(self) -> str:
        return f"Position ({self.row}, {self.col}) is not present in the matrix portrait"


class ElementNotFoundError(FEMError, LookupError):
    """No finite element contains the query point."""

    def __init__(self, x: float, y: float) -> None:
        super().__init__(f"Couldn't find finite element for point ({x!r}, {y!r})")
        self.x = x
        self.y = y


class SolverDivergenceError(FEMError, RuntimeError):
    """The iterative linear solver did not reach its tolerance."""

    def __init__(
        self,
        message: str,
        iterations: int = 0,
        residual: float = float("nan"),
    ) -> None:
        super().__init__(message)
        self.iterations = iterations
        self.residual = residual


class PreconditionerBreakdownError(SolverDivergenceError):
    """The incomplete factorization hit a zero or negative pivot."""


class NonlinearNonConvergenceError(FEMError, RuntimeError):
    """The relaxation loop stopped before the residual ratio reached ``eps``."""

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        super().__init__(message)
        self.result = result
