"""Bilinear rectangular element formulation.

Implements the 4-node axis-aligned rectangle with:
- Bilinear basis functions on the bounds ``[x1, x2] x [y1, y2]``
- Local stiffness matrix from the two canonical gradient templates
- Consistent load vector of a constant source
- Element-averaged flux density from nodal vector potential values
- Point-wise flux density components

Local vertex numbering::

    2 (x1, y2) ---- 3 (x2, y2)
        |               |
    0 (x1, y1) ---- 1 (x2, y1)

With ``hx = x2 - x1`` and ``hy = y2 - y1`` the gradient integrals are exact:

    int dpsi_i/dx * dpsi_j/dx = hy / (6 hx) * G1[i, j]
    int dpsi_i/dy * dpsi_j/dy = hx / (6 hy) * G2[i, j]
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from magnetostatic_fem.fea.config import FiniteElement, Mesh, Point

# -- Gradient templates -------------------------------------------------------
LOCAL_G1: NDArray[np.float64] = np.array([
    [2.0, -2.0, 1.0, -1.0],
    [-2.0, 2.0, -1.0, 1.0],
    [1.0, -1.0, 2.0, -2.0],
    [-1.0, 1.0, -2.0, 2.0],
], dtype=np.float64)

LOCAL_G2: NDArray[np.float64] = np.array([
    [2.0, 1.0, -2.0, -1.0],
    [1.0, 2.0, -1.0, -2.0],
    [-2.0, -1.0, 2.0, 1.0],
    [-1.0, -2.0, 1.0, 2.0],
], dtype=np.float64)

BASIS_SIZE = 4


@dataclass(frozen=True)
class RectangleBounds:
    """Axis-aligned bounds of an element."""
    x1: float
    x2: float
    y1: float
    y2: float

    @property
    def hx(self) -> float:
        return abs(self.x2 - self.x1)

    @property
    def hy(self) -> float:
        return abs(self.y2 - self.y1)

    @property
    def area(self) -> float:
        return self.hx * self.hy

    def contains(self, point: Point) -> bool:
        """Closed containment test."""
        return self.x1 <= point.x <= self.x2 and self.y1 <= point.y <= self.y2


def element_bounds(mesh: Mesh, element: FiniteElement) -> RectangleBounds:
    """Recover ``(x1, x2, y1, y2)`` from vertices 0, 1 and 2."""
    p1 = mesh.points[element[0]]
    p2 = mesh.points[element[1]]
    p3 = mesh.points[element[2]]
    return RectangleBounds(x1=p1.x, x2=p2.x, y1=p1.y, y2=p3.y)


# -----------------------------------------------------------------------------
# Basis functions
# -----------------------------------------------------------------------------
def psi1(point: Point, b: RectangleBounds) -> float:
    return (b.x2 - point.x) * (b.y2 - point.y) / (b.hx * b.hy)


def psi2(point: Point, b: RectangleBounds) -> float:
    return (point.x - b.x1) * (b.y2 - point.y) / (b.hx * b.hy)


def psi3(point: Point, b: RectangleBounds) -> float:
    return (b.x2 - point.x) * (point.y - b.y1) / (b.hx * b.hy)


def psi4(point: Point, b: RectangleBounds) -> float:
    return (point.x - b.x1) * (point.y - b.y1) / (b.hx * b.hy)


BASIS_FUNCTIONS = (psi1, psi2, psi3, psi4)


def basis_values(point: Point, bounds: RectangleBounds) -> NDArray[np.float64]:
    """The four basis function values at ``point``, shape (4,)."""
    return np.array([psi(point, bounds) for psi in BASIS_FUNCTIONS], dtype=np.float64)


def interpolate(point: Point, bounds: RectangleBounds, q_local: NDArray[np.float64]) -> float:
    """Bilinear interpolation of the nodal values ``q_local``."""
    return (
        psi1(point, bounds) * q_local[0]
        + psi2(point, bounds) * q_local[1]
        + psi3(point, bounds) * q_local[2]
        + psi4(point, bounds) * q_local[3]
    )


# -----------------------------------------------------------------------------
# Local matrices
# -----------------------------------------------------------------------------
def gradient_matrix(bounds: RectangleBounds) -> NDArray[np.float64]:
    """``int grad(psi_i) . grad(psi_j)`` over the element, shape (4, 4)."""
    hx, hy = bounds.hx, bounds.hy
    return (hy / hx * LOCAL_G1 + hx / hy * LOCAL_G2) / 6.0


def stiffness_matrix(bounds: RectangleBounds, coefficient: float) -> NDArray[np.float64]:
    """Local stiffness ``coefficient * int grad(psi_i) . grad(psi_j)``."""
    return coefficient * gradient_matrix(bounds)


def load_vector(bounds: RectangleBounds, source: float) -> NDArray[np.float64]:
    """Consistent load of a constant source: ``source * hx * hy / 4`` per vertex."""
    return np.full(BASIS_SIZE, source * bounds.area / 4.0, dtype=np.float64)


# -----------------------------------------------------------------------------
# Derived field quantities
# -----------------------------------------------------------------------------
def flux_density(bounds: RectangleBounds, q_local: NDArray[np.float64]) -> float:
    """Element-averaged ``|B| = sqrt(int |grad A|^2 / area)``."""
    q = np.asarray(q_local, dtype=np.float64)
    energy = float(q @ gradient_matrix(bounds) @ q)
    return math.sqrt(max(energy, 0.0) / bounds.area)


def flux_density_components(
    point: Point,
    bounds: RectangleBounds,
    q_local: NDArray[np.float64],
) -> tuple[float, float]:
    """Point-wise ``(Bx, By) = (dA/dy, -dA/dx)`` at ``point``."""
    hx, hy = bounds.hx, bounds.hy
    x_lo = (bounds.x2 - point.x) / hx
    x_hi = (point.x - bounds.x1) / hx
    y_lo = (bounds.y2 - point.y) / hy
    y_hi = (point.y - bounds.y1) / hy
    q1, q2, q3, q4 = (float(v) for v in q_local)
    bx = (x_lo * (q3 - q1) + x_hi * (q4 - q2)) / hy
    by = -(y_lo * (q2 - q1) + y_hi * (q4 - q3)) / hx
    return bx, by
