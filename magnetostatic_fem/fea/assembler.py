"""Global linear system assembly for the vector-potential problem.

Fills a :class:`SymmetricSparseMatrix` and a dense right-hand side from the
element contributions of a rectangular mesh.

Algorithm
---------
1. Clear the matrix and zero-fill the RHS, so the solver never sees a
   partially refilled system.
2. Loop over elements (``G`` is symmetric, so ``j <= i`` only):
   a. Recover the rectangle bounds from vertices 0, 1 and 2.
   b. Evaluate the element reluctivity (constant for ``SLAEBuilder``,
      ``nu(|B|_e)`` from the current solution for ``NewtonSLAEBuilder``).
   c. Compute the 4x4 local stiffness and the local load vector.
   d. Scatter ``G[i][j]`` to ``(v[i], v[j])``, ``j <= i``, and ``b[i]`` to ``v[i]``.
3. Add prescribed second-kind fluxes on boundary edges.
4. Apply first-kind conditions last, by symmetric elimination: the known
   value is moved to the RHS of every free neighbour, the row and column are
   zeroed, the diagonal is set to 1 and the RHS to the prescribed value.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from magnetostatic_fem.fea.config import FiniteElement, Mesh
from magnetostatic_fem.fea.elements import (
    element_bounds,
    flux_density,
    load_vector,
    stiffness_matrix,
)
from magnetostatic_fem.fea.matrix import SymmetricSparseMatrix

logger = logging.getLogger(__name__)


class SLAEBuilder:
    """Assemble the linear system with constant element reluctivities.

    Parameters
    ----------
    mesh : Mesh
        The finite element mesh. Shared read-only.
    """

    def __init__(self, mesh: Mesh) -> None:
        self._mesh = mesh

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        matrix: SymmetricSparseMatrix,
        rhs: NDArray[np.float64],
        q: Optional[NDArray[np.float64]] = None,
    ) -> None:
        """Clear and refill ``matrix`` and ``rhs`` in place."""
        if matrix.n != self._mesh.node_count or rhs.shape != (self._mesh.node_count,):
            raise ValueError(
                f"System size mismatch: mesh has {self._mesh.node_count} nodes, "
                f"matrix {matrix.n}, rhs {rhs.shape}"
            )
        t0 = time.perf_counter()

        matrix.clear()
        rhs.fill(0.0)

        mesh = self._mesh
        for element in mesh.elements:
            bounds = element_bounds(mesh, element)
            material = mesh.material_of(element)
            local_g = stiffness_matrix(bounds, self._coefficient(element, bounds, q))
            local_b = load_vector(bounds, material.current_density)

            # add_at feeds both (i, j) and (j, i), so only the lower half of G is scattered.
            vertices = element.vertices
            for i in range(4):
                rhs[vertices[i]] += local_b[i]
                for j in range(i + 1):
                    matrix.add_at(vertices[i], vertices[j], local_g[i, j])

        self._apply_second_boundary(rhs)
        self._apply_first_boundary(matrix, rhs)

        logger.debug(
            "%s filled %d elements in %.4fs",
            type(self).__name__,
            len(mesh.elements),
            time.perf_counter() - t0,
        )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _coefficient(self, element: FiniteElement, bounds, q) -> float:
        return self._mesh.material_of(element).nu

    # ------------------------------------------------------------------
    # Boundary conditions
    # ------------------------------------------------------------------

    def _apply_second_boundary(self, rhs: NDArray[np.float64]) -> None:
        points = self._mesh.points
        for edge in self._mesh.second_boundary:
            if edge.flux is None:
                continue
            p1, p2 = points[edge.v1], points[edge.v2]
            length = math.hypot(p2.x - p1.x, p2.y - p1.y)
            theta = edge.flux(0.5 * (p1.x + p2.x), 0.5 * (p1.y + p2.y))
            rhs[edge.v1] += 0.5 * theta * length
            rhs[edge.v2] += 0.5 * theta * length

    def dirichlet_values(self) -> dict[int, float]:
        """Prescribed value per first-kind node; later edges win on shared nodes."""
        points = self._mesh.points
        values: dict[int, float] = {}
        for edge in self._mesh.first_boundary:
            for v in (edge.v1, edge.v2):
                p = points[v]
                values[v] = float(edge.function(p.x, p.y))
        return values

    def _apply_first_boundary(
        self,
        matrix: SymmetricSparseMatrix,
        rhs: NDArray[np.float64],
    ) -> None:
        values = self.dirichlet_values()
        if not values:
            return

        portrait = matrix.portrait
        rows = portrait.slot_rows()
        for node in sorted(values):
            g = values[node]
            # Row ``node`` holds its lower neighbours; column ``node`` the upper ones.
            row_slots = np.arange(portrait.ig[node], portrait.ig[node + 1])
            col_slots = portrait.column_slots(node)
            for slot, neighbour in zip(row_slots, portrait.jg[row_slots]):
                if neighbour not in values:
                    rhs[neighbour] -= matrix.ggl[slot] * g
                matrix.ggl[slot] = 0.0
            for slot, neighbour in zip(col_slots, rows[col_slots]):
                if neighbour not in values:
                    rhs[neighbour] -= matrix.ggl[slot] * g
                matrix.ggl[slot] = 0.0
            matrix.di[node] = 1.0
            rhs[node] = g

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def mesh(self) -> Mesh:
        return self._mesh

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(n_nodes={self._mesh.node_count}, "
            f"n_elements={len(self._mesh.elements)})"
        )


class NewtonSLAEBuilder(SLAEBuilder):
    """Assemble with reluctivities evaluated from the current solution.

    Each element coefficient is ``material.coefficient(|B|_e)`` where
    ``|B|_e`` is the element-averaged flux density of ``q``. Must be re-run
    every outer iteration; the portrait stays fixed.
    """

    def build(
        self,
        matrix: SymmetricSparseMatrix,
        rhs: NDArray[np.float64],
        q: Optional[NDArray[np.float64]] = None,
    ) -> None:
        if q is None:
            raise ValueError("NewtonSLAEBuilder.build requires the current solution q")
        q = np.asarray(q, dtype=np.float64)
        if q.shape != (self._mesh.node_count,):
            raise ValueError(
                f"Solution of length {self._mesh.node_count} expected, got shape {q.shape}"
            )
        super().build(matrix, rhs, q)

    def _coefficient(self, element: FiniteElement, bounds, q) -> float:
        material = self._mesh.material_of(element)
        if material.is_linear:
            return material.nu
        return material.coefficient(flux_density(bounds, q[list(element.vertices)]))
