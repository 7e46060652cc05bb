"""Sparse matrix portrait (nonzero structure) of the global stiffness matrix.

The portrait stores only the strictly-lower triangle in CSR layout:

* ``ig`` -- row pointers, length ``n + 1``; row ``i`` owns the slots
  ``ig[i]:ig[i + 1]``.
* ``jg`` -- column indices of those slots, each ``< i``, sorted ascending
  within the row and free of duplicates.

Two nodes are structurally connected when they are vertices of the same
element. The diagonal is implicit and always present.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from magnetostatic_fem.fea.config import Mesh
from magnetostatic_fem.fea.errors import PortraitEntryError

logger = logging.getLogger(__name__)


@dataclass
class MatrixPortrait:
    """Lower-triangle CSR structure of a symmetric sparse matrix."""
    ig: np.ndarray
    jg: np.ndarray
    _column_slots: Optional[list[np.ndarray]] = field(default=None, init=False, repr=False)

    @property
    def n(self) -> int:
        return self.ig.shape[0] - 1

    @property
    def nnz(self) -> int:
        """Number of stored off-diagonal slots."""
        return int(self.jg.shape[0])

    def row(self, i: int) -> np.ndarray:
        """Column indices of row ``i`` (strictly below the diagonal)."""
        return self.jg[self.ig[i]:self.ig[i + 1]]

    def position(self, i: int, j: int) -> int:
        """Slot index of the lower-triangle entry ``(max(i, j), min(i, j))``.

        Raises
        ------
        PortraitEntryError
            If ``i == j`` or the pair is not structurally connected.
        """
        row, col = (i, j) if i > j else (j, i)
        if row == col or row < 0 or row >= self.n or col < 0:
            raise PortraitEntryError(i, j)
        start, end = self.ig[row], self.ig[row + 1]
        k = start + int(np.searchsorted(self.jg[start:end], col))
        if k >= end or self.jg[k] != col:
            raise PortraitEntryError(i, j)
        return int(k)

    def contains(self, i: int, j: int) -> bool:
        if i == j:
            return 0 <= i < self.n
        try:
            self.position(i, j)
        except PortraitEntryError:
            return False
        return True

    def column_slots(self, j: int) -> np.ndarray:
        """Slot indices of the entries ``(i, j)`` with ``i > j``."""
        if self._column_slots is None:
            order = np.argsort(self.jg, kind="stable")
            counts = np.bincount(self.jg, minlength=self.n)
            bounds = np.concatenate([[0], np.cumsum(counts)])
            self._column_slots = [order[bounds[c]:bounds[c + 1]] for c in range(self.n)]
        return self._column_slots[j]

    def slot_rows(self) -> np.ndarray:
        """Row index of every stored slot (aligned with ``jg``)."""
        return np.repeat(np.arange(self.n, dtype=np.int64), np.diff(self.ig))


class PortraitBuilder:
    """Derive the matrix portrait from element connectivity.

    Parameters
    ----------
    mesh : Mesh
        Mesh whose element vertex lists define the connectivity.
    """

    def __init__(self, mesh: Mesh) -> None:
        self._mesh = mesh

    def build(self) -> MatrixPortrait:
        n = self._mesh.node_count
        connections: list[set[int]] = [set() for _ in range(n)]

        for element in self._mesh.elements:
            for a in element.vertices:
                for b in element.vertices:
                    if b < a:
                        connections[a].add(b)

        ig = np.zeros(n + 1, dtype=np.int64)
        for i in range(n):
            ig[i + 1] = ig[i] + len(connections[i])

        jg = np.empty(int(ig[-1]), dtype=np.int64)
        for i in range(n):
            jg[ig[i]:ig[i + 1]] = sorted(connections[i])

        logger.info("Built matrix portrait: %d rows, %d off-diagonal slots", n, jg.shape[0])
        return MatrixPortrait(ig=ig, jg=jg)

    @property
    def mesh(self) -> Mesh:
        return self._mesh
