"""Uniform-grid spatial index for point-in-element queries.

Each element is registered in every bucket its bounding rectangle overlaps,
in ascending element order. A query scans only its own bucket and returns the
first element whose closed rectangle contains the point, which is the same
answer as a linear scan over all elements.
"""
from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from magnetostatic_fem.fea.config import Mesh, Point
from magnetostatic_fem.fea.elements import RectangleBounds, element_bounds

logger = logging.getLogger(__name__)


class ElementLocator:
    """Find the lowest-index element containing a point.

    Parameters
    ----------
    mesh : Mesh
        The mesh to index. Only geometry is read.
    cells_per_axis : int, optional
        Bucket count along each axis. Defaults to ``ceil(sqrt(n_elements))``.
    """

    def __init__(self, mesh: Mesh, cells_per_axis: Optional[int] = None) -> None:
        self._bounds: list[RectangleBounds] = [
            element_bounds(mesh, element) for element in mesh.elements
        ]
        if cells_per_axis is None:
            cells_per_axis = max(1, math.ceil(math.sqrt(len(self._bounds))))
        if cells_per_axis < 1:
            raise ValueError("cells_per_axis must be at least 1")
        self._cells = cells_per_axis

        if self._bounds:
            x1 = np.array([b.x1 for b in self._bounds])
            x2 = np.array([b.x2 for b in self._bounds])
            y1 = np.array([b.y1 for b in self._bounds])
            y2 = np.array([b.y2 for b in self._bounds])
            self._x_min, self._x_max = float(x1.min()), float(x2.max())
            self._y_min, self._y_max = float(y1.min()), float(y2.max())
        else:
            self._x_min = self._x_max = self._y_min = self._y_max = 0.0

        self._buckets: list[list[int]] = [[] for _ in range(self._cells * self._cells)]
        for index, b in enumerate(self._bounds):
            i_lo, i_hi = self._cell_x(b.x1), self._cell_x(b.x2)
            j_lo, j_hi = self._cell_y(b.y1), self._cell_y(b.y2)
            for j in range(j_lo, j_hi + 1):
                for i in range(i_lo, i_hi + 1):
                    self._buckets[j * self._cells + i].append(index)

        logger.debug(
            "Element locator: %d elements in %dx%d buckets",
            len(self._bounds), self._cells, self._cells,
        )

    def _cell_x(self, x: float) -> int:
        return self._cell(x, self._x_min, self._x_max)

    def _cell_y(self, y: float) -> int:
        return self._cell(y, self._y_min, self._y_max)

    def _cell(self, value: float, lo: float, hi: float) -> int:
        span = hi - lo
        if span <= 0.0:
            return 0
        index = int((value - lo) / span * self._cells)
        return min(max(index, 0), self._cells - 1)

    def find(self, point: Point) -> Optional[int]:
        """Index of the first element containing ``point``, or None."""
        if not self._bounds:
            return None
        if not (self._x_min <= point.x <= self._x_max and self._y_min <= point.y <= self._y_max):
            return None
        bucket = self._buckets[self._cell_y(point.y) * self._cells + self._cell_x(point.x)]
        for index in bucket:
            if self._bounds[index].contains(point):
                return index
        return None

    def bounds(self, index: int) -> RectangleBounds:
        return self._bounds[index]

    def __len__(self) -> int:
        return len(self._bounds)
