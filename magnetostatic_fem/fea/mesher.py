"""Structured rectangular grid generation for two-layer (r, z) domains.

The domain ``[r0, width] x [z0, z0 + first + second]`` is split into two
material layers at ``z0 + first``. Grid lines are graded geometrically::

    r_0 = r0,  r_{k+1} = r_k + h_k,  h_{k+1} = q * h_k

until the next line would reach the closing boundary, which is then added
exactly. The axial lines continue the running step from the first layer into
the second.

Nodes are numbered row-major (``z`` outer, ``r`` inner) and element ``(i, j)``
uses the vertices ``(i*nr + j, i*nr + j + 1, (i+1)*nr + j, (i+1)*nr + j + 1)``.
"""
from __future__ import annotations

import bisect
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from magnetostatic_fem.fea.config import (
    BoundaryFunction,
    FiniteElement,
    FirstBoundaryEdge,
    Mesh,
    Point,
    SecondBoundaryEdge,
)
from magnetostatic_fem.fea.errors import InvalidMeshError, SplitPointUnreachableError
from magnetostatic_fem.fea.material_properties import Material, get_material

logger = logging.getLogger(__name__)

# Lines closer than this fraction of the span to the closing boundary are
# merged into it.
_SNAP_FRACTION = 1.0e-9
_MAX_LINES = 100_000


class AreaSide(str, enum.Enum):
    """Sides of the rectangular domain (``TOP`` is the ``z = z0`` row)."""

    LEFT = "left"
    TOP = "top"
    TOP_FIRST = "top_first"
    TOP_SECOND = "top_second"
    RIGHT = "right"
    BOTTOM = "bottom"


class ConditionType(str, enum.Enum):
    FIRST = "first"
    SECOND = "second"


def _zero(x: float, y: float) -> float:
    return 0.0


@dataclass(frozen=True)
class BoundarySpec:
    """Condition on one side.

    For ``FIRST`` the function gives the prescribed potential (zero when
    omitted); for ``SECOND`` it gives the flux, and None is the natural
    condition.
    """
    condition: ConditionType
    function: Optional[BoundaryFunction] = None


@dataclass
class GridInfo:
    """Geometry, grading and boundary description of a two-layer domain."""
    r0: float
    z0: float
    width: float
    first_layer_height: float
    second_layer_height: float
    horizontal_start_step: float
    vertical_start_step: float
    materials: dict[int, Material]
    horizontal_coefficient: float = 1.0
    vertical_coefficient: float = 1.0
    conditions: dict[AreaSide, BoundarySpec] = field(default_factory=dict)
    split_point: Optional[float] = None

    def validate(self) -> list[str]:
        """Return list of validation error messages (empty if valid)."""
        errors = []
        if self.width <= self.r0:
            errors.append("width must be greater than r0")
        if self.first_layer_height <= 0 or self.second_layer_height <= 0:
            errors.append("layer heights must be positive")
        if self.horizontal_start_step <= 0 or self.vertical_start_step <= 0:
            errors.append("start steps must be positive")
        if self.horizontal_coefficient <= 0 or self.vertical_coefficient <= 0:
            errors.append("grading coefficients must be positive")
        for key in (0, 1):
            if key not in self.materials:
                errors.append(f"material for layer {key} is missing")
        split_sides = {AreaSide.TOP_FIRST, AreaSide.TOP_SECOND} & set(self.conditions)
        if split_sides and self.split_point is None:
            errors.append("TOP_FIRST/TOP_SECOND conditions require split_point")
        return errors

    @classmethod
    def from_app_config(cls, app_config: Any) -> "GridInfo":
        """Build from the ``grid.*`` section of an ``AppConfig``.

        Layer materials are looked up by name in the material database;
        ``conditions`` maps side names to ``{type, value}`` with a constant
        value.

        Raises
        ------
        ValueError
            If a key is missing or malformed, or a material is unknown.
        """
        grid = app_config.get("grid", {})
        if not isinstance(grid, dict):
            raise ValueError("grid must be a mapping")

        layers = grid.get("materials") or []
        if not isinstance(layers, list) or len(layers) != 2:
            raise ValueError("grid.materials must list exactly two layers")
        materials = {}
        for index, layer in enumerate(layers):
            if not isinstance(layer, dict) or "name" not in layer:
                raise ValueError(f"grid.materials[{index}] needs a 'name'")
            current_density = _number(layer, "current_density", f"grid.materials[{index}]", 0.0)
            material = get_material(str(layer["name"]), current_density)
            if material is None:
                raise ValueError(f"Unknown material {layer['name']!r} for layer {index}")
            materials[index] = material

        raw_conditions = grid.get("conditions") or {}
        if not isinstance(raw_conditions, dict):
            raise ValueError("grid.conditions must map side names to {type, value}")
        conditions = {}
        for side, entry in raw_conditions.items():
            where = f"grid.conditions.{side}"
            if not isinstance(entry, dict) or "type" not in entry:
                raise ValueError(f"{where} needs a 'type' (first or second)")
            value = _number(entry, "value", where, None)
            function = None if value is None else _constant(value)
            conditions[AreaSide(side)] = BoundarySpec(ConditionType(entry["type"]), function)

        return cls(
            r0=_number(grid, "r0", "grid"),
            z0=_number(grid, "z0", "grid"),
            width=_number(grid, "width", "grid"),
            first_layer_height=_number(grid, "first_layer_height", "grid"),
            second_layer_height=_number(grid, "second_layer_height", "grid"),
            horizontal_start_step=_number(grid, "horizontal_start_step", "grid"),
            vertical_start_step=_number(grid, "vertical_start_step", "grid"),
            horizontal_coefficient=_number(grid, "horizontal_coefficient", "grid", 1.0),
            vertical_coefficient=_number(grid, "vertical_coefficient", "grid", 1.0),
            materials=materials,
            conditions=conditions,
            split_point=_number(grid, "split_point", "grid", None),
        )


_REQUIRED = object()


def _number(section: dict, key: str, where: str, default: Any = _REQUIRED) -> Optional[float]:
    value = section.get(key)
    if value is None:
        if default is _REQUIRED:
            raise ValueError(f"{where}.{key} is required")
        return default
    if isinstance(value, bool):
        raise ValueError(f"{where}.{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{where}.{key} must be a number, got {value!r}") from None


def _constant(value: float) -> BoundaryFunction:
    def function(x: float, y: float) -> float:
        return value

    return function


def graded_coordinates(start: float, stop: float, step: float, coefficient: float) -> tuple[list[float], float]:
    """Graded lines from ``start`` to ``stop`` inclusive.

    Returns the coordinates and the step that would follow the last
    generated interval.
    """
    snap = _SNAP_FRACTION * (stop - start)
    values = []
    value = start
    while value < stop - snap:
        values.append(value)
        value += step
        step *= coefficient
        if len(values) > _MAX_LINES:
            raise InvalidMeshError(
                f"Grading (step {step:g}, coefficient {coefficient:g}) "
                f"does not reach {stop:g} within {_MAX_LINES} lines"
            )
    values.append(stop)
    return values, step


class GridBuilder:
    """Build a :class:`Mesh` from a :class:`GridInfo`.

    After :meth:`build`, ``r_values`` and ``z_values`` hold the grid lines and
    ``split_index`` the top-row node where ``TOP_FIRST`` ends (when a split
    point is given).
    """

    def __init__(self, info: GridInfo) -> None:
        self.info = info
        self.r_values: list[float] = []
        self.z_values: list[float] = []
        self.split_index: Optional[int] = None

    @property
    def interface_z(self) -> float:
        return self.info.z0 + self.info.first_layer_height

    def build(self) -> Mesh:
        errors = self.info.validate()
        if errors:
            raise InvalidMeshError("Invalid grid description: " + "; ".join(errors))

        self._build_r_values()
        self._find_split_index()
        self._build_z_values()

        points = [Point(r, z) for z in self.z_values for r in self.r_values]
        mesh = Mesh(
            points=points,
            elements=self._build_elements(),
            materials={0: self.info.materials[0], 1: self.info.materials[1]},
        )
        self._build_boundary(mesh)

        logger.info(
            "Grid built: %d x %d lines, %d nodes, %d elements, %d first-kind edges",
            len(self.r_values),
            len(self.z_values),
            mesh.node_count,
            len(mesh.elements),
            len(mesh.first_boundary),
        )
        return mesh

    # ------------------------------------------------------------------
    # Coordinates
    # ------------------------------------------------------------------

    def _build_r_values(self) -> None:
        info = self.info
        self.r_values, _ = graded_coordinates(
            info.r0, info.width, info.horizontal_start_step, info.horizontal_coefficient
        )

    def _find_split_index(self) -> None:
        split = self.info.split_point
        if split is None:
            self.split_index = None
            return
        if not (self.info.r0 < split <= self.info.width):
            raise SplitPointUnreachableError(
                f"Split point {split!r} is outside ({self.info.r0!r}, {self.info.width!r}]"
            )
        self.split_index = bisect.bisect_right(self.r_values, split) - 1

    def _build_z_values(self) -> None:
        info = self.info
        first, step = graded_coordinates(
            info.z0, self.interface_z, info.vertical_start_step, info.vertical_coefficient
        )
        second, _ = graded_coordinates(
            self.interface_z,
            self.interface_z + info.second_layer_height,
            step,
            info.vertical_coefficient,
        )
        self.z_values = first + second[1:]

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def _build_elements(self) -> list[FiniteElement]:
        nr = len(self.r_values)
        interface = self.interface_z
        elements = []
        for i in range(len(self.z_values) - 1):
            material = 0 if self.z_values[i] < interface else 1
            for j in range(nr - 1):
                p1 = i * nr + j
                p3 = (i + 1) * nr + j
                elements.append(FiniteElement((p1, p1 + 1, p3, p3 + 1), material))
        return elements

    def side_nodes(self, side: AreaSide) -> list[int]:
        """Node indices along ``side`` in increasing coordinate order."""
        nr, nz = len(self.r_values), len(self.z_values)
        if side is AreaSide.TOP:
            return list(range(nr))
        if side is AreaSide.BOTTOM:
            return list(range((nz - 1) * nr, nz * nr))
        if side is AreaSide.LEFT:
            return [i * nr for i in range(nz)]
        if side is AreaSide.RIGHT:
            return [i * nr + nr - 1 for i in range(nz)]
        if self.split_index is None:
            raise InvalidMeshError(f"{side.value} requires a split point")
        if side is AreaSide.TOP_FIRST:
            return list(range(self.split_index + 1))
        return list(range(self.split_index, nr))

    def _build_boundary(self, mesh: Mesh) -> None:
        for side in AreaSide:
            boundary = self.info.conditions.get(side)
            if boundary is None:
                continue
            nodes = self.side_nodes(side)
            for v1, v2 in zip(nodes, nodes[1:]):
                if boundary.condition is ConditionType.FIRST:
                    mesh.first_boundary.append(
                        FirstBoundaryEdge(v1, v2, boundary.function or _zero)
                    )
                else:
                    mesh.second_boundary.append(SecondBoundaryEdge(v1, v2, boundary.function))


def build_uniform_grid(
    r_range: tuple[float, float],
    z_range: tuple[float, float],
    nr: int,
    nz: int,
    material: Material,
    dirichlet: Optional[BoundaryFunction] = None,
) -> Mesh:
    """Single-material uniform grid of ``nr x nz`` elements.

    When ``dirichlet`` is given it is prescribed on all four sides.
    """
    if nr < 1 or nz < 1:
        raise InvalidMeshError("nr and nz must be at least 1")
    r_values = np.linspace(r_range[0], r_range[1], nr + 1).tolist()
    z_values = np.linspace(z_range[0], z_range[1], nz + 1).tolist()
    n_r = nr + 1

    points = [Point(r, z) for z in z_values for r in r_values]
    elements = []
    for i in range(nz):
        for j in range(nr):
            p1 = i * n_r + j
            p3 = (i + 1) * n_r + j
            elements.append(FiniteElement((p1, p1 + 1, p3, p3 + 1), 0))

    mesh = Mesh(points=points, elements=elements, materials={0: material})
    if dirichlet is not None:
        sides = (
            list(range(n_r)),
            list(range(nz * n_r, (nz + 1) * n_r)),
            [i * n_r for i in range(nz + 1)],
            [i * n_r + nr for i in range(nz + 1)],
        )
        for nodes in sides:
            for v1, v2 in zip(nodes, nodes[1:]):
                mesh.first_boundary.append(FirstBoundaryEdge(v1, v2, dirichlet))
    return mesh
