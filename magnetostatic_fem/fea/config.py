"""FEA configuration dataclasses: mesh entities and run configurations."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from magnetostatic_fem.fea.material_properties import Material

BoundaryFunction = Callable[[float, float], float]


class SolverType(str, enum.Enum):
    """Preconditioner variant of the LOS iterative solver."""

    LOS_LU = "los_lu"
    LOS_LLT = "los_llt"


@dataclass(frozen=True)
class Point:
    """A mesh node or query location (x = R, y = Z)."""
    x: float
    y: float


@dataclass(frozen=True)
class FiniteElement:
    """Axis-aligned bilinear rectangle.

    Vertex order: 0 = (x1, y1), 1 = (x2, y1), 2 = (x1, y2), 3 = (x2, y2).
    """
    vertices: tuple[int, int, int, int]
    material: int = 0

    def __getitem__(self, index: int) -> int:
        return self.vertices[index]

    def __iter__(self):
        return iter(self.vertices)


@dataclass(frozen=True)
class FirstBoundaryEdge:
    """Dirichlet edge: both endpoints take ``function(x, y)``."""
    v1: int
    v2: int
    function: BoundaryFunction


@dataclass(frozen=True)
class SecondBoundaryEdge:
    """Neumann edge; ``flux`` is None for the natural (homogeneous) condition."""
    v1: int
    v2: int
    flux: Optional[BoundaryFunction] = None


@dataclass
class Mesh:
    """Container for a rectangular finite element mesh."""
    points: list[Point]
    elements: list[FiniteElement]
    materials: dict[int, Material]
    first_boundary: list[FirstBoundaryEdge] = field(default_factory=list)
    second_boundary: list[SecondBoundaryEdge] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.points)

    def material_of(self, element: FiniteElement) -> Material:
        return self.materials[element.material]

    @property
    def is_linear(self) -> bool:
        return all(m.is_linear for m in self.materials.values())

    def linearized(self) -> "Mesh":
        """Same topology with every material frozen at its initial reluctivity."""
        return replace(
            self,
            materials={k: m.linearized() for k, m in self.materials.items()},
        )

    def validate(self) -> list[str]:
        """Return list of invariant violations (empty if valid)."""
        errors = []
        n = self.node_count
        if n == 0:
            errors.append("mesh has no points")
        for index, e in enumerate(self.elements):
            if len(e.vertices) != 4:
                errors.append(f"element {index} must have exactly 4 vertices")
                continue
            if any(v < 0 or v >= n for v in e.vertices):
                errors.append(f"element {index} references a node outside 0..{n - 1}")
                continue
            if len(set(e.vertices)) != 4:
                errors.append(f"element {index} has repeated vertices")
            if e.material not in self.materials:
                errors.append(f"element {index} uses unknown material {e.material!r}")
            p0, p1, p2, p3 = (self.points[v] for v in e.vertices)
            if not (p0.y == p1.y and p2.y == p3.y and p0.x == p2.x and p1.x == p3.x):
                errors.append(f"element {index} is not an axis-aligned rectangle")
            elif not (p1.x > p0.x and p2.y > p0.y):
                errors.append(f"element {index} has non-positive extents")
        for kind, edges in (("first", self.first_boundary), ("second", self.second_boundary)):
            for index, edge in enumerate(edges):
                if not (0 <= edge.v1 < n and 0 <= edge.v2 < n):
                    errors.append(
                        f"{kind}-kind boundary edge {index} references a node outside 0..{n - 1}"
                    )
        return errors


# ---------------------------------------------------------------------------
# Run configurations
# ---------------------------------------------------------------------------
@dataclass
class ProblemConfig:
    """Configuration for a single linear solve."""
    mesh: Mesh
    solver_type: SolverType = SolverType.LOS_LU
    solver_tolerance: float = 1.0e-14
    solver_max_iterations: int = 10000

    def validate(self) -> list[str]:
        """Return list of validation error messages (empty if valid)."""
        errors = []
        if not isinstance(self.solver_type, SolverType):
            errors.append(f"Unknown solver_type: {self.solver_type!r}")
        if self.solver_tolerance <= 0:
            errors.append("solver_tolerance must be positive")
        if self.solver_max_iterations < 1:
            errors.append("solver_max_iterations must be at least 1")
        return errors

    @classmethod
    def from_app_config(cls, mesh: Mesh, app_config: Any, **overrides) -> "ProblemConfig":
        """Build from the ``solver.*`` section of an ``AppConfig``."""
        values = dict(
            solver_type=_setting(app_config, "solver.type", SolverType, SolverType.LOS_LU),
            solver_tolerance=_setting(app_config, "solver.tolerance", float, 1.0e-14),
            solver_max_iterations=_setting(app_config, "solver.max_iterations", int, 10000),
        )
        values.update(overrides)
        return cls(mesh=mesh, **values)


@dataclass
class NonlinearProblemConfig:
    """Configuration for the under-relaxed Picard iteration."""
    mesh: Mesh
    linear_mesh: Optional[Mesh] = None
    solver_type: SolverType = SolverType.LOS_LU
    eps: float = 1.0e-12
    max_iter: int = 30
    relaxation: float = 0.5
    time_limit_s: Optional[float] = None
    solver_tolerance: float = 1.0e-14
    solver_max_iterations: int = 10000

    def validate(self) -> list[str]:
        """Return list of validation error messages (empty if valid)."""
        errors = []
        if not isinstance(self.solver_type, SolverType):
            errors.append(f"Unknown solver_type: {self.solver_type!r}")
        if self.eps <= 0:
            errors.append("eps must be positive")
        if self.max_iter < 1:
            errors.append("max_iter must be at least 1")
        if not (0 < self.relaxation <= 1):
            errors.append("relaxation must be in (0, 1]")
        if self.time_limit_s is not None and self.time_limit_s <= 0:
            errors.append("time_limit_s must be positive when given")
        if self.solver_tolerance <= 0:
            errors.append("solver_tolerance must be positive")
        if self.solver_max_iterations < 1:
            errors.append("solver_max_iterations must be at least 1")
        return errors

    @classmethod
    def from_app_config(
        cls,
        mesh: Mesh,
        app_config: Any,
        linear_mesh: Optional[Mesh] = None,
        **overrides,
    ) -> "NonlinearProblemConfig":
        """Build from the ``solver.*`` and ``nonlinear.*`` sections of an ``AppConfig``."""
        values = dict(
            solver_type=_setting(app_config, "solver.type", SolverType, SolverType.LOS_LU),
            solver_tolerance=_setting(app_config, "solver.tolerance", float, 1.0e-14),
            solver_max_iterations=_setting(app_config, "solver.max_iterations", int, 10000),
            eps=_setting(app_config, "nonlinear.eps", float, 1.0e-12),
            max_iter=_setting(app_config, "nonlinear.max_iter", int, 30),
            relaxation=_setting(app_config, "nonlinear.relaxation", float, 0.5),
            time_limit_s=_setting(app_config, "nonlinear.time_limit_s", float, None),
        )
        values.update(overrides)
        return cls(mesh=mesh, linear_mesh=linear_mesh, **values)


def _setting(app_config: Any, key: str, cast: Callable[[Any], Any], default: Any) -> Any:
    """Read ``key`` from an ``AppConfig``; null means ``default``, bad values raise ValueError."""
    value = app_config.get(key)
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {key}: {value!r}") from None
