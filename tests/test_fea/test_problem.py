"""Tests for the linear Problem orchestrator and its field queries."""
from __future__ import annotations

import math

import numpy as np
import pytest

from magnetostatic_fem.fea.config import FiniteElement, Mesh, Point, ProblemConfig, SolverType
from magnetostatic_fem.fea.errors import ElementNotFoundError, InvalidMeshError
from magnetostatic_fem.fea.material_properties import Material
from magnetostatic_fem.fea.mesher import build_uniform_grid
from magnetostatic_fem.fea.problem import Problem
from magnetostatic_fem.fea.results import SolveResult


def _affine(x: float, y: float) -> float:
    return 1.0 + 2.0 * x + 3.0 * y


def _zero(x: float, y: float) -> float:
    return 0.0


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def affine_problem() -> Problem:
    """Source-free problem whose exact solution is the affine boundary data."""
    mesh = build_uniform_grid((0.0, 2.0), (0.0, 1.0), 5, 4, Material("air", nu=3.0), dirichlet=_affine)
    problem = Problem(ProblemConfig(mesh=mesh))
    problem.solve()
    return problem


# ---------------------------------------------------------------------------
# Test classes
# ---------------------------------------------------------------------------

class TestAffineExactness:
    def test_nodal_values(self, affine_problem):
        expected = [_affine(p.x, p.y) for p in affine_problem.mesh.points]
        np.testing.assert_allclose(affine_problem.q, expected, rtol=1e-11, atol=1e-11)

    def test_value_a_inside(self, affine_problem):
        for x, y in ((0.13, 0.71), (1.0, 0.5), (1.99, 0.01)):
            assert affine_problem.get_value_a(Point(x, y)) == pytest.approx(_affine(x, y), rel=1e-10)

    def test_value_b_is_gradient_norm(self, affine_problem):
        for x, y in ((0.2, 0.2), (1.7, 0.9)):
            assert affine_problem.get_value_b((x, y)) == pytest.approx(math.sqrt(13.0), rel=1e-9)

    def test_flux_components(self, affine_problem):
        bx, by = affine_problem.get_flux_components((0.55, 0.35))
        assert bx == pytest.approx(3.0, rel=1e-9)
        assert by == pytest.approx(-2.0, rel=1e-9)

    def test_value_a_at_nodes_is_exact(self, affine_problem):
        q = affine_problem.q
        for node, point in enumerate(affine_problem.mesh.points):
            assert affine_problem.get_value_a(point) == q[node]


class TestProblem:
    def test_solve_result(self):
        mesh = build_uniform_grid(
            (0.0, 1.0), (0.0, 1.0), 4, 4, Material("coil", nu=1.0, current_density=1.0), dirichlet=_zero
        )
        problem = Problem(ProblemConfig(mesh=mesh, solver_type=SolverType.LOS_LLT))
        result = problem.solve()
        assert isinstance(result, SolveResult)
        assert result.solver_name == "LOSLLT"
        assert result.solver_iterations > 0
        assert result.q.shape == (mesh.node_count,)
        np.testing.assert_array_equal(result.q, problem.q)
        # Positive source with zero boundary: potential peaks in the middle.
        center = problem.get_value_a((0.5, 0.5))
        assert center > 0.0
        assert center == pytest.approx(float(problem.q.max()))

    def test_residual_small(self):
        mesh = build_uniform_grid(
            (0.0, 1.0), (0.0, 2.0), 3, 5, Material("coil", nu=2.0, current_density=5.0), dirichlet=_zero
        )
        problem = Problem(ProblemConfig(mesh=mesh))
        problem.solve()
        residual = problem.matrix.multiply(problem.q) - problem.rhs
        assert np.linalg.norm(residual) < 1e-10 * np.linalg.norm(problem.rhs)

    def test_query_before_solve(self):
        mesh = build_uniform_grid((0.0, 1.0), (0.0, 1.0), 2, 2, Material("air", nu=1.0), dirichlet=_zero)
        problem = Problem(ProblemConfig(mesh=mesh))
        assert problem.q is None
        with pytest.raises(RuntimeError):
            problem.get_value_a((0.5, 0.5))

    def test_point_outside_mesh(self, affine_problem):
        before = affine_problem.q.copy()
        with pytest.raises(ElementNotFoundError) as exc_info:
            affine_problem.get_value_b((5.0, 5.0))
        assert exc_info.value.x == 5.0
        np.testing.assert_array_equal(affine_problem.q, before)

    def test_invalid_config(self):
        mesh = build_uniform_grid((0.0, 1.0), (0.0, 1.0), 1, 1, Material("air", nu=1.0))
        with pytest.raises(ValueError, match="solver_tolerance"):
            Problem(ProblemConfig(mesh=mesh, solver_tolerance=0.0))

    def test_non_rectangular_element(self):
        mesh = Mesh(
            points=[Point(0.0, 0.0), Point(1.0, 0.0), Point(0.0, 1.0), Point(1.5, 1.0)],
            elements=[FiniteElement((0, 1, 2, 3))],
            materials={0: Material("air", nu=1.0)},
        )
        with pytest.raises(InvalidMeshError, match="axis-aligned"):
            Problem(ProblemConfig(mesh=mesh))

    def test_unknown_material(self):
        mesh = build_uniform_grid((0.0, 1.0), (0.0, 1.0), 1, 1, Material("air", nu=1.0))
        mesh.elements[0] = FiniteElement(mesh.elements[0].vertices, material=5)
        with pytest.raises(InvalidMeshError):
            Problem(ProblemConfig(mesh=mesh))
