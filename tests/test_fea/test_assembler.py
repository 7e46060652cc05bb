"""Tests for global system assembly."""
from __future__ import annotations

import numpy as np
import pytest

from magnetostatic_fem.fea.assembler import NewtonSLAEBuilder, SLAEBuilder
from magnetostatic_fem.fea.config import Mesh, Point, FiniteElement, SecondBoundaryEdge
from magnetostatic_fem.fea.elements import element_bounds, gradient_matrix
from magnetostatic_fem.fea.material_properties import Material
from magnetostatic_fem.fea.matrix import SymmetricSparseMatrix
from magnetostatic_fem.fea.mesher import build_uniform_grid
from magnetostatic_fem.fea.portrait import PortraitBuilder


def _boundary_value(x: float, y: float) -> float:
    return 1.0 + x + 2.0 * y


def _system(mesh: Mesh):
    matrix = SymmetricSparseMatrix(mesh.node_count, PortraitBuilder(mesh).build())
    rhs = np.zeros(mesh.node_count)
    return matrix, rhs


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def free_mesh() -> Mesh:
    return build_uniform_grid((0.0, 2.0), (0.0, 1.0), 4, 3, Material("coil", nu=2.0, current_density=3.0))


@pytest.fixture(scope="module")
def dirichlet_mesh() -> Mesh:
    return build_uniform_grid(
        (0.0, 1.0), (0.0, 1.0), 3, 3, Material("coil", nu=1.5, current_density=1.0),
        dirichlet=_boundary_value,
    )


# ---------------------------------------------------------------------------
# Test classes
# ---------------------------------------------------------------------------

class TestSLAEBuilder:
    def test_size_mismatch(self, free_mesh):
        matrix, _ = _system(free_mesh)
        with pytest.raises(ValueError):
            SLAEBuilder(free_mesh).build(matrix, np.zeros(free_mesh.node_count + 1))

    def test_constant_field_in_kernel(self, free_mesh):
        """Without first-kind conditions the operator annihilates constants."""
        matrix, rhs = _system(free_mesh)
        SLAEBuilder(free_mesh).build(matrix, rhs)
        np.testing.assert_allclose(matrix.multiply(np.ones(matrix.n)), 0.0, atol=1e-12)

    def test_total_load(self, free_mesh):
        """Consistent load integrates J over the domain."""
        matrix, rhs = _system(free_mesh)
        SLAEBuilder(free_mesh).build(matrix, rhs)
        assert rhs.sum() == pytest.approx(3.0 * 2.0 * 1.0)

    def test_matrix_symmetric(self, dirichlet_mesh):
        matrix, rhs = _system(dirichlet_mesh)
        SLAEBuilder(dirichlet_mesh).build(matrix, rhs)
        dense = matrix.to_dense()
        np.testing.assert_array_equal(dense, dense.T)

    def test_rebuild_is_bit_identical(self, dirichlet_mesh):
        matrix, rhs = _system(dirichlet_mesh)
        builder = SLAEBuilder(dirichlet_mesh)
        builder.build(matrix, rhs)
        di, ggl, b = matrix.di.copy(), matrix.ggl.copy(), rhs.copy()
        builder.build(matrix, rhs)
        np.testing.assert_array_equal(matrix.di, di)
        np.testing.assert_array_equal(matrix.ggl, ggl)
        np.testing.assert_array_equal(rhs, b)

    def test_dirichlet_rows_are_identity(self, dirichlet_mesh):
        matrix, rhs = _system(dirichlet_mesh)
        builder = SLAEBuilder(dirichlet_mesh)
        builder.build(matrix, rhs)
        dense = matrix.to_dense()
        for node, value in builder.dirichlet_values().items():
            expected = np.zeros(matrix.n)
            expected[node] = 1.0
            np.testing.assert_array_equal(dense[node], expected)
            assert rhs[node] == value

    def test_dirichlet_values_from_function(self, dirichlet_mesh):
        values = SLAEBuilder(dirichlet_mesh).dirichlet_values()
        assert len(values) == 12
        for node, value in values.items():
            p = dirichlet_mesh.points[node]
            assert value == _boundary_value(p.x, p.y)

    def test_elimination_keeps_solution(self, dirichlet_mesh):
        """The reduced system has the same solution as the unreduced one."""
        matrix, rhs = _system(dirichlet_mesh)
        builder = SLAEBuilder(dirichlet_mesh)
        builder.build(matrix, rhs)
        q = np.linalg.solve(matrix.to_dense(), rhs)
        for node, value in builder.dirichlet_values().items():
            assert q[node] == pytest.approx(value)

    def test_second_kind_flux(self):
        mesh = build_uniform_grid((0.0, 2.0), (0.0, 1.0), 1, 1, Material("air", nu=1.0))
        mesh.second_boundary.append(SecondBoundaryEdge(0, 1, lambda x, y: 3.0))
        mesh.second_boundary.append(SecondBoundaryEdge(2, 3))
        matrix, rhs = _system(mesh)
        SLAEBuilder(mesh).build(matrix, rhs)
        np.testing.assert_allclose(rhs, [3.0, 3.0, 0.0, 0.0])


class TestNewtonSLAEBuilder:
    def test_requires_solution(self, free_mesh):
        matrix, rhs = _system(free_mesh)
        with pytest.raises(ValueError):
            NewtonSLAEBuilder(free_mesh).build(matrix, rhs)

    def test_linear_material_matches_linear_builder(self, dirichlet_mesh):
        linear, b_linear = _system(dirichlet_mesh)
        newton, b_newton = _system(dirichlet_mesh)
        SLAEBuilder(dirichlet_mesh).build(linear, b_linear)
        q = np.arange(dirichlet_mesh.node_count, dtype=float)
        NewtonSLAEBuilder(dirichlet_mesh).build(newton, b_newton, q)
        np.testing.assert_array_equal(newton.di, linear.di)
        np.testing.assert_array_equal(newton.ggl, linear.ggl)
        np.testing.assert_array_equal(b_newton, b_linear)

    def test_coefficient_from_flux_density(self):
        """A = x on one element gives |B| = 1 and therefore nu(1)."""
        material = Material("curve", nu=1.0, reluctivity_curve=lambda b: 1.0 + b)
        mesh = Mesh(
            points=[Point(0.0, 0.0), Point(1.0, 0.0), Point(0.0, 1.0), Point(1.0, 1.0)],
            elements=[FiniteElement((0, 1, 2, 3), 0)],
            materials={0: material},
        )
        matrix, rhs = _system(mesh)
        NewtonSLAEBuilder(mesh).build(matrix, rhs, np.array([0.0, 1.0, 0.0, 1.0]))
        np.testing.assert_allclose(matrix.di, [2.0 * 2.0 / 3.0] * 4)


class TestAnalyticStiffness:
    """Assembled matrices against hand-computed element integrals."""

    # (G1 + G2) / 6 on the unit square
    UNIT_SQUARE = np.array([
        [4.0, -1.0, -1.0, -2.0],
        [-1.0, 4.0, -2.0, -1.0],
        [-1.0, -2.0, 4.0, -1.0],
        [-2.0, -1.0, -1.0, 4.0],
    ]) / 6.0

    def test_single_element_equals_local_matrix(self):
        mesh = build_uniform_grid((0.0, 1.0), (0.0, 1.0), 1, 1, Material("air", nu=1.0))
        matrix, rhs = _system(mesh)
        SLAEBuilder(mesh).build(matrix, rhs)
        dense = matrix.to_dense()
        np.testing.assert_allclose(dense, self.UNIT_SQUARE, rtol=1e-14)
        x = np.array([0.5, -1.0, 2.0, 3.0])
        np.testing.assert_allclose(matrix.multiply(x), self.UNIT_SQUARE @ x, rtol=1e-13)

    def test_coefficient_scales_matrix(self):
        mesh = build_uniform_grid((0.0, 2.0), (0.0, 0.5), 1, 1, Material("coil", nu=3.0))
        matrix, rhs = _system(mesh)
        SLAEBuilder(mesh).build(matrix, rhs)
        expected = 3.0 * gradient_matrix(element_bounds(mesh, mesh.elements[0]))
        np.testing.assert_allclose(matrix.to_dense(), expected, rtol=1e-14)
        assert matrix.entry(1, 0) == pytest.approx(3.0 * (0.25 * -2.0 + 4.0 * 1.0) / 6.0)

    def test_two_elements_share_column(self, free_mesh):
        """Shared nodes sum the contributions of both neighbours exactly once."""
        matrix, rhs = _system(free_mesh)
        SLAEBuilder(free_mesh).build(matrix, rhs)
        expected = np.zeros((free_mesh.node_count, free_mesh.node_count))
        for element in free_mesh.elements:
            local = 2.0 * gradient_matrix(element_bounds(free_mesh, element))
            index = list(element.vertices)
            expected[np.ix_(index, index)] += local
        np.testing.assert_allclose(matrix.to_dense(), expected, rtol=1e-13, atol=1e-15)

    def test_affine_field_reproduced(self):
        """Bilinear elements with J = 0 recover an affine Dirichlet field exactly."""
        mesh = build_uniform_grid(
            (0.0, 1.0), (0.0, 1.0), 3, 3, Material("air", nu=1.0),
            dirichlet=lambda x, y: 2.0 * x + 3.0 * y,
        )
        matrix, rhs = _system(mesh)
        SLAEBuilder(mesh).build(matrix, rhs)
        q = np.linalg.solve(matrix.to_dense(), rhs)
        expected = [2.0 * p.x + 3.0 * p.y for p in mesh.points]
        np.testing.assert_allclose(q, expected, rtol=1e-12, atol=1e-12)
        assert q[5] == pytest.approx(5.0 / 3.0)
        assert q[10] == pytest.approx(10.0 / 3.0)
