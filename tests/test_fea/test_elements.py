"""Tests for the bilinear rectangle element."""
from __future__ import annotations

import numpy as np
import pytest

from magnetostatic_fem.fea.config import Point
from magnetostatic_fem.fea.elements import (
    BASIS_FUNCTIONS,
    LOCAL_G1,
    LOCAL_G2,
    RectangleBounds,
    basis_values,
    flux_density,
    flux_density_components,
    gradient_matrix,
    interpolate,
    load_vector,
    stiffness_matrix,
)


@pytest.fixture
def bounds():
    return RectangleBounds(x1=1.0, x2=3.0, y1=0.5, y2=1.5)


class TestBasisFunctions:
    def test_kronecker_at_corners(self, bounds):
        corners = [
            Point(bounds.x1, bounds.y1),
            Point(bounds.x2, bounds.y1),
            Point(bounds.x1, bounds.y2),
            Point(bounds.x2, bounds.y2),
        ]
        for i, psi in enumerate(BASIS_FUNCTIONS):
            for j, corner in enumerate(corners):
                assert psi(corner, bounds) == (1.0 if i == j else 0.0)

    def test_partition_of_unity(self, bounds):
        for point in (Point(1.3, 0.7), Point(2.0, 1.0), Point(2.9, 1.4)):
            assert basis_values(point, bounds).sum() == pytest.approx(1.0)

    def test_interpolate_bilinear_field(self, bounds):
        def field(p):
            return 2.0 + 0.5 * p.x - p.y + 0.25 * p.x * p.y

        q_local = np.array([
            field(Point(bounds.x1, bounds.y1)),
            field(Point(bounds.x2, bounds.y1)),
            field(Point(bounds.x1, bounds.y2)),
            field(Point(bounds.x2, bounds.y2)),
        ])
        point = Point(1.7, 1.2)
        assert interpolate(point, bounds, q_local) == pytest.approx(field(point))


class TestLocalMatrices:
    def test_templates_symmetric(self):
        np.testing.assert_array_equal(LOCAL_G1, LOCAL_G1.T)
        np.testing.assert_array_equal(LOCAL_G2, LOCAL_G2.T)

    def test_unit_square_gradient_matrix(self):
        g = gradient_matrix(RectangleBounds(0.0, 1.0, 0.0, 1.0))
        np.testing.assert_allclose(np.diag(g), [2.0 / 3.0] * 4)
        assert g[0, 3] == pytest.approx(-1.0 / 3.0)

    def test_rows_sum_to_zero(self, bounds):
        g = stiffness_matrix(bounds, 7.5)
        np.testing.assert_allclose(g.sum(axis=1), np.zeros(4), atol=1e-14)

    def test_stiffness_scales_with_coefficient(self, bounds):
        np.testing.assert_allclose(stiffness_matrix(bounds, 3.0), 3.0 * gradient_matrix(bounds))

    def test_load_vector(self, bounds):
        np.testing.assert_allclose(load_vector(bounds, 4.0), [2.0] * 4)


class TestFluxDensity:
    def test_linear_potential_in_x(self):
        """A = x gives |B| = 1 regardless of the aspect ratio."""
        b = RectangleBounds(0.0, 2.0, 0.0, 1.0)
        assert flux_density(b, np.array([0.0, 2.0, 0.0, 2.0])) == pytest.approx(1.0)

    def test_affine_potential(self, bounds):
        q_local = np.array([
            3.0 * x - 4.0 * y
            for x, y in ((bounds.x1, bounds.y1), (bounds.x2, bounds.y1),
                         (bounds.x1, bounds.y2), (bounds.x2, bounds.y2))
        ])
        assert flux_density(bounds, q_local) == pytest.approx(5.0)

    def test_zero_potential(self, bounds):
        assert flux_density(bounds, np.zeros(4)) == 0.0

    def test_components(self, bounds):
        """B = (dA/dy, -dA/dx) for A = 3x - 4y."""
        q_local = np.array([
            3.0 * x - 4.0 * y
            for x, y in ((bounds.x1, bounds.y1), (bounds.x2, bounds.y1),
                         (bounds.x1, bounds.y2), (bounds.x2, bounds.y2))
        ])
        bx, by = flux_density_components(Point(2.2, 0.9), bounds, q_local)
        assert bx == pytest.approx(-4.0)
        assert by == pytest.approx(-3.0)
