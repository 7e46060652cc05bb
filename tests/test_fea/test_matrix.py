"""Tests for the symmetric sparse matrix."""
from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from magnetostatic_fem.fea.errors import PortraitEntryError
from magnetostatic_fem.fea.material_properties import Material
from magnetostatic_fem.fea.matrix import SymmetricSparseMatrix
from magnetostatic_fem.fea.mesher import build_uniform_grid
from magnetostatic_fem.fea.portrait import PortraitBuilder


@pytest.fixture(scope="module")
def portrait():
    mesh = build_uniform_grid((0.0, 3.0), (0.0, 2.0), 3, 2, Material("unit", nu=1.0))
    return PortraitBuilder(mesh).build()


@pytest.fixture
def filled(portrait):
    """Matrix with random values in every slot, plus an independent dense copy."""
    rng = np.random.default_rng(42)
    matrix = SymmetricSparseMatrix(portrait.n, portrait)
    dense = np.zeros((portrait.n, portrait.n))
    for i in range(portrait.n):
        value = rng.uniform(1.0, 2.0)
        matrix.add_at(i, i, value)
        dense[i, i] += value
        for j in portrait.row(i):
            value = rng.uniform(-1.0, 1.0)
            matrix.add_at(int(j), i, value)
            dense[i, j] += value
            dense[j, i] += value
    return matrix, dense


class TestSymmetricSparseMatrix:
    def test_portrait_size_mismatch(self, portrait):
        with pytest.raises(ValueError):
            SymmetricSparseMatrix(portrait.n + 1, portrait)

    def test_multiply_matches_dense(self, filled):
        matrix, dense = filled
        x = np.linspace(-1.0, 1.0, matrix.n)
        np.testing.assert_allclose(matrix.multiply(x), dense @ x, rtol=1e-13, atol=1e-13)

    def test_multiply_into_out(self, filled):
        matrix, dense = filled
        x = np.ones(matrix.n)
        out = np.empty(matrix.n)
        result = matrix.multiply(x, out=out)
        assert result is out
        np.testing.assert_allclose(out, dense @ x, rtol=1e-13, atol=1e-13)

    def test_multiply_wrong_length(self, filled):
        matrix, _ = filled
        with pytest.raises(ValueError):
            matrix.multiply(np.ones(matrix.n + 2))

    def test_to_csr_is_symmetric(self, filled):
        matrix, dense = filled
        csr = matrix.to_csr()
        assert isinstance(csr, sp.csr_matrix)
        np.testing.assert_allclose(csr.toarray(), dense, rtol=1e-14)
        np.testing.assert_array_equal(matrix.to_dense(), matrix.to_dense().T)

    def test_add_at_accumulates(self, portrait):
        matrix = SymmetricSparseMatrix(portrait.n, portrait)
        matrix.add_at(1, 0, 2.0)
        matrix.add_at(0, 1, 3.0)
        assert matrix.entry(1, 0) == 5.0
        assert matrix.entry(0, 1) == 5.0

    def test_add_at_outside_portrait(self, portrait):
        matrix = SymmetricSparseMatrix(portrait.n, portrait)
        with pytest.raises(PortraitEntryError):
            matrix.add_at(portrait.n - 1, 0, 1.0)

    @pytest.mark.parametrize("index", [-1, 12])
    def test_diagonal_outside_matrix(self, portrait, index):
        matrix = SymmetricSparseMatrix(portrait.n, portrait)
        with pytest.raises(PortraitEntryError):
            matrix.add_at(index, index, 1.0)
        with pytest.raises(PortraitEntryError):
            matrix.entry(index, index)
        assert not np.any(matrix.di)

    def test_clear_keeps_structure(self, filled):
        matrix, _ = filled
        cleared = matrix.copy()
        cleared.clear()
        assert not np.any(cleared.di)
        assert not np.any(cleared.ggl)
        assert cleared.portrait is matrix.portrait
        assert np.any(matrix.ggl)

    def test_copy_is_independent(self, filled):
        matrix, _ = filled
        other = matrix.copy()
        other.di[0] += 10.0
        assert other.di[0] != matrix.di[0]
