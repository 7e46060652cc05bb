"""Symmetric sparse matrix stored as diagonal + lower triangle on a portrait."""
from __future__ import annotations

from typing import Optional

import numpy as np
import scipy.sparse as sp

from magnetostatic_fem.fea.errors import PortraitEntryError
from magnetostatic_fem.fea.portrait import MatrixPortrait


class SymmetricSparseMatrix:
    """Symmetric matrix with values ``di`` (diagonal) and ``ggl`` (lower slots).

    The structure is fixed by the portrait at construction; values are
    accumulated with :meth:`add_at` and reset with :meth:`clear`, so one
    instance can be refilled across nonlinear iterations.

    Parameters
    ----------
    n : int
        Matrix dimension (node count).
    portrait : MatrixPortrait
        Lower-triangle structure; must describe ``n`` rows.
    """

    def __init__(self, n: int, portrait: MatrixPortrait) -> None:
        if portrait.n != n:
            raise ValueError(f"Portrait describes {portrait.n} rows, expected {n}")
        self._n = n
        self._portrait = portrait
        self.di = np.zeros(n, dtype=np.float64)
        self.ggl = np.zeros(portrait.nnz, dtype=np.float64)
        self._slot_rows = portrait.slot_rows()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Zero all stored values, keeping the structure."""
        self.di.fill(0.0)
        self.ggl.fill(0.0)

    def add_at(self, i: int, j: int, value: float) -> None:
        """Accumulate ``value`` into entry ``(i, j)`` (and ``(j, i)``).

        Raises
        ------
        PortraitEntryError
            If ``(i, j)`` is outside the matrix or not in the portrait.
        """
        if i == j:
            if not 0 <= i < self._n:
                raise PortraitEntryError(i, j)
            self.di[i] += value
        else:
            self.ggl[self._portrait.position(i, j)] += value

    # ------------------------------------------------------------------
    # Products and conversion
    # ------------------------------------------------------------------

    def multiply(self, x: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Compute ``y = A @ x``; each lower slot feeds both its row and column."""
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (self._n,):
            raise ValueError(f"Vector of length {self._n} expected, got shape {x.shape}")
        rows = self._slot_rows
        cols = self._portrait.jg
        y = self.di * x
        y += np.bincount(rows, weights=self.ggl * x[cols], minlength=self._n)
        y += np.bincount(cols, weights=self.ggl * x[rows], minlength=self._n)
        if out is not None:
            out[:] = y
            return out
        return y

    def entry(self, i: int, j: int) -> float:
        if i == j:
            if not 0 <= i < self._n:
                raise PortraitEntryError(i, j)
            return float(self.di[i])
        return float(self.ggl[self._portrait.position(i, j)])

    def to_csr(self) -> sp.csr_matrix:
        """Full symmetric matrix as ``scipy.sparse.csr_matrix``."""
        rows = self._slot_rows
        cols = self._portrait.jg
        diag = np.arange(self._n, dtype=np.int64)
        coo = sp.coo_matrix(
            (
                np.concatenate([self.di, self.ggl, self.ggl]),
                (np.concatenate([diag, rows, cols]), np.concatenate([diag, cols, rows])),
            ),
            shape=(self._n, self._n),
        )
        return coo.tocsr()

    def to_dense(self) -> np.ndarray:
        return self.to_csr().toarray()

    def copy(self) -> "SymmetricSparseMatrix":
        other = SymmetricSparseMatrix(self._n, self._portrait)
        other.di[:] = self.di
        other.ggl[:] = self.ggl
        return other

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def n(self) -> int:
        return self._n

    @property
    def portrait(self) -> MatrixPortrait:
        return self._portrait

    def __repr__(self) -> str:
        return f"SymmetricSparseMatrix(n={self._n}, nnz_lower={self._portrait.nnz})"
