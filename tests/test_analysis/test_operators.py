"""Tests for the matrix capability helpers and the shift-invert operator."""
from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from struct_eigen.analysis.linear_solver import DirectSolver, KrylovSolver
from struct_eigen.analysis.operators import (
    BucklingShiftInvert,
    GeneralizedShiftInvert,
    ShiftInvertOperator,
    apply_operator,
    axpy_operator,
    copy_operator,
    operator_dtype,
)


def _laplacian(n):
    return sp.diags(
        [-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1], format="csr"
    )


class TestMatrixCapability:
    def test_copy_sparse_is_independent(self):
        A = _laplacian(4)
        B = copy_operator(A)
        B[0, 0] = 100.0
        assert A[0, 0] == 2.0
        assert B.format == "csr"

    def test_copy_dense(self):
        A = np.eye(3)
        B = copy_operator(A)
        B[0, 0] = 5.0
        assert A[0, 0] == 1.0

    def test_axpy_sparse_stays_sparse(self):
        X = _laplacian(5)
        Y = sp.identity(5, format="csr")
        Z = axpy_operator(-2.0, X, Y)
        assert sp.issparse(Z)
        np.testing.assert_allclose(Z.toarray(), np.eye(5) - 2.0 * X.toarray())

    def test_axpy_dense_promotes(self):
        X = _laplacian(3)
        Y = np.ones((3, 3))
        Z = axpy_operator(0.5, X, Y)
        assert isinstance(Z, np.ndarray)
        np.testing.assert_allclose(Z, np.ones((3, 3)) + 0.5 * X.toarray())

    def test_axpy_matrix_free(self):
        X = spla.aslinearoperator(_laplacian(4))
        Y = np.eye(4)
        Z = axpy_operator(3.0, X, Y)
        assert isinstance(Z, spla.LinearOperator)
        x = np.arange(4.0)
        np.testing.assert_allclose(Z.matvec(x), x + 3.0 * (_laplacian(4) @ x))

    def test_axpy_shape_mismatch(self):
        with pytest.raises(ValueError, match="shapes differ"):
            axpy_operator(1.0, np.eye(2), np.eye(3))

    def test_apply_operator_returns_1d(self):
        x = np.ones(3)
        for op in (np.eye(3), sp.identity(3, format="csr"), spla.aslinearoperator(np.eye(3))):
            y = apply_operator(op, x)
            assert y.shape == (3,)
            np.testing.assert_allclose(y, x)

    def test_operator_dtype(self):
        assert operator_dtype(np.eye(2), sp.identity(2)) == np.float64
        assert operator_dtype(np.eye(2), np.asarray(1j)) == np.complex128
        assert operator_dtype() == np.float64


class TestShiftInvertOperator:
    @pytest.fixture
    def pair(self):
        K = np.diag([4.0, 9.0, 16.0])
        M = np.diag([1.0, 2.0, 1.0])
        return K, M

    def test_apply_matches_dense_solve(self, pair):
        K, M = pair
        op = GeneralizedShiftInvert(K, M, 1.0, DirectSolver())
        v = np.array([1.0, -2.0, 0.5])
        expected = np.linalg.solve(K - 1.0 * M, M @ v)
        np.testing.assert_allclose(op.apply(v), expected)
        assert op.n_applies == 1

    def test_spectral_map_round_trip(self, pair):
        op = GeneralizedShiftInvert(*pair, 2.0, DirectSolver())
        theta = op.to_ritz_value(4.0)
        assert theta == pytest.approx(0.5)
        assert op.to_eigenvalue(theta) == pytest.approx(4.0)

    def test_set_sigma_refactors(self, pair):
        K, M = pair
        op = GeneralizedShiftInvert(K, M, 0.0, DirectSolver())
        v = np.ones(3)
        w0 = op.apply(v)
        op.set_sigma(3.0)
        w1 = op.apply(v)
        np.testing.assert_allclose(w1, np.linalg.solve(K - 3.0 * M, M @ v))
        assert not np.allclose(w0, w1)

    def test_inner_product_uses_mass(self, pair):
        K, M = pair
        op = GeneralizedShiftInvert(K, M, 0.0, DirectSolver())
        x = np.array([1.0, 1.0, 0.0])
        assert op.inner(x, x) == pytest.approx(3.0)
        assert op.norm(x) == pytest.approx(np.sqrt(3.0))
        assert op.inner_b(x, x) == pytest.approx(3.0)

    def test_inner_product_is_bilinear(self, pair):
        op = GeneralizedShiftInvert(*pair, 0.0, DirectSolver())
        x = np.array([1.0j, 0.0, 0.0])
        # no conjugation: (i)(i) = -1
        assert op.inner(x, x) == pytest.approx(-1.0)

    def test_residual_of_exact_pair(self, pair):
        K, M = pair
        op = GeneralizedShiftInvert(K, M, 0.0, DirectSolver())
        x = np.array([0.0, 1.0, 0.0])
        np.testing.assert_allclose(op.residual(4.5, x), 0.0, atol=1e-14)

    def test_buckling_roles(self):
        K = np.diag([2.0, 3.0])
        G = np.diag([-1.0, -1.0])
        op = BucklingShiftInvert(K, G, 0.5, DirectSolver())
        np.testing.assert_allclose(op.B, -G)
        assert op.W is K
        v = np.array([1.0, 1.0])
        expected = np.linalg.solve(K + 0.5 * G, -G @ v)
        np.testing.assert_allclose(op.apply(v), expected)

    def test_matrix_free(self):
        K = _laplacian(6)
        op = ShiftInvertOperator(
            spla.aslinearoperator(K), sp.identity(6, format="csr"), 0.0,
            KrylovSolver(rtol=1e-12),
        )
        v = np.linspace(0.0, 1.0, 6)
        np.testing.assert_allclose(op.apply(v), spla.spsolve(K.tocsc(), v), rtol=1e-8)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="square"):
            ShiftInvertOperator(np.eye(2), np.eye(3), 0.0, DirectSolver())
