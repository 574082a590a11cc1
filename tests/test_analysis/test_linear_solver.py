"""Tests for the direct and Krylov linear-solver collaborators."""
from __future__ import annotations

import numpy as np
import pytest
import scipy.linalg as sla
import scipy.sparse as sp

from struct_eigen.analysis.linear_solver import (
    DirectSolver,
    ILUPreconditioner,
    JacobiPreconditioner,
    KrylovSolver,
    create_linear_solver,
)
from struct_eigen.core.config import AppConfig
from struct_eigen.core.errors import LinearSolveFailure


def _spd(n=40):
    main = 4.0 + np.arange(n) * 0.1
    return sp.diags([-np.ones(n - 1), main, -np.ones(n - 1)], [-1, 0, 1], format="csr")


@pytest.fixture(scope="module")
def system():
    A = _spd()
    x_true = 2.0 + np.sin(np.arange(A.shape[0]))
    return A, x_true, A @ x_true


class TestDirectSolver:
    def test_sparse_solve(self, system):
        A, x_true, b = system
        solver = DirectSolver()
        solver.set_operator(A)
        solver.factor()
        np.testing.assert_allclose(solver.solve(b), x_true, rtol=1e-10)
        assert solver.n_solves == 1

    def test_dense_solve(self, system):
        A, x_true, b = system
        solver = DirectSolver()
        solver.set_operator(A.toarray())
        np.testing.assert_allclose(solver.solve(b), x_true, rtol=1e-10)

    def test_complex_rhs_on_real_factor(self, system):
        A, x_true, b = system
        solver = DirectSolver()
        solver.set_operator(A)
        x = solver.solve(b + 1j * 2.0 * b)
        np.testing.assert_allclose(x.real, x_true, rtol=1e-10)
        np.testing.assert_allclose(x.imag, 2.0 * x_true, rtol=1e-10)

    def test_singular_sparse(self):
        A = sp.csr_matrix(np.diag([1.0, 0.0, 2.0]))
        solver = DirectSolver()
        solver.set_operator(A)
        with pytest.raises(LinearSolveFailure):
            solver.factor()

    def test_singular_dense(self):
        solver = DirectSolver()
        solver.set_operator(np.diag([1.0, 0.0]))
        with pytest.raises(LinearSolveFailure):
            solver.factor()

    def test_no_operator(self):
        with pytest.raises(RuntimeError, match="no operator"):
            DirectSolver().solve(np.ones(2))

    def test_non_square(self):
        with pytest.raises(ValueError, match="square"):
            DirectSolver().set_operator(np.ones((2, 3)))

    def test_ill_conditioned_accepted(self):
        # cond(H) ~ 1e13, ||x|| >> ||b||
        A = sla.hilbert(10)
        b = np.ones(10)
        solver = DirectSolver()
        solver.set_operator(A)
        x = solver.solve(b)
        res = np.linalg.norm(A @ x - b, np.inf)
        bound = np.linalg.norm(A, np.inf) * np.linalg.norm(x, np.inf) + np.linalg.norm(b, np.inf)
        assert res <= 1e-6 * bound
        assert np.linalg.norm(x, np.inf) > 1e5 * np.linalg.norm(b, np.inf)

    def test_scaled_stiffness_accepted(self, system):
        A, x_true, _ = system
        A = 1e12 * A
        solver = DirectSolver()
        solver.set_operator(A)
        np.testing.assert_allclose(solver.solve(A @ x_true), x_true, rtol=1e-10)

    def test_inaccurate_solution_rejected(self, system, monkeypatch):
        A, _, b = system
        solver = DirectSolver()
        solver.set_operator(A)
        solver.factor()
        monkeypatch.setattr(solver, "_backsolve", lambda rhs: np.ones_like(rhs))
        with pytest.raises(LinearSolveFailure) as excinfo:
            solver.solve(b)
        assert excinfo.value.residual_norm > 0.0

    def test_clone_is_fresh(self, system):
        A, _, _ = system
        solver = DirectSolver(rtol=1e-4)
        solver.set_operator(A)
        clone = solver.clone()
        assert clone.rtol == 1e-4
        assert clone.operator is None


class TestKrylovSolver:
    @pytest.mark.parametrize("pc", [None, ILUPreconditioner(), JacobiPreconditioner()])
    def test_solve(self, system, pc):
        A, x_true, b = system
        solver = KrylovSolver(rtol=1e-12, preconditioner=pc)
        solver.set_operator(A)
        solver.factor()
        np.testing.assert_allclose(solver.solve(b), x_true, rtol=1e-8)
        assert solver.n_iterations > 0

    def test_zero_rhs(self, system):
        A, _, _ = system
        solver = KrylovSolver()
        solver.set_operator(A)
        np.testing.assert_array_equal(solver.solve(np.zeros(A.shape[0])), 0.0)

    def test_failure_raises(self, system):
        A, _, b = system
        solver = KrylovSolver(rtol=1e-14, restart=2, maxiter=1)
        solver.set_operator(A)
        with pytest.raises(LinearSolveFailure) as excinfo:
            solver.solve(b)
        assert excinfo.value.info is not None
        assert excinfo.value.residual_norm > 0.0

    def test_clone_copies_preconditioner_type(self):
        solver = KrylovSolver(rtol=1e-9, preconditioner=JacobiPreconditioner())
        clone = solver.clone()
        assert clone.rtol == 1e-9
        assert isinstance(clone.preconditioner, JacobiPreconditioner)
        assert clone.preconditioner is not solver.preconditioner


class TestCreateLinearSolver:
    def test_default_is_direct(self):
        assert isinstance(create_linear_solver(), DirectSolver)

    def test_krylov_from_config(self):
        config = AppConfig()
        config.set("linear_solver.type", "krylov")
        config.set("linear_solver.preconditioner", "jacobi")
        solver = create_linear_solver(config)
        assert isinstance(solver, KrylovSolver)
        assert isinstance(solver.preconditioner, JacobiPreconditioner)

    def test_unknown_type(self):
        config = AppConfig()
        config.set("linear_solver.type", "multigrid")
        with pytest.raises(ValueError, match="Unsupported linear solver"):
            create_linear_solver(config)

    def test_unknown_preconditioner(self):
        config = AppConfig()
        config.set("linear_solver.type", "gmres")
        config.set("linear_solver.preconditioner", "amg")
        with pytest.raises(ValueError, match="Unsupported preconditioner"):
            create_linear_solver(config)
