"""Matrix capability helpers and the shift-invert spectral transformation.

Governing operators may be dense ``numpy`` arrays, ``scipy.sparse``
matrices or matrix-free ``LinearOperator`` objects.  The eigensolver only
needs three capabilities from them: apply, copy-into and scaled-add.
The helpers below provide those for every representation so that the
Lanczos engine never inspects a concrete storage type.

Shift-invert
------------
For ``A x = lambda B x`` and a shift ``sigma`` the transformed operator

    T = (A - sigma B)^{-1} B

has eigenvalues ``theta = 1 / (lambda - sigma)``, so eigenvalues close to
``sigma`` become the dominant ones.  ``T`` is self-adjoint in the inner
product defined by ``W``:

* frequency:  A = K, B = M,  W = M
* buckling:   A = K, B = -G, W = K   (``(K + lambda G) x = 0``)
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from numpy.typing import NDArray

from struct_eigen.analysis.linear_solver import LinearSolver
from struct_eigen.core.errors import LinearSolveFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Matrix capability
# ---------------------------------------------------------------------------
def is_matrix_free(op: Any) -> bool:
    return isinstance(op, spla.LinearOperator)


def operator_dtype(*ops: Any) -> np.dtype:
    """Common scalar type of operators and scalars."""
    dtypes = []
    for op in ops:
        if op is None:
            continue
        if hasattr(op, "dtype"):
            dtypes.append(op.dtype)
        else:
            dtypes.append(np.asarray(op).dtype)
    return np.result_type(*dtypes) if dtypes else np.dtype(np.float64)


def copy_operator(op: Any) -> Any:
    """Copy preserving representation (sparse operators become CSR)."""
    if sp.issparse(op):
        return sp.csr_matrix(op, copy=True)
    if is_matrix_free(op):
        return op
    return np.array(op, copy=True)


def scale_operator(alpha: Any, op: Any) -> Any:
    """Return ``alpha * op``."""
    if sp.issparse(op):
        return sp.csr_matrix(op * alpha)
    if is_matrix_free(op):
        return op * alpha
    return alpha * np.asarray(op)


def axpy_operator(alpha: Any, X: Any, Y: Any) -> Any:
    """Return ``Y + alpha * X``.

    sparse + sparse stays sparse (CSR), a dense operand promotes the
    result to dense and a matrix-free operand yields a matrix-free sum.
    """
    if X.shape != Y.shape:
        raise ValueError(f"Operator shapes differ: {X.shape} vs {Y.shape}")
    if is_matrix_free(X) or is_matrix_free(Y):
        return spla.aslinearoperator(Y) + spla.aslinearoperator(X) * alpha
    if sp.issparse(X) and sp.issparse(Y):
        return sp.csr_matrix(Y + X * alpha)
    X_dense = X.toarray() if sp.issparse(X) else np.asarray(X)
    Y_dense = Y.toarray() if sp.issparse(Y) else np.asarray(Y)
    return Y_dense + alpha * X_dense


def apply_operator(op: Any, x: NDArray) -> NDArray:
    """Return ``op @ x`` as a 1-D array."""
    if is_matrix_free(op):
        return np.asarray(op.matvec(x)).ravel()
    return np.asarray(op @ x).ravel()


# ---------------------------------------------------------------------------
# Shift-invert operator
# ---------------------------------------------------------------------------
class ShiftInvertOperator:
    """Matrix-free action of ``(A - sigma B)^{-1} B``.

    The operator exclusively owns its auxiliary matrix (the shifted
    combination ``A - sigma B``); it is overwritten on every refactor.

    Parameters
    ----------
    A, B : array, sparse matrix or LinearOperator
        Governing operators of ``A x = lambda B x``.
    sigma : scalar
        Spectral shift.
    solver : LinearSolver
        Solver used for the inner ``(A - sigma B)`` solves.
    inner : operator, optional
        Inner-product operator ``W``.  Defaults to ``B``.
    """

    def __init__(
        self,
        A: Any,
        B: Any,
        sigma: Any,
        solver: LinearSolver,
        inner: Optional[Any] = None,
    ) -> None:
        if A.shape != B.shape or A.shape[0] != A.shape[1]:
            raise ValueError(
                f"Governing operators must be square and of equal shape, "
                f"got {A.shape} and {B.shape}"
            )
        self._A = A
        self._B = B
        self._W = B if inner is None else inner
        self._sigma = sigma
        self._solver = solver
        self._aux = None
        self._factored = False
        self.n_applies = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def n_dof(self) -> int:
        return self._A.shape[0]

    @property
    def dtype(self) -> np.dtype:
        return operator_dtype(self._A, self._B, self._W, np.asarray(self._sigma))

    @property
    def sigma(self) -> Any:
        return self._sigma

    @property
    def A(self) -> Any:
        return self._A

    @property
    def B(self) -> Any:
        return self._B

    @property
    def W(self) -> Any:
        return self._W

    @property
    def solver(self) -> LinearSolver:
        return self._solver

    # ------------------------------------------------------------------
    # Factorisation
    # ------------------------------------------------------------------
    def set_sigma(self, sigma: Any) -> None:
        """Change the shift; the next apply refactors."""
        self._sigma = sigma
        self._factored = False

    def factor(self) -> None:
        """Form ``A - sigma B`` into the auxiliary buffer and factor it."""
        self._aux = axpy_operator(-self._sigma, self._B, copy_operator(self._A))
        self._solver.set_operator(self._aux)
        self._solver.factor()
        self._factored = True
        logger.debug("Factored shifted operator: n=%d, sigma=%s", self.n_dof, self._sigma)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def apply_a(self, x: NDArray) -> NDArray:
        return apply_operator(self._A, x)

    def apply_b(self, x: NDArray) -> NDArray:
        return apply_operator(self._B, x)

    def apply(self, v: NDArray) -> NDArray:
        """Return ``(A - sigma B)^{-1} B v``.

        Raises
        ------
        LinearSolveFailure
            If the inner solve does not reach the solver tolerance.
        """
        w = self.solve_shifted(self.apply_b(v))
        self.n_applies += 1
        return w

    def solve_shifted(self, rhs: NDArray) -> NDArray:
        """Return ``(A - sigma B)^{-1} rhs`` with the current factorisation."""
        if not self._factored:
            self.factor()
        try:
            w = self._solver.solve(rhs)
        except LinearSolveFailure:
            logger.error(
                "Shift-invert solve failed at sigma=%s after %d applies",
                self._sigma,
                self.n_applies,
            )
            raise
        return np.asarray(w).ravel()

    def inner(self, x: NDArray, y: NDArray) -> Any:
        """Bilinear ``y^T W x``."""
        return y.dot(apply_operator(self._W, x))

    def norm(self, x: NDArray) -> Any:
        return np.sqrt(self.inner(x, x))

    def inner_b(self, x: NDArray, y: NDArray) -> Any:
        """Bilinear ``y^T B x``."""
        return y.dot(self.apply_b(x))

    def residual(self, eigenvalue: Any, x: NDArray) -> NDArray:
        """Generalised residual ``A x - lambda B x``."""
        return self.apply_a(x) - eigenvalue * self.apply_b(x)

    # ------------------------------------------------------------------
    # Spectral map
    # ------------------------------------------------------------------
    def to_eigenvalue(self, theta: Any) -> Any:
        """``lambda = sigma + 1 / theta``."""
        return self._sigma + 1.0 / theta

    def to_ritz_value(self, eigenvalue: Any) -> Any:
        """``theta = 1 / (lambda - sigma)``."""
        return 1.0 / (eigenvalue - self._sigma)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(n_dof={self.n_dof}, sigma={self._sigma}, "
            f"solver={self._solver!r})"
        )


class GeneralizedShiftInvert(ShiftInvertOperator):
    """``(K - sigma M)^{-1} M`` for ``K x = lambda M x`` (M inner product)."""

    def __init__(self, K: Any, M: Any, sigma: Any, solver: LinearSolver) -> None:
        super().__init__(K, M, sigma, solver, inner=M)


class BucklingShiftInvert(ShiftInvertOperator):
    """``(K + sigma G)^{-1} (-G)`` for ``(K + lambda G) x = 0`` (K inner product)."""

    def __init__(self, K: Any, G: Any, sigma: Any, solver: LinearSolver) -> None:
        super().__init__(K, scale_operator(-1.0, G), sigma, solver, inner=K)
