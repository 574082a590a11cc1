"""Linear solvers used for the shift-invert action and the path solve.

Every solver follows the same life cycle::

    solver.set_operator(A)
    solver.factor()
    x = solver.solve(b)

``solve`` raises :class:`LinearSolveFailure` when the solution does not
meet the solver tolerance; it never returns a silently inaccurate
vector.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import scipy.linalg as sla
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from numpy.typing import NDArray

from struct_eigen.core.config import AppConfig
from struct_eigen.core.errors import LinearSolveFailure

logger = logging.getLogger(__name__)


def _is_complex(x) -> bool:
    return np.iscomplexobj(x)


# ---------------------------------------------------------------------------
# Preconditioners
# ---------------------------------------------------------------------------
class Preconditioner(ABC):
    """Approximate inverse attached to a :class:`KrylovSolver`."""

    @abstractmethod
    def factor(self, mat) -> None:
        """Build the preconditioner for ``mat``."""
        ...

    @abstractmethod
    def as_linear_operator(self) -> spla.LinearOperator:
        """Return the action ``x -> P^{-1} x``."""
        ...


class ILUPreconditioner(Preconditioner):
    """Incomplete LU factorisation via ``scipy.sparse.linalg.spilu``."""

    def __init__(self, drop_tol: float = 1e-4, fill_factor: float = 10.0) -> None:
        self.drop_tol = drop_tol
        self.fill_factor = fill_factor
        self._ilu = None
        self._shape: Optional[tuple[int, int]] = None
        self._dtype = np.float64

    def factor(self, mat) -> None:
        if isinstance(mat, spla.LinearOperator):
            raise ValueError("ILUPreconditioner requires an assembled matrix.")
        csc = sp.csc_matrix(mat)
        try:
            self._ilu = spla.spilu(
                csc, drop_tol=self.drop_tol, fill_factor=self.fill_factor
            )
        except RuntimeError as exc:
            raise LinearSolveFailure(
                f"Incomplete LU factorisation failed: {exc}"
            ) from exc
        self._shape = csc.shape
        self._dtype = csc.dtype

    def as_linear_operator(self) -> spla.LinearOperator:
        if self._ilu is None:
            raise RuntimeError("ILUPreconditioner.factor() has not been called.")
        ilu = self._ilu

        def _apply(x):
            x = np.asarray(x).ravel()
            if _is_complex(x) and not np.issubdtype(self._dtype, np.complexfloating):
                return ilu.solve(np.ascontiguousarray(x.real)) + 1j * ilu.solve(
                    np.ascontiguousarray(x.imag)
                )
            return ilu.solve(x.astype(self._dtype))

        return spla.LinearOperator(self._shape, matvec=_apply, dtype=self._dtype)

    def __repr__(self) -> str:
        return f"ILUPreconditioner(drop_tol={self.drop_tol}, fill_factor={self.fill_factor})"


class JacobiPreconditioner(Preconditioner):
    """Inverse of the operator diagonal; zero diagonal entries are left unscaled."""

    def __init__(self) -> None:
        self._inv_diag: Optional[NDArray] = None

    def factor(self, mat) -> None:
        if isinstance(mat, spla.LinearOperator):
            raise ValueError("JacobiPreconditioner requires an assembled matrix.")
        diag = mat.diagonal() if sp.issparse(mat) else np.diagonal(np.asarray(mat))
        inv = np.ones_like(diag)
        nonzero = diag != 0.0
        inv[nonzero] = 1.0 / diag[nonzero]
        self._inv_diag = inv

    def as_linear_operator(self) -> spla.LinearOperator:
        if self._inv_diag is None:
            raise RuntimeError("JacobiPreconditioner.factor() has not been called.")
        inv = self._inv_diag
        n = inv.shape[0]
        return spla.LinearOperator(
            (n, n), matvec=lambda x: inv * np.asarray(x).ravel(), dtype=inv.dtype
        )

    def __repr__(self) -> str:
        return "JacobiPreconditioner()"


# ---------------------------------------------------------------------------
# Solvers
# ---------------------------------------------------------------------------
class LinearSolver(ABC):
    """Abstract base for the linear-system collaborator."""

    def __init__(self) -> None:
        self._mat = None
        self._factored = False
        self.n_solves = 0

    def set_operator(self, mat) -> None:
        """Attach a new operator; the previous factorisation is discarded."""
        if mat.shape[0] != mat.shape[1]:
            raise ValueError(f"Operator must be square, got shape {mat.shape}")
        self._mat = mat
        self._factored = False

    @property
    def operator(self):
        return self._mat

    @abstractmethod
    def factor(self) -> None:
        """Factorise / set up the attached operator."""
        ...

    @abstractmethod
    def solve(self, rhs: NDArray) -> NDArray:
        """Return ``x`` with ``A x = rhs``; raise LinearSolveFailure otherwise."""
        ...

    @abstractmethod
    def clone(self) -> LinearSolver:
        """Fresh solver with identical settings and no attached operator."""
        ...

    def _require_factored(self) -> None:
        if self._mat is None:
            raise RuntimeError(f"{type(self).__name__}: no operator set.")
        if not self._factored:
            self.factor()


class DirectSolver(LinearSolver):
    """Sparse (SuperLU) or dense (LAPACK) LU factorisation.

    Parameters
    ----------
    rtol : float
        Normwise backward error
        ``||A x - b|| / (||A|| ||x|| + ||b||)`` (infinity norms) above which
        a solve is reported as failed.
    """

    def __init__(self, rtol: float = 1e-6) -> None:
        super().__init__()
        self.rtol = rtol
        self._lu = None
        self._lu_dtype = np.dtype(np.float64)
        self._a_norm = 0.0
        self._dense = False

    def factor(self) -> None:
        if self._mat is None:
            raise RuntimeError("DirectSolver: no operator set.")
        mat = self._mat
        if isinstance(mat, spla.LinearOperator):
            raise ValueError(
                "DirectSolver requires an assembled matrix; "
                "use KrylovSolver for matrix-free operators."
            )
        if sp.issparse(mat):
            try:
                csc = sp.csc_matrix(mat)
                self._lu = spla.splu(csc)
            except RuntimeError as exc:
                raise LinearSolveFailure(
                    f"Sparse LU factorisation failed: {exc}"
                ) from exc
            self._lu_dtype = csc.dtype
            self._dense = False
            self._a_norm = float(abs(csc).sum(axis=1).max()) if csc.nnz else 0.0
        else:
            arr = np.asarray(mat)
            lu, piv = sla.lu_factor(arr, check_finite=True)
            if np.any(np.diag(lu) == 0.0):
                raise LinearSolveFailure("Dense LU factorisation failed: singular matrix.")
            self._lu = (lu, piv)
            self._dense = True
            self._a_norm = float(np.linalg.norm(arr, np.inf))
        self._factored = True

    def _backsolve(self, rhs: NDArray) -> NDArray:
        if self._dense:
            return sla.lu_solve(self._lu, rhs)
        factor_complex = np.issubdtype(self._lu_dtype, np.complexfloating)
        if _is_complex(rhs) and not factor_complex:
            return self._lu.solve(np.ascontiguousarray(rhs.real)) + 1j * self._lu.solve(
                np.ascontiguousarray(rhs.imag)
            )
        return self._lu.solve(np.asarray(rhs, dtype=self._lu_dtype))

    def solve(self, rhs: NDArray) -> NDArray:
        self._require_factored()
        rhs = np.asarray(rhs)
        x = self._backsolve(rhs)
        self.n_solves += 1

        if not np.all(np.isfinite(x)):
            raise LinearSolveFailure("Direct solve produced non-finite values.")

        res_norm = float(np.linalg.norm(self._mat @ x - rhs, np.inf))
        bound = self._a_norm * float(np.linalg.norm(x, np.inf)) + float(
            np.linalg.norm(rhs, np.inf)
        )
        if bound > 0.0 and res_norm > self.rtol * bound:
            raise LinearSolveFailure(
                f"Direct solve residual {res_norm:.3e} exceeds "
                f"{self.rtol:.1e} * (||A|| ||x|| + ||b||) = {self.rtol * bound:.3e}",
                residual_norm=res_norm,
            )
        return x

    def clone(self) -> DirectSolver:
        return DirectSolver(rtol=self.rtol)

    def __repr__(self) -> str:
        return f"DirectSolver(rtol={self.rtol})"


class KrylovSolver(LinearSolver):
    """Restarted GMRES with an optional preconditioner."""

    def __init__(
        self,
        rtol: float = 1e-10,
        atol: float = 0.0,
        restart: int = 50,
        maxiter: int = 1000,
        preconditioner: Optional[Preconditioner] = None,
    ) -> None:
        super().__init__()
        self.rtol = rtol
        self.atol = atol
        self.restart = restart
        self.maxiter = maxiter
        self.preconditioner = preconditioner
        self._pc_op: Optional[spla.LinearOperator] = None
        self.n_iterations = 0

    def factor(self) -> None:
        if self._mat is None:
            raise RuntimeError("KrylovSolver: no operator set.")
        if self.preconditioner is not None:
            self.preconditioner.factor(self._mat)
            self._pc_op = self.preconditioner.as_linear_operator()
        else:
            self._pc_op = None
        self._factored = True

    def solve(self, rhs: NDArray) -> NDArray:
        self._require_factored()
        rhs = np.asarray(rhs)
        if not np.any(rhs):
            return np.zeros_like(rhs)

        iterations = [0]

        def _count(_):
            iterations[0] += 1

        x, info = spla.gmres(
            self._mat,
            rhs,
            rtol=self.rtol,
            atol=self.atol,
            restart=self.restart,
            maxiter=self.maxiter,
            M=self._pc_op,
            callback=_count,
            callback_type="pr_norm",
        )
        self.n_solves += 1
        self.n_iterations += iterations[0]

        if info != 0:
            res_norm = float(np.linalg.norm(self._mat @ x - rhs))
            reason = "breakdown" if info < 0 else f"no convergence after {info} iterations"
            raise LinearSolveFailure(
                f"GMRES failed ({reason}); residual {res_norm:.3e}",
                residual_norm=res_norm,
                info=int(info),
            )
        return x

    def clone(self) -> KrylovSolver:
        pc = None
        if isinstance(self.preconditioner, ILUPreconditioner):
            pc = ILUPreconditioner(self.preconditioner.drop_tol, self.preconditioner.fill_factor)
        elif isinstance(self.preconditioner, JacobiPreconditioner):
            pc = JacobiPreconditioner()
        return KrylovSolver(
            rtol=self.rtol,
            atol=self.atol,
            restart=self.restart,
            maxiter=self.maxiter,
            preconditioner=pc,
        )

    def __repr__(self) -> str:
        return (
            f"KrylovSolver(rtol={self.rtol}, restart={self.restart}, "
            f"maxiter={self.maxiter}, preconditioner={self.preconditioner!r})"
        )


def create_linear_solver(config: Optional[AppConfig] = None) -> LinearSolver:
    """Build a solver from the ``linear_solver`` section of an AppConfig."""
    section = (config or AppConfig()).section("linear_solver")
    solver_type = str(section.get("type", "direct")).lower().strip()

    if solver_type == "direct":
        return DirectSolver(rtol=float(section.get("direct_rtol", 1e-6)))
    if solver_type in ("krylov", "gmres"):
        pc_name = str(section.get("preconditioner", "ilu")).lower().strip()
        if pc_name == "ilu":
            pc: Optional[Preconditioner] = ILUPreconditioner()
        elif pc_name == "jacobi":
            pc = JacobiPreconditioner()
        elif pc_name in ("none", ""):
            pc = None
        else:
            raise ValueError(
                f"Unsupported preconditioner: {pc_name!r}. "
                "Must be 'ilu', 'jacobi', or 'none'."
            )
        return KrylovSolver(
            rtol=float(section.get("rtol", 1e-10)),
            atol=float(section.get("atol", 0.0)),
            restart=int(section.get("restart", 50)),
            maxiter=int(section.get("maxiter", 1000)),
            preconditioner=pc,
        )
    raise ValueError(
        f"Unsupported linear solver type: {solver_type!r}. Must be 'direct' or 'krylov'."
    )
