"""Shared driver for shift-invert eigenvalue analyses.

``EigenAnalysis`` owns the shift, the Lanczos engine, the current
shift-invert operator and the eigenpairs of the last solve.  Concrete
drivers only decide which assembled operators play the roles of ``A``
and ``B`` (``_build_operator``) and which derivative products enter the
sensitivity numerator (``_add_sens_numerator``).
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import numpy as np
from numpy.typing import NDArray

from struct_eigen.analysis.assembler_interface import AssemblerInterface
from struct_eigen.analysis.config import LanczosConfig
from struct_eigen.analysis.lanczos import LanczosSolver
from struct_eigen.analysis.linear_solver import DirectSolver, LinearSolver
from struct_eigen.analysis.operators import ShiftInvertOperator, apply_operator
from struct_eigen.analysis.results import EigenPair, EigenSolveResult
from struct_eigen.core.errors import IndexOutOfRange, NonConvergence
from struct_eigen.core.logger import StructuredLogger

logger = logging.getLogger(__name__)

Monitor = Callable[[str], None]


class EigenAnalysis(ABC):
    """Base class for buckling and natural-frequency drivers.

    Parameters
    ----------
    assembler : AssemblerInterface
        Source of the governing operators and their derivatives.
    sigma : scalar
        Initial spectral shift.
    solver : LinearSolver, optional
        Solver for the shifted operator (default :class:`DirectSolver`).
    config : LanczosConfig, optional
        Basis size, requested count and tolerance.
    structured_logger : StructuredLogger, optional
        When given, every solve and sensitivity is recorded as JSONL.
    """

    analysis_name = "eigen"

    def __init__(
        self,
        assembler: AssemblerInterface,
        sigma: Any = 0.0,
        solver: Optional[LinearSolver] = None,
        config: Optional[LanczosConfig] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._assembler = assembler
        self._sigma = sigma
        self._solver = solver if solver is not None else DirectSolver()
        self._config = config or LanczosConfig()
        self._lanczos = LanczosSolver(self._config)
        self._structured_logger = structured_logger
        self._operator: Optional[ShiftInvertOperator] = None
        self._result: Optional[EigenSolveResult] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def assembler(self) -> AssemblerInterface:
        return self._assembler

    @property
    def config(self) -> LanczosConfig:
        return self._config

    @property
    def operator(self) -> Optional[ShiftInvertOperator]:
        """Shift-invert operator of the last solve."""
        return self._operator

    @property
    def result(self) -> Optional[EigenSolveResult]:
        """Result of the last solve, ``None`` once invalidated."""
        return self._result

    @property
    def num_converged(self) -> int:
        """Number of extractable eigenpairs."""
        if self._result is None:
            return 0
        return min(self._config.num_eigvals, len(self._result.pairs))

    # ------------------------------------------------------------------
    # Shift
    # ------------------------------------------------------------------
    def get_sigma(self) -> Any:
        return self._sigma

    def set_sigma(self, sigma: Any) -> None:
        """Set the shift; stored eigenpairs are discarded.

        The shifted operator is refactored on the next apply, even when
        ``sigma`` equals the current value.
        """
        self._sigma = sigma
        self._result = None
        if self._operator is not None:
            self._operator.set_sigma(sigma)

    @property
    def sigma(self) -> Any:
        return self._sigma

    @sigma.setter
    def sigma(self, value: Any) -> None:
        self.set_sigma(value)

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------
    @abstractmethod
    def _build_operator(self) -> ShiftInvertOperator:
        """Assemble the governing operators and wrap them at ``sigma``."""
        ...

    @abstractmethod
    def _add_sens_numerator(self, eigenvalue: Any, x: NDArray, dfdx: NDArray) -> None:
        """Add ``x^T (dA/dp - lambda dB/dp) x`` (total derivative) into ``dfdx``."""
        ...

    def solve(self, monitor: Optional[Monitor] = None) -> EigenSolveResult:
        """Assemble, factor and run the Lanczos engine at the current shift.

        Raises
        ------
        LinearSolveFailure
            An inner linear solve failed; nothing is stored.
        NonConvergence
            Only in strict mode.  The partial result is still stored and
            can be extracted.
        """
        self._result = None
        t0 = time.perf_counter()
        self._operator = self._build_operator()
        t_assembly = time.perf_counter() - t0
        logger.info(
            "%s: assembled %d DOF operators in %.3f s (sigma=%s)",
            self.analysis_name,
            self._operator.n_dof,
            t_assembly,
            self._sigma,
        )

        try:
            result = self._lanczos.solve(self._operator, monitor=monitor)
        except NonConvergence as exc:
            self._store(exc.result, t_assembly)
            raise
        self._store(result, t_assembly)
        return result

    def _store(self, result: EigenSolveResult, t_assembly: float) -> None:
        result.metadata.setdefault("analysis", self.analysis_name)
        result.metadata.setdefault("assembly_time_s", t_assembly)
        self._result = result
        if self._structured_logger is not None:
            self._structured_logger.log_solve(
                self.analysis_name, self._sigma, result, metadata=self._solve_metadata()
            )

    def _solve_metadata(self) -> dict:
        return {"n_dof": self._assembler.n_dof, "solver": repr(self._solver)}

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    def _pair(self, n: int) -> EigenPair:
        if self._result is None:
            raise IndexOutOfRange(
                f"No eigenpairs available for {self.analysis_name} analysis; "
                "call solve() first."
            )
        limit = self.num_converged
        if not 0 <= n < limit:
            raise IndexOutOfRange(
                f"Eigenpair index {n} out of range: {limit} available "
                f"(num_eigvals={self._config.num_eigvals})."
            )
        return self._result.pairs[n]

    def extract_eigenvalue(self, n: int) -> tuple[Any, float]:
        """Return ``(eigenvalue, error)`` of the ``n``-th pair."""
        pair = self._pair(n)
        return pair.value, pair.error

    def extract_eigenvector(self, n: int, out: NDArray) -> float:
        """Copy the ``n``-th eigenvector into ``out`` and return its error."""
        pair = self._pair(n)
        if out.shape != pair.vector.shape:
            raise ValueError(
                f"Output vector has shape {out.shape}, expected {pair.vector.shape}"
            )
        out[...] = pair.vector
        return pair.error

    def check_eigenvector(self, n: int) -> float:
        """Recompute ``||A x - lambda B x||_2`` of the ``n``-th pair."""
        pair = self._pair(n)
        res = float(np.linalg.norm(self._operator.residual(pair.value, pair.vector)))
        logger.debug(
            "%s eigenvector %d: lambda=%s, ||r||=%.3e, estimate=%.3e",
            self.analysis_name, n, pair.value, res, pair.error,
        )
        return res

    # ------------------------------------------------------------------
    # Orthogonality
    # ------------------------------------------------------------------
    def orthogonality_matrix(self) -> NDArray:
        """Normalized Gram matrix ``X^T W X`` of the stored eigenvectors."""
        k = self.num_converged
        if k == 0:
            return np.zeros((0, 0))
        X = np.column_stack([self._result.pairs[i].vector for i in range(k)])
        WX = np.column_stack([apply_operator(self._operator.W, X[:, j]) for j in range(k)])
        gram = X.T @ WX
        d = np.sqrt(np.abs(np.diag(gram)))
        d[d == 0.0] = 1.0
        return gram / np.outer(d, d)

    def check_orthogonality(self) -> float:
        """Largest off-diagonal magnitude of :meth:`orthogonality_matrix`."""
        gram = self.orthogonality_matrix()
        if gram.shape[0] < 2:
            return 0.0
        off = np.abs(gram - np.diag(np.diag(gram)))
        return float(np.max(off))

    def print_orthogonality(self, monitor: Optional[Monitor] = None) -> float:
        """Report the Gram matrix to ``monitor`` (or the log) and return the measure."""
        gram = self.orthogonality_matrix()
        value = self.check_orthogonality()
        lines = [f"{self.analysis_name} eigenvector orthogonality ({gram.shape[0]} vectors)"]
        for row in np.abs(gram):
            lines.append("  " + " ".join(f"{v:9.2e}" for v in row))
        lines.append(f"  max off-diagonal: {value:.3e}")
        for line in lines:
            if monitor is not None:
                monitor(line)
            else:
                logger.info("%s", line)
        return value

    # ------------------------------------------------------------------
    # Sensitivity
    # ------------------------------------------------------------------
    def eval_eigen_dv_sens(
        self,
        n: int,
        out: Optional[NDArray] = None,
        num_dvs: Optional[int] = None,
    ) -> NDArray:
        """Derivative of the ``n``-th eigenvalue w.r.t. every design variable.

        Uses ``d(lambda)/dp = x^T (dA/dp - lambda dB/dp) x / (x^T B x)``,
        which needs no eigenvector derivative.

        Parameters
        ----------
        n : int
            Eigenpair index.
        out : ndarray, optional
            Caller-owned gradient buffer, filled in place.
        num_dvs : int, optional
            Number of entries to write (default: all design variables).
        """
        pair = self._pair(n)
        total = self._assembler.num_design_vars
        if num_dvs is None:
            num_dvs = total
        if not 0 <= num_dvs <= total:
            raise ValueError(f"num_dvs must be in [0, {total}], got {num_dvs}")

        t0 = time.perf_counter()
        lam, x = pair.value, pair.vector
        dtype = np.result_type(x, np.asarray(lam), self._assembler.design_dtype())
        dfdx = np.zeros(total, dtype=dtype)
        self._add_sens_numerator(lam, x, dfdx)
        dfdx /= self._operator.inner_b(x, x)

        logger.debug(
            "%s sensitivity of eigenvalue %d (%d DVs) in %.3f s",
            self.analysis_name, n, total, time.perf_counter() - t0,
        )
        if self._structured_logger is not None:
            self._structured_logger.log_sensitivity(self.analysis_name, n, lam, dfdx[:num_dvs])

        if out is None:
            return dfdx[:num_dvs].copy()
        out[:num_dvs] = dfdx[:num_dvs]
        return out

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(n_dof={self._assembler.n_dof}, sigma={self._sigma}, "
            f"num_eigvals={self._config.num_eigvals}, "
            f"max_lanczos_vecs={self._config.max_lanczos_vecs})"
        )
