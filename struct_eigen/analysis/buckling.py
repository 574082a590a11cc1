"""Linearized buckling analysis.

Solves ``(K + lambda G(u0)) x = 0`` where ``u0`` is the static
displacement under the reference load and ``G`` the geometric stiffness
linearized about it.  ``lambda`` is the load factor: the structure
buckles at ``lambda * f``.

Algorithm
---------
1. Assemble ``K`` and ``f``; factor ``K`` and solve ``K u0 = f`` with a
   private clone of the linear solver (the path solver keeps the ``K``
   factorization for the sensitivity adjoints).
2. Assemble ``G(u0)``.
3. Run Lanczos on ``(K + sigma G)^{-1} (-G)`` in the ``K`` inner product.

Sensitivity
-----------
With ``R(u, p) = K(p) u - f(p) = 0``::

    dlambda/dp = [x^T dK/dp x + lambda x^T dG/dp x - psi^T dR/dp] / (-x^T G x)
    K psi = lambda d(x^T G(u) x)/du

One adjoint solve per eigenvalue, reusing the path factorization.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from struct_eigen.analysis.assembler_interface import AssemblerInterface, MatrixKind
from struct_eigen.analysis.config import BucklingConfig, LanczosConfig
from struct_eigen.analysis.eigen_analysis import EigenAnalysis
from struct_eigen.analysis.linear_solver import LinearSolver
from struct_eigen.analysis.operators import BucklingShiftInvert, ShiftInvertOperator
from struct_eigen.core.logger import StructuredLogger

logger = logging.getLogger(__name__)


class LinearBuckling(EigenAnalysis):
    """Buckling load factors and their design sensitivities.

    Parameters
    ----------
    assembler : AssemblerInterface
        Must provide stiffness, geometric stiffness and loads.
    load_case : int
        Reference load case.
    sigma : scalar
        Shift in load-factor units; ``0`` targets the smallest factors.
    solver, config, structured_logger
        See :class:`EigenAnalysis`.
    """

    analysis_name = "buckling"

    def __init__(
        self,
        assembler: AssemblerInterface,
        load_case: int = 0,
        sigma: Any = 0.0,
        solver: Optional[LinearSolver] = None,
        config: Optional[LanczosConfig] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ) -> None:
        super().__init__(assembler, sigma, solver, config, structured_logger)
        self._load_case = load_case
        self._path: Optional[NDArray] = None
        self._path_solver: Optional[LinearSolver] = None

    @classmethod
    def from_config(
        cls,
        assembler: AssemblerInterface,
        config: BucklingConfig,
        solver: Optional[LinearSolver] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ) -> LinearBuckling:
        return cls(
            assembler,
            load_case=config.load_case,
            sigma=config.sigma,
            solver=solver,
            config=config.lanczos,
            structured_logger=structured_logger,
        )

    @property
    def load_case(self) -> int:
        return self._load_case

    @load_case.setter
    def load_case(self, value: int) -> None:
        if value != self._load_case:
            self._load_case = value
            self._path = None
            self._path_solver = None
            self._result = None

    @property
    def path(self) -> Optional[NDArray]:
        """Copy of the static displacement of the last path solve."""
        return None if self._path is None else self._path.copy()

    # ------------------------------------------------------------------
    # Path
    # ------------------------------------------------------------------
    def solve_path(self) -> NDArray:
        """Solve ``K u0 = f`` for the current design and load case."""
        t0 = time.perf_counter()
        K = self._assembler.assemble_matrix(MatrixKind.STIFFNESS)
        f = self._assembler.assemble_load(self._load_case)
        if not np.any(f):
            raise ValueError(
                f"Load case {self._load_case} produces a zero load vector; "
                "buckling requires a non-zero reference load."
            )

        path_solver = self._solver.clone()
        path_solver.set_operator(K)
        path_solver.factor()
        u = path_solver.solve(f)

        self._path_solver = path_solver
        self._path = u
        logger.info(
            "Path solve (load case %d): ||f||=%.3e, ||u||=%.3e, time=%.3f s",
            self._load_case,
            np.linalg.norm(f),
            np.linalg.norm(u),
            time.perf_counter() - t0,
        )
        return u.copy()

    def _build_operator(self) -> ShiftInvertOperator:
        self.solve_path()
        K = self._path_solver.operator
        G = self._assembler.assemble_matrix(MatrixKind.GEOMETRIC_STIFFNESS, path=self._path)
        return BucklingShiftInvert(K, G, self._sigma, self._solver)

    def _solve_metadata(self) -> dict:
        metadata = super()._solve_metadata()
        metadata["load_case"] = self._load_case
        return metadata

    # ------------------------------------------------------------------
    # Sensitivity
    # ------------------------------------------------------------------
    def _add_sens_numerator(self, eigenvalue: Any, x: NDArray, dfdx: NDArray) -> None:
        a = self._assembler
        u = self._path
        a.add_matrix_dv_sens_inner_product(MatrixKind.STIFFNESS, 1.0, x, x, dfdx)
        a.add_matrix_dv_sens_inner_product(
            MatrixKind.GEOMETRIC_STIFFNESS, eigenvalue, x, x, dfdx, path=u
        )

        # Path dependence of G
        dgdu = a.matrix_sv_sens_inner_product(MatrixKind.GEOMETRIC_STIFFNESS, x, x, u)
        if not np.any(dgdu):
            return
        psi = self._path_solver.solve(eigenvalue * dgdu)
        a.add_residual_adjoint_product(self._load_case, -1.0, psi, u, dfdx)

    def critical_load_factor(self) -> Any:
        """Smallest positive load factor among the stored pairs."""
        values = [
            self.extract_eigenvalue(i)[0] for i in range(self.num_converged)
        ]
        positive = [v for v in values if np.real(v) > 0.0]
        if not positive:
            raise ValueError("No positive buckling load factor was extracted.")
        return min(positive, key=np.real)
