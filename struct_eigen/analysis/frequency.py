"""Natural-frequency analysis.

Solves ``K x = lambda M x`` with ``lambda = omega^2`` through the
shift-invert transformation ``(K - sigma M)^{-1} M``.  Mode shapes are
mass-normalized, so the sensitivity denominator ``x^T M x`` is one.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from struct_eigen.analysis.assembler_interface import AssemblerInterface, MatrixKind
from struct_eigen.analysis.config import FrequencyConfig
from struct_eigen.analysis.eigen_analysis import EigenAnalysis
from struct_eigen.analysis.linear_solver import LinearSolver
from struct_eigen.analysis.operators import GeneralizedShiftInvert, ShiftInvertOperator
from struct_eigen.core.logger import StructuredLogger

logger = logging.getLogger(__name__)


class FrequencyAnalysis(EigenAnalysis):
    """Natural frequencies, mode shapes and ``d(omega^2)/dp``."""

    analysis_name = "frequency"

    @classmethod
    def from_config(
        cls,
        assembler: AssemblerInterface,
        config: FrequencyConfig,
        solver: Optional[LinearSolver] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ) -> FrequencyAnalysis:
        return cls(
            assembler,
            sigma=config.sigma,
            solver=solver,
            config=config.lanczos,
            structured_logger=structured_logger,
        )

    def _build_operator(self) -> ShiftInvertOperator:
        K = self._assembler.assemble_matrix(MatrixKind.STIFFNESS)
        M = self._assembler.assemble_matrix(MatrixKind.MASS)
        return GeneralizedShiftInvert(K, M, self._sigma, self._solver)

    def _add_sens_numerator(self, eigenvalue: Any, x: NDArray, dfdx: NDArray) -> None:
        self._assembler.add_matrix_dv_sens_inner_product(MatrixKind.STIFFNESS, 1.0, x, x, dfdx)
        self._assembler.add_matrix_dv_sens_inner_product(MatrixKind.MASS, -eigenvalue, x, x, dfdx)

    def extract_frequency(self, n: int) -> float:
        """Natural frequency of the ``n``-th mode in Hz."""
        value, _ = self.extract_eigenvalue(n)
        omega_sq = float(np.real(value))
        if omega_sq < 0.0:
            logger.warning("Negative eigenvalue %.4e for mode %d; frequency set to 0", omega_sq, n)
            return 0.0
        return float(np.sqrt(omega_sq) / (2.0 * np.pi))

    def frequencies_hz(self) -> NDArray:
        return np.array([self.extract_frequency(i) for i in range(self.num_converged)])
