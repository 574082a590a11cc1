"""Error types raised by the eigenanalysis drivers."""
from __future__ import annotations

from typing import Optional


class EigenAnalysisError(RuntimeError):
    """Base class for failures inside an eigenvalue analysis."""


class LinearSolveFailure(EigenAnalysisError):
    """The shift-invert (or path) linear solve did not converge.

    Aborts the whole eigensolve: an inaccurate operator application
    destroys the orthogonality of the Lanczos basis.
    """

    def __init__(
        self,
        message: str,
        residual_norm: Optional[float] = None,
        info: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.residual_norm = residual_norm
        self.info = info


class NonConvergence(EigenAnalysisError):
    """The Lanczos basis was exhausted before all eigenvalues converged.

    ``result`` holds the best available approximations together with
    their error estimates.
    """

    def __init__(self, message: str, result: Optional[object] = None) -> None:
        super().__init__(message)
        self.result = result


class IndexOutOfRange(EigenAnalysisError, IndexError):
    """Extraction requested for an eigenpair that does not exist."""
