"""Eigenanalysis result container dataclasses."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass(frozen=True)
class EigenPair:
    """One extracted eigenpair of ``A x = lambda B x``."""
    value: Any                 # physical eigenvalue (load factor or omega^2)
    vector: np.ndarray         # (n_dof,) eigenvector, W-normalised
    error: float               # |lambda - sigma| ||shifted residual||_W
    ritz_value: Any = 0.0      # theta of the shift-inverted operator


@dataclass
class EigenSolveResult:
    """Result of one Lanczos eigensolve."""
    pairs: list[EigenPair]
    sigma: Any
    converged: bool
    n_iterations: int
    n_applies: int
    eig_tol: float
    solve_time_s: float
    solver_name: str
    basis_orthogonality: float = 0.0
    metadata: dict = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.pairs)

    @property
    def eigenvalues(self) -> np.ndarray:
        return np.array([p.value for p in self.pairs])

    @property
    def errors(self) -> np.ndarray:
        return np.array([p.error for p in self.pairs], dtype=np.float64)

    @property
    def mode_shapes(self) -> np.ndarray:
        """(n_pairs, n_dof) stacked eigenvectors."""
        if not self.pairs:
            return np.zeros((0, 0))
        return np.vstack([p.vector for p in self.pairs])
