"""Abstract assembly interface consumed by the eigenanalysis drivers."""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray


class MatrixKind(enum.Enum):
    STIFFNESS = "stiffness"
    MASS = "mass"
    GEOMETRIC_STIFFNESS = "geometric_stiffness"


class AssemblerInterface(ABC):
    """Finite-element assembly collaborator.

    Matrices are returned with boundary conditions already applied.
    Derivative products follow the sign convention of the residual
    ``R(u, p) = K(p) u - f(p)``.
    """

    @property
    @abstractmethod
    def n_dof(self) -> int:
        """Number of degrees of freedom."""
        ...

    @property
    @abstractmethod
    def num_design_vars(self) -> int:
        """Number of design variables."""
        ...

    @abstractmethod
    def get_design_vars(self) -> NDArray:
        """Current design variable values (copy)."""
        ...

    @abstractmethod
    def set_design_vars(self, x: NDArray) -> None:
        """Set design variable values (real or complex)."""
        ...

    @abstractmethod
    def assemble_matrix(self, kind: MatrixKind, path: Optional[NDArray] = None) -> Any:
        """Assemble the operator of ``kind``; geometric stiffness needs ``path``."""
        ...

    @abstractmethod
    def assemble_load(self, load_case: int) -> NDArray:
        """Assemble the reference load vector ``f`` of ``load_case``."""
        ...

    @abstractmethod
    def add_matrix_dv_sens_inner_product(
        self,
        kind: MatrixKind,
        scale: Any,
        psi: NDArray,
        phi: NDArray,
        dfdx: NDArray,
        path: Optional[NDArray] = None,
    ) -> None:
        """``dfdx[i] += scale * psi^T (dA/dx_i) phi`` at fixed ``path``."""
        ...

    @abstractmethod
    def matrix_sv_sens_inner_product(
        self,
        kind: MatrixKind,
        psi: NDArray,
        phi: NDArray,
        path: NDArray,
    ) -> NDArray:
        """Return ``d(psi^T A(u) phi)/du`` with constrained entries zeroed."""
        ...

    @abstractmethod
    def add_residual_adjoint_product(
        self,
        load_case: int,
        scale: Any,
        adjoint: NDArray,
        path: NDArray,
        dfdx: NDArray,
    ) -> None:
        """``dfdx[i] += scale * adjoint^T (dR/dx_i)`` for ``R = K u - f``."""
        ...

    def design_dtype(self) -> np.dtype:
        return np.asarray(self.get_design_vars()).dtype
