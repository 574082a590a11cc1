"""Parametric assembler built from explicit matrices.

Each operator is affine in the design variables::

    A(p) = A_0 + sum_i p_i A_i

and the reference loads follow the same rule.  The geometric stiffness
does not depend on the path displacement.  Useful for small verification
problems and for wrapping matrices produced by an external code.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from struct_eigen.analysis.assembler_interface import AssemblerInterface, MatrixKind
from struct_eigen.analysis.operators import apply_operator

logger = logging.getLogger(__name__)


class MatrixAssembler(AssemblerInterface):
    """Affine parametric matrices behind the assembly interface.

    Parameters
    ----------
    stiffness : array or sparse matrix
        ``K_0``.
    mass, geometric_stiffness : array or sparse matrix, optional
        ``M_0`` and ``G_0``.
    stiffness_derivs, mass_derivs, geometric_derivs : sequence, optional
        ``dA/dp_i`` for each design variable (missing entries are zero).
    loads : dict[int, array], optional
        Reference load ``f_0`` per load case.
    load_derivs : dict[int, sequence of arrays], optional
        ``df/dp_i`` per load case.
    design_vars : array, optional
        Initial design variables (default zeros).
    """

    def __init__(
        self,
        stiffness: Any,
        mass: Optional[Any] = None,
        geometric_stiffness: Optional[Any] = None,
        stiffness_derivs: Sequence[Any] = (),
        mass_derivs: Sequence[Any] = (),
        geometric_derivs: Sequence[Any] = (),
        loads: Optional[dict[int, NDArray]] = None,
        load_derivs: Optional[dict[int, Sequence[NDArray]]] = None,
        design_vars: Optional[NDArray] = None,
    ) -> None:
        n = stiffness.shape[0]
        self._base = {
            MatrixKind.STIFFNESS: stiffness,
            MatrixKind.MASS: mass,
            MatrixKind.GEOMETRIC_STIFFNESS: geometric_stiffness,
        }
        self._derivs = {
            MatrixKind.STIFFNESS: list(stiffness_derivs),
            MatrixKind.MASS: list(mass_derivs),
            MatrixKind.GEOMETRIC_STIFFNESS: list(geometric_derivs),
        }
        for kind, op in self._base.items():
            if op is not None and op.shape != (n, n):
                raise ValueError(
                    f"{kind.value} matrix has shape {op.shape}, expected {(n, n)}"
                )

        self._loads = {int(k): np.asarray(v) for k, v in (loads or {}).items()}
        self._load_derivs = {
            int(k): [np.asarray(d) for d in v] for k, v in (load_derivs or {}).items()
        }

        num_dvs = max(
            [len(d) for d in self._derivs.values()]
            + [len(d) for d in self._load_derivs.values()]
            + [0 if design_vars is None else len(design_vars)]
        )
        if design_vars is None:
            design_vars = np.zeros(num_dvs)
        self._x = np.array(design_vars, copy=True)
        if self._x.shape != (num_dvs,):
            raise ValueError(
                f"design_vars must have {num_dvs} entries, got shape {self._x.shape}"
            )
        self._n = n

    # ------------------------------------------------------------------
    # Design variables
    # ------------------------------------------------------------------
    @property
    def n_dof(self) -> int:
        return self._n

    @property
    def num_design_vars(self) -> int:
        return self._x.shape[0]

    def get_design_vars(self) -> NDArray:
        return self._x.copy()

    def set_design_vars(self, x: NDArray) -> None:
        x = np.asarray(x)
        if x.shape != self._x.shape:
            raise ValueError(
                f"Expected {self._x.shape[0]} design variables, got shape {x.shape}"
            )
        self._x = x.copy()

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------
    def _deriv(self, kind: MatrixKind, i: int) -> Optional[Any]:
        derivs = self._derivs[kind]
        return derivs[i] if i < len(derivs) else None

    def assemble_matrix(self, kind: MatrixKind, path: Optional[NDArray] = None) -> Any:
        base = self._base[kind]
        if base is None:
            raise ValueError(f"No {kind.value} matrix was provided to MatrixAssembler.")
        A = sp.csr_matrix(base, copy=True) if sp.issparse(base) else np.array(base, copy=True)
        for i, p in enumerate(self._x):
            dA = self._deriv(kind, i)
            if dA is None or p == 0.0:
                continue
            A = A + p * dA
        return sp.csr_matrix(A) if sp.issparse(A) else A

    def assemble_load(self, load_case: int) -> NDArray:
        if load_case not in self._loads:
            raise ValueError(
                f"Load case {load_case!r} not defined. "
                f"Available cases: {sorted(self._loads)}"
            )
        f = self._loads[load_case].astype(np.result_type(self._loads[load_case], self._x))
        for i, df in enumerate(self._load_derivs.get(load_case, [])):
            if self._x[i] != 0.0:
                f = f + self._x[i] * df
        return f

    # ------------------------------------------------------------------
    # Derivative products
    # ------------------------------------------------------------------
    def add_matrix_dv_sens_inner_product(
        self,
        kind: MatrixKind,
        scale: Any,
        psi: NDArray,
        phi: NDArray,
        dfdx: NDArray,
        path: Optional[NDArray] = None,
    ) -> None:
        for i in range(self.num_design_vars):
            dA = self._deriv(kind, i)
            if dA is not None:
                dfdx[i] += scale * psi.dot(apply_operator(dA, phi))

    def matrix_sv_sens_inner_product(
        self,
        kind: MatrixKind,
        psi: NDArray,
        phi: NDArray,
        path: NDArray,
    ) -> NDArray:
        return np.zeros(self._n, dtype=np.result_type(psi, phi))

    def add_residual_adjoint_product(
        self,
        load_case: int,
        scale: Any,
        adjoint: NDArray,
        path: NDArray,
        dfdx: NDArray,
    ) -> None:
        load_derivs = self._load_derivs.get(load_case, [])
        for i in range(self.num_design_vars):
            dK = self._deriv(MatrixKind.STIFFNESS, i)
            dR = np.zeros(self._n, dtype=np.result_type(path, adjoint))
            if dK is not None:
                dR = dR + apply_operator(dK, path)
            if i < len(load_derivs):
                dR = dR - load_derivs[i]
            dfdx[i] += scale * adjoint.dot(dR)

    def __repr__(self) -> str:
        return f"MatrixAssembler(n_dof={self._n}, num_design_vars={self.num_design_vars})"
