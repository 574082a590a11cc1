"""Global sparse assembly for planar beam-column models.

Assembles stiffness (K), consistent mass (M) and geometric stiffness
(G) into CSR matrices and provides the design-derivative products used
by the eigenvalue sensitivity analysis.

Algorithm
---------
1. Pre-compute per-element unit matrices (``BeamColumnElement``) and the
   6-entry DOF map: node ``idx`` maps to DOFs ``[3*idx, 3*idx+1, 3*idx+2]``.
2. Scale the unit matrices by the section properties of the current
   design (rectangle of width ``b`` and thickness ``t_e``:
   ``A = b t``, ``I = b t^3 / 12``).
3. Scatter all element blocks into COO arrays, convert to CSR and
   symmetrize via ``(A + A.T) / 2``.
4. Apply boundary conditions by elimination: constrained rows and
   columns are zeroed, K receives a constant diagonal and M / G a zero
   diagonal, so constrained DOFs carry infinite eigenvalues.

Design variables are the element thicknesses.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from struct_eigen.analysis.assembler_interface import AssemblerInterface, MatrixKind
from struct_eigen.analysis.config import BeamModel
from struct_eigen.analysis.elements import BeamColumnElement

logger = logging.getLogger(__name__)

_DOFS_PER_NODE = 3
_DOFS_PER_ELEM = 6
_BC_DOFS = {
    "fixed": (0, 1, 2),
    "pinned": (0, 1),
    "roller": (1,),
}


class BeamColumnAssembler(AssemblerInterface):
    """Assemble beam-column operators from a :class:`BeamModel`.

    Parameters
    ----------
    model : BeamModel
        Mesh, material, section and load data.

    Raises
    ------
    ValueError
        If material constants are not positive, or a boundary condition
        references an unknown node set or type.
    """

    def __init__(self, model: BeamModel) -> None:
        if model.E_pa <= 0.0 or model.rho_kg_m3 <= 0.0 or model.width_m <= 0.0:
            raise ValueError(
                "E_pa, rho_kg_m3 and width_m must be positive, got "
                f"{model.E_pa!r}, {model.rho_kg_m3!r}, {model.width_m!r}"
            )

        self._model = model
        self._mesh = model.mesh
        self._elem = BeamColumnElement()
        self._x = np.array(model.thickness_m, copy=True)

        n_elements = self._mesh.n_elements
        self._dof_maps = np.empty((n_elements, _DOFS_PER_ELEM), dtype=np.int64)
        self._units: list[dict[str, NDArray[np.float64]]] = []
        self._grads = np.empty((n_elements, _DOFS_PER_ELEM))

        for e in range(n_elements):
            node_indices = self._mesh.elements[e]
            coords = self._mesh.nodes[node_indices]
            for i in range(2):
                base = _DOFS_PER_NODE * int(node_indices[i])
                self._dof_maps[e, 3 * i:3 * i + 3] = (base, base + 1, base + 2)
            self._units.append(self._elem.unit_matrices(coords))
            self._grads[e] = self._elem.axial_force_gradient(coords, 1.0)

        self._constrained = self._constrained_dofs(model.boundary_conditions)
        self._free_mask = np.ones(self.n_dof)
        self._free_mask[self._constrained] = 0.0

        K0 = self._scatter(self._stiffness_blocks(np.real(self._x)))
        self._bc_diag = float(np.max(np.abs(K0.diagonal()))) if K0.nnz else 1.0

        logger.info(
            "BeamColumnAssembler: %d nodes, %d elements, %d DOFs, %d constrained",
            self._mesh.n_nodes,
            n_elements,
            self.n_dof,
            len(self._constrained),
        )

    # ------------------------------------------------------------------
    # Boundary conditions
    # ------------------------------------------------------------------
    def _constrained_dofs(self, boundary_conditions: list[dict]) -> NDArray[np.int64]:
        dofs = set()
        for bc in boundary_conditions:
            set_name = bc["node_set"]
            if set_name not in self._mesh.node_sets:
                raise ValueError(
                    f"Node set {set_name!r} not found in mesh. "
                    f"Available sets: {list(self._mesh.node_sets.keys())}"
                )
            if "dofs" in bc:
                offsets = tuple(int(d) for d in bc["dofs"])
            else:
                bc_type = bc.get("type", "fixed").lower().strip()
                if bc_type not in _BC_DOFS:
                    raise ValueError(
                        f"Unsupported boundary condition type: {bc['type']!r}. "
                        "Must be 'fixed', 'pinned', or 'roller'."
                    )
                offsets = _BC_DOFS[bc_type]
            for node_idx in self._mesh.node_sets[set_name]:
                for offset in offsets:
                    dofs.add(_DOFS_PER_NODE * int(node_idx) + offset)
        return np.array(sorted(dofs), dtype=np.int64)

    def _apply_bc(self, A: sp.csr_matrix, diag_value: float) -> sp.csr_matrix:
        if len(self._constrained) == 0:
            return A
        P = sp.diags(self._free_mask)
        D = sp.diags((1.0 - self._free_mask) * diag_value)
        A_bc = sp.csr_matrix(P @ A @ P + D)
        A_bc.eliminate_zeros()
        return A_bc

    # ------------------------------------------------------------------
    # Section properties
    # ------------------------------------------------------------------
    def _section(self, t: NDArray) -> tuple[NDArray, NDArray, NDArray, NDArray]:
        """Area, second moment and their thickness derivatives."""
        b = self._model.width_m
        area = b * t
        inertia = b * t ** 3 / 12.0
        d_area = np.full_like(t, b)
        d_inertia = b * t ** 2 / 4.0
        return area, inertia, d_area, d_inertia

    # ------------------------------------------------------------------
    # Element blocks
    # ------------------------------------------------------------------
    def _stiffness_blocks(self, t: NDArray) -> NDArray:
        E = self._model.E_pa
        area, inertia, _, _ = self._section(t)
        return np.array([
            E * area[e] * u["axial"] + E * inertia[e] * u["bending"]
            for e, u in enumerate(self._units)
        ])

    def _mass_blocks(self, t: NDArray) -> NDArray:
        rho = self._model.rho_kg_m3
        area, _, _, _ = self._section(t)
        return np.array([rho * area[e] * u["mass"] for e, u in enumerate(self._units)])

    def _geometric_blocks(self, t: NDArray, path: NDArray) -> NDArray:
        forces = self._axial_forces(t, path)
        return np.array([forces[e] * u["geometric"] for e, u in enumerate(self._units)])

    def _axial_forces(self, t: NDArray, path: NDArray) -> NDArray:
        E = self._model.E_pa
        area, _, _, _ = self._section(t)
        u_masked = path * self._free_mask
        return np.array([
            E * area[e] * (self._grads[e] @ u_masked[self._dof_maps[e]])
            for e in range(self._mesh.n_elements)
        ])

    def _scatter(self, blocks: NDArray) -> sp.csr_matrix:
        n_dof = self.n_dof
        rows = np.repeat(self._dof_maps[:, :, None], _DOFS_PER_ELEM, axis=2)
        cols = np.repeat(self._dof_maps[:, None, :], _DOFS_PER_ELEM, axis=1)
        A = sp.coo_matrix(
            (blocks.ravel(), (rows.ravel(), cols.ravel())), shape=(n_dof, n_dof)
        ).tocsr()
        A = sp.csr_matrix((A + A.T) / 2.0)
        A.eliminate_zeros()
        return A

    # ------------------------------------------------------------------
    # AssemblerInterface
    # ------------------------------------------------------------------
    @property
    def n_dof(self) -> int:
        return self._mesh.n_dof

    @property
    def num_design_vars(self) -> int:
        return self._mesh.n_elements

    @property
    def constrained_dofs(self) -> NDArray[np.int64]:
        return self._constrained.copy()

    @property
    def model(self) -> BeamModel:
        return self._model

    def get_design_vars(self) -> NDArray:
        return self._x.copy()

    def set_design_vars(self, x: NDArray) -> None:
        x = np.asarray(x)
        if x.shape != self._x.shape:
            raise ValueError(
                f"Expected {self._x.shape[0]} thickness values, got shape {x.shape}"
            )
        if np.any(np.real(x) <= 0.0):
            raise ValueError("Element thickness values must be positive.")
        self._x = x.copy()

    def element_axial_forces(self, path: NDArray) -> NDArray:
        """Axial force per element for a displacement vector (tension positive)."""
        return self._axial_forces(self._x, np.asarray(path))

    def assemble_matrix(self, kind: MatrixKind, path: Optional[NDArray] = None) -> sp.csr_matrix:
        t0 = time.perf_counter()
        if kind is MatrixKind.STIFFNESS:
            A = self._apply_bc(self._scatter(self._stiffness_blocks(self._x)), self._bc_diag)
        elif kind is MatrixKind.MASS:
            A = self._apply_bc(self._scatter(self._mass_blocks(self._x)), 0.0)
        elif kind is MatrixKind.GEOMETRIC_STIFFNESS:
            if path is None:
                raise ValueError("Geometric stiffness assembly requires a path displacement.")
            A = self._apply_bc(self._scatter(self._geometric_blocks(self._x, path)), 0.0)
        else:
            raise ValueError(f"Unsupported matrix kind: {kind!r}")

        logger.debug(
            "Assembled %s: %d DOFs, nnz=%d, time=%.3fs",
            kind.value, self.n_dof, A.nnz, time.perf_counter() - t0,
        )
        return A

    def assemble_load(self, load_case: int) -> NDArray:
        if load_case not in self._model.load_cases:
            raise ValueError(
                f"Load case {load_case!r} not defined. "
                f"Available cases: {sorted(self._model.load_cases)}"
            )
        f = np.zeros(self.n_dof, dtype=np.float64)
        for load in self._model.load_cases[load_case]:
            load_type = load.get("type", "force").lower().strip()
            if load_type == "force":
                f = self._apply_force_load(f, load)
            elif load_type == "moment":
                f = self._apply_moment_load(f, load)
            else:
                raise ValueError(
                    f"Unsupported load type: {load['type']!r}. Must be 'force' or 'moment'."
                )
        f[self._constrained] = 0.0
        return f

    def _node_set(self, name: str) -> NDArray[np.int64]:
        if name not in self._mesh.node_sets:
            raise ValueError(
                f"Node set {name!r} not found in mesh. "
                f"Available sets: {list(self._mesh.node_sets.keys())}"
            )
        return np.asarray(self._mesh.node_sets[name], dtype=np.int64)

    def _apply_force_load(self, f: NDArray, load: dict) -> NDArray:
        """Distribute a force equally over the nodes of a node set."""
        node_indices = self._node_set(load["node_set"])
        if len(node_indices) == 0:
            return f
        direction = np.array(load["direction"], dtype=np.float64)
        dir_norm = np.linalg.norm(direction)
        if dir_norm > 0:
            direction = direction / dir_norm
        force_per_node = float(load["magnitude"]) / len(node_indices)
        for node_idx in node_indices:
            for d in range(2):
                f[_DOFS_PER_NODE * int(node_idx) + d] += force_per_node * direction[d]
        return f

    def _apply_moment_load(self, f: NDArray, load: dict) -> NDArray:
        node_indices = self._node_set(load["node_set"])
        if len(node_indices) == 0:
            return f
        moment_per_node = float(load["magnitude"]) / len(node_indices)
        for node_idx in node_indices:
            f[_DOFS_PER_NODE * int(node_idx) + 2] += moment_per_node
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
        E = self._model.E_pa
        _, _, d_area, d_inertia = self._section(self._x)
        psi_m = psi * self._free_mask
        phi_m = phi * self._free_mask

        if kind is MatrixKind.GEOMETRIC_STIFFNESS:
            if path is None:
                raise ValueError("Geometric stiffness derivatives require a path displacement.")
            u_m = path * self._free_mask

        for e, unit in enumerate(self._units):
            dofs = self._dof_maps[e]
            pe, fe = psi_m[dofs], phi_m[dofs]
            if kind is MatrixKind.STIFFNESS:
                value = E * d_area[e] * (pe @ unit["axial"] @ fe)
                value += E * d_inertia[e] * (pe @ unit["bending"] @ fe)
            elif kind is MatrixKind.MASS:
                value = self._model.rho_kg_m3 * d_area[e] * (pe @ unit["mass"] @ fe)
            elif kind is MatrixKind.GEOMETRIC_STIFFNESS:
                dN = E * d_area[e] * (self._grads[e] @ u_m[dofs])
                value = dN * (pe @ unit["geometric"] @ fe)
            else:
                raise ValueError(f"Unsupported matrix kind: {kind!r}")
            dfdx[e] += scale * value

    def matrix_sv_sens_inner_product(
        self,
        kind: MatrixKind,
        psi: NDArray,
        phi: NDArray,
        path: NDArray,
    ) -> NDArray:
        out = np.zeros(self.n_dof, dtype=np.result_type(psi, phi, self._x))
        if kind is not MatrixKind.GEOMETRIC_STIFFNESS:
            return out

        E = self._model.E_pa
        area, _, _, _ = self._section(self._x)
        psi_m = psi * self._free_mask
        phi_m = phi * self._free_mask
        for e, unit in enumerate(self._units):
            dofs = self._dof_maps[e]
            coeff = psi_m[dofs] @ unit["geometric"] @ phi_m[dofs]
            out[dofs] += coeff * E * area[e] * self._grads[e]
        out[self._constrained] = 0.0
        return out

    def add_residual_adjoint_product(
        self,
        load_case: int,
        scale: Any,
        adjoint: NDArray,
        path: NDArray,
        dfdx: NDArray,
    ) -> None:
        E = self._model.E_pa
        _, _, d_area, d_inertia = self._section(self._x)
        adj_m = adjoint * self._free_mask
        u_m = path * self._free_mask
        for e, unit in enumerate(self._units):
            dofs = self._dof_maps[e]
            dK = E * d_area[e] * unit["axial"] + E * d_inertia[e] * unit["bending"]
            dfdx[e] += scale * (adj_m[dofs] @ dK @ u_m[dofs])

    def __repr__(self) -> str:
        return (
            f"BeamColumnAssembler(n_nodes={self._mesh.n_nodes}, "
            f"n_elements={self._mesh.n_elements}, n_dof={self.n_dof}, "
            f"constrained={len(self._constrained)})"
        )
