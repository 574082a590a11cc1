"""Tests for the beam-column global assembler.

Derivative products are compared against central finite differences of
the assembled (boundary-condition applied) operators.
"""
from __future__ import annotations

import numpy as np
import pytest

from struct_eigen.analysis.assembler_interface import MatrixKind
from struct_eigen.analysis.beam_assembler import BeamColumnAssembler
from struct_eigen.analysis.config import BeamMesh, BeamModel
from struct_eigen.analysis.linear_solver import DirectSolver

_P = 1000.0


def _column(n_elements=6, thickness=0.01, angle_deg=0.0):
    mesh = BeamMesh.straight(1.0, n_elements, angle_deg=angle_deg)
    direction = [-np.cos(np.deg2rad(angle_deg)), -np.sin(np.deg2rad(angle_deg))]
    return BeamModel(
        mesh=mesh,
        E_pa=200e9,
        rho_kg_m3=7850.0,
        width_m=0.02,
        thickness_m=thickness,
        boundary_conditions=[
            {"type": "pinned", "node_set": "base"},
            {"type": "roller", "node_set": "tip"},
        ],
        load_cases={0: [{
            "type": "force", "node_set": "tip", "direction": direction, "magnitude": _P,
        }]},
    )


def _path(assembler, load_case=0):
    solver = DirectSolver()
    solver.set_operator(assembler.assemble_matrix(MatrixKind.STIFFNESS))
    return solver.solve(assembler.assemble_load(load_case))


@pytest.fixture
def assembler():
    model = _column()
    model.thickness_m = np.linspace(0.008, 0.012, model.mesh.n_elements)
    return BeamColumnAssembler(model)


class TestAssembly:
    def test_sizes(self, assembler):
        assert assembler.n_dof == 21
        assert assembler.num_design_vars == 6
        np.testing.assert_array_equal(assembler.constrained_dofs, [0, 1, 19])

    @pytest.mark.parametrize("kind", [MatrixKind.STIFFNESS, MatrixKind.MASS])
    def test_symmetric(self, assembler, kind):
        A = assembler.assemble_matrix(kind).toarray()
        np.testing.assert_allclose(A, A.T, rtol=1e-12, atol=1e-12 * np.abs(A).max())

    def test_boundary_rows_eliminated(self, assembler):
        K = assembler.assemble_matrix(MatrixKind.STIFFNESS).toarray()
        M = assembler.assemble_matrix(MatrixKind.MASS).toarray()
        for dof in assembler.constrained_dofs:
            off = np.delete(K[dof], dof)
            np.testing.assert_array_equal(off, 0.0)
            assert K[dof, dof] > 0.0
            np.testing.assert_array_equal(M[dof], 0.0)
            np.testing.assert_array_equal(M[:, dof], 0.0)

    def test_stiffness_positive_definite(self, assembler):
        K = assembler.assemble_matrix(MatrixKind.STIFFNESS).toarray()
        assert np.linalg.eigvalsh(K).min() > 0.0

    def test_total_mass(self):
        model = _column(thickness=0.01)
        model.boundary_conditions = []
        M = BeamColumnAssembler(model).assemble_matrix(MatrixKind.MASS).toarray()
        e = np.zeros(model.mesh.n_dof)
        e[0::3] = 1.0
        assert e @ M @ e == pytest.approx(7850.0 * 0.02 * 0.01 * 1.0)

    def test_geometric_requires_path(self, assembler):
        with pytest.raises(ValueError, match="path"):
            assembler.assemble_matrix(MatrixKind.GEOMETRIC_STIFFNESS)

    def test_unknown_node_set(self):
        model = _column()
        model.boundary_conditions = [{"type": "fixed", "node_set": "middle"}]
        with pytest.raises(ValueError, match="middle"):
            BeamColumnAssembler(model)

    def test_unknown_bc_type(self):
        model = _column()
        model.boundary_conditions = [{"type": "sliding", "node_set": "base"}]
        with pytest.raises(ValueError, match="Unsupported boundary condition"):
            BeamColumnAssembler(model)

    def test_explicit_dofs(self):
        model = _column()
        model.boundary_conditions = [{"node_set": "tip", "dofs": [2]}]
        assert list(BeamColumnAssembler(model).constrained_dofs) == [20]

    def test_invalid_material(self):
        model = _column()
        model.E_pa = 0.0
        with pytest.raises(ValueError, match="positive"):
            BeamColumnAssembler(model)

    def test_set_design_vars_validation(self, assembler):
        with pytest.raises(ValueError):
            assembler.set_design_vars(np.ones(3))
        with pytest.raises(ValueError, match="positive"):
            assembler.set_design_vars(-np.ones(6))


class TestLoadsAndPath:
    def test_tip_load(self, assembler):
        f = assembler.assemble_load(0)
        assert f[18] == pytest.approx(-_P)
        assert np.count_nonzero(f) == 1

    def test_unknown_load_case(self, assembler):
        with pytest.raises(ValueError, match="Load case"):
            assembler.assemble_load(3)

    def test_moment_load(self):
        model = _column()
        model.load_cases = {1: [{"type": "moment", "node_set": "tip", "magnitude": 5.0}]}
        f = BeamColumnAssembler(model).assemble_load(1)
        assert f[20] == pytest.approx(5.0)

    @pytest.mark.parametrize("angle", [0.0, 35.0])
    def test_axial_force_equals_load(self, angle):
        model = _column(angle_deg=angle)
        if angle:
            model.boundary_conditions = [{"type": "fixed", "node_set": "base"}]
        assembler = BeamColumnAssembler(model)
        forces = assembler.element_axial_forces(_path(assembler))
        np.testing.assert_allclose(forces, -_P, rtol=1e-8)

    def test_geometric_stiffness_softens(self, assembler):
        G = assembler.assemble_matrix(
            MatrixKind.GEOMETRIC_STIFFNESS, path=_path(assembler)
        ).toarray()
        assert np.linalg.eigvalsh(G).max() <= 1e-9 * np.abs(G).max()


class TestDerivativeProducts:
    @pytest.fixture
    def vectors(self, assembler):
        rng = np.random.default_rng(7)
        n = assembler.n_dof
        return rng.standard_normal(n), rng.standard_normal(n)

    def _fd(self, assembler, func, h=1e-7):
        x0 = assembler.get_design_vars()
        grad = np.zeros(x0.shape[0])
        for i in range(x0.shape[0]):
            xp, xm = x0.copy(), x0.copy()
            xp[i] += h
            xm[i] -= h
            assembler.set_design_vars(xp)
            fp = func()
            assembler.set_design_vars(xm)
            fm = func()
            grad[i] = (fp - fm) / (2.0 * h)
        assembler.set_design_vars(x0)
        return grad

    @pytest.mark.parametrize("kind", [MatrixKind.STIFFNESS, MatrixKind.MASS])
    def test_matrix_dv_product(self, assembler, vectors, kind):
        psi, phi = vectors
        dfdx = np.zeros(assembler.num_design_vars)
        assembler.add_matrix_dv_sens_inner_product(kind, 2.0, psi, phi, dfdx)
        fd = self._fd(assembler, lambda: 2.0 * psi @ assembler.assemble_matrix(kind) @ phi)
        np.testing.assert_allclose(dfdx, fd, rtol=1e-5)

    def test_geometric_dv_product_at_fixed_path(self, assembler, vectors):
        psi, phi = vectors
        u = _path(assembler)
        dfdx = np.zeros(assembler.num_design_vars)
        assembler.add_matrix_dv_sens_inner_product(
            MatrixKind.GEOMETRIC_STIFFNESS, 1.0, psi, phi, dfdx, path=u
        )
        fd = self._fd(
            assembler,
            lambda: psi @ assembler.assemble_matrix(MatrixKind.GEOMETRIC_STIFFNESS, path=u) @ phi,
        )
        np.testing.assert_allclose(dfdx, fd, rtol=1e-5)

    def test_state_derivative(self, assembler, vectors):
        psi, phi = vectors
        u = _path(assembler)
        dgdu = assembler.matrix_sv_sens_inner_product(
            MatrixKind.GEOMETRIC_STIFFNESS, psi, phi, u
        )
        np.testing.assert_array_equal(dgdu[assembler.constrained_dofs], 0.0)
        # G is linear in the path: the directional derivative is exact
        du = np.random.default_rng(3).standard_normal(assembler.n_dof) * 1e-6
        G0 = assembler.assemble_matrix(MatrixKind.GEOMETRIC_STIFFNESS, path=u)
        G1 = assembler.assemble_matrix(MatrixKind.GEOMETRIC_STIFFNESS, path=u + du)
        assert dgdu @ du == pytest.approx(psi @ (G1 - G0) @ phi, rel=1e-6)

    def test_state_derivative_zero_for_other_kinds(self, assembler, vectors):
        psi, phi = vectors
        out = assembler.matrix_sv_sens_inner_product(MatrixKind.MASS, psi, phi, psi)
        np.testing.assert_array_equal(out, 0.0)

    def test_residual_adjoint_product(self, assembler, vectors):
        adjoint, _ = vectors
        u = _path(assembler)
        dfdx = np.zeros(assembler.num_design_vars)
        assembler.add_residual_adjoint_product(0, 1.0, adjoint, u, dfdx)

        def residual():
            K = assembler.assemble_matrix(MatrixKind.STIFFNESS)
            return adjoint @ (K @ u - assembler.assemble_load(0))

        np.testing.assert_allclose(dfdx, self._fd(assembler, residual), rtol=1e-5)

    def test_complex_design_vars(self, assembler):
        x = assembler.get_design_vars().astype(complex)
        x[2] += 1e-30j
        assembler.set_design_vars(x)
        K = assembler.assemble_matrix(MatrixKind.STIFFNESS)
        assert np.iscomplexobj(K.data)
        assert np.abs(K.data.imag).max() > 0.0
