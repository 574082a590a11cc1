"""Planar Euler-Bernoulli beam-column element.

Implements the 2-node frame element with:
- Axial (bar) stiffness, per unit ``E A``
- Cubic Hermite bending stiffness, per unit ``E I``
- Consistent translational mass, per unit ``rho A``
- Consistent geometric (stress) stiffness, per unit axial force ``N``
- Axial force recovery from nodal displacements and its gradient

Local DOF ordering per element::

    [u1, v1, theta1, u2, v2, theta2]

``u`` is along the element axis, ``v`` transverse, ``theta`` the
in-plane rotation.  Global matrices are obtained with ``T^T k T`` where
``T`` rotates global displacements into the element frame.  Axial force
``N`` is positive in tension, so compression softens the element.
"""
from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray

_AXIAL = np.array([0, 3])
_BENDING = np.array([1, 2, 4, 5])


class BeamColumnElement:
    """2-node planar beam-column finite element (3 DOFs per node).

    All matrix builders are linear in their scalar coefficient, so the
    design derivative of each matrix is the unit matrix times the
    derivative of that coefficient.
    """

    n_dof = 6

    # -- Geometry -------------------------------------------------------------
    @staticmethod
    def geometry(coords: NDArray[np.float64]) -> tuple[float, NDArray[np.float64]]:
        """Length and the 6x6 global-to-local rotation ``T``.

        Raises
        ------
        ValueError
            If the element has zero length.
        """
        d = coords[1] - coords[0]
        L = float(np.hypot(d[0], d[1]))
        if L <= 0.0:
            raise ValueError("Beam element has zero length.")
        c, s = d[0] / L, d[1] / L
        R = np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])
        T = np.zeros((6, 6))
        T[:3, :3] = R
        T[3:, 3:] = R
        return L, T

    # -- Unit local matrices --------------------------------------------------
    @staticmethod
    def axial_stiffness_unit(L: float) -> NDArray[np.float64]:
        k = np.zeros((6, 6))
        k[np.ix_(_AXIAL, _AXIAL)] = np.array([[1.0, -1.0], [-1.0, 1.0]]) / L
        return k

    @staticmethod
    def bending_stiffness_unit(L: float) -> NDArray[np.float64]:
        k = np.zeros((6, 6))
        k[np.ix_(_BENDING, _BENDING)] = np.array([
            [12.0, 6.0 * L, -12.0, 6.0 * L],
            [6.0 * L, 4.0 * L ** 2, -6.0 * L, 2.0 * L ** 2],
            [-12.0, -6.0 * L, 12.0, -6.0 * L],
            [6.0 * L, 2.0 * L ** 2, -6.0 * L, 4.0 * L ** 2],
        ]) / L ** 3
        return k

    @staticmethod
    def mass_unit(L: float) -> NDArray[np.float64]:
        m = np.zeros((6, 6))
        m[np.ix_(_AXIAL, _AXIAL)] = np.array([[2.0, 1.0], [1.0, 2.0]]) * L / 6.0
        m[np.ix_(_BENDING, _BENDING)] = np.array([
            [156.0, 22.0 * L, 54.0, -13.0 * L],
            [22.0 * L, 4.0 * L ** 2, 13.0 * L, -3.0 * L ** 2],
            [54.0, 13.0 * L, 156.0, -22.0 * L],
            [-13.0 * L, -3.0 * L ** 2, -22.0 * L, 4.0 * L ** 2],
        ]) * L / 420.0
        return m

    @staticmethod
    def geometric_stiffness_unit(L: float) -> NDArray[np.float64]:
        g = np.zeros((6, 6))
        g[np.ix_(_BENDING, _BENDING)] = np.array([
            [36.0, 3.0 * L, -36.0, 3.0 * L],
            [3.0 * L, 4.0 * L ** 2, -3.0 * L, -L ** 2],
            [-36.0, -3.0 * L, 36.0, -3.0 * L],
            [3.0 * L, -L ** 2, -3.0 * L, 4.0 * L ** 2],
        ]) / (30.0 * L)
        return g

    # -- Global matrices ------------------------------------------------------
    def unit_matrices(self, coords: NDArray[np.float64]) -> dict[str, NDArray[np.float64]]:
        """Global unit matrices ``{"axial", "bending", "mass", "geometric"}``."""
        L, T = self.geometry(coords)
        return {
            "axial": T.T @ self.axial_stiffness_unit(L) @ T,
            "bending": T.T @ self.bending_stiffness_unit(L) @ T,
            "mass": T.T @ self.mass_unit(L) @ T,
            "geometric": T.T @ self.geometric_stiffness_unit(L) @ T,
        }

    def stiffness_matrix(self, coords: NDArray[np.float64], EA: Any, EI: Any) -> NDArray:
        """6x6 global elastic stiffness."""
        unit = self.unit_matrices(coords)
        return EA * unit["axial"] + EI * unit["bending"]

    def mass_matrix(self, coords: NDArray[np.float64], rhoA: Any) -> NDArray:
        """6x6 global consistent mass (rotary inertia neglected)."""
        return rhoA * self.unit_matrices(coords)["mass"]

    def geometric_stiffness_matrix(self, coords: NDArray[np.float64], N: Any) -> NDArray:
        """6x6 global geometric stiffness for axial force ``N``."""
        return N * self.unit_matrices(coords)["geometric"]

    # -- Axial force ----------------------------------------------------------
    def axial_force_gradient(self, coords: NDArray[np.float64], EA: Any) -> NDArray:
        """``dN/du_e`` for the 6 global element DOFs."""
        L, T = self.geometry(coords)
        e_axial = np.zeros(6)
        e_axial[0], e_axial[3] = -1.0, 1.0
        return EA / L * (e_axial @ T)

    def axial_force(self, coords: NDArray[np.float64], u_e: NDArray, EA: Any) -> Any:
        """Axial force ``N = EA (u2 - u1) / L`` (tension positive)."""
        return self.axial_force_gradient(coords, EA) @ u_e
