"""Eigenanalysis configuration dataclasses."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from struct_eigen.core.config import AppConfig

_ORDERINGS = ("ascending", "nearest")


@dataclass
class LanczosConfig:
    """Sizing and tolerance of the Lanczos eigensolver."""
    max_lanczos_vecs: int = 60
    num_eigvals: int = 5
    eig_tol: float = 1e-8
    ordering: str = "ascending"    # "ascending" eigenvalue or "nearest" to sigma
    seed: int = 12345              # start-vector RNG seed
    breakdown_tol: float = 1e-12   # relative beta threshold for an invariant subspace
    strict: bool = False           # raise NonConvergence instead of warning

    def __post_init__(self) -> None:
        if int(self.max_lanczos_vecs) < 1:
            raise ValueError(
                f"max_lanczos_vecs must be positive, got {self.max_lanczos_vecs!r}"
            )
        if int(self.num_eigvals) < 1:
            raise ValueError(f"num_eigvals must be positive, got {self.num_eigvals!r}")
        if not self.eig_tol > 0.0:
            raise ValueError(f"eig_tol must be positive, got {self.eig_tol!r}")
        if self.ordering not in _ORDERINGS:
            raise ValueError(
                f"Unsupported ordering {self.ordering!r}. "
                f"Must be one of {', '.join(_ORDERINGS)}."
            )
        self.max_lanczos_vecs = int(self.max_lanczos_vecs)
        self.num_eigvals = int(self.num_eigvals)

    @classmethod
    def from_app_config(cls, config: AppConfig) -> LanczosConfig:
        """Build from the ``eigen`` section of an :class:`AppConfig`."""
        section = config.section("eigen")
        kwargs = {
            key: section[key]
            for key in (
                "max_lanczos_vecs", "num_eigvals", "eig_tol",
                "ordering", "seed", "breakdown_tol", "strict",
            )
            if key in section
        }
        return cls(**kwargs)


@dataclass
class BeamMesh:
    """Planar beam-column mesh (3 DOFs per node: u, v, rotation)."""
    nodes: np.ndarray                  # (N, 2) coordinates in meters
    elements: np.ndarray               # (E, 2) connectivity
    node_sets: dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def n_nodes(self) -> int:
        return self.nodes.shape[0]

    @property
    def n_elements(self) -> int:
        return self.elements.shape[0]

    @property
    def n_dof(self) -> int:
        """Total degrees of freedom (3 per node)."""
        return self.nodes.shape[0] * 3

    @classmethod
    def straight(cls, length: float, n_elements: int, angle_deg: float = 0.0) -> BeamMesh:
        """Straight member from the origin, node sets ``base``, ``tip``, ``all``."""
        if n_elements < 1:
            raise ValueError(f"n_elements must be positive, got {n_elements!r}")
        s = np.linspace(0.0, length, n_elements + 1)
        angle = np.deg2rad(angle_deg)
        nodes = np.column_stack([s * np.cos(angle), s * np.sin(angle)])
        elements = np.column_stack(
            [np.arange(n_elements), np.arange(1, n_elements + 1)]
        ).astype(np.int64)
        node_sets = {
            "base": np.array([0], dtype=np.int64),
            "tip": np.array([n_elements], dtype=np.int64),
            "all": np.arange(n_elements + 1, dtype=np.int64),
        }
        return cls(nodes=nodes, elements=elements, node_sets=node_sets)


@dataclass
class BeamModel:
    """Material, section and loading data for a beam-column structure.

    The cross-section is rectangular with a fixed ``width``; the
    per-element ``thickness`` values are the design variables.
    """
    mesh: BeamMesh
    E_pa: float
    rho_kg_m3: float
    width_m: float
    thickness_m: np.ndarray
    boundary_conditions: list[dict] = field(default_factory=list)
    load_cases: dict[int, list[dict]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        thickness = np.atleast_1d(np.asarray(self.thickness_m))
        if thickness.size == 1:
            thickness = np.full(self.mesh.n_elements, thickness[0])
        if thickness.shape != (self.mesh.n_elements,):
            raise ValueError(
                f"thickness_m must be a scalar or have {self.mesh.n_elements} "
                f"entries, got shape {thickness.shape}"
            )
        self.thickness_m = thickness


@dataclass
class BucklingConfig:
    """Configuration for linearized buckling analysis."""
    load_case: int = 0
    sigma: float = 0.0
    lanczos: LanczosConfig = field(default_factory=LanczosConfig)


@dataclass
class FrequencyConfig:
    """Configuration for natural-frequency analysis."""
    sigma: float = 0.0
    target_frequency_hz: Optional[float] = None
    lanczos: LanczosConfig = field(default_factory=LanczosConfig)

    def __post_init__(self) -> None:
        if self.target_frequency_hz is not None:
            self.sigma = (2.0 * np.pi * self.target_frequency_hz) ** 2
