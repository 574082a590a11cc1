"""YAML-backed configuration for eigenvalue analyses."""
from __future__ import annotations

import copy
import os
from typing import Any, Optional

import yaml

DEFAULT_CONFIG = {
    "app": {"name": "struct_eigen", "version": "0.1.0"},
    "logging": {"dir": "data/logs", "level": "INFO"},
    "eigen": {
        "max_lanczos_vecs": 60,
        "num_eigvals": 5,
        "eig_tol": 1e-8,
        "sigma": 0.0,
        "ordering": "ascending",
        "seed": 12345,
        "strict": False,
    },
    "linear_solver": {
        "type": "direct",
        "direct_rtol": 1e-6,
        "rtol": 1e-10,
        "atol": 0.0,
        "restart": 50,
        "maxiter": 1000,
        "preconditioner": "ilu",
    },
}


class AppConfig:
    """Solver settings: built-in defaults overlaid with an optional YAML file.

    A missing file is not an error; the defaults are used.  A file whose
    top level is not a mapping raises ``ValueError``.
    """

    def __init__(self, config_path: Optional[str] = None):
        self._path = config_path
        self._data: dict = copy.deepcopy(DEFAULT_CONFIG)
        if config_path and os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if not isinstance(file_data, dict):
                raise ValueError(
                    f"Configuration file {config_path!r} must contain a mapping, "
                    f"got {type(file_data).__name__}"
                )
            _merge(self._data, file_data)

    @property
    def path(self) -> Optional[str]:
        return self._path

    def get(self, dotted_key: str, default: Any = None) -> Any:
        node = self._data
        for k in dotted_key.split("."):
            if not isinstance(node, dict) or k not in node:
                return default
            node = node[k]
        return node

    def set(self, dotted_key: str, value: Any) -> None:
        *parents, leaf = dotted_key.split(".")
        node = self._data
        for k in parents:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]
        node[leaf] = value

    def update(self, overrides: dict) -> None:
        """Apply ``{"section.key": value}`` overrides, skipping ``None`` values."""
        for key, value in overrides.items():
            if value is not None:
                self.set(key, value)

    def section(self, name: str) -> dict:
        """Return a copy of a top-level section (empty dict if missing)."""
        value = self._data.get(name, {})
        return dict(value) if isinstance(value, dict) else {}

    @property
    def data(self) -> dict:
        return self._data


def _merge(base: dict, override: dict) -> None:
    for key, value in override.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _merge(base[key], value)
        else:
            base[key] = value
