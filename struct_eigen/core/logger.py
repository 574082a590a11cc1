"""Structured logging for eigenvalue analyses.

Two tiers: a rotating human-readable application log and JSON-lines
records of every eigensolve and sensitivity evaluation.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import numpy as np


def _scalar(value: Any) -> Any:
    """Convert numpy / complex scalars into JSON friendly values."""
    if isinstance(value, (complex, np.complexfloating)):
        if value.imag == 0.0:
            return float(value.real)
        return {"real": float(value.real), "imag": float(value.imag)}
    if isinstance(value, np.generic):
        return value.item()
    return value


class StructuredLogger:
    def __init__(self, log_dir: str = "data/logs", level: str = "DEBUG"):
        self._log_dir = log_dir
        self._level = level
        os.makedirs(log_dir, exist_ok=True)
        self._setup_app_logger()

    def _setup_app_logger(self) -> None:
        self._app_logger = logging.getLogger("struct_eigen." + str(id(self)))
        if not self._app_logger.handlers:
            handler = RotatingFileHandler(
                os.path.join(self._log_dir, "app.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            self._app_logger.addHandler(handler)
            self._app_logger.setLevel(getattr(logging, str(self._level).upper(), logging.DEBUG))

    @property
    def app(self) -> logging.Logger:
        return self._app_logger

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def _write_jsonl(self, filename: str, record: dict) -> None:
        filepath = os.path.join(self._log_dir, filename)
        with open(filepath, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def log_solve(
        self,
        analysis: str,
        sigma: Any,
        result: Any,
        metadata: Optional[dict] = None,
    ) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "eigen.solve",
            "analysis": analysis,
            "sigma": _scalar(sigma),
            "converged": bool(result.converged),
            "n_iterations": int(result.n_iterations),
            "n_applies": int(result.n_applies),
            "eigenvalues": [_scalar(p.value) for p in result.pairs],
            "errors": [float(p.error) for p in result.pairs],
            "solve_time_s": float(result.solve_time_s),
            "metadata": metadata or {},
        }
        self._write_jsonl("eigen_solves.jsonl", record)
        self._app_logger.info(
            "%s solve: %d pairs, converged=%s, sigma=%s",
            analysis,
            len(result.pairs),
            result.converged,
            record["sigma"],
        )

    def log_sensitivity(
        self,
        analysis: str,
        index: int,
        eigenvalue: Any,
        gradient: np.ndarray,
        metadata: Optional[dict] = None,
    ) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "eigen.sensitivity",
            "analysis": analysis,
            "index": int(index),
            "eigenvalue": _scalar(eigenvalue),
            "gradient": [_scalar(g) for g in np.asarray(gradient).ravel()],
            "metadata": metadata or {},
        }
        self._write_jsonl("sensitivities.jsonl", record)
