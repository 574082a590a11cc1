"""Lanczos eigensolver with full reorthogonalization.

Computes the Ritz pairs of a shift-inverted operator ``T`` that is
self-adjoint in a ``W`` inner product (see :mod:`operators`).

Algorithm overview
------------------
1. Start vector: a seeded random vector pushed once through ``T`` (this
   removes components outside the range of ``B``), ``W``-normalised.
2. Step ``i``: ``w = T v_i``; two modified Gram-Schmidt passes against
   *every* stored basis vector (the coefficient on ``v_i`` is
   ``alpha_i``); ``beta_i = ||w||_W``; ``v_{i+1} = w / beta_i``.
3. Once the basis holds ``num_eigvals`` vectors, solve the tridiagonal
   projection after every step.  The ``num_eigvals`` Ritz values of
   largest ``|theta|`` (closest to the shift) are the candidates; each is
   mapped back with ``lambda = sigma + 1 / theta``.
4. Error estimate of a candidate: the *generalised* residual is passed
   through the factored shifted operator and its basis components are
   removed::

       s   = (I - V V^T W) (A - sigma B)^{-1} (A x - lambda B x)
       err = |lambda - sigma| ||s||_W

   In exact arithmetic ``err = |beta_m y_m| / theta^2``, a bound on the
   eigenvalue error.  The solve has converged when
   ``err <= eig_tol * |lambda|`` holds for all candidates.
5. When ``beta`` vanishes the basis spans an invariant subspace.  If the
   candidates have not converged, iteration continues from a new random
   start vector orthogonal to the basis (``beta_i = 0`` decouples the
   blocks), which also recovers further copies of repeated eigenvalues.
   Stop on convergence, when the range of ``T`` is exhausted or when
   ``max_lanczos_vecs`` is reached.  Exhaustion is not fatal: the best
   estimates are returned with ``converged=False``.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import numpy as np
import scipy.linalg as sla
from numpy.typing import NDArray

from struct_eigen.analysis.config import LanczosConfig
from struct_eigen.analysis.operators import ShiftInvertOperator, apply_operator
from struct_eigen.analysis.results import EigenPair, EigenSolveResult
from struct_eigen.core.errors import EigenAnalysisError, NonConvergence

logger = logging.getLogger(__name__)

Monitor = Callable[[str], None]


class LanczosSolver:
    """Shift-invert Lanczos method with full ``W``-orthogonalization.

    A breakdown of the recurrence restarts it from a fresh random vector
    orthogonal to the basis, so each copy of a repeated eigenvalue is
    found in its own Krylov block.  A copy that never causes a breakdown
    before the candidates converge is not returned.

    Parameters
    ----------
    config : LanczosConfig
        Basis size, requested count, tolerance and ordering.

    Examples
    --------
    >>> solver = LanczosSolver(LanczosConfig(num_eigvals=4, max_lanczos_vecs=40))
    >>> result = solver.solve(GeneralizedShiftInvert(K, M, 0.0, DirectSolver()))
    """

    def __init__(self, config: Optional[LanczosConfig] = None) -> None:
        self._config = config or LanczosConfig()
        self._basis: Optional[NDArray] = None

    @property
    def config(self) -> LanczosConfig:
        return self._config

    @property
    def basis(self) -> Optional[NDArray]:
        """Lanczos vectors of the last solve, shape (n_dof, m)."""
        return self._basis

    # ------------------------------------------------------------------
    # Main iteration
    # ------------------------------------------------------------------
    def solve(
        self,
        operator: ShiftInvertOperator,
        monitor: Optional[Monitor] = None,
    ) -> EigenSolveResult:
        """Run the Lanczos recurrence on ``operator``.

        Raises
        ------
        LinearSolveFailure
            Propagated from ``operator.apply``; aborts the solve.
        NonConvergence
            Only when ``config.strict`` is set and the basis is exhausted.
        """
        t_start = time.perf_counter()
        cfg = self._config
        n = operator.n_dof
        dtype = operator.dtype
        applies_before = operator.n_applies

        m_max = min(cfg.max_lanczos_vecs, n)
        if cfg.num_eigvals > m_max:
            logger.warning(
                "Requested %d eigenvalues but at most %d Lanczos vectors are "
                "available (max_lanczos_vecs=%d, n_dof=%d).",
                cfg.num_eigvals,
                m_max,
                cfg.max_lanczos_vecs,
                n,
            )

        V = np.zeros((n, m_max), dtype=dtype)
        alpha = np.zeros(m_max, dtype=dtype)
        beta = np.zeros(m_max, dtype=dtype)

        rng = np.random.default_rng(cfg.seed)
        v0 = self._start_vector(operator, rng, V[:, :0])
        if v0 is None:
            raise EigenAnalysisError(
                "Start vector has zero norm after the first operator application."
            )
        V[:, 0] = v0

        pairs: list[EigenPair] = []
        converged = False
        m = 0

        for i in range(m_max):
            w = operator.apply(V[:, i])
            w, h = self._orthogonalize(operator, V[:, : i + 1], w)
            alpha[i] = h[i]

            beta[i] = operator.norm(w)
            m = i + 1

            scale = max(np.max(np.abs(alpha[:m])), np.max(np.abs(beta[:m])))
            breakdown = bool(
                beta[i] == 0.0 or np.abs(beta[i]) <= cfg.breakdown_tol * scale
            )

            if m >= cfg.num_eigvals or breakdown or m == m_max:
                pairs, converged = self._extract(
                    operator, V[:, :m], alpha[:m], beta[: m - 1]
                )
                max_err = max(
                    (p.error / max(abs(p.value), 1e-300) for p in pairs),
                    default=np.inf,
                )
                logger.debug(
                    "Lanczos iter %d: %d candidates, max rel. error %.3e",
                    m, len(pairs), max_err,
                )
                if monitor is not None:
                    monitor(
                        f"Lanczos {m:4d}  candidates {len(pairs):3d}  "
                        f"max rel. error {max_err:10.3e}"
                    )
                if converged:
                    break

            if m == m_max:
                break

            if breakdown:
                # Continue in a new Krylov block; repeated eigenvalues need one per copy
                restart = self._start_vector(operator, rng, V[:, :m])
                if restart is None:
                    logger.info("Lanczos basis became invariant after %d vectors", m)
                    break
                logger.debug("Lanczos restart after %d vectors (beta=%.3e)", m, abs(beta[i]))
                beta[i] = 0.0
                V[:, m] = restart
            else:
                V[:, m] = w / beta[i]

        self._basis = V[:, :m]
        orthogonality = self._basis_orthogonality(operator, self._basis)
        t_elapsed = time.perf_counter() - t_start

        result = EigenSolveResult(
            pairs=pairs,
            sigma=operator.sigma,
            converged=converged,
            n_iterations=m,
            n_applies=operator.n_applies - applies_before,
            eig_tol=cfg.eig_tol,
            solve_time_s=t_elapsed,
            solver_name="Lanczos",
            basis_orthogonality=orthogonality,
        )

        if converged:
            logger.info(
                "Lanczos converged: %d eigenvalues with %d vectors in %.3f s",
                len(pairs), m, t_elapsed,
            )
        else:
            message = (
                f"Lanczos did not converge: {len(pairs)} of {cfg.num_eigvals} "
                f"eigenvalues after {m} vectors (eig_tol={cfg.eig_tol:.1e}). "
                f"Error estimates: {[float(p.error) for p in pairs]}"
            )
            logger.warning("%s", message)
            if monitor is not None:
                monitor(message)
            if cfg.strict:
                raise NonConvergence(message, result=result)

        return result

    # ------------------------------------------------------------------
    # Basis construction
    # ------------------------------------------------------------------
    @staticmethod
    def _orthogonalize(
        operator: ShiftInvertOperator, V: NDArray, w: NDArray
    ) -> tuple[NDArray, NDArray]:
        """Remove the ``V`` components of ``w`` in the ``W`` inner product.

        Two modified Gram-Schmidt passes ("twice is enough"); the returned
        coefficients are the sums over both passes.
        """
        k = V.shape[1]
        h = np.zeros(k, dtype=np.result_type(V, w))
        for _ in range(2):
            for j in range(k - 1, -1, -1):
                c = operator.inner(V[:, j], w)
                w = w - c * V[:, j]
                h[j] += c
        return w, h

    def _start_vector(
        self,
        operator: ShiftInvertOperator,
        rng: np.random.Generator,
        V: NDArray,
    ) -> Optional[NDArray]:
        """Random vector pushed through ``T``, ``W``-orthonormal to ``V``.

        Returns ``None`` when nothing outside ``span(V)`` is left, i.e.
        ``V`` spans the whole range of ``T``.
        """
        r = rng.uniform(low=-1.0, high=1.0, size=operator.n_dof).astype(V.dtype)
        w = operator.apply(r)
        norm0 = np.abs(operator.norm(w))
        if norm0 == 0.0 or not np.isfinite(norm0):
            return None
        w, _ = self._orthogonalize(operator, V, w)
        norm = operator.norm(w)
        if np.abs(norm) <= self._config.breakdown_tol * norm0:
            return None
        return w / norm

    # ------------------------------------------------------------------
    # Reduced problem
    # ------------------------------------------------------------------
    @staticmethod
    def _eigh_tridiagonal(alpha: NDArray, beta: NDArray) -> tuple[NDArray, NDArray]:
        """Eigenpairs of the symmetric tridiagonal projection.

        Complex data are treated as forward complex-step derivatives: the
        real part is decomposed exactly and the imaginary part is carried
        through first-order perturbation theory.
        """
        m = alpha.shape[0]
        if m == 1:
            return alpha.copy(), np.ones((1, 1), dtype=alpha.dtype)

        if not np.iscomplexobj(alpha):
            return sla.eigh_tridiagonal(alpha, beta)

        T = np.diag(alpha) + np.diag(beta, 1) + np.diag(beta, -1)
        lam, Q = sla.eigh_tridiagonal(alpha.real, beta.real)
        D = Q.T @ T.imag @ Q

        w = lam.astype(T.dtype)
        w.imag = np.diag(D)

        C = np.zeros_like(D)
        for i in range(m):
            for j in range(m):
                if i != j and lam[i] != lam[j]:
                    C[i, j] = D[i, j] / (lam[j] - lam[i])
        v = Q.astype(T.dtype)
        v.imag = Q @ C
        return w, v

    def _extract(
        self,
        operator: ShiftInvertOperator,
        V: NDArray,
        alpha: NDArray,
        beta: NDArray,
    ) -> tuple[list[EigenPair], bool]:
        """Form candidate Ritz pairs and test them against the tolerance."""
        cfg = self._config
        theta, Y = self._eigh_tridiagonal(alpha, beta)

        # Candidates: largest |theta| first; theta == 0 maps to infinity
        finite = np.flatnonzero(np.abs(theta) > 0.0)
        nearest = finite[np.argsort(-np.abs(theta[finite]), kind="stable")]
        selected = nearest[: cfg.num_eigvals]

        eigenvalues = operator.to_eigenvalue(theta[selected])
        if cfg.ordering == "ascending":
            order = np.argsort(np.real(eigenvalues), kind="stable")
        else:
            order = np.arange(len(selected))

        pairs = []
        ok = len(selected) >= cfg.num_eigvals
        for k in order:
            idx = selected[k]
            lam = eigenvalues[k]
            x = V @ Y[:, idx]
            x = x / operator.norm(x)

            # Deterministic sign: largest component positive
            pivot = int(np.argmax(np.abs(np.real(x))))
            if np.real(x[pivot]) < 0.0:
                x = -x

            error = self._error_estimate(operator, V, lam, x)
            if not error <= cfg.eig_tol * abs(lam):
                ok = False
            pairs.append(EigenPair(value=lam, vector=x, error=error, ritz_value=theta[idx]))

        return pairs, ok

    def _error_estimate(
        self, operator: ShiftInvertOperator, V: NDArray, eigenvalue, x: NDArray
    ) -> float:
        """``|lambda - sigma| ||P (A - sigma B)^{-1} (A x - lambda B x)||_W``.

        ``P`` removes the ``V`` components.  ``x`` is ``W``-normalised.  In
        exact arithmetic this is the Ritz bound ``|beta_m y_m| / theta^2``
        on the eigenvalue error; the shifted solve keeps rounding in the
        residual from scaling with ``||A||``.
        """
        r = operator.residual(eigenvalue, x)
        s = operator.solve_shifted(r)
        s, _ = self._orthogonalize(operator, V, s)
        return float(abs(eigenvalue - operator.sigma) * np.abs(operator.norm(s)))

    @staticmethod
    def _basis_orthogonality(operator: ShiftInvertOperator, V: NDArray) -> float:
        """``max |V^T W V - I|`` over the Lanczos basis."""
        m = V.shape[1]
        if m == 0:
            return 0.0
        WV = np.column_stack([apply_operator(operator.W, V[:, j]) for j in range(m)])
        gram = V.T @ WV
        return float(np.max(np.abs(gram - np.eye(m))))
