"""JAX-accelerated backend for batch Poisson refitting.

A damped Newton–Raphson Poisson solver is JIT-compiled and mapped
over the replicate dimension with ``jax.vmap``, so all B refits run as
one XLA kernel instead of a Python loop.

NumPy ↔ JAX boundary
~~~~~~~~~~~~~~~~~~~~
Public methods accept and return NumPy arrays.  Inputs are converted
with ``jnp.array(..., dtype=jnp.float64)`` and results with
``np.asarray``.  Callers never see JAX types.

Float64
~~~~~~~
``jax_enable_x64`` is switched on at import.  The Newton solve's
gradient noise floor is κ(H)·ε, which in float32 sits above any useful
tolerance for moderately conditioned designs.

If JAX is not installed the module still imports, ``is_available`` is
``False``, and :func:`~claim_glm._backends.resolve_backend` refuses an
explicit ``"jax"`` request.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from .._config import DEFAULT_MAX_ITER, DEFAULT_TOL
from . import _check_convergence

if TYPE_CHECKING:
    import jax

_MIN_DAMPING: float = 1e-8
"""Diagonal guard added to the Hessian before each solve.

Keeps ``jnp.linalg.solve`` finite on a numerically singular
``X'WX``.  It does not change the objective.
"""

_ETA_MAX: float = 700.0

try:
    import jax

    jax.config.update("jax_enable_x64", True)

    import jax.numpy as jnp
    from jax import jit, vmap

    _CAN_IMPORT_JAX = True
except ImportError:
    _CAN_IMPORT_JAX = False


if _CAN_IMPORT_JAX:
    # -------------------------------------------------------------- #
    # Damped Newton solver
    # -------------------------------------------------------------- #
    #
    # ``jax.lax.while_loop`` allows early exit inside vmap: finished
    # lanes keep their state while the others iterate.  Convergence
    # is the same relative-change rule IRLS uses, applied to the
    # negative log-likelihood, OR'd with a small-gradient test.

    def _newton_solve(
        nll_fn: Callable[[jnp.ndarray], jnp.ndarray],
        grad_fn: Callable[[jnp.ndarray], jnp.ndarray],
        hess_fn: Callable[[jnp.ndarray], jnp.ndarray],
        beta_init: jnp.ndarray,
        max_iter: int,
        tol: float,
        min_damping: float = _MIN_DAMPING,
    ) -> tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
        """Return ``(beta, nll, converged)`` after damped Newton steps."""
        n_params = beta_init.shape[0]
        damping_matrix = min_damping * jnp.eye(n_params, dtype=jnp.float64)

        init_state = (
            jnp.array(0),
            beta_init,
            nll_fn(beta_init),
            jnp.array(False),
        )

        def cond(
            state: tuple[jax.Array, jax.Array, jax.Array, jax.Array],
        ) -> jax.Array:
            i, _beta, _nll, converged = state
            return (i < max_iter) & (~converged)

        def body(
            state: tuple[jax.Array, jax.Array, jax.Array, jax.Array],
        ) -> tuple[jax.Array, jax.Array, jax.Array, jax.Array]:
            i, beta, nll_prev, _ = state
            g = grad_fn(beta)
            H = hess_fn(beta) + damping_matrix
            beta_new = beta - jnp.linalg.solve(H, g)
            nll_new = nll_fn(beta_new)

            rel = jnp.abs(nll_new - nll_prev) / (jnp.abs(nll_new) + 0.1)
            grad_small = jnp.max(jnp.abs(g)) < tol
            converged = ((rel < tol) | grad_small) & jnp.all(jnp.isfinite(beta_new))
            return (i + 1, beta_new, nll_new, converged)

        _, beta_final, nll_final, converged = jax.lax.while_loop(cond, body, init_state)
        return beta_final, nll_final, converged

    # -------------------------------------------------------------- #
    # Poisson pieces with offset and prior weights
    # -------------------------------------------------------------- #
    #
    #   η = Xβ + offset,  μ = exp(η)
    #   NLL(β)  = Σ w (μ − y·η)          (log y! dropped)
    #   ∇NLL    = X' w (μ − y)
    #   ∇²NLL   = X' diag(w μ) X

    def _mu(beta: jnp.ndarray, X: jnp.ndarray, offset: jnp.ndarray) -> jnp.ndarray:
        return jnp.exp(jnp.minimum(X @ beta + offset, _ETA_MAX))

    @jit
    def _poisson_nll(
        beta: jnp.ndarray,
        X: jnp.ndarray,
        y: jnp.ndarray,
        offset: jnp.ndarray,
        w: jnp.ndarray,
    ) -> jnp.ndarray:
        eta = jnp.minimum(X @ beta + offset, _ETA_MAX)
        return jnp.sum(w * (jnp.exp(eta) - y * eta))

    @jit
    def _poisson_grad(
        beta: jnp.ndarray,
        X: jnp.ndarray,
        y: jnp.ndarray,
        offset: jnp.ndarray,
        w: jnp.ndarray,
    ) -> jnp.ndarray:
        return X.T @ (w * (_mu(beta, X, offset) - y))

    @jit
    def _poisson_hessian(
        beta: jnp.ndarray,
        X: jnp.ndarray,
        y: jnp.ndarray,  # noqa: ARG001
        offset: jnp.ndarray,
        w: jnp.ndarray,
    ) -> jnp.ndarray:
        return (X.T * (w * _mu(beta, X, offset))[None, :]) @ X

    def _make_poisson_solver(
        X: jnp.ndarray,
        y: jnp.ndarray,
        offset: jnp.ndarray,
        w: jnp.ndarray,
        max_iter: int,
        tol: float,
        min_damping: float = _MIN_DAMPING,
    ) -> tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
        """Newton Poisson solve warm-started from weighted OLS on ``log(y + 0.5) − offset``."""
        n_params = X.shape[1]
        z = jnp.log(y + 0.5) - offset
        XtWX = (X.T * w[None, :]) @ X + min_damping * jnp.eye(n_params, dtype=jnp.float64)
        beta_init = jnp.linalg.solve(XtWX, X.T @ (w * z))

        return _newton_solve(
            nll_fn=lambda b: _poisson_nll(b, X, y, offset, w),
            grad_fn=lambda b: _poisson_grad(b, X, y, offset, w),
            hess_fn=lambda b: _poisson_hessian(b, X, y, offset, w),
            beta_init=beta_init,
            max_iter=max_iter,
            tol=tol,
            min_damping=min_damping,
        )


@dataclass(frozen=True)
class JaxBackend:
    """JAX compute backend.

    Stateless; all per-call data flows through method arguments.
    """

    @property
    def name(self) -> str:
        return "jax"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return _CAN_IMPORT_JAX

    def batch_poisson(
        self,
        X: np.ndarray,
        Y_matrix: np.ndarray,
        offset: np.ndarray | None = None,
        weights: np.ndarray | None = None,
        **kwargs: Any,
    ) -> np.ndarray:
        """Batch Poisson via vmap'd Newton–Raphson.

        Args:
            X: Full-rank design matrix ``(n, p)``.
            Y_matrix: Count responses ``(B, n)``.
            offset: Shared offset ``(n,)``.
            weights: Shared prior weights ``(n,)``.
            **kwargs: ``max_iter``, ``tol``, ``min_damping``.  Other
                keys (e.g. ``n_jobs``) are ignored.

        Returns:
            Coefficients ``(B, p)``.
        """
        max_iter: int = kwargs.get("max_iter", DEFAULT_MAX_ITER)
        tol: float = kwargs.get("tol", DEFAULT_TOL)
        min_damping: float = kwargs.get("min_damping", _MIN_DAMPING)

        n = X.shape[0]
        X_j = jnp.array(X, dtype=jnp.float64)
        Y_j = jnp.array(Y_matrix, dtype=jnp.float64)
        off_j = jnp.array(np.zeros(n) if offset is None else offset, dtype=jnp.float64)
        w_j = jnp.array(np.ones(n) if weights is None else weights, dtype=jnp.float64)

        def _solve_one(
            y_vec: jax.Array,
        ) -> tuple[jax.Array, jax.Array, jax.Array]:
            return _make_poisson_solver(X_j, y_vec, off_j, w_j, max_iter, tol, min_damping)

        all_params, _all_nll, all_converged = jit(vmap(_solve_one))(Y_j)
        _check_convergence(np.asarray(all_converged), max_iter)
        return np.asarray(all_params)
