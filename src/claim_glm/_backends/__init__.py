"""Backend abstraction layer for batch Poisson refitting.

The simulated residual envelope in :mod:`claim_glm.diagnostics` refits
the same design against many simulated response vectors.  Each
backend implements :class:`BackendProtocol` for that one primitive,
and callers dispatch through :func:`resolve_backend` rather than
testing for JAX at every call site.

Resolution follows the policy set by :mod:`claim_glm._config`:

1. Programmatic override via :func:`~claim_glm.set_backend`.
2. ``CLAIM_GLM_BACKEND`` environment variable.
3. Auto-detection: ``"jax"`` if importable, else ``"numpy"``.

When ``"jax"`` is explicitly requested but JAX is not installed, an
:class:`ImportError` is raised.  Only the ``"auto"`` policy falls back
from JAX to NumPy.
"""

from __future__ import annotations

import warnings
from typing import Any, Protocol, runtime_checkable

import numpy as np

from .._config import get_backend

# ------------------------------------------------------------------ #
# BackendProtocol
# ------------------------------------------------------------------ #


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface that every compute backend must implement.

    Attributes:
        name: Short identifier (e.g. ``"numpy"``, ``"jax"``).
    """

    @property
    def name(self) -> str: ...

    @property
    def is_available(self) -> bool:
        """Whether the backend's dependencies are importable."""
        ...

    def batch_poisson(
        self,
        X: np.ndarray,
        Y_matrix: np.ndarray,
        offset: np.ndarray | None = None,
        weights: np.ndarray | None = None,
        **kwargs: Any,
    ) -> np.ndarray:
        """Batch Poisson GLM: shared full-rank *X*, many count *Y* vectors.

        Args:
            X: Full-rank design matrix ``(n, p)`` including any
                intercept column.
            Y_matrix: Count responses ``(B, n)``.
            offset: Shared offset ``(n,)`` or ``None``.
            weights: Shared prior weights ``(n,)`` or ``None``.
            **kwargs: Solver options (``max_iter``, ``tol``, and
                backend-specific extras such as ``n_jobs``).

        Returns:
            Coefficients ``(B, p)``.  Rows for failed solves are NaN.
        """
        ...


# ------------------------------------------------------------------ #
# Convergence reporting
# ------------------------------------------------------------------ #


def _check_convergence(converged: np.ndarray, max_iter: int) -> None:
    """Emit a single summary warning if any solves did not converge.

    Non-converged replicates are kept; the warning only reports how
    many there were.
    """
    n_failed = int(np.sum(~converged))
    if n_failed > 0:
        total = converged.shape[0]
        pct = 100.0 * n_failed / total
        warnings.warn(
            f"{n_failed} of {total} batch Poisson solves ({pct:.1f}%) did "
            f"not converge within {max_iter} iterations. Their last "
            f"iterates are kept.",
            RuntimeWarning,
            stacklevel=3,
        )


# ------------------------------------------------------------------ #
# Backend resolution
# ------------------------------------------------------------------ #

# Instantiated once per backend name.
_BACKEND_CACHE: dict[str, BackendProtocol] = {}


def resolve_backend(name: str | None = None) -> BackendProtocol:
    """Return a :class:`BackendProtocol` instance for *name*.

    Args:
        name: ``"numpy"``, ``"jax"``, or ``None`` for the configured
            policy.

    Raises:
        ImportError: If ``"jax"`` is explicitly requested but JAX is
            not installed.
        ValueError: If *name* is not a recognised backend.
    """
    if name is None:
        name = get_backend()

    if name in _BACKEND_CACHE:
        return _BACKEND_CACHE[name]

    if name == "numpy":
        from ._numpy import NumpyBackend

        backend: BackendProtocol = NumpyBackend()

    elif name == "jax":
        from ._jax import JaxBackend

        jax_backend = JaxBackend()
        if not jax_backend.is_available:
            msg = (
                "Backend 'jax' was explicitly requested but JAX is "
                "not installed.  Install JAX (`pip install jax`) or "
                "use set_backend('numpy')."
            )
            raise ImportError(msg)
        backend = jax_backend

    else:
        msg = f"Unknown backend {name!r}.  Choose 'numpy' or 'jax'."
        raise ValueError(msg)

    _BACKEND_CACHE[name] = backend
    return backend
