"""Solver defaults and batch-refit backend selection.

The IRLS defaults mirror R's ``glm.control``.  The backend setting only
affects batch Poisson refits, which the simulated residual envelope in
:mod:`claim_glm.diagnostics` uses; single fits always run the NumPy
IRLS loop in :mod:`claim_glm.glm`.

Backend resolution (first match wins):
    1. :func:`set_backend` with ``"numpy"`` or ``"jax"``.
    2. The ``CLAIM_GLM_BACKEND`` environment variable.
    3. ``"jax"`` when JAX is importable, otherwise ``"numpy"``.

Example::

    import claim_glm
    claim_glm.set_backend("numpy")   # keep envelope refits on IRLS
"""

from __future__ import annotations

import os

# ------------------------------------------------------------------ #
# Solver defaults
# ------------------------------------------------------------------ #

DEFAULT_MAX_ITER: int = 25
"""IRLS iteration cap (R's ``glm.control(maxit=25)``)."""

DEFAULT_TOL: float = 1e-8
"""Relative deviance-change tolerance ``|D - D_old| / (|D| + 0.1)``."""

RANK_TOL: float = 1e-7
"""Relative column-norm threshold below which a column is aliased."""

# ------------------------------------------------------------------ #
# Backend selection
# ------------------------------------------------------------------ #

_ENV_VAR = "CLAIM_GLM_BACKEND"
_CONCRETE_BACKENDS = ("numpy", "jax")
_VALID_BACKENDS = {*_CONCRETE_BACKENDS, "auto"}

# None (or "auto") means no programmatic choice has been made.
_backend_override: str | None = None


def _jax_is_available() -> bool:
    try:
        import jax  # noqa: F401
    except ImportError:
        return False
    return True


def get_backend() -> str:
    """Name of the backend used for batch refits: ``"numpy"`` or ``"jax"``."""
    if _backend_override in _CONCRETE_BACKENDS:
        return _backend_override

    env = os.environ.get(_ENV_VAR, "").strip().lower()
    if env in _CONCRETE_BACKENDS:
        return env

    return "jax" if _jax_is_available() else "numpy"


def set_backend(name: str) -> None:
    """Pin the batch-refit backend.

    Args:
        name: ``"numpy"``, ``"jax"`` or ``"auto"`` (case-insensitive).
            ``"auto"`` clears the pin so the environment variable and
            auto-detection apply again.

    Raises:
        ValueError: If *name* is not one of those values.
    """
    global _backend_override
    normalised = name.strip().lower()
    if normalised not in _VALID_BACKENDS:
        msg = f"Unknown backend {name!r}. Choose from: {sorted(_VALID_BACKENDS)}."
        raise ValueError(msg)
    _backend_override = normalised
