"""GLM family protocol and resolution logic.

The ``GLMFamily`` protocol defines the distribution-specific pieces
that the IRLS fitter needs: the link function and its inverse, the
variance function, the unit deviance, the log-likelihood, response
validation, and a safe starting mean.  The fitter in ``glm.py``
programs against the protocol and never branches on a concrete family.

Two families share the log link:

* :class:`PoissonFamily` — integer counts, dispersion fixed at 1.
* :class:`QuasiPoissonFamily` — non-negative reals (e.g. claim counts
  that were pro-rated), dispersion estimated from the Pearson χ².

Each concrete family is a frozen ``@dataclass`` that carries no
mutable state.  The ``resolve_family`` helper maps a user-facing
string (``"poisson"``, ``"quasipoisson"``) to a family instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
from scipy.special import gammaln, xlogy

from .exceptions import InvalidInputError

# Clip bound for the linear predictor; exp(700) is still finite in
# float64 while exp(710) overflows.
_ETA_MAX: float = 700.0

# Starting mean for zero counts.  Keeps log(mu) finite at iteration 0.
_ZERO_START: float = 0.1


# ------------------------------------------------------------------ #
# GLMFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class GLMFamily(Protocol):
    """Interface that every GLM family must implement.

    Attributes:
        name: Short identifier used in fitted-model metadata
            (e.g. ``"poisson"``).
        estimates_dispersion: ``True`` when the dispersion parameter
            is estimated from the data (quasi families) rather than
            fixed at 1.
    """

    @property
    def name(self) -> str: ...

    @property
    def estimates_dispersion(self) -> bool: ...

    def link(self, mu: np.ndarray) -> np.ndarray:
        """Map the mean to the linear predictor scale."""
        ...

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        """Map the linear predictor back to the mean scale."""
        ...

    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance function V(μ)."""
        ...

    def unit_deviance(self, y: np.ndarray, mu: np.ndarray) -> np.ndarray:
        """Per-observation deviance contribution d(y, μ)."""
        ...

    def deviance(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        weights: np.ndarray | None = None,
    ) -> float:
        """Weighted total deviance Σ wᵢ d(yᵢ, μᵢ)."""
        ...

    def log_likelihood(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        weights: np.ndarray | None = None,
    ) -> float:
        """Weighted log-likelihood, or NaN when none is defined."""
        ...

    def validate_y(self, y: np.ndarray) -> None:
        """Raise ``InvalidInputError`` if *y* is not a valid response."""
        ...

    def starting_mu(self, y: np.ndarray) -> np.ndarray:
        """Initial mean vector for the first IRLS iteration."""
        ...


# ------------------------------------------------------------------ #
# Shared log-link machinery
# ------------------------------------------------------------------ #
#
# Both families use the canonical log link, so the IRLS working
# weight simplifies to w = μ (dμ/dη = μ and V(μ) = μ) and the working
# response to z = η + (y − μ)/μ.  The unit deviance is
#
#   d(y, μ) = 2·[y·log(y/μ) − (y − μ)]
#
# with the convention 0·log(0) = 0, which ``scipy.special.xlogy``
# applies without evaluating log(0).


@dataclass(frozen=True)
class _LogLinkFamily:
    """Log-link / variance-μ pieces shared by the Poisson families."""

    def link(self, mu: np.ndarray) -> np.ndarray:
        return np.log(mu)

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return np.exp(np.minimum(eta, _ETA_MAX))

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return np.asarray(mu, dtype=float)

    def unit_deviance(self, y: np.ndarray, mu: np.ndarray) -> np.ndarray:
        # Split log(y/μ) so a zero count with μ == 0 (an all-zero null
        # model) gives 0 rather than 0·log(0/0).
        return 2.0 * (xlogy(y, y) - xlogy(y, mu) - (y - mu))

    def deviance(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        weights: np.ndarray | None = None,
    ) -> float:
        d = self.unit_deviance(y, mu)
        if weights is not None:
            d = weights * d
        return float(np.sum(d))

    def starting_mu(self, y: np.ndarray) -> np.ndarray:
        """Start at the observed response, lifting zeros to 0.1.

        A constant positive response is then already the MLE, so an
        intercept-only fit lands on ``log(c)`` in a single step.
        """
        return np.where(y > 0, y, _ZERO_START).astype(float)

    def _validate_non_negative(self, y: np.ndarray, label: str) -> None:
        if not np.issubdtype(y.dtype, np.number):
            msg = f"{label} requires numeric y values."
            raise InvalidInputError(msg)
        if np.any(~np.isfinite(y)):
            msg = f"{label} does not accept NaN or infinite values in y."
            raise InvalidInputError(msg)
        if np.any(y < 0):
            msg = f"{label} requires non-negative y values."
            raise InvalidInputError(msg)


# ------------------------------------------------------------------ #
# PoissonFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PoissonFamily(_LogLinkFamily):
    """Poisson family with log link for claim counts.

    The dispersion is fixed at 1, the log-likelihood is the full
    Poisson log-likelihood including the ``log(y!)`` term (so AIC
    values are comparable with R and statsmodels), and *y* must be
    integer-valued.
    """

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def estimates_dispersion(self) -> bool:
        return False

    def log_likelihood(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        weights: np.ndarray | None = None,
    ) -> float:
        """Σ wᵢ [yᵢ log μᵢ − μᵢ − log Γ(yᵢ + 1)]."""
        ll = xlogy(y, mu) - mu - gammaln(y + 1.0)
        if weights is not None:
            ll = weights * ll
        return float(np.sum(ll))

    # Poisson requires non-negative whole numbers.  Floats that happen
    # to be whole (3.0) are accepted; fractional values are not.

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* contains non-negative integer-valued data."""
        self._validate_non_negative(y, "PoissonFamily")
        if not np.allclose(y, np.round(y)):
            msg = (
                "PoissonFamily requires integer-valued y. Got non-integer "
                "values; use family='quasipoisson' for rates or pro-rated "
                "counts."
            )
            raise InvalidInputError(msg)


# ------------------------------------------------------------------ #
# QuasiPoissonFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class QuasiPoissonFamily(_LogLinkFamily):
    """Quasi-Poisson family: Poisson mean/variance shape, free scale.

    Var(Y) = φ·μ where φ is estimated after fitting as the Pearson χ²
    divided by the residual degrees of freedom.  The point estimates
    are identical to the Poisson fit; only the standard errors (and
    hence the Wald statistics) scale by √φ.  There is no likelihood,
    so ``log_likelihood`` (and AIC) is NaN.
    """

    @property
    def name(self) -> str:
        return "quasipoisson"

    @property
    def estimates_dispersion(self) -> bool:
        return True

    def log_likelihood(
        self,
        y: np.ndarray,  # noqa: ARG002
        mu: np.ndarray,  # noqa: ARG002
        weights: np.ndarray | None = None,  # noqa: ARG002
    ) -> float:
        return float("nan")

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* is non-negative (fractional values allowed)."""
        self._validate_non_negative(y, "QuasiPoissonFamily")


# ------------------------------------------------------------------ #
# Family resolution
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {}
"""Registry mapping family name strings to concrete GLMFamily classes."""


def _normalise(name: str) -> str:
    return name.strip().lower().replace("_", "").replace("-", "")


def register_family(name: str, cls: type) -> None:
    """Register a concrete ``GLMFamily`` class under *name*.

    Args:
        name: Lookup key (e.g. ``"poisson"``).
        cls: A class implementing the ``GLMFamily`` protocol.

    Raises:
        TypeError: If *cls* does not satisfy the ``GLMFamily``
            protocol.
    """
    # runtime_checkable protocols with non-method members do not
    # support issubclass(); use isinstance() on a sentinel instance.
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, GLMFamily):
        msg = f"{cls!r} does not implement the GLMFamily protocol."
        raise TypeError(msg)
    _FAMILIES[_normalise(name)] = cls


def resolve_family(family: str | GLMFamily) -> GLMFamily:
    """Resolve a family string or instance to a concrete ``GLMFamily``.

    Instances are returned as-is; strings are looked up in the
    registry (case-insensitive, ``"quasi_poisson"`` and
    ``"quasipoisson"`` are equivalent).

    Raises:
        ValueError: If *family* is a string that is not registered.
    """
    if isinstance(family, GLMFamily):
        return family
    key = _normalise(str(family))
    if key not in _FAMILIES:
        available = ", ".join(sorted(_FAMILIES)) or "(none registered)"
        msg = f"Unknown family {family!r}.  Available families: {available}."
        raise ValueError(msg)
    instance: GLMFamily = _FAMILIES[key]()
    return instance


register_family("poisson", PoissonFamily)
register_family("quasipoisson", QuasiPoissonFamily)
