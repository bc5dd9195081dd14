"""Residual computations for log-link count models.

All functions here are pure: they take the observed response and the
fitted means (plus, where relevant, prior weights or a random source)
and return a new array.  Nothing is cached on the fitted model.

Randomized quantile residuals
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
For a discrete response the probability integral transform F(Y) is
not uniform, so Pearson and deviance residuals of count data show
banding and are only approximately normal.  Dunn & Smyth (1996)
restore continuity by drawing

    uᵢ ~ Uniform(F(yᵢ − 1; μ̂ᵢ), F(yᵢ; μ̂ᵢ))

and reporting rᵢ = Φ⁻¹(uᵢ).  Under a correctly specified model the
rᵢ are exactly N(0, 1), which makes normal QQ plots usable for count
models.  The draw is stochastic: tied counts receive different
residuals on every call unless the random source is fixed.

Far in the tails ``uᵢ`` can round to exactly 0 or 1 in float64, which
makes Φ⁻¹ infinite.  Those observations (and any with a non-integer
response, for which the Poisson CDF interval is undefined) fall back
to the corresponding value of a caller-supplied residual vector,
by default the deviance residuals of the same fit.

Reference: Dunn, P. K. & Smyth, G. K. (1996). Randomized quantile
residuals. *Journal of Computational and Graphical Statistics*,
5(3), 236–244.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import stats

from ._typing import RandomState
from .families import GLMFamily, PoissonFamily

logger = logging.getLogger(__name__)

RESIDUAL_KINDS = ("deviance", "pearson", "response", "working", "quantile")
"""Residual kinds accepted by :func:`claim_glm.glm.residuals`."""


def response_residuals(y: np.ndarray, mu: np.ndarray) -> np.ndarray:
    """Raw residuals ``y − μ̂``."""
    return np.asarray(y, dtype=float) - np.asarray(mu, dtype=float)


def working_residuals(y: np.ndarray, mu: np.ndarray) -> np.ndarray:
    """Working residuals ``(y − μ̂)·dη/dμ = (y − μ̂)/μ̂`` for the log link."""
    return response_residuals(y, mu) / np.asarray(mu, dtype=float)


def pearson_residuals(
    y: np.ndarray,
    mu: np.ndarray,
    weights: np.ndarray | None = None,
    family: GLMFamily | None = None,
) -> np.ndarray:
    """Pearson residuals ``√w·(y − μ̂)/√V(μ̂)``."""
    if family is None:
        family = PoissonFamily()
    r = response_residuals(y, mu) / np.sqrt(family.variance(np.asarray(mu, dtype=float)))
    if weights is not None:
        r = r * np.sqrt(weights)
    return r


def deviance_residuals(
    y: np.ndarray,
    mu: np.ndarray,
    weights: np.ndarray | None = None,
    family: GLMFamily | None = None,
) -> np.ndarray:
    """Deviance residuals ``sign(y − μ̂)·√(w·d(y, μ̂))``.

    The unit deviance is clipped at zero before the square root to
    absorb tiny negative values from floating-point cancellation when
    ``y ≈ μ̂``.
    """
    if family is None:
        family = PoissonFamily()
    y = np.asarray(y, dtype=float)
    mu = np.asarray(mu, dtype=float)
    d = family.unit_deviance(y, mu)
    if weights is not None:
        d = weights * d
    return np.sign(y - mu) * np.sqrt(np.maximum(d, 0.0))


def randomized_quantile_residuals(
    y: np.ndarray,
    mu: np.ndarray,
    random_state: RandomState = None,
    fallback: np.ndarray | None = None,
) -> np.ndarray:
    """Randomized quantile residuals for a Poisson response.

    Args:
        y: Observed counts ``(n,)``.
        mu: Fitted Poisson means ``(n,)``.
        random_state: ``numpy.random.Generator``, integer seed, or
            ``None``.  A generator is used as-is (and advanced), so
            passing the same seed twice reproduces the residuals.
        fallback: Residuals ``(n,)`` substituted wherever the quantile
            residual is NaN or infinite.  Defaults to the deviance
            residuals of ``(y, mu)``.

    Returns:
        Residual vector ``(n,)`` with no NaN or infinite entries
        (provided *fallback* is finite).
    """
    rng = np.random.default_rng(random_state)
    y = np.asarray(y, dtype=float)
    mu = np.asarray(mu, dtype=float)

    # F(y − 1) is 0 for y = 0 because the Poisson CDF at −1 is 0.
    lower = stats.poisson.cdf(y - 1.0, mu)
    upper = stats.poisson.cdf(y, mu)
    u = rng.uniform(lower, upper)
    with np.errstate(divide="ignore", invalid="ignore"):
        r = stats.norm.ppf(u)

    # The CDF interval only exists for whole-number responses.
    r = np.where(np.isclose(y, np.round(y)), r, np.nan)

    bad = ~np.isfinite(r)
    if np.any(bad):
        if fallback is None:
            fallback = deviance_residuals(y, mu)
        fallback = np.asarray(fallback, dtype=float)
        if fallback.shape != r.shape:
            msg = (
                f"fallback has shape {fallback.shape} but the residual "
                f"vector has shape {r.shape}."
            )
            raise ValueError(msg)
        r = np.where(bad, fallback, r)
        logger.debug(
            "Substituted fallback residuals for %d of %d observations.",
            int(bad.sum()),
            r.shape[0],
        )
    return r
