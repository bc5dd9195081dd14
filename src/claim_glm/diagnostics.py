"""Model diagnostics for fitted claim-frequency GLMs.

Model-level checks:

* **Goodness of fit**: residual deviance and Pearson χ² against the
  residual degrees of freedom.  Their ratio is the dispersion; a
  value well above 1 (the threshold used here is 1.5) means the
  counts vary more than a Poisson model allows, so Poisson standard
  errors are too small and a quasi-Poisson fit is the usual remedy.

* **Likelihood-ratio test** between nested fits: the drop in deviance
  is χ² with (rank difference) degrees of freedom under the reduced
  model.  For quasi-Poisson fits the drop is divided by the full
  model's dispersion first.

* **Held-out evaluation**: mean Poisson deviance and mean absolute
  error from scikit-learn, and the actual-to-expected claim ratio
  that pricing teams track.

Residual checks:

* **Residual summary**: moments, count of |r| > 2, and a Shapiro–Wilk
  normality p-value.  Randomized quantile residuals of a correctly
  specified model are exactly N(0, 1), so mean ≈ 0, variance ≈ 1 and
  a non-small Shapiro–Wilk p-value are expected.

* **Simulated QQ envelope**: responses are simulated from the fitted
  means, the model is refit on each replicate through the active
  compute backend, and the sorted quantile residuals of every refit
  give a pointwise band for the observed sorted residuals.

  Reference: Atkinson, A. C. (1985). *Plots, Transformations and
  Regression*. Oxford University Press, §4.2.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.metrics import mean_absolute_error, mean_poisson_deviance

from ._backends import resolve_backend
from ._compat import _as_float_matrix, _as_float_vector
from ._config import DEFAULT_MAX_ITER, DEFAULT_TOL
from ._results import FittedModel
from ._typing import RandomState
from .exceptions import InvalidInputError
from .glm import predict, residuals
from .residuals import randomized_quantile_residuals

logger = logging.getLogger(__name__)

OVERDISPERSION_THRESHOLD: float = 1.5

_SHAPIRO_MAX_N = 5000


# ------------------------------------------------------------------ #
# Model-level diagnostics
# ------------------------------------------------------------------ #


def goodness_of_fit(model: FittedModel) -> dict[str, Any]:
    """Deviance / Pearson goodness-of-fit summary.

    Returns:
        Dictionary with ``deviance``, ``pearson_chi2``, ``df_resid``,
        ``dispersion`` (Pearson χ² / df_resid), ``overdispersed``,
        ``deviance_p_value`` (upper χ² tail of the deviance),
        ``aic`` and ``bic``.
    """
    df_resid = model.df_residual
    if df_resid > 0:
        dispersion = model.pearson_chi2 / df_resid
        deviance_p = float(stats.chi2.sf(model.deviance, df_resid))
    else:
        dispersion = float("nan")
        deviance_p = float("nan")
    return {
        "deviance": model.deviance,
        "pearson_chi2": model.pearson_chi2,
        "df_resid": df_resid,
        "dispersion": dispersion,
        "overdispersed": bool(dispersion > OVERDISPERSION_THRESHOLD),
        "deviance_p_value": deviance_p,
        "aic": model.aic,
        "bic": model.bic,
    }


def likelihood_ratio_test(reduced: FittedModel, full: FittedModel) -> dict[str, Any]:
    """Compare two nested fits on the same observations.

    Args:
        reduced: The smaller model.
        full: The larger model.

    Returns:
        Dictionary with ``statistic``, ``df`` and ``p_value``.

    Raises:
        InvalidInputError: If the fits use different numbers of
            observations or *full* does not have a larger rank.
    """
    if reduced.n_obs != full.n_obs:
        msg = (
            f"Models were fit on different data: {reduced.n_obs} vs "
            f"{full.n_obs} observations."
        )
        raise InvalidInputError(msg)
    df = full.rank - reduced.rank
    if df <= 0:
        msg = (
            f"The full model (rank {full.rank}) must have more estimable "
            f"coefficients than the reduced model (rank {reduced.rank})."
        )
        raise InvalidInputError(msg)

    statistic = reduced.deviance - full.deviance
    if full.family.estimates_dispersion:
        statistic /= full.dispersion
    # Nested IRLS fits can differ by rounding in the wrong direction.
    statistic = max(statistic, 0.0)
    return {
        "statistic": float(statistic),
        "df": int(df),
        "p_value": float(stats.chi2.sf(statistic, df)),
    }


def holdout_evaluation(
    model: FittedModel,
    X: Any,
    y: Any,
    offset: Any = None,
) -> dict[str, Any]:
    """Score a fitted model on held-out rows.

    Returns:
        Dictionary with ``n``, ``mean_poisson_deviance``,
        ``mean_absolute_error``, ``actual``, ``expected`` and
        ``actual_to_expected``.
    """
    mu = predict(model, X, offset=offset)
    y_arr = _as_float_vector(y, name="y", n=mu.shape[0])
    if np.any(~np.isfinite(y_arr)) or np.any(y_arr < 0):
        msg = "Held-out responses must be finite and non-negative."
        raise InvalidInputError(msg)
    # sklearn requires strictly positive predictions.
    mu_pos = np.maximum(mu, np.finfo(float).tiny)
    actual = float(y_arr.sum())
    expected = float(mu.sum())
    return {
        "n": int(y_arr.shape[0]),
        "mean_poisson_deviance": float(mean_poisson_deviance(y_arr, mu_pos)),
        "mean_absolute_error": float(mean_absolute_error(y_arr, mu)),
        "actual": actual,
        "expected": expected,
        "actual_to_expected": actual / expected if expected > 0 else float("nan"),
    }


# ------------------------------------------------------------------ #
# Residual diagnostics
# ------------------------------------------------------------------ #


def residual_summary(resid: Any) -> dict[str, Any]:
    """Moments and normality check of a residual vector.

    Non-finite entries are dropped first.  The Shapiro–Wilk p-value is
    NaN outside ``3 ≤ n ≤ 5000``.
    """
    r = np.asarray(resid, dtype=float).ravel()
    r = r[np.isfinite(r)]
    n = r.shape[0]
    if n == 0:
        msg = "residual_summary needs at least one finite residual."
        raise InvalidInputError(msg)

    shapiro_p = float("nan")
    if 3 <= n <= _SHAPIRO_MAX_N:
        shapiro_p = float(stats.shapiro(r).pvalue)

    with warnings.catch_warnings():
        # Constant residuals make skew / kurtosis undefined.
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        skew = float(stats.skew(r)) if n > 2 else float("nan")
        kurt = float(stats.kurtosis(r)) if n > 3 else float("nan")

    return {
        "n": int(n),
        "mean": float(np.mean(r)),
        "variance": float(np.var(r, ddof=1)) if n > 1 else float("nan"),
        "skewness": skew,
        "excess_kurtosis": kurt,
        "n_extreme": int(np.sum(np.abs(r) > 2)),
        "shapiro_p_value": shapiro_p,
    }


def simulate_quantile_envelope(
    model: FittedModel,
    X: Any,
    y: Any,
    offset: Any = None,
    n_simulations: int = 99,
    level: float = 0.95,
    random_state: RandomState = None,
    backend: str | None = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Simulated pointwise envelope for sorted quantile residuals.

    Args:
        model: Fitted model.
        X: Design the model was fit on (or any design with the same
            columns).
        y: Observed counts for *X*.
        offset: Offset for *X*.
        n_simulations: Number of simulated responses.
        level: Coverage of the pointwise band.
        random_state: Seed or ``numpy.random.Generator`` driving both
            the simulated responses and the residual draws.
        backend: ``"numpy"``, ``"jax"`` or ``None`` for the
            configured policy.
        n_jobs: Thread count for the NumPy backend.

    Returns:
        DataFrame with one row per observation (sorted order) and
        columns ``theoretical`` (normal quantiles), ``observed``,
        ``lower``, ``median``, ``upper`` and ``outside``.
    """
    if n_simulations < 1:
        msg = f"n_simulations must be at least 1, got {n_simulations!r}."
        raise InvalidInputError(msg)
    if not 0 < level < 1:
        msg = f"level must lie strictly between 0 and 1, got {level!r}."
        raise InvalidInputError(msg)

    rng = np.random.default_rng(random_state)
    X_arr = _as_float_matrix(X, name="X")
    n = X_arr.shape[0]
    off = np.zeros(n) if offset is None else _as_float_vector(offset, name="offset", n=n)
    mu = predict(model, X_arr, offset=off)

    observed = np.sort(residuals(model, X_arr, y, offset=off, kind="quantile", random_state=rng))

    X_kept = X_arr[:, ~model.aliased]
    Y_sim = rng.poisson(mu, size=(n_simulations, n)).astype(float)
    coefs = resolve_backend(backend).batch_poisson(
        X_kept,
        Y_sim,
        offset=off,
        max_iter=DEFAULT_MAX_ITER,
        tol=DEFAULT_TOL,
        n_jobs=n_jobs,
    )

    ok = np.all(np.isfinite(coefs), axis=1)
    if not np.all(ok):
        logger.debug("Dropped %d failed envelope refits.", int((~ok).sum()))
    if not np.any(ok):
        msg = "Every simulated refit failed; no envelope can be formed."
        raise InvalidInputError(msg)

    sims = np.empty((int(ok.sum()), n))
    for row, b in enumerate(np.flatnonzero(ok)):
        mu_b = np.exp(X_kept @ coefs[b] + off)
        sims[row] = np.sort(randomized_quantile_residuals(Y_sim[b], mu_b, random_state=rng))

    alpha = 1.0 - level
    lower, median, upper = np.quantile(sims, [alpha / 2, 0.5, 1 - alpha / 2], axis=0)
    theoretical = stats.norm.ppf((np.arange(1, n + 1) - 0.5) / n)
    return pd.DataFrame(
        {
            "theoretical": theoretical,
            "observed": observed,
            "lower": lower,
            "median": median,
            "upper": upper,
            "outside": (observed < lower) | (observed > upper),
        }
    )


# ------------------------------------------------------------------ #
# Aggregate
# ------------------------------------------------------------------ #


def compute_all_diagnostics(
    model: FittedModel,
    X: Any,
    y: Any,
    offset: Any = None,
    random_state: RandomState = None,
) -> dict[str, Any]:
    """Goodness of fit plus deviance and quantile residual summaries.

    Residual summaries that cannot be computed (for example on a
    single observation) are replaced by NaN sentinels and the failure
    is logged at DEBUG.
    """
    result: dict[str, Any] = {"goodness_of_fit": goodness_of_fit(model)}
    for kind in ("deviance", "quantile"):
        try:
            r = residuals(model, X, y, offset=offset, kind=kind, random_state=random_state)
            result[f"{kind}_residuals"] = residual_summary(r)
        except ValueError as exc:
            logger.debug("%s residual diagnostics failed: %s", kind.capitalize(), exc)
            result[f"{kind}_residuals"] = {
                "n": 0,
                "mean": float("nan"),
                "variance": float("nan"),
                "skewness": float("nan"),
                "excess_kurtosis": float("nan"),
                "n_extreme": 0,
                "shapiro_p_value": float("nan"),
            }
    return result
