"""Poisson GLM fitting by iteratively reweighted least squares.

:class:`PoissonGLMFitter` fits a log-link count model with an optional
offset (typically ``log(exposure)``) and optional prior weights, and
exposes prediction and residual diagnostics for the resulting
:class:`~claim_glm._results.FittedModel`.

IRLS
~~~~
With the canonical log link the Fisher scoring update is a weighted
least-squares regression of the working response on the design:

    μ   = exp(η)
    w   = prior_weight · μ              (V(μ) = μ, dμ/dη = μ)
    z   = (η − offset) + (y − μ)/μ
    β   = argmin Σ wᵢ (zᵢ − xᵢ'β)²
    η   = Xβ + offset

iterated until the relative change in deviance
``|D − D_old| / (|D| + 0.1)`` falls below ``tol`` (R's ``glm.fit``
criterion).  The start is ``μ₀ = y`` (zeros lifted to 0.1), so an
exactly representable response such as a constant count is reproduced
in a single iteration.

Each weighted solve goes through :func:`~claim_glm._linalg.weighted_least_squares`,
which reports linearly dependent columns as aliased rather than
failing.  Aliased coefficients stay in the result as ``ALIASED`` and
contribute 0 to every linear predictor.

Non-finite deviance (overflowing means) triggers step halving toward
the previous coefficients, as in R.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any

import numpy as np
from scipy import stats

from ._compat import _as_float_matrix, _as_float_vector
from ._config import DEFAULT_MAX_ITER, DEFAULT_TOL, RANK_TOL
from ._linalg import unscaled_covariance, weighted_least_squares
from ._results import ALIASED, Coefficient, Estimated, FittedModel, _frozen_array
from ._typing import RandomState
from .exceptions import DidNotConvergeWarning, InvalidInputError, SingularDesignError
from .families import GLMFamily, resolve_family
from .residuals import (
    RESIDUAL_KINDS,
    deviance_residuals,
    pearson_residuals,
    randomized_quantile_residuals,
    response_residuals,
    working_residuals,
)

logger = logging.getLogger(__name__)

_MAX_STEP_HALVINGS = 30


# ------------------------------------------------------------------ #
# Input handling
# ------------------------------------------------------------------ #


def _column_names(X: Any, p: int) -> tuple[str, ...]:
    """Column names from a DesignMatrix / DataFrame, else ``x0 … x{p-1}``."""
    names = getattr(X, "column_names", None)
    if names is None and hasattr(X, "columns"):
        names = [str(c) for c in X.columns]
    if names is None or len(names) != p:
        return tuple(f"x{j}" for j in range(p))
    return tuple(str(n) for n in names)


def _intercept_index(X: Any, X_arr: np.ndarray) -> int | None:
    """Position of the intercept column, or ``None`` when absent."""
    if getattr(X, "intercept", None) is False:
        return None
    ones = np.all(X_arr == 1.0, axis=0)
    hits = np.flatnonzero(ones)
    return int(hits[0]) if hits.size else None


def _prepare_offset(offset: Any, n: int) -> np.ndarray:
    if offset is None:
        return np.zeros(n)
    off = _as_float_vector(offset, name="offset", n=n)
    if not np.all(np.isfinite(off)):
        msg = "'offset' contains NaN or infinite values."
        raise InvalidInputError(msg)
    return off


def _prepare_weights(weights: Any, n: int) -> np.ndarray:
    if weights is None:
        return np.ones(n)
    w = _as_float_vector(weights, name="weights", n=n)
    if not np.all(np.isfinite(w)):
        msg = "'weights' contains NaN or infinite values."
        raise InvalidInputError(msg)
    if np.any(w <= 0):
        msg = "'weights' must be strictly positive."
        raise InvalidInputError(msg)
    return w


# ------------------------------------------------------------------ #
# Fitter
# ------------------------------------------------------------------ #


class PoissonGLMFitter:
    """Fit log-link count GLMs by IRLS with explicit aliasing.

    Args:
        family: ``"poisson"`` (default), ``"quasipoisson"``, or a
            :class:`~claim_glm.families.GLMFamily` instance.
        rank_tol: Relative tolerance for declaring a design column
            aliased.

    Example::

        fitter = PoissonGLMFitter()
        model = fitter.fit(design, claims, offset=np.log(exposure))
        mu = fitter.predict(model, holdout_design, offset=np.log(holdout_exposure))
        r = fitter.quantile_residuals(model, design, claims,
                                      offset=np.log(exposure), random_state=1)
    """

    def __init__(
        self,
        family: str | GLMFamily = "poisson",
        rank_tol: float = RANK_TOL,
    ) -> None:
        self.family = resolve_family(family)
        if not rank_tol > 0:
            msg = f"rank_tol must be positive, got {rank_tol!r}."
            raise ValueError(msg)
        self.rank_tol = rank_tol

    def __repr__(self) -> str:
        return f"PoissonGLMFitter(family={self.family.name!r}, rank_tol={self.rank_tol!r})"

    # ---- fit -------------------------------------------------------

    def fit(
        self,
        X: Any,
        y: Any,
        offset: Any = None,
        weights: Any = None,
        max_iter: int = DEFAULT_MAX_ITER,
        tol: float = DEFAULT_TOL,
    ) -> FittedModel:
        """Fit the model by IRLS.

        Args:
            X: Design matrix ``(n, p)``: a
                :class:`~claim_glm.design.DesignMatrix`, DataFrame, or
                array.  Include the intercept column explicitly.
            y: Response ``(n,)``.  Non-negative integers for Poisson,
                non-negative reals for quasi-Poisson.
            offset: Optional offset ``(n,)`` on the log scale.
            weights: Optional strictly positive prior weights ``(n,)``.
            max_iter: Iteration cap.
            tol: Relative deviance-change tolerance.

        Returns:
            An immutable :class:`~claim_glm._results.FittedModel`.

        Raises:
            InvalidInputError: Invalid response, offset, weights, or
                design, or non-positive *max_iter* / *tol*.
            SingularDesignError: No column (or the intercept column)
                is estimable, or no finite deviance can be reached.

        Warns:
            DidNotConvergeWarning: *max_iter* reached before *tol*;
                the last iterate is returned with ``converged=False``.
        """
        if int(max_iter) < 1:
            msg = f"max_iter must be at least 1, got {max_iter!r}."
            raise InvalidInputError(msg)
        if not tol > 0:
            msg = f"tol must be positive, got {tol!r}."
            raise InvalidInputError(msg)

        X_arr = _as_float_matrix(X, name="X")
        n, p = X_arr.shape
        y_arr = _as_float_vector(y, name="y", n=n)
        self.family.validate_y(y_arr)
        off = _prepare_offset(offset, n)
        prior_w = _prepare_weights(weights, n)
        names = _column_names(X, p)
        icpt = _intercept_index(X, X_arr)

        family = self.family
        mu = family.starting_mu(y_arr)
        eta = family.link(mu)
        dev_old = family.deviance(y_arr, mu, prior_w)
        coef_old: np.ndarray | None = None
        converged = False
        n_iter = 0
        solution = None

        for n_iter in range(1, int(max_iter) + 1):
            w = prior_w * mu
            z = (eta - off) + (y_arr - mu) / mu
            solution = weighted_least_squares(X_arr, z, w, self.rank_tol)
            if solution.rank == 0:
                msg = "Every design column is aliased; nothing can be estimated."
                raise SingularDesignError(msg)
            if icpt is not None and icpt in solution.aliased:
                msg = f"The intercept column {names[icpt]!r} is degenerate."
                raise SingularDesignError(msg)

            coef = solution.coef
            eta = X_arr @ coef + off
            mu = family.inverse_link(eta)
            dev = family.deviance(y_arr, mu, prior_w)

            n_halve = 0
            while not np.isfinite(dev):
                if coef_old is None or n_halve >= _MAX_STEP_HALVINGS:
                    msg = (
                        "No valid set of coefficients was found: the deviance "
                        "is not finite. Check the offset and design scaling."
                    )
                    raise SingularDesignError(msg)
                coef = 0.5 * (coef + coef_old)
                eta = X_arr @ coef + off
                mu = family.inverse_link(eta)
                dev = family.deviance(y_arr, mu, prior_w)
                n_halve += 1
            if n_halve:
                logger.debug("IRLS iteration %d: %d step halvings.", n_iter, n_halve)

            logger.debug("IRLS iteration %d: deviance=%.10g", n_iter, dev)
            if abs(dev - dev_old) / (abs(dev) + 0.1) < tol:
                converged = True
                coef_old = coef
                break
            dev_old = dev
            coef_old = coef

        if not converged:
            warnings.warn(
                f"IRLS did not converge in {max_iter} iterations; returning "
                f"the last iterate (deviance={dev:.6g}).",
                DidNotConvergeWarning,
                stacklevel=2,
            )

        # max_iter >= 1, so the loop has produced at least one solve.
        if solution is None or coef_old is None:
            msg = "IRLS produced no iterate; check max_iter."
            raise SingularDesignError(msg)
        return self._build_model(
            X_arr=X_arr,
            y=y_arr,
            coef=coef_old,
            kept=solution.kept,
            aliased=solution.aliased,
            eta=eta,
            mu=mu,
            offset=off,
            prior_w=prior_w,
            names=names,
            has_intercept=icpt is not None,
            converged=converged,
            n_iter=n_iter,
        )

    def _build_model(
        self,
        *,
        X_arr: np.ndarray,
        y: np.ndarray,
        coef: np.ndarray,
        kept: np.ndarray,
        aliased: np.ndarray,
        eta: np.ndarray,
        mu: np.ndarray,
        offset: np.ndarray,
        prior_w: np.ndarray,
        names: tuple[str, ...],
        has_intercept: bool,
        converged: bool,
        n_iter: int,
    ) -> FittedModel:
        family = self.family
        n, p = X_arr.shape
        rank = int(kept.shape[0])
        df_residual = n - rank

        if aliased.size:
            logger.info(
                "Aliased coefficients (linearly dependent columns): %s",
                ", ".join(names[j] for j in aliased),
            )

        deviance = family.deviance(y, mu, prior_w)
        pearson_chi2 = float(np.sum(prior_w * (y - mu) ** 2 / family.variance(mu)))
        if family.estimates_dispersion:
            dispersion = pearson_chi2 / df_residual if df_residual > 0 else float("nan")
        else:
            dispersion = 1.0

        log_likelihood = family.log_likelihood(y, mu, prior_w)
        aic = -2.0 * log_likelihood + 2.0 * rank

        # Null model: intercept + offset (or offset alone).  With the
        # log link the intercept MLE is log(Σwy / Σw·exp(offset)).
        base = np.exp(offset)
        if has_intercept:
            mu_null = base * np.sum(prior_w * y) / np.sum(prior_w * base)
        else:
            mu_null = base
        null_deviance = family.deviance(y, mu_null, prior_w)
        df_null = n - int(has_intercept)

        # Covariance from the weighted QR at the converged means.
        sw = np.sqrt(prior_w * mu)
        R = np.linalg.qr(X_arr[:, kept] * sw[:, None], mode="r")
        cov_kept = dispersion * unscaled_covariance(R)
        cov = np.full((p, p), np.nan)
        cov[np.ix_(kept, kept)] = cov_kept

        se = np.full(p, np.nan)
        se[kept] = np.sqrt(np.diag(cov_kept))
        params = np.full(p, np.nan)
        params[kept] = coef[kept]
        with np.errstate(divide="ignore", invalid="ignore"):
            statistic = params / se
        if family.estimates_dispersion:
            p_values = 2.0 * stats.t.sf(np.abs(statistic), df_residual)
        else:
            p_values = 2.0 * stats.norm.sf(np.abs(statistic))

        coefficients: list[Coefficient] = [ALIASED] * p
        for j in kept:
            coefficients[j] = Estimated(float(coef[j]))

        return FittedModel(
            family=family,
            column_names=names,
            coefficients=tuple(coefficients),
            standard_errors=_frozen_array(se),
            statistics=_frozen_array(statistic),
            p_values=_frozen_array(p_values),
            cov_params=_frozen_array(cov),
            deviance=float(deviance),
            null_deviance=float(null_deviance),
            pearson_chi2=pearson_chi2,
            log_likelihood=float(log_likelihood),
            aic=float(aic),
            dispersion=float(dispersion),
            n_obs=n,
            rank=rank,
            df_residual=df_residual,
            df_null=df_null,
            has_intercept=has_intercept,
            converged=converged,
            n_iter=n_iter,
            fitted_values=_frozen_array(mu),
            linear_predictor=_frozen_array(eta),
            offset=_frozen_array(offset),
            prior_weights=_frozen_array(prior_w),
        )

    # ---- predict / residuals ---------------------------------------

    def predict(
        self,
        model: FittedModel,
        X_new: Any,
        offset: Any = None,
        type: str = "response",  # noqa: A002
    ) -> np.ndarray:
        """Predict means (or linear predictors) for new rows."""
        return predict(model, X_new, offset=offset, type=type)

    def residuals(
        self,
        model: FittedModel,
        X: Any,
        y: Any,
        offset: Any = None,
        kind: str = "deviance",
        random_state: RandomState = None,
        weights: Any = None,
    ) -> np.ndarray:
        """Residuals of *kind* for the rows ``(X, y, offset)``.

        Pass the training *weights* to get weighted deviance and
        Pearson residuals.
        """
        return residuals(
            model,
            X,
            y,
            offset=offset,
            kind=kind,
            random_state=random_state,
            weights=weights,
        )

    def quantile_residuals(
        self,
        model: FittedModel,
        X: Any,
        y: Any,
        offset: Any = None,
        random_state: RandomState = None,
    ) -> np.ndarray:
        """Randomized quantile residuals with deviance-residual fallback."""
        return quantile_residuals(model, X, y, offset=offset, random_state=random_state)


# ------------------------------------------------------------------ #
# Module-level operations
# ------------------------------------------------------------------ #


def fit(
    X: Any,
    y: Any,
    offset: Any = None,
    weights: Any = None,
    family: str | GLMFamily = "poisson",
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
) -> FittedModel:
    """Shorthand for ``PoissonGLMFitter(family).fit(...)``."""
    return PoissonGLMFitter(family).fit(
        X, y, offset=offset, weights=weights, max_iter=max_iter, tol=tol
    )


def predict(
    model: FittedModel,
    X_new: Any,
    offset: Any = None,
    type: str = "response",  # noqa: A002
) -> np.ndarray:
    """Apply a fitted model to new rows.

    ``μ = exp(X_new·β̂ + offset)`` with aliased coefficients treated as
    0.  ``type="link"`` returns the linear predictor instead.

    Raises:
        InvalidInputError: If *X_new* has the wrong number of columns
            or *offset* the wrong length.
        ValueError: If *type* is not ``"response"`` or ``"link"``.
    """
    if type not in ("response", "link"):
        msg = f"type must be 'response' or 'link', got {type!r}."
        raise ValueError(msg)
    X_arr = _as_float_matrix(X_new, name="X_new")
    if X_arr.shape[1] != model.n_params:
        msg = (
            f"X_new has {X_arr.shape[1]} columns but the model has "
            f"{model.n_params} coefficients."
        )
        raise InvalidInputError(msg)
    off = _prepare_offset(offset, X_arr.shape[0])
    eta = X_arr @ model.prediction_coefs + off
    if type == "link":
        return eta
    return model.family.inverse_link(eta)


def residuals(
    model: FittedModel,
    X: Any,
    y: Any,
    offset: Any = None,
    kind: str = "deviance",
    random_state: RandomState = None,
    weights: Any = None,
) -> np.ndarray:
    """Residuals of the given *kind* for rows ``(X, y, offset)``.

    *kind* is one of ``"deviance"``, ``"pearson"``, ``"response"``,
    ``"working"``, ``"quantile"``.  *weights* default to ones; pass the
    training weights to reproduce weighted deviance/Pearson residuals.
    """
    if kind not in RESIDUAL_KINDS:
        msg = f"Unknown residual kind {kind!r}. Choose from: {', '.join(RESIDUAL_KINDS)}."
        raise ValueError(msg)
    mu = predict(model, X, offset=offset)
    y_arr = _as_float_vector(y, name="y", n=mu.shape[0])
    w = None if weights is None else _prepare_weights(weights, mu.shape[0])
    if kind == "deviance":
        return deviance_residuals(y_arr, mu, w, model.family)
    if kind == "pearson":
        return pearson_residuals(y_arr, mu, w, model.family)
    if kind == "response":
        return response_residuals(y_arr, mu)
    if kind == "working":
        return working_residuals(y_arr, mu)
    return randomized_quantile_residuals(
        y_arr,
        mu,
        random_state=random_state,
        fallback=deviance_residuals(y_arr, mu, w, model.family),
    )


def quantile_residuals(
    model: FittedModel,
    X: Any,
    y: Any,
    offset: Any = None,
    random_state: RandomState = None,
) -> np.ndarray:
    """Randomized quantile residuals of *model* on ``(X, y, offset)``.

    Observations whose quantile residual is not finite fall back to the
    deviance residual of this same model.
    """
    return residuals(
        model, X, y, offset=offset, kind="quantile", random_state=random_state
    )
