"""Typed result objects for fitted GLMs.

Frozen dataclasses that provide:

* **Attribute access** — ``model.deviance``, ``model.converged``, etc.
* **Dict-like access** — ``model["deviance"]``, ``model.get("key")``,
  ``"key" in model`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

Coefficients are a tagged outcome: each design column yields either
:class:`Estimated` (a numeric value) or :data:`ALIASED` (the column is
a linear combination of columns to its left and has no unique
estimate).  Aliased coefficients are kept in every report so the
coefficient vector always lines up with the design columns, but they
contribute nothing to predictions.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .families import GLMFamily

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types.

    Handles nested dicts, lists, np.ndarray, np.integer, and
    np.floating so that :meth:`to_dict` returns a fully
    JSON-serialisable structure.
    """
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


def _frozen_array(values: np.ndarray) -> np.ndarray:
    """Return a read-only float copy of *values*."""
    arr = np.array(values, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


# ------------------------------------------------------------------ #
# Coefficient outcomes
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class Estimated:
    """A coefficient with a unique numeric estimate."""

    value: float

    @property
    def is_aliased(self) -> bool:
        return False

    def __float__(self) -> float:
        return float(self.value)


@dataclass(frozen=True)
class Aliased:
    """A coefficient whose column is linearly dependent on earlier ones."""

    @property
    def is_aliased(self) -> bool:
        return True

    def __float__(self) -> float:
        return float("nan")

    def __repr__(self) -> str:
        return "Aliased"


ALIASED = Aliased()
"""Shared marker instance for aliased coefficients."""

Coefficient = Estimated | Aliased


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test

    Subclasses may override ``_SERIALIZERS`` to register custom
    conversion functions for non-primitive fields (e.g.
    ``GLMFamily`` → ``str``).  Serializers compose with
    :func:`_numpy_to_python`.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
        "coefficients": lambda cs: [None if c.is_aliased else float(c) for c in cs],
    }

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary.

        Applies per-field serializers from ``_SERIALIZERS``, then runs
        :func:`_numpy_to_python` on every value so the returned dict
        is fully JSON-serialisable.  Aliased coefficients become
        ``None``.
        """
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# FittedModel
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FittedModel(_DictAccessMixin):
    """Immutable snapshot of one IRLS fit.

    Produced by :meth:`~claim_glm.glm.PoissonGLMFitter.fit`.  Array
    fields are read-only copies, so the model can be shared freely.
    """

    # ---- Coefficients ----------------------------------------------
    family: GLMFamily
    """Family used for the fit (e.g. ``PoissonFamily()``)."""

    column_names: tuple[str, ...]
    """Design column names, one per coefficient."""

    coefficients: tuple[Coefficient, ...]
    """``Estimated(value)`` or ``ALIASED`` per design column."""

    standard_errors: np.ndarray
    """Wald standard errors, NaN for aliased columns."""

    statistics: np.ndarray
    """Wald z (Poisson) or t (quasi-Poisson) statistics."""

    p_values: np.ndarray
    """Two-sided p-values for the Wald statistics."""

    cov_params: np.ndarray
    """Scaled covariance ``(p, p)``; rows/columns of aliased terms are NaN."""

    # ---- Fit statistics --------------------------------------------
    deviance: float
    """Residual deviance ``Σ wᵢ d(yᵢ, μ̂ᵢ)``."""

    null_deviance: float
    """Deviance of the intercept-only (or offset-only) model."""

    pearson_chi2: float
    """Pearson χ² ``Σ wᵢ (yᵢ − μ̂ᵢ)² / V(μ̂ᵢ)``."""

    log_likelihood: float
    """Log-likelihood at the fit (NaN for quasi families)."""

    aic: float
    """``−2ℓ + 2·rank`` (NaN for quasi families)."""

    dispersion: float
    """1 for Poisson; Pearson χ² / df_residual for quasi-Poisson."""

    n_obs: int
    """Number of observations."""

    rank: int
    """Number of estimable (non-aliased) columns."""

    df_residual: int
    """Residual degrees of freedom ``n − rank``."""

    df_null: int
    """Null degrees of freedom ``n − intercept``."""

    has_intercept: bool
    """Whether the design carries an all-ones column."""

    # ---- Convergence -----------------------------------------------
    converged: bool
    """``True`` when the deviance tolerance was met."""

    n_iter: int
    """Number of IRLS iterations performed."""

    # ---- Per-observation vectors -----------------------------------
    fitted_values: np.ndarray = field(repr=False)
    """Fitted means μ̂ on the training data."""

    linear_predictor: np.ndarray = field(repr=False)
    """Linear predictor η̂ = Xβ̂ + offset on the training data."""

    offset: np.ndarray = field(repr=False)
    """Offset used for the fit (zeros when none was supplied)."""

    prior_weights: np.ndarray = field(repr=False)
    """Prior weights used for the fit (ones when none were supplied)."""

    # ---- Derived views ---------------------------------------------

    @property
    def n_params(self) -> int:
        return len(self.coefficients)

    @property
    def aliased(self) -> np.ndarray:
        """Boolean mask, ``True`` where the coefficient is aliased."""
        return np.array([c.is_aliased for c in self.coefficients], dtype=bool)

    @property
    def aliased_names(self) -> list[str]:
        return [n for n, c in zip(self.column_names, self.coefficients) if c.is_aliased]

    @property
    def params(self) -> np.ndarray:
        """Coefficient vector for reporting (NaN for aliased columns)."""
        return np.array([float(c) for c in self.coefficients])

    @property
    def prediction_coefs(self) -> np.ndarray:
        """Coefficient vector for prediction (0 for aliased columns)."""
        return np.nan_to_num(self.params, nan=0.0)

    @property
    def bic(self) -> float:
        """``−2ℓ + rank·log(n)`` (NaN for quasi families)."""
        return float(-2.0 * self.log_likelihood + self.rank * np.log(self.n_obs))

    def coefficient(self, name: str) -> Coefficient:
        """Look up a coefficient outcome by column name."""
        try:
            idx = self.column_names.index(name)
        except ValueError:
            raise KeyError(name) from None
        return self.coefficients[idx]

    def summary_frame(self) -> pd.DataFrame:
        """Coefficient table as a DataFrame indexed by column name.

        Columns: ``estimate``, ``std_error``, ``statistic``,
        ``p_value``, ``rate_ratio`` (``exp(estimate)``) and
        ``aliased``.
        """
        params = self.params
        return pd.DataFrame(
            {
                "estimate": params,
                "std_error": np.asarray(self.standard_errors),
                "statistic": np.asarray(self.statistics),
                "p_value": np.asarray(self.p_values),
                "rate_ratio": np.exp(params),
                "aliased": self.aliased,
            },
            index=pd.Index(self.column_names, name="term"),
        )
