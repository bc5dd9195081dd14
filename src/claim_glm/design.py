"""Design-matrix construction for claim-frequency models.

:func:`build_design` turns a pandas (or Polars) frame of rating
factors into an intercept-first numeric design with treatment coding:

* every categorical factor with L levels contributes L − 1 indicator
  columns named ``factor[level]``; the reference level (first in
  sorted order, the declared category order for pandas categoricals,
  or a caller-chosen level) gets no column;
* numeric columns pass through unchanged;
* an interaction ``"a:b"`` contributes the element-wise product of
  every column of ``a`` with every column of ``b``, named
  ``a_col:b_col``.

Interaction columns are never pruned here.  When a combination of
levels is fully determined by the main effects (for example a level
pair that never occurs, or one that coincides with a single main
effect), the fitter reports the redundant column as aliased.

The returned :class:`DesignMatrix` remembers its encoding, so
:meth:`DesignMatrix.transform` produces columns in the same order for
held-out data.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from .exceptions import InvalidInputError

logger = logging.getLogger(__name__)

INTERCEPT_NAME = "(Intercept)"


# ------------------------------------------------------------------ #
# Per-variable codings
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class _NumericCoding:
    name: str

    @property
    def column_names(self) -> tuple[str, ...]:
        return (self.name,)

    def encode(self, series: pd.Series) -> np.ndarray:
        try:
            values = series.to_numpy(dtype=np.float64)
        except (TypeError, ValueError):
            msg = f"Numeric predictor {self.name!r} contains non-numeric values."
            raise InvalidInputError(msg) from None
        if not np.all(np.isfinite(values)):
            msg = f"Numeric predictor {self.name!r} contains NaN or infinite values."
            raise InvalidInputError(msg)
        return values.reshape(-1, 1)


@dataclass(frozen=True)
class _TreatmentCoding:
    name: str
    levels: tuple[Any, ...]
    reference: Any

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(f"{self.name}[{lvl}]" for lvl in self.levels if lvl != self.reference)

    def encode(self, series: pd.Series) -> np.ndarray:
        if series.isna().any():
            msg = f"Categorical predictor {self.name!r} contains missing values."
            raise InvalidInputError(msg)
        values = series.astype(object).to_numpy()
        known = set(self.levels)
        unseen = sorted({v for v in values if v not in known}, key=str)
        if unseen:
            msg = (
                f"Categorical predictor {self.name!r} has levels not seen when "
                f"the design was built: {unseen}."
            )
            raise InvalidInputError(msg)
        kept = [lvl for lvl in self.levels if lvl != self.reference]
        if not kept:
            return np.empty((len(values), 0))
        return np.column_stack([values == lvl for lvl in kept]).astype(np.float64)


def _sorted_levels(series: pd.Series) -> tuple[Any, ...]:
    if isinstance(series.dtype, pd.CategoricalDtype):
        present = set(series.dropna().unique())
        return tuple(c for c in series.cat.categories if c in present)
    uniques = series.dropna().unique().tolist()
    try:
        return tuple(sorted(uniques))
    except TypeError:
        return tuple(sorted(uniques, key=str))


def _is_categorical(series: pd.Series) -> bool:
    return not pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(series)


def _make_coding(
    name: str,
    series: pd.Series,
    categorical: bool,
    reference: Any | None,
) -> _NumericCoding | _TreatmentCoding:
    if not categorical:
        return _NumericCoding(name)
    if series.isna().any():
        msg = f"Categorical predictor {name!r} contains missing values."
        raise InvalidInputError(msg)
    levels = _sorted_levels(series)
    if not levels:
        msg = f"Categorical predictor {name!r} has no levels."
        raise InvalidInputError(msg)
    if reference is None:
        reference = levels[0]
    elif reference not in levels:
        msg = f"Reference level {reference!r} is not a level of {name!r}: {list(levels)}."
        raise InvalidInputError(msg)
    return _TreatmentCoding(name, levels, reference)


def _parse_interaction(term: str | Sequence[str]) -> tuple[str, str]:
    parts = term.split(":") if isinstance(term, str) else list(term)
    if len(parts) != 2 or not all(parts):
        msg = f"Interactions must name exactly two variables, got {term!r}."
        raise InvalidInputError(msg)
    return parts[0].strip(), parts[1].strip()


# ------------------------------------------------------------------ #
# DesignMatrix
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    """Encoded design plus the recipe that produced it.

    Attributes:
        matrix: Read-only float array ``(n, p)``.
        column_names: Names of the ``p`` columns, intercept first.
        intercept: Whether column 0 is the ``(Intercept)`` column.
    """

    matrix: np.ndarray = field(repr=False)
    column_names: tuple[str, ...]
    intercept: bool
    _main_effects: tuple[str, ...] = field(repr=False)
    _interactions: tuple[tuple[str, str], ...] = field(repr=False)
    _codings: Mapping[str, _NumericCoding | _TreatmentCoding] = field(repr=False)

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape  # type: ignore[return-value]

    @property
    def n_rows(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def reference_levels(self) -> dict[str, Any]:
        """Reference (dropped) level of every categorical factor."""
        return {
            name: c.reference
            for name, c in self._codings.items()
            if isinstance(c, _TreatmentCoding)
        }

    def __array__(self, dtype: Any = None, copy: Any = None) -> np.ndarray:
        return np.asarray(self.matrix, dtype=dtype)

    def transform(self, new_data: DataFrameLike) -> DesignMatrix:
        """Encode *new_data* with this design's levels and column order.

        Raises:
            InvalidInputError: If a required column is missing or a
                categorical value was not seen at build time.
        """
        df = _ensure_pandas_df(new_data, name="new_data")
        missing = [name for name in self._codings if name not in df.columns]
        if missing:
            msg = f"new_data is missing predictor columns: {missing}."
            raise InvalidInputError(msg)
        matrix = _assemble(df, self._main_effects, self._interactions, self._codings, self.intercept)
        return DesignMatrix(
            matrix=matrix,
            column_names=self.column_names,
            intercept=self.intercept,
            _main_effects=self._main_effects,
            _interactions=self._interactions,
            _codings=self._codings,
        )

    def to_frame(self, index: pd.Index | None = None) -> pd.DataFrame:
        """Return the design as a DataFrame with named columns."""
        return pd.DataFrame(np.array(self.matrix), columns=list(self.column_names), index=index)


def _assemble(
    df: pd.DataFrame,
    main_effects: Sequence[str],
    interactions: Sequence[tuple[str, str]],
    codings: Mapping[str, _NumericCoding | _TreatmentCoding],
    intercept: bool,
) -> np.ndarray:
    n = len(df)
    if n == 0:
        msg = "Cannot build a design from zero rows."
        raise InvalidInputError(msg)
    blocks: dict[str, np.ndarray] = {
        name: coding.encode(df[name]) for name, coding in codings.items()
    }
    parts: list[np.ndarray] = []
    if intercept:
        parts.append(np.ones((n, 1)))
    parts.extend(blocks[name] for name in main_effects)
    for a, b in interactions:
        A, B = blocks[a], blocks[b]
        # Column order: for each column of a, every column of b.
        parts.append((A[:, :, None] * B[:, None, :]).reshape(n, -1))
    matrix = np.hstack(parts) if parts else np.empty((n, 0))
    matrix.setflags(write=False)
    return matrix


def build_design(
    data: DataFrameLike,
    columns: Sequence[str] | None = None,
    interactions: Iterable[str | Sequence[str]] = (),
    reference: Mapping[str, Any] | None = None,
    categorical: Iterable[str] | None = None,
    intercept: bool = True,
) -> DesignMatrix:
    """Build a treatment-coded design matrix from a data frame.

    Args:
        data: pandas or Polars frame of predictors.
        columns: Main-effect columns, in design order.  Defaults to
            every column of *data*.
        interactions: Two-way interactions as ``"a:b"`` strings or
            ``(a, b)`` pairs.  Variables need not be main effects.
        reference: Optional ``{factor: level}`` overriding the
            default reference level.
        categorical: Columns to treat as categorical even when
            numeric (e.g. an integer-coded area band).  Non-numeric
            and boolean columns are always categorical.
        intercept: Prepend the ``(Intercept)`` column.

    Returns:
        A :class:`DesignMatrix`.

    Raises:
        InvalidInputError: Unknown columns, missing categorical
            values, non-finite numeric values, or a reference level
            that does not occur.
    """
    df = _ensure_pandas_df(data, name="data")
    main_effects = tuple(df.columns if columns is None else columns)
    pairs = tuple(_parse_interaction(t) for t in interactions)
    reference = dict(reference or {})
    forced = set(categorical or ())

    variables: list[str] = list(main_effects)
    for a, b in pairs:
        for v in (a, b):
            if v not in variables:
                variables.append(v)
    unknown = [v for v in [*variables, *forced, *reference] if v not in df.columns]
    if unknown:
        msg = f"Columns not found in data: {sorted(set(map(str, unknown)))}."
        raise InvalidInputError(msg)

    codings: dict[str, _NumericCoding | _TreatmentCoding] = {}
    for name in variables:
        series = df[name]
        is_cat = name in forced or name in reference or _is_categorical(series)
        codings[name] = _make_coding(str(name), series, is_cat, reference.get(name))

    matrix = _assemble(df, main_effects, pairs, codings, intercept)

    names: list[str] = [INTERCEPT_NAME] if intercept else []
    for name in main_effects:
        names.extend(codings[name].column_names)
    for a, b in pairs:
        names.extend(f"{ca}:{cb}" for ca in codings[a].column_names for cb in codings[b].column_names)

    logger.debug("Built design with %d rows and %d columns.", matrix.shape[0], matrix.shape[1])
    return DesignMatrix(
        matrix=matrix,
        column_names=tuple(names),
        intercept=intercept,
        _main_effects=main_effects,
        _interactions=pairs,
        _codings=codings,
    )


def log_exposure(exposure: Any) -> np.ndarray:
    """Return ``log(exposure)`` for use as an offset.

    Raises:
        InvalidInputError: If any exposure is non-positive or not
            finite.
    """
    if isinstance(exposure, (pd.Series, pd.DataFrame)):
        exposure = exposure.to_numpy()
    arr = np.asarray(exposure, dtype=np.float64).ravel()
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        msg = "Exposure must be finite and strictly positive."
        raise InvalidInputError(msg)
    return np.log(arr)
