"""Input compatibility layer for optional Polars support.

The design-matrix builder accepts pandas DataFrames.  This module adds
transparent support for Polars frames: a ``polars.DataFrame`` (or
``polars.LazyFrame``) is converted to ``pandas.DataFrame`` at the
boundary so that factor coding, which relies on pandas categoricals,
stays in one place.

Polars is **not** a required dependency.  If it is not installed, the
converter simply passes pandas objects through untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

from .exceptions import InvalidInputError

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Runtime detection; Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "input") -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Accepted types:
        * ``pandas.DataFrame`` — returned as-is.
        * ``polars.DataFrame`` — converted via ``.to_pandas()``.
        * ``polars.LazyFrame`` — collected then converted.

    Args:
        obj: A pandas or Polars DataFrame (or LazyFrame).
        name: Label used in error messages (e.g. ``"data"``).

    Returns:
        A pandas ``DataFrame``.

    Raises:
        TypeError: If *obj* is not a recognised DataFrame type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    raise TypeError(
        f"'{name}' must be a pandas DataFrame"
        + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _as_float_vector(obj: object, *, name: str, n: int | None = None) -> np.ndarray:
    """Flatten *obj* into a 1-D float64 array, checking its length.

    pandas Series and single-column DataFrames are unwrapped with
    ``.to_numpy()`` so that index alignment never leaks into the
    numerical code.

    Raises:
        InvalidInputError: If the values are not numeric, the result is
            not one-dimensional, or its length differs from *n*.
    """
    if isinstance(obj, (pd.Series, pd.DataFrame)):
        obj = obj.to_numpy()
    try:
        arr = np.asarray(obj, dtype=np.float64)
    except (TypeError, ValueError):
        msg = f"'{name}' must contain numeric values."
        raise InvalidInputError(msg) from None
    if arr.ndim == 2 and 1 in arr.shape:
        arr = arr.ravel()
    if arr.ndim != 1:
        msg = f"'{name}' must be one-dimensional, got shape {arr.shape}."
        raise InvalidInputError(msg)
    if n is not None and arr.shape[0] != n:
        msg = f"'{name}' has {arr.shape[0]} entries but the design has {n} rows."
        raise InvalidInputError(msg)
    return arr


def _as_float_matrix(obj: object, *, name: str = "X") -> np.ndarray:
    """Convert *obj* into a 2-D float64 design array.

    Accepts NumPy arrays, pandas DataFrames, and
    :class:`~claim_glm.design.DesignMatrix` instances (anything with a
    ``matrix`` attribute).

    Raises:
        InvalidInputError: If the result is not 2-D, is empty, or
            contains non-finite values.
    """
    matrix = getattr(obj, "matrix", None)
    if matrix is not None:
        obj = matrix
    if isinstance(obj, pd.DataFrame):
        obj = obj.to_numpy()
    try:
        arr = np.asarray(obj, dtype=np.float64)
    except (TypeError, ValueError):
        msg = f"'{name}' must contain numeric values."
        raise InvalidInputError(msg) from None
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        msg = f"'{name}' must be two-dimensional, got shape {arr.shape}."
        raise InvalidInputError(msg)
    if arr.shape[0] == 0:
        msg = f"'{name}' must contain at least one observation."
        raise InvalidInputError(msg)
    if arr.shape[1] == 0:
        msg = f"'{name}' must contain at least one column."
        raise InvalidInputError(msg)
    if not np.all(np.isfinite(arr)):
        msg = f"'{name}' contains NaN or infinite values."
        raise InvalidInputError(msg)
    return arr
