"""Rank-revealing weighted least squares for the IRLS inner step.

Every IRLS iteration solves

    minimise  Σ wᵢ (zᵢ − xᵢ'β)²

which is ordinary least squares on ``A = √W·X`` and ``b = √W·z``.
The design may be rank deficient (e.g. an interaction level that is
fully determined by the main effects), so the solve must report which
columns are *aliased* instead of failing or silently spreading the
effect across collinear columns the way a pseudoinverse does.

Column-order-preserving detection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
For an unpivoted Householder QR, ``|R_jj|`` is the norm of the part of
column j that is orthogonal to the span of columns ``0 … j−1``.  A
column is aliased when that norm drops below ``tol × ‖a_j‖``.  The
*first* such column is removed and the factorisation repeated, so a
column is only ever aliased by columns to its left.  This matches the
limited pivoting of LINPACK ``dqrdc2`` used by R's ``lm``/``glm``:
the later of two collinear columns is the one reported as ``NA``.

LAPACK's ``geqp3`` (``scipy.linalg.qr(pivoting=True)``) is not used
because it reorders columns by norm, which would alias whichever
collinear column happens to be shortest.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy import linalg

from ._config import RANK_TOL


@dataclass(frozen=True)
class WLSSolution:
    """Result of one rank-revealing weighted least-squares solve.

    Attributes:
        coef: Length-``p`` coefficient vector with ``0.0`` in aliased
            positions (the value used for prediction).
        kept: Indices of estimable columns, in original order.
        aliased: Indices of aliased columns, in original order.
        R: Upper-triangular factor ``(rank, rank)`` of the weighted
            design restricted to *kept*.
    """

    coef: np.ndarray
    kept: np.ndarray
    aliased: np.ndarray
    R: np.ndarray

    @property
    def rank(self) -> int:
        return int(self.kept.shape[0])


def find_aliased_columns(A: np.ndarray, tol: float = RANK_TOL) -> tuple[list[int], list[int]]:
    """Split the columns of *A* into estimable and aliased sets.

    Zero columns, columns beyond the row count, and columns whose
    residual norm after projection on the preceding kept columns falls
    below ``tol`` relative to their own norm are aliased.

    Returns:
        ``(kept, aliased)`` lists of column indices, both ascending.
    """
    n, p = A.shape
    norms = np.linalg.norm(A, axis=0)
    kept = list(range(p))
    aliased: list[int] = []

    while kept:
        R = np.linalg.qr(A[:, kept], mode="r")
        k = min(n, len(kept))
        diag = np.abs(np.diag(R)[:k])
        bad = None
        for i, j in enumerate(kept):
            if i >= k or norms[j] == 0.0 or diag[i] < tol * norms[j]:
                bad = i
                break
        if bad is None:
            break
        aliased.append(kept.pop(bad))

    return kept, sorted(aliased)


def weighted_least_squares(
    X: np.ndarray,
    z: np.ndarray,
    w: np.ndarray,
    tol: float = RANK_TOL,
) -> WLSSolution:
    """Solve ``min Σ wᵢ (zᵢ − xᵢ'β)²`` with explicit aliasing.

    Args:
        X: Design matrix ``(n, p)``.
        z: Working response ``(n,)``.
        w: Non-negative working weights ``(n,)``.
        tol: Relative rank tolerance.

    Returns:
        A :class:`WLSSolution`.  When every column is aliased the
        solution has rank 0 and an all-zero coefficient vector; the
        caller decides whether that is fatal.
    """
    sw = np.sqrt(w)
    A = X * sw[:, None]
    b = z * sw
    kept, aliased = find_aliased_columns(A, tol)

    p = X.shape[1]
    coef = np.zeros(p, dtype=float)
    if not kept:
        return WLSSolution(
            coef=coef,
            kept=np.asarray(kept, dtype=int),
            aliased=np.asarray(aliased, dtype=int),
            R=np.zeros((0, 0)),
        )

    Q, R = linalg.qr(A[:, kept], mode="economic", check_finite=False)
    coef[kept] = linalg.solve_triangular(R, Q.T @ b, check_finite=False)
    return WLSSolution(
        coef=coef,
        kept=np.asarray(kept, dtype=int),
        aliased=np.asarray(aliased, dtype=int),
        R=R,
    )


def unscaled_covariance(R: np.ndarray) -> np.ndarray:
    """Return ``(RᵀR)⁻¹`` from an upper-triangular factor."""
    if R.shape[0] == 0:
        return np.zeros((0, 0))
    R_inv = linalg.solve_triangular(R, np.eye(R.shape[0]), check_finite=False)
    return R_inv @ R_inv.T
