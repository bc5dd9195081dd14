"""NumPy / SciPy backend (always available).

Each replicate is refit with :class:`~claim_glm.glm.PoissonGLMFitter`,
so the batch path uses exactly the same IRLS, start values and
convergence rule as a single fit.

Parallelism
~~~~~~~~~~~
When ``n_jobs != 1`` the loop over replicates runs under
``joblib.Parallel(prefer="threads")``.  The heavy work in each IRLS
step is LAPACK QR, which releases the GIL, so threads overlap without
copying the design into worker processes.

Warning suppression
~~~~~~~~~~~~~~~~~~~
Per-replicate :class:`~claim_glm.exceptions.DidNotConvergeWarning`
is silenced inside ``_fit_one``; the convergence flags are collected
and reported once through
:func:`~claim_glm._backends._check_convergence`.  Replicates whose
design becomes singular under the simulated response return NaN
coefficients.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
from joblib import Parallel, delayed

from .._config import DEFAULT_MAX_ITER, DEFAULT_TOL
from ..exceptions import DidNotConvergeWarning, SingularDesignError
from ..glm import PoissonGLMFitter
from . import _check_convergence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumpyBackend:
    """NumPy / SciPy compute backend.

    A stateless frozen dataclass, safe to cache in ``_BACKEND_CACHE``.
    """

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return True

    def batch_poisson(
        self,
        X: np.ndarray,
        Y_matrix: np.ndarray,
        offset: np.ndarray | None = None,
        weights: np.ndarray | None = None,
        **kwargs: Any,
    ) -> np.ndarray:
        """Batch Poisson GLM via the IRLS fitter.

        Args:
            X: Design matrix ``(n, p)``.
            Y_matrix: Count responses ``(B, n)``.
            offset: Shared offset ``(n,)``.
            weights: Shared prior weights ``(n,)``.
            **kwargs: ``max_iter``, ``tol``, ``n_jobs`` (default 1).

        Returns:
            Coefficients ``(B, p)``; aliased terms are 0, failed
            replicates are NaN.
        """
        n_jobs: int = kwargs.get("n_jobs", 1)
        max_iter: int = kwargs.get("max_iter", DEFAULT_MAX_ITER)
        tol: float = kwargs.get("tol", DEFAULT_TOL)
        fitter = PoissonGLMFitter()
        n_params = X.shape[1]
        B = Y_matrix.shape[0]

        def _fit_one(y_b: np.ndarray) -> tuple[np.ndarray, bool]:
            try:
                with warnings.catch_warnings():
                    warnings.filterwarnings("ignore", category=DidNotConvergeWarning)
                    model = fitter.fit(
                        X, y_b, offset=offset, weights=weights,
                        max_iter=max_iter, tol=tol,
                    )
            except (SingularDesignError, np.linalg.LinAlgError) as exc:
                logger.debug("Batch replicate failed: %s", exc)
                return np.full(n_params, np.nan), True
            return model.prediction_coefs, model.converged

        if n_jobs == 1:
            results = [_fit_one(Y_matrix[b]) for b in range(B)]
        else:
            results = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(_fit_one)(Y_matrix[b]) for b in range(B)
            )

        coefs = np.empty((B, n_params))
        converged = np.empty(B, dtype=bool)
        for b, (coef_b, conv_b) in enumerate(results):
            coefs[b] = coef_b
            converged[b] = conv_b
        _check_convergence(converged, max_iter)
        return coefs
