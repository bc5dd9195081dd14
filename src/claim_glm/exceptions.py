"""Exception and warning types raised by claim_glm.

Fatal input problems raise :class:`InvalidInputError`, which also
derives from ``ValueError`` so callers that already catch
``ValueError`` keep working.  Non-convergence is reported, never
fatal: :class:`DidNotConvergeWarning` extends statsmodels'
``ConvergenceWarning`` so a single warnings filter silences both
libraries.

Aliased (rank-deficient) design columns are *not* an error; they are
reported per coefficient on the fitted model.
"""

from __future__ import annotations

import numpy as np
from statsmodels.tools.sm_exceptions import ConvergenceWarning


class ClaimGLMError(Exception):
    """Base class for all claim_glm errors."""


class InvalidInputError(ClaimGLMError, ValueError):
    """Invalid response, weights, offset, or design supplied to a fit."""


class SingularDesignError(ClaimGLMError, np.linalg.LinAlgError):
    """No usable coefficients could be estimated from the design."""


class DidNotConvergeWarning(ConvergenceWarning):
    """IRLS reached its iteration cap before meeting the tolerance."""
