"""claim_glm — Poisson GLMs for claim-frequency modelling.

Fits log-link Poisson and quasi-Poisson regressions by IRLS with an
optional log-exposure offset and prior weights, reports linearly
dependent design columns as aliased coefficients instead of failing,
and provides prediction, randomized quantile residuals and model
diagnostics.

Public API:
    .. autosummary::
        PoissonGLMFitter
        fit
        predict
        residuals
        quantile_residuals
        build_design
        log_exposure
        DesignMatrix
        FittedModel
        Estimated
        ALIASED
        GLMFamily
        PoissonFamily
        QuasiPoissonFamily
        resolve_family
        register_family
        goodness_of_fit
        likelihood_ratio_test
        holdout_evaluation
        residual_summary
        simulate_quantile_envelope
        compute_all_diagnostics
        randomized_quantile_residuals
        get_backend
        set_backend
"""

from ._config import get_backend, set_backend
from ._results import ALIASED, Aliased, Estimated, FittedModel
from .design import DesignMatrix, build_design, log_exposure
from .diagnostics import (
    compute_all_diagnostics,
    goodness_of_fit,
    holdout_evaluation,
    likelihood_ratio_test,
    residual_summary,
    simulate_quantile_envelope,
)
from .exceptions import (
    ClaimGLMError,
    DidNotConvergeWarning,
    InvalidInputError,
    SingularDesignError,
)
from .families import (
    GLMFamily,
    PoissonFamily,
    QuasiPoissonFamily,
    register_family,
    resolve_family,
)
from .glm import PoissonGLMFitter, fit, predict, quantile_residuals, residuals
from .residuals import (
    deviance_residuals,
    pearson_residuals,
    randomized_quantile_residuals,
)

__all__ = [
    "PoissonGLMFitter",
    "fit",
    "predict",
    "residuals",
    "quantile_residuals",
    "DesignMatrix",
    "build_design",
    "log_exposure",
    "FittedModel",
    "Estimated",
    "Aliased",
    "ALIASED",
    "GLMFamily",
    "PoissonFamily",
    "QuasiPoissonFamily",
    "resolve_family",
    "register_family",
    "goodness_of_fit",
    "likelihood_ratio_test",
    "holdout_evaluation",
    "residual_summary",
    "simulate_quantile_envelope",
    "compute_all_diagnostics",
    "deviance_residuals",
    "pearson_residuals",
    "randomized_quantile_residuals",
    "ClaimGLMError",
    "InvalidInputError",
    "SingularDesignError",
    "DidNotConvergeWarning",
    "get_backend",
    "set_backend",
]

__version__ = "0.1.0"
