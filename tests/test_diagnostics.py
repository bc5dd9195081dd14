"""Tests for goodness of fit, LRT, hold-out scoring and envelopes."""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm
from scipy import stats
from sklearn.metrics import mean_poisson_deviance

from claim_glm import PoissonGLMFitter, predict
from claim_glm.design import build_design, log_exposure
from claim_glm.diagnostics import (
    compute_all_diagnostics,
    goodness_of_fit,
    holdout_evaluation,
    likelihood_ratio_test,
    residual_summary,
    simulate_quantile_envelope,
)
from claim_glm.exceptions import InvalidInputError


@pytest.fixture()
def fitter():
    return PoissonGLMFitter()


@pytest.fixture()
def nested_models(fitter, claims_data):
    offset = log_exposure(claims_data["exposure"])
    y = claims_data["claims"]
    small = build_design(claims_data, columns=["vehicle_age"])
    large = build_design(claims_data, columns=["area", "vehicle_age"])
    return fitter.fit(small, y, offset=offset), fitter.fit(large, y, offset=offset)


# ------------------------------------------------------------------ #
# goodness_of_fit
# ------------------------------------------------------------------ #


class TestGoodnessOfFit:
    def test_keys_and_values(self, nested_models):
        _, model = nested_models
        gof = goodness_of_fit(model)
        assert gof["deviance"] == model.deviance
        assert gof["df_resid"] == model.df_residual
        assert gof["dispersion"] == pytest.approx(model.pearson_chi2 / model.df_residual)
        assert gof["deviance_p_value"] == pytest.approx(
            stats.chi2.sf(model.deviance, model.df_residual)
        )
        assert gof["bic"] == pytest.approx(
            -2 * model.log_likelihood + model.rank * np.log(model.n_obs)
        )

    def test_correct_model_not_overdispersed(self, nested_models):
        _, model = nested_models
        assert goodness_of_fit(model)["overdispersed"] is False

    def test_overdispersed_counts_flagged(self, fitter, rng):
        n = 2000
        X = np.ones((n, 1))
        # Gamma-Poisson mixture: variance far above the mean.
        y = rng.poisson(rng.gamma(0.5, 4.0, n)).astype(float)
        gof = goodness_of_fit(fitter.fit(X, y))
        assert gof["overdispersed"] is True
        assert gof["dispersion"] > 1.5

    def test_saturated_model_has_nan_dispersion(self, fitter):
        model = fitter.fit(np.eye(3), np.array([1.0, 2.0, 3.0]))
        gof = goodness_of_fit(model)
        assert gof["df_resid"] == 0
        assert np.isnan(gof["dispersion"])
        assert gof["overdispersed"] is False


# ------------------------------------------------------------------ #
# likelihood_ratio_test
# ------------------------------------------------------------------ #


class TestLikelihoodRatioTest:
    def test_statistic_is_deviance_difference(self, nested_models):
        small, large = nested_models
        lrt = likelihood_ratio_test(small, large)
        assert lrt["statistic"] == pytest.approx(small.deviance - large.deviance)
        assert lrt["df"] == 2
        assert lrt["p_value"] == pytest.approx(stats.chi2.sf(lrt["statistic"], 2))

    def test_area_effect_detected(self, fitter, make_portfolio):
        # About 1700 claims, enough for the area effect to be unmistakable.
        data = make_portfolio(40_000, seed=11)
        offset = log_exposure(data["exposure"])
        small = fitter.fit(build_design(data, columns=["vehicle_age"]), data["claims"], offset=offset)
        large = fitter.fit(
            build_design(data, columns=["area", "vehicle_age"]), data["claims"], offset=offset
        )
        assert data["claims"].sum() > 1000
        assert likelihood_ratio_test(small, large)["p_value"] < 1e-3

    def test_matches_statsmodels_llf(self, claims_data):
        offset = log_exposure(claims_data["exposure"])
        y = claims_data["claims"].to_numpy()
        small = build_design(claims_data, columns=["vehicle_age"])
        large = build_design(claims_data, columns=["area", "vehicle_age"])
        fitter = PoissonGLMFitter()
        lrt = likelihood_ratio_test(
            fitter.fit(small, y, offset=offset), fitter.fit(large, y, offset=offset)
        )
        ref_small = sm.GLM(y, small.matrix, family=sm.families.Poisson(), offset=offset).fit()
        ref_large = sm.GLM(y, large.matrix, family=sm.families.Poisson(), offset=offset).fit()
        assert lrt["statistic"] == pytest.approx(2 * (ref_large.llf - ref_small.llf), rel=1e-6)

    def test_quasi_scaled_by_dispersion(self, claims_data):
        offset = log_exposure(claims_data["exposure"])
        y = claims_data["claims"]
        fitter = PoissonGLMFitter("quasipoisson")
        small = fitter.fit(build_design(claims_data, columns=["vehicle_age"]), y, offset=offset)
        large = fitter.fit(
            build_design(claims_data, columns=["area", "vehicle_age"]), y, offset=offset
        )
        lrt = likelihood_ratio_test(small, large)
        assert lrt["statistic"] == pytest.approx(
            (small.deviance - large.deviance) / large.dispersion
        )

    def test_rejects_wrong_order(self, nested_models):
        small, large = nested_models
        with pytest.raises(InvalidInputError, match="more estimable"):
            likelihood_ratio_test(large, small)

    def test_rejects_different_n(self, fitter, nested_models, count_data):
        _, large = nested_models
        X, y, offset = count_data
        other = fitter.fit(X, y, offset=offset)
        with pytest.raises(InvalidInputError, match="different data"):
            likelihood_ratio_test(other, large)


# ------------------------------------------------------------------ #
# holdout_evaluation
# ------------------------------------------------------------------ #


class TestHoldoutEvaluation:
    def test_metrics(self, fitter, claims_design, make_portfolio):
        design, y, offset = claims_design
        model = fitter.fit(design, y, offset=offset)
        holdout = make_portfolio(1500, seed=99)
        X_new = design.transform(holdout)
        off_new = log_exposure(holdout["exposure"])
        result = holdout_evaluation(model, X_new, holdout["claims"], offset=off_new)

        mu = predict(model, X_new, offset=off_new)
        assert result["n"] == 1500
        assert result["mean_poisson_deviance"] == pytest.approx(
            mean_poisson_deviance(holdout["claims"], mu)
        )
        assert result["actual"] == holdout["claims"].sum()
        assert result["expected"] == pytest.approx(mu.sum())
        assert result["actual_to_expected"] == pytest.approx(result["actual"] / result["expected"])
        # Same generating process: A/E close to 1.
        assert 0.8 < result["actual_to_expected"] < 1.2

    def test_training_ae_is_one(self, fitter, claims_design):
        # With an intercept the Poisson score equations force Σy = Σμ.
        design, y, offset = claims_design
        model = fitter.fit(design, y, offset=offset)
        result = holdout_evaluation(model, design, y, offset=offset)
        assert result["actual_to_expected"] == pytest.approx(1.0, abs=1e-6)

    def test_rejects_negative_response(self, fitter, count_data):
        X, y, offset = count_data
        model = fitter.fit(X, y, offset=offset)
        bad = y.copy()
        bad[0] = -1.0
        with pytest.raises(InvalidInputError, match="non-negative"):
            holdout_evaluation(model, X, bad, offset=offset)


# ------------------------------------------------------------------ #
# residual_summary
# ------------------------------------------------------------------ #


class TestResidualSummary:
    def test_standard_normal(self, rng):
        r = rng.standard_normal(3000)
        s = residual_summary(r)
        assert s["n"] == 3000
        assert abs(s["mean"]) < 0.1
        assert s["variance"] == pytest.approx(1.0, abs=0.1)
        assert abs(s["skewness"]) < 0.2
        assert abs(s["excess_kurtosis"]) < 0.3
        assert s["n_extreme"] == int(np.sum(np.abs(r) > 2))
        assert 0.0 <= s["shapiro_p_value"] <= 1.0

    def test_drops_non_finite(self):
        s = residual_summary(np.array([0.5, np.nan, -0.5, np.inf, 0.0]))
        assert s["n"] == 3

    def test_large_sample_skips_shapiro(self, rng):
        assert np.isnan(residual_summary(rng.standard_normal(6000))["shapiro_p_value"])

    def test_empty(self):
        with pytest.raises(InvalidInputError):
            residual_summary(np.array([np.nan]))


# ------------------------------------------------------------------ #
# simulate_quantile_envelope
# ------------------------------------------------------------------ #


class TestSimulateQuantileEnvelope:
    @pytest.fixture()
    def small_fit(self, fitter, make_portfolio):
        data = make_portfolio(1000, seed=5)
        design = build_design(data, columns=["area", "vehicle_age"])
        offset = log_exposure(data["exposure"])
        model = fitter.fit(design, data["claims"], offset=offset)
        return model, design, data["claims"].to_numpy(), offset

    def test_frame_layout(self, small_fit):
        model, design, y, offset = small_fit
        env = simulate_quantile_envelope(
            model, design, y, offset=offset, n_simulations=19, random_state=0, backend="numpy"
        )
        assert isinstance(env, pd.DataFrame)
        assert list(env.columns) == ["theoretical", "observed", "lower", "median", "upper", "outside"]
        assert len(env) == len(y)
        assert np.all(np.diff(env["theoretical"]) > 0)
        assert np.all(np.diff(env["observed"]) >= 0)
        assert np.all(env["lower"] <= env["median"])
        assert np.all(env["median"] <= env["upper"])

    def test_reproducible(self, small_fit):
        model, design, y, offset = small_fit
        kwargs = dict(offset=offset, n_simulations=9, random_state=4, backend="numpy")
        a = simulate_quantile_envelope(model, design, y, **kwargs)
        b = simulate_quantile_envelope(model, design, y, **kwargs)
        pd.testing.assert_frame_equal(a, b)

    def test_correct_model_mostly_inside(self, small_fit):
        model, design, y, offset = small_fit
        env = simulate_quantile_envelope(
            model, design, y, offset=offset, n_simulations=39, random_state=1, backend="numpy"
        )
        assert env["outside"].mean() < 0.2

    def test_threads(self, small_fit):
        model, design, y, offset = small_fit
        env = simulate_quantile_envelope(
            model, design, y, offset=offset, n_simulations=5, random_state=2,
            backend="numpy", n_jobs=2,
        )
        assert len(env) == len(y)

    def test_aliased_columns_are_dropped(self, fitter, small_fit):
        _, design, y, offset = small_fit
        X = np.column_stack([design.matrix, design.matrix[:, 1]])
        model = fitter.fit(X, y, offset=offset)
        env = simulate_quantile_envelope(
            model, X, y, offset=offset, n_simulations=5, random_state=3, backend="numpy"
        )
        assert np.all(np.isfinite(env[["lower", "median", "upper"]].to_numpy()))

    @pytest.mark.parametrize(("kwargs", "match"), [
        ({"n_simulations": 0}, "n_simulations"),
        ({"level": 1.0}, "level"),
    ])
    def test_rejects_bad_arguments(self, small_fit, kwargs, match):
        model, design, y, offset = small_fit
        with pytest.raises(InvalidInputError, match=match):
            simulate_quantile_envelope(model, design, y, offset=offset, backend="numpy", **kwargs)


class TestComputeAllDiagnostics:
    def test_sections(self, fitter, claims_design):
        design, y, offset = claims_design
        model = fitter.fit(design, y, offset=offset)
        result = compute_all_diagnostics(model, design, y, offset=offset, random_state=0)
        assert set(result) == {"goodness_of_fit", "deviance_residuals", "quantile_residuals"}
        assert abs(result["quantile_residuals"]["mean"]) < 0.1

    def test_failure_becomes_sentinel(self, fitter, count_data):
        X, y, offset = count_data
        model = fitter.fit(X, y, offset=offset)
        # Wrong-length response: residuals cannot be computed.
        result = compute_all_diagnostics(model, X, y[:-1], offset=offset)
        assert np.isnan(result["deviance_residuals"]["mean"])
        assert result["goodness_of_fit"]["deviance"] == model.deviance
