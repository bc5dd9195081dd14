"""Tests for the batch Poisson backends."""

import warnings

import numpy as np
import pytest

from claim_glm import PoissonGLMFitter
from claim_glm._backends import BackendProtocol, _check_convergence, resolve_backend
from claim_glm._backends._numpy import NumpyBackend


@pytest.fixture()
def batch_problem(count_data, rng):
    X, y, offset = count_data
    mu = PoissonGLMFitter().fit(X, y, offset=offset).fitted_values
    Y = rng.poisson(mu, size=(6, X.shape[0])).astype(float)
    return X, Y, offset


def _reference_coefs(X, Y, offset, weights=None):
    fitter = PoissonGLMFitter()
    return np.vstack([fitter.fit(X, y, offset=offset, weights=weights).params for y in Y])


class TestNumpyBackend:
    def test_protocol(self):
        assert isinstance(NumpyBackend(), BackendProtocol)

    def test_matches_single_fits(self, batch_problem):
        X, Y, offset = batch_problem
        coefs = NumpyBackend().batch_poisson(X, Y, offset=offset)
        np.testing.assert_allclose(coefs, _reference_coefs(X, Y, offset), rtol=1e-12)

    def test_threads_match_sequential(self, batch_problem):
        X, Y, offset = batch_problem
        backend = NumpyBackend()
        seq = backend.batch_poisson(X, Y, offset=offset)
        par = backend.batch_poisson(X, Y, offset=offset, n_jobs=2)
        np.testing.assert_allclose(par, seq, rtol=1e-12)

    def test_weights(self, batch_problem, rng):
        X, Y, offset = batch_problem
        w = rng.uniform(0.5, 2.0, X.shape[0])
        coefs = NumpyBackend().batch_poisson(X, Y, offset=offset, weights=w)
        np.testing.assert_allclose(coefs, _reference_coefs(X, Y, offset, w), rtol=1e-12)

    def test_single_summary_warning(self, batch_problem):
        X, Y, offset = batch_problem
        with pytest.warns(RuntimeWarning, match="6 of 6") as record:
            NumpyBackend().batch_poisson(X, Y, offset=offset, max_iter=1)
        assert len([w for w in record if issubclass(w.category, RuntimeWarning)]) == 1

    def test_singular_replicate_is_nan(self):
        X = np.zeros((4, 1))
        coefs = NumpyBackend().batch_poisson(X, np.ones((2, 4)))
        assert np.all(np.isnan(coefs))


class TestCheckConvergence:
    def test_silent_when_all_converged(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            _check_convergence(np.array([True, True]), 25)

    def test_reports_fraction(self):
        with pytest.warns(RuntimeWarning, match=r"1 of 4 .*25\.0%"):
            _check_convergence(np.array([True, False, True, True]), 25)


class TestJaxBackend:
    @pytest.fixture(autouse=True)
    def _require_jax(self):
        pytest.importorskip("jax")

    def test_resolves(self):
        backend = resolve_backend("jax")
        assert backend.name == "jax"
        assert isinstance(backend, BackendProtocol)

    def test_matches_numpy(self, batch_problem):
        X, Y, offset = batch_problem
        jax_coefs = resolve_backend("jax").batch_poisson(X, Y, offset=offset, max_iter=50)
        np.testing.assert_allclose(jax_coefs, _reference_coefs(X, Y, offset), rtol=1e-6, atol=1e-8)

    def test_matches_numpy_with_weights(self, batch_problem, rng):
        X, Y, offset = batch_problem
        w = rng.uniform(0.5, 2.0, X.shape[0])
        jax_coefs = resolve_backend("jax").batch_poisson(
            X, Y, offset=offset, weights=w, max_iter=50
        )
        np.testing.assert_allclose(
            jax_coefs, _reference_coefs(X, Y, offset, w), rtol=1e-6, atol=1e-8
        )

    def test_ignores_n_jobs(self, batch_problem):
        X, Y, offset = batch_problem
        coefs = resolve_backend("jax").batch_poisson(X, Y, offset=offset, n_jobs=4)
        assert coefs.shape == (Y.shape[0], X.shape[1])

    def test_envelope_backends_agree(self, count_data):
        from claim_glm.diagnostics import simulate_quantile_envelope

        X, y, offset = count_data
        model = PoissonGLMFitter().fit(X, y, offset=offset)
        kwargs = dict(offset=offset, n_simulations=9, random_state=0)
        a = simulate_quantile_envelope(model, X, y, backend="numpy", **kwargs)
        b = simulate_quantile_envelope(model, X, y, backend="jax", **kwargs)
        np.testing.assert_allclose(a["median"], b["median"], atol=1e-4)
