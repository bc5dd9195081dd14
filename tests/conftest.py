"""Shared fixtures: a simulated motor claim-frequency portfolio."""

import numpy as np
import pandas as pd
import pytest

from claim_glm.design import build_design, log_exposure

# True frequency model used by ``claims_data``.
TRUE_INTERCEPT = np.log(0.08)
TRUE_AREA = {"A": 0.0, "B": 0.3, "C": -0.4}
TRUE_AGE = -0.03


def simulate_portfolio(n: int, seed: int) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    area = rng.choice(list(TRUE_AREA), size=n, p=[0.5, 0.3, 0.2])
    vehicle_age = rng.integers(0, 15, size=n).astype(float)
    exposure = rng.uniform(0.1, 1.0, size=n)
    eta = (
        TRUE_INTERCEPT
        + np.array([TRUE_AREA[a] for a in area])
        + TRUE_AGE * vehicle_age
        + np.log(exposure)
    )
    claims = rng.poisson(np.exp(eta))
    return pd.DataFrame(
        {
            "area": area,
            "vehicle_age": vehicle_age,
            "exposure": exposure,
            "claims": claims,
        }
    )


@pytest.fixture()
def rng():
    return np.random.default_rng(2024)


@pytest.fixture()
def claims_data():
    return simulate_portfolio(4000, seed=11)


@pytest.fixture()
def claims_design(claims_data):
    design = build_design(claims_data, columns=["area", "vehicle_age"])
    return design, claims_data["claims"].to_numpy(), log_exposure(claims_data["exposure"])


@pytest.fixture()
def count_data(rng):
    """Small dense Poisson regression problem on a plain array design."""
    n = 300
    x = rng.standard_normal((n, 2))
    X = np.column_stack([np.ones(n), x])
    offset = np.log(rng.uniform(0.5, 2.0, n))
    y = rng.poisson(np.exp(X @ np.array([0.5, 0.4, -0.3]) + offset)).astype(float)
    return X, y, offset


@pytest.fixture()
def make_portfolio():
    return simulate_portfolio
