"""Shared type aliases for the claim_glm package."""

import numpy as np

# Anything ``numpy.random.default_rng`` accepts as a random source.
RandomState = np.random.Generator | int | None
