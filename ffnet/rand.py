"""
Random Source
=============

Every stochastic operation in ffnet takes one of these explicitly, so that
weight initialization, sampling and exploration are reproducible from a seed.
"""

import numpy as np


class Rand:
    """
    Injected random generator.

    Args:
        seed: Seed for numpy's default generator (None for entropy)
    """

    def __init__(self, seed=None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self):
        """Uniform double in [0, 1)."""
        return float(self._rng.random())

    def normal(self):
        """Standard normal deviate."""
        return float(self._rng.standard_normal())

    def next(self, n=None):
        """Non-negative random integer, below n when n is given."""
        if n is None:
            return int(self._rng.integers(0, 2 ** 63 - 1))
        return int(self._rng.integers(0, n))

    def normal_array(self, shape):
        return self._rng.standard_normal(shape)

    def uniform_array(self, shape):
        return self._rng.random(shape)

    def __repr__(self):
        return f"Rand(seed={self.seed})"
