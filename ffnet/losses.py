"""
Loss Functions
==============

Loss functions measure how wrong a single prediction vector is, and supply
the blame that seeds the output layer's error before back-propagation.

Each loss implements:
- forward(prediction, target): loss value
- blame(prediction, target): the error vector for the output layer

Blame points downhill: it is the negative gradient of the loss w.r.t. the
output, so the accumulated deltas are added to the weights.
"""

import numpy as np

from .errors import InvalidArgument


class Loss:
    """Base class for loss functions."""

    def forward(self, prediction, target):
        """Compute loss value."""
        raise NotImplementedError

    def blame(self, prediction, target):
        """Error vector to seed the output layer with."""
        raise NotImplementedError

    def __call__(self, prediction, target):
        return self.forward(prediction, target)


class SquaredError(Loss):
    """
    Sum-squared error for regression.

    Formula: L = 0.5 * sum((target - prediction)^2)

    Blame: target - prediction
    """

    def forward(self, prediction, target):
        diff = np.asarray(target, dtype=np.float64) - np.asarray(prediction, dtype=np.float64)
        return 0.5 * float(np.dot(diff.ravel(), diff.ravel()))

    def blame(self, prediction, target):
        return np.asarray(target, dtype=np.float64) - np.asarray(prediction, dtype=np.float64)


class CrossEntropy(Loss):
    """
    Cross-entropy for classification outputs that form a distribution.

    Formula: L = -sum(target * log(prediction))

    Blame: target - prediction, the usual combined form for a normalized
    output whose error is already deactivated.

    Args:
        epsilon: Small constant to prevent log(0)
    """

    def __init__(self, epsilon=1e-15):
        self.epsilon = epsilon

    def forward(self, prediction, target):
        p = np.clip(np.asarray(prediction, dtype=np.float64), self.epsilon, 1.0)
        return float(-np.sum(np.asarray(target, dtype=np.float64) * np.log(p)))

    def blame(self, prediction, target):
        return np.asarray(target, dtype=np.float64) - np.asarray(prediction, dtype=np.float64)


# ============================================================================
# Loss Registry
# ============================================================================

LOSSES = {
    'squared_error': SquaredError,
    'sse': SquaredError,
    'mse': SquaredError,
    'cross_entropy': CrossEntropy,
    'crossentropy': CrossEntropy,
    'ce': CrossEntropy,
}


def get_loss(name):
    """
    Get loss function by name.

    Args:
        name: String name or Loss instance

    Returns:
        Loss instance
    """
    if isinstance(name, Loss):
        return name

    name_lower = name.lower()
    if name_lower not in LOSSES:
        available = ', '.join(LOSSES.keys())
        raise InvalidArgument(f"Unknown loss '{name}'. Available: {available}")

    return LOSSES[name_lower]()
