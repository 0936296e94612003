"""
Elementwise Activation Functions
================================

Scalar non-linearities applied by ActivationLayer, each as a pair:
- forward(x): the value f(x)
- derivative(x, fx): f'(x), given both the input and the already computed output

Passing the output to the derivative lets functions such as tanh and the
logistic reuse it instead of recomputing f(x).

Available: identity, tanh, logistic, bentidentity, sigexp, gaussian, sine,
rectifier, leakyrectifier, softplus, softroot
"""

import numpy as np

from .errors import InvalidArgument


class Activation:
    """Base class for all activation functions."""

    name = None

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def derivative(self, x, fx):
        """Derivative w.r.t. the input, given input x and output fx = f(x)."""
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(np.asarray(x, dtype=np.float64))

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Identity(Activation):
    """Identity: f(x) = x. Used for regression outputs and raw scores."""

    name = 'identity'

    def forward(self, x):
        return np.array(x, dtype=np.float64)

    def derivative(self, x, fx):
        return np.ones_like(x, dtype=np.float64)


class Tanh(Activation):
    """
    Hyperbolic Tangent: f(x) = tanh(x)

    Derivative:
        f'(x) = 1 - f(x)^2
    """

    name = 'tanh'

    def forward(self, x):
        return np.tanh(x)

    def derivative(self, x, fx):
        return 1.0 - fx * fx


class Logistic(Activation):
    """
    Logistic sigmoid: f(x) = 1 / (1 + exp(-x))

    Saturates to exactly 1 for x >= 700 and exactly 0 for x < -700,
    where exp would overflow.

    Derivative:
        f'(x) = f(x) * (1 - f(x))
    """

    name = 'logistic'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        x_clipped = np.clip(x, -700.0, 700.0)
        out = 1.0 / (np.exp(-x_clipped) + 1.0)
        out = np.where(x >= 700.0, 1.0, out)
        return np.where(x < -700.0, 0.0, out)

    def derivative(self, x, fx):
        return fx * (1.0 - fx)


class BentIdentity(Activation):
    """
    Bent identity: f(x) = 0.5 * (sqrt(x^2 + 0.25) - 0.5) + x

    Derivative:
        f'(x) = 0.5 * x / sqrt(x^2 + 0.25) + 1
    """

    name = 'bentidentity'

    def forward(self, x):
        return 0.5 * (np.sqrt(x * x + 0.25) - 0.5) + x

    def derivative(self, x, fx):
        return 0.5 * x / np.sqrt(x * x + 0.25) + 1.0


class SigExp(Activation):
    """
    Exponential below zero, logarithmic above:
        f(x) = exp(x) - 1   for x <= 0
        f(x) = log(x + 1)   for x > 0
    """

    name = 'sigexp'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        return np.where(x <= 0.0, np.expm1(np.minimum(x, 0.0)), np.log1p(np.maximum(x, 0.0)))

    def derivative(self, x, fx):
        x = np.asarray(x, dtype=np.float64)
        return np.where(x <= 0.0, np.exp(np.minimum(x, 0.0)), 1.0 / (np.maximum(x, 0.0) + 1.0))


class Gaussian(Activation):
    """Gaussian bump: f(x) = exp(-x^2), f'(x) = -2x exp(-x^2)."""

    name = 'gaussian'

    def forward(self, x):
        return np.exp(-(x * x))

    def derivative(self, x, fx):
        return -2.0 * x * np.exp(-(x * x))


class Sine(Activation):
    """Sine: f(x) = sin(x), f'(x) = cos(x)."""

    name = 'sine'

    def forward(self, x):
        return np.sin(x)

    def derivative(self, x, fx):
        return np.cos(x)


class Rectifier(Activation):
    """
    Rectified Linear Unit: f(x) = max(0, x)

    Derivative:
        f'(x) = 1 if x >= 0 else 0
    """

    name = 'rectifier'

    def forward(self, x):
        return np.maximum(0.0, x)

    def derivative(self, x, fx):
        return np.where(np.asarray(x) >= 0.0, 1.0, 0.0)


class LeakyRectifier(Activation):
    """
    Leaky ReLU: f(x) = x if x >= 0 else 0.01 * x

    Derivative:
        f'(x) = 1 if x >= 0 else 0.01
    """

    name = 'leakyrectifier'

    def __init__(self, alpha=0.01):
        self.alpha = alpha

    def forward(self, x):
        return np.where(np.asarray(x) >= 0.0, x, self.alpha * np.asarray(x))

    def derivative(self, x, fx):
        return np.where(np.asarray(x) >= 0.0, 1.0, self.alpha)

    def __repr__(self):
        return f"LeakyRectifier(alpha={self.alpha})"


class SoftPlus(Activation):
    """
    Smooth rectifier: f(x) = log(1 + exp(x)), taken as x itself above 500.

    Derivative:
        f'(x) = logistic(x)
    """

    name = 'softplus'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        return np.where(x > 500.0, x, np.log1p(np.exp(np.minimum(x, 500.0))))

    def derivative(self, x, fx):
        return Logistic().forward(x)


class SoftRoot(Activation):
    """
    Soft root: with d = sqrt(x^2 + 1), f(x) = sqrt(d + x) - sqrt(d - x)

    Grows like sqrt(|x|) in both directions. The derivative is taken as 0
    for |x| > 1e7, where d - x loses all precision.
    """

    name = 'softroot'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        d = np.sqrt(x * x + 1.0)
        return np.sqrt(d + x) - np.sqrt(d - x)

    def derivative(self, x, fx):
        x = np.asarray(x, dtype=np.float64)
        safe = np.where(np.abs(x) > 1e7, 0.0, x)
        d = np.sqrt(safe * safe + 1.0)
        t = safe / d
        out = (t + 1.0) / (2.0 * np.sqrt(d + safe)) - (t - 1.0) / (2.0 * np.sqrt(d - safe))
        return np.where(np.abs(x) > 1e7, 0.0, out)


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'identity': Identity,
    'linear': Identity,
    'tanh': Tanh,
    'logistic': Logistic,
    'sigmoid': Logistic,
    'bentidentity': BentIdentity,
    'sigexp': SigExp,
    'gaussian': Gaussian,
    'sine': Sine,
    'rectifier': Rectifier,
    'relu': Rectifier,
    'leakyrectifier': LeakyRectifier,
    'softplus': SoftPlus,
    'softroot': SoftRoot,
}


def get_activation(name):
    """
    Get activation function by name.

    Args:
        name: String name ('tanh', 'logistic', etc.) or Activation instance

    Returns:
        Activation instance

    Example:
        >>> act = get_activation('rectifier')
        >>> act(np.array([-1.0, 0.0, 1.0]))
        array([0., 0., 1.])
    """
    if isinstance(name, Activation):
        return name

    if name is None:
        return Identity()

    name_lower = name.lower().replace('-', '').replace('_', '')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise InvalidArgument(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]()
