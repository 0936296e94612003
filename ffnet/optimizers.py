"""
Optimizers
==========

Optimizers turn an accumulated delta vector into a weight update. They
only use the network's flat-vector protocol (count_weights, weights,
step), so they work with any mix of layers.

This module implements:
- SGD with momentum
- Adam: adaptive per-weight step sizes
- Learning-rate schedulers that can be attached to either
"""

import numpy as np

from .errors import InvalidArgument


class Optimizer:
    """Base class for optimizers."""

    def __init__(self, learning_rate):
        self.learning_rate = learning_rate
        self.initial_lr = learning_rate
        self.t = 0
        self.lr_scheduler = None

    def set_lr_scheduler(self, scheduler):
        """Attach a learning rate scheduler."""
        self.lr_scheduler = scheduler

    def _advance(self):
        self.t += 1
        if self.lr_scheduler is not None:
            self.learning_rate = self.lr_scheduler(self.t, self.initial_lr)

    def _prepare(self, net, deltas):
        deltas = np.array(deltas, dtype=np.float64)
        if self.clip_grad is not None:
            norm = np.linalg.norm(deltas)
            if norm > self.clip_grad:
                deltas *= self.clip_grad / (norm + 1e-8)
        if self.weight_decay > 0:
            deltas -= self.weight_decay * net.weights()
        return deltas

    def step(self, net, deltas):
        """Update the network's weights from accumulated deltas."""
        raise NotImplementedError

    def get_lr(self):
        return self.learning_rate


class SGD(Optimizer):
    """
    Stochastic Gradient Descent with momentum.

    Args:
        learning_rate: Step size (default: 0.01)
        momentum: Momentum factor (default: 0.9)
        weight_decay: L2 regularization (default: 0)
        nesterov: Use Nesterov momentum (default: False)
        clip_grad: Max delta norm (default: None)
    """

    def __init__(self, learning_rate=0.01, momentum=0.9, weight_decay=0.0,
                 nesterov=False, clip_grad=None):
        super().__init__(learning_rate)
        self.momentum = momentum
        self.weight_decay = weight_decay
        self.nesterov = nesterov
        self.clip_grad = clip_grad
        self._velocity = None

    def step(self, net, deltas):
        self._advance()
        deltas = self._prepare(net, deltas)

        if self._velocity is None or len(self._velocity) != len(deltas):
            self._velocity = np.zeros_like(deltas)

        self._velocity = self.momentum * self._velocity + deltas
        if self.nesterov:
            net.step(self.learning_rate, self.momentum * self._velocity + deltas)
        else:
            net.step(self.learning_rate, self._velocity)

    def reset(self):
        """Reset optimizer state."""
        self.t = 0
        self._velocity = None


class Adam(Optimizer):
    """
    Adam (Adaptive Moment Estimation) optimizer.

    Keeps running averages of the deltas and of their squares, and scales
    each weight's step by their bias-corrected ratio.

    Args:
        learning_rate: Step size (default: 0.001)
        beta1: Decay rate for first moment (default: 0.9)
        beta2: Decay rate for second moment (default: 0.999)
        epsilon: Small constant for numerical stability (default: 1e-8)
        weight_decay: L2 regularization strength (default: 0)
        clip_grad: Max delta norm (default: None)
    """

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999,
                 epsilon=1e-8, weight_decay=0.0, clip_grad=None):
        super().__init__(learning_rate)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.weight_decay = weight_decay
        self.clip_grad = clip_grad
        self._m = None
        self._v = None

    def step(self, net, deltas):
        self._advance()
        deltas = self._prepare(net, deltas)

        if self._m is None or len(self._m) != len(deltas):
            self._m = np.zeros_like(deltas)
            self._v = np.zeros_like(deltas)

        self._m = self.beta1 * self._m + (1 - self.beta1) * deltas
        self._v = self.beta2 * self._v + (1 - self.beta2) * (deltas ** 2)

        # Bias-corrected estimates
        m_hat = self._m / (1 - self.beta1 ** self.t)
        v_hat = self._v / (1 - self.beta2 ** self.t)

        net.step(self.learning_rate, m_hat / (np.sqrt(v_hat) + self.epsilon))

    def reset(self):
        """Reset optimizer state."""
        self.t = 0
        self._m = None
        self._v = None


# ============================================================================
# Learning Rate Schedulers
# ============================================================================

def step_decay(drop_rate=0.5, drop_every=10):
    """
    Step decay: LR = initial_lr * drop_rate^(step // drop_every)
    """
    def scheduler(step, initial_lr):
        return initial_lr * (drop_rate ** (step // drop_every))
    return scheduler


def exponential_decay(decay_rate=0.95):
    """
    Exponential decay: LR = initial_lr * decay_rate^step
    """
    def scheduler(step, initial_lr):
        return initial_lr * (decay_rate ** step)
    return scheduler


def cosine_annealing(total_steps, min_lr=0.0):
    """Cosine annealing from initial_lr down to min_lr over total_steps."""
    def scheduler(step, initial_lr):
        progress = min(step / total_steps, 1.0)
        return min_lr + 0.5 * (initial_lr - min_lr) * (1 + np.cos(np.pi * progress))
    return scheduler


def constant_lr():
    """No decay - constant learning rate."""
    def scheduler(step, initial_lr):
        return initial_lr
    return scheduler


# Optimizer registry
OPTIMIZERS = {
    'adam': Adam,
    'sgd': SGD,
}


def get_optimizer(name, **kwargs):
    """
    Get optimizer by name.

    Args:
        name: 'adam' or 'sgd', or an Optimizer instance
        **kwargs: Arguments to pass to optimizer

    Returns:
        Optimizer instance
    """
    if isinstance(name, Optimizer):
        return name

    name_lower = name.lower()
    if name_lower not in OPTIMIZERS:
        raise InvalidArgument(f"Unknown optimizer '{name}'. Available: {list(OPTIMIZERS.keys())}")

    return OPTIMIZERS[name_lower](**kwargs)


# Learning rate scheduler registry
LR_SCHEDULERS = {
    'step': step_decay,
    'exponential': exponential_decay,
    'cosine': cosine_annealing,
    'constant': constant_lr,
}


def get_lr_scheduler(name, **kwargs):
    """
    Get a learning rate scheduler by name.

    Args:
        name: 'step', 'exponential', 'cosine' or 'constant', or a callable
            taking (step, initial_lr)
        **kwargs: Arguments to pass to the scheduler factory

    Returns:
        Scheduler callable
    """
    if callable(name):
        return name

    name_lower = name.lower()
    if name_lower not in LR_SCHEDULERS:
        raise InvalidArgument(f"Unknown scheduler '{name}'. Available: {list(LR_SCHEDULERS.keys())}")

    return LR_SCHEDULERS[name_lower](**kwargs)
