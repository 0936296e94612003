"""
Utility Functions for ffnet
===========================

This module provides:
- VectorCursor: walks a flat weight or delta vector region by region
- Weight helpers shared by the layers (L1 shrinkage, norm clamping, init)
- Data helpers for training loops (one-hot encoding, batching, accuracy)
"""

import numpy as np

from .rand import Rand


class VectorCursor:
    """
    Offset-tracking reader over a flat vector.

    Each layer takes exactly count_weights() values in chain order, so
    containers never compute offsets by hand.

    Args:
        vector: 1-D float array (views returned by take() alias it)
        start: Initial offset
    """

    def __init__(self, vector, start=0):
        self.vector = vector
        self.pos = start

    def take(self, count):
        """Return the next `count` elements as a view and advance."""
        end = self.pos + count
        if end > len(self.vector):
            raise IndexError(f"Cursor needs {count} values at offset {self.pos}, "
                             f"vector has {len(self.vector)}")
        view = self.vector[self.pos:end]
        self.pos = end
        return view

    @property
    def remaining(self):
        return len(self.vector) - self.pos

    def __repr__(self):
        return f"VectorCursor(pos={self.pos}, size={len(self.vector)})"


def weight_magnitude(fan_in):
    """Standard deviation used to initialize weights with the given fan-in."""
    return max(0.03, 1.0 / max(fan_in, 1))


def regularize_l1(values, amount):
    """Move every element toward zero by `amount` without crossing it (in place)."""
    np.copyto(values, np.sign(values) * np.maximum(np.abs(values) - amount, 0.0))


def clamp_column_norms(matrix, min_val, max_val):
    """
    Rescale each column of `matrix` in place so its L2 norm lies in [min_val, max_val].

    A zero column is first replaced by all ones.
    """
    for j in range(matrix.shape[1]):
        col = matrix[:, j]
        squared = np.dot(col, col)
        if squared == 0.0:
            col[:] = 1.0
            squared = float(len(col))
        mag = np.sqrt(squared)
        if mag < min_val:
            col *= min_val / mag
        elif mag > max_val:
            col *= max_val / mag


def one_hot_encode(labels, num_classes=None):
    """
    Convert integer labels to one-hot encoded vectors.

    Args:
        labels: Integer labels, shape (N,)
        num_classes: Number of classes (inferred if None)

    Returns:
        One-hot matrix, shape (N, num_classes)
    """
    labels = np.asarray(labels).astype(int)

    if num_classes is None:
        num_classes = labels.max() + 1

    one_hot = np.zeros((len(labels), num_classes), dtype=np.float64)
    one_hot[np.arange(len(labels)), labels] = 1.0

    return one_hot


def create_batches(X, y, batch_size, shuffle=True, rand=None):
    """
    Create mini-batches for training.

    Args:
        X: Features, shape (N, ...)
        y: Targets, shape (N, ...)
        batch_size: Batch size
        shuffle: Whether to shuffle
        rand: Rand used for the shuffle order (a fresh unseeded one when None)

    Yields:
        (X_batch, y_batch) tuples
    """
    n_samples = len(X)

    if shuffle:
        if rand is None:
            rand = Rand()
        indices = np.argsort(rand.uniform_array(n_samples))
        X = X[indices]
        y = y[indices]

    for start_idx in range(0, n_samples, batch_size):
        end_idx = min(start_idx + batch_size, n_samples)
        yield X[start_idx:end_idx], y[start_idx:end_idx]


def accuracy_score(y_true, y_pred):
    """
    Compute classification accuracy.

    Args:
        y_true: True labels (integers or one-hot)
        y_pred: Predictions (scores or one-hot)

    Returns:
        Accuracy as float
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if y_true.ndim > 1:
        y_true = np.argmax(y_true, axis=1)
    if y_pred.ndim > 1:
        y_pred = np.argmax(y_pred, axis=1)

    return float(np.mean(y_true == y_pred))
