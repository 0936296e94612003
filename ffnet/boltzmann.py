"""
Restricted Boltzmann Machine Layer
==================================

A dense layer that can also run backwards. Besides the ordinary
feed-forward/back-propagation path it supports Gibbs sampling and its own
unsupervised training rule, contrastive divergence:

    hidden  = bias + W @ visible               (feed_forward)
    visible = bias_reverse + W.T @ hidden      (feed_backward)

W has one row per hidden unit (output) and one column per visible unit
(input). The flat weight vector holds the hidden bias followed by W row-major;
the visible bias is trained only by contrastive_divergence.
"""

import numpy as np

from .dom import matrix_node, node_matrix, node_vector, vector_node
from .errors import InvalidArgument
from .layers import Layer, as_input, register_layer
from .utils import clamp_column_norms, regularize_l1, weight_magnitude


@register_layer
class RestrictedBoltzmannMachine(Layer):
    """
    RBM layer.

    Args:
        inputs: Number of visible units
        outputs: Number of hidden units
        rand: Optional Rand used to initialize the weights (zeros when None)

    Call feed_forward before back_prop_error or update_deltas on the same
    instance; `visible` holds the most recent feed_backward result.
    """

    type_name = 'rbm'

    def __init__(self, inputs, outputs, rand=None):
        super().__init__()
        self.params['weights'] = np.zeros((0, 0))
        self.params['bias'] = np.zeros(0)
        self.params['bias_reverse'] = np.zeros(0)
        self.visible = np.zeros(0)
        self.resize(inputs, outputs, rand)

    @property
    def weights(self):
        return self.params['weights']

    @property
    def bias(self):
        return self.params['bias']

    @property
    def bias_reverse(self):
        return self.params['bias_reverse']

    def _vector_params(self):
        return ['bias', 'weights']

    def inputs(self):
        return self.params['weights'].shape[1]

    def resize(self, inputs, outputs, rand=None):
        if inputs < 0 or outputs <= 0:
            raise InvalidArgument(f"Invalid size {inputs}->{outputs}")
        old = self.params['weights']
        if old.shape == (outputs, inputs):
            return
        keep_out = min(outputs, old.shape[0])
        keep_in = min(inputs, old.shape[1])
        w = np.zeros((outputs, inputs))
        b = np.zeros(outputs)
        br = np.zeros(inputs)
        w[:keep_out, :keep_in] = old[:keep_out, :keep_in]
        b[:keep_out] = self.params['bias'][:keep_out]
        br[:keep_in] = self.params['bias_reverse'][:keep_in]
        self.params['weights'] = w
        self.params['bias'] = b
        self.params['bias_reverse'] = br
        self.visible = np.zeros(inputs)
        self._alloc_buffers(outputs)
        if rand is not None:
            self.reset_weights(rand)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        self.activation[:] = self.params['bias'] + self.params['weights'] @ x
        return self.activation

    def feed_backward(self, hidden=None):
        """Reconstruct the visible units from a hidden vector (default: activation)."""
        h = self.activation if hidden is None else as_input(hidden)
        self.visible[:] = self.params['bias_reverse'] + self.params['weights'].T @ h
        return self.visible

    def back_prop_error(self, upstream):
        upstream.error[:] = self.params['weights'].T @ self.error

    def update_deltas(self, upstream, deltas):
        x = as_input(upstream)
        d = self._views(deltas)
        d['weights'] += np.outer(self.error, x)
        d['bias'] += self.error

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def resample_hidden(self, rand):
        """Binarize the hidden units, treating each value as P(unit = 1)."""
        self.activation[:] = (rand.uniform_array(len(self.activation)) < self.activation).astype(np.float64)

    def resample_visible(self, rand):
        self.visible[:] = (rand.uniform_array(len(self.visible)) < self.visible).astype(np.float64)

    def draw_sample(self, rand, iters):
        """
        Draw a sample by Gibbs sampling from a random binary hidden state.

        Args:
            rand: Rand for the initial state and the resampling
            iters: Number of backward/forward/resample rounds

        Returns:
            (visible, hidden) copies of the final state
        """
        self.activation[:] = [float(rand.next() & 1) for _ in range(self.outputs())]
        for _ in range(iters):
            self.feed_backward()
            self.feed_forward(self.visible)
            self.resample_hidden(rand)
        self.feed_backward()
        return self.visible.copy(), self.activation.copy()

    def free_energy(self, visible):
        """
        Free energy of a visible vector (lower means more probable).

        F(v) = -h . (W v) - bias_reverse . v - bias . h, with h = feed_forward(v)
        """
        v = as_input(visible)
        h = self.feed_forward(v)
        return float(-h @ (self.params['weights'] @ v)
                     - self.params['bias_reverse'] @ v
                     - self.params['bias'] @ h)

    def contrastive_divergence(self, rand, visible, learning_rate, gibbs_steps=1):
        """
        One step of CD-k training on a single visible sample.

        The positive phase uses the hidden response to the real sample. The
        negative phase runs gibbs_steps - 1 resampling rounds, then one more
        backward and forward pass, and uses that reconstruction. Weights and
        both biases move by learning_rate * (positive - negative).
        """
        v0 = as_input(visible).copy()
        h0 = self.feed_forward(v0).copy()

        for _ in range(1, gibbs_steps):
            self.feed_backward()
            self.feed_forward(self.visible)
            self.resample_hidden(rand)
        v1 = self.feed_backward().copy()
        h1 = self.feed_forward(v1)

        self.params['weights'] += learning_rate * (np.outer(h0, v0) - np.outer(h1, v1))
        self.params['bias_reverse'] += learning_rate * (v0 - v1)
        self.params['bias'] += learning_rate * (h0 - h1)

    # ------------------------------------------------------------------
    # Weight maintenance
    # ------------------------------------------------------------------

    def reset_weights(self, rand):
        mag = weight_magnitude(self.inputs())
        self.params['weights'][...] = rand.normal_array(self.params['weights'].shape) * mag
        self.params['bias'][...] = rand.normal_array(self.outputs()) * mag
        self.params['bias_reverse'][...] = rand.normal_array(self.inputs()) * mag

    def perturb_weights(self, rand, deviation, start=0, count=None):
        n = self.outputs() - start if count is None else min(self.outputs() - start, count)
        if n <= 0:
            return
        self.params['weights'][start:start + n] += rand.normal_array((n, self.inputs())) * deviation
        self.params['bias'][start:start + n] += rand.normal_array(n) * deviation

    def scale_weights(self, factor, scale_biases=True):
        self.params['weights'] *= factor
        if scale_biases:
            self.params['bias'] *= factor

    def diminish_weights(self, amount, regularize_biases=True):
        regularize_l1(self.params['weights'], amount)
        if regularize_biases:
            regularize_l1(self.params['bias'], amount)

    def max_norm(self, min_val, max_val):
        # Rows of W are the columns of its transpose view
        clamp_column_norms(self.params['weights'].T, min_val, max_val)

    def drop_out(self, rand, prob):
        self._drop_activation(rand, prob)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'weights', matrix_node(doc, self.params['weights']))
        node.add_field(doc, 'bias', vector_node(doc, self.params['bias']))
        node.add_field(doc, 'biasRev', vector_node(doc, self.params['bias_reverse']))
        return node

    @classmethod
    def from_node(cls, node):
        weights = node_matrix(node.field('weights'))
        layer = cls(weights.shape[1], weights.shape[0])
        layer.params['weights'][...] = weights
        layer.params['bias'][...] = node_vector(node.field('bias'))
        layer.params['bias_reverse'][...] = node_vector(node.field('biasRev'))
        return layer
