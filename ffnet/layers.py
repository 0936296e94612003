"""
Neural Network Layers
=====================

The core building blocks of a feed-forward network implemented with NumPy.
Every layer owns an `activation` vector (written by feed_forward) and an
`error` vector (written by the downstream layer's back_prop_error, or seeded
by the caller for the output layer), plus whatever weights it needs.

Training uses a flat delta-vector protocol so that any optimizer can drive
any mix of layers:
    count_weights -> update_deltas (accumulate) -> apply_deltas
    weights_to_vector / vector_to_weights

Layers implemented here:
- LinearLayer: fully connected affine transform, bias stored as the last row
- ActivationLayer: elementwise non-linearity
- ProductPoolingLayer / AdditionPoolingLayer: pairwise reductions
- MaxPooling2DLayer: max over square regions of a channel-interleaved image
- MaxOutLayer: per-output selection of the best weighted input
- SoftmaxLayer: linear layer that renormalizes its own weights on each pass
- MixedLayer: several layers side by side over the same input

The RBM and convolution layers live in boltzmann.py and convolution.py.
"""

import copy

import numpy as np

from .activations import Logistic, get_activation
from .dom import matrix_node, node_matrix, node_vector, vector_node
from .errors import InvalidArgument, InvalidFormat, LayerError, NotSupported
from .utils import VectorCursor, clamp_column_norms, regularize_l1, weight_magnitude


# Input size that is fixed later, when the layer learns its upstream neighbor
FLEXIBLE_SIZE = 0


def as_input(x):
    """Accept an upstream Layer (read its activation) or anything array-like."""
    if isinstance(x, Layer):
        return x.activation
    return np.asarray(x, dtype=np.float64).ravel()


class Layer:
    """
    Base class for all layers.

    Subclasses store trainable arrays in `self.params`, in the order they
    appear in the flat weight vector. The generic vector operations below
    walk that dict, so a layer only has to implement its own arithmetic.
    """

    type_name = None

    def __init__(self):
        self.params = {}    # Trainable parameters, in flat-vector order
        self.activation = np.zeros(0)
        self.error = np.zeros(0)

    def _alloc_buffers(self, outputs):
        self.activation = np.zeros(outputs)
        self.error = np.zeros(outputs)

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    def inputs(self):
        raise NotImplementedError

    def outputs(self):
        return len(self.activation)

    def resize(self, inputs, outputs, rand=None):
        raise NotImplementedError

    def resize_inputs(self, upstream, rand=None):
        """Adapt to the output size of the layer feeding this one."""
        self.resize(upstream.outputs(), self.outputs(), rand)

    def _check_input(self, x):
        if len(x) != self.inputs():
            raise InvalidArgument(f"{self.__class__.__name__} expects {self.inputs()} inputs, got {len(x)}")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def feed_forward(self, x):
        """Compute and store `activation` from an input vector or upstream layer."""
        raise NotImplementedError

    def feed_through(self, x):
        """Feed forward and return a copy of the output."""
        return self.feed_forward(x).copy()

    def back_prop_error(self, upstream):
        """Overwrite `upstream.error` with the error attributable to its outputs."""
        raise NotImplementedError

    def update_deltas(self, upstream, deltas):
        """Accumulate this layer's gradient into `deltas` (length count_weights())."""

    def __call__(self, x):
        return self.feed_forward(x)

    # ------------------------------------------------------------------
    # Flat weight vector
    # ------------------------------------------------------------------

    def _vector_params(self):
        """Names of the params that take part in the flat vector, in order."""
        return list(self.params.keys())

    def _bias_params(self):
        return ('bias',)

    def count_weights(self):
        return sum(self.params[name].size for name in self._vector_params())

    def _views(self, vector):
        """Split a flat vector into views shaped like the params."""
        if len(vector) != self.count_weights():
            raise InvalidArgument(f"{self.__class__.__name__} needs a vector of {self.count_weights()} "
                                  f"values, got {len(vector)}")
        cursor = VectorCursor(vector)
        views = {}
        for name in self._vector_params():
            param = self.params[name]
            views[name] = cursor.take(param.size).reshape(param.shape)
        return views

    def weights_to_vector(self, vector=None):
        """Write all weights into `vector` (allocated when None) and return it."""
        if vector is None:
            vector = np.zeros(self.count_weights())
        for name, view in self._views(vector).items():
            view[...] = self.params[name]
        return vector

    def vector_to_weights(self, vector):
        for name, view in self._views(np.asarray(vector, dtype=np.float64)).items():
            self.params[name][...] = view

    def apply_deltas(self, learning_rate, deltas):
        """weights += learning_rate * deltas"""
        for name, view in self._views(deltas).items():
            self.params[name] += learning_rate * view

    def copy_weights(self, other):
        if type(other) is not type(self):
            raise InvalidArgument(f"Cannot copy weights from {other.__class__.__name__} "
                                  f"into {self.__class__.__name__}")
        for name, param in self.params.items():
            if other.params[name].shape != param.shape:
                raise InvalidArgument(f"Shape mismatch for '{name}': "
                                      f"{other.params[name].shape} vs {param.shape}")
            param[...] = other.params[name]

    # ------------------------------------------------------------------
    # Weight maintenance
    # ------------------------------------------------------------------

    def reset_weights(self, rand):
        """Initialize weights to small random values."""

    def perturb_weights(self, rand, deviation, start=0, count=None):
        """Add Gaussian noise to the weights feeding outputs [start, start+count)."""

    def scale_weights(self, factor, scale_biases=True):
        for name, param in self.params.items():
            if scale_biases or name not in self._bias_params():
                param *= factor

    def diminish_weights(self, amount, regularize_biases=True):
        """L1 shrinkage: move each weight toward zero by `amount`."""
        for name, param in self.params.items():
            if regularize_biases or name not in self._bias_params():
                regularize_l1(param, amount)

    def max_norm(self, min_val, max_val):
        raise NotSupported(f"{self.__class__.__name__} does not support max_norm")

    def drop_out(self, rand, prob):
        """
        Zero each output unit's activation with probability `prob`.

        Call after feed_forward. Layers without weights have nothing to drop
        and leave their activation alone.
        """

    def _drop_activation(self, rand, prob):
        self.activation[rand.uniform_array(len(self.activation)) < prob] = 0.0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _base_node(self, doc):
        node = doc.new_obj()
        node.add_field(doc, 'type', self.type_name)
        return node

    def serialize(self, doc):
        raise NotSupported(f"{self.__class__.__name__} cannot be serialized")

    @classmethod
    def from_node(cls, node):
        raise NotSupported(f"{cls.__name__} cannot be deserialized")

    def __repr__(self):
        return f"{self.__class__.__name__}({self.inputs()}->{self.outputs()})"


# ====================================
# Layer Registry
# ====================================

LAYER_TYPES = {}


def register_layer(cls):
    """Class decorator that makes a layer reachable from its serialized type tag."""
    LAYER_TYPES[cls.type_name] = cls
    return cls


def get_layer_type(name):
    if name not in LAYER_TYPES:
        available = ', '.join(LAYER_TYPES.keys())
        raise InvalidFormat(f"Unknown layer type '{name}'. Available: {available}")
    return LAYER_TYPES[name]


def deserialize_layer(node):
    """Rebuild a layer from a node written by its serialize()."""
    return get_layer_type(node.field('type').as_string()).from_node(node)


# ====================================
# Dense Layers
# ====================================

@register_layer
class LinearLayer(Layer):
    """
    Fully connected (dense) layer.

    Computes activation = bias + x @ W. The weights are stored as a single
    (inputs + 1) x outputs matrix whose last row is the bias, so the flat
    vector is that matrix in row-major order.

    Args:
        inputs: Number of inputs (FLEXIBLE_SIZE to take it from the upstream layer)
        outputs: Number of outputs
        rand: Optional Rand used to initialize the weights (zeros when None)
    """

    type_name = 'linear'

    def __init__(self, inputs, outputs, rand=None):
        super().__init__()
        self.params['weights'] = np.zeros((0, 0))
        self.resize(inputs, outputs, rand)

    @property
    def weights(self):
        """The whole (inputs + 1) x outputs matrix, bias row included."""
        return self.params['weights']

    @property
    def bias(self):
        return self.params['weights'][-1]

    def inputs(self):
        return self.params['weights'].shape[0] - 1

    def resize(self, inputs, outputs, rand=None):
        if inputs < 0 or outputs <= 0:
            raise InvalidArgument(f"Invalid size {inputs}->{outputs}")
        old = self.params['weights']
        if old.shape == (inputs + 1, outputs):
            return

        # Keep the overlapping block and the bias row, fill the rest
        mag = weight_magnitude(inputs)
        if rand is None:
            new = np.zeros((inputs + 1, outputs))
        else:
            new = rand.normal_array((inputs + 1, outputs)) * mag
        if old.size > 0:
            keep_in = min(inputs, old.shape[0] - 1)
            keep_out = min(outputs, old.shape[1])
            new[:keep_in, :keep_out] = old[:keep_in, :keep_out]
            new[-1, :keep_out] = old[-1, :keep_out]
        self.params['weights'] = new
        self._alloc_buffers(outputs)

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        w = self.params['weights']
        self.activation[:] = w[-1] + x @ w[:-1]
        return self.activation

    def back_prop_error(self, upstream):
        upstream.error[:] = self.params['weights'][:-1] @ self.error

    def update_deltas(self, upstream, deltas):
        x = as_input(upstream)
        d = self._views(deltas)['weights']
        d[:-1] += np.outer(x, self.error)
        d[-1] += self.error

    def reset_weights(self, rand):
        w = self.params['weights']
        w[...] = rand.normal_array(w.shape) * weight_magnitude(self.inputs())

    def perturb_weights(self, rand, deviation, start=0, count=None):
        w = self.params['weights']
        n = self.outputs() - start if count is None else min(self.outputs() - start, count)
        if n <= 0:
            return
        w[:, start:start + n] += rand.normal_array((w.shape[0], n)) * deviation

    def scale_weights(self, factor, scale_biases=True):
        w = self.params['weights']
        w[:-1] *= factor
        if scale_biases:
            w[-1] *= factor

    def diminish_weights(self, amount, regularize_biases=True):
        w = self.params['weights']
        regularize_l1(w[:-1], amount)
        if regularize_biases:
            regularize_l1(w[-1], amount)

    def max_norm(self, min_val, max_val):
        clamp_column_norms(self.params['weights'][:-1], min_val, max_val)

    def drop_out(self, rand, prob):
        self._drop_activation(rand, prob)

    def transform_weights(self, transform, offset):
        """
        Fold an upstream change of basis into this layer.

        Replaces the input weights W with T^T W, then adds offset @ W to the
        bias, so that a layer fed with re-based inputs behaves as before.

        Args:
            transform: Square matrix with one row per input
            offset: Vector with one value per input
        """
        transform = np.asarray(transform, dtype=np.float64)
        offset = np.asarray(offset, dtype=np.float64).ravel()
        if transform.ndim != 2 or transform.shape[0] != self.inputs():
            raise InvalidArgument("Transformation matrix not suitable size for this layer")
        if transform.shape[0] != transform.shape[1]:
            raise InvalidArgument("Expected a square transformation matrix")
        if len(offset) != self.inputs():
            raise InvalidArgument(f"Expected an offset of length {self.inputs()}, got {len(offset)}")
        w = self.params['weights']
        w[:-1] = transform.T @ w[:-1]
        w[-1] += offset @ w[:-1]

    def renormalize_input(self, input_index, old_min, old_max, new_min, new_max):
        """Adjust weights so an input rescaled from [old_min, old_max] to [new_min, new_max] gives the same outputs."""
        w = self.params['weights']
        f = (old_max - old_min) / (new_max - new_min)
        g = old_min - new_min * f
        w[-1] += w[input_index] * g
        w[input_index] *= f

    def set_weights_to_identity(self, start=0, count=None):
        """Make outputs [start, start+count) copy the matching inputs."""
        end = self.outputs() if count is None else min(start + count, self.outputs())
        w = self.params['weights']
        for i in range(start, end):
            w[:, i] = 0.0
            if i < self.inputs():
                w[i, i] = 1.0

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'weights', matrix_node(doc, self.params['weights']))
        return node

    @classmethod
    def from_node(cls, node):
        weights = node_matrix(node.field('weights'))
        layer = cls(weights.shape[0] - 1, weights.shape[1])
        layer.params['weights'][...] = weights
        return layer


@register_layer
class SoftmaxLayer(LinearLayer):
    """
    Linear layer followed by a self-normalizing logistic squash.

    Each forward pass squashes the net input with the logistic function and
    sums the results. When the sum exceeds 1e-12 the weights, bias and
    activation are all multiplied by 1/sum, so the layer's own parameters
    stay normalized; otherwise the output falls back to uniform 1/outputs.

    Error arriving at this layer is treated as already deactivated.
    """

    type_name = 'softmax'

    def feed_forward(self, x):
        net = super().feed_forward(x)
        squashed = Logistic().forward(net)
        total = squashed.sum()
        if total > 1e-12:
            fac = 1.0 / total
            self.params['weights'] *= fac
            self.activation[:] = squashed * fac
        else:
            self.activation[:] = 1.0 / self.outputs()
        return self.activation


# ====================================
# Activation Layer
# ====================================

@register_layer
class ActivationLayer(Layer):
    """
    Applies an elementwise activation function.

    back_prop_error deactivates on the way up:
        upstream.error[i] = error[i] * f'(upstream.activation[i], activation[i])

    Args:
        size: Vector length (FLEXIBLE_SIZE to take it from the upstream layer)
        activation: Name or Activation instance (default: 'tanh')
    """

    type_name = 'activation'

    def __init__(self, size=FLEXIBLE_SIZE, activation='tanh'):
        super().__init__()
        self.function = get_activation(activation)
        self._alloc_buffers(size)

    def inputs(self):
        return self.outputs()

    def resize(self, inputs, outputs, rand=None):
        if inputs != outputs:
            raise InvalidArgument("ActivationLayer must have the same number of inputs as outputs")
        if outputs != self.outputs():
            self._alloc_buffers(outputs)

    def resize_inputs(self, upstream, rand=None):
        self.resize(upstream.outputs(), upstream.outputs(), rand)

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        self.activation[:] = self.function.forward(x)
        return self.activation

    def back_prop_error(self, upstream):
        upstream.error[:] = self.error * self.function.derivative(upstream.activation, self.activation)

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'size', self.outputs())
        node.add_field(doc, 'act_func', self.function.name)
        return node

    @classmethod
    def from_node(cls, node):
        return cls(node.field('size').as_int(), node.field('act_func').as_string())

    def __repr__(self):
        return f"ActivationLayer({self.outputs()}, {self.function.name})"


# ====================================
# Pooling Layers
# ====================================

class _PairPoolingLayer(Layer):
    """Shared shape handling for layers that reduce input pairs (2i, 2i+1)."""

    def __init__(self, inputs=FLEXIBLE_SIZE):
        super().__init__()
        self.resize(inputs, inputs // 2)

    def inputs(self):
        return self.outputs() * 2

    def resize(self, inputs, outputs, rand=None):
        if inputs % 2 != 0:
            raise InvalidArgument(f"{self.__class__.__name__} requires an even number of inputs, got {inputs}")
        if outputs * 2 != inputs:
            raise InvalidArgument(f"{self.__class__.__name__} must have half as many outputs as inputs")
        if outputs != self.outputs():
            self._alloc_buffers(outputs)

    def resize_inputs(self, upstream, rand=None):
        n = upstream.outputs()
        self.resize(n, n // 2, rand)


class ProductPoolingLayer(_PairPoolingLayer):
    """
    Multiplies neighbor pairs: output[i] = x[2i] * x[2i+1].

    Each partner's error is the downstream error times the other partner:
        upstream.error[2i] = error[i] * x[2i+1]
        upstream.error[2i+1] = error[i] * x[2i]
    """

    type_name = 'product'

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        self.activation[:] = x[0::2] * x[1::2]
        return self.activation

    def back_prop_error(self, upstream):
        a = upstream.activation
        upstream.error[0::2] = self.error * a[1::2]
        upstream.error[1::2] = self.error * a[0::2]


class AdditionPoolingLayer(_PairPoolingLayer):
    """
    Sums neighbor pairs: output[i] = x[2i] + x[2i+1].

    Both partners receive the downstream error unchanged.
    """

    type_name = 'addition'

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        self.activation[:] = x[0::2] + x[1::2]
        return self.activation

    def back_prop_error(self, upstream):
        upstream.error[0::2] = self.error
        upstream.error[1::2] = self.error


@register_layer
class MaxPooling2DLayer(Layer):
    """
    Max pooling over non-overlapping square regions.

    The input is a width x height x channels volume with channels
    interleaved: index = (y * width + x) * channels + c. Outputs use the
    same interleaving over the pooled grid. The flat input index of each
    region's maximum is remembered for back_prop_error, which routes the
    error to that position only (the first maximum wins ties).

    Args:
        width: Input columns
        height: Input rows
        channels: Input channels
        region_size: Side of the pooled square (default: 2)
    """

    type_name = 'maxpool2d'

    def __init__(self, width, height, channels, region_size=2):
        super().__init__()
        if region_size <= 0 or width % region_size != 0 or height % region_size != 0:
            raise InvalidArgument(f"Input {width}x{height} is not a multiple of the region size {region_size}")
        self.width = width
        self.height = height
        self.channels = channels
        self.region_size = region_size

        r = region_size
        out_w, out_h = width // r, height // r
        yy = np.arange(out_h).reshape(-1, 1, 1, 1, 1)
        xx = np.arange(out_w).reshape(1, -1, 1, 1, 1)
        cc = np.arange(channels).reshape(1, 1, -1, 1, 1)
        dy = np.arange(r).reshape(1, 1, 1, -1, 1)
        dx = np.arange(r).reshape(1, 1, 1, 1, -1)
        # One row of flat input indices per output unit
        self._regions = (((yy * r + dy) * width + xx * r + dx) * channels + cc).reshape(-1, r * r)
        self.winners = np.zeros(out_w * out_h * channels, dtype=int)
        self._alloc_buffers(out_w * out_h * channels)

    def inputs(self):
        return self.width * self.height * self.channels

    def resize(self, inputs, outputs, rand=None):
        if inputs != self.inputs() or outputs != self.outputs():
            raise InvalidArgument("MaxPooling2DLayer cannot be resized")

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        values = x[self._regions]
        best = np.argmax(values, axis=1)
        rows = np.arange(len(best))
        self.winners = self._regions[rows, best]
        self.activation[:] = values[rows, best]
        return self.activation

    def back_prop_error(self, upstream):
        upstream.error[:] = 0.0
        upstream.error[self.winners] = self.error

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'icol', self.width)
        node.add_field(doc, 'irow', self.height)
        node.add_field(doc, 'ichan', self.channels)
        node.add_field(doc, 'size', self.region_size)
        return node

    @classmethod
    def from_node(cls, node):
        return cls(node.field('icol').as_int(), node.field('irow').as_int(),
                   node.field('ichan').as_int(), node.field('size').as_int())

    def __repr__(self):
        return (f"MaxPooling2DLayer({self.width}x{self.height}x{self.channels}, "
                f"region={self.region_size})")


# ====================================
# MaxOut Layer
# ====================================

@register_layer
class MaxOutLayer(Layer):
    """
    Each output picks the single best weighted input.

    For output i the candidates are (x[j] + bias[j]) * W[j, i] over all
    inputs j; the largest becomes the output and its index j is remembered
    as the winner. Back-propagation and deltas only touch the winners.

    With exploration_rate > 0, each output independently replaces its
    winner by a uniformly random input with that probability, drawn from
    the injected rand.

    Flat vector layout: bias (one per input), then W row-major.

    Args:
        inputs: Number of inputs
        outputs: Number of outputs
        rand: Rand for initialization and exploration
        exploration_rate: Probability of a random winner (default: 0.0)
    """

    type_name = 'maxout'

    def __init__(self, inputs, outputs, rand=None, exploration_rate=0.0):
        super().__init__()
        if exploration_rate > 0.0 and rand is None:
            raise InvalidArgument("MaxOutLayer needs a rand when exploration_rate > 0")
        self.rand = rand
        self.exploration_rate = exploration_rate
        self.params['bias'] = np.zeros(0)
        self.params['weights'] = np.zeros((0, 0))
        self.resize(inputs, outputs, rand)

    def inputs(self):
        return self.params['weights'].shape[0]

    def resize(self, inputs, outputs, rand=None):
        if inputs < 0 or outputs <= 0:
            raise InvalidArgument(f"Invalid size {inputs}->{outputs}")
        old_w = self.params['weights']
        if old_w.shape == (inputs, outputs):
            return
        old_b = self.params['bias']
        mag = weight_magnitude(inputs)
        if rand is None:
            w = np.zeros((inputs, outputs))
            b = np.zeros(inputs)
        else:
            w = rand.normal_array((inputs, outputs)) * mag
            b = rand.normal_array(inputs) * mag
        keep_in = min(inputs, old_w.shape[0])
        keep_out = min(outputs, old_w.shape[1])
        w[:keep_in, :keep_out] = old_w[:keep_in, :keep_out]
        b[:keep_in] = old_b[:keep_in]
        self.params['weights'] = w
        self.params['bias'] = b
        self.winners = np.zeros(outputs, dtype=int)
        self._alloc_buffers(outputs)

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        w = self.params['weights']
        candidates = (x + self.params['bias'])[:, None] * w
        winners = np.argmax(candidates, axis=0)
        if self.exploration_rate > 0.0:
            for i in range(self.outputs()):
                if self.rand.uniform() < self.exploration_rate:
                    winners[i] = self.rand.next(self.inputs())
        cols = np.arange(self.outputs())
        self.winners = winners
        self.activation[:] = candidates[winners, cols]
        return self.activation

    def back_prop_error(self, upstream):
        cols = np.arange(self.outputs())
        upstream.error[:] = 0.0
        np.add.at(upstream.error, self.winners, self.params['weights'][self.winners, cols] * self.error)

    def update_deltas(self, upstream, deltas):
        x = as_input(upstream)
        d = self._views(deltas)
        w = self.params['weights']
        b = self.params['bias']
        cols = np.arange(self.outputs())
        np.add.at(d['bias'], self.winners, self.error * w[self.winners, cols])
        np.add.at(d['weights'], (self.winners, cols), self.error * (x[self.winners] + b[self.winners]))

    def reset_weights(self, rand):
        mag = weight_magnitude(self.inputs())
        self.params['weights'][...] = rand.normal_array(self.params['weights'].shape) * mag
        self.params['bias'][...] = rand.normal_array(self.inputs()) * mag

    def perturb_weights(self, rand, deviation, start=0, count=None):
        w = self.params['weights']
        n = self.outputs() - start if count is None else min(self.outputs() - start, count)
        if n <= 0:
            return
        w[:, start:start + n] += rand.normal_array((w.shape[0], n)) * deviation

    def max_norm(self, min_val, max_val):
        clamp_column_norms(self.params['weights'], min_val, max_val)

    def drop_out(self, rand, prob):
        raise NotSupported("MaxOutLayer does not support drop_out")

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'weights', matrix_node(doc, self.params['weights']))
        node.add_field(doc, 'bias', vector_node(doc, self.params['bias']))
        node.add_field(doc, 'explore', self.exploration_rate)
        return node

    @classmethod
    def from_node(cls, node):
        weights = node_matrix(node.field('weights'))
        layer = cls(weights.shape[0], weights.shape[1])
        layer.params['weights'][...] = weights
        layer.params['bias'][...] = node_vector(node.field('bias'))
        # Exploration needs a rand, which is not persisted
        layer.exploration_rate = 0.0
        return layer


# ====================================
# Mixed Layer
# ====================================

@register_layer
class MixedLayer(Layer):
    """
    Several layers side by side, all reading the same input.

    The output is the concatenation of the components' outputs. On the way
    back each component receives its slice of the error, and the upstream
    error is the sum of what every component attributes to it. The flat
    weight vector is the components' vectors concatenated in the same order.

    At least two components must be added before the layer is used, and no
    component may be added afterwards.
    """

    type_name = 'mixed'

    def __init__(self, components=None):
        super().__init__()
        self.components = []
        self._used = False
        for layer in components or []:
            self.add_component(layer)

    def add_component(self, layer):
        if self._used:
            raise InvalidArgument("Cannot add a component to MixedLayer after it has been used")
        if self.components and layer.inputs() != self.inputs():
            raise InvalidArgument(f"This component expects {layer.inputs()} inputs, which conflicts "
                                  f"with a previous component that expects {self.inputs()} inputs")
        self.components.append(layer)
        self._alloc_buffers(sum(c.outputs() for c in self.components))

    def _ready(self):
        if len(self.components) < 2:
            raise InvalidArgument("MixedLayer requires at least 2 components to be added before it is used")
        self._used = True

    def inputs(self):
        if not self.components:
            return 0
        return self.components[0].inputs()

    def outputs(self):
        self._ready()
        return len(self.activation)

    def _resize_components(self, resize_one):
        # All components or none: restore the earlier ones if a later one refuses
        saved = [copy.deepcopy(c.__dict__) for c in self.components]
        try:
            for c in self.components:
                resize_one(c)
        except LayerError:
            for c, state in zip(self.components, saved):
                c.__dict__ = state
            raise

    def resize(self, inputs, outputs, rand=None):
        if outputs != self.outputs():
            raise InvalidArgument("MixedLayer does not support resizing the number of outputs")
        self._resize_components(lambda c: c.resize(inputs, c.outputs(), rand))

    def resize_inputs(self, upstream, rand=None):
        self._ready()
        self._resize_components(lambda c: c.resize_inputs(upstream, rand))

    def drop_out(self, rand, prob):
        for c, s in self._slices():
            c.drop_out(rand, prob)
            self.activation[s] = c.activation

    def _slices(self):
        start = 0
        for c in self.components:
            yield c, slice(start, start + c.outputs())
            start += c.outputs()

    def feed_forward(self, x):
        self._ready()
        x = as_input(x)
        for c, s in self._slices():
            self.activation[s] = c.feed_forward(x)
        return self.activation

    def _distribute_error(self):
        for c, s in self._slices():
            c.error[:] = self.error[s]

    def back_prop_error(self, upstream):
        self._distribute_error()
        total = np.zeros(len(upstream.error))
        for c in self.components:
            c.back_prop_error(upstream)
            total += upstream.error
        upstream.error[:] = total

    def count_weights(self):
        return sum(c.count_weights() for c in self.components)

    def update_deltas(self, upstream, deltas):
        self._distribute_error()
        cursor = VectorCursor(deltas)
        for c in self.components:
            c.update_deltas(upstream, cursor.take(c.count_weights()))

    def apply_deltas(self, learning_rate, deltas):
        cursor = VectorCursor(deltas)
        for c in self.components:
            c.apply_deltas(learning_rate, cursor.take(c.count_weights()))

    def weights_to_vector(self, vector=None):
        if vector is None:
            vector = np.zeros(self.count_weights())
        cursor = VectorCursor(vector)
        for c in self.components:
            c.weights_to_vector(cursor.take(c.count_weights()))
        return vector

    def vector_to_weights(self, vector):
        cursor = VectorCursor(np.asarray(vector, dtype=np.float64))
        for c in self.components:
            c.vector_to_weights(cursor.take(c.count_weights()))

    def copy_weights(self, other):
        if not isinstance(other, MixedLayer) or len(other.components) != len(self.components):
            raise InvalidArgument("Cannot copy weights between differently shaped mixed layers")
        for mine, theirs in zip(self.components, other.components):
            mine.copy_weights(theirs)

    def reset_weights(self, rand):
        for c in self.components:
            c.reset_weights(rand)

    def perturb_weights(self, rand, deviation, start=0, count=None):
        for c in self.components:
            c.perturb_weights(rand, deviation, start, count)

    def scale_weights(self, factor, scale_biases=True):
        for c in self.components:
            c.scale_weights(factor, scale_biases)

    def diminish_weights(self, amount, regularize_biases=True):
        for c in self.components:
            c.diminish_weights(amount, regularize_biases)

    def max_norm(self, min_val, max_val):
        for c in self.components:
            c.max_norm(min_val, max_val)

    def serialize(self, doc):
        node = self._base_node(doc)
        comps = node.add_field(doc, 'comps', doc.new_list())
        for c in self.components:
            comps.add_item(doc, c.serialize(doc))
        return node

    @classmethod
    def from_node(cls, node):
        return cls([deserialize_layer(item) for item in node.field('comps').items()])

    def __repr__(self):
        inner = ', '.join(repr(c) for c in self.components)
        return f"MixedLayer([{inner}])"
