"""
Convolution Layers
==================

- Conv1DLayer: one-dimensional correlation over channel-interleaved samples
- Conv2DLayer: two-dimensional correlation with stride, padding and
  configurable channel interleaving

Both layers compute correlation in the forward pass. Conv2DLayer sends
error back with a full convolution: the downstream error is read through a
stride-inverted ImageView and correlated with the flipped kernel, which
routes every gradient to the upstream positions that produced it under the
same stride and padding used forward.

Index tables are rebuilt whenever the geometry changes, so each pass is a
few vectorized NumPy operations.
"""

import numpy as np

from .dom import matrix_node, node_matrix, node_vector, vector_node
from .errors import InvalidArgument, NotSupported
from .image import ImageView
from .layers import FLEXIBLE_SIZE, Layer, as_input, register_layer
from .utils import clamp_column_norms, weight_magnitude


@register_layer
class Conv1DLayer(Layer):
    """
    1-D convolution.

    The input holds input_samples samples of input_channels values each,
    interleaved: x[sample * channels + c]. Every channel has its own
    kernels_per_channel kernels of length kernel_size, and output
    sample * (channels * kpc) + c * kpc + k is

        bias[c, k] + sum_l kernel[c, k, l] * x[(sample + l) * channels + c]

    Flat vector layout: kernels row-major (one row per channel/kernel pair,
    channel-major), then one bias per row.

    Args:
        input_samples: Samples per input vector
        input_channels: Values per sample
        kernel_size: Kernel length
        kernels_per_channel: Kernels applied to each channel
        rand: Optional Rand used to initialize the weights (zeros when None)
    """

    type_name = 'conv1d'

    def __init__(self, input_samples, input_channels, kernel_size, kernels_per_channel, rand=None):
        super().__init__()
        if kernel_size > input_samples:
            raise InvalidArgument(f"Kernel size {kernel_size} exceeds the {input_samples} input samples")
        if kernel_size <= 0 or input_channels <= 0 or kernels_per_channel <= 0:
            raise InvalidArgument("Conv1DLayer sizes must be positive")
        self.input_samples = input_samples
        self.input_channels = input_channels
        self.kernel_size = kernel_size
        self.kernels_per_channel = kernels_per_channel
        self.output_samples = input_samples - kernel_size + 1

        rows = input_channels * kernels_per_channel
        self.params['kernels'] = np.zeros((rows, kernel_size))
        self.params['bias'] = np.zeros(rows)
        # Window start + kernel offset, one row per output sample
        self._windows = np.arange(self.output_samples)[:, None] + np.arange(kernel_size)[None, :]
        self._alloc_buffers(self.output_samples * rows)
        if rand is not None:
            self.reset_weights(rand)

    @property
    def kernels(self):
        return self.params['kernels']

    @property
    def bias(self):
        return self.params['bias']

    def inputs(self):
        return self.input_samples * self.input_channels

    def resize(self, inputs, outputs, rand=None):
        if inputs != self.inputs() or outputs != self.outputs():
            raise InvalidArgument("Conv1DLayer can only be resized to its own geometry")

    def _kernel_tensor(self):
        return self.params['kernels'].reshape(self.input_channels, self.kernels_per_channel, self.kernel_size)

    def _windowed(self, x):
        # (output_samples, kernel_size, channels)
        return x.reshape(self.input_samples, self.input_channels)[self._windows]

    def _error_tensor(self):
        return self.error.reshape(self.output_samples, self.input_channels, self.kernels_per_channel)

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        out = np.einsum('slc,ckl->sck', self._windowed(x), self._kernel_tensor())
        out += self.params['bias'].reshape(self.input_channels, self.kernels_per_channel)
        self.activation[:] = out.ravel()
        return self.activation

    def back_prop_error(self, upstream):
        contrib = np.einsum('sck,ckl->slc', self._error_tensor(), self._kernel_tensor())
        up = np.zeros((self.input_samples, self.input_channels))
        np.add.at(up, self._windows, contrib)
        upstream.error[:] = up.ravel()

    def update_deltas(self, upstream, deltas):
        x = as_input(upstream)
        d = self._views(deltas)
        err = self._error_tensor()
        grad = np.einsum('sck,slc->ckl', err, self._windowed(x))
        d['kernels'] += grad.reshape(d['kernels'].shape)
        d['bias'] += err.sum(axis=0).ravel()

    def reset_weights(self, rand):
        mag = weight_magnitude(self.kernel_size)
        self.params['kernels'][...] = rand.normal_array(self.params['kernels'].shape) * mag
        self.params['bias'][...] = rand.normal_array(len(self.params['bias'])) * mag

    def perturb_weights(self, rand, deviation, start=0, count=None):
        if start != 0:
            raise NotSupported("Conv1DLayer only perturbs all of its kernels")
        self.params['kernels'] += rand.normal_array(self.params['kernels'].shape) * deviation
        self.params['bias'] += rand.normal_array(len(self.params['bias'])) * deviation

    def max_norm(self, min_val, max_val):
        clamp_column_norms(self.params['kernels'].T, min_val, max_val)

    def drop_out(self, rand, prob):
        self._drop_activation(rand, prob)

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'isam', self.input_samples)
        node.add_field(doc, 'ichan', self.input_channels)
        node.add_field(doc, 'osam', self.output_samples)
        node.add_field(doc, 'kpc', self.kernels_per_channel)
        node.add_field(doc, 'kern', matrix_node(doc, self.params['kernels']))
        node.add_field(doc, 'bias', vector_node(doc, self.params['bias']))
        return node

    @classmethod
    def from_node(cls, node):
        kernels = node_matrix(node.field('kern'))
        layer = cls(node.field('isam').as_int(), node.field('ichan').as_int(),
                    kernels.shape[1], node.field('kpc').as_int())
        layer.params['kernels'][...] = kernels
        layer.params['bias'][...] = node_vector(node.field('bias'))
        return layer

    def __repr__(self):
        return (f"Conv1DLayer(samples={self.input_samples}, channels={self.input_channels}, "
                f"kernel={self.kernel_size}, kpc={self.kernels_per_channel})")


@register_layer
class Conv2DLayer(Layer):
    """
    2-D convolution (correlation) with stride and zero padding.

    Input: width x height x channels image. Output: one output_width x
    output_height map per kernel, where

        output_width = (width - kernel_width + 2 * padding_x) // stride_x + 1

    and likewise for the height. Each kernel spans all input channels.
    Input, kernels and output are channel-interleaved by default; each can
    be switched to planar storage.

    Flat vector layout: every kernel (one row each, kernel_width *
    kernel_height * channels values), then one bias per kernel.

    Args:
        width, height, channels: Input geometry (FLEXIBLE_SIZE to adopt the
            output geometry of an upstream Conv2DLayer in resize_inputs)
        kernel_width, kernel_height: Kernel size
        kernel_count: Number of kernels (output channels)
        stride: Int or (sx, sy) tuple (default: 1)
        padding: Int or (px, py) tuple of zero padding (default: 0)
        rand: Optional Rand used to initialize the weights (zeros when None)
    """

    type_name = 'conv2d'

    def __init__(self, width, height, channels, kernel_width, kernel_height, kernel_count,
                 stride=1, padding=0, rand=None):
        super().__init__()
        if kernel_width <= 0 or kernel_height <= 0 or kernel_count < 0:
            raise InvalidArgument("Conv2DLayer kernel sizes must be positive")
        stride = stride if isinstance(stride, tuple) else (stride, stride)
        padding = padding if isinstance(padding, tuple) else (padding, padding)
        if stride[0] <= 0 or stride[1] <= 0:
            raise InvalidArgument("Stride must be positive")
        self.width = width
        self.height = height
        self.channels = channels
        self.kernel_width = kernel_width
        self.kernel_height = kernel_height
        self.stride_x, self.stride_y = stride
        self.padding_x, self.padding_y = padding
        self.input_interlaced = True
        self.kernels_interlaced = True
        self.output_interlaced = True
        self.params['kernels'] = np.zeros((kernel_count, kernel_width * kernel_height * channels))
        self.params['bias'] = np.zeros(kernel_count)
        self._update_geometry()
        if rand is not None:
            self.reset_weights(rand)

    @property
    def kernels(self):
        return self.params['kernels']

    @property
    def bias(self):
        return self.params['bias']

    def kernel_count(self):
        return self.params['kernels'].shape[0]

    def inputs(self):
        return self.width * self.height * self.channels

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def _is_flexible(self):
        return self.width == FLEXIBLE_SIZE or self.height == FLEXIBLE_SIZE or self.channels == FLEXIBLE_SIZE

    def _output_size(self, size, kernel, padding, stride):
        return (size - kernel + 2 * padding) // stride + 1

    def _check_fits(self, px, py, sx, sy):
        """Output size for the given padding and stride, raising when the kernel does not fit."""
        ow = self._output_size(self.width, self.kernel_width, px, sx)
        oh = self._output_size(self.height, self.kernel_height, py, sy)
        if ow <= 0 or oh <= 0:
            raise InvalidArgument(f"Kernel {self.kernel_width}x{self.kernel_height} does not fit a "
                                  f"{self.width}x{self.height} input with padding ({px},{py})")
        return ow, oh

    def _update_geometry(self):
        """Derive the output size and rebuild the index tables."""
        if self._is_flexible():
            self.output_width = 0
            self.output_height = 0
            self._alloc_buffers(0)
            return
        ow, oh = self._check_fits(self.padding_x, self.padding_y, self.stride_x, self.stride_y)
        self.output_width = ow
        self.output_height = oh
        self._build_tables()
        self._alloc_buffers(ow * oh * self.kernel_count())

    def _build_tables(self):
        kw, kh, c = self.kernel_width, self.kernel_height, self.channels
        ow, oh = self.output_width, self.output_height

        # Canonical kernel coordinates e = (j * kw + i) * c + z
        jj, ii, zz = [a.ravel() for a in np.meshgrid(np.arange(kh), np.arange(kw), np.arange(c), indexing='ij')]
        # Output positions p = oy * ow + ox
        oy, ox = [a.ravel() for a in np.meshgrid(np.arange(oh), np.arange(ow), indexing='ij')]

        # Storage position of each canonical kernel coordinate
        kview = ImageView(None, kw, kh, c, self.kernels_interlaced)
        self._kernel_order = kview.index(ii, jj, zz)

        # Input index read by each (output position, kernel coordinate)
        inview = ImageView(None, self.width, self.height, c, self.input_interlaced)
        inview.sx, inview.sy = self.stride_x, self.stride_y
        inview.px, inview.py = self.padding_x, self.padding_y
        inview.dx, inview.dy = ox[:, None], oy[:, None]
        self._input_table = inview.index(ii[None, :], jj[None, :], zz[None, :])

        # Output index of each (output position, kernel)
        outview = ImageView(None, ow, oh, self.kernel_count(), self.output_interlaced)
        self._output_table = outview.index(ox[:, None], oy[:, None], np.arange(self.kernel_count())[None, :])

        # Back-propagation: for every upstream pixel q and flipped kernel
        # position t = j' * kw + i', the output position whose error reaches it
        uy, ux = [a.ravel() for a in np.meshgrid(np.arange(self.height), np.arange(self.width), indexing='ij')]
        tj, ti = [a.ravel() for a in np.meshgrid(np.arange(kh), np.arange(kw), indexing='ij')]
        errview = ImageView(None, ow, oh, 1, True)
        errview.invert_stride = True
        errview.sx, errview.sy = self.stride_x, self.stride_y
        errview.px, errview.py = kw - 1 - self.padding_x, kh - 1 - self.padding_y
        errview.dx, errview.dy = ux[:, None], uy[:, None]
        self._error_table = errview.index(ti[None, :], tj[None, :], 0)

        # Canonical index of the flipped kernel at (t, z)
        flipview = ImageView(None, kw, kh, c, True)
        flipview.flip = True
        self._flipped_kernel = flipview.index(ti[:, None], tj[:, None], np.arange(c)[None, :])
        self._upstream_pixels = (ux, uy)

    def resize(self, inputs, outputs, rand=None):
        if inputs != self.inputs() or outputs != self.outputs():
            raise InvalidArgument("Conv2DLayer can only be resized through resize_inputs from another Conv2DLayer")

    def resize_inputs(self, upstream, rand=None):
        """Adopt the output geometry of an upstream Conv2DLayer."""
        if not isinstance(upstream, Conv2DLayer):
            if upstream.outputs() != self.inputs():
                raise InvalidArgument("Conv2DLayer can only take its input geometry from another Conv2DLayer")
            return
        if (upstream.output_width, upstream.output_height, upstream.kernel_count()) == \
                (self.width, self.height, self.channels) and upstream.output_interlaced == self.input_interlaced:
            return
        self.width = upstream.output_width
        self.height = upstream.output_height
        self.channels = upstream.kernel_count()
        self.input_interlaced = upstream.output_interlaced
        self.params['kernels'] = np.zeros((self.kernel_count(), self.kernel_width * self.kernel_height * self.channels))
        self._update_geometry()
        if rand is not None:
            self.reset_weights(rand)

    def set_padding(self, px, py=None):
        py = px if py is None else py
        if not self._is_flexible():
            self._check_fits(px, py, self.stride_x, self.stride_y)
        self.padding_x, self.padding_y = px, py
        self._update_geometry()

    def set_stride(self, sx, sy=None):
        sy = sx if sy is None else sy
        if sx <= 0 or sy <= 0:
            raise InvalidArgument("Stride must be positive")
        if not self._is_flexible():
            self._check_fits(self.padding_x, self.padding_y, sx, sy)
        self.stride_x, self.stride_y = sx, sy
        self._update_geometry()

    def set_input_interlaced(self, interlaced):
        self.input_interlaced = interlaced
        self._update_geometry()

    def set_kernels_interlaced(self, interlaced):
        self.kernels_interlaced = interlaced
        self._update_geometry()

    def set_output_interlaced(self, interlaced):
        self.output_interlaced = interlaced
        self._update_geometry()

    def add_kernel(self, rand=None):
        self.add_kernels(1, rand)

    def add_kernels(self, count, rand=None):
        """Append `count` kernels (random when rand is given, zero otherwise) with zero bias."""
        size = self.params['kernels'].shape[1]
        if rand is None:
            new = np.zeros((count, size))
        else:
            new = rand.normal_array((count, size)) * weight_magnitude(size)
        self.params['kernels'] = np.vstack([self.params['kernels'], new])
        self.params['bias'] = np.concatenate([self.params['bias'], np.zeros(count)])
        self._update_geometry()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def canonical_kernels(self):
        """Kernels as (kernel_count, kh * kw * channels), channel-interleaved whatever the storage order."""
        return self.params['kernels'][:, self._kernel_order]

    def _patches(self, x):
        table = self._input_table
        return np.where(table >= 0, x[np.maximum(table, 0)], 0.0)

    def feed_forward(self, x):
        x = as_input(x)
        self._check_input(x)
        out = self._patches(x) @ self.canonical_kernels().T + self.params['bias']
        self.activation[self._output_table] = out
        return self.activation

    def back_prop_error(self, upstream):
        err = self.error[self._output_table]
        table = self._error_table
        gathered = np.where((table >= 0)[:, :, None], err[np.maximum(table, 0)], 0.0)
        flipped = self.canonical_kernels()[:, self._flipped_kernel]
        contrib = np.einsum('qtn,ntc->qc', gathered, flipped)

        upstream.error[:] = 0.0
        upview = ImageView(upstream.error, self.width, self.height, self.channels, self.input_interlaced)
        ux, uy = self._upstream_pixels
        upview.add(ux[:, None], uy[:, None], np.arange(self.channels)[None, :], contrib)

    def update_deltas(self, upstream, deltas):
        x = as_input(upstream)
        d = self._views(deltas)
        err = self.error[self._output_table]
        grad = err.T @ self._patches(x)
        d['kernels'][:, self._kernel_order] += grad
        d['bias'] += err.sum(axis=0)

    # ------------------------------------------------------------------
    # Weight maintenance
    # ------------------------------------------------------------------

    def reset_weights(self, rand):
        mag = weight_magnitude(self.params['kernels'].shape[1])
        self.params['kernels'][...] = rand.normal_array(self.params['kernels'].shape) * mag
        self.params['bias'][...] = rand.normal_array(self.kernel_count()) * mag

    def perturb_weights(self, rand, deviation, start=0, count=None):
        n = self.kernel_count() - start if count is None else min(self.kernel_count() - start, count)
        if n <= 0:
            return
        k = self.params['kernels']
        k[start:start + n] += rand.normal_array((n, k.shape[1])) * deviation
        self.params['bias'][start:start + n] += rand.normal_array(n) * deviation

    def max_norm(self, min_val, max_val):
        raise NotSupported("Conv2DLayer does not support max_norm")

    def drop_out(self, rand, prob):
        self._drop_activation(rand, prob)

    def copy_weights(self, other):
        raise NotSupported("Conv2DLayer does not support copy_weights")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self, doc):
        node = self._base_node(doc)
        node.add_field(doc, 'width', self.width)
        node.add_field(doc, 'height', self.height)
        node.add_field(doc, 'channels', self.channels)
        node.add_field(doc, 'kWidth', self.kernel_width)
        node.add_field(doc, 'kHeight', self.kernel_height)
        node.add_field(doc, 'strideX', self.stride_x)
        node.add_field(doc, 'strideY', self.stride_y)
        node.add_field(doc, 'paddingX', self.padding_x)
        node.add_field(doc, 'paddingY', self.padding_y)
        node.add_field(doc, 'outputWidth', self.output_width)
        node.add_field(doc, 'outputHeight', self.output_height)
        node.add_field(doc, 'inputInterlaced', self.input_interlaced)
        node.add_field(doc, 'kernelsInterlaced', self.kernels_interlaced)
        node.add_field(doc, 'outputInterlaced', self.output_interlaced)
        node.add_field(doc, 'bias', vector_node(doc, self.params['bias']))
        node.add_field(doc, 'kernels', matrix_node(doc, self.params['kernels']))
        return node

    @classmethod
    def from_node(cls, node):
        kernels = node_matrix(node.field('kernels'))
        layer = cls(node.field('width').as_int(), node.field('height').as_int(), node.field('channels').as_int(),
                    node.field('kWidth').as_int(), node.field('kHeight').as_int(), kernels.shape[0],
                    stride=(node.field('strideX').as_int(), node.field('strideY').as_int()),
                    padding=(node.field('paddingX').as_int(), node.field('paddingY').as_int()))
        layer.input_interlaced = node.field('inputInterlaced').as_bool()
        layer.kernels_interlaced = node.field('kernelsInterlaced').as_bool()
        layer.output_interlaced = node.field('outputInterlaced').as_bool()
        layer._update_geometry()
        layer.params['kernels'][...] = kernels
        layer.params['bias'][...] = node_vector(node.field('bias'))
        return layer

    def __repr__(self):
        return (f"Conv2DLayer({self.width}x{self.height}x{self.channels} -> "
                f"{self.output_width}x{self.output_height}x{self.kernel_count()}, "
                f"kernel={self.kernel_width}x{self.kernel_height}, "
                f"stride=({self.stride_x},{self.stride_y}), padding=({self.padding_x},{self.padding_y}))")
