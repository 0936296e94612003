"""
Strided, Padded Image Views
===========================

ImageView maps logical (x, y, z) image coordinates onto a flat vector,
so convolution code can be written as plain correlation:

- offset (dx, dy, dz): shifts the window
- stride (sx, sy): the x/y offset is applied in steps of the stride
- padding (px, py): shifts the window back by the padding
- invert_stride: divides by the stride instead of multiplying, so the view
  only hits every sx-th column. This is how back-propagation runs a
  strided correlation in reverse.
- flip: rotates the image by 180 degrees (full convolution from correlation)
- interlaced: channel-interleaved storage (y*w + x)*c + z, otherwise
  planar storage (z*h + y)*w + x

Reads outside the image return 0.0 (zero padding). Writes outside the
image raise OutOfBounds. All coordinates may be NumPy arrays, which are
broadcast against each other.
"""

import numpy as np

from .errors import OutOfBounds


class ImageView:
    """
    View over a flat image buffer.

    Args:
        data: Flat vector (may be None when only index() is needed)
        width: Columns
        height: Rows
        channels: Channels per pixel
        interlaced: Whether channels are interleaved per pixel
    """

    def __init__(self, data, width, height, channels=1, interlaced=True):
        self.data = data
        self.width = width
        self.height = height
        self.channels = channels
        self.interlaced = interlaced
        self.dx = 0
        self.dy = 0
        self.dz = 0
        self.px = 0
        self.py = 0
        self.sx = 1
        self.sy = 1
        self.invert_stride = False
        self.flip = False

    def _axis(self, v, offset, padding, stride, size):
        v = np.asarray(v)
        if self.invert_stride:
            u = v + offset - padding
            valid = (u % stride) == 0
            v = u // stride
        else:
            v = v + offset * stride - padding
            valid = np.ones(np.shape(v), dtype=bool)
        if self.flip:
            v = size - v - 1
        return v, valid & (v >= 0) & (v < size)

    def index(self, x, y, z=0):
        """Flat index of each coordinate, -1 where it falls outside the image."""
        xx, vx = self._axis(x, self.dx, self.px, self.sx, self.width)
        yy, vy = self._axis(y, self.dy, self.py, self.sy, self.height)
        zz = np.asarray(z) + self.dz
        valid = vx & vy & (zz >= 0) & (zz < self.channels)
        if self.interlaced:
            flat = (yy * self.width + xx) * self.channels + zz
        else:
            flat = (zz * self.height + yy) * self.width + xx
        return np.where(valid, flat, -1)

    def read(self, x, y, z=0):
        idx = self.index(x, y, z)
        return np.where(idx >= 0, self.data[np.maximum(idx, 0)], 0.0)

    def add(self, x, y, z, values):
        """Add values at the given coordinates, accumulating over repeats."""
        idx = self.index(x, y, z)
        if np.any(idx < 0):
            raise OutOfBounds(f"Write outside a {self.width}x{self.height}x{self.channels} image")
        idx, values = np.broadcast_arrays(idx, np.asarray(values, dtype=np.float64))
        np.add.at(self.data, idx.ravel(), values.ravel())

    def __repr__(self):
        return (f"ImageView({self.width}x{self.height}x{self.channels}, offset=({self.dx},{self.dy},{self.dz}), "
                f"stride=({self.sx},{self.sy}), padding=({self.px},{self.py}), "
                f"invert_stride={self.invert_stride}, flip={self.flip})")
