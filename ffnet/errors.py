"""
Exceptions for the ffnet library
================================

- LayerError: root of everything raised by layers and networks
- InvalidArgument: shape or geometry that a layer cannot honor
- NotSupported: an operation a layer kind does not provide
- InvalidFormat: a serialized node that cannot be read back
- OutOfBounds: a write through an image view that misses the image
"""


class LayerError(Exception):
    """Base class for ffnet errors."""


class InvalidArgument(LayerError, ValueError):
    pass


class NotSupported(LayerError, NotImplementedError):
    pass


class InvalidFormat(LayerError, ValueError):
    pass


class OutOfBounds(LayerError, IndexError):
    pass
