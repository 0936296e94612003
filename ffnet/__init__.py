"""
ffnet: Feed-Forward Neural Network Layers
=========================================

Composable layers implemented with NumPy, each owning its weights and its
activation/error buffers:
- Dense, activation, pooling, maxout and softmax layers
- Restricted Boltzmann machine with Gibbs sampling and contrastive divergence
- 1-D and 2-D convolution with stride, padding and channel interleaving
- Mixed (side by side) composition
- NeuralNet container with a flat weight/delta vector protocol
- SGD and Adam optimizers, JSON persistence
"""

from .errors import LayerError, InvalidArgument, NotSupported, InvalidFormat, OutOfBounds
from .rand import Rand
from .activations import ACTIVATIONS, get_activation
from .layers import FLEXIBLE_SIZE, Layer, LinearLayer, SoftmaxLayer, ActivationLayer
from .layers import ProductPoolingLayer, AdditionPoolingLayer, MaxPooling2DLayer, MaxOutLayer, MixedLayer
from .layers import LAYER_TYPES, deserialize_layer
from .boltzmann import RestrictedBoltzmannMachine
from .convolution import Conv1DLayer, Conv2DLayer
from .image import ImageView
from .network import NeuralNet
from .losses import SquaredError, CrossEntropy, get_loss
from .optimizers import SGD, Adam, get_optimizer, get_lr_scheduler
from .dom import Doc, DomNode
from .utils import VectorCursor, one_hot_encode, create_batches
from . import visualizations

__version__ = "1.0.0"
__all__ = [
    # Errors
    'LayerError', 'InvalidArgument', 'NotSupported', 'InvalidFormat', 'OutOfBounds',
    # Randomness
    'Rand',
    # Activations
    'ACTIVATIONS', 'get_activation',
    # Layers
    'FLEXIBLE_SIZE', 'Layer', 'LinearLayer', 'SoftmaxLayer', 'ActivationLayer',
    'ProductPoolingLayer', 'AdditionPoolingLayer', 'MaxPooling2DLayer', 'MaxOutLayer',
    'MixedLayer', 'RestrictedBoltzmannMachine', 'Conv1DLayer', 'Conv2DLayer',
    'LAYER_TYPES', 'deserialize_layer', 'ImageView',
    # Network
    'NeuralNet',
    # Training
    'SquaredError', 'CrossEntropy', 'get_loss', 'SGD', 'Adam', 'get_optimizer', 'get_lr_scheduler',
    # Persistence and utilities
    'Doc', 'DomNode', 'VectorCursor', 'one_hot_encode', 'create_batches',
]
