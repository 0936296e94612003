"""
Neural Network Container
========================

NeuralNet ties the layers together:
- Layer chaining, with input sizes propagated through resize_inputs
- Forward pass (forward_prop / predict)
- Backward pass (backpropagate) seeded with an external blame vector
- Gradient accumulation and weight updates over one flat delta vector
- Weight maintenance across the whole chain
- A training loop, summary and JSON persistence

Example:
    >>> from ffnet import NeuralNet, LinearLayer, ActivationLayer, Rand, FLEXIBLE_SIZE
    >>> rand = Rand(0)
    >>> net = NeuralNet(rand=rand)
    >>> net.add_layer(LinearLayer(2, 8))
    >>> net.add_layer(ActivationLayer(activation='tanh'))
    >>> net.add_layer(LinearLayer(FLEXIBLE_SIZE, 1))
    >>> net.reset_weights()
    >>> history = net.fit(X, Y, epochs=50, batch_size=4, learning_rate=0.1)
"""

import numpy as np
from tqdm import tqdm

from . import netlog
from .dom import Doc
from .errors import InvalidArgument
from .layers import deserialize_layer
from .losses import get_loss
from .optimizers import SGD, get_lr_scheduler, get_optimizer
from .utils import VectorCursor, create_batches

log = netlog.setup_logging("ffnet_network", level="INFO")


class NeuralNet:
    """
    Feed-forward network: an ordered chain of layers.

    Layer i + 1 always expects as many inputs as layer i produces; adding or
    releasing a layer re-fits its neighbors through resize_inputs, and a
    fixed-size layer that cannot fit raises InvalidArgument.

    Args:
        layers: Optional initial layers, added in order
        rand: Rand used when resizing and resetting weights
    """

    def __init__(self, layers=None, rand=None):
        self.layers = []
        self.rand = rand
        self.history = {}
        for layer in layers or []:
            self.add_layer(layer)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def add_layer(self, layer, position=None):
        """Insert a layer (at the end by default) and fit it to its neighbors."""
        if position is None:
            position = len(self.layers)
        if position < 0 or position > len(self.layers):
            raise InvalidArgument(f"Invalid layer position {position}")
        if position > 0:
            layer.resize_inputs(self.layers[position - 1], self.rand)
        if position < len(self.layers):
            self.layers[position].resize_inputs(layer, self.rand)
        self.layers.insert(position, layer)
        log.debug(f"Added {layer} at position {position}")

    def release_layer(self, index):
        """
        Remove a layer from the chain and return it.

        When the next layer cannot fit the new upstream size the layer is put
        back and InvalidArgument propagates, leaving the chain unchanged.
        """
        layer = self.layers.pop(index)
        if 0 < index < len(self.layers):
            try:
                self.layers[index].resize_inputs(self.layers[index - 1], self.rand)
            except InvalidArgument:
                self.layers.insert(index, layer)
                raise
        log.debug(f"Released {layer} from position {index}")
        return layer

    def layer(self, index):
        return self.layers[index]

    def output_layer(self):
        return self.layers[-1]

    def layer_count(self):
        return len(self.layers)

    def count_weights(self, start_layer=0):
        return sum(layer.count_weights() for layer in self.layers[start_layer:])

    def _check_ready(self):
        if not self.layers:
            raise InvalidArgument("The network has no layers")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def forward_prop(self, x):
        """
        Forward pass through the network.

        Args:
            x: Input vector

        Returns:
            The output layer's activation (not a copy)
        """
        self._check_ready()
        upstream = x
        for layer in self.layers:
            layer.feed_forward(upstream)
            upstream = layer
        return self.layers[-1].activation

    def predict(self, x):
        """Forward pass returning a copy of the output."""
        return self.forward_prop(x).copy()

    def predict_batch(self, X):
        return np.array([self.predict(x) for x in X])

    def backpropagate(self, blame):
        """
        Seed the output layer's error with `blame` and propagate it down the chain.

        Args:
            blame: Error for the output layer (target - prediction for squared error)
        """
        self._check_ready()
        self.layers[-1].error[:] = blame
        for i in range(len(self.layers) - 1, 0, -1):
            self.layers[i].back_prop_error(self.layers[i - 1])

    def update_gradient(self, x, gradient):
        """Accumulate every layer's deltas into `gradient`, in chain order."""
        cursor = VectorCursor(gradient)
        upstream = x
        for layer in self.layers:
            layer.update_deltas(upstream, cursor.take(layer.count_weights()))
            upstream = layer

    def step(self, learning_rate, gradient):
        """weights += learning_rate * gradient"""
        cursor = VectorCursor(gradient)
        for layer in self.layers:
            layer.apply_deltas(learning_rate, cursor.take(layer.count_weights()))

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def weights(self):
        """All weights as one flat vector, layer by layer."""
        vector = np.zeros(self.count_weights())
        cursor = VectorCursor(vector)
        for layer in self.layers:
            layer.weights_to_vector(cursor.take(layer.count_weights()))
        return vector

    def set_weights(self, vector):
        vector = np.asarray(vector, dtype=np.float64)
        if len(vector) != self.count_weights():
            raise InvalidArgument(f"Expected {self.count_weights()} weights, got {len(vector)}")
        cursor = VectorCursor(vector)
        for layer in self.layers:
            layer.vector_to_weights(cursor.take(layer.count_weights()))

    def copy_weights(self, other):
        if other.layer_count() != self.layer_count():
            raise InvalidArgument("Cannot copy weights between networks of different depth")
        for mine, theirs in zip(self.layers, other.layers):
            mine.copy_weights(theirs)

    def reset_weights(self, rand=None):
        rand = rand or self.rand
        if rand is None:
            raise InvalidArgument("reset_weights needs a Rand")
        for layer in self.layers:
            layer.reset_weights(rand)

    def perturb_all_weights(self, rand, deviation):
        for layer in self.layers:
            layer.perturb_weights(rand, deviation)

    def max_norm(self, min_val, max_val, output_layer=False):
        """Clamp incoming weight norms of every weighted layer, the output layer only when asked."""
        layers = self.layers if output_layer else self.layers[:-1]
        for layer in layers:
            if layer.count_weights() > 0:
                layer.max_norm(min_val, max_val)

    def _layer_range(self, start_layer, layer_count):
        end = len(self.layers) if layer_count is None else min(start_layer + layer_count, len(self.layers))
        return self.layers[start_layer:end]

    def scale_weights(self, factor, scale_biases=True, start_layer=0, layer_count=None):
        for layer in self._layer_range(start_layer, layer_count):
            layer.scale_weights(factor, scale_biases)

    def diminish_weights(self, amount, regularize_biases=True, start_layer=0, layer_count=None):
        for layer in self._layer_range(start_layer, layer_count):
            layer.diminish_weights(amount, regularize_biases)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_incremental(self, x, target, learning_rate, loss='squared_error'):
        """
        One step of online gradient descent on a single sample.

        Returns:
            Loss before the update
        """
        loss_fn = get_loss(loss)
        prediction = self.forward_prop(x)
        value = loss_fn(prediction, target)
        self.backpropagate(loss_fn.blame(prediction, target))
        gradient = np.zeros(self.count_weights())
        self.update_gradient(x, gradient)
        self.step(learning_rate, gradient)
        return value

    def fit(self, X, Y, epochs=10, batch_size=32, learning_rate=0.01,
            optimizer='sgd', loss='squared_error', validation_data=None, lr_schedule=None, verbose=True):
        """
        Train the network with mini-batch gradient descent.

        Args:
            X: Inputs, shape (N, inputs)
            Y: Targets, shape (N, outputs)
            epochs: Number of training epochs
            batch_size: Mini-batch size
            learning_rate: Initial learning rate
            optimizer: 'sgd', 'adam' or an Optimizer instance
            loss: Loss name or instance
            validation_data: Tuple (X_val, Y_val)
            lr_schedule: Scheduler name ('step', 'exponential', 'cosine', 'constant')
                or callable(step, initial_lr), applied once per batch
            verbose: Show a progress bar and log epoch summaries

        Returns:
            Training history dictionary
        """
        X = np.asarray(X, dtype=np.float64)
        Y = np.asarray(Y, dtype=np.float64)
        loss_fn = get_loss(loss)

        if optimizer == 'sgd':
            opt = SGD(learning_rate=learning_rate, momentum=0.9)
        else:
            opt = get_optimizer(optimizer, learning_rate=learning_rate)
        n_batches = (len(X) + batch_size - 1) // batch_size
        if lr_schedule == 'cosine':
            opt.set_lr_scheduler(get_lr_scheduler(lr_schedule, total_steps=epochs * n_batches))
        elif lr_schedule is not None:
            opt.set_lr_scheduler(get_lr_scheduler(lr_schedule))

        self.history = {'loss': [], 'val_loss': [], 'lr': []}

        for epoch in range(epochs):
            epoch_loss = 0.0
            n_samples = 0

            batches = create_batches(X, Y, batch_size, shuffle=True, rand=self.rand)
            if verbose:
                batches = tqdm(batches, total=n_batches, desc=f"Epoch {epoch + 1}/{epochs}")

            for X_batch, Y_batch in batches:
                gradient = np.zeros(self.count_weights())
                for x, y in zip(X_batch, Y_batch):
                    prediction = self.forward_prop(x)
                    epoch_loss += loss_fn(prediction, y)
                    self.backpropagate(loss_fn.blame(prediction, y))
                    self.update_gradient(x, gradient)
                n_samples += len(X_batch)
                opt.step(self, gradient / len(X_batch))

                if verbose:
                    batches.set_postfix({'loss': f'{epoch_loss / n_samples:.4f}'})

            self.history['loss'].append(epoch_loss / len(X))
            self.history['lr'].append(opt.get_lr())

            msg = f"Epoch {epoch + 1}/{epochs} - loss: {self.history['loss'][-1]:.4f}"
            if validation_data is not None:
                val_loss = self.evaluate(*validation_data, loss=loss_fn)
                self.history['val_loss'].append(val_loss)
                msg += f" - val_loss: {val_loss:.4f}"
            if verbose:
                log.info(msg)

        return self.history

    def evaluate(self, X, Y, loss='squared_error'):
        """Mean loss over a dataset."""
        loss_fn = get_loss(loss)
        X = np.asarray(X, dtype=np.float64)
        Y = np.asarray(Y, dtype=np.float64)
        total = sum(loss_fn(self.forward_prop(x), y) for x, y in zip(X, Y))
        return total / len(X)

    # ------------------------------------------------------------------
    # Reporting and persistence
    # ------------------------------------------------------------------

    def summary(self):
        """Print model summary."""
        print("\n" + "=" * 70)
        print("NeuralNet Summary")
        print("=" * 70)

        total_params = 0
        for i, layer in enumerate(self.layers):
            n_params = layer.count_weights()
            total_params += n_params
            print(f"{i:3d}. {str(layer):<50} Params: {n_params:,}")

        print("-" * 70)
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def serialize(self, doc):
        node = doc.new_obj()
        layers = node.add_field(doc, 'layers', doc.new_list())
        for layer in self.layers:
            layers.add_item(doc, layer.serialize(doc))
        return node

    @classmethod
    def deserialize(cls, node, rand=None):
        net = cls(rand=rand)
        for item in node.field('layers').items():
            net.layers.append(deserialize_layer(item))
        return net

    def save(self, filepath):
        """
        Save the network to a JSON file.

        Args:
            filepath: Destination path
        """
        doc = Doc()
        doc.save(self.serialize(doc), filepath)
        log.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath, rand=None):
        net = cls.deserialize(Doc().load(filepath), rand=rand)
        log.info(f"Model loaded from {filepath}")
        return net

    def __repr__(self):
        return f"NeuralNet(layers={len(self.layers)}, weights={self.count_weights()})"
