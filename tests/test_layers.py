"""
Tests for ffnet Layers
======================

Unit tests for the dense, activation, pooling, maxout, softmax and mixed layers.
"""

import numpy as np
import pytest
import sys
import os

# Add the project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ffnet.layers import (Layer, LinearLayer, SoftmaxLayer, ActivationLayer, ProductPoolingLayer,
                          AdditionPoolingLayer, MaxPooling2DLayer, MaxOutLayer, MixedLayer,
                          FLEXIBLE_SIZE)
from ffnet.activations import get_activation
from ffnet.convolution import Conv1DLayer
from ffnet.errors import InvalidArgument, NotSupported
from ffnet.dom import Doc
from ffnet.rand import Rand


class _Upstream(Layer):
    """Stand-in for the layer feeding the one under test."""

    def __init__(self, activation):
        super().__init__()
        self.activation = np.asarray(activation, dtype=np.float64)
        self.error = np.zeros_like(self.activation)


class TestLinearLayer:
    """Tests for LinearLayer."""

    def test_count_weights(self):
        """Weights include one bias per output."""
        layer = LinearLayer(3, 2)
        assert layer.count_weights() == 8, f"Expected 8, got {layer.count_weights()}"

    def test_forward(self):
        """Output is bias + x @ W."""
        layer = LinearLayer(2, 2)
        layer.vector_to_weights([1.0, 2.0, 3.0, 4.0, 0.5, -0.5])
        out = layer.feed_forward([1.0, 1.0])
        np.testing.assert_allclose(out, [4.5, 5.5])

    def test_zero_weights_without_rand(self):
        """A layer built without a rand starts at zero."""
        layer = LinearLayer(4, 3)
        assert np.all(layer.weights_to_vector() == 0.0)

    def test_vector_round_trip(self):
        """weights_to_vector and vector_to_weights are inverses."""
        layer = LinearLayer(3, 4, rand=Rand(1))
        vec = layer.weights_to_vector()
        other = LinearLayer(3, 4)
        other.vector_to_weights(vec)
        np.testing.assert_array_equal(other.weights, layer.weights)

    def test_backprop(self):
        """Upstream error is W @ error, excluding the bias row."""
        layer = LinearLayer(2, 2)
        layer.vector_to_weights([1.0, 2.0, 3.0, 4.0, 9.0, 9.0])
        up = _Upstream([0.0, 0.0])
        layer.feed_forward(up)
        layer.error[:] = [1.0, -1.0]
        layer.back_prop_error(up)
        np.testing.assert_allclose(up.error, [-1.0, -1.0])

    def test_apply_deltas(self):
        """apply_deltas adds learning_rate * deltas."""
        layer = LinearLayer(1, 1)
        layer.apply_deltas(0.5, np.array([2.0, 4.0]))
        np.testing.assert_allclose(layer.weights_to_vector(), [1.0, 2.0])

    def test_wrong_input_size(self):
        """Feeding the wrong number of inputs raises InvalidArgument."""
        layer = LinearLayer(3, 2)
        with pytest.raises(InvalidArgument):
            layer.feed_forward([1.0, 2.0])

    def test_resize_keeps_overlap(self):
        """Growing a layer keeps existing weights and bias."""
        layer = LinearLayer(2, 2, rand=Rand(3))
        old = layer.weights.copy()
        layer.resize(3, 3)
        assert layer.weights.shape == (4, 3)
        np.testing.assert_array_equal(layer.weights[:2, :2], old[:2, :2])
        np.testing.assert_array_equal(layer.weights[-1, :2], old[-1])

    def test_max_norm(self):
        """Column norms are clamped, the bias row untouched."""
        layer = LinearLayer(2, 1)
        layer.vector_to_weights([3.0, 4.0, 7.0])
        layer.max_norm(0.0, 1.0)
        np.testing.assert_allclose(layer.weights[:-1, 0], [0.6, 0.8])
        assert layer.bias[0] == 7.0

    def test_scale_weights_without_bias(self):
        """scale_biases=False leaves the bias alone."""
        layer = LinearLayer(1, 1)
        layer.vector_to_weights([2.0, 2.0])
        layer.scale_weights(0.5, scale_biases=False)
        np.testing.assert_allclose(layer.weights_to_vector(), [1.0, 2.0])

    def test_diminish_weights(self):
        """L1 shrinkage stops at zero."""
        layer = LinearLayer(1, 2)
        layer.vector_to_weights([0.5, -0.05, 1.0, -1.0])
        layer.diminish_weights(0.1)
        np.testing.assert_allclose(layer.weights_to_vector(), [0.4, 0.0, 0.9, -0.9])

    def test_set_weights_to_identity(self):
        """Identity weights copy inputs to outputs."""
        layer = LinearLayer(3, 3, rand=Rand(0))
        layer.set_weights_to_identity()
        np.testing.assert_allclose(layer.feed_forward([1.0, 2.0, 3.0]), [1.0, 2.0, 3.0])

    def test_transform_weights_offset(self):
        """An identity transform with an offset shifts the inputs."""
        layer = LinearLayer(2, 2, rand=Rand(6))
        expected = layer.feed_through([1.5, -0.5])
        layer.transform_weights(np.eye(2), [0.5, -1.0])
        np.testing.assert_allclose(layer.feed_forward([1.0, 0.5]), expected)

    def test_transform_weights_not_square(self):
        layer = LinearLayer(2, 2)
        with pytest.raises(InvalidArgument):
            layer.transform_weights(np.ones((2, 3)), [0.0, 0.0])

    def test_renormalize_input(self):
        """Rescaling an input and renormalizing keeps the output."""
        layer = LinearLayer(2, 1, rand=Rand(5))
        before = layer.feed_through([0.25, 0.5]).copy()
        # 0.25 in [0, 1] maps to 0.5 in [-1, 1]
        layer.renormalize_input(0, 0.0, 1.0, -1.0, 1.0)
        after = layer.feed_through([-0.5, 0.5])
        np.testing.assert_allclose(after, before)

    def test_serialize_round_trip(self):
        """A serialized layer reads back with the same weights."""
        layer = LinearLayer(3, 2, rand=Rand(2))
        doc = Doc()
        clone = LinearLayer.from_node(doc.from_json(doc.to_json(layer.serialize(doc))))
        np.testing.assert_allclose(clone.weights, layer.weights)


class TestSoftmaxLayer:
    """Tests for SoftmaxLayer."""

    def test_outputs_sum_to_one(self):
        """Normalized activations sum to 1."""
        layer = SoftmaxLayer(3, 4, rand=Rand(0))
        out = layer.feed_forward([0.2, -0.4, 0.9])
        assert abs(out.sum() - 1.0) < 1e-10, f"Sum is {out.sum()}"

    def test_uniform_when_saturated(self):
        """A vanishing logistic sum falls back to a uniform output."""
        layer = SoftmaxLayer(1, 4)
        layer.vector_to_weights(np.full(8, -1000.0))
        out = layer.feed_forward([1.0])
        np.testing.assert_allclose(out, [0.25] * 4)


class TestActivationLayer:
    """Tests for ActivationLayer."""

    def test_forward_tanh(self):
        """Applies tanh elementwise."""
        layer = ActivationLayer(3, 'tanh')
        x = np.array([-1.0, 0.0, 2.0])
        np.testing.assert_allclose(layer.feed_forward(x), np.tanh(x))

    def test_backprop_deactivates(self):
        """Upstream error is multiplied by the derivative."""
        layer = ActivationLayer(2, 'tanh')
        up = _Upstream([0.5, -0.3])
        layer.feed_forward(up)
        layer.error[:] = [1.0, 2.0]
        layer.back_prop_error(up)
        expected = np.array([1.0, 2.0]) * (1.0 - np.tanh(up.activation) ** 2)
        np.testing.assert_allclose(up.error, expected)

    def test_flexible_size(self):
        """A flexible layer takes its size from upstream."""
        layer = ActivationLayer(FLEXIBLE_SIZE, 'rectifier')
        layer.resize_inputs(_Upstream(np.zeros(5)))
        assert layer.outputs() == 5

    def test_no_weights(self):
        layer = ActivationLayer(4)
        assert layer.count_weights() == 0

    def test_unknown_activation(self):
        """Unknown names raise InvalidArgument."""
        with pytest.raises(InvalidArgument):
            ActivationLayer(2, 'not-a-function')


class TestActivations:
    """Derivatives of every activation against finite differences."""

    @pytest.mark.parametrize('name', ['identity', 'tanh', 'logistic', 'bentidentity', 'sigexp',
                                      'gaussian', 'sine', 'rectifier', 'leakyrectifier',
                                      'softplus', 'softroot'])
    def test_derivative(self, name):
        """Analytical derivative matches a centered difference."""
        act = get_activation(name)
        x = np.array([-1.7, -0.4, 0.3, 1.2, 2.5])
        eps = 1e-6
        numerical = (act.forward(x + eps) - act.forward(x - eps)) / (2 * eps)
        analytical = act.derivative(x, act.forward(x))
        np.testing.assert_allclose(analytical, numerical, rtol=1e-4, atol=1e-6)

    def test_logistic_saturates(self):
        """Logistic is exactly 0 or 1 far from the origin."""
        act = get_activation('logistic')
        np.testing.assert_array_equal(act.forward(np.array([-800.0, 800.0])), [0.0, 1.0])

    def test_softroot_far_derivative(self):
        act = get_activation('softroot')
        x = np.array([2e7])
        assert act.derivative(x, act.forward(x))[0] == 0.0


class TestPairPooling:
    """Tests for ProductPoolingLayer and AdditionPoolingLayer."""

    def test_product_forward(self):
        """Neighbor pairs are multiplied."""
        layer = ProductPoolingLayer(4)
        np.testing.assert_allclose(layer.feed_forward([2.0, 3.0, 4.0, 5.0]), [6.0, 20.0])

    def test_product_backprop(self):
        """Each partner gets the error times the other partner."""
        layer = ProductPoolingLayer(4)
        up = _Upstream([2.0, 3.0, 4.0, 5.0])
        layer.feed_forward(up)
        layer.error[:] = [1.0, 1.0]
        layer.back_prop_error(up)
        np.testing.assert_allclose(up.error, [3.0, 2.0, 5.0, 4.0])

    def test_addition_forward_and_backprop(self):
        """Pairs are summed and the error passes through to both."""
        layer = AdditionPoolingLayer(4)
        up = _Upstream([2.0, 3.0, 4.0, 5.0])
        np.testing.assert_allclose(layer.feed_forward(up), [5.0, 9.0])
        layer.error[:] = [0.5, -1.0]
        layer.back_prop_error(up)
        np.testing.assert_allclose(up.error, [0.5, 0.5, -1.0, -1.0])

    def test_odd_inputs(self):
        """An odd input count raises InvalidArgument."""
        with pytest.raises(InvalidArgument):
            ProductPoolingLayer(3)

    def test_not_serializable(self):
        with pytest.raises(NotSupported):
            AdditionPoolingLayer(2).serialize(Doc())


class TestMaxPooling2DLayer:
    """Tests for MaxPooling2DLayer."""

    def test_forward(self):
        """Each 2x2 region keeps its maximum."""
        layer = MaxPooling2DLayer(4, 4, 1)
        x = np.arange(1, 17, dtype=np.float64)
        out = layer.feed_forward(x)
        np.testing.assert_allclose(out, [6.0, 8.0, 14.0, 16.0])

    def test_backprop_routes_to_winner(self):
        """Only the maximum of each region receives error."""
        layer = MaxPooling2DLayer(2, 2, 1)
        up = _Upstream([1.0, 9.0, 3.0, 2.0])
        layer.feed_forward(up)
        layer.error[:] = [5.0]
        layer.back_prop_error(up)
        np.testing.assert_allclose(up.error, [0.0, 5.0, 0.0, 0.0])

    def test_channels_pooled_separately(self):
        """Interleaved channels each get their own maximum."""
        layer = MaxPooling2DLayer(2, 2, 2)
        # pixel-major, channel-minor: channel 0 = [1, 2, 3, 4], channel 1 = [8, 7, 6, 5]
        x = np.array([1.0, 8.0, 2.0, 7.0, 3.0, 6.0, 4.0, 5.0])
        np.testing.assert_allclose(layer.feed_forward(x), [4.0, 8.0])

    def test_ties_pick_first(self):
        layer = MaxPooling2DLayer(2, 2, 1)
        layer.feed_forward([7.0, 7.0, 7.0, 7.0])
        assert layer.winners[0] == 0

    def test_bad_geometry(self):
        """A size that is not a multiple of the region raises."""
        with pytest.raises(InvalidArgument):
            MaxPooling2DLayer(5, 4, 1)


class TestMaxOutLayer:
    """Tests for MaxOutLayer."""

    def test_forward_picks_best_input(self):
        """Each output is the largest (x + b) * w."""
        layer = MaxOutLayer(3, 2)
        # bias (3), then W (3 x 2)
        layer.vector_to_weights([0.0, 0.0, 0.0,
                                 1.0, 0.0,
                                 2.0, 1.0,
                                 0.5, 3.0])
        out = layer.feed_forward([1.0, 1.0, 1.0])
        np.testing.assert_allclose(out, [2.0, 3.0])
        np.testing.assert_array_equal(layer.winners, [1, 2])

    def test_backprop_only_winners(self):
        """Error flows to the winning inputs only."""
        layer = MaxOutLayer(3, 1)
        layer.vector_to_weights([0.0, 0.0, 0.0, 1.0, 4.0, 2.0])
        up = _Upstream([1.0, 1.0, 1.0])
        layer.feed_forward(up)
        layer.error[:] = [0.5]
        layer.back_prop_error(up)
        np.testing.assert_allclose(up.error, [0.0, 2.0, 0.0])

    def test_exploration_needs_rand(self):
        with pytest.raises(InvalidArgument):
            MaxOutLayer(3, 2, exploration_rate=0.1)

    def test_full_exploration_stays_in_range(self):
        """With exploration rate 1 every winner is random but valid."""
        layer = MaxOutLayer(5, 4, rand=Rand(0), exploration_rate=1.0)
        layer.feed_forward(np.ones(5))
        assert np.all((layer.winners >= 0) & (layer.winners < 5))

    def test_serialize_round_trip(self):
        layer = MaxOutLayer(3, 2, rand=Rand(4))
        doc = Doc()
        clone = MaxOutLayer.from_node(doc.from_json(doc.to_json(layer.serialize(doc))))
        np.testing.assert_allclose(clone.weights_to_vector(), layer.weights_to_vector())


class TestMixedLayer:
    """Tests for MixedLayer."""

    def _make(self):
        a = LinearLayer(2, 1)
        a.vector_to_weights([1.0, 0.0, 0.0])
        b = LinearLayer(2, 2)
        b.vector_to_weights([0.0, 1.0, 1.0, 0.0, 0.0, 0.0])
        return MixedLayer([a, b])

    def test_concatenates_outputs(self):
        """Output is the components' outputs side by side."""
        layer = self._make()
        np.testing.assert_allclose(layer.feed_forward([3.0, 5.0]), [3.0, 5.0, 3.0])

    def test_backprop_sums_components(self):
        """Upstream error is the sum over components."""
        layer = self._make()
        up = _Upstream([3.0, 5.0])
        layer.feed_forward(up)
        layer.error[:] = [1.0, 1.0, 1.0]
        layer.back_prop_error(up)
        np.testing.assert_allclose(up.error, [2.0, 1.0])

    def test_weight_vector_concatenates(self):
        layer = self._make()
        assert layer.count_weights() == 9
        np.testing.assert_allclose(layer.weights_to_vector()[:3], [1.0, 0.0, 0.0])

    def test_needs_two_components(self):
        """A single component is not enough."""
        layer = MixedLayer([LinearLayer(2, 1)])
        with pytest.raises(InvalidArgument):
            layer.feed_forward([1.0, 2.0])

    def test_mismatched_inputs(self):
        layer = MixedLayer([LinearLayer(2, 1)])
        with pytest.raises(InvalidArgument):
            layer.add_component(LinearLayer(3, 1))

    def test_no_components_after_use(self):
        """Components cannot be added once the layer has been used."""
        layer = self._make()
        layer.feed_forward([1.0, 1.0])
        with pytest.raises(InvalidArgument):
            layer.add_component(LinearLayer(2, 1))

    def test_failed_resize_leaves_components_unchanged(self):
        """If one component cannot take the new input size, none of them change."""
        layer = MixedLayer([LinearLayer(3, 2), Conv1DLayer(3, 1, 2, 1)])
        with pytest.raises(InvalidArgument):
            layer.resize_inputs(LinearLayer(1, 4))
        assert layer.components[0].inputs() == 3, f"Expected 3, got {layer.components[0].inputs()}"
        assert layer.inputs() == 3
        assert layer.feed_forward([1.0, 2.0, 3.0]).shape == (4,)

    def test_drop_out_reaches_components(self):
        """Dropping out updates the concatenated activation, component by component."""
        layer = MixedLayer([LinearLayer(2, 1), ActivationLayer(2, 'identity')])
        layer.components[0].vector_to_weights([1.0, 0.0, 0.0])
        np.testing.assert_allclose(layer.feed_forward([3.0, 5.0]), [3.0, 3.0, 5.0])
        layer.drop_out(Rand(0), 1.0)
        np.testing.assert_allclose(layer.activation, [0.0, 3.0, 5.0])


class TestDropOut:
    """Tests for drop_out across layer types."""

    def test_linear_extremes(self):
        """Probability 0 keeps every unit, probability 1 zeroes them all."""
        layer = LinearLayer(3, 5, rand=Rand(0))
        x = [1.0, -2.0, 0.5]
        expected = layer.feed_through(x)
        layer.drop_out(Rand(1), 0.0)
        np.testing.assert_allclose(layer.activation, expected)
        layer.drop_out(Rand(1), 1.0)
        assert np.all(layer.activation == 0.0), f"Expected all zeros, got {layer.activation}"

    def test_linear_matches_uniform_draws(self):
        """A unit is dropped exactly when its uniform draw falls below the probability."""
        layer = LinearLayer(2, 20, rand=Rand(2))
        expected = layer.feed_through([1.0, 1.0])
        expected[Rand(3).uniform_array(20) < 0.5] = 0.0
        layer.drop_out(Rand(3), 0.5)
        np.testing.assert_allclose(layer.activation, expected)

    def test_softmax_drops(self):
        layer = SoftmaxLayer(2, 3, rand=Rand(0))
        layer.feed_forward([1.0, 2.0])
        layer.drop_out(Rand(1), 1.0)
        assert np.all(layer.activation == 0.0)

    def test_weight_free_layers_unchanged(self):
        """Activation and pooling layers have nothing to drop."""
        act = ActivationLayer(3, 'tanh')
        before = act.feed_through([0.1, 0.2, 0.3])
        act.drop_out(Rand(0), 1.0)
        np.testing.assert_allclose(act.activation, before)

        pool = MaxPooling2DLayer(2, 2, 1)
        before = pool.feed_through([1.0, 2.0, 3.0, 4.0])
        pool.drop_out(Rand(0), 1.0)
        np.testing.assert_allclose(pool.activation, before)

    def test_maxout_not_supported(self):
        layer = MaxOutLayer(3, 2)
        with pytest.raises(NotSupported):
            layer.drop_out(Rand(0), 0.5)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
