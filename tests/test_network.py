"""
test_network.py
~~~~~~~~~~~~~~~

Unit and integration tests for forward propagation and training.
"""

import copy
import logging
import math
import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ffnn.activations import Activation
from ffnn.errors import ConfigError, ShapeError, StateError
from ffnn.layer import Layer
from ffnn.loss import binary_cross_entropy
from ffnn.network import Network, effective_learning_rate


@pytest.fixture
def simple_network():
    """Create a 3-4-1 network with deterministic weights."""
    return Network.from_topology([3, 4, 1], rng=7)


@pytest.fixture
def small_dataset():
    """Six samples of three features with a binary target."""
    rng = np.random.default_rng(3)
    x = rng.normal(size=(6, 3))
    y = (x[:, 0] > 0).astype(float).reshape(-1, 1)
    return x, y


def _snapshot(network):
    return (
        [w.values.copy() for w in network.weights],
        [layer.bias.copy() for layer in network.layers[1:]],
    )


@pytest.mark.unit
class TestConstruction:
    """Test network construction and the layer/weight shape invariant."""

    def test_weights_connect_consecutive_layers(self):
        """Test that weights[l] is (layers[l].size, layers[l+1].size)."""
        net = Network.from_topology([5, 7, 3, 1])
        assert len(net.weights) == len(net.layers) - 1
        for l, w in enumerate(net.weights):
            assert w.rows == net.layers[l].size
            assert w.cols == net.layers[l + 1].size

    def test_initial_weights_scaled(self):
        """Test that uniform(-1, 1) draws are scaled by sqrt(2 / rows)."""
        net = Network.from_topology([8, 2, 1], rng=0)
        for w in net.weights:
            limit = math.sqrt(2.0 / w.rows)
            assert np.all(np.abs(w.values) <= limit)

    def test_injected_rng_is_reproducible(self):
        a = Network.from_topology([3, 4, 1], rng=np.random.default_rng(11))
        b = Network.from_topology([3, 4, 1], rng=np.random.default_rng(11))
        for wa, wb in zip(a.weights, b.weights):
            assert np.array_equal(wa.values, wb.values)

    def test_biases_start_at_zero(self, simple_network):
        for layer in simple_network.layers[1:]:
            assert np.all(layer.bias == 0.0)

    def test_default_activations(self):
        net = Network.from_topology([24, 12, 1])
        assert net.activations == ['none', 'relu', 'sigmoid']
        assert net.sizes == [24, 12, 1]

    def test_networks_do_not_share_layers(self, small_dataset):
        """Test that two networks built from one layer list train independently."""
        x, y = small_dataset
        layers = [
            Layer(0, 3),
            Layer(1, 4, Activation.RELU),
            Layer(2, 1, Activation.SIGMOID),
        ]
        a = Network(layers, rng=0)
        b = Network(layers, rng=1)
        b_bias = [layer.bias.copy() for layer in b.layers[1:]]

        a.train(x, y, 0.5, epochs=3, batch_size=2, verbose=False)

        for layer, before in zip(b.layers[1:], b_bias):
            assert np.array_equal(layer.bias, before)
        for original in layers[1:]:
            assert np.all(original.bias == 0.0)
        assert all(la is not lb for la, lb in zip(a.layers, b.layers))

    def test_needs_two_layers(self):
        with pytest.raises(ConfigError):
            Network([Layer(0, 3)])

    def test_layer_indices_must_match_positions(self):
        with pytest.raises(ConfigError):
            Network([Layer(0, 3), Layer(2, 1, Activation.SIGMOID)])

    def test_mismatched_activation_count(self):
        with pytest.raises(ConfigError):
            Network.from_topology([3, 2, 1], ['none', 'sigmoid'])


@pytest.mark.unit
class TestForward:
    """Test forward propagation."""

    def test_forward_matches_hand_computation(self):
        """Test z = bias + a @ W and a = f(z) for a fixed 2-2-1 network."""
        net = Network.from_topology([2, 2, 1], ['none', 'relu', 'sigmoid'])
        net.weights[0].values[...] = [[1.0, -1.0], [0.5, 2.0]]
        net.weights[1].values[...] = [[1.0], [-0.5]]
        net.layers[1].bias[...] = [0.1, -0.2]
        net.layers[2].bias[...] = [0.3]

        x = np.array([2.0, 1.0])
        hidden = np.maximum([2.0 + 0.5 + 0.1, -2.0 + 2.0 - 0.2], 0.0)
        z_out = hidden[0] * 1.0 + hidden[1] * -0.5 + 0.3
        expected = 1.0 / (1.0 + math.exp(-z_out))

        out = net.forward(x)
        assert out.shape == (1,)
        assert out[0] == pytest.approx(expected)
        assert np.allclose(net.layers[1].z, [2.6, -0.2])

    def test_forward_is_pure(self, simple_network):
        """Test that earlier calls do not influence later results."""
        x1 = [0.5, -1.0, 2.0]
        x2 = [3.0, 0.0, -0.5]
        first = simple_network.forward(x1)
        simple_network.forward(x2)
        again = simple_network.forward(x1)
        assert np.array_equal(first, again)

    def test_forward_returns_copy(self, simple_network):
        out = simple_network.forward([1.0, 2.0, 3.0])
        out[0] = 99.0
        assert simple_network.layers[-1].a[0] != 99.0

    def test_predict_is_alias(self, simple_network):
        x = [0.1, 0.2, 0.3]
        assert np.array_equal(simple_network.predict(x), simple_network.forward(x))

    def test_predict_returns_probability(self, simple_network):
        out = simple_network.predict([100.0, -50.0, 3.0])
        assert 0.0 <= out[0] <= 1.0

    @pytest.mark.parametrize("x", [[1.0, 2.0], [1.0, 2.0, 3.0, 4.0], [[1.0, 2.0, 3.0]]])
    def test_wrong_input_length_fails(self, simple_network, x):
        with pytest.raises(ShapeError):
            simple_network.predict(x)

    def test_hidden_layer_without_activation_fails(self):
        net = Network.from_topology([2, 2, 1], ['none', 'none', 'sigmoid'])
        with pytest.raises(StateError):
            net.forward([1.0, 1.0])


@pytest.mark.unit
class TestLearningRateSchedule:
    """Test the per-epoch learning-rate decay."""

    def test_known_values(self):
        assert effective_learning_rate(0.1, 0) == pytest.approx(0.1)
        assert effective_learning_rate(0.1, 100) == pytest.approx(0.0670, abs=5e-4)

    def test_strictly_decreasing_until_floor(self):
        rates = [effective_learning_rate(0.1, epoch) for epoch in range(1000)]
        assert all(b < a for a, b in zip(rates, rates[1:]))

    def test_floored(self):
        assert effective_learning_rate(0.1, 5000) == 1e-4
        assert min(effective_learning_rate(0.1, e) for e in range(0, 20000, 250)) == 1e-4


@pytest.mark.unit
class TestTrainValidation:
    """Test training preconditions."""

    @pytest.mark.parametrize("kwargs", [
        {'learning_rate': 0.0},
        {'learning_rate': -0.1},
        {'epochs': 0},
        {'batch_size': 0},
    ])
    def test_non_positive_hyperparameters(self, simple_network, small_dataset, kwargs):
        x, y = small_dataset
        params = {'learning_rate': 0.1, 'epochs': 1, 'batch_size': 2, 'verbose': False}
        params.update(kwargs)
        with pytest.raises(ConfigError):
            simple_network.train(x, y, **params)

    def test_mismatched_lengths(self, simple_network, small_dataset):
        x, y = small_dataset
        with pytest.raises(ConfigError):
            simple_network.train(x, y[:-1], 0.1, 1, verbose=False)

    def test_empty_data(self, simple_network):
        with pytest.raises(ConfigError):
            simple_network.train([], [], 0.1, 1, verbose=False)

    def test_bad_input_shape_leaves_network_unchanged(self, simple_network, small_dataset):
        """Test that shapes are checked for every sample before any update."""
        x, y = small_dataset
        inputs = list(x) + [np.zeros(2)]
        targets = list(y) + [[1.0]]
        before = _snapshot(simple_network)
        with pytest.raises(ShapeError):
            simple_network.train(inputs, targets, 0.1, 1, verbose=False)
        after = _snapshot(simple_network)
        for a, b in zip(before[0] + before[1], after[0] + after[1]):
            assert np.array_equal(a, b)

    def test_bad_target_shape(self, simple_network, small_dataset):
        x, _ = small_dataset
        with pytest.raises(ShapeError):
            simple_network.train(x, [[0.0, 1.0]] * len(x), 0.1, 1, verbose=False)

    def test_scalar_targets_accepted_for_single_output(self, simple_network, small_dataset):
        x, y = small_dataset
        losses = simple_network.train(x, y.reshape(-1), 0.1, 2, verbose=False)
        assert len(losses) == 2


@pytest.mark.unit
class TestTrainingMechanics:
    """Test batching, averaging and gradient correctness."""

    def test_full_batch_update_is_mean_of_sample_updates(self, simple_network, small_dataset):
        """Test that one full batch applies the mean of per-sample gradients."""
        x, y = small_dataset
        n = len(x)
        base_w, base_b = _snapshot(simple_network)

        full = copy.deepcopy(simple_network)
        full.train(x, y, 0.1, epochs=1, batch_size=n, verbose=False)

        sum_w = [np.zeros_like(w) for w in base_w]
        sum_b = [np.zeros_like(b) for b in base_b]
        for k in range(n):
            single = copy.deepcopy(simple_network)
            single.train(x[k:k + 1], y[k:k + 1], 0.1, epochs=1, batch_size=1, verbose=False)
            w, b = _snapshot(single)
            for l in range(len(sum_w)):
                sum_w[l] += w[l] - base_w[l]
                sum_b[l] += b[l] - base_b[l]

        full_w, full_b = _snapshot(full)
        for l in range(len(sum_w)):
            assert np.allclose(full_w[l] - base_w[l], sum_w[l] / n)
            assert np.allclose(full_b[l] - base_b[l], sum_b[l] / n)

    def test_truncated_final_batch_averages_over_actual_size(self, simple_network):
        """Test that a 1-sample final batch is not divided by batch_size."""
        rng = np.random.default_rng(5)
        x = rng.normal(size=(5, 3))
        y = rng.integers(0, 2, size=(5, 1)).astype(float)

        batched = copy.deepcopy(simple_network)
        batched.train(x, y, 0.05, epochs=1, batch_size=4, verbose=False)

        stepwise = copy.deepcopy(simple_network)
        stepwise.train(x[:4], y[:4], 0.05, epochs=1, batch_size=4, verbose=False)
        stepwise.train(x[4:], y[4:], 0.05, epochs=1, batch_size=1, verbose=False)

        for a, b in zip(_snapshot(batched)[0], _snapshot(stepwise)[0]):
            assert np.allclose(a, b)

    def test_one_update_per_batch(self, simple_network):
        x = np.zeros((5, 3))
        y = np.zeros((5, 1))
        calls = []
        simple_network.train(x, y, 0.1, epochs=3, batch_size=2, verbose=False,
                             yield_func=lambda: calls.append(1))
        assert len(calls) == 3 * 3

    def test_gradient_matches_finite_differences(self):
        """Test backpropagated gradients against central differences of BCE."""
        net = Network.from_topology([3, 5, 4, 1], rng=2)
        for layer in net.layers[1:]:
            layer.bias[...] = 0.05
        x = np.array([0.3, -0.7, 1.1])
        y = np.array([1.0])
        lr = 1e-3

        trained = copy.deepcopy(net)
        trained.train([x], [y], lr, epochs=1, batch_size=1, verbose=False)

        def loss_of(network):
            return binary_cross_entropy(network.forward(x), y)

        h = 1e-6
        for l, w in enumerate(net.weights):
            for i in range(w.rows):
                for j in range(w.cols):
                    plus, minus = copy.deepcopy(net), copy.deepcopy(net)
                    plus.weights[l][i, j] = w[i, j] + h
                    minus.weights[l][i, j] = w[i, j] - h
                    numeric = (loss_of(plus) - loss_of(minus)) / (2 * h)
                    analytic = (w[i, j] - trained.weights[l][i, j]) / lr
                    assert analytic == pytest.approx(numeric, rel=1e-4, abs=1e-7)

    def test_shape_invariant_holds_after_training(self, simple_network, small_dataset):
        x, y = small_dataset
        simple_network.train(x, y, 0.1, epochs=5, batch_size=4, verbose=False)
        for l, w in enumerate(simple_network.weights):
            assert w.shape == (simple_network.layers[l].size, simple_network.layers[l + 1].size)

    def test_callback_reports_every_epoch(self, simple_network, small_dataset):
        x, y = small_dataset
        updates = []
        losses = simple_network.train(x, y, 0.2, epochs=4, batch_size=3,
                                      verbose=False, callback=updates.append)
        assert [u['epoch'] for u in updates] == [1, 2, 3, 4]
        assert all(u['total_epochs'] == 4 for u in updates)
        assert [u['loss'] for u in updates] == losses
        assert updates[2]['learning_rate'] == pytest.approx(effective_learning_rate(0.2, 2))

    def test_epoch_loss_is_mean_over_all_samples(self, simple_network, small_dataset):
        """Test that the reported BCE does not depend on the batching."""
        x, y = small_dataset
        expected = np.mean([
            binary_cross_entropy(simple_network.forward(xi), yi) for xi, yi in zip(x, y)
        ])
        losses = copy.deepcopy(simple_network).train(
            x, y, 0.1, epochs=1, batch_size=len(x), verbose=False
        )
        assert losses[0] == pytest.approx(expected)

    def test_verbose_logs_progress_every_100_epochs(self, small_dataset, caplog):
        x, y = small_dataset
        net = Network.from_topology([3, 2, 1], rng=0)
        with caplog.at_level(logging.INFO, logger='ffnn.network'):
            net.train(x, y, 0.05, epochs=101, batch_size=6, verbose=True)
        progress = [r.message for r in caplog.records if 'EPOCH :' in r.message]
        assert len(progress) == 2
        assert progress[0].startswith('[0%] EPOCH : 0 | BCE:')
        assert progress[1].startswith('[99%] EPOCH : 100 | BCE:')
        assert any('Training done' in r.message for r in caplog.records)

    def test_quiet_training_logs_nothing(self, simple_network, small_dataset, caplog):
        x, y = small_dataset
        with caplog.at_level(logging.INFO, logger='ffnn.network'):
            simple_network.train(x, y, 0.05, epochs=3, verbose=False)
        assert not caplog.records


@pytest.mark.integration
class TestConvergence:
    """Training runs on synthetic data."""

    def test_linearly_separable_data(self):
        """Test that mean BCE drops below 0.1 on a separable 2-feature set."""
        rng = np.random.default_rng(0)
        x = rng.uniform(-2.0, 2.0, size=(400, 2))
        s = x.sum(axis=1)
        keep = np.abs(s) > 0.5
        x, s = x[keep][:200], s[keep][:200]
        y = (s > 0).astype(float).reshape(-1, 1)
        assert len(x) == 200

        net = Network.from_topology([2, 8, 1], rng=1)
        losses = net.train(x, y, 0.3, epochs=400, batch_size=4, verbose=False)

        assert losses[-1] < 0.1
        assert losses[-1] < losses[0]

    def test_end_to_end_sensor_topology(self):
        """Test the 24-12-1 configuration used for the sensor data."""
        rng = np.random.default_rng(42)
        features = rng.uniform(0.0, 5.0, size=(200, 24))
        direction = rng.normal(size=24)
        scores = (features - 2.5) @ direction
        labels = (scores > 0).astype(float).reshape(-1, 1)
        train_x, test_x = features[:160], features[160:]
        train_y = labels[:160]

        net = Network([
            Layer(0, 24, Activation.NONE),
            Layer(1, 12, Activation.RELU),
            Layer(2, 1, Activation.SIGMOID),
        ], rng=rng)
        losses = net.train(train_x, train_y, 0.029, epochs=1300, batch_size=8, verbose=False)

        assert len(losses) == 1300
        assert np.all(np.isfinite(losses))
        assert losses[-1] < losses[0]
        for x in test_x:
            p = net.predict(x)[0]
            assert 0.0 <= p <= 1.0
