"""
test_network.py
~~~~~~~~~~~~~~~

Unit and integration tests for the network and its training loop.
"""

import copy
import math

import numpy as np
import pytest

from handwriting.exceptions import (
    ConfigurationError,
    DataFormatError,
    DimensionMismatch,
    EmptyBatchError
)
from handwriting.network import Network, mini_batches, shuffle
from handwriting.samples import Sample, vectorized_result


def quadratic_cost(net: Network, sample: Sample) -> float:
    output = net.feedforward(sample.input)
    return 0.5 * float(np.sum((output - sample.target) ** 2))


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def simple_network(rng):
    """Create a simple 3-layer network for testing."""
    return Network([3, 4, 2], rng=rng)


@pytest.fixture
def training_data(rng):
    """Random 3-wide inputs with alternating one-hot targets."""
    data = []
    for i in range(10):
        x = rng.random((3, 1))
        y = vectorized_result(i % 2, num_classes=2)
        data.append(Sample(x, y))
    return data


@pytest.fixture
def separable_data():
    """Two classes told apart by which input is lit."""
    return [
        Sample(np.array([[1.0], [0.0]]), vectorized_result(0, 2)),
        Sample(np.array([[0.0], [1.0]]), vectorized_result(1, 2)),
        Sample(np.array([[0.9], [0.1]]), vectorized_result(0, 2)),
        Sample(np.array([[0.1], [0.9]]), vectorized_result(1, 2)),
    ]


@pytest.mark.unit
class TestNetworkConstruction:
    """Tests for building networks from layer sizes."""

    def test_layers_are_chained(self, simple_network):
        assert simple_network.sizes == [3, 4, 2]
        assert simple_network.num_layers == 2
        assert [w.shape for w in simple_network.weights] == [(4, 3), (2, 4)]
        assert [b.shape for b in simple_network.biases] == [(4, 1), (2, 1)]

    @pytest.mark.parametrize("sizes", [[], [5], [3, 0, 2], [3, -1], [2.5, 2]])
    def test_invalid_sizes(self, sizes):
        with pytest.raises(ConfigurationError):
            Network(sizes)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            Network([1])

    def test_seeded_networks_are_identical(self):
        a = Network([4, 3, 2], rng=np.random.default_rng(5))
        b = Network([4, 3, 2], rng=np.random.default_rng(5))
        for wa, wb in zip(a.weights, b.weights):
            assert np.array_equal(wa, wb)


@pytest.mark.unit
class TestFeedforwardAndEvaluate:
    """Tests for inference and accuracy counting."""

    def test_output_shape_and_range(self, simple_network, rng):
        output = simple_network.feedforward(rng.random((3, 1)))
        assert output.shape == (2, 1)
        assert np.all((output > 0) & (output < 1))

    def test_wrong_input_width(self, simple_network):
        with pytest.raises(DimensionMismatch):
            simple_network.feedforward(np.zeros((5, 1)))

    def test_evaluate_counts_matches(self):
        net = Network([2, 2], rng=np.random.default_rng(0))
        net.layers[0].weights = np.array([[10.0, 0.0], [0.0, 10.0]])
        net.layers[0].biases = np.array([[-5.0], [-5.0]])

        samples = [
            Sample(np.array([[1.0], [0.0]]), vectorized_result(0, 2)),
            Sample(np.array([[0.0], [1.0]]), vectorized_result(1, 2)),
            Sample(np.array([[1.0], [0.0]]), vectorized_result(1, 2)),
        ]
        assert net.evaluate(samples) == 2

    def test_evaluate_ties_go_to_first_index(self):
        net = Network([2, 2], rng=np.random.default_rng(0))
        net.layers[0].weights = np.zeros((2, 2))
        net.layers[0].biases = np.zeros((2, 1))

        zero = np.zeros((2, 1))
        assert net.evaluate([Sample(zero, vectorized_result(0, 2))]) == 1
        assert net.evaluate([Sample(zero, vectorized_result(1, 2))]) == 0

    def test_evaluate_empty(self, simple_network):
        assert simple_network.evaluate([]) == 0

    def test_evaluate_wrong_target_width(self, simple_network, rng):
        sample = Sample(rng.random((3, 1)), vectorized_result(0, 3))
        with pytest.raises(DimensionMismatch):
            simple_network.evaluate([sample])

    def test_evaluate_mixed_input_widths(self, simple_network):
        samples = [
            Sample(np.zeros((3, 1)), vectorized_result(0, 2)),
            Sample(np.zeros((4, 1)), vectorized_result(1, 2)),
        ]
        with pytest.raises(DimensionMismatch) as exc_info:
            simple_network.evaluate(samples)
        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 4

    def test_evaluate_rejects_soft_target(self, simple_network, rng):
        sample = Sample(rng.random((3, 1)), np.array([[0.5], [0.5]]))
        with pytest.raises(DataFormatError):
            simple_network.evaluate([sample])


@pytest.mark.unit
class TestShuffleAndBatching:
    """Tests for epoch shuffling and minibatch partitioning."""

    def test_shuffle_is_permutation(self, rng):
        items = list(range(50))
        shuffle(items, rng)
        assert len(items) == 50
        assert sorted(items) == list(range(50))

    def test_shuffle_reproducible(self):
        a, b = list(range(20)), list(range(20))
        shuffle(a, np.random.default_rng(3))
        shuffle(b, np.random.default_rng(3))
        assert a == b

    @pytest.mark.parametrize("n,size", [(10, 3), (9, 3), (1, 5), (0, 4), (7, 1)])
    def test_partition(self, n, size):
        batches = mini_batches(list(range(n)), size)
        assert len(batches) == math.ceil(n / size)
        assert sum(len(b) for b in batches) == n
        assert all(len(b) == size for b in batches[:-1])
        assert [x for b in batches for x in b] == list(range(n))

    def test_zero_batch_size(self):
        with pytest.raises(EmptyBatchError):
            mini_batches([1, 2, 3], 0)


@pytest.mark.unit
class TestBackprop:
    """Tests for gradient computation."""

    def test_gradient_matches_finite_differences(self):
        net = Network([2, 2, 1], rng=np.random.default_rng(99))
        sample = Sample(np.array([[0.3], [0.7]]), np.array([[1.0]]))

        net.backprop(sample)

        eps = 1e-5
        for layer in net.layers:
            for params, grads in ((layer.weights, layer.delta_weights),
                                  (layer.biases, layer.delta_biases)):
                for index in np.ndindex(params.shape):
                    original = params[index]
                    params[index] = original + eps
                    cost_plus = quadratic_cost(net, sample)
                    params[index] = original - eps
                    cost_minus = quadratic_cost(net, sample)
                    params[index] = original

                    numeric = (cost_plus - cost_minus) / (2 * eps)
                    assert grads[index] == pytest.approx(numeric, abs=1e-4)

    def test_backprop_does_not_change_parameters(self, simple_network, training_data):
        weights = [w.copy() for w in simple_network.weights]
        simple_network.backprop(training_data[0])
        for before, after in zip(weights, simple_network.weights):
            assert np.array_equal(before, after)

    def test_backprop_wrong_target_width(self, simple_network, rng):
        with pytest.raises(DimensionMismatch):
            simple_network.backprop(Sample(rng.random((3, 1)), np.ones((3, 1))))


@pytest.mark.unit
class TestUpdateMiniBatch:
    """Tests for the per-batch parameter update."""

    def test_batch_equals_sequential_backprop(self, simple_network, training_data):
        reference = copy.deepcopy(simple_network)
        batch = training_data[:4]

        simple_network.update_mini_batch(batch, 0.5)

        for sample in batch:
            reference.backprop(sample)
        for layer in reference.layers:
            layer.apply_deltas(0.5 / len(batch))

        for ours, theirs in zip(simple_network.layers, reference.layers):
            assert np.allclose(ours.weights, theirs.weights)
            assert np.allclose(ours.biases, theirs.biases)

    def test_short_batch_normalized_by_actual_length(self, simple_network, training_data):
        reference = copy.deepcopy(simple_network)
        sample = training_data[0]

        simple_network.update_mini_batch([sample], 3.0)

        reference.backprop(sample)
        for layer in reference.layers:
            layer.apply_deltas(3.0)

        for ours, theirs in zip(simple_network.layers, reference.layers):
            assert np.allclose(ours.weights, theirs.weights)

    def test_accumulators_cleared(self, simple_network, training_data):
        simple_network.update_mini_batch(training_data[:3], 1.0)
        for layer in simple_network.layers:
            assert not np.any(layer.delta_weights)
            assert not np.any(layer.delta_biases)

    def test_empty_batch(self, simple_network):
        with pytest.raises(EmptyBatchError):
            simple_network.update_mini_batch([], 1.0)

    def test_mixed_input_widths(self, simple_network):
        batch = [
            Sample(np.zeros((3, 1)), vectorized_result(0, 2)),
            Sample(np.zeros((2, 1)), vectorized_result(1, 2)),
        ]
        weights = [w.copy() for w in simple_network.weights]

        with pytest.raises(DimensionMismatch):
            simple_network.update_mini_batch(batch, 1.0)

        for before, after in zip(weights, simple_network.weights):
            assert np.array_equal(before, after)

    def test_rejects_target_that_is_not_one_hot(self, simple_network, rng):
        batch = [Sample(rng.random((3, 1)), np.array([[1.0], [1.0]]))]
        with pytest.raises(DataFormatError):
            simple_network.update_mini_batch(batch, 1.0)


@pytest.mark.integration
class TestSGD:
    """Tests for the full training loop."""

    def test_learns_separable_data(self, separable_data):
        net = Network([2, 2], rng=np.random.default_rng(2024))
        net.SGD(separable_data, epochs=300, mini_batch_size=2, eta=3.0)
        assert net.evaluate(separable_data) == len(separable_data)

    def test_callback_reports_each_epoch(self, simple_network, training_data):
        reports = []
        simple_network.SGD(
            training_data,
            epochs=3,
            mini_batch_size=4,
            eta=0.1,
            test_data=training_data,
            callback=reports.append
        )

        assert [r['epoch'] for r in reports] == [1, 2, 3]
        assert all(r['total_epochs'] == 3 for r in reports)
        assert all(r['total'] == len(training_data) for r in reports)
        assert all(0 <= r['correct'] <= len(training_data) for r in reports)
        assert all(r['accuracy'] == r['correct'] / r['total'] for r in reports)

    def test_callback_without_test_data(self, simple_network, training_data):
        reports = []
        simple_network.SGD(training_data, 1, 5, 0.1, callback=reports.append)
        assert reports[0]['correct'] is None
        assert reports[0]['accuracy'] is None

    def test_yield_func_called_per_batch(self, simple_network, training_data):
        calls = []
        simple_network.SGD(training_data, 2, 4, 0.1,
                           yield_func=lambda: calls.append(1))
        # 10 samples in batches of 4 -> 3 batches per epoch
        assert len(calls) == 6

    def test_caller_list_not_reordered(self, simple_network, training_data):
        original = list(training_data)
        simple_network.SGD(training_data, 1, 3, 0.1)
        assert all(a is b for a, b in zip(original, training_data))

    def test_progress_logged(self, simple_network, training_data, caplog):
        with caplog.at_level('INFO', logger='handwriting.network'):
            simple_network.SGD(training_data, 2, 5, 0.1, test_data=training_data[:4])
        assert "Epoch 0: " in caplog.text
        assert "/ 4" in caplog.text

        caplog.clear()
        with caplog.at_level('INFO', logger='handwriting.network'):
            simple_network.SGD(training_data, 1, 5, 0.1)
        assert "Epoch 0 complete" in caplog.text

    def test_seeded_training_is_reproducible(self, training_data):
        a = Network([3, 4, 2], rng=np.random.default_rng(8))
        b = Network([3, 4, 2], rng=np.random.default_rng(8))
        a.SGD(training_data, 2, 3, 0.5)
        b.SGD(training_data, 2, 3, 0.5)
        for wa, wb in zip(a.weights, b.weights):
            assert np.array_equal(wa, wb)

    def test_invalid_hyperparameters(self, simple_network, training_data):
        with pytest.raises(EmptyBatchError):
            simple_network.SGD(training_data, 1, 0, 0.1)
        with pytest.raises(ConfigurationError):
            simple_network.SGD(training_data, -1, 5, 0.1)
