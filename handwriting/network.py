"""
network.py
~~~~~~~~~~

Feed-forward network trained with mini-batch stochastic gradient descent.

Gradients are computed by explicit backpropagation through a chain of
sigmoid layers under the quadratic cost. A minibatch is run as a single
matrix pass with one column per sample, so each layer accumulates the
sum of the per-sample gradients (up to floating-point summation order)
before the averaged step is applied.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from handwriting.exceptions import (
    ConfigurationError,
    DataFormatError,
    DimensionMismatch,
    EmptyBatchError
)
from handwriting.layer import Layer
from handwriting.samples import Sample, as_column, stack_columns

logger = logging.getLogger(__name__)


def shuffle(samples: List[Any], rng: np.random.Generator) -> None:
    """Shuffle ``samples`` in place (Fisher-Yates) using ``rng``."""
    n = len(samples)
    while n > 1:
        n -= 1
        k = int(rng.integers(n + 1))
        samples[k], samples[n] = samples[n], samples[k]


def mini_batches(samples: Sequence[Any], mini_batch_size: int) -> List[Sequence[Any]]:
    """
    Split ``samples`` into contiguous batches of ``mini_batch_size``.

    The last batch holds the remainder and may be shorter.

    Raises:
        EmptyBatchError: If ``mini_batch_size`` is less than one
    """
    if mini_batch_size < 1:
        raise EmptyBatchError(
            f"mini_batch_size must be at least 1, got {mini_batch_size}"
        )
    return [
        samples[k:k + mini_batch_size]
        for k in range(0, len(samples), mini_batch_size)
    ]


class Network:
    """An ordered chain of ``Layer`` objects."""

    def __init__(
        self,
        sizes: Sequence[int],
        rng: Optional[np.random.Generator] = None
    ):
        """
        Build one layer per consecutive pair of widths.

        ``Network([784, 30, 10])`` has a 784-wide input, a hidden layer
        of 30 neurons and 10 outputs.

        Args:
            sizes: Layer widths, input first
            rng: Random generator for initialization and shuffling

        Raises:
            ConfigurationError: On fewer than two widths or a
                non-positive width
        """
        sizes = list(sizes)
        if len(sizes) < 2:
            raise ConfigurationError(
                f"A network needs at least 2 layer sizes, got {sizes}"
            )
        for size in sizes:
            if isinstance(size, bool) or not isinstance(size, (int, np.integer)) or size < 1:
                raise ConfigurationError(
                    f"Layer sizes must be positive integers, got {sizes}"
                )

        self.sizes = [int(size) for size in sizes]
        self.rng = rng if rng is not None else np.random.default_rng()
        self.layers = [
            Layer(x, y, self.rng)
            for x, y in zip(self.sizes[:-1], self.sizes[1:])
        ]

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    @property
    def weights(self) -> List[np.ndarray]:
        return [layer.weights for layer in self.layers]

    @property
    def biases(self) -> List[np.ndarray]:
        return [layer.biases for layer in self.layers]

    def feedforward(self, a) -> np.ndarray:
        """Return the output of the network for input ``a``."""
        for layer in self.layers:
            a = layer.feedforward(a)
        return a

    def evaluate(self, test_data: Sequence[Sample]) -> int:
        """
        Count the samples whose largest output matches the target's class.

        Ties go to the lowest output index.
        """
        if len(test_data) == 0:
            return 0
        outputs = self.feedforward(stack_columns([x for x, _ in test_data]))
        targets = self._targets([y for _, y in test_data])
        predicted = np.argmax(outputs, axis=0)
        actual = np.argmax(targets, axis=0)
        return int(np.sum(predicted == actual))

    def SGD(
        self,
        training_data: Sequence[Sample],
        epochs: int,
        mini_batch_size: int,
        eta: float,
        test_data: Optional[Sequence[Sample]] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> None:
        """
        Train the network with mini-batch stochastic gradient descent.

        Args:
            training_data: Samples to train on
            epochs: Number of passes over the training data
            mini_batch_size: Samples per gradient step
            eta: Learning rate
            test_data: If given, evaluated after each epoch
            callback: Called after each epoch with a progress dict
                (``epoch``, ``total_epochs``, ``correct``, ``total``,
                ``accuracy``, ``elapsed_time``)
            yield_func: Called after each minibatch, lets a cooperative
                scheduler run other tasks during training

        Raises:
            ConfigurationError: If ``epochs`` is negative
            EmptyBatchError: If ``mini_batch_size`` is less than one
        """
        if epochs < 0:
            raise ConfigurationError(f"epochs must be non-negative, got {epochs}")
        if mini_batch_size < 1:
            raise EmptyBatchError(
                f"mini_batch_size must be at least 1, got {mini_batch_size}"
            )

        training_data = list(training_data)
        n_test = len(test_data) if test_data is not None else None
        start_time = time.time()

        for j in range(epochs):
            shuffle(training_data, self.rng)
            for mini_batch in mini_batches(training_data, mini_batch_size):
                self.update_mini_batch(mini_batch, eta)
                if yield_func is not None:
                    yield_func()

            progress: Dict[str, Any] = {
                'epoch': j + 1,
                'total_epochs': epochs,
                'correct': None,
                'total': None,
                'accuracy': None,
                'elapsed_time': time.time() - start_time
            }
            if test_data is not None:
                correct = self.evaluate(test_data)
                logger.info(f"Epoch {j}: {correct} / {n_test}")
                progress['correct'] = correct
                progress['total'] = n_test
                progress['accuracy'] = correct / n_test if n_test else 0.0
            else:
                logger.info(f"Epoch {j} complete")

            if callback is not None:
                callback(progress)

    def update_mini_batch(self, mini_batch: Sequence[Sample], eta: float) -> None:
        """
        Backpropagate every sample in ``mini_batch``, then step each layer.

        The learning rate is divided by the actual batch length, so a short
        final batch takes a larger per-sample step.

        Raises:
            EmptyBatchError: If ``mini_batch`` is empty
        """
        if len(mini_batch) == 0:
            raise EmptyBatchError("Cannot update from an empty minibatch")

        x = stack_columns([sample[0] for sample in mini_batch])
        y = self._targets([sample[1] for sample in mini_batch])
        self._backprop_columns(x, y)

        for layer in self.layers:
            layer.apply_deltas(eta / len(mini_batch))

    def backprop(self, sample: Sample) -> None:
        """Accumulate the gradient of the cost for ``sample`` into every layer."""
        x, y = sample
        self._backprop_columns(as_column(x), self._targets([y]))

    def _backprop_columns(self, x: np.ndarray, y: np.ndarray) -> None:
        activation = x
        for layer in self.layers:
            activation = layer.train_forward(activation)

        error = self.cost_derivative(activation, y)

        for layer in reversed(self.layers):
            delta = layer.update_deltas(error)
            error = layer.train_backward(delta)

    def _targets(self, targets: Sequence[np.ndarray]) -> np.ndarray:
        y = stack_columns(targets)
        if y.shape[0] != self.sizes[-1]:
            raise DimensionMismatch("target width", self.sizes[-1], y.shape[0])
        if not (np.all((y == 0.0) | (y == 1.0)) and np.all(y.sum(axis=0) == 1.0)):
            raise DataFormatError("Targets must be one-hot vectors")
        return y

    @staticmethod
    def cost_derivative(output_activations: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Partial derivatives of the quadratic cost w.r.t. the output."""
        return output_activations - y
