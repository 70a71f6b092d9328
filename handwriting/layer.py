"""
layer.py
~~~~~~~~

A fully-connected sigmoid layer with its own gradient accumulators.

Every operation takes column vectors. A matrix with several columns is
treated as several samples processed side by side, which is how the
network runs a whole minibatch in one pass.
"""

from typing import Optional

import numpy as np

from handwriting.exceptions import (
    ConfigurationError,
    DimensionMismatch,
    TrainingStateError
)


def sigmoid(z):
    """
    The sigmoid function, evaluated elementwise.

    Negative inputs use ``e^z / (1 + e^z)`` so that ``exp`` never
    overflows for large-magnitude ``z``.
    """
    z = np.asarray(z, dtype=float)
    out = np.empty(z.shape)
    flat_z = z.reshape(-1)
    flat_out = out.reshape(-1)

    positive = flat_z >= 0
    flat_out[positive] = 1.0 / (1.0 + np.exp(-flat_z[positive]))
    exp_z = np.exp(flat_z[~positive])
    flat_out[~positive] = exp_z / (1.0 + exp_z)

    if out.ndim == 0:
        return float(out)
    return out


def sigmoid_prime(z):
    """Derivative of the sigmoid function."""
    s = sigmoid(z)
    return s * (1 - s)


def _columns(vector, rows: int, what: str) -> np.ndarray:
    """Return ``vector`` as a ``(rows, k)`` float matrix."""
    array = np.asarray(vector, dtype=float)
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    if array.ndim != 2:
        raise DimensionMismatch(f"{what} dimensions", 2, array.ndim)
    if array.shape[0] != rows:
        raise DimensionMismatch(what, rows, array.shape[0])
    return array


class Layer:
    """
    Maps ``num_inputs`` activations to ``num_outputs`` sigmoid outputs.

    ``weights`` has shape ``(num_outputs, num_inputs)`` and ``biases``
    shape ``(num_outputs, 1)``. ``delta_weights`` and ``delta_biases``
    collect gradients during a minibatch and are zero outside one.
    """

    def __init__(
        self,
        num_inputs: int,
        num_outputs: int,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Allocate parameters, uniformly random in [-1, 1).

        Args:
            num_inputs: Width of the layer's input
            num_outputs: Number of neurons
            rng: Random generator used for initialization

        Raises:
            ConfigurationError: If either width is not positive
        """
        if num_inputs < 1 or num_outputs < 1:
            raise ConfigurationError(
                f"Layer widths must be positive, got {num_inputs}->{num_outputs}"
            )
        if rng is None:
            rng = np.random.default_rng()

        self.num_inputs = num_inputs
        self.num_outputs = num_outputs

        self.weights = rng.uniform(-1.0, 1.0, size=(num_outputs, num_inputs))
        self.biases = rng.uniform(-1.0, 1.0, size=(num_outputs, 1))

        self.delta_weights = np.zeros((num_outputs, num_inputs))
        self.delta_biases = np.zeros((num_outputs, 1))

        # Forward cache, valid from train_forward until update_deltas
        self._activation: Optional[np.ndarray] = None
        self._z: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return f"Layer({self.num_inputs}, {self.num_outputs})"

    def feedforward(self, a) -> np.ndarray:
        """Return ``sigmoid(W.a + b)`` without touching layer state."""
        a = _columns(a, self.num_inputs, "layer input")
        return sigmoid(np.dot(self.weights, a) + self.biases)

    def train_forward(self, a) -> np.ndarray:
        """Same as ``feedforward``, caching the input and ``z`` for backprop."""
        a = _columns(a, self.num_inputs, "layer input")
        z = np.dot(self.weights, a) + self.biases
        self._activation = a
        self._z = z
        return sigmoid(z)

    def train_backward(self, delta) -> np.ndarray:
        """
        Hand the error signal to the preceding layer.

        Returns ``W^T.delta``; the sigmoid derivative of the preceding
        layer is applied by that layer in its own ``update_deltas``.
        """
        delta = _columns(delta, self.num_outputs, "layer delta")
        return np.dot(self.weights.transpose(), delta)

    def update_deltas(self, error) -> np.ndarray:
        """
        Accumulate gradients for the cached forward pass.

        Args:
            error: Upstream error gradient, one column per cached sample

        Returns:
            np.ndarray: ``delta = error * sigmoid'(z)``, to be passed to
            ``train_backward``

        Raises:
            TrainingStateError: If no forward pass is cached
        """
        if self._z is None:
            raise TrainingStateError(
                "update_deltas called without a preceding train_forward"
            )
        error = _columns(error, self.num_outputs, "layer error")
        if error.shape[1] != self._z.shape[1]:
            raise DimensionMismatch("error columns", self._z.shape[1], error.shape[1])

        delta = error * sigmoid_prime(self._z)
        self.delta_biases += delta.sum(axis=1, keepdims=True)
        self.delta_weights += np.dot(delta, self._activation.transpose())

        self._activation = None
        self._z = None
        return delta

    def apply_deltas(self, learning_rate: float) -> None:
        """Step the parameters against the accumulated gradient, then reset it."""
        self.biases -= learning_rate * self.delta_biases
        self.weights -= learning_rate * self.delta_weights
        self.delta_biases.fill(0.0)
        self.delta_weights.fill(0.0)
