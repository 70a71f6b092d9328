"""
exceptions.py
~~~~~~~~~~~~~

Errors raised by the network, the sample utilities and the data loader.
"""


class NeuralNetError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(NeuralNetError, ValueError):
    """Invalid network topology or training hyperparameter."""


class DimensionMismatch(NeuralNetError, ValueError):
    """A vector does not have the width a layer or network expects."""

    def __init__(self, what: str, expected: int, actual: int):
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what}: expected {expected}, got {actual}")


class EmptyBatchError(NeuralNetError, ValueError):
    """A minibatch with no samples, or a minibatch size below one."""


class DataFormatError(NeuralNetError, ValueError):
    """A dataset file that is not valid IDX data, or a target that is not one-hot."""


class TrainingStateError(NeuralNetError, RuntimeError):
    """Gradients requested from a layer without a cached forward pass."""
