"""
handwriting package
~~~~~~~~~~~~~~~~~~~

Feed-forward neural network for MNIST digit recognition, trained with
mini-batch stochastic gradient descent and explicit backpropagation.
Contains the layer and network implementation, sample utilities, the
MNIST IDX loader, a training command line and the API server.
"""

from handwriting.exceptions import (
    NeuralNetError,
    ConfigurationError,
    DimensionMismatch,
    EmptyBatchError,
    DataFormatError,
    TrainingStateError
)
from handwriting.layer import Layer, sigmoid, sigmoid_prime
from handwriting.network import Network
from handwriting.samples import Sample, make_sample

__version__ = "1.0.0"
