"""
samples.py
~~~~~~~~~~

Sample representation used by the network.

A sample pairs a normalized input column vector with a one-hot target
column vector. Raw data (byte intensity grids plus integer labels) is
converted here: intensities are divided by 256.0 and flattened row-major,
labels become a column vector with 1.0 at the label's index.
"""

from typing import NamedTuple, Sequence

import numpy as np

from handwriting.exceptions import ConfigurationError, DimensionMismatch

# Divisor for byte intensities, keeps every input strictly below 1.0
PIXEL_SCALE = 256.0


class Sample(NamedTuple):
    """
    A training or test example: ``(input, target)`` column vectors.

    ``target`` must be one-hot; the network rejects any other target
    when it trains or evaluates.
    """

    input: np.ndarray
    target: np.ndarray


def as_column(vector) -> np.ndarray:
    """
    Coerce a vector to an ``(n, 1)`` float array.

    Args:
        vector: 1-D array-like or an array that is already a column

    Returns:
        np.ndarray: Column vector

    Raises:
        DimensionMismatch: If ``vector`` is neither 1-D nor a single column
    """
    array = np.asarray(vector, dtype=float)
    if array.ndim == 1:
        return array.reshape(-1, 1)
    if array.ndim == 2 and array.shape[1] == 1:
        return array
    raise DimensionMismatch("column vector width", 1,
                            array.shape[1] if array.ndim == 2 else array.ndim)


def stack_columns(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """
    Stack column vectors side by side, one sample per column.

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    columns = [as_column(v) for v in vectors]
    rows = columns[0].shape[0] if columns else 0
    for column in columns[1:]:
        if column.shape[0] != rows:
            raise DimensionMismatch("sample width", rows, column.shape[0])
    return np.hstack(columns)


def normalize_image(grid) -> np.ndarray:
    """
    Convert a grid of byte intensities into an input column vector.

    Args:
        grid: Array-like of intensities in 0..255, any shape

    Returns:
        np.ndarray: ``(grid.size, 1)`` vector with values in [0, 1)
    """
    pixels = np.asarray(grid, dtype=float)
    return pixels.reshape(-1, 1) / PIXEL_SCALE


def vectorized_result(label: int, num_classes: int = 10) -> np.ndarray:
    """
    Return a one-hot column vector with 1.0 at index ``label``.

    Raises:
        ConfigurationError: If ``label`` is not a valid class index
    """
    if not 0 <= label < num_classes:
        raise ConfigurationError(
            f"Label {label} is outside the range 0..{num_classes - 1}"
        )
    e = np.zeros((num_classes, 1))
    e[label] = 1.0
    return e


def make_sample(grid, label: int, num_classes: int = 10) -> Sample:
    """Build a sample from a raw intensity grid and an integer label."""
    return Sample(normalize_image(grid), vectorized_result(int(label), num_classes))


def label_of(sample: Sample) -> int:
    """Index of the target's 1.0 entry."""
    return int(np.argmax(sample.target))
