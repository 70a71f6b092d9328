"""
conftest.py
~~~~~~~~~~~

Shared fixtures: a tiny MNIST-style dataset written in IDX format.
"""

import gzip

import numpy as np
import pytest


def write_idx(path, array: np.ndarray, compress: bool = True) -> None:
    """Write ``array`` as an unsigned-byte IDX file."""
    array = np.asarray(array, dtype=np.uint8)
    header = bytes([0, 0, 0x08, array.ndim])
    dims = np.array(array.shape, dtype='>u4').tobytes()
    payload = header + dims + array.tobytes()

    opener = gzip.open if compress else open
    with opener(str(path), 'wb') as f:
        f.write(payload)


def tiny_images(count: int) -> np.ndarray:
    """2x2 images: bright left column for even indices, right for odd."""
    images = np.zeros((count, 2, 2), dtype=np.uint8)
    for i in range(count):
        images[i, :, i % 2] = 255
    return images


@pytest.fixture
def mnist_dir(tmp_path):
    """Directory holding 6 training and 4 test samples of 2x2 pixels."""
    train_images = tiny_images(6)
    train_labels = np.array([i % 2 for i in range(6)])
    test_images = tiny_images(4)
    test_labels = np.array([i % 2 for i in range(4)])

    write_idx(tmp_path / 'train-images-idx3-ubyte.gz', train_images)
    write_idx(tmp_path / 'train-labels-idx1-ubyte.gz', train_labels)
    write_idx(tmp_path / 't10k-images-idx3-ubyte.gz', test_images)
    write_idx(tmp_path / 't10k-labels-idx1-ubyte.gz', test_labels)
    return str(tmp_path)
