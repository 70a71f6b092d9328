"""
mnist_loader.py
~~~~~~~~~~~~~~~

Load the MNIST image and label files in IDX format.

The four standard files are expected in one directory, either gzipped
(``train-images-idx3-ubyte.gz``) or plain (``train-images-idx3-ubyte``).
Images are converted to samples by ``handwriting.samples.make_sample``.
"""

import os
import gzip
import logging
from typing import List, Tuple

import numpy as np

from handwriting.exceptions import DataFormatError
from handwriting.samples import Sample, make_sample

logger = logging.getLogger(__name__)

TRAIN_IMAGES = 'train-images-idx3-ubyte'
TRAIN_LABELS = 'train-labels-idx1-ubyte'
TEST_IMAGES = 't10k-images-idx3-ubyte'
TEST_LABELS = 't10k-labels-idx1-ubyte'

# Training images beyond this index form the validation set
TRAINING_SIZE = 50000

# IDX type codes
_DTYPES = {
    0x08: np.dtype('>u1'),
    0x09: np.dtype('>i1'),
    0x0B: np.dtype('>i2'),
    0x0C: np.dtype('>i4'),
    0x0D: np.dtype('>f4'),
    0x0E: np.dtype('>f8'),
}


def _open(path: str):
    if path.endswith('.gz'):
        return gzip.open(path, 'rb')
    return open(path, 'rb')


def _resolve(data_dir: str, name: str) -> str:
    """Prefer the gzipped file, fall back to the plain one."""
    gz_path = os.path.join(data_dir, name + '.gz')
    if os.path.exists(gz_path):
        return gz_path
    plain_path = os.path.join(data_dir, name)
    if os.path.exists(plain_path):
        return plain_path
    raise FileNotFoundError(f"MNIST file not found: {gz_path}")


def read_idx(path: str) -> np.ndarray:
    """
    Read an IDX file into an array.

    Args:
        path: Path to the file, optionally gzipped

    Returns:
        np.ndarray: Array with the dimensions stored in the header

    Raises:
        DataFormatError: If the header or payload is malformed
    """
    with _open(path) as f:
        raw = f.read()

    if len(raw) < 4 or raw[0] != 0 or raw[1] != 0:
        raise DataFormatError(f"{path}: bad IDX magic number")

    type_code, ndim = raw[2], raw[3]
    if type_code not in _DTYPES:
        raise DataFormatError(f"{path}: unknown IDX type 0x{type_code:02x}")

    header_size = 4 + 4 * ndim
    if len(raw) < header_size:
        raise DataFormatError(f"{path}: truncated IDX header")
    dims = tuple(
        int(d) for d in np.frombuffer(raw, dtype='>u4', count=ndim, offset=4)
    )

    dtype = _DTYPES[type_code]
    count = int(np.prod(dims)) if dims else 0
    expected = header_size + count * dtype.itemsize
    if len(raw) < expected:
        raise DataFormatError(
            f"{path}: expected {expected} bytes, found {len(raw)}"
        )

    data = np.frombuffer(raw, dtype=dtype, count=count, offset=header_size)
    return data.reshape(dims)


def load_images_and_labels(images_path: str, labels_path: str) -> List[Sample]:
    """
    Read an image file and its label file into samples.

    Raises:
        DataFormatError: If the files hold a different number of entries
    """
    images = read_idx(images_path)
    labels = read_idx(labels_path)

    if len(images) != len(labels):
        raise DataFormatError(
            f"{len(images)} images but {len(labels)} labels "
            f"({images_path}, {labels_path})"
        )

    samples = [make_sample(image, label) for image, label in zip(images, labels)]
    logger.debug(f"Loaded {len(samples)} samples from {images_path}")
    return samples


def load_data_wrapper(data_dir: str) -> Tuple[List[Sample], List[Sample], List[Sample]]:
    """
    Load MNIST as ``(training_data, validation_data, test_data)``.

    The first 50000 training images are used for training, the rest for
    validation; the t10k files make up the test data.
    """
    training = load_images_and_labels(
        _resolve(data_dir, TRAIN_IMAGES),
        _resolve(data_dir, TRAIN_LABELS)
    )
    test_data = load_images_and_labels(
        _resolve(data_dir, TEST_IMAGES),
        _resolve(data_dir, TEST_LABELS)
    )

    training_data = training[:TRAINING_SIZE]
    validation_data = training[TRAINING_SIZE:]
    return training_data, validation_data, test_data
