"""
train.py
~~~~~~~~

Command line training run on the MNIST data.

Usage:
    python -m handwriting.train --data-dir data --sizes 784 100 10
"""

import sys
import logging
import argparse
from typing import List, Optional

from handwriting import config
from handwriting import mnist_loader
from handwriting.exceptions import NeuralNetError
from handwriting.network import Network

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Train a feed-forward network on MNIST digits'
    )
    parser.add_argument('--data-dir', type=str, default=config.data_dir(),
                        help='directory with the MNIST IDX files (default: %(default)s)')
    parser.add_argument('--sizes', type=int, nargs='+', default=[784, 100, 10],
                        help='layer widths, input first (default: 784 100 10)')
    parser.add_argument('--epochs', type=int, default=30, metavar='N',
                        help='number of epochs to train (default: 30)')
    parser.add_argument('--mini-batch-size', type=int, default=10, metavar='N',
                        help='samples per minibatch (default: 10)')
    parser.add_argument('--eta', type=float, default=3.0, metavar='LR',
                        help='learning rate (default: 3.0)')
    parser.add_argument('--seed', type=int, default=config.seed(), metavar='S',
                        help='random seed (default: unseeded)')
    parser.add_argument('--no-test', action='store_true',
                        help='skip evaluating the test set after each epoch')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging()

    try:
        logger.info(f"Loading MNIST data from {args.data_dir}")
        training_data, _, test_data = mnist_loader.load_data_wrapper(args.data_dir)

        logger.info(
            "Creating a " + "-".join(str(s) for s in args.sizes) + " neural network"
        )
        net = Network(args.sizes, rng=config.make_rng(args.seed))

        net.SGD(
            training_data,
            args.epochs,
            args.mini_batch_size,
            args.eta,
            test_data=None if args.no_test else test_data
        )
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except NeuralNetError as e:
        logger.error(f"Training failed: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
