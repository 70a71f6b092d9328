"""
config.py
~~~~~~~~~

Environment-based settings and logging setup.

Recognized environment variables:
- LOG_LEVEL: logging level name (default INFO)
- FLASK_ENV: 'production' quiets third-party loggers
- PORT: API server port (default 8000)
- MNIST_DATA_DIR: directory holding the MNIST IDX files (default ./data)
- SEED: integer seed for reproducible initialization and shuffling
"""

import os
import logging
from typing import Optional

import numpy as np

DEFAULT_DATA_DIR = 'data'
DEFAULT_PORT = 8000


def is_production() -> bool:
    return os.getenv('FLASK_ENV') == 'production'


def data_dir() -> str:
    return os.getenv('MNIST_DATA_DIR', DEFAULT_DATA_DIR)


def port() -> int:
    return int(os.getenv('PORT', DEFAULT_PORT))


def seed() -> Optional[int]:
    """Seed from the SEED variable, or None when unset or blank."""
    value = os.getenv('SEED', '').strip()
    return int(value) if value else None


def make_rng(seed_value: Optional[int] = None) -> np.random.Generator:
    """Random generator shared by network initialization and shuffling."""
    return np.random.default_rng(seed_value)


def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production():
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        # Keep our own progress lines visible
        logging.getLogger('handwriting').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
