"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for neural network training.

This module provides endpoints for:
- Creating and managing in-memory neural networks
- Training networks with real-time progress updates via WebSockets
- Evaluating networks and classifying digits
- Showing test digits the network gets right or wrong

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks

The server is an optional front end. Training itself lives in
handwriting.network and needs none of these libraries.
"""

import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from handwriting import config
from handwriting import mnist_loader
from handwriting.exceptions import NeuralNetError
from handwriting.network import Network
from handwriting.samples import Sample, label_of, normalize_image

config.configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not config.is_production(),
    engineio_logger=not config.is_production(),
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST dataset - loaded on first use and kept for later requests
training_data: Optional[List[Sample]] = None
validation_data: Optional[List[Sample]] = None
test_data: Optional[List[Sample]] = None

# Random source for picking example digits
example_rng = config.make_rng(config.seed())


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_data() -> None:
    """Load the MNIST dataset into global variables."""
    global training_data, validation_data, test_data

    logger.info("Loading MNIST data...")
    training_data, validation_data, test_data = (
        mnist_loader.load_data_wrapper(config.data_dir())
    )
    logger.info(
        f"Data loaded: {len(training_data)} training, "
        f"{len(validation_data)} validation, {len(test_data)} test"
    )


def get_datasets() -> Tuple[List[Sample], List[Sample]]:
    """
    Return ``(training_data, test_data)``, loading them if needed.

    Raises:
        FileNotFoundError: If the MNIST files are missing
    """
    if training_data is None or test_data is None:
        load_mnist_data()
    return training_data, test_data


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    This prevents the training_jobs dictionary from growing indefinitely.
    Only removes jobs that are no longer active (completed or failed).
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def _network_or_404(network_id: str):
    if network_id not in active_networks:
        logger.warning(f"Request for non-existent network: {network_id}")
        return None, (jsonify({'error': 'Network not found'}), 404)
    return active_networks[network_id]['network'], None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of active networks and training jobs that are
    currently in progress (status='pending' or 'training').
    """
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'data_loaded': test_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body (optional):
        {'layer_sizes': [784, 30, 10]}  # defaults to [784, 30, 10]

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layer_sizes = data.get('layer_sizes', [784, 30, 10])

    if not isinstance(layer_sizes, list):
        return jsonify({'error': 'layer_sizes must be a list'}), 400

    try:
        net = Network(layer_sizes, rng=config.make_rng(config.seed()))
    except NeuralNetError as e:
        logger.warning(f"Invalid architecture requested: {layer_sizes}")
        return jsonify({'error': f'Invalid architecture: {e}'}), 400

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'trained': False,
        'accuracy': None
    }

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {
            'epochs': 5,
            'mini_batch_size': 10,
            'learning_rate': 3.0
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 5)
    mini_batch_size = data.get('mini_batch_size', 10)
    learning_rate = data.get('learning_rate', 3.0)

    if not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not isinstance(mini_batch_size, int) or mini_batch_size < 1:
        return jsonify({'error': 'mini_batch_size must be a positive integer'}), 400
    if not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    cleanup_finished_training_jobs()

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, batch_size={mini_batch_size}, lr={learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, epochs, mini_batch_size, learning_rate
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    epochs: int,
    mini_batch_size: int,
    learning_rate: float
) -> None:
    """
    Background task that trains a neural network.

    Sends progress updates via WebSocket as training progresses. The
    network may be deleted while training yields to other requests; its
    results are then discarded.
    """

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'accuracy': data['accuracy'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress,
            'correct': data['correct'],
            'total': data['total']
        })

        # Let gevent send the message immediately
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        net_info = active_networks.get(network_id)
        if net_info is None:
            raise KeyError(f"Network {network_id} no longer exists")
        net = net_info['network']
        train_samples, test_samples = get_datasets()

        # Allows HTTP requests to be processed between minibatches
        def yield_to_other_tasks():
            gevent.sleep(0)

        net.SGD(
            train_samples,
            epochs,
            mini_batch_size,
            learning_rate,
            test_data=test_samples,
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks
        )

        accuracy = net.evaluate(test_samples) / len(test_samples) if test_samples else 0.0

        net_info = active_networks.get(network_id)
        if net_info is not None:
            net_info['trained'] = True
            net_info['accuracy'] = accuracy
        else:
            logger.warning(f"Network {network_id} was deleted during training job {job_id}")

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': float(accuracy),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all networks held in memory."""
    networks = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy']
        }
        for nid, info in active_networks.items()
    ]
    return jsonify({'networks': networks}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory."""
    if network_id not in active_networks:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    del active_networks[network_id]
    logger.info(f"Deleted network {network_id}")

    return jsonify({'network_id': network_id, 'deleted': True}), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from memory."""
    deleted_count = len(active_networks)
    active_networks.clear()

    logger.info(f"Deleted all networks: {deleted_count} total")

    return jsonify({
        'deleted_count': deleted_count,
        'message': f'Successfully deleted {deleted_count} network(s)'
    }), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['POST'])
def evaluate_network(network_id: str):
    """Count correctly classified test digits."""
    net, error = _network_or_404(network_id)
    if error:
        return error

    try:
        _, test_samples = get_datasets()
        correct = net.evaluate(test_samples)
    except FileNotFoundError as e:
        logger.error(f"Test data not available: {e}")
        return jsonify({'error': 'Test data not available'}), 503
    except NeuralNetError as e:
        return jsonify({'error': str(e)}), 400

    total = len(test_samples)
    return jsonify({
        'network_id': network_id,
        'correct': correct,
        'total': total,
        'accuracy': correct / total if total else 0.0
    }), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict_digit(network_id: str):
    """
    Classify one image.

    Request body:
        {'pixels': [0, 0, 128, ...]}  # byte intensities, row-major
    """
    net, error = _network_or_404(network_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    pixels = data.get('pixels')
    if not isinstance(pixels, list) or not pixels:
        return jsonify({'error': 'pixels must be a non-empty list'}), 400

    try:
        output = net.feedforward(normalize_image(pixels))
    except (NeuralNetError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'network_id': network_id,
        'predicted_digit': int(np.argmax(output)),
        'network_output': array_to_float_list(output)
    }), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def create_digit_image(image_data: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image_data: Input vector of a square image (784 values for 28x28)
        predicted: The digit the network predicted
        actual: The correct digit

    Returns:
        Base64-encoded PNG image string
    """
    side = int(np.sqrt(image_data.size))
    plt.figure(figsize=(3, 3))
    plt.imshow(image_data.reshape(side, side), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def find_example(net: Network, samples: List[Sample], correct: bool,
                 max_attempts: int) -> Optional[Dict[str, Any]]:
    """
    Pick random samples until one is classified correctly (or not).

    Returns:
        Example details, or None if ``max_attempts`` picks all failed
    """
    for attempt in range(max_attempts):
        index = int(example_rng.integers(len(samples)))
        x, y = samples[index]

        output = net.feedforward(x)
        predicted_digit = int(np.argmax(output))
        actual_digit = label_of(samples[index])

        if (predicted_digit == actual_digit) == correct:
            logger.debug(f"Found example on attempt {attempt + 1}")
            return {
                'example_index': index,
                'predicted_digit': predicted_digit,
                'actual_digit': actual_digit,
                'image_data': create_digit_image(x, predicted_digit, actual_digit),
                'output_weights': net.weights[-1].tolist(),
                'network_output': array_to_float_list(output)
            }
    return None


def _example_response(network_id: str, correct: bool, max_attempts: int):
    net, error = _network_or_404(network_id)
    if error:
        return error

    try:
        _, test_samples = get_datasets()
    except FileNotFoundError as e:
        logger.error(f"Test data not available: {e}")
        return jsonify({'error': 'Test data not available'}), 503

    example = find_example(net, test_samples, correct, max_attempts) if test_samples else None
    if example is None:
        kind = 'successful' if correct else 'unsuccessful'
        logger.warning(f"No {kind} example found after {max_attempts} attempts")
        return jsonify({
            'error': f'No {kind} example found after {max_attempts} attempts'
        }), 404

    example['network_id'] = network_id
    return jsonify(example), 200


# ============================================================================
# EXAMPLE ENDPOINTS
# ============================================================================

@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """Return a random test digit the network classifies correctly."""
    return _example_response(network_id, correct=True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """Return a random test digit the network gets wrong."""
    return _example_response(network_id, correct=False, max_attempts=200)


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = config.port()
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        load_mnist_data()
    except FileNotFoundError as e:
        logger.warning(f"MNIST data not loaded, training is unavailable: {e}")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not config.is_production(),
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
