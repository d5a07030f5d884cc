"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for network training.

This module provides endpoints for:
- Creating and managing feed-forward networks
- Training networks on the sensor data with real-time progress updates
- Predicting single samples and evaluating on the held-out set
- Persisting networks to/from the SQLite registry

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network persistence
"""

import base64
import logging
import os
import sys
import uuid
from io import BytesIO
from typing import Any, Dict, List, Optional

import gevent
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from ffnn.config import RunConfig
from ffnn.dataset import SensorDataset, load_and_split
from ffnn.errors import ConfigError, DatasetError, NetworkError, ShapeError
from ffnn.evaluation import evaluate_network
from ffnn.logging_config import configure_logging
from ffnn.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)
from ffnn.network import Network

# ============================================================================
# LOGGING SETUP
# ============================================================================

config = RunConfig.from_env()
is_production = os.getenv('FLASK_ENV') == 'production'

configure_logging()
if is_production:
    # Silence noisy third-party logs but keep ours visible
    for logger_name in ['socketio', 'engineio', 'engineio.server',
                        'socketio.server', 'werkzeug']:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    logging.getLogger('ffnn').setLevel(logging.INFO)

logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
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

# Sensor dataset - loaded once at startup
training_data: Optional[SensorDataset] = None
test_data: Optional[SensorDataset] = None


# ============================================================================
# DATA LOADING
# ============================================================================

def load_sensor_data() -> None:
    """
    Load and split the sensor dataset into global variables.

    A missing data file is logged, not raised: the server still manages
    networks, and the data-dependent endpoints answer 500.
    """
    global training_data, test_data

    logger.info(f"Loading sensor data from {config.data_path}...")
    try:
        training_data, test_data = load_and_split(
            config.data_path, config.train_ratio, config.seed
        )
        logger.info(
            f"Data loaded: {len(training_data)} training, {len(test_data)} test"
        )
    except DatasetError as e:
        logger.warning(f"Sensor data not available: {e}")
        training_data, test_data = None, None


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Keeps active_networks in sync with the database after a restart.
    """
    saved_networks = list_saved_networks(config.model_dir)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, config.model_dir)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'trained': net_info['trained'],
            'accuracy': net_info['accuracy'],
            'loss_history': []
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


load_sensor_data()
reload_saved_networks()

# Training jobs can't continue after a restart
training_jobs.clear()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

_cleanup_task_started = False


def cleanup_old_networks_task() -> None:
    """
    Background task that runs on startup, then every 24 hours to delete
    networks older than 2 days and drop finished training jobs.
    """
    while True:
        try:
            deleted_count = delete_old_networks(days=2, model_dir=config.model_dir)

            if deleted_count > 0:
                saved_ids = {
                    net['network_id']
                    for net in list_saved_networks(config.model_dir)
                }
                for nid in [n for n in active_networks if n not in saved_ids]:
                    del active_networks[nid]
                    logger.info(f"Removed network {nid} from memory (deleted from database)")
            elif deleted_count < 0:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            gevent.sleep(3600)


def cleanup_finished_training_jobs() -> None:
    """Remove completed or failed training jobs from memory."""
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """Start the background cleanup task once."""
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

ACTIVE_JOB_STATUSES = ('pending', 'training')


def is_int(value: Any) -> bool:
    # JSON true/false decode to bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def active_job_for(network_id: str) -> Optional[str]:
    """Return the id of a pending or running job on the network, if any."""
    for job_id, job in training_jobs.items():
        if job.get('network_id') == network_id and job.get('status') in ACTIVE_JOB_STATUSES:
            return job_id
    return None


def network_not_found(network_id: str, action: str):
    logger.warning(f"{action} requested for non-existent network: {network_id}")
    return jsonify({'error': 'Network not found'}), 404


def create_loss_curve_image(losses: List[float], network_id: str) -> str:
    """
    Plot per-epoch BCE and return it as a base64-encoded PNG.

    Args:
        losses: Mean BCE of every epoch
        network_id: Used in the plot title

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(5, 3))
    plt.plot(range(len(losses)), losses)
    plt.title(f"Training loss: {network_id[:8]}")
    plt.xlabel('epoch')
    plt.ylabel('mean BCE')
    plt.grid(True, alpha=0.3)

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_JOB_STATUSES
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'data_loaded': training_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (optional):
        {'layer_sizes': [24, 12, 1], 'activations': ['none', 'relu', 'sigmoid']}

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layer_sizes = data.get('layer_sizes', list(config.layer_sizes))
    activations = data.get('activations')
    if activations is None and list(layer_sizes) == list(config.layer_sizes):
        activations = list(config.activations)

    if (not isinstance(layer_sizes, list) or len(layer_sizes) < 2
            or not all(is_int(s) for s in layer_sizes)):
        logger.warning(f"Invalid architecture requested: {layer_sizes}")
        return jsonify({
            'error': 'Invalid architecture. Must have at least 2 integer layer sizes.'
        }), 400

    try:
        net = Network.from_topology(layer_sizes, activations)
    except ConfigError as e:
        logger.warning(f"Invalid architecture requested: {e}")
        return jsonify({'error': str(e)}), 400

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {
        'network': net,
        'architecture': net.topology,
        'trained': False,
        'accuracy': None,
        'loss_history': []
    }

    logger.info(f"Created network {network_id} with sizes {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.topology,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {'epochs': 1300, 'batch_size': 8, 'learning_rate': 0.029}

    Returns:
        JSON with job_id, network_id, and status; 409 with the running
        job_id if the network already has a pending or running job
    """
    if network_id not in active_networks:
        return network_not_found(network_id, "Training")

    if training_data is None:
        logger.error("Training data not loaded")
        return jsonify({'error': 'Training data not available'}), 500

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', config.epochs)
    batch_size = data.get('batch_size', config.batch_size)
    learning_rate = data.get('learning_rate', config.learning_rate)

    if not is_int(epochs) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not is_int(batch_size) or batch_size < 1:
        return jsonify({'error': 'batch_size must be a positive integer'}), 400
    if not is_number(learning_rate) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    running_job = active_job_for(network_id)
    if running_job is not None:
        logger.warning(
            f"Training requested for network {network_id} while job {running_job} is active"
        )
        return jsonify({
            'error': 'Network is already training',
            'job_id': running_job
        }), 409

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, batch_size={batch_size}, lr={learning_rate}"
    )

    socketio.start_background_task(
        train_network_task,
        network_id, job_id, epochs, batch_size, learning_rate
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
    batch_size: int,
    learning_rate: float
) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket as training progresses.
    """
    net = active_networks[network_id]['network']

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress
        training_jobs[job_id]['loss'] = data['loss']

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'loss': data['loss'],
            'learning_rate': data['learning_rate'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

    try:
        logger.info(f"Starting training for job {job_id}")

        losses = net.train(
            training_data.features,
            training_data.labels,
            learning_rate,
            epochs,
            batch_size,
            verbose=False,
            callback=on_epoch_complete,
            yield_func=lambda: gevent.sleep(0)
        )

        accuracy = None
        if test_data is not None and len(test_data):
            accuracy = evaluate_network(net, test_data.features, test_data.labels).accuracy

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy
        active_networks[network_id]['loss_history'] = losses

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100

        save_network(net, network_id, model_dir=config.model_dir,
                     trained=True, accuracy=accuracy)

        logger.info(
            f"Training completed for job {job_id}: final BCE {losses[-1]:.6f}, "
            f"accuracy {accuracy}"
        )

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'loss': losses[-1],
            'accuracy': accuracy,
            'progress': 100
        })

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


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Predict one sample.

    Request body:
        {'features': [24 sensor readings], 'threshold': 0.5}

    Returns:
        JSON with the raw probability and the thresholded decision
    """
    if network_id not in active_networks:
        return network_not_found(network_id, "Prediction")

    data = request.get_json(silent=True) or {}
    features = data.get('features')
    threshold = data.get('threshold', 0.5)
    if not isinstance(features, list):
        return jsonify({'error': 'features must be a list of numbers'}), 400

    net = active_networks[network_id]['network']
    try:
        output = net.predict(features)
    except (ShapeError, ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    probability = float(output[0])
    return jsonify({
        'network_id': network_id,
        'probability': probability,
        'collision': probability >= threshold,
        'network_output': [float(v) for v in output]
    }), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['GET'])
def evaluate(network_id: str):
    """Return confusion matrix and metrics on the held-out set."""
    if network_id not in active_networks:
        return network_not_found(network_id, "Evaluation")

    if test_data is None or not len(test_data):
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 500

    net = active_networks[network_id]['network']
    cm = evaluate_network(net, test_data.features, test_data.labels)
    return jsonify({'network_id': network_id, **cm.as_dict()}), 200


@app.route('/api/networks/<network_id>/loss_curve', methods=['GET'])
def get_loss_curve(network_id: str):
    """Return the training loss curve of a network as a base64 PNG."""
    if network_id not in active_networks:
        return network_not_found(network_id, "Loss curve")

    losses = active_networks[network_id].get('loss_history') or []
    if not losses:
        return jsonify({'error': 'Network has no training history'}), 404

    return jsonify({
        'network_id': network_id,
        'epochs': len(losses),
        'final_loss': float(losses[-1]),
        'image_data': create_loss_curve_image(losses, network_id)
    }), 200


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    saved_only = []
    for net in list_saved_networks(config.model_dir):
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, config.model_dir)

    if not deleted_from_memory and not deleted_from_disk:
        return network_not_found(network_id, "Delete")

    logger.info(
        f"Deleted network {network_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and disk."""
    saved_ids = [net['network_id'] for net in list_saved_networks(config.model_dir)]
    all_network_ids = list(set(active_networks) | set(saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if active_networks.pop(network_id, None) is not None:
            deleted_from_memory_count += 1
        if delete_network(network_id, config.model_dir):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_network_ids)} network(s)'
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually trigger cleanup of networks older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to 2
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if not is_number(days) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days=days, model_dir=config.model_dir)
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


@app.errorhandler(NetworkError)
def handle_network_error(e: NetworkError):
    logger.error(f"Unhandled network error: {e}")
    return jsonify({'error': str(e)}), 500


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    port = int(os.environ.get('PORT', 8000))
    logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        raise


if __name__ == '__main__':
    main()
