"""
test_api_server.py
~~~~~~~~~~~~~~~~~~

Integration tests for the REST API, using Flask's test client.
"""

import base64
import importlib
import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture(scope='module')
def api(tmp_path_factory):
    """Import the server against a temporary data file and registry."""
    root = tmp_path_factory.mktemp('api')
    rng = np.random.default_rng(0)
    lines = []
    for i in range(50):
        readings = rng.uniform(0.4, 5.0, 24)
        label = 'Slight-Left-Turn' if readings[3] < 2.0 else 'Move-Forward'
        lines.append(','.join(f'{v:.3f}' for v in readings) + ',' + label)
    data_path = root / 'sensor_readings_24.csv'
    data_path.write_text('\n'.join(lines) + '\n')

    env = {
        'FFNN_DATA_PATH': str(data_path),
        'FFNN_MODEL_DIR': str(root / 'models'),
        'FFNN_SEED': '0',
    }
    saved = {k: os.environ.get(k) for k in env}
    os.environ.update(env)
    try:
        module = importlib.import_module('ffnn.api_server')
    finally:
        for k, v in saved.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
    return module


@pytest.fixture
def client(api):
    api.active_networks.clear()
    api.training_jobs.clear()
    return api.app.test_client()


def _create(client, **body):
    response = client.post('/api/networks', json=body)
    assert response.status_code == 201
    return response.get_json()['network_id']


def _train_now(api, network_id, epochs=3):
    job_id = 'job-' + network_id
    api.training_jobs[job_id] = {
        'network_id': network_id, 'status': 'pending', 'progress': 0, 'epochs': epochs
    }
    api.train_network_task(network_id, job_id, epochs, 8, 0.05)
    return job_id


@pytest.mark.integration
class TestNetworkEndpoints:

    def test_status(self, api, client):
        body = client.get('/api/status').get_json()
        assert body['status'] == 'online'
        assert body['data_loaded'] is True
        assert len(api.training_data) == 40
        assert len(api.test_data) == 10

    def test_create_default_network(self, client):
        response = client.post('/api/networks')
        assert response.status_code == 201
        body = response.get_json()
        assert [layer['size'] for layer in body['architecture']] == [24, 12, 1]
        assert body['architecture'][-1]['activation'] == 'sigmoid'

    @pytest.mark.parametrize("body", [
        {'layer_sizes': [24]},
        {'layer_sizes': 'big'},
        {'layer_sizes': [24, True]},
        {'layer_sizes': [24, 0, 1]},
        {'layer_sizes': [24, 4, 1], 'activations': ['none', 'tanh', 'sigmoid']},
        {'layer_sizes': [24, 4, 1], 'activations': ['none', 'relu']},
    ])
    def test_create_invalid_network(self, client, body):
        assert client.post('/api/networks', json=body).status_code == 400

    def test_predict(self, client):
        network_id = _create(client, layer_sizes=[24, 6, 1])
        response = client.post(f'/api/networks/{network_id}/predict',
                               json={'features': [1.0] * 24})
        assert response.status_code == 200
        body = response.get_json()
        assert 0.0 <= body['probability'] <= 1.0
        assert body['collision'] == (body['probability'] >= 0.5)

    def test_predict_wrong_length(self, client):
        network_id = _create(client)
        response = client.post(f'/api/networks/{network_id}/predict',
                               json={'features': [1.0] * 3})
        assert response.status_code == 400

    def test_unknown_network(self, client):
        assert client.post('/api/networks/nope/predict', json={'features': []}).status_code == 404
        assert client.get('/api/networks/nope/evaluate').status_code == 404
        assert client.delete('/api/networks/nope').status_code == 404
        assert client.get('/api/training/nope').status_code == 404

    def test_train_rejects_bad_parameters(self, client):
        network_id = _create(client)
        for body in ({'epochs': 0}, {'batch_size': 'x'}, {'learning_rate': -1}):
            response = client.post(f'/api/networks/{network_id}/train', json=body)
            assert response.status_code == 400

    def test_train_starts_background_job(self, api, client, monkeypatch):
        started = []
        monkeypatch.setattr(api.socketio, 'start_background_task',
                            lambda *args: started.append(args))
        network_id = _create(client)

        response = client.post(f'/api/networks/{network_id}/train',
                               json={'epochs': 2, 'batch_size': 4})
        assert response.status_code == 202
        job_id = response.get_json()['job_id']

        assert started[0][1:] == (network_id, job_id, 2, 4, api.config.learning_rate)
        status = client.get(f'/api/training/{job_id}').get_json()
        assert status['status'] == 'pending'

    def test_second_training_request_conflicts(self, api, client, monkeypatch):
        started = []
        monkeypatch.setattr(api.socketio, 'start_background_task',
                            lambda *args: started.append(args))
        network_id = _create(client)

        first = client.post(f'/api/networks/{network_id}/train', json={'epochs': 2})
        second = client.post(f'/api/networks/{network_id}/train', json={'epochs': 2})

        assert first.status_code == 202
        assert second.status_code == 409
        assert second.get_json()['job_id'] == first.get_json()['job_id']
        assert len(started) == 1

        api.training_jobs[first.get_json()['job_id']]['status'] = 'completed'
        third = client.post(f'/api/networks/{network_id}/train', json={'epochs': 2})
        assert third.status_code == 202
        assert len(started) == 2

    @pytest.mark.parametrize("body", [
        {'epochs': True},
        {'batch_size': False},
        {'learning_rate': True},
    ])
    def test_train_rejects_booleans(self, client, body):
        network_id = _create(client)
        response = client.post(f'/api/networks/{network_id}/train', json=body)
        assert response.status_code == 400

    def test_training_task_completes_and_saves(self, api, client):
        network_id = _create(client, layer_sizes=[24, 6, 1])
        job_id = _train_now(api, network_id, epochs=3)

        job = client.get(f'/api/training/{job_id}').get_json()
        assert job['status'] == 'completed'
        assert job['progress'] == 100
        assert 0.0 <= job['accuracy'] <= 1.0

        info = api.active_networks[network_id]
        assert info['trained'] is True
        assert len(info['loss_history']) == 3

        saved = {n['network_id'] for n in api.list_saved_networks(api.config.model_dir)}
        assert network_id in saved

    def test_evaluate_and_loss_curve(self, api, client):
        network_id = _create(client)
        assert client.get(f'/api/networks/{network_id}/loss_curve').status_code == 404

        _train_now(api, network_id, epochs=2)

        metrics = client.get(f'/api/networks/{network_id}/evaluate').get_json()
        assert metrics['tp'] + metrics['tn'] + metrics['fp'] + metrics['fn'] == 10
        assert 0.0 <= metrics['accuracy'] <= 1.0

        curve = client.get(f'/api/networks/{network_id}/loss_curve').get_json()
        assert curve['epochs'] == 2
        assert base64.b64decode(curve['image_data']).startswith(b'\x89PNG')

    def test_list_and_delete(self, api, client):
        network_id = _create(client)
        listed = client.get('/api/networks').get_json()['networks']
        assert any(n['network_id'] == network_id and n['status'] == 'in_memory' for n in listed)

        body = client.delete(f'/api/networks/{network_id}').get_json()
        assert body['deleted_from_memory'] is True
        assert network_id not in api.active_networks

    def test_delete_all(self, api, client):
        _create(client)
        _create(client)
        body = client.delete('/api/networks').get_json()
        assert body['deleted_from_memory'] == 2
        assert api.active_networks == {}
        assert api.list_saved_networks(api.config.model_dir) == []

    def test_cleanup_endpoint(self, client):
        assert client.post('/api/networks/cleanup', json={'days': -1}).status_code == 400
        response = client.post('/api/networks/cleanup', json={'days': 2})
        assert response.status_code == 200
        assert response.get_json()['deleted_count'] == 0

    def test_cleanup_finished_jobs(self, api):
        api.training_jobs.update({
            'a': {'status': 'completed'},
            'b': {'status': 'failed'},
            'c': {'status': 'training'},
        })
        api.cleanup_finished_training_jobs()
        assert list(api.training_jobs) == ['c']
