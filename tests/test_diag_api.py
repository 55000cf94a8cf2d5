import json
import random

import pytest
from fastapi.testclient import TestClient

from elmbridge.simulator import SIMULATED_VIN, SimulatedAdapter
from elmbridge.webapp import diag_api
from elmbridge.webapp.main import app


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setenv('ELMBRIDGE_AUDIT_DIR', str(tmp_path))
    sim = SimulatedAdapter(delay_range=(0, 0), dtc_probability=1.0, rng=random.Random(11))
    mgr = diag_api._EngineManager(simulator=sim, step_delay_range=(0, 0), failure_rate=0.0)
    monkeypatch.setattr(diag_api, '_mgr', mgr)
    return TestClient(app)


def _connect(client):
    r = client.post('/api/obd/connect', json={'simulate': True, 'device_name': 'Simulator'})
    assert r.status_code == 200
    return r.json()


def test_health(client):
    r = client.get('/api/health')
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}


def test_requires_connection(client):
    r = client.get('/api/obd/status')
    assert r.status_code == 200
    assert r.json()['state'] == 'disconnected'
    for path in ('/api/obd/dtcs', '/api/obd/dtcs/pending', '/api/obd/vehicle-data', '/api/obd/vin'):
        assert client.get(path).status_code == 400
    assert client.post('/api/obd/clear_dtcs', json={'force': True}).status_code == 400


def test_connect_and_read(client):
    info = _connect(client)
    assert info['state'] == 'connected'
    assert info['is_simulated'] is True
    assert info['device_name'] == 'Simulator'

    assert client.post('/api/obd/connect', json={'simulate': True}).status_code == 400

    r = client.get('/api/obd/dtcs')
    assert r.status_code == 200
    body = r.json()
    assert body['success'] is True
    assert 1 <= len(body['dtc_codes']) <= 3
    assert 'rpm' in body['vehicle_data']

    r = client.get('/api/obd/dtcs/pending')
    assert r.status_code == 200
    assert r.json()['success'] is True

    r = client.get('/api/obd/vehicle-data')
    assert r.status_code == 200
    assert {'rpm', 'speed', 'coolant_temp', 'battery_voltage'} <= set(r.json())

    assert client.get('/api/obd/vin').json() == {'vin': SIMULATED_VIN}

    r = client.post('/api/obd/disconnect')
    assert r.json()['state'] == 'disconnected'


def test_connect_without_adapter(client, monkeypatch):
    monkeypatch.setattr(diag_api, 'find_device', lambda: None)
    r = client.post('/api/obd/connect', json={})
    assert r.status_code == 400
    assert 'no adapter found' in r.json()['detail']


def test_clear_dtcs_requires_force_and_is_audited(client, tmp_path):
    _connect(client)
    r = client.post('/api/obd/clear_dtcs', json={})
    assert r.status_code == 403
    r = client.post('/api/obd/clear_dtcs', json={'force': True})
    assert r.status_code == 200
    assert r.json() == {'cleared': True}
    lines = (tmp_path / 'audit.log').read_text().splitlines()
    entry = json.loads(lines[-1])
    assert entry['action'] == 'clear_dtc'
    assert entry['details']['cleared'] is True


def test_settings_update(client):
    r = client.put('/api/obd/settings', json={'atst_mode': 'manual', 'atst_value': 64})
    assert r.status_code == 200
    assert r.json()['atst_value'] == 64
    assert client.get('/api/obd/status').json()['settings']['atst_mode'] == 'manual'
    r = client.put('/api/obd/settings', json={'preferred_protocol': 'Q'})
    assert r.status_code == 422


def test_coding_catalog(client):
    assert client.get('/api/coding/functions').json()['functions'] == []
    body = client.get('/api/coding/functions?pro=true').json()
    assert len(body['functions']) == 19
    assert 'calibration' in body['categories']


def test_coding_execute_gates(client):
    r = client.post('/api/coding/execute', json={'function_id': 'nope', 'pro': True})
    assert r.status_code == 404

    r = client.post('/api/coding/execute', json={'function_id': 'activate_drl', 'pro': True, 'confirm': True})
    assert r.status_code == 403
    assert r.json()['detail'] == 'Not connected to the vehicle'

    _connect(client)
    r = client.post('/api/coding/execute', json={'function_id': 'activate_drl', 'confirm': True})
    assert r.status_code == 403
    assert r.json()['detail'] == 'This function requires a Pro subscription'

    r = client.post('/api/coding/execute', json={'function_id': 'activate_drl', 'pro': True})
    assert r.status_code == 403


def test_coding_execute_simulated(client, tmp_path):
    _connect(client)
    r = client.post('/api/coding/execute', json={'function_id': 'read_freeze_frame', 'pro': True})
    assert r.status_code == 200
    body = r.json()
    assert body['success'] is True
    assert len(body['raw_responses']) == 6
    entry = json.loads((tmp_path / 'audit.log').read_text().splitlines()[-1])
    assert entry['action'] == 'coding'
    assert entry['details']['function_id'] == 'read_freeze_frame'


def test_audit_records_connected_device(client, tmp_path):
    _connect(client)
    assert client.post('/api/obd/clear_dtcs', json={'force': True}).status_code == 200
    client.post('/api/coding/execute', json={'function_id': 'read_freeze_frame', 'pro': True})
    entries = [json.loads(l) for l in (tmp_path / 'audit.log').read_text().splitlines()]
    assert [e['action'] for e in entries[-2:]] == ['clear_dtc', 'coding']
    assert all(e['details']['device'] == 'Simulator' for e in entries[-2:])


def test_connect_uses_settings_timeout(client, monkeypatch):
    seen = {}

    def fake_open(target, connect_timeout=5.0):
        seen.update(target=target, connect_timeout=connect_timeout)
        return None

    monkeypatch.setattr(diag_api, 'open_transport', fake_open)
    client.put('/api/obd/settings', json={'connection_timeout_seconds': 9})
    r = client.post('/api/obd/connect', json={'target': 'tcp://192.168.0.10:35000'})
    assert r.status_code == 200
    assert seen == {'target': 'tcp://192.168.0.10:35000', 'connect_timeout': 9}
