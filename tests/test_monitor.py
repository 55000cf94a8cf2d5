import random

from elmbridge.connection import ConnectionManager
from elmbridge.models import ConnectionState
from elmbridge.monitor import LiveMonitor
from elmbridge.settings import OBDSettings
from elmbridge.simulator import SimulatedAdapter

from test_connection import FakeAdapter

FAST = OBDSettings(polling_interval_ms=0)


def sim_manager():
    mgr = ConnectionManager(simulator=SimulatedAdapter(delay_range=(0, 0), rng=random.Random(8)))
    assert mgr.initialize()
    return mgr


def test_poll_once_reads_when_connected():
    data = LiveMonitor(sim_manager(), FAST).poll_once()
    assert data is not None
    assert data.rpm is not None
    assert data.battery_voltage.endswith('V')


def test_poll_once_disconnected_returns_none():
    mgr = ConnectionManager(transport=FakeAdapter())
    assert LiveMonitor(mgr, FAST).poll_once() is None


def test_run_cycles_and_callback():
    seen = []
    samples = LiveMonitor(sim_manager(), FAST).run(cycles=3, callback=seen.append)
    assert len(samples) == 3
    assert seen == samples


def test_run_duration_stops():
    samples = LiveMonitor(sim_manager(), OBDSettings(polling_interval_ms=10)).run(duration=0.05)
    assert 1 <= len(samples) <= 10


def _errored_manager():
    fake = FakeAdapter({'03': '?\r>', '010C': '410C0FA0\r\r>'})
    mgr = ConnectionManager(transport=fake, poll_interval=0.001)
    assert mgr.initialize('OBDLink MX', '/dev/rfcomm0')
    assert not mgr.read_dtc_codes().success
    assert mgr.state == ConnectionState.ERROR
    return mgr, fake


def test_auto_reconnect_from_error():
    mgr, fake = _errored_manager()
    monitor = LiveMonitor(mgr, FAST)
    n = len(fake.writes)
    data = monitor.poll_once()
    assert monitor.reconnects == 1
    assert fake.writes[n] == 'ATZ'
    assert mgr.state == ConnectionState.CONNECTED
    assert mgr.device_name == 'OBDLink MX'
    assert data.rpm == 1000


def test_no_reconnect_when_disabled():
    mgr, fake = _errored_manager()
    n = len(fake.writes)
    monitor = LiveMonitor(mgr, OBDSettings(auto_reconnect=False, polling_interval_ms=0))
    assert monitor.poll_once() is None
    assert monitor.reconnects == 0
    assert fake.writes[n:] == []
    assert mgr.state == ConnectionState.ERROR


def test_unlimited_run_keeps_no_samples():
    monitor = LiveMonitor(sim_manager(), FAST)
    seen = []

    def on_sample(data):
        seen.append(data)
        if len(seen) == 5:
            monitor.stop()

    samples = monitor.run(callback=on_sample)
    assert samples == []
    assert len(seen) == 5
    assert seen[0].rpm is not None
