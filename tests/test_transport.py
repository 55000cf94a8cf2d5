import socket
import time

import pytest
import serial

from elmbridge.errors import TransportError
from elmbridge.transport import (
    CallableTransport,
    SerialTransport,
    TcpTransport,
    find_device,
    open_transport,
)


class FakeSerial:
    def __init__(self, device, baud, timeout=None):
        self.device = device
        self.baud = baud
        self.is_open = True
        self.written = b''
        self._rx = b''

    @property
    def in_waiting(self):
        return len(self._rx)

    def write(self, b):
        self.written += b
        self._rx = b'ELM327 v1.5\r\r>'

    def flush(self):
        pass

    def read(self, n):
        out, self._rx = self._rx[:n], self._rx[n:]
        return out

    def close(self):
        self.is_open = False


def test_open_transport_selection():
    assert open_transport(None) is None
    assert open_transport('sim') is None
    t = open_transport('tcp://192.168.0.10:35001')
    assert isinstance(t, TcpTransport)
    assert (t.host, t.port) == ('192.168.0.10', 35001)
    assert open_transport('tcp://192.168.0.10').port == 35000
    s = open_transport('/dev/ttyUSB0', baud=115200)
    assert isinstance(s, SerialTransport)
    assert s.baud == 115200
    assert not s.is_open


def test_find_device_env(monkeypatch):
    monkeypatch.setenv('ELMBRIDGE_DEVICE', '/dev/rfcomm7')
    assert find_device() == '/dev/rfcomm7'


def test_find_device_fallbacks(monkeypatch):
    monkeypatch.delenv('ELMBRIDGE_DEVICE', raising=False)
    monkeypatch.setattr('os.path.exists', lambda p: False)
    monkeypatch.setattr('glob.glob', lambda pat: ['/dev/ttyUSB1', '/dev/ttyUSB0'])
    assert find_device() == '/dev/ttyUSB0'
    monkeypatch.setattr('glob.glob', lambda pat: [])
    assert find_device() is None


def test_callable_transport():
    sent = []
    t = CallableTransport(sent.append, lambda: None)
    t.write('ATZ\r')
    assert sent == ['ATZ\r']
    assert t.read() == ''


def test_serial_transport_lazy_open(monkeypatch):
    monkeypatch.setattr(serial, 'Serial', FakeSerial)
    with SerialTransport('/dev/ttyUSB0') as t:
        assert t.read() == ''
        t.write('ATZ\r')
        assert t.is_open
        assert t._ser.written == b'ATZ\r'
        assert t.read() == 'ELM327 v1.5\r\r>'
        assert t.read() == ''
    assert not t.is_open


def test_serial_transport_open_error(monkeypatch):
    def boom(*a, **kw):
        raise serial.SerialException('no such port')

    monkeypatch.setattr(serial, 'Serial', boom)
    with pytest.raises(TransportError):
        SerialTransport('/dev/nothing').write('ATZ\r')


def test_tcp_transport_round_trip():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(('127.0.0.1', 0))
    server.listen(1)
    port = server.getsockname()[1]
    t = TcpTransport('127.0.0.1', port)
    try:
        assert t.read() == ''
        t.write('ATZ\r')
        conn, _ = server.accept()
        assert conn.recv(16) == b'ATZ\r'
        assert t.read() == ''
        conn.sendall(b'ELM327 v2.1\r\r>')
        buf = ''
        deadline = time.monotonic() + 2
        while '>' not in buf and time.monotonic() < deadline:
            buf += t.read()
            time.sleep(0.01)
        assert buf == 'ELM327 v2.1\r\r>'
        conn.close()
        with pytest.raises(TransportError):
            deadline = time.monotonic() + 2
            while time.monotonic() < deadline:
                t.read()
                time.sleep(0.01)
    finally:
        t.close()
        server.close()
    assert not t.is_open


def test_tcp_transport_connect_error():
    spare = socket.socket()
    spare.bind(('127.0.0.1', 0))
    port = spare.getsockname()[1]
    spare.close()
    with pytest.raises(TransportError):
        TcpTransport('127.0.0.1', port, connect_timeout=0.5).write('ATZ\r')


def test_open_transport_connect_timeout():
    assert open_transport('tcp://192.168.0.10').connect_timeout == 5.0
    assert open_transport('tcp://192.168.0.10', connect_timeout=7).connect_timeout == 7.0
