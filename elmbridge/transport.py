"""Byte transports for ELM327 adapters.

A transport moves text in and out and nothing else: no prompt detection,
no echo stripping. `read()` returns whatever has arrived so far, which may
be a partial reply or an empty string. Framing is the connection
manager's job.
"""
import glob
import os
import socket
from abc import ABC, abstractmethod
from typing import Callable, Optional

import serial

from .errors import TransportError
from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_TCP_PORT = 35000


class Transport(ABC):
    @abstractmethod
    def write(self, data: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def read(self) -> str:
        raise NotImplementedError

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class CallableTransport(Transport):
    """Adapts an externally supplied (write, read) pair."""

    def __init__(self, write: Callable[[str], None], read: Callable[[], str]):
        self._write = write
        self._read = read

    def write(self, data: str) -> None:
        self._write(data)

    def read(self) -> str:
        return self._read() or ''


class SerialTransport(Transport):
    """USB and Bluetooth SPP (rfcomm) adapters through pyserial."""

    def __init__(self, device: str, baud: int = 38400, timeout: float = 0.05):
        self.device = device
        self.baud = int(baud)
        self.timeout = float(timeout)
        self._ser = None

    def open(self):
        logger.debug('Opening serial %s @%d', self.device, self.baud)
        try:
            self._ser = serial.Serial(self.device, self.baud, timeout=self.timeout)
        except serial.SerialException as e:
            raise TransportError(f'Serial port error: {e}') from e
        return self._ser

    @property
    def is_open(self) -> bool:
        return bool(self._ser and getattr(self._ser, 'is_open', False))

    def write(self, data: str) -> None:
        if not self.is_open:
            self.open()
        logger.debug('TX %r', data)
        try:
            self._ser.write(data.encode('ascii', errors='ignore'))
            self._ser.flush()
        except serial.SerialException as e:
            raise TransportError(f'Serial write failed: {e}') from e

    def read(self) -> str:
        if not self.is_open:
            return ''
        n = self._ser.in_waiting
        if not n:
            return ''
        chunk = self._ser.read(n)
        logger.debug('RX %d bytes from %s', len(chunk), self.device)
        return chunk.decode('ascii', errors='ignore')

    def close(self):
        if self.is_open:
            logger.debug('Closing serial %s', self.device)
            try:
                self._ser.close()
            except serial.SerialException as e:
                logger.debug('Error closing serial: %s', e)
        self._ser = None


class TcpTransport(Transport):
    """Wi-Fi adapters speaking ELM327 over a raw TCP socket."""

    def __init__(self, host: str, port: int = DEFAULT_TCP_PORT, connect_timeout: float = 5.0):
        self.host = host
        self.port = int(port)
        self.connect_timeout = float(connect_timeout)
        self._sock: Optional[socket.socket] = None

    def open(self):
        logger.debug('Connecting to %s:%d', self.host, self.port)
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError as e:
            raise TransportError(f'TCP connection to {self.host}:{self.port} failed: {e}') from e
        sock.setblocking(False)
        self._sock = sock
        return sock

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def write(self, data: str) -> None:
        if self._sock is None:
            self.open()
        logger.debug('TX %r', data)
        try:
            self._sock.sendall(data.encode('ascii', errors='ignore'))
        except OSError as e:
            raise TransportError(f'TCP write failed: {e}') from e

    def read(self) -> str:
        if self._sock is None:
            return ''
        try:
            chunk = self._sock.recv(4096)
        except BlockingIOError:
            return ''
        if not chunk:
            raise TransportError('TCP connection closed by adapter')
        return chunk.decode('ascii', errors='ignore')

    def close(self):
        if self._sock is not None:
            logger.debug('Closing socket %s:%d', self.host, self.port)
            try:
                self._sock.close()
            except OSError as e:
                logger.debug('Error closing socket: %s', e)
        self._sock = None


def find_device() -> Optional[str]:
    # priority: env ELMBRIDGE_DEVICE, /dev/rfcomm0, first /dev/ttyUSB*
    dev = os.environ.get('ELMBRIDGE_DEVICE')
    if dev:
        return dev
    if os.path.exists('/dev/rfcomm0'):
        return '/dev/rfcomm0'
    tty = sorted(glob.glob('/dev/ttyUSB*'))
    return tty[0] if tty else None


def open_transport(target: Optional[str], baud: int = 38400,
                   connect_timeout: float = 5.0) -> Optional[Transport]:
    """Pick a transport for `target` once, up front.

    None or 'sim' selects simulation (returns None), 'tcp://host[:port]'
    a TcpTransport, anything else is treated as a serial device path.
    `connect_timeout` bounds the TCP connect.
    """
    if not target or target == 'sim':
        return None
    if target.startswith('tcp://'):
        hostport = target[len('tcp://'):]
        host, _, port = hostport.partition(':')
        return TcpTransport(host, int(port) if port else DEFAULT_TCP_PORT,
                            connect_timeout=connect_timeout)
    return SerialTransport(target, baud=baud)
