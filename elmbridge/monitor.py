"""Periodic live-data polling with the caller-side reconnect policy."""
import time
from typing import Callable, List, Optional

from .connection import ConnectionManager
from .logger import get_logger
from .models import ConnectionState, VehicleData
from .settings import DEFAULT_SETTINGS, OBDSettings

logger = get_logger(__name__)


class LiveMonitor:
    """Poll `read_vehicle_data` at the configured interval.

    When the manager has dropped into the error state and
    `settings.auto_reconnect` is on, the next poll re-runs `initialize`
    with the same device identity before reading. The manager itself
    never retries.
    """

    def __init__(self, manager: ConnectionManager, settings: Optional[OBDSettings] = None):
        self.manager = manager
        self.settings = settings or manager.settings or DEFAULT_SETTINGS
        self._device_name = manager.device_name or 'OBD2 Adapter'
        self._device_address = manager.device_address
        self.reconnects = 0
        self._running = False

    def _reconnect(self) -> bool:
        logger.info('Reconnecting to %s', self._device_name)
        self.reconnects += 1
        return self.manager.initialize(self._device_name, self._device_address)

    def poll_once(self) -> Optional[VehicleData]:
        state = self.manager.state
        if state == ConnectionState.ERROR and self.settings.auto_reconnect:
            if not self._reconnect():
                return None
            state = self.manager.state
        if state != ConnectionState.CONNECTED:
            return None
        if self.manager.device_name:
            self._device_name = self.manager.device_name
            self._device_address = self.manager.device_address
        return self.manager.read_vehicle_data()

    def stop(self):
        """Ask a running `run()` to return after the current poll."""
        self._running = False

    def run(self, cycles: Optional[int] = None, duration: Optional[float] = None,
            callback: Optional[Callable[[VehicleData], None]] = None) -> List[VehicleData]:
        """Poll until `cycles` samples or `duration` seconds, whichever first.

        With neither limit the loop runs until `stop()` or an interrupt,
        and samples only go to `callback`; the returned list stays empty.
        With a limit they are passed to `callback` and also returned.
        """
        interval = self.settings.polling_interval_ms / 1000.0
        deadline = time.monotonic() + duration if duration is not None else None
        keep = cycles is not None or duration is not None
        samples: List[VehicleData] = []
        n = 0
        self._running = True
        while self._running and (cycles is None or n < cycles):
            if deadline is not None and time.monotonic() >= deadline:
                break
            n += 1
            data = self.poll_once()
            if data is not None:
                if keep:
                    samples.append(data)
                if callback is not None:
                    callback(data)
            else:
                logger.debug('poll %d: no data (state %s)', n, self.manager.state)
            if interval > 0 and self._running and (cycles is None or n < cycles):
                time.sleep(interval)
        self._running = False
        return samples
