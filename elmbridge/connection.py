"""ELM327 connection manager.

`ConnectionManager` owns the adapter lifecycle::

    disconnected -> (connecting) -> initializing -> connected <-> reading
                                           \\            \\
                                            +-> error <---+

Every exchange with the adapter goes through `send_command`, which hands
the command to one of two channels chosen when the transport is set: a
`TransportChannel` that writes to a real transport and polls for the
`>` prompt, or a `SimulatedChannel` backed by `SimulatedAdapter`. Nothing
above `send_command` looks at which one is active.

The manager is not thread-safe. The adapter link is half-duplex, so
callers must wait for each operation to finish before starting another.
"""
import time
from typing import Callable, Optional

from .errors import AdapterIdentificationError, CommandTimeout, ElmError
from .logger import get_logger
from .models import ConnectionInfo, ConnectionState, OBDReadResult, VehicleData
from .protocols import (
    ELM327_COMMANDS,
    ELM_PROMPT,
    build_init_sequence,
    build_protocol_command,
    build_timeout_command,
    decode_dtc_response,
    decode_pid,
    decode_vin,
    decode_voltage,
    describe_protocol,
    is_valid_elm327_response,
    parse_response,
)
from .settings import OBDSettings
from .simulator import SimulatedAdapter
from .transport import Transport

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 2.0
INIT_TIMEOUT = 3.0
LONG_TIMEOUT = 5.0
PID_TIMEOUT = DEFAULT_TIMEOUT
CONFIG_TIMEOUT = 0.5
PROTOCOL_TIMEOUT = 1.0
POLL_INTERVAL = 0.05

# (VehicleData field, mode 01 command), read in this order
LIVE_PIDS = (
    ('rpm', ELM327_COMMANDS['ENGINE_RPM']),
    ('speed', ELM327_COMMANDS['VEHICLE_SPEED']),
    ('coolant_temp', ELM327_COMMANDS['COOLANT_TEMP']),
    ('engine_load', ELM327_COMMANDS['ENGINE_LOAD']),
    ('throttle_position', ELM327_COMMANDS['THROTTLE_POS']),
    ('fuel_level', ELM327_COMMANDS['FUEL_LEVEL']),
)

StateCallback = Callable[[ConnectionInfo], None]


class TransportChannel:
    simulated = False

    def __init__(self, transport: Transport, poll_interval: float = POLL_INTERVAL):
        self.transport = transport
        self.poll_interval = poll_interval

    def open(self):
        if not getattr(self.transport, 'is_open', True):
            self.transport.open()

    def _drain(self):
        # discard leftovers from an earlier command that timed out
        for _ in range(16):
            try:
                stale = self.transport.read()
            except Exception as e:
                logger.debug('drain read error: %s', e)
                return
            if not stale:
                return
            logger.debug('Discarding stale input %r', stale)

    def execute(self, command: str, timeout: float) -> str:
        """Write `command` and poll until the reply contains the prompt.

        Partial reads are accumulated. Read errors are treated as "nothing
        yet". Raises CommandTimeout if no prompt arrives within `timeout`.
        """
        self._drain()
        self.transport.write(command + '\r')
        deadline = time.monotonic() + timeout
        buf = ''
        while True:
            try:
                chunk = self.transport.read()
            except Exception as e:
                logger.debug('read error while waiting for %s: %s', command, e)
                chunk = ''
            if chunk:
                buf += chunk
                if ELM_PROMPT in buf:
                    return buf
            if time.monotonic() >= deadline:
                raise CommandTimeout(command, timeout)
            time.sleep(self.poll_interval)

    def close(self):
        self.transport.close()


class SimulatedChannel:
    simulated = True

    def __init__(self, adapter: SimulatedAdapter):
        self.adapter = adapter

    def open(self):
        return None

    def execute(self, command: str, timeout: float) -> str:
        return self.adapter.respond(command)

    def close(self):
        return None


class ConnectionManager:
    def __init__(self,
                 transport: Optional[Transport] = None,
                 settings: Optional[OBDSettings] = None,
                 on_state_change: Optional[StateCallback] = None,
                 simulator: Optional[SimulatedAdapter] = None,
                 poll_interval: float = POLL_INTERVAL):
        self.on_state_change = on_state_change
        self.poll_interval = poll_interval
        self._simulator = simulator or SimulatedAdapter()
        self._settings = settings
        self._session = 0
        self._state = ConnectionState.DISCONNECTED
        self._reset_identity()
        self._channel = None
        self.set_transport(transport)

    def _reset_identity(self):
        self._device_name = ''
        self._device_address = ''
        self._protocol = ''
        self._voltage = ''
        self._last_error = ''

    # -- state -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_simulated(self) -> bool:
        return self._channel.simulated

    @property
    def settings(self) -> Optional[OBDSettings]:
        return self._settings

    @property
    def device_name(self) -> str:
        return self._device_name

    @property
    def device_address(self) -> str:
        return self._device_address

    def get_connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            state=self._state,
            device_name=self._device_name,
            device_address=self._device_address,
            protocol=self._protocol,
            voltage=self._voltage,
            error=self._last_error,
            is_simulated=self.is_simulated,
        )

    def _is_current(self, session: Optional[int]) -> bool:
        return session is None or session == self._session

    def _set_state(self, state: ConnectionState, error: Optional[str] = None,
                   session: Optional[int] = None) -> None:
        if not self._is_current(session):
            logger.debug('Ignoring %s from a finished session', state)
            return
        self._state = state
        if error:
            self._last_error = error
        logger.debug('State -> %s', state)
        self._notify()

    def _notify(self):
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(self.get_connection_info())
        except Exception as e:
            logger.warning('State observer failed: %s', e)

    # -- configuration ---------------------------------------------------

    def set_transport(self, transport: Optional[Transport]) -> None:
        """Attach a real transport, or None to run against the simulator."""
        old = self._channel
        if transport is None:
            self._channel = SimulatedChannel(self._simulator)
        else:
            self._channel = TransportChannel(transport, poll_interval=self.poll_interval)
        if old is not None and getattr(old, 'transport', None) is not transport:
            self._close_channel(old)

    def apply_settings(self, settings: OBDSettings) -> None:
        self._settings = settings
        if self._state == ConnectionState.CONNECTED and not self.is_simulated:
            self._configure_connection()

    def _configure_connection(self):
        settings = self._settings
        if settings is None or self.is_simulated:
            return
        commands = []
        if settings.atst_mode == 'manual':
            commands.append(build_timeout_command(settings.atst_value))
        commands.extend(settings.custom_init_commands)
        for cmd in commands:
            try:
                self.send_command(cmd, CONFIG_TIMEOUT)
            except Exception as e:
                logger.warning('Failed to apply %s: %s', cmd, e)

    # -- command primitive -----------------------------------------------

    def send_command(self, command: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        """Send one command and return the raw reply (prompt included)."""
        logger.debug('-> %s', command)
        response = self._channel.execute(command, timeout)
        logger.debug('<- %r', response)
        return response

    # -- operations --------------------------------------------------------

    def initialize(self, device_name: str = 'OBD2 Adapter', device_address: str = '') -> bool:
        """Bring the adapter up. Returns False (state error) on any failure."""
        session = self._session
        self._device_name = device_name
        self._device_address = device_address
        self._last_error = ''
        try:
            if not self.is_simulated:
                self._set_state(ConnectionState.CONNECTING, session=session)
                self._channel.open()
            self._set_state(ConnectionState.INITIALIZING, session=session)

            reset = ELM327_COMMANDS['RESET']
            for command in build_init_sequence():
                response = self.send_command(command, INIT_TIMEOUT)
                if command == reset and not is_valid_elm327_response(response):
                    raise AdapterIdentificationError(
                        'Invalid ELM327 response - device may not be an ELM327')

            settings = self._settings
            if settings is not None and settings.preferred_protocol != 'auto':
                try:
                    self.send_command(build_protocol_command(settings.preferred_protocol),
                                      PROTOCOL_TIMEOUT)
                except Exception as e:
                    logger.warning('Failed to set preferred protocol: %s', e)
            if settings is not None:
                self._configure_connection()

            protocol = describe_protocol(self.send_command(ELM327_COMMANDS['DESCRIBE_PROTOCOL']))
            voltage = decode_voltage(self.send_command(ELM327_COMMANDS['READ_VOLTAGE'])) or 'N/A'
        except Exception as e:
            logger.warning('Initialization of %s failed: %s', device_name, e)
            self._set_state(ConnectionState.ERROR, str(e) or type(e).__name__, session=session)
            return False

        if not self._is_current(session):
            return False
        self._protocol = protocol
        self._voltage = voltage
        logger.info('Connected to %s (%s, %s)', device_name, protocol, voltage)
        self._set_state(ConnectionState.CONNECTED, session=session)
        return True

    def read_dtc_codes(self) -> OBDReadResult:
        """Read stored codes (mode 03) followed by a live data snapshot."""
        return self._read_codes(ELM327_COMMANDS['READ_DTC'], '43', with_live_data=True)

    def read_pending_dtc_codes(self) -> OBDReadResult:
        """Read pending codes (mode 07)."""
        return self._read_codes(ELM327_COMMANDS['READ_PENDING_DTC'], '47', with_live_data=False)

    def _read_codes(self, command: str, prefix: str, with_live_data: bool) -> OBDReadResult:
        if self._state != ConnectionState.CONNECTED:
            return OBDReadResult(success=False, error='Not connected')

        session = self._session
        self._set_state(ConnectionState.READING, session=session)
        try:
            raw = self.send_command(command, LONG_TIMEOUT)
            parsed = parse_response(raw)
            if not parsed.success:
                raise ElmError(parsed.error)
            dtcs = decode_dtc_response(raw, prefix=prefix)
            if with_live_data:
                vehicle_data = self.read_vehicle_data()
            else:
                vehicle_data = VehicleData(battery_voltage=self._voltage or None)
        except Exception as e:
            logger.warning('Reading %s failed: %s', command, e)
            self._set_state(ConnectionState.ERROR, str(e) or type(e).__name__, session=session)
            return OBDReadResult(success=False, error=str(e))

        if not self._is_current(session):
            return OBDReadResult(success=False, error='Disconnected during read')
        self._set_state(ConnectionState.CONNECTED, session=session)
        return OBDReadResult(
            success=True,
            dtc_codes=[d.code for d in dtcs],
            parsed_dtcs=dtcs,
            vehicle_data=vehicle_data,
            raw_response=raw,
        )

    def read_vehicle_data(self) -> VehicleData:
        """Read the live PIDs one after another.

        Each PID has its own timeout; a failed read leaves that field None
        and does not stop the others. Battery voltage is the value read
        during initialize.
        """
        data = VehicleData(battery_voltage=self._voltage or None)
        if self._state not in (ConnectionState.CONNECTED, ConnectionState.READING):
            return data
        for field_name, pid in LIVE_PIDS:
            try:
                value = decode_pid(self.send_command(pid, PID_TIMEOUT), pid)
            except Exception as e:
                logger.warning('Error reading %s: %s', pid, e)
                continue
            setattr(data, field_name, value)
        return data

    def read_vin(self) -> Optional[str]:
        if self._state != ConnectionState.CONNECTED:
            return None
        try:
            return decode_vin(self.send_command(ELM327_COMMANDS['VIN'], LONG_TIMEOUT))
        except Exception as e:
            logger.warning('Error reading VIN: %s', e)
            return None

    def clear_dtc_codes(self) -> bool:
        if self._state != ConnectionState.CONNECTED:
            return False
        try:
            raw = self.send_command(ELM327_COMMANDS['CLEAR_DTC'], LONG_TIMEOUT)
        except Exception as e:
            logger.warning('Error clearing DTCs: %s', e)
            return False
        parsed = parse_response(raw)
        if not parsed.success:
            logger.warning('Clear DTCs rejected: %s', parsed.error)
            return False
        return True

    def disconnect(self) -> None:
        """Drop the transport and return to disconnected. Safe to repeat."""
        self._session += 1
        old = self._channel
        self._channel = SimulatedChannel(self._simulator)
        self._close_channel(old)
        self._reset_identity()
        self._state = ConnectionState.DISCONNECTED
        logger.debug('State -> %s', self._state)
        self._notify()

    @staticmethod
    def _close_channel(channel):
        try:
            channel.close()
        except Exception as e:
            logger.debug('Error closing channel: %s', e)


__all__ = [
    'ConnectionManager',
    'TransportChannel',
    'SimulatedChannel',
    'CommandTimeout',
    'LIVE_PIDS',
]
