"""Protocol helpers: ELM327 command constants and response decoding.

Everything in this module is pure. Raw adapter replies go in as text
(including echo, line endings and the trailing `>` prompt) and typed
values come out. Malformed input never raises: decoders return None or an
empty list so a single bad frame cannot abort a whole read.
"""
import re
from typing import Dict, List, Optional

from .models import ElmResponse, ParsedDTC

ELM_PROMPT = '>'
NO_DATA = 'NO DATA'

ELM327_COMMANDS = {
    # initialization
    'RESET': 'ATZ',
    'ECHO_OFF': 'ATE0',
    'ECHO_ON': 'ATE1',
    'LINEFEED_OFF': 'ATL0',
    'LINEFEED_ON': 'ATL1',
    'HEADERS_OFF': 'ATH0',
    'HEADERS_ON': 'ATH1',
    'SPACES_OFF': 'ATS0',
    'SPACES_ON': 'ATS1',
    # protocol selection
    'AUTO_PROTOCOL': 'ATSP0',
    'DESCRIBE_PROTOCOL': 'ATDP',
    'DESCRIBE_PROTOCOL_NUM': 'ATDPN',
    # adapter information
    'READ_VOLTAGE': 'ATRV',
    'DEVICE_INFO': 'ATI',
    # mode 01 live data
    'SUPPORTED_PIDS': '0100',
    'ENGINE_LOAD': '0104',
    'COOLANT_TEMP': '0105',
    'FUEL_PRESSURE': '010A',
    'INTAKE_MANIFOLD': '010B',
    'ENGINE_RPM': '010C',
    'VEHICLE_SPEED': '010D',
    'TIMING_ADVANCE': '010E',
    'INTAKE_TEMP': '010F',
    'MAF_RATE': '0110',
    'THROTTLE_POS': '0111',
    'FUEL_LEVEL': '012F',
    # trouble codes
    'READ_DTC': '03',
    'CLEAR_DTC': '04',
    'READ_PENDING_DTC': '07',
    # mode 09 vehicle information
    'VIN': '0902',
    'CALIBRATION_ID': '0904',
    'ECU_NAME': '090A',
}

OBD_PROTOCOLS: Dict[str, str] = {
    '0': 'Automatic',
    '1': 'SAE J1850 PWM (41.6 Kbaud)',
    '2': 'SAE J1850 VPW (10.4 Kbaud)',
    '3': 'ISO 9141-2 (5 baud init, 10.4 Kbaud)',
    '4': 'ISO 14230-4 KWP (5 baud init, 10.4 Kbaud)',
    '5': 'ISO 14230-4 KWP (fast init, 10.4 Kbaud)',
    '6': 'ISO 15765-4 CAN (11 bit ID, 500 Kbaud)',
    '7': 'ISO 15765-4 CAN (29 bit ID, 500 Kbaud)',
    '8': 'ISO 15765-4 CAN (11 bit ID, 250 Kbaud)',
    '9': 'ISO 15765-4 CAN (29 bit ID, 250 Kbaud)',
    'A': 'SAE J1939 CAN (29 bit ID, 250* Kbaud)',
    'B': 'USER1 CAN (11* bit ID, 125* Kbaud)',
    'C': 'USER2 CAN (11* bit ID, 50* Kbaud)',
}

DTC_SYSTEMS = {
    'P': 'Powertrain',
    'C': 'Chassis',
    'B': 'Body',
    'U': 'Network/Communication',
}
_SYSTEM_LETTERS = 'PCBU'

_HEX4 = re.compile(r'^[0-9A-Fa-f]{4}$')
_DTC_CODE = re.compile(r'^([PCBU])([0-3])([0-9A-F]{3})$')
_VOLTAGE = re.compile(r'(\d+\.?\d*)\s*V', re.IGNORECASE)

# PIDs decoded as A*100/255
_PERCENT_PIDS = ('0104', '0111', '012F')
_TEMPERATURE_PIDS = ('0105', '010F')
_WORD_PIDS = ('010C', '0110')


def build_init_sequence() -> List[str]:
    """Return the ordered adapter init commands. Reset must stay first."""
    c = ELM327_COMMANDS
    return [c['RESET'], c['ECHO_OFF'], c['LINEFEED_OFF'], c['SPACES_OFF'],
            c['HEADERS_OFF'], c['AUTO_PROTOCOL']]


def build_timeout_command(value: int) -> str:
    """ATST takes one hex byte (units of 4 ms)."""
    return f'ATST{int(value) & 0xFF:02X}'


def build_protocol_command(protocol: str) -> str:
    return f'ATSP{protocol}'


def is_valid_elm327_response(response: str) -> bool:
    """True when a reset reply identifies an ELM327/OBD adapter."""
    up = (response or '').upper()
    return 'ELM' in up or 'OBD' in up


def normalize_command(command: str) -> str:
    return ''.join((command or '').split()).upper()


def parse_response(raw: str) -> ElmResponse:
    """Classify a raw adapter reply.

    Error markers win over everything else, then NO DATA (which is a
    successful exchange with nothing to report), then bus/ECU failures.
    Anything else is cleaned down to its hex payload: prompt removed, the
    echoed first line dropped when more than one line remains, whitespace
    stripped.
    """
    raw_data = raw if raw is not None else ''
    data = raw_data.strip()
    up = data.upper()

    if '?' in up or 'ERROR' in up:
        return ElmResponse(False, '', raw_data, 'Invalid command or no response')
    if NO_DATA in up or not data:
        return ElmResponse(True, NO_DATA, raw_data)
    if 'UNABLE TO CONNECT' in up:
        return ElmResponse(False, '', raw_data, 'Unable to connect to vehicle ECU')
    if 'BUS INIT' in up:
        return ElmResponse(False, '', raw_data, 'Bus initialization error')

    text = data.replace(ELM_PROMPT, '')
    lines = [ln for ln in re.split(r'[\r\n]+', text) if ln.strip()]
    if len(lines) > 1:
        # first line is the adapter echoing the command
        lines = lines[1:]
    payload = re.sub(r'\s', '', ''.join(lines))
    if not payload:
        return ElmResponse(True, NO_DATA, raw_data)
    return ElmResponse(True, payload, raw_data)


def decode_dtc(hex_code: str) -> Optional[ParsedDTC]:
    """Decode a 4-hex-digit DTC window into a ParsedDTC.

    Per SAE J2012 the top two bits of the first byte select the system
    letter, the next two bits the category digit, and the low 12 bits the
    code number. `0000` is an empty slot and yields None, as does any
    window that is not exactly four hex digits.
    """
    if not hex_code or not _HEX4.match(hex_code):
        return None
    if hex_code == '0000':
        return None
    first = int(hex_code[:2], 16)
    second = int(hex_code[2:], 16)
    letter = _SYSTEM_LETTERS[(first >> 6) & 0x03]
    category = (first >> 4) & 0x03
    number = ((first & 0x0F) << 8) | second
    is_generic = category == 0
    return ParsedDTC(
        code=f'{letter}{category}{number:03X}',
        system=DTC_SYSTEMS[letter],
        category='Generic (SAE)' if is_generic else 'Manufacturer Specific',
        is_generic=is_generic,
    )


def encode_dtc(code: str) -> str:
    """Pack a DTC string like P0171 back into its 4-hex wire form."""
    m = _DTC_CODE.match((code or '').upper())
    if not m:
        raise ValueError(f'not a DTC code: {code!r}')
    letter, category, number = m.groups()
    value = (_SYSTEM_LETTERS.index(letter) << 14) | (int(category) << 12) | int(number, 16)
    return f'{value:04X}'


def decode_dtc_response(raw: str, prefix: str = '43') -> List[ParsedDTC]:
    """Decode a mode 03 (or 07 with prefix '47') reply into DTCs."""
    parsed = parse_response(raw)
    if not parsed.success or parsed.data == NO_DATA:
        return []
    data = parsed.data.upper()
    if data.startswith(prefix):
        data = data[len(prefix):]
    dtcs = []
    for i in range(0, len(data) - 3, 4):
        dtc = decode_dtc(data[i:i + 4])
        if dtc:
            dtcs.append(dtc)
    return dtcs


def _pid_formula(pid: str, values: List[int]) -> float:
    a = values[0]
    b = values[1] if len(values) > 1 else 0
    if pid == '010C':
        return ((a * 256) + b) / 4
    if pid == '010D':
        return a
    if pid in _TEMPERATURE_PIDS:
        return a - 40
    if pid in _PERCENT_PIDS:
        return (a * 100) / 255
    if pid == '010E':
        return (a / 2) - 64
    if pid == '0110':
        return ((a * 256) + b) / 100
    return a


def decode_pid(raw: str, pid: str) -> Optional[float]:
    """Decode a mode 01 reply for `pid` (e.g. '010C') into physical units."""
    parsed = parse_response(raw)
    if not parsed.success or parsed.data == NO_DATA:
        return None
    pid = normalize_command(pid)
    data = parsed.data.upper()
    if data.startswith('41'):
        data = data[2:]
        if data.startswith(pid[2:]):
            data = data[len(pid[2:]):]
    values = []
    for i in range(0, len(data), 2):
        try:
            values.append(int(data[i:i + 2], 16))
        except ValueError:
            return None
    if not values:
        return None
    return _pid_formula(pid, values)


def encode_pid_value(pid: str, value: float) -> str:
    """Inverse of decode_pid: build the '41<pid><bytes>' payload for a value."""
    pid = normalize_command(pid)
    if pid == '010C':
        raw, width = round(value * 4), 2
    elif pid == '0110':
        raw, width = round(value * 100), 2
    elif pid in _TEMPERATURE_PIDS:
        raw, width = round(value + 40), 1
    elif pid in _PERCENT_PIDS:
        raw, width = round(value * 255 / 100), 1
    elif pid == '010E':
        raw, width = round((value + 64) * 2), 1
    else:
        raw, width = round(value), 1
    raw = max(0, min(int(raw), (1 << (8 * width)) - 1))
    return f'41{pid[2:]}{raw:0{width * 2}X}'


def decode_vin(raw: str) -> Optional[str]:
    """Decode a mode 09 PID 02 reply into a 17-character VIN."""
    parsed = parse_response(raw)
    if not parsed.success or parsed.data == NO_DATA:
        return None
    data = parsed.data.upper().replace('4902', '')
    chars = []
    for i in range(0, len(data) - 1, 2):
        try:
            code = int(data[i:i + 2], 16)
        except ValueError:
            continue
        if 32 <= code <= 126:
            chars.append(chr(code))
    vin = ''.join(chars)
    return vin[:17] if len(vin) >= 17 else None


def encode_vin(vin: str) -> str:
    """Build a single-frame '4902' reply carrying `vin`."""
    return '490201' + vin.encode('ascii').hex().upper()


def decode_voltage(raw: str) -> Optional[str]:
    """Extract an ATRV reading like '12.4V' from the raw reply."""
    if not parse_response(raw).success:
        return None
    m = _VOLTAGE.search(raw or '')
    return f'{m.group(1)}V' if m else None


def describe_protocol(raw: str) -> str:
    """Clean an ATDP reply down to the protocol description."""
    return re.sub(r'[\r\n>]', '', raw or '').strip() or 'AUTO'
