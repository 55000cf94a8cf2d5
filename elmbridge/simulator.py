"""Simulated ELM327 adapter.

Produces the same wire text a real adapter would (hex payloads, `\\r\\r>`
terminator) so simulated replies are decoded by exactly the same code as
real ones. Only the encode side lives here: values are packed with the
codec's encoders and unpacked later by its decoders.
"""
import random
import time
from typing import Optional, Sequence, Tuple

from .logger import get_logger
from .protocols import encode_dtc, encode_pid_value, encode_vin, normalize_command

logger = get_logger(__name__)

SIMULATED_DTC_CODES = ('P0171', 'P0300', 'P0420', 'P0128', 'C0035', 'B1000', 'U0100')
SIMULATED_VIN = '1HGCM82633A004352'
ELM_VERSION = 'ELM327 v1.5'
TERMINATOR = '\r\r>'


class SimulatedAdapter:
    """Answers ELM327 commands without hardware.

    `delay_range` is the per-command latency in seconds, `dtc_probability`
    the chance that a mode 03 request reports stored codes. Pass a seeded
    `rng` for repeatable output.
    """

    def __init__(self,
                 delay_range: Tuple[float, float] = (0.1, 0.3),
                 dtc_probability: float = 0.7,
                 pending_probability: float = 0.3,
                 dtc_codes: Sequence[str] = SIMULATED_DTC_CODES,
                 vin: str = SIMULATED_VIN,
                 rng: Optional[random.Random] = None):
        self.delay_range = delay_range
        self.dtc_probability = dtc_probability
        self.pending_probability = pending_probability
        self.dtc_codes = tuple(dtc_codes)
        self.vin = vin
        self.rng = rng or random.Random()

    def respond(self, command: str) -> str:
        lo, hi = self.delay_range
        if hi > 0:
            time.sleep(self.rng.uniform(lo, hi))
        body = self._dispatch(normalize_command(command))
        logger.debug('SIM %s -> %s', command, body)
        return body + TERMINATOR

    def _dispatch(self, cmd: str) -> str:
        if cmd.startswith('AT'):
            return self._at(cmd)
        if cmd.startswith('01') and len(cmd) == 4:
            return self._live(cmd)
        if cmd == '03':
            return self._codes('43', self.dtc_probability)
        if cmd == '07':
            return self._codes('47', self.pending_probability)
        if cmd == '04':
            return '44'
        if cmd == '0902':
            return encode_vin(self.vin)
        return 'NO DATA'

    def _at(self, cmd: str) -> str:
        if cmd in ('ATZ', 'ATWS', 'ATI'):
            return ELM_VERSION
        if cmd == 'ATDP':
            return 'AUTO, ISO 15765-4 (CAN 11/500)'
        if cmd == 'ATDPN':
            return 'A6'
        if cmd == 'ATRV':
            return f'{self.rng.uniform(12.0, 14.5):.1f}V'
        return 'OK'

    def _live(self, cmd: str) -> str:
        r = self.rng
        if cmd == '0100':
            return '4100BE3FB813'
        values = {
            '010C': lambda: r.uniform(700, 3500),
            '010D': lambda: r.randint(0, 120),
            '0105': lambda: r.randint(80, 105),
            '010F': lambda: r.randint(15, 45),
            '0104': lambda: r.uniform(15, 75),
            '0111': lambda: r.uniform(0, 60),
            '012F': lambda: r.uniform(10, 100),
            '010E': lambda: r.uniform(-5, 35),
            '0110': lambda: r.uniform(2, 40),
        }
        gen = values.get(cmd)
        if gen is None:
            return 'NO DATA'
        return encode_pid_value(cmd, gen())

    def _codes(self, prefix: str, probability: float) -> str:
        if not self.dtc_codes or self.rng.random() >= probability:
            return prefix + '00'
        count = self.rng.randint(1, min(3, len(self.dtc_codes)))
        picked = self.rng.sample(self.dtc_codes, count)
        return prefix + ''.join(encode_dtc(c) for c in picked)
