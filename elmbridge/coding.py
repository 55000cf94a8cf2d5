"""Run catalog coding functions against a ConnectionManager.

Real adapters get the function's commands one by one, stopping at the
first reply that looks like an error. In simulation each step is faked
with a short delay and a canned reply, with an occasional injected
failure so error paths get exercised.
"""
import random
import time
from typing import Callable, Optional, Tuple

from .connection import ConnectionManager
from .logger import get_logger
from .models import CodingFunction, CodingFunctionResult, ConnectionState

logger = get_logger(__name__)

COMMAND_TIMEOUT = 5.0
PRO_REQUIRED = 'This function requires a Pro subscription'
NOT_CONNECTED = 'Not connected to the vehicle'

ProgressCallback = Callable[[int, int, str], None]


class CodingRunner:
    def __init__(self, manager: ConnectionManager,
                 step_delay_range: Tuple[float, float] = (0.3, 0.8),
                 failure_rate: float = 0.1,
                 rng: Optional[random.Random] = None,
                 command_delay: float = 0.2):
        self.manager = manager
        self.step_delay_range = step_delay_range
        self.failure_rate = failure_rate
        self.rng = rng or random.Random()
        self.command_delay = command_delay

    def can_execute(self, function: CodingFunction, is_entitled: bool) -> Tuple[bool, Optional[str]]:
        """Check entitlement then connection. Sends nothing."""
        if function.requires_pro and not is_entitled:
            return False, PRO_REQUIRED
        if self.manager.state != ConnectionState.CONNECTED:
            return False, NOT_CONNECTED
        return True, None

    def execute(self, function: CodingFunction,
                on_progress: Optional[ProgressCallback] = None) -> CodingFunctionResult:
        start = time.monotonic()
        if self.manager.state != ConnectionState.CONNECTED:
            return CodingFunctionResult(False, function.id, NOT_CONNECTED)
        logger.info('Executing %s (%d commands)', function.id, len(function.commands))
        try:
            if self.manager.is_simulated:
                result = self._simulate(function, on_progress)
            else:
                result = self._run(function, on_progress)
        except Exception as e:
            logger.warning('Coding function %s failed: %s', function.id, e)
            result = CodingFunctionResult(False, function.id, 'Error during execution', details=str(e))
        result.duration_s = time.monotonic() - start
        logger.info('%s finished: %s', function.id, 'ok' if result.success else result.message)
        return result

    def _progress(self, on_progress, step, total, message):
        if on_progress is None:
            return
        try:
            on_progress(step, total, message)
        except Exception as e:
            logger.debug('progress callback failed: %s', e)

    def _run(self, function: CodingFunction, on_progress) -> CodingFunctionResult:
        responses = []
        total = len(function.commands)
        for i, command in enumerate(function.commands, start=1):
            self._progress(on_progress, i, total, f'Executing command {i}/{total}...')
            try:
                response = self.manager.send_command(command, COMMAND_TIMEOUT)
            except Exception as e:
                logger.warning('%s: command %d (%s) failed: %s', function.id, i, command, e)
                return CodingFunctionResult(
                    False, function.id, f'Error executing command {i}',
                    raw_responses=responses, details=str(e))
            responses.append(response)
            if 'ERROR' in response or '?' in response:
                return CodingFunctionResult(
                    False, function.id, f'Command {i} failed: not supported',
                    raw_responses=responses,
                    details=f'Command: {command}\nResponse: {response}')
            if self.command_delay > 0:
                time.sleep(self.command_delay)
        return CodingFunctionResult(True, function.id, 'Function executed successfully',
                                    raw_responses=responses)

    def _simulate(self, function: CodingFunction, on_progress) -> CodingFunctionResult:
        responses = []
        total = len(function.commands)
        lo, hi = self.step_delay_range
        for i, command in enumerate(function.commands, start=1):
            self._progress(on_progress, i, total, f'Executing step {i}/{total}...')
            if hi > 0:
                time.sleep(self.rng.uniform(lo, hi))
            if i == 1 or i == total:
                responses.append('OK\r\n>')
            else:
                responses.append(f"71 {''.join(command.split())[:4]}\r\n>")

        if self.rng.random() < self.failure_rate:
            return CodingFunctionResult(
                False, function.id, 'Simulation: ECU communication failure',
                raw_responses=responses,
                details='Injected failure in simulation mode. Check the connection on a real vehicle.')
        return CodingFunctionResult(
            True, function.id, 'Function executed successfully (simulation)',
            raw_responses=responses,
            details='Executed in simulation mode. Connect to a vehicle for a real effect.')
