import random

from elmbridge.coding import NOT_CONNECTED, PRO_REQUIRED, CodingRunner
from elmbridge.coding_functions import (
    CATEGORY_LABELS,
    RISK_LEVELS,
    functions_by_category,
    functions_for_plan,
    get_function,
    list_functions,
)
from elmbridge.connection import ConnectionManager
from elmbridge.simulator import SimulatedAdapter

from test_connection import FakeAdapter


def connected_fake(replies=None):
    fake = FakeAdapter(replies)
    mgr = ConnectionManager(transport=fake, poll_interval=0.001)
    assert mgr.initialize()
    return mgr, fake


def simulated_manager():
    sim = SimulatedAdapter(delay_range=(0, 0), rng=random.Random(3))
    mgr = ConnectionManager(simulator=sim)
    assert mgr.initialize()
    return mgr


def test_catalog_shape():
    fns = list_functions()
    assert len(fns) == 19
    assert len({f.id for f in fns}) == 19
    for f in fns:
        assert f.category in CATEGORY_LABELS
        assert f.risk_level in RISK_LEVELS
        assert f.commands
    assert sum(len(functions_by_category(c)) for c in CATEGORY_LABELS) == 19
    assert get_function('nope') is None


def test_catalog_routines():
    drl = get_function('activate_drl')
    assert drl.commands == ('AT SH 765', '3E 00', '10 02', '2E 10 00 01', '10 01')
    assert get_function('read_freeze_frame').confirmation_required is False
    assert get_function('clear_freeze_frame').commands == ('04',)
    assert get_function('calibrate_accelerometer').risk_level == 'high'


def test_functions_for_plan():
    assert functions_for_plan(True) == list_functions()
    assert functions_for_plan(False) == [f for f in list_functions() if not f.requires_pro]


def test_can_execute_gates():
    fake = FakeAdapter()
    runner = CodingRunner(ConnectionManager(transport=fake))
    fn = get_function('reset_fuel_trim')
    assert runner.can_execute(fn, False) == (False, PRO_REQUIRED)
    assert runner.can_execute(fn, True) == (False, NOT_CONNECTED)
    assert fake.writes == []

    mgr, _ = connected_fake()
    assert CodingRunner(mgr).can_execute(fn, True) == (True, None)


def test_execute_when_disconnected_sends_nothing():
    fake = FakeAdapter()
    runner = CodingRunner(ConnectionManager(transport=fake))
    result = runner.execute(get_function('activate_drl'))
    assert not result.success
    assert result.message == NOT_CONNECTED
    assert result.raw_responses == []
    assert fake.writes == []


def test_execute_simulated_when_disconnected():
    mgr = ConnectionManager(simulator=SimulatedAdapter(delay_range=(0, 0), rng=random.Random(3)))
    steps = []
    result = CodingRunner(mgr).execute(get_function('activate_drl'),
                                       on_progress=lambda *a: steps.append(a))
    assert result.success is False
    assert result.message == NOT_CONNECTED
    assert result.raw_responses == []
    assert steps == []


def test_execute_real_runs_commands_in_order():
    mgr, fake = connected_fake()
    n = len(fake.writes)
    steps = []
    runner = CodingRunner(mgr, command_delay=0)
    fn = get_function('activate_drl')
    result = runner.execute(fn, on_progress=lambda s, t, m: steps.append((s, t)))
    assert result.success
    assert result.function_id == 'activate_drl'
    assert fake.writes[n:] == list(fn.commands)
    assert steps == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]
    assert len(result.raw_responses) == 5
    assert result.duration_s >= 0


def test_execute_real_aborts_on_error_reply():
    mgr, fake = connected_fake({'1002': '7F 10 12\r?\r>'})
    n = len(fake.writes)
    result = CodingRunner(mgr, command_delay=0).execute(get_function('activate_drl'))
    assert not result.success
    assert result.message == 'Command 3 failed: not supported'
    assert 'Command: 10 02' in result.details
    assert len(result.raw_responses) == 3
    assert fake.writes[n:] == ['AT SH 765', '3E 00', '10 02']


def test_execute_real_aborts_on_exception(monkeypatch):
    monkeypatch.setattr('elmbridge.coding.COMMAND_TIMEOUT', 0.02)
    mgr, fake = connected_fake({'3E00': ''})
    result = CodingRunner(mgr, command_delay=0).execute(get_function('test_cooling_fan'))
    assert not result.success
    assert result.message == 'Error executing command 2'
    assert 'Command timeout' in result.details
    assert len(result.raw_responses) == 1


def test_progress_callback_errors_are_ignored():
    mgr, _ = connected_fake()

    def bad_progress(step, total, message):
        raise RuntimeError('ui gone')

    result = CodingRunner(mgr, command_delay=0).execute(get_function('clear_freeze_frame'), bad_progress)
    assert result.success


def test_simulated_execution():
    mgr = simulated_manager()
    messages = []
    runner = CodingRunner(mgr, step_delay_range=(0, 0), failure_rate=0.0)
    result = runner.execute(get_function('reset_throttle_adaptation'),
                            on_progress=lambda s, t, m: messages.append(m))
    assert result.success
    assert result.raw_responses[0] == 'OK\r\n>'
    assert result.raw_responses[1] == '71 3E00\r\n>'
    assert result.raw_responses[3] == '71 3101\r\n>'
    assert result.raw_responses[-1] == 'OK\r\n>'
    assert messages[0] == 'Executing step 1/5...'
    assert 'simulation' in result.message


def test_simulated_failure_injection():
    mgr = simulated_manager()
    runner = CodingRunner(mgr, step_delay_range=(0, 0), failure_rate=1.0)
    result = runner.execute(get_function('test_injectors'))
    assert not result.success
    assert result.message.startswith('Simulation:')
    assert len(result.raw_responses) == 5


def test_result_to_dict():
    mgr = simulated_manager()
    result = CodingRunner(mgr, step_delay_range=(0, 0), failure_rate=0.0).execute(
        get_function('clear_freeze_frame'))
    d = result.to_dict()
    assert d['function_id'] == 'clear_freeze_frame'
    assert d['raw_responses'] == ['OK\r\n>']
    assert 'timestamp' in d
