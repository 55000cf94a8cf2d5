"""Catalog of coding / extended functions.

Each entry is a fixed, ordered list of adapter commands. Most follow the
same shape: set the request header for the target module, tester-present,
open an extended diagnostic session, run one service request, then go
back to the default session.

WARNING: these procedures change vehicle behaviour. They are run through
`CodingRunner`, which gates them on entitlement and connection state.
"""
from typing import Dict, List, Optional

from .models import CodingFunction

CATEGORY_LABELS: Dict[str, Dict[str, str]] = {
    'adaptation_reset': {
        'name': 'Adaptation reset',
        'description': 'Clears values learned by the ECU',
    },
    'calibration': {
        'name': 'Sensor calibration',
        'description': 'Calibrates and zeroes vehicle sensors',
    },
    'module_config': {
        'name': 'Module configuration',
        'description': 'Changes comfort and lighting behaviour',
    },
    'output_test': {
        'name': 'Actuator test',
        'description': 'Drives components manually for testing',
    },
    'freeze_frame': {
        'name': 'Freeze frame',
        'description': 'Data captured at the moment a fault was stored',
    },
}

RISK_LEVELS = {
    'low': 'Low',
    'medium': 'Medium',
    'high': 'High',
    'critical': 'Critical',
}


def _routine(header: str, request: str) -> tuple:
    return (f'AT SH {header}', '3E 00', '10 02', request, '10 01')


_FUNCTIONS: Dict[str, CodingFunction] = {}


def _register(fn: CodingFunction):
    _FUNCTIONS[fn.id] = fn


# adaptation resets
_register(CodingFunction(
    id='reset_throttle_adaptation',
    name='Reset Throttle Adaptation',
    description='Clears the learned throttle body position. Useful after cleaning or replacement.',
    category='adaptation_reset', risk_level='low',
    commands=_routine('7E0', '31 01 0F 0A'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=5))
_register(CodingFunction(
    id='reset_fuel_trim',
    name='Reset Fuel Trim',
    description='Clears short and long term fuel trim corrections (STFT/LTFT).',
    category='adaptation_reset', risk_level='medium',
    commands=_routine('7E0', '31 01 0F 0B'),
    requires_ignition_on=True, estimated_duration=5))
_register(CodingFunction(
    id='reset_idle_adaptation',
    name='Reset Idle Adaptation',
    description='Clears learned idle values. Useful after cleaning the throttle body.',
    category='adaptation_reset', risk_level='low',
    commands=_routine('7E0', '31 01 0F 0C'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=5))
_register(CodingFunction(
    id='reset_transmission_adaptation',
    name='Reset Transmission Adaptation',
    description='Clears learned shift points. Run after an ATF change.',
    category='adaptation_reset', risk_level='medium',
    commands=_routine('7E1', '31 01 0F 00'),
    requires_ignition_on=True, estimated_duration=8))
_register(CodingFunction(
    id='reset_battery_adaptation',
    name='Reset Battery Adaptation',
    description='Registers a new battery with the energy management system.',
    category='adaptation_reset', risk_level='low',
    commands=_routine('7E0', '31 01 F0 0D'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=3))

# calibrations
_register(CodingFunction(
    id='calibrate_steering_angle',
    name='Calibrate Steering Angle Sensor',
    description='Zeroes the steering angle sensor after an alignment or part swap.',
    category='calibration', risk_level='medium',
    commands=_routine('710', '31 01 F0 06'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=15))
_register(CodingFunction(
    id='calibrate_tpms',
    name='Calibrate TPMS Sensors',
    description='Starts relearning of the tyre pressure sensors.',
    category='calibration', risk_level='low',
    commands=_routine('7A0', '31 01 E0 01'),
    requires_ignition_on=True, estimated_duration=5))
_register(CodingFunction(
    id='calibrate_accelerometer',
    name='Calibrate ESP Accelerometer',
    description='Calibrates the ESP acceleration sensor. The vehicle must be level.',
    category='calibration', risk_level='high',
    commands=_routine('726', '31 01 F0 0A'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=20))
_register(CodingFunction(
    id='calibrate_parking_sensors',
    name='Calibrate Parking Sensors',
    description='Recalibrates front and rear parking sensors.',
    category='calibration', risk_level='low',
    commands=_routine('76F', '31 01 E0 02'),
    requires_ignition_on=True, estimated_duration=10))

# module configuration
_register(CodingFunction(
    id='activate_drl',
    name='Toggle Daytime Running Lights',
    description='Enables or disables daytime running lights.',
    category='module_config', risk_level='low',
    commands=_routine('765', '2E 10 00 01'),
    requires_ignition_on=True, estimated_duration=3))
_register(CodingFunction(
    id='configure_auto_lock',
    name='Configure Auto Lock',
    description='Enables or disables automatic door locking above walking speed.',
    category='module_config', risk_level='low',
    commands=_routine('765', '2E 10 01 01'),
    requires_ignition_on=True, estimated_duration=3))
_register(CodingFunction(
    id='configure_needle_sweep',
    name='Configure Needle Sweep',
    description='Enables or disables the instrument cluster needle sweep at start-up.',
    category='module_config', risk_level='low',
    commands=_routine('720', '2E 10 02 01'),
    requires_ignition_on=True, estimated_duration=3))
_register(CodingFunction(
    id='configure_comfort_blinker',
    name='Configure Comfort Blinker',
    description='Sets how many times the comfort blinker flashes (3, 5 or 7).',
    category='module_config', risk_level='low',
    commands=_routine('765', '2E 10 03 05'),
    requires_ignition_on=True, estimated_duration=3))

# output tests
_register(CodingFunction(
    id='test_injectors',
    name='Test Injectors',
    description='Runs the fuel injector activation test.',
    category='output_test', risk_level='high',
    commands=_routine('7E0', '30 01 01 01'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=10))
_register(CodingFunction(
    id='test_coils',
    name='Test Ignition Coils',
    description='Runs the ignition coil activation test.',
    category='output_test', risk_level='high',
    commands=_routine('7E0', '30 02 01 01'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=10))
_register(CodingFunction(
    id='test_cooling_fan',
    name='Test Cooling Fan',
    description='Switches the radiator fan on manually.',
    category='output_test', risk_level='low',
    commands=_routine('7E0', '30 03 01 01'),
    requires_ignition_on=True, estimated_duration=15))
_register(CodingFunction(
    id='test_fuel_pump',
    name='Test Fuel Pump',
    description='Runs the fuel pump manually.',
    category='output_test', risk_level='medium',
    commands=_routine('7E0', '30 04 01 05'),
    requires_ignition_on=True, requires_engine_off=True, estimated_duration=5))

# freeze frame
_register(CodingFunction(
    id='read_freeze_frame',
    name='Read Freeze Frame Data',
    description='Reads the data recorded when a trouble code was stored.',
    category='freeze_frame', risk_level='low',
    commands=('0200', '0201', '0202', '0203', '0204', '0205'),
    requires_ignition_on=True, confirmation_required=False, estimated_duration=5))
_register(CodingFunction(
    id='clear_freeze_frame',
    name='Clear Freeze Frame Data',
    description='Clears freeze frame data stored in the ECU.',
    category='freeze_frame', risk_level='medium',
    commands=('04',),
    requires_ignition_on=True, estimated_duration=3))


def list_functions() -> List[CodingFunction]:
    return list(_FUNCTIONS.values())


def get_function(function_id: str) -> Optional[CodingFunction]:
    return _FUNCTIONS.get(function_id)


def functions_by_category(category: str) -> List[CodingFunction]:
    return [f for f in _FUNCTIONS.values() if f.category == category]


def functions_for_plan(is_pro: bool) -> List[CodingFunction]:
    """All functions for Pro users, only the ungated ones otherwise."""
    if is_pro:
        return list_functions()
    return [f for f in _FUNCTIONS.values() if not f.requires_pro]
