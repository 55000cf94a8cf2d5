"""Value types exchanged between the connection manager and its callers.

Everything here is a snapshot: instances are produced by one read or one
state transition and are never updated in place afterwards.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ConnectionState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    INITIALIZING = 'initializing'
    CONNECTED = 'connected'
    READING = 'reading'
    ERROR = 'error'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ConnectionInfo:
    state: ConnectionState
    device_name: str = ''
    device_address: str = ''
    protocol: str = ''
    voltage: str = ''
    error: str = ''
    is_simulated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['state'] = self.state.value
        return d


@dataclass(frozen=True)
class ElmResponse:
    success: bool
    data: str
    raw_data: str
    error: Optional[str] = None


@dataclass(frozen=True)
class ParsedDTC:
    code: str
    system: str
    category: str
    is_generic: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VehicleData:
    rpm: Optional[float] = None
    speed: Optional[float] = None
    coolant_temp: Optional[float] = None
    engine_load: Optional[float] = None
    throttle_position: Optional[float] = None
    fuel_level: Optional[float] = None
    battery_voltage: Optional[str] = None
    vin: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        # absent readings are omitted rather than reported as null
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class OBDReadResult:
    success: bool
    dtc_codes: List[str] = field(default_factory=list)
    parsed_dtcs: List[ParsedDTC] = field(default_factory=list)
    vehicle_data: VehicleData = field(default_factory=VehicleData)
    raw_response: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'dtc_codes': list(self.dtc_codes),
            'parsed_dtcs': [d.to_dict() for d in self.parsed_dtcs],
            'vehicle_data': self.vehicle_data.to_dict(),
            'raw_response': self.raw_response,
            'error': self.error,
        }


@dataclass(frozen=True)
class CodingFunction:
    id: str
    name: str
    description: str
    category: str
    risk_level: str
    commands: Tuple[str, ...]
    requires_pro: bool = True
    requires_engine_off: bool = False
    requires_ignition_on: bool = False
    confirmation_required: bool = True
    estimated_duration: int = 5
    expected_response: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['commands'] = list(self.commands)
        return d


@dataclass
class CodingFunctionResult:
    success: bool
    function_id: str
    message: str
    raw_responses: List[str] = field(default_factory=list)
    details: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    duration_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'function_id': self.function_id,
            'message': self.message,
            'details': self.details,
            'raw_responses': list(self.raw_responses),
            'timestamp': self.timestamp.isoformat(),
            'duration_s': round(self.duration_s, 3),
        }
