from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional
import threading

from elmbridge.audit import audit_write
from elmbridge.coding import CodingRunner
from elmbridge.connection import ConnectionManager
from elmbridge.errors import TransportNotConfigured
from elmbridge.logger import get_logger
from elmbridge.models import ConnectionState
from elmbridge.settings import DEFAULT_SETTINGS, OBDSettings, load_settings
from elmbridge.simulator import SimulatedAdapter
from elmbridge.transport import find_device, open_transport

logger = get_logger(__name__)

router = APIRouter()


class ConnectRequest(BaseModel):
    target: Optional[str] = None
    simulate: bool = False
    device_name: str = 'OBD2 Adapter'


class ClearRequest(BaseModel):
    force: bool = False


class _EngineManager:
    """Owns the app's single ConnectionManager and serializes access to it."""

    def __init__(self, simulator: Optional[SimulatedAdapter] = None,
                 settings: Optional[OBDSettings] = None, **runner_kwargs):
        self._lock = threading.Lock()
        self.engine = ConnectionManager(settings=settings, simulator=simulator)
        self.runner = CodingRunner(self.engine, **runner_kwargs)

    def _require_connected(self):
        if self.engine.state != ConnectionState.CONNECTED:
            raise RuntimeError('not connected; connect first')

    def connect(self, target: Optional[str], simulate: bool, device_name: str):
        with self._lock:
            if self.engine.state in (ConnectionState.CONNECTED, ConnectionState.READING):
                raise RuntimeError('already connected')
            if simulate:
                transport = None
            else:
                target = target or find_device()
                if not target:
                    raise TransportNotConfigured('no adapter found; pass target or simulate=true')
                settings = self.engine.settings or DEFAULT_SETTINGS
                transport = open_transport(
                    target, connect_timeout=settings.connection_timeout_seconds)
            self.engine.set_transport(transport)
            ok = self.engine.initialize(device_name, target or '')
            info = self.engine.get_connection_info()
            if not ok:
                raise RuntimeError(info.error or 'initialization failed')
            return info.to_dict()

    def disconnect(self):
        with self._lock:
            self.engine.disconnect()
            return self.engine.get_connection_info().to_dict()

    def status(self):
        with self._lock:
            d = self.engine.get_connection_info().to_dict()
            settings = self.engine.settings
            d['settings'] = settings.model_dump() if settings else None
            return d

    def apply_settings(self, settings: OBDSettings):
        with self._lock:
            self.engine.apply_settings(settings)
            return settings.model_dump()

    def read_dtcs(self, pending: bool = False):
        with self._lock:
            self._require_connected()
            if pending:
                return self.engine.read_pending_dtc_codes().to_dict()
            return self.engine.read_dtc_codes().to_dict()

    def vehicle_data(self):
        with self._lock:
            self._require_connected()
            return self.engine.read_vehicle_data().to_dict()

    def vin(self):
        with self._lock:
            self._require_connected()
            return {'vin': self.engine.read_vin()}

    def clear_dtcs(self):
        with self._lock:
            self._require_connected()
            cleared = self.engine.clear_dtc_codes()
            device = self.engine.device_address or self.engine.device_name
        audit_write('clear_dtc', {'device': device, 'cleared': cleared})
        return {'cleared': cleared}

    def can_execute(self, function, is_pro: bool):
        with self._lock:
            return self.runner.can_execute(function, is_pro)

    def execute(self, function):
        with self._lock:
            result = self.runner.execute(function)
            details = {'function_id': function.id, 'success': result.success,
                       'message': result.message,
                       'device': self.engine.device_address or self.engine.device_name}
        audit_write('coding', details)
        return result.to_dict()


_mgr = _EngineManager(settings=load_settings())


def get_manager() -> _EngineManager:
    return _mgr


@router.post('/api/obd/connect')
def api_connect(req: ConnectRequest):
    try:
        return get_manager().connect(req.target, req.simulate, req.device_name)
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post('/api/obd/disconnect')
def api_disconnect():
    return get_manager().disconnect()


@router.get('/api/obd/status')
def api_status():
    return get_manager().status()


@router.put('/api/obd/settings')
def api_settings(settings: OBDSettings):
    return get_manager().apply_settings(settings)


@router.get('/api/obd/dtcs')
def api_read_dtcs():
    try:
        return get_manager().read_dtcs()
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get('/api/obd/dtcs/pending')
def api_read_pending_dtcs():
    try:
        return get_manager().read_dtcs(pending=True)
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get('/api/obd/vehicle-data')
def api_vehicle_data():
    try:
        return get_manager().vehicle_data()
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get('/api/obd/vin')
def api_vin():
    try:
        return get_manager().vin()
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post('/api/obd/clear_dtcs')
def api_clear_dtcs(req: ClearRequest):
    if not req.force:
        raise HTTPException(status_code=403, detail='force=true required to clear DTCs')
    try:
        return get_manager().clear_dtcs()
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))
