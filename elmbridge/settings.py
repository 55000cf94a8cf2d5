"""User-configurable adapter settings.

Settings are owned by the caller: the connection manager reads them at
initialize time and when `apply_settings` is called, and never changes
them.
"""
import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logger import get_logger
from .protocols import OBD_PROTOCOLS

logger = get_logger(__name__)

# ATST is expressed in units of 4 ms
ATST_PRESETS = [
    {'value': 8, 'label': 'Very fast (8)', 'description': 'Maximum speed, may be unstable'},
    {'value': 16, 'label': 'Fast (16)', 'description': 'High speed, occasional lost frames'},
    {'value': 32, 'label': 'Balanced (32)', 'description': 'Balance between speed and stability'},
    {'value': 64, 'label': 'Stable (64)', 'description': 'Stable link, moderate speed'},
    {'value': 96, 'label': 'Very stable (96)', 'description': 'Older VW, Audi, Skoda ECUs'},
    {'value': 255, 'label': 'Maximum stability (FF)', 'description': 'Slowest, most tolerant'},
]


class OBDSettings(BaseModel):
    """Adapter settings.

    `connection_timeout_seconds` bounds the TCP connect of a Wi-Fi
    adapter. `optimize_requests` and `max_simultaneous_parameters` are
    not read by the engine; they are carried for front ends that batch
    PID requests.
    """

    model_config = ConfigDict(frozen=True, extra='ignore')

    atst_mode: Literal['auto', 'manual'] = 'auto'
    atst_value: int = Field(32, ge=0, le=255)
    optimize_requests: bool = False
    preferred_protocol: str = 'auto'
    auto_reconnect: bool = True
    connection_timeout_seconds: int = Field(30, ge=1)
    polling_interval_ms: int = Field(100, ge=0)
    max_simultaneous_parameters: int = Field(4, ge=1)
    custom_init_commands: List[str] = Field(default_factory=list)

    @field_validator('preferred_protocol')
    @classmethod
    def _check_protocol(cls, v: str) -> str:
        v = (v or 'auto').strip()
        if v.lower() == 'auto':
            return 'auto'
        v = v.upper()
        if v not in OBD_PROTOCOLS:
            raise ValueError(f'unknown ELM327 protocol: {v}')
        return v

    @field_validator('custom_init_commands')
    @classmethod
    def _strip_commands(cls, v: List[str]) -> List[str]:
        return [c.strip() for c in v if c and c.strip()]


DEFAULT_SETTINGS = OBDSettings()


def load_settings(path: Optional[str] = None) -> OBDSettings:
    """Load settings from a JSON file.

    `path` falls back to ELMBRIDGE_SETTINGS. Returns the defaults when
    neither is set; a missing or invalid file raises.
    """
    path = path or os.environ.get('ELMBRIDGE_SETTINGS')
    if not path:
        return DEFAULT_SETTINGS
    p = Path(path)
    logger.debug('Loading settings from %s', p)
    return OBDSettings.model_validate_json(p.read_text(encoding='utf-8'))
