import json
import os
import time
from pathlib import Path

from .logger import get_logger

logger = get_logger(__name__)


def _audit_path() -> Path:
    root = os.environ.get('ELMBRIDGE_AUDIT_DIR')
    p = Path(root) if root else Path.cwd() / 'logs'
    p.mkdir(parents=True, exist_ok=True)
    return p / 'audit.log'


def audit_write(action: str, details: dict):
    """Append an audit entry with timestamp and action to the audit log."""
    try:
        entry = {'ts': time.time(), 'action': action, 'details': details}
        p = _audit_path()
        with p.open('a', encoding='utf-8') as f:
            f.write(json.dumps(entry) + '\n')
    except Exception as e:
        # best-effort; never block the vehicle operation being audited
        logger.debug('audit write failed: %s', e)
