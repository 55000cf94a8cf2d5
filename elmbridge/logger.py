import logging
import os
import sys

_ROOT = 'elmbridge'
_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package hierarchy."""
    if name != _ROOT and not name.startswith(_ROOT + '.'):
        name = f'{_ROOT}.{name}'
    return logging.getLogger(name)


def configure_logging(level: str = None) -> logging.Logger:
    """Attach a stderr handler to the package logger.

    `level` falls back to ELMBRIDGE_LOG_LEVEL, then WARNING. Calling this
    more than once replaces the previous handler.
    """
    level = (level or os.environ.get('ELMBRIDGE_LOG_LEVEL') or 'WARNING').upper()
    root = logging.getLogger(_ROOT)
    root.setLevel(getattr(logging, level, logging.WARNING))
    for h in list(root.handlers):
        if getattr(h, '_elmbridge', False):
            root.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    handler._elmbridge = True
    root.addHandler(handler)
    return root
