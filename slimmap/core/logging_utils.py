"""Logger hierarchy for slimmap.

Every module logs through a child of the ``slimmap`` logger. That parent owns
one stream handler and does not propagate, so embedding applications keep
their own root configuration untouched.
"""
from __future__ import annotations

import logging
import sys
from typing import IO, Optional, Union

_ROOT_NAME = 'slimmap'
_PLAIN = '%(levelname)s %(name)s: %(message)s'
_TIMED = '%(asctime)s %(levelname)s %(name)s: %(message)s'

# third-party loggers that flood DEBUG output while plotting
_NOISY = ('matplotlib', 'matplotlib.font_manager', 'PIL')


def _root(stream: Optional[IO] = None, timestamps: Optional[bool] = None) -> logging.Logger:
    """Return the ``slimmap`` logger with exactly one slimmap stream handler.

    The package ``NullHandler`` is dropped the first time the stream handler
    is installed. Passing ``stream`` or ``timestamps`` replaces that handler;
    handlers added by other code are left alone.
    """
    root = logging.getLogger(_ROOT_NAME)
    root.propagate = False
    owned = [h for h in root.handlers if getattr(h, '_slimmap_owned', False)]
    if owned and stream is None and timestamps is None:
        return root
    for h in list(root.handlers):
        if isinstance(h, logging.NullHandler) or h in owned:
            root.removeHandler(h)
    handler = logging.StreamHandler(stream=stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter(_TIMED if timestamps else _PLAIN))
    handler._slimmap_owned = True
    root.addHandler(handler)
    return root


def _to_level(level: Union[str, int, None], default: int = logging.INFO) -> int:
    if level is None:
        return default
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else default


def configure_logging(level: Union[str, int] = 'INFO', stream: Optional[IO] = None,
                      timestamps: Optional[bool] = None, mute_external: bool = True) -> None:
    """Set the level of the whole ``slimmap`` logger family.

    ``stream`` redirects output (stdout by default) and ``timestamps`` adds
    wall-clock times to each record. The process root logger is never touched.
    """
    lvl = _to_level(level)
    _root(stream, timestamps).setLevel(lvl)
    if mute_external and lvl <= logging.DEBUG:
        for name in _NOISY:
            logging.getLogger(name).setLevel(logging.INFO)


def get_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """Return the logger ``name`` inside the ``slimmap`` namespace.

    Bare names are prefixed (``get_logger('io')`` is ``slimmap.io``). Without
    ``level`` the child inherits the level set by :func:`configure_logging`.
    """
    _root()
    if name != _ROOT_NAME and not name.startswith(_ROOT_NAME + '.'):
        name = f'{_ROOT_NAME}.{name}'
    log = logging.getLogger(name)
    log.setLevel(_to_level(level) if level is not None else logging.NOTSET)
    return log


__all__ = ['get_logger', 'configure_logging']
