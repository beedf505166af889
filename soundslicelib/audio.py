from __future__ import annotations

import errno
import logging
import os
from typing import Any

from .config import resolve_config
from .events import EventBus, OPEN_COMPLETE, OPEN_START, ProgressCallback, chain_progress
from .models import SoundHandle
from .parser import SoundParser
from .parsers import parser_for_path, supported_extensions

log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: tuple[str, ...] = supported_extensions()


def format_duration(samples: int, samplerate: int) -> str:
    if samplerate <= 0:
        return "00:00.000"
    seconds = samples / samplerate
    m = int(seconds // 60)
    s = int(seconds % 60)
    ms = int((seconds % 1) * 1000)
    return f"{m:02d}:{s:02d}.{ms:03d}"


def is_supported(filepath: str) -> bool:
    ext = os.path.splitext(filepath)[1].lower().lstrip(".")
    return ext in SUPPORTED_EXTENSIONS


def open_sound(
    filepath: str,
    progress: ProgressCallback | None = None,
    config: dict[str, Any] | None = None,
    *,
    event_bus: EventBus | None = None,
    parsers: list[SoundParser] | None = None,
) -> SoundHandle:
    """Parse *filepath* with the parser owning its extension.

    Parameters
    ----------
    filepath : str
        Path to a ``.wav``, ``.amr``/``.3gp``/``.3gpp`` or ``.m4a``/``.aac`` file.
    progress : callable, optional
        ``fraction -> bool``; returning ``False`` cancels the parse and
        the returned handle has ``complete=False``.
    config : dict, optional
        Partial configuration merged over :func:`default_config`.
    event_bus : EventBus, optional
        Receives ``sound.open_start``, ``sound.progress`` and
        ``sound.open_complete``.  A ``sound.progress`` handler returning
        ``False`` also cancels.

    Raises
    ------
    FileNotFoundError
        If *filepath* does not exist.
    SoundFileError
        Any of its subclasses when the file cannot be parsed.
    ConfigError
        If *config* is invalid.
    """
    if not os.path.isfile(filepath):
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), filepath)

    config = resolve_config(config)
    parser = parser_for_path(filepath, parsers)
    parser.configure(config)
    log.debug("opening %s with %s parser", filepath, parser.id)

    callback = progress
    if event_bus is not None:
        event_bus.emit(OPEN_START, filepath=filepath, parser=parser.id)
        callback = chain_progress(progress, event_bus.progress_callback(filepath))

    handle = parser.parse(filepath, callback)

    if event_bus is not None:
        event_bus.emit(OPEN_COMPLETE, filepath=filepath, handle=handle)
    return handle
