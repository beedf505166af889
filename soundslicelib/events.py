from __future__ import annotations

import threading
from typing import Any, Callable

OPEN_START = "sound.open_start"
PROGRESS = "sound.progress"
OPEN_COMPLETE = "sound.open_complete"
SUBSET_WRITE_COMPLETE = "subset.write_complete"

ProgressCallback = Callable[[float], bool]


class EventBus:
    """Publish/subscribe bus for parse and write notifications.

    Thread-safe, so one bus can serve parses running on worker threads.
    A handler's return value is collected by :meth:`emit`; for
    ``sound.progress`` a handler returning ``False`` requests
    cancellation.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def has_subscribers(self, event_type: str) -> bool:
        with self._lock:
            return bool(self._handlers.get(event_type))

    def emit(self, event_type: str, **data: Any) -> list[Any]:
        """Call every handler for *event_type*; return their results in order."""
        with self._lock:
            handlers = list(self._handlers.get(event_type, []))
        return [handler(**data) for handler in handlers]

    def progress_callback(self, filepath: str) -> ProgressCallback:
        """Adapt the bus to the ``fraction -> keep_going`` parser callback."""
        def _report(fraction: float) -> bool:
            results = self.emit(PROGRESS, filepath=filepath, fraction=fraction)
            return not any(r is False for r in results)
        return _report


def chain_progress(*callbacks: ProgressCallback | None) -> ProgressCallback | None:
    """Combine callbacks; parsing continues only while all of them agree."""
    active = [cb for cb in callbacks if cb is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]

    def _report(fraction: float) -> bool:
        keep_going = True
        for cb in active:
            if cb(fraction) is False:
                keep_going = False
        return keep_going
    return _report
