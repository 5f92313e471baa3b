"""
In-process observer bus.

Listing mutations publish the paths whose cached views went stale; the view
layer (or anything else) subscribes by name and gets back a handle to
unsubscribe with.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

LISTING_SECTIONS = {
    "product": "/marketplace",
    "accommodation": "/accommodation",
    "service": "/service",
}


class Listener:
    def __init__(self, bus: "EventBus", name: str, callback: Callable[[str, Any], None]):
        self._bus = bus
        self.name = name
        self.callback = callback

    def unsubscribe(self):
        self._bus._remove(self)


class EventBus:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, name: str, callback: Callable[[str, Any], None]) -> Listener:
        listener = Listener(self, name, callback)
        with self._lock:
            self._listeners[name].append(listener)
        return listener

    def _remove(self, listener: Listener):
        with self._lock:
            listeners = self._listeners.get(listener.name, [])
            if listener in listeners:
                listeners.remove(listener)

    def publish(self, name: str, payload: Any = None) -> int:
        """Call every listener for `name`; a failing listener is logged and skipped"""
        with self._lock:
            listeners = list(self._listeners.get(name, []))
        for listener in listeners:
            try:
                listener.callback(name, payload)
            except Exception:
                logger.exception("Listener for %s failed", name)
        return len(listeners)


def listing_paths(listing_type: str) -> List[str]:
    section = LISTING_SECTIONS.get(listing_type, f"/{listing_type}")
    return [section, f"{section}/my-listings"]


def revalidate(bus: "EventBus", *paths: str):
    if bus is None:
        return
    for path in paths:
        bus.publish(path, {"path": path})
