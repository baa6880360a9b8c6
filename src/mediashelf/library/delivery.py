"""Single-consumer delivery queue between background tasks and the UI thread.

Workers ``post()`` from any thread. The owning thread calls ``drain()``,
which dispatches each delivery to the handler registered for its kind.
The ``pending`` signal tells a Qt event loop that work is waiting; with a
queued connection the drain always runs on the owning thread.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from PyQt6.QtCore import QObject, pyqtSignal

logger = logging.getLogger(__name__)


class DeliveryKind(Enum):
    PAGE = 'page'
    COUNTS = 'counts'
    LOAD_FAILED = 'load_failed'
    SCAN_PROGRESS = 'scan_progress'
    SCAN_DONE = 'scan_done'
    SCAN_FAILED = 'scan_failed'
    MATCH_PROGRESS = 'match_progress'
    MATCH_DONE = 'match_done'
    MATCH_FAILED = 'match_failed'
    APPLY_DONE = 'apply_done'
    SEARCH_DONE = 'search_done'
    THUMBNAIL = 'thumbnail'


@dataclass
class Delivery:
    """One result crossing back to the owning thread."""

    kind: DeliveryKind
    generation: int = 0
    payload: Any = None
    error: Optional[str] = None


class DeliveryNotifier(QObject):
    """Emits ``pending`` whenever a delivery is posted."""

    pending = pyqtSignal()


class DeliveryQueue:
    """Thread-safe FIFO drained exclusively on the thread that created it."""

    def __init__(self):
        self._items = deque()
        self._lock = threading.Lock()
        self._handlers: Dict[DeliveryKind, Callable[[Delivery], None]] = {}
        self._owner = threading.get_ident()
        self.notifier = DeliveryNotifier()

    def register(self, kind: DeliveryKind, handler: Callable[[Delivery], None]):
        """Route deliveries of ``kind`` to ``handler`` during drain."""
        self._handlers[kind] = handler

    def post(self, delivery: Delivery):
        """Enqueue a delivery. Safe from any thread."""
        with self._lock:
            self._items.append(delivery)
        self.notifier.pending.emit()

    def discard(self, kinds: Iterable[DeliveryKind]) -> int:
        """Drop queued deliveries of the given kinds; returns how many."""
        kinds = set(kinds)
        with self._lock:
            kept = [d for d in self._items if d.kind not in kinds]
            dropped = len(self._items) - len(kept)
            self._items = deque(kept)
        return dropped

    def take_all(self) -> List[Delivery]:
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def __len__(self):
        with self._lock:
            return len(self._items)

    def drain(self) -> int:
        """Dispatch every queued delivery in FIFO order; returns the count."""
        if threading.get_ident() != self._owner:
            raise RuntimeError("DeliveryQueue drained outside its owning thread")

        handled = 0
        # Handlers may post follow-up deliveries; keep going until empty.
        while True:
            items = self.take_all()
            if not items:
                return handled
            for delivery in items:
                handler = self._handlers.get(delivery.kind)
                if handler is None:
                    logger.debug("No handler for %s delivery", delivery.kind.value)
                    continue
                handler(delivery)
                handled += 1
