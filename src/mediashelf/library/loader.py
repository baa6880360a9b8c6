"""Paginated, generation-tagged loading of catalog rows for the display layer.

``refresh()`` bumps the generation, fetches a small first page on the
calling thread and schedules counts in the background. Further pages are
fetched by ``PageFetchTask`` on a read-only store handle and come back
through the delivery queue; anything tagged with an older generation is
dropped unread when drained.
"""

import logging
import sqlite3
import time
from enum import Enum
from typing import Callable, List, Optional

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, pyqtSignal

from mediashelf.database.db_manager import DatabaseManager
from mediashelf.database.models import CatalogEntry, FilterSpec
from mediashelf.library.delivery import Delivery, DeliveryKind, DeliveryQueue

logger = logging.getLogger(__name__)

LOADER_KINDS = (DeliveryKind.PAGE, DeliveryKind.COUNTS, DeliveryKind.LOAD_FAILED)


class LoadState(Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    STREAMING = 'streaming'
    EXHAUSTED = 'exhausted'


class PageFetchTask(QRunnable):
    """Fetch one page off the UI thread."""

    def __init__(self, db_path: str, filter_spec: FilterSpec, offset: int, limit: int,
                 generation: int, queue: DeliveryQueue, is_current: Callable[[int], bool]):
        super().__init__()
        self.db_path = db_path
        self.filter_spec = filter_spec
        self.offset = offset
        self.limit = limit
        self.generation = generation
        self.queue = queue
        self.is_current = is_current

    def run(self):
        if not self.is_current(self.generation):
            logger.debug("Skipping page fetch for stale generation %d", self.generation)
            return

        started = time.perf_counter()
        try:
            with DatabaseManager.open_readonly(self.db_path) as db:
                rows = db.get_entries_page(self.filter_spec, self.limit, self.offset)
        except sqlite3.Error as e:
            logger.error("Page query failed at offset %d: %s", self.offset, e)
            self.queue.post(Delivery(DeliveryKind.LOAD_FAILED, self.generation, error=str(e)))
            return

        logger.debug("Fetched %d row(s) at offset %d in %.1f ms", len(rows), self.offset,
                     (time.perf_counter() - started) * 1000)
        self.queue.post(Delivery(
            DeliveryKind.PAGE, self.generation, payload=(rows, self.offset, self.limit)
        ))


class CountFetchTask(QRunnable):
    """Count all entries and unmatched entries off the UI thread."""

    def __init__(self, db_path: str, generation: int, queue: DeliveryQueue,
                 is_current: Callable[[int], bool]):
        super().__init__()
        self.db_path = db_path
        self.generation = generation
        self.queue = queue
        self.is_current = is_current

    def run(self):
        if not self.is_current(self.generation):
            return
        try:
            with DatabaseManager.open_readonly(self.db_path) as db:
                counts = (db.count_entries(), db.count_unmatched())
        except sqlite3.Error as e:
            logger.error("Count query failed: %s", e)
            self.queue.post(Delivery(DeliveryKind.LOAD_FAILED, self.generation, error=str(e)))
            return
        self.queue.post(Delivery(DeliveryKind.COUNTS, self.generation, payload=counts))


class PaginatedLoader(QObject):
    """Streams catalog rows for the current filter to the consumer."""

    page_delivered = pyqtSignal(list, int)  # rows, generation
    counts_updated = pyqtSignal(int, int, int)  # total, unmatched, generation
    load_failed = pyqtSignal(str, int)  # error message, generation

    FIRST_PAGE_SIZE = 80
    PAGE_SIZE = 250
    # Request more once the view is this close (in scroll units) to the end
    NEAR_END_THRESHOLD = 400

    def __init__(self, db_manager: DatabaseManager, queue: DeliveryQueue,
                 first_page_size: int = None, page_size: int = None,
                 pool: Optional[QThreadPool] = None, parent=None):
        """Initialize loader on the thread that owns ``db_manager`` and ``queue``."""
        super().__init__(parent)
        self.db = db_manager
        self.queue = queue
        self.first_page_size = first_page_size or self.FIRST_PAGE_SIZE
        self.page_size = page_size or self.PAGE_SIZE
        self.pool = pool or QThreadPool.globalInstance()

        self.filter_spec = FilterSpec()
        self.rows: List[CatalogEntry] = []
        self.state = LoadState.IDLE
        self.total_count = 0
        self.unmatched_count = 0
        self._generation = 0
        self._loading = False

        queue.register(DeliveryKind.PAGE, self._on_page)
        queue.register(DeliveryKind.COUNTS, self._on_counts)
        queue.register(DeliveryKind.LOAD_FAILED, self._on_failed)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loading(self) -> bool:
        return self._loading

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def set_filter(self, filter_spec: FilterSpec):
        """Replace the filter and start a new session."""
        self.filter_spec = filter_spec
        self.refresh()

    def refresh(self):
        """Start a new session for the current filter.

        The row list and any queued results of older sessions are dropped
        before the first page is loaded synchronously.
        """
        self._generation += 1
        generation = self._generation
        dropped = self.queue.discard(LOADER_KINDS)
        if dropped:
            logger.debug("Discarded %d queued delivery(ies) on refresh", dropped)
        self.rows = []
        self._loading = False
        self.state = LoadState.LOADING

        try:
            rows = self.db.get_entries_page(self.filter_spec, self.first_page_size, 0)
        except sqlite3.Error as e:
            logger.error("First page query failed: %s", e)
            self.state = LoadState.IDLE
            self.load_failed.emit(str(e), generation)
            return

        self.rows.extend(rows)
        self.state = (LoadState.STREAMING if len(rows) >= self.first_page_size
                      else LoadState.EXHAUSTED)
        self.page_delivered.emit(rows, generation)

        self.pool.start(CountFetchTask(self.db.db_path, generation, self.queue, self.is_current))

    def request_next_page(self) -> bool:
        """Fetch the next page in the background.

        No-op while a page is outstanding, before the first refresh, or
        once the session is exhausted.
        """
        if self.state != LoadState.STREAMING or self._loading:
            return False

        self._loading = True
        self.pool.start(PageFetchTask(
            self.db.db_path, self.filter_spec.snapshot(), len(self.rows), self.page_size,
            self._generation, self.queue, self.is_current
        ))
        return True

    def maybe_request_next_page(self, value: int, maximum: int) -> bool:
        """Scroll hook: request more when near the bottom or not scrollable."""
        if maximum <= 0 or maximum - value <= self.NEAR_END_THRESHOLD:
            return self.request_next_page()
        return False

    def _on_page(self, delivery: Delivery):
        rows, offset, limit = delivery.payload
        if not self.is_current(delivery.generation):
            logger.debug("Dropped stale page (generation %d, current %d)",
                         delivery.generation, self._generation)
            return

        self._loading = False
        if offset != len(self.rows):
            logger.warning("Dropped out-of-order page at offset %d (have %d rows)",
                           offset, len(self.rows))
            return

        self.rows.extend(rows)
        if len(rows) < limit:
            self.state = LoadState.EXHAUSTED
            logger.debug("Session exhausted at %d row(s)", len(self.rows))
        self.page_delivered.emit(rows, delivery.generation)

    def _on_counts(self, delivery: Delivery):
        if not self.is_current(delivery.generation):
            return
        self.total_count, self.unmatched_count = delivery.payload
        self.counts_updated.emit(self.total_count, self.unmatched_count, delivery.generation)

    def _on_failed(self, delivery: Delivery):
        if not self.is_current(delivery.generation):
            return
        self._loading = False
        self.load_failed.emit(delivery.error or "load failed", delivery.generation)
