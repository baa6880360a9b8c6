"""Background scan, match sweep, manual match and search operations.

Every operation runs off the UI thread with its own store handle and TMDB
client, and reports back only through the delivery queue. ``LibrarySync``
turns those deliveries into Qt signals for the consumer.
"""

import logging
import threading
from typing import Callable, List, Optional

from PyQt6.QtCore import QObject, QRunnable, QThread, QThreadPool, pyqtSignal

from mediashelf.api.tmdb_client import TMDBClient
from mediashelf.database.db_manager import DatabaseManager
from mediashelf.database.models import MediaType
from mediashelf.library.delivery import Delivery, DeliveryKind, DeliveryQueue
from mediashelf.library.matcher import MetadataMatcher
from mediashelf.library.scanner import Scanner

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], TMDBClient]


class OutstandingCounter:
    """Thread-safe count of posted but not yet handled progress deliveries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0

    def increment(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def decrement(self) -> int:
        with self._lock:
            self._count = max(0, self._count - 1)
            return self._count

    @property
    def value(self) -> int:
        with self._lock:
            return self._count


class ScanThread(QThread):
    """Thread for scanning library roots."""

    def __init__(self, db_path: str, roots: List[str], queue: DeliveryQueue):
        super().__init__()
        self.db_path = db_path
        self.roots = list(roots)
        self.queue = queue

    def run(self):
        """Run the scan."""
        db = None
        try:
            db = DatabaseManager(self.db_path)
            scanner = Scanner(db, progress_callback=self.progress_callback)
            added = sum(scanner.scan(root) for root in self.roots)
        except Exception as e:
            logger.error("Scan failed: %s", e)
            self.queue.post(Delivery(DeliveryKind.SCAN_FAILED, error=str(e)))
            return
        finally:
            if db is not None:
                db.close()
        self.queue.post(Delivery(DeliveryKind.SCAN_DONE, payload=added))

    def progress_callback(self, path: str):
        self.queue.post(Delivery(DeliveryKind.SCAN_PROGRESS, payload=path))


class MatchSweepThread(QThread):
    """Thread for auto-matching every unmatched entry."""

    def __init__(self, db_path: str, client_factory: ClientFactory, poster_dir: str,
                 queue: DeliveryQueue, request_delay: float = None):
        super().__init__()
        self.db_path = db_path
        self.client_factory = client_factory
        self.poster_dir = poster_dir
        self.queue = queue
        self.request_delay = request_delay
        self.outstanding = OutstandingCounter()
        self._cancel = threading.Event()

    def cancel(self):
        """Stop after the entry currently being matched."""
        self._cancel.set()

    @property
    def is_canceled(self) -> bool:
        return self._cancel.is_set()

    def run(self):
        """Run the sweep."""
        db = None
        try:
            db = DatabaseManager(self.db_path)
            matcher = MetadataMatcher(db, self.client_factory(), self.poster_dir,
                                      self.request_delay)
            canceled = matcher.match_unmatched(self.progress_callback, self._cancel.is_set)
        except Exception as e:
            logger.error("Matching failed: %s", e)
            self.queue.post(Delivery(DeliveryKind.MATCH_FAILED, error=str(e)))
            return
        finally:
            if db is not None:
                db.close()
        self.queue.post(Delivery(DeliveryKind.MATCH_DONE, payload=canceled))

    def progress_callback(self, current, total, entry, matched):
        self.outstanding.increment()
        self.queue.post(Delivery(
            DeliveryKind.MATCH_PROGRESS,
            payload=(current, total, entry.title or entry.file_path, matched)
        ))


class ApplyMatchTask(QRunnable):
    """Apply a user-chosen match in the background."""

    def __init__(self, db_path: str, client_factory: ClientFactory, poster_dir: str,
                 queue: DeliveryQueue, entry_id: int, external_id: int,
                 media_type: Optional[MediaType] = None):
        super().__init__()
        self.db_path = db_path
        self.client_factory = client_factory
        self.poster_dir = poster_dir
        self.queue = queue
        self.entry_id = entry_id
        self.external_id = external_id
        self.media_type = media_type

    def run(self):
        error = None
        ok = False
        try:
            with DatabaseManager(self.db_path) as db:
                matcher = MetadataMatcher(db, self.client_factory(), self.poster_dir)
                ok = matcher.fetch_and_apply(self.entry_id, self.external_id,
                                             self.media_type, manual=True)
        except Exception as e:
            logger.error("Applying match to entry %s failed: %s", self.entry_id, e)
            error = str(e)
        if not ok and error is None:
            error = "Could not fetch details from TMDB"
        self.queue.post(Delivery(DeliveryKind.APPLY_DONE, payload=(self.entry_id, ok),
                                 error=error))


class SearchTask(QRunnable):
    """Run a TMDB search for the manual match dialog."""

    def __init__(self, client_factory: ClientFactory, queue: DeliveryQueue, request_id: int,
                 query: str, year: Optional[int], media_type: MediaType):
        super().__init__()
        self.client_factory = client_factory
        self.queue = queue
        self.request_id = request_id
        self.query = query
        self.year = year
        self.media_type = media_type

    def run(self):
        # Search never touches the store, so no handle is opened.
        matcher = MetadataMatcher(None, self.client_factory())
        try:
            results = matcher.search(self.query, self.year, self.media_type)
        except Exception as e:
            logger.error("Search for %r failed: %s", self.query, e)
            results = []
        self.queue.post(Delivery(DeliveryKind.SEARCH_DONE, payload=(self.request_id, results)))


class LibrarySync(QObject):
    """Starts background library operations and reports on the UI thread."""

    scan_progress = pyqtSignal(str)  # directory being scanned
    scan_finished = pyqtSignal(int)  # entries added
    match_progress = pyqtSignal(int, int, str, bool)  # current, total, title, matched
    match_done = pyqtSignal(bool)  # canceled
    apply_finished = pyqtSignal(int, bool, str)  # entry id, success, error
    search_finished = pyqtSignal(int, list)  # request id, results
    operation_failed = pyqtSignal(str)

    def __init__(self, db_manager: DatabaseManager, queue: DeliveryQueue,
                 client_factory: ClientFactory, poster_dir: str = "data/posters",
                 request_delay: float = None, pool: Optional[QThreadPool] = None,
                 parent=None):
        """Initialize on the thread that owns ``db_manager`` and ``queue``."""
        super().__init__(parent)
        self.db = db_manager
        self.queue = queue
        self.client_factory = client_factory
        self.poster_dir = poster_dir
        self.request_delay = request_delay
        self.pool = pool or QThreadPool.globalInstance()
        self.matcher = MetadataMatcher(db_manager, client_factory(), poster_dir)

        self.scan_thread: Optional[ScanThread] = None
        self.sweep_thread: Optional[MatchSweepThread] = None
        self._sweep_done: Optional[bool] = None
        self._search_id = 0

        queue.register(DeliveryKind.SCAN_PROGRESS, self._on_scan_progress)
        queue.register(DeliveryKind.SCAN_DONE, self._on_scan_done)
        queue.register(DeliveryKind.SCAN_FAILED, self._on_scan_failed)
        queue.register(DeliveryKind.MATCH_PROGRESS, self._on_match_progress)
        queue.register(DeliveryKind.MATCH_DONE, self._on_match_done)
        queue.register(DeliveryKind.MATCH_FAILED, self._on_match_failed)
        queue.register(DeliveryKind.APPLY_DONE, self._on_apply_done)
        queue.register(DeliveryKind.SEARCH_DONE, self._on_search_done)

    @property
    def is_scanning(self) -> bool:
        return self.scan_thread is not None

    @property
    def is_matching(self) -> bool:
        return self.sweep_thread is not None

    # Scan

    def start_scan(self, roots: List[str]) -> bool:
        """Scan the given roots. Refused while another scan is running."""
        if self.scan_thread is not None:
            logger.warning("Scan already in progress; request ignored")
            return False
        if not roots:
            logger.info("No library folders to scan")
            return False
        self.scan_thread = ScanThread(self.db.db_path, roots, self.queue)
        self.scan_thread.start()
        return True

    def _finish_scan(self):
        if self.scan_thread is not None:
            self.scan_thread.wait()
            self.scan_thread = None

    def _on_scan_progress(self, delivery: Delivery):
        self.scan_progress.emit(delivery.payload)

    def _on_scan_done(self, delivery: Delivery):
        self._finish_scan()
        self.scan_finished.emit(delivery.payload)

    def _on_scan_failed(self, delivery: Delivery):
        self._finish_scan()
        self.operation_failed.emit(f"Scan failed: {delivery.error}")

    # Match sweep

    def start_match(self) -> bool:
        """Auto-match all unmatched entries in the background."""
        if self.sweep_thread is not None:
            logger.warning("Matching already in progress; request ignored")
            return False
        self._sweep_done = None
        self.sweep_thread = MatchSweepThread(
            self.db.db_path, self.client_factory, self.poster_dir, self.queue,
            self.request_delay
        )
        self.sweep_thread.start()
        return True

    def stop_match(self):
        if self.sweep_thread is not None:
            self.sweep_thread.cancel()

    def _finish_sweep(self):
        if self.sweep_thread is not None:
            self.sweep_thread.wait()
            self.sweep_thread = None

    def _on_match_progress(self, delivery: Delivery):
        current, total, title, matched = delivery.payload
        self.match_progress.emit(current, total, title, matched)
        if self.sweep_thread is None:
            return
        if self.sweep_thread.outstanding.decrement() == 0 and self._sweep_done is not None:
            self._emit_match_done()

    def _on_match_done(self, delivery: Delivery):
        self._sweep_done = bool(delivery.payload)
        # Hold completion until every progress update has been handled.
        if self.sweep_thread is not None and self.sweep_thread.outstanding.value > 0:
            return
        self._emit_match_done()

    def _emit_match_done(self):
        canceled = self._sweep_done
        self._sweep_done = None
        self._finish_sweep()
        self.match_done.emit(bool(canceled))

    def _on_match_failed(self, delivery: Delivery):
        self._sweep_done = None
        self._finish_sweep()
        self.operation_failed.emit(f"Matching failed: {delivery.error}")

    # Manual match and search

    def apply_match(self, entry_id: int, external_id: int,
                    media_type: Optional[MediaType] = None):
        """Apply a user-selected TMDB result, optionally converting the kind."""
        self.pool.start(ApplyMatchTask(
            self.db.db_path, self.client_factory, self.poster_dir, self.queue,
            entry_id, external_id, media_type
        ))

    def search(self, query: str, year: Optional[int] = None,
               media_type: MediaType = MediaType.FILM) -> int:
        """Start a search; results arrive via ``search_finished`` with the returned id."""
        self._search_id += 1
        self.pool.start(SearchTask(
            self.client_factory, self.queue, self._search_id, query, year, media_type
        ))
        return self._search_id

    def _on_apply_done(self, delivery: Delivery):
        entry_id, ok = delivery.payload
        self.apply_finished.emit(entry_id, ok, delivery.error or "")

    def _on_search_done(self, delivery: Delivery):
        request_id, results = delivery.payload
        self.search_finished.emit(request_id, results)

    def shutdown(self):
        """Cancel the sweep and wait for running threads before exit."""
        self.stop_match()
        for thread in (self.scan_thread, self.sweep_thread):
            if thread is not None:
                thread.wait()
        self.pool.waitForDone()

    # Quick edits on the UI thread's handle

    def reset_to_unmatched(self, entry_id: int) -> bool:
        return self.matcher.reset_to_unmatched(entry_id)

    def mark_ignored(self, entry_id: int) -> bool:
        return self.matcher.mark_ignored(entry_id)

    def delete_entry(self, entry_id: int) -> bool:
        deleted = self.db.delete_entry(entry_id)
        if deleted:
            logger.info("Removed entry %s", entry_id)
        return deleted
