"""Poster thumbnail cache and the worker pool that decodes posters."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Hashable, Optional

from PyQt6.QtCore import QRunnable, QThreadPool, Qt
from PyQt6.QtGui import QImage

from mediashelf.library.delivery import Delivery, DeliveryKind, DeliveryQueue

logger = logging.getLogger(__name__)

THUMB_WIDTH = 150
THUMB_HEIGHT = 225
THUMB_SUFFIX = '_thumb'
JPEG_QUALITY = 85


def poster_cache_path(cache_dir: str, entry_id: int) -> str:
    """Destination of the downloaded poster for a catalog entry."""
    return os.path.join(os.fspath(cache_dir), f"{entry_id}.jpg")


def thumbnail_path_for(poster_path: str) -> Optional[str]:
    """``/cache/12.jpg`` -> ``/cache/12_thumb.jpg``; None without an extension."""
    if not poster_path:
        return None
    root, ext = os.path.splitext(poster_path)
    if not ext:
        return None
    return f"{root}{THUMB_SUFFIX}{ext}"


def is_thumbnail_path(path: str) -> bool:
    return os.path.splitext(path)[0].endswith(THUMB_SUFFIX)


def thumbnail_is_fresh(poster_path: str, thumb_path: str) -> bool:
    """A thumbnail is fresh when it exists and is not older than its poster."""
    try:
        source_mtime = os.stat(poster_path).st_mtime
        thumb_mtime = os.stat(thumb_path).st_mtime
    except OSError:
        return False
    return thumb_mtime >= source_mtime


def _image_format(path: str) -> str:
    ext = os.path.splitext(path)[1].lstrip('.').upper()
    return 'JPEG' if ext in ('JPG', 'JPEG') else ext


def scale_to_thumbnail(image: QImage) -> QImage:
    return image.scaled(
        THUMB_WIDTH, THUMB_HEIGHT,
        Qt.AspectRatioMode.KeepAspectRatio,
        Qt.TransformationMode.SmoothTransformation
    )


def save_image_atomic(image: QImage, dest_path: str) -> bool:
    """Write ``image`` to a temp file beside ``dest_path`` then rename it.

    The rename is the only visible change: readers see either the old file,
    no file, or the complete new one.
    """
    dest_dir = os.path.dirname(os.path.abspath(dest_path))
    ext = os.path.splitext(dest_path)[1]
    try:
        fd, tmp_path = tempfile.mkstemp(prefix='.thumb_tmp_', suffix=ext, dir=dest_dir)
    except OSError as e:
        logger.warning("Cannot create temp file in %s: %s", dest_dir, e)
        return False
    os.close(fd)

    fmt = _image_format(dest_path)
    quality = JPEG_QUALITY if fmt == 'JPEG' else -1
    try:
        if not image.save(tmp_path, fmt, quality):
            logger.warning("Failed to encode %s", dest_path)
            return False
        os.replace(tmp_path, dest_path)
        return True
    except OSError as e:
        logger.warning("Failed to write %s: %s", dest_path, e)
        return False
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def write_bytes_atomic(data: bytes, dest_path: str) -> bool:
    """Same temp-then-rename contract for raw downloaded bytes."""
    dest_dir = os.path.dirname(os.path.abspath(dest_path))
    try:
        os.makedirs(dest_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='.download_tmp_', dir=dest_dir)
    except OSError as e:
        logger.warning("Cannot create temp file in %s: %s", dest_dir, e)
        return False
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, dest_path)
        return True
    except OSError as e:
        logger.warning("Failed to write %s: %s", dest_path, e)
        return False
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def ensure_thumbnail(poster_path: str) -> Optional[str]:
    """Regenerate the thumbnail if it is missing or stale.

    Returns the thumbnail path when a usable thumbnail exists afterwards.
    """
    thumb_path = thumbnail_path_for(poster_path)
    if not thumb_path:
        return None
    if thumbnail_is_fresh(poster_path, thumb_path):
        return thumb_path

    image = QImage(poster_path)
    if image.isNull():
        logger.warning("Cannot decode poster %s", poster_path)
        return thumb_path if os.path.exists(thumb_path) else None

    if save_image_atomic(scale_to_thumbnail(image), thumb_path):
        logger.debug("Thumbnail written: %s", thumb_path)
        return thumb_path
    return thumb_path if os.path.exists(thumb_path) else None


def load_display_image(poster_path: str) -> Optional[QImage]:
    """Decode the image to show for a poster, preferring its thumbnail."""
    thumb_path = None
    if not is_thumbnail_path(poster_path):
        thumb_path = ensure_thumbnail(poster_path)

    if thumb_path and os.path.exists(thumb_path):
        image = QImage(thumb_path)
        if not image.isNull():
            return image

    image = QImage(poster_path)
    if image.isNull():
        return None
    if image.width() > THUMB_WIDTH or image.height() > THUMB_HEIGHT:
        image = scale_to_thumbnail(image)
    return image


class ThumbnailTask(QRunnable):
    """Decode one poster off the UI thread and post the result."""

    def __init__(self, identity: Hashable, poster_path: str, queue: DeliveryQueue):
        super().__init__()
        self.identity = identity
        self.poster_path = poster_path
        self.queue = queue

    def run(self):
        try:
            image = load_display_image(self.poster_path)
        except Exception as e:
            logger.error("Thumbnail task failed for %s: %s", self.poster_path, e)
            image = None
        self.queue.post(Delivery(
            DeliveryKind.THUMBNAIL, payload=(self.identity, image),
            error=None if image is not None else f"cannot decode {self.poster_path}"
        ))


class ImageLoader:
    """Fixed-size worker pool producing display images for posters.

    Results are delivered by identity key; ``on_ready(identity, image)`` is
    called on the owning thread during drain, with ``image`` None when the
    poster could not be decoded (show a placeholder).
    """

    def __init__(self, queue: DeliveryQueue, cache_dir: str = "data/posters",
                 max_workers: int = 4, on_ready=None):
        """Initialize image loader with cache directory."""
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.queue = queue
        self.on_ready = on_ready
        self.pool = QThreadPool()
        self.pool.setMaxThreadCount(max_workers)
        queue.register(DeliveryKind.THUMBNAIL, self._on_delivery)

    def poster_path_for_entry(self, entry_id: int) -> str:
        return poster_cache_path(self.cache_dir, entry_id)

    def request_thumbnail(self, identity: Hashable, poster_path: str) -> bool:
        """Queue decoding of ``poster_path`` for ``identity``."""
        if not poster_path or not os.path.exists(poster_path):
            return False
        self.pool.start(ThumbnailTask(identity, poster_path, self.queue))
        return True

    def wait_for_done(self, msecs: int = -1) -> bool:
        return self.pool.waitForDone(msecs)

    def _on_delivery(self, delivery: Delivery):
        identity, image = delivery.payload
        if self.on_ready is not None:
            self.on_ready(identity, image)
