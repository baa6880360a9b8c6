"""Directory scanner: finds video files and files them as films or TV seasons."""

import logging
import os
import time
from typing import Callable, List, Optional

from mediashelf.database.db_manager import DatabaseManager
from mediashelf.database.models import CatalogEntry, Episode, MatchStatus, MediaType
from mediashelf.utils.filename_parser import (
    derive_show_name_from_dirname, derive_show_name_from_episode_filename,
    detect_majority_season, is_video_file, normalize_title, parse_episode_number,
    parse_filename, parse_season_directory, parse_sxxeyy, season_title,
    show_name_for_season_path,
)

logger = logging.getLogger(__name__)

MAX_DEPTH = 10


def _list_dir(path: str) -> List[os.DirEntry]:
    """Visible entries of a directory; unreadable directories are empty."""
    try:
        with os.scandir(path) as it:
            return [entry for entry in it if not entry.name.startswith('.')]
    except OSError as e:
        logger.warning("Cannot read directory %s: %s", path, e)
        return []


def _is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False


def _detect_season_from_files(path: str) -> Optional[int]:
    names = [entry.name for entry in _list_dir(path) if not _is_dir(entry)]
    return detect_majority_season(names)


class Scanner:
    """Walks library roots and inserts new catalog rows.

    Scanning is idempotent: tracked paths are never inserted twice. Two
    scans running at once on overlapping roots are not coordinated here.
    """

    def __init__(self, db: DatabaseManager,
                 progress_callback: Optional[Callable[[str], None]] = None):
        self.db = db
        self.progress_callback = progress_callback

    def scan(self, root_path: str) -> int:
        """Scan a library root; returns how many rows were added."""
        logger.info("Scanning: %s", root_path)
        added = self._scan_directory(os.fspath(root_path), 0)
        logger.info("Scan of %s added %d item(s)", root_path, added)
        return added

    def _report(self, path: str):
        if self.progress_callback:
            self.progress_callback(path)

    def _scan_directory(self, path: str, depth: int) -> int:
        if depth > MAX_DEPTH:
            logger.warning("Depth limit reached at %s", path)
            return 0

        self._report(path)
        entries = sorted(_list_dir(path), key=lambda e: e.name)
        videos = [entry for entry in entries if not _is_dir(entry) and is_video_file(entry.name)]

        added = 0
        season_added = self._scan_as_season(path, videos)
        if season_added is not None:
            added += season_added
        else:
            for entry in videos:
                added += self._add_film(entry.path)

        for entry in entries:
            if _is_dir(entry):
                added += self._scan_subdirectory(entry, depth)
        return added

    def _scan_subdirectory(self, entry: os.DirEntry, depth: int) -> int:
        season = parse_season_directory(entry.name)
        if season is not None:
            return self.scan_season(entry.path, season, show_name_for_season_path(entry.path))

        season = _detect_season_from_files(entry.path)
        if season is not None:
            show_name = derive_show_name_from_dirname(entry.name) or normalize_title(entry.name)
            return self.scan_season(entry.path, season, show_name)

        return self._scan_directory(entry.path, depth + 1)

    def _scan_as_season(self, path: str, videos: List[os.DirEntry]) -> Optional[int]:
        """Ingest a directory holding loose ``SxxEyy`` files as one season.

        Only reached for the directory passed to ``scan()`` itself, since
        season subdirectories never get the generic walk. The whole
        directory is classified before any of its files is stored. Returns
        None when its videos are films.
        """
        episodic = [entry.name for entry in videos if parse_sxxeyy(entry.name)]
        if not episodic:
            return None

        dir_name = os.path.basename(path.rstrip(os.sep))
        season = parse_season_directory(dir_name)
        if season is not None:
            show_name = show_name_for_season_path(path)
        else:
            season = detect_majority_season(entry.name for entry in videos)
            if season is None:
                return None
            show_name = (derive_show_name_from_dirname(dir_name)
                         or derive_show_name_from_episode_filename(episodic[0])
                         or 'Unknown Show')
        return self.scan_season(path, season, show_name)

    def _add_film(self, file_path: str) -> int:
        if self.db.is_file_tracked(file_path):
            return 0

        title, year = parse_filename(os.path.basename(file_path))
        film = CatalogEntry(
            file_path=file_path,
            title=title,
            year=year,
            added_date=int(time.time()),
            match_status=MatchStatus.UNMATCHED,
            media_type=MediaType.FILM,
        )
        if self.db.add_entry(film) is None:
            return 0
        logger.info("Added: %s", file_path)
        return 1

    def scan_season(self, path: str, season_number: int, show_name: str) -> int:
        """Find-or-create the season entry for ``path`` and its episodes."""
        added = 0
        season = self.db.get_entry_by_path(path)
        if season is None:
            season = CatalogEntry(
                file_path=path,
                title=season_title(show_name, season_number),
                added_date=int(time.time()),
                match_status=MatchStatus.UNMATCHED,
                media_type=MediaType.TV_SEASON,
                season_number=season_number,
            )
            if self.db.add_entry(season) is None:
                return 0
            added += 1
            logger.info("Added season: %s", path)
        elif season.media_type != MediaType.TV_SEASON or season.season_number != season_number:
            # Repair an entry scanned under an older classification.
            season.media_type = MediaType.TV_SEASON
            season.season_number = season_number
            if not season.title:
                season.title = season_title(show_name, season_number)
            self.db.update_entry(season)
            logger.info("Reclassified as season %d: %s", season_number, path)

        for entry in sorted(_list_dir(path), key=lambda e: e.name):
            if _is_dir(entry) or not is_video_file(entry.name):
                continue

            stale_film = self.db.get_entry_by_path(entry.path)
            if stale_film is not None and stale_film.media_type == MediaType.FILM:
                self.db.delete_entry(stale_film.id)
                logger.info("Removed film row now tracked as episode: %s", entry.path)

            # Already an episode, or attached to a film by the user.
            if self.db.is_file_tracked(entry.path):
                continue

            episode = Episode(
                season_id=season.id,
                episode_number=parse_episode_number(entry.name),
                title=entry.name,
                file_path=entry.path,
            )
            if self.db.add_episode(episode) is not None:
                added += 1
        return added
