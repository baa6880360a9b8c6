"""Metadata matching against TMDB: search, auto-match sweep, apply and reset."""

import logging
import os
import time
from typing import Callable, Dict, List, Optional

from mediashelf.database.db_manager import DatabaseManager
from mediashelf.database.models import CatalogEntry, MatchStatus, MediaType
from mediashelf.utils.filename_parser import (
    clean_search_query, parse_episode_number, parse_filename, season_title,
    show_name_for_season_path, year_from_query,
)
from mediashelf.utils.image_loader import (
    ensure_thumbnail, poster_cache_path, thumbnail_path_for, write_bytes_atomic,
)

logger = logging.getLogger(__name__)

# current, total, entry, matched
ProgressCallback = Callable[[int, int, CatalogEntry, bool], None]


class MetadataMatcher:
    """Searches TMDB and writes matched metadata into the catalog.

    A matcher uses one ``DatabaseManager`` and must stay on the thread that
    owns it; background operations construct their own matcher.
    """

    # Pause between sweep entries, courtesy towards the TMDB rate limit
    RATE_LIMIT_DELAY = 0.25

    def __init__(self, db_manager: DatabaseManager, tmdb_client,
                 poster_dir: str = "data/posters", request_delay: float = None):
        """Initialize matcher."""
        self.db = db_manager
        self.client = tmdb_client
        self.poster_dir = poster_dir
        self.request_delay = self.RATE_LIMIT_DELAY if request_delay is None else request_delay
        self.last_request_time = 0.0

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        elapsed = time.time() - self.last_request_time
        if elapsed < self.request_delay:
            time.sleep(self.request_delay - elapsed)
        self.last_request_time = time.time()

    # Search

    def search(self, query: str, hint_year: Optional[int] = None,
               media_type: MediaType = MediaType.FILM) -> List[Dict]:
        """Search TMDB for candidates (at most 10).

        Returns an empty list without credentials, for a query that cleans
        to nothing, or when the service fails.
        """
        if not self.client.has_credentials:
            logger.warning("Search skipped: no TMDB API key")
            return []

        text = clean_search_query(query)
        if not text:
            logger.debug("Nothing to search for in %r", query)
            return []
        year = hint_year or year_from_query(query)

        if media_type == MediaType.TV_SEASON:
            results = self.client.search_tv(text, year)
        else:
            results = self.client.search_movie(text, year)
        return list(results or [])[:10]

    @staticmethod
    def is_confident_match(entry: CatalogEntry, results: List[Dict]) -> bool:
        """Whether the top result may be applied without asking the user."""
        if not results:
            return False
        if entry.is_tv_season:
            return True
        if entry.year:
            return results[0].get('year') == entry.year
        return len(results) == 1

    # Apply

    def fetch_and_apply(self, entry_id: int, external_id: int,
                        media_type: Optional[MediaType] = None,
                        manual: bool = False, require_unmatched: bool = False) -> bool:
        """Fetch full metadata for ``external_id`` and store it on the entry.

        ``media_type`` converts the entry between film and TV season; the
        conversion is only written together with a successful fetch.
        Nothing is modified when the primary fetch fails. With
        ``require_unmatched`` nothing is written unless the entry is still
        Unmatched when the fetched data is about to be stored.
        """
        entry = self.db.get_entry(entry_id)
        if entry is None:
            logger.warning("Cannot apply match: entry %s not found", entry_id)
            return False
        if require_unmatched and entry.match_status != MatchStatus.UNMATCHED:
            logger.debug("Skipping %s: no longer unmatched", entry.file_path)
            return False

        if media_type is not None and media_type != entry.media_type:
            entry.media_type = media_type
            if media_type == MediaType.TV_SEASON:
                entry.season_number = entry.season_number if entry.season_number is not None else 1
            else:
                entry.season_number = None

        entry.match_status = MatchStatus.MANUAL if manual else MatchStatus.AUTO
        if entry.is_tv_season:
            applied = self._apply_season(entry, external_id, require_unmatched)
        else:
            applied = self._apply_film(entry, external_id, require_unmatched)
        if not applied:
            return False

        logger.info("Matched %s -> %s (%s)", entry.file_path, entry.title,
                    entry.match_status.name.lower())
        return True

    def _apply_film(self, entry: CatalogEntry, movie_id: int, require_unmatched: bool) -> bool:
        details = self.client.get_movie_details(movie_id)
        if not details:
            logger.warning("No details for movie %s", movie_id)
            return False
        if require_unmatched and not self._still_unmatched(entry.id):
            return False

        replaced = entry.tmdb_id != details['id']
        entry.tmdb_id = details['id']
        entry.title = details.get('title') or entry.title
        entry.year = details.get('year')
        entry.runtime_minutes = details.get('runtime') or None
        entry.plot = details.get('overview')
        entry.rating = details.get('vote_average')
        entry.imdb_id = details.get('imdb_id')
        self._store_poster(entry, details.get('poster_path'))
        self.db.update_entry(entry)

        self._store_associations(entry.id, details, replaced)
        return True

    def _apply_season(self, entry: CatalogEntry, tv_id: int, require_unmatched: bool) -> bool:
        season_number = entry.season_number if entry.season_number is not None else 1
        season = self.client.get_season_details(tv_id, season_number)
        if not season:
            logger.warning("No details for show %s season %s", tv_id, season_number)
            return False
        # Show-level data only adds genres and ids; a season payload is enough.
        show = self.client.get_tv_details(tv_id) or {}
        if require_unmatched and not self._still_unmatched(entry.id):
            return False

        show_name = show.get('title') or show_name_for_season_path(entry.file_path)
        replaced = entry.tmdb_id != tv_id
        entry.tmdb_id = tv_id
        entry.season_number = season_number
        entry.title = season_title(show_name, season_number)
        entry.year = season.get('year') or show.get('year')
        entry.plot = season.get('overview') or show.get('overview')
        entry.rating = show.get('vote_average')
        entry.imdb_id = show.get('imdb_id')
        self._store_poster(entry, season.get('poster_path') or show.get('poster_path'))
        self.db.update_entry(entry)

        self._reconcile_episodes(entry.id, season.get('episodes') or [])
        details = dict(season)
        details['genres'] = show.get('genres') or []
        self._store_associations(entry.id, details, replaced)
        return True

    def _still_unmatched(self, entry_id: int) -> bool:
        """Re-read the status; the user may have decided while we fetched."""
        current = self.db.get_entry(entry_id)
        if current is None or current.match_status != MatchStatus.UNMATCHED:
            logger.info("Not applying automatic match to entry %s: status changed", entry_id)
            return False
        return True

    def _reconcile_episodes(self, season_id: int, fetched: List[Dict]):
        """Update local episodes by number; local ones absent remotely stay."""
        by_number = {item['episode_number']: item for item in fetched}
        updated = 0
        for episode in self.db.get_episodes_for_season(season_id):
            item = by_number.get(episode.episode_number)
            if item is None:
                continue
            episode.title = item.get('title') or episode.title
            episode.plot = item.get('overview')
            episode.runtime_minutes = item.get('runtime') or None
            episode.tmdb_id = item.get('id')
            episode.air_date = item.get('air_date')
            if self.db.update_episode(episode):
                updated += 1
        logger.debug("Updated %d episode(s) of season %s", updated, season_id)

    def _store_associations(self, entry_id: int, details: Dict, replaced: bool):
        if replaced:
            self.db.clear_associations(entry_id)
        for genre in details.get('genres') or []:
            self.db.add_genre_to_entry(entry_id, genre['name'], genre.get('id'))
        for order, person in enumerate(details.get('cast') or []):
            self.db.add_actor_to_entry(
                entry_id, person['name'], person.get('character'), order, person.get('id')
            )
        for person in details.get('directors') or []:
            self.db.add_director_to_entry(entry_id, person['name'], person.get('id'))

    def _store_poster(self, entry: CatalogEntry, remote_path: Optional[str]):
        """Download the poster to ``<poster_dir>/<id>.jpg``.

        On failure the previous poster file and ``poster_path`` stay as they
        were; the metadata update goes ahead regardless.
        """
        if not remote_path:
            return
        data = self.client.download_image(remote_path)
        if not data:
            return

        dest = poster_cache_path(self.poster_dir, entry.id)
        if not write_bytes_atomic(data, dest):
            return
        entry.poster_path = dest
        ensure_thumbnail(dest)

    # Sweep

    def auto_match(self, entry: CatalogEntry) -> bool:
        """Search for one entry and apply the top result when confident.

        Entries that stopped being Unmatched since the sweep listed them are
        left alone.
        """
        if not self._still_unmatched(entry.id):
            return False
        query = entry.title or os.path.basename(entry.file_path)
        results = self.search(query, entry.year, entry.media_type)
        if not self.is_confident_match(entry, results):
            logger.debug("No confident match for %s", entry.file_path)
            return False
        return self.fetch_and_apply(entry.id, results[0]['id'], require_unmatched=True)

    def match_unmatched(self, progress_callback: Optional[ProgressCallback] = None,
                        should_stop: Optional[Callable[[], bool]] = None) -> bool:
        """Auto-match every unmatched entry, one at a time.

        ``should_stop`` is checked between entries. Returns True when the
        sweep was canceled before the end.
        """
        entries = self.db.get_unmatched_entries()
        total = len(entries)
        logger.info("Matching %d unmatched entr%s", total, 'y' if total == 1 else 'ies')

        for index, entry in enumerate(entries, 1):
            if should_stop and should_stop():
                logger.info("Matching canceled after %d of %d", index - 1, total)
                return True
            self._rate_limit_wait()
            matched = self.auto_match(entry)
            if progress_callback:
                progress_callback(index, total, entry, matched)
        return False

    # User decisions

    def reset_to_unmatched(self, entry_id: int) -> bool:
        """Forget a match and restore the title derived from the file name."""
        entry = self.db.get_entry(entry_id)
        if entry is None:
            return False

        if entry.is_tv_season:
            season_number = entry.season_number if entry.season_number is not None else 1
            entry.title = season_title(show_name_for_season_path(entry.file_path), season_number)
            entry.year = None
        else:
            entry.title, entry.year = parse_filename(os.path.basename(entry.file_path))

        self._remove_poster(entry.poster_path)
        entry.runtime_minutes = None
        entry.plot = None
        entry.poster_path = None
        entry.tmdb_id = None
        entry.imdb_id = None
        entry.rating = None
        entry.match_status = MatchStatus.UNMATCHED
        self.db.update_entry(entry)
        self.db.clear_associations(entry.id)

        for episode in self.db.get_episodes_for_season(entry.id):
            name = os.path.basename(episode.file_path)
            episode.title = name
            episode.episode_number = parse_episode_number(name)
            episode.runtime_minutes = None
            episode.plot = None
            episode.tmdb_id = None
            episode.air_date = None
            self.db.update_episode(episode)

        logger.info("Reset to unmatched: %s", entry.file_path)
        return True

    def _remove_poster(self, poster_path: Optional[str]):
        """Delete a rejected poster and its thumbnail from the cache."""
        if not poster_path:
            return
        for path in (poster_path, thumbnail_path_for(poster_path)):
            if not path or not os.path.exists(path):
                continue
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("Could not remove cached poster %s: %s", path, e)

    def mark_ignored(self, entry_id: int) -> bool:
        """Exclude an entry from automatic matching."""
        return self.db.update_match_status(entry_id, MatchStatus.IGNORED)
