"""Database manager for SQLite catalog operations."""

import logging
import sqlite3
import time
from pathlib import Path
from typing import List, Optional

from mediashelf.database.models import (
    AttachedFile, CastMember, CatalogEntry, Episode, FilterSpec,
    MatchStatus, MediaType, Person,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = '''
    CREATE TABLE IF NOT EXISTS entries (
        id INTEGER PRIMARY KEY,
        file_path TEXT UNIQUE NOT NULL,
        title TEXT,
        year INTEGER,
        runtime_minutes INTEGER,
        plot TEXT,
        poster_path TEXT,
        tmdb_id INTEGER,
        imdb_id TEXT,
        rating REAL,
        added_date INTEGER,
        match_status INTEGER NOT NULL DEFAULT 0,
        media_type INTEGER NOT NULL DEFAULT 0,
        season_number INTEGER
    );

    CREATE TABLE IF NOT EXISTS episodes (
        id INTEGER PRIMARY KEY,
        season_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        episode_number INTEGER,
        title TEXT,
        file_path TEXT UNIQUE NOT NULL,
        runtime_minutes INTEGER,
        plot TEXT,
        tmdb_id INTEGER,
        air_date TEXT
    );

    CREATE TABLE IF NOT EXISTS attached_files (
        id INTEGER PRIMARY KEY,
        film_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        file_path TEXT UNIQUE NOT NULL,
        label TEXT,
        sort_order INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS genres (
        id INTEGER PRIMARY KEY,
        name TEXT UNIQUE NOT NULL,
        tmdb_id INTEGER
    );

    CREATE TABLE IF NOT EXISTS entry_genres (
        entry_id INTEGER REFERENCES entries(id) ON DELETE CASCADE,
        genre_id INTEGER REFERENCES genres(id) ON DELETE CASCADE,
        PRIMARY KEY (entry_id, genre_id)
    );

    CREATE TABLE IF NOT EXISTS actors (
        id INTEGER PRIMARY KEY,
        name TEXT UNIQUE NOT NULL,
        tmdb_id INTEGER
    );

    CREATE TABLE IF NOT EXISTS entry_actors (
        entry_id INTEGER REFERENCES entries(id) ON DELETE CASCADE,
        actor_id INTEGER REFERENCES actors(id) ON DELETE CASCADE,
        role TEXT,
        cast_order INTEGER,
        PRIMARY KEY (entry_id, actor_id)
    );

    CREATE TABLE IF NOT EXISTS directors (
        id INTEGER PRIMARY KEY,
        name TEXT UNIQUE NOT NULL,
        tmdb_id INTEGER
    );

    CREATE TABLE IF NOT EXISTS entry_directors (
        entry_id INTEGER REFERENCES entries(id) ON DELETE CASCADE,
        director_id INTEGER REFERENCES directors(id) ON DELETE CASCADE,
        PRIMARY KEY (entry_id, director_id)
    );

    CREATE INDEX IF NOT EXISTS idx_entries_year ON entries(year);
    CREATE INDEX IF NOT EXISTS idx_entries_title ON entries(title);
    CREATE INDEX IF NOT EXISTS idx_entries_match_status ON entries(match_status);
    CREATE INDEX IF NOT EXISTS idx_entries_tmdb_id ON entries(tmdb_id);
    CREATE INDEX IF NOT EXISTS idx_episodes_season ON episodes(season_id);
    CREATE INDEX IF NOT EXISTS idx_attached_film ON attached_files(film_id);
'''

ENTRY_COLUMNS = (
    'file_path', 'title', 'year', 'runtime_minutes', 'plot', 'poster_path',
    'tmdb_id', 'imdb_id', 'rating', 'added_date', 'match_status',
    'media_type', 'season_number',
)

SORT_COLUMNS = {
    'title': 'e.title COLLATE NOCASE',
    'year': 'e.year',
    'rating': 'e.rating',
    'added': 'e.added_date',
}


class DatabaseManager:
    """Manages SQLite catalog operations.

    One instance owns one connection and must only be used from the thread
    that created it. Background tasks open their own instance, read-only
    when they only query.
    """

    def __init__(self, db_path: str = "data/library.db", read_only: bool = False):
        """Initialize database manager."""
        self.db_path = str(db_path)
        self.read_only = read_only
        self._conn: Optional[sqlite3.Connection] = None
        if not read_only:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.init_database()

    @classmethod
    def open_readonly(cls, db_path: str) -> 'DatabaseManager':
        """Open a query-only handle safe to use beside the primary one."""
        return cls(db_path, read_only=True)

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        if self._conn is None:
            if self.read_only:
                uri = f"{Path(self.db_path).resolve().as_uri()}?mode=ro"
                conn = sqlite3.connect(uri, uri=True, timeout=15)
            else:
                conn = sqlite3.connect(self.db_path, timeout=15)
                conn.execute('PRAGMA journal_mode=WAL')
            conn.row_factory = sqlite3.Row
            conn.execute('PRAGMA foreign_keys=ON')
            self._conn = conn
        return self._conn

    def close(self):
        """Close the underlying connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def init_database(self):
        """Initialize database with required tables."""
        with self.get_connection() as conn:
            conn.executescript(SCHEMA_SQL)
        logger.info("Database initialized: %s", self.db_path)

    # Entries

    def add_entry(self, entry: CatalogEntry) -> Optional[int]:
        """Insert a catalog entry.

        Returns the new id, or None when the path is already tracked.
        """
        if entry.added_date is None:
            entry.added_date = int(time.time())
        values = entry.to_dict()
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(
                    f'INSERT INTO entries ({", ".join(ENTRY_COLUMNS)}) '
                    f'VALUES ({", ".join("?" for _ in ENTRY_COLUMNS)})',
                    [values[column] for column in ENTRY_COLUMNS]
                )
        except sqlite3.IntegrityError:
            logger.debug("Already tracked: %s", entry.file_path)
            return None
        entry.id = cursor.lastrowid
        return entry.id

    def update_entry(self, entry: CatalogEntry) -> bool:
        """Update an existing entry (all columns except path and added date)."""
        columns = [c for c in ENTRY_COLUMNS if c not in ('file_path', 'added_date')]
        values = entry.to_dict()
        with self.get_connection() as conn:
            cursor = conn.execute(
                f'UPDATE entries SET {", ".join(f"{c}=?" for c in columns)} WHERE id=?',
                [values[column] for column in columns] + [entry.id]
            )
        return cursor.rowcount > 0

    def update_match_status(self, entry_id: int, status: MatchStatus) -> bool:
        """Set only the match status of an entry."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                'UPDATE entries SET match_status=? WHERE id=?', (int(status), entry_id)
            )
        return cursor.rowcount > 0

    def delete_entry(self, entry_id: int) -> bool:
        """Delete an entry with its episodes, attached files and links."""
        with self.get_connection() as conn:
            cursor = conn.execute('DELETE FROM entries WHERE id=?', (entry_id,))
        return cursor.rowcount > 0

    def get_entry(self, entry_id: int) -> Optional[CatalogEntry]:
        """Get a single entry by id."""
        row = self.get_connection().execute(
            'SELECT * FROM entries WHERE id=?', (entry_id,)
        ).fetchone()
        return self._entry_from_row(row) if row else None

    def get_entry_by_path(self, file_path: str) -> Optional[CatalogEntry]:
        """Get a single entry by its primary file path."""
        row = self.get_connection().execute(
            'SELECT * FROM entries WHERE file_path=?', (file_path,)
        ).fetchone()
        return self._entry_from_row(row) if row else None

    def get_unmatched_entries(self) -> List[CatalogEntry]:
        """Entries eligible for automatic matching."""
        rows = self.get_connection().execute(
            'SELECT * FROM entries WHERE match_status=? ORDER BY file_path',
            (int(MatchStatus.UNMATCHED),)
        ).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def is_file_tracked(self, file_path: str) -> bool:
        """Check whether a path is an entry, an episode or an attached file."""
        row = self.get_connection().execute('''
            SELECT 1 FROM entries WHERE file_path=?
            UNION ALL SELECT 1 FROM episodes WHERE file_path=?
            UNION ALL SELECT 1 FROM attached_files WHERE file_path=?
            LIMIT 1
        ''', (file_path, file_path, file_path)).fetchone()
        return row is not None

    def get_entries_page(self, filter_spec: Optional[FilterSpec], limit: int,
                         offset: int) -> List[CatalogEntry]:
        """Get one page of entries in the filter's total order."""
        query, params = self._build_filter_query(filter_spec)
        query += ' LIMIT ? OFFSET ?'
        params.extend([limit, offset])
        rows = self.get_connection().execute(query, params).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def get_entries(self, filter_spec: Optional[FilterSpec] = None) -> List[CatalogEntry]:
        """Get every entry matching the filter, unpaged."""
        query, params = self._build_filter_query(filter_spec)
        rows = self.get_connection().execute(query, params).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def count_entries(self) -> int:
        row = self.get_connection().execute('SELECT COUNT(*) FROM entries').fetchone()
        return row[0]

    def count_unmatched(self) -> int:
        row = self.get_connection().execute(
            'SELECT COUNT(*) FROM entries WHERE match_status=?',
            (int(MatchStatus.UNMATCHED),)
        ).fetchone()
        return row[0]

    def _build_filter_query(self, filter_spec: Optional[FilterSpec]):
        """Build the SELECT for a filter. Ties always break on id."""
        filter_spec = filter_spec or FilterSpec()
        query = 'SELECT e.* FROM entries e'
        conditions = []
        params = []

        if filter_spec.genre:
            conditions.append('''e.id IN (
                SELECT eg.entry_id FROM entry_genres eg
                JOIN genres g ON eg.genre_id = g.id WHERE g.name = ?)''')
            params.append(filter_spec.genre)

        if filter_spec.year_from:
            conditions.append('e.year >= ?')
            params.append(filter_spec.year_from)

        if filter_spec.year_to:
            conditions.append('e.year <= ?')
            params.append(filter_spec.year_to)

        if filter_spec.search_text:
            conditions.append('e.title LIKE ?')
            params.append(f'%{filter_spec.search_text}%')

        if filter_spec.plot_text:
            conditions.append('e.plot LIKE ?')
            params.append(f'%{filter_spec.plot_text}%')

        if filter_spec.actor:
            conditions.append('''e.id IN (
                SELECT ea.entry_id FROM entry_actors ea
                JOIN actors a ON ea.actor_id = a.id WHERE a.name LIKE ?)''')
            params.append(f'%{filter_spec.actor}%')

        if filter_spec.director:
            conditions.append('''e.id IN (
                SELECT ed.entry_id FROM entry_directors ed
                JOIN directors d ON ed.director_id = d.id WHERE d.name LIKE ?)''')
            params.append(f'%{filter_spec.director}%')

        if conditions:
            query += ' WHERE ' + ' AND '.join(conditions)

        column = SORT_COLUMNS.get(filter_spec.sort_by, SORT_COLUMNS['title'])
        direction = 'ASC' if filter_spec.sort_ascending else 'DESC'
        query += f' ORDER BY {column} {direction}, e.id ASC'
        return query, params

    @staticmethod
    def _entry_from_row(row: sqlite3.Row) -> CatalogEntry:
        return CatalogEntry(
            id=row['id'],
            file_path=row['file_path'],
            title=row['title'],
            year=row['year'],
            runtime_minutes=row['runtime_minutes'],
            plot=row['plot'],
            poster_path=row['poster_path'],
            tmdb_id=row['tmdb_id'],
            imdb_id=row['imdb_id'],
            rating=row['rating'],
            added_date=row['added_date'],
            match_status=MatchStatus(row['match_status']),
            media_type=MediaType(row['media_type']),
            season_number=row['season_number'],
        )

    # Episodes

    def add_episode(self, episode: Episode) -> Optional[int]:
        """Insert an episode. Returns None when the path is already tracked."""
        try:
            with self.get_connection() as conn:
                cursor = conn.execute('''
                    INSERT INTO episodes
                    (season_id, episode_number, title, file_path, runtime_minutes,
                     plot, tmdb_id, air_date)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    episode.season_id, episode.episode_number, episode.title,
                    episode.file_path, episode.runtime_minutes, episode.plot,
                    episode.tmdb_id, episode.air_date
                ))
        except sqlite3.IntegrityError:
            logger.debug("Episode already tracked: %s", episode.file_path)
            return None
        episode.id = cursor.lastrowid
        return episode.id

    def update_episode(self, episode: Episode) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute('''
                UPDATE episodes
                SET episode_number=?, title=?, runtime_minutes=?, plot=?,
                    tmdb_id=?, air_date=?
                WHERE id=?
            ''', (
                episode.episode_number, episode.title, episode.runtime_minutes,
                episode.plot, episode.tmdb_id, episode.air_date, episode.id
            ))
        return cursor.rowcount > 0

    def get_episode_by_path(self, file_path: str) -> Optional[Episode]:
        row = self.get_connection().execute(
            'SELECT * FROM episodes WHERE file_path=?', (file_path,)
        ).fetchone()
        return Episode.from_dict(dict(row)) if row else None

    def get_episodes_for_season(self, season_id: int) -> List[Episode]:
        rows = self.get_connection().execute(
            'SELECT * FROM episodes WHERE season_id=? ORDER BY episode_number, file_path',
            (season_id,)
        ).fetchall()
        return [Episode.from_dict(dict(row)) for row in rows]

    # Attached files

    def add_attached_file(self, attached: AttachedFile) -> Optional[int]:
        """Attach a secondary file to a film.

        A standalone film row for the same path is dropped first so the path
        stays in exactly one table. Episodes and other attachments win.
        """
        conn = self.get_connection()
        existing = self.get_entry_by_path(attached.file_path)
        if existing and existing.id == attached.film_id:
            return None
        try:
            with conn:
                if existing and existing.media_type == MediaType.FILM:
                    conn.execute('DELETE FROM entries WHERE id=?', (existing.id,))
                elif existing:
                    return None
                cursor = conn.execute('''
                    INSERT INTO attached_files (film_id, file_path, label, sort_order)
                    SELECT ?, ?, ?, ?
                    WHERE NOT EXISTS (SELECT 1 FROM episodes WHERE file_path=?)
                ''', (
                    attached.film_id, attached.file_path, attached.label,
                    attached.sort_order, attached.file_path
                ))
                if cursor.rowcount == 0:
                    raise sqlite3.IntegrityError("path tracked as an episode")
        except sqlite3.IntegrityError:
            logger.debug("Cannot attach tracked path: %s", attached.file_path)
            return None
        attached.id = cursor.lastrowid
        return attached.id

    def get_attached_files(self, film_id: int) -> List[AttachedFile]:
        rows = self.get_connection().execute(
            'SELECT * FROM attached_files WHERE film_id=? ORDER BY sort_order, id',
            (film_id,)
        ).fetchall()
        return [AttachedFile.from_dict(dict(row)) for row in rows]

    def remove_attached_file(self, attached_id: int) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute('DELETE FROM attached_files WHERE id=?', (attached_id,))
        return cursor.rowcount > 0

    # Associations (find-or-create on name)

    def _get_or_create(self, conn, table: str, name: str, tmdb_id: Optional[int] = None) -> int:
        conn.execute(
            f'INSERT OR IGNORE INTO {table} (name, tmdb_id) VALUES (?, ?)', (name, tmdb_id)
        )
        if tmdb_id:
            conn.execute(
                f'UPDATE {table} SET tmdb_id=? WHERE name=? AND tmdb_id IS NULL',
                (tmdb_id, name)
            )
        row = conn.execute(f'SELECT id FROM {table} WHERE name=?', (name,)).fetchone()
        return row[0]

    def add_genre_to_entry(self, entry_id: int, name: str, tmdb_id: Optional[int] = None) -> int:
        with self.get_connection() as conn:
            genre_id = self._get_or_create(conn, 'genres', name, tmdb_id)
            conn.execute(
                'INSERT OR IGNORE INTO entry_genres (entry_id, genre_id) VALUES (?, ?)',
                (entry_id, genre_id)
            )
        return genre_id

    def add_actor_to_entry(self, entry_id: int, name: str, role: Optional[str],
                           cast_order: int, tmdb_id: Optional[int] = None) -> int:
        """Link an actor; re-linking updates role and order in place."""
        with self.get_connection() as conn:
            actor_id = self._get_or_create(conn, 'actors', name, tmdb_id)
            conn.execute('''
                INSERT INTO entry_actors (entry_id, actor_id, role, cast_order)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(entry_id, actor_id)
                DO UPDATE SET role=excluded.role, cast_order=excluded.cast_order
            ''', (entry_id, actor_id, role, cast_order))
        return actor_id

    def add_director_to_entry(self, entry_id: int, name: str,
                              tmdb_id: Optional[int] = None) -> int:
        with self.get_connection() as conn:
            director_id = self._get_or_create(conn, 'directors', name, tmdb_id)
            conn.execute(
                'INSERT OR IGNORE INTO entry_directors (entry_id, director_id) VALUES (?, ?)',
                (entry_id, director_id)
            )
        return director_id

    def clear_associations(self, entry_id: int):
        """Remove every genre, actor and director link of an entry."""
        with self.get_connection() as conn:
            conn.execute('DELETE FROM entry_genres WHERE entry_id=?', (entry_id,))
            conn.execute('DELETE FROM entry_actors WHERE entry_id=?', (entry_id,))
            conn.execute('DELETE FROM entry_directors WHERE entry_id=?', (entry_id,))

    def get_genres_for_entry(self, entry_id: int) -> List[str]:
        rows = self.get_connection().execute('''
            SELECT g.name FROM genres g
            JOIN entry_genres eg ON eg.genre_id = g.id
            WHERE eg.entry_id=? ORDER BY g.name
        ''', (entry_id,)).fetchall()
        return [row['name'] for row in rows]

    def get_cast_for_entry(self, entry_id: int) -> List[CastMember]:
        rows = self.get_connection().execute('''
            SELECT a.id, a.name, ea.role, ea.cast_order, a.tmdb_id FROM actors a
            JOIN entry_actors ea ON ea.actor_id = a.id
            WHERE ea.entry_id=? ORDER BY ea.cast_order, a.name
        ''', (entry_id,)).fetchall()
        return [
            CastMember(id=row['id'], name=row['name'], role=row['role'],
                       cast_order=row['cast_order'], tmdb_id=row['tmdb_id'])
            for row in rows
        ]

    def get_directors_for_entry(self, entry_id: int) -> List[Person]:
        rows = self.get_connection().execute('''
            SELECT d.id, d.name, d.tmdb_id FROM directors d
            JOIN entry_directors ed ON ed.director_id = d.id
            WHERE ed.entry_id=? ORDER BY d.name
        ''', (entry_id,)).fetchall()
        return [Person(id=row['id'], name=row['name'], tmdb_id=row['tmdb_id']) for row in rows]

    def get_all_genres(self) -> List[str]:
        """Genres that are linked to at least one entry."""
        rows = self.get_connection().execute('''
            SELECT DISTINCT g.name FROM genres g
            JOIN entry_genres eg ON eg.genre_id = g.id ORDER BY g.name
        ''').fetchall()
        return [row['name'] for row in rows]
