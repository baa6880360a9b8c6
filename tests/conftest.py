"""Shared fixtures: Qt application, catalog store, stub TMDB client."""

import os

import pytest
from PyQt6.QtGui import QColor, QImage
from PyQt6.QtWidgets import QApplication

from mediashelf.database.db_manager import DatabaseManager


@pytest.fixture(scope='session', autouse=True)
def qapp():
    os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / 'library.db'))
    yield manager
    manager.close()


@pytest.fixture
def make_files(tmp_path):
    """Create empty files (and their directories) below a root."""
    def _make(*relative_paths, root=None):
        root = root or tmp_path / 'library'
        for relative in relative_paths:
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b'')
        return root
    return _make


def write_png(path, width=300, height=450, color=(200, 30, 30)):
    image = QImage(width, height, QImage.Format.Format_RGB32)
    image.fill(QColor(*color))
    assert image.save(str(path), 'PNG')
    return str(path)


@pytest.fixture
def png_bytes(tmp_path):
    path = write_png(tmp_path / 'source_poster.png')
    with open(path, 'rb') as f:
        data = f.read()
    os.unlink(path)
    return data


class ManualPool:
    """Stands in for a QThreadPool; started tasks run when the test says so."""

    def __init__(self):
        self.tasks = []

    def start(self, task):
        self.tasks.append(task)

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for task in tasks:
            task.run()
        return tasks

    def waitForDone(self, msecs=-1):
        return True


@pytest.fixture
def manual_pool():
    return ManualPool()


class StubTMDBClient:
    """Records calls and answers from canned data."""

    def __init__(self, api_key='test-key'):
        self.api_key = api_key
        self.calls = []
        self.movie_results = []
        self.tv_results = []
        self.movies = {}
        self.shows = {}
        self.seasons = {}
        self.image = None

    @property
    def has_credentials(self):
        return bool(self.api_key)

    def search_movie(self, query, year=None):
        self.calls.append(('search_movie', query, year))
        return list(self.movie_results)

    def search_tv(self, query, year=None):
        self.calls.append(('search_tv', query, year))
        return list(self.tv_results)

    def get_movie_details(self, movie_id):
        self.calls.append(('movie', movie_id))
        return self.movies.get(movie_id)

    def get_tv_details(self, tv_id):
        self.calls.append(('tv', tv_id))
        return self.shows.get(tv_id)

    def get_season_details(self, tv_id, season_number):
        self.calls.append(('season', tv_id, season_number))
        return self.seasons.get((tv_id, season_number))

    def download_image(self, poster_path):
        self.calls.append(('image', poster_path))
        return self.image


@pytest.fixture
def stub_client():
    return StubTMDBClient()


def matrix_details():
    return {
        'id': 603,
        'title': 'The Matrix',
        'year': 1999,
        'runtime': 136,
        'overview': 'A hacker learns the truth.',
        'vote_average': 8.2,
        'imdb_id': 'tt0133093',
        'poster_path': '/matrix.jpg',
        'genres': [{'id': 28, 'name': 'Action'}, {'id': 878, 'name': 'Science Fiction'}],
        'cast': [
            {'id': 6384, 'name': 'Keanu Reeves', 'character': 'Neo'},
            {'id': 2975, 'name': 'Laurence Fishburne', 'character': 'Morpheus'},
        ],
        'directors': [{'id': 9340, 'name': 'Lana Wachowski'}],
    }
