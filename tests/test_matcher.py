import os

import pytest

from conftest import StubTMDBClient, matrix_details
from mediashelf.database.models import CatalogEntry, Episode, MatchStatus, MediaType
from mediashelf.library.matcher import MetadataMatcher
from mediashelf.utils.image_loader import thumbnail_path_for


@pytest.fixture
def poster_dir(tmp_path):
    return str(tmp_path / 'posters')


@pytest.fixture
def matcher(db, stub_client, poster_dir):
    return MetadataMatcher(db, stub_client, poster_dir, request_delay=0)


@pytest.fixture
def film(db):
    entry = CatalogEntry(file_path='/movies/The.Matrix.1999.mkv', title='The Matrix', year=1999)
    db.add_entry(entry)
    return entry


@pytest.fixture
def season(db):
    entry = CatalogEntry(file_path='/tv/Great Show/Season 1', title='Great Show - Season 1',
                         media_type=MediaType.TV_SEASON, season_number=1)
    db.add_entry(entry)
    for number in (1, 2, 3):
        db.add_episode(Episode(season_id=entry.id, episode_number=number,
                               title=f'Great.Show.S01E0{number}.mkv',
                               file_path=f'/tv/Great Show/Season 1/Great.Show.S01E0{number}.mkv'))
    return entry


def season_payload():
    return {
        'id': 3572,
        'season_number': 1,
        'title': 'Season 1',
        'overview': 'The first season.',
        'air_date': '2008-01-20',
        'year': 2008,
        'poster_path': '/s1.jpg',
        'episodes': [
            {'id': 62085, 'episode_number': 1, 'title': 'Pilot', 'overview': 'It begins.',
             'runtime': 58, 'air_date': '2008-01-20'},
            {'id': 62086, 'episode_number': 2, 'title': 'Second', 'overview': None,
             'runtime': 48, 'air_date': '2008-01-27'},
        ],
        'cast': [{'id': 17419, 'name': 'Bryan Cranston', 'character': 'Walter White'}],
        'directors': [],
    }


def show_payload():
    return {
        'id': 1396, 'title': 'Great Show', 'year': 2008, 'overview': 'Show overview.',
        'vote_average': 8.9, 'imdb_id': 'tt0903747', 'poster_path': '/show.jpg',
        'genres': [{'id': 18, 'name': 'Drama'}],
    }


# Search

def test_search_without_credentials_returns_nothing(db, poster_dir):
    client = StubTMDBClient(api_key='')
    matcher = MetadataMatcher(db, client, poster_dir)

    assert matcher.search('The Matrix') == []
    assert client.calls == []


def test_search_cleans_query_and_passes_year(matcher, stub_client):
    stub_client.movie_results = [{'id': 603, 'title': 'The Matrix', 'year': 1999}]

    results = matcher.search('/movies/The.Matrix.1999.mkv')

    assert results == stub_client.movie_results
    assert stub_client.calls == [('search_movie', 'The Matrix', 1999)]


def test_search_tv_strips_season_suffix(matcher, stub_client):
    matcher.search('Great Show - Season 1', None, MediaType.TV_SEASON)
    assert stub_client.calls == [('search_tv', 'Great Show', None)]


def test_search_with_empty_query_makes_no_request(matcher, stub_client):
    assert matcher.search('   ') == []
    assert stub_client.calls == []


def test_search_limits_results(matcher, stub_client):
    stub_client.movie_results = [{'id': i, 'title': 'X', 'year': None} for i in range(15)]
    assert len(matcher.search('X')) == 10


# Confidence

@pytest.mark.parametrize('year, results, expected', [
    (1999, [{'id': 1, 'year': 1999}, {'id': 2, 'year': 2003}], True),
    (1999, [{'id': 1, 'year': 2003}, {'id': 2, 'year': 1999}], False),
    (None, [{'id': 1, 'year': 2003}], True),
    (None, [{'id': 1, 'year': 2003}, {'id': 2, 'year': 1999}], False),
    (1999, [], False),
])
def test_film_confidence(year, results, expected):
    entry = CatalogEntry(file_path='/m/x.mkv', year=year)
    assert MetadataMatcher.is_confident_match(entry, results) is expected


def test_tv_confidence_accepts_any_top_result():
    entry = CatalogEntry(file_path='/tv/s', year=1999, media_type=MediaType.TV_SEASON)
    assert MetadataMatcher.is_confident_match(entry, [{'id': 1, 'year': 2010}, {'id': 2}])
    assert not MetadataMatcher.is_confident_match(entry, [])


# Apply

def test_fetch_and_apply_film(matcher, stub_client, db, film, poster_dir, png_bytes):
    stub_client.movies[603] = matrix_details()
    stub_client.image = png_bytes

    assert matcher.fetch_and_apply(film.id, 603)

    stored = db.get_entry(film.id)
    assert stored.match_status == MatchStatus.AUTO
    assert stored.tmdb_id == 603
    assert stored.runtime_minutes == 136
    assert stored.imdb_id == 'tt0133093'
    assert stored.rating == pytest.approx(8.2)
    assert stored.poster_path == os.path.join(poster_dir, f'{film.id}.jpg')
    assert os.path.exists(stored.poster_path)
    assert db.get_genres_for_entry(film.id) == ['Action', 'Science Fiction']
    assert [(c.name, c.role) for c in db.get_cast_for_entry(film.id)] == [
        ('Keanu Reeves', 'Neo'), ('Laurence Fishburne', 'Morpheus')]
    assert [d.name for d in db.get_directors_for_entry(film.id)] == ['Lana Wachowski']


def test_manual_apply_sets_manual_status(matcher, stub_client, db, film):
    stub_client.movies[603] = matrix_details()
    assert matcher.fetch_and_apply(film.id, 603, manual=True)
    assert db.get_entry(film.id).match_status == MatchStatus.MANUAL


def test_refetch_updates_cast_in_place(matcher, stub_client, db, film):
    stub_client.movies[603] = matrix_details()
    matcher.fetch_and_apply(film.id, 603)
    stub_client.movies[603]['cast'][0]['character'] = 'Thomas A. Anderson'

    matcher.fetch_and_apply(film.id, 603)

    cast = db.get_cast_for_entry(film.id)
    assert len(cast) == 2
    assert cast[0].role == 'Thomas A. Anderson'


def test_failed_fetch_leaves_entry_untouched(matcher, db, film):
    before = db.get_entry(film.id)

    assert not matcher.fetch_and_apply(film.id, 999)

    assert db.get_entry(film.id) == before
    assert db.get_genres_for_entry(film.id) == []


def test_poster_failure_still_commits_metadata(matcher, stub_client, db, film):
    stub_client.movies[603] = matrix_details()
    stub_client.image = None

    assert matcher.fetch_and_apply(film.id, 603)

    stored = db.get_entry(film.id)
    assert stored.title == 'The Matrix'
    assert stored.plot == 'A hacker learns the truth.'
    assert stored.poster_path is None


def test_fetch_and_apply_season_reconciles_episodes(matcher, stub_client, db, season):
    stub_client.seasons[(1396, 1)] = season_payload()
    stub_client.shows[1396] = show_payload()

    assert matcher.fetch_and_apply(season.id, 1396)

    stored = db.get_entry(season.id)
    assert stored.title == 'Great Show - Season 1'
    assert stored.year == 2008
    assert stored.plot == 'The first season.'
    assert stored.imdb_id == 'tt0903747'
    assert db.get_genres_for_entry(season.id) == ['Drama']
    assert [c.name for c in db.get_cast_for_entry(season.id)] == ['Bryan Cranston']

    episodes = db.get_episodes_for_season(season.id)
    assert [e.title for e in episodes] == ['Pilot', 'Second', 'Great.Show.S01E03.mkv']
    assert episodes[0].runtime_minutes == 58
    assert episodes[2].tmdb_id is None


def test_conversion_only_written_on_success(matcher, stub_client, db, film):
    assert not matcher.fetch_and_apply(film.id, 1396, MediaType.TV_SEASON)
    assert db.get_entry(film.id).media_type == MediaType.FILM

    stub_client.seasons[(1396, 1)] = season_payload()
    assert matcher.fetch_and_apply(film.id, 1396, MediaType.TV_SEASON, manual=True)

    stored = db.get_entry(film.id)
    assert stored.media_type == MediaType.TV_SEASON
    assert stored.season_number == 1
    assert stored.match_status == MatchStatus.MANUAL


def test_missing_entry_fails(matcher):
    assert not matcher.fetch_and_apply(12345, 603)


# Sweep

def test_match_unmatched_reports_progress(matcher, stub_client, db, film):
    other = CatalogEntry(file_path='/movies/Unknown.Thing.mkv', title='Unknown Thing')
    db.add_entry(other)
    stub_client.movie_results = [{'id': 603, 'title': 'The Matrix', 'year': 1999}]
    stub_client.movies[603] = matrix_details()
    progress = []

    canceled = matcher.match_unmatched(lambda *args: progress.append(args))

    assert canceled is False
    assert [(current, total) for current, total, _entry, _matched in progress] == [(1, 2), (2, 2)]
    assert db.get_entry(film.id).match_status == MatchStatus.AUTO
    # Only one candidate and no local year: accepted as well.
    assert db.get_entry(other.id).match_status == MatchStatus.AUTO


def test_match_unmatched_skips_on_year_mismatch(matcher, stub_client, db, film):
    stub_client.movie_results = [{'id': 10, 'title': 'The Matrix Remade', 'year': 2030}]

    matcher.match_unmatched()

    assert db.get_entry(film.id).match_status == MatchStatus.UNMATCHED
    assert ('movie', 10) not in stub_client.calls


def test_match_unmatched_stops_between_entries(matcher, stub_client, db, film):
    canceled = matcher.match_unmatched(should_stop=lambda: True)

    assert canceled is True
    assert stub_client.calls == []


def test_ignored_entries_are_not_swept(matcher, stub_client, db, film):
    assert matcher.mark_ignored(film.id)

    matcher.match_unmatched()

    assert stub_client.calls == []
    assert db.get_entry(film.id).match_status == MatchStatus.IGNORED


# Reset

def test_reset_to_unmatched_is_idempotent(matcher, stub_client, db, film):
    stub_client.movies[603] = matrix_details()
    matcher.fetch_and_apply(film.id, 603)

    assert matcher.reset_to_unmatched(film.id)
    once = db.get_entry(film.id)
    assert matcher.reset_to_unmatched(film.id)
    twice = db.get_entry(film.id)

    assert once == twice
    assert once.match_status == MatchStatus.UNMATCHED
    assert (once.title, once.year) == ('The Matrix', 1999)
    assert once.tmdb_id is None and once.poster_path is None and once.plot is None
    assert db.get_cast_for_entry(film.id) == []
    assert db.get_genres_for_entry(film.id) == []


def test_reset_season_restores_placeholders(matcher, stub_client, db, season):
    stub_client.seasons[(1396, 1)] = season_payload()
    stub_client.shows[1396] = dict(show_payload(), title='Renamed Show')
    matcher.fetch_and_apply(season.id, 1396)
    assert db.get_entry(season.id).title == 'Renamed Show - Season 1'

    matcher.reset_to_unmatched(season.id)

    stored = db.get_entry(season.id)
    assert stored.title == 'Great Show - Season 1'
    assert stored.match_status == MatchStatus.UNMATCHED
    episodes = db.get_episodes_for_season(season.id)
    assert [e.title for e in episodes] == [os.path.basename(e.file_path) for e in episodes]
    assert all(e.tmdb_id is None for e in episodes)


def test_sweep_skips_entry_ignored_while_running(matcher, stub_client, db, film):
    later = CatalogEntry(file_path='/movies/The.Matrix.1999.v2.mkv', title='The Matrix', year=1999)
    db.add_entry(later)
    stub_client.movie_results = [{'id': 603, 'title': 'The Matrix', 'year': 1999}]
    stub_client.movies[603] = matrix_details()

    def ignore_later(current, total, entry, matched):
        if current == 1:
            db.update_match_status(later.id, MatchStatus.IGNORED)

    matcher.match_unmatched(ignore_later)

    assert db.get_entry(film.id).match_status == MatchStatus.AUTO
    stored = db.get_entry(later.id)
    assert stored.match_status == MatchStatus.IGNORED
    assert stored.tmdb_id is None
    assert db.get_cast_for_entry(later.id) == []
    assert stub_client.calls.count(('movie', 603)) == 1


class DecidingClient(StubTMDBClient):
    """Simulates a manual match landing while details are being fetched."""

    def __init__(self, db, entry_id):
        super().__init__()
        self.db = db
        self.entry_id = entry_id

    def get_movie_details(self, movie_id):
        self.db.update_match_status(self.entry_id, MatchStatus.MANUAL)
        return super().get_movie_details(movie_id)


def test_automatic_apply_yields_to_a_decision_made_during_fetch(db, film, poster_dir):
    client = DecidingClient(db, film.id)
    client.movies[603] = matrix_details()
    matcher = MetadataMatcher(db, client, poster_dir, request_delay=0)

    assert not matcher.fetch_and_apply(film.id, 603, require_unmatched=True)

    stored = db.get_entry(film.id)
    assert stored.match_status == MatchStatus.MANUAL
    assert stored.tmdb_id is None
    assert db.get_genres_for_entry(film.id) == []


def test_automatic_apply_refuses_matched_entries(matcher, stub_client, db, film):
    stub_client.movies[603] = matrix_details()
    db.update_match_status(film.id, MatchStatus.MANUAL)

    assert not matcher.fetch_and_apply(film.id, 603, require_unmatched=True)
    assert ('movie', 603) not in stub_client.calls
    assert matcher.fetch_and_apply(film.id, 603, manual=True)


def test_reset_removes_cached_poster_files(matcher, stub_client, db, film, png_bytes):
    stub_client.movies[603] = matrix_details()
    stub_client.image = png_bytes
    matcher.fetch_and_apply(film.id, 603)
    poster = db.get_entry(film.id).poster_path
    thumb = thumbnail_path_for(poster)
    open(thumb, 'ab').close()

    matcher.reset_to_unmatched(film.id)

    assert not os.path.exists(poster)
    assert not os.path.exists(thumb)
    assert db.get_entry(film.id).poster_path is None
