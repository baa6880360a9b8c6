import pytest
import requests

from mediashelf.api.tmdb_client import TMDBClient


class FakeResponse:
    def __init__(self, payload=None, status=200, content=b''):
        self.payload = payload
        self.status_code = status
        self.content = content

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def client(monkeypatch):
    client = TMDBClient(api_key='secret')
    client.requests = []
    client.responses = {}

    def fake_get(url, params=None, timeout=None):
        client.requests.append((url, params))
        response = client.responses.get(url)
        if isinstance(response, Exception):
            raise response
        return response or FakeResponse(status=404)

    monkeypatch.setattr(client.session, 'get', fake_get)
    return client


def test_no_key_makes_no_request(monkeypatch):
    client = TMDBClient(api_key='')
    monkeypatch.setattr(client.session, 'get', lambda *a, **kw: pytest.fail('request made'))

    assert client.search_movie('Heat') == []
    assert client.get_movie_details(949) is None
    assert not client.has_credentials


def test_search_movie_normalizes_results(client):
    client.responses[TMDBClient.BASE_URL + '/search/movie'] = FakeResponse({'results': [
        {'id': 949, 'title': 'Heat', 'release_date': '1995-12-15', 'vote_average': 7.9},
        {'id': None, 'title': 'Broken'},
        {'id': 1, 'title': 'Undated', 'release_date': ''},
    ]})

    results = client.search_movie('Heat', 1995)

    assert [(r['id'], r['title'], r['year']) for r in results] == [(949, 'Heat', 1995), (1, 'Undated', None)]
    url, params = client.requests[0]
    assert params == {'query': 'Heat', 'year': 1995, 'api_key': 'secret'}


def test_search_tv_uses_first_air_date(client):
    client.responses[TMDBClient.BASE_URL + '/search/tv'] = FakeResponse({'results': [
        {'id': 1396, 'name': 'Breaking Bad', 'first_air_date': '2008-01-20'},
    ]})

    results = client.search_tv('Breaking Bad', 2008)

    assert results[0]['title'] == 'Breaking Bad'
    assert results[0]['year'] == 2008
    assert client.requests[0][1]['first_air_date_year'] == 2008


def test_search_results_are_capped(client):
    client.responses[TMDBClient.BASE_URL + '/search/movie'] = FakeResponse(
        {'results': [{'id': i, 'title': str(i)} for i in range(25)]}
    )
    assert len(client.search_movie('x')) == TMDBClient.MAX_RESULTS


@pytest.mark.parametrize('response', [
    FakeResponse(status=500),
    FakeResponse(ValueError('not json')),
    FakeResponse(['not', 'a', 'dict']),
    requests.ConnectionError('offline'),
])
def test_transport_failures_become_empty_results(client, response):
    client.responses[TMDBClient.BASE_URL + '/search/movie'] = response
    client.responses[TMDBClient.BASE_URL + '/movie/949'] = response

    assert client.search_movie('Heat') == []
    assert client.get_movie_details(949) is None


def test_movie_details_include_credits(client):
    client.responses[TMDBClient.BASE_URL + '/movie/949'] = FakeResponse({
        'id': 949, 'title': 'Heat', 'release_date': '1995-12-15', 'runtime': 170,
        'imdb_id': 'tt0113277', 'genres': [{'id': 80, 'name': 'Crime'}, {'id': 1}],
        'credits': {
            'cast': [{'id': 1158, 'name': 'Al Pacino', 'character': 'Vincent Hanna'}, {'id': 2}],
            'crew': [
                {'id': 638, 'name': 'Michael Mann', 'job': 'Director'},
                {'id': 7, 'name': 'Someone', 'job': 'Editor'},
            ],
        },
    })

    details = client.get_movie_details(949)

    assert details['year'] == 1995
    assert details['runtime'] == 170
    assert details['genres'] == [{'id': 80, 'name': 'Crime'}]
    assert details['cast'] == [{'id': 1158, 'name': 'Al Pacino', 'character': 'Vincent Hanna'}]
    assert details['directors'] == [{'id': 638, 'name': 'Michael Mann'}]
    assert client.requests[0][1]['append_to_response'] == 'credits'


def test_tv_details_read_imdb_from_external_ids(client):
    client.responses[TMDBClient.BASE_URL + '/tv/1396'] = FakeResponse({
        'id': 1396, 'name': 'Breaking Bad', 'first_air_date': '2008-01-20',
        'external_ids': {'imdb_id': 'tt0903747'},
    })

    details = client.get_tv_details(1396)

    assert details['title'] == 'Breaking Bad'
    assert details['imdb_id'] == 'tt0903747'
    assert details['genres'] == []


def test_season_details_skip_unnumbered_episodes(client):
    client.responses[TMDBClient.BASE_URL + '/tv/1396/season/1'] = FakeResponse({
        'id': 3572, 'season_number': 1, 'name': 'Season 1', 'air_date': '2008-01-20',
        'episodes': [
            {'id': 62085, 'episode_number': 1, 'name': 'Pilot', 'runtime': 58},
            {'id': 99, 'name': 'No number'},
        ],
        'credits': {'cast': [], 'crew': []},
    })

    details = client.get_season_details(1396, 1)

    assert details['year'] == 2008
    assert [e['title'] for e in details['episodes']] == ['Pilot']
    assert details['cast'] == []


def test_missing_season_is_none(client):
    client.responses[TMDBClient.BASE_URL + '/tv/1396/season/9'] = FakeResponse({'id': 1})
    assert client.get_season_details(1396, 9) is None


def test_download_image(client):
    client.responses[TMDBClient.IMAGE_BASE_URL + '/heat.jpg'] = FakeResponse(content=b'jpeg')

    assert client.download_image('/heat.jpg') == b'jpeg'
    assert client.download_image('/missing.jpg') is None
    assert client.download_image(None) is None
