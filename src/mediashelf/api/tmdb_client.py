"""TMDB API client for fetching movie and TV show data."""

import logging
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


def _year_of(date: Optional[str]) -> Optional[int]:
    if date and len(date) >= 4 and date[:4].isdigit():
        return int(date[:4])
    return None


class TMDBClient:
    """Client for The Movie Database API."""

    BASE_URL = "https://api.themoviedb.org/3"
    IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
    MAX_RESULTS = 10
    MAX_CAST = 10
    USER_AGENT = "MediaShelf/1.0"

    def __init__(self, api_key: str = None, timeout: int = 30):
        """
        Initialize TMDB client.

        To get a free API key:
        1. Create account at https://www.themoviedb.org/
        2. Go to Settings > API
        3. Request an API key (choose "Developer" option)
        4. Copy the API Key (v3 auth)
        """
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers['User-Agent'] = self.USER_AGENT

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def _make_request(self, endpoint: str, params: dict = None) -> Optional[dict]:
        """Make a request to TMDB API."""
        if not self.api_key:
            logger.warning("No TMDB API key configured")
            return None

        url = f"{self.BASE_URL}{endpoint}"
        params = dict(params or {})
        params['api_key'] = self.api_key

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error("TMDB API error for %s: %s", endpoint, e)
            return None
        except ValueError as e:
            logger.error("Malformed TMDB response for %s: %s", endpoint, e)
            return None

        if not isinstance(data, dict):
            logger.error("Unexpected TMDB payload for %s", endpoint)
            return None
        return data

    def _search_results(self, data: Optional[dict], title_key: str, date_key: str) -> List[Dict]:
        if not data or not isinstance(data.get('results'), list):
            return []

        results = []
        for item in data['results'][:self.MAX_RESULTS]:
            if not isinstance(item, dict) or item.get('id') is None:
                continue
            results.append({
                'id': item.get('id'),
                'title': item.get(title_key),
                'year': _year_of(item.get(date_key)),
                'overview': item.get('overview'),
                'poster_path': item.get('poster_path'),
                'vote_average': item.get('vote_average') or 0.0,
            })
        return results

    def search_movie(self, query: str, year: int = None) -> List[Dict]:
        """Search for movies."""
        params = {'query': query}
        if year:
            params['year'] = year
        data = self._make_request('/search/movie', params)
        return self._search_results(data, 'title', 'release_date')

    def search_tv(self, query: str, year: int = None) -> List[Dict]:
        """Search for TV shows."""
        params = {'query': query}
        if year:
            params['first_air_date_year'] = year
        data = self._make_request('/search/tv', params)
        return self._search_results(data, 'name', 'first_air_date')

    @classmethod
    def _credits(cls, data: dict) -> Dict[str, List[Dict]]:
        credits = data.get('credits') or {}
        cast = []
        for person in (credits.get('cast') or [])[:cls.MAX_CAST]:
            if person.get('name'):
                cast.append({
                    'id': person.get('id'),
                    'name': person['name'],
                    'character': person.get('character'),
                })

        directors = []
        for person in credits.get('crew') or []:
            if person.get('job') == 'Director' and person.get('name'):
                directors.append({'id': person.get('id'), 'name': person['name']})

        return {'cast': cast, 'directors': directors}

    def get_movie_details(self, movie_id: int) -> Optional[Dict]:
        """Get detailed information about a movie, including credits."""
        data = self._make_request(f'/movie/{movie_id}', {'append_to_response': 'credits'})
        if not data or data.get('id') is None:
            return None

        details = {
            'id': data.get('id'),
            'title': data.get('title'),
            'year': _year_of(data.get('release_date')),
            'runtime': data.get('runtime'),
            'overview': data.get('overview'),
            'vote_average': data.get('vote_average'),
            'imdb_id': data.get('imdb_id'),
            'poster_path': data.get('poster_path'),
            'genres': [
                {'id': genre.get('id'), 'name': genre['name']}
                for genre in data.get('genres') or [] if genre.get('name')
            ],
        }
        details.update(self._credits(data))
        return details

    def get_tv_details(self, tv_id: int) -> Optional[Dict]:
        """Get show-level information about a TV show."""
        data = self._make_request(f'/tv/{tv_id}', {'append_to_response': 'external_ids'})
        if not data or data.get('id') is None:
            return None

        return {
            'id': data.get('id'),
            'title': data.get('name'),
            'year': _year_of(data.get('first_air_date')),
            'overview': data.get('overview'),
            'vote_average': data.get('vote_average'),
            'imdb_id': (data.get('external_ids') or {}).get('imdb_id'),
            'poster_path': data.get('poster_path'),
            'genres': [
                {'id': genre.get('id'), 'name': genre['name']}
                for genre in data.get('genres') or [] if genre.get('name')
            ],
        }

    def get_season_details(self, tv_id: int, season_number: int) -> Optional[Dict]:
        """Get one season of a show with its episodes and credits."""
        data = self._make_request(
            f'/tv/{tv_id}/season/{season_number}', {'append_to_response': 'credits'}
        )
        if not data or data.get('season_number') is None:
            return None

        episodes = []
        for item in data.get('episodes') or []:
            if item.get('episode_number') is None:
                continue
            episodes.append({
                'id': item.get('id'),
                'episode_number': item.get('episode_number'),
                'title': item.get('name'),
                'overview': item.get('overview'),
                'runtime': item.get('runtime'),
                'air_date': item.get('air_date'),
            })

        details = {
            'id': data.get('id'),
            'season_number': data.get('season_number'),
            'title': data.get('name'),
            'overview': data.get('overview'),
            'air_date': data.get('air_date'),
            'year': _year_of(data.get('air_date')),
            'poster_path': data.get('poster_path'),
            'episodes': episodes,
        }
        details.update(self._credits(data))
        return details

    def download_image(self, poster_path: str) -> Optional[bytes]:
        """Download a poster image by its TMDB path."""
        if not poster_path:
            return None
        url = f"{self.IMAGE_BASE_URL}{poster_path}"
        try:
            response = self.session.get(url, timeout=60)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Failed to download image %s: %s", url, e)
            return None
        return response.content or None
