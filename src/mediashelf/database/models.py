"""Data models for the library catalog."""

import copy
from dataclasses import dataclass, asdict
from enum import IntEnum
from typing import Optional


class MatchStatus(IntEnum):
    """How (or whether) an entry was matched to TMDB metadata."""

    UNMATCHED = 0
    AUTO = 1
    MANUAL = 2
    IGNORED = 3


class MediaType(IntEnum):
    """Kind of catalog entry."""

    FILM = 0
    TV_SEASON = 1


SORT_KEYS = ("title", "year", "rating", "added")


@dataclass
class CatalogEntry:
    """Represents one film or one TV season in the catalog."""

    id: Optional[int] = None
    file_path: str = ""
    title: Optional[str] = None
    year: Optional[int] = None
    runtime_minutes: Optional[int] = None
    plot: Optional[str] = None
    poster_path: Optional[str] = None
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    rating: Optional[float] = None
    added_date: Optional[int] = None  # unix seconds
    match_status: MatchStatus = MatchStatus.UNMATCHED
    media_type: MediaType = MediaType.FILM
    season_number: Optional[int] = None  # TV seasons only, 0 = specials

    @property
    def is_tv_season(self) -> bool:
        return self.media_type == MediaType.TV_SEASON

    def to_dict(self):
        """Convert to dictionary for database operations."""
        data = asdict(self)
        data['match_status'] = int(self.match_status)
        data['media_type'] = int(self.media_type)
        return data

    @classmethod
    def from_dict(cls, data: dict):
        """Create CatalogEntry from dictionary."""
        data = dict(data)
        data['match_status'] = MatchStatus(data.get('match_status') or 0)
        data['media_type'] = MediaType(data.get('media_type') or 0)
        return cls(**data)


@dataclass
class Episode:
    """An episode file owned by a TV season entry."""

    id: Optional[int] = None
    season_id: Optional[int] = None
    episode_number: Optional[int] = None
    title: Optional[str] = None
    file_path: str = ""
    runtime_minutes: Optional[int] = None
    plot: Optional[str] = None
    tmdb_id: Optional[int] = None
    air_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict):
        return cls(**data)


@dataclass
class AttachedFile:
    """Secondary video file of a film (multi-part or alternate cut)."""

    id: Optional[int] = None
    film_id: Optional[int] = None
    file_path: str = ""
    label: Optional[str] = None
    sort_order: int = 0

    @classmethod
    def from_dict(cls, data: dict):
        return cls(**data)


@dataclass
class Person:
    """Deduplicated named entity (genre, actor or director)."""

    id: Optional[int] = None
    name: str = ""
    tmdb_id: Optional[int] = None


@dataclass
class CastMember:
    """Actor credited on an entry."""

    id: Optional[int] = None
    name: str = ""
    role: Optional[str] = None
    cast_order: int = 0
    tmdb_id: Optional[int] = None


@dataclass
class FilterSpec:
    """Parameters for every page/count query issued by the loader.

    Instances are owned by the consumer and mutated freely; background
    requests always receive a ``snapshot()``.
    """

    genre: Optional[str] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    search_text: Optional[str] = None
    actor: Optional[str] = None
    director: Optional[str] = None
    plot_text: Optional[str] = None
    sort_by: str = "title"
    sort_ascending: bool = True

    def snapshot(self) -> 'FilterSpec':
        """Deep copy safe to hand to another thread."""
        return copy.deepcopy(self)
