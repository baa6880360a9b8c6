"""Filename heuristics for titles, years, seasons and episodes.

Pure functions only: no filesystem access, no state.
"""

import os
import re
from collections import Counter
from typing import Iterable, Optional, Tuple

VIDEO_EXTENSIONS = (
    '.mkv', '.mp4', '.avi', '.mov', '.m4v', '.wmv', '.flv', '.webm'
)

# Release quality/group tags. Everything from the first tag onwards is
# dropped from a title.
STRIP_TAGS = [
    '1080p', '720p', '480p', '2160p', '4k', 'uhd',
    'bluray', 'blu-ray', 'bdrip', 'brrip', 'dvdrip', 'dvdscr',
    'hdtv', 'webrip', 'web-dl', 'webdl', 'x264', 'x265',
    'h264', 'h265', 'hevc', 'avc', 'aac', 'ac3',
    'dts', 'truehd', 'atmos', 'remux', 'proper', 'repack',
    'extended', 'unrated', 'directors cut', 'theatrical', 'imax', 'yify',
    'yts', 'rarbg', 'ettv', 'eztv',
]

_TAG_PATTERN = re.compile(
    r'(?<![a-z0-9])(?:' + '|'.join(re.escape(tag) for tag in STRIP_TAGS) + r')(?![a-z0-9])',
    re.IGNORECASE
)
_YEAR_PATTERN = re.compile(r'(?:^|[._ \[\(])([12][0-9]{3})(?:[._ \]\)]|$)')
_SXXEYY_PATTERN = re.compile(r'[Ss](\d{1,2})[Ee](\d{1,2})')
_EPISODE_PATTERN = re.compile(r'[Ee](\d+)')
_SEASON_WORD_PATTERN = re.compile(r'^(?:season|series)\D*(\d+)', re.IGNORECASE)
_SEASON_SHORT_PATTERN = re.compile(r'^[Ss][ ._-]*(\d{1,2})(?![0-9A-Za-z])')
_SHOW_SXX_PATTERN = re.compile(r'\bS\s*\d{1,2}\b', re.IGNORECASE)
_SHOW_SEASON_PATTERN = re.compile(r'\b(?:Season|Series)\s*\d+\b', re.IGNORECASE)
_SHOW_SXXEYY_PATTERN = re.compile(r'\bS\s*\d{1,2}\s*E\s*\d{1,2}\b', re.IGNORECASE)
_SEASON_SUFFIX_PATTERN = re.compile(r'\s+-\s+(?:Season\s+\d+|Specials)\s*$', re.IGNORECASE)
_WHITESPACE_PATTERN = re.compile(r'\s{2,}')


def is_video_file(filename: str) -> bool:
    """Check the extension against the supported video formats."""
    return os.path.splitext(filename)[1].lower() in VIDEO_EXTENSIONS


def normalize_title(raw: Optional[str]) -> Optional[str]:
    """Turn a raw release name into a display title.

    Dots and underscores become spaces, everything from the first release
    tag onwards is cut, trailing dashes are trimmed and each word is
    capitalized.
    """
    if raw is None:
        return None

    result = raw.replace('.', ' ').replace('_', ' ')

    match = _TAG_PATTERN.search(result)
    if match:
        result = result[:match.start()]

    result = result.strip().rstrip('- ').strip()

    words = []
    for word in result.split(' '):
        if word and word[0].islower():
            word = word[0].upper() + word[1:]
        words.append(word)
    return ' '.join(words)


def parse_filename(filename: str) -> Tuple[str, Optional[int]]:
    """Extract ``(title, year)`` from a video filename.

    >>> parse_filename('The.Matrix.1999.1080p.BluRay.x264.mkv')
    ('The Matrix', 1999)
    """
    basename = os.path.basename(filename)
    stem = os.path.splitext(basename)[0] if is_video_file(basename) else basename

    year = None
    title = None
    match = _YEAR_PATTERN.search(stem)
    if match:
        year = int(match.group(1))
        if match.start() > 0:
            title = normalize_title(stem[:match.start()])

    if not title:
        title = normalize_title(stem)
    return title, year


def parse_season_directory(name: str) -> Optional[int]:
    """Season number for directory names like ``Season 2``, ``S03`` or ``Specials``."""
    if not name:
        return None
    if name.lower() == 'specials':
        return 0

    match = _SEASON_WORD_PATTERN.match(name)
    if match:
        return int(match.group(1))
    if name[:6].lower() in ('season', 'series'):
        return None

    match = _SEASON_SHORT_PATTERN.match(name)
    if match:
        return int(match.group(1))
    return None


def parse_sxxeyy(name: str) -> Optional[Tuple[int, int]]:
    """Return ``(season, episode)`` for names containing ``SxxEyy``."""
    match = _SXXEYY_PATTERN.search(name or '')
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def parse_episode_number(name: str) -> Optional[int]:
    """Episode number of an episode filename, or None."""
    parsed = parse_sxxeyy(name)
    if parsed:
        return parsed[1]
    match = _EPISODE_PATTERN.search(name or '')
    if match:
        return int(match.group(1))
    return None


def detect_majority_season(filenames: Iterable[str]) -> Optional[int]:
    """Season shared by a strict majority of the video files, if any.

    Used for folders that hold episodes directly without a ``Season N``
    directory. Mixed multi-season folders produce no majority.
    """
    seasons = Counter()
    video_count = 0
    for name in filenames:
        if name.startswith('.') or not is_video_file(name):
            continue
        video_count += 1
        parsed = parse_sxxeyy(name)
        if parsed:
            seasons[parsed[0]] += 1

    if not seasons:
        return None
    season, count = seasons.most_common(1)[0]
    if count * 2 > video_count:
        return season
    return None


def derive_show_name_from_dirname(dir_name: str) -> str:
    """Show name from a folder such as ``Show.Name.S01.1080p-GROUP``."""
    show = normalize_title(dir_name) or ''

    sep = show.find(' - ')
    if sep >= 0:
        show = show[:sep]

    show = _SHOW_SXX_PATTERN.sub('', show)
    show = _SHOW_SEASON_PATTERN.sub('', show)
    show = _WHITESPACE_PATTERN.sub(' ', show)
    return show.strip()


def derive_show_name_from_episode_filename(name: str) -> str:
    """Show name from the part of an episode filename before ``SxxEyy``."""
    stem = os.path.splitext(name)[0] if is_video_file(name) else name
    normalized = normalize_title(stem) or ''
    match = _SHOW_SXXEYY_PATTERN.search(normalized)
    if match and match.start() > 0:
        normalized = normalized[:match.start()]
    return normalized.strip()


def season_title(show_name: str, season_number: int) -> str:
    """Placeholder title for a TV season entry."""
    if season_number == 0:
        return f"{show_name} - Specials"
    return f"{show_name} - Season {season_number}"


def clean_search_query(query: str) -> str:
    """Strip path, extension, season/episode tokens and release noise.

    The year is removed from the text; callers pass it separately as the
    search year.
    """
    if not query:
        return ''

    text = query.strip()
    if '/' in text or '\\' in text:
        text = re.split(r'[\\/]', text.rstrip('\\/'))[-1]
    if is_video_file(text):
        text = os.path.splitext(text)[0]

    text = _SEASON_SUFFIX_PATTERN.sub('', text)
    match = _SHOW_SXXEYY_PATTERN.search(text.replace('.', ' ').replace('_', ' '))
    if match and match.start() > 0:
        text = text.replace('.', ' ').replace('_', ' ')[:match.start()]

    title, _year = parse_filename(text)
    title = _SHOW_SEASON_PATTERN.sub('', title or '')
    title = _SHOW_SXX_PATTERN.sub('', title)
    title = _WHITESPACE_PATTERN.sub(' ', title)
    return title.strip()


def year_from_query(query: str) -> Optional[int]:
    """Year embedded in a raw search query, if any."""
    if not query:
        return None
    text = re.split(r'[\\/]', query.strip().rstrip('\\/'))[-1]
    if is_video_file(text):
        text = os.path.splitext(text)[0]
    match = _YEAR_PATTERN.search(text)
    return int(match.group(1)) if match else None


def format_runtime(minutes: Optional[int]) -> str:
    """Human readable runtime, e.g. ``1h 56m``."""
    if not minutes or minutes <= 0:
        return "Unknown"
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def show_name_for_season_path(path: str) -> str:
    """Show name for a season directory, from its parent when it is ``Season N``."""
    path = path.rstrip('\\/')
    dir_name = os.path.basename(path)
    if parse_season_directory(dir_name) is not None:
        show = derive_show_name_from_dirname(os.path.basename(os.path.dirname(path)))
    else:
        show = derive_show_name_from_dirname(dir_name)
    return show or 'Unknown Show'
