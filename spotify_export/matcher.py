import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .client import RateLimitedAPIClient
from .errors import MatchNotFoundError
from .models import MatchCandidate, Song, normalize

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 5

# Alternate versions we would rather not pick over the studio original.
# Applied to normalized titles, so "(Live)", "- Live at X" and "[Remastered 2011]" all hit.
RERECORDING_PATTERN = re.compile(
    r"\b(live|acoustic|unplugged|remaster|remastered|re ?recorded|re ?recording|demo|karaoke)\b"
)

TITLE_MATCH_POINTS = 2
ARTIST_MATCH_POINTS = 2
PLAYABLE_POINTS = 1
RERECORDING_PENALTY = 1


def build_search_query(song: Song) -> str:
    """Field-scoped Spotify search query, e.g. track:"Sweet Caroline" artist:"Neil Diamond"."""

    title = song.title.replace('"', " ").strip()
    artist = song.artist.replace('"', " ").strip()
    parts = [f'track:"{title}"'] if title else []
    if artist:
        parts.append(f'artist:"{artist}"')
    return " ".join(parts)


def score_candidate(song: Song, candidate: MatchCandidate) -> int:
    wanted_title = normalize(song.title)
    wanted_artist = normalize(song.artist)

    score = 0
    if candidate.normalized_title == wanted_title:
        score += TITLE_MATCH_POINTS
    if wanted_artist and wanted_artist in candidate.normalized_artists:
        score += ARTIST_MATCH_POINTS
    if candidate.is_playable:
        score += PLAYABLE_POINTS

    # Only penalize variants the user did not ask for ("Live Forever" stays unpenalized).
    variant = RERECORDING_PATTERN.search(candidate.normalized_title)
    if variant and not RERECORDING_PATTERN.search(wanted_title):
        score -= RERECORDING_PENALTY

    return score


def pick_best(song: Song, candidates: List[MatchCandidate]) -> Optional[Tuple[MatchCandidate, int]]:
    """Highest score wins; ties keep Spotify's original order."""

    best: Optional[Tuple[MatchCandidate, int]] = None
    for candidate in candidates:
        score = score_candidate(song, candidate)
        if best is None or score > best[1]:
            best = (candidate, score)
    return best


class TrackMatcher:
    """Resolve a (title, artist) pair to a Spotify track URI via scored search."""

    def __init__(self, client: RateLimitedAPIClient, *, search_limit: int = DEFAULT_SEARCH_LIMIT):
        self.client = client
        self.search_limit = int(search_limit)

    async def search_candidates(self, song: Song, market_hint: Optional[str] = None) -> List[MatchCandidate]:
        query = build_search_query(song)
        if not query:
            return []

        items: List[Dict[str, Any]] = await self.client.search_tracks(query, limit=self.search_limit, market=market_hint)
        candidates = [MatchCandidate.from_spotify_track(item) for item in items]
        return [c for c in candidates if c is not None]

    async def find_best_match(self, song: Song, market_hint: Optional[str] = None) -> Optional[MatchCandidate]:
        """Best candidate for song, or None when Spotify returned nothing usable."""

        candidates = await self.search_candidates(song, market_hint)
        best = pick_best(song, candidates)
        if best is None:
            return None

        candidate, score = best
        logger.debug("Matched %s -> %s (score %d of %d candidates)", song, candidate.uri, score, len(candidates))
        return candidate

    async def require_match(self, song: Song, market_hint: Optional[str] = None) -> MatchCandidate:
        candidate = await self.find_best_match(song, market_hint)
        if candidate is None:
            raise MatchNotFoundError(song)
        return candidate
