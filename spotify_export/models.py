import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

_NON_WORD = re.compile(r"[\W_]+")


def normalize(text: Optional[str]) -> str:
    """Diacritics stripped, case-folded, punctuation collapsed to single spaces."""

    decomposed = unicodedata.normalize("NFD", str(text or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_WORD.sub(" ", stripped.casefold()).strip()


@dataclass(frozen=True)
class Song:
    """A reviewed song handed over by the swipe UI."""

    title: str
    artist: str = ""
    preview_url: Optional[str] = None
    artwork_url: Optional[str] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Song":
        return Song(
            title=str(data.get("title") or "").strip(),
            artist=str(data.get("artist") or "").strip(),
            preview_url=data.get("previewUrl") or data.get("preview_url"),
            artwork_url=data.get("artworkUrl") or data.get("artwork_url"),
        )

    @property
    def key(self) -> str:
        return f"{normalize(self.title)}|{normalize(self.artist)}"

    def __str__(self) -> str:
        return f"{self.artist} - {self.title}" if self.artist else self.title


@dataclass(frozen=True)
class UserProfile:
    id: str
    display_name: str
    country_code: str

    @staticmethod
    def from_spotify_payload(payload: Dict[str, Any]) -> "UserProfile":
        return UserProfile(
            id=str(payload.get("id") or ""),
            display_name=str(payload.get("display_name") or payload.get("id") or ""),
            country_code=str(payload.get("country") or ""),
        )


@dataclass(frozen=True)
class MatchCandidate:
    uri: str
    normalized_title: str
    normalized_artists: Tuple[str, ...]
    is_playable: bool

    @property
    def normalized_artist(self) -> str:
        return self.normalized_artists[0] if self.normalized_artists else ""

    @staticmethod
    def from_spotify_track(item: Dict[str, Any]) -> Optional["MatchCandidate"]:
        uri = item.get("uri")
        if not uri:
            return None

        artists = tuple(
            normalize(a.get("name"))
            for a in (item.get("artists") or [])
            if isinstance(a, dict) and a.get("name")
        )
        return MatchCandidate(
            uri=str(uri),
            normalized_title=normalize(item.get("name")),
            normalized_artists=artists,
            is_playable=item.get("is_playable") is True,
        )


class ExportStage(str, Enum):
    IDLE = "idle"
    PROFILE_FETCH = "profile_fetch"
    PLAYLIST_CREATE = "playlist_create"
    MATCHING = "matching"
    TRACK_INSERTION = "track_insertion"
    ARTWORK_UPLOAD = "artwork_upload"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportJob:
    """State of one export() call. Never persisted."""

    ordered_songs: List[Song]
    stage: ExportStage = ExportStage.IDLE
    profile: Optional[UserProfile] = None
    playlist_id: Optional[str] = None
    playlist_url: Optional[str] = None
    matched_uris: List[str] = field(default_factory=list)
    unmatched: List[Song] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    artwork_uploaded: bool = False
    partial: bool = False

    @property
    def unmatched_count(self) -> int:
        return len(self.unmatched)


@dataclass(frozen=True)
class ExportResult:
    playlist_url: str
    playlist_id: str
    matched_count: int
    total_count: int
    unmatched: Tuple[Song, ...] = ()
    artwork_uploaded: bool = False
    partial: bool = False
