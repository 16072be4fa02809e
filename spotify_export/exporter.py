import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from .client import MAX_URIS_PER_REQUEST, RateLimitedAPIClient
from .cover import DEFAULT_COVER_COLORS, DEFAULT_COVER_SIZE, generate_cover
from .errors import (
    ArtworkUploadError,
    ExportCancelledError,
    MatchNotFoundError,
    NothingToExportError,
    PlaylistCreateError,
    RateLimitExceededError,
    ReauthRequiredError,
    RemoteAPIError,
)
from .matcher import DEFAULT_SEARCH_LIMIT, TrackMatcher
from .models import ExportJob, ExportResult, ExportStage, Song, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_PLAYLIST_NAME = "Swipe to Dance"
DEFAULT_PLAYLIST_DESCRIPTION = "Generated by Wedding Playlist Swipe"

SongLike = Union[Song, Dict[str, Any]]
ProgressCallback = Callable[[int, int], Any]


def _as_song(song: SongLike) -> Song:
    return song if isinstance(song, Song) else Song.from_dict(song)


def build_export_order(starred: Iterable[SongLike], approved: Iterable[SongLike]) -> List[Song]:
    """Starred songs first, then approved ones not already starred (deduped by song key)."""

    seen = set()
    ordered: List[Song] = []
    for raw in list(starred or []) + list(approved or []):
        song = _as_song(raw)
        if song.key in seen:
            continue
        seen.add(song.key)
        ordered.append(song)
    return ordered


def _require_playlist(job: ExportJob) -> str:
    if not job.playlist_id:
        raise PlaylistCreateError("Export job has no playlist to write to")
    return job.playlist_id


def chunked(items: Sequence[str], size: int = MAX_URIS_PER_REQUEST) -> List[List[str]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


@dataclass(frozen=True)
class Stage:
    """One named step of the export pipeline.

    Exceptions listed in `absorbs` mark the job partial and the pipeline moves
    on; anything else moves the job to FAILED and propagates.
    """

    name: ExportStage
    handler: str
    absorbs: Tuple[Type[Exception], ...] = ()


@dataclass
class _RunOptions:
    cancel: Optional[asyncio.Event] = None
    on_progress: Optional[ProgressCallback] = None


class PlaylistExporter:
    """Export reviewed songs into a new private Spotify playlist."""

    PIPELINE: Tuple[Stage, ...] = (
        Stage(ExportStage.PROFILE_FETCH, "_fetch_profile"),
        Stage(ExportStage.PLAYLIST_CREATE, "_create_playlist"),
        Stage(ExportStage.MATCHING, "_match_songs"),
        Stage(ExportStage.TRACK_INSERTION, "_insert_tracks"),
        Stage(ExportStage.ARTWORK_UPLOAD, "_upload_artwork", absorbs=(ArtworkUploadError,)),
    )

    def __init__(
        self,
        client: RateLimitedAPIClient,
        matcher: Optional[TrackMatcher] = None,
        *,
        playlist_name: str = DEFAULT_PLAYLIST_NAME,
        playlist_description: str = DEFAULT_PLAYLIST_DESCRIPTION,
        upload_cover_art: bool = True,
        cover_size: int = DEFAULT_COVER_SIZE,
        cover_colors: Sequence[str] = DEFAULT_COVER_COLORS,
        cover_renderer: Callable[..., str] = generate_cover,
    ):
        self.client = client
        self.matcher = matcher or TrackMatcher(client)
        self.playlist_name = playlist_name
        self.playlist_description = playlist_description
        self.upload_cover_art = upload_cover_art
        self.cover_size = int(cover_size)
        self.cover_colors = tuple(cover_colors)
        self.cover_renderer = cover_renderer

    @classmethod
    def from_config(cls, config: Dict[str, Any], client: RateLimitedAPIClient) -> "PlaylistExporter":
        config = config or {}
        matcher = TrackMatcher(client, search_limit=int(config.get("search_limit", DEFAULT_SEARCH_LIMIT)))
        return cls(
            client,
            matcher,
            playlist_name=str(config.get("playlist_name") or DEFAULT_PLAYLIST_NAME),
            playlist_description=str(config.get("playlist_description") or DEFAULT_PLAYLIST_DESCRIPTION),
            upload_cover_art=bool(config.get("upload_cover_art", True)),
            cover_size=int(config.get("cover_size", DEFAULT_COVER_SIZE)),
            cover_colors=config.get("cover_colors") or DEFAULT_COVER_COLORS,
        )

    async def export(
        self,
        starred_songs: Iterable[SongLike],
        approved_songs: Iterable[SongLike],
        *,
        cancel: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExportResult:
        ordered = build_export_order(starred_songs, approved_songs)
        if not ordered:
            raise NothingToExportError("No songs to export yet. Approve or star some songs first.")

        job = ExportJob(ordered_songs=ordered)
        options = _RunOptions(cancel=cancel, on_progress=on_progress)
        logger.info("Exporting %d songs to Spotify", len(ordered))

        for stage in self.PIPELINE:
            job.stage = stage.name
            logger.debug("Export stage: %s", stage.name.value)
            try:
                await getattr(self, stage.handler)(job, options)
            except stage.absorbs as e:
                logger.warning("Export stage %s failed, continuing: %s", stage.name.value, e)
                job.partial = True
            except Exception:
                logger.error("Export failed during %s", stage.name.value)
                job.stage = ExportStage.FAILED
                raise

        job.stage = ExportStage.DONE
        if job.unmatched_count:
            job.partial = True

        logger.info(
            "Export finished: %d/%d songs matched%s",
            len(job.matched_uris),
            len(ordered),
            " (partial)" if job.partial else "",
        )
        return ExportResult(
            playlist_url=job.playlist_url or "",
            playlist_id=job.playlist_id or "",
            matched_count=len(job.matched_uris),
            total_count=len(ordered),
            unmatched=tuple(job.unmatched),
            artwork_uploaded=job.artwork_uploaded,
            partial=job.partial,
        )

    # -----------------
    # Stages
    # -----------------

    async def _fetch_profile(self, job: ExportJob, options: _RunOptions) -> None:
        payload = await self.client.me()
        profile = UserProfile.from_spotify_payload(payload)
        if not profile.id:
            raise RemoteAPIError(200, payload)
        job.profile = profile

    async def _create_playlist(self, job: ExportJob, options: _RunOptions) -> None:
        if job.profile is None:
            raise PlaylistCreateError("No Spotify profile loaded to own the playlist")
        try:
            playlist = await self.client.create_playlist(
                job.profile.id,
                name=self.playlist_name,
                description=self.playlist_description,
                public=False,
            )
        except RemoteAPIError as e:
            raise PlaylistCreateError(f"Could not create Spotify playlist: {e}") from e

        playlist_id = playlist.get("id")
        if not playlist_id:
            raise PlaylistCreateError(f"Spotify did not return a playlist id: {playlist}")

        job.playlist_id = str(playlist_id)
        job.playlist_url = (playlist.get("external_urls") or {}).get("spotify") or (
            f"https://open.spotify.com/playlist/{playlist_id}"
        )

    async def _match_songs(self, job: ExportJob, options: _RunOptions) -> None:
        # One search at a time; matched_uris follows ordered_songs.
        market = job.profile.country_code if job.profile else None
        total = len(job.ordered_songs)

        for index, song in enumerate(job.ordered_songs, start=1):
            if options.cancel is not None and options.cancel.is_set():
                logger.info("Export cancelled after %d/%d songs", index - 1, total)
                raise ExportCancelledError(job)

            try:
                candidate = await self.matcher.require_match(song, market)
            except MatchNotFoundError:
                logger.warning("No Spotify match for: %s", song)
                job.unmatched.append(song)
            except RemoteAPIError as e:
                logger.warning("Spotify search failed for %s: %s", song, e)
                job.unmatched.append(song)
            else:
                job.matched_uris.append(candidate.uri)

            if options.on_progress is not None:
                options.on_progress(index, total)

    async def _insert_tracks(self, job: ExportJob, options: _RunOptions) -> None:
        playlist_id = _require_playlist(job)
        for chunk in chunked(job.matched_uris):
            job.snapshot_id = await self.client.add_tracks(playlist_id, chunk)

    async def _upload_artwork(self, job: ExportJob, options: _RunOptions) -> None:
        if not self.upload_cover_art:
            return

        playlist_id = _require_playlist(job)
        try:
            image = self.cover_renderer(self.playlist_name, size=self.cover_size, colors=self.cover_colors)
            await self.client.upload_playlist_cover(playlist_id, image)
        except (RemoteAPIError, RateLimitExceededError, ReauthRequiredError, OSError, ValueError) as e:
            raise ArtworkUploadError(f"Playlist cover upload failed: {e}") from e

        job.artwork_uploaded = True
