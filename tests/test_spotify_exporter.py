import asyncio
import re
import sys
import unittest
from pathlib import Path

import httpx

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from spotify_export.client import RateLimitedAPIClient
from spotify_export.errors import (
    ExportCancelledError,
    NothingToExportError,
    PlaylistCreateError,
    RateLimitExceededError,
)
from spotify_export.exporter import PlaylistExporter, _RunOptions, build_export_order, chunked
from spotify_export.models import ExportJob, ExportStage, Song
from tests.fakes import FakeSpotify, SleepRecorder, json_of, make_token_store, search_page, track_item

PROFILE = {"id": "user-1", "display_name": "Jo", "country": "DE"}
PLAYLIST = {"id": "pl-1", "external_urls": {"spotify": "https://open.spotify.com/playlist/pl-1"}}

_TITLE = re.compile(r'track:"(.*?)"')


def search_echo(request: httpx.Request) -> httpx.Response:
    """Finds every song whose title does not start with 'Missing'."""
    title = _TITLE.search(request.url.params["q"]).group(1)
    if title.startswith("Missing"):
        return httpx.Response(200, json=search_page())
    uri = "spotify:track:" + title.replace(" ", "-")
    return httpx.Response(200, json=search_page(track_item(uri, title, "Band")))


def songs(n: int, prefix: str = "Song") -> list:
    return [Song(f"{prefix} {i}", "Band") for i in range(n)]


class TestExportOrder(unittest.TestCase):
    def test_starred_first_then_approved_without_duplicates(self):
        a, b, c = Song("A", "x"), Song("B", "x"), Song("C", "x")
        ordered = build_export_order([b], [a, Song("b", "X"), c])
        self.assertEqual([s.title for s in ordered], ["B", "A", "C"])

    def test_accepts_plain_dicts(self):
        ordered = build_export_order([{"title": "Halo", "artist": "Beyoncé"}], [{"title": "halo", "artist": "Beyonce"}])
        self.assertEqual(len(ordered), 1)
        self.assertIsInstance(ordered[0], Song)

    def test_chunked_preserves_order(self):
        uris = [str(i) for i in range(250)]
        chunks = chunked(uris)
        self.assertEqual([len(c) for c in chunks], [100, 100, 50])
        self.assertEqual([u for c in chunks for u in c], uris)


class TestPlaylistExporter(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fake = FakeSpotify()
        self.http = self.fake.http()
        self.sleep = SleepRecorder()
        self.client = RateLimitedAPIClient(make_token_store(self.http), http=self.http, sleep=self.sleep)
        self.covers = []
        self.exporter = PlaylistExporter(self.client, cover_renderer=self._fake_cover)

        self.fake.add("GET", "/v1/me", (200, PROFILE))
        self.fake.add("POST", "/v1/users/user-1/playlists", (201, PLAYLIST))
        self.fake.add("GET", "/v1/search", search_echo)
        self.fake.add("POST", "/v1/playlists/pl-1/tracks", (201, {"snapshot_id": "snap"}))
        self.fake.add("PUT", "/v1/playlists/pl-1/images", (202, None))

    async def asyncTearDown(self):
        await self.http.aclose()

    def _fake_cover(self, title, *, size, colors):
        self.covers.append(title)
        return "QUJD"

    async def test_nothing_to_export_makes_no_calls(self):
        with self.assertRaises(NothingToExportError):
            await self.exporter.export([], [])
        self.assertEqual(self.fake.requests, [])

    async def test_full_export(self):
        starred = [Song("Star 1", "Band")]
        approved = [Song("Yes 1", "Band"), Song("Star 1", "Band"), Song("Missing 1", "Band")]

        result = await self.exporter.export(starred, approved)

        self.assertEqual(result.playlist_url, "https://open.spotify.com/playlist/pl-1")
        self.assertEqual(result.playlist_id, "pl-1")
        self.assertEqual(result.total_count, 3)
        self.assertEqual(result.matched_count, 2)
        self.assertEqual([s.title for s in result.unmatched], ["Missing 1"])
        self.assertTrue(result.partial)
        self.assertTrue(result.artwork_uploaded)

        create = json_of(self.fake.calls("POST", "/v1/users/user-1/playlists")[0])
        self.assertEqual(create, {"name": "Swipe to Dance", "public": False, "description": "Generated by Wedding Playlist Swipe"})

        searches = self.fake.calls("GET", "/v1/search")
        self.assertEqual(len(searches), 3)
        self.assertTrue(all(r.url.params["market"] == "DE" for r in searches))

        inserted = json_of(self.fake.calls("POST", "/v1/playlists/pl-1/tracks")[0])
        self.assertEqual(inserted, {"uris": ["spotify:track:Star-1", "spotify:track:Yes-1"]})
        self.assertEqual(self.covers, ["Swipe to Dance"])

    async def test_250_matches_are_inserted_in_three_ordered_batches(self):
        result = await self.exporter.export([], songs(250))

        self.assertEqual(result.matched_count, 250)
        self.assertFalse(result.partial)

        batches = [json_of(r)["uris"] for r in self.fake.calls("POST", "/v1/playlists/pl-1/tracks")]
        self.assertEqual([len(b) for b in batches], [100, 100, 50])
        expected = [f"spotify:track:Song-{i}" for i in range(250)]
        self.assertEqual([u for b in batches for u in b], expected)

    async def test_playlist_create_failure_aborts(self):
        self.fake._routes[("POST", "/v1/users/user-1/playlists")] = [(500, {"error": {"status": 500}})]

        with self.assertRaises(PlaylistCreateError):
            await self.exporter.export([Song("A", "Band")], [])

        self.assertEqual(self.fake.calls("GET", "/v1/search"), [])
        self.assertEqual(self.fake.calls("POST", "/v1/playlists/pl-1/tracks"), [])

    async def test_failed_search_counts_as_unmatched(self):
        def flaky(request):
            if "Broken" in request.url.params["q"]:
                return httpx.Response(400, json={"error": {"status": 400, "message": "bad query"}})
            return search_echo(request)

        self.fake._routes[("GET", "/v1/search")] = [flaky]

        result = await self.exporter.export([Song("Broken", "Band"), Song("Fine", "Band")], [])

        self.assertEqual(result.matched_count, 1)
        self.assertEqual([s.title for s in result.unmatched], ["Broken"])

    async def test_rate_limit_during_matching_aborts_the_job(self):
        self.fake._routes[("GET", "/v1/search")] = [(429, None, {"Retry-After": "1"})]

        with self.assertRaises(RateLimitExceededError):
            await self.exporter.export(songs(2), [])

        self.assertEqual(self.fake.calls("POST", "/v1/playlists/pl-1/tracks"), [])

    async def test_artwork_failure_is_not_fatal(self):
        self.fake._routes[("PUT", "/v1/playlists/pl-1/images")] = [(500, {"error": {"status": 500}})]

        result = await self.exporter.export(songs(2), [])

        self.assertEqual(result.playlist_url, "https://open.spotify.com/playlist/pl-1")
        self.assertEqual(result.matched_count, 2)
        self.assertFalse(result.artwork_uploaded)
        self.assertTrue(result.partial)

    async def test_cover_renderer_failure_is_not_fatal(self):
        def broken(title, *, size, colors):
            raise ValueError("bad colour")

        exporter = PlaylistExporter(self.client, cover_renderer=broken)
        result = await exporter.export(songs(1), [])

        self.assertFalse(result.artwork_uploaded)
        self.assertEqual(self.fake.calls("PUT", "/v1/playlists/pl-1/images"), [])

    async def test_cover_upload_can_be_disabled(self):
        exporter = PlaylistExporter(self.client, upload_cover_art=False, cover_renderer=self._fake_cover)
        result = await exporter.export(songs(1), [])

        self.assertFalse(result.partial)
        self.assertEqual(self.covers, [])
        self.assertEqual(self.fake.calls("PUT", "/v1/playlists/pl-1/images"), [])

    async def test_playlist_url_falls_back_to_open_spotify(self):
        self.fake._routes[("POST", "/v1/users/user-1/playlists")] = [(201, {"id": "pl-1"})]
        result = await self.exporter.export(songs(1), [])
        self.assertEqual(result.playlist_url, "https://open.spotify.com/playlist/pl-1")

    async def test_cancel_between_songs(self):
        cancel = asyncio.Event()
        progress = []

        def on_progress(done, total):
            progress.append((done, total))
            if done == 2:
                cancel.set()

        with self.assertRaises(ExportCancelledError) as ctx:
            await self.exporter.export(songs(5), [], cancel=cancel, on_progress=on_progress)

        job = ctx.exception.job
        self.assertEqual(job.stage, ExportStage.FAILED)
        self.assertEqual(job.playlist_id, "pl-1")
        self.assertEqual(len(job.matched_uris), 2)
        self.assertEqual(progress, [(1, 5), (2, 5)])
        self.assertEqual(len(self.fake.calls("GET", "/v1/search")), 2)
        self.assertEqual(self.fake.calls("POST", "/v1/playlists/pl-1/tracks"), [])

    async def test_stages_without_a_playlist_refuse_to_run(self):
        job = ExportJob(ordered_songs=songs(1))
        job.matched_uris.append("spotify:track:1")

        for stage in ("_create_playlist", "_insert_tracks", "_upload_artwork"):
            with self.assertRaises(PlaylistCreateError):
                await getattr(self.exporter, stage)(job, _RunOptions())

        self.assertEqual(self.fake.requests, [])
        self.assertEqual(self.covers, [])

    async def test_from_config(self):
        exporter = PlaylistExporter.from_config(
            {"playlist_name": "Reception", "search_limit": 3, "upload_cover_art": False},
            self.client,
        )
        self.assertEqual(exporter.playlist_name, "Reception")
        self.assertEqual(exporter.matcher.search_limit, 3)
        self.assertFalse(exporter.upload_cover_art)


if __name__ == "__main__":
    unittest.main(verbosity=2)
