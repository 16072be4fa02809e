"""Menu wiring tests for the Spotify export screens.

No real network and no real prompts: questionary is swapped for a queue of
answers and HTTP goes through the in-process fake.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import tempfile
import types
import unittest
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import menus.config_menu as config_menu_module
import menus.spotify_menu as spotify_menu_module
from spotify_export.storage import TOKEN_KEY, MemoryStore
from spotify_export.token_store import TokenStore
from tests.fakes import NOW, FakeSpotify, make_token_store, token_payload

CONFIG = {
    "spotify_client_id": "client-123",
    "spotify_redirect_uri": "http://127.0.0.1:8888/callback",
    "spotify_scopes": ["playlist-modify-private", "ugc-image-upload"],
    "upload_cover_art": False,
}


# -------------------------
# Simple questionary mocks
# -------------------------

@dataclass
class _Askable:
    value: Any

    def ask(self):
        return self.value() if callable(self.value) else self.value


class _QuestionaryMock:
    """Returns queued answers in order; callables are evaluated when asked."""

    def __init__(self):
        import questionary as _real_questionary

        self.Choice = _real_questionary.Choice
        self._queue: list[Any] = []
        self.messages: list[str] = []

    def queue(self, *answers: Any) -> None:
        self._queue.extend(answers)

    def _pop(self, message: str) -> _Askable:
        self.messages.append(message)
        if not self._queue:
            raise AssertionError("QuestionaryMock queue exhausted")
        return _Askable(self._queue.pop(0))

    def select(self, message: str, choices: list[Any]):
        return self._pop(message)

    def confirm(self, message: str, default: bool = True):
        return self._pop(message)

    def text(self, message: str, default: str = ""):
        return self._pop(message)


class _PatchModuleAttr:
    """Context manager to temporarily patch module attributes."""

    def __init__(self, module: types.ModuleType, attr: str, value: Any):
        self.module = module
        self.attr = attr
        self.value = value
        self._old = None

    def __enter__(self):
        self._old = getattr(self.module, self.attr)
        setattr(self.module, self.attr, self.value)

    def __exit__(self, exc_type, exc, tb):
        setattr(self.module, self.attr, self._old)


# -------------------------
# Tests
# -------------------------


class TestSpotifyMenu(unittest.TestCase):
    def setUp(self):
        self.q = _QuestionaryMock()
        self.fake = FakeSpotify()
        self.http = self.fake.http()

    def tearDown(self):
        asyncio.run(self.http.aclose())

    def test_logout_clears_token(self):
        backing = MemoryStore()
        token_store = make_token_store(self.http, store=backing)
        self.q.queue("Log out (clear stored token)", "Back")

        with _PatchModuleAttr(spotify_menu_module, "questionary", self.q):
            spotify_menu_module.spotify_menu(CONFIG, token_store)

        self.assertIsNone(token_store.current)
        self.assertIsNone(backing.get(TOKEN_KEY))

    def test_connect_without_client_id_shows_help_and_skips_login(self):
        token_store = TokenStore({}, store=MemoryStore())
        self.q.queue("Connect Spotify (OAuth PKCE)", "Back")

        with _PatchModuleAttr(spotify_menu_module, "questionary", self.q):
            spotify_menu_module.spotify_menu({"spotify_redirect_uri": CONFIG["spotify_redirect_uri"]}, token_store)

        self.assertEqual(len(self.q.messages), 2)
        self.assertIsNone(token_store.current)

    def test_connect_exchanges_pasted_redirect_url(self):
        self.fake.add("POST", "/api/token", (200, token_payload("menu-access", "menu-refresh")))
        token_store = TokenStore(CONFIG, store=MemoryStore(), http=self.http, clock=lambda: NOW)
        opened: list[str] = []

        def pasted_redirect() -> str:
            state = urllib.parse.parse_qs(urllib.parse.urlparse(opened[0]).query)["state"][0]
            return f"{CONFIG['spotify_redirect_uri']}?code=the-code&state={state}"

        self.q.queue(pasted_redirect)

        with _PatchModuleAttr(spotify_menu_module, "questionary", self.q), _PatchModuleAttr(
            spotify_menu_module, "_open_authorize_url", opened.append
        ):
            spotify_menu_module._spotify_connect(CONFIG, token_store)

        self.assertEqual(len(opened), 1)
        self.assertIn("show_dialog=true", opened[0])
        self.assertEqual(token_store.current.access_token, "menu-access")
        self.assertEqual(len(self.fake.calls("POST", "/api/token")), 1)

    def test_export_with_empty_review_does_not_call_spotify(self):
        token_store = make_token_store(self.http)
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "review.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"starred": [], "approved": []}, f)

            self.q.queue(path)
            with _PatchModuleAttr(spotify_menu_module, "questionary", self.q):
                spotify_menu_module._spotify_export(CONFIG, token_store)

        self.assertEqual(self.fake.requests, [])

    def test_export_without_login_stops_before_any_request(self):
        token_store = TokenStore(CONFIG, store=MemoryStore(), http=self.http)
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "review.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"approved": [{"title": "Halo", "artist": "Beyoncé"}]}, f)

            self.q.queue(path)
            with _PatchModuleAttr(spotify_menu_module, "questionary", self.q):
                spotify_menu_module._spotify_export(CONFIG, token_store)

        self.assertEqual(self.fake.requests, [])


class TestConfigMenu(unittest.TestCase):
    def setUp(self):
        self.q = _QuestionaryMock()
        self.updates: list[tuple[str, Any]] = []

    def _fake_update(self, key, value):
        self.updates.append((key, value))
        return True, f"Updated '{key}'"

    def test_numeric_setting_is_parsed_and_saved(self):
        cfg = {"search_limit": 5}
        self.q.queue("Web API", "search_limit", "10")

        with _PatchModuleAttr(config_menu_module, "questionary", self.q), _PatchModuleAttr(
            config_menu_module, "update_config", self._fake_update
        ):
            cfg = config_menu_module.update_setting_menu(cfg)

        self.assertEqual(cfg["search_limit"], 10)
        self.assertEqual(self.updates, [("search_limit", 10)])

    def test_list_setting_splits_on_commas(self):
        cfg = {"cover_colors": ["#000000", "#ffffff"]}
        self.q.queue("Playlist Export", "cover_colors", "#111111, #222222")

        with _PatchModuleAttr(config_menu_module, "questionary", self.q), _PatchModuleAttr(
            config_menu_module, "update_config", self._fake_update
        ):
            cfg = config_menu_module.update_setting_menu(cfg)

        self.assertEqual(cfg["cover_colors"], ["#111111", "#222222"])

    def test_bad_number_is_not_saved(self):
        cfg = {"http_timeout": 30}
        self.q.queue("Web API", "http_timeout", "soon")

        with _PatchModuleAttr(config_menu_module, "questionary", self.q), _PatchModuleAttr(
            config_menu_module, "update_config", self._fake_update
        ):
            cfg = config_menu_module.update_setting_menu(cfg)

        self.assertEqual(cfg["http_timeout"], 30)
        self.assertEqual(self.updates, [])

    def test_client_id_is_masked(self):
        self.assertEqual(config_menu_module._display_value("spotify_client_id", ""), "(not set)")
        self.assertNotIn("abcdef123456", config_menu_module._display_value("spotify_client_id", "abcdef123456"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
