import asyncio
import signal
import time
import webbrowser

import questionary
from tqdm import tqdm

from spotify_export.auth import AuthSessionManager, check_spotify_credentials, spotify_app_setup_instructions
from spotify_export.client import RateLimitedAPIClient
from spotify_export.errors import (
    ExportCancelledError,
    NothingToExportError,
    ReauthRequiredError,
    SpotifyExportError,
    StateMismatchError,
)
from spotify_export.exporter import PlaylistExporter, build_export_order
from spotify_export.models import ExportResult
from spotify_export.token_store import TokenStore
from utils.loaders import load_review_file
from utils.logger import log_info, log_success, log_warning, log_error


def _spotify_setup_help(config: dict) -> None:
    creds = check_spotify_credentials(config)

    log_info("\n" + "=" * 72)
    log_info("SPOTIFY WEB API SETUP")
    log_info("=" * 72)
    log_info(spotify_app_setup_instructions(redirect_uri=creds.get("redirect_uri") or "http://127.0.0.1:8888/callback"))
    log_info("Current config:")
    log_info(f"- spotify_client_id: {'SET' if creds.get('client_id') else 'NOT SET'}")
    log_info(f"- spotify_redirect_uri: {creds.get('redirect_uri') or ''}")
    log_info(f"- spotify_scopes: {', '.join(creds.get('scopes') or [])}")

    if creds.get("ok"):
        log_info(creds.get("message") or "Spotify credentials look OK.")
    else:
        log_warning(creds.get("message") or "Spotify credentials are incomplete.")


def _open_authorize_url(url: str) -> None:
    log_info("\n" + "=" * 72)
    log_info("SPOTIFY LOGIN")
    log_info("=" * 72)
    log_info("1) Approve access in the browser (or open the URL below yourself).")
    log_info("2) Spotify redirects to your redirect_uri.")
    log_info("3) Copy the FULL redirect URL from the address bar and paste it back here.")
    log_info("")
    log_info(f"Authorize URL:\n{url}")
    log_info("=" * 72)

    if questionary.confirm("Open the authorize URL in your default browser?", default=True).ask():
        try:
            webbrowser.open(url)
        except webbrowser.Error as e:
            log_warning(f"Could not open a browser: {e}")


def _spotify_connect(config: dict, token_store: TokenStore) -> None:
    """Interactive PKCE login: the user pastes the redirect URL back into the CLI."""
    creds = check_spotify_credentials(config)
    if not creds.get("ok"):
        log_warning(creds.get("message") or "Spotify credentials are incomplete.")
        _spotify_setup_help(config)
        return

    auth = AuthSessionManager(config, token_store, navigate=_open_authorize_url)
    try:
        auth.begin_login(show_dialog=True)
    except SpotifyExportError as e:
        log_error(f"Could not start Spotify login: {e}")
        return

    pasted = questionary.text("Paste the full redirect URL (it contains ?code=...&state=...):").ask()
    pasted = (pasted or "").strip()
    if not pasted:
        log_warning("No redirect URL provided. Cancelling login.")
        return

    try:
        token = asyncio.run(auth.complete_login(pasted))
    except StateMismatchError as e:
        log_error(f"{e} For safety, this login attempt was discarded.")
        log_info("Tip: paste the redirect URL from the most recent login attempt.")
        return
    except SpotifyExportError as e:
        log_error(f"Spotify login failed: {e}")
        return

    exp_str = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(float(token.expires_at)))
    log_success(f"Spotify connected. Token valid until: {exp_str}")


async def _run_export(config: dict, token_store: TokenStore, starred: list, approved: list) -> ExportResult:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass  # Windows: Ctrl+C falls back to KeyboardInterrupt

    total = len(build_export_order(starred, approved))
    try:
        async with RateLimitedAPIClient.from_config(config, token_store) as client:
            exporter = PlaylistExporter.from_config(config, client)
            with tqdm(total=total, desc="Matching songs", unit="song") as bar:

                def on_progress(done: int, _total: int) -> None:
                    bar.update(done - bar.n)

                return await exporter.export(starred, approved, cancel=cancel, on_progress=on_progress)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _spotify_export(config: dict, token_store: TokenStore) -> None:
    review_file = questionary.text(
        "Review file to export:",
        default=str(config.get("review_file") or "data/review.json"),
    ).ask()
    if not review_file:
        return

    starred, approved = load_review_file(review_file.strip())
    log_info(f"Loaded {len(starred)} starred and {len(approved)} approved songs.")

    try:
        result = asyncio.run(_run_export(config, token_store, starred, approved))
    except NothingToExportError as e:
        log_warning(str(e))
        return
    except ReauthRequiredError as e:
        log_error(str(e))
        log_info("Run 'Connect Spotify' first.")
        return
    except ExportCancelledError as e:
        job = e.job
        log_warning(f"Export cancelled. Playlist {job.playlist_url or ''} was created but no tracks were added.")
        return
    except SpotifyExportError as e:
        log_error(f"Spotify export failed: {e}")
        return

    log_success(f"Playlist ready: {result.playlist_url}")
    log_info(f"Matched {result.matched_count}/{result.total_count} songs.")
    for song in result.unmatched:
        log_warning(f"Not found on Spotify: {song}")
    if config.get("upload_cover_art", True) and not result.artwork_uploaded:
        log_warning("Playlist cover could not be uploaded (the playlist itself is fine).")

    if result.playlist_url and questionary.confirm("Open the playlist in your browser?", default=False).ask():
        webbrowser.open(result.playlist_url)


def spotify_menu(config: dict, token_store: TokenStore) -> None:
    while True:
        log_info("")
        log_info("Spotify status: " + token_store.status())

        choice = questionary.select(
            "🎧 Spotify — What would you like to do?",
            choices=[
                "Connect Spotify (OAuth PKCE)",
                "Export review to Spotify",
                "Spotify API credential setup help",
                "Log out (clear stored token)",
                "Back",
            ],
        ).ask()

        if choice == "Connect Spotify (OAuth PKCE)":
            _spotify_connect(config, token_store)

        elif choice == "Export review to Spotify":
            _spotify_export(config, token_store)

        elif choice == "Spotify API credential setup help":
            _spotify_setup_help(config)

        elif choice == "Log out (clear stored token)":
            token_store.clear()
            log_success("Cleared stored Spotify token.")

        else:
            break
