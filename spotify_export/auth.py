import base64
import hashlib
import logging
import secrets
import urllib.parse
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from .errors import AuthExchangeError, ConfigurationError, MissingVerifierError, StateMismatchError
from .storage import AUTH_SESSION_KEY, KeyValueStore, MemoryStore
from .token_store import TokenRecord, TokenStore

logger = logging.getLogger(__name__)

SPOTIFY_ACCOUNTS_BASE_URL = "https://accounts.spotify.com"

DEFAULT_SCOPES = ["playlist-modify-public", "playlist-modify-private", "ugc-image-upload"]


def _base64url_no_pad(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def code_challenge_from_verifier(verifier: str) -> str:
    """Compute PKCE S256 code_challenge from code_verifier."""

    digest = hashlib.sha256((verifier or "").encode("utf-8")).digest()
    return _base64url_no_pad(digest)


def check_spotify_credentials(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate Spotify OAuth config fields and return a structured status dict."""

    config = config or {}
    client_id = str(config.get("spotify_client_id", "")).strip()
    redirect_uri = str(config.get("spotify_redirect_uri", "")).strip()
    scopes = list(config.get("spotify_scopes") or DEFAULT_SCOPES)

    status = {"ok": False, "client_id": client_id, "redirect_uri": redirect_uri, "scopes": scopes}

    if not client_id:
        status["message"] = "Missing spotify_client_id in config.json. Create a Spotify app and copy its Client ID."
        return status

    if not redirect_uri:
        status["message"] = (
            "Missing spotify_redirect_uri in config.json.\n"
            "Recommended default: http://127.0.0.1:8888/callback"
        )
        return status

    missing = [s for s in ("playlist-modify-private", "ugc-image-upload") if s not in scopes]
    status["ok"] = True
    if missing:
        status["message"] = f"Spotify credentials look OK, but scopes are missing: {', '.join(missing)}"
    else:
        status["message"] = "Spotify credentials look OK."
    return status


def spotify_app_setup_instructions(*, redirect_uri: str = "http://127.0.0.1:8888/callback") -> str:
    """Return user-facing setup instructions for creating a Spotify Developer app."""

    redirect_uri = str(redirect_uri or "").strip() or "http://127.0.0.1:8888/callback"
    return (
        "Spotify app setup:\n"
        "1) Go to https://developer.spotify.com/dashboard\n"
        "2) Create an app (or select an existing app)\n"
        f"3) Add this Redirect URI in the app settings: {redirect_uri}\n"
        "4) Copy the Client ID into config.json as spotify_client_id\n"
        "5) Keep spotify_scopes as-is: playlist creation and cover upload need all three\n\n"
        "Notes:\n"
        "- Login uses Authorization Code + PKCE. No client secret is stored or sent.\n"
        "- Redirect URI must match *exactly* what you configure in the Spotify dashboard.\n"
    )


def extract_code_from_redirect_url(redirect_url: str) -> Dict[str, str]:
    """Parse a redirect URL and return {"code": ..., "state": ..., "error": ...} (missing keys omitted)."""

    parsed = urllib.parse.urlparse(str(redirect_url or "").strip())
    qs = urllib.parse.parse_qs(parsed.query)
    out: Dict[str, str] = {}
    for key in ("code", "state", "error"):
        if qs.get(key):
            out[key] = str(qs[key][0])
    return out


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str


def generate_pkce_pair() -> PKCEPair:
    """Generate a PKCE verifier + challenge."""

    # RFC 7636: verifier length 43-128 chars from ALPHA / DIGIT / "-" / "." / "_" / "~".
    # token_urlsafe(64) yields 86 such characters.
    verifier = secrets.token_urlsafe(64).rstrip("=")[:128]
    return PKCEPair(code_verifier=verifier, code_challenge=code_challenge_from_verifier(verifier))


@dataclass(frozen=True)
class AuthSession:
    """Pending login: created by begin_login, consumed once by complete_login."""

    verifier: str
    anti_csrf_state: str
    redirect_uri: str

    def to_dict(self) -> Dict[str, str]:
        return {"verifier": self.verifier, "state": self.anti_csrf_state, "redirect_uri": self.redirect_uri}

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["AuthSession"]:
        if not data or not data.get("verifier"):
            return None
        return AuthSession(
            verifier=str(data["verifier"]),
            anti_csrf_state=str(data.get("state") or ""),
            redirect_uri=str(data.get("redirect_uri") or ""),
        )


class AuthSessionManager:
    """Spotify Authorization Code + PKCE login."""

    def __init__(
        self,
        config: Dict[str, Any],
        token_store: TokenStore,
        *,
        session_store: Optional[KeyValueStore] = None,
        navigate: Callable[[str], Any] = webbrowser.open,
    ):
        self.config = config or {}
        self.token_store = token_store
        self.session_store = session_store if session_store is not None else MemoryStore()
        self.navigate = navigate

    def _credentials(self) -> Tuple[str, str]:
        creds = check_spotify_credentials(self.config)
        if not creds["ok"]:
            raise ConfigurationError(creds["message"])
        return creds["client_id"], creds["redirect_uri"]

    def get_authorize_url(
        self,
        *,
        code_challenge: str,
        state: str,
        scopes: Optional[Iterable[str]] = None,
        show_dialog: bool = False,
    ) -> str:
        client_id, redirect_uri = self._credentials()

        scope_list = list(scopes if scopes is not None else (self.config.get("spotify_scopes") or DEFAULT_SCOPES))
        scope_str = " ".join([str(s).strip() for s in scope_list if str(s).strip()])

        params: Dict[str, str] = {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "code_challenge_method": "S256",
            "code_challenge": str(code_challenge),
            "state": str(state),
        }
        if scope_str:
            params["scope"] = scope_str
        if show_dialog:
            params["show_dialog"] = "true"

        return f"{SPOTIFY_ACCOUNTS_BASE_URL}/authorize?{urllib.parse.urlencode(params)}"

    def begin_login(self, *, show_dialog: bool = False) -> None:
        """Store a fresh AuthSession and send the user agent to Spotify."""

        _, redirect_uri = self._credentials()

        pkce = generate_pkce_pair()
        session = AuthSession(
            verifier=pkce.code_verifier,
            anti_csrf_state=secrets.token_urlsafe(16).rstrip("="),
            redirect_uri=redirect_uri,
        )
        self.session_store.set(AUTH_SESSION_KEY, session.to_dict())

        url = self.get_authorize_url(
            code_challenge=pkce.code_challenge,
            state=session.anti_csrf_state,
            show_dialog=show_dialog,
        )
        logger.info("Starting Spotify login (redirect_uri=%s)", redirect_uri)
        self.navigate(url)

    async def complete_login(self, callback_params: Union[Mapping[str, str], str]) -> TokenRecord:
        """Validate the callback and exchange the code.

        callback_params is either the parsed query ({code, state, error}) or the
        full redirect URL. The pending session is discarded whatever happens.
        """

        if isinstance(callback_params, str):
            callback_params = extract_code_from_redirect_url(callback_params)

        session = AuthSession.from_dict(self.session_store.get(AUTH_SESSION_KEY))
        if session is None:
            raise MissingVerifierError("No pending Spotify login. Start the login again from this window.")

        try:
            if callback_params.get("state") != session.anti_csrf_state:
                logger.warning("Spotify callback state mismatch; discarding pending login")
                raise StateMismatchError("Spotify login response does not belong to this login attempt.")

            error = callback_params.get("error")
            if error:
                raise AuthExchangeError(f"Spotify authorization failed: {error}", {"error": error})

            code = callback_params.get("code")
            if not code:
                raise AuthExchangeError("Spotify callback did not include an authorization code.", {"error": "missing_code"})

            record = await self.token_store.exchange_code(code, session.verifier, session.redirect_uri)
            logger.info("Spotify login complete")
            return record
        finally:
            self.session_store.delete(AUTH_SESSION_KEY)
