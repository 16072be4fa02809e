from typing import Any, Dict, Optional


class SpotifyExportError(RuntimeError):
    """Base class for every failure raised by the Spotify export package."""


class ConfigurationError(SpotifyExportError):
    """Client id / redirect URI missing from config.json."""


# -----------------
# Login
# -----------------


class StateMismatchError(SpotifyExportError):
    """The state returned on the callback is not the one we sent."""


class MissingVerifierError(SpotifyExportError):
    """No pending login session (second tab, expired session, already used)."""


class AuthExchangeError(SpotifyExportError):
    """The token endpoint rejected the authorization code."""

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.payload = payload or {}


# -----------------
# Token / API
# -----------------


class ReauthRequiredError(SpotifyExportError):
    """The stored token can no longer be used; the user must log in again."""


class RateLimitExceededError(SpotifyExportError):
    def __init__(self, attempts: int, retry_after: Optional[float] = None):
        super().__init__(f"Spotify rate limit still active after {attempts} attempts")
        self.attempts = attempts
        self.retry_after = retry_after


class RemoteAPIError(SpotifyExportError):
    """Unexpected Spotify response, kept verbatim for diagnostics."""

    def __init__(self, status: Optional[int], body: Any):
        super().__init__(f"Spotify API error {status}: {body}")
        self.status = status
        self.body = body


# -----------------
# Export
# -----------------


class NothingToExportError(SpotifyExportError):
    pass


class PlaylistCreateError(SpotifyExportError):
    pass


class MatchNotFoundError(SpotifyExportError):
    def __init__(self, song: Any):
        super().__init__(f"No Spotify match for {song}")
        self.song = song


class ArtworkUploadError(SpotifyExportError):
    pass


class ExportCancelledError(SpotifyExportError):
    def __init__(self, job: Any):
        super().__init__("Export cancelled")
        self.job = job
