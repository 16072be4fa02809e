import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from .errors import AuthExchangeError, ReauthRequiredError
from .storage import DEFAULT_TOKEN_CACHE_PATH, TOKEN_KEY, JsonFileStore, KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

# Subtracted from expires_in so a call never starts with a token that dies mid-flight.
DEFAULT_EXPIRY_MARGIN = 60


@dataclass(frozen=True)
class TokenRecord:
    """Canonical token payload owned by TokenStore."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: float
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @staticmethod
    def from_spotify_token_response(
        payload: Dict[str, Any],
        *,
        now: Optional[float] = None,
        margin: float = DEFAULT_EXPIRY_MARGIN,
    ) -> "TokenRecord":
        """Convert Spotify token response JSON into a TokenRecord.

        Spotify returns:
        - access_token
        - token_type
        - expires_in (seconds)
        - refresh_token (optional, omitted when not rotated)
        - scope (space-delimited string)
        """

        now_ts = float(time.time() if now is None else now)
        expires_in = float(payload.get("expires_in") or 3600)
        # Short-lived tokens keep at least half their lifetime.
        margin = min(float(margin), expires_in / 2)

        return TokenRecord(
            access_token=str(payload.get("access_token", "")),
            refresh_token=payload.get("refresh_token") or None,
            expires_at=now_ts + expires_in - margin,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=payload.get("scope"),
        )

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["TokenRecord"]:
        if not data or not data.get("access_token"):
            return None

        try:
            return TokenRecord(
                access_token=str(data["access_token"]),
                refresh_token=data.get("refresh_token") or None,
                expires_at=float(data.get("expires_at", 0)),
                token_type=str(data.get("token_type") or "Bearer"),
                scope=data.get("scope"),
            )
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
            "scope": self.scope,
        }

    def is_expired(self, *, now: Optional[float] = None) -> bool:
        now_ts = time.time() if now is None else now
        return now_ts >= float(self.expires_at)


class TokenStore:
    """Owns the current TokenRecord: code exchange, refresh and persistence.

    One instance per process. Concurrent refreshes collapse into a single
    in-flight task that every caller awaits.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        *,
        store: Optional[KeyValueStore] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or {}
        self.store = store if store is not None else MemoryStore()
        self._http = http
        self._clock = clock
        self._refresh_task: Optional["asyncio.Future[TokenRecord]"] = None
        self._record = self._restore()

    @property
    def token_endpoint(self) -> str:
        return str(self.config.get("spotify_token_endpoint") or SPOTIFY_TOKEN_URL).strip()

    @property
    def expiry_margin(self) -> float:
        return float(self.config.get("token_expiry_margin", DEFAULT_EXPIRY_MARGIN))

    @property
    def current(self) -> Optional[TokenRecord]:
        return self._record

    def _restore(self) -> Optional[TokenRecord]:
        record = TokenRecord.from_dict(self.store.get(TOKEN_KEY))
        if record is None:
            return None

        # Nothing to refresh with; the user has to log in again anyway.
        if record.is_expired(now=self._clock()) and not record.refresh_token:
            self.store.delete(TOKEN_KEY)
            return None

        return record

    def _save(self, record: TokenRecord) -> None:
        self._record = record
        self.store.set(TOKEN_KEY, record.to_dict())

    def clear(self) -> None:
        """Forget the token in memory and in storage."""

        if self._record is not None:
            logger.info("Clearing stored Spotify token")
        self._record = None
        self.store.delete(TOKEN_KEY)

    def status(self) -> str:
        record = self._record
        if record is None:
            return "Not connected."
        exp_str = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(float(record.expires_at)))
        expired = record.is_expired(now=self._clock())
        refreshable = "YES" if record.refresh_token else "NO"
        return f"Connected | Expired: {'YES' if expired else 'NO'} | Refreshable: {refreshable} | Valid until: {exp_str}"

    # -----------------
    # Token endpoint
    # -----------------

    async def exchange_code(self, code: str, verifier: str, redirect_uri: str) -> TokenRecord:
        """Redeem an authorization code (PKCE, no client secret)."""

        try:
            status, payload = await self._post_form(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "client_id": str(self.config.get("spotify_client_id", "")).strip(),
                    "code_verifier": verifier,
                }
            )
        except httpx.HTTPError as e:
            raise AuthExchangeError(
                f"Spotify token request failed: {e}",
                {"error": "transport_error", "error_description": str(e)},
            ) from e

        if status >= 400 or not payload.get("access_token"):
            raise AuthExchangeError(
                f"Spotify token exchange failed (HTTP {status}): {payload.get('error_description') or payload.get('error')}",
                payload,
            )

        record = TokenRecord.from_spotify_token_response(payload, now=self._clock(), margin=self.expiry_margin)
        self._save(record)
        logger.info("Spotify token obtained (refreshable: %s)", bool(record.refresh_token))
        return record

    async def ensure_valid(self) -> TokenRecord:
        """Return a TokenRecord that is not expired, refreshing once if needed.

        While a refresh is in flight every caller waits for its result, even
        if the record it would replace has not expired yet.
        """

        if self._refresh_task is not None:
            return await asyncio.shield(self._refresh_task)

        record = self._record
        if record is None:
            raise ReauthRequiredError("No Spotify token available. Connect Spotify first.")

        if not record.is_expired(now=self._clock()):
            return record

        if not record.refresh_token:
            self.clear()
            raise ReauthRequiredError("Spotify token expired and no refresh token is available.")

        return await self.refresh()

    async def refresh(self, *, stale_access_token: Optional[str] = None) -> TokenRecord:
        """Refresh the access token; concurrent callers share one request.

        stale_access_token is the token a rejected request carried. If the
        current record already holds a different one, it was refreshed in the
        meantime and is returned without another network call.
        """

        if self._refresh_task is None:
            record = self._record
            if stale_access_token is not None and record is not None and record.access_token != stale_access_token:
                return record
            self._refresh_task = asyncio.ensure_future(self._refresh_once())

        # shield: a cancelled waiter must not cancel the refresh the others wait on.
        return await asyncio.shield(self._refresh_task)

    async def _refresh_once(self) -> TokenRecord:
        try:
            record = self._record
            if record is None or not record.refresh_token:
                self.clear()
                raise ReauthRequiredError("No refresh token available. Connect Spotify again.")

            logger.info("Refreshing Spotify access token")
            try:
                status, payload = await self._post_form(
                    {
                        "grant_type": "refresh_token",
                        "refresh_token": record.refresh_token,
                        "client_id": str(self.config.get("spotify_client_id", "")).strip(),
                    }
                )
            except httpx.HTTPError as e:
                self.clear()
                raise ReauthRequiredError(f"Spotify token refresh failed: {e}") from e

            if status >= 400 or not payload.get("access_token"):
                logger.warning("Spotify token refresh rejected (HTTP %s): %s", status, payload.get("error"))
                self.clear()
                raise ReauthRequiredError(
                    f"Spotify token refresh failed: {payload.get('error_description') or payload.get('error')}"
                )

            token = TokenRecord.from_spotify_token_response(payload, now=self._clock(), margin=self.expiry_margin)

            # Spotify may omit refresh_token on refresh; keep existing.
            if not token.refresh_token:
                token = TokenRecord(
                    access_token=token.access_token,
                    refresh_token=record.refresh_token,
                    expires_at=token.expires_at,
                    token_type=token.token_type,
                    scope=token.scope,
                )

            self._save(token)
            logger.info("Spotify access token refreshed")
            return token
        finally:
            self._refresh_task = None

    async def _post_form(self, form: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        data = {k: str(v) for k, v in (form or {}).items() if v is not None}
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        if self._http is not None:
            resp = await self._http.post(self.token_endpoint, data=data, headers=headers)
        else:
            timeout = float(self.config.get("http_timeout", 30))
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
                resp = await client.post(self.token_endpoint, data=data, headers=headers)

        try:
            payload = resp.json()
        except json.JSONDecodeError:
            payload = {"error": "invalid_response", "error_description": resp.text}

        if not isinstance(payload, dict):
            payload = {"error": "invalid_response", "error_description": str(payload)}

        return resp.status_code, payload


def create_token_store(config: Dict[str, Any], *, http: Optional[httpx.AsyncClient] = None) -> TokenStore:
    """TokenStore persisted to disk unless spotify_cache_tokens is off."""

    config = config or {}
    if bool(config.get("spotify_cache_tokens", True)):
        store: KeyValueStore = JsonFileStore(str(config.get("token_cache_path") or DEFAULT_TOKEN_CACHE_PATH))
    else:
        store = MemoryStore()
    return TokenStore(config, store=store, http=http)
