import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .errors import RateLimitExceededError, ReauthRequiredError, RemoteAPIError
from .token_store import TokenStore

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"

# Spotify's ceiling for POST /playlists/{id}/tracks.
MAX_URIS_PER_REQUEST = 100


class RateLimitedAPIClient:
    """Spotify Web API client bound to a TokenStore.

    Retry behavior:
    - 429: honors Retry-After, giving up on the max_attempts-th rate-limited response
    - 401: one refresh, one retry; a second 401 means the login is gone
    - anything else non-2xx: RemoteAPIError, no retry
    """

    def __init__(
        self,
        token_store: TokenStore,
        *,
        http: Optional[httpx.AsyncClient] = None,
        base_url: str = SPOTIFY_API_BASE_URL,
        max_attempts: int = 3,
        default_retry_after: float = 1.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.token_store = token_store
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max(1, int(max_attempts))
        self.default_retry_after = float(default_retry_after)
        self._sleep = sleep
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: Dict[str, Any], token_store: TokenStore, **kwargs: Any) -> "RateLimitedAPIClient":
        config = config or {}
        kwargs.setdefault("max_attempts", int(config.get("rate_limit_max_attempts", 3)))
        kwargs.setdefault("default_retry_after", float(config.get("rate_limit_default_delay", 1.0)))
        kwargs.setdefault("timeout", float(config.get("http_timeout", 30)))
        return cls(token_store, **kwargs)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "RateLimitedAPIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -----------------
    # HTTP helpers
    # -----------------

    def _retry_after(self, resp: httpx.Response) -> float:
        raw = resp.headers.get("Retry-After")
        try:
            delay = float(raw) if raw is not None else self.default_retry_after
        except ValueError:
            delay = self.default_retry_after
        return max(0.0, delay)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make an authorized Spotify Web API request and return parsed JSON ({} for empty bodies)."""

        url = f"{self.base_url}{path}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None} or None

        rate_limited = 0
        refreshed = False
        while True:
            token = await self.token_store.ensure_valid()
            req_headers = {
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/json",
                **(headers or {}),
            }

            try:
                resp = await self._http.request(
                    method.upper(),
                    url,
                    params=query,
                    json=json_body,
                    content=content,
                    headers=req_headers,
                )
            except httpx.HTTPError as e:
                raise RemoteAPIError(None, f"Spotify API request failed: {e}") from e

            status = resp.status_code

            if status == 429:
                rate_limited += 1
                delay = self._retry_after(resp)
                if rate_limited >= self.max_attempts:
                    logger.warning("Rate limited on %s %s; giving up after %d attempts", method, path, rate_limited)
                    raise RateLimitExceededError(rate_limited, delay)
                logger.info(
                    "Rate limited on %s %s; retrying in %.1fs (%d/%d)", method, path, delay, rate_limited, self.max_attempts
                )
                await self._sleep(delay)
                continue

            if status == 401:
                if refreshed:
                    self.token_store.clear()
                    raise ReauthRequiredError("Spotify rejected the refreshed token. Connect Spotify again.")
                logger.info("Spotify returned 401 on %s %s; refreshing token", method, path)
                await self.token_store.refresh(stale_access_token=token.access_token)
                refreshed = True
                continue

            if status >= 400:
                raise RemoteAPIError(status, _body_of(resp))

            if not resp.content:
                return {}

            try:
                payload = resp.json()
            except json.JSONDecodeError as e:
                raise RemoteAPIError(status, f"Spotify API response was not JSON: {resp.text}") from e

            return payload if isinstance(payload, dict) else {"items": payload}

    # -----------------
    # Endpoints
    # -----------------

    async def me(self) -> Dict[str, Any]:
        return await self.request_json("GET", "/me")

    async def create_playlist(self, user_id: str, *, name: str, description: str = "", public: bool = False) -> Dict[str, Any]:
        return await self.request_json(
            "POST",
            f"/users/{user_id}/playlists",
            json_body={"name": name, "public": bool(public), "description": description},
        )

    async def search_tracks(self, query: str, *, limit: int = 5, market: Optional[str] = None) -> List[Dict[str, Any]]:
        page = await self.request_json(
            "GET",
            "/search",
            params={"type": "track", "q": query, "limit": int(limit), "market": market or None},
        )
        items = (page.get("tracks") or {}).get("items") or []
        return [x for x in items if isinstance(x, dict)]

    async def add_tracks(self, playlist_id: str, uris: List[str]) -> Optional[str]:
        """Append up to 100 URIs; returns the new snapshot id."""

        if len(uris) > MAX_URIS_PER_REQUEST:
            raise ValueError(f"At most {MAX_URIS_PER_REQUEST} URIs per request, got {len(uris)}")
        payload = await self.request_json("POST", f"/playlists/{playlist_id}/tracks", json_body={"uris": list(uris)})
        return payload.get("snapshot_id")

    async def upload_playlist_cover(self, playlist_id: str, jpeg_base64: str) -> None:
        await self.request_json(
            "PUT",
            f"/playlists/{playlist_id}/images",
            content=jpeg_base64.encode("ascii"),
            headers={"Content-Type": "image/jpeg"},
        )


def _body_of(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except json.JSONDecodeError:
        return resp.text
