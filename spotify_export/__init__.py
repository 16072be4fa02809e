"""Spotify Web API integration for exporting reviewed songs (OAuth PKCE).

Login -> token lifecycle -> rate-limited API calls -> track matching ->
playlist export. Everything network-bound is asyncio + httpx.
"""

from .auth import AuthSession, AuthSessionManager
from .client import RateLimitedAPIClient
from .exporter import PlaylistExporter, build_export_order
from .matcher import TrackMatcher
from .models import ExportJob, ExportResult, ExportStage, MatchCandidate, Song, UserProfile
from .storage import JsonFileStore, KeyValueStore, MemoryStore
from .token_store import TokenRecord, TokenStore, create_token_store

__all__ = [
    "AuthSession",
    "AuthSessionManager",
    "ExportJob",
    "ExportResult",
    "ExportStage",
    "JsonFileStore",
    "KeyValueStore",
    "MatchCandidate",
    "MemoryStore",
    "PlaylistExporter",
    "RateLimitedAPIClient",
    "Song",
    "TokenRecord",
    "TokenStore",
    "TrackMatcher",
    "UserProfile",
    "build_export_order",
    "create_token_store",
]
