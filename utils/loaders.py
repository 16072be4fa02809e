import json
from typing import Any, List, Tuple

from spotify_export.models import Song
from utils.logger import log_warning, log_error


def _extract_songs(raw: Any, label: str, review_file: str) -> List[Song]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        log_warning(f"Unexpected '{label}' format in {review_file}")
        return []

    songs = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        song = Song.from_dict(entry)
        if song.title:
            songs.append(song)
    return songs


def load_review_file(review_file: str) -> Tuple[List[Song], List[Song]]:
    """Load the review handoff file.

    Expected shape (written by the swipe UI):
        {"starred": [{"title": ..., "artist": ...}, ...],
         "approved": [{"title": ..., "artist": ...}, ...]}

    Returns (starred, approved). Unreadable files yield two empty lists.
    """
    try:
        with open(review_file, "r", encoding="utf-8") as f:
            json_data = json.load(f)
    except FileNotFoundError:
        log_error(f"Review file not found: {review_file}")
        return [], []
    except (OSError, json.JSONDecodeError) as e:
        log_error(f"Error loading review file: {e}")
        return [], []

    if not isinstance(json_data, dict):
        log_warning(f"Unexpected review format in {review_file}")
        return [], []

    starred = _extract_songs(json_data.get("starred"), "starred", review_file)
    approved = _extract_songs(json_data.get("approved"), "approved", review_file)
    return starred, approved
