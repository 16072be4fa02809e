import json
import os
from typing import Any, Dict

CONFIG_PATH = "config.json"

# Default configuration values
DEFAULT_CONFIG = {
    # Spotify Web API (OAuth PKCE)
    "spotify_client_id": "",
    "spotify_redirect_uri": "http://127.0.0.1:8888/callback",
    "spotify_scopes": [
        "playlist-modify-public",
        "playlist-modify-private",
        "ugc-image-upload",
    ],
    # Point at a pass-through proxy if the provider endpoint is not reachable directly.
    "spotify_token_endpoint": "https://accounts.spotify.com/api/token",
    "spotify_cache_tokens": True,
    "token_cache_path": "data/spotify_tokens.json",
    "token_expiry_margin": 60,

    # Web API behavior
    "rate_limit_max_attempts": 3,
    "rate_limit_default_delay": 1,
    "http_timeout": 30,
    "search_limit": 5,

    # Playlist export
    "review_file": "data/review.json",
    "playlist_name": "Swipe to Dance",
    "playlist_description": "Generated by Wedding Playlist Swipe",
    "upload_cover_art": True,
    "cover_size": 640,
    "cover_colors": ["#ff5f6d", "#ffc371"],
}

# Validation rules for config fields
CONFIG_SCHEMA = {
    "spotify_client_id": {"type": str, "required": False},
    "spotify_redirect_uri": {"type": str, "required": True},
    "spotify_scopes": {"type": list, "required": False, "element_type": str},
    "spotify_token_endpoint": {"type": str, "required": False},
    "spotify_cache_tokens": {"type": bool, "required": False},
    "token_cache_path": {"type": str, "required": False},
    "token_expiry_margin": {"type": int, "required": False, "min": 0, "max": 600},

    "rate_limit_max_attempts": {"type": int, "required": False, "min": 1, "max": 10},
    "rate_limit_default_delay": {"type": (int, float), "required": False, "min": 0, "max": 60},
    "http_timeout": {"type": (int, float), "required": False, "min": 1, "max": 300},
    "search_limit": {"type": int, "required": False, "min": 1, "max": 50},

    "review_file": {"type": str, "required": False},
    "playlist_name": {"type": str, "required": False},
    "playlist_description": {"type": str, "required": False},
    "upload_cover_art": {"type": bool, "required": False},
    "cover_size": {"type": int, "required": False, "min": 64, "max": 1280},
    "cover_colors": {"type": list, "required": False, "element_type": str},
}


def load_config() -> Dict[str, Any]:
    """Load configuration from file, applying defaults for missing fields."""
    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file {CONFIG_PATH} not found.")

    with open(CONFIG_PATH, "r", encoding="utf-8") as f:
        config = json.load(f)

    # Apply defaults for missing fields
    for key, value in DEFAULT_CONFIG.items():
        if key not in config:
            config[key] = value

    return config


def save_config(config: Dict[str, Any]) -> bool:
    """Save configuration to file."""
    try:
        with open(CONFIG_PATH, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except OSError as e:
        raise IOError(f"Failed to save config: {e}")


def validate_config(config: Dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate configuration against schema.
    Returns (is_valid, list_of_errors).
    """
    errors = []

    for key, rules in CONFIG_SCHEMA.items():
        # Check required fields
        if rules.get("required", False) and key not in config:
            errors.append(f"Missing required field: {key}")
            continue

        if key not in config:
            continue

        value = config[key]

        # bool is an int subclass; don't let True pass as a number.
        expected_type = rules.get("type")
        if expected_type is not bool and isinstance(value, bool):
            errors.append(f"Field '{key}' must not be a boolean")
            continue

        if expected_type and not isinstance(value, expected_type):
            type_names = expected_type.__name__ if not isinstance(expected_type, tuple) else "/".join(t.__name__ for t in expected_type)
            errors.append(f"Field '{key}' must be {type_names}, got {type(value).__name__}")
            continue

        # List element type check (when schema uses: {"type": list, "element_type": ...})
        if isinstance(value, list) and "element_type" in rules:
            elem_type = rules["element_type"]
            bad_elems = [v for v in value if not isinstance(v, elem_type)]
            if bad_elems:
                errors.append(
                    f"Field '{key}' must be a list of {elem_type.__name__}, got invalid elements: {bad_elems}"
                )
                continue

        if "choices" in rules and value not in rules["choices"]:
            errors.append(f"Field '{key}' must be one of {rules['choices']}, got '{value}'")

        # Range check for numeric values
        if isinstance(value, (int, float)):
            if "min" in rules and value < rules["min"]:
                errors.append(f"Field '{key}' must be >= {rules['min']}, got {value}")
            if "max" in rules and value > rules["max"]:
                errors.append(f"Field '{key}' must be <= {rules['max']}, got {value}")

    return len(errors) == 0, errors


def update_config(key: str, value: Any) -> tuple[bool, str]:
    """
    Update a single config field with validation.
    Returns (success, message).
    """
    config = load_config()

    if key not in CONFIG_SCHEMA:
        return False, f"Unknown config key: {key}"

    # Validate against a copy before touching the file
    test_config = config.copy()
    test_config[key] = value

    is_valid, errors = validate_config(test_config)
    if not is_valid:
        return False, f"Validation failed: {', '.join(errors)}"

    config[key] = value
    save_config(config)

    return True, f"Updated '{key}' to '{value}'"


def reset_to_defaults() -> tuple[bool, str]:
    """Reset configuration to default values."""
    try:
        save_config(DEFAULT_CONFIG.copy())
        return True, "Configuration reset to defaults"
    except IOError as e:
        return False, f"Failed to reset config: {e}"

