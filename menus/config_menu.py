import questionary

from config import CONFIG_SCHEMA, load_config, reset_to_defaults, update_config, validate_config
from utils.logger import log_error, log_info, log_success, log_warning

SETTING_GROUPS = {
    "Spotify Login": ["spotify_client_id", "spotify_redirect_uri", "spotify_scopes", "spotify_token_endpoint"],
    "Token Storage": ["spotify_cache_tokens", "token_cache_path", "token_expiry_margin"],
    "Web API": ["rate_limit_max_attempts", "rate_limit_default_delay", "http_timeout", "search_limit"],
    "Playlist Export": ["review_file", "playlist_name", "playlist_description", "upload_cover_art", "cover_size", "cover_colors"],
}

# Changing any of these invalidates the stored login.
LOGIN_KEYS = {"spotify_client_id", "spotify_redirect_uri", "spotify_scopes"}


def _display_value(key: str, value) -> str:
    if key == "spotify_client_id":
        value = str(value or "")
        return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else ("(set)" if value else "(not set)")
    if isinstance(value, bool):
        return "✓ Enabled" if value else "✗ Disabled"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def config_menu(config: dict) -> dict:
    """Config screen. Returns the (possibly reloaded) config dict."""
    while True:
        choice = questionary.select(
            "⚙️ Config Menu — What would you like to do?",
            choices=[
                "View current config",
                "Update a setting",
                "Reset to defaults",
                "Validate configuration",
                "Back",
            ],
        ).ask()

        if choice == "View current config":
            view_config(config)

        elif choice == "Update a setting":
            config = update_setting_menu(config)

        elif choice == "Reset to defaults":
            config = reset_config_menu(config)

        elif choice == "Validate configuration":
            validate_config_menu(config)

        else:
            break

    return config


def view_config(config: dict) -> None:
    log_info("\n" + "=" * 50)
    log_info("📋 Current Configuration")
    log_info("=" * 50)

    for group, keys in SETTING_GROUPS.items():
        log_info(f"\n{group}:")
        for key in keys:
            if key in config:
                log_info(f"  {key}: {_display_value(key, config[key])}")

    log_info("\n" + "=" * 50)
    input("\nPress Enter to continue...")


def _ask_value(key: str, current):
    """Prompt for a new value typed according to CONFIG_SCHEMA. None means cancelled."""
    rules = CONFIG_SCHEMA.get(key, {})
    expected = rules.get("type")

    if expected is bool:
        return questionary.confirm(f"Enable {key}?", default=bool(current)).ask()

    if expected is list:
        answer = questionary.text(
            f"Comma-separated values for {key}:",
            default=_display_value("", current) if isinstance(current, list) else "",
        ).ask()
        if answer is None:
            return None
        return [v.strip() for v in answer.split(",") if v.strip()]

    if expected in (int, (int, float)):
        answer = questionary.text(
            f"New value for {key} ({rules.get('min', 0)}-{rules.get('max', 9999)}):",
            default="" if current is None else str(current),
        ).ask()
        if answer is None:
            return None
        try:
            return int(answer) if expected is int else float(answer)
        except ValueError:
            log_error(f"'{answer}' is not a number")
            return None

    return questionary.text(f"New value for {key}:", default="" if current is None else str(current)).ask()


def update_setting_menu(config: dict) -> dict:
    group = questionary.select("Which settings?", choices=[*SETTING_GROUPS.keys(), "Back"]).ask()
    if group is None or group == "Back":
        return config

    key = questionary.select(
        "Select setting to update:",
        choices=[
            questionary.Choice(f"{k} ({_display_value(k, config.get(k))})", value=k) for k in SETTING_GROUPS[group]
        ]
        + [questionary.Choice("Back", value=None)],
    ).ask()
    if key is None:
        return config

    new_value = _ask_value(key, config.get(key))
    if new_value is None:
        return config

    success, message = update_config(key, new_value)
    if not success:
        log_error(message)
        return config

    config[key] = new_value
    log_success(message if key != "spotify_client_id" else "Updated 'spotify_client_id'")
    if key in LOGIN_KEYS:
        log_warning("Spotify login settings changed. Log out and connect Spotify again.")
    return config


def reset_config_menu(config: dict) -> dict:
    confirm = questionary.confirm(
        "⚠️ Reset all settings to defaults? Your Spotify client id will be cleared.",
        default=False,
    ).ask()
    if not confirm:
        return config

    success, message = reset_to_defaults()
    if not success:
        log_error(message)
        return config

    log_success(message)
    return load_config()


def validate_config_menu(config: dict) -> None:
    is_valid, errors = validate_config(config)

    if is_valid:
        log_success("Configuration is valid!")
    else:
        log_error("Configuration has errors:")
        for error in errors:
            log_info(f"  ✗ {error}")

    if not str(config.get("spotify_client_id") or "").strip():
        log_warning("spotify_client_id is empty: Spotify login will not start until it is set.")

    input("\nPress Enter to continue...")
