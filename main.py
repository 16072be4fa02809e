import json
import sys

from config import load_config, validate_config
from spotify_export.token_store import create_token_store
from utils.logger import setup_logging, log_info, log_warning, log_error
from menus.main_menu import main_menu
from menus.spotify_menu import spotify_menu
from menus.config_menu import config_menu


def main() -> int:
    setup_logging()

    try:
        config = load_config()
    except FileNotFoundError as e:
        log_error(f"Config file not found: {e}")
        log_error("Please create config.json with at least spotify_client_id.")
        return 1
    except json.JSONDecodeError as e:
        log_error(f"Config file contains invalid JSON: {e}")
        return 1

    is_valid, errors = validate_config(config)
    if not is_valid:
        for error in errors:
            log_warning(f"Config: {error}")

    # One TokenStore for the whole process so every screen shares the same refresh state.
    token_store = create_token_store(config)

    while True:
        choice = main_menu()

        if choice == "Spotify Menu":
            spotify_menu(config, token_store)

        elif choice == "Config Menu":
            config = config_menu(config)
            token_store.config = config

        else:
            log_info("Exiting program...")
            break

    return 0


if __name__ == "__main__":
    sys.exit(main())
