import questionary


def main_menu():
    """Top-level menu. Returns the selected label."""
    return questionary.select(
        "🎶 Swipe to Dance — What would you like to do?",
        choices=[
            "Spotify Menu",
            "Config Menu",
            "Exit",
        ],
    ).ask()
