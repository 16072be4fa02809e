import logging
import os

LOG_DIR = "logs"
LOG_FILE = os.path.join(LOG_DIR, "app.log")

_logger = logging.getLogger("swipe_export")


def setup_logging(level: int = logging.INFO, log_file: str = LOG_FILE) -> None:
    """Console + file logging for the CLI. Safe to call more than once."""

    root = logging.getLogger()
    if getattr(root, "_swipe_export_configured", False):
        return

    root.setLevel(level)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # httpx logs every request at INFO, including query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    root._swipe_export_configured = True  # type: ignore[attr-defined]


def log_info(message: str) -> None:
    _logger.info(message)


def log_success(message: str) -> None:
    _logger.info(f"✅ {message}")


def log_warning(message: str) -> None:
    _logger.warning(f"⚠️ {message}")


def log_error(message: str) -> None:
    _logger.error(f"❌ {message}")
