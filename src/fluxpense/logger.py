import logging
import os
from datetime import datetime

LOG_DIR = os.getenv("FLUXPENSE_LOG_DIR", "logs")
LOG_FILE = f"{datetime.now().strftime('%Y_%m_%d')}.log"
LOG_FORMAT = "[ %(asctime)s ] %(levelname)s %(name)s:%(lineno)d - %(message)s"

_configured = False


def _configure_root():
    global _configured
    if _configured:
        return

    root = logging.getLogger("fluxpense")
    root.setLevel(os.getenv("FLUXPENSE_LOG_LEVEL", "INFO").upper())
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(LOG_DIR, LOG_FILE))
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as exc:
        root.warning("File logging disabled: %s", exc)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger under the 'fluxpense' hierarchy.
    Console and daily file handlers are attached once, on first use.
    """
    _configure_root()
    if not name.startswith("fluxpense"):
        name = f"fluxpense.{name}"
    return logging.getLogger(name)
