import logging
import os
from logging.handlers import RotatingFileHandler

LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.path.dirname(__file__), "../../logs"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("slash_infra")
logger.setLevel(LOG_LEVEL)


def _install_handlers(target: logging.Logger) -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    # Rotates at 5 MB, keeps 3 backups
    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "slash_infra.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
    )
    file_handler.setFormatter(formatter)

    target.addHandler(console_handler)
    target.addHandler(file_handler)


# uvicorn --reload re-imports modules; don't stack handlers
if not logger.handlers:
    _install_handlers(logger)
