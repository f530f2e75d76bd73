from __future__ import annotations

import logging

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT)
    # SQL echo is controlled by the engine, keep the logger itself quiet otherwise.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
