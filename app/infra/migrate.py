from __future__ import annotations

import logging
import os

from alembic import command
from alembic.config import Config

from app.infra.logging_config import configure_logging

logger = logging.getLogger(__name__)

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def run_upgrade_head(database_url: str | None = None) -> None:
    config = Config(ALEMBIC_CONFIG)
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    logger.info("upgrading schema to head using %s", ALEMBIC_CONFIG)
    command.upgrade(config, "head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
