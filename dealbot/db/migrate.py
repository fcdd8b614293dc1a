"""Database migration helpers."""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dealbot.db.session import create_engine_from_env
from dealbot.db.tables import metadata
from dealbot.utils.log import configure_logging

logger = logging.getLogger(__name__)


def run_migrations(engine: Engine) -> None:
    """Create any missing tables and indexes."""
    metadata.create_all(engine)
    logger.info("Schema ready: %s", ", ".join(sorted(metadata.tables)))


def main() -> None:
    load_dotenv()
    configure_logging()
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
