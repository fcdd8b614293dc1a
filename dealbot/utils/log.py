"""Logging setup shared by the worker, the API and the scripts."""

from __future__ import annotations

import logging
import os

SECRET_ENV_VARS = ("TELEGRAM_BOT_TOKEN", "CATALOG_COOKIE", "CURSOR_SECRET")


class RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: str | None = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def collect_secrets() -> list[str]:
    values = [os.environ.get(name) for name in SECRET_ENV_VARS]
    return [value for value in values if value]


def configure_logging(level: str | None = None) -> None:
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    handler = logging.StreamHandler()
    handler.setFormatter(
        RedactingFormatter(
            collect_secrets(),
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), handlers=[handler], force=True)
