"""
logging_config.py — Loguru setup for SecondLook

Loguru is the single logging backend. Stdlib logging is intercepted so the
services that use logging.getLogger() land in the same sinks as the ones
that use loguru's bound logger directly.

Business Rules:
- JSON lines when APP_ENV=production, human-readable otherwise
- Bound extras whose key names a secret (tokens, api keys, client secrets)
  are replaced with "[redacted]" before any sink sees them
- Connector rows are never logged; services log counts and ids only

Called by: secondlook/main.py (lifespan)
Depends on: secondlook/config.py (log_level)
"""

import logging
import os
import sys

from loguru import logger

REDACTED = "[redacted]"
SECRET_KEY_PARTS = ("token", "secret", "api_key", "password", "authorization")

DEV_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "{message} {extra}"
)
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def _is_secret(key: str) -> bool:
    key = key.lower()
    # token_version is a counter, not a credential
    return key != "token_version" and any(part in key for part in SECRET_KEY_PARTS)


def redact_secrets(record) -> None:
    extra = record["extra"]
    for key in list(extra):
        if _is_secret(key):
            extra[key] = REDACTED


def setup_logging(level: str | None = None) -> None:
    """Replace loguru's handlers and route stdlib logging through them."""
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    is_production = os.getenv("APP_ENV", "").lower() == "production"

    if is_production:
        handler = {"sink": sys.stdout, "level": log_level, "format": "{message}", "serialize": True}
    else:
        handler = {"sink": sys.stdout, "level": log_level, "format": DEV_FORMAT, "colorize": True}
    logger.configure(handlers=[handler], patcher=redact_secrets)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured", level=log_level, production=is_production)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())
