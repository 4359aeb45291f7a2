"""Loguru setup for the CRM service.

Every record carries the request id and acting user code from the request
context, so audience evaluations and campaign writes can be traced back to
the HTTP call that caused them.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from sys import stdout
from typing import Any

from loguru import logger

from crm.core.config import settings

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")
user_code_ctx_var: ContextVar[str] = ContextVar("user_code", default="-")

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("passlib.handlers.bcrypt", "aiomysql", "httpx")


def _patch_record(record: dict[str, Any]) -> None:
    record["extra"].setdefault("request_id", request_id_ctx_var.get())
    record["extra"].setdefault("user_code", user_code_ctx_var.get())


def setup_logging(level: str | None = None) -> None:
    """Route application logs through a single Loguru sink on stdout.

    JSON output is the default; set ``LOG_JSON=false`` for readable lines
    during local development.
    """

    level = level or settings.LOG_LEVEL
    logging.basicConfig(level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.remove()
    logger.configure(patcher=_patch_record)
    logger.add(
        stdout,
        level=level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        serialize=settings.LOG_JSON,
    )
