"""Structured logging for the immune engine.

Engine modules log through plain ``logging.getLogger(__name__)`` loggers.
This module is what the composing service calls once at startup to get
JSON records that carry the agent, wallet and transaction being processed.
"""
from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

agent_id_var: ContextVar[Optional[str]] = ContextVar("immune_agent_id", default=None)
wallet_id_var: ContextVar[Optional[str]] = ContextVar("immune_wallet_id", default=None)
transaction_id_var: ContextVar[Optional[str]] = ContextVar("immune_transaction_id", default=None)

_CONTEXT_FIELDS = ("agent_id", "wallet_id", "transaction_id")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"} | set(_CONTEXT_FIELDS)


class ImmuneContextFilter(logging.Filter):
    """Logging filter that stamps the current agent/wallet/transaction on records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.agent_id = agent_id_var.get()
        record.wallet_id = wallet_id_var.get()
        record.transaction_id = transaction_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    stream: Any = None,
) -> logging.Handler:
    """
    Attach a handler for the ``sardis_immune`` logger hierarchy.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or a plain format (False)
        stream: Output stream, stdout by default

    Returns:
        The installed handler, so callers can remove it on teardown.
    """
    package_logger = logging.getLogger("sardis_immune")
    package_logger.setLevel(getattr(logging, level.upper()))

    for handler in package_logger.handlers[:]:
        if getattr(handler, "_sardis_immune", False):
            package_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(agent_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(ImmuneContextFilter())
    handler._sardis_immune = True  # type: ignore[attr-defined]
    package_logger.addHandler(handler)
    return handler


class LogContext:
    """Context manager for temporary logging context."""

    def __init__(
        self,
        agent_id: Optional[str] = None,
        wallet_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ):
        self.agent_id = agent_id
        self.wallet_id = wallet_id
        self.transaction_id = transaction_id
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        if self.agent_id:
            self._tokens.append((agent_id_var, agent_id_var.set(self.agent_id)))
        if self.wallet_id:
            self._tokens.append((wallet_id_var, wallet_id_var.set(self.wallet_id)))
        if self.transaction_id:
            self._tokens.append((transaction_id_var, transaction_id_var.set(self.transaction_id)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
