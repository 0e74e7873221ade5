# app/core/logging.py
from __future__ import annotations

import logging
import sys
from typing import Any, Dict
from datetime import datetime, timezone

import structlog

from app.core.request_id import get_delivery_id, get_request_id


# -------- Processors ---------------------------------------------------------

def _add_ts(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # ISO 8601 UTC timestamp, kort & sorteerbaar
    event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    return event_dict

def _add_level(_: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # structlog geeft de methodenaam door ("info", "warning", ...)
    level = event_dict.get("level") or method_name or "info"
    event_dict["level"] = str(level).lower()
    return event_dict

def _add_service(service_name: str):
    def _inner(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _inner

def _add_correlation_ids(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    rid = get_request_id()
    if rid:
        event_dict.setdefault("request_id", rid)
    did = get_delivery_id()
    if did:
        event_dict.setdefault("delivery_id", did)
    return event_dict

# Key-gebaseerde redactor: secrets en signatures komen nooit in de logs.
_SECRET_KEYS = {
    "authorization", "auth", "token", "x-auth-token", "api_key", "apikey",
    "password", "secret", "webhook_secret", "signature", "expected_signature",
    "webhook_url",
}

def _secret_guard(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in list(event_dict.keys()):
        lk = str(k).lower()
        if lk in _SECRET_KEYS:
            event_dict[k] = "***redacted***"
    return event_dict


# -------- Public API ---------------------------------------------------------

_logger: structlog.BoundLogger | None = None

def configure_logging(service_name: str = "relay", *, level: int = logging.INFO) -> None:
    """
    Configureer één globale structlog stack voor de API en de delivery worker.
    """
    global _logger

    # Stdlib (uvicorn, httpx) → stderr
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )

    processors = [
        _add_ts,
        _add_level,
        _add_service(service_name),
        _add_correlation_ids,
        _secret_guard,
        structlog.processors.EventRenamer("event"),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _logger = structlog.get_logger()

def get_logger() -> structlog.BoundLogger:
    global _logger
    if _logger is None:
        configure_logging("relay")
    return _logger

def parse_level(name: str) -> int:
    """Map a LOG_LEVEL string ("debug", "INFO", ...) to a stdlib level."""
    value = logging.getLevelName(str(name or "INFO").strip().upper())
    return value if isinstance(value, int) else logging.INFO

logger = get_logger()
