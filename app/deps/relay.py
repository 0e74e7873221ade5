# app/deps/relay.py
from __future__ import annotations

from fastapi import Request

from app.core.config import Settings
from app.core.errors import ConfigurationError
from services.relay_service import RelayService

__all__ = ["get_relay_service", "get_relay_settings"]


def get_relay_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise ConfigurationError("relay settings not initialised on app.state")
    return settings


def get_relay_service(request: Request) -> RelayService:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise ConfigurationError("relay service not initialised on app.state")
    return relay
