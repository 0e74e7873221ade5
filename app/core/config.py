# app/core/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.errors import ConfigurationError

# .env staat in de repo root; app/core/config.py → parents[2]
ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_FILE, override=False)  # pre-load in procesomgeving

EntryLinkStyle = Literal["unread", "feed", "original"]

DEFAULT_EMBED_COLOR = 0x33A2DB


class Settings(BaseSettings):
    # ---- Required: de relay start niet zonder deze waarden ----
    DISCORD_WEBHOOK_URL: str
    MINIFLUX_API_KEY: str
    MINIFLUX_WEBHOOK_SECRET: str
    MINIFLUX_BASE_URL: str
    LISTEN_HOST: str
    LISTEN_PORT: int = Field(..., ge=1, le=65535)

    # ---- Notification rendering ----
    MINIFLUX_PUBLIC_URL: Optional[str] = None
    ENTRY_LINK_STYLE: EntryLinkStyle = "unread"
    CONVERT_ICO_ICONS: bool = True
    EMBED_COLOR: int = DEFAULT_EMBED_COLOR

    # ---- Upstream (Miniflux API) ----
    UPSTREAM_MAX_CONCURRENCY: int = Field(default=4, ge=1)
    UPSTREAM_TIMEOUT_S: float = Field(default=10.0, gt=0)

    # ---- Delivery (Discord) ----
    DELIVERY_MIN_INTERVAL_S: float = Field(default=0.0, ge=0)
    DELIVERY_STRICT_INTERVAL: bool = False
    DELIVERY_QUEUE_MAXSIZE: int = Field(default=100, ge=1)
    DISCORD_TIMEOUT_S: float = Field(default=10.0, gt=0)
    DISCORD_USERNAME: Optional[str] = None
    DISCORD_AVATAR_URL: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("EMBED_COLOR", mode="before")
    @classmethod
    def _parse_color(cls, value):
        # "0x33A2DB", "#33A2DB" of gewoon een int
        if isinstance(value, str):
            cleaned = value.strip().lower()
            if cleaned.startswith("#"):
                return int(cleaned[1:], 16)
            return int(cleaned, 0)
        return value

    @field_validator("MINIFLUX_BASE_URL", "MINIFLUX_PUBLIC_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip().rstrip("/")

    @property
    def public_url(self) -> str:
        """Base URL used for deep links into the Miniflux UI."""
        return self.MINIFLUX_PUBLIC_URL or self.MINIFLUX_BASE_URL


def load_settings() -> Settings:
    """
    Bouw Settings en vertaal pydantic fouten naar een ConfigurationError.
    Alleen veldnamen komen in de melding, nooit de waarden.
    """
    try:
        return Settings()
    except ValidationError as exc:
        missing = sorted(
            str(err["loc"][0]) for err in exc.errors() if err.get("type") == "missing" and err.get("loc")
        )
        invalid = sorted(
            str(err["loc"][0]) for err in exc.errors() if err.get("type") != "missing" and err.get("loc")
        )
        parts = []
        if missing:
            parts.append("missing: " + ", ".join(missing))
        if invalid:
            parts.append("invalid: " + ", ".join(invalid))
        raise ConfigurationError(
            "relay configuration incomplete (" + "; ".join(parts) + f"), checked environment and {ENV_FILE}"
        ) from None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
