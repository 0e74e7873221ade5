from __future__ import annotations

import pytest

from app.core import config
from app.core.config import DEFAULT_EMBED_COLOR, load_settings
from app.core.errors import ConfigurationError

REQUIRED = {
    "DISCORD_WEBHOOK_URL": "https://discord.test/api/webhooks/1/very-secret-token",
    "MINIFLUX_API_KEY": "api-key-value",
    "MINIFLUX_WEBHOOK_SECRET": "webhook-secret-value",
    "MINIFLUX_BASE_URL": "https://reader.test/",
    "LISTEN_HOST": "0.0.0.0",
    "LISTEN_PORT": "8080",
}

OPTIONAL = [
    "MINIFLUX_PUBLIC_URL",
    "ENTRY_LINK_STYLE",
    "CONVERT_ICO_ICONS",
    "EMBED_COLOR",
    "DELIVERY_MIN_INTERVAL_S",
    "DELIVERY_STRICT_INTERVAL",
]


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    config.get_settings.cache_clear()
    yield monkeypatch
    config.get_settings.cache_clear()


def test_complete_environment_loads_with_defaults(env):
    settings = load_settings()

    assert settings.LISTEN_PORT == 8080
    assert settings.MINIFLUX_BASE_URL == "https://reader.test"
    assert settings.public_url == "https://reader.test"
    assert settings.ENTRY_LINK_STYLE == "unread"
    assert settings.CONVERT_ICO_ICONS is True
    assert settings.EMBED_COLOR == DEFAULT_EMBED_COLOR
    assert settings.UPSTREAM_MAX_CONCURRENCY == 4
    assert settings.DELIVERY_MIN_INTERVAL_S == 0.0
    assert settings.DELIVERY_STRICT_INTERVAL is False


def test_missing_required_values_name_fields_but_not_values(env):
    env.delenv("MINIFLUX_WEBHOOK_SECRET")
    env.delenv("LISTEN_PORT")

    with pytest.raises(ConfigurationError) as excinfo:
        load_settings()

    message = str(excinfo.value)
    assert "MINIFLUX_WEBHOOK_SECRET" in message
    assert "LISTEN_PORT" in message
    for value in REQUIRED.values():
        if len(value) > 6:
            assert value not in message


def test_invalid_value_is_reported_as_invalid(env):
    env.setenv("LISTEN_PORT", "not-a-port")

    with pytest.raises(ConfigurationError, match="invalid: LISTEN_PORT"):
        load_settings()


@pytest.mark.parametrize("raw, expected", [("0xFF0000", 0xFF0000), ("#00ff00", 0x00FF00), ("255", 255)])
def test_embed_color_accepts_hex_and_decimal(env, raw: str, expected: int):
    env.setenv("EMBED_COLOR", raw)

    assert load_settings().EMBED_COLOR == expected


def test_public_url_overrides_base_url_for_links(env):
    env.setenv("MINIFLUX_PUBLIC_URL", "https://public.reader.test/")

    settings = load_settings()

    assert settings.public_url == "https://public.reader.test"
    assert settings.MINIFLUX_BASE_URL == "https://reader.test"


def test_unknown_link_style_is_rejected(env):
    env.setenv("ENTRY_LINK_STYLE", "sideways")

    with pytest.raises(ConfigurationError, match="ENTRY_LINK_STYLE"):
        load_settings()


def test_main_exits_nonzero_on_missing_configuration(env):
    from app.main import main

    env.delenv("DISCORD_WEBHOOK_URL")
    config.get_settings.cache_clear()

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
