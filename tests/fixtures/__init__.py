# tests/fixtures/__init__.py
"""
Test fixtures for the relay tests.

Factory functions for creating test data:
- make_entry() / make_event_payload()
- make_feed() / make_icon_payload()
- sign()
- FakeMiniflux / RecordingSender test doubles
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
from typing import Any, Dict, List, Optional

from PIL import Image

from app.core.config import Settings
from app.core.errors import DeliveryFailed, UpstreamFetchFailed
from app.models.miniflux import Feed, Icon
from app.models.notification import Batch
from services.signature_service import compute_signature

SECRET = "test-webhook-secret"


def _png_b64(size: int = 1) -> str:
    out = io.BytesIO()
    Image.new("RGBA", (size, size), (0, 128, 255, 255)).save(out, format="PNG")
    return base64.b64encode(out.getvalue()).decode("ascii")


PNG_1PX = _png_b64()


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "DISCORD_WEBHOOK_URL": "https://discord.test/api/webhooks/1/token",
        "MINIFLUX_API_KEY": "test-api-key",
        "MINIFLUX_WEBHOOK_SECRET": SECRET,
        "MINIFLUX_BASE_URL": "https://reader.test",
        "LISTEN_HOST": "127.0.0.1",
        "LISTEN_PORT": 8080,
    }
    values.update(overrides)
    return Settings(**values)


def make_entry(
    entry_id: int = 1,
    feed_id: int = 10,
    title: str = "Test Entry",
    published_at: Optional[str] = "2024-05-01T10:00:00Z",
    enclosures: Optional[List[Dict[str, Any]]] = None,
    tags: Optional[List[str]] = None,
    reading_time: int = 3,
) -> Dict[str, Any]:
    """Factory for a Miniflux entry as it appears in a new_entries webhook."""
    return {
        "id": entry_id,
        "user_id": 1,
        "feed_id": feed_id,
        "status": "unread",
        "hash": f"hash-{entry_id}",
        "title": title,
        "url": f"https://blog.test/posts/{entry_id}",
        "comments_url": "",
        "published_at": published_at,
        "created_at": "2024-05-01T10:05:00Z",
        "changed_at": "2024-05-01T10:05:00Z",
        "content": "<p>Hello</p>",
        "share_code": "",
        "starred": False,
        "reading_time": reading_time,
        "enclosures": enclosures,
        "tags": tags,
    }


def make_event_payload(entries: List[Dict[str, Any]], event_type: str = "new_entries", feed_id: int = 10) -> Dict[str, Any]:
    return {
        "event_type": event_type,
        "feed": {
            "id": feed_id,
            "user_id": 1,
            "feed_url": "https://blog.test/feed.xml",
            "site_url": "https://blog.test",
            "title": "Test Blog",
            "checked_at": "2024-05-01T10:05:00Z",
        },
        "entries": entries,
    }


def make_feed_payload(feed_id: int = 10, icon_id: Optional[int] = 100, title: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": feed_id,
        "user_id": 1,
        "title": title or f"Feed {feed_id}",
        "site_url": f"https://site{feed_id}.test",
        "feed_url": f"https://site{feed_id}.test/feed.xml",
        "category": {"id": 1, "user_id": 1, "title": "All"},
        "icon": {"feed_id": feed_id, "icon_id": icon_id} if icon_id else None,
    }


def make_feed(feed_id: int = 10, icon_id: Optional[int] = 100, title: Optional[str] = None) -> Feed:
    return Feed.model_validate(make_feed_payload(feed_id, icon_id, title))


def make_icon_payload(icon_id: int = 100, mime_type: str = "image/png", payload_b64: str = PNG_1PX) -> Dict[str, Any]:
    return {"id": icon_id, "data": f"{mime_type};base64,{payload_b64}", "mime_type": mime_type}


def make_icon(icon_id: int = 100, mime_type: str = "image/png", payload_b64: str = PNG_1PX) -> Icon:
    return Icon.model_validate(make_icon_payload(icon_id, mime_type, payload_b64))


def make_ico_b64(size: int = 16) -> str:
    img = Image.new("RGBA", (size, size), (255, 0, 0, 255))
    out = io.BytesIO()
    img.save(out, format="ICO", sizes=[(size, size)])
    return base64.b64encode(out.getvalue()).decode("ascii")


def sign(body: bytes, secret: str = SECRET) -> str:
    return compute_signature(secret, body)


def encode(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


class FakeMiniflux:
    """Stands in for MinifluxClient; counts calls and can fail or stall per id."""

    def __init__(
        self,
        *,
        feeds: Optional[Dict[int, Feed]] = None,
        icons: Optional[Dict[int, Icon]] = None,
        delay: float = 0.0,
    ) -> None:
        self.feeds = feeds or {}
        self.icons = icons or {}
        self.delay = delay
        self.feed_calls: List[int] = []
        self.icon_calls: List[int] = []
        self.failing_feeds: set[int] = set()

    async def fetch_feed(self, feed_id: int) -> Feed:
        self.feed_calls.append(feed_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if feed_id in self.failing_feeds or feed_id not in self.feeds:
            raise UpstreamFetchFailed("feed", feed_id, "HTTP 404")
        return self.feeds[feed_id]

    async def fetch_icon(self, icon_id: int) -> Icon:
        self.icon_calls.append(icon_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if icon_id not in self.icons:
            raise UpstreamFetchFailed("icon", icon_id, "HTTP 404")
        return self.icons[icon_id]


class RecordingSender:
    """Stands in for DiscordWebhookClient; records batches and send start times."""

    def __init__(self, *, latencies: Optional[List[float]] = None, fail_on: Optional[set[int]] = None) -> None:
        self.latencies = list(latencies or [])
        self.fail_on = fail_on or set()
        self.sent: List[Batch] = []
        self.starts: List[float] = []
        self.ends: List[float] = []
        self.active = 0
        self.max_active = 0

    async def send(self, batch: Batch) -> None:
        loop = asyncio.get_running_loop()
        self.starts.append(loop.time())
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            call_no = len(self.starts) - 1
            if call_no < len(self.latencies):
                await asyncio.sleep(self.latencies[call_no])
            if batch.index in self.fail_on:
                raise DeliveryFailed("HTTP 400: bad embed", status_code=400)
            self.sent.append(batch)
        finally:
            self.active -= 1
            self.ends.append(loop.time())
