from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Miniflux stuurt "0001-01-01T00:00:00Z" voor ontbrekende tijdstempels.
_ZERO_TIME_PREFIX = "0001-01-01"

NEW_ENTRIES_EVENT = "new_entries"
SAVE_ENTRY_EVENT = "save_entry"
SUPPORTED_EVENT_TYPES = (NEW_ENTRIES_EVENT,)


class _MinifluxModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Enclosure(_MinifluxModel):
    id: int = 0
    user_id: int = 0
    entry_id: int = 0
    url: str
    mime_type: str = ""
    size: int = 0
    media_progression: int = 0


class NewEntry(_MinifluxModel):
    id: int
    user_id: int = 0
    feed_id: int
    status: str = "unread"
    hash: str = ""
    title: str = ""
    url: str
    comments_url: str = ""
    published_at: Optional[datetime] = None
    created_at: datetime
    changed_at: Optional[datetime] = None
    content: str = ""
    share_code: str = ""
    starred: bool = False
    reading_time: int = Field(default=0, ge=0)
    enclosures: Optional[List[Enclosure]] = None
    tags: Optional[List[str]] = None

    @field_validator("published_at", "changed_at", mode="before")
    @classmethod
    def _zero_time_is_missing(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, str) and value.startswith(_ZERO_TIME_PREFIX):
            return None
        return value

    @property
    def display_time(self) -> datetime:
        return self.published_at or self.created_at


class WebhookFeed(_MinifluxModel):
    """Feed summary carried by a webhook event."""

    id: int
    user_id: int = 0
    feed_url: str = ""
    site_url: str = ""
    title: str = ""
    checked_at: Optional[datetime] = None


class NewEntriesEvent(_MinifluxModel):
    event_type: Literal["new_entries"]
    feed: WebhookFeed
    entries: List[NewEntry] = Field(default_factory=list)


class FeedCategory(_MinifluxModel):
    id: int
    user_id: int = 0
    title: str = ""


class FeedIconRef(_MinifluxModel):
    feed_id: int
    icon_id: int


class Feed(_MinifluxModel):
    """Feed as returned by GET /v1/feeds/{id}."""

    id: int
    user_id: int = 0
    title: str = ""
    site_url: str = ""
    feed_url: str = ""
    category: Optional[FeedCategory] = None
    icon: Optional[FeedIconRef] = None

    @field_validator("icon", mode="before")
    @classmethod
    def _empty_icon_is_missing(cls, value):
        # Oudere Miniflux versies sturen {"feed_id": 0, "icon_id": 0} zonder icoon.
        if isinstance(value, dict) and not value.get("icon_id"):
            return None
        return value


class Icon(_MinifluxModel):
    """Icon as returned by GET /v1/icons/{id}; data is "<mime>;base64,<payload>"."""

    id: int
    data: str
    mime_type: str = ""
