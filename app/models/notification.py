from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Attachment:
    """Binary file uploaded alongside a webhook message."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def reference(self) -> str:
        return f"attachment://{self.filename}"


@dataclass(frozen=True)
class NotificationRecord:
    """Display-ready view of one entry, rendered as one Discord embed."""

    entry_id: int
    feed_id: int
    title: str
    url: str
    author_name: str
    timestamp: datetime
    color: int
    author_url: Optional[str] = None
    icon: Optional[Attachment] = None
    thumbnail_url: Optional[str] = None
    footer: Optional[str] = None

    def to_embed(self) -> Dict[str, Any]:
        author: Dict[str, Any] = {"name": self.author_name}
        if self.author_url:
            author["url"] = self.author_url
        if self.icon is not None:
            author["icon_url"] = self.icon.reference

        embed: Dict[str, Any] = {
            "title": self.title,
            "url": self.url,
            "color": self.color,
            "timestamp": self.timestamp.isoformat(),
            "author": author,
        }
        if self.thumbnail_url:
            embed["thumbnail"] = {"url": self.thumbnail_url}
        if self.footer:
            embed["footer"] = {"text": self.footer}
        return embed


@dataclass(frozen=True)
class Batch:
    """Ordered group of at most ten records, sent as one webhook message."""

    records: Tuple[NotificationRecord, ...]
    index: int = 1
    total: int = 1
    request_id: Optional[str] = None
    entry_ids: Tuple[int, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.entry_ids:
            object.__setattr__(self, "entry_ids", tuple(r.entry_id for r in self.records))

    def __len__(self) -> int:
        return len(self.records)

    @property
    def label(self) -> str:
        return f"{self.index}/{self.total}"

    @property
    def attachments(self) -> List[Attachment]:
        # Records van dezelfde feed delen één bestand
        seen: Dict[str, Attachment] = {}
        for record in self.records:
            if record.icon is not None and record.icon.filename not in seen:
                seen[record.icon.filename] = record.icon
        return list(seen.values())

    def embeds(self) -> List[Dict[str, Any]]:
        return [record.to_embed() for record in self.records]
