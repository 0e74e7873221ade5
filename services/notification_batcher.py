# services/notification_batcher.py
"""
NotificationBatcher: turns Miniflux entries into Discord-ready batches.

- Splits entries into contiguous groups of at most ten (Discord embed limit)
- Resolves feed + icon for every entry of a group concurrently via MetadataCache
- Decodes the feed icon into a named attachment (ICO converted to PNG)
- Picks the first displayable image enclosure as thumbnail
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from app.core.config import DEFAULT_EMBED_COLOR, EntryLinkStyle
from app.core.logging import get_logger
from app.models.miniflux import Feed, Icon, NewEntry
from app.models.notification import Attachment, Batch, NotificationRecord
from services.metadata_cache import MetadataCache

logger = get_logger()

MAX_EMBEDS_PER_MESSAGE = 10
MAX_TITLE_LENGTH = 256
MAX_AUTHOR_LENGTH = 256
MAX_FOOTER_LENGTH = 2048
UNTITLED = "(untitled)"

# Volgorde telt: de eerste enclosure met een van deze types wint.
THUMBNAIL_MIME_TYPES = (
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/avif",
)

ICON_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/svg+xml": "svg",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
    "image/ico": "ico",
}


def partition(entries: Sequence[NewEntry], size: int = MAX_EMBEDS_PER_MESSAGE) -> List[List[NewEntry]]:
    """Split entries into contiguous groups of at most `size`, keeping order."""
    if size < 1:
        raise ValueError("group size must be at least 1")
    return [list(entries[i:i + size]) for i in range(0, len(entries), size)]


def _truncate(text: str, limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def select_thumbnail(entry: NewEntry) -> Optional[str]:
    for enclosure in entry.enclosures or []:
        if (enclosure.mime_type or "").strip().lower() in THUMBNAIL_MIME_TYPES and enclosure.url:
            return enclosure.url
    return None


def icon_extension(mime_type: str) -> str:
    mime = (mime_type or "").strip().lower()
    if mime in ICON_EXTENSIONS:
        return ICON_EXTENSIONS[mime]
    # Onbekend type: neem het subtype ("image/bmp" → "bmp")
    subtype = mime.split("/", 1)[-1] if "/" in mime else ""
    subtype = subtype.split("+", 1)[0]
    return subtype or "bin"


def decode_icon_data(data: str) -> Tuple[str, bytes]:
    """
    Split Miniflux icon data ("image/png;base64,iVBOR...") on the first comma.

    Returns (mime_type, raw bytes). Raises ValueError for malformed data.
    """
    if not data or "," not in data:
        raise ValueError("icon data has no ',' separator")
    prefix, payload = data.split(",", 1)
    mime_type = prefix.split(";", 1)[0].strip().lower()
    if mime_type.startswith("data:"):
        mime_type = mime_type[len("data:"):]
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("icon payload is not valid base64") from e
    return mime_type, raw


def convert_ico_to_png(raw: bytes) -> bytes:
    with Image.open(io.BytesIO(raw)) as img:
        # ICO bevat meerdere formaten; Pillow opent standaard het grootste.
        converted = img.convert("RGBA")
        out = io.BytesIO()
        converted.save(out, format="PNG")
        return out.getvalue()


class NotificationBatcher:
    def __init__(
        self,
        cache: MetadataCache,
        *,
        public_url: str,
        link_style: EntryLinkStyle = "unread",
        convert_ico: bool = True,
        color: int = DEFAULT_EMBED_COLOR,
        group_size: int = MAX_EMBEDS_PER_MESSAGE,
    ) -> None:
        self.cache = cache
        self.public_url = public_url.rstrip("/")
        self.link_style = link_style
        self.convert_ico = convert_ico
        self.color = color
        self.group_size = min(max(1, group_size), MAX_EMBEDS_PER_MESSAGE)

    # ---- links -------------------------------------------------------------

    def entry_link(self, entry: NewEntry) -> str:
        if self.link_style == "original":
            return entry.url
        if self.link_style == "feed":
            return f"{self.public_url}/feed/{entry.feed_id}/entry/{entry.id}"
        return f"{self.public_url}/unread/entry/{entry.id}"

    # ---- icons -------------------------------------------------------------

    def icon_attachment(self, icon: Icon) -> Optional[Attachment]:
        try:
            mime_type, raw = decode_icon_data(icon.data)
        except ValueError as e:
            logger.warning("icon_data_malformed", icon_id=icon.id, error=str(e))
            return None

        mime_type = mime_type or (icon.mime_type or "").lower()
        ext = icon_extension(mime_type)
        content_type = mime_type or "application/octet-stream"

        if ext == "ico" and self.convert_ico:
            try:
                raw = convert_ico_to_png(raw)
                ext, content_type = "png", "image/png"
            except (UnidentifiedImageError, OSError, ValueError) as e:
                logger.warning("icon_conversion_failed", icon_id=icon.id, error=str(e))

        return Attachment(filename=f"icon-{icon.id}.{ext}", content=raw, content_type=content_type)

    # ---- records -----------------------------------------------------------

    def footer_for(self, entry: NewEntry) -> Optional[str]:
        parts = []
        if entry.reading_time:
            parts.append(f"{entry.reading_time} min read")
        if entry.tags:
            parts.append(", ".join(tag for tag in entry.tags if tag))
        text = " · ".join(p for p in parts if p)
        return _truncate(text, MAX_FOOTER_LENGTH) or None

    def build_record(
        self,
        entry: NewEntry,
        feed: Feed,
        icon: Optional[Icon] = None,
        icon_memo: Optional[Dict[int, Optional[Attachment]]] = None,
    ) -> NotificationRecord:
        attachment = None
        if icon is not None:
            if icon_memo is None:
                attachment = self.icon_attachment(icon)
            else:
                # Eén decode/conversie per icoon per batch
                if icon.id not in icon_memo:
                    icon_memo[icon.id] = self.icon_attachment(icon)
                attachment = icon_memo[icon.id]
        return NotificationRecord(
            entry_id=entry.id,
            feed_id=entry.feed_id,
            title=_truncate(entry.title, MAX_TITLE_LENGTH) or UNTITLED,
            url=self.entry_link(entry),
            author_name=_truncate(feed.title, MAX_AUTHOR_LENGTH) or UNTITLED,
            author_url=feed.site_url or None,
            timestamp=entry.display_time,
            color=self.color,
            icon=attachment,
            thumbnail_url=select_thumbnail(entry),
            footer=self.footer_for(entry),
        )

    async def resolve(
        self, entry: NewEntry, icon_memo: Optional[Dict[int, Optional[Attachment]]] = None
    ) -> NotificationRecord:
        """Enrich one entry. UpstreamFetchFailed propagates to the caller."""
        feed = await self.cache.get_feed(entry.feed_id)
        icon = None
        if feed.icon is not None:
            icon = await self.cache.get_icon(feed.icon.icon_id)
        return self.build_record(entry, feed, icon, icon_memo)

    # ---- batches -----------------------------------------------------------

    def partition(self, entries: Sequence[NewEntry]) -> List[List[NewEntry]]:
        return partition(entries, self.group_size)

    async def build_batch(
        self,
        group: Sequence[NewEntry],
        *,
        index: int = 1,
        total: int = 1,
        request_id: Optional[str] = None,
    ) -> Batch:
        """
        Enrich a group concurrently. Any failed lookup fails the whole batch;
        sibling lookups keep running and still populate the cache.
        """
        icon_memo: Dict[int, Optional[Attachment]] = {}
        tasks = [asyncio.ensure_future(self.resolve(entry, icon_memo)) for entry in group]
        try:
            records = await asyncio.gather(*tasks)
        except BaseException:
            # Uitzondering van gather: resterende taken niet laten verweesd loggen
            for task in tasks:
                task.add_done_callback(_consume_exception)
            raise
        return Batch(records=tuple(records), index=index, total=total, request_id=request_id)

    async def build_batches(self, entries: Sequence[NewEntry], *, request_id: Optional[str] = None) -> List[Batch]:
        groups = self.partition(entries)
        total = len(groups)
        batches: List[Batch] = []
        for i, group in enumerate(groups, start=1):
            batches.append(await self.build_batch(group, index=i, total=total, request_id=request_id))
        return batches


def _consume_exception(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()
