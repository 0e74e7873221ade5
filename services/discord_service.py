# services/discord_service.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.core.errors import DeliveryFailed
from app.core.logging import get_logger
from app.models.notification import Batch

logger = get_logger()

DEFAULT_TIMEOUT_S = 10.0


class DiscordWebhookClient:
    """
    Sends batches to a Discord webhook, one message per batch.

    Icons travel as multipart file uploads and the embeds point at them via
    attachment://<filename>, so messages never depend on external icon URLs.
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        username: Optional[str] = None,
        avatar_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.username = username
        self.avatar_url = avatar_url
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    async def __aenter__(self) -> "DiscordWebhookClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_payload(self, batch: Batch) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "embeds": batch.embeds(),
            "allowed_mentions": {"parse": []},
        }
        if self.username:
            payload["username"] = self.username
        if self.avatar_url:
            payload["avatar_url"] = self.avatar_url
        attachments = batch.attachments
        if attachments:
            payload["attachments"] = [
                {"id": i, "filename": a.filename} for i, a in enumerate(attachments)
            ]
        return payload

    def build_files(self, batch: Batch) -> List[Tuple[str, Tuple[str, bytes, str]]]:
        return [
            (f"files[{i}]", (a.filename, a.content, a.content_type))
            for i, a in enumerate(batch.attachments)
        ]

    async def send(self, batch: Batch) -> None:
        payload = self.build_payload(batch)
        files = self.build_files(batch)

        try:
            if files:
                response = await self._client.post(
                    self.webhook_url,
                    params={"wait": "true"},
                    data={"payload_json": json.dumps(payload)},
                    files=files,
                )
            else:
                response = await self._client.post(
                    self.webhook_url,
                    params={"wait": "true"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise DeliveryFailed(f"{type(e).__name__}: {e}") from e

        if response.is_success:
            logger.debug(
                "discord_message_sent",
                batch=batch.label,
                embeds=len(batch),
                files=len(files),
                status_code=response.status_code,
            )
            return

        # Discord foutmeldingen zijn kort JSON; knip af voor de logs
        detail = response.text[:300]
        if response.status_code == 429:
            detail = f"rate limited (retry_after={response.headers.get('Retry-After')})"
        raise DeliveryFailed(f"HTTP {response.status_code}: {detail}", status_code=response.status_code)
