# api/routers/miniflux_webhook.py
"""
Miniflux webhook endpoint.

Miniflux POSTs here whenever it fetched new entries. This endpoint:
1. Captures the raw body (dependency) and checks X-Miniflux-Signature
2. Rejects everything but "new_entries" events
3. Hands the entries to the relay, which batches, enriches and enqueues them
"""

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings
from app.core.errors import InvalidSignature, MissingRawBody, ValidationError
from app.core.logging import get_logger
from app.core.request_id import get_request_id
from app.deps.raw_body import capture_raw_body, get_captured_raw_body
from app.deps.relay import get_relay_service, get_relay_settings
from app.models.miniflux import SUPPORTED_EVENT_TYPES, NewEntriesEvent
from services.relay_service import RelayService
from services.signature_service import SIGNATURE_HEADER, require_valid_signature

logger = get_logger()

router = APIRouter(prefix="/miniflux", tags=["miniflux"])


def parse_event(raw_body: bytes) -> NewEntriesEvent:
    try:
        payload: Any = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"body is not JSON: {e}", public_message="Invalid JSON payload") from e

    if not isinstance(payload, dict):
        raise ValidationError("body is not a JSON object", public_message="Invalid JSON payload")

    event_type = payload.get("event_type")
    if event_type not in SUPPORTED_EVENT_TYPES:
        raise ValidationError(
            f"unsupported event_type {event_type!r}",
            public_message="Unsupported event type",
        )

    try:
        return NewEntriesEvent.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"payload failed validation ({e.error_count()} errors)") from e


@router.post("/webhook", dependencies=[Depends(capture_raw_body)])
async def miniflux_webhook(
    request: Request,
    x_miniflux_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    settings: Settings = Depends(get_relay_settings),
    relay: RelayService = Depends(get_relay_service),
):
    if not x_miniflux_signature:
        logger.warning("missing_signature", path=str(request.url.path))
        raise ValidationError("signature header missing", public_message="Missing signature header")

    raw_body = get_captured_raw_body(request)
    try:
        require_valid_signature(settings.MINIFLUX_WEBHOOK_SECRET, raw_body, x_miniflux_signature)
    except MissingRawBody:
        logger.error("raw_body_missing", path=str(request.url.path))
        raise
    except InvalidSignature:
        logger.warning("signature_mismatch", path=str(request.url.path))
        raise

    event = parse_event(raw_body)
    result = await relay.handle_new_entries(event, request_id=get_request_id())

    logger.info(
        "miniflux_webhook_processed",
        entries=result.entries,
        batches_enqueued=result.batches_enqueued,
        batches_failed=result.batches_failed,
        failed_entry_ids=result.failed_entry_ids,
    )
    return {"done": True}
