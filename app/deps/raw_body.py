# app/deps/raw_body.py
from __future__ import annotations

from fastapi import HTTPException, Request

from app.core.logging import logger

__all__ = ["MAX_BODY_BYTES", "capture_raw_body", "get_captured_raw_body"]

MAX_BODY_BYTES = 1024 * 1024  # 1 MiB


async def capture_raw_body(request: Request) -> bytes:
    """
    Read the request body once, unparsed, and keep it on request.state.

    Signature verification needs these exact bytes; routes parse JSON from
    them afterwards.
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        logger.warning("raw_body_too_large", content_length=int(declared))
        raise HTTPException(status_code=413, detail="Payload Too Large")

    # Chunked uploads hebben geen content-length: tel mee tijdens het lezen
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > MAX_BODY_BYTES:
            logger.warning("raw_body_too_large", received=received)
            raise HTTPException(status_code=413, detail="Payload Too Large")
        chunks.append(chunk)

    body = b"".join(chunks)
    request.state.raw_body = body
    return body


def get_captured_raw_body(request: Request) -> bytes | None:
    return getattr(request.state, "raw_body", None)
