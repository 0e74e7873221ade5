# app/core/errors.py
"""
Error taxonomy for the relay.

HTTP-facing errors carry a status code and a generic public message; the
detailed reason only ever goes to the logs.
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    status_code: int = 500
    public_message: str = "Internal Server Error"


class ValidationError(RelayError):
    """Malformed or unsupported inbound payload (client fault)."""

    status_code = 400
    public_message = "Invalid webhook payload"

    def __init__(self, reason: str, *, public_message: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        if public_message:
            self.public_message = public_message


class AuthenticationError(RelayError):
    status_code = 403
    public_message = "Forbidden"


class InvalidSignature(AuthenticationError):
    pass


class ConfigurationError(RelayError):
    """Server-side misconfiguration. Fatal at startup, HTTP 500 at runtime."""

    status_code = 500
    public_message = "Internal Server Error"


class MissingRawBody(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("raw request body was not captured before signature verification")


class UpstreamFetchFailed(RelayError):
    """A Miniflux API lookup failed; fails the batch that needed it."""

    def __init__(self, resource: str, resource_id: int, cause: BaseException | str) -> None:
        super().__init__(f"fetching {resource} {resource_id} failed: {cause}")
        self.resource = resource
        self.resource_id = resource_id
        self.cause = cause


class DeliveryFailed(RelayError):
    """The Discord webhook rejected or never received a batch."""

    def __init__(self, detail: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.http_status = status_code


class DeliveryQueueFull(RelayError):
    status_code = 503
    public_message = "Service Unavailable"


class DeliveryQueueClosed(RelayError):
    status_code = 503
    public_message = "Service Unavailable"
