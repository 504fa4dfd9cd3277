from __future__ import annotations


class SyncError(Exception):
    """Base for every failure a sync run can surface to its caller.

    ``public_message`` is safe to return over HTTP; ``str(exc)`` may carry
    upstream detail and is only logged.
    """

    public_message = "Service health synchronization failed"

    def __init__(self, message: str = "", public_message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class ValidationError(SyncError):
    public_message = "Invalid request"


class InvalidSubscriptionIdError(ValidationError):
    """Subscription id unusable as an Azure id or a cache key.

    The class name carries the Azure ``InvalidSubscriptionId`` code, so the
    retry classifier treats it as permanent.
    """

    public_message = "SubscriptionId must be an Azure subscription GUID"


class UpstreamError(SyncError):
    """A remote call failed after the retry policy gave up."""

    public_message = "Upstream service call failed"

    def __init__(
        self,
        message: str = "",
        public_message: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, public_message)
        self.attempts = attempts


class PermanentUpstreamError(UpstreamError):
    public_message = "Upstream request was rejected (authorization, policy or invalid request)"


class TransientUpstreamError(UpstreamError):
    public_message = "Upstream service is unavailable; retries exhausted"


class CacheConflictError(SyncError):
    public_message = "Cache was modified concurrently; retry the request"


class SyncTimeoutError(SyncError):
    public_message = "Synchronization exceeded its time budget"


class UpstreamHttpError(Exception):
    """Raw non-success response from an Azure REST endpoint.

    Raised by the HTTP clients before classification; ``code`` is the Azure
    error code from the response body (e.g. ``AuthorizationFailed``) when one
    was present.
    """

    def __init__(self, status_code: int, code: str = "", message: str = "") -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        parts = [f"HTTP {status_code}"]
        if code:
            parts.append(code)
        if message:
            parts.append(message)
        super().__init__(": ".join(parts))


def error_from_response(status_code: int, body: object) -> UpstreamHttpError:
    """Build an ``UpstreamHttpError`` from an Azure error payload.

    ARM returns ``{"error": {"code": ..., "message": ...}}``; Blob storage
    returns XML, which is passed in as text and only scanned for the code.
    """
    code = ""
    message = ""
    if isinstance(body, dict):
        err = body.get("error") or {}
        if isinstance(err, dict):
            code = str(err.get("code") or "")
            message = str(err.get("message") or "")
    elif isinstance(body, str):
        start = body.find("<Code>")
        end = body.find("</Code>")
        if start != -1 and end > start:
            code = body[start + len("<Code>"):end]
    return UpstreamHttpError(status_code, code, message)
