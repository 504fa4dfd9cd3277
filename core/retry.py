"""Bounded retry with exponential backoff and error classification.

Every remote call (Resource Graph query, blob read, blob write) goes through
``RetryExecutor.execute``.  Failures are classified by scanning the error's
message, Azure error code and HTTP status:

    Permanent  -> fail after exactly one attempt
    Transient  -> retry with backoff (2s, 4s, 8s, 16s, 32s, 32s, ...)
    Unknown    -> retried like transient

``execute`` never raises for a failed operation; it returns a
``RetryOutcome`` holding either the value or the original error together with
its classification.  Callers that want an exception call ``unwrap()``.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from core.errors import (
    PermanentUpstreamError,
    SyncTimeoutError,
    TransientUpstreamError,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY = 2.0
DEFAULT_MAX_DELAY = 32.0

_PERMANENT_RE = re.compile(
    r"AuthorizationFailed|InvalidAuthenticationToken|Forbidden"
    r"|InvalidResourceGroupName|InvalidSubscriptionId"
    r"|RequestDisallowedByPolicy|PolicyViolation"
    r"|InvalidQuery|BadRequest"
)
_POLICY_RE = re.compile(r"RequestDisallowedByPolicy|PolicyViolation")
_PERMANENT_STATUS = frozenset({400, 401, 403})

_TRANSIENT_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"TooManyRequests|\b429\b"), "Rate limit (429)"),
    (re.compile(r"ServiceUnavailable|\b503\b"), "Service unavailable (503)"),
    (re.compile(r"GatewayTimeout|\b504\b"), "Gateway timeout (504)"),
    (re.compile(r"InternalServerError|\b500\b"), "Internal server error (500)"),
    (re.compile(r"Conflict|\b409\b"), "Conflict (409)"),
)


class ErrorKind(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


def _error_text(exc: BaseException) -> str:
    parts = [type(exc).__name__, str(exc)]
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if value:
            parts.append(str(value))
    return " ".join(parts)


def classify(exc: BaseException) -> tuple[ErrorKind, str]:
    """Return the error kind and a short human label for ``exc``."""
    text = _error_text(exc)
    status = getattr(exc, "status_code", None)

    if _PERMANENT_RE.search(text) or status in _PERMANENT_STATUS:
        if _POLICY_RE.search(text):
            return ErrorKind.PERMANENT, "Policy denial"
        return ErrorKind.PERMANENT, "Permanent failure"

    for pattern, label in _TRANSIENT_PATTERNS:
        if pattern.search(text):
            return ErrorKind.TRANSIENT, label

    if isinstance(status, int) and status >= 500:
        return ErrorKind.TRANSIENT, f"Server error ({status})"

    if isinstance(exc, TimeoutError) or "Timeout" in type(exc).__name__:
        return ErrorKind.TRANSIENT, "Timeout"

    return ErrorKind.UNKNOWN, "Unknown error"


class Deadline:
    """Soft time budget for one sync run, measured on a monotonic clock."""

    def __init__(
        self,
        budget_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = clock() + budget_seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of ``RetryExecutor.execute``.

    Exactly one of ``value`` / ``error`` is meaningful, selected by ``ok``.
    ``error`` is the operation's original exception, untouched.
    """

    description: str
    attempts: int
    value: T | None = None
    error: BaseException | None = None
    kind: ErrorKind | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out

    def unwrap(self) -> T:
        """Return the value or raise the matching ``SyncError`` subclass."""
        if self.ok:
            return self.value  # type: ignore[return-value]

        if self.timed_out:
            raise SyncTimeoutError(
                f"{self.description} exceeded the run deadline after "
                f"{self.attempts} attempt(s)"
            ) from self.error

        message = f"{self.description} failed after {self.attempts} attempt(s): {self.error}"
        if self.kind is ErrorKind.PERMANENT:
            raise PermanentUpstreamError(message, attempts=self.attempts) from self.error
        raise TransientUpstreamError(message, attempts=self.attempts) from self.error


class RetryExecutor:
    """Runs an async operation with bounded retries.

    ``sleep`` is injectable so tests can observe the backoff schedule without
    waiting for it.
    """

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int,
        deadline: Deadline | None = None,
        description: str = "operation",
    ) -> RetryOutcome[T]:
        delay = self.base_delay
        last_error: BaseException | None = None
        last_kind: ErrorKind | None = None
        attempt = 0

        while attempt < max(1, max_attempts):
            if deadline is not None and deadline.expired:
                log.error("Deadline reached before attempt %d: %s", attempt + 1, description)
                return RetryOutcome(description, attempt, error=last_error,
                                    kind=last_kind, timed_out=True)

            attempt += 1
            log.debug("Attempt %d/%d: %s", attempt, max_attempts, description)
            try:
                if deadline is None:
                    value = await operation()
                else:
                    value = await asyncio.wait_for(operation(), timeout=deadline.remaining())
            except Exception as exc:
                kind, label = classify(exc)
                last_error, last_kind = exc, kind

                # A permanent failure is reported as such even at the deadline.
                if kind is not ErrorKind.PERMANENT and deadline is not None and deadline.expired:
                    log.error("Deadline exceeded during attempt %d: %s", attempt, description)
                    return RetryOutcome(description, attempt, error=exc,
                                        kind=kind, timed_out=True)

                if kind is ErrorKind.PERMANENT:
                    log.error("Permanent failure detected: %s (%s)", description, exc)
                    if label == "Policy denial":
                        log.warning(
                            "%s was blocked by an Azure Policy assignment; "
                            "review the assignments for this scope",
                            description,
                        )
                    return RetryOutcome(description, attempt, error=exc, kind=kind)

                if attempt >= max_attempts:
                    log.error("Failed after %d attempts: %s (%s)", attempt, description, exc)
                    return RetryOutcome(description, attempt, error=exc, kind=kind)

                if deadline is not None and deadline.remaining() <= delay:
                    log.error(
                        "Not retrying %s: %.1fs backoff exceeds remaining budget %.1fs",
                        description, delay, deadline.remaining(),
                    )
                    return RetryOutcome(description, attempt, error=exc,
                                        kind=kind, timed_out=True)

                log.warning(
                    "%s - retrying %s in %.0fs (attempt %d/%d): %s",
                    label, description, delay, attempt, max_attempts,
                    str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                )
                await self._sleep(delay)
                delay = min(delay * 2, self.max_delay)
            else:
                if attempt > 1:
                    log.info("Succeeded on attempt %d: %s", attempt, description)
                return RetryOutcome(description, attempt, value=value)

        return RetryOutcome(description, attempt, error=last_error, kind=last_kind)
