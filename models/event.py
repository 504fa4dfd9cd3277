from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class EventType(str, Enum):
    SERVICE_ISSUE = "ServiceIssue"
    PLANNED_MAINTENANCE = "PlannedMaintenance"
    HEALTH_ADVISORY = "HealthAdvisory"
    SECURITY = "Security"


class EventStatus(str, Enum):
    ACTIVE = "Active"
    RESOLVED = "Resolved"


class EventLevel(str, Enum):
    CRITICAL = "Critical"
    ERROR = "Error"
    WARNING = "Warning"
    INFORMATIONAL = "Informational"


def coerce_enum(enum_cls: type[Enum], raw: str) -> Enum | str:
    """Map ``raw`` onto ``enum_cls``, keeping unknown values as plain strings."""
    try:
        return enum_cls(raw)
    except ValueError:
        return raw


def format_timestamp(ts: datetime) -> str:
    """Render a UTC timestamp as ISO 8601 with a ``Z`` suffix."""
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    """Parse ISO 8601 timestamps; naive values are taken as UTC."""
    cleaned = raw.strip().replace("Z", "+00:00")
    parsed = datetime.fromisoformat(cleaned)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class ImpactedService:
    service: str
    region: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"service": self.service, "region": self.region}


@dataclass(frozen=True)
class HealthEvent:
    """Canonical Service Health event, as stored in the cache document.

    Fields:
        id:                Resource id of the event; stable across re-fetches.
        tracking_id:       Azure tracking id shown in the portal (e.g. "VL8T-9Z0").
        event_type:        ``EventType`` member, or the raw upstream string when
                           the value is not recognised.
        status:            ``EventStatus`` member or raw string.
        title:             Short headline.
        summary:           Long description (may contain HTML).
        level:             ``EventLevel`` member or raw string.
        impacted_services: Ordered (service, region) pairs.
        last_update_time:  When the event was last modified upstream (UTC).
    """

    id: str
    tracking_id: str
    event_type: EventType | str
    status: EventStatus | str
    title: str
    summary: str
    level: EventLevel | str
    impacted_services: tuple[ImpactedService, ...]
    last_update_time: datetime

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE

    @property
    def is_resolved(self) -> bool:
        return self.status == EventStatus.RESOLVED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trackingId": self.tracking_id,
            "eventType": _enum_value(self.event_type),
            "status": _enum_value(self.status),
            "title": self.title,
            "summary": self.summary,
            "level": _enum_value(self.level),
            "impactedServices": [s.to_dict() for s in self.impacted_services],
            "lastUpdateTime": format_timestamp(self.last_update_time),
        }

    @classmethod
    def from_dict(cls, data: dict) -> HealthEvent:
        """Rebuild an event from its cached JSON form."""
        return cls(
            id=data["id"],
            tracking_id=data.get("trackingId", ""),
            event_type=coerce_enum(EventType, data["eventType"]),
            status=coerce_enum(EventStatus, data.get("status", "")),
            title=data.get("title", ""),
            summary=data.get("summary", ""),
            level=coerce_enum(EventLevel, data.get("level", "")),
            impacted_services=tuple(
                ImpactedService(service=s.get("service", ""), region=s.get("region", ""))
                for s in data.get("impactedServices", [])
            ),
            last_update_time=parse_timestamp(data["lastUpdateTime"]),
        )


def _enum_value(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class SubscriptionContext:
    """Explicit per-call context handed to the query client and cache store.

    ``credential`` is whatever token source the app was assembled with; the
    core never inspects it.
    """

    subscription_id: str
    credential: object | None = None


@dataclass
class CacheDocument:
    """Merged view of one subscription's health events.

    The storage version token lives beside the document, not inside it.
    """

    last_query_time: datetime | None = None
    events: dict[str, HealthEvent] = field(default_factory=dict)

    @property
    def event_count(self) -> int:
        return len(self.events)

    def sorted_events(self) -> list[HealthEvent]:
        """Events ordered newest update first."""
        return sorted(
            self.events.values(),
            key=lambda e: (e.last_update_time, e.id),
            reverse=True,
        )
