from models.event import (
    CacheDocument,
    EventLevel,
    EventStatus,
    EventType,
    HealthEvent,
    ImpactedService,
    SubscriptionContext,
)

__all__ = [
    "CacheDocument",
    "EventLevel",
    "EventStatus",
    "EventType",
    "HealthEvent",
    "ImpactedService",
    "SubscriptionContext",
]
