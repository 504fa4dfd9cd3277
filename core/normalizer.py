from __future__ import annotations

import logging
from dataclasses import dataclass, field

from models.event import (
    EventLevel,
    EventStatus,
    EventType,
    HealthEvent,
    ImpactedService,
    coerce_enum,
    parse_timestamp,
)

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "eventType", "lastUpdateTime")


@dataclass(frozen=True)
class Rejection:
    """A raw row that could not become a ``HealthEvent``."""

    reason: str
    row_id: str | None = None


@dataclass
class NormalizationResult:
    events: list[HealthEvent] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return len(self.rejections)


def _text(value: object) -> str:
    return "" if value is None else str(value).strip()


def _flatten_impact(impact: object) -> tuple[ImpactedService, ...]:
    """Turn the upstream ``Impact`` array into ordered (service, region) pairs.

    Resource Graph shape::

        [{"ImpactedService": "Storage",
          "ImpactedRegions": [{"ImpactedRegion": "West Europe"}, ...]}, ...]
    """
    if not isinstance(impact, list):
        return ()

    pairs: list[ImpactedService] = []
    for entry in impact:
        if not isinstance(entry, dict):
            continue
        service = _text(entry.get("ImpactedService"))
        regions = entry.get("ImpactedRegions") or []
        region_names = [
            _text(r.get("ImpactedRegion")) if isinstance(r, dict) else _text(r)
            for r in regions
        ]
        if not region_names:
            pairs.append(ImpactedService(service=service))
            continue
        for region in region_names:
            pairs.append(ImpactedService(service=service, region=region))
    return tuple(pairs)


class EventNormalizer:
    """Converts Resource Graph rows into canonical ``HealthEvent`` records.

    A malformed row is rejected on its own; it never fails the batch.
    """

    def normalize(self, row: dict) -> HealthEvent | Rejection:
        if not isinstance(row, dict):
            return Rejection(reason="row is not an object")

        row_id = _text(row.get("id")) or None
        missing = [name for name in REQUIRED_FIELDS if not _text(row.get(name))]
        if missing:
            return Rejection(reason=f"missing {', '.join(missing)}", row_id=row_id)

        try:
            last_update = parse_timestamp(_text(row["lastUpdateTime"]))
        except ValueError:
            return Rejection(
                reason=f"unparsable lastUpdateTime {row['lastUpdateTime']!r}",
                row_id=row_id,
            )

        return HealthEvent(
            id=_text(row["id"]),
            tracking_id=_text(row.get("trackingId")),
            event_type=coerce_enum(EventType, _text(row["eventType"])),
            status=coerce_enum(EventStatus, _text(row.get("status"))),
            title=_text(row.get("title")),
            summary=_text(row.get("summary")),
            level=coerce_enum(EventLevel, _text(row.get("level"))),
            impacted_services=_flatten_impact(row.get("impact")),
            last_update_time=last_update,
        )

    def normalize_batch(self, rows: list[dict]) -> NormalizationResult:
        result = NormalizationResult()
        for row in rows:
            normalized = self.normalize(row)
            if isinstance(normalized, Rejection):
                result.rejections.append(normalized)
                log.warning(
                    "Rejected health event row %s: %s",
                    normalized.row_id or "<no id>",
                    normalized.reason,
                )
            else:
                result.events.append(normalized)

        if result.rejections:
            log.warning(
                "Normalized %d row(s), rejected %d",
                len(result.events),
                result.rejected_count,
            )
        return result
