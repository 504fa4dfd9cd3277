from __future__ import annotations

import logging
from datetime import datetime, timedelta

log = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=7)


class TimeWindowPlanner:
    """Chooses where the next upstream query window starts.

    The window starts at the cache's last successful query time, or one
    retention period back on the first run.  The query itself also keeps
    every Active event in scope regardless of age, so only Resolved events
    are bounded by the window.
    """

    def __init__(self, retention: timedelta = DEFAULT_RETENTION) -> None:
        self.retention = retention

    def plan(self, last_query_time: datetime | None, now: datetime) -> datetime:
        fallback = now - self.retention

        if last_query_time is None:
            return fallback

        if last_query_time > now:
            log.warning(
                "Cached lastQueryTime %s is in the future (now=%s); "
                "falling back to a %s window",
                last_query_time.isoformat(),
                now.isoformat(),
                self.retention,
            )
            return fallback

        return last_query_time
