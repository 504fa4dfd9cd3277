from core.cache import CacheStore, WriteResult
from core.normalizer import EventNormalizer
from core.orchestrator import SyncOrchestrator, SyncPolicy, SyncResult, SyncState
from core.planner import TimeWindowPlanner
from core.retry import Deadline, ErrorKind, RetryExecutor, RetryOutcome
from core.scheduler import SyncScheduler

__all__ = [
    "CacheStore",
    "Deadline",
    "ErrorKind",
    "EventNormalizer",
    "RetryExecutor",
    "RetryOutcome",
    "SyncOrchestrator",
    "SyncPolicy",
    "SyncResult",
    "SyncScheduler",
    "SyncState",
    "TimeWindowPlanner",
    "WriteResult",
]
