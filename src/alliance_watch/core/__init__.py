"""
Core module for the alliance watcher.

This module provides the foundational components:
- Configuration management (config.py)
- Data models (models.py)
- Error hierarchy (errors.py)
- Shared retry/backoff policy (retry.py)
- Shared HTTP client infrastructure (http.py)

Usage:
    from alliance_watch.core import Settings, get_settings
    from alliance_watch.core import MembershipEvent, EventKind
    from alliance_watch.core.http import BaseApiClient, ExternalAPIError
"""

from .config import Settings, get_settings
from .errors import (
    AllianceWatchError,
    FatalError,
    FetchError,
    IncompatibleSnapshotError,
    NotifyError,
    RetryExhaustedError,
    SnapshotCorruptError,
    StoreError,
)
from .models import (
    SNAPSHOT_VERSION,
    Alliance,
    Corporation,
    CorporationId,
    EventKind,
    MembershipEvent,
    SnapshotRecord,
)
from .retry import RetryPolicy, sleep_or_stop

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Errors
    "AllianceWatchError",
    "FatalError",
    "FetchError",
    "IncompatibleSnapshotError",
    "NotifyError",
    "RetryExhaustedError",
    "SnapshotCorruptError",
    "StoreError",
    # Models
    "SNAPSHOT_VERSION",
    "Alliance",
    "Corporation",
    "CorporationId",
    "EventKind",
    "MembershipEvent",
    "SnapshotRecord",
    # Retry
    "RetryPolicy",
    "sleep_or_stop",
]
