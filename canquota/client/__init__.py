"""Caller-side helpers: device id, fallback quota cache and HTTP client."""

from .device import generate_fingerprint, get_device_id
from .fallback import LocalQuotaCache, UsageStats
from .service import QuotaClient, RecordOutcome
from .state import LocalStateStore

__all__ = [
    "LocalQuotaCache",
    "LocalStateStore",
    "QuotaClient",
    "RecordOutcome",
    "UsageStats",
    "generate_fingerprint",
    "get_device_id",
]
