"""Quota store: daily usage counters and the attempt log."""

from .attempts import (
    AttemptLogRepository,
    InMemoryAttemptLogRepository,
    SqlAlchemyAttemptLogRepository,
)
from .usage import InMemoryUsageRepository, SqlAlchemyUsageRepository, UsageRepository

__all__ = [
    "AttemptLogRepository",
    "InMemoryAttemptLogRepository",
    "InMemoryUsageRepository",
    "SqlAlchemyAttemptLogRepository",
    "SqlAlchemyUsageRepository",
    "UsageRepository",
]
