"""SQLAlchemy ORM models backing the quota store."""

from .usage import AnonymousUsageModel, UserUsageModel
from .attempt_log import AttemptLogModel

__all__ = [
    "AnonymousUsageModel",
    "AttemptLogModel",
    "UserUsageModel",
]
