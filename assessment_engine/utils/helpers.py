"""
Small shared helpers: timestamps, document ids and write retries.

All timestamps are timezone-aware UTC so they compare cleanly with
what MongoDB returns (the client is created with tz_aware=True).
"""

import logging
from datetime import datetime, timezone
from typing import Callable, TypeVar

from bson import ObjectId

from assessment_engine.core.errors import ConcurrentUpdateError

T = TypeVar("T")
logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a document id (ObjectId hex, sortable by creation time)."""
    return str(ObjectId())


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def run_with_retries(operation: Callable[[], T], retries: int, label: str = "operation") -> T:
    """
    Run a load-validate-save operation, re-running it when its
    compare-and-swap write loses against a concurrent writer.
    Domain errors raised by the operation propagate immediately.
    """
    for attempt_number in range(1, max(retries, 1) + 1):
        try:
            return operation()
        except ConcurrentUpdateError:
            logger.info("%s lost a write race (try %d/%d), reloading", label, attempt_number, retries)
    raise ConcurrentUpdateError()
