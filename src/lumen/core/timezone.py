"""UTC time helpers.

Sets TZ=UTC for the process and provides the single clock used for every
persisted timestamp. Timestamps are stored as naive UTC so the same columns
behave identically on PostgreSQL and SQLite.
"""

import os
from datetime import datetime, timezone

os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
