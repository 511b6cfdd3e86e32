"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC to ensure
consistent datetime behavior across all environments, and provides
the naive-UTC clock used for every persisted timestamp.
"""

import os
from datetime import UTC, datetime

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Current UTC time without tzinfo (SQLite drops offsets on round-trip)."""
    return datetime.now(UTC).replace(tzinfo=None)
