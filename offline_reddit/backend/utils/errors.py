"""Error Handling Utilities

This module provides warning collection for non-fatal events during sync runs.
A feed that fails, is cancelled, or hits Reddit's rate limit never aborts the
rest of a run; the event is recorded here and surfaced through the sync status.
"""

import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# Supported warning types
WARNING_TYPE_RATE_LIMITED = "rate_limited"
WARNING_TYPE_FEED_SYNC_FAILED = "feed_sync_failed"
WARNING_TYPE_FEED_SYNC_CANCELLED = "feed_sync_cancelled"

VALID_WARNING_TYPES = {
    WARNING_TYPE_RATE_LIMITED,
    WARNING_TYPE_FEED_SYNC_FAILED,
    WARNING_TYPE_FEED_SYNC_CANCELLED,
}


class WarningsCollector:
    """Thread-safe collector for non-fatal warnings during sync runs.

    Accumulates warning events with type, message, timestamp, and context.
    Supports serialization to JSON for status reporting.

    Example:
        >>> collector = WarningsCollector()
        >>> collector.append(
        ...     "rate_limited",
        ...     "Rate limit hit while caching comments",
        ...     {"feed": "askreddit", "post_id": "abc123"}
        ... )
        >>> json_string = collector.to_json()
        >>> print(json_string)
        '[{"type": "rate_limited", "message": "...", "timestamp": "...", "context": {...}}]'
    """

    def __init__(self):
        """Initialize an empty warnings collector."""
        self._warnings: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def append(self, warning_type: str, message: str, context: Dict[str, Any]) -> None:
        """Add a warning with type, message, timestamp, and context.

        Thread-safe via internal lock. Timestamp is auto-generated in ISO 8601 format (UTC).

        Args:
            warning_type: One of the supported warning types (see VALID_WARNING_TYPES)
            message: Human-readable description of the warning
            context: Additional structured data (e.g., feed, post_id, error)

        Raises:
            ValueError: If warning_type is not in VALID_WARNING_TYPES
        """
        if warning_type not in VALID_WARNING_TYPES:
            raise ValueError(
                f"Invalid warning_type '{warning_type}'. "
                f"Must be one of: {', '.join(sorted(VALID_WARNING_TYPES))}"
            )

        warning = {
            "type": warning_type,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "context": context
        }

        with self._lock:
            self._warnings.append(warning)

    def to_list(self) -> List[Dict[str, Any]]:
        """Return a copy of the collected warnings, oldest first."""
        with self._lock:
            return list(self._warnings)

    def clear(self) -> None:
        with self._lock:
            self._warnings.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._warnings)

    def to_json(self) -> Optional[str]:
        """Serialize warnings to JSON array string.

        Returns:
            JSON array string of all warnings if any exist, None if no warnings collected.
        """
        with self._lock:
            if not self._warnings:
                return None
            return json.dumps(self._warnings)
