"""Envelope helpers shared by the route modules.

Routes return ``wrap_response(...)`` and signal failures with
``raise_api_error(CODE, message)``; the handlers in app.py turn the raised
HTTPException into an ErrorEnvelope.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

from offline_reddit.api.models import MetaModel


VALIDATION_ERROR = "VALIDATION_ERROR"  # Bad feed name, post limit or body
NOT_FOUND = "NOT_FOUND"  # Unknown feed, post or path
SYNC_ALREADY_RUNNING = "SYNC_ALREADY_RUNNING"  # Feed busy, second master run, or clear during sync
REDDIT_API_ERROR = "REDDIT_API_ERROR"  # Comment refresh could not reach Reddit
DATABASE_ERROR = "DATABASE_ERROR"  # Anything uncaught

ERROR_STATUS_CODES: Dict[str, int] = {
    VALIDATION_ERROR: 422,
    NOT_FOUND: 404,
    SYNC_ALREADY_RUNNING: 409,
    REDDIT_API_ERROR: 502,
    DATABASE_ERROR: 500,
}


def wrap_response(data: Any, total: Optional[int] = None) -> Dict[str, Any]:
    """Build ``{"data": ..., "meta": {"timestamp", "version"[, "total"]}}``.

    ``total`` is omitted from meta when None. Listing routes pass the number
    of items before any filtering, e.g. all cached comments of a post even
    when collapsed threads hide some of them.
    """
    meta = MetaModel(
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0",
        total=total
    )

    return {
        "data": data,
        "meta": meta.model_dump(exclude_none=True)
    }


def raise_api_error(code: str, message: str, status_code: Optional[int] = None) -> None:
    """Raise an HTTPException carrying ``{"code", "message"}`` as its detail.

    The status comes from ERROR_STATUS_CODES unless given; unknown codes map to 500.

    Example:
        if not storage.subscription_exists(db, feed):
            raise_api_error(NOT_FOUND, f"Not subscribed to r/{feed}")
    """
    if status_code is None:
        status_code = ERROR_STATUS_CODES.get(code, 500)

    raise HTTPException(
        status_code=status_code,
        detail={"code": code, "message": message}
    )
