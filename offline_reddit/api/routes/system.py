"""Cache maintenance API endpoints.

- POST /cache/clear: Delete every cached post, comment and media file
- POST /cache/cleanup: Apply the retention policy now
"""

from fastapi import APIRouter, Request

from offline_reddit.api.responses import SYNC_ALREADY_RUNNING, raise_api_error, wrap_response
from offline_reddit.backend.utils.logging_config import get_logger
from offline_reddit.storage import cleanup_old_posts
from offline_reddit.sync import SyncInProgressError

router = APIRouter(prefix="/cache", tags=["system"])
logger = get_logger(__name__)


@router.post("/clear")
async def clear_cache(request: Request):
    """Clear the offline cache. Subscriptions are kept.

    Raises:
        409 SYNC_ALREADY_RUNNING: While any feed is queued or syncing
    """
    try:
        counts = request.app.state.scheduler.clear_cache()
    except SyncInProgressError as e:
        raise_api_error(SYNC_ALREADY_RUNNING, str(e))

    return wrap_response(counts)


@router.post("/cleanup")
async def cleanup_cache(request: Request):
    """Delete posts older than the retention window, keeping a floor per feed."""
    deleted = cleanup_old_posts(request.app.state.db)
    return wrap_response({"posts_deleted": deleted})
