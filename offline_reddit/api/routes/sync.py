"""Sync API endpoints.

- GET /sync/plan: Recently synced vs. stale feeds for the smart-sync prompt
- GET /sync/status: Per-feed states, progress units, ETA and warnings
- POST /sync: Start a master sync in the background
- DELETE /sync: Cancel the master sync
- POST /sync/{name}: Start a single-feed sync in the background
- POST /sync/{name}/cancel: Cancel one feed

Syncs run as asyncio tasks on the server's event loop; clients poll
GET /sync/status for progress.
"""

import asyncio
from typing import Awaitable, Optional

from fastapi import APIRouter, Request

from offline_reddit import storage
from offline_reddit.api.models import FeedSyncRequest, MasterSyncRequest
from offline_reddit.api.responses import (
    NOT_FOUND, SYNC_ALREADY_RUNNING, raise_api_error, wrap_response,
)
from offline_reddit.backend.utils.logging_config import get_logger
from offline_reddit.sync import ACTIVE_STATES, SyncInProgressError

router = APIRouter(prefix="/sync", tags=["sync"])
logger = get_logger(__name__)


async def _run_guarded(job: Awaitable, description: str) -> None:
    try:
        await job
    except SyncInProgressError as e:
        logger.warning("background_sync_rejected", job=description, error=str(e))


def _spawn(request: Request, job: Awaitable, description: str) -> asyncio.Task:
    """Start a sync coroutine in the background and track it on app.state."""
    tasks = request.app.state.sync_tasks
    task = asyncio.create_task(_run_guarded(job, description))
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


@router.get("/plan")
async def get_sync_plan(request: Request):
    """Partition subscriptions for the smart-sync prompt.

    Returns:
        Response envelope with:
        - recent: Feeds synced within the recent window (candidates to skip)
        - stale: All other feeds
        - needs_choice: True when the user should be asked whether to skip
    """
    plan = request.app.state.scheduler.plan_master_sync()
    return wrap_response({
        "recent": plan.recent,
        "stale": plan.stale,
        "needs_choice": plan.needs_choice,
    })


@router.get("/status")
async def get_sync_status(request: Request):
    """Polling endpoint for sync progress."""
    return wrap_response(request.app.state.scheduler.status())


@router.post("", status_code=202)
async def start_master_sync(request: Request, body: Optional[MasterSyncRequest] = None):
    """Start syncing every subscribed feed not listed in ``skip``.

    Raises:
        409 SYNC_ALREADY_RUNNING: If a master sync is already running
    """
    scheduler = request.app.state.scheduler
    body = body or MasterSyncRequest()

    if scheduler.is_master_running:
        raise_api_error(SYNC_ALREADY_RUNNING, "A master sync is already running")

    post_limit = body.post_limit or scheduler.settings.default_post_limit
    logger.info("master_sync_requested", post_limit=post_limit, skip=body.skip)

    _spawn(request, scheduler.master_sync(post_limit=post_limit, skip=body.skip), "master")
    return wrap_response({"started": True, "post_limit": post_limit, "skip": body.skip})


@router.delete("")
async def cancel_master_sync(request: Request):
    """Cancel the master sync; returns cancelled=false if none is running."""
    cancelled = request.app.state.scheduler.cancel_all()
    return wrap_response({"cancelled": cancelled})


@router.post("/{name}", status_code=202)
async def start_feed_sync(request: Request, name: str, body: Optional[FeedSyncRequest] = None):
    """Start syncing one subscribed feed.

    Raises:
        404 NOT_FOUND: If the feed is not subscribed
        409 SYNC_ALREADY_RUNNING: If the feed is already queued or syncing
    """
    scheduler = request.app.state.scheduler
    feed = name.lower()
    body = body or FeedSyncRequest()

    if not storage.subscription_exists(request.app.state.db, feed):
        raise_api_error(NOT_FOUND, f"Not subscribed to r/{feed}")

    if scheduler.state(feed) in ACTIVE_STATES:
        raise_api_error(SYNC_ALREADY_RUNNING, f"r/{feed} is already {scheduler.state(feed).value}")

    post_limit = body.post_limit or scheduler.settings.default_post_limit
    logger.info("feed_sync_requested", feed=feed, post_limit=post_limit)

    _spawn(request, scheduler.sync_feed(feed, post_limit=post_limit), feed)
    return wrap_response({"started": True, "name": feed, "post_limit": post_limit})


@router.post("/{name}/cancel")
async def cancel_feed_sync(request: Request, name: str):
    """Cancel one feed; returns cancelled=false if it was not queued or syncing."""
    cancelled = request.app.state.scheduler.cancel_feed(name)
    return wrap_response({"name": name.lower(), "cancelled": cancelled})
