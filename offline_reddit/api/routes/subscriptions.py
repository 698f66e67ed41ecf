"""Subscription API endpoints.

- GET /subscriptions: Followed feeds with saved post counts and sync state
- POST /subscriptions: Validate a feed name and subscribe to it
- DELETE /subscriptions/{name}: Unsubscribe and delete the feed's cached posts
- GET /subscriptions/{name}/posts: Cached posts of a feed in ranking order
"""

from typing import Any, Dict

from fastapi import APIRouter, Request

from offline_reddit import storage
from offline_reddit.api.models import SubscriptionCreate
from offline_reddit.api.responses import (
    NOT_FOUND, SYNC_ALREADY_RUNNING, VALIDATION_ERROR,
    raise_api_error, wrap_response,
)
from offline_reddit.backend.utils.logging_config import get_logger
from offline_reddit.models.reddit_models import Post, clean_reddit_text
from offline_reddit.subscriptions import validate_and_add
from offline_reddit.sync import ACTIVE_STATES

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
logger = get_logger(__name__)


def post_to_dict(post: Post) -> Dict[str, Any]:
    """Serialize a cached post with display-ready text."""
    return {
        "id": post.id,
        "title": clean_reddit_text(post.title),
        "author": post.author,
        "selftext": clean_reddit_text(post.selftext),
        "media_url": post.media_url,
        "local_image_files": post.local_image_files,
        "subreddit": post.subreddit,
        "fetched_at": post.fetched_at.isoformat(),
        "sort_order": post.sort_order,
    }


@router.get("")
async def list_subscriptions(request: Request):
    """List subscriptions sorted by name.

    Returns:
        Response envelope with one entry per feed:
        - name, saved_posts
        - state: Current sync state (idle/queued/syncing/done/cancelled/error)
        - status_message: Human-readable sync status, if any
    """
    db = request.app.state.db
    scheduler = request.app.state.scheduler

    counts = storage.saved_post_counts(db)
    feeds = [
        {
            "name": sub.name,
            "saved_posts": counts.get(sub.name, 0),
            "state": scheduler.state(sub.name).value,
            "status_message": scheduler.status_message(sub.name),
        }
        for sub in storage.list_subscriptions(db)
    ]

    logger.info("list_subscriptions_response", total=len(feeds))
    return wrap_response(feeds, total=len(feeds))


@router.post("")
async def add_subscription(request: Request, body: SubscriptionCreate):
    """Validate a feed name against Reddit and subscribe when it exists.

    Returns:
        Response envelope with the validation result (outcome, name,
        suggestion, message). A suggestion or not_found outcome is not an
        error: the caller decides what to do next.

    Raises:
        422 VALIDATION_ERROR: If the name is empty after normalization
    """
    logger.info("add_subscription_request", name=body.name, add_anyway=body.add_anyway)

    try:
        result = await validate_and_add(
            request.app.state.db, request.app.state.client, body.name, body.add_anyway
        )
    except ValueError as e:
        raise_api_error(VALIDATION_ERROR, str(e))

    logger.info("add_subscription_response", name=result.name, outcome=result.outcome.value)
    return wrap_response(result.to_dict())


@router.delete("/{name}")
async def delete_subscription(request: Request, name: str):
    """Unsubscribe from a feed and delete its cached posts and comments.

    Raises:
        404 NOT_FOUND: If the feed is not subscribed
        409 SYNC_ALREADY_RUNNING: If the feed is queued or syncing
    """
    db = request.app.state.db
    scheduler = request.app.state.scheduler
    feed = name.lower()

    if not storage.subscription_exists(db, feed):
        raise_api_error(NOT_FOUND, f"Not subscribed to r/{feed}")

    if scheduler.state(feed) in ACTIVE_STATES:
        raise_api_error(SYNC_ALREADY_RUNNING, f"r/{feed} is syncing; cancel it first")

    deleted = storage.delete_subscription(db, feed)
    return wrap_response({"name": feed, "posts_deleted": deleted})


@router.get("/{name}/posts")
async def list_feed_posts(request: Request, name: str):
    """Cached posts of a feed ordered by their latest listing position.

    Raises:
        404 NOT_FOUND: If the feed is not subscribed
    """
    db = request.app.state.db
    feed = name.lower()

    if not storage.subscription_exists(db, feed):
        raise_api_error(NOT_FOUND, f"Not subscribed to r/{feed}")

    posts = [post_to_dict(post) for post in storage.list_posts(db, feed)]

    logger.info("list_feed_posts_response", feed=feed, total=len(posts))
    return wrap_response(posts, total=len(posts))
