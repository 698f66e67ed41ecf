"""Post and comment API endpoints.

- GET /posts/{post_id}/comments: Comments (fetched on first open), optionally with collapsed threads hidden
- POST /posts/{post_id}/comments/refresh: Replace a post's comments with a fresh fetch
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request

from offline_reddit import storage
from offline_reddit.api.responses import NOT_FOUND, REDDIT_API_ERROR, raise_api_error, wrap_response
from offline_reddit.backend.utils.logging_config import get_logger
from offline_reddit.comment_tree import visible_comments
from offline_reddit.merge import load_post_comments
from offline_reddit.models.reddit_models import Comment, clean_reddit_text
from offline_reddit.reddit import RedditFeedError

router = APIRouter(prefix="/posts", tags=["posts"])
logger = get_logger(__name__)


def comment_to_dict(comment: Comment) -> Dict[str, Any]:
    return {
        "id": comment.id,
        "post_id": comment.post_id,
        "author": comment.author,
        "body": clean_reddit_text(comment.body),
        "depth": comment.depth,
        "order_index": comment.order_index,
    }


def _require_post(db, post_id: str):
    post = storage.get_post(db, post_id)
    if post is None:
        logger.warning("post_not_found", post_id=post_id)
        raise_api_error(NOT_FOUND, f"Post {post_id} not found")
    return post


@router.get("/{post_id}/comments")
async def get_post_comments(
    request: Request,
    post_id: str,
    collapsed: Optional[str] = Query(None, description="Comma-separated ids of collapsed comments")
):
    """Cached comments of a post in thread order.

    A post with no cached comments yet (outside the top N of its last sync)
    has them fetched on first open. If that fetch fails the post is served
    with no comments.

    Query Parameters:
        collapsed: Comment ids whose descendants are hidden (the collapsed
            comments themselves stay visible)

    Returns:
        Response envelope with the visible comments; meta.total is the number
        of cached comments before collapsing.

    Raises:
        404 NOT_FOUND: If the post is not cached
    """
    db = request.app.state.db
    post = _require_post(db, post_id)

    if not storage.has_comments(db, post_id):
        try:
            await load_post_comments(db, request.app.state.client, post)
        except RedditFeedError as e:
            logger.warning(
                "comment_load_failed",
                post_id=post_id,
                error=str(e),
                error_type=type(e).__name__
            )

    collapsed_ids = {c.strip() for c in collapsed.split(',') if c.strip()} if collapsed else set()
    comments = storage.list_comments(db, post_id)
    shown = visible_comments(comments, collapsed_ids)

    logger.info(
        "get_post_comments_response",
        post_id=post_id,
        total=len(comments),
        visible=len(shown),
        collapsed_count=len(collapsed_ids)
    )
    return wrap_response([comment_to_dict(c) for c in shown], total=len(comments))


@router.post("/{post_id}/comments/refresh")
async def refresh_post_comments(request: Request, post_id: str):
    """Re-fetch a post's comments and replace the cached set.

    Raises:
        404 NOT_FOUND: If the post is not cached
        502 REDDIT_API_ERROR: If the comment page cannot be fetched; the
            cached comments are left untouched
    """
    db = request.app.state.db
    post = _require_post(db, post_id)

    try:
        stored = await load_post_comments(db, request.app.state.client, post, force_refresh=True)
    except RedditFeedError as e:
        logger.error("comment_refresh_failed", post_id=post_id, error=str(e), error_type=type(e).__name__)
        raise_api_error(REDDIT_API_ERROR, f"Could not refresh comments for {post_id}: {e}")

    return wrap_response({"post_id": post_id, "comments_stored": stored})
