"""Incremental merge of fetched posts and comments into the local store.

Posts:
    - Known id: only ``sort_order`` is updated to the new listing position;
      content fields are never re-synced.
    - New id: inserted with ``sort_order`` = listing position, then its media
      is resolved and cached. The id is appended to the caller's
      ``inserted`` list so the unit of work can be rolled back on cancellation.

Comments:
    Immutable once cached. New ids are inserted with the depth/order produced
    by the flattener; ids already present are skipped.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from offline_reddit import storage
from offline_reddit.comment_tree import flatten_comments
from offline_reddit.media import MediaCache, extract_media_urls
from offline_reddit.models.reddit_models import Comment, Post, PostPayload
from offline_reddit.reddit import RedditFeedClient

logger = structlog.get_logger()


@dataclass
class MergeResult:
    """Outcome of merging one listing.

    Attributes:
        inserted_ids: Post ids inserted by this merge, in listing order
        updated_ids: Post ids that already existed and had sort_order updated
    """
    inserted_ids: List[str] = field(default_factory=list)
    updated_ids: List[str] = field(default_factory=list)


async def cache_post_media(
    conn: sqlite3.Connection,
    media_cache: MediaCache,
    payload: PostPayload,
    checkpoint: Optional[Callable[[], None]] = None
) -> List[str]:
    """Download every allowed image of a post and record the filenames.

    Filenames are keyed by ``{post_id}_{index}`` where index is the URL's
    position in extract_media_urls(); failed downloads are left out.
    ``checkpoint`` runs before each download and may raise to abort.
    """
    saved: List[str] = []
    for index, url in enumerate(extract_media_urls(payload)):
        if checkpoint is not None:
            checkpoint()
        filename = await media_cache.download_and_cache(url, f"{payload.id}_{index}")
        if filename is not None:
            saved.append(filename)

    if saved:
        storage.set_local_image_files(conn, payload.id, saved)
        conn.commit()

    return saved


async def merge_posts(
    conn: sqlite3.Connection,
    feed_name: str,
    payloads: List[PostPayload],
    media_cache: Optional[MediaCache] = None,
    inserted: Optional[List[str]] = None,
    checkpoint: Optional[Callable[[], None]] = None,
    now: Optional[datetime] = None
) -> MergeResult:
    """Merge a fetched listing into the store.

    Args:
        conn: Database connection
        feed_name: Owning feed (stored lowercased)
        payloads: Posts in listing order
        media_cache: Cache used for new posts' media (None skips media)
        inserted: Shared list that receives each inserted post id as soon as
            it is written, so a cancelled caller can roll back a partial merge
        checkpoint: Called before each post; may raise to abort the merge
        now: Fetch timestamp for new posts (default: current UTC time)

    Returns:
        MergeResult: Inserted and updated post ids
    """
    result = MergeResult()
    feed = feed_name.lower()
    fetched_at = now or storage.utcnow()
    known = storage.existing_post_ids(conn, [p.id for p in payloads])

    for index, payload in enumerate(payloads):
        if checkpoint is not None:
            checkpoint()

        if payload.id in known:
            storage.update_sort_order(conn, payload.id, index)
            conn.commit()
            result.updated_ids.append(payload.id)
            continue

        storage.insert_post(conn, Post(
            id=payload.id,
            title=payload.title,
            author=payload.author,
            selftext=payload.selftext,
            media_url=payload.url,
            subreddit=feed,
            fetched_at=fetched_at,
            sort_order=index,
        ))
        conn.commit()
        known.add(payload.id)
        result.inserted_ids.append(payload.id)
        if inserted is not None:
            inserted.append(payload.id)

        if media_cache is not None:
            await cache_post_media(conn, media_cache, payload, checkpoint)

    logger.info(
        "posts_merged",
        feed=feed,
        fetched_count=len(payloads),
        inserted_count=len(result.inserted_ids),
        updated_count=len(result.updated_ids)
    )
    return result


def merge_comments(conn: sqlite3.Connection, comments: List[Comment]) -> int:
    """Insert flattened comments whose ids are not cached yet.

    Returns:
        int: Number of comments inserted
    """
    if not comments:
        return 0

    existing = storage.existing_comment_ids(conn, [c.id for c in comments])
    new_comments = [c for c in comments if c.id not in existing]

    storage.insert_comments(conn, new_comments)
    conn.commit()

    logger.debug(
        "comments_merged",
        post_id=comments[0].post_id,
        fetched_count=len(comments),
        inserted_count=len(new_comments)
    )
    return len(new_comments)


def rollback_inserts(conn: sqlite3.Connection, post_ids: List[str]) -> int:
    """Delete provisional post inserts (and their comments).

    Cached media files are not removed; a manual cache clear reclaims them.
    """
    if not post_ids:
        return 0

    deleted = storage.delete_posts(conn, post_ids)
    logger.info("provisional_posts_rolled_back", post_count=deleted)
    return deleted


async def load_post_comments(
    conn: sqlite3.Connection,
    client: RedditFeedClient,
    post: Post,
    force_refresh: bool = False
) -> int:
    """Cache a post's comments on demand.

    Without ``force_refresh`` nothing is fetched when the post already has
    cached comments. With it, the existing comments are replaced by the fresh
    page. A failed fetch raises before anything is deleted.

    Returns:
        int: Number of comments written

    Raises:
        RedditFeedError: If the comment page cannot be fetched or decoded
    """
    if not force_refresh and storage.has_comments(conn, post.id):
        return 0

    nodes = await client.fetch_comments(post.id, post.subreddit)
    comments = flatten_comments(nodes, post.id)

    if force_refresh:
        removed = storage.delete_comments_for_post(conn, post.id)
        storage.insert_comments(conn, comments)
        conn.commit()
        logger.info("comments_refreshed", post_id=post.id, removed=removed, stored=len(comments))
        return len(comments)

    return merge_comments(conn, comments)
