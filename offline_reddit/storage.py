"""Storage operations for subscriptions, cached posts and comments.

This module handles all database reads and writes for the offline cache,
including batch deduplication lookups and the retention policy.

Write helpers marked "caller commits" leave the transaction open so that a
merge step can group them; administrative operations commit themselves.

Key Functions:
    existing_post_ids / existing_comment_ids: Batch lookups for deduplication
    insert_post / update_sort_order / insert_comments: Merge primitives
    feeds_synced_since: Smart-sync query (feeds with posts fetched after T)
    cleanup_old_posts: Retention: drop posts older than 10 days above a 20-post floor
    delete_subscription / clear_cached_data: Cascading deletes
"""

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set

import structlog

from offline_reddit.models.reddit_models import Comment, Post, Subscription

logger = structlog.get_logger()

RETENTION_MAX_AGE_DAYS = 10
RETENTION_MIN_POSTS = 20

# SQLite has a limit of ~999 parameters in a single query
_BATCH_SIZE = 900

_TS_FORMAT = '%Y-%m-%d %H:%M:%S'


def format_timestamp(value: datetime) -> str:
    """Render a datetime as a UTC 'YYYY-MM-DD HH:MM:SS' string (SQLite datetime() format)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(_TS_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_post(row: sqlite3.Row) -> Post:
    return Post(
        id=row['id'],
        title=row['title'],
        author=row['author'],
        selftext=row['selftext'],
        media_url=row['media_url'],
        subreddit=row['subreddit'],
        fetched_at=parse_timestamp(row['fetched_at']),
        sort_order=row['sort_order'],
        local_image_files=json.loads(row['local_image_files'] or '[]'),
    )


def _row_to_comment(row: sqlite3.Row) -> Comment:
    return Comment(
        id=row['id'],
        post_id=row['post_id'],
        author=row['author'],
        body=row['body'],
        depth=row['depth'],
        order_index=row['order_index'],
    )


def _existing_ids(conn: sqlite3.Connection, table: str, ids: List[str]) -> Set[str]:
    found: Set[str] = set()

    for i in range(0, len(ids), _BATCH_SIZE):
        batch = ids[i:i + _BATCH_SIZE]
        placeholders = ','.join('?' * len(batch))
        rows = conn.execute(
            f"SELECT id FROM {table} WHERE id IN ({placeholders})", batch
        ).fetchall()
        found.update(row['id'] for row in rows)

    return found


# Subscriptions

def add_subscription(conn: sqlite3.Connection, name: str) -> bool:
    """Insert a subscription by (already normalized) name.

    Returns:
        bool: True if inserted, False if it already existed
    """
    cursor = conn.execute(
        "INSERT INTO subscriptions (name) VALUES (?) ON CONFLICT(name) DO NOTHING",
        (name.lower(),)
    )
    conn.commit()
    inserted = cursor.rowcount == 1
    if inserted:
        logger.info("subscription_added", feed=name.lower())
    return inserted


def subscription_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM subscriptions WHERE name = ?", (name.lower(),)
    ).fetchone()
    return row is not None


def list_subscriptions(conn: sqlite3.Connection) -> List[Subscription]:
    """All subscriptions sorted by name."""
    rows = conn.execute(
        "SELECT name, created_at FROM subscriptions ORDER BY name"
    ).fetchall()
    return [Subscription(name=row['name'], created_at=row['created_at']) for row in rows]


def delete_subscription(conn: sqlite3.Connection, name: str) -> int:
    """Delete a subscription and every post cached for it.

    Comments go with their posts through ON DELETE CASCADE.

    Returns:
        int: Number of posts deleted
    """
    feed = name.lower()
    conn.execute("DELETE FROM subscriptions WHERE name = ?", (feed,))
    cursor = conn.execute("DELETE FROM posts WHERE lower(subreddit) = ?", (feed,))
    conn.commit()

    logger.info("subscription_deleted", feed=feed, posts_deleted=cursor.rowcount)
    return cursor.rowcount


def saved_post_counts(conn: sqlite3.Connection) -> Dict[str, int]:
    """Number of cached posts per feed (lowercased feed name -> count)."""
    rows = conn.execute(
        "SELECT lower(subreddit) AS feed, COUNT(*) AS total FROM posts GROUP BY lower(subreddit)"
    ).fetchall()
    return {row['feed']: row['total'] for row in rows}


def saved_post_count(conn: sqlite3.Connection, feed: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS total FROM posts WHERE lower(subreddit) = ?", (feed.lower(),)
    ).fetchone()
    return row['total']


# Posts

def existing_post_ids(conn: sqlite3.Connection, post_ids: List[str]) -> Set[str]:
    """Batch query which post ids are already cached."""
    if not post_ids:
        return set()
    return _existing_ids(conn, 'posts', post_ids)


def get_post(conn: sqlite3.Connection, post_id: str) -> Optional[Post]:
    row = conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
    return _row_to_post(row) if row else None


def list_posts(conn: sqlite3.Connection, feed: str) -> List[Post]:
    """Posts of a feed in ranking order."""
    rows = conn.execute(
        "SELECT * FROM posts WHERE lower(subreddit) = ? ORDER BY sort_order, fetched_at DESC",
        (feed.lower(),)
    ).fetchall()
    return [_row_to_post(row) for row in rows]


def insert_post(conn: sqlite3.Connection, post: Post) -> None:
    """Insert a new post record (caller commits)."""
    conn.execute("""
        INSERT INTO posts (id, title, author, selftext, media_url, local_image_files,
                           subreddit, fetched_at, sort_order)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        post.id,
        post.title,
        post.author,
        post.selftext,
        post.media_url,
        json.dumps(post.local_image_files),
        post.subreddit,
        format_timestamp(post.fetched_at),
        post.sort_order,
    ))


def update_sort_order(conn: sqlite3.Connection, post_id: str, sort_order: int) -> None:
    """Update only the ranking position of a cached post (caller commits)."""
    conn.execute("UPDATE posts SET sort_order = ? WHERE id = ?", (sort_order, post_id))


def set_local_image_files(conn: sqlite3.Connection, post_id: str, filenames: List[str]) -> None:
    """Record the cached media filenames of a post (caller commits)."""
    conn.execute(
        "UPDATE posts SET local_image_files = ? WHERE id = ?",
        (json.dumps(filenames), post_id)
    )


def delete_posts(conn: sqlite3.Connection, post_ids: Iterable[str]) -> int:
    """Delete posts (and, by cascade, their comments) and commit.

    Returns:
        int: Number of posts deleted
    """
    ids = list(post_ids)
    deleted = 0

    for i in range(0, len(ids), _BATCH_SIZE):
        batch = ids[i:i + _BATCH_SIZE]
        placeholders = ','.join('?' * len(batch))
        cursor = conn.execute(f"DELETE FROM posts WHERE id IN ({placeholders})", batch)
        deleted += cursor.rowcount

    conn.commit()
    return deleted


# Comments

def existing_comment_ids(conn: sqlite3.Connection, comment_ids: List[str]) -> Set[str]:
    """Batch query which comment ids are already cached.

    Example:
        >>> existing_comment_ids(conn, ['abc123', 'new789'])
        {'abc123'}
    """
    if not comment_ids:
        return set()
    return _existing_ids(conn, 'comments', comment_ids)


def insert_comments(conn: sqlite3.Connection, comments: List[Comment]) -> None:
    """Insert comment records; ids already present are left untouched (caller commits)."""
    conn.executemany("""
        INSERT INTO comments (id, post_id, author, body, depth, order_index)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO NOTHING
    """, [
        (c.id, c.post_id, c.author, c.body, c.depth, c.order_index)
        for c in comments
    ])


def delete_comments_for_post(conn: sqlite3.Connection, post_id: str) -> int:
    """Delete all cached comments of a post (caller commits)."""
    cursor = conn.execute("DELETE FROM comments WHERE post_id = ?", (post_id,))
    return cursor.rowcount


def list_comments(conn: sqlite3.Connection, post_id: str) -> List[Comment]:
    """Comments of a post in pre-order traversal order."""
    rows = conn.execute(
        "SELECT * FROM comments WHERE post_id = ? ORDER BY order_index", (post_id,)
    ).fetchall()
    return [_row_to_comment(row) for row in rows]


def has_comments(conn: sqlite3.Connection, post_id: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM comments WHERE post_id = ? LIMIT 1", (post_id,)
    ).fetchone()
    return row is not None


# Maintenance

def feeds_synced_since(conn: sqlite3.Connection, since: datetime) -> List[str]:
    """Subscriptions with at least one post fetched after ``since``.

    Used by the smart-sync policy to offer skipping recently synced feeds.

    Returns:
        list[str]: Subscription names, sorted
    """
    rows = conn.execute("""
        SELECT s.name
        FROM subscriptions s
        WHERE EXISTS (
            SELECT 1 FROM posts p
            WHERE lower(p.subreddit) = s.name AND p.fetched_at > ?
        )
        ORDER BY s.name
    """, (format_timestamp(since),)).fetchall()
    return [row['name'] for row in rows]


def cleanup_old_posts(
    conn: sqlite3.Connection,
    max_age_days: int = RETENTION_MAX_AGE_DAYS,
    min_posts: int = RETENTION_MIN_POSTS,
    now: Optional[datetime] = None
) -> int:
    """Apply the retention policy to every subscribed feed.

    Posts are evaluated oldest-first; a post older than ``max_age_days`` is
    deleted only while the feed keeps more than ``min_posts`` posts after it.

    Args:
        conn: Database connection
        max_age_days: Age threshold in days (default: 10)
        min_posts: Floor of posts kept per feed (default: 20)
        now: Reference time (default: current UTC time)

    Returns:
        int: Total number of posts deleted

    Example:
        A feed with 25 posts all 11 days old loses its 5 oldest posts.
    """
    cutoff = (now or utcnow()) - timedelta(days=max_age_days)
    to_delete: List[str] = []

    for subscription in list_subscriptions(conn):
        rows = conn.execute(
            "SELECT id, fetched_at FROM posts WHERE lower(subreddit) = ? ORDER BY fetched_at, id",
            (subscription.name,)
        ).fetchall()

        total = len(rows)
        for index, row in enumerate(rows):
            if parse_timestamp(row['fetched_at']) < cutoff and (total - index) > min_posts:
                to_delete.append(row['id'])

    deleted = delete_posts(conn, to_delete) if to_delete else 0
    logger.info("retention_cleanup_completed", posts_deleted=deleted, max_age_days=max_age_days)
    return deleted


def clear_cached_data(conn: sqlite3.Connection) -> Dict[str, int]:
    """Delete every cached post and comment (subscriptions are kept).

    Returns:
        dict: Counts of deleted 'posts' and 'comments'
    """
    comments = conn.execute("DELETE FROM comments").rowcount
    posts = conn.execute("DELETE FROM posts").rowcount
    conn.commit()

    logger.info("cached_data_cleared", posts_deleted=posts, comments_deleted=comments)
    return {'posts': posts, 'comments': comments}
