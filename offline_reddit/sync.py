"""Sync scheduler for the offline cache.

A SyncScheduler drives two kinds of runs against one local store:

- Single-feed sync: ``idle -> syncing -> done | cancelled | error``
- Master sync: every subscribed feed not skipped by the caller is queued, then
  processed strictly one after another
  (``queued -> syncing -> done | cancelled | error``).

Per feed, the work is one listing fetch followed by one comment fetch for each
of the top N posts, with a courtesy delay after every comment page and a
longer pause when Reddit answers 429. Cancellation is cooperative: a per-feed
token and a per-run token are checked before every network call and after
every delay, the run token first. A cancelled feed rolls back the posts it
inserted during that run.

Failures never escape a run: they become the feed's terminal state, a status
message, and an entry in the scheduler's WarningsCollector.
"""

import asyncio
import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import structlog

from offline_reddit import storage
from offline_reddit.backend.utils.errors import (
    WARNING_TYPE_FEED_SYNC_CANCELLED,
    WARNING_TYPE_FEED_SYNC_FAILED,
    WARNING_TYPE_RATE_LIMITED,
    WarningsCollector,
)
from offline_reddit.comment_tree import flatten_comments
from offline_reddit.media import MediaCache
from offline_reddit.merge import merge_comments, merge_posts, rollback_inserts
from offline_reddit.reddit import RateLimited, RedditFeedClient

logger = structlog.get_logger()

# Human-readable per-feed status messages
STATUS_QUEUED = "Waiting in queue..."
STATUS_FETCHING = "Fetching latest feed..."
STATUS_CANCELLING = "Cancelling..."
STATUS_DONE = "Up to date!"
STATUS_CANCELLED = "Cancelled"
STATUS_ERROR = "Network Error"


class FeedState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    SYNCING = "syncing"
    CANCELLED = "cancelled"
    DONE = "done"
    ERROR = "error"


ACTIVE_STATES = {FeedState.QUEUED, FeedState.SYNCING}


class SyncCancelled(Exception):
    """Raised at a cancellation checkpoint once a feed or its run is cancelled."""
    pass


class SyncInProgressError(Exception):
    """The requested operation conflicts with a sync that is queued or running."""
    pass


class CancellationToken:
    """One-way cancellation flag, checked at the scheduler's suspension points."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, '').strip()
    return float(value) if value else default


@dataclass
class SyncSettings:
    """Timing and sizing policy for sync runs.

    Attributes:
        courtesy_delay: Pause after each comment fetch, in seconds
        rate_limit_backoff: Pause after an HTTP 429, in seconds
        unit_seconds: Estimated duration of one unit of work for the ETA
        default_post_limit: Posts whose comments are cached in a quick sync
        deep_post_limit: Posts whose comments are cached in a deep sync
        recent_window: A feed with a post fetched within this window counts as
            recently synced
    """
    courtesy_delay: float = 1.2
    rate_limit_backoff: float = 5.0
    unit_seconds: float = 1.5
    default_post_limit: int = 10
    deep_post_limit: int = 25
    recent_window: timedelta = timedelta(minutes=15)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings, overriding defaults from OFFLINE_REDDIT_* env vars."""
        defaults = cls()
        return cls(
            courtesy_delay=_env_float('OFFLINE_REDDIT_COURTESY_DELAY', defaults.courtesy_delay),
            rate_limit_backoff=_env_float('OFFLINE_REDDIT_RATE_LIMIT_BACKOFF', defaults.rate_limit_backoff),
            unit_seconds=_env_float('OFFLINE_REDDIT_UNIT_SECONDS', defaults.unit_seconds),
            recent_window=timedelta(minutes=_env_float(
                'OFFLINE_REDDIT_RECENT_WINDOW_MINUTES',
                defaults.recent_window.total_seconds() / 60
            )),
        )


def format_eta(seconds: int) -> str:
    """Render a remaining-time estimate.

    Example:
        >>> format_eta(95)
        'Estimated time: 1m 35s'
    """
    if seconds <= 0:
        return "Finishing up..."
    if seconds > 60:
        return f"Estimated time: {seconds // 60}m {seconds % 60}s"
    return f"Estimated time: {seconds}s"


class SyncProgress:
    """Unit-of-work accounting for a master run.

    Each feed contributes ``1 + post_limit`` units (one listing fetch plus one
    comment fetch per top post). The total shrinks when a feed lists fewer
    posts than post_limit; cancelled or failed feeds have their remaining
    units credited at once so the estimate never stalls.
    """

    def __init__(self, total_units: int, unit_seconds: float = 1.5):
        self.total_units = total_units
        self.completed_units = 0
        self.unit_seconds = unit_seconds

    @property
    def remaining_units(self) -> int:
        return max(0, self.total_units - self.completed_units)

    @property
    def eta_seconds(self) -> int:
        return int(self.remaining_units * self.unit_seconds)

    @property
    def eta_text(self) -> str:
        return format_eta(self.eta_seconds)

    @property
    def fraction(self) -> float:
        return min(1.0, self.completed_units / max(1, self.total_units))

    def complete(self, units: int = 1) -> None:
        self.completed_units += units

    def reduce_total(self, units: int) -> None:
        self.total_units -= units

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_units': self.total_units,
            'completed_units': self.completed_units,
            'remaining_units': self.remaining_units,
            'fraction': round(self.fraction, 4),
            'eta_seconds': self.eta_seconds,
            'eta_text': self.eta_text,
        }


@dataclass
class SmartSyncPlan:
    """Partition of subscriptions for the smart-sync prompt.

    Attributes:
        recent: Feeds with a post fetched within the recent window
        stale: All other feeds
    """
    recent: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)

    @property
    def needs_choice(self) -> bool:
        """True when the caller should ask whether to skip recent feeds."""
        return bool(self.recent)


class SyncScheduler:
    """Coordinates single-feed and master sync runs over one local store.

    Construct one per process and share it; it owns the feed state map, the
    cancellation tokens and the progress of the current master run.

    Attributes:
        conn: Local store connection
        client: Reddit feed client
        media_cache: Image cache for new posts (None disables media caching)
        settings: Timing and sizing policy
        progress: Progress of the current or most recent master run
        warnings: Non-fatal events collected across runs

    Example:
        >>> scheduler = SyncScheduler(conn, RedditFeedClient(), MediaCache())
        >>> plan = scheduler.plan_master_sync()
        >>> await scheduler.master_sync(post_limit=10, skip=plan.recent)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        client: RedditFeedClient,
        media_cache: Optional[MediaCache] = None,
        settings: Optional[SyncSettings] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.conn = conn
        self.client = client
        self.media_cache = media_cache
        self.settings = settings or SyncSettings()
        self.progress: Optional[SyncProgress] = None
        self.warnings = WarningsCollector()

        self._sleep = sleep or asyncio.sleep
        self._states: Dict[str, FeedState] = {}
        self._messages: Dict[str, str] = {}
        self._feed_tokens: Dict[str, CancellationToken] = {}
        self._run_token: Optional[CancellationToken] = None
        self._run_units_per_feed = 0

    # State queries

    def state(self, feed_name: str) -> FeedState:
        return self._states.get(feed_name.lower(), FeedState.IDLE)

    def status_message(self, feed_name: str) -> Optional[str]:
        return self._messages.get(feed_name.lower())

    def feed_statuses(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every feed the scheduler has touched."""
        return {
            feed: {'state': state.value, 'message': self._messages.get(feed)}
            for feed, state in sorted(self._states.items())
        }

    @property
    def is_master_running(self) -> bool:
        return self._run_token is not None

    @property
    def active_feeds(self) -> List[str]:
        return sorted(f for f, s in self._states.items() if s in ACTIVE_STATES)

    def recently_synced_feeds(self, since: Optional[datetime] = None) -> List[str]:
        """Feeds with a post fetched after ``since`` (default: now - recent_window)."""
        if since is None:
            since = storage.utcnow() - self.settings.recent_window
        return storage.feeds_synced_since(self.conn, since)

    def plan_master_sync(self, now: Optional[datetime] = None) -> SmartSyncPlan:
        """Split subscriptions into recently synced and stale feeds.

        This is a pure query: the caller decides whether to pass ``plan.recent``
        as the skip list of master_sync().
        """
        since = (now or storage.utcnow()) - self.settings.recent_window
        recent = set(storage.feeds_synced_since(self.conn, since))
        names = [s.name for s in storage.list_subscriptions(self.conn)]

        return SmartSyncPlan(
            recent=[n for n in names if n in recent],
            stale=[n for n in names if n not in recent],
        )

    # Runs

    def _set(self, feed: str, state: FeedState, message: Optional[str]) -> None:
        self._states[feed] = state
        self._messages[feed] = message

    async def sync_feed(self, feed_name: str, post_limit: Optional[int] = None) -> FeedState:
        """Run a single-feed sync independently of any master run.

        Args:
            feed_name: Feed to sync
            post_limit: Number of top posts whose comments are cached
                (default: settings.default_post_limit)

        Returns:
            FeedState: The feed's terminal state

        Raises:
            SyncInProgressError: If the feed is already queued or syncing
        """
        feed = feed_name.lower()
        if post_limit is None:
            post_limit = self.settings.default_post_limit

        if self.state(feed) in ACTIVE_STATES:
            raise SyncInProgressError(f"r/{feed} is already {self.state(feed).value}")

        token = CancellationToken()
        self._feed_tokens[feed] = token

        return await self._run_feed(feed, post_limit, token, run_token=None, progress=None)

    async def master_sync(
        self,
        post_limit: Optional[int] = None,
        skip: Iterable[str] = ()
    ) -> Dict[str, FeedState]:
        """Sync every subscribed feed except ``skip``, one feed at a time.

        Feeds currently busy in an independent single-feed sync are left out.

        Args:
            post_limit: Number of top posts per feed whose comments are cached
            skip: Feed names to leave out (e.g. SmartSyncPlan.recent)

        Returns:
            dict: Terminal state per processed feed

        Raises:
            SyncInProgressError: If a master run is already in progress
        """
        if self._run_token is not None:
            raise SyncInProgressError("A master sync is already running")

        if post_limit is None:
            post_limit = self.settings.default_post_limit

        skip_set = {name.lower() for name in skip}
        feeds = [
            s.name for s in storage.list_subscriptions(self.conn)
            if s.name not in skip_set and self.state(s.name) not in ACTIVE_STATES
        ]

        if not feeds:
            logger.info("master_sync_nothing_to_do", skipped=sorted(skip_set))
            return {}

        run_token = CancellationToken()
        self._run_token = run_token
        self._run_units_per_feed = 1 + post_limit
        self.progress = SyncProgress(
            total_units=len(feeds) * self._run_units_per_feed,
            unit_seconds=self.settings.unit_seconds
        )

        for feed in feeds:
            self._feed_tokens[feed] = CancellationToken()
            self._set(feed, FeedState.QUEUED, STATUS_QUEUED)

        logger.info(
            "master_sync_started",
            feeds=feeds,
            post_limit=post_limit,
            total_units=self.progress.total_units
        )

        try:
            for feed in feeds:
                if run_token.cancelled:
                    break
                if self.state(feed) != FeedState.QUEUED:
                    # Cancelled while waiting; units already credited
                    continue

                await self._run_feed(feed, post_limit, self._feed_tokens[feed], run_token, self.progress)
        finally:
            for feed in feeds:
                if self.state(feed) == FeedState.QUEUED:
                    self._cancel_queued(feed)
            self._run_token = None

        results = {feed: self.state(feed) for feed in feeds}
        logger.info(
            "master_sync_completed",
            results={feed: state.value for feed, state in results.items()},
            cancelled=run_token.cancelled
        )
        return results

    # Cancellation

    def _cancel_queued(self, feed: str) -> None:
        self._set(feed, FeedState.CANCELLED, STATUS_CANCELLED)
        if self.progress is not None:
            self.progress.complete(self._run_units_per_feed)
        logger.info("queued_feed_cancelled", feed=feed)

    def cancel_feed(self, feed_name: str) -> bool:
        """Cancel one feed.

        A queued feed is skipped immediately; a syncing feed stops at its next
        checkpoint and rolls back the posts it inserted.

        Returns:
            bool: False if the feed was not queued or syncing
        """
        feed = feed_name.lower()
        state = self.state(feed)
        token = self._feed_tokens.get(feed)

        if state not in ACTIVE_STATES or token is None:
            return False

        token.cancel()

        if state == FeedState.QUEUED:
            self._cancel_queued(feed)
        else:
            self._messages[feed] = STATUS_CANCELLING
            logger.info("feed_cancel_requested", feed=feed)

        return True

    def cancel_all(self) -> bool:
        """Cancel the whole master run.

        Queued feeds are marked cancelled at once; the feed in flight aborts at
        its next checkpoint.

        Returns:
            bool: False if no master run is in progress
        """
        if self._run_token is None:
            return False

        self._run_token.cancel()
        for feed, state in list(self._states.items()):
            if state == FeedState.QUEUED:
                self._cancel_queued(feed)

        logger.info("master_sync_cancel_requested")
        return True

    # Per-feed pipeline

    async def _run_feed(
        self,
        feed: str,
        post_limit: int,
        token: CancellationToken,
        run_token: Optional[CancellationToken],
        progress: Optional[SyncProgress]
    ) -> FeedState:
        expected_units = 1 + post_limit if progress is not None else 0
        units_taken = 0
        inserted: List[str] = []

        def checkpoint() -> None:
            # The run token takes precedence over the feed token
            if run_token is not None and run_token.cancelled:
                raise SyncCancelled(feed)
            if token.cancelled:
                raise SyncCancelled(feed)

        def advance() -> None:
            nonlocal units_taken
            if progress is not None:
                progress.complete()
                units_taken += 1

        def credit_remaining() -> None:
            if progress is not None and expected_units > units_taken:
                progress.complete(expected_units - units_taken)

        self._set(feed, FeedState.SYNCING, STATUS_FETCHING)
        logger.info("feed_sync_started", feed=feed, post_limit=post_limit)

        try:
            checkpoint()
            payloads = await self.client.fetch_posts(feed)
            await merge_posts(
                self.conn, feed, payloads, self.media_cache,
                inserted=inserted, checkpoint=checkpoint
            )
            advance()

            top_posts = payloads[:post_limit]
            missing = post_limit - len(top_posts)
            if progress is not None and missing > 0:
                progress.reduce_total(missing)
                expected_units -= missing

            for index, payload in enumerate(top_posts):
                checkpoint()
                self._messages[feed] = f"Caching comments ({index + 1}/{len(top_posts)})..."

                try:
                    nodes = await self.client.fetch_comments(payload.id, feed)
                    stored = merge_comments(self.conn, flatten_comments(nodes, payload.id))
                    logger.info(
                        "comments_cached",
                        feed=feed,
                        post_id=payload.id,
                        title=payload.title[:40],
                        inserted_count=stored
                    )
                    await self._sleep(self.settings.courtesy_delay)
                    checkpoint()

                except RateLimited:
                    backoff = self.settings.rate_limit_backoff
                    self._messages[feed] = f"Rate Limit Hit! Pausing {backoff:g}s..."
                    logger.warning("rate_limit_backoff", feed=feed, post_id=payload.id, delay=backoff)
                    self.warnings.append(
                        WARNING_TYPE_RATE_LIMITED,
                        f"Rate limit hit while caching comments for r/{feed}",
                        {'feed': feed, 'post_id': payload.id, 'delay': backoff}
                    )
                    await self._sleep(backoff)
                    checkpoint()

                advance()

        except SyncCancelled:
            rollback_inserts(self.conn, inserted)
            self._set(feed, FeedState.CANCELLED, STATUS_CANCELLED)
            credit_remaining()
            self.warnings.append(
                WARNING_TYPE_FEED_SYNC_CANCELLED,
                f"Sync cancelled for r/{feed}",
                {'feed': feed, 'rolled_back': len(inserted)}
            )
            logger.warning("feed_sync_cancelled", feed=feed, rolled_back=len(inserted))

        except asyncio.CancelledError:
            rollback_inserts(self.conn, inserted)
            self._set(feed, FeedState.CANCELLED, STATUS_CANCELLED)
            credit_remaining()
            raise

        except Exception as e:
            self._set(feed, FeedState.ERROR, STATUS_ERROR)
            credit_remaining()
            self.warnings.append(
                WARNING_TYPE_FEED_SYNC_FAILED,
                f"Sync failed for r/{feed}: {e}",
                {'feed': feed, 'error_type': type(e).__name__}
            )
            logger.error(
                "feed_sync_failed",
                feed=feed,
                error=str(e),
                error_type=type(e).__name__
            )

        else:
            self._set(feed, FeedState.DONE, STATUS_DONE)
            logger.info("feed_sync_completed", feed=feed, inserted_count=len(inserted))

        return self.state(feed)

    # Maintenance

    def clear_cache(self) -> Dict[str, int]:
        """Delete all cached posts, comments and media files.

        Raises:
            SyncInProgressError: While any feed is queued or syncing
        """
        if self.active_feeds or self.is_master_running:
            raise SyncInProgressError("Cannot clear the cache while a sync is running")

        counts = storage.clear_cached_data(self.conn)
        counts['media_files'] = self.media_cache.clear_cache() if self.media_cache is not None else 0
        self.warnings.clear()
        self._states.clear()
        self._messages.clear()

        logger.info("cache_cleared", **counts)
        return counts

    def status(self) -> Dict[str, Any]:
        """Status snapshot for polling callers."""
        return {
            'master_running': self.is_master_running,
            'active_feeds': self.active_feeds,
            'feeds': self.feed_statuses(),
            'progress': self.progress.to_dict() if self.progress is not None else None,
            'warnings': self.warnings.to_list(),
        }
