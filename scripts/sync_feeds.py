#!/usr/bin/env python3
"""Sync subscribed Reddit feeds into the offline cache from the command line.

Runs a master sync over every subscription (or a single feed with --feed),
printing each feed's outcome and the warnings collected along the way.

Usage:
    python scripts/sync_feeds.py [--limit 10 | --deep] [--skip-recent] [--feed NAME]
    python scripts/sync_feeds.py --cleanup
    python scripts/sync_feeds.py --clear-cache

Optional env vars: DB_PATH, MEDIA_CACHE_DIR, REDDIT_USER_AGENT, REDDIT_TIMEOUT
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path so offline_reddit.* imports work without installing
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def _load_dotenv():
    """Load .env file into os.environ if it exists."""
    env_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
    if os.path.exists(env_path):
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    os.environ.setdefault(key.strip(), value.strip())

_load_dotenv()


async def run_sync(args) -> int:
    """Open the store, run the requested operation and print a summary."""
    from offline_reddit.backend.db.connection import get_connection, init_schema
    from offline_reddit.backend.utils.logging_config import setup_logging
    from offline_reddit.media import MediaCache
    from offline_reddit.reddit import RedditFeedClient
    from offline_reddit.storage import cleanup_old_posts
    from offline_reddit.subscriptions import ensure_default_subscriptions
    from offline_reddit.sync import FeedState, SyncScheduler, SyncSettings

    setup_logging(log_dir="logs", log_filename="offline_reddit.log", console_level=logging.WARNING)

    with get_connection() as conn:
        init_schema(conn)
        ensure_default_subscriptions(conn)

        client = RedditFeedClient.from_env()
        settings = SyncSettings.from_env()
        scheduler = SyncScheduler(
            conn, client,
            MediaCache(user_agent=client.user_agent, timeout=client.timeout),
            settings
        )

        if args.clear_cache:
            counts = scheduler.clear_cache()
            print(f"Cleared {counts['posts']} posts, {counts['comments']} comments, "
                  f"{counts['media_files']} media files")
            return 0

        if args.cleanup:
            deleted = cleanup_old_posts(conn)
            print(f"Retention cleanup removed {deleted} posts")
            return 0

        post_limit = args.limit
        if post_limit is None:
            post_limit = settings.deep_post_limit if args.deep else settings.default_post_limit

        if args.feed:
            print(f"Syncing r/{args.feed.lower()} ({post_limit} posts with comments)...")
            results = {args.feed.lower(): await scheduler.sync_feed(args.feed, post_limit=post_limit)}
        else:
            plan = scheduler.plan_master_sync()
            skip = plan.recent if args.skip_recent else []
            if skip:
                print(f"Skipping recently synced: {', '.join(skip)}")
            print(f"Syncing {len(plan.recent) + len(plan.stale) - len(skip)} feeds "
                  f"({post_limit} posts with comments each)...")
            results = await scheduler.master_sync(post_limit=post_limit, skip=skip)

        for feed, state in results.items():
            print(f"  r/{feed}: {state.value} - {scheduler.status_message(feed)}")

        for warning in scheduler.warnings.to_list():
            print(f"  warning [{warning['type']}]: {warning['message']}")

        failed = [feed for feed, state in results.items() if state == FeedState.ERROR]
        return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(
        description="Sync subscribed Reddit feeds into the offline cache"
    )
    depth = parser.add_mutually_exclusive_group()
    depth.add_argument("--limit", type=int, default=None, help="Posts per feed whose comments are cached (default: 10)")
    depth.add_argument("--deep", action="store_true", help="Deep sync: cache comments for the top 25 posts")
    parser.add_argument("--skip-recent", action="store_true", help="Skip feeds synced in the last 15 minutes")
    parser.add_argument("--feed", default=None, help="Sync only this feed")
    parser.add_argument("--cleanup", action="store_true", help="Apply the retention policy and exit")
    parser.add_argument("--clear-cache", action="store_true", help="Delete all cached posts, comments and media, then exit")
    args = parser.parse_args()

    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be at least 1")

    sys.exit(asyncio.run(run_sync(args)))


if __name__ == "__main__":
    main()
