"""Reddit Integration Module

This module provides the unauthenticated client for Reddit's public JSON API:
subreddit listings, comment pages, subreddit existence checks and search-based
name suggestions.

Every request carries a fixed identifying User-Agent and a bounded timeout.
No retries happen here; retry and backoff policy belongs to the sync scheduler.
Blocking ``requests`` calls are run in the default executor so the scheduler's
event loop keeps serving other work while a request is in flight.
"""

import asyncio
import os
from functools import partial
from typing import Any, Dict, List, Optional

import requests
import structlog

from offline_reddit.models.reddit_models import (
    KIND_SUBREDDIT,
    CommentNode,
    PostPayload,
    decode_listing_children,
)

# Initialize logger
logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://www.reddit.com"
DEFAULT_USER_AGENT = "python:offline-reddit:v1.0 (offline reader)"
DEFAULT_TIMEOUT = 30.0


class RedditFeedError(Exception):
    """Base class for Reddit feed client failures."""
    pass


class NetworkError(RedditFeedError):
    """Transport or connectivity failure, including non-success HTTP status."""
    pass


class DecodeError(RedditFeedError):
    """The response body was not the JSON shape we expect."""
    pass


class RateLimited(RedditFeedError):
    """Reddit answered a comment request with HTTP 429."""
    pass


class RedditFeedClient:
    """Client for the public Reddit JSON endpoints.

    Attributes:
        base_url: Root URL for all requests (default: https://www.reddit.com)
        user_agent: Identifying User-Agent sent with every request
        timeout: Per-request timeout in seconds

    Example:
        >>> client = RedditFeedClient()
        >>> posts = await client.fetch_posts("askscience+askengineers")
        >>> nodes = await client.fetch_comments(posts[0].id, "askscience+askengineers")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.base_url = base_url.rstrip('/')
        self.user_agent = user_agent
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "RedditFeedClient":
        """Build a client from REDDIT_BASE_URL, REDDIT_USER_AGENT and REDDIT_TIMEOUT."""
        return cls(
            base_url=os.environ.get('REDDIT_BASE_URL', DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
            user_agent=os.environ.get('REDDIT_USER_AGENT', DEFAULT_USER_AGENT).strip() or DEFAULT_USER_AGENT,
            timeout=float(os.environ.get('REDDIT_TIMEOUT', DEFAULT_TIMEOUT)),
        )

    def _get_sync(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        try:
            return requests.get(
                url,
                headers={'User-Agent': self.user_agent},
                params=params,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(
                "reddit_request_failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            raise NetworkError(f"Request to {url} failed: {e}") from e

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Issue a GET request without blocking the event loop.

        Raises:
            NetworkError: On any transport failure or timeout
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._get_sync, url, params))

    @staticmethod
    def _json(response: requests.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error("reddit_response_not_json", url=url, status=response.status_code)
            raise DecodeError(f"Response from {url} is not valid JSON") from e

    async def fetch_posts(self, feed_name: str) -> List[PostPayload]:
        """Fetch the hot listing for a feed.

        Args:
            feed_name: Subreddit name or "+"-joined composite

        Returns:
            list[PostPayload]: Posts in the feed's ranking order

        Raises:
            NetworkError: On transport failure or non-200 status
            DecodeError: If the listing or any post in it is malformed
        """
        url = f"{self.base_url}/r/{feed_name}/hot.json"
        response = await self._get(url)

        if response.status_code != 200:
            logger.error("hot_posts_fetch_failed", feed=feed_name, status=response.status_code)
            raise NetworkError(f"Listing for r/{feed_name} returned HTTP {response.status_code}")

        body = self._json(response, url)

        try:
            children = body['data']['children']
            if not isinstance(children, list):
                raise TypeError("data.children is not a list")
            posts = [PostPayload.from_dict(child['data']) for child in children]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                "hot_posts_decode_failed",
                feed=feed_name,
                error=str(e),
                error_type=type(e).__name__
            )
            raise DecodeError(f"Malformed listing for r/{feed_name}: {e}") from e

        logger.info("hot_posts_fetched", feed=feed_name, fetched_count=len(posts))
        return posts

    async def fetch_comments(self, post_id: str, feed_name: str) -> List[CommentNode]:
        """Fetch the comment page for a post, preserving the reply tree.

        Args:
            post_id: Reddit post ID
            feed_name: Feed the post was listed in

        Returns:
            list[CommentNode]: Top-level nodes of the comment listing (the second
                element of the response array). Empty if the array has fewer
                than two elements.

        Raises:
            RateLimited: On HTTP 429
            NetworkError: On transport failure or any other non-200 status
            DecodeError: If the response is not a comment listing array
        """
        url = f"{self.base_url}/r/{feed_name}/comments/{post_id}.json"
        response = await self._get(url)

        if response.status_code == 429:
            logger.warning("reddit_rate_limited", post_id=post_id, feed=feed_name)
            raise RateLimited(f"Rate limited fetching comments for {post_id}")

        if response.status_code != 200:
            logger.error("comments_fetch_failed", post_id=post_id, feed=feed_name, status=response.status_code)
            raise NetworkError(f"Comments for {post_id} returned HTTP {response.status_code}")

        body = self._json(response, url)

        if not isinstance(body, list):
            raise DecodeError(f"Comment response for {post_id} is not an array")

        if len(body) < 2:
            return []

        try:
            nodes = decode_listing_children(body[1])
        except ValueError as e:
            logger.error("comments_decode_failed", post_id=post_id, error=str(e))
            raise DecodeError(f"Malformed comment listing for {post_id}: {e}") from e

        logger.debug("comments_fetched", post_id=post_id, top_level_count=len(nodes))
        return nodes

    async def subreddit_exists(self, name: str) -> bool:
        """Check a single subreddit via its about.json.

        Returns:
            bool: True if the endpoint answers 200 with ``kind == "t5"``

        Raises:
            NetworkError: On transport failure
        """
        url = f"{self.base_url}/r/{requests.utils.quote(name, safe='')}/about.json"
        response = await self._get(url)

        if response.status_code != 200:
            return False

        try:
            body = response.json()
        except ValueError:
            return False

        return isinstance(body, dict) and body.get('kind') == KIND_SUBREDDIT

    async def suggest_subreddit(self, name: str) -> Optional[str]:
        """Ask Reddit's subreddit search for the closest name to ``name``.

        Returns:
            Optional[str]: The first result's display name when it differs
                (case-insensitively) from ``name``, otherwise None

        Raises:
            NetworkError: On transport failure
        """
        url = f"{self.base_url}/search.json"
        response = await self._get(url, params={'q': name, 'type': 'sr', 'limit': 1})

        try:
            body = response.json()
            suggestion = body['data']['children'][0]['data']['display_name']
        except (ValueError, KeyError, IndexError, TypeError):
            return None

        if not isinstance(suggestion, str) or suggestion.lower() == name.lower():
            return None

        return suggestion
