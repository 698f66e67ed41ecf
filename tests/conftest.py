"""
Shared pytest fixtures for the offline cache tests.

These fixtures provide temporary databases with the schema applied, a media
directory, raw Reddit JSON builders and a scripted feed client.
All tests are behavioral - they verify what the code should do, not how it does it.
"""

import os
import tempfile
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from offline_reddit.backend.db.connection import init_schema, open_connection
from offline_reddit.models.reddit_models import CommentNode, PostPayload


def raw_post(post_id: str, title: str = None, **extra) -> Dict:
    """Listing child ``data`` object for a post."""
    data = {
        'id': post_id,
        'title': title or f"Post {post_id}",
        'author': f"author_{post_id}",
        'selftext': f"Body of {post_id}",
        'url': f"https://www.reddit.com/r/test/comments/{post_id}/",
    }
    data.update(extra)
    return data


def raw_listing(posts: List[Dict]) -> Dict:
    return {'kind': 'Listing', 'data': {'children': [{'kind': 't3', 'data': p} for p in posts]}}


def raw_comment(comment_id: str, depth: int = 0, replies=None, author: str = None, body: str = None) -> Dict:
    """Comment node; ``replies`` is a list of nodes, a raw value, or None for ""."""
    if isinstance(replies, list):
        replies = {'kind': 'Listing', 'data': {'children': replies}}
    elif replies is None:
        replies = ""
    return {
        'kind': 't1',
        'data': {
            'id': comment_id,
            'author': author or f"user_{comment_id}",
            'body': body or f"Comment {comment_id}",
            'depth': depth,
            'replies': replies,
        }
    }


def raw_more(count: int = 3) -> Dict:
    return {'kind': 'more', 'data': {'id': 'more1', 'count': count, 'children': ['x', 'y']}}


def comment_page(post_id: str, nodes: List[Dict]) -> List[Dict]:
    """Two-element array returned by the comments endpoint."""
    return [
        raw_listing([raw_post(post_id)]),
        {'kind': 'Listing', 'data': {'children': nodes}},
    ]


def make_payloads(*post_ids: str) -> List[PostPayload]:
    return [PostPayload.from_dict(raw_post(pid)) for pid in post_ids]


def make_nodes(raw_nodes: List[Dict]) -> List[CommentNode]:
    return [CommentNode.from_dict(node) for node in raw_nodes]


def mock_response(status_code: int = 200, json_data=None, content: bytes = b'') -> MagicMock:
    """requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


class FakeFeedClient:
    """Scripted stand-in for RedditFeedClient.

    Attributes:
        listings: feed name -> list of PostPayload (or an exception to raise)
        comments: post id -> list of raw comment nodes (or an exception to raise,
            or a tuple of such outcomes consumed one call at a time)
        calls: Ordered record of ("posts", feed) / ("comments", post_id) calls
    """

    def __init__(self):
        self.listings: Dict[str, object] = {}
        self.comments: Dict[str, object] = {}
        self.calls: List[tuple] = []
        self.on_fetch_comments = None
        self.user_agent = "test-agent"
        self.timeout = 1.0

    async def fetch_posts(self, feed_name: str) -> List[PostPayload]:
        self.calls.append(("posts", feed_name))
        outcome = self.listings.get(feed_name, [])
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)

    async def fetch_comments(self, post_id: str, feed_name: str) -> List[CommentNode]:
        self.calls.append(("comments", post_id))
        if self.on_fetch_comments is not None:
            self.on_fetch_comments(post_id)

        outcome = self.comments.get(post_id, [])
        if isinstance(outcome, tuple):
            # Sequence of per-call outcomes
            outcome, rest = outcome[0], outcome[1:]
            self.comments[post_id] = rest if rest else []
        if isinstance(outcome, Exception):
            raise outcome
        return make_nodes(outcome)

    async def subreddit_exists(self, name: str) -> bool:
        return name in self.listings

    async def suggest_subreddit(self, name: str) -> Optional[str]:
        return None

    def comment_calls(self) -> List[str]:
        return [target for kind, target in self.calls if kind == "comments"]


@pytest.fixture
def temp_db_path():
    """Provide a temporary database file path that is cleaned up after test."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    if os.path.exists(db_path):
        os.unlink(db_path)
    # Also cleanup WAL files if they exist
    for suffix in ['-wal', '-shm']:
        wal_file = db_path + suffix
        if os.path.exists(wal_file):
            os.unlink(wal_file)


@pytest.fixture
def db(temp_db_path):
    """Connection to a temporary database with the schema applied."""
    conn = open_connection(temp_db_path)
    init_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def media_dir(tmp_path):
    path = tmp_path / "media"
    path.mkdir()
    return path


@pytest.fixture
def fake_client():
    return FakeFeedClient()
