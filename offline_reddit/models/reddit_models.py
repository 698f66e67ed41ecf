"""Reddit data models for the offline cache.

This module defines the data structures used throughout the sync pipeline:
the wire payloads decoded from Reddit's public JSON API, and the records
persisted in the local store.

Wire Payloads:
    PostPayload: one entry of a subreddit listing (``data.children[].data``)
    CommentNode: one ``{kind, data}`` child of a comment listing
    CommentPayload: the ``data`` of a comment node, with optional replies
    RepliesEmpty / RepliesListing: the two shapes of a comment's ``replies`` field

Local Records:
    Subscription: a followed feed ("+"-joined composites are a single feed)
    Post: a cached post with its ranking position at the latest fetch
    Comment: a flattened comment with depth and pre-order position

These models use dataclasses for simplicity and map cleanly to the tables in
backend/db/schema.sql.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

# Reddit "thing" kinds
KIND_COMMENT = "t1"
KIND_MORE = "more"
KIND_SUBREDDIT = "t5"


def _optional(data: Dict[str, Any], key: str, expected_type: type) -> Any:
    """Return data[key] if present and of expected_type, otherwise None."""
    value = data.get(key)
    if isinstance(value, expected_type) and not (expected_type is int and isinstance(value, bool)):
        return value
    return None


def _required_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"Post field '{key}' missing or not a string")
    return value


def clean_reddit_text(text: str) -> str:
    """Decode the HTML entities Reddit leaves in titles and bodies.

    Example:
        >>> clean_reddit_text("Q&amp;A &lt;3&#x200B;")
        'Q&A <3'
    """
    return (text.replace("&amp;", "&")
                .replace("&lt;", "<")
                .replace("&gt;", ">")
                .replace("&quot;", '"')
                .replace("&#x200B;", ""))


@dataclass
class PostPayload:
    """A post as returned by the listing endpoint.

    Attributes:
        id: Reddit post ID (base36, no "t3_" prefix)
        title: Post title
        author: Username of the poster
        selftext: Post body text (empty for link/image posts)
        url: Attached link or media URL, if any
        is_gallery: True for multi-image gallery posts
        gallery_media_ids: Media ids of gallery items in display order
            (None for items without a media id)
        media_metadata: Mapping of media id -> source image URL
            (None when the metadata entry has no source URL)
    """
    id: str
    title: str
    author: str
    selftext: str
    url: Optional[str] = None
    is_gallery: bool = False
    gallery_media_ids: List[Optional[str]] = field(default_factory=list)
    media_metadata: Dict[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostPayload":
        """Build a PostPayload from a listing child's ``data`` object.

        Raises:
            ValueError: If id, title, author or selftext is missing or not a string
        """
        if not isinstance(data, dict):
            raise ValueError("Post payload is not an object")

        gallery_ids: List[Optional[str]] = []
        gallery_data = data.get('gallery_data')
        if isinstance(gallery_data, dict) and isinstance(gallery_data.get('items'), list):
            for item in gallery_data['items']:
                gallery_ids.append(_optional(item, 'media_id', str) if isinstance(item, dict) else None)

        metadata: Dict[str, Optional[str]] = {}
        raw_metadata = data.get('media_metadata')
        if isinstance(raw_metadata, dict):
            for media_id, entry in raw_metadata.items():
                source = entry.get('s') if isinstance(entry, dict) else None
                metadata[media_id] = _optional(source, 'u', str) if isinstance(source, dict) else None

        return cls(
            id=_required_str(data, 'id'),
            title=_required_str(data, 'title'),
            author=_required_str(data, 'author'),
            selftext=_required_str(data, 'selftext'),
            url=_optional(data, 'url', str),
            is_gallery=data.get('is_gallery') is True,
            gallery_media_ids=gallery_ids,
            media_metadata=metadata,
        )


@dataclass
class RepliesEmpty:
    """A comment with no loaded replies (Reddit sends an empty string)."""


@dataclass
class RepliesListing:
    """A comment whose replies are a nested listing of comment nodes."""
    children: List["CommentNode"] = field(default_factory=list)


Replies = Union[RepliesEmpty, RepliesListing]


@dataclass
class CommentPayload:
    """The ``data`` object of a comment node.

    Every field is optional on the wire: "more" stubs carry no author/body,
    and deleted comments may omit fields entirely.
    """
    id: Optional[str] = None
    author: Optional[str] = None
    body: Optional[str] = None
    depth: Optional[int] = None
    replies: Optional[Replies] = None


@dataclass
class CommentNode:
    """A ``{kind, data}`` child of a comment listing."""
    kind: str
    data: CommentPayload

    @property
    def is_comment(self) -> bool:
        return self.kind == KIND_COMMENT

    @classmethod
    def from_dict(cls, node: Dict[str, Any]) -> "CommentNode":
        """Decode a comment node, recursing through its replies.

        Raises:
            ValueError: If the node is not an object or has no string ``kind``
        """
        if not isinstance(node, dict) or not isinstance(node.get('kind'), str):
            raise ValueError("Comment node has no kind")

        data = node.get('data')
        if not isinstance(data, dict):
            data = {}

        payload = CommentPayload(
            id=_optional(data, 'id', str),
            author=_optional(data, 'author', str),
            body=_optional(data, 'body', str),
            depth=_optional(data, 'depth', int),
            replies=decode_replies(data['replies']) if 'replies' in data else None,
        )
        return cls(kind=node['kind'], data=payload)


def decode_listing_children(listing: Any) -> List[CommentNode]:
    """Decode ``listing.data.children`` into CommentNodes.

    Raises:
        ValueError: If the value is not a listing object
    """
    if not isinstance(listing, dict):
        raise ValueError("Listing is not an object")
    data = listing.get('data')
    if not isinstance(data, dict) or not isinstance(data.get('children'), list):
        raise ValueError("Listing has no data.children")
    return [CommentNode.from_dict(child) for child in data['children']]


def decode_replies(value: Any) -> Optional[Replies]:
    """Decode a comment's ``replies`` field.

    Alternatives are tried in order: a string placeholder, then a nested
    listing. Anything else decodes as RepliesEmpty so one malformed subtree
    never fails the whole comment page.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return RepliesEmpty()
    try:
        return RepliesListing(children=decode_listing_children(value))
    except ValueError:
        return RepliesEmpty()


@dataclass
class Subscription:
    """A followed feed, unique by lowercased name.

    Attributes:
        name: Normalized feed name, e.g. "askreddit" or "askscience+askengineers"
        created_at: When the subscription was added (ISO string from SQLite)
    """
    name: str
    created_at: Optional[str] = None


@dataclass
class Post:
    """A cached post.

    Attributes:
        id: Reddit post ID (maps to posts.id)
        title: Post title
        author: Username of the poster
        selftext: Post body text
        media_url: Single attached link or media URL, if any
        subreddit: Owning feed name (the subscription name, lowercased)
        fetched_at: When the post was first cached (UTC)
        sort_order: Position within the feed listing at the latest fetch
        local_image_files: Cached media filenames in gallery order
    """
    id: str
    title: str
    author: str
    selftext: str
    media_url: Optional[str]
    subreddit: str
    fetched_at: datetime
    sort_order: int = 0
    local_image_files: List[str] = field(default_factory=list)


@dataclass
class Comment:
    """A flattened comment.

    Attributes:
        id: Reddit comment ID (maps to comments.id)
        post_id: Reddit ID of the owning post
        author: Username of the comment author
        body: Comment text
        depth: Nesting level (0 = top-level reply to post)
        order_index: Position in the pre-order traversal of the post's tree
    """
    id: str
    post_id: str
    author: str
    body: str
    depth: int
    order_index: int
