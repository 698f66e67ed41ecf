"""Comment tree flattening and collapse logic.

Reddit returns comments as a recursive tree. The cache stores them as a flat
pre-order sequence where ``order_index`` is the position in that traversal and
``depth`` is the nesting level. Everything the reader needs (display order,
collapsing a thread, jumping between top-level comments) is computed from that
sequence alone.
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence, Set

from offline_reddit.models.reddit_models import Comment, CommentNode, RepliesListing


class JumpTarget(NamedTuple):
    """Result of a top-level navigation step.

    Attributes:
        index: Position in the list of top-level comments, or -1 for the post header
        comment_id: ID of the comment to scroll to, or None for the post header
    """
    index: int
    comment_id: Optional[str]


class CollapseJump(NamedTuple):
    """Result of collapsing the current thread and jumping on."""
    collapsed: Set[str]
    target: JumpTarget


def flatten_comments(nodes: Iterable[CommentNode], post_id: str) -> List[Comment]:
    """Flatten a comment tree into pre-order Comment records.

    Only nodes whose kind marks them as real comments ("t1") are emitted or
    descended into; "more" stubs are skipped without stopping the traversal of
    their siblings. Nodes missing an id, author or body contribute no record
    but their replies are still visited.

    Args:
        nodes: Top-level comment nodes as returned by the comments endpoint
        post_id: Reddit ID of the owning post

    Returns:
        list[Comment]: Records in pre-order with order_index = output position

    Example:
        >>> comments = flatten_comments(nodes, "abc123")
        >>> [(c.id, c.depth) for c in comments]
        [('A', 0), ('B', 1), ('C', 0)]
    """
    flattened: List[Comment] = []
    # Explicit stack keeps very deep threads off the Python call stack
    stack = list(reversed(list(nodes)))

    while stack:
        node = stack.pop()
        if not node.is_comment:
            continue

        data = node.data
        if data.id is not None and data.author is not None and data.body is not None:
            flattened.append(Comment(
                id=data.id,
                post_id=post_id,
                author=data.author,
                body=data.body,
                depth=data.depth if data.depth is not None else 0,
                order_index=len(flattened),
            ))

        if isinstance(data.replies, RepliesListing):
            stack.extend(reversed(data.replies.children))

    return flattened


def _in_order(comments: Iterable[Comment]) -> List[Comment]:
    return sorted(comments, key=lambda c: c.order_index)


def visible_comments(comments: Iterable[Comment], collapsed_ids: Set[str]) -> List[Comment]:
    """Return the comments left visible after collapsing ``collapsed_ids``.

    A collapsed comment stays visible itself; every following comment deeper
    than it is hidden until the first comment at the same or a shallower depth.

    Example:
        A(0) B(1) C(1) D(0) with collapsed={"A"} -> A D
    """
    result: List[Comment] = []
    hide_below: Optional[int] = None

    for comment in _in_order(comments):
        if hide_below is not None and comment.depth > hide_below:
            continue

        hide_below = None
        result.append(comment)
        if comment.id in collapsed_ids:
            hide_below = comment.depth

    return result


def top_level_comments(comments: Iterable[Comment]) -> List[Comment]:
    """Depth-0 comments in display order."""
    return [c for c in _in_order(comments) if c.depth == 0]


def top_level_ancestor(comments: Iterable[Comment], comment: Comment) -> Optional[Comment]:
    """Nearest depth-0 comment at or before ``comment`` in traversal order."""
    ancestor = None
    for candidate in _in_order(comments):
        if candidate.order_index > comment.order_index:
            break
        if candidate.depth == 0:
            ancestor = candidate
    return ancestor


def next_top_level(comments: Sequence[Comment], current_index: int) -> JumpTarget:
    """Advance to the next top-level comment, wrapping back to the post header.

    Args:
        comments: All comments of the post
        current_index: Current position among top-level comments (-1 = header)

    Returns:
        JumpTarget: The next top-level comment, or (-1, None) after the last one
    """
    top_level = top_level_comments(comments)
    next_index = current_index + 1

    if next_index >= len(top_level):
        return JumpTarget(-1, None)

    return JumpTarget(next_index, top_level[next_index].id)


def collapse_thread_and_jump(
    comments: Sequence[Comment],
    collapsed_ids: Set[str],
    comment: Comment,
    current_index: int
) -> CollapseJump:
    """Collapse the thread containing ``comment`` and jump to the next top-level comment.

    The thread's top-level ancestor is collapsed; a comment with no top-level
    ancestor is collapsed itself. ``collapsed_ids`` is not modified.
    """
    ancestor = top_level_ancestor(comments, comment)
    collapsed = set(collapsed_ids)
    collapsed.add(ancestor.id if ancestor is not None else comment.id)

    return CollapseJump(collapsed, next_top_level(comments, current_index))
