"""Subscription management: name normalization, validation and first-run defaults."""

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import structlog

from offline_reddit import storage
from offline_reddit.backend.db.connection import get_config, set_config
from offline_reddit.reddit import NetworkError, RedditFeedClient

logger = structlog.get_logger()

DEFAULT_SUBSCRIPTIONS = ['askreddit', 'askscience+explainlikeimfive+askengineers']
FIRST_RUN_KEY = 'has_launched_before'


class ValidationOutcome(str, Enum):
    ADDED = "added"
    ALREADY_SUBSCRIBED = "already_subscribed"
    SUGGESTION = "suggestion"
    NOT_FOUND = "not_found"
    NETWORK_ERROR = "network_error"


@dataclass
class ValidationResult:
    """Result of validate_and_add().

    Attributes:
        outcome: What happened
        name: Normalized name that was checked (or added)
        suggestion: Closest existing subreddit, only for SUGGESTION
        message: Human-readable summary
    """
    outcome: ValidationOutcome
    name: str
    suggestion: Optional[str] = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome.value,
            'name': self.name,
            'suggestion': self.suggestion,
            'message': self.message,
        }


def normalize_feed_name(raw: str) -> str:
    """Trim, drop all spaces and lowercase a feed name.

    Raises:
        ValueError: If no subreddit name is left after normalization

    Example:
        >>> normalize_feed_name("  AskScience + ELI5 ")
        'askscience+eli5'
    """
    name = raw.strip().replace(' ', '').lower()
    if not name:
        raise ValueError("Feed name must not be empty")
    if not feed_components(name):
        raise ValueError(f"Feed name '{raw.strip()}' names no subreddit")
    return name


def feed_components(name: str) -> List[str]:
    """Split a composite feed name into its non-empty components."""
    return [part for part in name.split('+') if part]


async def validate_and_add(
    conn: sqlite3.Connection,
    client: RedditFeedClient,
    raw_name: str,
    add_anyway: bool = False
) -> ValidationResult:
    """Validate a feed name against Reddit and subscribe to it when it exists.

    Single names that do not exist go through Reddit's subreddit search for a
    suggestion; composite names report the first missing component instead.

    Args:
        conn: Database connection
        client: Reddit feed client
        raw_name: Name as typed by the user
        add_anyway: Skip validation and subscribe directly

    Returns:
        ValidationResult

    Raises:
        ValueError: If the name is empty after normalization
    """
    name = normalize_feed_name(raw_name)

    if storage.subscription_exists(conn, name):
        return ValidationResult(
            ValidationOutcome.ALREADY_SUBSCRIBED, name,
            message=f"Already subscribed to r/{name}"
        )

    if add_anyway:
        storage.add_subscription(conn, name)
        return ValidationResult(ValidationOutcome.ADDED, name, message=f"Added r/{name}")

    components = feed_components(name)

    try:
        for component in components:
            if await client.subreddit_exists(component):
                continue

            if len(components) > 1:
                logger.info("feed_component_not_found", feed=name, component=component)
                return ValidationResult(
                    ValidationOutcome.NOT_FOUND, name,
                    message=f"r/{component} does not exist"
                )

            suggestion = await client.suggest_subreddit(component)
            if suggestion is not None:
                return ValidationResult(
                    ValidationOutcome.SUGGESTION, name,
                    suggestion=suggestion,
                    message=f"r/{name} was not found. Did you mean r/{suggestion}?"
                )

            return ValidationResult(
                ValidationOutcome.NOT_FOUND, name,
                message=f"r/{name} does not exist"
            )

    except NetworkError as e:
        logger.warning("feed_validation_network_error", feed=name, error=str(e))
        return ValidationResult(
            ValidationOutcome.NETWORK_ERROR, name,
            message="Network error while checking the feed"
        )

    storage.add_subscription(conn, name)
    return ValidationResult(ValidationOutcome.ADDED, name, message=f"Added r/{name}")


def ensure_default_subscriptions(conn: sqlite3.Connection) -> bool:
    """Insert the default feeds on the very first launch of a store.

    Returns:
        bool: True if the defaults were inserted by this call
    """
    if get_config(conn, FIRST_RUN_KEY) == 'true':
        return False

    for name in DEFAULT_SUBSCRIPTIONS:
        storage.add_subscription(conn, name)
    set_config(conn, FIRST_RUN_KEY, 'true')

    logger.info("default_subscriptions_added", feeds=DEFAULT_SUBSCRIPTIONS)
    return True
