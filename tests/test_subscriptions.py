"""
Tests for feed name normalization, validation with suggestions, and
first-launch default subscriptions.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from offline_reddit import storage
from offline_reddit.backend.db.connection import get_config
from offline_reddit.reddit import NetworkError
from offline_reddit.subscriptions import (
    DEFAULT_SUBSCRIPTIONS,
    ValidationOutcome,
    ensure_default_subscriptions,
    feed_components,
    normalize_feed_name,
    validate_and_add,
)


def _client(existing=(), suggestion=None, exists_error=None):
    client = MagicMock()
    if exists_error is not None:
        client.subreddit_exists = AsyncMock(side_effect=exists_error)
    else:
        client.subreddit_exists = AsyncMock(side_effect=lambda name: name in existing)
    client.suggest_subreddit = AsyncMock(return_value=suggestion)
    return client


class TestNormalizeFeedName:

    @pytest.mark.parametrize('raw,expected', [
        ('AskReddit', 'askreddit'),
        ('  askscience  ', 'askscience'),
        ('AskScience + ExplainLikeImFive', 'askscience+explainlikeimfive'),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_feed_name(raw) == expected

    @pytest.mark.parametrize('raw', ['', '   ', '+', ' + ', '++'])
    def test_empty_rejected(self, raw):
        with pytest.raises(ValueError):
            normalize_feed_name(raw)

    def test_components_of_composite(self):
        assert feed_components('askscience+explainlikeimfive') == ['askscience', 'explainlikeimfive']
        assert feed_components('askreddit') == ['askreddit']


class TestValidateAndAdd:

    @pytest.mark.asyncio
    async def test_existing_subreddit_added(self, db):
        client = _client(existing={'askscience'})

        result = await validate_and_add(db, client, ' AskScience ')

        assert result.outcome == ValidationOutcome.ADDED
        assert result.name == 'askscience'
        assert storage.subscription_exists(db, 'askscience')

    @pytest.mark.asyncio
    async def test_already_subscribed_skips_network(self, db):
        storage.add_subscription(db, 'askreddit')
        client = _client()

        result = await validate_and_add(db, client, 'ASKREDDIT')

        assert result.outcome == ValidationOutcome.ALREADY_SUBSCRIBED
        client.subreddit_exists.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_add_anyway_skips_validation(self, db):
        client = _client()

        result = await validate_and_add(db, client, 'madeupsub', add_anyway=True)

        assert result.outcome == ValidationOutcome.ADDED
        assert storage.subscription_exists(db, 'madeupsub')
        client.subreddit_exists.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_composite_checks_every_component(self, db):
        client = _client(existing={'askscience', 'askengineers'})

        result = await validate_and_add(db, client, 'askscience+askengineers')

        assert result.outcome == ValidationOutcome.ADDED
        assert storage.subscription_exists(db, 'askscience+askengineers')
        assert client.subreddit_exists.await_count == 2

    @pytest.mark.asyncio
    async def test_composite_with_missing_component_names_it(self, db):
        client = _client(existing={'askscience'}, suggestion='AskEngineers')

        result = await validate_and_add(db, client, 'askscience+askenginers')

        assert result.outcome == ValidationOutcome.NOT_FOUND
        assert 'askenginers' in result.message
        assert result.suggestion is None
        client.suggest_subreddit.assert_not_awaited()
        assert not storage.subscription_exists(db, 'askscience+askenginers')

    @pytest.mark.asyncio
    async def test_single_missing_name_gets_suggestion(self, db):
        client = _client(suggestion='AskScience')

        result = await validate_and_add(db, client, 'askscince')

        assert result.outcome == ValidationOutcome.SUGGESTION
        assert result.suggestion == 'AskScience'
        assert not storage.subscription_exists(db, 'askscince')

    @pytest.mark.asyncio
    async def test_single_missing_name_without_suggestion(self, db):
        client = _client(suggestion=None)

        result = await validate_and_add(db, client, 'zzzzqqq')

        assert result.outcome == ValidationOutcome.NOT_FOUND
        assert result.to_dict()['outcome'] == 'not_found'

    @pytest.mark.asyncio
    async def test_network_failure_reported(self, db):
        client = _client(exists_error=NetworkError("offline"))

        result = await validate_and_add(db, client, 'askscience')

        assert result.outcome == ValidationOutcome.NETWORK_ERROR
        assert not storage.subscription_exists(db, 'askscience')

    @pytest.mark.asyncio
    async def test_empty_name_raises(self, db):
        with pytest.raises(ValueError):
            await validate_and_add(db, _client(), '   ')

    @pytest.mark.asyncio
    async def test_plus_only_name_not_added(self, db):
        with pytest.raises(ValueError):
            await validate_and_add(db, _client(), ' + ', add_anyway=True)

        assert storage.list_subscriptions(db) == []


class TestDefaultSubscriptions:

    def test_first_launch_inserts_defaults_once(self, db):
        assert ensure_default_subscriptions(db) is True
        assert [s.name for s in storage.list_subscriptions(db)] == sorted(DEFAULT_SUBSCRIPTIONS)
        assert get_config(db, 'has_launched_before') == 'true'

        storage.delete_subscription(db, 'askreddit')

        assert ensure_default_subscriptions(db) is False
        assert not storage.subscription_exists(db, 'askreddit')
