"""
Tests for incremental merging of listings and comments, provisional-insert
rollback, media caching of new posts and on-demand comment loading.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from offline_reddit import storage
from offline_reddit.comment_tree import flatten_comments
from offline_reddit.merge import (
    load_post_comments,
    merge_comments,
    merge_posts,
    rollback_inserts,
)
from offline_reddit.models.reddit_models import PostPayload
from offline_reddit.reddit import NetworkError
from offline_reddit.sync import SyncCancelled
from tests.conftest import make_nodes, make_payloads, raw_comment, raw_post

FIRST_FETCH = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
SECOND_FETCH = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class TestMergePosts:
    """New posts are inserted; known posts only move in the ranking."""

    @pytest.mark.asyncio
    async def test_inserts_new_posts_with_listing_position(self, db):
        result = await merge_posts(db, 'AskReddit', make_payloads('a', 'b', 'c'), now=FIRST_FETCH)

        assert result.inserted_ids == ['a', 'b', 'c']
        posts = storage.list_posts(db, 'askreddit')
        assert [(p.id, p.sort_order) for p in posts] == [('a', 0), ('b', 1), ('c', 2)]
        assert all(p.subreddit == 'askreddit' for p in posts)
        assert all(p.fetched_at == FIRST_FETCH for p in posts)

    @pytest.mark.asyncio
    async def test_existing_posts_get_new_sort_order_only(self, db):
        await merge_posts(db, 'askreddit', make_payloads('a', 'b'), now=FIRST_FETCH)

        changed = [PostPayload.from_dict(raw_post('b', title='Edited title')),
                   PostPayload.from_dict(raw_post('a'))]
        result = await merge_posts(db, 'askreddit', changed, now=SECOND_FETCH)

        assert result.inserted_ids == []
        assert result.updated_ids == ['b', 'a']
        post_b = storage.get_post(db, 'b')
        assert post_b.sort_order == 0
        assert post_b.title == 'Post b'
        assert post_b.fetched_at == FIRST_FETCH

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, db):
        payloads = make_payloads('a', 'b', 'c')
        await merge_posts(db, 'askreddit', payloads, now=FIRST_FETCH)
        snapshot = storage.list_posts(db, 'askreddit')

        await merge_posts(db, 'askreddit', payloads, now=SECOND_FETCH)

        assert storage.list_posts(db, 'askreddit') == snapshot

    @pytest.mark.asyncio
    async def test_checkpoint_aborts_midway_with_partial_inserts_recorded(self, db):
        inserted = []
        calls = {'n': 0}

        def checkpoint():
            calls['n'] += 1
            if calls['n'] == 3:
                raise SyncCancelled('askreddit')

        with pytest.raises(SyncCancelled):
            await merge_posts(db, 'askreddit', make_payloads('a', 'b', 'c', 'd'),
                              inserted=inserted, checkpoint=checkpoint)

        assert inserted == ['a', 'b']
        assert storage.existing_post_ids(db, ['a', 'b', 'c', 'd']) == {'a', 'b'}

    @pytest.mark.asyncio
    async def test_new_posts_have_media_cached(self, db):
        payload = PostPayload.from_dict(raw_post('img', url='https://i.redd.it/cat.jpg'))
        media_cache = MagicMock()
        media_cache.download_and_cache = AsyncMock(return_value='img_0.jpg')

        await merge_posts(db, 'pics', [payload], media_cache=media_cache)

        media_cache.download_and_cache.assert_awaited_once_with('https://i.redd.it/cat.jpg', 'img_0')
        assert storage.get_post(db, 'img').local_image_files == ['img_0.jpg']

    @pytest.mark.asyncio
    async def test_checkpoint_runs_before_each_gallery_download(self, db):
        payload = PostPayload.from_dict(raw_post(
            'gal',
            is_gallery=True,
            gallery_data={'items': [{'media_id': 'm1'}, {'media_id': 'm2'}]},
            media_metadata={
                'm1': {'s': {'u': 'https://preview.redd.it/one.jpg'}},
                'm2': {'s': {'u': 'https://preview.redd.it/two.jpg'}},
            },
        ))
        media_cache = MagicMock()
        media_cache.download_and_cache = AsyncMock(return_value='gal_0.jpg')
        inserted = []

        def checkpoint():
            if media_cache.download_and_cache.await_count == 1:
                raise SyncCancelled('pics')

        with pytest.raises(SyncCancelled):
            await merge_posts(db, 'pics', [payload], media_cache=media_cache,
                              inserted=inserted, checkpoint=checkpoint)

        media_cache.download_and_cache.assert_awaited_once_with('https://preview.redd.it/one.jpg', 'gal_0')
        assert inserted == ['gal']

    @pytest.mark.asyncio
    async def test_known_posts_skip_media(self, db):
        payloads = make_payloads('a')
        await merge_posts(db, 'askreddit', payloads)
        media_cache = MagicMock()
        media_cache.download_and_cache = AsyncMock(return_value=None)

        await merge_posts(db, 'askreddit', payloads, media_cache=media_cache)

        media_cache.download_and_cache.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_media_download_leaves_empty_list(self, db):
        payload = PostPayload.from_dict(raw_post('img', url='https://i.redd.it/cat.jpg'))
        media_cache = MagicMock()
        media_cache.download_and_cache = AsyncMock(return_value=None)

        await merge_posts(db, 'pics', [payload], media_cache=media_cache)

        assert storage.get_post(db, 'img').local_image_files == []


class TestMergeComments:

    @pytest.mark.asyncio
    async def test_inserts_only_new_comments(self, db):
        await merge_posts(db, 'askreddit', make_payloads('p1'))
        first = flatten_comments(make_nodes([raw_comment('A'), raw_comment('B')]), 'p1')
        assert merge_comments(db, first) == 2

        second = flatten_comments(make_nodes([raw_comment('A', body='edited'), raw_comment('B'), raw_comment('C')]), 'p1')

        assert merge_comments(db, second) == 1
        comments = storage.list_comments(db, 'p1')
        assert [c.id for c in comments] == ['A', 'B', 'C']
        assert comments[0].body == 'Comment A'

    def test_empty_list(self, db):
        assert merge_comments(db, []) == 0


class TestRollback:

    @pytest.mark.asyncio
    async def test_rollback_removes_posts_and_comments(self, db):
        await merge_posts(db, 'askreddit', make_payloads('keep'), now=FIRST_FETCH)
        result = await merge_posts(db, 'askreddit', make_payloads('keep', 'new1', 'new2'))
        merge_comments(db, flatten_comments(make_nodes([raw_comment('c1')]), 'new1'))

        assert rollback_inserts(db, result.inserted_ids) == 2

        assert [p.id for p in storage.list_posts(db, 'askreddit')] == ['keep']
        assert storage.list_comments(db, 'new1') == []

    def test_rollback_nothing(self, db):
        assert rollback_inserts(db, []) == 0


class TestLoadPostComments:
    """On-demand comment caching for a single post."""

    @pytest.mark.asyncio
    async def test_fetches_when_no_comments_cached(self, db, fake_client):
        await merge_posts(db, 'askreddit', make_payloads('p1'))
        fake_client.comments['p1'] = [raw_comment('A', replies=[raw_comment('B', 1)])]

        stored = await load_post_comments(db, fake_client, storage.get_post(db, 'p1'))

        assert stored == 2
        assert fake_client.comment_calls() == ['p1']

    @pytest.mark.asyncio
    async def test_skips_fetch_when_cached(self, db, fake_client):
        await merge_posts(db, 'askreddit', make_payloads('p1'))
        fake_client.comments['p1'] = [raw_comment('A')]
        post = storage.get_post(db, 'p1')
        await load_post_comments(db, fake_client, post)

        assert await load_post_comments(db, fake_client, post) == 0
        assert fake_client.comment_calls() == ['p1']

    @pytest.mark.asyncio
    async def test_force_refresh_replaces_comments(self, db, fake_client):
        await merge_posts(db, 'askreddit', make_payloads('p1'))
        post = storage.get_post(db, 'p1')
        fake_client.comments['p1'] = [raw_comment('old1'), raw_comment('old2')]
        await load_post_comments(db, fake_client, post)

        fake_client.comments['p1'] = [raw_comment('new1', body='fresh')]
        stored = await load_post_comments(db, fake_client, post, force_refresh=True)

        assert stored == 1
        comments = storage.list_comments(db, 'p1')
        assert [(c.id, c.body) for c in comments] == [('new1', 'fresh')]

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_existing_comments(self, db, fake_client):
        await merge_posts(db, 'askreddit', make_payloads('p1'))
        post = storage.get_post(db, 'p1')
        fake_client.comments['p1'] = [raw_comment('A')]
        await load_post_comments(db, fake_client, post)

        fake_client.comments['p1'] = NetworkError("offline")
        with pytest.raises(NetworkError):
            await load_post_comments(db, fake_client, post, force_refresh=True)

        assert [c.id for c in storage.list_comments(db, 'p1')] == ['A']
