"""
Tests for media URL extraction and the on-disk image cache.
"""

import pytest
import requests
from unittest.mock import patch

from offline_reddit.media import MediaCache, extract_media_urls, media_extension
from offline_reddit.models.reddit_models import PostPayload
from tests.conftest import mock_response, raw_post


def _gallery_post(items, metadata):
    return PostPayload.from_dict(raw_post(
        'g1',
        is_gallery=True,
        gallery_data={'items': items},
        media_metadata=metadata,
    ))


class TestExtractMediaUrls:
    """Resolution of a post's downloadable media."""

    def test_single_url_post(self):
        post = PostPayload.from_dict(raw_post('p1', url='https://i.redd.it/cat.png'))

        assert extract_media_urls(post) == ['https://i.redd.it/cat.png']

    def test_post_without_url(self):
        post = PostPayload.from_dict(raw_post('p1', url=None))

        assert extract_media_urls(post) == []

    def test_gallery_resolves_in_item_order_and_unescapes(self):
        post = _gallery_post(
            [{'media_id': 'm2'}, {'media_id': 'm1'}],
            {
                'm1': {'s': {'u': 'https://preview.redd.it/one.jpg?width=640&amp;s=abc'}},
                'm2': {'s': {'u': 'https://preview.redd.it/two.png?width=640&amp;s=def'}},
            }
        )

        assert extract_media_urls(post) == [
            'https://preview.redd.it/two.png?width=640&s=def',
            'https://preview.redd.it/one.jpg?width=640&s=abc',
        ]

    def test_gallery_skips_items_without_metadata(self):
        post = _gallery_post(
            [{'media_id': 'm1'}, {'media_id': 'missing'}, {}],
            {'m1': {'s': {'u': 'https://preview.redd.it/one.jpg'}}}
        )

        assert extract_media_urls(post) == ['https://preview.redd.it/one.jpg']


class TestMediaExtension:

    @pytest.mark.parametrize('url,ext', [
        ('https://i.redd.it/a.JPG', 'jpg'),
        ('https://preview.redd.it/b.webp?width=640&amp;s=x', 'webp'),
        ('https://www.reddit.com/r/x/comments/abc/', ''),
        ('https://v.redd.it/video.mp4', 'mp4'),
    ])
    def test_extension_from_path(self, url, ext):
        assert media_extension(url) == ext


class TestMediaCache:
    """Downloads are keyed by a stable name and never raise."""

    def test_cache_dir_from_env(self, tmp_path):
        with patch.dict('os.environ', {'MEDIA_CACHE_DIR': str(tmp_path / 'env_media')}):
            cache = MediaCache()

        assert cache.cache_dir == tmp_path / 'env_media'

    @pytest.mark.asyncio
    async def test_download_writes_stable_filename(self, media_dir):
        cache = MediaCache(cache_dir=str(media_dir), user_agent='agent/1.0')

        with patch('offline_reddit.media.requests.get') as mock_get:
            mock_get.return_value = mock_response(200, content=b'\x89PNG')
            filename = await cache.download_and_cache('https://i.redd.it/cat.png', 'p1_0')

        assert filename == 'p1_0.png'
        assert (media_dir / 'p1_0.png').read_bytes() == b'\x89PNG'
        _, kwargs = mock_get.call_args
        assert kwargs['headers'] == {'User-Agent': 'agent/1.0'}

    @pytest.mark.asyncio
    async def test_disallowed_extension_not_downloaded(self, media_dir):
        cache = MediaCache(cache_dir=str(media_dir))

        with patch('offline_reddit.media.requests.get') as mock_get:
            filename = await cache.download_and_cache('https://v.redd.it/clip.mp4', 'p1_0')

        assert filename is None
        mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self, media_dir):
        cache = MediaCache(cache_dir=str(media_dir))

        with patch('offline_reddit.media.requests.get') as mock_get:
            mock_get.return_value = mock_response(404)
            filename = await cache.download_and_cache('https://i.redd.it/gone.jpg', 'p1_0')

        assert filename is None
        assert list(media_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_transport_error_returns_none(self, media_dir):
        cache = MediaCache(cache_dir=str(media_dir))

        with patch('offline_reddit.media.requests.get') as mock_get:
            mock_get.side_effect = requests.ConnectionError("offline")
            filename = await cache.download_and_cache('https://i.redd.it/cat.jpg', 'p1_0')

        assert filename is None

    def test_clear_cache_counts_files(self, media_dir):
        (media_dir / 'a_0.jpg').write_bytes(b'1')
        (media_dir / 'b_0.png').write_bytes(b'2')
        cache = MediaCache(cache_dir=str(media_dir))

        assert cache.clear_cache() == 2
        assert list(media_dir.iterdir()) == []

    def test_clear_missing_dir(self, tmp_path):
        assert MediaCache(cache_dir=str(tmp_path / 'never')).clear_cache() == 0
