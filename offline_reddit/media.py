"""Media resolution and on-disk image cache.

Posts carry either a single attached URL or, for galleries, an ordered list of
media ids resolved through ``media_metadata``. Images with an allowed
extension are downloaded into an application-private directory under a
filename derived from a stable key (``{post_id}_{index}.{ext}``).

Download failures are never raised: the caller treats them as "no media".
"""

import asyncio
import os
from functools import partial
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

import requests
import structlog

from offline_reddit.models.reddit_models import PostPayload
from offline_reddit.reddit import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT

logger = structlog.get_logger()

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
DEFAULT_MEDIA_DIR = './data/media'


def _unescape_amp(url: str) -> str:
    return url.replace("&amp;", "&")


def extract_media_urls(post: PostPayload) -> List[str]:
    """Return the candidate media URLs of a post in display order.

    Gallery posts walk their items in payload order and resolve each media id
    through ``media_metadata``; items whose id or metadata is missing are
    skipped rather than failing the post. Other posts yield their single
    attached URL if present.

    Example:
        >>> extract_media_urls(gallery_post)
        ['https://preview.redd.it/a.jpg?width=640&s=1', 'https://preview.redd.it/b.png?s=2']
    """
    urls: List[str] = []

    if post.is_gallery and post.gallery_media_ids and post.media_metadata:
        for media_id in post.gallery_media_ids:
            if media_id is None:
                continue
            media_url = post.media_metadata.get(media_id)
            if media_url:
                urls.append(_unescape_amp(media_url))
    elif post.url:
        urls.append(post.url)

    return urls


def media_extension(url: str) -> str:
    """Lowercased file extension of the URL path, ignoring any query string."""
    path = urlsplit(_unescape_amp(url)).path
    _, ext = os.path.splitext(path)
    return ext.lstrip('.').lower()


class MediaCache:
    """Image cache rooted at an application-private directory.

    Attributes:
        cache_dir: Directory holding cached files
        user_agent: User-Agent sent with download requests
        timeout: Per-download timeout in seconds
    """

    def __init__(
        self,
        cache_dir: str = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT
    ):
        if cache_dir is None:
            cache_dir = os.environ.get('MEDIA_CACHE_DIR', DEFAULT_MEDIA_DIR)
        self.cache_dir = Path(cache_dir)
        self.user_agent = user_agent
        self.timeout = timeout

    def path_for(self, filename: str) -> Path:
        return self.cache_dir / filename

    def _download_sync(self, url: str, stable_key: str) -> Optional[str]:
        clean = _unescape_amp(url)
        ext = media_extension(clean)

        if ext not in ALLOWED_EXTENSIONS:
            logger.debug("media_extension_rejected", url=clean, extension=ext)
            return None

        filename = f"{stable_key}.{ext}"

        try:
            response = requests.get(
                clean,
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning("media_download_failed", url=clean, error=str(e))
            return None

        if response.status_code != 200:
            logger.warning("media_download_failed", url=clean, status=response.status_code)
            return None

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.path_for(filename).write_bytes(response.content)
        except OSError as e:
            logger.warning("media_write_failed", filename=filename, error=str(e))
            return None

        logger.debug("media_cached", filename=filename, size=len(response.content))
        return filename

    async def download_and_cache(self, url: str, stable_key: str) -> Optional[str]:
        """Download an image and store it as ``{stable_key}.{ext}``.

        Args:
            url: Media URL (entity-encoded ampersands are unescaped)
            stable_key: Key the filename is derived from, e.g. "abc123_0"

        Returns:
            Optional[str]: The cached filename, or None if the extension is not
                allowed or the download failed for any reason
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._download_sync, url, stable_key))

    def clear_cache(self) -> int:
        """Delete every cached media file.

        Returns:
            int: Number of files removed
        """
        if not self.cache_dir.exists():
            return 0

        removed = 0
        for entry in self.cache_dir.iterdir():
            if entry.is_file():
                entry.unlink()
                removed += 1

        logger.info("media_cache_cleared", cache_dir=str(self.cache_dir), removed=removed)
        return removed
