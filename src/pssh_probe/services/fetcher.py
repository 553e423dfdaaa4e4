import asyncio
import logging
from typing import Dict, List, Optional, Tuple, Union, cast

import aiohttp

from .init_segment import find_pssh_boxes
from .pssh_parser import ParseResult, parse

logger = logging.getLogger(__name__)

# Default Chrome User-Agent for Windows
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

DEFAULT_MAX_SEGMENT_SIZE = 10 * 1024 * 1024
CHUNK_SIZE = 64 * 1024


class FetchError(Exception):
    """Raised when a media segment cannot be downloaded"""


class SegmentFetcher:
    """Service for downloading MP4 init segments and extracting their PSSH boxes"""

    def __init__(
        self,
        max_concurrent_downloads: int = 10,
        max_segment_size: int = DEFAULT_MAX_SEGMENT_SIZE,
    ):
        """
        Args:
            max_concurrent_downloads: Maximum number of concurrent downloads
            max_segment_size: Largest response body accepted, in bytes
        """
        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_downloads)
        self.max_concurrent = max_concurrent_downloads
        self.max_segment_size = max_segment_size

    async def get_session(
        self, proxy: Optional[str] = None, user_agent: Optional[str] = None
    ) -> aiohttp.ClientSession:
        """
        Get or create an aiohttp session

        A dedicated session is created when a proxy or user agent is given;
        the caller is responsible for closing it.
        """
        if proxy or user_agent:
            return await self._create_session(proxy, user_agent)

        if self.session is None or self.session.closed:
            self.session = await self._create_session(None, None)
        return self.session

    async def _create_session(
        self, proxy: Optional[str] = None, user_agent: Optional[str] = None
    ) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=30, connect=10)
        headers = {"User-Agent": user_agent or DEFAULT_USER_AGENT}

        connector: Union[aiohttp.TCPConnector, "ProxyConnector"]
        if proxy and proxy.startswith("socks"):
            try:
                from aiohttp_socks import ProxyConnector
            except ImportError:
                raise FetchError(
                    "SOCKS proxy support requires aiohttp-socks. "
                    "Install with: pip install aiohttp-socks"
                )
            connector = ProxyConnector.from_url(proxy)
        else:
            connector = aiohttp.TCPConnector(limit=100, limit_per_host=10)

        return aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers=headers,
            trust_env=False,  # Don't use environment proxy settings
        )

    async def fetch_segment(
        self,
        url: str,
        proxy: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bytes:
        """
        Download a media segment

        Raises:
            FetchError: If the download fails or the segment is empty or too large
        """
        session = await self.get_session(proxy, user_agent)
        should_close_session = proxy is not None or user_agent is not None

        async with self.semaphore:
            try:
                data = await self._download_segment(url, session, proxy)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Network error downloading segment from {url}: {e}")
                if proxy:
                    raise FetchError(f"Failed to download segment via proxy {proxy}: {e}")
                raise FetchError(f"Failed to download segment: {e}")
            finally:
                if should_close_session and not session.closed:
                    await session.close()

        if not data:
            raise FetchError("Downloaded segment is empty")
        return data

    async def extract_pssh(
        self,
        url: str,
        proxy: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[List[bytes], ParseResult]:
        """
        Download a segment and parse every PSSH box it contains

        Returns:
            The raw PSSH boxes in file order and their parse result
        """
        segment = await self.fetch_segment(url, proxy, user_agent)
        boxes = find_pssh_boxes(segment)
        result = parse(b"".join(boxes))

        logger.info(
            f"Extracted {len(result.system_ids)} PSSH box(es), "
            f"{len(result.cenc_key_ids)} key id(s) from {url}"
        )
        return boxes, result

    async def _download_segment(
        self, url: str, session: aiohttp.ClientSession, proxy: Optional[str] = None
    ) -> bytes:
        """
        Download segment with retry logic

        Raises:
            aiohttp.ClientError: If all retry attempts fail
        """
        # SOCKS proxies are handled by the connector
        proxy_url = proxy if proxy and not proxy.startswith("socks") else None
        retry_count = 3 if not proxy else 1  # Don't retry with proxy to avoid confusion

        for attempt in range(retry_count):
            try:
                async with session.get(url, proxy=proxy_url) as response:
                    response.raise_for_status()
                    if (response.content_length or 0) > self.max_segment_size:
                        raise FetchError(
                            f"Segment too large: {response.content_length} bytes "
                            f"(limit {self.max_segment_size})"
                        )
                    data = await self._read_limited(response)

                if not self._is_valid_mp4(data):
                    logger.warning("Downloaded data doesn't appear to be valid MP4")
                return data

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt == retry_count - 1:
                    logger.error(f"All download attempts failed for {url}")
                    raise

                wait_time = (
                    1 * (attempt + 1) if isinstance(e, aiohttp.ClientError) else 2 * (attempt + 1)
                )
                logger.warning(
                    f"Download attempt {attempt + 1} failed, retrying in {wait_time}s: {e}"
                )
                await asyncio.sleep(wait_time)

        raise FetchError("Download failed")

    async def _read_limited(self, response: aiohttp.ClientResponse) -> bytes:
        """
        Read a response body chunk by chunk, bounded by max_segment_size

        Raises:
            FetchError: As soon as the body grows past the limit
        """
        data = bytearray()
        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
            data.extend(chunk)
            if len(data) > self.max_segment_size:
                raise FetchError(
                    f"Segment too large: more than {self.max_segment_size} bytes"
                )
        return bytes(data)

    @staticmethod
    def _is_valid_mp4(data: bytes) -> bool:
        """Quick check if data starts with a common top-level MP4 box"""
        if len(data) < 8:
            return False

        common_types = [b"ftyp", b"styp", b"moof", b"moov", b"mdat", b"pssh"]
        return data[4:8] in common_types

    async def extract_batch(
        self, requests: List[Dict]
    ) -> List[Union[Tuple[List[bytes], ParseResult], Exception]]:
        """
        Extract PSSH data from several segments concurrently

        Args:
            requests: List of dicts with 'url' and optional 'proxy', 'user_agent'

        Returns:
            One (boxes, result) tuple or exception per request, in input order
        """
        tasks = [
            self.extract_pssh(
                url=req["url"], proxy=req.get("proxy"), user_agent=req.get("user_agent")
            )
            for req in requests
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(f"Segment {i} failed: {result}")
        return cast(List[Union[Tuple[List[bytes], ParseResult], Exception]], results)

    async def close(self):
        """Cleanup resources"""
        if self.session and not self.session.closed:
            await self.session.close()
            # Wait a bit for connections to close
            await asyncio.sleep(0.1)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
