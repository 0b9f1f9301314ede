"""
Document Cache

Fetches and parses XML documents by URL, once per process.

PRINCIPLES:
===========
1. Single-flight - concurrent callers for one URL share one fetch
2. Settled results are replayed, never re-fetched
3. Failed fetches are first-class results with an explicit status
4. Failure caching is explicit and can be invalidated
"""

from __future__ import annotations
from typing import Dict, List, Optional
import asyncio
import logging

import httpx
from lxml import etree

from .contracts import FetchError, FetchStatus, ParseError


logger = logging.getLogger(__name__)


def strip_default_namespace(root: etree._Element) -> None:
    """
    Move elements of the root's default namespace into no namespace.

    Witness xpaths and tag lookups are written without a prefix, so the
    default (TEI) namespace is removed after parsing. xml:id and other
    prefixed attributes are untouched.
    """
    namespace = root.nsmap.get(None)
    if namespace is None:
        return
    prefix = f'{{{namespace}}}'
    for element in root.iter():
        if isinstance(element.tag, str) and element.tag.startswith(prefix):
            element.tag = element.tag[len(prefix):]
    etree.cleanup_namespaces(root)


def parse_document(raw_bytes: bytes, url: str) -> etree._ElementTree:
    """Parse raw XML into a namespace-normalized tree. Raises ParseError."""
    # collect_ids off: duplicate xml:ids are tolerated here and judged at dereference
    parser = etree.XMLParser(resolve_entities=False, no_network=True, collect_ids=False)
    try:
        root = etree.fromstring(raw_bytes, parser)
    except etree.XMLSyntaxError as e:
        raise ParseError(url, f'Malformed XML: {e}') from e
    strip_default_namespace(root)
    return root.getroottree()


class DocumentCache:
    """
    Process-lifetime cache of parsed documents.

    GUARANTEES:
    ===========
    1. At most one underlying fetch in flight per URL
    2. Every caller for a URL observes the same document object
    3. With cache_failures, a failure is replayed until invalidated;
       without it, the next call retries
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "VariorumResolver/1.0",
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache_failures: bool = True
    ):
        self._timeout = timeout
        self._user_agent = user_agent
        self._base_url = base_url or ''
        self._transport = transport
        self._cache_failures = cache_failures
        self._entries: Dict[str, asyncio.Future] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._fetch_count = 0

    async def get(self, url: str) -> etree._ElementTree:
        """Fetch and parse a document, or join the fetch already running."""
        entry = self._entries.get(url)
        if entry is None:
            entry = asyncio.ensure_future(self._load(url))
            entry.add_done_callback(lambda done, url=url: self._settled(url, done))
            self._entries[url] = entry
        # One cancelled caller must not cancel the shared fetch
        return await asyncio.shield(entry)

    def lock_for(self, url: str) -> asyncio.Lock:
        """Lock serializing mutations of one document."""
        lock = self._locks.get(url)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[url] = lock
        return lock

    def invalidate(self, url: str) -> bool:
        """Forget a settled entry. Returns False if absent or still in flight."""
        entry = self._entries.get(url)
        if entry is None or not entry.done():
            return False
        del self._entries[url]
        return True

    def invalidate_failures(self) -> List[str]:
        """Forget every failed entry so the next get() retries it."""
        failed = [
            url for url, entry in self._entries.items()
            if entry.done() and (entry.cancelled() or entry.exception() is not None)
        ]
        for url in failed:
            del self._entries[url]
        return failed

    def cached_urls(self) -> List[str]:
        """URLs whose fetch settled successfully."""
        return [
            url for url, entry in self._entries.items()
            if entry.done() and not entry.cancelled() and entry.exception() is None
        ]

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    @property
    def fetch_count(self) -> int:
        """Number of underlying fetches issued."""
        return self._fetch_count

    def _settled(self, url: str, entry: asyncio.Future) -> None:
        if entry.cancelled():
            failed = True
        else:
            failed = entry.exception() is not None
        if not failed:
            return
        if entry.cancelled() or not self._cache_failures:
            if self._entries.get(url) is entry:
                del self._entries[url]

    async def _load(self, url: str) -> etree._ElementTree:
        self._fetch_count += 1
        logger.debug("Fetching %s", url)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                base_url=self._base_url,
                transport=self._transport
            ) as client:
                response = await client.get(
                    url,
                    headers={'User-Agent': self._user_agent},
                    follow_redirects=True
                )
        except httpx.TimeoutException as e:
            logger.warning("Timed out fetching %s", url)
            raise FetchError(url, "Request timed out", FetchStatus.TIMEOUT) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Network error fetching %s: %s", url, e)
            raise FetchError(url, str(e), FetchStatus.NETWORK_ERROR) from e

        if response.status_code != 200:
            logger.warning("HTTP %s fetching %s", response.status_code, url)
            raise FetchError(
                url,
                f"HTTP {response.status_code}",
                FetchStatus.HTTP_ERROR,
                http_status=response.status_code
            )

        document = parse_document(response.content, url)
        logger.debug("Parsed %s (%d bytes)", url, len(response.content))
        return document
