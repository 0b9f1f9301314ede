"""
Spine Resolver

Resolves one spine chunk: every <ptr> of every <app> becomes a
dereferenced witness element carrying a back-reference to its <app>.

PIPELINE (strictly ordered, each phase over the whole chunk):
=============================================================
1. Load        - fetch the chunk's spine document
2. Parse       - every <app> into an Apparatus (fail fast)
3. Fetch       - all referenced documents concurrently, then a barrier
4. Rewrite     - string-range(...) targets into xml:id anchors
5. Dereference - every target id into exactly one element
6. Back-link   - app-ref attribute on every resolved element

FAILURE POLICY:
===============
- Phases 1, 2, 3, 5: fatal, the chunk is left FAILED
- Phase 4: per pointer, the pointer is dropped and recorded
  (RangeFailurePolicy.RAISE makes it fatal instead)
- Phase 6: a pointer without an element is an invariant violation
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple
import asyncio
import logging
import os

from lxml import etree

from .contracts import (
    XML_ID, Apparatus, Pointer, StringRange, SpineState, DropReason,
    DroppedPointer, ResolutionStats, RangeFailurePolicy,
    FetchError, ParseError, RangeResolutionError, SpineNotInitialized,
    PipelineInvariantError, VariorumError
)
from .fetcher import DocumentCache
from .identifiers import IdGenerator, DEFAULT_ID_PREFIX
from .lookup import evaluate_xpath, find_element_by_xml_id, get_xml_id
from .parser import ApparatusParser


logger = logging.getLogger(__name__)


DEFAULT_SPINE_URL_TEMPLATE = (
    'https://raw.githubusercontent.com/PghFrankenstein/fv-data/master/'
    'standoff_Spine/spine_C{chunk:02d}.xml'
)
BACK_REFERENCE_ATTRIBUTE = 'app-ref'


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class ResolverConfig:
    """
    Configuration for spine resolution.

    Frozen: changes require a new config instance.
    """
    spine_url_template: str = DEFAULT_SPINE_URL_TEMPLATE
    timeout_seconds: float = 30.0
    user_agent: str = "VariorumResolver/1.0"
    base_url: Optional[str] = None
    cache_failures: bool = True
    range_failure_policy: RangeFailurePolicy = RangeFailurePolicy.DROP
    back_reference_attribute: str = BACK_REFERENCE_ATTRIBUTE
    id_prefix: str = DEFAULT_ID_PREFIX
    chunks: Tuple[int, ...] = tuple(range(1, 11))
    editions_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'ResolverConfig':
        """Defaults overridden by VARIORUM_* environment variables."""
        defaults = cls()
        return cls(
            spine_url_template=os.environ.get('VARIORUM_SPINE_URL_TEMPLATE', defaults.spine_url_template),
            timeout_seconds=float(os.environ.get('VARIORUM_TIMEOUT', defaults.timeout_seconds)),
            base_url=os.environ.get('VARIORUM_BASE_URL') or None,
            cache_failures=os.environ.get('VARIORUM_CACHE_FAILURES', '1') != '0',
            range_failure_policy=RangeFailurePolicy(
                os.environ.get('VARIORUM_RANGE_FAILURE_POLICY', defaults.range_failure_policy.value)
            ),
            editions_path=os.environ.get('VARIORUM_EDITIONS_PATH') or None,
        )

    def spine_url(self, chunk: int) -> str:
        return self.spine_url_template.format(chunk=chunk)


# =============================================================================
# RESOLVER
# =============================================================================

class SpineResolver:
    """
    Resolver and state holder for one spine chunk.

    GUARANTEES:
    ===========
    1. initialize() is idempotent once READY
    2. Concurrent initialize() calls share one in-flight run
    3. A fatal error propagates and leaves the chunk FAILED
    4. Every pointer left after a run is dereferenced and back-linked
    """

    def __init__(
        self,
        chunk: int,
        cache: DocumentCache,
        parser: ApparatusParser,
        id_generator: IdGenerator,
        config: Optional[ResolverConfig] = None
    ):
        self.chunk_number = chunk
        self._cache = cache
        self._parser = parser
        self._ids = id_generator
        self._config = config or ResolverConfig()

        self._state = SpineState.UNINITIALIZED
        self._document: Optional[etree._ElementTree] = None
        self._apps: Optional[Tuple[Apparatus, ...]] = None
        self._dropped: List[DroppedPointer] = []
        self._stats: Optional[ResolutionStats] = None
        self._inflight: Optional[asyncio.Future] = None
        self._rewritten = 0
        self._synthesized = 0

    async def initialize(self) -> None:
        if self._state is SpineState.READY:
            return

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run())
            self._inflight.add_done_callback(self._clear_inflight)
        await asyncio.shield(self._inflight)

    def _clear_inflight(self, done: asyncio.Future) -> None:
        if self._inflight is done:
            self._inflight = None

    async def _run(self) -> None:
        self._state = SpineState.INITIALIZING
        self._apps = None
        self._stats = None
        self._dropped = []
        self._rewritten = 0
        self._synthesized = 0

        try:
            document = await self._load()
            apps = self._parse_apps(document)
            urls = await self._fetch_all_references(apps)
            apps = await self._rewrite_string_ranges(apps)
            apps = await self._dereference_pointers(apps)
            self._add_back_pointers(apps)

            self._document = document
            self._apps = tuple(apps)
            self._stats = ResolutionStats(
                chunk=self.chunk_number,
                apparatus_count=len(apps),
                pointer_count=sum(len(app.pointers) for app in apps),
                referenced_documents=len(urls),
                rewritten_ranges=self._rewritten,
                synthesized_ids=self._synthesized,
                dropped_pointers=len(self._dropped)
            )
            self._state = SpineState.READY
            logger.info(
                "Chunk %d ready: %d apparatus, %d pointers, %d dropped",
                self.chunk_number, self._stats.apparatus_count,
                self._stats.pointer_count, self._stats.dropped_pointers
            )
        except VariorumError as e:
            logger.error("Chunk %d failed to initialize: %s", self.chunk_number, e)
            raise
        finally:
            if self._state is not SpineState.READY:
                self._state = SpineState.FAILED

    # =========================================================================
    # PHASES
    # =========================================================================

    async def _load(self) -> etree._ElementTree:
        return await self._cache.get(self.url)

    def _parse_apps(self, document: etree._ElementTree) -> List[Apparatus]:
        return self._parser.parse_all(document.getroot())

    async def _fetch_all_references(self, apps: List[Apparatus]) -> List[str]:
        """Download every referenced document concurrently; returns once all are fetched."""
        logger.debug("Fetching all URLs referenced by chunk %d", self.chunk_number)

        unique: Dict[str, None] = {}
        for app in apps:
            for ptr in app.pointers:
                unique.setdefault(ptr.referenced_url, None)

        urls = list(unique)
        await asyncio.gather(*(self._cache.get(url) for url in urls))
        return urls

    async def _rewrite_string_ranges(self, apps: List[Apparatus]) -> List[Apparatus]:
        rewritten = []
        for app in apps:
            pointers = []
            for ptr in app.pointers:
                string_range = ptr.string_range
                if string_range is None:
                    pointers.append(ptr)
                    continue
                try:
                    pointers.append(await self._rewrite_string_range(ptr, string_range))
                except RangeResolutionError as e:
                    if self._config.range_failure_policy is RangeFailurePolicy.RAISE:
                        raise
                    self._record_drop(app, ptr, e)
            rewritten.append(app.with_pointers(tuple(pointers)))
        return rewritten

    async def _rewrite_string_range(self, ptr: Pointer, string_range: StringRange) -> Pointer:
        """
        Anchor a string-range on its containing element.

        The element's xml:id is reused, or a synthesized one is attached.
        The <ptr> element's target is rewritten to url#id as well.
        """
        url = ptr.referenced_url
        try:
            document = await self._cache.get(url)
        except (FetchError, ParseError) as e:
            raise RangeResolutionError(DropReason.DOCUMENT_UNAVAILABLE, str(e), url=url) from e

        xpath = string_range.patched_xpath
        try:
            nodes = evaluate_xpath(document, xpath)
        except etree.XPathError as e:
            raise RangeResolutionError(
                DropReason.INVALID_XPATH, f'Invalid xpath {xpath}: {e}', url=url
            ) from e

        if not nodes:
            raise RangeResolutionError(
                DropReason.NO_MATCH, f'string-range for xpath {xpath} failed to return a node', url=url
            )
        if len(nodes) > 1:
            raise RangeResolutionError(
                DropReason.MULTIPLE_MATCHES,
                f'string-range for xpath {xpath} returned {len(nodes)} nodes',
                url=url
            )

        target = nodes[0]
        if not isinstance(target, etree._Element) or not isinstance(target.tag, str):
            raise RangeResolutionError(
                DropReason.NOT_AN_ELEMENT, f'string-range for xpath {xpath} is not an element', url=url
            )

        # Phase 4 runs sequentially; the lock keeps per-document id synthesis atomic if it is parallelized
        async with self._cache.lock_for(url):
            xml_id = get_xml_id(target)
            if xml_id is None:
                xml_id = self._ids.next_id()
                target.set(XML_ID, xml_id)
                self._synthesized += 1

        if ptr.ptr_element is not None:
            ptr.ptr_element.set('target', f'{url}#{xml_id}')
        self._rewritten += 1
        return replace(ptr, referenced_target=xml_id)

    def _record_drop(self, app: Apparatus, ptr: Pointer, error: RangeResolutionError) -> None:
        dropped = DroppedPointer(
            apparatus_id=app.id,
            group_id=ptr.group_id,
            referenced_url=ptr.referenced_url,
            expression=ptr.referenced_target,
            reason=error.reason,
            message=error.message
        )
        self._dropped.append(dropped)
        logger.warning(
            "Dropping pointer of app %s (%s#%s): %s",
            app.id, ptr.referenced_url, ptr.referenced_target, error.message
        )

    async def _dereference_pointers(self, apps: List[Apparatus]) -> List[Apparatus]:
        resolved = []
        for app in apps:
            pointers = []
            for ptr in app.pointers:
                document = await self._cache.get(ptr.referenced_url)
                element = find_element_by_xml_id(document, ptr.referenced_target, url=ptr.referenced_url)
                pointers.append(replace(ptr, dereferenced=element))
            resolved.append(app.with_pointers(tuple(pointers)))
        return resolved

    def _add_back_pointers(self, apps: List[Apparatus]) -> None:
        attribute = self._config.back_reference_attribute
        for app in apps:
            for ptr in app.pointers:
                if ptr.dereferenced is None:
                    raise PipelineInvariantError(
                        'Pointer reached back-reference injection without an element',
                        app=app.id,
                        target=ptr.target
                    )
                # Last apparatus processed wins for a shared anchor
                ptr.dereferenced.set(attribute, app.id)

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def url(self) -> str:
        return self._config.spine_url(self.chunk_number)

    @property
    def state(self) -> SpineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SpineState.READY

    @property
    def apps(self) -> List[Apparatus]:
        if self._apps is None:
            raise SpineNotInitialized(f'Spine {self.chunk_number} not initialized yet', state=self._state.value)
        return list(self._apps)

    @property
    def document(self) -> etree._ElementTree:
        if self._document is None:
            raise SpineNotInitialized(f'Spine {self.chunk_number} not initialized yet', state=self._state.value)
        return self._document

    @property
    def dropped(self) -> List[DroppedPointer]:
        return list(self._dropped)

    @property
    def stats(self) -> Optional[ResolutionStats]:
        return self._stats

    def get_apparatus(self, app_id: str) -> Optional[Apparatus]:
        for app in self.apps:
            if app.id == app_id:
                return app
        return None

    def apparatus_for_element(self, element: etree._Element) -> Optional[Apparatus]:
        """Follow a witness element's back-reference to its apparatus."""
        app_id = element.get(self._config.back_reference_attribute)
        if app_id is None:
            return None
        return self.get_apparatus(app_id)
