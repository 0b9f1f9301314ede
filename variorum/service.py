"""
Variorum Context

Explicitly constructed holder of the shared resolution state: the
document cache, the edition registry, the id generator and one
SpineResolver per chunk. Built once and passed to whoever needs it.
"""

from __future__ import annotations
from typing import Dict, List, Optional
from pathlib import Path
import asyncio

import httpx

from .contracts import Edition, UnknownSpine
from .fetcher import DocumentCache
from .identifiers import IdGenerator
from .parser import ApparatusParser
from .registry import EditionRegistry
from .spine import ResolverConfig, SpineResolver


class VariorumContext:
    """
    Coordinates the cache, registry and chunk resolvers.

    DESIGN:
    =======
    1. One DocumentCache shared by every chunk
    2. One IdGenerator shared by every chunk, so synthesized ids never collide
    3. Chunks are resolved lazily, on first request
    """

    def __init__(
        self,
        registry: EditionRegistry,
        cache: DocumentCache,
        id_generator: IdGenerator,
        config: Optional[ResolverConfig] = None
    ):
        self._config = config or ResolverConfig()
        self._registry = registry
        self._cache = cache
        self._ids = id_generator
        self._parser = ApparatusParser(registry)
        self._spines: Dict[int, SpineResolver] = {
            chunk: SpineResolver(
                chunk=chunk,
                cache=cache,
                parser=self._parser,
                id_generator=id_generator,
                config=self._config
            )
            for chunk in self._config.chunks
        }

    def get_edition(self, code: str) -> Edition:
        return self._registry.lookup(code)

    def get_spine(self, chunk: int) -> SpineResolver:
        spine = self._spines.get(chunk)
        if spine is None:
            raise UnknownSpine(f'No spine for chunk {chunk}', chunk=chunk)
        return spine

    async def resolve(self, chunk: int) -> SpineResolver:
        """Initialize a chunk (no-op if ready) and return it."""
        spine = self.get_spine(chunk)
        await spine.initialize()
        return spine

    async def resolve_all(self) -> List[SpineResolver]:
        """Initialize every chunk concurrently. The first fatal error propagates."""
        return list(await asyncio.gather(*(self.resolve(chunk) for chunk in self._spines)))

    def get_stats(self) -> dict:
        return {
            'registry': self._registry.stats(),
            'cached_documents': len(self._cache.cached_urls()),
            'fetches': self._cache.fetch_count,
            'synthesized_ids': self._ids.issued,
            'spines': {
                chunk: spine.state.value for chunk, spine in self._spines.items()
            }
        }

    @property
    def registry(self) -> EditionRegistry:
        return self._registry

    @property
    def cache(self) -> DocumentCache:
        return self._cache

    @property
    def config(self) -> ResolverConfig:
        return self._config

    @property
    def chunks(self) -> List[int]:
        return list(self._spines)


def create_context(
    config: Optional[ResolverConfig] = None,
    editions_path: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    id_generator: Optional[IdGenerator] = None
) -> VariorumContext:
    """Create a context with defaults."""
    config = config or ResolverConfig()
    path = editions_path or config.editions_path
    registry = EditionRegistry.load(Path(path) if path else None)
    cache = DocumentCache(
        timeout=config.timeout_seconds,
        user_agent=config.user_agent,
        base_url=config.base_url,
        transport=transport,
        cache_failures=config.cache_failures
    )
    return VariorumContext(
        registry=registry,
        cache=cache,
        id_generator=id_generator or IdGenerator(prefix=config.id_prefix),
        config=config
    )
