"""
Variorum Context Tests

Shared cache and id generator across chunk resolvers.
"""

import asyncio

import pytest

from variorum.contracts import ErrorCode, SpineState, UnknownEdition, UnknownSpine
from variorum.service import create_context
from variorum.spine import ResolverConfig

from .fixtures import (
    SPINE_TEMPLATE, W1818,
    DocumentServer, chunk_1_documents,
    app, group, reading, spine,
)


def two_chunk_server() -> DocumentServer:
    documents = chunk_1_documents()
    documents[SPINE_TEMPLATE.format(chunk=2)] = spine(
        app('C02_app1', group('C02_g1', reading('1818', f'{W1818}#string-range(//tei:div/tei:p[3],0,8)')))
    )
    return DocumentServer(documents)


def two_chunk_context(server):
    config = ResolverConfig(spine_url_template=SPINE_TEMPLATE, chunks=(1, 2))
    return create_context(config, transport=server.transport)


def test_unknown_chunk_raises():
    context = two_chunk_context(two_chunk_server())
    with pytest.raises(UnknownSpine) as exc:
        context.get_spine(11)
    assert exc.value.code is ErrorCode.UNKNOWN_SPINE


def test_edition_lookup_uses_bundled_registry():
    context = two_chunk_context(two_chunk_server())
    assert context.get_edition('MS').chunks == frozenset({7, 8, 9, 10})
    with pytest.raises(UnknownEdition):
        context.get_edition('1900')


def test_resolve_returns_ready_spine():
    context = two_chunk_context(two_chunk_server())

    spine_1 = asyncio.run(context.resolve(1))

    assert spine_1.state is SpineState.READY
    assert context.get_spine(2).state is SpineState.UNINITIALIZED


def test_chunks_share_ids_and_documents():
    server = two_chunk_server()
    context = two_chunk_context(server)

    async def scenario():
        await context.resolve(1)
        await context.resolve(2)
        return await context.cache.get(W1818)

    witness = asyncio.run(scenario())

    ptr = context.get_spine(2).apps[0].pointers[0]
    chunk_1_ptr = context.get_spine(1).apps[0].pointers[0]
    assert ptr.referenced_target == 'mock-id-2'
    assert server.requests[W1818] == 1
    assert ptr.dereferenced.getroottree().getroot() is witness.getroot()
    assert chunk_1_ptr.dereferenced.getroottree().getroot() is witness.getroot()


def test_resolve_all():
    context = two_chunk_context(two_chunk_server())

    spines = asyncio.run(context.resolve_all())

    assert [s.chunk_number for s in spines] == [1, 2]
    assert all(s.is_ready for s in spines)


def test_stats():
    server = two_chunk_server()
    context = two_chunk_context(server)
    asyncio.run(context.resolve(1))

    stats = context.get_stats()

    assert stats['registry']['total'] == 5
    assert stats['cached_documents'] == 5
    assert stats['fetches'] == 5
    assert stats['synthesized_ids'] == 2
    assert stats['spines'] == {1: 'ready', 2: 'uninitialized'}
    assert context.chunks == [1, 2]
