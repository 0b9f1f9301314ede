"""
Document Cache Tests
====================

Single-flight fetching, failure statuses and failure caching.
"""

import asyncio

import httpx
import pytest

from variorum.contracts import XML_ID, FetchError, FetchStatus, ParseError
from variorum.fetcher import DocumentCache, parse_document

from .fixtures import TEI_NS, W1818, W1823, WITNESS_1818, WITNESS_1823, DocumentServer


def test_concurrent_requests_share_one_fetch():
    server = DocumentServer({W1818: WITNESS_1818}, delay=0.01)
    cache = DocumentCache(transport=server.transport)

    async def scenario():
        return await asyncio.gather(cache.get(W1818), cache.get(W1818), cache.get(W1818))

    first, second, third = asyncio.run(scenario())

    assert server.requests[W1818] == 1
    assert cache.fetch_count == 1
    assert first is second is third


def test_settled_result_is_replayed():
    server = DocumentServer({W1818: WITNESS_1818})
    cache = DocumentCache(transport=server.transport)

    async def scenario():
        first = await cache.get(W1818)
        second = await cache.get(W1818)
        return first, second

    first, second = asyncio.run(scenario())

    assert first is second
    assert server.requests[W1818] == 1
    assert cache.cached_urls() == [W1818]
    assert W1818 in cache


def test_distinct_urls_fetched_separately():
    server = DocumentServer({W1818: WITNESS_1818, W1823: WITNESS_1823})
    cache = DocumentCache(transport=server.transport)

    async def scenario():
        await asyncio.gather(cache.get(W1818), cache.get(W1823))

    asyncio.run(scenario())

    assert cache.fetch_count == 2
    assert sorted(cache.cached_urls()) == sorted([W1818, W1823])


def test_default_namespace_removed():
    server = DocumentServer({W1818: WITNESS_1818})
    cache = DocumentCache(transport=server.transport)

    document = asyncio.run(cache.get(W1818))

    root = document.getroot()
    assert root.tag == 'TEI'
    assert len(document.xpath('//body/div/p')) == 3
    assert document.xpath('//p[1]')[0].get(XML_ID) == 'c1_p1'


def test_base_url_resolves_relative_targets():
    server = DocumentServer({W1818: WITNESS_1818})
    cache = DocumentCache(base_url='https://fv.example.org/data/', transport=server.transport)

    document = asyncio.run(cache.get('f1818_C01.xml'))

    assert document.getroot().tag == 'TEI'
    assert server.requests[W1818] == 1


# =============================================================================
# FAILURES
# =============================================================================

def test_http_error_status():
    cache = DocumentCache(transport=DocumentServer().transport)

    with pytest.raises(FetchError) as exc:
        asyncio.run(cache.get(W1818))

    assert exc.value.status is FetchStatus.HTTP_ERROR
    assert exc.value.http_status == 404
    assert exc.value.url == W1818


def test_malformed_xml_is_parse_error():
    server = DocumentServer({W1818: b'<TEI><text></TEI>'})
    cache = DocumentCache(transport=server.transport)

    with pytest.raises(ParseError) as exc:
        asyncio.run(cache.get(W1818))

    assert exc.value.status is FetchStatus.PARSE_ERROR


def test_timeout_status():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    cache = DocumentCache(transport=httpx.MockTransport(handler))

    with pytest.raises(FetchError) as exc:
        asyncio.run(cache.get(W1818))

    assert exc.value.status is FetchStatus.TIMEOUT


def test_network_error_status():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    cache = DocumentCache(transport=httpx.MockTransport(handler))

    with pytest.raises(FetchError) as exc:
        asyncio.run(cache.get(W1818))

    assert exc.value.status is FetchStatus.NETWORK_ERROR


def test_failures_cached_until_invalidated():
    server = DocumentServer()
    cache = DocumentCache(transport=server.transport)

    async def scenario():
        for _ in range(3):
            with pytest.raises(FetchError):
                await cache.get(W1818)
        assert server.requests[W1818] == 1

        server.documents[W1818] = WITNESS_1818
        assert cache.invalidate_failures() == [W1818]
        return await cache.get(W1818)

    document = asyncio.run(scenario())

    assert document.getroot().tag == 'TEI'
    assert server.requests[W1818] == 2


def test_uncached_failures_retry():
    server = DocumentServer()
    cache = DocumentCache(transport=server.transport, cache_failures=False)

    async def scenario():
        with pytest.raises(FetchError):
            await cache.get(W1818)
        server.documents[W1818] = WITNESS_1818
        return await cache.get(W1818)

    asyncio.run(scenario())

    assert server.requests[W1818] == 2
    assert cache.fetch_count == 2


def test_invalidate_forces_refetch():
    server = DocumentServer({W1818: WITNESS_1818})
    cache = DocumentCache(transport=server.transport)

    async def scenario():
        first = await cache.get(W1818)
        assert cache.invalidate(W1818)
        assert not cache.invalidate(W1818)
        second = await cache.get(W1818)
        return first, second

    first, second = asyncio.run(scenario())

    assert first is not second
    assert server.requests[W1818] == 2


def test_lock_is_per_document():
    cache = DocumentCache()
    assert cache.lock_for(W1818) is cache.lock_for(W1818)
    assert cache.lock_for(W1818) is not cache.lock_for(W1823)


def test_parse_document_keeps_foreign_namespaces():
    raw = (
        f'<TEI xmlns="{TEI_NS}" xmlns:mith="http://mith.example/ns">'
        '<text><body><p mith:ref="x">text</p></body></text></TEI>'
    ).encode()

    document = parse_document(raw, 'inline.xml')

    p = document.xpath('//body/p')[0]
    assert p.get('{http://mith.example/ns}ref') == 'x'


def test_parse_document_allows_duplicate_ids():
    raw = (
        f'<TEI xmlns="{TEI_NS}"><text><body>'
        '<p xml:id="x1">a</p><p xml:id="x1">b</p>'
        '</body></text></TEI>'
    ).encode()

    document = parse_document(raw, 'inline.xml')

    assert [p.get(XML_ID) for p in document.xpath('//body/p')] == ['x1', 'x1']
