"""
Resolver Test Fixtures

Explicit spine and witness documents plus an in-memory document server.
All fixtures are fixed strings - no random generation.
"""

from collections import Counter
from typing import Dict, Optional
import asyncio

import httpx

from variorum.contracts import Edition, RangeFailurePolicy
from variorum.fetcher import DocumentCache
from variorum.identifiers import IdGenerator
from variorum.parser import ApparatusParser
from variorum.registry import EditionRegistry
from variorum.spine import ResolverConfig, SpineResolver


TEI_NS = 'http://www.tei-c.org/ns/1.0'
BASE = 'https://fv.example.org/data'
SPINE_TEMPLATE = BASE + '/spine_C{chunk:02d}.xml'

W1818 = f'{BASE}/f1818_C01.xml'
W1823 = f'{BASE}/f1823_C01.xml'
W1831 = f'{BASE}/f1831_C01.xml'
WTHOMAS = f'{BASE}/fThomas_C01.xml'


# =============================================================================
# DOCUMENT BUILDERS
# =============================================================================

def tei(body: str) -> bytes:
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<TEI xmlns="{TEI_NS}"><text><body>{body}</body></text></TEI>'
    ).encode('utf-8')


def spine(apps: str) -> bytes:
    return tei(f'<div type="collation">{apps}</div>')


def app(app_id: str, groups: str, n: Optional[int] = None) -> str:
    n_attr = f' n="{n}"' if n is not None else ''
    return f'<app xml:id="{app_id}"{n_attr}>{groups}</app>'


def group(group_id: str, readings: str) -> str:
    return f'<rdgGrp xml:id="{group_id}">{readings}</rdgGrp>'


def reading(edition_code: str, target: str) -> str:
    return f'<rdg wit="#f{edition_code}"><ptr target="{target}"/></rdg>'


# =============================================================================
# WITNESS DOCUMENTS
# =============================================================================

WITNESS_1818 = tei(
    '<div xml:id="c1_div1">'
    '<p xml:id="c1_p1">It was on a dreary night of November</p>'
    '<p>that I beheld the accomplishment of my toils.</p>'
    '<p>With an anxiety that almost amounted to agony</p>'
    '</div>'
)

WITNESS_1823 = tei(
    '<p>I collected the instruments of life around me</p>'
)

WITNESS_1831 = tei(
    '<div xml:id="c1_31_div1">'
    '<p xml:id="c1_31_p1">It was already one in the morning</p>'
    '</div>'
)

WITNESS_THOMAS = tei(
    '<div>'
    '<p xml:id="th_p1">the rain pattered dismally against the panes</p>'
    '</div>'
)


# Two apparatus entries covering a direct id, a tei:-prefixed string-range
# anchored on an id-less element, a range onto an existing id, and a range
# that matches nothing.
CHUNK_1_SPINE = spine(
    app(
        'C01_app1',
        group(
            'C01_app1_rg1',
            reading('1818', f'{W1818}#c1_p1')
            + reading('1823', f'{W1823}#string-range(//tei:body/tei:p,0,10)')
        ),
        n=1
    )
    + app(
        'C01_app2',
        group(
            'C01_app2_rg1',
            reading('1818', f'{W1818}#string-range(//tei:div/tei:p[2],0,12)')
            + reading('1831', f'{W1831}#string-range(//tei:body/tei:lg,0,5)')
        )
        + group(
            'C01_app2_rg2',
            reading('Thomas', f'{WTHOMAS}#string-range(//tei:div/tei:p,4,7)')
            + reading('1831', f'{W1831}#c1_31_p1')
        ),
        n=2
    )
)


def chunk_1_documents() -> Dict[str, bytes]:
    return {
        SPINE_TEMPLATE.format(chunk=1): CHUNK_1_SPINE,
        W1818: WITNESS_1818,
        W1823: WITNESS_1823,
        W1831: WITNESS_1831,
        WTHOMAS: WITNESS_THOMAS,
    }


# =============================================================================
# DOCUMENT SERVER
# =============================================================================

class DocumentServer:
    """
    In-memory HTTP server for httpx.MockTransport.

    Counts requests per URL. Unknown URLs answer 404.
    """

    def __init__(self, documents: Optional[Dict[str, bytes]] = None, delay: float = 0.0):
        self.documents: Dict[str, bytes] = dict(documents or {})
        self.requests: Counter = Counter()
        self.delay = delay

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests[url] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        content = self.documents.get(url)
        if content is None:
            return httpx.Response(404, content=b'not found')
        return httpx.Response(200, content=content, headers={'content-type': 'application/xml'})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def total_requests(self) -> int:
        return sum(self.requests.values())


# =============================================================================
# RESOLVER FACTORIES
# =============================================================================

EDITIONS = (
    Edition(code='1818', name='1818', chunks=frozenset(range(1, 11))),
    Edition(code='1823', name='1823', chunks=frozenset(range(1, 11))),
    Edition(code='1831', name='1831', chunks=frozenset(range(1, 11))),
    Edition(code='Thomas', name='Thomas', chunks=frozenset(range(1, 11))),
    Edition(code='MS', name='MS', chunks=frozenset(range(7, 11))),
)


def create_registry() -> EditionRegistry:
    return EditionRegistry.from_editions(EDITIONS)


def create_config(policy: RangeFailurePolicy = RangeFailurePolicy.DROP) -> ResolverConfig:
    return ResolverConfig(spine_url_template=SPINE_TEMPLATE, range_failure_policy=policy)


def create_resolver(
    server: DocumentServer,
    chunk: int = 1,
    id_generator: Optional[IdGenerator] = None,
    config: Optional[ResolverConfig] = None,
    parser: Optional[ApparatusParser] = None,
    cache: Optional[DocumentCache] = None
) -> SpineResolver:
    return SpineResolver(
        chunk=chunk,
        cache=cache or DocumentCache(transport=server.transport),
        parser=parser or ApparatusParser(create_registry()),
        id_generator=id_generator or IdGenerator(),
        config=config or create_config()
    )
