"""
API Mapper
==========

Transforms resolved apparatus state into response DTOs.
Exposes the resolved structure as-is: no ordering or merging of readings.
"""
from typing import List, Optional

from pydantic import BaseModel

from ..contracts import Apparatus, Edition, Pointer, DroppedPointer, ResolutionStats
from ..spine import SpineResolver


class EditionDTO(BaseModel):
    code: str
    name: str
    chunks: List[int]


class PointerDTO(BaseModel):
    group_id: str
    edition: str
    url: str
    target: str
    element: Optional[str] = None
    app_ref: Optional[str] = None
    text: Optional[str] = None


class ApparatusDTO(BaseModel):
    id: str
    n: Optional[int] = None
    pointers: List[PointerDTO]


class DroppedPointerDTO(BaseModel):
    apparatus_id: str
    group_id: str
    referenced_url: str
    expression: str
    reason: str
    message: str


class SpineDTO(BaseModel):
    chunk: int
    url: str
    state: str
    stats: Optional[dict] = None
    apparatus: List[ApparatusDTO]


def map_edition(edition: Edition) -> EditionDTO:
    return EditionDTO(code=edition.code, name=edition.name, chunks=sorted(edition.chunks))


def map_pointer(ptr: Pointer, back_reference_attribute: str) -> PointerDTO:
    element = ptr.dereferenced
    return PointerDTO(
        group_id=ptr.group_id,
        edition=ptr.edition.code,
        url=ptr.referenced_url,
        target=ptr.referenced_target,
        element=element.tag if element is not None else None,
        app_ref=element.get(back_reference_attribute) if element is not None else None,
        text=' '.join(''.join(element.itertext()).split()) if element is not None else None
    )


def map_apparatus(app: Apparatus, back_reference_attribute: str) -> ApparatusDTO:
    return ApparatusDTO(
        id=app.id,
        n=app.n,
        pointers=[map_pointer(ptr, back_reference_attribute) for ptr in app.pointers]
    )


def map_dropped(dropped: DroppedPointer) -> DroppedPointerDTO:
    return DroppedPointerDTO(**dropped.to_dict())


def map_spine(spine: SpineResolver, back_reference_attribute: str) -> SpineDTO:
    stats: Optional[ResolutionStats] = spine.stats
    return SpineDTO(
        chunk=spine.chunk_number,
        url=spine.url,
        state=spine.state.value,
        stats=stats.to_dict() if stats else None,
        apparatus=[map_apparatus(app, back_reference_attribute) for app in spine.apps]
    )
