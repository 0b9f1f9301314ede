"""
Apparatus Parser

Validates <app> elements of a spine document and turns them into
Apparatus values.

SCHEMA:
=======
<app xml:id="..." n="...">
  <rdgGrp xml:id="...">
    <rdg wit="#f1818"><ptr target="url#fragment"/></rdg>
  </rdgGrp>
</app>

Any violation raises immediately; the caller aborts the whole chunk.
"""

from __future__ import annotations
from typing import List, Optional

from lxml import etree

from .contracts import (
    XML_ID, Apparatus, Pointer, Edition,
    MissingIdentifier, InvalidParent, MissingWitness, UnknownEdition,
    MissingGroupIdentifier, MissingTarget, MalformedTarget, InvalidOrdinal
)
from .registry import EditionRegistry


# wit="#f1818": '#f' is a symbolic prefix, the rest is the edition code
WITNESS_PREFIX_LENGTH = 2


def local_name(element: etree._Element) -> Optional[str]:
    if not isinstance(element.tag, str):
        return None
    return etree.QName(element).localname


def edition_code_from_witness(witness: str) -> str:
    return witness[WITNESS_PREFIX_LENGTH:]


class ApparatusParser:
    """Parses <app> elements against an edition registry."""

    def __init__(self, registry: EditionRegistry):
        self._registry = registry

    def parse_all(self, root: etree._Element) -> List[Apparatus]:
        """Parse every <app> under root, in document order."""
        return [
            self.parse(element) for element in root.iter()
            if local_name(element) == 'app'
        ]

    def parse(self, element: etree._Element) -> Apparatus:
        app_id = element.get(XML_ID)
        if not app_id:
            raise MissingIdentifier('<app> tag with no xml:id', line=element.sourceline)

        n = self._parse_ordinal(element, app_id)

        pointers = tuple(
            self._parse_pointer(ptr) for ptr in element.iter()
            if local_name(ptr) == 'ptr'
        )
        return Apparatus(id=app_id, n=n, pointers=pointers, element=element)

    def _parse_ordinal(self, element: etree._Element, app_id: str) -> Optional[int]:
        raw = element.get('n')
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError as e:
            raise InvalidOrdinal(f'<app> has a non-integer n {raw!r}', app=app_id) from e

    def _parse_pointer(self, ptr_element: etree._Element) -> Pointer:
        rdg_element = ptr_element.getparent()
        if rdg_element is None or local_name(rdg_element) != 'rdg':
            raise InvalidParent('Parent of <ptr> is not <rdg>', line=ptr_element.sourceline)

        witness = rdg_element.get('wit')
        if not witness:
            raise MissingWitness('<rdg> element does not have a wit attribute', line=rdg_element.sourceline)

        edition = self._lookup_edition(witness)

        group_element = rdg_element.getparent()
        if group_element is None or local_name(group_element) != 'rdgGrp':
            raise InvalidParent('Parent of <rdg> element is not <rdgGrp>', line=rdg_element.sourceline)

        group_id = group_element.get(XML_ID)
        if not group_id:
            raise MissingGroupIdentifier('<rdgGrp> has no xml:id', line=group_element.sourceline)

        target = ptr_element.get('target')
        if target is None:
            raise MissingTarget('<ptr> element has no target attribute', line=ptr_element.sourceline)

        parts = target.split('#')
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise MalformedTarget(
                f'Target {target} is not well formatted. Expected url#fragment',
                line=ptr_element.sourceline
            )

        return Pointer(
            group_id=group_id,
            edition=edition,
            referenced_url=parts[0],
            referenced_target=parts[1],
            ptr_element=ptr_element
        )

    def _lookup_edition(self, witness: str) -> Edition:
        code = edition_code_from_witness(witness)
        try:
            return self._registry.lookup(code)
        except UnknownEdition as e:
            raise UnknownEdition(code, f'<rdg> has invalid witness {witness}') from e
