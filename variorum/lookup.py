"""
Document Lookups

XPath evaluation and xml:id lookup over parsed witness documents.
"""

from __future__ import annotations
from typing import List, Optional

from lxml import etree

from .contracts import XML_ID, DanglingPointer, AmbiguousPointer


def evaluate_xpath(document: etree._ElementTree, xpath: str) -> List:
    """
    Evaluate an xpath against a document and return the matched nodes.

    Non node-set results (numbers, strings, booleans) come back as a
    one-item list so callers can reject them by type.
    Raises etree.XPathError for invalid expressions.
    """
    result = document.xpath(xpath)
    if isinstance(result, list):
        return result
    return [result]


def get_xml_id(element: etree._Element) -> Optional[str]:
    return element.get(XML_ID)


def find_elements_by_xml_id(document: etree._ElementTree, xml_id: str) -> List[etree._Element]:
    return [
        element for element in document.getroot().iter()
        if isinstance(element.tag, str) and element.get(XML_ID) == xml_id
    ]


def find_element_by_xml_id(document: etree._ElementTree, xml_id: str, url: str = '') -> etree._Element:
    """Exactly one element must carry the id."""
    matches = find_elements_by_xml_id(document, xml_id)
    if not matches:
        raise DanglingPointer(f'Pointer {xml_id} references an invalid element', url=url, target=xml_id)
    if len(matches) > 1:
        raise AmbiguousPointer(
            f'Pointer {xml_id} references more than one element',
            url=url,
            target=xml_id,
            matches=len(matches)
        )
    return matches[0]
