"""
Edition Registry

Loads and manages edition descriptors from editions.json.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional
import json
from pathlib import Path

from .contracts import Edition, UnknownEdition


DEFAULT_EDITIONS_PATH = Path(__file__).parent / 'config' / 'editions.json'


@dataclass(frozen=True)
class EditionRegistry:
    """
    Registry of all witness editions.

    Built once at startup and never mutated. Lookups are pure.
    """

    _editions: Dict[str, Edition]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'EditionRegistry':
        """Load registry from editions.json."""
        if config_path is None:
            config_path = DEFAULT_EDITIONS_PATH

        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)

        editions = []
        for edition_data in config.get('editions', []):
            editions.append(Edition(
                code=edition_data['code'],
                name=edition_data.get('name', edition_data['code']),
                chunks=frozenset(int(c) for c in edition_data.get('chunks', []))
            ))

        return cls.from_editions(editions)

    @classmethod
    def from_editions(cls, editions: Iterable[Edition]) -> 'EditionRegistry':
        by_code = {}
        for edition in editions:
            if edition.code in by_code:
                raise ValueError(f'Duplicate edition code {edition.code!r}')
            by_code[edition.code] = edition
        return cls(_editions=by_code)

    def lookup(self, code: str) -> Edition:
        """Get edition by code. Raises UnknownEdition if absent."""
        edition = self._editions.get(code)
        if edition is None:
            raise UnknownEdition(code)
        return edition

    def get(self, code: str) -> Optional[Edition]:
        return self._editions.get(code)

    def __contains__(self, code: str) -> bool:
        return code in self._editions

    def all_editions(self) -> Iterator[Edition]:
        """Iterate editions in configuration order."""
        yield from self._editions.values()

    def editions_for_chunk(self, chunk: int) -> List[Edition]:
        return [e for e in self._editions.values() if e.provides(chunk)]

    def chunks(self) -> List[int]:
        """Every chunk provided by at least one edition, sorted."""
        provided = set()
        for edition in self._editions.values():
            provided.update(edition.chunks)
        return sorted(provided)

    def stats(self) -> dict:
        return {
            'total': len(self._editions),
            'by_chunk': {
                chunk: [e.code for e in self.editions_for_chunk(chunk)]
                for chunk in self.chunks()
            }
        }
