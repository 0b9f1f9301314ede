"""
Anchor Id Generation

Source of xml:id values for witness elements that a string-range
resolves to but that carry no id of their own.

WHY INJECTED:
A resolver is handed its generator, so tests can fix the sequence and two
resolvers sharing one generator never hand out the same id.
"""

from __future__ import annotations
from typing import Iterable, Iterator
import itertools

from .contracts import PipelineInvariantError


DEFAULT_ID_PREFIX = 'mock-id-'


class IdGenerator:
    """Monotonically increasing ids: <prefix>0, <prefix>1, ..."""

    def __init__(self, prefix: str = DEFAULT_ID_PREFIX, start: int = 0):
        self._prefix = prefix
        self._counter = itertools.count(start)
        self._issued = 0

    def next_id(self) -> str:
        self._issued += 1
        return f'{self._prefix}{next(self._counter)}'

    @property
    def issued(self) -> int:
        """Number of ids handed out so far."""
        return self._issued


class SequenceIdGenerator(IdGenerator):
    """
    Replays a fixed sequence of ids.

    Raises PipelineInvariantError when the sequence runs out.
    """

    def __init__(self, ids: Iterable[str]):
        super().__init__()
        self._ids: Iterator[str] = iter(ids)

    def next_id(self) -> str:
        try:
            value = next(self._ids)
        except StopIteration:
            raise PipelineInvariantError(f'Id sequence exhausted after {self._issued} ids') from None
        self._issued += 1
        return value
